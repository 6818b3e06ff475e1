# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# src/processing/video_processing.py
import os
import json
import shutil
import asyncio
import tempfile
from src.api.errors import VideoProcessingError
from src.utils.logging import log_message

FFMPEG_ENV_VAR = "AUTOMETA_FFMPEG"
FFPROBE_ENV_VAR = "AUTOMETA_FFPROBE"
SUBPROCESS_TIMEOUT = 60

# fractions of the duration, then "one second before the end"
END_MINUS_ONE_SECOND = "end-1s"
THUMBNAIL_OFFSETS = (0.10, 0.25, 0.50, 0.75, 0.90, END_MINUS_ONE_SECOND)
MODEL_FRAME_OFFSET = 0.50
MODEL_FRAME_SIZE = 256

FFMPEG_MISSING_MESSAGE = (
    "FFmpeg not available. Video processing is not supported in this version. "
    "Please convert your video to an image format (JPG, PNG) first."
)


def _find_tool(env_var, name):
    configured = os.environ.get(env_var)
    if configured:
        if os.path.isfile(configured):
            return configured
        log_message(f"{env_var} points to a missing file: {configured}", "warning")
    return shutil.which(name)


def find_ffmpeg():
    return _find_tool(FFMPEG_ENV_VAR, "ffmpeg")


def find_ffprobe():
    return _find_tool(FFPROBE_ENV_VAR, "ffprobe")


async def _run(cmd, timeout=SUBPROCESS_TIMEOUT):
    proc = await asyncio.create_subprocess_exec(
        *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise VideoProcessingError(f"FFmpeg timed out after {timeout}s: {os.path.basename(cmd[-1])}")
    return proc.returncode, stdout, stderr.decode("utf-8", errors="replace").strip()


async def probe_duration(video_path):
    """Duration in seconds via ffprobe, or None if it cannot be determined."""
    ffprobe = find_ffprobe()
    if not ffprobe:
        log_message("ffprobe not available, video duration unknown", "debug")
        return None
    try:
        returncode, stdout, stderr = await _run(
            [ffprobe, "-v", "quiet", "-print_format", "json", "-show_format", video_path]
        )
    except (OSError, VideoProcessingError) as e:
        log_message(f"ffprobe failed for {os.path.basename(video_path)}: {e}", "warning")
        return None
    if returncode != 0:
        log_message(f"ffprobe failed for {os.path.basename(video_path)}: {stderr}", "warning")
        return None
    try:
        return float(json.loads(stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError):
        return None


def resolve_offset(offset, duration):
    """Map a fraction or END_MINUS_ONE_SECOND to an absolute timestamp in seconds."""
    if duration is None or duration <= 0:
        return 0.0
    if offset == END_MINUS_ONE_SECOND:
        return max(0.0, duration - 1.0)
    return max(0.0, min(duration, duration * float(offset)))


async def extract_frame(video_path, seconds, size=None):
    """
    Grab one JPEG frame at `seconds`. With `size`, the frame is scaled to fit
    inside a size x size box. Raises VideoProcessingError on any failure.
    """
    ffmpeg = find_ffmpeg()
    if not ffmpeg:
        raise VideoProcessingError(FFMPEG_MISSING_MESSAGE)

    fd, frame_path = tempfile.mkstemp(prefix="autometa_frame_", suffix=".jpg")
    os.close(fd)
    cmd = [ffmpeg, "-y", "-v", "error", "-ss", f"{seconds:.2f}", "-i", video_path, "-frames:v", "1", "-q:v", "3"]
    if size:
        cmd += ["-vf", f"scale={size}:{size}:force_original_aspect_ratio=decrease"]
    cmd.append(frame_path)
    try:
        try:
            returncode, _, stderr = await _run(cmd)
        except OSError as e:
            raise VideoProcessingError(f"FFmpeg could not be started: {e}")
        if returncode != 0 or not os.path.exists(frame_path) or os.path.getsize(frame_path) == 0:
            raise VideoProcessingError(
                f"FFmpeg failed to extract frame at {seconds:.2f}s from {os.path.basename(video_path)}: {stderr}"
            )
        with open(frame_path, "rb") as f:
            return f.read()
    finally:
        try:
            os.remove(frame_path)
        except OSError:
            pass


async def extract_model_frame(video_path):
    """The mid-point frame used as model input."""
    duration = await probe_duration(video_path)
    seconds = resolve_offset(MODEL_FRAME_OFFSET, duration)
    return await extract_frame(video_path, seconds, size=MODEL_FRAME_SIZE)
