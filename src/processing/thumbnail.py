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

# src/processing/thumbnail.py
import io
import os
import asyncio
from PIL import Image, ImageColor, ImageDraw
from src.api.errors import VideoProcessingError
from src.utils.compression import cover_thumbnail, encode_jpeg, THUMBNAIL_SIZE, THUMBNAIL_QUALITY
from src.utils.file_utils import MediaClass, classify_media
from src.utils.logging import log_message
from src.processing import video_processing
from src.processing.vector_processing.format_svg_processing import rasterize_svg, SvgRasterizeError


def filename_hash(name):
    """Signed 32-bit string hash (h * 31 + code unit), stable across runs."""
    value = 0
    for ch in name:
        value = ((value << 5) - value + ord(ch)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def placeholder_hue(path):
    stem = os.path.splitext(os.path.basename(path))[0]
    return abs(filename_hash(stem)) % 360


def placeholder_thumbnail(path, size=THUMBNAIL_SIZE):
    """A flat pastel tile whose colour is derived from the filename, labelled with the extension."""
    hue = placeholder_hue(path)
    color = ImageColor.getrgb(f"hsl({hue}, 70%, 85%)")
    img = Image.new("RGB", size, color)
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, size[0] - 1, size[1] - 1], outline=(224, 224, 224))
    label = os.path.splitext(path)[1].lstrip(".").upper() or "FILE"
    left, top, right, bottom = draw.textbbox((0, 0), label)
    draw.text(((size[0] - (right - left)) / 2, (size[1] - (bottom - top)) / 2), label, fill=(90, 90, 90))
    return encode_jpeg(img, THUMBNAIL_QUALITY)


def _image_thumbnail(path):
    with Image.open(path) as img:
        img.seek(0)
        return cover_thumbnail(img)


def _raster_thumbnail(raw_bytes):
    with Image.open(io.BytesIO(raw_bytes)) as img:
        return cover_thumbnail(img)


class ThumbnailGenerator:
    """
    Produces the small preview shown for each work item. Never raises:
    whatever goes wrong ends in the hashed placeholder.
    """

    def __init__(self, frame_offsets=video_processing.THUMBNAIL_OFFSETS):
        self.frame_offsets = tuple(frame_offsets)

    async def generate(self, path, media_class=None):
        media_class = media_class or classify_media(path)
        filename = os.path.basename(path)
        try:
            if media_class == MediaClass.IMAGE:
                return await asyncio.to_thread(_image_thumbnail, path)
            if media_class == MediaClass.VIDEO:
                return await self._video_thumbnail(path)
            if media_class == MediaClass.VECTOR_RASTER:
                raster = await asyncio.to_thread(rasterize_svg, path)
                return await asyncio.to_thread(_raster_thumbnail, raster)
        except (OSError, ValueError, SvgRasterizeError) as e:
            log_message(f"Thumbnail failed for {filename}, using placeholder: {e}", "debug")
        except Exception as e:
            log_message(f"Unexpected thumbnail error for {filename} ({type(e).__name__}): {e}", "warning")
        return await asyncio.to_thread(placeholder_thumbnail, path)

    async def _video_thumbnail(self, path):
        if not video_processing.find_ffmpeg():
            log_message(f"FFmpeg not available, placeholder thumbnail for {os.path.basename(path)}", "debug")
            return await asyncio.to_thread(placeholder_thumbnail, path)
        duration = await video_processing.probe_duration(path)
        for offset in self.frame_offsets:
            seconds = video_processing.resolve_offset(offset, duration)
            try:
                frame = await video_processing.extract_frame(path, seconds)
            except VideoProcessingError as e:
                log_message(f"Thumbnail frame at {offset} failed for {os.path.basename(path)}: {e}", "debug")
                continue
            return await asyncio.to_thread(_raster_thumbnail, frame)
        return await asyncio.to_thread(placeholder_thumbnail, path)
