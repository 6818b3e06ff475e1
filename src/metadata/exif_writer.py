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

# src/metadata/exif_writer.py
import os
import sys
import json
import shutil
import asyncio
from src.api.errors import MetadataWriteError
from src.utils.file_utils import MediaClass
from src.utils.logging import log_message

EXIFTOOL_ENV_VAR = "AUTOMETA_EXIFTOOL"
EXIFTOOL_TIMEOUT = 30
MAX_TITLE_CHARS = 160

WRITE_OK = "ok"
WRITE_FORMAT_UNSUPPORTED = "format_unsupported"
WRITE_UNAVAILABLE = "unavailable"

# exiftool stderr fragments for containers it cannot write
_UNSUPPORTED_MARKERS = (
    "can't currently write",
    "not yet supported",
    "writing of this type of file is not supported",
    "unknown file type",
)

BACKUP_SUFFIXES = ("_original", ".original", "_backup")


def find_exiftool():
    configured = os.environ.get(EXIFTOOL_ENV_VAR)
    if configured and os.path.isfile(configured):
        return configured
    found = shutil.which("exiftool")
    if found:
        return found
    if getattr(sys, 'frozen', False):
        base_dir = getattr(sys, '_MEIPASS', os.path.dirname(sys.executable))
    else:
        base_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    for name in ("exiftool", "exiftool.exe"):
        candidate = os.path.normpath(os.path.join(base_dir, "tools", "exiftool", name))
        if os.path.isfile(candidate):
            return candidate
    return None


def cleanup_backup_files(file_path):
    """Remove backup copies exiftool may leave next to `file_path`. Failures are only logged."""
    directory = os.path.dirname(file_path)
    base_name, ext = os.path.splitext(os.path.basename(file_path))
    candidates = [os.path.join(directory, f"{base_name}{suffix}{ext}") for suffix in BACKUP_SUFFIXES]
    candidates.append(f"{file_path}_original")
    for backup_path in candidates:
        if os.path.exists(backup_path):
            try:
                os.remove(backup_path)
                log_message(f"Cleaned up backup file: {os.path.basename(backup_path)}", "debug")
            except OSError as e:
                log_message(f"Could not clean up backup file {os.path.basename(backup_path)}: {e}", "warning")


def build_write_command(exiftool_path, file_path, metadata):
    title = (metadata.get('title') or '')[:MAX_TITLE_CHARS].strip()
    description = metadata.get('description') or ''
    keywords = [k.strip() for k in metadata.get('keywords') or [] if k and k.strip()]
    keywords = list(dict.fromkeys(keywords))

    command = [
        exiftool_path,
        "-overwrite_original",
        "-charset", "UTF8",
        "-codedcharacterset=utf8",
    ]
    if title:
        command.extend([f'-XMP:Title={title}', f'-IPTC:ObjectName={title}'])
    if description:
        command.extend([
            f'-XMP:Description={description}',
            f'-IPTC:Caption-Abstract={description}',
            f'-EXIF:ImageDescription={description}',
        ])
    if keywords:
        command.append("-IPTC:Keywords=")
        command.append("-XMP:Subject=")
        for keyword in keywords:
            command.append(f"-IPTC:Keywords+={keyword}")
            command.append(f"-XMP:Subject+={keyword}")
    command.append(file_path)
    return command


def _first(record, *names):
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return value
    return ""


def parse_read_output(stdout):
    """Turn `exiftool -json` output into {title, description, keywords}."""
    try:
        records = json.loads(stdout or "[]")
    except json.JSONDecodeError:
        return {"title": "", "description": "", "keywords": []}
    record = records[0] if records else {}
    keywords = _first(record, "Keywords", "Subject")
    if isinstance(keywords, str):
        keywords = [k.strip() for k in keywords.split(",") if k.strip()]
    else:
        keywords = [str(k).strip() for k in keywords if str(k).strip()]
    return {
        "title": str(_first(record, "Title", "ObjectName")).strip(),
        "description": str(_first(record, "Description", "Caption-Abstract", "ImageDescription")).strip(),
        "keywords": keywords,
    }


class ExifToolSink:
    """Embeds title, description and keywords into image files through exiftool."""

    def __init__(self, exiftool_path=None, timeout=EXIFTOOL_TIMEOUT):
        self.exiftool_path = exiftool_path or find_exiftool()
        self.timeout = timeout

    @property
    def available(self):
        return bool(self.exiftool_path)

    def supports_embedding(self, media_class):
        # video and vector containers only get the CSV journal
        return media_class == MediaClass.IMAGE

    async def _run(self, command):
        try:
            proc = await asyncio.create_subprocess_exec(
                *command, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError:
            raise MetadataWriteError(f"exiftool not found at {self.exiftool_path}")
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise MetadataWriteError(f"Exiftool timeout processing {os.path.basename(command[-1])}")
        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace").strip(),
        )

    async def write(self, file_path, metadata):
        """
        Returns WRITE_OK, WRITE_FORMAT_UNSUPPORTED, or WRITE_UNAVAILABLE when no
        exiftool binary was found. Raises MetadataWriteError on any other failure.
        """
        filename = os.path.basename(file_path)
        if not self.available:
            return WRITE_UNAVAILABLE
        if hasattr(metadata, "as_metadata"):
            metadata = metadata.as_metadata()
        if not metadata.get('title') and not metadata.get('description') and not metadata.get('keywords'):
            log_message(f"No valid metadata to write for {filename}", "warning")
            return WRITE_OK

        command = build_write_command(self.exiftool_path, file_path, metadata)
        return_code, stdout, stderr = await self._run(command)
        cleanup_backup_files(file_path)

        lowered = stderr.lower()
        if any(marker in lowered for marker in _UNSUPPORTED_MARKERS):
            log_message(f"Container of {filename} cannot hold embedded metadata: {stderr}", "warning")
            return WRITE_FORMAT_UNSUPPORTED
        if return_code != 0:
            raise MetadataWriteError(f"Failed to write EXIF (exit code {return_code}) on {filename}: {stderr}")
        log_message(f"EXIF metadata successfully written to {filename}", "debug")
        return WRITE_OK

    async def read(self, file_path):
        if not self.available:
            raise MetadataWriteError("exiftool not available for reading metadata")
        command = [
            self.exiftool_path, "-json", "-charset", "UTF8",
            "-XMP:Title", "-IPTC:ObjectName",
            "-XMP:Description", "-IPTC:Caption-Abstract", "-EXIF:ImageDescription",
            "-IPTC:Keywords", "-XMP:Subject",
            file_path,
        ]
        return_code, stdout, stderr = await self._run(command)
        if return_code != 0:
            raise MetadataWriteError(f"Failed to read metadata from {os.path.basename(file_path)}: {stderr}")
        return parse_read_output(stdout)
