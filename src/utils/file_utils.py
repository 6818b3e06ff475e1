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

# src/utils/file_utils.py
import os
import re
from enum import Enum
from src.utils.logging import log_message

SUPPORTED_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp")
SUPPORTED_VIDEO_EXTENSIONS = (".mp4", ".avi", ".mov", ".wmv", ".flv", ".webm", ".mkv", ".m4v", ".3gp")
SUPPORTED_VECTOR_EXTENSIONS = (".svg", ".ai", ".eps")
ALL_SUPPORTED_EXTENSIONS = SUPPORTED_IMAGE_EXTENSIONS + SUPPORTED_VIDEO_EXTENSIONS + SUPPORTED_VECTOR_EXTENSIONS

MAX_RENAME_LENGTH = 100


class MediaClass(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    VECTOR_RASTER = "vector_raster"
    VECTOR_OPAQUE = "vector_opaque"


def classify_media(path):
    """Return the MediaClass for `path` based on its extension, or None if unsupported."""
    ext = os.path.splitext(path)[1].lower()
    if ext in SUPPORTED_IMAGE_EXTENSIONS:
        return MediaClass.IMAGE
    if ext in SUPPORTED_VIDEO_EXTENSIONS:
        return MediaClass.VIDEO
    if ext == ".svg":
        return MediaClass.VECTOR_RASTER
    if ext in (".ai", ".eps"):
        return MediaClass.VECTOR_OPAQUE
    return None


def is_supported_file(path):
    return os.path.splitext(path)[1].lower() in ALL_SUPPORTED_EXTENSIONS


def scan_folder(folder):
    """
    List supported media files directly inside `folder`.

    The scan is not recursive, so `success/` and `failed/` from earlier runs
    are never picked up again. Hidden files are ignored and the result is
    sorted case-insensitively by filename.
    """
    try:
        entries = os.listdir(folder)
    except OSError as e:
        log_message(f"Error reading input directory: {e}", "error")
        raise
    files = []
    for name in entries:
        if name.startswith("."):
            continue
        full_path = os.path.join(folder, name)
        if not os.path.isfile(full_path):
            continue
        if is_supported_file(name):
            files.append(os.path.abspath(full_path))
    files.sort(key=lambda p: os.path.basename(p).casefold())
    return files


def sanitize_filename(title):
    """Turn an AI title into a safe lowercase file stem."""
    if not title:
        return ""
    name = title.lower()
    name = re.sub(r'[<>:"/\\|?*]', "", name)
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"[^a-z0-9_.-]", "", name)
    name = name.strip("_.- ")
    return name[:MAX_RENAME_LENGTH].rstrip("_.-")


def ensure_unique_path(folder, filename):
    """Return a path in `folder` for `filename` that does not exist yet, adding ' (n)' if needed."""
    base_name, extension = os.path.splitext(filename)
    candidate = os.path.join(folder, filename)
    counter = 1
    while os.path.exists(candidate):
        candidate = os.path.join(folder, f"{base_name} ({counter}){extension}")
        counter += 1
    return candidate
