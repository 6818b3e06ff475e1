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

# src/processing/file_stager.py
import os
import shutil
from src.utils.file_utils import ensure_unique_path, sanitize_filename
from src.utils.logging import log_message

SUCCESS_FOLDER = "success"
FAILED_FOLDER = "failed"


def target_folder(source_path, folder_type):
    return os.path.join(os.path.dirname(source_path), folder_type)


def title_filename(title, original_filename):
    """New filename built from `title`, keeping the original extension. None if the title sanitizes to nothing."""
    stem = sanitize_filename(title)
    if not stem:
        return None
    return stem + os.path.splitext(original_filename)[1].lower()


def move_to_folder(source_path, folder_type, target_name=None):
    """
    Move `source_path` into `<its dir>/<folder_type>/`, optionally under a new
    name, never overwriting an existing file. Returns the final path.
    """
    folder = target_folder(source_path, folder_type)
    os.makedirs(folder, exist_ok=True)
    destination = ensure_unique_path(folder, target_name or os.path.basename(source_path))
    shutil.move(source_path, destination)
    if target_name and os.path.basename(destination) != os.path.basename(source_path):
        log_message(f"{os.path.basename(source_path)} → {folder_type}/{os.path.basename(destination)}", "debug")
    return destination


def move_to_failed(source_path):
    """Best effort: a file that cannot be moved stays where it is and the error is logged."""
    if not os.path.exists(source_path):
        return None
    try:
        return move_to_folder(source_path, FAILED_FOLDER)
    except OSError as e:
        log_message(f"Could not move {os.path.basename(source_path)} to {FAILED_FOLDER}/: {e}", "error")
        return None
