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

# src/utils/logging.py
import os
import logging
import threading
from datetime import datetime, timezone

LOGGER_NAME = "autometa"
PROCESS_LOG_FILENAME = "process.log"

_LEVEL_MAP = {
    None: logging.INFO,
    "info": logging.INFO,
    "success": logging.INFO,
    "bold": logging.INFO,
    "debug": logging.DEBUG,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_logger = logging.getLogger(LOGGER_NAME)
_log_callback = None
_process_log_path = None
_process_log_lock = threading.Lock()


def configure_logging(verbose=False, process_log_dir=None):
    """
    Attach a console handler to the application logger and point the
    process journal at `process_log_dir` (current directory by default).
    Safe to call more than once.
    """
    global _process_log_path
    if not any(getattr(h, "_autometa_console", False) for h in _logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S"))
        handler._autometa_console = True
        _logger.addHandler(handler)
    _logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    _process_log_path = os.path.join(process_log_dir or os.getcwd(), PROCESS_LOG_FILENAME)


def set_log_callback(callback):
    """Register a callable(message, tag) that mirrors every log line, or None to clear it."""
    global _log_callback
    _log_callback = callback


def mask_key(api_key):
    if not api_key:
        return "<none>"
    return f"...{api_key[-5:]}"


def _append_process_log(message, tag):
    if _process_log_path is None:
        return
    line = f"{datetime.now(timezone.utc).isoformat()} [{(tag or 'info').upper()}] {message}\n"
    with _process_log_lock:
        try:
            with open(_process_log_path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            _logger.debug(f"Could not append to process log: {e}")


def log_message(message, tag=None):
    level = _LEVEL_MAP.get(tag, logging.INFO)
    _logger.log(level, message)
    _append_process_log(message, tag)
    if _log_callback is not None:
        try:
            _log_callback(message, tag)
        except Exception as e:
            _logger.debug(f"Log callback failed: {e}")
