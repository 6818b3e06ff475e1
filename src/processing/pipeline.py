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

# src/processing/pipeline.py
import os
import errno
import asyncio
from dataclasses import dataclass
from src.api.analysis import build_result
from src.api.errors import ProviderHardStopError
from src.api.prompts import build_prompt, to_text_only_prompt, editorial_prefix, description_budget
from src.metadata.exif_writer import WRITE_OK, WRITE_FORMAT_UNSUPPORTED
from src.processing import video_processing
from src.processing.file_stager import SUCCESS_FOLDER, move_to_folder, move_to_failed, title_filename
from src.processing.vector_processing.format_svg_processing import rasterize_svg
from src.utils.compression import prepare_image_bytes, prepare_bytes_from_raster
from src.utils.file_utils import MediaClass, classify_media
from src.utils.logging import log_message

# matched case-insensitively against the error message
RETRYABLE_ERROR_SIGNATURES = (
    "ENOENT",
    "ECONNRESET",
    "ETIMEDOUT",
    "rate limit",
    "service unavailable",
    "JSON parsing",
    "temporary file",
    "FFmpeg",
)

_RETRYABLE_ERRNOS = (errno.ENOENT, errno.ECONNRESET, errno.ETIMEDOUT)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

OUTCOME_PENDING = "pending"
OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"


def is_retryable(exc):
    if isinstance(exc, ProviderHardStopError):
        return False
    if getattr(exc, "transient", False):
        return True
    if isinstance(exc, OSError) and exc.errno in _RETRYABLE_ERRNOS:
        return True
    if isinstance(exc, (ConnectionResetError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return any(signature.lower() in message for signature in RETRYABLE_ERROR_SIGNATURES)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0

    def delay(self, retry_index):
        """Wait before retry number `retry_index` + 1: 1s, 2s, 4s with the defaults."""
        return self.base_delay * (2 ** retry_index)


@dataclass
class WorkItem:
    path: str
    media_class: MediaClass = None
    retry_count: int = 0
    outcome: str = OUTCOME_PENDING
    final_path: str = None
    error: str = None
    result: object = None
    thumbnail: bytes = None

    def __post_init__(self):
        if self.media_class is None:
            self.media_class = classify_media(self.path)

    @property
    def filename(self):
        return os.path.basename(self.path)


@dataclass
class FileResult:
    item: WorkItem
    status: str
    abort_batch: bool = False

    @property
    def succeeded(self):
        return self.item.outcome == OUTCOME_SUCCESS


class FilePipeline:
    """
    Runs one file from thumbnail to relocation, redoing the whole sequence on
    retryable errors. Every call ends with the file in success/ or failed/
    (or left in place when it vanished from disk).
    """

    def __init__(self, settings, analysis_client, sink, journal, thumbnails,
                 retry_policy=None, sleep=asyncio.sleep, on_status=None):
        self.settings = settings
        self.client = analysis_client
        self.sink = sink
        self.journal = journal
        self.thumbnails = thumbnails
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.on_status = on_status
        self.platform = settings.platform
        self.model = settings.resolved_model()
        self.editorial_prefix = ""
        if settings.editorial_mode:
            self.editorial_prefix = editorial_prefix(settings.editorial_place, settings.editorial_date)

    def _emit(self, item, status):
        if self.on_status is not None:
            self.on_status(item, status)

    def build_prompt(self, filename, text_only=False):
        commercial = None
        if self.settings.commercial_mode:
            commercial = {
                "main_subject": self.settings.main_subject,
                "main_category": self.settings.main_subject_category,
                "additional_subject": self.settings.additional_subject,
                "additional_category": self.settings.additional_subject_category,
            }
        prompt = build_prompt(
            self.platform,
            filename,
            self.settings.use_filename_analysis,
            self.settings.keywords_count,
            self.settings.title_length,
            description_budget(self.editorial_prefix),
            commercial,
        )
        if text_only:
            prompt = to_text_only_prompt(prompt)
        return prompt

    async def model_input(self, item):
        """(image_bytes or None, text_only)"""
        if item.media_class == MediaClass.IMAGE:
            return await asyncio.to_thread(prepare_image_bytes, item.path), False
        if item.media_class == MediaClass.VIDEO:
            return await video_processing.extract_model_frame(item.path), False
        if item.media_class == MediaClass.VECTOR_RASTER:
            raster = await asyncio.to_thread(rasterize_svg, item.path)
            return await asyncio.to_thread(prepare_bytes_from_raster, raster), False
        return None, True

    async def _attempt(self, item, acquire_key):
        if not os.path.exists(item.path):
            raise FileNotFoundError(errno.ENOENT, "Input file missing", item.path)

        item.thumbnail = await self.thumbnails.generate(item.path, item.media_class)
        image_bytes, text_only = await self.model_input(item)
        prompt = self.build_prompt(item.filename, text_only)

        credential = acquire_key()
        raw = await self.client.analyze(self.platform, self.model, credential, prompt, image_bytes)
        result = build_result(
            raw, self.platform, self.model, credential, self.settings.keywords_count, self.editorial_prefix
        )
        item.result = result

        status = "processed_no_exif"
        if self.sink.supports_embedding(item.media_class):
            write_status = await self.sink.write(item.path, result)
            if write_status == WRITE_OK:
                status = "processed_exif"
            elif write_status == WRITE_FORMAT_UNSUPPORTED:
                log_message(f"⚠ {item.filename}: metadata kept in CSV only", "warning")

        target_name = None
        if self.settings.title_file_rename:
            target_name = title_filename(result.title, item.filename)
        item.final_path = await asyncio.to_thread(move_to_folder, item.path, SUCCESS_FOLDER, target_name)

        final_name = os.path.basename(item.final_path)
        try:
            await asyncio.to_thread(self.journal.append_row, os.path.dirname(item.final_path), final_name, result)
        except OSError as e:
            log_message(f"Warning: Failed to write metadata to CSV for {final_name}: {e}", "warning")
        return status

    async def process(self, item, acquire_key):
        max_retries = self.retry_policy.max_retries
        self._emit(item, STATUS_PROCESSING)
        while True:
            try:
                status = await self._attempt(item, acquire_key)
            except ProviderHardStopError as e:
                item.error = str(e)
                log_message(f"✗ {item.filename}: {e}", "error")
                await self._fail(item)
                return FileResult(item, "failed_hard_stop", abort_batch=True)
            except Exception as e:
                item.error = str(e)
                if is_retryable(e) and item.retry_count < max_retries:
                    delay = self.retry_policy.delay(item.retry_count)
                    item.retry_count += 1
                    log_message(
                        f"Retrying {item.filename} ({item.retry_count}/{max_retries}) in {delay:g}s: {e}", "warning"
                    )
                    self._emit(item, f"retrying {item.retry_count}/{max_retries}")
                    await self.sleep(delay)
                    continue
                log_message(f"File failed permanently: {item.filename} - {e}", "error")
                await self._fail(item)
                return FileResult(item, "failed")

            item.outcome = OUTCOME_SUCCESS
            item.error = None
            self._emit(item, STATUS_COMPLETED)
            new_name = os.path.basename(item.final_path)
            log_message(f"✓ {item.filename}" + (f" → {new_name}" if new_name != item.filename else ""), "success")
            return FileResult(item, status)

    async def _fail(self, item):
        item.outcome = OUTCOME_FAILED
        item.final_path = await asyncio.to_thread(move_to_failed, item.path)
        self._emit(item, STATUS_FAILED)
