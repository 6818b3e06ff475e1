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

# src/processing/batch_processing.py
import os
import time
import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from src.utils.logging import log_message, mask_key
from src.utils.file_utils import is_supported_file
from src.utils.settings import KEY_USAGE_SIMULTANEOUS
from src.api.analysis import AnalysisClient
from src.api.errors import BatchStartError, BatchAlreadyRunningError, SettingsError
from src.api.key_pool import KeyPool
from src.metadata.csv_exporter import CSVJournal
from src.metadata.exif_writer import ExifToolSink
from src.processing.file_stager import SUCCESS_FOLDER
from src.processing.pipeline import FilePipeline, WorkItem, OUTCOME_PENDING
from src.processing.progress import ProgressTracker
from src.processing.thumbnail import ThumbnailGenerator

POLL_INTERVAL = 0.1


class BatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


@dataclass
class BatchRun:
    total_count: int
    concurrency_limit: int
    key_policy: str
    started_at: float
    processed_count: int = 0
    failed_count: int = 0
    state: BatchState = BatchState.RUNNING
    stop_reason: str = None
    items: list = field(default_factory=list)

    @property
    def active(self):
        return self.state in (BatchState.RUNNING, BatchState.PAUSED)


@dataclass
class BatchSummary:
    total_files: int
    processed_count: int
    failed_count: int
    pending_count: int
    state: BatchState
    stop_reason: str = None
    elapsed: float = 0.0
    csv_rows: int = 0


class BatchScheduler:
    """
    Drives a batch of media files through FilePipeline with a bounded number
    of files in flight. pause(), resume() and stop() may be called from any
    coroutine on the same loop while start() is running.
    """

    def __init__(self, settings, analysis_client=None, sink=None, journal=None, thumbnails=None,
                 retry_policy=None, sleep=asyncio.sleep, poll_interval=POLL_INTERVAL,
                 on_progress=None, on_status=None, clock=None):
        self.settings = settings
        self.analysis_client = analysis_client or AnalysisClient()
        self.sink = sink or ExifToolSink()
        self.journal = journal or CSVJournal()
        self.thumbnails = thumbnails or ThumbnailGenerator()
        self.retry_policy = retry_policy
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.on_progress = on_progress
        self.on_status = on_status
        self._clock = clock or time.monotonic
        self.run = None
        self.tracker = None
        self.recent_results = deque()
        self._stop_requested = False
        self._pipeline = None

    @property
    def state(self):
        return self.run.state if self.run else BatchState.IDLE

    # --- control -------------------------------------------------------

    def pause(self):
        """Toggle between running and paused. In-flight files keep going; nothing new is dequeued."""
        if not self.run:
            return self.state
        if self.run.state == BatchState.RUNNING:
            self.run.state = BatchState.PAUSED
            log_message("Processing paused", "warning")
        elif self.run.state == BatchState.PAUSED:
            self.run.state = BatchState.RUNNING
            log_message("Processing resumed", "info")
        return self.run.state

    def resume(self):
        if self.run and self.run.state == BatchState.PAUSED:
            self.run.state = BatchState.RUNNING
            log_message("Processing resumed", "info")
        return self.state

    def stop(self, reason=None):
        if not self.run or not self.run.active:
            return
        if not self._stop_requested:
            self._stop_requested = True
            self.run.stop_reason = reason or "Stopped by user"
            log_message(f"Stopping: {self.run.stop_reason}", "warning")
        # a paused batch must still reach its exit path
        if self.run.state == BatchState.PAUSED:
            self.run.state = BatchState.RUNNING

    # --- setup ---------------------------------------------------------

    def _prepare(self, files, concurrency_limit, key_pool):
        if self.run and self.run.active:
            raise BatchAlreadyRunningError("A batch is already running")
        try:
            self.settings.validate()
        except SettingsError as e:
            raise BatchStartError(f"Invalid settings: {e}")

        if key_pool is None:
            key_pool = KeyPool(self.settings.api_keys, self.settings.key_usage_method)
        if len(key_pool) == 0:
            raise BatchStartError("No API key configured")

        if concurrency_limit is None:
            concurrency_limit = self.settings.max_concurrent
        if concurrency_limit < 1:
            raise BatchStartError(f"Concurrency limit must be at least 1, got {concurrency_limit}")

        paths = []
        for path in files or []:
            path = os.path.abspath(path)
            if not os.path.isfile(path):
                log_message(f"⨯ File input {os.path.basename(path)} missing before processing.", "warning")
                continue
            if not is_supported_file(path):
                log_message(f"Unsupported file format skipped: {os.path.basename(path)}", "warning")
                continue
            if path not in paths:
                paths.append(path)
        if not paths:
            raise BatchStartError("No new/valid files to process")
        return paths, concurrency_limit, key_pool

    # --- main loop -----------------------------------------------------

    async def start(self, files, concurrency_limit=None, key_pool=None):
        paths, concurrency_limit, key_pool = self._prepare(files, concurrency_limit, key_pool)

        self._stop_requested = False
        self.run = BatchRun(
            total_count=len(paths),
            concurrency_limit=concurrency_limit,
            key_policy=key_pool.policy,
            started_at=self._clock(),
        )
        self.tracker = ProgressTracker(len(paths), clock=self._clock)
        maxlen = concurrency_limit * 2 if self.settings.auto_clean_up else None
        self.recent_results = deque(maxlen=maxlen)
        self._pipeline = FilePipeline(
            self.settings,
            self.analysis_client,
            self.sink,
            self.journal,
            self.thumbnails,
            retry_policy=self.retry_policy,
            sleep=self.sleep,
            on_status=self.on_status,
        )
        if not self.sink.available:
            log_message("exiftool not found: metadata will only be written to CSV", "warning")

        log_message(f"Found {len(paths)} files to process", "success")
        log_message(
            f"Starting process ({concurrency_limit} concurrent, {len(key_pool)} key(s), "
            f"{key_pool.policy} mode, {self.settings.platform}/{self._pipeline.model})",
            "warning",
        )

        try:
            if key_pool.policy == KEY_USAGE_SIMULTANEOUS:
                partitions = key_pool.partition(paths)
                for key, chunk in partitions:
                    log_message(f"Key {mask_key(key)} assigned {len(chunk)} file(s)", "info")
                await asyncio.gather(*(
                    self._run_queue(chunk, (lambda k=key: k)) for key, chunk in partitions
                ))
            else:
                await self._run_queue(paths, key_pool.next)
        finally:
            self.run.state = BatchState.STOPPED if self._stop_requested else BatchState.COMPLETED

        csv_rows = await self._rebuild_journals(paths)
        return self._summarize(csv_rows)

    async def _run_queue(self, paths, acquire_key):
        queue = deque(WorkItem(p) for p in paths)
        self.run.items.extend(queue)
        in_flight = set()

        while queue or in_flight:
            if self._stop_requested:
                break
            if self.run.state == BatchState.PAUSED:
                await asyncio.sleep(self.poll_interval)
                continue
            while queue and len(in_flight) < self.run.concurrency_limit:
                item = queue.popleft()
                log_message(f" → Processing {item.filename}...", "info")
                task = asyncio.create_task(self._process_item(item, acquire_key))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
            if in_flight:
                await asyncio.wait(set(in_flight), timeout=self.poll_interval, return_when=asyncio.FIRST_COMPLETED)
            else:
                await asyncio.sleep(self.poll_interval)

        if in_flight:
            log_message(f"Waiting for {len(in_flight)} file(s) in progress...", "warning")
            await asyncio.gather(*in_flight, return_exceptions=True)

    async def _process_item(self, item, acquire_key):
        try:
            result = await self._pipeline.process(item, acquire_key)
        except Exception as e:
            log_message(f"Error processing {item.filename}: {e}", "error")
            self.run.failed_count += 1
            self.tracker.record_failure()
            return
        self.recent_results.append((item.filename, result.status))
        if result.succeeded:
            snapshot = self.tracker.record_success()
            self.run.processed_count = self.tracker.processed
            if self.on_progress is not None:
                self.on_progress(snapshot)
            log_message(f"Progress: {snapshot.describe()}", "debug")
        else:
            self.run.failed_count += 1
            self.tracker.record_failure()
        if result.abort_batch:
            self.stop(item.error or "Provider rejected the request (HTTP 400)")

    # --- completion ----------------------------------------------------

    async def _rebuild_journals(self, paths):
        total_rows = 0
        for source_dir in sorted({os.path.dirname(p) for p in paths}):
            success_dir = os.path.join(source_dir, SUCCESS_FOLDER)
            if not os.path.isdir(success_dir):
                continue
            try:
                total_rows += await self.journal.rebuild(success_dir, self.sink)
            except OSError as e:
                log_message(f"Error rebuilding CSV in {success_dir}: {e}", "error")
        return total_rows

    async def rebuild_csv(self, folder):
        """Rebuild `<folder>/success/CSV/metadata.csv` without running a batch."""
        success_dir = os.path.join(folder, SUCCESS_FOLDER)
        if not os.path.isdir(success_dir):
            log_message(f"No {SUCCESS_FOLDER} folder in {folder}", "warning")
            return 0
        return await self.journal.rebuild(success_dir, self.sink)

    def _summarize(self, csv_rows):
        run = self.run
        pending = sum(1 for item in run.items if item.outcome == OUTCOME_PENDING)
        elapsed = self.tracker.elapsed()

        log_message("", None)
        log_message("============= Summary Process =============", "bold")
        log_message(f"Total file: {run.total_count}", None)
        log_message(f"Success: {run.processed_count}", "success")
        log_message(f"Failed: {run.failed_count}", "error")
        log_message(f"Not processed: {pending}", "info")
        if run.state == BatchState.STOPPED:
            log_message(f"Stopped: {run.stop_reason}", "warning")
        log_message(f"Elapsed: {elapsed:.1f}s", None)
        log_message("=========================================", None)

        return BatchSummary(
            total_files=run.total_count,
            processed_count=run.processed_count,
            failed_count=run.failed_count,
            pending_count=pending,
            state=run.state,
            stop_reason=run.stop_reason,
            elapsed=elapsed,
            csv_rows=csv_rows,
        )
