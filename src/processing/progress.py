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

# src/processing/progress.py
import time
from dataclasses import dataclass

SPEED_SAMPLE_INTERVAL = 1.0


@dataclass
class ProgressSnapshot:
    processed: int
    failed: int
    total: int
    elapsed: float
    files_per_minute: float
    eta_seconds: float = None

    @property
    def percentage(self):
        if self.total <= 0:
            return 0.0
        return round(self.processed / self.total * 100, 1)

    def describe(self):
        return (
            f"{self.processed}/{self.total} ({self.percentage:.1f}%) | "
            f"{self.files_per_minute:.1f} files/min | ETA {format_eta(self.eta_seconds)}"
        )


def format_eta(seconds):
    if seconds is None:
        return "--"
    seconds = int(round(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class ProgressTracker:
    """Counts terminal outcomes and derives throughput and ETA."""

    def __init__(self, total, clock=None):
        self.total = total
        self.processed = 0
        self.failed = 0
        self._clock = clock or time.monotonic
        self.started_at = self._clock()
        self._files_per_minute = 0.0
        self._last_speed_update = None

    def elapsed(self):
        return max(self._clock() - self.started_at, 0.0)

    def record_success(self):
        if self.processed < self.total:
            self.processed += 1
        self._update_speed()
        return self.snapshot()

    def record_failure(self):
        self.failed += 1
        return self.snapshot()

    def _update_speed(self):
        now = self._clock()
        if self._last_speed_update is not None and now - self._last_speed_update < SPEED_SAMPLE_INTERVAL:
            return
        elapsed = now - self.started_at
        if elapsed > 0:
            self._files_per_minute = self.processed / elapsed * 60
            self._last_speed_update = now

    @property
    def files_per_minute(self):
        return self._files_per_minute

    def eta_seconds(self):
        remaining = self.total - self.processed - self.failed
        per_second = self._files_per_minute / 60
        if remaining <= 0 or per_second <= 0:
            return None
        return remaining / per_second

    def snapshot(self):
        return ProgressSnapshot(
            processed=self.processed,
            failed=self.failed,
            total=self.total,
            elapsed=self.elapsed(),
            files_per_minute=self._files_per_minute,
            eta_seconds=self.eta_seconds(),
        )
