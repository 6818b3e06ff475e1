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

# src/api/key_pool.py
import math
import threading
from src.api.errors import BatchStartError
from src.utils.settings import KEY_USAGE_ROTATION, KEY_USAGE_SIMULTANEOUS


class KeyPool:
    """
    Ordered API keys plus the policy that decides how a batch consumes them.

    rotation:     every analysis attempt takes the next key, round robin.
    simultaneous: the file list is cut into one contiguous slice per key.
    """

    def __init__(self, keys, policy=KEY_USAGE_ROTATION):
        keys = [k.strip() for k in (keys or []) if k and k.strip()]
        if not keys:
            raise BatchStartError("No API key configured")
        if policy not in (KEY_USAGE_ROTATION, KEY_USAGE_SIMULTANEOUS):
            raise BatchStartError(f"Unknown key usage method '{policy}'")
        self._keys = keys
        self.policy = policy
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def keys(self):
        return list(self._keys)

    @property
    def cursor(self):
        return self._cursor

    def __len__(self):
        return len(self._keys)

    def next(self):
        with self._lock:
            key = self._keys[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._keys)
            return key

    def partition(self, files):
        """
        [(key, files_slice), ...] with slices of ceil(len(files) / len(keys)).
        Keys that would get an empty slice are left out.
        """
        files = list(files)
        if not files:
            return []
        per_key = math.ceil(len(files) / len(self._keys))
        partitions = []
        for index, key in enumerate(self._keys):
            chunk = files[index * per_key:(index + 1) * per_key]
            if chunk:
                partitions.append((key, chunk))
        return partitions
