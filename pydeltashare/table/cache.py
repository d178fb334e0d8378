# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
"""Memoizes replayed snapshots per table and version.

The cache only saves work. A miss always falls back to replaying the log, and
two threads racing on the same key simply compute the same snapshot twice.
"""
import threading
from collections import OrderedDict
from typing import Optional, Tuple

from pydeltashare.table.snapshot import TableSnapshot

DEFAULT_CACHE_SIZE = 128

CacheKey = Tuple[str, int]


class SnapshotCache:
    """A bounded, thread-safe LRU cache of snapshots keyed by (table id, version)."""

    _snapshots: "OrderedDict[CacheKey, TableSnapshot]"
    _lock: threading.Lock
    max_size: int

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE):
        if max_size < 1:
            raise ValueError(f"Cache size should be positive, got: {max_size}")
        self.max_size = max_size
        self._snapshots = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Return the number of cached snapshots."""
        with self._lock:
            return len(self._snapshots)

    def get(self, table_id: str, version: int) -> Optional[TableSnapshot]:
        with self._lock:
            snapshot = self._snapshots.get((table_id, version))
            if snapshot is not None:
                self._snapshots.move_to_end((table_id, version))
            return snapshot

    def put(self, table_id: str, snapshot: TableSnapshot) -> None:
        with self._lock:
            self._snapshots[(table_id, snapshot.version)] = snapshot
            self._snapshots.move_to_end((table_id, snapshot.version))
            while len(self._snapshots) > self.max_size:
                self._snapshots.popitem(last=False)

    def latest_at_or_before(self, table_id: str, version: Optional[int] = None) -> Optional[TableSnapshot]:
        """Find the closest cached snapshot to continue a replay from.

        Args:
            table_id: The table to look up.
            version: The upper bound, or None for the latest cached version.
        """
        with self._lock:
            candidates = [
                cached_version
                for cached_table_id, cached_version in self._snapshots
                if cached_table_id == table_id and (version is None or cached_version <= version)
            ]
            if not candidates:
                return None
            return self._snapshots[(table_id, max(candidates))]

    def invalidate(self, table_id: str) -> None:
        with self._lock:
            for key in [key for key in self._snapshots if key[0] == table_id]:
                del self._snapshots[key]
