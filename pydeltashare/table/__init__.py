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
from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from pydantic import Field

from pydeltashare.exceptions import ServerBusyError, VersionUnavailableError
from pydeltashare.ingest.parquet import ReadResult, count_parquet_rows, read_json_file, read_parquet_file
from pydeltashare.io import FileIO, load_file_io
from pydeltashare.log.actions import AddFile
from pydeltashare.log.store import DeltaLog
from pydeltashare.schema import Column
from pydeltashare.table.cache import SnapshotCache
from pydeltashare.table.changes import ChangeSet, table_changes
from pydeltashare.table.snapshot import TableSnapshot, compute_snapshot, version_as_of
from pydeltashare.typedef import DeltaBaseModel
from pydeltashare.utils.concurrent import ExecutorFactory

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_LIMIT = 100
MAX_PREVIEW_LIMIT = 10_000
JSON_SUFFIX = ".json"

Timestamp = Union[str, int]

T = TypeVar("T")


class TablePreview(DeltaBaseModel):
    columns: List[Column] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_rows: int = Field(alias="totalRows", default=0)
    has_more: bool = Field(alias="hasMore", default=False)


def parse_timestamp(timestamp: Timestamp) -> int:
    """Convert an ISO-8601 timestamp, or epoch milliseconds, into epoch milliseconds.

    Timestamps without a zone are taken to be in UTC.

    Raises:
        ValueError: If the timestamp cannot be parsed.
    """
    if isinstance(timestamp, int):
        return timestamp
    value = timestamp.strip()
    if value.isdigit():
        return int(value)
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp, expected ISO-8601: {timestamp}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


class Table:
    """A Delta table, read through its transaction log.

    Snapshots are memoized per table and version. On a miss the log is
    replayed from the closest cached snapshot at or before the requested
    version, or from the start of the retained log.
    """

    identifier: str
    location: str
    io: FileIO
    cache: SnapshotCache
    replay_timeout: Optional[float]
    read_timeout: Optional[float]

    def __init__(
        self,
        identifier: str,
        location: str,
        io: Optional[FileIO] = None,
        cache: Optional[SnapshotCache] = None,
        replay_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
    ) -> None:
        self.identifier = identifier
        self.location = location
        self.io = io or load_file_io(location=location)
        self.cache = cache if cache is not None else SnapshotCache()
        self.replay_timeout = replay_timeout
        self.read_timeout = read_timeout

    @property
    def log(self) -> DeltaLog:
        return DeltaLog(self.location, io=self.io)

    def current_version(self, timestamp: Optional[Timestamp] = None) -> int:
        """Return the latest version, or the version that was current at a point in time."""
        if timestamp is not None:
            return version_as_of(self.log.entries(), parse_timestamp(timestamp))
        return self.log.latest_version()

    def snapshot(self, version: Optional[int] = None, timestamp: Optional[Timestamp] = None) -> TableSnapshot:
        """Return the snapshot at a version, at a point in time, or the latest one.

        Raises:
            NoSuchTableError: If the location holds no Delta log.
            VersionUnavailableError: If the version is not part of the retained log.
            TableUninitializedError: If no metadata was committed at or before the version.
            UnsupportedProtocolError: If the table requires a newer reader.
            ServerBusyError: If replaying the log takes longer than the replay timeout.
        """
        target_version = version if version is not None else self.current_version(timestamp)
        if (snapshot := self.cache.get(self.identifier, target_version)) is not None:
            return snapshot

        checkpoint = self.cache.latest_at_or_before(self.identifier, target_version)
        start_version = checkpoint.version + 1 if checkpoint is not None else None
        deadline = time.monotonic() + self.replay_timeout if self.replay_timeout is not None else None
        logger.debug("Replaying %s up to version %d, starting at %s", self.identifier, target_version, start_version or 0)
        snapshot = compute_snapshot(
            self.log.entries(start_version=start_version, end_version=target_version),
            target_version=target_version,
            checkpoint=checkpoint,
            deadline=deadline,
        )
        self.cache.put(self.identifier, snapshot)
        return snapshot

    def file_url(self, add: AddFile) -> str:
        return self.log.data_file_location(add.path)

    def _count_rows(self, location: str) -> int:
        input_file = self.io.new_input(location)
        if location.endswith(JSON_SUFFIX):
            return read_json_file(input_file, limit=0).total_row_count
        return count_parquet_rows(input_file)

    def _read_file(self, location: str, limit: int, offset: int = 0) -> ReadResult:
        input_file = self.io.new_input(location)
        if location.endswith(JSON_SUFFIX):
            return read_json_file(input_file, limit=limit, offset=offset)
        return read_parquet_file(input_file, limit=limit, offset=offset)

    def _results(self, locations: List[str], futures: List[Future[T]]) -> List[T]:
        results: List[T] = []
        for location, future in zip(locations, futures):
            try:
                results.append(future.result(timeout=self.read_timeout))
            except FutureTimeoutError as e:
                for pending in futures:
                    pending.cancel()
                raise ServerBusyError(f"Reading {location} did not finish in time") from e
        return results

    def preview(
        self,
        version: Optional[int] = None,
        timestamp: Optional[Timestamp] = None,
        limit: int = DEFAULT_PREVIEW_LIMIT,
        offset: int = 0,
    ) -> TablePreview:
        """Read a page of rows across the active files of the snapshot.

        The limit is capped at `MAX_PREVIEW_LIMIT`. The rows of every file count
        toward the total, taken from the Parquet footers, and only the files that
        overlap the page are read, each for its own slice. Both passes run
        concurrently on the shared executor.

        Raises:
            IngestError: If a data file cannot be read.
            ServerBusyError: If reading a file takes longer than the read timeout.
        """
        limit = min(max(limit, 0), MAX_PREVIEW_LIMIT)
        offset = max(offset, 0)
        snapshot = self.snapshot(version, timestamp)
        end = offset + limit

        executor = ExecutorFactory.get_or_create()
        locations = [self.file_url(add) for add in snapshot.active_files()]
        counts = self._results(locations, [executor.submit(self._count_rows, location) for location in locations])
        total_rows = sum(counts)

        slices: List[Tuple[str, int, int]] = []
        file_start = 0
        for location, count in zip(locations, counts):
            file_end = file_start + count
            if file_start < end and file_end > offset:
                file_offset = max(offset - file_start, 0)
                slices.append((location, min(end, file_end) - file_start - file_offset, file_offset))
            file_start = file_end

        results = self._results(
            [location for location, _, _ in slices],
            [executor.submit(self._read_file, location, file_limit, file_offset) for location, file_limit, file_offset in slices],
        )
        rows: List[Dict[str, Any]] = [row for result in results for row in result.rows]

        return TablePreview(
            columns=snapshot.columns(),
            rows=rows,
            total_rows=total_rows,
            has_more=end < total_rows,
        )

    def changes(
        self,
        starting_version: Optional[int] = None,
        ending_version: Optional[int] = None,
        starting_timestamp: Optional[Timestamp] = None,
        ending_timestamp: Optional[Timestamp] = None,
    ) -> ChangeSet:
        """Return the file changes committed within a version or time range.

        Raises:
            VersionUnavailableError: If the starting version is outside of the retained log.
            ValueError: If the range is empty or a timestamp cannot be parsed.
        """
        if starting_version is not None and ending_version is not None and starting_version > ending_version:
            raise ValueError(f"Starting version {starting_version} is after ending version {ending_version}")

        log = self.log
        versions = log.versions()
        if starting_version is not None and not versions[0] <= starting_version <= versions[-1]:
            raise VersionUnavailableError(
                f"Version {starting_version} is not available, retained versions are {versions[0]} to {versions[-1]}"
            )

        return table_changes(
            log.entries(start_version=starting_version, end_version=ending_version),
            starting_version=starting_version,
            ending_version=ending_version,
            starting_timestamp=parse_timestamp(starting_timestamp) if starting_timestamp is not None else None,
            ending_timestamp=parse_timestamp(ending_timestamp) if ending_timestamp is not None else None,
        )

    def __repr__(self) -> str:
        """Return the string representation of the Table class."""
        return f"Table(identifier={self.identifier}, location={self.location})"
