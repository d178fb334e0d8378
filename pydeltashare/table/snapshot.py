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
"""Replays the transaction log of a table into a snapshot.

A snapshot is never stored, it is derived by folding the ordered actions of
the log: an add makes a path active, a remove drops it again, and the latest
metaData and protocol actions win. The fold can start from a previously
computed snapshot (a checkpoint) and only consume the tail of the log; the
result is the same as folding from version zero.
"""
from __future__ import annotations

import logging
import time
from functools import singledispatch
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
)

from pydantic import Field

from pydeltashare.exceptions import (
    ServerBusyError,
    TableUninitializedError,
    UnsupportedProtocolError,
    VersionUnavailableError,
)
from pydeltashare.log.actions import (
    Action,
    AddFile,
    CommitInfo,
    LogEntry,
    Metadata,
    Protocol,
    RemoveFile,
)
from pydeltashare.schema import Column
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

MAX_READER_VERSION = 1
DEFAULT_PROTOCOL = Protocol(min_reader_version=1)

# Checking the clock on every action is wasteful for long logs
DEADLINE_CHECK_INTERVAL = 1024


class TableStats(DeltaBaseModel):
    num_records: int = Field(alias="numRecords", default=0)
    num_files: int = Field(alias="numFiles", default=0)
    total_size: int = Field(alias="totalSize", default=0)


class TableSnapshot(DeltaBaseModel):
    version: int = Field()
    """The table version this snapshot reflects."""

    metadata: Metadata = Field()
    protocol: Optional[Protocol] = Field(default=None)

    files: Dict[str, AddFile] = Field(default_factory=dict)
    """The active files, keyed by path."""

    commit_infos: Optional[Dict[int, CommitInfo]] = Field(alias="commitInfos", default=None)
    """Commit information per version, None unless collected on request."""

    @property
    def reader_protocol(self) -> Protocol:
        return self.protocol or DEFAULT_PROTOCOL

    def active_files(self) -> List[AddFile]:
        """Return the active files ordered by path, which is stable for a given snapshot."""
        return [self.files[path] for path in sorted(self.files)]

    def columns(self) -> List[Column]:
        return self.metadata.columns()

    def stats(self) -> TableStats:
        num_records = 0
        total_size = 0
        for add in self.files.values():
            total_size += add.size
            if (stats := add.parsed_stats()) and stats.num_records:
                num_records += stats.num_records
        return TableStats(num_records=num_records, num_files=len(self.files), total_size=total_size)

    def __str__(self) -> str:
        """Return the string representation of the TableSnapshot class."""
        return f"TableSnapshot(version={self.version}, id={self.metadata.id}, files={len(self.files)})"


class _ReplayState:
    files: Dict[str, AddFile]
    metadata: Optional[Metadata]
    protocol: Optional[Protocol]
    commit_infos: Dict[int, CommitInfo]
    include_commit_info: bool

    def __init__(self, checkpoint: Optional[TableSnapshot], include_commit_info: bool):
        self.files = dict(checkpoint.files) if checkpoint else {}
        self.metadata = checkpoint.metadata if checkpoint else None
        self.protocol = checkpoint.protocol if checkpoint else None
        if include_commit_info and checkpoint is not None and checkpoint.commit_infos is None:
            raise ValueError(f"Checkpoint at version {checkpoint.version} was replayed without commit info")
        self.commit_infos = dict(checkpoint.commit_infos or {}) if checkpoint and include_commit_info else {}
        self.include_commit_info = include_commit_info


@singledispatch
def _apply(action: Action, state: _ReplayState, version: int) -> None:
    raise TypeError(f"Unknown action: {action}")


@_apply.register(AddFile)
def _(action: AddFile, state: _ReplayState, version: int) -> None:
    state.files[action.path] = action


@_apply.register(RemoveFile)
def _(action: RemoveFile, state: _ReplayState, version: int) -> None:
    # The add may predate the replayed window, so an unknown path is fine
    state.files.pop(action.path, None)


@_apply.register(Metadata)
def _(action: Metadata, state: _ReplayState, version: int) -> None:
    state.metadata = action


@_apply.register(Protocol)
def _(action: Protocol, state: _ReplayState, version: int) -> None:
    state.protocol = action


@_apply.register(CommitInfo)
def _(action: CommitInfo, state: _ReplayState, version: int) -> None:
    if state.include_commit_info:
        state.commit_infos.setdefault(version, action)


def compute_snapshot(
    entries: Iterable[LogEntry],
    target_version: Optional[int] = None,
    checkpoint: Optional[TableSnapshot] = None,
    include_commit_info: bool = False,
    max_reader_version: int = MAX_READER_VERSION,
    deadline: Optional[float] = None,
) -> TableSnapshot:
    """Fold the log entries into the snapshot of the table at a version.

    Args:
        entries: The log entries in ascending version order. When a checkpoint is given,
            entries at or below the version of the checkpoint are skipped.
        target_version: The version to reconstruct, defaults to the latest version.
        checkpoint: A previously computed snapshot to continue from.
        include_commit_info: Keep the commitInfo actions on the snapshot. A checkpoint continued from
            must have kept them as well.
        max_reader_version: The highest reader protocol version that can be served.
        deadline: A `time.monotonic()` value after which the fold is abandoned.

    Returns:
        TableSnapshot: The active files, metadata and protocol at the version.

    Raises:
        VersionUnavailableError: If the target version is not covered by the checkpoint and the entries.
        TableUninitializedError: If no metadata was committed at or before the target version.
        UnsupportedProtocolError: If the table requires a newer reader than supported.
        ServerBusyError: If the deadline passed before the fold completed.
        ValueError: If the entries are out of order, or commit info is requested on top of a
            checkpoint that did not keep it.
    """
    if target_version is not None and target_version < 0:
        raise VersionUnavailableError(f"Version {target_version} is not available, versions start at 0")
    if checkpoint is not None and target_version is not None and target_version < checkpoint.version:
        raise VersionUnavailableError(
            f"Version {target_version} is older than the checkpoint at version {checkpoint.version}"
        )

    state = _ReplayState(checkpoint, include_commit_info)
    oldest_version: Optional[int] = checkpoint.version if checkpoint else None
    latest_version: Optional[int] = checkpoint.version if checkpoint else None
    previous_version = -1

    for index, entry in enumerate(entries):
        if entry.version < previous_version:
            raise ValueError(f"Log entries out of order: version {entry.version} after {previous_version}")
        previous_version = entry.version

        if deadline is not None and index % DEADLINE_CHECK_INTERVAL == 0 and time.monotonic() > deadline:
            raise ServerBusyError(f"Log replay did not finish in time, stopped at version {entry.version}")

        if checkpoint is not None and entry.version <= checkpoint.version:
            continue
        if oldest_version is None:
            oldest_version = entry.version
        latest_version = entry.version
        if target_version is not None and entry.version > target_version:
            break

        _apply(entry.action, state, entry.version)

    if latest_version is None or oldest_version is None:
        if target_version is not None:
            raise VersionUnavailableError(f"Version {target_version} is not available, no retained entries cover it")
        raise TableUninitializedError("No entries found in the Delta log")

    if target_version is not None:
        if target_version < oldest_version:
            raise VersionUnavailableError(
                f"Version {target_version} is not available, the oldest retained version is {oldest_version}"
            )
        if target_version > latest_version:
            raise VersionUnavailableError(
                f"Version {target_version} is not available, the latest version is {latest_version}"
            )
        version = target_version
    else:
        version = latest_version

    if state.metadata is None:
        raise TableUninitializedError(f"No metadata found in the Delta log at version {version}")

    if state.protocol is not None and state.protocol.min_reader_version > max_reader_version:
        raise UnsupportedProtocolError(
            f"Table requires reader version {state.protocol.min_reader_version}, "
            f"but only up to {max_reader_version} is supported"
        )

    logger.debug("Replayed %d active files at version %d", len(state.files), version)
    return TableSnapshot(
        version=version,
        metadata=state.metadata,
        protocol=state.protocol,
        files=state.files,
        commit_infos=state.commit_infos if include_commit_info else None,
    )


def version_as_of(entries: Iterable[LogEntry], timestamp_ms: int) -> int:
    """Resolve the latest version committed at or before a point in time.

    A version is committed at the timestamp of its commitInfo action; versions
    without one are assumed to follow their predecessor.

    Raises:
        VersionUnavailableError: If the first retained commit is younger than the timestamp.
    """
    resolved: Optional[int] = None
    current: Optional[int] = None
    committed_after = False
    for entry in entries:
        if entry.version != current:
            if current is not None and not committed_after:
                resolved = current
            current = entry.version
            committed_after = False
        if isinstance(entry.action, CommitInfo) and entry.action.timestamp is not None:
            committed_after = committed_after or entry.action.timestamp > timestamp_ms
        if committed_after:
            # Versions are committed in order, nothing later can qualify
            break
    if current is not None and not committed_after:
        resolved = current
    if resolved is None:
        raise VersionUnavailableError(f"No version of the table was committed at or before {timestamp_ms}")
    return resolved
