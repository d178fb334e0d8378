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
"""Change data feed: the file level changes between two versions of a table."""
from __future__ import annotations

from enum import Enum
from itertools import groupby
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
)

from pydantic import Field

from pydeltashare.log.actions import (
    AddFile,
    CommitInfo,
    LogEntry,
    Metadata,
    RemoveFile,
)
from pydeltashare.typedef import DeltaBaseModel

CHANGE_DATA_DIR = "_change_data/"


class ChangeType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CDF = "cdf"

    def __repr__(self) -> str:
        """Return the string representation of the ChangeType class."""
        return f"ChangeType.{self.name}"


class FileChange(DeltaBaseModel):
    path: str = Field()
    size: int = Field(default=0)
    version: int = Field()
    timestamp: int = Field(default=0)
    change_type: ChangeType = Field(alias="changeType")
    partition_values: Optional[Dict[str, Optional[str]]] = Field(alias="partitionValues", default=None)
    stats: Optional[str] = Field(default=None)
    url: Optional[str] = Field(default=None)
    expiration_timestamp: Optional[int] = Field(alias="expirationTimestamp", default=None)


class ChangeSet(DeltaBaseModel):
    metadata: Optional[Metadata] = Field(default=None)
    actions: List[FileChange] = Field(default_factory=list)
    start_version: int = Field(alias="startVersion", default=0)
    end_version: int = Field(alias="endVersion", default=0)


def _commit_timestamp(entries: List[LogEntry]) -> Optional[int]:
    for entry in entries:
        if isinstance(entry.action, CommitInfo) and entry.action.timestamp is not None:
            return entry.action.timestamp
    return None


def _in_range(value: int, start: Optional[int], end: Optional[int]) -> bool:
    return (start is None or value >= start) and (end is None or value <= end)


def table_changes(
    entries: Iterable[LogEntry],
    starting_version: Optional[int] = None,
    ending_version: Optional[int] = None,
    starting_timestamp: Optional[int] = None,
    ending_timestamp: Optional[int] = None,
) -> ChangeSet:
    """Collect the add and remove actions committed within a range of the log.

    Version bounds take precedence over timestamp bounds; both are inclusive.
    Without bounds, every retained commit is included. Adds that point into the
    `_change_data/` directory are reported as change data files.
    """
    metadata: Optional[Metadata] = None
    actions: List[FileChange] = []
    versions: List[int] = []

    for version, commit in groupby(entries, key=lambda entry: entry.version):
        commit_entries = list(commit)
        commit_timestamp = _commit_timestamp(commit_entries)

        if starting_version is not None or ending_version is not None:
            if ending_version is not None and version > ending_version:
                break
            if not _in_range(version, starting_version, ending_version):
                continue
        elif starting_timestamp is not None or ending_timestamp is not None:
            if commit_timestamp is None:
                continue
            if ending_timestamp is not None and commit_timestamp > ending_timestamp:
                break
            if not _in_range(commit_timestamp, starting_timestamp, ending_timestamp):
                continue

        versions.append(version)
        for entry in commit_entries:
            action = entry.action
            if isinstance(action, Metadata):
                metadata = action
            elif isinstance(action, AddFile):
                actions.append(
                    FileChange(
                        path=action.path,
                        size=action.size,
                        version=version,
                        timestamp=action.modification_time or commit_timestamp or 0,
                        change_type=ChangeType.CDF if CHANGE_DATA_DIR in action.path else ChangeType.ADD,
                        partition_values=action.partition_values,
                        stats=action.stats,
                    )
                )
            elif isinstance(action, RemoveFile):
                actions.append(
                    FileChange(
                        path=action.path,
                        size=action.size or 0,
                        version=version,
                        timestamp=action.deletion_timestamp or commit_timestamp or 0,
                        change_type=ChangeType.REMOVE,
                        partition_values=action.partition_values,
                    )
                )

    return ChangeSet(
        metadata=metadata,
        actions=actions,
        start_version=versions[0] if versions else 0,
        end_version=versions[-1] if versions else 0,
    )
