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
"""The actions that make up a Delta transaction log.

Every commit file is newline delimited JSON, and each line wraps exactly one
action under its kind: `add`, `remove`, `metaData`, `protocol` or `commitInfo`.
Lines carrying other kinds (`txn`, `cdc`, `domainMetadata`, ...) do not change
the file set or the table metadata and are skipped.
"""
from __future__ import annotations

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Union,
)

from pydantic import Field, model_validator

from pydeltashare.schema import Column, parse_schema_string
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

ADD = "add"
REMOVE = "remove"
METADATA = "metaData"
PROTOCOL = "protocol"
COMMIT_INFO = "commitInfo"

ACTION_KEYS = (ADD, REMOVE, METADATA, PROTOCOL, COMMIT_INFO)


class FileStatistics(DeltaBaseModel):
    num_records: Optional[int] = Field(alias="numRecords", default=None)
    min_values: Optional[Dict[str, Any]] = Field(alias="minValues", default=None)
    max_values: Optional[Dict[str, Any]] = Field(alias="maxValues", default=None)
    null_count: Optional[Dict[str, Any]] = Field(alias="nullCount", default=None)


class AddFile(DeltaBaseModel):
    path: str = Field()
    """Path of the data file, relative to the table root."""

    partition_values: Dict[str, Optional[str]] = Field(alias="partitionValues", default_factory=dict)
    size: int = Field(default=0)
    modification_time: int = Field(alias="modificationTime", default=0)
    data_change: bool = Field(alias="dataChange", default=True)

    stats: Optional[str] = Field(default=None)
    """JSON encoded column statistics, as written by the committer."""

    tags: Optional[Dict[str, str]] = Field(default=None)

    def parsed_stats(self) -> Optional[FileStatistics]:
        if not self.stats:
            return None
        try:
            return FileStatistics.model_validate_json(self.stats)
        except ValueError:
            logger.debug("Ignoring unparsable statistics for %s", self.path)
            return None


class RemoveFile(DeltaBaseModel):
    path: str = Field()
    deletion_timestamp: Optional[int] = Field(alias="deletionTimestamp", default=None)
    data_change: bool = Field(alias="dataChange", default=True)
    extended_file_metadata: Optional[bool] = Field(alias="extendedFileMetadata", default=None)
    partition_values: Optional[Dict[str, Optional[str]]] = Field(alias="partitionValues", default=None)
    size: Optional[int] = Field(default=None)


class Format(DeltaBaseModel):
    provider: str = Field(default="parquet")
    options: Dict[str, str] = Field(default_factory=dict)


class Metadata(DeltaBaseModel):
    id: str = Field()
    name: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None)
    format: Format = Field(default_factory=Format)
    schema_string: str = Field(alias="schemaString")
    partition_columns: List[str] = Field(alias="partitionColumns", default_factory=list)
    configuration: Dict[str, str] = Field(default_factory=dict)
    created_time: Optional[int] = Field(alias="createdTime", default=None)

    def columns(self) -> List[Column]:
        return parse_schema_string(self.schema_string)


class Protocol(DeltaBaseModel):
    min_reader_version: int = Field(alias="minReaderVersion")
    min_writer_version: Optional[int] = Field(alias="minWriterVersion", default=None)
    reader_features: Optional[List[str]] = Field(alias="readerFeatures", default=None)
    writer_features: Optional[List[str]] = Field(alias="writerFeatures", default=None)


class CommitInfo(DeltaBaseModel):
    timestamp: Optional[int] = Field(default=None)
    operation: Optional[str] = Field(default=None)
    operation_parameters: Dict[str, Any] = Field(alias="operationParameters", default_factory=dict)
    read_version: Optional[int] = Field(alias="readVersion", default=None)
    isolation_level: Optional[str] = Field(alias="isolationLevel", default=None)
    is_blind_append: Optional[bool] = Field(alias="isBlindAppend", default=None)
    operation_metrics: Optional[Dict[str, Any]] = Field(alias="operationMetrics", default=None)
    engine_info: Optional[str] = Field(alias="engineInfo", default=None)


Action = Union[AddFile, RemoveFile, Metadata, Protocol, CommitInfo]


class SingleAction(DeltaBaseModel):
    """One line of a commit file, holding at most one known action."""

    add: Optional[AddFile] = Field(default=None)
    remove: Optional[RemoveFile] = Field(default=None)
    metadata: Optional[Metadata] = Field(alias="metaData", default=None)
    protocol: Optional[Protocol] = Field(default=None)
    commit_info: Optional[CommitInfo] = Field(alias="commitInfo", default=None)

    @model_validator(mode="after")
    def check_single_action(self) -> SingleAction:
        present = [a for a in (self.add, self.remove, self.metadata, self.protocol, self.commit_info) if a is not None]
        if len(present) > 1:
            raise ValueError(f"Expected at most one action per line, got {len(present)}")
        return self

    @property
    def action(self) -> Optional[Action]:
        for action in (self.add, self.remove, self.metadata, self.protocol, self.commit_info):
            if action is not None:
                return action
        return None

    @staticmethod
    def wrap(action: Action) -> SingleAction:
        if isinstance(action, AddFile):
            return SingleAction(add=action)
        elif isinstance(action, RemoveFile):
            return SingleAction(remove=action)
        elif isinstance(action, Metadata):
            return SingleAction(metadata=action)
        elif isinstance(action, Protocol):
            return SingleAction(protocol=action)
        elif isinstance(action, CommitInfo):
            return SingleAction(commit_info=action)
        raise TypeError(f"Unknown action: {action}")


class LogEntry(DeltaBaseModel):
    """An action tagged with the version of the commit it belongs to."""

    version: int = Field()
    action: Action = Field()

    def __str__(self) -> str:
        """Return the string representation of the LogEntry class."""
        return f"{self.version}: {type(self.action).__name__}"


def parse_action(line: str) -> Optional[Action]:
    """Parse a single line of a commit file.

    Args:
        line: One line of newline delimited JSON.

    Returns:
        The action, or None for blank lines and lines without a known action.

    Raises:
        ValueError: When the line is not a JSON object, or wraps more than one known action.
    """
    if not line.strip():
        return None
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got: {line}")
    if not any(key in data for key in ACTION_KEYS):
        return None
    return SingleAction.model_validate({key: value for key, value in data.items() if key in ACTION_KEYS}).action


def to_ndjson(actions: List[Action]) -> str:
    """Serialize actions as the lines of a commit file."""
    return "".join(SingleAction.wrap(action).model_dump_json() + "\n" for action in actions)
