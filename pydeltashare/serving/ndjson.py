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
"""Newline delimited JSON responses of the sharing protocol.

A query response starts with a protocol line and a metaData line, followed by
one line per data file:

    {"protocol": {"minReaderVersion": 1}}
    {"metaData": {"id": "...", "schemaString": "...", ...}}
    {"file": {"url": "...", "id": "...", "size": 1024}}
"""
from __future__ import annotations

import json
from typing import (
    Dict,
    Iterable,
    Iterator,
    Optional,
)

from pydantic import Field

from pydeltashare.log.actions import METADATA, PROTOCOL, AddFile, Metadata, Protocol
from pydeltashare.typedef import DeltaBaseModel

NDJSON_CONTENT_TYPE = "application/x-ndjson"
NDJSON_CONTENT_TYPES = (NDJSON_CONTENT_TYPE, "application/json-seq")
FILE = "file"


class FileAction(DeltaBaseModel):
    url: str = Field()
    id: str = Field()
    size: int = Field()
    partition_values: Dict[str, Optional[str]] = Field(alias="partitionValues", default_factory=dict)
    stats: Optional[str] = Field(default=None)
    version: Optional[int] = Field(default=None)
    timestamp: Optional[int] = Field(default=None)
    expiration_timestamp: Optional[int] = Field(alias="expirationTimestamp", default=None)

    @staticmethod
    def from_add(
        add: AddFile, url: str, version: Optional[int] = None, expiration_timestamp: Optional[int] = None
    ) -> FileAction:
        return FileAction(
            url=url,
            id=add.path,
            size=add.size,
            partition_values=add.partition_values,
            stats=add.stats,
            version=version,
            timestamp=add.modification_time or None,
            expiration_timestamp=expiration_timestamp,
        )


def wants_ndjson(accept: Optional[str]) -> bool:
    """Whether the Accept header of a request asks for newline delimited JSON."""
    return accept is not None and any(content_type in accept for content_type in NDJSON_CONTENT_TYPES)


def _line(key: str, model: DeltaBaseModel) -> str:
    return json.dumps({key: model.model_dump(mode="json")}, separators=(",", ":")) + "\n"


def query_response_lines(protocol: Protocol, metadata: Metadata, files: Iterable[FileAction]) -> Iterator[str]:
    yield _line(PROTOCOL, protocol)
    yield _line(METADATA, metadata)
    for file in files:
        yield _line(FILE, file)
