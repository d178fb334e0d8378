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
import json

import pytest
from conftest import TABLE_ID

from pydeltashare.log.actions import AddFile, Metadata, Protocol
from pydeltashare.serving.ndjson import FileAction, query_response_lines, wants_ndjson


def test_file_action_from_add() -> None:
    add = AddFile(path="part-0.parquet", size=1024, modification_time=1_700_000_000_000, partition_values={"region": "eu"})
    action = FileAction.from_add(add, url="s3://bucket/customers/part-0.parquet")
    assert action.model_dump() == {
        "url": "s3://bucket/customers/part-0.parquet",
        "id": "part-0.parquet",
        "size": 1024,
        "partitionValues": {"region": "eu"},
        "timestamp": 1_700_000_000_000,
    }


def test_file_action_without_modification_time() -> None:
    action = FileAction.from_add(AddFile(path="part-0.parquet"), url="/data/part-0.parquet", version=4)
    assert action.timestamp is None
    assert action.version == 4


def test_file_action_expiration() -> None:
    action = FileAction.from_add(AddFile(path="part-0.parquet"), url="https://sharing.example.com/files", expiration_timestamp=42)
    assert action.model_dump()["expirationTimestamp"] == 42


def test_query_response_lines(table_metadata: Metadata) -> None:
    files = [
        FileAction(url="/data/part-a.parquet", id="part-a.parquet", size=10),
        FileAction(url="/data/part-b.parquet", id="part-b.parquet", size=20),
    ]
    lines = list(query_response_lines(Protocol(min_reader_version=1), table_metadata, files))

    assert len(lines) == 4
    assert all(line.endswith("\n") and line.count("\n") == 1 for line in lines)
    assert lines[0] == '{"protocol":{"minReaderVersion":1}}\n'

    parsed = [json.loads(line) for line in lines]
    assert parsed[1]["metaData"]["id"] == TABLE_ID
    assert [line["file"]["id"] for line in parsed[2:]] == ["part-a.parquet", "part-b.parquet"]


def test_query_response_lines_without_files(table_metadata: Metadata) -> None:
    lines = list(query_response_lines(Protocol(min_reader_version=1), table_metadata, []))
    assert [next(iter(json.loads(line))) for line in lines] == ["protocol", "metaData"]


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("application/x-ndjson", True),
        ("application/json-seq, */*", True),
        ("application/json", False),
        ("*/*", False),
        (None, False),
    ],
)
def test_wants_ndjson(accept: str, expected: bool) -> None:
    assert wants_ndjson(accept) is expected
