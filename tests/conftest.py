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
# pylint:disable=redefined-outer-name
"""This contains global pytest configurations.

Fixtures contained in this file will be automatically used if provided as an argument
to any pytest function.

The `delta_table` fixture writes a small Delta table to a temporary directory:

    version 0: protocol, metaData
    version 1: add part-a.parquet (ids 1, 2, 3)
    version 2: add part-b.parquet (ids 4, 5)
    version 3: remove part-a.parquet
"""
import os
from pathlib import Path
from typing import Dict, List

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from pydeltashare.auth import Principal, RecipientAuthenticator
from pydeltashare.auth.registry import InMemoryRecipientRegistry
from pydeltashare.log.actions import (
    Action,
    AddFile,
    CommitInfo,
    Metadata,
    Protocol,
    RemoveFile,
    to_ndjson,
)
from pydeltashare.log.store import DELTA_LOG_DIR, commit_file_name
from pydeltashare.schema import INTEGER, STRING, Column, schema_string

TABLE_ID = "3f8a1a0e-6b0c-4b8e-9a1f-1d2f4b5c6d7e"
TEST_TOKEN = "dss_3b0e7e3c9a"
BASE_TIMESTAMP = 1_700_000_000_000
COMMIT_INTERVAL = 60_000

TEST_SCHEMA = [Column(name="id", type=INTEGER, nullable=False), Column(name="name", type=STRING)]
PART_A = "part-a.parquet"
PART_B = "part-b.parquet"


def write_commit(location: str, version: int, actions: List[Action]) -> None:
    log_dir = os.path.join(location, DELTA_LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)
    with open(os.path.join(log_dir, commit_file_name(version)), "w", encoding="utf-8") as f:
        f.write(to_ndjson(actions))


def write_parquet(path: str, data: Dict[str, list]) -> int:
    table = pa.table(
        {key: pa.array(values, type=pa.int64() if key == "id" else pa.string()) for key, values in data.items()}
    )
    pq.write_table(table, path)
    return os.path.getsize(path)


def commit_info(version: int, operation: str = "WRITE") -> CommitInfo:
    return CommitInfo(timestamp=BASE_TIMESTAMP + version * COMMIT_INTERVAL, operation=operation)


@pytest.fixture(scope="session")
def table_metadata() -> Metadata:
    return Metadata(
        id=TABLE_ID,
        name="customers",
        schema_string=schema_string(TEST_SCHEMA),
        partition_columns=[],
        created_time=BASE_TIMESTAMP,
    )


@pytest.fixture
def delta_table(tmp_path: Path, table_metadata: Metadata) -> str:
    location = str(tmp_path)
    size_a = write_parquet(os.path.join(location, PART_A), {"id": [1, 2, 3], "name": ["alpha", "beta", "gamma"]})
    size_b = write_parquet(os.path.join(location, PART_B), {"id": [4, 5], "name": ["delta", None]})

    write_commit(
        location,
        0,
        [commit_info(0, "CREATE TABLE"), Protocol(min_reader_version=1, min_writer_version=2), table_metadata],
    )
    write_commit(
        location,
        1,
        [
            commit_info(1),
            AddFile(path=PART_A, size=size_a, modification_time=BASE_TIMESTAMP + COMMIT_INTERVAL, stats='{"numRecords":3}'),
        ],
    )
    write_commit(
        location,
        2,
        [
            commit_info(2),
            AddFile(path=PART_B, size=size_b, modification_time=BASE_TIMESTAMP + 2 * COMMIT_INTERVAL, stats='{"numRecords":2}'),
        ],
    )
    write_commit(
        location,
        3,
        [commit_info(3, "DELETE"), RemoveFile(path=PART_A, deletion_timestamp=BASE_TIMESTAMP + 3 * COMMIT_INTERVAL)],
    )
    return location


@pytest.fixture
def principal() -> Principal:
    return Principal(id="recipient-1", name="Acme Analytics", roles=["viewer"])


@pytest.fixture
def registry(principal: Principal) -> InMemoryRecipientRegistry:
    recipient_registry = InMemoryRecipientRegistry()
    recipient_registry.register(TEST_TOKEN, principal)
    return recipient_registry


@pytest.fixture
def authenticator(registry: InMemoryRecipientRegistry) -> RecipientAuthenticator:
    return RecipientAuthenticator(registry)


@pytest.fixture(scope="session")
def empty_home_dir_path(tmp_path_factory: pytest.TempPathFactory) -> str:
    home_path = str(tmp_path_factory.mktemp("home"))
    return home_path
