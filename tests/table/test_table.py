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
import json
import os
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import pytest
from conftest import BASE_TIMESTAMP, COMMIT_INTERVAL, PART_A, PART_B, write_commit, write_parquet
from pytest_mock import MockFixture

from pydeltashare.exceptions import (
    IngestError,
    NoSuchTableError,
    ServerBusyError,
    VersionUnavailableError,
)
from pydeltashare.log.actions import AddFile, CommitInfo, Metadata
from pydeltashare.log.store import DELTA_LOG_DIR, DeltaLog, commit_file_name
from pydeltashare.table import MAX_PREVIEW_LIMIT, Table, parse_timestamp
from pydeltashare.table.cache import SnapshotCache
from pydeltashare.table.changes import ChangeType


@pytest.fixture
def table(delta_table: str) -> Table:
    return Table(identifier="customers", location=delta_table, cache=SnapshotCache())


def test_current_version(table: Table) -> None:
    assert table.current_version() == 3
    assert table.current_version(BASE_TIMESTAMP + COMMIT_INTERVAL) == 1


def test_current_version_from_iso_timestamp(table: Table) -> None:
    # BASE_TIMESTAMP is 2023-11-14T22:13:20Z, version 2 is committed two minutes later
    assert table.current_version("2023-11-14T22:15:30Z") == 2
    assert table.current_version("2023-11-14T22:15:30+00:00") == 2


def test_snapshot_versions(table: Table) -> None:
    assert [add.path for add in table.snapshot().active_files()] == [PART_B]
    assert [add.path for add in table.snapshot(2).active_files()] == [PART_A, PART_B]
    assert table.snapshot(0).active_files() == []


def test_snapshot_is_cached(table: Table, mocker: MockFixture) -> None:
    first = table.snapshot(2)
    spy = mocker.patch("pydeltashare.table.compute_snapshot")
    assert table.snapshot(2) is first
    spy.assert_not_called()


def test_snapshot_continues_from_cached_checkpoint(table: Table, mocker: MockFixture) -> None:
    expected = Table(identifier="other", location=table.location).snapshot(3)
    table.snapshot(1)

    entries = mocker.spy(DeltaLog, "entries")
    assert table.snapshot(3) == expected
    assert entries.call_args.kwargs == {"start_version": 2, "end_version": 3}


def test_cache_miss_is_correct(table: Table) -> None:
    cached = table.snapshot(3)
    table.cache.invalidate(table.identifier)
    assert table.snapshot(3) == cached


def test_new_commits_are_picked_up(table: Table) -> None:
    assert table.snapshot().version == 3
    write_commit(table.location, 4, [CommitInfo(timestamp=BASE_TIMESTAMP), AddFile(path=PART_A, size=1)])
    snapshot = table.snapshot()
    assert snapshot.version == 4
    assert sorted(snapshot.files) == [PART_A, PART_B]


def test_version_unavailable(table: Table) -> None:
    with pytest.raises(VersionUnavailableError):
        table.snapshot(10)


def test_negative_version(table: Table) -> None:
    with pytest.raises(VersionUnavailableError):
        table.snapshot(-1)


def test_version_older_than_retained_log(table: Table) -> None:
    for version in (0, 1):
        os.remove(os.path.join(table.location, DELTA_LOG_DIR, commit_file_name(version)))

    with pytest.raises(VersionUnavailableError):
        table.snapshot(0)
    with pytest.raises(VersionUnavailableError):
        table.snapshot(1)


def test_no_such_table(tmp_path: Any) -> None:
    with pytest.raises(NoSuchTableError):
        Table(identifier="missing", location=str(tmp_path)).snapshot()


def test_replay_timeout(delta_table: str) -> None:
    table = Table(identifier="customers", location=delta_table, replay_timeout=-1)
    with pytest.raises(ServerBusyError):
        table.snapshot()


def test_file_url(table: Table) -> None:
    assert table.file_url(AddFile(path=PART_B)) == f"{table.location}/{PART_B}"


def test_preview(table: Table) -> None:
    preview = table.preview(version=2, limit=4)
    assert [column.name for column in preview.columns] == ["id", "name"]
    assert [row["id"] for row in preview.rows] == [1, 2, 3, 4]
    assert preview.total_rows == 5
    assert preview.has_more


def test_preview_offset(table: Table) -> None:
    preview = table.preview(version=2, limit=10, offset=2)
    assert [row["id"] for row in preview.rows] == [3, 4, 5]
    assert preview.rows[-1] == {"id": 5, "name": None}
    assert not preview.has_more


def test_preview_latest(table: Table) -> None:
    preview = table.preview()
    assert [row["id"] for row in preview.rows] == [4, 5]
    assert preview.total_rows == 2


def test_preview_reads_only_the_page(table: Table, mocker: MockFixture) -> None:
    read_file = mocker.spy(Table, "_read_file")
    preview = table.preview(version=2, limit=2, offset=3)

    assert [row["id"] for row in preview.rows] == [4, 5]
    assert preview.total_rows == 5
    assert not preview.has_more
    assert [call.args[1:] for call in read_file.call_args_list] == [(f"{table.location}/{PART_B}", 2, 0)]


def test_preview_offset_beyond_rows(table: Table, mocker: MockFixture) -> None:
    read_file = mocker.spy(Table, "_read_file")
    preview = table.preview(version=2, offset=100)

    assert preview.rows == []
    assert preview.total_rows == 5
    read_file.assert_not_called()


def test_preview_limit_is_capped(tmp_path: Path, table_metadata: Metadata) -> None:
    location = str(tmp_path)
    num_rows = MAX_PREVIEW_LIMIT + 5
    size = write_parquet(os.path.join(location, PART_A), {"id": list(range(num_rows)), "name": ["row"] * num_rows})
    write_commit(location, 0, [table_metadata, AddFile(path=PART_A, size=size)])

    preview = Table(identifier="large", location=location).preview(limit=MAX_PREVIEW_LIMIT * 5)
    assert len(preview.rows) == MAX_PREVIEW_LIMIT
    assert preview.total_rows == num_rows
    assert preview.has_more


def test_preview_json_data_file(table: Table) -> None:
    with open(os.path.join(table.location, "extra.json"), "w", encoding="utf-8") as f:
        json.dump([{"id": 6, "name": "zeta"}], f)
    write_commit(table.location, 4, [AddFile(path="extra.json", size=1)])

    preview = table.preview()
    assert [row["id"] for row in preview.rows] == [6, 4, 5]
    assert preview.total_rows == 3


def test_preview_missing_data_file(table: Table) -> None:
    os.remove(os.path.join(table.location, PART_B))
    with pytest.raises(IngestError) as exc_info:
        table.preview()
    assert exc_info.value.path == f"{table.location}/{PART_B}"


def test_preview_read_timeout(delta_table: str, mocker: MockFixture) -> None:
    table = Table(identifier="customers", location=delta_table, read_timeout=0.01)
    never_done: Future = Future()
    mocker.patch("pydeltashare.table.ExecutorFactory.get_or_create").return_value.submit.return_value = never_done

    with pytest.raises(ServerBusyError, match="did not finish in time"):
        table.preview()
    assert never_done.cancelled()


def test_changes(table: Table) -> None:
    changes = table.changes(starting_version=1)
    assert [(change.version, change.change_type, change.path) for change in changes.actions] == [
        (1, ChangeType.ADD, PART_A),
        (2, ChangeType.ADD, PART_B),
        (3, ChangeType.REMOVE, PART_A),
    ]


def test_changes_by_timestamp(table: Table) -> None:
    changes = table.changes(starting_timestamp=BASE_TIMESTAMP + 2 * COMMIT_INTERVAL)
    assert {change.version for change in changes.actions} == {2, 3}


def test_changes_invalid_range(table: Table) -> None:
    with pytest.raises(ValueError):
        table.changes(starting_version=3, ending_version=1)
    with pytest.raises(VersionUnavailableError):
        table.changes(starting_version=9)


@pytest.mark.parametrize(
    "timestamp, expected",
    [
        (1_700_000_000_000, 1_700_000_000_000),
        ("1700000000000", 1_700_000_000_000),
        ("2023-11-14T22:13:20Z", 1_700_000_000_000),
        ("2023-11-14T22:13:20.500Z", 1_700_000_000_500),
        ("2023-11-14T23:13:20+01:00", 1_700_000_000_000),
        ("2023-11-14T22:13:20", 1_700_000_000_000),
    ],
)
def test_parse_timestamp(timestamp: Any, expected: int) -> None:
    assert parse_timestamp(timestamp) == expected


def test_parse_invalid_timestamp() -> None:
    with pytest.raises(ValueError, match="Invalid timestamp"):
        parse_timestamp("yesterday")


def test_repr(table: Table) -> None:
    assert repr(table) == f"Table(identifier=customers, location={table.location})"
