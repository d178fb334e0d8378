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
"""Reads the commit files of a Delta table.

A table keeps its history below `<location>/_delta_log/` as one file per
commit, named after the zero padded version: `00000000000000000000.json`,
`00000000000000000001.json` and so on. Checkpoint parquet files and other
bookkeeping files in the same directory are ignored.
"""
from __future__ import annotations

import logging
import re
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
)
from urllib.parse import unquote, urlparse

from pydeltashare.exceptions import NoSuchTableError
from pydeltashare.io import FileIO, join_location, load_file_io
from pydeltashare.log.actions import CommitInfo, LogEntry, parse_action

logger = logging.getLogger(__name__)

DELTA_LOG_DIR = "_delta_log"
COMMIT_FILE_PATTERN = re.compile(r"^(\d+)\.json$")


def commit_file_name(version: int) -> str:
    return f"{version:020d}.json"


class DeltaLog:
    location: str
    io: FileIO

    def __init__(self, location: str, io: Optional[FileIO] = None):
        self.location = location
        self.io = io or load_file_io(location=location)

    @property
    def log_location(self) -> str:
        return join_location(self.location, DELTA_LOG_DIR)

    def versions(self) -> List[int]:
        """Return the versions of all retained commits, in ascending order.

        Raises:
            NoSuchTableError: When the table has no commits at all.
        """
        versions = sorted(
            int(match.group(1))
            for match in (COMMIT_FILE_PATTERN.match(name) for name in self.io.list_dir(self.log_location))
            if match
        )
        if not versions:
            raise NoSuchTableError(f"No Delta log files found at {self.location}")
        return versions

    def latest_version(self) -> int:
        return self.versions()[-1]

    def read_version(self, version: int) -> List[LogEntry]:
        """Read all actions of a single commit.

        Lines that cannot be parsed are skipped with a warning, the rest of the
        commit is still applied.
        """
        input_file = self.io.new_input(join_location(self.log_location, commit_file_name(version)))
        with input_file.open() as stream:
            content = stream.read().decode("utf-8")

        entries = []
        for line_number, line in enumerate(content.splitlines(), start=1):
            try:
                action = parse_action(line)
            except ValueError as e:
                logger.warning("Failed to parse Delta log entry %d of version %d: %s", line_number, version, e)
                continue
            if action is not None:
                entries.append(LogEntry(version=version, action=action))
        return entries

    def entries(self, start_version: Optional[int] = None, end_version: Optional[int] = None) -> Iterator[LogEntry]:
        """Yield the actions of the retained commits within the (inclusive) version range."""
        for version in self.versions():
            if start_version is not None and version < start_version:
                continue
            if end_version is not None and version > end_version:
                break
            yield from self.read_version(version)

    def commit_timestamps(self) -> Dict[int, int]:
        """Map each version to the timestamp of its commitInfo, when it has one."""
        timestamps: Dict[int, int] = {}
        for entry in self.entries():
            if isinstance(entry.action, CommitInfo) and entry.action.timestamp is not None:
                timestamps.setdefault(entry.version, entry.action.timestamp)
        return timestamps

    def data_file_location(self, path: str) -> str:
        """Resolve the path of an add or remove action against the table root.

        Relative paths are URL encoded in the log, absolute URIs are used as is.
        """
        if urlparse(path).scheme:
            return path
        return join_location(self.location, unquote(path))
