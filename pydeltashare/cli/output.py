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
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table as RichTable
from rich.tree import Tree

from pydeltashare.log.actions import AddFile
from pydeltashare.table import TablePreview
from pydeltashare.table.changes import ChangeSet
from pydeltashare.table.snapshot import TableSnapshot


class Output(ABC):
    """Output interface for exporting"""

    @abstractmethod
    def exception(self, ex: Exception) -> None:
        ...

    @abstractmethod
    def version(self, version: int) -> None:
        ...

    @abstractmethod
    def describe_snapshot(self, snapshot: TableSnapshot) -> None:
        ...

    @abstractmethod
    def files(self, files: List[AddFile], next_page_token: Optional[str]) -> None:
        ...

    @abstractmethod
    def preview(self, preview: TablePreview) -> None:
        ...

    @abstractmethod
    def changes(self, changes: ChangeSet) -> None:
        ...


class ConsoleOutput(Output):
    """Writes to the console"""

    def __init__(self, **properties: Any):
        self.verbose = properties.get("verbose", False)

    @property
    def _table(self) -> RichTable:
        return RichTable.grid(padding=(0, 2))

    def exception(self, ex: Exception) -> None:
        if self.verbose:
            Console(stderr=True).print_exception()
        else:
            Console(stderr=True).print(ex)

    def version(self, version: int) -> None:
        Console().print(str(version))

    def describe_snapshot(self, snapshot: TableSnapshot) -> None:
        metadata = snapshot.metadata
        protocol = snapshot.reader_protocol
        stats = snapshot.stats()

        configuration = self._table
        for key, value in metadata.configuration.items():
            configuration.add_row(key, value)

        schema_tree = Tree("Schema")
        for column in snapshot.columns():
            schema_tree.add(str(column))

        output_table = self._table
        output_table.add_row("Table ID", metadata.id)
        if metadata.name:
            output_table.add_row("Name", metadata.name)
        output_table.add_row("Version", str(snapshot.version))
        output_table.add_row("Reader version", str(protocol.min_reader_version))
        output_table.add_row("Format", metadata.format.provider)
        output_table.add_row("Partition columns", ", ".join(metadata.partition_columns) or "none")
        output_table.add_row("Files", str(stats.num_files))
        output_table.add_row("Size", str(stats.total_size))
        output_table.add_row("Records", str(stats.num_records))
        output_table.add_row("Schema", schema_tree)
        output_table.add_row("Configuration", configuration)
        Console().print(output_table)

    def files(self, files: List[AddFile], next_page_token: Optional[str]) -> None:
        output_table = self._table
        for add in files:
            partitions = ", ".join(f"{key}={value}" for key, value in add.partition_values.items())
            output_table.add_row(add.path, str(add.size), partitions)
        Console().print(output_table)
        if next_page_token:
            Console().print(f"Next page token: {next_page_token}")

    def preview(self, preview: TablePreview) -> None:
        output_table = RichTable(*[column.name for column in preview.columns])
        for row in preview.rows:
            output_table.add_row(*["" if row.get(column.name) is None else str(row.get(column.name)) for column in preview.columns])
        Console().print(output_table)
        Console().print(f"{len(preview.rows)} of {preview.total_rows} rows")

    def changes(self, changes: ChangeSet) -> None:
        output_table = self._table
        for change in changes.actions:
            output_table.add_row(str(change.version), change.change_type.value, change.path, str(change.size))
        Console().print(output_table)


class JsonOutput(Output):
    """Writes json to stdout"""

    def __init__(self, **properties: Any):
        self.verbose = properties.get("verbose", False)

    def _out(self, d: Any) -> None:
        print(json.dumps(d))

    def exception(self, ex: Exception) -> None:
        self._out({"type": ex.__class__.__name__, "message": str(ex)})

    def version(self, version: int) -> None:
        self._out({"version": version})

    def describe_snapshot(self, snapshot: TableSnapshot) -> None:
        stats = snapshot.stats()
        self._out(
            {
                "version": snapshot.version,
                "protocol": snapshot.reader_protocol.model_dump(mode="json"),
                "metadata": snapshot.metadata.model_dump(mode="json"),
                "stats": stats.model_dump(mode="json"),
            }
        )

    def files(self, files: List[AddFile], next_page_token: Optional[str]) -> None:
        body: Dict[str, Any] = {"files": [add.model_dump(mode="json") for add in files]}
        if next_page_token:
            body["nextPageToken"] = next_page_token
        self._out(body)

    def preview(self, preview: TablePreview) -> None:
        print(preview.model_dump_json())

    def changes(self, changes: ChangeSet) -> None:
        print(changes.model_dump_json())
