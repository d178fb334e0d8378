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
"""Serves the snapshots of shared tables to authenticated recipients.

Every operation authenticates the caller first, then resolves the snapshot of
the table at the requested version (or point in time) and answers from it.
"""
from __future__ import annotations

import logging
from abc import abstractmethod
from typing import (
    Dict,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from pydantic import Field

from pydeltashare.auth import RecipientAuthenticator
from pydeltashare.exceptions import NoSuchTableError
from pydeltashare.io import FileIO
from pydeltashare.log.actions import AddFile, Metadata
from pydeltashare.log.actions import Protocol as ProtocolAction
from pydeltashare.pagination import paginate
from pydeltashare.serving.ndjson import FileAction
from pydeltashare.serving.signing import DEFAULT_URL_EXPIRY_SECONDS, UnsignedUrlSigner, UrlSigner, load_url_signer
from pydeltashare.table import DEFAULT_PREVIEW_LIMIT, Table, TablePreview, Timestamp
from pydeltashare.table.cache import SnapshotCache
from pydeltashare.table.changes import ChangeSet, FileChange
from pydeltashare.typedef import DeltaBaseModel
from pydeltashare.utils.config import (
    INGEST_TIMEOUT,
    REPLAY_TIMEOUT,
    SIGNING_EXPIRY,
    TABLES,
    Config,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class TableLocator(Protocol):
    """Resolves the id of a shared table to the location of its root directory."""

    @abstractmethod
    def location(self, table_id: str) -> str:
        """Return the table location.

        Raises:
            NoSuchTableError: If the table is not shared.
        """


class StaticTableLocator:
    tables: Dict[str, str]

    def __init__(self, tables: Dict[str, str]):
        self.tables = dict(tables)

    @staticmethod
    def from_config(config: Config) -> StaticTableLocator:
        return StaticTableLocator(config.get_table_locations())

    def location(self, table_id: str) -> str:
        if table_id not in self.tables:
            raise NoSuchTableError(f"Table does not exist: {table_id}")
        return self.tables[table_id]


class TableMetadataResponse(DeltaBaseModel):
    protocol: ProtocolAction = Field()
    metadata: Metadata = Field()
    version: int = Field()
    num_files: int = Field(alias="numFiles")
    size: int = Field()


class FilesPage(DeltaBaseModel):
    protocol: ProtocolAction = Field()
    metadata: Metadata = Field()
    version: int = Field()
    files: List[FileAction] = Field(default_factory=list)
    next_page_token: Optional[str] = Field(alias="nextPageToken", default=None)


class TableServingService:
    authenticator: RecipientAuthenticator
    locator: TableLocator
    io: Optional[FileIO]
    cache: SnapshotCache
    replay_timeout: Optional[float]
    read_timeout: Optional[float]
    url_signer: UrlSigner
    url_expiry_seconds: int

    def __init__(
        self,
        authenticator: RecipientAuthenticator,
        locator: TableLocator,
        io: Optional[FileIO] = None,
        cache: Optional[SnapshotCache] = None,
        replay_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        url_signer: Optional[UrlSigner] = None,
        url_expiry_seconds: int = DEFAULT_URL_EXPIRY_SECONDS,
    ):
        self.authenticator = authenticator
        self.locator = locator
        self.io = io
        self.cache = cache if cache is not None else SnapshotCache()
        self.replay_timeout = replay_timeout
        self.read_timeout = read_timeout
        self.url_signer = url_signer if url_signer is not None else UnsignedUrlSigner()
        self.url_expiry_seconds = url_expiry_seconds

    @staticmethod
    def from_config(authenticator: RecipientAuthenticator, config: Optional[Config] = None) -> TableServingService:
        """Create a service for the tables and time bounds in the configuration."""
        config = config or Config()
        locator = StaticTableLocator.from_config(config)
        if not locator.tables:
            logger.warning("No tables configured, add them to the %s section", TABLES)
        return TableServingService(
            authenticator=authenticator,
            locator=locator,
            replay_timeout=config.get_float(REPLAY_TIMEOUT),
            read_timeout=config.get_float(INGEST_TIMEOUT),
            url_signer=load_url_signer(config),
            url_expiry_seconds=config.get_int(SIGNING_EXPIRY) or DEFAULT_URL_EXPIRY_SECONDS,
        )

    def _table(self, authorization: Optional[str], table_id: str) -> Table:
        principal = self.authenticator.authenticate(authorization)
        logger.debug("Recipient %s requested table %s", principal.id, table_id)
        return Table(
            identifier=table_id,
            location=self.locator.location(table_id),
            io=self.io,
            cache=self.cache,
            replay_timeout=self.replay_timeout,
            read_timeout=self.read_timeout,
        )

    def table_version(self, authorization: Optional[str], table_id: str, timestamp: Optional[Timestamp] = None) -> int:
        """Return the latest version of a table, or the version that was current at a point in time."""
        return self._table(authorization, table_id).current_version(timestamp)

    def table_metadata(
        self,
        authorization: Optional[str],
        table_id: str,
        version: Optional[int] = None,
        timestamp: Optional[Timestamp] = None,
    ) -> TableMetadataResponse:
        snapshot = self._table(authorization, table_id).snapshot(version, timestamp)
        stats = snapshot.stats()
        return TableMetadataResponse(
            protocol=snapshot.reader_protocol,
            metadata=snapshot.metadata,
            version=snapshot.version,
            num_files=stats.num_files,
            size=stats.total_size,
        )

    def _file_action(self, table: Table, add: AddFile) -> FileAction:
        signed = self.url_signer.sign(table.file_url(add), self.url_expiry_seconds)
        return FileAction.from_add(add, signed.url, expiration_timestamp=signed.expiration_timestamp)

    def _signed_change(self, table: Table, change: FileChange) -> FileChange:
        signed = self.url_signer.sign(table.log.data_file_location(change.path), self.url_expiry_seconds)
        return change.model_copy(update={"url": signed.url, "expiration_timestamp": signed.expiration_timestamp})

    def list_files(
        self,
        authorization: Optional[str],
        table_id: str,
        version: Optional[int] = None,
        timestamp: Optional[Timestamp] = None,
        max_results: Optional[Union[str, int]] = None,
        page_token: Optional[str] = None,
    ) -> FilesPage:
        """List a page of the active files of a table.

        The files are ordered by path, so a page token issued for a snapshot
        resumes the same listing on the next call.
        """
        table = self._table(authorization, table_id)
        snapshot = table.snapshot(version, timestamp)
        page = paginate(snapshot.active_files(), max_results=max_results, page_token=page_token)
        return FilesPage(
            protocol=snapshot.reader_protocol,
            metadata=snapshot.metadata,
            version=snapshot.version,
            files=[self._file_action(table, add) for add in page.items],
            next_page_token=page.next_page_token,
        )

    def query_rows(
        self,
        authorization: Optional[str],
        table_id: str,
        version: Optional[int] = None,
        timestamp: Optional[Timestamp] = None,
        limit: int = DEFAULT_PREVIEW_LIMIT,
        offset: int = 0,
    ) -> TablePreview:
        return self._table(authorization, table_id).preview(version, timestamp, limit=limit, offset=offset)

    def table_changes(
        self,
        authorization: Optional[str],
        table_id: str,
        starting_version: Optional[int] = None,
        ending_version: Optional[int] = None,
        starting_timestamp: Optional[Timestamp] = None,
        ending_timestamp: Optional[Timestamp] = None,
    ) -> ChangeSet:
        """Return the file changes between two versions, with a download URL for every file."""
        table = self._table(authorization, table_id)
        change_set = table.changes(
            starting_version=starting_version,
            ending_version=ending_version,
            starting_timestamp=starting_timestamp,
            ending_timestamp=ending_timestamp,
        )
        return change_set.model_copy(
            update={"actions": [self._signed_change(table, change) for change in change_set.actions]}
        )
