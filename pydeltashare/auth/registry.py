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
"""Recipient registries that the authenticator can validate credentials against."""
from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Dict, Optional

from pydantic import Field, ValidationError
from requests import HTTPError, RequestException, Session

from pydeltashare import __version__
from pydeltashare.auth import AUTHORIZATION_HEADER, BEARER_PREFIX, Principal
from pydeltashare.exceptions import RecipientValidationError
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)


def hash_credential(credential: str) -> str:
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RecipientToken:
    principal: Principal
    expires_at: Optional[datetime] = None
    active: bool = True

    def is_valid(self, now: datetime) -> bool:
        return self.active and (self.expires_at is None or self.expires_at > now)


class InMemoryRecipientRegistry:
    """Keeps the digests of recipient credentials in memory.

    Credentials are never stored in plain text; a lookup hashes the presented
    credential and compares digests.
    """

    _tokens: Dict[str, RecipientToken]
    _lock: threading.Lock

    def __init__(self) -> None:
        self._tokens = {}
        self._lock = threading.Lock()

    def register(
        self, credential: str, principal: Principal, expires_at: Optional[datetime] = None, active: bool = True
    ) -> None:
        with self._lock:
            self._tokens[hash_credential(credential)] = RecipientToken(principal=principal, expires_at=expires_at, active=active)

    def revoke(self, credential: str) -> None:
        with self._lock:
            self._tokens.pop(hash_credential(credential), None)

    def validate(self, credential: str) -> Optional[Principal]:
        with self._lock:
            token = self._tokens.get(hash_credential(credential))
        if token is None or not token.is_valid(datetime.now(timezone.utc)):
            return None
        return token.principal


class ValidateRequest(DeltaBaseModel):
    token: str = Field()


class ErrorResponseMessage(DeltaBaseModel):
    message: str = Field()
    details: Optional[str] = Field(default=None)


class ErrorResponse(DeltaBaseModel):
    success: bool = Field(default=False)
    error: ErrorResponseMessage = Field()


class Endpoints:
    validate: str = "recipients/validate"


class RestRecipientValidator:
    """Validates credentials against an external recipient service.

    Args:
        uri: The base URI of the recipient service.
        token: The bearer token this server authenticates itself with, if any.
    """

    uri: str
    _session: Session

    def __init__(self, uri: str, token: Optional[str] = None):
        self.uri = uri
        self._session = self._create_session(token)

    @staticmethod
    def _create_session(token: Optional[str]) -> Session:
        session = Session()
        if token:
            session.headers[AUTHORIZATION_HEADER] = f"{BEARER_PREFIX} {token}"
        session.headers["Content-type"] = "application/json"
        session.headers["User-Agent"] = f"PyDeltaShare/{__version__}"
        return session

    def url(self, endpoint: str) -> str:
        url = self.uri
        url = url + "v1/" if url.endswith("/") else url + "/v1/"
        return url + endpoint

    def validate(self, credential: str) -> Optional[Principal]:
        try:
            response = self._session.post(
                self.url(Endpoints.validate), data=ValidateRequest(token=credential).model_dump_json().encode("utf-8")
            )
        except RequestException as e:
            raise RecipientValidationError(f"Could not reach the recipient service: {e}") from e

        if response.status_code in (401, 404):
            return None
        try:
            response.raise_for_status()
        except HTTPError as exc:
            self._handle_non_200_response(exc)

        try:
            return Principal.model_validate(response.json())
        except (JSONDecodeError, ValidationError) as e:
            raise RecipientValidationError(f"Received unexpected recipient payload: {response.text}") from e

    @staticmethod
    def _handle_non_200_response(exc: HTTPError) -> None:
        try:
            error = ErrorResponse.model_validate(exc.response.json()).error
            response = f"RecipientValidationError {exc.response.status_code}: {error.message}"
        except JSONDecodeError:
            response = f"RecipientValidationError {exc.response.status_code}: Could not decode json payload: {exc.response.text}"
        except ValidationError as e:
            errs = ", ".join(err["msg"] for err in e.errors())
            response = (
                f"RecipientValidationError {exc.response.status_code}: "
                f"Received unexpected JSON Payload: {exc.response.text}, errors: {errs}"
            )

        raise RecipientValidationError(response) from exc
