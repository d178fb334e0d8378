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
"""Translates exceptions into the status codes and bodies of error responses."""
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional, Type

from pydantic import Field

from pydeltashare.exceptions import (
    IngestError,
    NoSuchTableError,
    RecipientValidationError,
    ServerBusyError,
    TableUninitializedError,
    UnauthenticatedError,
    UnsupportedProtocolError,
    VersionUnavailableError,
)
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR = 500

STATUS_CODES: Dict[Type[BaseException], int] = {
    UnauthenticatedError: 401,
    VersionUnavailableError: 400,
    UnsupportedProtocolError: 400,
    ValueError: 400,
    NoSuchTableError: 404,
    TableUninitializedError: 404,
    IngestError: 500,
    ServerBusyError: 503,
    RecipientValidationError: 503,
}


class ErrorDetail(DeltaBaseModel):
    message: str = Field()
    details: Optional[Dict[str, Any]] = Field(default=None)
    stack: Optional[str] = Field(default=None)


class ErrorBody(DeltaBaseModel):
    success: bool = Field(default=False)
    error: ErrorDetail = Field()


def status_code_for(exc: BaseException) -> int:
    """Return the HTTP status of the closest mapped class of the exception."""
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return INTERNAL_SERVER_ERROR


def error_response(exc: BaseException, production: bool = True) -> ErrorBody:
    """Build the body of an error response.

    The stack trace is only included outside of production deployments.
    """
    status_code = status_code_for(exc)
    if status_code == INTERNAL_SERVER_ERROR:
        logger.error("Request failed: %s", exc, exc_info=exc)

    details = {"path": exc.path} if isinstance(exc, IngestError) and exc.path else None
    stack = None if production else "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return ErrorBody(error=ErrorDetail(message=str(exc) or type(exc).__name__, details=details, stack=stack))
