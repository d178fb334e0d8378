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
"""Bearer authentication of recipients.

Every request carries the long-lived credential of a recipient in an
`Authorization: Bearer <token>` header. There are no sessions and no token
exchange: each request is checked against the recipient registry on its own.
"""
from __future__ import annotations

import logging
from abc import abstractmethod
from typing import (
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from pydantic import Field

from pydeltashare.exceptions import MalformedAuthorizationError, UnauthenticatedError
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer"


class Principal(DeltaBaseModel):
    id: str = Field()
    name: str = Field()
    roles: List[str] = Field(default_factory=list)
    groups: List[str] = Field(default_factory=list)


@runtime_checkable
class RecipientValidator(Protocol):
    """Looks up the recipient that holds a credential."""

    @abstractmethod
    def validate(self, credential: str) -> Optional[Principal]:
        """Return the recipient holding the credential, or None when it is unknown, inactive or expired."""


def parse_authorization_header(header: Optional[str]) -> str:
    """Extract the credential from an Authorization header value.

    The value should consist of the scheme `Bearer`, in any case, and exactly
    one token.

    Raises:
        UnauthenticatedError: If there is no header at all.
        MalformedAuthorizationError: If the header has any other shape.
    """
    if header is None or not header.strip():
        raise UnauthenticatedError("Authorization header required")

    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != BEARER_PREFIX.lower() or not parts[1]:
        raise MalformedAuthorizationError(f"Invalid authorization format. Use: {BEARER_PREFIX} <token>")
    return parts[1]


class RecipientAuthenticator:
    validator: RecipientValidator

    def __init__(self, validator: RecipientValidator):
        self.validator = validator

    def authenticate(self, header: Optional[str]) -> Principal:
        """Authenticate the caller of a request.

        Args:
            header: The value of the Authorization header, None when absent.

        Returns:
            Principal: The recipient holding the credential.

        Raises:
            UnauthenticatedError: If the header is missing or malformed, or the credential is not valid.
        """
        credential = parse_authorization_header(header)
        principal = self.validator.validate(credential)
        if principal is None:
            logger.warning("Token validation failed for token hint %s", credential[:4])
            raise UnauthenticatedError("Invalid or expired token")
        logger.debug("Authenticated recipient %s", principal.id)
        return principal
