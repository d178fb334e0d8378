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
from typing import Optional


class UnauthenticatedError(Exception):
    """Raised when the bearer credential is missing or not recognized"""


class MalformedAuthorizationError(UnauthenticatedError):
    """Raised when the Authorization header is not of the form `Bearer <token>`"""


class RecipientValidationError(Exception):
    """Raised when the recipient registry could not be consulted"""


class NoSuchTableError(Exception):
    """Raised when a referenced table is not found"""


class VersionUnavailableError(Exception):
    """Raised when the requested table version is not part of the retained log"""


class TableUninitializedError(Exception):
    """Raised when no metadata action has been committed to the table"""


class UnsupportedProtocolError(Exception):
    """Raised when the table requires a newer reader protocol than supported"""


class IngestError(Exception):
    """Raised when a data file cannot be read or is corrupt"""

    path: Optional[str]

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ServerBusyError(Exception):
    """Raised when a replay or file read exceeded its time bound; the request can be retried"""


class ConfigurationMissingError(Exception):
    """Raised when the identity provider settings are incomplete"""
