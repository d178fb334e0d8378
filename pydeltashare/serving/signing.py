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
"""Turns storage locations into the URLs handed out to recipients.

Storage that is reachable by recipients can be shared as is. Otherwise the
location is wrapped in a URL of the sharing server that carries an expiry and
an HMAC signature, so a download can be verified without keeping any state:

    https://sharing.example.com/files?location=...&expires=1700003600000&signature=...
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import urlencode

from pydantic import Field

from pydeltashare.typedef import DeltaBaseModel
from pydeltashare.utils.config import SIGNING_BASE_URL, SIGNING_SECRET, Config

logger = logging.getLogger(__name__)

DEFAULT_URL_EXPIRY_SECONDS = 60 * 60
FILES_PATH = "files"


class SignedUrl(DeltaBaseModel):
    url: str = Field()
    expiration_timestamp: Optional[int] = Field(alias="expirationTimestamp", default=None)


@runtime_checkable
class UrlSigner(Protocol):
    @abstractmethod
    def sign(self, location: str, expires_in_seconds: int = DEFAULT_URL_EXPIRY_SECONDS) -> SignedUrl:
        """Return the URL a recipient downloads the file at the location from."""


class UnsignedUrlSigner:
    """Shares the storage locations themselves, without an expiry."""

    def sign(self, location: str, expires_in_seconds: int = DEFAULT_URL_EXPIRY_SECONDS) -> SignedUrl:
        return SignedUrl(url=location)


def _now_ms() -> int:
    return int(time.time() * 1000)


class HmacUrlSigner:
    base_url: str

    def __init__(self, base_url: str, secret: str):
        if not secret:
            raise ValueError("The signing secret should not be empty")
        self.base_url = base_url.rstrip("/")
        self._secret = secret.encode("utf-8")

    def _signature(self, location: str, expires: int) -> str:
        return hmac.new(self._secret, f"{location}:{expires}".encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(
        self, location: str, expires_in_seconds: int = DEFAULT_URL_EXPIRY_SECONDS, now_ms: Optional[int] = None
    ) -> SignedUrl:
        expires = (_now_ms() if now_ms is None else now_ms) + expires_in_seconds * 1000
        query = urlencode({"location": location, "expires": expires, "signature": self._signature(location, expires)})
        return SignedUrl(url=f"{self.base_url}/{FILES_PATH}?{query}", expiration_timestamp=expires)

    def verify(self, location: str, expires: int, signature: str, now_ms: Optional[int] = None) -> bool:
        """Check that a signed URL was issued by this signer and has not expired yet."""
        if (_now_ms() if now_ms is None else now_ms) > expires:
            logger.debug("Signed URL for %s expired at %d", location, expires)
            return False
        return hmac.compare_digest(self._signature(location, expires), signature)


def load_url_signer(config: Optional[Config] = None) -> UrlSigner:
    """Sign URLs when a signing secret is configured, otherwise share the locations as is."""
    config = config or Config()
    secret = config.get_str(SIGNING_SECRET)
    base_url = config.get_str(SIGNING_BASE_URL)
    if secret and base_url:
        return HmacUrlSigner(base_url=base_url, secret=secret)
    if secret or base_url:
        logger.warning(
            "Both %s and %s are required to sign URLs, sharing locations unsigned", SIGNING_SECRET, SIGNING_BASE_URL
        )
    return UnsignedUrlSigner()
