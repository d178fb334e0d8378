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
"""Stateless pagination of listings with expiring page tokens.

A page token is the URL-safe base64 encoding of `{"offset": ..., "timestamp": ...}`,
where the timestamp is the issuing time in milliseconds since the epoch. Tokens
only say where to resume a listing, they grant nothing, so they are not signed.
A token that cannot be decoded or is older than an hour restarts the listing
from the beginning instead of failing the request.
"""
from __future__ import annotations

import base64
import binascii
import time
from typing import (
    Any,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

DEFAULT_MAX_RESULTS = 100
MAX_RESULTS_CEILING = 1000
TOKEN_TTL_MS = 60 * 60 * 1000

T = TypeVar("T")


class PageToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    offset: StrictInt = Field(ge=0)
    timestamp: StrictInt = Field()


class Page(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    next_page_token: Optional[str] = Field(default=None)


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_page_token(offset: int, now_ms: Optional[int] = None) -> str:
    """Encode the position to resume a listing from.

    Args:
        offset: The index of the first item of the next page.
        now_ms: The issuing time, defaults to the current time.
    """
    if offset < 0:
        raise ValueError(f"Offset should be non-negative, got: {offset}")
    token = PageToken(offset=offset, timestamp=_now_ms() if now_ms is None else now_ms)
    return base64.urlsafe_b64encode(token.model_dump_json().encode("utf-8")).decode("ascii")


def decode_page_token(token: str, now_ms: Optional[int] = None) -> Optional[int]:
    """Decode a page token back to an offset.

    Returns:
        The offset, or None when the token is malformed or expired.
    """
    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
        page_token = PageToken.model_validate_json(raw)
    except (binascii.Error, UnicodeError, ValueError, ValidationError):
        return None

    if (_now_ms() if now_ms is None else now_ms) - page_token.timestamp > TOKEN_TTL_MS:
        return None
    return page_token.offset


def resolve_max_results(max_results: Optional[Union[str, int]] = None) -> int:
    """Clamp the requested page size.

    Missing, non-numeric and non-positive values fall back to the default,
    anything above the ceiling is capped.
    """
    if max_results is None or isinstance(max_results, bool):
        return DEFAULT_MAX_RESULTS
    try:
        parsed = int(str(max_results).strip())
    except ValueError:
        return DEFAULT_MAX_RESULTS
    if parsed <= 0:
        return DEFAULT_MAX_RESULTS
    return min(parsed, MAX_RESULTS_CEILING)


def paginate(
    items: Sequence[T],
    max_results: Optional[Union[str, int]] = None,
    page_token: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> Page[T]:
    """Slice one page out of a listing whose order is stable between calls.

    Args:
        items: The complete listing.
        max_results: The requested page size, see `resolve_max_results`.
        page_token: The token of a previous page, if any.
        now_ms: The current time, used for expiry and for issuing the next token.

    Returns:
        Page: The items of the page, and a token for the next page when there are more items.
    """
    limit = resolve_max_results(max_results)
    offset = 0
    if page_token:
        offset = decode_page_token(page_token, now_ms=now_ms) or 0

    page: List[Any] = list(items[offset : offset + limit])
    next_offset = offset + limit
    next_page_token = encode_page_token(next_offset, now_ms=now_ms) if next_offset < len(items) else None
    return Page(items=page, next_page_token=next_page_token)
