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
"""Reads data files into protocol-neutral rows.

Parquet files are opened through PyArrow, the column types are reduced to the
primitive type names of `pydeltashare.schema`, and every value is converted
into something that serializes to JSON directly:

- binary values are decoded as UTF-8 text
- timestamps become ISO-8601 strings in UTC with millisecond precision
- integers beyond the safe integer range of a double become floats, which
  loses precision; this is a known limitation and not corrected
- decimals become strings

The row count always covers the whole file, also when offset and limit select
only a part of it, so callers can tell whether there are more rows.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from datetime import date, datetime, time as time_of_day, timezone
from decimal import Decimal
from typing import (
    Any,
    Dict,
    List,
    Union,
)

import pyarrow as pa
import pyarrow.parquet as pq
from pydantic import Field

from pydeltashare.exceptions import IngestError
from pydeltashare.io import InputFile, load_file_io
from pydeltashare.schema import (
    BOOLEAN,
    DATE,
    DECIMAL,
    DOUBLE,
    INTEGER,
    STRING,
    TIMESTAMP,
    Column,
)
from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000
BATCH_SIZE = 8192
MAX_SAFE_INTEGER = 2**53 - 1


class ReadResult(DeltaBaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[Column] = Field(alias="schema", default_factory=list)
    total_row_count: int = Field(alias="totalRowCount", default=0)


def semantic_type(arrow_type: pa.DataType) -> str:
    """Reduce an Arrow type to the name of a primitive type."""
    if pa.types.is_boolean(arrow_type):
        return BOOLEAN
    elif pa.types.is_integer(arrow_type):
        return INTEGER
    elif pa.types.is_floating(arrow_type):
        return DOUBLE
    elif pa.types.is_decimal(arrow_type):
        return DECIMAL
    elif (
        pa.types.is_string(arrow_type)
        or pa.types.is_large_string(arrow_type)
        or pa.types.is_binary(arrow_type)
        or pa.types.is_large_binary(arrow_type)
        or pa.types.is_fixed_size_binary(arrow_type)
    ):
        return STRING
    elif pa.types.is_timestamp(arrow_type):
        return TIMESTAMP
    elif pa.types.is_date(arrow_type):
        return DATE
    return str(arrow_type).lower()


def _readable_type(arrow_type: pa.DataType) -> pa.DataType:
    # Nanosecond timestamps (and INT96) do not fit a datetime, also when nested
    if pa.types.is_timestamp(arrow_type) and arrow_type.unit == "ns":
        return pa.timestamp("us", tz=arrow_type.tz)
    elif pa.types.is_list(arrow_type):
        return pa.list_(_readable_field(arrow_type.value_field))
    elif pa.types.is_large_list(arrow_type):
        return pa.large_list(_readable_field(arrow_type.value_field))
    elif pa.types.is_fixed_size_list(arrow_type):
        return pa.list_(_readable_field(arrow_type.value_field), arrow_type.list_size)
    elif pa.types.is_map(arrow_type):
        return pa.map_(
            _readable_type(arrow_type.key_type), _readable_type(arrow_type.item_type), keys_sorted=arrow_type.keys_sorted
        )
    elif pa.types.is_struct(arrow_type):
        return pa.struct([_readable_field(arrow_type.field(i)) for i in range(arrow_type.num_fields)])
    elif pa.types.is_dictionary(arrow_type):
        # Decoded to the dense values only when those need a cast
        value_type = _readable_type(arrow_type.value_type)
        return arrow_type if value_type.equals(arrow_type.value_type) else value_type
    return arrow_type


def _readable_field(field: pa.Field) -> pa.Field:
    return field.with_type(_readable_type(field.type))


def _readable_schema(schema: pa.Schema) -> pa.Schema:
    return pa.schema([_readable_field(field) for field in schema], metadata=schema.metadata)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def normalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, float, str)):
        return value
    elif isinstance(value, int):
        return float(value) if abs(value) > MAX_SAFE_INTEGER else value
    elif isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    elif isinstance(value, datetime):
        return format_timestamp(value)
    elif isinstance(value, (date, time_of_day)):
        return value.isoformat()
    elif isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, dict):
        return {str(key): normalize_value(item) for key, item in value.items()}
    elif isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    return str(value)


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: normalize_value(value) for key, value in row.items()}


def _as_input_file(source: Union[str, InputFile]) -> InputFile:
    if isinstance(source, InputFile):
        return source
    return load_file_io(location=source).new_input(source)


def read_parquet_file(source: Union[str, InputFile], limit: int = DEFAULT_LIMIT, offset: int = 0) -> ReadResult:
    """Read a page of rows from a Parquet file.

    Args:
        source: The file, or its location.
        limit: The maximum number of rows to return.
        offset: The number of rows to skip first.

    Returns:
        ReadResult: The normalized rows and schema, and the number of rows in the whole file.

    Raises:
        IngestError: If the file cannot be opened or decoded. The file is closed in all cases.
    """
    input_file = _as_input_file(source)
    rows: List[Dict[str, Any]] = []
    total_row_count = 0
    try:
        with input_file.open() as stream:
            parquet_file = pq.ParquetFile(stream)
            arrow_schema = parquet_file.schema_arrow
            columns = [Column(name=field.name, type=semantic_type(field.type), nullable=field.nullable) for field in arrow_schema]
            readable_schema = _readable_schema(arrow_schema)

            for batch in parquet_file.iter_batches(batch_size=BATCH_SIZE):
                batch_start = total_row_count
                total_row_count += batch.num_rows
                if len(rows) >= limit:
                    continue
                skip = max(offset - batch_start, 0)
                if skip >= batch.num_rows:
                    continue
                take = min(limit - len(rows), batch.num_rows - skip)
                table = pa.Table.from_batches([batch.slice(skip, take)]).cast(readable_schema, safe=False)
                rows.extend(normalize_row(row) for row in table.to_pylist())
    except (OSError, ValueError, pa.ArrowException) as e:
        raise IngestError(f"Failed to read Parquet file {input_file.location}: {e}", path=input_file.location) from e

    return ReadResult(rows=rows, columns=columns, total_row_count=total_row_count)


def count_parquet_rows(source: Union[str, InputFile]) -> int:
    """Count the rows of a Parquet file from its footer, without decoding any data.

    Raises:
        IngestError: If the file cannot be opened or its footer cannot be decoded.
    """
    input_file = _as_input_file(source)
    try:
        with input_file.open() as stream:
            return pq.ParquetFile(stream).metadata.num_rows
    except (OSError, ValueError, pa.ArrowException) as e:
        raise IngestError(f"Failed to read Parquet file {input_file.location}: {e}", path=input_file.location) from e


def read_parquet_buffer(buffer: bytes, limit: int = DEFAULT_LIMIT, offset: int = 0) -> ReadResult:
    """Read a page of rows from a Parquet file held in memory.

    The buffer is written to a uniquely named temporary file first, which is
    removed again afterwards whether or not the read succeeded.
    """
    temp_file = os.path.join(tempfile.gettempdir(), f"parquet-{int(time.time() * 1000)}-{uuid.uuid4().hex}.parquet")
    try:
        with open(temp_file, "wb") as f:
            f.write(buffer)
        return read_parquet_file(temp_file, limit=limit, offset=offset)
    finally:
        try:
            os.remove(temp_file)
        except OSError as e:
            logger.warning("Failed to delete temporary file %s: %s", temp_file, e)


def _json_type(value: Any) -> str:
    if isinstance(value, bool):
        return BOOLEAN
    elif isinstance(value, int):
        return INTEGER
    elif isinstance(value, float):
        return DOUBLE
    return STRING


def read_json_file(source: Union[str, InputFile], limit: int = DEFAULT_LIMIT, offset: int = 0) -> ReadResult:
    """Read a page of rows from a JSON data file holding an array of objects."""
    input_file = _as_input_file(source)
    try:
        with input_file.open() as stream:
            records = json.loads(stream.read().decode("utf-8"))
    except (OSError, ValueError) as e:
        raise IngestError(f"Failed to read JSON file {input_file.location}: {e}", path=input_file.location) from e

    if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
        raise IngestError(f"Expected an array of objects in {input_file.location}", path=input_file.location)

    columns = [Column(name=key, type=_json_type(value)) for key, value in records[0].items()] if records else []
    start = max(offset, 0)
    rows = [normalize_row(record) for record in records[start : start + max(limit, 0)]]
    return ReadResult(rows=rows, columns=columns, total_row_count=len(records))
