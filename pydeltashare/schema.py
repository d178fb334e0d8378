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
"""Protocol-neutral column descriptions.

Both the Delta `schemaString` of a table and the physical schema of a Parquet
data file are reduced to a flat list of columns. The semantic type of a column
is one of the names below; anything else is kept as a lower-cased
string (or compact JSON for nested Delta types) instead of failing.
"""
import json
import logging
from typing import Any, List

from pydantic import Field

from pydeltashare.typedef import DeltaBaseModel

logger = logging.getLogger(__name__)

INTEGER = "integer"
DOUBLE = "double"
BOOLEAN = "boolean"
STRING = "string"
TIMESTAMP = "timestamp"
DATE = "date"
DECIMAL = "decimal"


class Column(DeltaBaseModel):
    name: str = Field()
    type: str = Field()
    nullable: bool = Field(default=True)

    def __str__(self) -> str:
        """Return the string representation of the Column class."""
        return f"{self.name}: {'optional' if self.nullable else 'required'} {self.type}"


def _type_name(field_type: Any) -> str:
    if isinstance(field_type, str):
        return field_type
    return json.dumps(field_type, separators=(",", ":"))


def parse_schema_string(schema_string: str) -> List[Column]:
    """Parse a Delta struct schema into columns.

    Args:
        schema_string: The JSON encoded struct, as found in the metaData action.

    Returns:
        The top level columns, or an empty list when the schema cannot be parsed.
    """
    try:
        schema = json.loads(schema_string)
        return [
            Column(name=field["name"], type=_type_name(field["type"]), nullable=field.get("nullable", True))
            for field in schema["fields"]
        ]
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Could not parse table schema: %s", e)
        return []


def schema_string(columns: List[Column]) -> str:
    """Render columns back to a Delta struct schema."""
    fields = []
    for column in columns:
        try:
            column_type: Any = json.loads(column.type) if column.type.startswith("{") else column.type
        except ValueError:
            column_type = column.type
        fields.append({"name": column.name, "type": column_type, "nullable": column.nullable, "metadata": {}})
    return json.dumps({"type": "struct", "fields": fields}, separators=(",", ":"))
