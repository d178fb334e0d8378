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
import logging
import os
from typing import Dict, List, Optional

import yaml

from pydeltashare.typedef import FrozenDict, RecursiveDict

DEFAULT_CONFIG_FILE = ".pydeltashare.yaml"
PYDELTASHARE = "pydeltashare_"
PYDELTASHARE_HOME = "PYDELTASHARE_HOME"
HOME = "HOME"
TABLES = "tables"
ENVIRONMENT = "environment"
PRODUCTION = "production"
DEVELOPMENT = "development"
UTF8 = "utf-8"
REPLAY_TIMEOUT = "replay.timeout-seconds"
INGEST_TIMEOUT = "ingest.timeout-seconds"
MAX_WORKERS = "max-workers"
SIGNING_SECRET = "signing.secret"
SIGNING_BASE_URL = "signing.base-url"
SIGNING_EXPIRY = "signing.expiry-seconds"

logger = logging.getLogger(__name__)


def merge_config(lhs: RecursiveDict, rhs: RecursiveDict) -> RecursiveDict:
    """Merge right-hand side into the left-hand side."""
    new_config = lhs.copy()
    for rhs_key, rhs_value in rhs.items():
        if rhs_key in new_config:
            lhs_value = new_config[rhs_key]
            if isinstance(lhs_value, dict) and isinstance(rhs_value, dict):
                # If they are both dicts, then we have to go deeper
                new_config[rhs_key] = merge_config(lhs_value, rhs_value)
            else:
                # Take the non-null value, with precedence on rhs
                new_config[rhs_key] = rhs_value or lhs_value
        else:
            # New key
            new_config[rhs_key] = rhs_value

    return new_config


def _lowercase_dictionary_keys(input_dict: RecursiveDict) -> RecursiveDict:
    """Lowers all the keys of a dictionary in a recursive manner, to make the lookup case-insensitive."""
    return {k.lower(): _lowercase_dictionary_keys(v) if isinstance(v, dict) else v for k, v in input_dict.items()}


class Config:
    config: RecursiveDict

    def __init__(self) -> None:
        config = self._from_configuration_files() or {}
        config = merge_config(config, self._from_environment_variables({}))
        self.config = FrozenDict(**config)

    @staticmethod
    def _from_configuration_files() -> Optional[RecursiveDict]:
        """Loads the first configuration file that its finds.

        Will first look in the PYDELTASHARE_HOME env variable,
        and then in the home directory.
        """

        def _load_yaml(directory: Optional[str]) -> Optional[RecursiveDict]:
            if directory:
                path = os.path.join(directory, DEFAULT_CONFIG_FILE)
                if os.path.isfile(path):
                    with open(path, encoding=UTF8) as f:
                        file_config = yaml.safe_load(f)
                    if isinstance(file_config, dict):
                        return _lowercase_dictionary_keys(file_config)
                    logger.warning("Ignoring configuration file without a mapping: %s", path)
            return None

        # Give priority to the PYDELTASHARE_HOME directory
        if pydeltashare_home_config := _load_yaml(os.environ.get(PYDELTASHARE_HOME)):
            return pydeltashare_home_config
        # Look into the home directory
        if pydeltashare_home_config := _load_yaml(os.environ.get(HOME)):
            return pydeltashare_home_config
        # Try to load into the current directory
        if pydeltashare_home_config := _load_yaml(os.curdir):
            return pydeltashare_home_config
        return None

    @staticmethod
    def _from_environment_variables(config: RecursiveDict) -> RecursiveDict:
        """Reads the environment variables, to check if there are any prepended by PYDELTASHARE_.

        Args:
            config: Existing configuration that's being amended with configuration from environment variables.

        Returns:
            Amended configuration.
        """

        def set_property(_config: RecursiveDict, path: List[str], config_value: str) -> None:
            while len(path) > 0:
                element = path.pop(0)
                if len(path) == 0:
                    # We're at the end
                    _config[element] = config_value
                else:
                    # We have to go deeper
                    if not isinstance(_config.get(element), dict):
                        _config[element] = {}
                    _config = _config[element]

        for env_var, config_value in os.environ.items():
            # Make it lowercase to make it case-insensitive
            env_var_lower = env_var.lower()
            if env_var_lower.startswith(PYDELTASHARE.lower()):
                key = env_var_lower[len(PYDELTASHARE) :]
                parts = key.split("__")
                parts_normalized = [part.replace("_", "-") for part in parts]
                set_property(config, parts_normalized, config_value)

        return config

    def get(self, key: str) -> Optional[object]:
        """Look up a value by its dotted path, for example `replay.timeout-seconds`."""
        value: object = self.config
        for part in key.lower().split("."):
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value

    def get_section(self, key: str) -> RecursiveDict:
        value = self.get(key)
        return value if isinstance(value, dict) else {}

    def get_str(self, key: str) -> Optional[str]:
        value = self.get(key)
        return None if value is None or isinstance(value, dict) else str(value)

    def get_int(self, key: str) -> Optional[int]:
        if (value := self.get_str(key)) is not None:
            try:
                return int(value)
            except ValueError as err:
                raise ValueError(f"{key} should be an integer or left unset. Current value: {value}") from err
        return None

    def get_float(self, key: str) -> Optional[float]:
        if (value := self.get_str(key)) is not None:
            try:
                return float(value)
            except ValueError as err:
                raise ValueError(f"{key} should be a number or left unset. Current value: {value}") from err
        return None

    def get_table_locations(self) -> Dict[str, str]:
        """The configured tables, as a mapping from table id to location."""
        return {str(table_id): str(location) for table_id, location in self.get_section(TABLES).items()}

    def is_production(self) -> bool:
        return (self.get_str(ENVIRONMENT) or PRODUCTION).lower() != DEVELOPMENT
