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
# pylint: disable=broad-except,redefined-builtin,redefined-outer-name
import logging
from functools import wraps
from typing import (
    Any,
    Callable,
    Optional,
    Tuple,
)

import click
from click import Context

from pydeltashare import __version__
from pydeltashare.cli.output import ConsoleOutput, JsonOutput, Output
from pydeltashare.pagination import paginate
from pydeltashare.table import Table
from pydeltashare.utils.config import INGEST_TIMEOUT, REPLAY_TIMEOUT, Config


def catch_exception() -> Callable:  # type: ignore
    def decorator(func: Callable) -> Callable:  # type: ignore
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):  # type: ignore
            try:
                return func(*args, **kwargs)
            except Exception as e:
                ctx: Context = click.get_current_context(silent=True)
                _, output = _config_and_output(ctx)
                output.exception(e)
                ctx.exit(1)

        return wrapper

    return decorator


@click.group()
@click.option("--verbose", is_flag=True)
@click.option("--output", type=click.Choice(["text", "json"]), default="text")
@click.version_option(__version__, prog_name="pydeltashare")
@click.pass_context
def run(ctx: Context, verbose: bool, output: str) -> None:
    ctx.ensure_object(dict)
    if output == "text":
        ctx.obj["output"] = ConsoleOutput(verbose=verbose)
    else:
        ctx.obj["output"] = JsonOutput(verbose=verbose)

    if verbose:
        logging.basicConfig(level=logging.DEBUG)

    try:
        ctx.obj["config"] = Config()
    except Exception as e:
        ctx.obj["output"].exception(e)
        ctx.exit(1)


def _config_and_output(ctx: Context) -> Tuple[Config, Output]:
    """Small helper to set the types"""
    return ctx.obj["config"], ctx.obj["output"]


def _load_table(config: Config, location: str) -> Table:
    """Open a table by its configured id, or else by its location."""
    table_location = config.get_table_locations().get(location, location)
    return Table(
        identifier=location,
        location=table_location,
        replay_timeout=config.get_float(REPLAY_TIMEOUT),
        read_timeout=config.get_float(INGEST_TIMEOUT),
    )


@run.command()
@click.argument("location")
@click.option("--timestamp", help="Resolve the version that was current at this ISO-8601 timestamp")
@click.pass_context
@catch_exception()
def version(ctx: Context, location: str, timestamp: Optional[str]) -> None:
    """Returns the current version of the table"""
    config, output = _config_and_output(ctx)
    output.version(_load_table(config, location).current_version(timestamp))


@run.command()
@click.argument("location")
@click.option("--version", "table_version", type=int)
@click.pass_context
@catch_exception()
def describe(ctx: Context, location: str, table_version: Optional[int]) -> None:
    """Describes the snapshot of a table"""
    config, output = _config_and_output(ctx)
    output.describe_snapshot(_load_table(config, location).snapshot(table_version))


@run.command()
@click.argument("location")
@click.option("--version", "table_version", type=int)
@click.option("--max-results")
@click.option("--page-token")
@click.pass_context
@catch_exception()
def files(
    ctx: Context, location: str, table_version: Optional[int], max_results: Optional[str], page_token: Optional[str]
) -> None:
    """Lists the active files of the table"""
    config, output = _config_and_output(ctx)
    snapshot = _load_table(config, location).snapshot(table_version)
    page = paginate(snapshot.active_files(), max_results=max_results, page_token=page_token)
    output.files(page.items, page.next_page_token)


@run.command()
@click.argument("location")
@click.option("--version", "table_version", type=int)
@click.option("--limit", type=int, default=10, show_default=True)
@click.option("--offset", type=int, default=0, show_default=True)
@click.pass_context
@catch_exception()
def preview(ctx: Context, location: str, table_version: Optional[int], limit: int, offset: int) -> None:
    """Shows the first rows of the table"""
    config, output = _config_and_output(ctx)
    output.preview(_load_table(config, location).preview(table_version, limit=limit, offset=offset))


@run.command()
@click.argument("location")
@click.option("--starting-version", type=int)
@click.option("--ending-version", type=int)
@click.option("--starting-timestamp")
@click.option("--ending-timestamp")
@click.pass_context
@catch_exception()
def changes(
    ctx: Context,
    location: str,
    starting_version: Optional[int],
    ending_version: Optional[int],
    starting_timestamp: Optional[str],
    ending_timestamp: Optional[str],
) -> None:
    """Lists the file changes committed to the table"""
    config, output = _config_and_output(ctx)
    change_set = _load_table(config, location).changes(
        starting_version=starting_version,
        ending_version=ending_version,
        starting_timestamp=starting_timestamp,
        ending_timestamp=ending_timestamp,
    )
    output.changes(change_set)
