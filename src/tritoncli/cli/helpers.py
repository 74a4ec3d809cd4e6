"""Options and small helpers shared by the ``triton`` subcommands."""
from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import typer

from ..cloudapi import utcnow
from ..common import long_ago, short_id
from ..dispatch import RuntimeContext, complete, get_runtime
from ..output import TableOptions, err_console, print_json, print_json_compact

WAIT_OPTION = typer.Option(False, "--wait", "-w", help="Wait for the operation to complete.")
WAIT_TIMEOUT_OPTION = typer.Option(
    None,
    "--wait-timeout",
    min=1,
    metavar="SECONDS",
    help="Timeout in seconds for --wait (default: the configured wait_timeout).",
)
FORCE_OPTION = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Answer yes to confirmations.")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Print no progress output.")


def instance_arg(help_text: str = "Instance name, id or short id.") -> Any:
    """Positional instance argument with completion from the listing cache."""
    return typer.Argument(..., metavar="INST", help=help_text, autocompletion=complete("tritoninstance"))


def instances_arg(help_text: str = "Instance names, ids or short ids.") -> Any:
    """Variadic instance argument (at least one)."""
    return typer.Argument(..., metavar="INST...", help=help_text, autocompletion=complete("tritoninstance"))


def runtime_of(ctx: typer.Context) -> RuntimeContext:
    """Return the runtime threaded through *ctx*."""
    return get_runtime(ctx)


def table_options(
    output: Sequence[str] | None,
    long: bool,
    no_header: bool,
    sort_by: Sequence[str] | None,
    json_output: bool,
    json_stream: bool = False,
) -> TableOptions:
    """Bundle the listing options of one command line."""
    return TableOptions(
        output=output,
        long=long,
        no_header=no_header,
        sort_by=sort_by,
        json_output=json_output,
        json_stream=json_stream,
    )


def print_record(record: object, *, json_output: bool = False) -> None:
    """Print a single record: pretty JSON by default, compact with ``-j``."""
    if json_output:
        print_json_compact(record)
    else:
        print_json(record)


def effective_timeout(runtime: RuntimeContext, value: float | None) -> float | None:
    """Return the effective ``--wait-timeout`` in seconds (``None`` waits forever)."""
    return float(value) if value is not None else runtime.config.wait_timeout


def add_computed_fields(item: Mapping[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Return *item* with the client-side ``shortid`` and ``age`` columns."""
    row = dict(item)
    item_id = str(item.get("id") or "")
    if item_id:
        row["shortid"] = short_id(item_id)
    created = item.get("created")
    if created:
        try:
            row["age"] = long_ago(str(created), now or utcnow())
        except ValueError:
            row["age"] = None
    return row


@contextmanager
def distraction(level: int, message: str = "Waiting...") -> Iterator[None]:
    """Show a spinner on stderr for ``-w -w`` when stderr is a terminal."""
    if level < 2 or not err_console.is_terminal:
        yield
        return
    with err_console.status(message):
        yield


__all__ = [
    "FORCE_OPTION",
    "QUIET_OPTION",
    "WAIT_OPTION",
    "WAIT_TIMEOUT_OPTION",
    "YES_OPTION",
    "add_computed_fields",
    "distraction",
    "effective_timeout",
    "instance_arg",
    "instances_arg",
    "print_record",
    "runtime_of",
    "table_options",
]
