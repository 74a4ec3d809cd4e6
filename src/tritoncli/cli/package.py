"""``triton package`` commands."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import typer

from ..common import human_size_from_mib, kv_to_obj, short_id
from ..dispatch import argtypes, command, complete
from ..output import (
    JSON_OPTION,
    JSON_STREAM_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    ListingSpec,
    print_table,
    render_listing,
    sort_items,
)
from .helpers import print_record, runtime_of, table_options

app = typer.Typer(help="List and get packages.", no_args_is_help=True)

PACKAGE_FILTERS = ("name", "memory", "disk", "swap", "lwps", "version", "vcpus", "group")
PACKAGE_LISTING = ListingSpec(
    columns="shortid,name,memory,swap,disk,vcpus",
    long_columns="id,name,memory,swap,disk,vcpus,description",
    sort="_groupPlus,memory",
)
_SIZE_COLUMNS = ("memory", "swap", "disk")


def package_row(package: Mapping[str, Any], *, human: bool = True) -> dict[str, Any]:
    """Add ``shortid`` and the ``_groupPlus`` sort key; humanize sizes unless *human* is false.

    ``_groupPlus`` is the package group, or the ``foo`` of a ``foo-*`` name.
    """
    row = dict(package)
    row["shortid"] = short_id(str(package.get("id", "")))
    name = str(package.get("name") or "")
    row["_groupPlus"] = package.get("group") or (name.split("-", 1)[0] if "-" in name else "")
    if human:
        for column in _SIZE_COLUMNS:
            value = package.get(column)
            if isinstance(value, (int, float)):
                row[column] = human_size_from_mib(value)
        if package.get("vcpus") == 0:
            row["vcpus"] = "-"
    return row


@command(app, "list", "ls")
@argtypes("none")
def package_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(
        None, metavar="[FILTERS...]", help="FIELD=VALUE filters on name, memory, disk, swap, lwps, version, vcpus or group."
    ),
    parsable: bool = typer.Option(False, "-p", help="Show raw values rather than human readable sizes."),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List packages."""
    runtime = runtime_of(ctx)
    query = kv_to_obj(filters or [], PACKAGE_FILTERS)
    packages = runtime.api.list_packages(**query)
    if not query:
        runtime.cache.put("packages", packages)
    options = table_options(output, long, no_header, sort_by, json_output, json_stream)
    if options.json_output or options.json_stream:
        render_listing(packages, PACKAGE_LISTING, options)
        return
    # Sort on the raw numbers; sizes are humanized afterwards.
    ordered = sort_items([package_row(p, human=False) for p in packages], options.sort_keys(PACKAGE_LISTING))
    print_table(
        [package_row(row, human=not parsable) for row in ordered],
        options.columns(PACKAGE_LISTING),
        header=not options.no_header,
    )


@command(app, "get")
@argtypes("tritonpackage")
def package_get(
    ctx: typer.Context,
    package: str = typer.Argument(
        ..., metavar="PACKAGE", help="Package name, id or short id.", autocompletion=complete("tritonpackage")
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Get a package."""
    runtime = runtime_of(ctx)
    print_record(runtime.resolver.get_package(package), json_output=json_output)


__all__ = ["PACKAGE_LISTING", "app", "package_list", "package_row"]
