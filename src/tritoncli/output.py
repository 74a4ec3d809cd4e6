"""Console output: tables, JSON documents and JSON streams.

Listing commands share the ``-o/--output``, ``-l/--long``, ``-H``,
``-s/--sort-by``, ``-j/--json`` and ``-J/--json-stream`` options defined here.
Tables are rendered with :mod:`rich` the same way for every resource type.
"""
from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .common import split_comma_values
from .errors import UsageError

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

OUTPUT_OPTION = typer.Option(
    None,
    "--output",
    "-o",
    metavar="FIELD[,FIELD...]",
    help="Columns to show (comma separated, may repeat).",
)
LONG_OPTION = typer.Option(False, "--long", "-l", help="Show the long set of columns.")
NO_HEADER_OPTION = typer.Option(False, "-H", help="Omit the table header row.")
SORT_OPTION = typer.Option(
    None,
    "--sort-by",
    "-s",
    metavar="FIELD[,FIELD...]",
    help="Sort on the given fields; prefix a field with '-' to sort descending.",
)
JSON_OPTION = typer.Option(False, "--json", "-j", help="Emit JSON.")
JSON_STREAM_OPTION = typer.Option(
    False, "--json-stream", "-J", help="Emit one JSON object per line."
)


@dataclass(frozen=True)
class ListingSpec:
    """Default presentation of one resource listing."""

    columns: str
    long_columns: str
    sort: str = ""
    #: header label overrides, e.g. ``{"shortid": "SHORTID"}``
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TableOptions:
    """Presentation options collected from a listing command line."""

    output: Sequence[str] | None = None
    long: bool = False
    no_header: bool = False
    sort_by: Sequence[str] | None = None
    json_output: bool = False
    json_stream: bool = False

    def columns(self, listing: ListingSpec) -> list[str]:
        """Return the columns to render for *listing*."""
        if self.output:
            return split_comma_values(self.output)
        return split_comma_values([listing.long_columns if self.long else listing.columns])

    def sort_keys(self, listing: ListingSpec) -> list[str]:
        """Return the sort fields for *listing*."""
        if self.sort_by:
            return split_comma_values(self.sort_by)
        return split_comma_values([listing.sort])


def emit(text: str = "") -> None:
    """Write one plain line to stdout (no markup, no wrapping)."""
    typer.echo(text)


def warn(text: str) -> None:
    """Write one plain line to stderr."""
    typer.echo(text, err=True)


def print_json(data: object) -> None:
    """Pretty-print *data* as JSON."""
    emit(json.dumps(data, indent=4, sort_keys=False))


def print_json_compact(data: object) -> None:
    """Print *data* as compact single-line JSON."""
    emit(json.dumps(data, separators=(",", ":")))


def print_json_stream(items: Iterable[object]) -> None:
    """Print each item as one line of compact JSON."""
    for item in items:
        print_json_compact(item)


def sort_items(items: Sequence[Mapping[str, Any]], keys: Sequence[str]) -> list[Mapping[str, Any]]:
    """Stable multi-key sort; a ``-field`` key sorts descending."""
    result = list(items)
    for key in reversed(list(keys)):
        descending = key.startswith("-")
        name = key[1:] if descending else key
        result.sort(key=lambda item, name=name: _sort_value(item.get(name)), reverse=descending)
    return result


def _sort_value(value: object) -> tuple[int, object]:
    if value is None:
        return (0, "")
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def cell(value: object) -> str:
    """Render one table cell."""
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(cell(item) for item in value) or "-"
    if isinstance(value, Mapping):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def print_table(
    items: Sequence[Mapping[str, Any]],
    columns: Sequence[str],
    *,
    header: bool = True,
    sort: Sequence[str] = (),
    labels: Mapping[str, str] | None = None,
) -> None:
    """Render *items* as a table with one column per field in *columns*."""
    if not columns:
        raise UsageError("no columns to show")
    table = Table(
        show_header=header,
        header_style="bold magenta",
        box=None,
        pad_edge=False,
        show_edge=False,
    )
    for column in columns:
        label = (labels or {}).get(column, column.upper())
        table.add_column(label, no_wrap=True, overflow="ignore")
    for item in sort_items(items, sort):
        table.add_row(*(cell(item.get(column)) for column in columns))
    console.print(table, soft_wrap=True)


def render_listing(
    items: Sequence[Mapping[str, Any]],
    listing: ListingSpec,
    options: TableOptions,
    *,
    raw: Sequence[Any] | None = None,
    prepare: Callable[[Mapping[str, Any]], Mapping[str, Any]] | None = None,
) -> None:
    """Render a listing as JSON, a JSON stream or a table.

    JSON output uses *raw* (the records as CloudAPI returned them) when given;
    tables use the *prepare*-d rows so computed columns are available.
    """
    source = list(raw if raw is not None else items)
    if options.json_stream:
        print_json_stream(source)
        return
    if options.json_output:
        print_json(source)
        return
    rows = [prepare(item) if prepare else item for item in items]
    print_table(
        rows,
        options.columns(listing),
        header=not options.no_header,
        sort=options.sort_keys(listing),
        labels=listing.labels,
    )


__all__ = [
    "JSON_OPTION",
    "JSON_STREAM_OPTION",
    "LONG_OPTION",
    "ListingSpec",
    "NO_HEADER_OPTION",
    "OUTPUT_OPTION",
    "SORT_OPTION",
    "TableOptions",
    "cell",
    "console",
    "emit",
    "err_console",
    "print_json",
    "print_json_compact",
    "print_json_stream",
    "print_table",
    "render_listing",
    "sort_items",
    "warn",
]
