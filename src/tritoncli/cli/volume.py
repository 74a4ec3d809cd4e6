"""``triton volume`` commands."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import typer

from ..common import kv_to_obj
from ..create import parse_volume_size
from ..dispatch import argtypes, command, complete
from ..editor import confirm
from ..errors import TritonError
from ..output import (
    JSON_OPTION,
    JSON_STREAM_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    ListingSpec,
    emit,
    render_listing,
)
from ..pipeline import run_parallel
from .helpers import (
    FORCE_OPTION,
    WAIT_OPTION,
    WAIT_TIMEOUT_OPTION,
    add_computed_fields,
    effective_timeout,
    print_record,
    runtime_of,
    table_options,
)

app = typer.Typer(help="List, get, create and delete volumes.", no_args_is_help=True)

VOLUME_FILTERS = ("name", "size", "state", "type")
VOLUME_LISTING = ListingSpec(
    columns="shortid,name,size,type,state,age",
    long_columns="id,name,size,type,resource,state,created",
    sort="created",
)
SIZES_LISTING = ListingSpec(columns="type,sizeHuman", long_columns="type,size,sizeHuman", sort="size",
                            labels={"sizeHuman": "SIZE"})
MIB_PER_GIB = 1024


def _volume_arg() -> Any:
    return typer.Argument(
        ..., metavar="VOLUME", help="Volume name, id or short id.", autocompletion=complete("tritonvolume")
    )


def _label(volume: Mapping[str, Any]) -> str:
    name = volume.get("name")
    return f"{name} ({volume.get('id')})" if name else str(volume.get("id"))


@command(app, "list", "ls")
@argtypes("none")
def volume_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(
        None, metavar="[FILTERS...]", help="FIELD=VALUE filters on name, size, state or type."
    ),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List volumes."""
    runtime = runtime_of(ctx)
    query = kv_to_obj(filters or [], VOLUME_FILTERS)
    volumes = runtime.api.list_volumes(**query)
    if not query:
        runtime.cache.put("volumes", volumes)
    render_listing(
        [add_computed_fields(volume) for volume in volumes],
        VOLUME_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=volumes,
    )


@command(app, "get")
@argtypes("tritonvolume")
def volume_get(ctx: typer.Context, volume: str = _volume_arg(), json_output: bool = JSON_OPTION) -> None:
    """Get a volume."""
    runtime = runtime_of(ctx)
    record = runtime.resolver.get_volume(volume)
    if "state" not in record:
        record = runtime.api.get_volume(str(record["id"]))
    print_record(record, json_output=json_output)


@command(app, "create")
@argtypes("none")
def volume_create(
    ctx: typer.Context,
    name: str | None = typer.Option(
        None, "--name", "-n", metavar="NAME", help="Volume name; generated server-side when omitted."
    ),
    volume_type: str = typer.Option("tritonnfs", "--type", "-t", metavar="TYPE", help="Volume type."),
    size: str | None = typer.Option(
        None, "--size", "-S", metavar="SIZE", help="Size in MiB, or with a G/M suffix (e.g. 20G)."
    ),
    networks: list[str] | None = typer.Option(
        None,
        "--network",
        "-N",
        metavar="NETWORK",
        help="Network the volume is reachable on. Repeatable.",
        autocompletion=complete("tritonnetwork"),
    ),
    tags: list[str] | None = typer.Option(None, "--tag", metavar="NAME=VALUE", help="Volume tag. Repeatable."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a volume."""
    runtime = runtime_of(ctx)
    resolver = runtime.resolver
    payload: dict[str, object] = {
        "name": name,
        "type": volume_type,
        "size": parse_volume_size(size) if size else None,
        "networks": [resolver.resolve_id("networks", network) for network in networks] if networks else None,
        "tags": kv_to_obj(tags) if tags else None,
    }
    with runtime.logger.operation("volume create", args={"name": name, "size": size}, target={"kind": "volume"}) as op:
        volume = runtime.api.create_volume(**payload)
        if wait:
            volume = runtime.api.wait_for_volume_states(
                str(volume["id"]), ("ready", "failed"), timeout=effective_timeout(runtime, wait_timeout)
            )
            if volume.get("state") != "ready":
                raise TritonError(f"failed to create volume {_label(volume)}")
        print_record(volume, json_output=json_output)
        runtime.cache.invalidate("volumes")
        op.success(f"Created volume {volume.get('id')}.", changed=1)


@command(app, "delete", "rm")
@argtypes("tritonvolume")
def volume_delete(
    ctx: typer.Context,
    volumes: list[str] = typer.Argument(..., metavar="VOLUME...", autocompletion=complete("tritonvolume")),
    force: bool = FORCE_OPTION,
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Delete one or more volumes."""
    runtime = runtime_of(ctx)
    confirm(f"Delete volume(s) {', '.join(volumes)}?", assume_yes=force)
    api, resolver = runtime.api, runtime.resolver
    timeout = effective_timeout(runtime, wait_timeout)

    def one(token: str) -> str:
        volume_id = resolver.resolve_id("volumes", token)
        api.delete_volume(volume_id)
        if wait:
            api.wait_for_volume_states(volume_id, ("deleted", "failed"), timeout=timeout)
        return volume_id

    emit(f"Delete volume {', '.join(volumes)}")
    with runtime.logger.operation("volume delete", args={"volumes": volumes}, target={"kind": "volume"}) as op:
        deleted = run_parallel(one, list(volumes), max_workers=runtime.config.max_concurrency)
        runtime.cache.invalidate("volumes")
        op.success(f"Deleted {len(deleted)} volume(s).", changed=len(deleted))


@command(app, "sizes")
def volume_sizes(
    ctx: typer.Context,
    volume_type: str | None = typer.Option(None, "--type", "-t", metavar="TYPE", help="Only sizes for TYPE."),
    output: list[str] | None = OUTPUT_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List the volume sizes available in the datacenter."""
    runtime = runtime_of(ctx)
    sizes = runtime.api.list_volume_sizes(volume_type=volume_type)
    rows = [dict(size, sizeHuman=f"{size.get('size', 0) / MIB_PER_GIB:g}G") for size in sizes]
    render_listing(
        rows,
        SIZES_LISTING,
        table_options(output, False, no_header, sort_by, json_output, json_stream),
        raw=sizes,
    )


__all__ = ["VOLUME_LISTING", "app", "volume_list"]
