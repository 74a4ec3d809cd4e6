"""Per-instance sub-resources: NICs, snapshots, tags, metadata, disks, fwrules."""
from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import typer

from ..common import is_uuid, norm_short_id
from ..create import parse_nic
from ..dispatch import argtypes, command, complete
from ..editor import confirm
from ..errors import AmbiguousResourceError, ResourceNotFoundError, TritonError, UsageError
from ..metadata import parse_kv_args, render_kv
from ..output import (
    JSON_OPTION,
    JSON_STREAM_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    ListingSpec,
    emit,
    print_json,
    print_json_compact,
    render_listing,
    warn,
)
from ..pipeline import run_parallel
from ..waiters import poll_until
from .helpers import (
    FORCE_OPTION,
    QUIET_OPTION,
    WAIT_OPTION,
    WAIT_TIMEOUT_OPTION,
    add_computed_fields,
    effective_timeout,
    instance_arg,
    print_record,
    runtime_of,
    table_options,
)

nic_app = typer.Typer(help="List and manage instance network interface controllers.", no_args_is_help=True)
snapshot_app = typer.Typer(help="List, get, create and delete instance snapshots.", no_args_is_help=True)
tag_app = typer.Typer(help="List, get, set and delete tags on instances.", no_args_is_help=True)
metadata_app = typer.Typer(help="List, get, update and delete instance metadata.", no_args_is_help=True)
disk_app = typer.Typer(help="List, get, add, resize and delete bhyve instance disks.", no_args_is_help=True)
fwrule_app = typer.Typer(help="List firewall rules applying to an instance.", no_args_is_help=True)

NIC_LISTING = ListingSpec(
    columns="ip,mac,state,default,network",
    long_columns="ip,mac,state,default,network,gateway",
    sort="ip",
)
SNAPSHOT_LISTING = ListingSpec(columns="name,state,created", long_columns="name,state,created,size", sort="name")
DISK_LISTING = ListingSpec(
    columns="shortid,size,pci_slot", long_columns="id,size,pci_slot,boot", sort="pci_slot,shortid"
)
FWRULE_LISTING = ListingSpec(
    columns="shortid,enabled,global,rule", long_columns="id,enabled,global,rule,description", sort="rule"
)


def _instance(ctx: typer.Context, token: str) -> tuple[Any, dict[str, Any]]:
    runtime = runtime_of(ctx)
    return runtime, runtime.resolver.get_instance(token)


def _name(instance: Mapping[str, Any]) -> str:
    return str(instance.get("name") or instance.get("id"))


# ----------------------------------------------------------------------
# nic
# ----------------------------------------------------------------------


@command(nic_app, "create", "add")
@argtypes("tritoninstance", "tritonnetwork")
def nic_create(
    ctx: typer.Context,
    inst: str = instance_arg(),
    network: list[str] = typer.Argument(
        ...,
        metavar="NETWORK|NICOPT=VALUE...",
        help="A network name, id or short id, or ipv4_uuid=UUID[,ipv4_ips=IP] options.",
        autocompletion=complete("tritonnetwork"),
    ),
    primary: bool = typer.Option(False, "--primary", help="Make the new NIC the primary NIC."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a NIC on an instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    if any("=" in arg for arg in network):
        nic_spec: object = parse_nic(",".join(network))
    elif len(network) == 1:
        nic_spec = runtime.resolver.resolve_id("networks", network[0])
    else:
        raise UsageError("only one NETWORK may be given")
    with runtime.logger.operation(
        "instance nic create", args={"network": network, "primary": primary}, target={"kind": "nic", "instance": instance_id}
    ) as op:
        nic = runtime.api.add_nic(instance_id, network=nic_spec, primary=True if primary else None)
        if wait:
            nic = runtime.api.wait_for_nic_states(
                instance_id, str(nic["mac"]), ("running", "stopped"), timeout=effective_timeout(runtime, wait_timeout)
            )
        if json_output:
            print_json_compact(nic)
        else:
            emit(f"Created NIC {nic.get('mac')}")
        op.success(f"Created NIC {nic.get('mac')}.", changed=1)


@command(nic_app, "list", "ls")
@argtypes("tritoninstance")
def nic_list(
    ctx: typer.Context,
    inst: str = instance_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List an instance's NICs."""
    runtime = runtime_of(ctx)
    nics = runtime.api.list_nics(runtime.resolver.resolve_id("instances", inst))
    rows = [dict(nic, default=nic.get("primary")) for nic in nics]
    render_listing(
        rows, NIC_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream), raw=nics
    )


@command(nic_app, "get")
@argtypes("tritoninstance", "none")
def nic_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    mac: str = typer.Argument(..., metavar="MAC"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a specific NIC."""
    runtime = runtime_of(ctx)
    print_record(runtime.api.get_nic(runtime.resolver.resolve_id("instances", inst), mac), json_output=json_output)


@command(nic_app, "delete", "rm")
@argtypes("tritoninstance", "none")
def nic_delete(
    ctx: typer.Context,
    inst: str = instance_arg(),
    mac: str = typer.Argument(..., metavar="MAC"),
    force: bool = FORCE_OPTION,
) -> None:
    """Remove a NIC from an instance."""
    runtime, instance = _instance(ctx, inst)
    confirm(f'Delete NIC "{mac}" from instance "{_name(instance)}"?', assume_yes=force)
    with runtime.logger.operation(
        "instance nic delete", args={"mac": mac}, target={"kind": "nic", "instance": instance.get("id")}
    ) as op:
        runtime.api.remove_nic(str(instance["id"]), mac)
        emit(f"Deleted NIC {mac}")
        op.success(f"Deleted NIC {mac}.", changed=1)


# ----------------------------------------------------------------------
# snapshot
# ----------------------------------------------------------------------


@command(snapshot_app, "create")
@argtypes("tritoninstance")
def snapshot_create(
    ctx: typer.Context,
    inst: str = instance_arg(),
    name: str | None = typer.Option(None, "--name", "-n", metavar="NAME", help="Snapshot name."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Snapshot an instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    with runtime.logger.operation(
        "instance snapshot create", args={"name": name}, target={"kind": "snapshot", "instance": instance_id}
    ) as op:
        snapshot = runtime.api.create_machine_snapshot(instance_id, name=name)
        snap_name = str(snapshot.get("name"))
        if not json_output:
            emit(f"Creating snapshot {snap_name} of instance {_name(instance)}")
        if wait:
            snapshot = runtime.api.wait_for_snapshot_states(
                instance_id, snap_name, ("created", "failed"), timeout=effective_timeout(runtime, wait_timeout)
            )
            if snapshot.get("state") != "created":
                raise TritonError(f"failed to create snapshot {snap_name}")
            if not json_output:
                emit(f"Created snapshot {snap_name}")
        if json_output:
            print_json_compact(snapshot)
        op.success(f"Created snapshot {snap_name}.", changed=1)


@command(snapshot_app, "list", "ls")
@argtypes("tritoninstance")
def snapshot_list(
    ctx: typer.Context,
    inst: str = instance_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List an instance's snapshots."""
    runtime = runtime_of(ctx)
    snapshots = runtime.api.list_machine_snapshots(runtime.resolver.resolve_id("instances", inst))
    render_listing(
        snapshots, SNAPSHOT_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream)
    )


@command(snapshot_app, "get")
@argtypes("tritoninstance", "none")
def snapshot_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    name: str = typer.Argument(..., metavar="SNAPNAME"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a snapshot."""
    runtime = runtime_of(ctx)
    snapshot = runtime.api.get_machine_snapshot(runtime.resolver.resolve_id("instances", inst), name)
    print_record(snapshot, json_output=json_output)


@command(snapshot_app, "delete", "rm")
@argtypes("tritoninstance", "none")
def snapshot_delete(
    ctx: typer.Context,
    inst: str = instance_arg(),
    names: list[str] = typer.Argument(..., metavar="SNAPNAME..."),
    force: bool = FORCE_OPTION,
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Remove snapshots from an instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    quoted = ", ".join(f'"{name}"' for name in names)
    confirm(f"Delete snapshot(s) {quoted} of instance {_name(instance)}?", assume_yes=force)
    timeout = effective_timeout(runtime, wait_timeout)

    def one(name: str) -> str:
        runtime.api.delete_machine_snapshot(instance_id, name)
        emit(f"Deleting snapshot {name} of instance {_name(instance)}")
        if wait:
            runtime.api.wait_for_snapshot_states(instance_id, name, ("deleted",), timeout=timeout)
            emit(f"Deleted snapshot {name}")
        return name

    with runtime.logger.operation(
        "instance snapshot delete", args={"names": names}, target={"kind": "snapshot", "instance": instance_id}
    ) as op:
        deleted = run_parallel(one, list(names), max_workers=runtime.config.max_concurrency)
        op.success(f"Deleted {len(deleted)} snapshot(s).", changed=len(deleted))


# ----------------------------------------------------------------------
# tag
# ----------------------------------------------------------------------


def _wait_for_tags(
    runtime: Any,
    instance_id: str,
    *,
    expect: Callable[[Mapping[str, Any]], bool],
    timeout: float,
) -> dict[str, Any]:
    return poll_until(
        lambda: runtime.api.get_machine(instance_id),
        lambda machine: expect(machine.get("tags") or {}),
        interval=runtime.api.wait_interval,
        timeout=timeout,
        cancel=runtime.cancel,
        describe=lambda elapsed: f"timeout waiting for tag changes on instance {instance_id} (elapsed {round(elapsed)}s)",
    )


def _load_tags(args: Sequence[str], files: Sequence[str] | None) -> dict[str, Any]:
    sources = list(args) + [f"@{path}" for path in files or ()]
    if not sources:
        raise UsageError("no tags were provided")
    return parse_kv_args("tag", sources, warn=warn)


def _set_tags(
    ctx: typer.Context,
    inst: str,
    tags_args: Sequence[str],
    files: Sequence[str] | None,
    *,
    replace: bool,
    wait: bool,
    wait_timeout: int | None,
    json_output: bool,
    quiet: bool,
) -> None:
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    tags = _load_tags(tags_args, files)
    name = "instance tag replace-all" if replace else "instance tag set"
    with runtime.logger.operation(name, args={"tags": sorted(tags)}, target={"kind": "tag", "instance": instance_id}) as op:
        if replace:
            result = runtime.api.replace_machine_tags(instance_id, tags)
        else:
            result = runtime.api.add_machine_tags(instance_id, tags)
        if wait:
            if replace:
                expect = lambda current: dict(current) == tags  # noqa: E731
            else:
                expect = lambda current: all(current.get(k) == v for k, v in tags.items())  # noqa: E731
            machine = _wait_for_tags(
                runtime, instance_id, expect=expect, timeout=effective_timeout(runtime, wait_timeout)
            )
            result = machine.get("tags") or {}
        if not quiet:
            print_record(result, json_output=json_output)
        op.success(f"Updated {len(tags)} tag(s).", changed=len(tags))


@command(tag_app, "set")
@argtypes("tritoninstance", "file")
def tag_set(
    ctx: typer.Context,
    inst: str = instance_arg(),
    tags: list[str] | None = typer.Argument(None, metavar="[NAME=VALUE...]"),
    file: list[str] | None = typer.Option(
        None, "--file", "-f", metavar="FILE", help="Load tags from a file (JSON object or NAME=VALUE lines)."
    ),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Set one or more instance tags."""
    _set_tags(
        ctx, inst, tags or [], file, replace=False, wait=wait, wait_timeout=wait_timeout, json_output=json_output, quiet=quiet
    )


@command(tag_app, "replace-all")
@argtypes("tritoninstance", "file")
def tag_replace_all(
    ctx: typer.Context,
    inst: str = instance_arg(),
    tags: list[str] | None = typer.Argument(None, metavar="[NAME=VALUE...]"),
    file: list[str] | None = typer.Option(
        None, "--file", "-f", metavar="FILE", help="Load tags from a file (JSON object or NAME=VALUE lines)."
    ),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Replace all tags on an instance."""
    _set_tags(
        ctx, inst, tags or [], file, replace=True, wait=wait, wait_timeout=wait_timeout, json_output=json_output, quiet=quiet
    )


@command(tag_app, "list", "ls")
@argtypes("tritoninstance")
def tag_list(ctx: typer.Context, inst: str = instance_arg(), json_output: bool = JSON_OPTION) -> None:
    """List instance tags."""
    runtime = runtime_of(ctx)
    print_record(runtime.api.list_machine_tags(runtime.resolver.resolve_id("instances", inst)), json_output=json_output)


@command(tag_app, "get")
@argtypes("tritoninstance", "none")
def tag_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    name: str = typer.Argument(..., metavar="NAME"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Get an instance tag."""
    runtime = runtime_of(ctx)
    value = runtime.api.get_machine_tag(runtime.resolver.resolve_id("instances", inst), name)
    emit(json.dumps(value) if json_output else str(value))


@command(tag_app, "delete", "rm")
@argtypes("tritoninstance", "none")
def tag_delete(
    ctx: typer.Context,
    inst: str = instance_arg(),
    names: list[str] | None = typer.Argument(None, metavar="[NAME...]"),
    all_tags: bool = typer.Option(False, "--all", "-a", help="Remove all tags on this instance."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Delete one or more instance tags."""
    if all_tags and names:
        raise UsageError("cannot specify both tag names and --all")
    if not all_tags and not names:
        raise UsageError("no tag names given (use --all to remove every tag)")
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    with runtime.logger.operation(
        "instance tag delete", args={"names": names, "all": all_tags}, target={"kind": "tag", "instance": instance_id}
    ) as op:
        if all_tags:
            runtime.api.delete_machine_tags(instance_id)
            emit(f"Deleting all tags on instance {_name(instance)}")
            expect: Callable[[Mapping[str, Any]], bool] = lambda current: not current  # noqa: E731
        else:
            keys = list(names or [])

            def one(key: str) -> str:
                runtime.api.delete_machine_tag(instance_id, key)
                emit(f'Deleting tag "{key}" on instance {_name(instance)}')
                return key

            run_parallel(one, keys, max_workers=runtime.config.max_concurrency)
            expect = lambda current: not any(key in current for key in keys)  # noqa: E731
        if wait:
            _wait_for_tags(runtime, instance_id, expect=expect, timeout=effective_timeout(runtime, wait_timeout))
        op.success("Deleted tags.", changed=1)


# ----------------------------------------------------------------------
# metadata
# ----------------------------------------------------------------------


@command(metadata_app, "update", "set")
@argtypes("tritoninstance", "file")
def metadata_update(
    ctx: typer.Context,
    inst: str = instance_arg(),
    data: list[str] | None = typer.Argument(
        None, metavar="[KEY=VALUE|@FILE|JSON...]", help="Metadata to add or update."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Add or update instance metadata."""
    if not data:
        raise UsageError("no metadata was provided")
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    metadata = parse_kv_args("metadata", data, warn=warn)
    with runtime.logger.operation(
        "instance metadata update", args={"keys": sorted(metadata)}, target={"kind": "metadata", "instance": instance_id}
    ) as op:
        result = runtime.api.update_machine_metadata(instance_id, metadata)
        if json_output:
            print_json_compact(result)
        else:
            emit(f"Updated metadata on instance {_name(instance)} ({', '.join(metadata)})")
        op.success(f"Updated {len(metadata)} metadata key(s).", changed=len(metadata))


@command(metadata_app, "list", "ls")
@argtypes("tritoninstance")
def metadata_list(
    ctx: typer.Context,
    inst: str = instance_arg(),
    credentials: bool = typer.Option(False, "--credentials", help="Include generated credentials."),
    kv: bool = typer.Option(False, "--kv", help="Print KEY=VALUE lines instead of JSON."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List instance metadata (always JSON; compact with -j)."""
    runtime = runtime_of(ctx)
    metadata = runtime.api.list_machine_metadata(
        runtime.resolver.resolve_id("instances", inst), credentials=credentials
    )
    if kv:
        typer.echo(render_kv(metadata), nl=False)
    elif json_output:
        print_json_compact(metadata)
    else:
        print_json(metadata)


@command(metadata_app, "get")
@argtypes("tritoninstance", "none")
def metadata_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    key: str = typer.Argument(..., metavar="KEY"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Get one metadata value."""
    runtime = runtime_of(ctx)
    value = runtime.api.get_machine_metadata(runtime.resolver.resolve_id("instances", inst), key)
    emit(json.dumps(value) if json_output else str(value))


@command(metadata_app, "delete", "rm")
@argtypes("tritoninstance", "none")
def metadata_delete(
    ctx: typer.Context,
    inst: str = instance_arg(),
    keys: list[str] | None = typer.Argument(None, metavar="[KEY...]"),
    all_keys: bool = typer.Option(False, "--all", "-a", help="Remove all metadata on this instance."),
) -> None:
    """Delete instance metadata keys; failures are collected per key."""
    if all_keys and keys:
        raise UsageError("cannot specify both metadata keys and --all")
    if not all_keys and not keys:
        raise UsageError("no metadata keys given (use --all to remove every key)")
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    with runtime.logger.operation(
        "instance metadata delete",
        args={"keys": keys, "all": all_keys},
        target={"kind": "metadata", "instance": instance_id},
    ) as op:
        if all_keys:
            runtime.api.delete_all_machine_metadata(instance_id)
            emit(f"Deleted all metadata on instance {_name(instance)}")
            op.success("Deleted all metadata.", changed=1)
            return

        def one(key: str) -> str:
            runtime.api.delete_machine_metadata(instance_id, key)
            emit(f'Deleted metadata key "{key}" on instance {_name(instance)}')
            return key

        deleted = run_parallel(one, list(keys or []), max_workers=runtime.config.max_concurrency)
        op.success(f"Deleted {len(deleted)} metadata key(s).", changed=len(deleted))


# ----------------------------------------------------------------------
# disk
# ----------------------------------------------------------------------


def _resolve_disk(runtime: Any, instance_id: str, token: str) -> str:
    if is_uuid(token):
        return token
    prefix = norm_short_id(token)
    disks = runtime.api.list_machine_disks(instance_id)
    matches = [str(disk.get("id")) for disk in disks if prefix and str(disk.get("id", "")).startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise AmbiguousResourceError(f'disk short id "{token}" is ambiguous ({", ".join(matches)})', matches)
    raise ResourceNotFoundError(f'no disk with id or short id "{token}" on instance {instance_id}')


def _disk_size(text: str) -> int | str:
    if text == "remaining":
        return text
    try:
        size = int(text)
    except ValueError as exc:
        raise UsageError(f'SIZE must be a number of MiB or "remaining": {text}', cause=exc) from exc
    if size <= 0:
        raise UsageError(f"SIZE must be positive: {text}")
    return size


@command(disk_app, "add")
@argtypes("tritoninstance", "none")
def disk_add(
    ctx: typer.Context,
    inst: str = instance_arg(),
    size: str = typer.Argument(..., metavar="SIZE", help='Size in MiB, or "remaining".'),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Add a disk to a bhyve instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    with runtime.logger.operation("instance disk add", args={"size": size}, target={"kind": "disk", "instance": instance_id}) as op:
        disk = runtime.api.create_machine_disk(instance_id, size=_disk_size(size))
        if not json_output:
            emit(f"Adding disk to instance {_name(instance)}")
        if wait:
            disk = runtime.api.wait_for_disk_states(
                instance_id, str(disk["id"]), ("running", "stopped", "failed"), timeout=effective_timeout(runtime, wait_timeout)
            )
            if disk.get("state") == "failed":
                raise TritonError(f"failed to add disk {disk.get('id')}")
            if not json_output:
                emit(f"Added disk {disk.get('id')}")
        if json_output:
            print_json_compact(disk)
        op.success(f"Added disk {disk.get('id')}.", changed=1)


@command(disk_app, "list", "ls")
@argtypes("tritoninstance")
def disk_list(
    ctx: typer.Context,
    inst: str = instance_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List an instance's disks."""
    runtime = runtime_of(ctx)
    disks = runtime.api.list_machine_disks(runtime.resolver.resolve_id("instances", inst))
    render_listing(
        [add_computed_fields(disk) for disk in disks],
        DISK_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=disks,
    )


@command(disk_app, "get")
@argtypes("tritoninstance", "none")
def disk_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    disk: str = typer.Argument(..., metavar="DISK"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a specific disk."""
    runtime = runtime_of(ctx)
    instance_id = runtime.resolver.resolve_id("instances", inst)
    print_record(
        runtime.api.get_machine_disk(instance_id, _resolve_disk(runtime, instance_id, disk)),
        json_output=json_output,
    )


@command(disk_app, "resize")
@argtypes("tritoninstance", "none", "none")
def disk_resize(
    ctx: typer.Context,
    inst: str = instance_arg(),
    disk: str = typer.Argument(..., metavar="DISK"),
    size: int = typer.Argument(..., metavar="SIZE", min=1, help="New size in MiB."),
    dangerous_allow_shrink: bool = typer.Option(
        False, "--dangerous-allow-shrink", help="Allow the disk to shrink (data may be lost)."
    ),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Resize a disk of a bhyve instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    disk_id = _resolve_disk(runtime, instance_id, disk)
    with runtime.logger.operation(
        "instance disk resize", args={"size": size}, target={"kind": "disk", "instance": instance_id, "disk": disk_id}
    ) as op:
        runtime.api.resize_machine_disk(instance_id, disk_id, size=size, dangerous_allow_shrink=dangerous_allow_shrink)
        emit(f"Resizing disk {disk_id} of instance {_name(instance)}")
        if wait:
            runtime.api.wait_for_disk_states(
                instance_id, disk_id, ("running", "stopped"), timeout=effective_timeout(runtime, wait_timeout)
            )
            emit(f"Resized disk {disk_id}")
        op.success(f"Resized disk {disk_id}.", changed=1)


@command(disk_app, "delete", "rm")
@argtypes("tritoninstance", "none")
def disk_delete(
    ctx: typer.Context,
    inst: str = instance_arg(),
    disk: str = typer.Argument(..., metavar="DISK"),
    force: bool = FORCE_OPTION,
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Delete a disk from a bhyve instance."""
    runtime, instance = _instance(ctx, inst)
    instance_id = str(instance["id"])
    disk_id = _resolve_disk(runtime, instance_id, disk)
    confirm(f'Delete disk "{disk_id}" of instance "{_name(instance)}"?', assume_yes=force)
    with runtime.logger.operation(
        "instance disk delete", args={}, target={"kind": "disk", "instance": instance_id, "disk": disk_id}
    ) as op:
        runtime.api.delete_machine_disk(instance_id, disk_id)
        emit(f"Deleting disk {disk_id} of instance {_name(instance)}")
        if wait:
            runtime.api.wait_for_disk_states(
                instance_id, disk_id, ("deleted",), timeout=effective_timeout(runtime, wait_timeout)
            )
            emit(f"Deleted disk {disk_id}")
        op.success(f"Deleted disk {disk_id}.", changed=1)


# ----------------------------------------------------------------------
# fwrule
# ----------------------------------------------------------------------


def fwrule_rows(rules: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Firewall rule rows with ``shortid`` added."""
    return [add_computed_fields(rule) for rule in rules]


@command(fwrule_app, "list", "ls")
@argtypes("tritoninstance")
def instance_fwrule_list(
    ctx: typer.Context,
    inst: str = instance_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List firewall rules applying to an instance."""
    runtime = runtime_of(ctx)
    rules = runtime.api.list_machine_firewall_rules(runtime.resolver.resolve_id("instances", inst))
    render_listing(
        fwrule_rows(rules),
        FWRULE_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=rules,
    )


__all__ = [
    "FWRULE_LISTING",
    "disk_app",
    "disk_list",
    "fwrule_app",
    "fwrule_rows",
    "instance_fwrule_list",
    "metadata_app",
    "metadata_list",
    "nic_app",
    "snapshot_app",
    "snapshot_list",
    "tag_app",
    "tag_list",
]
