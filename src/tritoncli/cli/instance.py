"""``triton instance``: list, create, inspect and drive instances.

Nested groups (``nic``, ``snapshot``, ``tag``, ``metadata``, ``disk``,
``fwrule``, ``migration``) are mounted from :mod:`tritoncli.cli.instance_parts`
and :mod:`tritoncli.cli.migration`.
"""
from __future__ import annotations

import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import typer

from ..cloudapi import utcnow
from ..common import human_duration, kv_to_obj, short_id, split_comma_values
from ..create import CreateOptions, create_instance, plan_instance_create
from ..dispatch import (
    argtypes,
    command,
    complete,
    help_template,
    ordered_options,
)
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
    print_json_compact,
    render_listing,
    warn,
)
from ..pipeline import primary_secondary, run_parallel
from .helpers import (
    WAIT_OPTION,
    WAIT_TIMEOUT_OPTION,
    add_computed_fields,
    distraction,
    effective_timeout,
    instance_arg,
    instances_arg,
    print_record,
    runtime_of,
    table_options,
)

app = typer.Typer(help="List, create and manage instances.", no_args_is_help=True)

INSTANCE_FILTERS = ("type", "brand", "name", "image", "state", "memory", "docker")
INSTANCE_LISTING = ListingSpec(
    columns="shortid,name,img,state,flags,age",
    long_columns="id,name,img,brand,package,state,flags,primaryIp,created",
    sort="created",
)
AUDIT_LISTING = ListingSpec(
    columns="shortid,time,action,success",
    long_columns="id,time,action,success",
    sort="time",
)
CREATE_ORDERED_KEYS = (
    "metadata",
    "metadata_file",
    "script",
    "firewall",
    "deletion_protection",
    "delegate_dataset",
)
DEFAULT_WAIT_STATES = ("running", "failed")

CREATE_HELP = """
Create a new instance.

{{usage}}

{{options}}

Where IMAGE is an image name, name@version, id or short id (see
"{{name}} image list") and PACKAGE is a package name, id or short id
(see "{{name}} package list").

Metadata options (-m, -M, --script) and the --firewall,
--deletion-protection and --delegate-dataset flags are applied in the
order given; a later value for the same key wins.
"""


def instance_rows(
    instances: Sequence[Mapping[str, Any]], images: Sequence[Mapping[str, Any]] | None
) -> list[dict[str, Any]]:
    """Add the client-side ``shortid``, ``img``, ``flags`` and ``age`` columns."""
    image_names = {
        str(image.get("id")): f"{image.get('name')}@{image.get('version')}"
        for image in images or ()
    }
    now = utcnow()
    rows = []
    for instance in instances:
        row = add_computed_fields(instance, now=now)
        image_id = instance.get("image")
        row["img"] = image_names.get(str(image_id)) or (short_id(str(image_id)) if image_id else None)
        flags = []
        if instance.get("docker"):
            flags.append("D")
        if instance.get("firewall_enabled"):
            flags.append("F")
        if instance.get("brand") == "kvm":
            flags.append("K")
        row["flags"] = "".join(flags) or None
        rows.append(row)
    return rows


def _label(instance: Mapping[str, Any]) -> str:
    name = instance.get("name")
    return f"{name} ({instance.get('id')})" if name else str(instance.get("id"))


# ----------------------------------------------------------------------
# list / get / create
# ----------------------------------------------------------------------


@command(app, "list", "ls")
@argtypes("none")
def instance_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(
        None,
        metavar="[FILTERS...]",
        help="FIELD=VALUE filters on type, brand, name, image, state, memory or docker.",
    ),
    credentials: bool = typer.Option(
        False,
        "--credentials",
        help='Include generated credentials in the "metadata.credentials" keys.',
    ),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List instances."""
    runtime = runtime_of(ctx)
    query: dict[str, object] = dict(kv_to_obj(filters or [], INSTANCE_FILTERS))
    if credentials:
        query["credentials"] = True

    api, resolver = runtime.api, runtime.resolver
    instances, images = primary_secondary(
        lambda: api.list_machines(**query),
        lambda: resolver.listing("images", use_cache=True),
        label="images",
    )
    if not query:
        runtime.cache.put("instances", instances)
    render_listing(
        instance_rows(instances, images),
        INSTANCE_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=instances,
    )


@command(app, "get")
@argtypes("tritoninstance")
def instance_get(
    ctx: typer.Context,
    inst: str = instance_arg(),
    credentials: bool = typer.Option(
        False, "--credentials", help='Include generated credentials in "metadata.credentials".'
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Get an instance."""
    runtime = runtime_of(ctx)
    instance = runtime.resolver.get_instance(inst)
    if credentials:
        instance = runtime.api.get_machine(str(instance["id"]), credentials=True)
    print_record(instance, json_output=json_output)


@command(app, "create")
@help_template(CREATE_HELP, max_help_col=34)
@argtypes("tritonimage", "tritonpackage")
def instance_create(
    ctx: typer.Context,
    image: str = typer.Argument(..., metavar="IMAGE", autocompletion=complete("tritonimage")),
    package: str = typer.Argument(..., metavar="PACKAGE", autocompletion=complete("tritonpackage")),
    name: str | None = typer.Option(
        None,
        "--name",
        "-n",
        metavar="NAME",
        help="Instance name. If not given, one will be generated server-side.",
        rich_help_panel="Create options",
    ),
    brand: str | None = typer.Option(
        None,
        "--brand",
        "-b",
        metavar="BRAND",
        help="Override the default brand for this instance (e.g. bhyve, kvm).",
        rich_help_panel="Create options",
    ),
    tag: list[str] | None = typer.Option(
        None,
        "--tag",
        "-t",
        metavar="TAG",
        help="Add a tag: KEY=VALUE, a JSON object or @FILE. May repeat.",
        rich_help_panel="Create options",
    ),
    affinity: list[str] | None = typer.Option(
        None,
        "--affinity",
        "-a",
        metavar="RULE",
        help="Placement rule: instance==INST, instance!=INST, instance==~INST or instance!=~INST.",
        autocompletion=complete("tritonaffinityrule"),
        rich_help_panel="Create options",
    ),
    network: list[str] | None = typer.Option(
        None,
        "--network",
        "-N",
        metavar="NETWORK",
        help="One or more comma separated networks (name, id or short id). May repeat.",
        autocompletion=complete("tritonnetwork"),
        rich_help_panel="Create options",
    ),
    nic: list[str] | None = typer.Option(
        None,
        "--nic",
        metavar="NICOPTS",
        help="A network interface: ipv4_uuid=UUID[,ipv4_ips=IP]. May repeat.",
        rich_help_panel="Create options",
    ),
    firewall: bool = typer.Option(
        False, "--firewall", help="Enable Cloud Firewall on this instance.", rich_help_panel="Create options"
    ),
    deletion_protection: bool = typer.Option(
        False,
        "--deletion-protection",
        help="Refuse deletion of the instance until the flag is disabled.",
        rich_help_panel="Create options",
    ),
    delegate_dataset: bool = typer.Option(
        False,
        "--delegate-dataset",
        help="Delegate a ZFS dataset to the instance.",
        rich_help_panel="Create options",
    ),
    volume: list[str] | None = typer.Option(
        None,
        "--volume",
        "-v",
        metavar="VOLMOUNT",
        help="Mount a volume: NAME:/MOUNTPOINT[:ro|rw]. May repeat.",
        rich_help_panel="Create options",
    ),
    disk: list[str] | None = typer.Option(
        None,
        "--disk",
        metavar="DISK",
        help='A bhyve disk as JSON, e.g. \'{"size": 10240}\', or @FILE with a JSON array.',
        rich_help_panel="Create options",
    ),
    encrypted: bool = typer.Option(
        False, "--encrypted", help="Place the instance on an encrypted compute node.", rich_help_panel="Create options"
    ),
    allow_shared_images: bool = typer.Option(
        False,
        "--allow-shared-images",
        help="Allow images shared with the account.",
        rich_help_panel="Create options",
    ),
    metadata: list[str] | None = typer.Option(
        None,
        "--metadata",
        "-m",
        metavar="DATA",
        help="Add metadata: KEY=VALUE, a JSON object or @FILE. May repeat.",
        rich_help_panel="Metadata options",
    ),
    metadata_file: list[str] | None = typer.Option(
        None,
        "--metadata-file",
        "-M",
        metavar="KEY=FILE",
        help="Set a metadata key from the contents of a file.",
        rich_help_panel="Metadata options",
    ),
    script: list[str] | None = typer.Option(
        None,
        "--script",
        metavar="FILE",
        help='Load "user-script" metadata from a file.',
        rich_help_panel="Metadata options",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Go through the motions without creating.", rich_help_panel="Other options"
    ),
    wait: int = typer.Option(
        0,
        "--wait",
        "-w",
        count=True,
        help="Wait for the creation to complete. Use twice for a spinner.",
        rich_help_panel="Other options",
    ),
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = typer.Option(
        False, "--json", "-j", help="JSON stream output.", rich_help_panel="Other options"
    ),
) -> None:
    """Create a new instance."""
    runtime = runtime_of(ctx)
    ordered = [
        (occurrence.key, occurrence.value)
        for occurrence in ordered_options(ctx)
        if occurrence.key in CREATE_ORDERED_KEYS
    ]
    options = CreateOptions(
        image=image,
        package=package,
        name=name,
        networks=split_comma_values(network),
        nics=list(nic or []),
        volumes=list(volume or []),
        disks=list(disk or []),
        affinity=list(affinity or []),
        tags=list(tag or []),
        brand=brand,
        allow_shared_images=allow_shared_images,
        encrypted=encrypted,
        ordered=ordered,
    )
    with runtime.logger.operation(
        "instance create",
        args={"image": image, "package": package, "name": name, "dry_run": dry_run, "wait": wait},
        target={"kind": "instance", "name": name},
    ) as op:
        warnings: list[str] = []

        def note(text: str) -> None:
            warnings.append(text)
            warn(text)

        plan = plan_instance_create(runtime.resolver, options, warn=note)

        def announce(instance: Mapping[str, Any]) -> None:
            if json_output and not dry_run:
                print_json_compact(instance)
                return
            extra = f", {instance['package']}" if instance.get("package") else ""
            emit(
                f"Creating instance {instance.get('name')} "
                f"({instance.get('id')}, {plan.image_label}{extra})"
            )

        with distraction(wait, "Waiting for the instance to be running..."):
            instance, elapsed = create_instance(
                runtime.api,
                plan,
                dry_run=dry_run,
                wait=bool(wait),
                wait_timeout=effective_timeout(runtime, wait_timeout),
                on_created=announce,
            )
        if wait:
            if json_output:
                print_json_compact(instance)
            else:
                emit(
                    f"Created instance {instance.get('name')} ({instance.get('id')}) "
                    f"in {human_duration(elapsed)}"
                )
        if dry_run:
            op.success("Dry run: no instance created.", changed=0)
            return
        runtime.cache.invalidate("instances")
        if warnings:
            op.warning(f"Created instance {instance.get('id')}.", warnings=warnings, changed=1)
        else:
            op.success(f"Created instance {instance.get('id')}.", changed=1)


# ----------------------------------------------------------------------
# lifecycle
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class LifecycleAction:
    """One of the start/stop/reboot style actions."""

    verb: str
    past: str
    #: state the wait polls for; ``None`` waits on the audit trail instead
    state: str | None


LIFECYCLE_ACTIONS = {
    "start": LifecycleAction("Start", "Started", "running"),
    "stop": LifecycleAction("Stop", "Stopped", "stopped"),
    "reboot": LifecycleAction("Reboot", "Rebooted", None),
    "delete": LifecycleAction("Delete", "Deleted", "deleted"),
}


def run_lifecycle(
    ctx: typer.Context,
    action: str,
    tokens: Sequence[str],
    *,
    wait: bool,
    wait_timeout: float | None,
    snapshot: str | None = None,
) -> None:
    """Run *action* on every instance in parallel, collecting failures."""
    runtime = runtime_of(ctx)
    spec = LIFECYCLE_ACTIONS[action]
    api, resolver = runtime.api, runtime.resolver
    timeout = effective_timeout(runtime, wait_timeout)
    calls: dict[str, Callable[[str], Any]] = {
        "start": api.start_machine,
        "stop": api.stop_machine,
        "reboot": api.reboot_machine,
        "delete": api.delete_machine,
    }

    def one(token: str) -> str:
        instance = resolver.get_instance(token)
        instance_id = str(instance["id"])
        label = _label(instance)
        since = utcnow()
        if snapshot:
            api.start_machine_from_snapshot(instance_id, snapshot)
        else:
            calls[action](instance_id)
        emit(f"{spec.verb} (async) instance {label}")
        if wait:
            if spec.state is None:
                api.wait_for_machine_audit(instance_id, action, since=since, timeout=timeout)
            else:
                api.wait_for_machine_states(instance_id, (spec.state,), timeout=timeout)
            emit(f"{spec.past} instance {label}")
        return instance_id

    with runtime.logger.operation(
        f"instance {action}",
        args={"instances": list(tokens), "wait": wait},
        target={"kind": "instance"},
    ) as op:
        done = run_parallel(one, list(tokens), max_workers=runtime.config.max_concurrency)
        if action == "delete":
            runtime.cache.invalidate("instances")
        op.success(f"{spec.past} {len(done)} instance(s).", changed=len(done))


@command(app, "start")
@argtypes("tritoninstance")
def instance_start(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    snapshot: str | None = typer.Option(
        None, "--snapshot", metavar="SNAPSHOT", help="Boot from the named snapshot."
    ),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Start one or more instances."""
    run_lifecycle(ctx, "start", insts, wait=wait, wait_timeout=wait_timeout, snapshot=snapshot)


@command(app, "stop")
@argtypes("tritoninstance")
def instance_stop(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Stop one or more instances."""
    run_lifecycle(ctx, "stop", insts, wait=wait, wait_timeout=wait_timeout)


@command(app, "reboot")
@argtypes("tritoninstance")
def instance_reboot(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Reboot one or more instances."""
    run_lifecycle(ctx, "reboot", insts, wait=wait, wait_timeout=wait_timeout)


@command(app, "delete", "rm")
@argtypes("tritoninstance")
def instance_delete(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Delete one or more instances."""
    run_lifecycle(ctx, "delete", insts, wait=wait, wait_timeout=wait_timeout)


@command(app, "resize")
@argtypes("tritoninstance", "tritonpackage")
def instance_resize(
    ctx: typer.Context,
    inst: str = instance_arg(),
    package: str = typer.Argument(..., metavar="PACKAGE", autocompletion=complete("tritonpackage")),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Resize an instance to a different package."""
    runtime = runtime_of(ctx)
    with runtime.logger.operation(
        "instance resize", args={"package": package, "wait": wait}, target={"kind": "instance", "name": inst}
    ) as op:
        instance = runtime.resolver.get_instance(inst)
        instance_id = str(instance["id"])
        package_id = runtime.resolver.resolve_id("packages", package)
        since = utcnow()
        runtime.api.resize_machine(instance_id, package=package_id)
        emit(f"Resizing instance {_label(instance)} to package {package}")
        if wait:
            runtime.api.wait_for_machine_audit(
                instance_id, "resize", since=since, timeout=effective_timeout(runtime, wait_timeout)
            )
            emit(f"Resized instance {_label(instance)} to package {package}")
        op.success(f"Resized instance {instance_id}.", changed=1)


@command(app, "rename")
@argtypes("tritoninstance", "none")
def instance_rename(
    ctx: typer.Context,
    inst: str = instance_arg(),
    name: str = typer.Argument(..., metavar="NAME", help="The new instance name."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Rename an instance."""
    runtime = runtime_of(ctx)
    with runtime.logger.operation(
        "instance rename", args={"name": name, "wait": wait}, target={"kind": "instance", "name": inst}
    ) as op:
        instance = runtime.resolver.get_instance(inst)
        instance_id = str(instance["id"])
        since = utcnow()
        runtime.api.rename_machine(instance_id, name=name)
        emit(f'Renaming instance {_label(instance)} to "{name}"')
        if wait:
            runtime.api.wait_for_machine_audit(
                instance_id, "rename", since=since, timeout=effective_timeout(runtime, wait_timeout)
            )
            emit(f'Renamed instance {instance_id} to "{name}"')
        runtime.cache.invalidate("instances")
        op.success(f"Renamed instance {instance_id}.", changed=1)


def _toggle(
    ctx: typer.Context,
    tokens: Sequence[str],
    *,
    feature: str,
    enable: bool,
    wait: bool,
    wait_timeout: float | None,
) -> None:
    runtime = runtime_of(ctx)
    api = runtime.api
    timeout = effective_timeout(runtime, wait_timeout)
    if feature == "firewall":
        call = api.enable_machine_firewall if enable else api.disable_machine_firewall
        waiter = api.wait_for_machine_firewall_enabled
        label = "firewall"
    else:
        call = (
            api.enable_machine_deletion_protection
            if enable
            else api.disable_machine_deletion_protection
        )
        waiter = api.wait_for_deletion_protection_enabled
        label = "deletion protection"
    doing, done = ("Enabling", "Enabled") if enable else ("Disabling", "Disabled")
    resolver = runtime.resolver

    def one(token: str) -> str:
        instance = resolver.get_instance(token)
        instance_id = str(instance["id"])
        call(instance_id)
        emit(f"{doing} {label} for instance {_label(instance)}")
        if wait:
            waiter(instance_id, enable, timeout=timeout)
            emit(f"{done} {label} for instance {_label(instance)}")
        return instance_id

    with runtime.logger.operation(
        f"instance {'enable' if enable else 'disable'}-{feature.replace('_', '-')}",
        args={"instances": list(tokens), "wait": wait},
        target={"kind": "instance"},
    ) as op:
        changed = run_parallel(one, list(tokens), max_workers=runtime.config.max_concurrency)
        op.success(f"{done} {label} on {len(changed)} instance(s).", changed=len(changed))


@command(app, "enable-firewall")
@argtypes("tritoninstance")
def instance_enable_firewall(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Enable the Cloud Firewall on one or more instances."""
    _toggle(ctx, insts, feature="firewall", enable=True, wait=wait, wait_timeout=wait_timeout)


@command(app, "disable-firewall")
@argtypes("tritoninstance")
def instance_disable_firewall(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Disable the Cloud Firewall on one or more instances."""
    _toggle(ctx, insts, feature="firewall", enable=False, wait=wait, wait_timeout=wait_timeout)


@command(app, "enable-deletion-protection")
@argtypes("tritoninstance")
def instance_enable_deletion_protection(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Enable deletion protection on one or more instances."""
    _toggle(
        ctx, insts, feature="deletion_protection", enable=True, wait=wait, wait_timeout=wait_timeout
    )


@command(app, "disable-deletion-protection")
@argtypes("tritoninstance")
def instance_disable_deletion_protection(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
) -> None:
    """Disable deletion protection on one or more instances."""
    _toggle(
        ctx, insts, feature="deletion_protection", enable=False, wait=wait, wait_timeout=wait_timeout
    )


# ----------------------------------------------------------------------
# wait / audit / ip / exec
# ----------------------------------------------------------------------


@command(app, "wait")
@argtypes("tritoninstance")
def instance_wait(
    ctx: typer.Context,
    insts: list[str] = instances_arg(),
    states: list[str] | None = typer.Option(
        None,
        "--states",
        "-s",
        metavar="STATES",
        help="Comma separated states to wait for (default: running,failed).",
    ),
    timeout: int | None = typer.Option(
        None, "--timeout", min=1, metavar="SECONDS", help="Timeout in seconds."
    ),
) -> None:
    """Wait for instances to reach one of a set of states."""
    runtime = runtime_of(ctx)
    wanted = tuple(split_comma_values(states)) or DEFAULT_WAIT_STATES
    wait_for = effective_timeout(runtime, timeout)
    api, resolver = runtime.api, runtime.resolver

    def one(token: str) -> dict[str, Any]:
        instance = resolver.get_instance(token)
        if instance.get("state") in wanted:
            emit(f"State of instance {_label(instance)} is {instance.get('state')}")
            return instance
        final = api.wait_for_machine_states(str(instance["id"]), wanted, timeout=wait_for)
        emit(f"Instance {_label(instance)} moved to state {final.get('state')}")
        return final

    emit(f"Waiting for {len(insts)} instance(s) to enter state (states: {', '.join(wanted)})")
    run_parallel(one, list(insts), max_workers=runtime.config.max_concurrency)


@command(app, "audit")
@argtypes("tritoninstance")
def instance_audit(
    ctx: typer.Context,
    inst: str = instance_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List instance actions."""
    runtime = runtime_of(ctx)
    instance_id = runtime.resolver.resolve_id("instances", inst)
    records = runtime.api.machine_audit(instance_id)
    render_listing(
        [add_computed_fields(record) for record in records],
        AUDIT_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=records,
    )


@command(app, "ip")
@argtypes("tritoninstance")
def instance_ip(ctx: typer.Context, inst: str = instance_arg()) -> None:
    """Print the primary IP of an instance."""
    runtime = runtime_of(ctx)
    instance = runtime.resolver.get_instance(inst)
    primary_ip = instance.get("primaryIp")
    if not primary_ip:
        raise TritonError(f"primaryIp not found for instance {_label(instance)}")
    emit(str(primary_ip))


@command(
    app,
    "exec",
    context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
)
@argtypes("tritoninstance", "none")
def instance_exec(
    ctx: typer.Context,
    inst: str = instance_arg(),
    cmd: list[str] = typer.Argument(..., metavar="CMD...", help="Command and arguments to run."),
) -> None:
    """Execute a command in an instance and exit with its status."""
    runtime = runtime_of(ctx)
    instance_id = runtime.resolver.resolve_id("instances", inst)
    code = 0
    for event in runtime.api.machine_exec(instance_id, cmd):
        kind = event.get("type")
        data = event.get("data")
        if kind == "stdout":
            sys.stdout.write(str(data))
        elif kind == "stderr":
            sys.stderr.write(str(data))
        elif kind == "end":
            code = int((data or {}).get("code") or 0) if isinstance(data, Mapping) else 0
    sys.stdout.flush()
    if code:
        raise typer.Exit(code=code)


__all__ = [
    "INSTANCE_LISTING",
    "app",
    "instance_create",
    "instance_delete",
    "instance_get",
    "instance_ip",
    "instance_list",
    "instance_reboot",
    "instance_rows",
    "instance_start",
    "instance_stop",
    "run_lifecycle",
]
