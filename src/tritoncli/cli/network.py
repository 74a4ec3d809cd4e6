"""``triton network`` and ``triton network ip|vlan`` commands."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import typer

from ..cloudapi import UPDATE_NETWORK_IP_FIELDS, UPDATE_VLAN_FIELDS
from ..common import bool_from_string, fields_from_args, kv_to_obj, short_id
from ..dispatch import argtypes, command, complete
from ..editor import confirm
from ..errors import UsageError
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
)
from .helpers import FORCE_OPTION, print_record, runtime_of, table_options

app = typer.Typer(help="List, get, create and delete networks.", no_args_is_help=True)
ip_app = typer.Typer(help="List, get and update the IPs of a network.", no_args_is_help=True)
vlan_app = typer.Typer(help="List, get, create, update and delete fabric VLANs.", no_args_is_help=True)

NETWORK_FILTERS = ("id", "name", "public", "description", "fabric", "vlan_id")
NETWORK_LISTING = ListingSpec(
    columns="shortid,name,subnet,gateway,fabric,vlan,public",
    long_columns="id,name,subnet,gateway,fabric,vlan,public",
    sort="name",
)
IP_LISTING = ListingSpec(
    columns="ip,managed,reserved,owner_uuid,belongs_to_uuid",
    long_columns="ip,managed,reserved,owner_uuid,belongs_to_uuid,belongs_to_type",
    sort="ip",
)
VLAN_LISTING = ListingSpec(columns="vlan_id,name,description", long_columns="vlan_id,name,description", sort="vlan_id")
VLAN_FILTERS = ("vlan_id", "name", "description")


def _network_arg() -> Any:
    return typer.Argument(
        ..., metavar="NETWORK", help="Network name, id or short id.", autocompletion=complete("tritonnetwork")
    )


def _vlan_id(text: str) -> int:
    try:
        vlan_id = int(text)
    except ValueError as exc:
        raise UsageError(f"VLAN must be an integer: {text}", cause=exc) from exc
    if not 0 <= vlan_id <= 4095:
        raise UsageError(f"VLAN must be between 0 and 4095: {text}")
    return vlan_id


def _matches(record: Mapping[str, Any], filters: Mapping[str, object]) -> bool:
    return all(record.get(key) == value for key, value in filters.items())


# ----------------------------------------------------------------------
# networks
# ----------------------------------------------------------------------


@command(app, "list", "ls")
@argtypes("none")
def network_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(
        None, metavar="[FILTERS...]", help="FIELD=VALUE filters on id, name, public, description, fabric or vlan_id."
    ),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List available networks."""
    runtime = runtime_of(ctx)
    wanted: dict[str, object] = dict(kv_to_obj(filters or [], NETWORK_FILTERS))
    for key in ("public", "fabric"):
        if key in wanted:
            wanted[key] = bool_from_string(wanted[key], None, key)
    if "vlan_id" in wanted:
        wanted["vlan_id"] = _vlan_id(str(wanted["vlan_id"]))
    networks = runtime.api.list_networks()
    runtime.cache.put("networks", networks)
    selected = [network for network in networks if _matches(network, wanted)]
    rows = [dict(network, shortid=short_id(str(network.get("id", ""))), vlan=network.get("vlan_id")) for network in selected]
    render_listing(
        rows,
        NETWORK_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=selected,
    )


@command(app, "get")
@argtypes("tritonnetwork")
def network_get(ctx: typer.Context, network: str = _network_arg(), json_output: bool = JSON_OPTION) -> None:
    """Show a network."""
    runtime = runtime_of(ctx)
    record = runtime.resolver.get_network(network)
    if "subnet" not in record and record.get("id"):
        record = runtime.api.get_network(str(record["id"]))
    print_record(record, json_output=json_output)


@command(app, "create")
@argtypes("none")
def network_create(
    ctx: typer.Context,
    vlan: str = typer.Argument(..., metavar="VLAN", help="The fabric VLAN id to create the network on."),
    name: str = typer.Option(..., "--name", "-n", metavar="NAME", help="Name of the new network."),
    subnet: str = typer.Option(..., "--subnet", metavar="SUBNET", help="CIDR of the network, e.g. 192.168.0.0/24."),
    start_ip: str = typer.Option(..., "--start-ip", metavar="IP", help="First assignable IP address."),
    end_ip: str = typer.Option(..., "--end-ip", metavar="IP", help="Last assignable IP address."),
    description: str | None = typer.Option(None, "--description", "-D", metavar="DESC"),
    gateway: str | None = typer.Option(None, "--gateway", metavar="IP", help="Default gateway IP address."),
    resolvers: list[str] | None = typer.Option(
        None, "--resolver", metavar="IP", help="DNS resolver IP. Repeatable."
    ),
    routes: list[str] | None = typer.Option(
        None, "--route", metavar="SUBNET=IP", help="Static route (subnet=gateway). Repeatable."
    ),
    no_nat: bool = typer.Option(False, "--no-nat", help="Do not provision a NAT zone on the gateway."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a fabric network on a VLAN."""
    runtime = runtime_of(ctx)
    vlan_id = _vlan_id(vlan)
    body: dict[str, object] = {
        "name": name,
        "subnet": subnet,
        "provision_start_ip": start_ip,
        "provision_end_ip": end_ip,
    }
    if description:
        body["description"] = description
    if gateway:
        body["gateway"] = gateway
    if resolvers:
        body["resolvers"] = list(resolvers)
    if routes:
        body["routes"] = kv_to_obj(routes)
    if no_nat:
        body["internet_nat"] = False
    with runtime.logger.operation("network create", args=body, target={"kind": "network", "vlan": vlan_id}) as op:
        created = runtime.api.create_fabric_network(vlan_id, **body)
        if json_output:
            print_json_compact(created)
        else:
            emit(f"Created network {created.get('name')} ({created.get('id')})")
        runtime.cache.invalidate("networks")
        op.success(f"Created network {created.get('id')}.", changed=1)


@command(app, "delete", "rm")
@argtypes("tritonnetwork")
def network_delete(
    ctx: typer.Context,
    networks: list[str] = typer.Argument(..., metavar="NETWORK...", autocompletion=complete("tritonnetwork")),
) -> None:
    """Delete one or more fabric networks."""
    runtime = runtime_of(ctx)
    with runtime.logger.operation("network delete", args={"networks": networks}, target={"kind": "network"}) as op:
        for token in networks:
            record = runtime.resolver.get_network(token)
            network_id = str(record["id"])
            if record.get("vlan_id") is None:
                record = runtime.api.get_network(network_id)
            if record.get("vlan_id") is None:
                raise UsageError(f"network {token} is not a fabric network")
            runtime.api.delete_fabric_network(int(record["vlan_id"]), network_id)
            emit(f"Deleted network {network_id}")
        runtime.cache.invalidate("networks")
        op.success(f"Deleted {len(networks)} network(s).", changed=len(networks))


@command(app, "get-default")
def network_get_default(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the default network for new instances."""
    runtime = runtime_of(ctx)
    default = runtime.api.get_config().get("default_network")
    if not default:
        emit("No default network is set.")
        return
    print_record(runtime.api.get_network(str(default)), json_output=json_output)


@command(app, "set-default")
@argtypes("tritonnetwork")
def network_set_default(ctx: typer.Context, network: str = _network_arg()) -> None:
    """Set the default network for new instances."""
    runtime = runtime_of(ctx)
    record = runtime.resolver.get_network(network)
    with runtime.logger.operation("network set-default", args={}, target={"kind": "network", "id": record.get("id")}) as op:
        runtime.api.update_config(default_network=str(record["id"]))
        emit(f"Set network {record.get('name', network)} ({record.get('id')}) as default.")
        op.success("Default network updated.", changed=1)


# ----------------------------------------------------------------------
# network ip
# ----------------------------------------------------------------------


@command(ip_app, "list", "ls")
@argtypes("tritonnetwork")
def ip_list(
    ctx: typer.Context,
    network: str = _network_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List the IPs of a network."""
    runtime = runtime_of(ctx)
    ips = runtime.api.list_network_ips(runtime.resolver.resolve_id("networks", network))
    render_listing(ips, IP_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream))


@command(ip_app, "get")
@argtypes("tritonnetwork", "none")
def ip_get(
    ctx: typer.Context,
    network: str = _network_arg(),
    ip: str = typer.Argument(..., metavar="IP"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one IP of a network."""
    runtime = runtime_of(ctx)
    print_record(
        runtime.api.get_network_ip(runtime.resolver.resolve_id("networks", network), ip), json_output=json_output
    )


@command(ip_app, "update")
@argtypes("tritonnetwork", "none", "tritonupdatenetworkipfield")
def ip_update(
    ctx: typer.Context,
    network: str = _network_arg(),
    ip: str = typer.Argument(..., metavar="IP"),
    fields: list[str] = typer.Argument(..., metavar="FIELD=VALUE...", help="Updatable fields: reserved (boolean)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Reserve or unreserve a network IP."""
    runtime = runtime_of(ctx)
    updates = fields_from_args(fields, UPDATE_NETWORK_IP_FIELDS)
    network_id = runtime.resolver.resolve_id("networks", network)
    with runtime.logger.operation(
        "network ip update", args=updates, target={"kind": "ip", "network": network_id, "ip": ip}
    ) as op:
        result = runtime.api.update_network_ip(network_id, ip, **updates)
        if json_output:
            print_json_compact(result)
        else:
            emit(f"Updated network {network} IP {ip} (fields: {', '.join(sorted(updates))})")
        op.success(f"Updated IP {ip}.", changed=1)


# ----------------------------------------------------------------------
# vlan
# ----------------------------------------------------------------------


@command(vlan_app, "list", "ls")
@argtypes("none")
def vlan_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(None, metavar="[FILTERS...]"),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List fabric VLANs."""
    runtime = runtime_of(ctx)
    wanted: dict[str, object] = dict(kv_to_obj(filters or [], VLAN_FILTERS))
    if "vlan_id" in wanted:
        wanted["vlan_id"] = _vlan_id(str(wanted["vlan_id"]))
    vlans = [vlan for vlan in runtime.api.list_fabric_vlans() if _matches(vlan, wanted)]
    render_listing(vlans, VLAN_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream))


def _resolve_vlan(runtime: Any, token: str) -> int:
    if token.isdigit():
        return _vlan_id(token)
    named = [vlan for vlan in runtime.api.list_fabric_vlans() if vlan.get("name") == token]
    if len(named) != 1:
        raise UsageError(f'no single VLAN named "{token}" (found {len(named)})')
    return int(named[0]["vlan_id"])


@command(vlan_app, "get")
def vlan_get(
    ctx: typer.Context,
    vlan: str = typer.Argument(..., metavar="VLAN", help="VLAN id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a fabric VLAN."""
    runtime = runtime_of(ctx)
    print_record(runtime.api.get_fabric_vlan(_resolve_vlan(runtime, vlan)), json_output=json_output)


@command(vlan_app, "create")
def vlan_create(
    ctx: typer.Context,
    vlan: str = typer.Argument(..., metavar="VLAN_ID", help="VLAN id (0-4095)."),
    name: str = typer.Option(..., "--name", "-n", metavar="NAME"),
    description: str | None = typer.Option(None, "--description", "-D", metavar="DESC"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a fabric VLAN."""
    runtime = runtime_of(ctx)
    vlan_id = _vlan_id(vlan)
    with runtime.logger.operation("vlan create", args={"name": name}, target={"kind": "vlan", "id": vlan_id}) as op:
        created = runtime.api.create_fabric_vlan(vlan_id=vlan_id, name=name, description=description)
        if json_output:
            print_json_compact(created)
        elif created.get("name"):
            emit(f"Created vlan {created.get('name')} ({created.get('vlan_id')})")
        else:
            emit(f"Created vlan {created.get('vlan_id')}")
        op.success(f"Created VLAN {vlan_id}.", changed=1)


@command(vlan_app, "update")
@argtypes("none", "tritonupdatevlanfield")
def vlan_update(
    ctx: typer.Context,
    vlan: str = typer.Argument(..., metavar="VLAN", help="VLAN id or name."),
    fields: list[str] | None = typer.Argument(None, metavar="[FIELD=VALUE...]"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Update a fabric VLAN's name or description."""
    runtime = runtime_of(ctx)
    updates = fields_from_args(fields or [], UPDATE_VLAN_FIELDS)
    if not updates:
        emit("No fields given for VLAN update")
        return
    vlan_id = _resolve_vlan(runtime, vlan)
    with runtime.logger.operation("vlan update", args=updates, target={"kind": "vlan", "id": vlan_id}) as op:
        result = runtime.api.update_fabric_vlan(vlan_id, **updates)
        if json_output:
            print_json_compact(result)
        else:
            emit(f"Updated vlan {vlan_id} (fields: {', '.join(sorted(updates))})")
        op.success(f"Updated VLAN {vlan_id}.", changed=1)


@command(vlan_app, "delete", "rm")
def vlan_delete(
    ctx: typer.Context,
    vlans: list[str] = typer.Argument(..., metavar="VLAN...", help="VLAN ids or names."),
    force: bool = FORCE_OPTION,
) -> None:
    """Delete fabric VLANs."""
    runtime = runtime_of(ctx)
    ids = [_resolve_vlan(runtime, vlan) for vlan in vlans]
    confirm(f"Delete VLAN(s) {', '.join(str(i) for i in ids)}?", assume_yes=force)
    with runtime.logger.operation("vlan delete", args={"vlans": ids}, target={"kind": "vlan"}) as op:
        for vlan_id in ids:
            runtime.api.delete_fabric_vlan(vlan_id)
            emit(f"Deleted vlan {vlan_id}")
        op.success(f"Deleted {len(ids)} VLAN(s).", changed=len(ids))


@command(vlan_app, "networks")
def vlan_networks(
    ctx: typer.Context,
    vlan: str = typer.Argument(..., metavar="VLAN", help="VLAN id or name."),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List the fabric networks on a VLAN."""
    runtime = runtime_of(ctx)
    networks = runtime.api.list_fabric_networks(_resolve_vlan(runtime, vlan))
    rows = [dict(network, shortid=short_id(str(network.get("id", ""))), vlan=network.get("vlan_id")) for network in networks]
    render_listing(
        rows,
        NETWORK_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=networks,
    )


__all__ = ["NETWORK_LISTING", "app", "ip_app", "network_list", "vlan_app"]
