"""Account level commands: ``account``, ``key``, ``datacenter``, ``services`` and ``info``."""
from __future__ import annotations

import sys
from collections import Counter
from pathlib import Path
from typing import Any

import typer

from ..cloudapi import UPDATE_ACCOUNT_FIELDS
from ..common import fields_from_args, human_size_from_mib, long_ago
from ..dispatch import argtypes, command
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
from .helpers import YES_OPTION, runtime_of, table_options
from .image import load_fields_file

account_app = typer.Typer(help="Get and update your account information.", no_args_is_help=True)
key_app = typer.Typer(help="List, get, add and delete SSH keys.", no_args_is_help=True)
datacenter_app = typer.Typer(help="List and get datacenters.", no_args_is_help=True)

KEY_LISTING = ListingSpec(columns="fingerprint,name", long_columns="fingerprint,name,key", sort="name")
DATACENTER_LISTING = ListingSpec(columns="name,url", long_columns="name,url", sort="name")
SERVICE_LISTING = ListingSpec(columns="name,endpoint", long_columns="name,endpoint", sort="name")
LIMIT_LISTING = ListingSpec(columns="type,used,limit", long_columns="type,used,limit,os,image", sort="type")
_DATE_FIELDS = ("updated", "created")


# ----------------------------------------------------------------------
# account
# ----------------------------------------------------------------------


@command(account_app, "get")
def account_get(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show account information."""
    runtime = runtime_of(ctx)
    account = runtime.api.get_account()
    if json_output:
        print_json_compact(account)
        return
    for key, value in account.items():
        if key in _DATE_FIELDS and value:
            emit(f"{key}: {value} ({long_ago(str(value))})")
        else:
            emit(f"{key}: {value}")


@command(account_app, "update")
@argtypes("tritonupdateaccountfield")
def account_update(
    ctx: typer.Context,
    fields: list[str] | None = typer.Argument(None, metavar="[FIELD=VALUE...]"),
    file: str | None = typer.Option(
        None, "--file", "-f", metavar="FILE", help="JSON object of fields to update ('-' for stdin)."
    ),
) -> None:
    """Update account fields such as email, companyName or triton_cns_enabled."""
    runtime = runtime_of(ctx)
    updates = dict(load_fields_file(file, UPDATE_ACCOUNT_FIELDS)) if file else {}
    updates.update(fields_from_args(fields or [], UPDATE_ACCOUNT_FIELDS))
    if not updates:
        raise UsageError("no fields given for account update")
    with runtime.logger.operation("account update", args=updates, target={"kind": "account"}) as op:
        account = runtime.api.update_account(**updates)
        emit(f'Updated account "{account.get("login", runtime.api.account)}" (fields: {", ".join(sorted(updates))})')
        op.success("Updated account.", changed=1)


@command(account_app, "limits")
def account_limits(
    ctx: typer.Context,
    no_header: bool = NO_HEADER_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show account provisioning limits."""
    runtime = runtime_of(ctx)
    limits = runtime.api.get_account_limits()
    rows: list[dict[str, Any]] = []
    checked = False
    for limit in limits:
        row = dict(limit)
        row["limit"] = row.pop("value", None)
        row["type"] = row.pop("by", None)
        checked = checked or bool(limit.get("check"))
        rows.append(row)
    options = table_options(None, checked, no_header, None, json_output)
    render_listing(rows, LIMIT_LISTING, options)


@command(account_app, "config")
def account_config(
    ctx: typer.Context,
    fields: list[str] | None = typer.Argument(
        None, metavar="[FIELD=VALUE...]", help="Config fields to set, e.g. default_network=UUID."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show, or update with FIELD=VALUE arguments, the account config."""
    runtime = runtime_of(ctx)
    if not fields:
        config = runtime.api.get_config()
        if json_output:
            print_json_compact(config)
        else:
            for key, value in config.items():
                emit(f"{key}: {value}")
        return
    updates = fields_from_args(fields, {"default_network": "string"})
    with runtime.logger.operation("account config", args=updates, target={"kind": "account-config"}) as op:
        config = runtime.api.update_config(**updates)
        emit(f"Updated account config (fields: {', '.join(sorted(updates))})")
        op.success("Updated account config.", changed=1)
        if json_output:
            print_json_compact(config)


# ----------------------------------------------------------------------
# keys
# ----------------------------------------------------------------------


@command(key_app, "list", "ls")
@argtypes("none")
def key_list(
    ctx: typer.Context,
    authorized_keys: bool = typer.Option(
        False, "--authorized-keys", "-A", help="Print the keys in authorized_keys format."
    ),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List SSH keys."""
    runtime = runtime_of(ctx)
    keys = runtime.api.list_keys()
    if authorized_keys:
        for key in keys:
            emit(str(key.get("key", "")).strip())
        return
    render_listing(keys, KEY_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream))


@command(key_app, "get")
@argtypes("none")
def key_get(
    ctx: typer.Context,
    key: str = typer.Argument(..., metavar="KEY", help="Key name or fingerprint."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a public key."""
    runtime = runtime_of(ctx)
    record = runtime.api.get_key(key)
    if json_output:
        print_json_compact(record)
    else:
        emit(str(record.get("key", "")).strip())


@command(key_app, "add")
@argtypes("file")
def key_add(
    ctx: typer.Context,
    public_key_file: str = typer.Argument(..., metavar="PUBLIC-KEY-FILE", help="Public key file ('-' for stdin)."),
    name: str | None = typer.Option(None, "--name", "-n", metavar="NAME", help="Key name (default: the key comment)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Add an SSH public key to the account."""
    runtime = runtime_of(ctx)
    if public_key_file == "-":
        material = sys.stdin.read()
    else:
        material = Path(public_key_file).expanduser().read_text(encoding="utf-8")
    with runtime.logger.operation("key add", args={"name": name}, target={"kind": "key"}) as op:
        created = runtime.api.create_key(key=material.strip(), name=name)
        if json_output:
            print_json_compact(created)
        elif created.get("name"):
            emit(f'Added key "{created["name"]}" ({created.get("fingerprint")})')
        else:
            emit(f"Added key {created.get('fingerprint')}")
        op.success("Added key.", changed=1)


@command(key_app, "delete", "rm")
@argtypes("none")
def key_delete(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., metavar="KEY...", help="Key names or fingerprints."),
    yes: bool = YES_OPTION,
) -> None:
    """Delete one or more SSH keys."""
    runtime = runtime_of(ctx)
    noun = "key" if len(keys) == 1 else "keys"
    confirm(f"Delete {noun} {', '.join(repr(key) for key in keys)}?", assume_yes=yes)
    with runtime.logger.operation("key delete", args={"keys": list(keys)}, target={"kind": "key"}) as op:
        for key in keys:
            runtime.api.delete_key(key)
            emit(f'Deleted key "{key}"')
        op.success(f"Deleted {len(keys)} key(s).", changed=len(keys))


# ----------------------------------------------------------------------
# datacenters and services
# ----------------------------------------------------------------------


@command(datacenter_app, "list", "ls")
def datacenter_list(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the datacenters of this cloud."""
    runtime = runtime_of(ctx)
    datacenters = runtime.api.list_datacenters()
    rows = [{"name": name, "url": url} for name, url in datacenters.items()]
    runtime.cache.put("datacenters", rows)
    if json_output:
        print_json_compact(datacenters)
        return
    render_listing(rows, DATACENTER_LISTING, table_options(output, False, no_header, sort_by, False))


@command(datacenter_app, "get")
def datacenter_get(
    ctx: typer.Context,
    name: str = typer.Argument(..., metavar="DATACENTER"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the URL of one datacenter."""
    runtime = runtime_of(ctx)
    datacenters = runtime.api.list_datacenters()
    if name not in datacenters:
        raise UsageError(f'no such datacenter: "{name}" (known: {", ".join(sorted(datacenters))})')
    if json_output:
        print_json_compact({"name": name, "url": datacenters[name]})
    else:
        emit(datacenters[name])


def services(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """List the service endpoints of the current datacenter."""
    runtime = runtime_of(ctx)
    endpoints = runtime.api.list_services()
    if json_output:
        print_json_compact(endpoints)
        return
    rows = [{"name": name, "endpoint": url} for name, url in endpoints.items()]
    render_listing(rows, SERVICE_LISTING, table_options(output, False, no_header, sort_by, False))


def info(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Summarize the account and its instances."""
    runtime = runtime_of(ctx)
    api = runtime.api
    account = api.get_account()
    machines = api.list_machines()
    if json_output:
        print_json_compact({"account": account, "machines": machines})
        return
    emit(
        f"{account.get('login')} - {account.get('firstName', '')} {account.get('lastName', '')}"
        f" <{account.get('email', '')}>"
    )
    emit(runtime.profile.url)
    emit()
    emit(f"{len(machines)} instance(s)")
    for state, count in Counter(str(machine.get("state")) for machine in machines).items():
        emit(f"- {count} {state}")
    memory = sum(int(machine.get("memory") or 0) for machine in machines)
    disk = sum(int(machine.get("disk") or 0) for machine in machines)
    emit(f"- {human_size_from_mib(memory)} RAM Total")
    emit(f"- {human_size_from_mib(disk)} Disk Total")


__all__ = [
    "account_app",
    "datacenter_app",
    "datacenter_list",
    "info",
    "key_app",
    "key_list",
    "services",
]
