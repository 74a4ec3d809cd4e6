"""``triton rbac``: sub-users, keys, roles, policies and role tags.

The singular commands (``user``, ``role``, ``policy``, ``key``) show a record
by default; ``-a`` adds, ``-e`` edits in ``$EDITOR`` and ``-d`` deletes.
"""
from __future__ import annotations

import json
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer

from ..cloudapi import CloudApi
from ..common import is_uuid, norm_short_id, short_id
from ..dispatch import RuntimeContext, argtypes, command
from ..editor import confirm, edit_in_editor, prompt_retry
from ..errors import Aborted, ResourceNotFoundError, TritonError, UsageError
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
from ..rbac import (
    SCHEMAS,
    edit_record,
    parse_role_tags,
    render_role_tags,
    show_lines,
    split_csv,
)
from ..rbac_config import RbacChange, execute_rbac_plan, load_rbac_config, load_rbac_state, plan_rbac_update
from .helpers import YES_OPTION, runtime_of, table_options

app = typer.Typer(help="Role-based Access Control (RBAC) management.", no_args_is_help=True)
role_tags_app = typer.Typer(help="List and manage role tags on resources.", no_args_is_help=True)

USER_LISTING = ListingSpec(
    columns="shortid,login,email,name,cdate",
    long_columns="id,login,email,firstName,lastName,created",
    sort="login",
)
ROLE_LISTING = ListingSpec(
    columns="shortid,name,policies,members",
    long_columns="shortid,name,policies,members,default_members",
    sort="name",
)
POLICY_LISTING = ListingSpec(
    columns="shortid,name,description,nrules", long_columns="id,name,rules", sort="name"
)
KEY_LISTING = ListingSpec(columns="fingerprint,name", long_columns="fingerprint,name,key", sort="name")

#: role-tag resource TYPE (as typed) -> CloudAPI collection
RESOURCE_TYPES = {
    "instance": "machines",
    "machine": "machines",
    "image": "images",
    "package": "packages",
    "network": "networks",
    "fwrule": "fwrules",
    "user": "users",
    "role": "roles",
    "policy": "policies",
    "key": "keys",
}
_RESOLVER_TYPES = {
    "machines": "instances",
    "images": "images",
    "packages": "packages",
    "networks": "networks",
    "fwrules": "fwrules",
}

ADD_OPTION = typer.Option(False, "--add", "-a", help="Add a new record (from FILE, '-' for stdin, or prompts).")
EDIT_OPTION = typer.Option(False, "--edit", "-e", help="Edit the named record in your $EDITOR.")
DELETE_OPTION = typer.Option(False, "--delete", "-d", help="Delete the named record(s).")


@dataclass(frozen=True)
class RbacKind:
    """How one RBAC record type is listed, fetched and changed."""

    kind: str
    label_key: str
    list: Callable[[CloudApi], list[dict[str, Any]]]
    get: Callable[[CloudApi, str], dict[str, Any]]
    create: Callable[[CloudApi, dict[str, Any]], dict[str, Any]]
    update: Callable[[CloudApi, str, dict[str, Any]], dict[str, Any]]
    delete: Callable[[CloudApi, str], None]
    #: fields prompted for on an interactive add, beyond the edit schema
    extra_add_fields: tuple[str, ...] = ()


USER = RbacKind(
    "user",
    "login",
    list=lambda api: api.list_users(),
    get=lambda api, ident: api.get_user(ident),
    create=lambda api, data: api.create_user(**data),
    update=lambda api, ident, data: api.update_user(ident, **data),
    delete=lambda api, ident: api.delete_user(ident),
    extra_add_fields=("login", "password"),
)
ROLE = RbacKind(
    "role",
    "name",
    list=lambda api: api.list_roles(),
    get=lambda api, ident: api.get_role(ident),
    create=lambda api, data: api.create_role(**data),
    update=lambda api, ident, data: api.update_role(ident, **data),
    delete=lambda api, ident: api.delete_role(ident),
)
POLICY = RbacKind(
    "policy",
    "name",
    list=lambda api: api.list_policies(),
    get=lambda api, ident: api.get_policy(ident),
    create=lambda api, data: api.create_policy(**data),
    update=lambda api, ident, data: api.update_policy(ident, **data),
    delete=lambda api, ident: api.delete_policy(ident),
)


def find_record(records: Sequence[Mapping[str, Any]], token: str, label_key: str, kind: str) -> dict[str, Any]:
    """Find an RBAC record by id, name/login or short id."""
    for record in records:
        if record.get("id") == token or record.get(label_key) == token:
            return dict(record)
    prefix = norm_short_id(token)
    if prefix and not is_uuid(token):
        matches = [r for r in records if str(r.get("id", "")).startswith(prefix)]
        if len(matches) == 1:
            return dict(matches[0])
    raise ResourceNotFoundError(f'no {kind} with id, {label_key} or short id "{token}"')


def _lookup(runtime: RuntimeContext, spec: RbacKind, token: str) -> dict[str, Any]:
    if is_uuid(token):
        return spec.get(runtime.api, token)
    return find_record(spec.list(runtime.api), token, spec.label_key, spec.kind)


def _read_json(path: str, kind: str) -> dict[str, Any]:
    source = "stdin" if path == "-" else f'"{path}"'
    text = sys.stdin.read() if path == "-" else Path(path).expanduser().read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise TritonError(f"invalid {kind} JSON on {source}: {exc}", cause=exc) from exc
    if not isinstance(data, dict):
        raise TritonError(f"invalid {kind} JSON on {source}: not an object")
    return data


def _prompt_new(spec: RbacKind) -> dict[str, Any]:
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        raise UsageError(f"cannot interactively create a {spec.kind}: stdin or stdout is not a TTY")
    data: dict[str, Any] = {}
    for key in spec.extra_add_fields:
        data[key] = typer.prompt(key, hide_input=key == "password")
    for field in SCHEMAS[spec.kind]:
        if field.required:
            value = typer.prompt(field.key)
        else:
            value = typer.prompt(field.key, default="", show_default=False)
        if value:
            data[field.key] = split_csv(value) if field.array else value
    return data


def _validate_new(spec: RbacKind, data: Mapping[str, Any]) -> None:
    known = {field.key for field in SCHEMAS[spec.kind]} | set(spec.extra_add_fields)
    required = {field.key for field in SCHEMAS[spec.kind] if field.required} | set(spec.extra_add_fields)
    missing = sorted(required - set(data))
    extra = sorted(set(data) - known)
    issues = []
    if missing:
        issues.append(f"{len(missing)} missing required field{'s' if len(missing) != 1 else ''}: {', '.join(missing)}")
    if extra:
        issues.append(f"extraneous field{'s' if len(extra) != 1 else ''}: {', '.join(extra)}")
    if issues:
        raise TritonError(f"invalid {spec.kind} data: {'; '.join(issues)}")


def manage_record(
    ctx: typer.Context,
    spec: RbacKind,
    targets: Sequence[str],
    *,
    add: bool,
    edit: bool,
    delete: bool,
    yes: bool,
    json_output: bool,
    show: Callable[[RuntimeContext, dict[str, Any]], dict[str, Any]] | None = None,
) -> None:
    """Shared body of ``rbac user|role|policy``."""
    if sum((add, edit, delete)) > 1:
        raise UsageError("only one of -a, -e and -d may be given")
    runtime = runtime_of(ctx)
    kind = spec.kind
    if add:
        if len(targets) > 1:
            raise UsageError("too many arguments")
        data = _read_json(targets[0], kind) if targets else _prompt_new(spec)
        _validate_new(spec, data)
        with runtime.logger.operation(f"rbac {kind} add", args={"name": data.get(spec.label_key)}, target={"kind": kind}) as op:
            created = spec.create(runtime.api, data)
            emit(f'Created {kind} "{created.get(spec.label_key)}"')
            op.success(f"Created {kind}.", changed=1)
        return
    if not targets:
        raise UsageError(f"missing {kind.upper()} argument")
    if delete:
        records = [_lookup(runtime, spec, token) for token in targets]
        names = ", ".join(f'"{record.get(spec.label_key)}"' for record in records)
        confirm(f"Delete {kind} {names}?", assume_yes=yes)
        with runtime.logger.operation(f"rbac {kind} delete", args={"targets": list(targets)}, target={"kind": kind}) as op:
            for record in records:
                spec.delete(runtime.api, str(record["id"]))
                emit(f'Deleted {kind} "{record.get(spec.label_key)}"')
            op.success(f"Deleted {len(records)} {kind}(s).", changed=len(records))
        return
    if len(targets) > 1:
        raise UsageError("too many arguments")
    record = _lookup(runtime, spec, targets[0])
    if edit:
        with runtime.logger.operation(f"rbac {kind} edit", args={}, target={"kind": kind, "id": record.get("id")}) as op:
            saved = edit_record(
                kind,
                record,
                save=lambda data: spec.update(runtime.api, str(record["id"]), {k: v for k, v in data.items() if k != "id"}),
                edit=lambda text: edit_in_editor(text, filename=f"{record.get(spec.label_key)}.{kind}"),
                retry=prompt_retry,
                write=emit,
                warn=warn,
            )
            if saved is not None:
                emit(f'Updated {kind} "{saved.get(spec.label_key)}" ({saved.get("id")})')
                op.success(f"Updated {kind}.", changed=1)
            else:
                op.success(f"No change to {kind}.", changed=0)
        return
    if show is not None:
        record = show(runtime, record)
    if json_output:
        print_json_compact(record)
    else:
        for line in show_lines(kind, record):
            emit(line)


# ----------------------------------------------------------------------
# users
# ----------------------------------------------------------------------


def user_rows(users: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Add ``shortid``, ``name`` and ``cdate`` columns."""
    rows = []
    for user in users:
        row = dict(user)
        row["shortid"] = short_id(str(user.get("id", "")))
        row["name"] = " ".join(part for part in (user.get("firstName"), user.get("lastName")) if part) or None
        created = user.get("created")
        row["cdate"] = str(created)[:10] if created else None
        rows.append(row)
    return rows


@command(app, "users")
def rbac_users(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List RBAC users."""
    runtime = runtime_of(ctx)
    users = runtime.api.list_users()
    render_listing(
        user_rows(users), USER_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream), raw=users
    )


@command(app, "user")
@argtypes("none", "file")
def rbac_user(
    ctx: typer.Context,
    targets: list[str] | None = typer.Argument(None, metavar="USER...|FILE"),
    membership: bool = typer.Option(
        False, "--membership", "--roles", "-r", help="Include the user's roles and default roles."
    ),
    add: bool = ADD_OPTION,
    edit: bool = EDIT_OPTION,
    delete: bool = DELETE_OPTION,
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show, add, edit or delete an RBAC user."""

    def show(runtime: RuntimeContext, record: dict[str, Any]) -> dict[str, Any]:
        return runtime.api.get_user(str(record["id"]), membership=True) if membership else record

    manage_record(
        ctx, USER, targets or [], add=add, edit=edit, delete=delete, yes=yes, json_output=json_output, show=show
    )


# ----------------------------------------------------------------------
# roles and policies
# ----------------------------------------------------------------------


@command(app, "roles")
def rbac_roles(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List RBAC roles."""
    runtime = runtime_of(ctx)
    roles = runtime.api.list_roles()
    rows = [
        dict(
            role,
            shortid=short_id(str(role.get("id", ""))),
            policies=", ".join(sorted(role.get("policies") or [])),
            members=", ".join(sorted(role.get("members") or [])),
            default_members=", ".join(sorted(role.get("default_members") or [])),
        )
        for role in roles
    ]
    render_listing(
        rows, ROLE_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream), raw=roles
    )


@command(app, "role")
@argtypes("none", "file")
def rbac_role(
    ctx: typer.Context,
    targets: list[str] | None = typer.Argument(None, metavar="ROLE...|FILE"),
    add: bool = ADD_OPTION,
    edit: bool = EDIT_OPTION,
    delete: bool = DELETE_OPTION,
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show, add, edit or delete an RBAC role."""
    manage_record(ctx, ROLE, targets or [], add=add, edit=edit, delete=delete, yes=yes, json_output=json_output)


@command(app, "policies")
def rbac_policies(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List RBAC policies."""
    runtime = runtime_of(ctx)
    policies = runtime.api.list_policies()
    rows = [
        dict(
            policy,
            shortid=short_id(str(policy.get("id", ""))),
            nrules=len(policy.get("rules") or []),
            rules="; ".join(policy.get("rules") or []),
        )
        for policy in policies
    ]
    render_listing(
        rows, POLICY_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream), raw=policies
    )


@command(app, "policy")
@argtypes("none", "file")
def rbac_policy(
    ctx: typer.Context,
    targets: list[str] | None = typer.Argument(None, metavar="POLICY...|FILE"),
    add: bool = ADD_OPTION,
    edit: bool = EDIT_OPTION,
    delete: bool = DELETE_OPTION,
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show, add, edit or delete an RBAC policy."""
    manage_record(ctx, POLICY, targets or [], add=add, edit=edit, delete=delete, yes=yes, json_output=json_output)


# ----------------------------------------------------------------------
# user keys
# ----------------------------------------------------------------------


@command(app, "keys")
def rbac_keys(
    ctx: typer.Context,
    user: str = typer.Argument(..., metavar="USER"),
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
    """List an RBAC user's SSH keys."""
    runtime = runtime_of(ctx)
    record = _lookup(runtime, USER, user)
    keys = runtime.api.list_user_keys(str(record["id"]))
    if authorized_keys:
        for key in keys:
            emit(str(key.get("key", "")).strip())
        return
    render_listing(keys, KEY_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream))


@command(app, "key")
@argtypes("none", "file")
def rbac_key(
    ctx: typer.Context,
    user: str = typer.Argument(..., metavar="USER"),
    keys: list[str] | None = typer.Argument(None, metavar="KEY...|FILE"),
    name: str | None = typer.Option(None, "--name", "-n", metavar="NAME", help="Name for an added key."),
    add: bool = typer.Option(False, "--add", "-a", help="Add a key from FILE ('-' for stdin)."),
    delete: bool = DELETE_OPTION,
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show, add or delete an RBAC user's SSH key."""
    if add and delete:
        raise UsageError("only one of -a and -d may be given")
    runtime = runtime_of(ctx)
    record = _lookup(runtime, USER, user)
    user_id = str(record["id"])
    login = record.get("login")
    targets = list(keys or [])
    if add:
        if len(targets) != 1:
            raise UsageError("exactly one FILE is required with -a")
        path = targets[0]
        material = sys.stdin.read() if path == "-" else Path(path).expanduser().read_text(encoding="utf-8")
        with runtime.logger.operation("rbac key add", args={"name": name}, target={"kind": "key", "user": login}) as op:
            created = runtime.api.create_user_key(user_id, key=material.strip(), name=name)
            if json_output:
                print_json_compact(created)
            else:
                emit(f'Added user {login} key "{created.get("fingerprint")}"'
                     f'{" (" + str(created["name"]) + ")" if created.get("name") else ""}')
            op.success("Added key.", changed=1)
        return
    if not targets:
        raise UsageError("missing KEY argument")
    if delete:
        confirm(f"Delete user {login} key(s) {', '.join(targets)}?", assume_yes=yes)
        with runtime.logger.operation("rbac key delete", args={"keys": targets}, target={"kind": "key", "user": login}) as op:
            for key in targets:
                runtime.api.delete_user_key(user_id, key)
                emit(f'Deleted user {login} key "{key}"')
            op.success(f"Deleted {len(targets)} key(s).", changed=len(targets))
        return
    if len(targets) > 1:
        raise UsageError("too many arguments")
    key = runtime.api.get_user_key(user_id, targets[0])
    if json_output:
        print_json_compact(key)
    else:
        emit(str(key.get("key", "")).strip())


# ----------------------------------------------------------------------
# role tags
# ----------------------------------------------------------------------


def resource_path(runtime: RuntimeContext, resource: str) -> str:
    """Turn ``/account/type/id`` or ``TYPE:NAME`` into a role-tag resource path."""
    if resource.startswith("/"):
        return resource
    kind, sep, token = resource.partition(":")
    if not sep or not token:
        raise UsageError(f'invalid resource "{resource}": must be a URL path or TYPE:NAME')
    collection = RESOURCE_TYPES.get(kind)
    if collection is None:
        raise UsageError(
            f'invalid resource type "{kind}": must be one of {", ".join(sorted(RESOURCE_TYPES))}'
        )
    api = runtime.api
    if collection in _RESOLVER_TYPES:
        resource_id = runtime.resolver.resolve_id(_RESOLVER_TYPES[collection], token)
    elif collection == "users":
        resource_id = str(_lookup(runtime, USER, token)["id"])
    elif collection == "roles":
        resource_id = str(_lookup(runtime, ROLE, token)["id"])
    elif collection == "policies":
        resource_id = str(_lookup(runtime, POLICY, token)["id"])
    else:
        resource_id = str(api.get_key(token).get("name") or token)
    return api.role_tag_resource(collection, resource_id)


def _resource_arg() -> Any:
    return typer.Argument(
        ..., metavar="RESOURCE", help="A resource path (/ACCOUNT/TYPE/ID) or TYPE:NAME, e.g. instance:web0."
    )


def _set_tags(runtime: RuntimeContext, path: str, tags: Sequence[str], verb: str) -> None:
    with runtime.logger.operation(f"rbac role-tags {verb}", args={"tags": list(tags)}, target={"kind": "role-tags", "resource": path}) as op:
        runtime.api.set_role_tags(path, list(tags))
        emit(f"Set role tags on {path}: {', '.join(tags) if tags else '(none)'}")
        op.success("Role tags updated.", changed=1)


@command(role_tags_app, "list", "ls")
def role_tags_list(ctx: typer.Context, resource: str = _resource_arg(), json_output: bool = JSON_OPTION) -> None:
    """List the role tags on a resource."""
    runtime = runtime_of(ctx)
    tags = runtime.api.get_role_tags(resource_path(runtime, resource))
    if json_output:
        print_json_compact(tags)
    else:
        typer.echo(render_role_tags(tags), nl=False)


@command(role_tags_app, "set")
def role_tags_set(
    ctx: typer.Context, resource: str = _resource_arg(), roles: list[str] = typer.Argument(..., metavar="ROLE...")
) -> None:
    """Replace the role tags on a resource."""
    runtime = runtime_of(ctx)
    _set_tags(runtime, resource_path(runtime, resource), sorted(set(roles)), "set")


@command(role_tags_app, "add")
def role_tags_add(
    ctx: typer.Context, resource: str = _resource_arg(), roles: list[str] = typer.Argument(..., metavar="ROLE...")
) -> None:
    """Add role tags to a resource."""
    runtime = runtime_of(ctx)
    path = resource_path(runtime, resource)
    current = runtime.api.get_role_tags(path)
    _set_tags(runtime, path, sorted(set(current) | set(roles)), "add")


@command(role_tags_app, "remove", "rm")
def role_tags_remove(
    ctx: typer.Context, resource: str = _resource_arg(), roles: list[str] = typer.Argument(..., metavar="ROLE...")
) -> None:
    """Remove role tags from a resource."""
    runtime = runtime_of(ctx)
    path = resource_path(runtime, resource)
    current = runtime.api.get_role_tags(path)
    _set_tags(runtime, path, sorted(set(current) - set(roles)), "remove")


@command(role_tags_app, "edit")
def role_tags_edit(ctx: typer.Context, resource: str = _resource_arg()) -> None:
    """Edit the role tags on a resource in your $EDITOR."""
    runtime = runtime_of(ctx)
    path = resource_path(runtime, resource)
    current = sorted(runtime.api.get_role_tags(path))
    edited = parse_role_tags(edit_in_editor(render_role_tags(current), filename="role-tags.txt"))
    if edited == current:
        emit(f"No change to role tags on {path}")
        return
    _set_tags(runtime, path, edited, "edit")


# ----------------------------------------------------------------------
# info
# ----------------------------------------------------------------------


def _user_summary(user: Mapping[str, Any], keys: Sequence[Any] | None) -> str:
    extra = []
    full_name = " ".join(part for part in (user.get("firstName"), user.get("lastName")) if part)
    if full_name:
        extra.append(full_name)
    if keys is not None and not keys:
        extra.append("no ssh keys")
    suffix = f" ({', '.join(extra)})" if extra else ""
    defaults = sorted(user.get("default_roles") or [])
    others = sorted(set(user.get("roles") or []) - set(defaults))
    count = len(defaults) + len(others)
    roles = ", ".join(defaults)
    if others:
        roles += f"{', ' if defaults else ''}[{', '.join(others)}]"
    if count == 0:
        roles = "no roles"
    else:
        roles = f"{'role' if count == 1 else 'roles'} {roles}"
    return f"    {user.get('login')}{suffix}: {roles}"


@command(app, "info")
def rbac_info(ctx: typer.Context) -> None:
    """Summarize the account's RBAC users, roles and policies."""
    runtime = runtime_of(ctx)
    api = runtime.api
    users = sorted(api.list_users(), key=lambda user: str(user.get("login")))
    roles = sorted(api.list_roles(), key=lambda role: str(role.get("name")))
    policies = sorted(api.list_policies(), key=lambda policy: str(policy.get("name")))

    emit(f"users ({len(users)}):")
    for user in users:
        detail = api.get_user(str(user["id"]), membership=True)
        keys = api.list_user_keys(str(user["id"]))
        emit(_user_summary(detail, keys))
    emit(f"roles ({len(roles)}):")
    for role in roles:
        names = role.get("policies") or []
        if not names:
            info = "no policies"
        else:
            info = f"{'policy' if len(names) == 1 else 'policies'} {', '.join(names)}"
        emit(f"    {role.get('name')}: {info}")
    emit(f"policies ({len(policies)}):")
    for policy in policies:
        rules = policy.get("rules") or []
        no_rules = " no rules" if not rules else ""
        if policy.get("description"):
            emit(f"    {policy.get('name')} ({policy.get('description')}) rules:{no_rules}")
        else:
            emit(f"    {policy.get('name')} rules:{no_rules}")
        for rule in rules:
            emit(f"        {rule}")


# ----------------------------------------------------------------------
# apply / reset
# ----------------------------------------------------------------------


def apply_rbac_config(
    ctx: typer.Context, config: Mapping[str, Any], *, command_name: str, source: str | None, dry_run: bool, yes: bool
) -> None:
    """Shared body of ``rbac apply`` and ``rbac reset``."""
    runtime = runtime_of(ctx)
    state = load_rbac_state(runtime.api, max_workers=runtime.config.max_concurrency)
    plan: list[RbacChange] = plan_rbac_update(config, state)
    if not plan:
        emit("RBAC config is up-to-date")
        return

    emit("This will make the following RBAC config changes:")
    for change in plan:
        emit(f"    {change.summary()}")
    try:
        confirm(f"Would you like to continue{' (dry-run)' if dry_run else ''}?", assume_yes=yes)
    except Aborted:
        emit("Aborting update")
        raise

    with runtime.logger.operation(
        f"rbac {command_name}", args={"file": source, "dry_run": dry_run}, target={"kind": "rbac"}
    ) as op:
        applied = execute_rbac_plan(runtime.api, plan, dry_run=dry_run, write=emit)
        if dry_run:
            op.success(f"Planned {len(plan)} RBAC change(s).", changed=0)
        else:
            op.success(f"Applied {applied} RBAC change(s).", changed=applied)


@command(app, "apply")
def rbac_apply(
    ctx: typer.Context,
    file: Path = typer.Option(Path("rbac.json"), "--file", "-f", help="RBAC config JSON file."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Print the changes that would be made."),
    yes: bool = YES_OPTION,
) -> None:
    """Apply an RBAC configuration file to the account.

    Users, user keys, policies and roles not named in the file are deleted.
    """
    config = load_rbac_config(file)
    apply_rbac_config(ctx, config, command_name="apply", source=str(file), dry_run=dry_run, yes=yes)


@command(app, "reset", hidden=True)
def rbac_reset(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Print the changes that would be made."),
    yes: bool = YES_OPTION,
) -> None:
    """Delete every RBAC user, role and policy on the account."""
    apply_rbac_config(ctx, {}, command_name="reset", source=None, dry_run=dry_run, yes=yes)


__all__ = [
    "POLICY",
    "RESOURCE_TYPES",
    "ROLE",
    "USER",
    "RbacKind",
    "app",
    "apply_rbac_config",
    "find_record",
    "manage_record",
    "resource_path",
    "role_tags_app",
    "user_rows",
]
