"""``triton profile``: manage the CloudAPI endpoint profiles under ``profiles.d``."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer

from ..config import ENV_PROFILE_NAME, Profile, validate_profile_name
from ..dispatch import RuntimeContext, argtypes, command, complete
from ..editor import confirm, edit_in_editor, prompt_retry
from ..errors import Aborted, ConfigError, TritonError, UsageError
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
from .helpers import FORCE_OPTION, runtime_of, table_options

app = typer.Typer(help="List, get, create and manage tritoncli profiles.", no_args_is_help=True)

PROFILE_LISTING = ListingSpec(
    columns="name,curr,account,user,url",
    long_columns="name,curr,account,user,url,insecure,keyId",
    sort="name",
)
DEFAULT_URL = "https://us-central-1.api.mnx.io"
_PROMPTED_FIELDS = (
    ("name", "A profile name: a short string identifying this CloudAPI endpoint."),
    ("url", "The CloudAPI endpoint URL."),
    ("account", "Your account login name."),
    ("user", "Optional RBAC sub-user login name."),
    ("keyId", "The fingerprint of the SSH key used to sign requests."),
)


def _profile_arg(default: Any = ...) -> Any:
    return typer.Argument(default, metavar="NAME", help="Profile name.", autocompletion=complete("tritonprofile"))


def current_profile_name(runtime: RuntimeContext) -> str | None:
    """Return the name of the profile commands would use, if any."""
    try:
        return runtime.profile.name
    except ConfigError:
        return None


@command(app, "list", "ls")
@argtypes("none")
def profile_list(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List profiles."""
    runtime = runtime_of(ctx)
    current = current_profile_name(runtime)
    profiles = runtime.store.list()
    rows = [dict(profile, curr="*" if profile.get("name") == current else "") for profile in profiles]
    render_listing(rows, PROFILE_LISTING, table_options(output, long, no_header, sort_by, json_output, json_stream))


@command(app, "get")
@argtypes("tritonprofile")
def profile_get(
    ctx: typer.Context,
    name: str | None = _profile_arg(None),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show a profile (the current profile by default)."""
    runtime = runtime_of(ctx)
    if name is None:
        data = runtime.profile.to_dict()
    else:
        data = runtime.store.load_raw(name)
    if json_output:
        print_json_compact(data)
        return
    emit(f"name: {data.get('name')}")
    for key, value in sorted(data.items()):
        if key != "name":
            emit(f"{key}: {value}")


def _read_profile_file(path: str) -> dict[str, Any]:
    source = "stdin" if path == "-" else f'"{path}"'
    text = sys.stdin.read() if path == "-" else Path(path).expanduser().read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise TritonError(f"invalid profile JSON on {source}: {exc}", cause=exc) from exc
    if not isinstance(data, dict):
        raise TritonError(f"invalid profile JSON on {source}: not an object")
    return data


def _prompt_profile(defaults: dict[str, Any]) -> dict[str, Any]:
    if not sys.stdin.isatty():
        raise UsageError("cannot interactively create profile: stdin is not a TTY")
    if not sys.stdout.isatty():
        raise UsageError("cannot interactively create profile: stdout is not a TTY")
    data: dict[str, Any] = {}
    for key, description in _PROMPTED_FIELDS:
        emit(description)
        default = defaults.get(key)
        if key == "user":
            value = typer.prompt(key, default=default or "", show_default=bool(default))
        else:
            value = typer.prompt(key, default=default) if default else typer.prompt(key)
        if value:
            data[key] = value
        emit()
    if typer.confirm("Skip TLS certificate validation (insecure)?", default=bool(defaults.get("insecure"))):
        data["insecure"] = True
    return data


@command(app, "create")
@argtypes("none")
def profile_create(
    ctx: typer.Context,
    file: str | None = typer.Option(
        None, "--file", "-f", metavar="FILE", help="JSON file with the profile data ('-' for stdin)."
    ),
    copy: str | None = typer.Option(
        None, "--copy", metavar="NAME", help="Copy field defaults from profile NAME.",
        autocompletion=complete("tritonprofile"),
    ),
) -> None:
    """Create a profile, interactively or from a JSON file."""
    runtime = runtime_of(ctx)
    store = runtime.store
    existing = store.names()
    if file:
        data = _read_profile_file(file)
    else:
        defaults: dict[str, Any] = {"url": DEFAULT_URL}
        if copy:
            if copy not in existing:
                raise UsageError(f'no such profile from which to copy: "{copy}"')
            defaults = store.load_raw(copy)
            defaults.pop("name", None)
        data = _prompt_profile(defaults)
    data.pop("curr", None)
    name = str(data.get("name") or "")
    validate_profile_name(name)
    if name in existing:
        raise TritonError(f'profile "{name}" already exists')
    profile = Profile.from_dict(data)
    with runtime.logger.operation("profile create", args={"name": name}, target={"kind": "profile"}) as op:
        path = store.save(profile)
        emit(f'Saved profile "{name}" to {path}')
        if not [other for other in existing if other != ENV_PROFILE_NAME]:
            store.set_current(name)
            emit(f'Set "{name}" as current profile (because it is your only profile).')
        op.success(f"Created profile {name}.", changed=1)


@command(app, "edit")
@argtypes("tritonprofile")
def profile_edit(ctx: typer.Context, name: str | None = _profile_arg(None)) -> None:
    """Edit a profile (the current profile by default) in your $EDITOR."""
    runtime = runtime_of(ctx)
    store = runtime.store
    name = name or current_profile_name(runtime)
    if not name:
        raise UsageError("no profile given and no current profile")
    if name == ENV_PROFILE_NAME:
        raise UsageError('cannot edit "env" profile')
    original = store.load_raw(name)
    original.pop("name", None)
    before = json.dumps(original, indent=4, sort_keys=True) + "\n"
    text = before
    with runtime.logger.operation("profile edit", args={}, target={"kind": "profile", "name": name}) as op:
        while True:
            after = edit_in_editor(text, filename=f"profile-{name}.json")
            try:
                edited = json.loads(after)
                if not isinstance(edited, dict):
                    raise TritonError("profile must be a JSON object")
                edited.pop("name", None)
                profile = Profile.from_dict(edited, name=name)
            except (ValueError, TritonError) as exc:
                warn(f"Error with your changes: {exc}")
                if not prompt_retry():
                    emit("Aborting. No change made to profile.")
                    raise Aborted("Aborting. No change made to profile.") from exc
                text = after
                continue
            break
        if json.dumps(edited, indent=4, sort_keys=True) + "\n" == before:
            emit("No change to profile")
            op.success("No change to profile.", changed=0)
            return
        store.save(profile)
        emit(f'Updated profile "{name}"')
        op.success(f"Updated profile {name}.", changed=1)


@command(app, "delete", "rm")
@argtypes("tritonprofile")
def profile_delete(ctx: typer.Context, name: str = _profile_arg(), force: bool = FORCE_OPTION) -> None:
    """Delete a profile."""
    runtime = runtime_of(ctx)
    if name == ENV_PROFILE_NAME:
        raise UsageError('cannot delete "env" profile')
    runtime.store.load_raw(name)
    confirm(f'Delete profile "{name}"?', assume_yes=force)
    with runtime.logger.operation("profile delete", args={"name": name}, target={"kind": "profile"}) as op:
        runtime.store.delete(name)
        emit(f'Deleted profile "{name}"')
        op.success(f"Deleted profile {name}.", changed=1)


@command(app, "set-current", "set")
@argtypes("tritonprofile")
def profile_set_current(
    ctx: typer.Context,
    name: str = typer.Argument(
        ..., metavar="NAME", help="Profile name, or '-' for the previous profile.",
        autocompletion=complete("tritonprofile"),
    ),
) -> None:
    """Set the current profile."""
    runtime = runtime_of(ctx)
    store = runtime.store
    if name != "-" and store.current_name() == name:
        emit(f'"{name}" is already the current profile')
        return
    store.set_current(name)
    emit(f'Set "{store.current_name()}" as current profile')


__all__ = ["PROFILE_LISTING", "app", "current_profile_name", "profile_list"]
