"""Declarative RBAC configuration for ``triton rbac apply`` and ``reset``.

An RBAC config file is a JSON object with optional ``users``, ``policies``
and ``roles`` arrays. Users are keyed by ``login``, policies and roles by
``name``. A user's ``keys`` may be a list of key objects, or a path to a
public key file or to a directory holding ``<login>.pub``; without ``keys``
the ``rbac-user-keys`` directory next to the config file is tried.

:func:`plan_rbac_update` diffs the config against the live state and
:func:`execute_rbac_plan` applies the resulting changes in order.
"""
from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .auth import public_key_fingerprint
from .cloudapi import CloudApi
from .errors import TritonError, UsageError
from .pipeline import run_parallel

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_KEYS_DIR = "rbac-user-keys"
KEY_COMPARE_FIELDS = ("name",)
POLICY_COMPARE_FIELDS = ("description", "rules")
ROLE_COMPARE_FIELDS = ("members", "default_members", "policies")

Record = Mapping[str, Any]


@dataclass(frozen=True)
class RbacChange:
    """One create, update or delete of a user, user key, policy or role."""

    action: str
    type: str
    id: str
    desc: str | None = None
    user: str | None = None
    diff: Mapping[str, str] = field(default_factory=dict)
    have: Record | None = None
    want: Record | None = None

    @property
    def label(self) -> str:
        """What is changed, e.g. ``role`` or ``user bob key``."""
        return self.desc or self.type

    def summary(self) -> str:
        """One line for the confirmation listing."""
        extra = ""
        if self.action == "update":
            extra = " (" + ", ".join(f"{verb} {name}" for name, verb in self.diff.items()) + ")"
        return f"{self.action.capitalize()} {self.label} {self.id}{extra}"


# ----------------------------------------------------------------------
# loading
# ----------------------------------------------------------------------


def load_rbac_config(path: Path) -> dict[str, Any]:
    """Read and validate an RBAC config file, loading user keys from disk."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TritonError(f'cannot read RBAC config file "{path}": {exc}', cause=exc) from exc
    try:
        config = json.loads(text)
    except ValueError as exc:
        raise TritonError(f"Triton RBAC config file, {path}, is not valid JSON: {exc}", cause=exc) from exc
    if not isinstance(config, dict):
        raise TritonError(f"Triton RBAC config file, {path}, must hold a JSON object")

    for section, id_field in (("users", "login"), ("policies", "name"), ("roles", "name")):
        records = config.get(section) or []
        if not isinstance(records, list):
            raise UsageError(f'"{section}" in {path} must be an array')
        for record in records:
            if not isinstance(record, dict) or not record.get(id_field):
                raise UsageError(f'every entry of "{section}" in {path} needs a "{id_field}"')
    for user in config.get("users") or []:
        _load_user_keys(user, path.parent)
    return config


def _load_user_keys(user: dict[str, Any], base: Path) -> None:
    implicit = "keys" not in user
    keys = user.get("keys", DEFAULT_USER_KEYS_DIR)
    if not keys or not isinstance(keys, str):
        return
    login = user["login"]
    keys_path = base / keys
    if keys_path.is_dir():
        keys_path = keys_path / f"{login}.pub"
    if not keys_path.is_file():
        if implicit:
            user.pop("keys", None)
            return
        raise TritonError(f'user {login} keys not found in "{keys_path}"')

    loaded = []
    for line in keys_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            fingerprint = public_key_fingerprint(line)
        except TritonError as exc:
            raise TritonError(f'user {login} key in "{keys_path}": {exc.message}', cause=exc) from exc
        key: dict[str, Any] = {"fingerprint": fingerprint, "key": line.strip()}
        parts = line.split(None, 2)
        if len(parts) == 3 and parts[2].strip():
            key["name"] = parts[2].strip()
        loaded.append(key)
    user["keys"] = loaded


def load_rbac_state(api: CloudApi, *, max_workers: int) -> dict[str, list[dict[str, Any]]]:
    """Fetch users (with keys and role membership), policies and roles."""
    fetchers: list[Callable[[], list[dict[str, Any]]]] = [api.list_users, api.list_policies, api.list_roles]
    users, policies, roles = run_parallel(lambda fetch: fetch(), fetchers, max_workers=max_workers)
    all_keys = run_parallel(
        lambda user: api.list_user_keys(str(user.get("id") or user["login"])), users, max_workers=max_workers
    )

    state_users = []
    by_login: dict[str, dict[str, Any]] = {}
    for user, keys in zip(users, all_keys):
        record = dict(user, keys=keys, default_roles=[], roles=[])
        state_users.append(record)
        by_login[str(user.get("login"))] = record
    for role in roles:
        for login in role.get("default_members") or []:
            if login in by_login:
                by_login[login]["default_roles"].append(role.get("name"))
        for login in role.get("members") or []:
            if login in by_login:
                by_login[login]["roles"].append(role.get("name"))
    return {"users": state_users, "policies": list(policies), "roles": list(roles)}


# ----------------------------------------------------------------------
# planning
# ----------------------------------------------------------------------


def _field_diff(have: Record, want: Record, compare: Sequence[str] | None) -> dict[str, str]:
    diff: dict[str, str] = {}
    for name in have:
        if name not in want:
            diff[name] = "delete"
        elif have[name] != want[name]:
            diff[name] = "update"
    for name in want:
        if name not in have:
            diff[name] = "add"
    if compare is not None:
        diff = {name: diff[name] for name in compare if name in diff}
    return diff


def _crud_changes(
    kind: str,
    id_field: str,
    have: Sequence[Record],
    want: Sequence[Record],
    *,
    desc: str | None = None,
    user: str | None = None,
    compare: Sequence[str] | None = None,
    norm: Callable[[Record], Record] = dict,
    on_create: Callable[[Record], list[RbacChange]] | None = None,
    on_delete: Callable[[Record], list[RbacChange]] | None = None,
    on_update: Callable[[Record, Record], list[RbacChange]] | None = None,
) -> list[RbacChange]:
    """Changes turning *have* into *want*: updates and creates, then deletes."""
    have_by_id = {str(thing.get(id_field)): thing for thing in have}
    want_ids = {str(thing.get(id_field)) for thing in want}
    changes: list[RbacChange] = []
    for wanted in want:
        thing_id = str(wanted.get(id_field))
        existing = have_by_id.get(thing_id)
        if existing is None:
            if on_create is not None:
                changes.extend(on_create(wanted))
            else:
                changes.append(RbacChange("create", kind, thing_id, desc=desc, user=user, want=wanted))
        elif on_update is not None:
            changes.extend(on_update(existing, wanted))
        else:
            diff = _field_diff(norm(existing), norm(wanted), compare)
            if diff:
                changes.append(
                    RbacChange(
                        "update", kind, thing_id, desc=desc, user=user, diff=diff, have=existing, want=norm(wanted)
                    )
                )
    for existing in have:
        thing_id = str(existing.get(id_field))
        if thing_id in want_ids:
            continue
        if on_delete is not None:
            changes.extend(on_delete(existing))
        else:
            changes.append(RbacChange("delete", kind, thing_id, desc=desc, user=user, have=existing))
    return changes


def _norm_policy(policy: Record) -> dict[str, Any]:
    normed = dict(policy)
    normed["rules"] = sorted(policy.get("rules") or [])
    normed["description"] = policy.get("description") or ""
    return normed


def _norm_role(role: Record) -> dict[str, Any]:
    normed = dict(role)
    for name in ROLE_COMPARE_FIELDS:
        normed[name] = sorted(role.get(name) or [])
    return normed


def _key_desc(login: str) -> str:
    return f"user {login} key"


def _user_creates(user: Record) -> list[RbacChange]:
    login = str(user["login"])
    changes = [RbacChange("create", "user", login, want=user)]
    for key in user.get("keys") or []:
        changes.append(
            RbacChange("create", "key", str(key["fingerprint"]), desc=_key_desc(login), user=login, want=key)
        )
    return changes


def _user_deletes(user: Record) -> list[RbacChange]:
    login = str(user["login"])
    changes = [
        RbacChange("delete", "key", str(key["fingerprint"]), desc=_key_desc(login), user=login, have=key)
        for key in user.get("keys") or []
    ]
    changes.append(RbacChange("delete", "user", login, have=user))
    return changes


def _user_updates(have: Record, want: Record) -> list[RbacChange]:
    """Users compare loosely: only the fields the config names."""
    login = str(have["login"])
    diff = {name: "update" for name in want if name != "keys" and have.get(name) != want[name]}
    changes = []
    if diff:
        changes.append(RbacChange("update", "user", login, diff=diff, have=have, want=want))
    changes.extend(
        _crud_changes(
            "key",
            "fingerprint",
            have.get("keys") or [],
            want.get("keys") or [],
            desc=_key_desc(login),
            user=login,
            compare=KEY_COMPARE_FIELDS,
        )
    )
    return changes


def plan_rbac_update(config: Mapping[str, Any], state: Mapping[str, Any]) -> list[RbacChange]:
    """Return the ordered changes that make *state* match *config*.

    Users (and their keys) come first, then policies, then roles, so roles
    can refer to the policies and members they need.
    """
    changes = _crud_changes(
        "user",
        "login",
        state.get("users") or [],
        config.get("users") or [],
        on_create=_user_creates,
        on_delete=_user_deletes,
        on_update=_user_updates,
    )
    changes += _crud_changes(
        "policy",
        "name",
        state.get("policies") or [],
        config.get("policies") or [],
        compare=POLICY_COMPARE_FIELDS,
        norm=_norm_policy,
    )
    changes += _crud_changes(
        "role",
        "name",
        state.get("roles") or [],
        config.get("roles") or [],
        compare=ROLE_COMPARE_FIELDS,
        norm=_norm_role,
    )
    return changes


# ----------------------------------------------------------------------
# applying
# ----------------------------------------------------------------------


def generate_password() -> str:
    """Return a throwaway password for users created without one."""
    return secrets.token_urlsafe(18)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _key_suffix(key: Record) -> str:
    return f" ({key['name']})" if key.get("name") else ""


def _record_id(record: Record | None, fallback: str) -> str:
    return str((record or {}).get("id") or fallback)


def execute_rbac_plan(
    api: CloudApi,
    plan: Sequence[RbacChange],
    *,
    dry_run: bool = False,
    write: Callable[[str], None],
    password: Callable[[], str] = generate_password,
) -> int:
    """Apply *plan* in order and return how many changes were made.

    The first failing change stops the run; earlier changes stay applied.
    """
    applied = 0
    for change in plan:
        LOGGER.info("rbac %s %s %s%s", change.action, change.label, change.id, " (dry-run)" if dry_run else "")
        if dry_run:
            write(f"[dry-run] {change.action} {change.label} {change.id}")
            continue
        _apply_one(api, change, write, password)
        applied += 1
    return applied


def _apply_one(
    api: CloudApi, change: RbacChange, write: Callable[[str], None], password: Callable[[], str]
) -> None:
    want = dict(change.want or {})
    have = change.have or {}
    updates = {name: want.get(name) for name in change.diff}
    described = ", ".join(
        f"{name}={';'.join(value) if isinstance(value, list) else value}" for name, value in updates.items()
    )
    kind = (change.action, change.type)

    if kind == ("create", "user"):
        body = {name: value for name, value in want.items() if name != "keys"}
        body.setdefault("password", password())
        api.create_user(**body)
        write(f"Created user {change.id}")
    elif kind == ("update", "user"):
        api.update_user(_record_id(have, change.id), **updates)
        write(f"Updated user {change.id}: {described}")
    elif kind == ("delete", "user"):
        api.delete_user(_record_id(have, change.id))
        write(f"Deleted user {change.id}")
    elif kind == ("create", "key"):
        key = api.create_user_key(str(change.user), key=str(want["key"]), name=want.get("name"))
        write(f"Created user {change.user} key {key.get('fingerprint', change.id)}{_key_suffix(key)}")
    elif kind == ("update", "key"):
        api.delete_user_key(str(change.user), str(have["fingerprint"]))
        api.create_user_key(str(change.user), key=str(want["key"]), name=want.get("name"))
        key_fields = ", ".join("key=..." if name == "key" else f"{name}={want.get(name)}" for name in change.diff)
        write(f"Updated user {change.user} key {change.id}: {key_fields}")
    elif kind == ("delete", "key"):
        api.delete_user_key(str(change.user), str(have["fingerprint"]))
        write(f"Deleted user {change.user} key {change.id}")
    elif kind == ("create", "policy"):
        policy = api.create_policy(**want)
        write(f"Created policy {change.id} ({_plural(len(policy.get('rules') or want.get('rules') or []), 'rule')})")
    elif kind == ("update", "policy"):
        api.update_policy(_record_id(have, change.id), **updates)
        write(f"Updated policy {change.id}: {described}")
    elif kind == ("delete", "policy"):
        api.delete_policy(_record_id(have, change.id))
        write(f"Deleted policy {change.id}")
    elif kind == ("create", "role"):
        role = api.create_role(**want)
        members = role.get("members") or want.get("members") or []
        write(f"Created role {change.id} ({_plural(len(members), 'member')})")
    elif kind == ("update", "role"):
        api.update_role(_record_id(have, change.id), **updates)
        write(f"Updated role {change.id}: {described}")
    elif kind == ("delete", "role"):
        api.delete_role(_record_id(have, change.id))
        write(f"Deleted role {change.id}")
    else:
        raise TritonError(f"unknown RBAC change: {change.action}-{change.type}")


__all__ = [
    "DEFAULT_USER_KEYS_DIR",
    "RbacChange",
    "execute_rbac_plan",
    "generate_password",
    "load_rbac_config",
    "load_rbac_state",
    "plan_rbac_update",
]
