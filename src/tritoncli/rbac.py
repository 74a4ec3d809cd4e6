"""RBAC records as editable text.

Roles, policies and users are rendered as one ``key: value`` line per schema
field, arrays joined with commas. Policy ``rules`` are a block of ``  - RULE``
lines under ``rules:``. :func:`parse_yamlish` reverses :func:`render_yamlish`
for any record holding only schema fields, and :func:`edit_record` drives the
edit, reparse, save and retry loop.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import Aborted, TritonError, UsageError

LOGGER = logging.getLogger(__name__)

ADMINISTRATOR_ROLE = "administrator"
_CSV_SPLIT_RE = re.compile(r"\s*,\s*")


@dataclass(frozen=True)
class FieldSpec:
    """One editable field of an RBAC record."""

    key: str
    required: bool = False
    array: bool = False
    block: bool = False


ROLE_FIELDS = (
    FieldSpec("name", required=True),
    FieldSpec("default_members", array=True),
    FieldSpec("members", array=True),
    FieldSpec("policies", array=True),
)
POLICY_FIELDS = (
    FieldSpec("name", required=True),
    FieldSpec("description"),
    FieldSpec("rules", array=True, block=True),
)
USER_FIELDS = (
    FieldSpec("email", required=True),
    FieldSpec("firstName"),
    FieldSpec("lastName"),
    FieldSpec("companyName"),
    FieldSpec("address"),
    FieldSpec("postalCode"),
    FieldSpec("city"),
    FieldSpec("state"),
    FieldSpec("country"),
    FieldSpec("phone"),
)
SCHEMAS: dict[str, tuple[FieldSpec, ...]] = {
    "role": ROLE_FIELDS,
    "policy": POLICY_FIELDS,
    "user": USER_FIELDS,
}
SHOW_ORDER = {
    "role": ("id", "name", "default_members", "members", "policies"),
    "policy": ("id", "name", "description", "rules"),
    "user": ("id", "login", "email", "firstName", "lastName", "companyName"),
}


def _schema(kind: str) -> tuple[FieldSpec, ...]:
    try:
        return SCHEMAS[kind]
    except KeyError as exc:
        raise TritonError(f"unknown RBAC record kind: {kind}") from exc


def split_csv(value: str) -> list[str]:
    """Split ``a, b,c`` into ``["a", "b", "c"]`` dropping empty items."""
    return [item for item in _CSV_SPLIT_RE.split(value.strip()) if item]


def _strip_comment(line: str) -> str:
    index = line.find("#")
    if index != -1:
        line = line[:index]
    return line.rstrip()


def render_yamlish(kind: str, record: Mapping[str, Any]) -> str:
    """Render the schema fields of *record* as editable text."""
    lines: list[str] = []
    for spec in _schema(kind):
        value = record.get(spec.key)
        if spec.block:
            lines.append(f"{spec.key}:")
            lines.extend(f"  - {item}" for item in value or ())
            continue
        if spec.array:
            text = ", ".join(str(item) for item in value or ())
        else:
            text = "" if value is None else str(value)
        lines.append(f"{spec.key}: {text}".rstrip())
    return "\n".join(lines) + "\n"


def parse_yamlish(kind: str, text: str) -> dict[str, Any]:
    """Parse text produced (and possibly edited) from :func:`render_yamlish`."""
    specs = {spec.key: spec for spec in _schema(kind)}
    record: dict[str, Any] = {}
    block_key: str | None = None
    for raw in text.split("\n"):
        line = _strip_comment(raw)
        if not line.strip():
            continue
        stripped = line.strip()
        if block_key is not None and (line[0].isspace() or stripped.startswith("- ")):
            item = stripped[2:].strip() if stripped.startswith("- ") else stripped
            if item:
                record[block_key].append(item)
            continue
        block_key = None
        key, sep, value = stripped.partition(":")
        key = key.strip()
        if not sep:
            raise UsageError(f'invalid {kind} line (expected "key: value"): {stripped}')
        if key not in specs:
            raise UsageError(
                f'unknown {kind} field "{key}": must be one of '
                + ", ".join(specs)
            )
        spec = specs[key]
        value = value.strip()
        if spec.block:
            record[key] = split_csv(value) if value else []
            block_key = key
        elif spec.array:
            record[key] = split_csv(value)
        else:
            record[key] = value
    for spec in specs.values():
        if spec.required and not record.get(spec.key):
            raise UsageError(f'{kind} field "{spec.key}" is required')
    return record


def check_record(kind: str, record: Mapping[str, Any]) -> None:
    """Reject records CloudAPI would refuse for policy reasons."""
    if kind == "role" and record.get("name") == ADMINISTRATOR_ROLE and record.get("policies"):
        raise UsageError(f'the "{ADMINISTRATOR_ROLE}" role cannot have policies')


def show_lines(kind: str, record: Mapping[str, Any]) -> list[str]:
    """Return ``key: value`` lines for display, known fields first."""
    order = SHOW_ORDER.get(kind, ())

    def rank(key: str) -> tuple[int, int]:
        return (1, order.index(key)) if key in order else (0, 0)

    lines = []
    for key in sorted(record, key=rank):
        value = record[key]
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        lines.append(f"{key}: {value}")
    return lines


def render_role_tags(role_tags: Sequence[str]) -> str:
    """Render role tags one per line, sorted."""
    if not role_tags:
        return ""
    return "\n".join(sorted(role_tags)) + "\n"


def parse_role_tags(text: str) -> list[str]:
    """Parse one role tag per line (``#`` comments allowed), sorted."""
    tags = [_strip_comment(line).strip() for line in text.split("\n")]
    return sorted(tag for tag in tags if tag)


def edit_record(
    kind: str,
    record: Mapping[str, Any],
    *,
    save: Callable[[dict[str, Any]], Mapping[str, Any]],
    edit: Callable[[str], str],
    retry: Callable[[], bool],
    write: Callable[[str], None],
    warn: Callable[[str], None],
) -> Mapping[str, Any] | None:
    """Edit *record* until it parses and saves, or the user aborts.

    Returns the saved record, or ``None`` when nothing changed. A parse,
    validation or save failure is reported through *warn* and the user may
    re-edit their own text; declining raises :class:`Aborted`.
    """
    original = render_yamlish(kind, record)
    text = original
    while True:
        after = edit(text)
        try:
            edited = parse_yamlish(kind, after)
            check_record(kind, edited)
        except TritonError as exc:
            warn(f"Error with your changes: {exc}")
            text = _offer_retry(kind, after, retry, write)
            continue

        if render_yamlish(kind, edited) == original:
            write(f"No change to {kind}")
            return None
        if "id" in record:
            edited["id"] = record["id"]
        try:
            return save(edited)
        except TritonError as exc:
            warn(f"Error updating {kind} with your changes: {exc}")
            text = _offer_retry(kind, after, retry, write)


def _offer_retry(
    kind: str, text: str, retry: Callable[[], bool], write: Callable[[str], None]
) -> str:
    if retry():
        return text
    write(f"Aborting. No change made to {kind}.")
    raise Aborted(f"Aborting. No change made to {kind}.")


__all__ = [
    "ADMINISTRATOR_ROLE",
    "FieldSpec",
    "POLICY_FIELDS",
    "ROLE_FIELDS",
    "SCHEMAS",
    "USER_FIELDS",
    "check_record",
    "edit_record",
    "parse_role_tags",
    "parse_yamlish",
    "render_role_tags",
    "render_yamlish",
    "show_lines",
    "split_csv",
]
