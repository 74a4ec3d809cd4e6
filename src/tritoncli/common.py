"""Small helpers shared across tritoncli modules."""
from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime

from .errors import UsageError

UUID_RE = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.I)
_HEX_RE = re.compile(r"^[a-f0-9]+$")
_SHORT_ID_SPANS = (8, 4, 4, 4, 12)

_DURATION_UNITS: tuple[tuple[str, int], ...] = (
    ("y", 365 * 24 * 60 * 60),
    ("w", 7 * 24 * 60 * 60),
    ("d", 24 * 60 * 60),
    ("h", 60 * 60),
    ("m", 60),
    ("s", 1),
)
_AGO_UNITS: tuple[tuple[str, float], ...] = (
    ("y", 60 * 60 * 24 * 365),
    ("mon", 60 * 60 * 24 * 30),
    ("d", 60 * 60 * 24),
    ("h", 60 * 60),
    ("min", 60),
    ("s", 1),
)


def is_uuid(value: object) -> bool:
    """Return ``True`` when *value* is a canonically hyphenated UUID string."""
    return isinstance(value, str) and UUID_RE.match(value) is not None


def short_id(uuid: str) -> str:
    """Return the short id (hex characters before the first ``-``) of *uuid*."""
    return uuid.split("-", 1)[0]


def norm_short_id(token: str) -> str | None:
    """Normalise a short id (or docker style 32+ char id) into a UUID prefix.

    Returns ``None`` when *token* cannot be an id prefix. A token of 32 or more
    unhyphenated hex characters is turned into the full UUID it encodes.
    """
    text = token.lower()
    if _HEX_RE.match(text) and len(text) >= 32:
        text = text[:32]
        return "-".join(
            (text[0:8], text[8:12], text[12:16], text[16:20], text[20:32])
        )

    segments = text.split("-")
    if len(segments) > len(_SHORT_ID_SPANS):
        return None
    for index, segment in enumerate(segments):
        span = _SHORT_ID_SPANS[index]
        if not segment or not _HEX_RE.match(segment) or len(segment) > span:
            return None
        if len(segment) < span and index != len(segments) - 1:
            return None
    return text


def human_duration(seconds: float) -> str:
    """Render a duration like ``1m2s`` (or ``350ms`` for sub-second spans)."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    remaining = int(seconds)
    parts: list[str] = []
    for suffix, size in _DURATION_UNITS:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{suffix}")
    return "".join(parts) or "0s"


def long_ago(when: datetime | str, now: datetime | None = None) -> str:
    """Return a coarse ``3d``/``5min`` style age for *when*."""
    moment = parse_timestamp(when) if isinstance(when, str) else when
    current = now or datetime.now(UTC)
    seconds = round((current - moment).total_seconds())
    for suffix, size in _AGO_UNITS:
        count = math.floor(seconds / size)
        if count > 0:
            return f"{count}{suffix}"
    return "0s"


def parse_timestamp(value: str) -> datetime:
    """Parse a CloudAPI ISO-8601 timestamp (``Z`` suffix allowed)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def human_size_from_mib(mib: float) -> str:
    """Render a size given in mebibytes with a binary suffix (``10G``)."""
    units = ("M", "G", "T", "P")
    value = float(mib)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            if value == int(value):
                return f"{int(value)}{unit}"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{mib}M"  # pragma: no cover


def bool_from_string(value: object, default: bool | None, name: str) -> bool | None:
    """Convert ``true``/``false``/``1``/``0`` (or a bool) to a boolean."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    raise UsageError(f'invalid value for "{name}": {json.dumps(value)}')


def kv_to_obj(kvs: Iterable[str], valid: Sequence[str] | None = None) -> dict[str, str]:
    """Break ``field=value`` filter arguments into a mapping."""
    result: dict[str, str] = {}
    for kv in kvs:
        key, sep, value = kv.partition("=")
        if not sep:
            raise UsageError(f'invalid filter: "{kv}" (must be of the form "field=value")')
        if valid is not None and key not in valid:
            joined = '", "'.join(valid)
            raise UsageError(f'invalid filter name: "{key}" (must be one of "{joined}")')
        result[key] = value
    return result


def fields_from_args(
    args: Iterable[str], field_types: Mapping[str, str], *, label: str = "field"
) -> dict[str, object]:
    """Parse ``FIELD=VALUE`` update arguments against a field -> type table.

    Types are ``string``, ``boolean``, ``number``, ``array`` (comma separated)
    and ``object`` (a JSON object).
    """
    result: dict[str, object] = {}
    for arg in args:
        key, sep, raw = arg.partition("=")
        if not sep:
            raise UsageError(f'invalid {label} argument: "{arg}" (must be FIELD=VALUE)')
        kind = field_types.get(key)
        if kind is None:
            allowed = ", ".join(f"{name} ({field_types[name]})" for name in sorted(field_types))
            raise UsageError(f'unknown {label} "{key}": must be one of {allowed}')
        result[key] = _typed_value(key, raw, kind)
    return result


def _typed_value(key: str, raw: str, kind: str) -> object:
    if kind == "boolean":
        return bool_from_string(raw, None, key)
    if kind == "number":
        try:
            number = float(raw)
        except ValueError as exc:
            raise UsageError(f'invalid number for "{key}": {raw}', cause=exc) from exc
        return int(number) if number.is_integer() else number
    if kind == "array":
        return [part.strip() for part in raw.split(",") if part.strip()]
    if kind == "object":
        try:
            value = json.loads(raw)
        except ValueError as exc:
            raise UsageError(f'invalid JSON object for "{key}": {raw}', cause=exc) from exc
        if not isinstance(value, dict):
            raise UsageError(f'"{key}" must be a JSON object')
        return value
    return raw


def json_stream(items: Iterable[object]) -> str:
    """Render each item as compact JSON on its own line."""
    return "\n".join(json.dumps(item, separators=(",", ":")) for item in items)


def slug(profile: Mapping[str, object]) -> str:
    """Return a filesystem-safe identity for a profile (account and URL)."""
    account = str(profile.get("account", ""))
    url = str(profile.get("url", ""))
    url = re.sub(r"^https?://", "", url)
    raw = f"{account}@{url}"
    return re.sub(r"[^\w@.-]", "_", raw)


def split_comma_values(values: Iterable[str] | None) -> list[str]:
    """Flatten ``a,b`` ``c`` style repeated options into ``[a, b, c]``."""
    result: list[str] = []
    for value in values or ():
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


__all__ = [
    "UUID_RE",
    "bool_from_string",
    "fields_from_args",
    "human_duration",
    "human_size_from_mib",
    "is_uuid",
    "json_stream",
    "kv_to_obj",
    "long_ago",
    "norm_short_id",
    "parse_timestamp",
    "short_id",
    "slug",
    "split_comma_values",
]
