"""Tests for the small shared helpers."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tritoncli.common import (
    fields_from_args,
    human_duration,
    human_size_from_mib,
    is_uuid,
    kv_to_obj,
    long_ago,
    norm_short_id,
    short_id,
    slug,
    split_comma_values,
)
from tritoncli.errors import UsageError


def test_short_id_is_first_uuid_segment() -> None:
    assert short_id("3d51f2d5-46f2-4da5-bb04-3238f2f64768") == "3d51f2d5"


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("3d51", "3d51"),
        ("3D51F2D5", "3d51f2d5"),
        ("3d51f2d5-46", "3d51f2d5-46"),
        ("3d51f2d546f24da5bb043238f2f64768", "3d51f2d5-46f2-4da5-bb04-3238f2f64768"),
        ("web0", None),
        ("3d51f-46f2", None),
        ("3d51f2d5--", None),
    ],
)
def test_norm_short_id(token: str, expected: str | None) -> None:
    """Only hex prefixes shaped like the start of a UUID are id prefixes."""
    assert norm_short_id(token) == expected


def test_is_uuid() -> None:
    assert is_uuid("3d51f2d5-46f2-4da5-bb04-3238f2f64768")
    assert not is_uuid("3d51f2d5")
    assert not is_uuid(None)


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0.35, "350ms"), (1, "1s"), (62, "1m2s"), (3600, "1h"), (90061, "1d1h1m1s")],
)
def test_human_duration(seconds: float, expected: str) -> None:
    assert human_duration(seconds) == expected


def test_long_ago_buckets() -> None:
    now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    assert long_ago("2026-10-19T11:58:00Z", now) == "2min"
    assert long_ago("2026-10-16T12:00:00.000Z", now) == "3d"
    assert long_ago(now, now) == "0s"


@pytest.mark.parametrize(("mib", "expected"), [(512, "512M"), (1024, "1G"), (1536, "1.5G"), (2097152, "2T")])
def test_human_size_from_mib(mib: float, expected: str) -> None:
    assert human_size_from_mib(mib) == expected


def test_kv_to_obj_validates_names() -> None:
    """Filters must be FIELD=VALUE on a known field."""
    assert kv_to_obj(["state=running", "name=web=0"], ["state", "name"]) == {
        "state": "running",
        "name": "web=0",
    }
    with pytest.raises(UsageError, match='invalid filter name: "colour"'):
        kv_to_obj(["colour=red"], ["state"])
    with pytest.raises(UsageError, match="must be of the form"):
        kv_to_obj(["running"])


def test_fields_from_args_types_values() -> None:
    """Update fields are coerced by their declared type."""
    types = {"enabled": "boolean", "size": "number", "acl": "array", "tags": "object", "name": "string"}

    fields = fields_from_args(
        ["enabled=false", "size=10", "acl=a, b", 'tags={"env":"prod"}', "name=1.0"], types
    )

    assert fields == {"enabled": False, "size": 10, "acl": ["a", "b"], "tags": {"env": "prod"}, "name": "1.0"}


def test_fields_from_args_rejects_unknown_field() -> None:
    with pytest.raises(UsageError, match='unknown field "colour"'):
        fields_from_args(["colour=red"], {"name": "string"})


def test_slug_is_filesystem_safe() -> None:
    assert slug({"account": "alice", "url": "https://us-east-1.api.example.com:8443/"}) == (
        "alice@us-east-1.api.example.com_8443_"
    )


def test_split_comma_values() -> None:
    assert split_comma_values(["a,b", " c ", ",,"]) == ["a", "b", "c"]
    assert split_comma_values(None) == []
