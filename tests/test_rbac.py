"""RBAC text round trip and edit loop tests."""
from __future__ import annotations

from typing import Any

import pytest

from tritoncli.errors import Aborted, CloudApiError, UsageError
from tritoncli.rbac import (
    edit_record,
    parse_role_tags,
    parse_yamlish,
    render_role_tags,
    render_yamlish,
)

ROLE = {"name": "ops", "default_members": ["bob"], "members": ["bob", "carol"], "policies": ["read-all"]}
POLICY = {"name": "read-all", "description": "Read only", "rules": ["CAN listmachines", "CAN getmachine"]}


def test_role_renders_one_line_per_field() -> None:
    assert render_yamlish("role", ROLE) == (
        "name: ops\n"
        "default_members: bob\n"
        "members: bob, carol\n"
        "policies: read-all\n"
    )


@pytest.mark.parametrize(
    ("kind", "record"),
    [
        ("role", ROLE),
        ("role", {"name": "empty", "default_members": [], "members": [], "policies": []}),
        ("policy", POLICY),
        ("user", {"email": "bob@example.com", "firstName": "Bob", "city": "Lisbon"}),
    ],
)
def test_render_parse_render_is_stable(kind: str, record: dict[str, Any]) -> None:
    text = render_yamlish(kind, record)

    assert render_yamlish(kind, parse_yamlish(kind, text)) == text


def test_policy_rules_block_and_comments() -> None:
    text = "# edit me\nname: read-all\ndescription: Read only  # trailing\nrules:\n  - CAN listmachines\n\n  - CAN getmachine\n"

    assert parse_yamlish("policy", text) == POLICY


def test_unknown_field_is_rejected() -> None:
    with pytest.raises(UsageError, match='unknown role field "colour"'):
        parse_yamlish("role", "name: ops\ncolour: red\n")


def test_required_field_is_enforced() -> None:
    with pytest.raises(UsageError, match='user field "email" is required'):
        parse_yamlish("user", "firstName: Bob\n")


def test_role_tags_text_is_sorted() -> None:
    assert render_role_tags(["ops", "admin"]) == "admin\nops\n"
    assert parse_role_tags("ops\n# comment\n\nadmin  # trailing\n") == ["admin", "ops"]


def _run_edit(
    edits: list[str], retries: list[bool], save: Any = None
) -> tuple[Any, list[str], list[str]]:
    writes: list[str] = []
    warnings: list[str] = []
    seen: list[str] = []

    def edit(text: str) -> str:
        seen.append(text)
        return edits.pop(0)

    result = edit_record(
        "role",
        dict(ROLE, id="r1"),
        save=save or (lambda record: record),
        edit=edit,
        retry=lambda: retries.pop(0),
        write=writes.append,
        warn=warnings.append,
    )
    return result, writes, warnings + seen


def test_edit_saves_changed_record_with_id() -> None:
    changed = render_yamlish("role", ROLE).replace("members: bob, carol", "members: bob")

    saved, _, _ = _run_edit([changed], [])

    assert saved == {"name": "ops", "default_members": ["bob"], "members": ["bob"], "policies": ["read-all"], "id": "r1"}


def test_edit_without_change_saves_nothing() -> None:
    saved, writes, _ = _run_edit([render_yamlish("role", ROLE)], [])

    assert saved is None
    assert writes == ["No change to role"]


def test_administrator_with_policies_offers_retry_with_user_text() -> None:
    """A refused edit is re-opened with what the user typed."""
    refused = "name: administrator\npolicies: read-all\n"
    fixed = "name: administrator\n"

    saved, _, log = _run_edit([refused, fixed], [True])

    assert saved == {"name": "administrator", "id": "r1"}
    assert log[0].startswith("Error with your changes:")
    assert log[-1] == refused


def test_save_failure_then_abort() -> None:
    def save(record: dict[str, Any]) -> dict[str, Any]:
        raise CloudApiError("role name taken", status_code=409)

    changed = render_yamlish("role", ROLE).replace("name: ops", "name: dev")

    with pytest.raises(Aborted):
        _run_edit([changed], [False], save=save)
