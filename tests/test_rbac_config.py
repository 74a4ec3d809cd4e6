"""RBAC apply planning and execution tests."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from fakes import FakeCloud
from typer.testing import CliRunner

from tritoncli.auth import public_key_fingerprint
from tritoncli.cli import app
from tritoncli.cloudapi import CloudApi
from tritoncli.errors import TritonError, UsageError
from tritoncli.rbac_config import (
    execute_rbac_plan,
    load_rbac_config,
    load_rbac_state,
    plan_rbac_update,
)

BOB_KEY = {"fingerprint": "aa:bb", "name": "laptop", "key": "ssh-ed25519 AAAA laptop"}


def _public_line(comment: str) -> str:
    key = ed25519.Ed25519PrivateKey.generate().public_key()
    line = key.public_bytes(serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH).decode()
    return f"{line} {comment}"


def _steps(plan: list[Any]) -> list[tuple[str, str, str]]:
    return [(change.action, change.type, change.id) for change in plan]


def test_plan_creates_users_then_keys_policies_and_roles() -> None:
    config = {
        "users": [{"login": "bob", "email": "bob@example.com", "keys": [BOB_KEY]}],
        "policies": [{"name": "read", "rules": ["CAN listmachines"]}],
        "roles": [{"name": "ops", "members": ["bob"], "policies": ["read"]}],
    }

    plan = plan_rbac_update(config, {"users": [], "policies": [], "roles": []})

    assert _steps(plan) == [
        ("create", "user", "bob"),
        ("create", "key", "aa:bb"),
        ("create", "policy", "read"),
        ("create", "role", "ops"),
    ]
    assert plan[1].user == "bob"
    assert plan[1].summary() == "Create user bob key aa:bb"


def test_plan_ignores_ordering_and_missing_role_fields() -> None:
    """Role lists compare sorted and absent lists equal empty ones."""
    state = {
        "users": [],
        "policies": [{"id": "p1", "name": "read", "rules": ["CAN b", "CAN a"], "description": ""}],
        "roles": [{"id": "r1", "name": "ops", "members": ["carol", "bob"], "default_members": [], "policies": []}],
    }
    config = {
        "policies": [{"name": "read", "rules": ["CAN a", "CAN b"]}],
        "roles": [{"name": "ops", "members": ["bob", "carol"]}],
    }

    assert plan_rbac_update(config, state) == []


def test_plan_updates_only_changed_fields() -> None:
    state = {
        "users": [{"id": "u1", "login": "bob", "email": "old@example.com", "companyName": "Acme", "keys": []}],
        "policies": [{"id": "p1", "name": "read", "rules": ["CAN listmachines"], "description": "Read"}],
        "roles": [],
    }
    config = {
        "users": [{"login": "bob", "email": "bob@example.com"}],
        "policies": [{"name": "read", "rules": ["CAN listmachines", "CAN getmachine"], "description": "Read"}],
    }

    user, policy = plan_rbac_update(config, state)

    assert (user.action, user.type, dict(user.diff)) == ("update", "user", {"email": "update"})
    assert (policy.action, dict(policy.diff)) == ("update", {"rules": "update"})
    assert policy.summary() == "Update policy read (update rules)"


def test_plan_deletes_user_keys_before_the_user() -> None:
    state = {
        "users": [{"id": "u1", "login": "bob", "keys": [BOB_KEY]}],
        "policies": [{"id": "p1", "name": "read", "rules": []}],
        "roles": [{"id": "r1", "name": "ops"}],
    }

    plan = plan_rbac_update({}, state)

    assert _steps(plan) == [
        ("delete", "key", "aa:bb"),
        ("delete", "user", "bob"),
        ("delete", "policy", "read"),
        ("delete", "role", "ops"),
    ]


def test_load_config_reads_implicit_user_keys_dir(tmp_path: Path) -> None:
    line = _public_line("bob@laptop")
    (tmp_path / "rbac-user-keys").mkdir()
    (tmp_path / "rbac-user-keys" / "bob.pub").write_text(line + "\n\n", encoding="utf-8")
    path = tmp_path / "rbac.json"
    path.write_text(json.dumps({"users": [{"login": "bob"}, {"login": "carol"}]}), encoding="utf-8")

    config = load_rbac_config(path)

    bob, carol = config["users"]
    assert bob["keys"] == [{"fingerprint": public_key_fingerprint(line), "name": "bob@laptop", "key": line}]
    assert "keys" not in carol


def test_load_config_requires_named_keys_file(tmp_path: Path) -> None:
    path = tmp_path / "rbac.json"
    path.write_text(json.dumps({"users": [{"login": "bob", "keys": "missing.pub"}]}), encoding="utf-8")

    with pytest.raises(TritonError, match="user bob keys not found"):
        load_rbac_config(path)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("{nope", "is not valid JSON"),
        (json.dumps({"roles": [{"members": ["bob"]}]}), 'needs a "name"'),
        (json.dumps({"users": {"login": "bob"}}), "must be an array"),
    ],
)
def test_load_config_rejects_bad_files(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "rbac.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(TritonError, match=message) as excinfo:
        load_rbac_config(path)
    if "name" in message:
        assert isinstance(excinfo.value, UsageError)


def test_load_state_fills_role_membership(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("GET", "/users", [{"id": "u1", "login": "bob"}])
    cloud.json("GET", "/users/u1/keys", [BOB_KEY])
    cloud.json("GET", "/policies", [])
    cloud.json("GET", "/roles", [{"id": "r1", "name": "ops", "members": ["bob"], "default_members": ["bob"]}])

    state = load_rbac_state(api, max_workers=4)

    [bob] = state["users"]
    assert bob["keys"] == [BOB_KEY]
    assert bob["roles"] == ["ops"]
    assert bob["default_roles"] == ["ops"]


def test_execute_dry_run_makes_no_requests(api: CloudApi, cloud: FakeCloud) -> None:
    plan = plan_rbac_update({"roles": [{"name": "ops"}]}, {})
    lines: list[str] = []

    applied = execute_rbac_plan(api, plan, dry_run=True, write=lines.append)

    assert applied == 0
    assert lines == ["[dry-run] create role ops"]
    assert cloud.calls == []


def test_execute_creates_user_with_generated_password(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("POST", "/users", {"id": "u1", "login": "bob"})
    cloud.json("POST", "/users/bob/keys", {"fingerprint": "aa:bb", "name": "laptop"})
    plan = plan_rbac_update({"users": [{"login": "bob", "email": "bob@example.com", "keys": [BOB_KEY]}]}, {})
    lines: list[str] = []

    applied = execute_rbac_plan(api, plan, write=lines.append, password=lambda: "s3cret-pw")

    assert applied == 2
    assert lines == ["Created user bob", "Created user bob key aa:bb (laptop)"]
    [create] = cloud.requests_to("POST", "/users")
    assert create.body == {"login": "bob", "email": "bob@example.com", "password": "s3cret-pw"}
    [key] = cloud.requests_to("POST", "/users/bob/keys")
    assert key.body == {"key": BOB_KEY["key"], "name": "laptop"}


def _route_state(cloud: FakeCloud) -> None:
    cloud.json("GET", "/users", [{"id": "u1", "login": "bob", "email": "bob@example.com"}])
    cloud.json("GET", "/users/u1/keys", [])
    cloud.json("GET", "/policies", [])
    cloud.json(
        "GET", "/roles", [{"id": "r1", "name": "ops", "members": ["bob"], "default_members": [], "policies": []}]
    )


def _write_config(directory: Path) -> Path:
    path = directory / "rbac.json"
    config = {
        "users": [{"login": "bob", "email": "bob@example.com", "keys": []}],
        "policies": [{"name": "read", "rules": ["CAN listmachines"]}],
        "roles": [{"name": "ops", "members": ["bob"], "policies": ["read"]}],
    }
    path.write_text(json.dumps(config), encoding="utf-8")
    return path


def test_cli_apply_updates_account(cli_env: Path, cloud: FakeCloud, tmp_path: Path) -> None:
    _route_state(cloud)
    cloud.json("POST", "/policies", {"id": "p1", "name": "read", "rules": ["CAN listmachines"]})
    cloud.json("POST", "/roles/r1", {"id": "r1", "name": "ops"})
    path = _write_config(tmp_path)

    result = CliRunner().invoke(app, ["rbac", "apply", "-f", str(path), "-y"], prog_name="triton")

    assert result.exit_code == 0, result.output
    assert "This will make the following RBAC config changes:\n" in result.output
    assert "    Create policy read\n" in result.output
    assert "    Update role ops (update policies)\n" in result.output
    assert "Created policy read (1 rule)\n" in result.output
    assert "Updated role ops: policies=read\n" in result.output
    assert cloud.requests_to("POST", "/roles/r1")[0].body == {"policies": ["read"]}
    record = json.loads((cli_env / "logs" / "operations.log").read_text(encoding="utf-8"))
    assert record["command"] == "rbac apply"
    assert record["result"]["changed"] == 2


def test_cli_apply_declined_changes_nothing(cli_env: Path, cloud: FakeCloud, tmp_path: Path) -> None:
    _route_state(cloud)
    path = _write_config(tmp_path)

    result = CliRunner().invoke(app, ["rbac", "apply", "-f", str(path)], input="n\n", prog_name="triton")

    assert result.exit_code == 0, result.output
    assert "Would you like to continue?" in result.output
    assert "Aborting update" in result.output
    assert not [call for call in cloud.calls if call.method == "POST"]


def test_cli_reset_dry_run_lists_deletes(cli_env: Path, cloud: FakeCloud) -> None:
    _route_state(cloud)

    result = CliRunner().invoke(app, ["rbac", "reset", "-n", "-y"], prog_name="triton")

    assert result.exit_code == 0, result.output
    assert "[dry-run] delete user bob\n" in result.output
    assert "[dry-run] delete role ops\n" in result.output
    assert not [call for call in cloud.calls if call.method in ("POST", "DELETE")]


def test_cli_apply_up_to_date(cli_env: Path, cloud: FakeCloud, tmp_path: Path) -> None:
    _route_state(cloud)
    path = tmp_path / "rbac.json"
    path.write_text(
        json.dumps({"users": [{"login": "bob", "keys": []}], "roles": [{"name": "ops", "members": ["bob"]}]}),
        encoding="utf-8",
    )

    result = CliRunner().invoke(app, ["rbac", "apply", "-f", str(path)], prog_name="triton")

    assert result.exit_code == 0, result.output
    assert "RBAC config is up-to-date\n" in result.output
    assert "following RBAC config changes" not in result.output
