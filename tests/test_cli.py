"""End-to-end tests for the ``triton`` command tree against a fake CloudAPI."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeCloud, FakeResponse
from typer.testing import CliRunner, Result

from tritoncli import __version__
from tritoncli.cli import app
from tritoncli.create import DRY_RUN_ID, DRY_RUN_NAME

runner = CliRunner()

WEB0 = "3d51f2d5-46f2-4da5-bb04-3238f2f64768"
WEB1 = "3d51a0e3-0b4c-4a2b-9e61-4a0a0d1c7f11"
IMAGE_ID = "2b683a82-a066-11e3-97ab-2faa44701c5a"
PACKAGE_ID = "7b17343c-94af-6266-e0e8-893a3b9993d0"

MACHINES = [
    {
        "id": WEB0,
        "name": "web0",
        "state": "running",
        "image": IMAGE_ID,
        "brand": "joyent",
        "created": "2026-10-18T12:00:00.000Z",
    },
    {
        "id": WEB1,
        "name": "web1",
        "state": "stopped",
        "image": IMAGE_ID,
        "brand": "kvm",
        "firewall_enabled": True,
        "created": "2026-10-17T12:00:00.000Z",
    },
]
IMAGES = [{"id": IMAGE_ID, "name": "base-64", "version": "20.4.0", "published_at": "2020-05-01T00:00:00Z"}]


def _invoke(args: list[str]) -> Result:
    return runner.invoke(app, args, prog_name="triton")


def test_version_flag(cli_env: Path) -> None:
    result = _invoke(["--version"])

    assert result.exit_code == 0
    assert result.output == f"Triton CLI {__version__}\n"


def test_no_arguments_prints_help(cli_env: Path) -> None:
    result = _invoke([])

    assert result.exit_code == 0
    assert "Triton CloudAPI command line interface." in result.output


def test_instance_list_table(cli_env: Path, cloud: FakeCloud) -> None:
    """The table adds short ids, image names and flags computed client-side."""
    cloud.json("GET", "/machines", MACHINES)
    cloud.json("GET", "/images", IMAGES)

    result = _invoke(["instance", "list"])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].split() == ["SHORTID", "NAME", "IMG", "STATE", "FLAGS", "AGE"]
    # Sorted by creation time, oldest first.
    assert lines[1].split()[:5] == ["3d51a0e3", "web1", "base-64@20.4.0", "stopped", "FK"]
    assert lines[2].split()[:5] == ["3d51f2d5", "web0", "base-64@20.4.0", "running", "-"]
    assert cloud.requests_to("GET", "/machines")[0].params["limit"] == "1000"


def test_instance_list_json_uses_raw_records(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", "/machines", MACHINES)
    cloud.json("GET", "/images", IMAGES)

    result = _invoke(["ls", "-j"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == MACHINES


def test_instance_list_rejects_unknown_filter(cli_env: Path, cloud: FakeCloud) -> None:
    result = _invoke(["instance", "list", "colour=red"])

    assert result.exit_code == 2
    assert 'error: invalid filter name: "colour"' in result.output
    assert cloud.calls == []


@pytest.mark.mutation_timeout
def test_create_and_wait(cli_env: Path, cloud: FakeCloud) -> None:
    """``create -w`` announces the instance and reports when it is running."""
    cloud.json("GET", "/images", IMAGES)
    cloud.json("POST", "/machines", {"id": WEB0, "name": "web0", "state": "provisioning", "package": "g4-highcpu-1G"})
    cloud.add(
        "GET",
        f"/machines/{WEB0}",
        FakeResponse(200, {"id": WEB0, "name": "web0", "state": "provisioning"}),
        FakeResponse(200, {"id": WEB0, "name": "web0", "state": "running"}),
    )

    result = _invoke(
        ["create", "-n", "web0", "-m", "foo=bar", "-t", "role=web", "-w", "base-64", PACKAGE_ID]
    )

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == f"Creating instance web0 ({WEB0}, base-64@20.4.0, g4-highcpu-1G)"
    assert lines[1].startswith(f"Created instance web0 ({WEB0}) in ")
    [post] = cloud.requests_to("POST", "/machines")
    assert post.body == {
        "name": "web0",
        "image": IMAGE_ID,
        "package": PACKAGE_ID,
        "metadata.foo": "bar",
        "tag.role": "web",
    }


def test_create_dry_run_sends_nothing(cli_env: Path, cloud: FakeCloud) -> None:
    result = _invoke(["instance", "create", "--dry-run", "-w", IMAGE_ID, PACKAGE_ID])

    assert result.exit_code == 0, result.output
    assert f"Creating instance {DRY_RUN_NAME} ({DRY_RUN_ID}, {IMAGE_ID})" in result.output
    assert f"Created instance {DRY_RUN_NAME} ({DRY_RUN_ID}) in " in result.output
    assert cloud.calls == []


def test_create_rejects_mixed_affinity(cli_env: Path, cloud: FakeCloud) -> None:
    result = _invoke(
        ["create", "-a", "instance==web0", "-a", "instance!=~web1", IMAGE_ID, PACKAGE_ID]
    )

    assert result.exit_code == 2
    assert "error: mixed strict and non-strict affinities are not supported" in result.output
    assert cloud.calls == []


def test_metadata_update_from_file(cli_env: Path, cloud: FakeCloud, tmp_path: Path) -> None:
    """Metadata from a file is sent with ``metadata.``-prefixed keys."""
    meta = tmp_path / "meta.json"
    meta.write_text('{"foo": "bar", "count": 3}', encoding="utf-8")
    cloud.json("GET", "/machines", MACHINES)
    cloud.json("POST", f"/machines/{WEB0}/metadata", {"foo": "bar", "count": 3})

    result = _invoke(["instance", "metadata", "update", "web0", f"@{meta}"])

    assert result.exit_code == 0, result.output
    assert result.output == "Updated metadata on instance web0 (foo, count)\n"
    [post] = cloud.requests_to("POST", f"/machines/{WEB0}/metadata")
    assert post.body == {"metadata.foo": "bar", "metadata.count": 3}


def test_ambiguous_short_id_fails(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", "/machines", MACHINES)

    result = _invoke(["instance", "get", "3d51"])

    assert result.exit_code == 1
    assert "ambiguous short id" in result.output
    assert WEB0 in result.output and WEB1 in result.output


@pytest.mark.mutation_timeout
def test_delete_and_wait(cli_env: Path, cloud: FakeCloud) -> None:
    """A deleted instance answers 404, which completes the wait."""
    cloud.json("GET", "/machines", MACHINES)
    cloud.add("DELETE", f"/machines/{WEB0}", FakeResponse(204))

    result = _invoke(["delete", "-w", "web0"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [
        f"Delete (async) instance web0 ({WEB0})",
        f"Deleted instance web0 ({WEB0})",
    ]


def test_lifecycle_errors_are_collected(cli_env: Path, cloud: FakeCloud) -> None:
    """Every failed instance is reported; successes still happen."""
    cloud.json("GET", "/machines", MACHINES)
    cloud.json("POST", f"/machines/{WEB1}", None, status=202)

    result = _invoke(["start", "web1", "nope0", "nope1"])

    assert result.exit_code == 1
    assert f"Start (async) instance web1 ({WEB1})" in result.output
    assert "multiple (2) errors" in result.output
    assert 'no instance with name or short id "nope0"' in result.output
    assert cloud.requests_to("POST", f"/machines/{WEB1}")[0].body == {"action": "start"}


def test_migration_watch_renders_split_frames(cli_env: Path, cloud: FakeCloud) -> None:
    chunks = [
        b'{"type":"progress","phase":"sync","state":"running",',
        b'"current_progress":50,"total_progress":100}\n{"type":"end","phase":"sync"}\n',
    ]
    cloud.add("POST", f"/machines/{WEB0}/migrate", FakeResponse(200, chunks=chunks))

    result = _invoke(["instance", "migration", "watch", WEB0])

    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "running: 50%"
    assert lines[1].startswith("Done - sync finished in ")
    assert cloud.calls[0].params == {"action": "watch"}


def test_auth_failure_exits_3(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", "/machines", {"code": "InvalidCredentials", "message": "invalid key"}, status=401)

    result = _invoke(["instance", "list"])

    assert result.exit_code == 3
    assert "error: invalid key" in result.output


def test_profile_create_list_and_switch(cli_env: Path, tmp_path: Path) -> None:
    """The first stored profile becomes current; ``set-current -`` goes back."""
    for name in ("east", "west"):
        data = {"name": name, "url": f"https://{name}.api.test", "account": "alice", "keyId": "SHA256:k"}
        path = tmp_path / f"{name}.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        result = _invoke(["profile", "create", "-f", str(path)])
        assert result.exit_code == 0, result.output

    assert json.loads((cli_env / "profile.json").read_text(encoding="utf-8")) == {"profile": "east"}

    listed = _invoke(["profiles", "-o", "name,curr"])
    assert listed.exit_code == 0, listed.output
    assert [line.split() for line in listed.output.splitlines()] == [
        ["NAME", "CURR"],
        ["east", "*"],
        ["env"],
        ["west"],
    ]

    switched = _invoke(["profile", "set-current", "west"])
    assert switched.output == 'Set "west" as current profile\n'
    back = _invoke(["profile", "set-current", "-"])
    assert back.output == 'Set "east" as current profile\n'

    duplicate = _invoke(["profile", "create", "-f", str(tmp_path / "east.json")])
    assert duplicate.exit_code == 1
    assert 'profile "east" already exists' in duplicate.output


def test_completion_argtype_lists_profiles(cli_env: Path) -> None:
    result = _invoke(["completion", "--argtype", "tritonprofile"])

    assert result.exit_code == 0
    assert result.output == "env\n"


def test_completion_words_offer_subcommands(cli_env: Path) -> None:
    result = _invoke(["completion", "--words", "--", "instance", "metadata", "up"])

    assert result.exit_code == 0
    assert result.output.splitlines() == ["update"]


def test_completion_script_mentions_program(cli_env: Path) -> None:
    result = _invoke(["completion"])

    assert result.exit_code == 0
    assert "complete -o default -o nospace -F _triton_complete triton" in result.output


@pytest.mark.parametrize("args", [["help", "instance", "create"], ["instance", "create", "-h"]])
def test_create_help_uses_template(cli_env: Path, args: list[str]) -> None:
    result = _invoke(args)

    assert result.exit_code == 0
    assert "Create a new instance." in result.output
    assert "--affinity" in result.output


def test_metadata_delete_collects_failures_per_key(cli_env: Path, cloud: FakeCloud) -> None:
    """A failing key does not stop the others from being deleted."""
    cloud.json("GET", "/machines", MACHINES)
    for key in ("a", "c"):
        cloud.json(
            "DELETE",
            f"/machines/{WEB0}/metadata/{key}",
            {"code": "ResourceNotFound", "message": f"no {key}"},
            status=404,
        )
    cloud.add("DELETE", f"/machines/{WEB0}/metadata/b", FakeResponse(204))

    result = _invoke(["instance", "metadata", "delete", "web0", "a", "b", "c"])

    assert result.exit_code == 1
    assert 'Deleted metadata key "b" on instance web0' in result.output
    assert "multiple (2) errors" in result.output
    assert "no a" in result.output and "no c" in result.output
    assert len(cloud.requests_to("DELETE", f"/machines/{WEB0}/metadata/b")) == 1


@pytest.mark.parametrize(
    ("order", "expected"),
    [
        (["--script", "{script}", "-m", "user-script=inline"], "inline"),
        (["-m", "user-script=inline", "--script", "{script}"], "FILE"),
    ],
)
def test_create_user_script_follows_command_line_order(
    cli_env: Path, cloud: FakeCloud, tmp_path: Path, order: list[str], expected: str
) -> None:
    script = tmp_path / "boot.sh"
    script.write_text("FILE", encoding="utf-8")
    cloud.json("POST", "/machines", {"id": WEB0, "name": "web0", "state": "provisioning"})

    args = [arg.format(script=script) for arg in order]
    result = _invoke(["create", "-n", "web0", *args, IMAGE_ID, PACKAGE_ID])

    assert result.exit_code == 0, result.output
    assert 'replaces earlier value for "user-script"' in result.output
    [post] = cloud.requests_to("POST", "/machines")
    assert post.body["metadata.user-script"] == expected


OTHER_ACCOUNT = "0b4c3c2b-1a0f-4f99-8e61-9c1f0a7e5d1e"


def test_image_share_and_unshare(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/images/{IMAGE_ID}", dict(IMAGES[0], acl=[OTHER_ACCOUNT]))
    cloud.json("POST", f"/images/{IMAGE_ID}", dict(IMAGES[0], acl=[]))

    shared = _invoke(["image", "share", IMAGE_ID, OTHER_ACCOUNT])
    unshared = _invoke(["image", "unshare", IMAGE_ID, OTHER_ACCOUNT])

    assert shared.exit_code == 0, shared.output
    assert f"Shared image {IMAGE_ID} with account {OTHER_ACCOUNT}\n" in shared.output
    assert unshared.exit_code == 0, unshared.output
    assert f"Unshared image {IMAGE_ID} with account {OTHER_ACCOUNT}\n" in unshared.output
    share, unshare = cloud.requests_to("POST", f"/images/{IMAGE_ID}")
    assert share.body == {"acl": [OTHER_ACCOUNT]}
    assert unshare.body == {"acl": []}


def test_image_share_needs_account_uuid(cli_env: Path, cloud: FakeCloud) -> None:
    result = _invoke(["image", "share", IMAGE_ID, "bob"])

    assert result.exit_code == 2
    assert 'invalid account "bob": must be a full account UUID' in result.output
    assert cloud.calls == []


def test_image_tag_replaces_tags(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/images/{IMAGE_ID}", IMAGES[0])
    cloud.json("POST", f"/images/{IMAGE_ID}", dict(IMAGES[0], tags={"role": "db", "tier": 2}))

    result = _invoke(["image", "tag", IMAGE_ID, "role=db", "tier=2"])

    assert result.exit_code == 0, result.output
    assert f'Updated image {IMAGE_ID} with tags {{"role":"db","tier":2}}\n' in result.output
    [update] = cloud.requests_to("POST", f"/images/{IMAGE_ID}")
    assert update.params == {"action": "update"}
    assert update.body == {"tags": {"role": "db", "tier": 2}}


def test_image_tag_requires_a_pair(cli_env: Path) -> None:
    result = _invoke(["image", "tag", IMAGE_ID])

    assert result.exit_code == 2
    assert "must specify at least one NAME=VALUE tag pair" in result.output


def test_image_copy_to_other_datacenter(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/images/{IMAGE_ID}", IMAGES[0])
    cloud.json("GET", "/datacenters", {"us-east-1": "https://cloudapi.test", "us-west-1": "https://west.test"})
    cloud.json("POST", "https://west.test/alice/images", IMAGES[0])

    result = _invoke(["image", "cp", IMAGE_ID, "us-west-1"])

    assert result.exit_code == 0, result.output
    assert f"Copied image {IMAGE_ID} (base-64@20.4.0) to datacenter us-west-1\n" in result.output
    [post] = cloud.requests_to("POST", "https://west.test/alice/images")
    assert post.params["datacenter"] == "us-east-1"
