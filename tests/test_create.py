"""Instance create option parsing and planning tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeCloud, FakeResponse

from tritoncli.cloudapi import CloudApi
from tritoncli.create import (
    DRY_RUN_ID,
    CreateOptions,
    create_instance,
    parse_disks,
    parse_nic,
    parse_nics,
    parse_volume_mount,
    parse_volume_size,
    plan_instance_create,
)
from tritoncli.errors import MultiError, TritonError, UsageError
from tritoncli.resolver import Resolver

NET_ID = "7fa999c8-0d2c-453e-989c-e897716d0831"
IMAGE_ID = "2b683a82-a066-11e3-97ab-2faa44701c5a"
PACKAGE_ID = "7b17343c-94af-6266-e0e8-893a3b9993d0"
MACHINE_ID = "3d51f2d5-46f2-4da5-bb04-3238f2f64768"


@pytest.mark.parametrize(("size", "mib"), [("10G", 10240), ("512m", 512), ("2048", 2048)])
def test_parse_volume_size(size: str, mib: int) -> None:
    assert parse_volume_size(size) == mib


@pytest.mark.parametrize("size", ["0", "10T", "-1G", "1.5G", ""])
def test_parse_volume_size_rejects_bad_sizes(size: str) -> None:
    with pytest.raises(UsageError, match="is not a valid volume size"):
        parse_volume_size(size)


def test_parse_volume_mount_defaults_to_rw() -> None:
    assert parse_volume_mount("data:/var/data") == {
        "name": "data",
        "type": "tritonnfs",
        "mode": "rw",
        "mountpoint": "/var/data",
    }
    assert parse_volume_mount("data:/var/data:ro")["mode"] == "ro"


@pytest.mark.parametrize(
    ("spec", "message"),
    [
        ("data", "must be NAME:/MOUNTPOINT"),
        ("data:relative", "must be an absolute path"),
        ("data:/", "must be an absolute path"),
        ("data:/mnt:rx", 'must be "ro" or "rw"'),
    ],
)
def test_parse_volume_mount_errors(spec: str, message: str) -> None:
    with pytest.raises(UsageError, match=message):
        parse_volume_mount(spec)


def test_parse_nic() -> None:
    assert parse_nic(f"ipv4_uuid={NET_ID},ipv4_ips=10.0.0.5") == {
        "ipv4_uuid": NET_ID,
        "ipv4_ips": ["10.0.0.5"],
    }


@pytest.mark.parametrize(
    ("spec", "message"),
    [
        ("ipv4_ips=10.0.0.5", 'missing the required "ipv4_uuid"'),
        ("ipv4_uuid=mynet", "must be a full network UUID"),
        (f"ipv4_uuid={NET_ID},mtu=9000", 'invalid NIC option "mtu"'),
        ("ipv4_uuid", "must be NICOPT=VALUE"),
    ],
)
def test_parse_nic_errors(spec: str, message: str) -> None:
    with pytest.raises(UsageError, match=message):
        parse_nic(spec)


def test_parse_nics_rejects_duplicate_network() -> None:
    with pytest.raises(UsageError, match="only one NIC per network"):
        parse_nics([f"ipv4_uuid={NET_ID}", f"ipv4_uuid={NET_ID},ipv4_ips=10.0.0.9"])


def test_parse_disks_json_arguments() -> None:
    disks = parse_disks(['{"size": "10240"}', '{"size": "remaining"}'])

    assert disks == [{"size": 10240}, {"size": "remaining"}]


def test_parse_disks_from_file(tmp_path: Path) -> None:
    path = tmp_path / "disks.json"
    path.write_text(json.dumps([{}, {"size": 512}]), encoding="utf-8")

    assert parse_disks([f"@{path}"]) == [{}, {"size": 512}]


def test_parse_disks_remaining_must_be_last() -> None:
    with pytest.raises(UsageError, match='only the last disk may have size "remaining"'):
        parse_disks(['{"size": "remaining"}', '{"size": 10}'])


def test_parse_disks_collects_every_error() -> None:
    """Several bad disks are reported together."""
    with pytest.raises(MultiError) as excinfo:
        parse_disks(['{"size": -1}', '"text"'])

    assert len(excinfo.value.errors) == 2


def _resolver(api: CloudApi, cloud: FakeCloud) -> Resolver:
    cloud.json("GET", "/images", [{"id": IMAGE_ID, "name": "base-64", "version": "20.4.0"}])
    cloud.json("GET", "/packages", [{"id": PACKAGE_ID, "name": "g4-highcpu-1G"}])
    cloud.json("GET", "/networks", [{"id": NET_ID, "name": "My-Fabric-Network"}])
    return Resolver(api)


def test_plan_builds_create_machine_body(api: CloudApi, cloud: FakeCloud) -> None:
    """Names are resolved and options land under their CreateMachine keys."""
    options = CreateOptions(
        image="base-64",
        package="g4-highcpu-1G",
        name="web0",
        networks=["My-Fabric-Network"],
        tags=["role=web"],
        volumes=["data:/data"],
        ordered=[("metadata", "foo=bar"), ("firewall", True), ("deletion_protection", True)],
    )

    plan = plan_instance_create(_resolver(api, cloud), options)

    assert plan.body == {
        "name": "web0",
        "image": IMAGE_ID,
        "package": PACKAGE_ID,
        "networks": [NET_ID],
        "metadata.foo": "bar",
        "tag.role": "web",
        "firewall_enabled": True,
        "deletion_protection": True,
        "volumes": [{"name": "data", "type": "tritonnfs", "mode": "rw", "mountpoint": "/data"}],
    }
    assert plan.image_label == "base-64@20.4.0"


def test_plan_rejects_network_and_nic_together(api: CloudApi, cloud: FakeCloud) -> None:
    options = CreateOptions(
        image="base-64", package="g4-highcpu-1G", networks=["x"], nics=[f"ipv4_uuid={NET_ID}"]
    )

    with pytest.raises(UsageError, match="cannot specify both --network and --nic"):
        plan_instance_create(_resolver(api, cloud), options)
    assert cloud.calls == []


def test_plan_rejects_mixed_affinity_before_any_lookup(api: CloudApi, cloud: FakeCloud) -> None:
    """Strict and non-strict rules together fail without touching CloudAPI."""
    options = CreateOptions(
        image="base-64", package="g4-highcpu-1G", affinity=["instance==web0", "instance!=~db0"]
    )

    with pytest.raises(UsageError, match="mixed strict and non-strict affinities"):
        plan_instance_create(Resolver(api), options)
    assert cloud.calls == []


def test_plan_resolves_affinity_to_instance_ids(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("GET", "/machines", [{"id": MACHINE_ID, "name": "db0"}])
    options = CreateOptions(image=IMAGE_ID, package=PACKAGE_ID, affinity=["instance!=~db0"])

    plan = plan_instance_create(Resolver(api), options)

    assert plan.body["affinity"] == [f"instance!=~{MACHINE_ID}"]


def test_create_dry_run_makes_no_request(api: CloudApi, cloud: FakeCloud) -> None:
    """A dry run fakes the instance and its wait."""
    plan = plan_instance_create(Resolver(api), CreateOptions(image=IMAGE_ID, package=PACKAGE_ID))
    announced: list[str] = []

    instance, _ = create_instance(
        api, plan, dry_run=True, wait=True, on_created=lambda inst: announced.append(inst["id"])
    )

    assert announced == [DRY_RUN_ID]
    assert instance["state"] == "running"
    assert cloud.calls == []


def test_create_instance_that_fails_raises(api: CloudApi, cloud: FakeCloud) -> None:
    plan = plan_instance_create(Resolver(api), CreateOptions(image=IMAGE_ID, package=PACKAGE_ID))
    cloud.json("POST", "/machines", {"id": MACHINE_ID, "name": "web0", "state": "provisioning"})
    cloud.add("GET", f"/machines/{MACHINE_ID}", FakeResponse(200, {"id": MACHINE_ID, "name": "web0", "state": "failed"}))

    with pytest.raises(TritonError, match=f"failed to create instance web0 \\({MACHINE_ID}\\)"):
        create_instance(api, plan, wait=True)


def test_create_error_keeps_exit_status(api: CloudApi, cloud: FakeCloud) -> None:
    """Credential failures while creating still exit with the auth status."""
    plan = plan_instance_create(Resolver(api), CreateOptions(image=IMAGE_ID, package=PACKAGE_ID))
    cloud.json("POST", "/machines", {"code": "InvalidCredentials", "message": "bad creds"}, status=401)

    with pytest.raises(TritonError, match="error creating instance: bad creds") as excinfo:
        create_instance(api, plan)
    assert excinfo.value.exit_status == 3
