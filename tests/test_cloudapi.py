"""CloudApi facade tests: endpoints, waiters and the migration watch stream."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fakes import Call, FakeCloud, FakeResponse

from tritoncli.cloudapi import CloudApi
from tritoncli.errors import (
    CancelledError,
    CloudApiError,
    ResourceNotFoundError,
    TritonError,
    UsageError,
    WaitTimeoutError,
)

MACHINE_ID = "3d51f2d5-46f2-4da5-bb04-3238f2f64768"


def test_list_machines_pages_through_results(api: CloudApi, cloud: FakeCloud) -> None:
    """Without an explicit limit every page is fetched."""

    def page(call: Call) -> FakeResponse:
        offset = int(call.params["offset"])
        count = 1000 if offset == 0 else 3
        items = [{"id": f"m{offset + index}"} for index in range(count)]
        return FakeResponse(200, items, headers={"x-resource-count": str(count)})

    cloud.add("GET", "/machines", page)

    machines = api.list_machines(state="running")

    assert len(machines) == 1003
    assert [call.params["offset"] for call in cloud.calls] == ["0", "1000"]
    assert all(call.params["state"] == "running" for call in cloud.calls)


def test_list_machines_with_limit_is_single_request(api: CloudApi, cloud: FakeCloud) -> None:
    """An explicit limit is passed through untouched."""
    cloud.json("GET", "/machines", [{"id": "a"}])

    assert api.list_machines(limit=1) == [{"id": "a"}]
    assert cloud.calls[0].params == {"limit": "1"}


def test_create_machine_posts_body(api: CloudApi, cloud: FakeCloud) -> None:
    """The CreateMachine body is sent as JSON."""
    cloud.json("POST", "/machines", {"id": MACHINE_ID, "state": "provisioning"}, status=201)

    created = api.create_machine(image="img", package="pkg", **{"metadata.foo": "bar"})

    assert created["id"] == MACHINE_ID
    assert cloud.calls[0].body == {"image": "img", "package": "pkg", "metadata.foo": "bar"}


def test_update_metadata_prefixes_keys(api: CloudApi, cloud: FakeCloud) -> None:
    """Metadata updates use the ``metadata.KEY`` body form."""
    cloud.json("POST", f"/machines/{MACHINE_ID}/metadata", {"user-data": "hello", "count": 3})

    api.update_machine_metadata(MACHINE_ID, {"user-data": "hello", "count": 3})

    assert cloud.calls[0].body == {"metadata.user-data": "hello", "metadata.count": 3}


def test_wait_for_machine_states_polls_until_match(api: CloudApi, cloud: FakeCloud) -> None:
    """The first poll is immediate; polling stops at the first matching state."""
    cloud.add(
        "GET",
        f"/machines/{MACHINE_ID}",
        FakeResponse(200, {"id": MACHINE_ID, "state": "provisioning"}),
        FakeResponse(200, {"id": MACHINE_ID, "state": "provisioning"}),
        FakeResponse(200, {"id": MACHINE_ID, "state": "running"}),
    )

    machine = api.wait_for_machine_states(MACHINE_ID, ["running", "failed"])

    assert machine["state"] == "running"
    assert len(cloud.calls) == 3


def test_wait_for_deleted_accepts_404(api: CloudApi, cloud: FakeCloud) -> None:
    """A vanished instance satisfies a wait for ``deleted``."""
    cloud.add(
        "GET",
        f"/machines/{MACHINE_ID}",
        FakeResponse(200, {"id": MACHINE_ID, "state": "stopping"}),
        FakeResponse(404, {"code": "ResourceNotFound", "message": "gone"}),
    )

    machine = api.wait_for_machine_states(MACHINE_ID, ["deleted"])

    assert machine == {"id": MACHINE_ID, "state": "deleted"}


def test_wait_for_machine_states_times_out(api: CloudApi, cloud: FakeCloud) -> None:
    """The timeout message names the instance and the wanted states."""
    cloud.json("GET", f"/machines/{MACHINE_ID}", {"id": MACHINE_ID, "state": "provisioning"})

    with pytest.raises(WaitTimeoutError, match=r'states \["running"\]'):
        api.wait_for_machine_states(MACHINE_ID, ["running"], timeout=0.05)


def test_cancelled_token_stops_requests(api: CloudApi, cloud: FakeCloud) -> None:
    """No request is sent once cancellation was requested."""
    api.cancel.cancel()

    with pytest.raises(CancelledError):
        api.get_machine(MACHINE_ID)
    assert cloud.calls == []


def test_wait_for_machine_audit(api: CloudApi, cloud: FakeCloud) -> None:
    """Only audit records newer than *since* count, and failures raise."""
    since = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
    cloud.add(
        "GET",
        f"/machines/{MACHINE_ID}/audit",
        FakeResponse(200, [{"action": "reboot", "time": "2026-10-19T11:00:00Z", "success": "yes"}]),
        FakeResponse(
            200,
            [
                {"id": "a2", "action": "reboot", "time": "2026-10-19T12:00:05Z", "success": "no"},
                {"action": "reboot", "time": "2026-10-19T11:00:00Z", "success": "yes"},
            ],
        ),
    )

    with pytest.raises(TritonError, match=r"reboot failed \(audit id a2\)"):
        api.wait_for_machine_audit(MACHINE_ID, "reboot", since=since)


@pytest.mark.parametrize("action", ["sync", "pause", "switch", "abort", "finalize"])
def test_migrate_affinity_only_for_begin_and_automatic(api: CloudApi, action: str) -> None:
    """Affinity rules are rejected for actions that cannot place an instance."""
    with pytest.raises(UsageError, match=f"Cannot set affinity for action {action}"):
        api.migrate_machine(MACHINE_ID, action=action, affinity=["instance!=web0"])


def test_migrate_rejects_unknown_action(api: CloudApi) -> None:
    """Only the documented migration actions are accepted."""
    with pytest.raises(UsageError, match="Unsupported migration action estimate"):
        api.migrate_machine(MACHINE_ID, action="estimate")


def test_migrate_begin_sends_affinity(api: CloudApi, cloud: FakeCloud) -> None:
    """Affinity rules travel with ``begin``."""
    cloud.json("POST", f"/machines/{MACHINE_ID}/migrate", {"phase": "begin"})

    api.migrate_machine(MACHINE_ID, action="begin", affinity=["instance!=web0"])

    assert cloud.calls[0].body == {"action": "begin", "affinity": ["instance!=web0"]}


def test_watch_migration_reassembles_split_frames(api: CloudApi, cloud: FakeCloud) -> None:
    """An event split across chunks is emitted once, whole, and in order."""
    response = FakeResponse(
        200,
        chunks=[
            b'{"type":"progress","phase":"sync","current_progress":10,"total_progress":100}\n{"type":"pro',
            b'gress","phase":"sync","current_progress":50,"total_progress":100}\n',
            b'{"type":"end","phase":"sync"}\n',
        ],
    )
    cloud.add("POST", f"/machines/{MACHINE_ID}/migrate", response)

    events = list(api.watch_migration(MACHINE_ID))

    assert [event["type"] for event in events] == ["progress", "progress", "end"]
    assert events[1]["current_progress"] == 50
    assert cloud.calls[0].params == {"action": "watch"}
    assert response.closed is True


def test_role_tags_read_from_header(api: CloudApi, cloud: FakeCloud) -> None:
    """Role tags come back in the ``role-tag`` header."""
    cloud.prefix = "https://cloudapi.test"
    cloud.add(
        "GET",
        f"/alice/machines/{MACHINE_ID}",
        FakeResponse(200, {"id": MACHINE_ID}, headers={"Role-Tag": "ops, dev"}),
    )

    resource = api.role_tag_resource("machines", MACHINE_ID)

    assert resource == f"/alice/machines/{MACHINE_ID}"
    assert api.get_role_tags(resource) == ["ops", "dev"]


def test_role_tag_resource_type_is_validated(api: CloudApi) -> None:
    """Role tags only exist on the documented resource types."""
    with pytest.raises(UsageError, match="resource type must be one of"):
        api.set_role_tags("/alice/volumes/abc", ["ops"])


def test_get_machine_not_found(api: CloudApi) -> None:
    """Unknown instances surface CloudAPI's 404."""
    with pytest.raises(CloudApiError) as excinfo:
        api.get_machine(MACHINE_ID)

    assert excinfo.value.status_code == 404


IMAGE_ID = "2b683a82-a066-11e3-97ab-2faa44701c5a"
OTHER_ACCOUNT = "0b4c3c2b-1a0f-4f99-8e61-9c1f0a7e5d1e"
DATACENTERS = {"us-east-1": "https://cloudapi.test", "us-west-1": "https://west.test/"}


def test_share_image_appends_to_acl(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/images/{IMAGE_ID}", {"id": IMAGE_ID, "acl": ["existing"]})
    cloud.json("POST", f"/images/{IMAGE_ID}", {"id": IMAGE_ID})

    api.share_image(IMAGE_ID, OTHER_ACCOUNT)

    [update] = cloud.requests_to("POST", f"/images/{IMAGE_ID}")
    assert update.body == {"acl": ["existing", OTHER_ACCOUNT]}


def test_unshare_image_requires_membership(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/images/{IMAGE_ID}", {"id": IMAGE_ID})

    with pytest.raises(TritonError, match="is not shared with account"):
        api.unshare_image(IMAGE_ID, OTHER_ACCOUNT)
    assert not cloud.requests_to("POST", f"/images/{IMAGE_ID}")


def test_copy_image_imports_from_target_datacenter(api: CloudApi, cloud: FakeCloud) -> None:
    """The target datacenter is asked to pull the image from this one."""
    cloud.json("GET", "/datacenters", DATACENTERS)
    cloud.json("POST", "https://west.test/alice/images", {"id": IMAGE_ID, "state": "unactivated"})

    copied = api.copy_image_to_datacenter(IMAGE_ID, "us-west-1")

    assert copied["id"] == IMAGE_ID
    [post] = cloud.requests_to("POST", "https://west.test/alice/images")
    assert post.params == {"action": "import-from-datacenter", "datacenter": "us-east-1", "id": IMAGE_ID}
    assert not cloud.requests_to("POST", "/images")


def test_copy_image_rejects_unknown_and_current_datacenter(api: CloudApi, cloud: FakeCloud) -> None:
    cloud.json("GET", "/datacenters", DATACENTERS)

    with pytest.raises(ResourceNotFoundError, match='no datacenter named "eu-1"'):
        api.copy_image_to_datacenter(IMAGE_ID, "eu-1")
    with pytest.raises(UsageError, match='already in datacenter "us-east-1"'):
        api.copy_image_to_datacenter(IMAGE_ID, "us-east-1")
