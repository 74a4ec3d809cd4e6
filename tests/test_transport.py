"""CloudAPI transport tests against a fake HTTP session."""
from __future__ import annotations

import pytest
import requests

from tritoncli.errors import CloudApiError, InvalidContentError, SelfSignedCertError, TritonError
from tritoncli.transport import CloudApiTransport

from fakes import ACCOUNT, CLOUDAPI_URL, Call, FakeCloud, FakeResponse


def _transport(cloud: FakeCloud, **kwargs: object) -> CloudApiTransport:
    return CloudApiTransport(CLOUDAPI_URL, ACCOUNT, None, session=cloud, **kwargs)  # type: ignore[arg-type]


def test_request_decodes_json_and_sends_version_headers(cloud: FakeCloud) -> None:
    """Bodies are decoded and Accept-Version is always sent."""
    cloud.json("GET", "/machines/abc", {"id": "abc"}, headers={"Request-Id": "req-1"})
    transport = _transport(cloud, accept_version="~9")

    response = transport.get("/machines/abc")

    assert response.body == {"id": "abc"}
    assert response.request_id == "req-1"
    call = cloud.calls[0]
    assert call.headers["Accept-Version"] == "~9"
    assert call.headers["Accept"] == "application/json"
    assert "Authorization" not in call.headers


def test_empty_body_decodes_to_none(cloud: FakeCloud) -> None:
    """A 204 answer has no body."""
    cloud.add("DELETE", "/machines/abc", FakeResponse(204))

    assert _transport(cloud).delete("/machines/abc").body is None


def test_act_as_changes_account_path(cloud: FakeCloud) -> None:
    """Operators acting as another account address that account's URLs."""
    cloud.prefix = f"{CLOUDAPI_URL}/bob"
    cloud.json("GET", "", {"login": "bob"})

    response = _transport(cloud, act_as="bob").get("")

    assert response.body == {"login": "bob"}


def test_query_values_are_stringified_and_roles_added(cloud: FakeCloud) -> None:
    """Booleans, lists and ``as-role`` are encoded the way CloudAPI expects."""
    cloud.json("GET", "/machines", [])
    transport = _transport(cloud, roles=["ops", "dev"])

    transport.get("/machines", query={"credentials": True, "tags": ["a", "b"], "name": None})

    assert cloud.calls[0].params == {"credentials": "true", "tags": "a,b", "as-role": "ops,dev"}


def test_error_body_is_classified(cloud: FakeCloud) -> None:
    """CloudAPI error bodies carry the code, message and status."""
    cloud.json(
        "POST",
        "/machines",
        {"code": "InvalidArgument", "message": "bad package"},
        status=409,
        headers={"x-request-id": "req-9"},
    )

    with pytest.raises(CloudApiError) as excinfo:
        _transport(cloud).post("/machines", body={"package": "x"})

    error = excinfo.value
    assert str(error) == "bad package"
    assert error.code == "InvalidArgument"
    assert error.status_code == 409
    assert error.request_id == "req-9"
    assert error.exit_status == 1


@pytest.mark.parametrize(
    ("status", "body"),
    [
        (401, {"code": "Unauthorized", "message": "no"}),
        (403, {"code": "InvalidSignature", "message": "bad signature"}),
    ],
)
def test_auth_errors_exit_with_status_3(cloud: FakeCloud, status: int, body: dict[str, str]) -> None:
    """401s and signature/credential codes are authentication failures."""
    cloud.json("GET", "", body, status=status)

    with pytest.raises(CloudApiError) as excinfo:
        _transport(cloud).get("")

    assert excinfo.value.exit_status == 3


def test_error_without_body_names_request(cloud: FakeCloud) -> None:
    """A bare 5xx still produces a readable message."""
    cloud.add("GET", "/images", FakeResponse(503))

    with pytest.raises(CloudApiError, match="GET /images: HTTP 503"):
        _transport(cloud).get("/images")


def test_invalid_json_is_invalid_content(cloud: FakeCloud) -> None:
    """A 200 with a non-JSON body is an InvalidContentError."""
    response = FakeResponse(200)
    response.content = b"<html>"
    cloud.add("GET", "/packages", response)

    with pytest.raises(InvalidContentError):
        _transport(cloud).get("/packages")


def test_list_paged_follows_resource_count(cloud: FakeCloud) -> None:
    """Full pages trigger another request at the next offset."""

    def page(call: Call) -> FakeResponse:
        offset = int(call.params["offset"])
        items = [{"id": str(index)} for index in range(offset, min(offset + 2, 5))]
        return FakeResponse(200, items, headers={"x-resource-count": str(len(items))})

    cloud.add("GET", "/machines", page)

    items, _ = _transport(cloud).list_paged("/machines", limit=2)

    assert [item["id"] for item in items] == ["0", "1", "2", "3", "4"]
    assert [call.params["offset"] for call in cloud.calls] == ["0", "2", "4"]
    assert all(call.params["limit"] == "2" for call in cloud.calls)


def test_list_paged_with_caller_limit_fetches_one_page(cloud: FakeCloud) -> None:
    """A caller-supplied limit is one page, even when that page is full."""
    cloud.json("GET", "/images", [{"id": "a"}, {"id": "b"}], headers={"x-resource-count": "2"})

    items, _ = _transport(cloud).list_paged("/images", query={"limit": 2, "offset": 4}, limit=2)

    assert items == [{"id": "a"}, {"id": "b"}]
    assert [call.params for call in cloud.calls] == [{"limit": "2", "offset": "4"}]


def test_list_paged_rejects_non_array(cloud: FakeCloud) -> None:
    """Listings must be JSON arrays."""
    cloud.json("GET", "/machines", {"oops": True})

    with pytest.raises(InvalidContentError, match="expected a JSON array"):
        _transport(cloud).list_paged("/machines")


def test_self_signed_certificate_is_reported(cloud: FakeCloud) -> None:
    """TLS failures caused by self-signed certs point at --insecure."""

    def fail(call: Call) -> FakeResponse:
        raise requests.exceptions.SSLError("certificate verify failed: self signed certificate")

    cloud.add("GET", "", fail)

    with pytest.raises(SelfSignedCertError, match="--insecure"):
        _transport(cloud).get("")


def test_connection_errors_are_wrapped(cloud: FakeCloud) -> None:
    """Connection problems surface as TritonError naming the endpoint."""

    def fail(call: Call) -> FakeResponse:
        raise requests.exceptions.ConnectionError("connection refused")

    cloud.add("GET", "", fail)

    with pytest.raises(TritonError, match=f"error connecting to CloudAPI {CLOUDAPI_URL}"):
        _transport(cloud).get("")


def test_failed_stream_is_closed(cloud: FakeCloud) -> None:
    """Error responses of streaming requests release their connection."""
    response = FakeResponse(404, {"code": "ResourceNotFound", "message": "no migration"})
    cloud.add("POST", "/machines/abc/migrate", response)

    with pytest.raises(CloudApiError, match="no migration"):
        _transport(cloud).stream("POST", "/machines/abc/migrate", query={"action": "watch"})

    assert response.closed is True
