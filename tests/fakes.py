"""In-process stand-ins for a CloudAPI endpoint."""
from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

CLOUDAPI_URL = "https://cloudapi.test"
ACCOUNT = "alice"


class FakeResponse:
    """Just enough of :class:`requests.Response` for the transport."""

    def __init__(
        self,
        status_code: int = 200,
        body: object = None,
        *,
        headers: Mapping[str, str] | None = None,
        chunks: Sequence[bytes] = (),
    ) -> None:
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.content = b"" if body is None else json.dumps(body).encode("utf-8")
        self._chunks = list(chunks)
        self.closed = False

    def iter_content(self, chunk_size: int | None = None) -> Iterator[bytes]:
        yield from self._chunks

    def close(self) -> None:
        self.closed = True


@dataclass
class Call:
    """One request seen by :class:`FakeCloud`."""

    method: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


Responder = FakeResponse | Callable[[Call], FakeResponse]


class FakeCloud:
    """A ``requests.Session`` stand-in routing on ``(METHOD, account path)``.

    Each route holds a queue of responses; the last one repeats. Unrouted
    requests answer 404 ``ResourceNotFound``.
    """

    def __init__(self, url: str = CLOUDAPI_URL, account: str = ACCOUNT) -> None:
        self.prefix = f"{url}/{account}"
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.calls: list[Call] = []
        self._lock = threading.Lock()

    def add(self, method: str, path: str, *responses: Responder) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def json(self, method: str, path: str, body: object, *, status: int = 200, **kwargs: Any) -> None:
        self.add(method, path, FakeResponse(status, body, **kwargs))

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url[len(self.prefix):] if url.startswith(self.prefix) else url
        call = Call(
            method=method,
            path=path,
            params=dict(kwargs.get("params") or {}),
            body=kwargs.get("json"),
            headers=dict(kwargs.get("headers") or {}),
        )
        with self._lock:
            self.calls.append(call)
            queue = self.routes.get((method, path))
            if not queue:
                return FakeResponse(
                    404, {"code": "ResourceNotFound", "message": f"{method} {path} is not routed"}
                )
            responder = queue[0] if len(queue) == 1 else queue.pop(0)
        return responder(call) if callable(responder) else responder

    def requests_to(self, method: str, path: str) -> list[Call]:
        return [call for call in self.calls if call.method == method and call.path == path]

    def close(self) -> None:
        pass


