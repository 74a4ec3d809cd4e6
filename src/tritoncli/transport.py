"""Signed JSON transport to one CloudAPI endpoint.

:class:`CloudApiTransport` owns a :class:`requests.Session` configured for a
single profile: base URL, account (or acting-as account), HTTP-Signature
signer, TLS verification, timeouts and a retry policy for idempotent reads.
Every call returns a :class:`CloudApiResponse`; HTTP and connection failures
are classified into :mod:`tritoncli.errors` types here so callers only ever
see ``TritonError`` subclasses.
"""
from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .auth import Signer, authorization_header
from .config import DEFAULT_ACCEPT_VERSION
from .errors import (
    CloudApiError,
    InvalidContentError,
    SelfSignedCertError,
    TritonError,
)
from .exit_codes import ExitCode

LOGGER = logging.getLogger(__name__)

USER_AGENT = f"tritoncli/{__version__}"
PAGE_LIMIT = 1000
RETRY_STATUSES = (502, 503, 504)
AUTH_ERROR_CODES = frozenset(
    {"InvalidCredentials", "InvalidSignature", "InvalidKeyId", "KeyDoesNotExist"}
)
_SELF_SIGNED_MARKERS = ("self signed", "self-signed", "CERTIFICATE_VERIFY_FAILED")


@dataclass
class CloudApiResponse:
    """Decoded response plus the raw details callers sometimes need."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    request_id: str | None = None

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


def build_session(*, insecure: bool = False, retries: int = 3) -> requests.Session:
    """Return a session with TLS settings and GET retries mounted."""
    session = requests.Session()
    session.verify = not insecure
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class CloudApiTransport:
    """HTTPS JSON client for one CloudAPI endpoint and account."""

    def __init__(
        self,
        url: str,
        account: str,
        signer: Signer | None,
        *,
        user: str | None = None,
        act_as: str | None = None,
        insecure: bool = False,
        accept_version: str | None = None,
        timeout: float = 60.0,
        roles: Sequence[str] = (),
        session: requests.Session | Any | None = None,
    ) -> None:
        """Configure the endpoint, identity and HTTP session."""
        self.url = url.rstrip("/")
        self.account = account
        self.user = user
        self.act_as = act_as
        self.insecure = insecure
        self.accept_version = accept_version or DEFAULT_ACCEPT_VERSION
        self.timeout = timeout
        self.roles = list(roles)
        self._signer = signer
        self._session = session if session is not None else build_session(insecure=insecure)

    def for_url(self, url: str) -> CloudApiTransport:
        """Return a transport for another endpoint with the same identity and session."""
        clone = copy.copy(self)
        clone.url = url.rstrip("/")
        clone.roles = list(self.roles)
        return clone

    @property
    def account_path(self) -> str:
        """URL path segment of the account requests act on."""
        return quote(self.act_as or self.account, safe="")

    def url_for(self, path: str, *, absolute: bool = False) -> str:
        """Return the URL for an account-relative *path*.

        With *absolute* the path already starts with the account segment.
        """
        if path and not path.startswith("/"):
            path = "/" + path
        if absolute:
            return f"{self.url}{path}"
        return f"{self.url}/{self.account_path}{path}"

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        date = formatdate(usegmt=True)
        headers = {
            "Accept": "application/json",
            "Accept-Version": self.accept_version,
            "Date": date,
            "User-Agent": USER_AGENT,
        }
        if self._signer is not None:
            headers["Authorization"] = authorization_header(
                self._signer, account=self.account, user=self.user, date=date
            )
        if extra:
            headers.update(extra)
        return headers

    def _params(self, query: Mapping[str, object] | None) -> dict[str, str]:
        params: dict[str, str] = {}
        for key, value in (query or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                params[key] = "true" if value else "false"
            elif isinstance(value, (list, tuple)):
                params[key] = ",".join(str(item) for item in value)
            else:
                params[key] = str(value)
        if self.roles:
            params["as-role"] = ",".join(self.roles)
        return params

    def _send(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        body: object | None = None,
        headers: Mapping[str, str] | None = None,
        stream: bool = False,
        timeout: float | None | object = ...,
        absolute: bool = False,
    ) -> Any:
        url = self.url_for(path, absolute=absolute)
        request_headers = self._headers(headers)
        kwargs: dict[str, Any] = {
            "params": self._params(query),
            "headers": request_headers,
            "timeout": self.timeout if timeout is ... else timeout,
            "stream": stream,
        }
        if body is not None:
            kwargs["json"] = body
        LOGGER.debug("request: %s %s params=%s", method, url, kwargs["params"])
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.SSLError as exc:
            if not self.insecure and any(marker in str(exc) for marker in _SELF_SIGNED_MARKERS):
                raise SelfSignedCertError(self.url, cause=exc) from exc
            raise TritonError(f"TLS error talking to CloudAPI {self.url}: {exc}", cause=exc) from exc
        except requests.exceptions.RequestException as exc:
            raise TritonError(
                f"error connecting to CloudAPI {self.url}: {exc}", cause=exc
            ) from exc
        LOGGER.debug("response: %s %s -> %s", method, url, response.status_code)
        if response.status_code >= 400:
            try:
                raise _classify_error(method, path, response)
            finally:
                if stream:
                    response.close()
        return response

    def request(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        body: object | None = None,
        headers: Mapping[str, str] | None = None,
        absolute: bool = False,
    ) -> CloudApiResponse:
        """Send one request and decode the JSON response body."""
        response = self._send(
            method, path, query=query, body=body, headers=headers, absolute=absolute
        )
        return CloudApiResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
            request_id=_request_id(response.headers),
        )

    def get(self, path: str, **kwargs: Any) -> CloudApiResponse:
        """Shorthand for ``request("GET", ...)``."""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> CloudApiResponse:
        """Shorthand for ``request("POST", ...)``."""
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> CloudApiResponse:
        """Shorthand for ``request("PUT", ...)``."""
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> CloudApiResponse:
        """Shorthand for ``request("DELETE", ...)``."""
        return self.request("DELETE", path, **kwargs)

    def head(self, path: str, **kwargs: Any) -> CloudApiResponse:
        """Shorthand for ``request("HEAD", ...)``."""
        return self.request("HEAD", path, **kwargs)

    def list_paged(
        self,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        limit: int = PAGE_LIMIT,
    ) -> tuple[list[Any], CloudApiResponse]:
        """Fetch every page of a listing endpoint, preserving server order.

        Pages are requested with ``limit``/``offset`` for as long as the
        ``x-resource-count`` header reports a full page. A ``limit`` already in
        *query* is the caller's page size and only that one page is fetched.
        """
        if query and "limit" in query:
            response = self.get(path, query=query)
            return _json_array(path, response), response
        items: list[Any] = []
        offset = 0
        while True:
            page_query = dict(query or {})
            page_query["limit"] = limit
            page_query["offset"] = offset
            response = self.get(path, query=page_query)
            page = _json_array(path, response)
            items.extend(page)
            count_header = response.header("x-resource-count")
            try:
                count = int(count_header) if count_header is not None else len(page)
            except ValueError:
                count = len(page)
            if count < limit or not page:
                return items, response
            offset += len(page)

    def stream(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, object] | None = None,
        body: object | None = None,
    ) -> requests.Response:
        """Open a long-lived streaming response (no read timeout)."""
        return self._send(
            method,
            path,
            query=query,
            body=body,
            stream=True,
            timeout=(self.timeout, None),
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        close = getattr(self._session, "close", None)
        if callable(close):
            close()


def _json_array(path: str, response: CloudApiResponse) -> list[Any]:
    page = response.body or []
    if not isinstance(page, list):
        raise InvalidContentError(f"expected a JSON array from {path}")
    return page


def _request_id(headers: Mapping[str, str]) -> str | None:
    for key in ("request-id", "x-request-id"):
        for name, value in headers.items():
            if name.lower() == key:
                return value
    return None


def _decode_body(response: Any) -> Any:
    content = response.content
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError as exc:
        raise InvalidContentError(
            f"invalid JSON in CloudAPI response (status {response.status_code})", cause=exc
        ) from exc


def _classify_error(method: str, path: str, response: Any) -> CloudApiError:
    status = int(response.status_code)
    code: str | None = None
    message: str | None = None
    body: object | None = None
    try:
        body = json.loads(response.content) if response.content else None
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        raw_code = body.get("code")
        raw_message = body.get("message")
        code = str(raw_code) if raw_code else None
        message = str(raw_message) if raw_message else None
    if not message:
        message = f"{method} {path}: HTTP {status}"
    error = CloudApiError(
        message,
        code=code,
        status_code=status,
        request_id=_request_id(response.headers),
        body=body,
    )
    if status == 401 or code in AUTH_ERROR_CODES:
        error.exit_status = ExitCode.AUTH
    return error


__all__ = [
    "CloudApiResponse",
    "CloudApiTransport",
    "PAGE_LIMIT",
    "build_session",
]
