"""Error taxonomy shared by every tritoncli module.

Library code raises :class:`TritonError` subclasses; only the dispatcher turns
them into an ``error: <message>`` line and a process exit status. Each class
carries a short ``code`` (mirrored in ``--json`` error output and the
operations log) and the exit status the dispatcher should use.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence

from .exit_codes import ExitCode


class TritonError(Exception):
    """Base class for all errors surfaced to the user."""

    code: str | None = None
    exit_status: int = ExitCode.ERROR

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        code: str | None = None,
        status_code: int | None = None,
        exit_status: int | None = None,
    ) -> None:
        """Store the message and optional server/cause details."""
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code is not None:
            self.code = code
        self.status_code = status_code
        if exit_status is not None:
            self.exit_status = exit_status
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def cause_chain(self) -> list[str]:
        """Return the messages of this error and every error that caused it."""
        chain: list[str] = []
        current: BaseException | None = self
        seen: set[int] = set()
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            chain.append(str(current))
            current = current.__cause__
        return chain

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"code": self.code, "message": self.message}
        if self.status_code is not None:
            payload["statusCode"] = self.status_code
        return payload


class InternalError(TritonError):
    """An invariant was violated; the message names it."""

    code = "InternalError"


class ConfigError(TritonError):
    """Missing or malformed configuration, profile or credentials."""

    code = "Config"


class UsageError(TritonError):
    """The command line was misused."""

    code = "Usage"
    exit_status = ExitCode.USAGE
    #: command synopsis printed after the error line, filled in by the dispatcher
    synopsis: str | None = None


class AuthenticationError(TritonError):
    """CloudAPI refused our credentials or request signature."""

    code = "Authentication"
    exit_status = ExitCode.AUTH


class SigningError(AuthenticationError):
    """The request could not be signed with the configured key."""

    code = "Signing"

    def __init__(self, message: str = "error signing request", **kwargs: object) -> None:
        """Default the message to a generic signing failure."""
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class SelfSignedCertError(TritonError):
    """CloudAPI presented a self-signed certificate and insecure mode is off."""

    code = "SelfSignedCert"

    def __init__(self, url: str, *, cause: BaseException | None = None) -> None:
        """Build the message from the endpoint URL."""
        super().__init__(
            f"could not access CloudAPI {url} because it uses a self-signed TLS "
            "certificate and your current profile is not configured for insecure "
            "access (use --insecure or set the profile's insecure flag)",
            cause=cause,
        )
        self.url = url


class CloudApiError(TritonError):
    """An error response returned by CloudAPI."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
        body: object | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Store server supplied error details."""
        super().__init__(message, code=code, status_code=status_code, cause=cause)
        self.request_id = request_id
        self.body = body


class ResourceNotFoundError(TritonError):
    """A name, short id or id did not match any resource."""

    code = "ResourceNotFound"


class AmbiguousResourceError(TritonError):
    """A token matched more than one resource."""

    code = "AmbiguousResource"

    def __init__(self, message: str, candidates: Sequence[str]) -> None:
        """Record the candidate ids that matched."""
        super().__init__(message)
        self.candidates = list(candidates)


class InvalidContentError(TritonError):
    """A response body or input file could not be parsed."""

    code = "InvalidContent"


class WaitTimeoutError(TritonError):
    """A waiter gave up before the resource reached the expected state."""

    code = "Timeout"


class CancelledError(TritonError):
    """The user interrupted the command."""

    code = "Cancelled"
    exit_status = ExitCode.CANCELLED

    def __init__(self, message: str = "cancelled", **kwargs: object) -> None:
        """Default the message to ``cancelled``."""
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class Aborted(TritonError):
    """A declined confirmation; halts the command without reporting an error."""

    code = "Aborted"
    exit_status = ExitCode.OK

    def __init__(self, message: str = "Aborting", **kwargs: object) -> None:
        """Default the message to ``Aborting``."""
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class MultiError(TritonError):
    """Several errors collected from a parallel fan-out, in input order."""

    code = "MultiError"

    def __init__(self, errors: Iterable[BaseException]) -> None:
        """Aggregate *errors* and build a combined message."""
        self.errors = list(errors)
        if not self.errors:
            raise InternalError("MultiError requires at least one error")
        lines = [f"multiple ({len(self.errors)}) errors"]
        for err in self.errors:
            lines.append(f"    error ({_error_code(err)}): {err}")
        super().__init__("\n".join(lines), cause=self.errors[0])
        statuses = {_exit_status(err) for err in self.errors}
        if len(statuses) == 1:
            self.exit_status = statuses.pop()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation including every child error."""
        payload = super().to_dict()
        payload["errors"] = [
            err.to_dict() if isinstance(err, TritonError) else {"message": str(err)}
            for err in self.errors
        ]
        return payload


def collect_errors(errors: Sequence[BaseException]) -> TritonError | None:
    """Return ``None``, the single error, or a :class:`MultiError` for *errors*."""
    if not errors:
        return None
    if len(errors) == 1:
        err = errors[0]
        if isinstance(err, TritonError):
            return err
        return InternalError(str(err), cause=err)
    return MultiError(errors)


def _error_code(err: BaseException) -> str:
    code = getattr(err, "code", None)
    return str(code) if code else type(err).__name__


def _exit_status(err: BaseException) -> int:
    return int(getattr(err, "exit_status", ExitCode.ERROR))


__all__ = [
    "Aborted",
    "AmbiguousResourceError",
    "AuthenticationError",
    "CancelledError",
    "CloudApiError",
    "ConfigError",
    "InternalError",
    "InvalidContentError",
    "MultiError",
    "ResourceNotFoundError",
    "SelfSignedCertError",
    "SigningError",
    "TritonError",
    "UsageError",
    "WaitTimeoutError",
    "collect_errors",
]
