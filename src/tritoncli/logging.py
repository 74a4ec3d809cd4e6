"""Logging for tritoncli.

Two sinks are configured here:

* diagnostic logging through the standard :mod:`logging` module, written to
  stderr and controlled by ``-v`` (WARNING by default, INFO with ``-v``, DEBUG
  with ``-vv`` which also traces every CloudAPI request);
* a structured operations log: one JSON record per mutating command, appended
  to ``<logs dir>/operations.log``. The structured logger never raises; when
  the log directory or file is unwritable it disables itself.
"""
from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger("tritoncli")

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_HANDLER_NAME = "tritoncli-stderr"


def configure_verbosity(verbose: int, *, stream: object | None = None) -> int:
    """Install the stderr handler for the ``tritoncli`` logger tree.

    Returns the effective level. Calling it twice replaces the handler.
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    for handler in list(LOGGER.handlers):
        if handler.get_name() == _HANDLER_NAME:
            LOGGER.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)  # type: ignore[arg-type]
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    LOGGER.addHandler(handler)
    LOGGER.setLevel(level)
    LOGGER.propagate = False
    if verbose >= 2:
        logging.getLogger("urllib3").setLevel(logging.DEBUG)
    return level


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Result collector for one logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        name: str,
        *,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Record the operation's identity and start time."""
        self._logger = logger
        self.name = name
        self.op_id = uuid.uuid4().hex
        self.args = dict(args or {})
        self.target = dict(target or {})
        self._started = time.perf_counter()
        self._started_at = datetime.now(UTC)
        self.result: dict[str, object] | None = None

    def _finish(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
        rc: int | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if changed is not None:
            result["changed"] = changed
        if context:
            result["context"] = _sanitize(dict(context))
        if rc is not None:
            result["rc"] = rc
        self.result = result

    def success(self, message: str, **kwargs: object) -> None:
        """Mark the operation successful."""
        self._finish("success", message, **kwargs)  # type: ignore[arg-type]

    def warning(self, message: str, **kwargs: object) -> None:
        """Mark the operation as completed with warnings."""
        self._finish("warning", message, **kwargs)  # type: ignore[arg-type]

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        **kwargs: object,
    ) -> None:
        """Mark the operation failed; *errors* defaults to ``[message]``."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors else [message],
            **kwargs,  # type: ignore[arg-type]
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON record written to the operations log."""
        duration_ms = int((time.perf_counter() - self._started) * 1000)
        return {
            "ts": self._started_at.isoformat(),
            "op_id": self.op_id,
            "command": self.name,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "duration_ms": duration_ms,
            "result": self.result or {"status": "unknown"},
        }


class StructuredLogger:
    """Append-only JSON lines log of CLI operations."""

    def __init__(self, logs_dir: Path) -> None:
        """Create the log directory, disabling the logger if that fails."""
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / "operations.log"
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("operations log disabled: %s", exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Location of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope whose outcome is written when the block exits.

        An exception escaping the block is recorded as an error before it
        propagates.
        """
        scope = OperationScope(self, name, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                rc = getattr(exc, "exit_status", None)
                if rc is None:
                    rc = getattr(exc, "exit_code", 1)
                scope.error(str(exc) or type(exc).__name__, rc=int(rc))
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError as exc:
            LOGGER.debug("disabling operations log after write failure: %s", exc)
            self._enabled = False


__all__ = ["LOGGER", "OperationScope", "StructuredLogger", "configure_verbosity"]
