"""State polling with timeout and cancellation.

Every ``wait_for_*`` operation on :class:`tritoncli.cloudapi.CloudApi` is a
thin wrapper around :func:`poll_until`. Sleeps go through
:meth:`CancelToken.wait`, so an interrupt ends the loop within one poll
interval.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from .errors import CancelledError, WaitTimeoutError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INTERVAL = 1.0
MAX_INTERVAL = 3.0


class CancelToken:
    """Process-wide cancellation flag set by the interrupt handler."""

    def __init__(self) -> None:
        """Start in the not-cancelled state."""
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return ``True`` if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))

    def raise_if_cancelled(self) -> None:
        """Raise :class:`CancelledError` if cancellation was requested."""
        if self._event.is_set():
            raise CancelledError()


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    *,
    interval: float = DEFAULT_INTERVAL,
    timeout: float | None = None,
    backoff: float = 1.0,
    max_interval: float = MAX_INTERVAL,
    cancel: CancelToken | None = None,
    describe: Callable[[float], str] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call *fetch* until *done* accepts its result and return that result.

    The first poll happens immediately. Between polls the loop sleeps
    *interval* seconds, multiplied by *backoff* after each poll but never
    beyond *max_interval*. If *timeout* elapses first a
    :class:`WaitTimeoutError` is raised whose message comes from *describe*.
    """
    token = cancel or CancelToken()
    start = clock()
    delay = min(interval, max_interval) if interval > 0 else DEFAULT_INTERVAL
    while True:
        token.raise_if_cancelled()
        snapshot = fetch()
        if done(snapshot):
            return snapshot
        elapsed = clock() - start
        if timeout is not None and elapsed >= timeout:
            message = describe(elapsed) if describe else f"timeout after {int(elapsed)}s"
            raise WaitTimeoutError(message)
        sleep_for = delay
        if timeout is not None:
            sleep_for = min(sleep_for, max(0.0, timeout - elapsed))
        LOGGER.debug("waiting %.2fs before next poll", sleep_for)
        if token.wait(sleep_for):
            raise CancelledError()
        delay = min(delay * backoff, max_interval) if backoff > 1 else delay


__all__ = ["CancelToken", "DEFAULT_INTERVAL", "MAX_INTERVAL", "poll_until"]
