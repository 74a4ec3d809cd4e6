"""Migration progress watching.

The watch endpoint answers with newline-delimited JSON over a long-lived
response. :class:`FrameAssembler` turns arbitrary byte chunks into whole
events, :class:`ProgressRenderer` formats them for humans, and
:class:`MigrationWatcher` ties both to :meth:`CloudApi.watch_migration`.
"""
from __future__ import annotations

import codecs
import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .errors import InvalidContentError, MultiError

if TYPE_CHECKING:  # pragma: no cover
    from .cloudapi import CloudApi

LOGGER = logging.getLogger(__name__)

BYTE_UNITS = ("B/s", "kB/s", "MB/s", "GB/s", "TB/s", "PB/s", "EB/s")
INVALID_FRAGMENT = "Invalid JSON in response"


class FrameAssembler:
    """Split a chunked NDJSON body into parsed events.

    A fragment that does not parse and is the last one of its chunk is held
    back and prefixed to the next chunk. Any other unparseable fragment fails
    the whole chunk with a :class:`MultiError` of :class:`InvalidContentError`.
    """

    def __init__(self) -> None:
        """Start with an empty pending buffer."""
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text held back from the previous chunk."""
        return self._pending

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        """Consume *chunk* and return the events it completes, in order."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if self._pending:
            text = self._pending + text
            self._pending = ""

        fragments = text.split("\n")
        last_index = len(fragments) - 1
        events: list[dict[str, Any]] = []
        errors: list[InvalidContentError] = []
        for index, fragment in enumerate(fragments):
            if not fragment.strip():
                continue
            try:
                events.append(json.loads(fragment))
            except ValueError as exc:
                if index == last_index:
                    self._pending = fragment
                else:
                    errors.append(InvalidContentError(INVALID_FRAGMENT, cause=exc))
        if errors:
            raise MultiError(errors)
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is still pending once the stream has ended."""
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not text.strip():
            return []
        try:
            return [json.loads(text)]
        except ValueError as exc:
            raise MultiError([InvalidContentError(INVALID_FRAGMENT, cause=exc)]) from exc


def humanize_speed(speed: object) -> object:
    """Render bytes per second as ``12.3MB/s``; non-numbers pass through."""
    if isinstance(speed, bool) or not isinstance(speed, (int, float)):
        return speed
    value = float(speed)
    index = 0
    while value > 1024 and index < len(BYTE_UNITS) - 1:
        value /= 1024
        index += 1
    return f"{max(value, 0.0):.1f}{BYTE_UNITS[index]}"


class ProgressRenderer:
    """Format migration events as progress lines.

    Relative progress (``total_progress == 100``) may restart at zero between
    sub-phases; the highest percent seen so far is carried forward so the
    display never goes backwards within a phase.
    """

    def __init__(self) -> None:
        """Start a fresh phase."""
        self._percent = 0.0

    def render(self, event: Mapping[str, Any], elapsed: float) -> str | None:
        """Return the line for *event*, or ``None`` for unknown event types."""
        kind = event.get("type")
        if kind == "end":
            self._percent = 0.0
            return f"Done - {event.get('phase')} finished in {int(elapsed)} seconds"
        if kind != "progress":
            return None

        current = _number(event.get("current_progress"))
        total = _number(event.get("total_progress"))
        percent = (current * 100 / total) if total else 0.0
        if total == 100:
            percent = max(percent, self._percent)
        self._percent = percent

        speed = event.get("transfer_bytes_second")
        detail = humanize_speed(speed) if speed else event.get("message", "")
        return f"{event.get('state')}: {int(percent)}% {detail}".rstrip()


def _number(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


class MigrationWatcher:
    """Consume the migration watch stream for one instance."""

    def __init__(
        self,
        api: CloudApi,
        *,
        write: Callable[[str], None] = print,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Bind the facade, the output sink and the clock."""
        self.api = api
        self._write = write
        self._clock = clock

    def watch(
        self,
        machine_id: str,
        *,
        json_output: bool = False,
        quiet: bool = False,
        terminal_phases: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Print and collect events until a terminal ``end`` event or stream close.

        With *terminal_phases* set only ``end`` events for one of those phases
        stop the watch; otherwise the first ``end`` event does.
        """
        start = self._clock()
        renderer = ProgressRenderer()
        events: list[dict[str, Any]] = []
        stream = self.api.watch_migration(machine_id)
        try:
            for event in stream:
                events.append(event)
                self._emit(event, renderer, start, json_output=json_output, quiet=quiet)
                if _is_terminal(event, terminal_phases):
                    LOGGER.debug("migration watch for %s ended: %s", machine_id, event)
                    break
            else:
                LOGGER.debug("migration watch stream for %s closed", machine_id)
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()
        return events

    def _emit(
        self,
        event: Mapping[str, Any],
        renderer: ProgressRenderer,
        start: float,
        *,
        json_output: bool,
        quiet: bool,
    ) -> None:
        if quiet:
            return
        if json_output:
            self._write(json.dumps(event))
            return
        line = renderer.render(event, self._clock() - start)
        if line is not None:
            self._write(line)


def _is_terminal(event: Mapping[str, Any], phases: Iterable[str] | None) -> bool:
    if event.get("type") != "end":
        return False
    if phases is None:
        return True
    return event.get("phase") in set(phases)


__all__ = [
    "FrameAssembler",
    "MigrationWatcher",
    "ProgressRenderer",
    "humanize_speed",
]
