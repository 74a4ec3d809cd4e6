"""Migration watch stream framing and rendering tests."""
from __future__ import annotations

from typing import Any

import pytest

from tritoncli.errors import InvalidContentError, MultiError
from tritoncli.watcher import FrameAssembler, MigrationWatcher, ProgressRenderer, humanize_speed


def test_frames_split_across_chunks_are_joined() -> None:
    """An event cut at a chunk boundary is completed by the next chunk."""
    assembler = FrameAssembler()

    first = assembler.feed(b'{"type":"progress","current_progress":1}\n{"type":"pro')
    second = assembler.feed(b'gress","current_progress":2}\n')

    assert first == [{"type": "progress", "current_progress": 1}]
    assert assembler.pending == ""
    assert second == [{"type": "progress", "current_progress": 2}]


def test_three_chunk_stream_yields_two_events() -> None:
    chunks = [
        b'{"type":"prog',
        b'ress","state":"sync","current_progress":1,"total_progress":100}\n{"type":"end",',
        b'"phase":"sync"}\n',
    ]
    assembler = FrameAssembler()

    events = [event for chunk in chunks for event in assembler.feed(chunk)] + assembler.flush()

    assert events == [
        {"type": "progress", "state": "sync", "current_progress": 1, "total_progress": 100},
        {"type": "end", "phase": "sync"},
    ]


@pytest.mark.parametrize("size", [1, 2, 7, 64])
def test_framing_ignores_chunk_size(size: int) -> None:
    """The same byte stream gives the same events however it is cut."""
    stream = b'{"a":1}\n{"b":"x\\ny"}\n{"c":[1,2]}\n'
    assembler = FrameAssembler()

    events: list[dict[str, Any]] = []
    for start in range(0, len(stream), size):
        events.extend(assembler.feed(stream[start : start + size]))
    events.extend(assembler.flush())

    assert events == [{"a": 1}, {"b": "x\ny"}, {"c": [1, 2]}]


def test_multibyte_characters_split_across_chunks() -> None:
    assembler = FrameAssembler()
    payload = '{"message":"déjà vu"}\n'.encode()

    events = assembler.feed(payload[:14]) + assembler.feed(payload[14:])

    assert events == [{"message": "déjà vu"}]


def test_invalid_middle_fragment_fails_the_chunk() -> None:
    assembler = FrameAssembler()

    with pytest.raises(MultiError) as excinfo:
        assembler.feed(b'{"a":1}\nnot json\n{"b":2}\n')

    assert len(excinfo.value.errors) == 1
    assert isinstance(excinfo.value.errors[0], InvalidContentError)
    assert str(excinfo.value.errors[0]) == "Invalid JSON in response"


def test_unterminated_final_event_is_parsed() -> None:
    assembler = FrameAssembler()

    assert assembler.feed(b'{"type":"end",') == []
    assert assembler.feed(b'"phase":"sync"}') == [{"type": "end", "phase": "sync"}]
    assert assembler.flush() == []


def test_flush_rejects_truncated_event() -> None:
    assembler = FrameAssembler()
    assembler.feed(b'{"type":"end"')

    with pytest.raises(MultiError):
        assembler.flush()


@pytest.mark.parametrize(
    ("speed", "expected"),
    [(512, "512.0B/s"), (2048, "2.0kB/s"), (5 * 1024 * 1024, "5.0MB/s"), ("n/a", "n/a")],
)
def test_humanize_speed(speed: object, expected: object) -> None:
    assert humanize_speed(speed) == expected


def test_relative_progress_never_goes_backwards() -> None:
    """Sub-phases restarting at zero keep the highest percent shown."""
    renderer = ProgressRenderer()

    lines = [
        renderer.render({"type": "progress", "state": "running", "current_progress": 40, "total_progress": 100}, 1),
        renderer.render({"type": "progress", "state": "running", "current_progress": 5, "total_progress": 100}, 2),
        renderer.render(
            {
                "type": "progress",
                "state": "running",
                "current_progress": 75,
                "total_progress": 100,
                "transfer_bytes_second": 2048,
            },
            3,
        ),
    ]

    assert lines == ["running: 40%", "running: 40%", "running: 75% 2.0kB/s"]


def test_end_event_reports_phase_duration() -> None:
    renderer = ProgressRenderer()

    assert renderer.render({"type": "end", "phase": "sync"}, 12.7) == "Done - sync finished in 12 seconds"
    assert renderer.render({"type": "heartbeat"}, 13) is None


class _Stream:
    """Iterable event stream that records being closed."""

    def __init__(self, events: list[dict[str, Any]]) -> None:
        self._events = iter(events)
        self.closed = False

    def __iter__(self) -> _Stream:
        return self

    def __next__(self) -> dict[str, Any]:
        return next(self._events)

    def close(self) -> None:
        self.closed = True


class _Api:
    def __init__(self, events: list[dict[str, Any]]) -> None:
        self.stream = _Stream(events)
        self.watched: list[str] = []

    def watch_migration(self, machine_id: str) -> _Stream:
        self.watched.append(machine_id)
        return self.stream


EVENTS = [
    {"type": "progress", "phase": "begin", "state": "running", "current_progress": 100, "total_progress": 100},
    {"type": "end", "phase": "begin"},
    {"type": "progress", "phase": "sync", "state": "running", "current_progress": 50, "total_progress": 100},
    {"type": "end", "phase": "sync"},
    {"type": "end", "phase": "switch"},
]


def test_watcher_stops_at_first_end_event() -> None:
    api = _Api(EVENTS)
    lines: list[str] = []

    events = MigrationWatcher(api, write=lines.append, clock=lambda: 0.0).watch("m1")  # type: ignore[arg-type]

    assert events == EVENTS[:2]
    assert lines == ["running: 100%", "Done - begin finished in 0 seconds"]
    assert api.stream.closed


def test_watcher_waits_for_terminal_phase() -> None:
    """Automatic migrations run until a terminal phase ends."""
    api = _Api(EVENTS)
    lines: list[str] = []

    events = MigrationWatcher(api, write=lines.append, clock=lambda: 0.0).watch(  # type: ignore[arg-type]
        "m1", json_output=True, terminal_phases=("switch", "abort")
    )

    assert events == EVENTS
    assert lines[-1] == '{"type": "end", "phase": "switch"}'


def test_watcher_quiet_prints_nothing() -> None:
    api = _Api(EVENTS)
    lines: list[str] = []

    MigrationWatcher(api, write=lines.append).watch("m1", quiet=True)  # type: ignore[arg-type]

    assert lines == []
