"""Metadata and tag argument parsing tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from tritoncli.errors import TritonError, UsageError
from tritoncli.metadata import (
    coerce_value,
    metadata_from_options,
    parse_kv_args,
    parse_kv_text,
    render_kv,
    tags_from_options,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [("true", True), ("false", False), ("42", 42), ("-1.5", -1.5), ("1e3", 1000.0), ("web", "web"), ("nan", "nan")],
)
def test_coerce_value(text: str, expected: object) -> None:
    value = coerce_value(text)
    assert value == expected
    assert type(value) is type(expected)


def test_argument_forms_are_merged_in_order() -> None:
    """JSON objects, @FILE and KEY=VALUE arguments merge; later keys win."""
    warnings: list[str] = []

    tags = parse_kv_args("tag", ['{"env": "prod", "tier": 1}', "env=dev"], warn=warnings.append)

    assert tags == {"env": "dev", "tier": 1}
    assert warnings == ['tag "env=dev" replaces earlier value for "env"']


def test_file_argument_accepts_json_or_lines(tmp_path: Path) -> None:
    """``@FILE`` holds a JSON object or KEY=VALUE lines."""
    json_file = tmp_path / "meta.json"
    json_file.write_text('{"user-data": "hello", "count": 3}', encoding="utf-8")
    kv_file = tmp_path / "meta.txt"
    kv_file.write_text("a=1\r\nb=two\n\n", encoding="utf-8")

    assert parse_kv_args("metadata", [f"@{json_file}"]) == {"user-data": "hello", "count": 3}
    assert parse_kv_args("metadata", [f"@{kv_file}"]) == {"a": 1, "b": "two"}


def test_missing_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(TritonError, match="is not an existing file"):
        parse_kv_args("metadata", [f"@{tmp_path / 'nope.json'}"])


def test_nested_values_are_rejected() -> None:
    """Only strings, numbers and booleans are allowed."""
    with pytest.raises(UsageError, match="must be one of string, number, boolean"):
        parse_kv_args("metadata", ['{"nested": {"a": 1}}'])


def test_invalid_json_constants_are_rejected() -> None:
    with pytest.raises(TritonError, match="is not valid JSON"):
        parse_kv_args("metadata", ['{"n": NaN}'])


def test_missing_separator_is_a_usage_error() -> None:
    with pytest.raises(UsageError, match="invalid KEY=VALUE tag argument: novalue"):
        tags_from_options(["novalue"])


def test_metadata_options_follow_command_line_order(tmp_path: Path) -> None:
    """``-m``, ``-M`` and ``--script`` share one map; the last writer wins."""
    script = tmp_path / "setup.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    motd = tmp_path / "motd"
    motd.write_text("welcome\n", encoding="utf-8")

    metadata = metadata_from_options(
        [
            ("metadata", "user-script=inline"),
            ("script", str(script)),
            ("metadata_file", f"motd={motd}"),
            ("metadata", "count=2"),
        ],
        warn=lambda message: None,
    )

    assert metadata == {"user-script": "#!/bin/sh\necho hi\n", "motd": "welcome\n", "count": 2}


def test_empty_options_give_none() -> None:
    assert metadata_from_options([]) is None
    assert tags_from_options([]) is None


@pytest.mark.parametrize(
    "values",
    [
        {"env": "prod", "count": 3, "debug": False, "ratio": 0.5},
        {"version": "1.0", "flag": "true"},
        {"script": "#!/bin/sh\necho hi\n"},
        {" padded": "x"},
    ],
)
def test_render_kv_parses_back(values: dict[str, object]) -> None:
    """Rendered metadata parses back to the same map and value types."""
    parsed = parse_kv_text("metadata", render_kv(values))

    assert parsed == values
    assert {key: type(value) for key, value in parsed.items()} == {
        key: type(value) for key, value in values.items()
    }


def test_render_kv_prefers_plain_lines() -> None:
    assert render_kv({"env": "prod", "count": 3}) == "env=prod\ncount=3\n"
