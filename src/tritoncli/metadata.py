"""Metadata and tag loading from command line arguments.

Each ``-m``/``-t`` argument is one of:

* a JSON object (the argument starts with ``{``);
* ``@FILE``: a file holding a JSON object or ``KEY=VALUE`` lines;
* a single ``KEY=VALUE`` pair.

``KEY=VALUE`` values ``true``/``false`` become booleans and numeric values
become numbers. Only strings, numbers and booleans are accepted as values.
"""
from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path

from .errors import TritonError, UsageError

LOGGER = logging.getLogger(__name__)

Scalar = str | int | float | bool
Warn = Callable[[str], None]

ALLOWED_TYPES = ("string", "number", "boolean")
_NUMBER_RE = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?\s*$")
_LINE_SPLIT_RE = re.compile(r"\r?\n")


def _reject_constant(token: str) -> object:
    raise ValueError(f"invalid JSON constant {token}")


def _from_suffix(source: str | None) -> str:
    return f" (from {source})" if source else ""


def _is_allowed(value: object) -> bool:
    if isinstance(value, bool) or isinstance(value, str):
        return True
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def coerce_value(text: str) -> Scalar:
    """Turn the VALUE of a ``KEY=VALUE`` pair into a bool, number or string."""
    stripped = text.strip()
    if stripped == "true":
        return True
    if stripped == "false":
        return False
    if _NUMBER_RE.match(text):
        if re.fullmatch(r"[-+]?\d+", stripped):
            return int(stripped)
        number = float(stripped)
        if math.isfinite(number):
            return number
    return text


class KeyValueLoader:
    """Accumulate one map of metadata or tags (the *ilk*), last write wins."""

    def __init__(self, ilk: str, *, warn: Warn | None = None) -> None:
        """Start an empty map for *ilk* (``metadata`` or ``tag``)."""
        self.ilk = ilk
        self.values: dict[str, Scalar] = {}
        self._warn = warn or LOGGER.warning

    def add(self, key: str, value: object, source: str | None = None) -> None:
        """Add one key, warning when it replaces an earlier value."""
        if not _is_allowed(value):
            raise UsageError(
                f"invalid {self.ilk} value type{_from_suffix(source)}: must be one of "
                f"{', '.join(ALLOWED_TYPES)}: {key}={json.dumps(value)}"
            )
        if key in self.values:
            text = _display(value)
            if len(text) > 10:
                text = text[:7] + "..."
            self._warn(
                f'{self.ilk} "{key}={text}"{_from_suffix(source)} replaces earlier '
                f'value for "{key}"'
            )
        self.values[key] = value  # type: ignore[assignment]

    def add_object(self, data: object, source: str | None = None) -> None:
        """Add every key of a decoded JSON object."""
        if not isinstance(data, Mapping):
            raise UsageError(f"{self.ilk}{_from_suffix(source)} is not a JSON object")
        for key, value in data.items():
            self.add(str(key), value, source)

    def add_json(self, text: str, source: str | None = None) -> None:
        """Add keys from a JSON object document."""
        try:
            data = json.loads(text, parse_constant=_reject_constant)
        except ValueError as exc:
            raise TritonError(
                f"{self.ilk}{_from_suffix(source)} is not valid JSON", cause=exc
            ) from exc
        self.add_object(data, source)

    def add_kv(self, text: str, source: str | None = None) -> None:
        """Add one ``KEY=VALUE`` pair."""
        key, sep, value = text.partition("=")
        if not sep:
            raise UsageError(f"invalid KEY=VALUE {self.ilk} argument: {text}")
        self.add(key.strip(), coerce_value(value), source)

    def add_document(self, text: str, source: str | None = None) -> None:
        """Add keys from file content: a JSON object or ``KEY=VALUE`` lines."""
        stripped = text.strip()
        if stripped.startswith("{"):
            self.add_json(stripped, source)
            return
        for line in _LINE_SPLIT_RE.split(stripped):
            if line.strip():
                self.add_kv(line, source)

    def add_file(self, path: str) -> None:
        """Add keys from ``@FILE`` content."""
        self.add_document(_read_file(path, f'"{path}" is not an existing file'), path)

    def add_file_value(self, key: str, path: str) -> None:
        """Set *key* to the verbatim content of *path*."""
        content = _read_file(path, f'{self.ilk} path "{path}" is not an existing file')
        self.add(key, content, path)

    def add_key_file(self, text: str) -> None:
        """Handle a ``KEY=FILE`` argument."""
        key, sep, path = text.partition("=")
        if not sep:
            raise UsageError(f"invalid KEY=FILE {self.ilk} argument: {text}")
        self.add_file_value(key.strip(), path)

    def add_argument(self, text: str) -> None:
        """Add one ``-m``/``-t`` argument in any of the accepted forms."""
        if not text:
            raise UsageError(f"empty {self.ilk} option value")
        if text.startswith("{"):
            self.add_json(text)
        elif text.startswith("@"):
            self.add_file(text[1:])
        else:
            self.add_kv(text)


def _display(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _read_file(path: str, missing_message: str) -> str:
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise TritonError(missing_message)
    try:
        return file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TritonError(f"could not read {path}: {exc}", cause=exc) from exc


def parse_kv_args(
    ilk: str, args: Iterable[str], *, warn: Warn | None = None
) -> dict[str, Scalar]:
    """Load a map from positional arguments (``tag set``, ``metadata update``)."""
    loader = KeyValueLoader(ilk, warn=warn)
    for arg in args:
        loader.add_argument(arg)
    return loader.values


def metadata_from_options(
    occurrences: Sequence[tuple[str, str]], *, warn: Warn | None = None
) -> dict[str, Scalar] | None:
    """Load metadata from ordered ``(option, value)`` pairs.

    ``metadata`` values use the argument grammar, ``metadata_file`` values are
    ``KEY=FILE`` and ``script`` values set ``user-script``. Later occurrences
    win, so the user's command line order matters.
    """
    loader = KeyValueLoader("metadata", warn=warn)
    for key, value in occurrences:
        if key == "metadata":
            loader.add_argument(value)
        elif key == "metadata_file":
            loader.add_key_file(value)
        elif key == "script":
            loader.add_file_value("user-script", value)
    return loader.values or None


def tags_from_options(
    values: Sequence[str], *, warn: Warn | None = None
) -> dict[str, Scalar] | None:
    """Load tags from ``-t`` arguments."""
    loader = KeyValueLoader("tag", warn=warn)
    for value in values:
        loader.add_argument(value)
    return loader.values or None


def parse_kv_text(ilk: str, text: str, *, warn: Warn | None = None) -> dict[str, Scalar]:
    """Parse a JSON object or ``KEY=VALUE`` document (the :func:`render_kv` format)."""
    loader = KeyValueLoader(ilk, warn=warn)
    loader.add_document(text)
    return loader.values


def render_kv(values: Mapping[str, object]) -> str:
    """Render a map as ``KEY=VALUE`` lines that parse back to the same map.

    When a value cannot survive that form (a string that looks like a number
    or boolean, or one spanning lines) the whole map is rendered as a JSON
    object, which :func:`parse_kv_text` also accepts.
    """
    lines: list[str] = []
    for key, value in values.items():
        text = _display(value)
        if (
            "=" in key
            or key.startswith("{")
            or key != key.strip()
            or text != text.strip()
            or not key
            or "\n" in text
            or "\r" in text
            or coerce_value(text) != value
            or type(coerce_value(text)) is not type(value)
        ):
            return json.dumps(dict(values), indent=2, sort_keys=False) + "\n"
        lines.append(f"{key}={text}")
    return "".join(line + "\n" for line in lines)


__all__ = [
    "ALLOWED_TYPES",
    "KeyValueLoader",
    "coerce_value",
    "metadata_from_options",
    "parse_kv_args",
    "parse_kv_text",
    "render_kv",
    "tags_from_options",
]
