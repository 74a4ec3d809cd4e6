"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    ERROR = 1
    USAGE = 2
    AUTH = 3
    CANCELLED = 130
