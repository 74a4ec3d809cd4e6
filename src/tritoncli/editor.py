"""Editor launching and interactive prompts."""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from collections.abc import Mapping
from pathlib import Path

import typer

from .errors import Aborted, TritonError

LOGGER = logging.getLogger(__name__)

DEFAULT_EDITOR = "vi"


def editor_command(env: Mapping[str, str] | None = None) -> list[str]:
    """Return the editor command line from ``$VISUAL``/``$EDITOR``."""
    source = env if env is not None else os.environ
    raw = source.get("VISUAL") or source.get("EDITOR") or DEFAULT_EDITOR
    return shlex.split(raw)


def edit_in_editor(
    text: str,
    *,
    filename: str = "edit.txt",
    env: Mapping[str, str] | None = None,
) -> str:
    """Open *text* in the user's editor and return the saved content."""
    suffix = Path(filename).suffix or ".txt"
    prefix = Path(filename).stem + "-"
    fd, tmp_name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        command = [*editor_command(env), str(tmp_path)]
        LOGGER.debug("launching editor: %s", command)
        try:
            result = subprocess.run(command, check=False)  # noqa: S603 - user's editor
        except OSError as exc:
            raise TritonError(f"could not launch editor {command[0]}: {exc}", cause=exc) from exc
        if result.returncode != 0:
            raise TritonError(f"editor {command[0]} exited with status {result.returncode}")
        return tmp_path.read_text(encoding="utf-8")
    finally:
        tmp_path.unlink(missing_ok=True)


def prompt_retry(message: str = "Press <Enter> to re-edit, Ctrl+C to abort.") -> bool:
    """Wait for Enter; ``False`` when the user aborts."""
    try:
        typer.prompt(message, default="", show_default=False)
    except typer.Abort:
        return False
    return True


def confirm(message: str, *, assume_yes: bool = False) -> None:
    """Ask a yes/no question; raise :class:`Aborted` unless answered yes."""
    if assume_yes:
        return
    if not typer.confirm(message, default=False):
        raise Aborted()


__all__ = ["confirm", "edit_in_editor", "editor_command", "prompt_retry"]
