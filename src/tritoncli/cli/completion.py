"""``triton completion`` and ``triton help``.

Completion is driven by the argtype tags declared on each command
(:func:`tritoncli.dispatch.argtypes`). The emitted Bash script calls back
into ``triton completion --words`` so the command tree, its aliases and the
listing caches stay the single source of candidates.
"""
from __future__ import annotations

from collections.abc import Sequence

import click
import typer

from ..config import AppConfig
from ..dispatch import (
    ARGTYPES,
    RuntimeContext,
    command_argtypes,
    completion_candidates,
    find_command,
    help_template,
)
from ..errors import UsageError
from ..output import emit

BASH_SCRIPT = r"""# Bash completion for {name}.
# Install with: {name} completion > ~/.{name}.completion
#               echo "source ~/.{name}.completion" >> ~/.bashrc
_{func}_complete() {{
    local cur="${{COMP_WORDS[COMP_CWORD]}}"
    local IFS=$'\n'
    local candidates
    candidates=$({name} completion --words -- "${{COMP_WORDS[@]:1:COMP_CWORD-1}}" "$cur" 2>/dev/null)
    COMPREPLY=($(compgen -W "$candidates" -- "$cur"))
}}
complete -o default -o nospace -F _{func}_complete {name}
"""

COMPLETION_HELP = """
Output Bash completion, or completion candidates for an argument type.

Installation:
    {{name}} completion > /usr/local/etc/bash_completion.d/{{name}}  # Mac
    sudo {{name}} completion > /etc/bash_completion.d/{{name}}       # Linux

Alternative installation:
    {{name}} completion > ~/.{{name}}.completion
    echo "source ~/.{{name}}.completion" >> ~/.bashrc

{{usage}}

{{options}}
"""

#: options of the root group that consume the following word
_ROOT_VALUE_OPTIONS = {
    "-p", "--profile", "-a", "--accept-version", "--act-as", "--url",
    "--account", "--user", "--key-id", "--config-dir",
}


def _config_of(root_ctx: click.Context) -> AppConfig | None:
    runtime = root_ctx.obj
    return runtime.config if isinstance(runtime, RuntimeContext) else None


def bash_script(name: str = "triton") -> str:
    """Return the Bash completion script for the program *name*."""
    return BASH_SCRIPT.format(name=name, func=name.replace("-", "_"))


def complete_words(
    root: click.Command, root_ctx: click.Context, words: Sequence[str], incomplete: str
) -> list[str]:
    """Return candidates for *incomplete* after the already typed *words*.

    Subcommand names are offered while the words name a group; past a leaf
    command the positional index selects the argtype tag (the last tag repeats
    for variadic arguments). ``file`` and ``none`` positions yield nothing so
    the shell falls back to filename completion.
    """
    command = root
    ctx = root_ctx
    index = 0
    while isinstance(command, click.Group) and index < len(words):
        word = words[index]
        index += 1
        if word.startswith("-"):
            if word in _ROOT_VALUE_OPTIONS and command is root:
                index += 1
            continue
        child = command.get_command(ctx, word)
        if child is None:
            return []
        ctx = click.Context(child, info_name=word, parent=ctx)
        command = child

    if incomplete.startswith("-"):
        names = [
            opt
            for param in command.get_params(ctx)
            if isinstance(param, click.Option) and not param.hidden
            for opt in (*param.opts, *param.secondary_opts)
        ]
        return sorted(name for name in names if name.startswith(incomplete))
    if isinstance(command, click.Group):
        return sorted(
            name
            for name in command.list_commands(ctx)
            if name.startswith(incomplete) and not getattr(command.get_command(ctx, name), "hidden", False)
        )

    positionals = [word for word in words[index:] if not word.startswith("-")]
    tags = command_argtypes(command)
    tag = tags[min(len(positionals), len(tags) - 1)]
    return completion_candidates(
        tag, incomplete, config=_config_of(root_ctx), profile_name=root_ctx.params.get("profile_name")
    )


@help_template(COMPLETION_HELP)
def completion(
    ctx: typer.Context,
    words: list[str] | None = typer.Argument(None, metavar="[ARGS...]"),
    argtype: str | None = typer.Option(
        None, "--argtype", metavar="TAG", help="Print completion candidates for TAG (optional PREFIX argument)."
    ),
    list_argtypes: bool = typer.Option(
        False, "--list-argtypes", help="Print the argtype tags of the command named by ARGS."
    ),
    complete_mode: bool = typer.Option(
        False, "--words", hidden=True, help="Complete the last of ARGS given the words before it."
    ),
) -> None:
    """Output Bash completion, or completion candidates for an argument type."""
    args = list(words or [])
    root_ctx = ctx.find_root()
    root = root_ctx.command
    if sum((argtype is not None, list_argtypes, complete_mode)) > 1:
        raise UsageError("only one of --argtype, --list-argtypes and --words may be given")
    if argtype is not None:
        if len(args) > 1:
            raise UsageError("too many arguments")
        prefix = args[0] if args else ""
        candidates = completion_candidates(
            argtype, prefix, config=_config_of(root_ctx), profile_name=root_ctx.params.get("profile_name")
        )
        for token in candidates:
            emit(token)
        return
    if list_argtypes:
        if not args:
            emit(" ".join(ARGTYPES))
            return
        found, _ = find_command(root, root_ctx, args)
        if isinstance(found, click.Group):
            raise UsageError(f'"{" ".join(args)}" is a command group; name one of its commands')
        emit(" ".join(command_argtypes(found)))
        return
    if complete_mode:
        incomplete = args[-1] if args else ""
        for token in complete_words(root, root_ctx, args[:-1], incomplete):
            emit(token)
        return
    if args:
        raise UsageError("too many arguments")
    typer.echo(bash_script(root_ctx.info_name or "triton"), nl=False)


def help_command(
    ctx: typer.Context,
    names: list[str] | None = typer.Argument(None, metavar="[COMMAND...]"),
) -> None:
    """Show help for a command, e.g. ``triton help instance list``."""
    root_ctx = ctx.find_root()
    found, found_ctx = find_command(root_ctx.command, root_ctx, list(names or []))
    typer.echo(found.get_help(found_ctx))


__all__ = ["BASH_SCRIPT", "bash_script", "complete_words", "completion", "help_command"]
