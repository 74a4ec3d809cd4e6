"""Command dispatch glue between typer/click and the tritoncli libraries.

This module owns the pieces every subcommand shares:

* :class:`RuntimeContext`, threaded through ``ctx.obj``, which lazily builds
  the profile, CloudAPI facade, listing cache and resolver;
* :class:`TritonCommand`, a typer command class that records options in the
  order they were given (:func:`ordered_options`) and supports help templates;
* :class:`TritonGroup`, the root group, whose ``main`` maps every failure
  onto an ``error: <message>`` line and an exit status;
* alias registration, argument-type tags and shell completion candidates.
"""
from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, NamedTuple, TypeVar

import click
import typer
from rich.traceback import Traceback
from typer.core import TyperCommand, TyperGroup

from .auth import find_signer
from .cache import ListingCache
from .cloudapi import (
    UPDATE_ACCOUNT_FIELDS,
    UPDATE_FWRULE_FIELDS,
    UPDATE_IMAGE_FIELDS,
    UPDATE_NETWORK_IP_FIELDS,
    UPDATE_VLAN_FIELDS,
    CloudApi,
)
from .config import AppConfig, Profile, ProfileStore, load_config, resolve_profile
from .errors import (
    Aborted,
    CancelledError,
    ConfigError,
    InternalError,
    TritonError,
    UsageError,
)
from .exit_codes import ExitCode
from .logging import StructuredLogger
from .output import err_console, warn
from .resolver import Resolver
from .transport import CloudApiTransport
from .waiters import CancelToken

LOGGER = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

ORDERED_OPTIONS_KEY = "tritoncli.ordered_options"
DEFAULT_HELP_COL = 30

#: argument type tags understood by ``triton completion --argtype``
ARGTYPES = (
    "tritoninstance",
    "tritonimage",
    "tritonpackage",
    "tritonnetwork",
    "tritonvolume",
    "tritonfwrule",
    "tritondatacenter",
    "tritonprofile",
    "tritonaffinityrule",
    "tritonupdateaccountfield",
    "tritonupdateimagefield",
    "tritonupdatefwrulefield",
    "tritonupdatenetworkipfield",
    "tritonupdatevlanfield",
    "file",
    "none",
)
_ARGTYPE_RESOURCES = {
    "tritoninstance": "instances",
    "tritonimage": "images",
    "tritonpackage": "packages",
    "tritonnetwork": "networks",
    "tritonvolume": "volumes",
    "tritonfwrule": "fwrules",
    "tritondatacenter": "datacenters",
}
_ARGTYPE_FIELDS = {
    "tritonupdateaccountfield": UPDATE_ACCOUNT_FIELDS,
    "tritonupdateimagefield": UPDATE_IMAGE_FIELDS,
    "tritonupdatefwrulefield": UPDATE_FWRULE_FIELDS,
    "tritonupdatenetworkipfield": UPDATE_NETWORK_IP_FIELDS,
    "tritonupdatevlanfield": UPDATE_VLAN_FIELDS,
}


# ----------------------------------------------------------------------
# Runtime
# ----------------------------------------------------------------------


@dataclass
class DispatchState:
    """Process level state shared by :func:`tritoncli.cli.main` and the root group."""

    cancel: CancelToken = field(default_factory=CancelToken)
    verbose: int = 0


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    state: DispatchState
    profile_name: str | None = None
    profile_overrides: dict[str, object] = field(default_factory=dict)
    accept_version: str | None = None
    _profile: Profile | None = field(default=None, init=False, repr=False)
    _api: CloudApi | None = field(default=None, init=False, repr=False)
    _cache: ListingCache | None = field(default=None, init=False, repr=False)
    _resolver: Resolver | None = field(default=None, init=False, repr=False)

    @property
    def cancel(self) -> CancelToken:
        """Cancellation token tripped by SIGINT."""
        return self.state.cancel

    @property
    def store(self) -> ProfileStore:
        """Profile storage under the config directory."""
        return ProfileStore(self.config)

    @property
    def profile(self) -> Profile:
        """The active profile (``-p``, ``TRITON_PROFILE``, current, ``env``)."""
        if self._profile is None:
            self._profile = resolve_profile(
                self.store,
                name=self.profile_name,
                default=self.config.profile,
                overrides=self.profile_overrides,
            )
        return self._profile

    @property
    def api(self) -> CloudApi:
        """The CloudAPI facade for the active profile."""
        if self._api is None:
            self._api = build_api(self)
        return self._api

    @property
    def cache(self) -> ListingCache:
        """Listing cache for the active profile."""
        if self._cache is None:
            self._cache = ListingCache(
                self.config.cache_dir / self.profile.slug, ttl=self.config.cache_ttl
            )
        return self._cache

    @property
    def resolver(self) -> Resolver:
        """Resolver bound to the facade and listing cache."""
        if self._resolver is None:
            self._resolver = Resolver(self.api, cache=self.cache)
        return self._resolver


def build_api(runtime: RuntimeContext) -> CloudApi:
    """Build the signed transport and facade for the runtime's profile."""
    profile = runtime.profile
    signer = find_signer(profile.key_id)
    transport = CloudApiTransport(
        profile.url,
        profile.account,
        signer,
        user=profile.user,
        act_as=profile.act_as_account,
        insecure=profile.insecure,
        accept_version=runtime.accept_version or runtime.config.accept_version,
        timeout=runtime.config.request_timeout,
        roles=profile.roles,
    )
    return CloudApi(transport, cancel=runtime.cancel, wait_interval=runtime.config.wait_interval)


def build_runtime(
    state: DispatchState,
    *,
    config_dir: str | None = None,
    profile_name: str | None = None,
    profile_overrides: Mapping[str, object] | None = None,
    accept_version: str | None = None,
) -> RuntimeContext:
    """Load config and assemble a :class:`RuntimeContext`."""
    config = load_config(config_dir)
    return RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        state=state,
        profile_name=profile_name,
        profile_overrides=dict(profile_overrides or {}),
        accept_version=accept_version,
    )


def get_runtime(ctx: click.Context) -> RuntimeContext:
    """Return the :class:`RuntimeContext` installed by the root callback."""
    runtime = ctx.find_object(RuntimeContext)
    if runtime is None:
        raise InternalError("runtime context missing: the root callback did not run")
    return runtime


# ----------------------------------------------------------------------
# Commands and groups
# ----------------------------------------------------------------------


class OptionOccurrence(NamedTuple):
    """One option as it appeared on the command line."""

    key: str
    value: Any


def ordered_options(ctx: click.Context) -> list[OptionOccurrence]:
    """Return the options of the invoked command in command-line order."""
    return list(ctx.meta.get(ORDERED_OPTIONS_KEY, ()))


class TritonCommand(TyperCommand):
    """Typer command that keeps option order and renders help templates."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        raw = list(args)
        rest = super().parse_args(ctx, args)
        if not ctx.resilient_parsing:
            ctx.meta[ORDERED_OPTIONS_KEY] = self._occurrences(ctx, raw)
        return rest

    def _occurrences(self, ctx: click.Context, raw: list[str]) -> list[OptionOccurrence]:
        parser = self.make_parser(ctx)
        opts, _, order = parser.parse_args(args=raw)
        seen: dict[str, int] = {}
        occurrences: list[OptionOccurrence] = []
        for param in order:
            if not isinstance(param, click.Option) or not param.name:
                continue
            value = opts.get(param.name)
            if param.count:
                value = True
            elif param.multiple and isinstance(value, list):
                index = seen.get(param.name, 0)
                seen[param.name] = index + 1
                value = value[index] if index < len(value) else None
            occurrences.append(OptionOccurrence(param.name, value))
        return occurrences

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except UsageError as exc:
            if exc.synopsis is None:
                exc.synopsis = ctx.get_usage()
            raise

    def format_help(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        template = getattr(self.callback, "help_template", None)
        if template is None:
            super().format_help(ctx, formatter)
            return
        formatter.write(
            render_help(
                template,
                name=ctx.command_path.split(" ", 1)[0],
                cmd=ctx.command_path,
                usage=ctx.get_usage(),
                options=format_option_rows(
                    option_rows(self, ctx),
                    max_help_col=getattr(self.callback, "max_help_col", None),
                ),
            )
        )


class TritonGroup(TyperGroup):
    """Root group: runs the command tree and maps failures to exit statuses."""

    def main(  # type: ignore[override]
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        state = extra.pop("obj", None)
        if not isinstance(state, DispatchState):
            state = DispatchState()
        try:
            rv = super().main(
                args=args,
                prog_name=prog_name,
                complete_var=complete_var,
                standalone_mode=False,
                obj=state,
                **extra,
            )
            code = rv if isinstance(rv, int) and not isinstance(rv, bool) else ExitCode.OK
        except (Exception, KeyboardInterrupt) as exc:
            code = report_error(exc, state=state)
        sys.stdout.flush()
        if standalone_mode:
            sys.exit(int(code))
        return int(code)


def report_error(exc: BaseException, *, state: DispatchState) -> int:
    """Print *exc* the way users see errors and return the exit status."""
    no_args_is_help = getattr(click.exceptions, "NoArgsIsHelpError", None)
    if no_args_is_help is not None and isinstance(exc, no_args_is_help) and exc.ctx is not None:
        # click >= 8.2 raises for a bare group; older releases print help and exit 0.
        typer.echo(exc.ctx.get_help())
        return int(ExitCode.OK)
    error = _as_triton_error(exc, state)
    if isinstance(error, Aborted):
        return int(error.exit_status)
    warn(f"error: {error.message}")
    if isinstance(error, UsageError) and error.synopsis:
        warn(error.synopsis)
    if state.verbose:
        for cause in error.cause_chain()[1:]:
            warn(f"    caused by: {cause}")
        source = error.cause if isinstance(error, InternalError) and error.cause else error
        err_console.print(
            Traceback.from_exception(type(source), source, source.__traceback__)
        )
    return int(error.exit_status)


def _as_triton_error(exc: BaseException, state: DispatchState) -> TritonError:
    if isinstance(exc, TritonError):
        return exc
    if isinstance(exc, KeyboardInterrupt):
        state.cancel.cancel()
        return CancelledError(cause=exc)
    if isinstance(exc, click.exceptions.Abort):
        state.cancel.cancel()
        return CancelledError(cause=exc)
    if isinstance(exc, click.exceptions.UsageError):
        usage = UsageError(exc.format_message(), cause=exc)
        if exc.ctx is not None:
            usage.synopsis = exc.ctx.get_usage()
        return usage
    if isinstance(exc, click.ClickException):
        return TritonError(exc.format_message(), cause=exc, exit_status=exc.exit_code)
    return InternalError(f"{type(exc).__name__}: {exc}", cause=exc)


@contextmanager
def interrupt_handler(token: CancelToken) -> Iterator[None]:
    """Trip *token* and raise ``KeyboardInterrupt`` on SIGINT for the block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handle(signum: int, frame: object) -> None:
        token.cancel()
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGINT, _handle)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def command(app: typer.Typer, name: str, *aliases: str, **kwargs: Any) -> Callable[[F], F]:
    """Register a :class:`TritonCommand` under *name* plus hidden *aliases*."""

    def decorator(func: F) -> F:
        app.command(name, cls=TritonCommand, **kwargs)(func)
        for alias in aliases:
            app.command(alias, cls=TritonCommand, hidden=True, **kwargs)(func)
        return func

    return decorator


def add_group(
    parent: typer.Typer, child: typer.Typer, name: str, *aliases: str, help: str | None = None
) -> None:
    """Mount *child* under *name* plus hidden *aliases*."""
    parent.add_typer(child, name=name, help=help)
    for alias in aliases:
        parent.add_typer(child, name=alias, help=help, hidden=True)


# ----------------------------------------------------------------------
# Help rendering
# ----------------------------------------------------------------------


def help_template(template: str, *, max_help_col: int | None = None) -> Callable[[F], F]:
    """Attach a help template (``{{name}}``, ``{{cmd}}``, ``{{usage}}``, ``{{options}}``)."""

    def decorator(func: F) -> F:
        func.help_template = template  # type: ignore[attr-defined]
        func.max_help_col = max_help_col  # type: ignore[attr-defined]
        return func

    return decorator


def render_help(template: str, *, name: str, cmd: str, usage: str, options: str) -> str:
    """Substitute the help placeholders of *template*."""
    text = template.strip("\n")
    for key, value in (("name", name), ("cmd", cmd), ("usage", usage), ("options", options)):
        text = text.replace("{{" + key + "}}", value.rstrip("\n"))
    return text + "\n"


HelpRow = tuple[str, str] | str | None


def option_rows(command: click.Command, ctx: click.Context) -> list[HelpRow]:
    """Return help rows for *command*'s options, grouped by help panel.

    A panel label becomes a heading row; options without one that follow a
    labelled group are separated by a blank row.
    """
    rows: list[HelpRow] = []
    current: str | None = None
    for param in command.get_params(ctx):
        if not isinstance(param, click.Option) or param.hidden:
            continue
        record = param.get_help_record(ctx)
        if record is None:
            continue
        panel = getattr(param, "rich_help_panel", None)
        if panel != current and rows:
            rows.append(f"{panel}:" if panel else None)
        elif panel and not rows:
            rows.append(f"{panel}:")
        current = panel
        rows.append((record[0], record[1]))
    return rows


def format_option_rows(rows: Sequence[HelpRow], *, max_help_col: int | None = None) -> str:
    """Format rows as a two-column table.

    The help column starts after the widest option (plus two spaces) but never
    beyond *max_help_col*; longer option strings put their help on the next line.
    """
    limit = max_help_col or DEFAULT_HELP_COL
    widths = [len(row[0]) for row in rows if isinstance(row, tuple)]
    col = min(max(widths, default=0) + 4, limit)
    lines: list[str] = []
    for row in rows:
        if row is None:
            lines.append("")
        elif isinstance(row, str):
            lines.append(row)
        else:
            opt, text = row
            first = f"    {opt}"
            if not text:
                lines.append(first)
            elif len(first) + 2 > col:
                lines.append(first)
                lines.append(" " * col + text)
            else:
                lines.append(first.ljust(col) + text)
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Argument types and completion
# ----------------------------------------------------------------------


def argtypes(*tags: str) -> Callable[[F], F]:
    """Declare the argument type tag of each positional argument."""
    unknown = [tag for tag in tags if tag not in ARGTYPES]
    if unknown:
        raise InternalError(f"unknown argtype tags: {', '.join(unknown)}")

    def decorator(func: F) -> F:
        func.argtypes = tuple(tags)  # type: ignore[attr-defined]
        return func

    return decorator


def command_argtypes(command: click.Command) -> tuple[str, ...]:
    """Return the argtype tags declared on *command* (``none`` if undeclared)."""
    tags = getattr(command.callback, "argtypes", None)
    if tags is None:
        return ("none",)
    return tuple(tags)


def find_command(root: click.Command, ctx: click.Context, names: Sequence[str]) -> tuple[click.Command, click.Context]:
    """Walk *names* down from *root*; raise :class:`UsageError` on unknown names."""
    command = root
    current = ctx
    for name in names:
        if not isinstance(command, click.Group):
            raise UsageError(f'"{current.command_path}" has no subcommands (got "{name}")')
        child = command.get_command(current, name)
        if child is None:
            raise UsageError(f'unknown command: "{current.command_path} {name}"')
        current = click.Context(child, info_name=name, parent=current)
        command = child
    return command, current


def completion_candidates(
    tag: str,
    prefix: str = "",
    *,
    config: AppConfig | None = None,
    profile_name: str | None = None,
    env: Mapping[str, str] | None = None,
) -> list[str]:
    """Return the completion tokens for *tag* starting with *prefix*.

    Cloud resources come from the active profile's listing caches (stale
    entries included); nothing is fetched.
    """
    if tag not in ARGTYPES:
        raise UsageError(f'unknown argtype "{tag}": must be one of {", ".join(ARGTYPES)}')
    if tag in ("file", "none"):
        return []
    resolved = config or load_config(env=env)
    store = ProfileStore(resolved, env=env)
    if tag == "tritonprofile":
        tokens = store.names()
    elif tag in _ARGTYPE_FIELDS:
        tokens = [f"{name}=" for name in _ARGTYPE_FIELDS[tag]]
    else:
        try:
            profile = resolve_profile(
                store, name=profile_name, env=env, default=resolved.profile
            )
        except ConfigError as exc:
            LOGGER.debug("no completion candidates: %s", exc)
            return []
        cache = ListingCache(resolved.cache_dir / profile.slug, ttl=resolved.cache_ttl)
        if tag == "tritonaffinityrule":
            names = _resource_tokens("instances", cache.get("instances", allow_stale=True) or [])
            tokens = [f"instance{op}{name}" for op in ("==", "!=", "==~", "!=~") for name in names]
        else:
            resource = _ARGTYPE_RESOURCES[tag]
            tokens = _resource_tokens(resource, cache.get(resource, allow_stale=True) or [])
    return sorted({token for token in tokens if token.startswith(prefix)})


def _resource_tokens(resource: str, items: Sequence[Mapping[str, Any]]) -> list[str]:
    tokens: list[str] = []
    for item in items:
        item_id = str(item.get("id") or "")
        name = item.get("name")
        if name and resource != "fwrules":
            tokens.append(str(name))
            if resource == "images" and item.get("version"):
                tokens.append(f"{name}@{item['version']}")
        if item_id:
            tokens.append(item_id.split("-", 1)[0])
    return tokens


def complete(tag: str) -> Callable[..., list[str]]:
    """Return a typer ``autocompletion`` callback for *tag*."""

    def _complete(ctx: typer.Context, incomplete: str) -> list[str]:
        root = ctx.find_root()
        profile_name = root.params.get("profile_name") if root.params else None
        config = root.obj.config if isinstance(root.obj, RuntimeContext) else None
        try:
            return completion_candidates(tag, incomplete, config=config, profile_name=profile_name)
        except TritonError as exc:
            LOGGER.debug("completion for %s failed: %s", tag, exc)
            return []

    return _complete


__all__ = [
    "ARGTYPES",
    "DispatchState",
    "OptionOccurrence",
    "RuntimeContext",
    "TritonCommand",
    "TritonGroup",
    "add_group",
    "argtypes",
    "build_api",
    "build_runtime",
    "command",
    "command_argtypes",
    "complete",
    "completion_candidates",
    "find_command",
    "format_option_rows",
    "get_runtime",
    "help_template",
    "interrupt_handler",
    "option_rows",
    "ordered_options",
    "render_help",
    "report_error",
]
