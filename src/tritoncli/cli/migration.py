"""``triton instance migration`` commands."""
from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import typer

from ..common import human_duration, long_ago, short_id
from ..cloudapi import utcnow
from ..dispatch import argtypes, command, complete
from ..output import (
    JSON_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    ListingSpec,
    emit,
    print_json_compact,
    print_table,
    render_listing,
)
from ..resolver import parse_affinities
from ..watcher import MigrationWatcher
from .helpers import QUIET_OPTION, instance_arg, runtime_of, table_options

app = typer.Typer(help="List, get and manage instance migrations.", no_args_is_help=True)

MIGRATION_LISTING = ListingSpec(
    columns="shortid,phase,state,age",
    long_columns="machine,phase,state,created_timestamp",
    sort="created_timestamp",
)
PHASE_COLUMNS = ("phase", "state", "age", "runtime", "message")
AUTOMATIC_TERMINAL_PHASES = ("switch", "automatic", "abort")

WATCH_JSON_OPTION = typer.Option(False, "--json", "-j", help="JSON stream output.")
AFFINITY_OPTION = typer.Option(
    None,
    "--affinity",
    "-a",
    metavar="RULE",
    help=(
        "Affinity rules for selecting a server for this migration: instance==INST, "
        "instance!=INST, instance==~INST or instance!=~INST. Repeatable."
    ),
    autocompletion=complete("tritonaffinityrule"),
)


def _watch_option(what: str) -> Any:
    return typer.Option(False, "--wait", "-w", help=f"Wait for the {what} to complete.")


def _run_action(
    ctx: typer.Context,
    inst: str,
    action: str,
    *,
    wait: bool = False,
    json_output: bool = False,
    quiet: bool = False,
    affinity: Sequence[str] | None = None,
    terminal_phases: Sequence[str] | None = None,
) -> list[dict[str, Any]]:
    runtime = runtime_of(ctx)
    resolver = runtime.resolver
    instance_id = resolver.resolve_id("instances", inst)
    rules: list[str] | None = None
    if affinity:
        affinities = parse_affinities(affinity)
        resolved = resolver.resolve_affinities(affinities)
        rules = [aff.to_rule(rid) for aff, rid in zip(affinities, resolved)]
    with runtime.logger.operation(
        f"instance migration {action}",
        args={"affinity": list(affinity or [])},
        target={"kind": "migration", "instance": instance_id},
    ) as op:
        migration = runtime.api.migrate_machine(instance_id, action=action, affinity=rules)
        events: list[dict[str, Any]] = []
        if wait:
            watcher = MigrationWatcher(runtime.api, write=emit)
            events = watcher.watch(
                instance_id, json_output=json_output, quiet=quiet, terminal_phases=terminal_phases
            )
        elif json_output:
            print_json_compact(migration)
        op.success(f"Migration {action} requested for {instance_id}.", changed=1)
    return events


@command(app, "begin")
@argtypes("tritoninstance", "none")
def migration_begin(
    ctx: typer.Context,
    inst: str = instance_arg(),
    affinity: list[str] | None = AFFINITY_OPTION,
    wait: bool = _watch_option("creation"),
    json_output: bool = WATCH_JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Begins the migration for an instance."""
    _run_action(ctx, inst, "begin", wait=wait, json_output=json_output, quiet=quiet, affinity=affinity)


@command(app, "sync")
@argtypes("tritoninstance", "none")
def migration_sync(
    ctx: typer.Context,
    inst: str = instance_arg(),
    wait: bool = _watch_option("synchronization"),
    json_output: bool = WATCH_JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Synchronize the instance's migration data."""
    _run_action(ctx, inst, "sync", wait=wait, json_output=json_output, quiet=quiet)


@command(app, "switch")
@argtypes("tritoninstance", "none")
def migration_switch(
    ctx: typer.Context,
    inst: str = instance_arg(),
    wait: bool = _watch_option("switch"),
    json_output: bool = WATCH_JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Switch the instance over to the migrated copy."""
    _run_action(ctx, inst, "switch", wait=wait, json_output=json_output, quiet=quiet)


@command(app, "automatic")
@argtypes("tritoninstance", "none")
def migration_automatic(
    ctx: typer.Context,
    inst: str = instance_arg(),
    affinity: list[str] | None = AFFINITY_OPTION,
    wait: bool = _watch_option("migration"),
    json_output: bool = WATCH_JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Run a full migration (begin, sync and switch) on the server."""
    _run_action(
        ctx,
        inst,
        "automatic",
        wait=wait,
        json_output=json_output,
        quiet=quiet,
        affinity=affinity,
        terminal_phases=AUTOMATIC_TERMINAL_PHASES,
    )


@command(app, "pause")
@argtypes("tritoninstance", "none")
def migration_pause(ctx: typer.Context, inst: str = instance_arg(), json_output: bool = WATCH_JSON_OPTION) -> None:
    """Pause a running migration."""
    _run_action(ctx, inst, "pause", json_output=json_output)
    if not json_output:
        emit("Done - the migration is paused")


@command(app, "abort")
@argtypes("tritoninstance", "none")
def migration_abort(ctx: typer.Context, inst: str = instance_arg(), json_output: bool = WATCH_JSON_OPTION) -> None:
    """Abort a migration; the migrated copy is discarded."""
    _run_action(ctx, inst, "abort", json_output=json_output)
    if not json_output:
        emit("Done - the migration is aborted")


@command(app, "finalize")
@argtypes("tritoninstance", "none")
def migration_finalize(ctx: typer.Context, inst: str = instance_arg()) -> None:
    """The original source instance will be removed (cleaned up)."""
    _run_action(ctx, inst, "finalize")
    emit("Done - the migration is finalized")


@command(app, "watch")
@argtypes("tritoninstance", "none")
def migration_watch(
    ctx: typer.Context,
    inst: str = instance_arg(),
    json_output: bool = WATCH_JSON_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """Follow the progress of an instance's running migration."""
    runtime = runtime_of(ctx)
    instance_id = runtime.resolver.resolve_id("instances", inst)
    MigrationWatcher(runtime.api, write=emit).watch(instance_id, json_output=json_output, quiet=quiet)


@command(app, "estimate")
@argtypes("tritoninstance", "none")
def migration_estimate(ctx: typer.Context, inst: str = instance_arg(), json_output: bool = WATCH_JSON_OPTION) -> None:
    """Estimates the time required for the migration of an instance."""
    runtime = runtime_of(ctx)
    estimate = runtime.api.estimate_migration(runtime.resolver.resolve_id("instances", inst))
    if json_output:
        print_json_compact(estimate)
        return
    for key, value in sorted(estimate.items()):
        emit(f"{key}: {json.dumps(value) if isinstance(value, (dict, list)) else value}")


def phase_rows(migration: dict[str, Any]) -> list[dict[str, Any]]:
    """Rows for the ``Phases`` table of a migration record."""
    now = utcnow()
    rows: list[dict[str, Any]] = []
    for phase in migration.get("progress_history") or []:
        started = phase.get("started_timestamp")
        duration = phase.get("duration_ms")
        rows.append(
            {
                "phase": phase.get("phase"),
                "state": phase.get("state"),
                "age": long_ago(str(started), now) if started else None,
                "runtime": human_duration(duration / 1000) if isinstance(duration, (int, float)) else None,
                "message": phase.get("message"),
            }
        )
    return rows


@command(app, "get")
@argtypes("tritoninstance", "none")
def migration_get(ctx: typer.Context, inst: str = instance_arg(), json_output: bool = WATCH_JSON_OPTION) -> None:
    """Get instance migration details."""
    runtime = runtime_of(ctx)
    migration = runtime.api.get_migration(runtime.resolver.resolve_id("instances", inst))
    if json_output:
        print_json_compact(migration)
        return
    state = migration.get("state")
    emit(f"State:         {state}")
    emit(f"Created:       {migration.get('created_timestamp')}")
    emit(f"Automatic:     {json.dumps(migration.get('automatic'))}")
    if migration.get("duration_ms"):
        emit(f"Total runtime: {human_duration(migration['duration_ms'] / 1000)}")
    emit("Phases: ")
    print_table(phase_rows(migration), PHASE_COLUMNS)
    if state == "successful":
        emit("Migration finished successfully")
    elif state == "failed" or migration.get("error"):
        emit(f"Migration error: {migration.get('error')}")
    else:
        emit(f"Migration {state}")


@command(app, "list", "ls")
def migration_list(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show all of an account's migrations."""
    runtime = runtime_of(ctx)
    migrations = runtime.api.list_migrations()
    now = utcnow()
    rows = []
    for migration in migrations:
        row = dict(migration)
        row["shortid"] = short_id(str(migration.get("machine", "")))
        created = migration.get("created_timestamp")
        row["age"] = long_ago(str(created), now) if created else None
        rows.append(row)
    render_listing(
        rows, MIGRATION_LISTING, table_options(output, long, no_header, sort_by, False, json_output), raw=migrations
    )


__all__ = [
    "AUTOMATIC_TERMINAL_PHASES",
    "MIGRATION_LISTING",
    "app",
    "migration_begin",
    "migration_get",
    "migration_list",
    "phase_rows",
]
