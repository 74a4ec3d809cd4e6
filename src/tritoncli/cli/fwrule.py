"""``triton fwrule`` commands."""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import typer

from ..cloudapi import UPDATE_FWRULE_FIELDS
from ..common import fields_from_args
from ..dispatch import argtypes, command, complete
from ..editor import confirm
from ..errors import UsageError
from ..output import (
    JSON_OPTION,
    JSON_STREAM_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    emit,
    print_json_compact,
    render_listing,
)
from ..pipeline import primary_secondary, run_parallel
from .helpers import FORCE_OPTION, print_record, runtime_of, table_options
from .instance import INSTANCE_LISTING, instance_rows
from .instance_parts import FWRULE_LISTING, fwrule_rows

app = typer.Typer(help="List, get, create and manage firewall rules.", no_args_is_help=True)


def _rule_arg() -> Any:
    return typer.Argument(..., metavar="FWRULE", help="Firewall rule id or short id.", autocompletion=complete("tritonfwrule"))


def _rules_arg() -> Any:
    return typer.Argument(..., metavar="FWRULE...", help="Firewall rule ids or short ids.", autocompletion=complete("tritonfwrule"))


@command(app, "list", "ls")
@argtypes("none")
def fwrule_list(
    ctx: typer.Context,
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List firewall rules."""
    runtime = runtime_of(ctx)
    rules = runtime.api.list_firewall_rules()
    runtime.cache.put("fwrules", rules)
    render_listing(
        fwrule_rows(rules),
        FWRULE_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=rules,
    )


@command(app, "get")
@argtypes("tritonfwrule")
def fwrule_get(ctx: typer.Context, rule: str = _rule_arg(), json_output: bool = JSON_OPTION) -> None:
    """Show a firewall rule."""
    runtime = runtime_of(ctx)
    print_record(runtime.resolver.get_firewall_rule(rule), json_output=json_output)


@command(app, "create")
@argtypes("none")
def fwrule_create(
    ctx: typer.Context,
    rule: str = typer.Argument(..., metavar="RULE", help='Rule text, e.g. "FROM any TO all vms ALLOW tcp PORT 22".'),
    disabled: bool = typer.Option(False, "--disabled", "-d", help="Create the rule disabled."),
    description: str | None = typer.Option(None, "--description", "-D", metavar="DESC"),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a firewall rule."""
    runtime = runtime_of(ctx)
    with runtime.logger.operation("fwrule create", args={"rule": rule}, target={"kind": "fwrule"}) as op:
        created = runtime.api.create_firewall_rule(rule=rule, enabled=not disabled, description=description)
        if json_output:
            print_json_compact(created)
        else:
            emit(f"Created firewall rule {created.get('id')}{'' if created.get('enabled') else ' (disabled)'}")
        runtime.cache.invalidate("fwrules")
        op.success(f"Created firewall rule {created.get('id')}.", changed=1)


@command(app, "update")
@argtypes("tritonfwrule", "tritonupdatefwrulefield")
def fwrule_update(
    ctx: typer.Context,
    rule: str = _rule_arg(),
    fields: list[str] | None = typer.Argument(None, metavar="[FIELD=VALUE...]"),
    rule_text: str | None = typer.Option(None, "--rule", "-r", metavar="RULE", help="New rule text."),
) -> None:
    """Update a firewall rule's rule text, enabled flag, log flag or description."""
    runtime = runtime_of(ctx)
    updates = fields_from_args(fields or [], UPDATE_FWRULE_FIELDS)
    if rule_text is not None:
        updates["rule"] = rule_text
    if not updates:
        raise UsageError("no fields given for firewall rule update")
    rule_id = runtime.resolver.resolve_id("fwrules", rule)
    with runtime.logger.operation("fwrule update", args=updates, target={"kind": "fwrule", "id": rule_id}) as op:
        runtime.api.update_firewall_rule(rule_id, **updates)
        emit(f"Updated firewall rule {rule_id} (fields: {', '.join(sorted(updates))})")
        runtime.cache.invalidate("fwrules")
        op.success(f"Updated firewall rule {rule_id}.", changed=1)


def _each_rule(ctx: typer.Context, rules: list[str], name: str, call: Callable[[Any], Callable[[str], object]], done: str) -> None:
    runtime = runtime_of(ctx)
    api, resolver = runtime.api, runtime.resolver
    apply = call(api)

    def one(token: str) -> str:
        rule_id = resolver.resolve_id("fwrules", token)
        apply(rule_id)
        emit(f"{done} {rule_id}")
        return rule_id

    with runtime.logger.operation(name, args={"rules": rules}, target={"kind": "fwrule"}) as op:
        changed = run_parallel(one, list(rules), max_workers=runtime.config.max_concurrency)
        runtime.cache.invalidate("fwrules")
        op.success(f"{done} {len(changed)} rule(s).", changed=len(changed))


@command(app, "enable")
@argtypes("tritonfwrule")
def fwrule_enable(ctx: typer.Context, rules: list[str] = _rules_arg()) -> None:
    """Enable one or more firewall rules."""
    _each_rule(ctx, rules, "fwrule enable", lambda api: api.enable_firewall_rule, "Enabled firewall rule")


@command(app, "disable")
@argtypes("tritonfwrule")
def fwrule_disable(ctx: typer.Context, rules: list[str] = _rules_arg()) -> None:
    """Disable one or more firewall rules."""
    _each_rule(ctx, rules, "fwrule disable", lambda api: api.disable_firewall_rule, "Disabled firewall rule")


@command(app, "delete", "rm")
@argtypes("tritonfwrule")
def fwrule_delete(ctx: typer.Context, rules: list[str] = _rules_arg(), force: bool = FORCE_OPTION) -> None:
    """Delete one or more firewall rules."""
    noun = "rule" if len(rules) == 1 else "rules"
    confirm(f"Delete firewall {noun} {', '.join(rules)}?", assume_yes=force)
    _each_rule(ctx, rules, "fwrule delete", lambda api: api.delete_firewall_rule, "Deleted rule")


@command(app, "instances", "insts")
@argtypes("tritonfwrule")
def fwrule_instances(
    ctx: typer.Context,
    rule: str = _rule_arg(),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List instances a firewall rule applies to."""
    runtime = runtime_of(ctx)
    api, resolver = runtime.api, runtime.resolver
    rule_id = resolver.resolve_id("fwrules", rule)
    instances, images = primary_secondary(
        lambda: api.list_firewall_rule_machines(rule_id),
        lambda: resolver.listing("images", use_cache=True),
        label="images",
    )
    render_listing(
        instance_rows(instances, images),
        INSTANCE_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=instances,
    )


__all__ = ["app", "fwrule_list"]
