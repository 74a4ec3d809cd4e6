"""Command line interface entry point for tritoncli.

The root ``triton`` group lives here: global options, the subcommand tree
(composed from the sub-apps in this package) and the top-level shortcuts
such as ``triton ls`` for ``triton instance list``.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence

import typer

from .. import __version__
from ..dispatch import (
    DispatchState,
    TritonGroup,
    add_group,
    build_runtime,
    command,
    complete,
    interrupt_handler,
)
from ..logging import configure_verbosity
from . import (
    account,
    completion,
    fwrule,
    image,
    instance,
    instance_parts,
    migration,
    network,
    package,
    profile,
    rbac,
    volume,
)

app = typer.Typer(
    cls=TritonGroup,
    add_completion=False,
    pretty_exceptions_enable=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help=textwrap.dedent(
        """
        Triton CloudAPI command line interface.

        Manage instances, images, networks, volumes, firewall rules, RBAC and
        account settings on a Triton cloud. Run "triton help COMMAND" or
        "triton COMMAND -h" for help on a command.
        """
    ).strip(),
)

PROFILE_OPTION = typer.Option(
    None,
    "--profile",
    "-p",
    metavar="NAME",
    help="Triton client profile to use (default: TRITON_PROFILE or the current profile).",
    autocompletion=complete("tritonprofile"),
)
VERBOSE_OPTION = typer.Option(0, "--verbose", "-v", count=True, help="Verbose logging; repeat for wire tracing.")
CONNECTION_PANEL = "CloudAPI connection options"


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    profile_name: str | None = PROFILE_OPTION,
    version: bool = typer.Option(False, "--version", help="Print version and exit."),
    verbose: int = VERBOSE_OPTION,
    accept_version: str | None = typer.Option(
        None,
        "--accept-version",
        "-a",
        metavar="VER",
        help="A CloudAPI API version or semver range to request.",
        rich_help_panel=CONNECTION_PANEL,
    ),
    act_as: str | None = typer.Option(
        None,
        "--act-as",
        metavar="ACCOUNT",
        help="Masquerade as ACCOUNT (operator accounts only).",
        rich_help_panel=CONNECTION_PANEL,
    ),
    url: str | None = typer.Option(
        None, "--url", "-U", metavar="URL", help="CloudAPI URL.", rich_help_panel=CONNECTION_PANEL
    ),
    account_name: str | None = typer.Option(
        None, "--account", "-A", metavar="ACCOUNT", help="Account login name.", rich_help_panel=CONNECTION_PANEL
    ),
    user: str | None = typer.Option(
        None, "--user", "-u", metavar="USER", help="RBAC sub-user login name.", rich_help_panel=CONNECTION_PANEL
    ),
    key_id: str | None = typer.Option(
        None,
        "--key-id",
        "-k",
        metavar="FP",
        help="SSH key fingerprint used to sign requests.",
        rich_help_panel=CONNECTION_PANEL,
    ),
    insecure: bool | None = typer.Option(
        None,
        "--insecure",
        "-i",
        help="Do not validate the CloudAPI TLS certificate.",
        rich_help_panel=CONNECTION_PANEL,
    ),
    config_dir: str | None = typer.Option(
        None,
        "--config-dir",
        metavar="DIR",
        envvar="TRITON_CONFIG_DIR",
        help="Configuration directory (default: ~/.triton).",
    ),
) -> None:
    """Triton CloudAPI command line interface."""
    if version:
        typer.echo(f"Triton CLI {__version__}")
        raise typer.Exit(code=0)

    state = ctx.obj if isinstance(ctx.obj, DispatchState) else DispatchState()
    state.verbose = verbose
    configure_verbosity(verbose)
    ctx.obj = build_runtime(
        state,
        config_dir=config_dir,
        profile_name=profile_name,
        profile_overrides={
            "url": url,
            "account": account_name,
            "user": user,
            "keyId": key_id,
            "insecure": insecure,
            "actAsAccount": act_as,
        },
        accept_version=accept_version,
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Command tree
# ----------------------------------------------------------------------

add_group(instance.app, instance_parts.nic_app, "nic")
add_group(instance.app, instance_parts.snapshot_app, "snapshot")
add_group(instance.app, instance_parts.tag_app, "tag")
add_group(instance.app, instance_parts.metadata_app, "metadata")
add_group(instance.app, instance_parts.disk_app, "disk")
add_group(instance.app, instance_parts.fwrule_app, "fwrule")
add_group(instance.app, migration.app, "migration")
command(instance.app, "snapshots")(instance_parts.snapshot_list)
command(instance.app, "tags")(instance_parts.tag_list)
command(instance.app, "metadatas")(instance_parts.metadata_list)
command(instance.app, "disks")(instance_parts.disk_list)
command(instance.app, "fwrules")(instance_parts.instance_fwrule_list)
command(instance.app, "migrations")(migration.migration_list)

add_group(network.app, network.ip_app, "ip")
add_group(network.app, network.vlan_app, "vlan")
add_group(rbac.app, rbac.role_tags_app, "role-tags")

add_group(app, instance.app, "instance", "inst")
add_group(app, image.app, "image", "img")
add_group(app, package.app, "package", "pkg")
add_group(app, network.app, "network", "net")
add_group(app, volume.app, "volume", "vol")
add_group(app, fwrule.app, "fwrule")
add_group(app, rbac.app, "rbac")
add_group(app, account.key_app, "key")
add_group(app, account.datacenter_app, "datacenter", "dc")
add_group(app, profile.app, "profile")
add_group(app, account.account_app, "account")

command(app, "info", "whoami")(account.info)
command(app, "services")(account.services)
command(app, "completion")(completion.completion)
command(app, "help")(completion.help_command)

# Shortcuts for the most common subcommands.
command(app, "instances", "insts", "ls")(instance.instance_list)
command(app, "images", "imgs")(image.image_list)
command(app, "packages", "pkgs")(package.package_list)
command(app, "networks")(network.network_list)
command(app, "volumes", "vols")(volume.volume_list)
command(app, "fwrules")(fwrule.fwrule_list)
command(app, "keys")(account.key_list)
command(app, "profiles")(profile.profile_list)
command(app, "datacenters")(account.datacenter_list)
command(app, "create")(instance.instance_create)
command(app, "delete", "rm")(instance.instance_delete)
command(app, "start")(instance.instance_start)
command(app, "stop")(instance.instance_stop)
command(app, "reboot")(instance.instance_reboot)
command(app, "ip")(instance.instance_ip)


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    state = DispatchState()
    root = typer.main.get_command(app)
    with interrupt_handler(state.cancel):
        code = root.main(
            args=list(argv) if argv is not None else None,
            prog_name="triton",
            standalone_mode=False,
            obj=state,
        )
    raise SystemExit(code)


__all__ = ["app", "main"]
