"""``triton image`` commands."""
from __future__ import annotations

import json
import sys
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import typer

from ..cloudapi import UPDATE_IMAGE_FIELDS
from ..common import fields_from_args, human_duration, is_uuid, kv_to_obj, short_id, split_comma_values
from ..dispatch import argtypes, command, complete
from ..editor import confirm
from ..errors import TritonError, UsageError
from ..metadata import parse_kv_args
from ..output import (
    JSON_OPTION,
    JSON_STREAM_OPTION,
    LONG_OPTION,
    NO_HEADER_OPTION,
    OUTPUT_OPTION,
    SORT_OPTION,
    ListingSpec,
    emit,
    print_json_compact,
    render_listing,
    warn,
)
from ..pipeline import run_parallel
from .helpers import (
    FORCE_OPTION,
    WAIT_OPTION,
    WAIT_TIMEOUT_OPTION,
    effective_timeout,
    instance_arg,
    print_record,
    runtime_of,
    table_options,
)

app = typer.Typer(help="List, get, create and manage images.", no_args_is_help=True)

IMAGE_FILTERS = ("name", "os", "version", "public", "state", "owner", "type")
IMAGE_LISTING = ListingSpec(
    columns="shortid,name,version,flags,os,type,pubdate",
    long_columns="id,name,version,state,flags,os,type,pubdate",
    sort="published_at",
)


def _image_arg(metavar: str = "IMAGE") -> Any:
    return typer.Argument(
        ..., metavar=metavar, help="Image name, name@version, id or short id.", autocompletion=complete("tritonimage")
    )


def image_row(image: Mapping[str, Any]) -> dict[str, Any]:
    """Add the client-side ``shortid``, ``pubdate``, ``pub``, ``size`` and ``flags`` columns."""
    row = dict(image)
    row["shortid"] = short_id(str(image.get("id", "")))
    published = image.get("published_at")
    if published:
        row["pubdate"] = str(published)[:10]
        text = str(published)
        if "." in text and text.endswith("Z"):
            text = text.split(".", 1)[0] + "Z"
        row["pub"] = text
    files = image.get("files") or []
    if files:
        row["size"] = files[0].get("size")
    flags = ""
    if image.get("origin"):
        flags += "I"
    if image.get("public"):
        flags += "P"
    if image.get("state") != "active":
        flags += "X"
    row["flags"] = flags or None
    return row


def load_fields_file(path: str, fields: Mapping[str, str]) -> dict[str, object]:
    """Read a JSON object of update fields from *path* (``-`` for stdin)."""
    text = sys.stdin.read() if path == "-" else Path(path).expanduser().read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise UsageError(f"invalid JSON in \"{path}\": {exc}", cause=exc) from exc
    if not isinstance(data, dict):
        raise UsageError(f"\"{path}\" must contain a JSON object")
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise UsageError(f"unknown field(s) in \"{path}\": {', '.join(unknown)}")
    return data


def _repr(image: Mapping[str, Any]) -> str:
    return f"{image.get('id')} ({image.get('name')}@{image.get('version')})"


@command(app, "list", "ls")
@argtypes("none")
def image_list(
    ctx: typer.Context,
    filters: list[str] | None = typer.Argument(
        None, metavar="[FILTERS...]", help="FIELD=VALUE filters on name, os, version, public, state, owner or type."
    ),
    all_images: bool = typer.Option(
        False, "--all", "-a", help='List all images, not just "active" ones (same as state=all).'
    ),
    output: list[str] | None = OUTPUT_OPTION,
    long: bool = LONG_OPTION,
    no_header: bool = NO_HEADER_OPTION,
    sort_by: list[str] | None = SORT_OPTION,
    json_output: bool = JSON_OPTION,
    json_stream: bool = JSON_STREAM_OPTION,
) -> None:
    """List images."""
    runtime = runtime_of(ctx)
    query: dict[str, object] = dict(kv_to_obj(filters or [], IMAGE_FILTERS))
    if all_images:
        query["state"] = "all"
    images = runtime.api.list_images(**query)
    if not query:
        runtime.cache.put("images", images)
    render_listing(
        [image_row(image) for image in images],
        IMAGE_LISTING,
        table_options(output, long, no_header, sort_by, json_output, json_stream),
        raw=images,
    )


@command(app, "get")
@argtypes("tritonimage")
def image_get(ctx: typer.Context, image: str = _image_arg(), json_output: bool = JSON_OPTION) -> None:
    """Get an image."""
    runtime = runtime_of(ctx)
    print_record(runtime.resolver.get_image(image), json_output=json_output)


@command(app, "create")
@argtypes("tritoninstance", "none", "none")
def image_create(
    ctx: typer.Context,
    inst: str = instance_arg("The instance to image (it must be stopped)."),
    image_name: str = typer.Argument(..., metavar="IMAGE-NAME"),
    image_version: str = typer.Argument(..., metavar="IMAGE-VERSION"),
    description: str | None = typer.Option(None, "--description", "-d", metavar="DESC"),
    homepage: str | None = typer.Option(None, "--homepage", metavar="URL"),
    eula: str | None = typer.Option(None, "--eula", metavar="URL", help="End User License Agreement URL."),
    acl: list[str] | None = typer.Option(
        None, "--acl", metavar="ID", help="Account id to give access to this private image. Repeatable."
    ),
    tags: list[str] | None = typer.Option(
        None, "--tag", "-t", metavar="TAG", help="Add a tag (KEY=VALUE, @FILE or JSON). Repeatable."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Go through the motions without creating."),
    wait: bool = WAIT_OPTION,
    wait_timeout: int | None = WAIT_TIMEOUT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a new image from a stopped instance."""
    runtime = runtime_of(ctx)
    instance = runtime.resolver.get_instance(inst)
    fields: dict[str, object] = {
        "description": description,
        "homepage": homepage,
        "eula": eula,
        "acl": list(acl) if acl else None,
        "tags": parse_kv_args("tag", tags, warn=warn) if tags else None,
    }
    label = f"{image_name}@{image_version}"
    if not json_output:
        emit(f"Creating image {label} from instance {instance.get('name') or instance['id']}"
             f"{' (dry-run)' if dry_run else ''}")
    if dry_run:
        return
    started = time.monotonic()
    with runtime.logger.operation(
        "image create", args={"name": image_name, "version": image_version}, target={"kind": "image"}
    ) as op:
        created = runtime.api.create_image_from_machine(
            machine=str(instance["id"]), name=image_name, version=image_version, **fields
        )
        if json_output:
            print_json_compact(created)
        else:
            emit(f"Creating image {label} ({created.get('id')})")
        if wait:
            created = runtime.api.wait_for_image_states(
                str(created["id"]), ("active", "failed"), timeout=effective_timeout(runtime, wait_timeout)
            )
            if created.get("state") != "active":
                error = created.get("error") or {}
                detail = f": ({error.get('code')}) {error.get('message')}" if error else ""
                raise TritonError(f"failed to create image {created.get('id')} ({label}){detail}")
            if json_output:
                print_json_compact(created)
            else:
                emit(f"Created image {created.get('id')} ({label}) in {human_duration(time.monotonic() - started)}")
        runtime.cache.invalidate("images")
        op.success(f"Created image {created.get('id')}.", changed=1)


@command(app, "delete", "rm")
@argtypes("tritonimage")
def image_delete(
    ctx: typer.Context,
    images: list[str] = typer.Argument(..., metavar="IMAGE...", autocompletion=complete("tritonimage")),
    force: bool = FORCE_OPTION,
) -> None:
    """Delete one or more images."""
    runtime = runtime_of(ctx)
    resolver = runtime.resolver
    found = run_parallel(resolver.get_image, list(images), max_workers=runtime.config.max_concurrency)
    if len(found) == 1:
        confirm(f"Delete image {_repr(found[0])}?", assume_yes=force)
    else:
        confirm(f"Delete {len(found)} images?", assume_yes=force)
    api = runtime.api

    def one(image: Mapping[str, Any]) -> str:
        api.delete_image(str(image["id"]))
        emit(f"Deleted image {_repr(image)}")
        return str(image["id"])

    with runtime.logger.operation("image delete", args={"images": images}, target={"kind": "image"}) as op:
        deleted = run_parallel(one, found, max_workers=runtime.config.max_concurrency)
        runtime.cache.invalidate("images")
        op.success(f"Deleted {len(deleted)} image(s).", changed=len(deleted))


@command(app, "clone")
@argtypes("tritonimage")
def image_clone(ctx: typer.Context, image: str = _image_arg(), json_output: bool = JSON_OPTION) -> None:
    """Copy a shared image into your account."""
    runtime = runtime_of(ctx)
    source = runtime.resolver.get_image(image)
    with runtime.logger.operation("image clone", args={}, target={"kind": "image", "id": source.get("id")}) as op:
        cloned = runtime.api.clone_image(str(source["id"]))
        if json_output:
            print_json_compact(cloned)
        else:
            emit(f"Cloned image {source.get('id')} to {_repr(cloned)}")
        runtime.cache.invalidate("images")
        op.success(f"Cloned image {source.get('id')}.", changed=1)


@command(app, "export")
@argtypes("tritonimage", "none")
def image_export(
    ctx: typer.Context,
    image: str = _image_arg(),
    manta_path: str = typer.Argument(..., metavar="MANTA-PATH"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not actually export."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Export an image to Manta."""
    runtime = runtime_of(ctx)
    source = runtime.resolver.get_image(image)
    emit(f"Exporting image {image} to {manta_path}")
    if dry_run:
        return
    with runtime.logger.operation(
        "image export", args={"manta_path": manta_path}, target={"kind": "image", "id": source.get("id")}
    ) as op:
        info = runtime.api.export_image(str(source["id"]), manta_path=manta_path)
        if json_output:
            print_json_compact(info)
        else:
            emit(f"    Manta URL: {info.get('manta_url')}")
            emit(f"Manifest path: {info.get('manifest_path')}")
            emit(f"   Image path: {info.get('image_path')}")
        op.success(f"Exported image {source.get('id')}.", changed=1)


@command(app, "update")
@argtypes("tritonimage", "tritonupdateimagefield")
def image_update(
    ctx: typer.Context,
    image: str = _image_arg(),
    fields: list[str] | None = typer.Argument(None, metavar="[FIELD=VALUE...]"),
    file: str | None = typer.Option(
        None, "--file", "-f", metavar="JSON-FILE", help='A JSON file of fields to update ("-" for stdin).'
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Update an image's name, version, description and other fields."""
    runtime = runtime_of(ctx)
    updates: dict[str, object] = {}
    if file:
        updates.update(load_fields_file(file, UPDATE_IMAGE_FIELDS))
    updates.update(fields_from_args(fields or [], UPDATE_IMAGE_FIELDS))
    if not updates:
        raise TritonError("no fields given for image update")
    source = runtime.resolver.get_image(image)
    with runtime.logger.operation(
        "image update", args={"fields": sorted(updates)}, target={"kind": "image", "id": source.get("id")}
    ) as op:
        updated = runtime.api.update_image(str(source["id"]), **updates)
        if json_output:
            print_json_compact(updated)
        else:
            emit(f"Updated image {image} (fields: {', '.join(sorted(updates))})")
        runtime.cache.invalidate("images")
        op.success(f"Updated image {source.get('id')}.", changed=1)


@command(app, "share")
@argtypes("tritonimage", "none")
def image_share(
    ctx: typer.Context,
    image: str = _image_arg(),
    account: str = typer.Argument(..., metavar="ACCOUNT", help="The full account UUID."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Go through the motions without actually sharing."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Share an image with another account.

    Only images owned by the account can be shared.
    """
    _change_acl(ctx, image, account, share=True, dry_run=dry_run, json_output=json_output)


@command(app, "unshare")
@argtypes("tritonimage", "none")
def image_unshare(
    ctx: typer.Context,
    image: str = _image_arg(),
    account: str = typer.Argument(..., metavar="ACCOUNT", help="The full account UUID."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Go through the motions without actually unsharing."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Stop sharing an image with another account."""
    _change_acl(ctx, image, account, share=False, dry_run=dry_run, json_output=json_output)


def _change_acl(
    ctx: typer.Context, image: str, account: str, *, share: bool, dry_run: bool, json_output: bool
) -> None:
    if not is_uuid(account):
        raise UsageError(f'invalid account "{account}": must be a full account UUID')
    runtime = runtime_of(ctx)
    source = runtime.resolver.get_image(image)
    verb = "share" if share else "unshare"
    if dry_run:
        return
    with runtime.logger.operation(
        f"image {verb}", args={"account": account}, target={"kind": "image", "id": source.get("id")}
    ) as op:
        change = runtime.api.share_image if share else runtime.api.unshare_image
        updated = change(str(source["id"]), account)
        if json_output:
            print_json_compact(updated)
        else:
            emit(f"{verb.capitalize()}d image {image} with account {account}")
        runtime.cache.invalidate("images")
        op.success(f"{verb.capitalize()}d image {source.get('id')}.", changed=1)


@command(app, "tag")
@argtypes("tritonimage", "none")
def image_tag(
    ctx: typer.Context,
    image: str = _image_arg(),
    tags: list[str] | None = typer.Argument(None, metavar="[NAME=VALUE...]"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Go through the motions without actually tagging."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Set new image tags, removing the existing ones."""
    values = parse_kv_args("tag", tags or [], warn=warn)
    if not values:
        raise UsageError("incorrect number of args: must specify at least one NAME=VALUE tag pair")
    runtime = runtime_of(ctx)
    source = runtime.resolver.get_image(image)
    if dry_run:
        return
    with runtime.logger.operation(
        "image tag", args={"tags": sorted(values)}, target={"kind": "image", "id": source.get("id")}
    ) as op:
        updated = runtime.api.update_image(str(source["id"]), tags=values)
        if json_output:
            print_json_compact(updated)
        else:
            emit(f"Updated image {image} with tags {json.dumps(values, separators=(',', ':'))}")
        runtime.cache.invalidate("images")
        op.success(f"Tagged image {source.get('id')}.", changed=1)


@command(app, "copy", "cp")
@argtypes("tritonimage", "tritondatacenter")
def image_copy(
    ctx: typer.Context,
    image: str = _image_arg(),
    datacenter: str = typer.Argument(
        ..., metavar="DATACENTER", help="Target datacenter name.", autocompletion=complete("tritondatacenter")
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Go through the motions without actually copying."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Copy an image to another datacenter.

    Use `triton datacenters` to show the available datacenter names.
    """
    runtime = runtime_of(ctx)
    source = runtime.resolver.get_image(image)
    if dry_run:
        return
    with runtime.logger.operation(
        "image copy", args={"datacenter": datacenter}, target={"kind": "image", "id": source.get("id")}
    ) as op:
        copied = runtime.api.copy_image_to_datacenter(str(source["id"]), datacenter)
        if json_output:
            print_json_compact(copied)
        else:
            emit(f"Copied image {_repr(copied)} to datacenter {datacenter}")
        op.success(f"Copied image {source.get('id')} to {datacenter}.", changed=1)


@command(app, "wait")
@argtypes("tritonimage")
def image_wait(
    ctx: typer.Context,
    images: list[str] = typer.Argument(..., metavar="IMAGE...", autocompletion=complete("tritonimage")),
    states: list[str] | None = typer.Option(
        None, "--states", "-s", metavar="STATES", help="Comma separated states to wait for (default: active,failed)."
    ),
    timeout: int | None = typer.Option(None, "--timeout", min=1, metavar="SECONDS"),
) -> None:
    """Wait for images to reach one of a set of states."""
    runtime = runtime_of(ctx)
    wanted: Sequence[str] = tuple(split_comma_values(states)) or ("active", "failed")
    wait_for = effective_timeout(runtime, timeout)
    api, resolver = runtime.api, runtime.resolver

    def one(token: str) -> dict[str, Any]:
        image = api.get_image(str(resolver.get_image(token)["id"]))
        if image.get("state") in wanted:
            emit(f"State of image {_repr(image)} is {image.get('state')}")
            return image
        final = api.wait_for_image_states(str(image["id"]), wanted, timeout=wait_for)
        emit(f"Image {_repr(final)} moved to state {final.get('state')}")
        return final

    emit(f"Waiting for {len(images)} image(s) to enter state (states: {', '.join(wanted)})")
    run_parallel(one, list(images), max_workers=runtime.config.max_concurrency)


__all__ = ["IMAGE_LISTING", "app", "image_list", "image_row", "load_fields_file"]
