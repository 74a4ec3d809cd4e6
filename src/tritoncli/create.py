"""Instance creation: option parsing and the ``CreateMachine`` request.

:func:`plan_instance_create` runs the validation and resolution stages in
order and stops at the first error. :func:`create_instance` performs (or, in
dry-run mode, fakes) the create call and the optional wait.
"""
from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .cloudapi import CloudApi
from .common import is_uuid
from .errors import MultiError, TritonError, UsageError
from .metadata import Warn, metadata_from_options, tags_from_options
from .resolver import Affinity, Resolver, parse_affinities

LOGGER = logging.getLogger(__name__)

DRY_RUN_ID = "beefbeef-4c0e-11e5-86cd-a7fd38d2a50b"
DRY_RUN_NAME = "this-is-a-dry-run"
CREATE_DONE_STATES = ("running", "failed")
DEFAULT_VOLUME_TYPE = "tritonnfs"
VOLUME_MODES = ("ro", "rw")
NIC_FIELDS = ("ipv4_uuid", "ipv4_ips")

#: ordered boolean flags -> CreateMachine body keys
ORDERED_FLAGS = {
    "firewall": "firewall_enabled",
    "deletion_protection": "deletion_protection",
    "delegate_dataset": "delegate_dataset",
}

_VOLUME_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]+$")
_VOLUME_SIZE_RE = re.compile(r"^([1-9]\d*)([gmGM])?$")
_MIB_PER_UNIT = {"g": 1024, "m": 1}


# -- volumes ------------------------------------------------------------


def parse_volume_size(size: str) -> int:
    """Convert ``10G``/``512M``/``2048`` into mebibytes."""
    match = _VOLUME_SIZE_RE.match(size)
    if not match:
        raise UsageError(f'size "{size}" is not a valid volume size')
    unit = (match.group(2) or "m").lower()
    return int(match.group(1)) * _MIB_PER_UNIT[unit]


def parse_volume_mount(spec: str) -> dict[str, str]:
    """Parse ``NAME:/MOUNT[:ro|rw]`` into a CreateMachine volume object."""
    parts = spec.split(":")
    if len(parts) not in (2, 3):
        raise UsageError(f'invalid volume "{spec}": must be NAME:/MOUNTPOINT[:ro|rw]')
    name, mountpoint = parts[0], parts[1]
    mode = parts[2] if len(parts) == 3 else "rw"
    if not _VOLUME_NAME_RE.match(name):
        raise UsageError(f'invalid volume name "{name}" in "{spec}"')
    if not mountpoint.startswith("/") or not mountpoint.strip("/") or "\0" in mountpoint:
        raise UsageError(
            f'invalid mountpoint "{mountpoint}" in "{spec}": must be an absolute path'
        )
    if mode not in VOLUME_MODES:
        raise UsageError(f'invalid volume mode "{mode}" in "{spec}": must be "ro" or "rw"')
    return {"name": name, "type": DEFAULT_VOLUME_TYPE, "mode": mode, "mountpoint": mountpoint}


def parse_volumes(specs: Sequence[str]) -> list[dict[str, str]]:
    """Parse every ``--volume`` value in order."""
    return [parse_volume_mount(spec) for spec in specs]


# -- disks --------------------------------------------------------------


def parse_disks(specs: Sequence[str]) -> list[dict[str, Any]]:
    """Parse ``--disk`` values: JSON objects, or a single ``@FILE`` JSON array.

    ``size`` must be a non-negative number of MiB or ``"remaining"``; only
    the last disk may claim the remaining space.
    """
    if len(specs) == 1 and specs[0].startswith("@"):
        path = Path(specs[0][1:]).expanduser()
        if not path.is_file():
            raise TritonError(f'disks path "{specs[0][1:]}" is not an existing file')
        disks = _load_json(path.read_text(encoding="utf-8"), specs[0][1:])
        if not isinstance(disks, list):
            raise UsageError(f'disks file "{specs[0][1:]}" must hold a JSON array')
    else:
        disks = [_load_json(spec, spec) for spec in specs]

    errors: list[UsageError] = []
    parsed: list[dict[str, Any]] = []
    for index, disk in enumerate(disks):
        if not isinstance(disk, dict):
            errors.append(UsageError(f"disk must be a JSON object: {json.dumps(disk)}"))
            continue
        disk = dict(disk)
        size = disk.get("size")
        if size == "remaining":
            if index != len(disks) - 1:
                errors.append(
                    UsageError(f'only the last disk may have size "remaining": {json.dumps(disk)}')
                )
        elif size is not None:
            number = _as_number(size)
            if number is None or number < 0:
                errors.append(
                    UsageError(
                        "SIZE must be a positive number or \"remaining\": "
                        f"'{json.dumps(disk)}'"
                    )
                )
            else:
                disk["size"] = number
        parsed.append(disk)
    if len(errors) > 1:
        raise MultiError(errors)
    if errors:
        raise errors[0]
    return parsed


def _load_json(text: str, label: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise TritonError(f"{label} is not valid JSON", cause=exc) from exc


def _as_number(value: object) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    return None


# -- nics ---------------------------------------------------------------


def parse_nic(spec: str) -> dict[str, Any]:
    """Parse ``ipv4_uuid=NET[,ipv4_ips=IP]`` into a NIC object."""
    nic: dict[str, Any] = {}
    for pair in (part.strip() for part in spec.split(",")):
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        if not sep or not value:
            raise UsageError(f'invalid NIC option "{pair}": must be NICOPT=VALUE')
        if key not in NIC_FIELDS:
            raise UsageError(
                f'invalid NIC option "{key}": must be one of {", ".join(NIC_FIELDS)}'
            )
        nic[key] = [value] if key == "ipv4_ips" else value
    if "ipv4_uuid" not in nic:
        raise UsageError(f'NIC "{spec}" is missing the required "ipv4_uuid" option')
    if not is_uuid(nic["ipv4_uuid"]):
        raise UsageError(f'NIC "{spec}": ipv4_uuid must be a full network UUID')
    return nic


def parse_nics(specs: Sequence[str]) -> list[dict[str, Any]]:
    """Parse every ``--nic`` value, rejecting two NICs on one network."""
    nics: list[dict[str, Any]] = []
    seen: set[str] = set()
    for spec in specs:
        nic = parse_nic(spec)
        network = nic["ipv4_uuid"]
        if network in seen:
            raise UsageError(f"only one NIC per network is allowed: {network}")
        seen.add(network)
        nics.append(nic)
    return nics


# -- plan ---------------------------------------------------------------


@dataclass
class CreateOptions:
    """The parsed command line of ``instance create``."""

    image: str
    package: str
    name: str | None = None
    networks: list[str] = field(default_factory=list)
    nics: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    disks: list[str] = field(default_factory=list)
    affinity: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    brand: str | None = None
    allow_shared_images: bool = False
    encrypted: bool = False
    ordered: list[tuple[str, Any]] = field(default_factory=list)


@dataclass
class CreatePlan:
    """A fully resolved create request."""

    body: dict[str, Any]
    image: dict[str, Any]
    package: dict[str, Any]
    affinities: list[Affinity] = field(default_factory=list)

    @property
    def image_label(self) -> str:
        """``name@version`` of the image, or its id when only the id is known."""
        if self.image.get("name"):
            return f"{self.image['name']}@{self.image.get('version')}"
        return str(self.image.get("id"))


def plan_instance_create(
    resolver: Resolver, options: CreateOptions, *, warn: Warn | None = None
) -> CreatePlan:
    """Validate and resolve *options* into a :class:`CreatePlan`, stage by stage."""
    volumes = parse_volumes(options.volumes)
    disks = parse_disks(options.disks)
    nics = parse_nics(options.nics)
    if options.networks and nics:
        raise UsageError("cannot specify both --network and --nic")

    affinities = parse_affinities(options.affinity)
    affinity_rules: list[str] = []
    if affinities:
        resolved = resolver.resolve_affinities(affinities)
        affinity_rules = [aff.to_rule(rid) for aff, rid in zip(affinities, resolved)]

    metadata_occurrences = [
        (key, value)
        for key, value in options.ordered
        if key in ("metadata", "metadata_file", "script")
    ]
    metadata = metadata_from_options(metadata_occurrences, warn=warn)
    tags = tags_from_options(options.tags, warn=warn)

    image = resolver.resolve("images", options.image, use_cache=True)
    package = resolver.resolve("packages", options.package)
    network_ids = [resolver.resolve_id("networks", token) for token in options.networks]

    body: dict[str, Any] = {}
    if options.name:
        body["name"] = options.name
    body["image"] = image["id"]
    body["package"] = package["id"]
    if network_ids:
        body["networks"] = network_ids
    elif nics:
        body["networks"] = nics
    if affinity_rules:
        body["affinity"] = affinity_rules
    for key, value in (metadata or {}).items():
        body[f"metadata.{key}"] = value
    for key, value in (tags or {}).items():
        body[f"tag.{key}"] = value
    for key, value in options.ordered:
        if key in ORDERED_FLAGS:
            body[ORDERED_FLAGS[key]] = bool(value)
    if options.brand:
        body["brand"] = options.brand
    if volumes:
        body["volumes"] = volumes
    if disks:
        body["disks"] = disks
    if options.allow_shared_images:
        body["allow_shared_images"] = True
    if options.encrypted:
        body["encrypted"] = True
    LOGGER.debug("create-instance body: %s", body)
    return CreatePlan(body=body, image=image, package=package, affinities=affinities)


def create_instance(
    api: CloudApi,
    plan: CreatePlan,
    *,
    dry_run: bool = False,
    wait: bool = False,
    wait_timeout: float | None = None,
    on_created: Callable[[Mapping[str, Any]], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[dict[str, Any], float]:
    """Create the instance (or fake it) and optionally wait for it.

    Returns the last known instance record and the elapsed seconds. Raises
    :class:`TritonError` if the instance ends up ``failed``.
    """
    start = clock()
    if dry_run:
        instance: dict[str, Any] = {"id": DRY_RUN_ID, "name": DRY_RUN_NAME}
    else:
        try:
            instance = api.create_machine(**plan.body)
        except TritonError as exc:
            raise TritonError(
                f"error creating instance: {exc}", cause=exc, exit_status=exc.exit_status
            ) from exc
    if on_created is not None:
        on_created(instance)
    if not wait:
        return instance, clock() - start

    if dry_run:
        instance = dict(instance, state="running")
    else:
        instance = api.wait_for_machine_states(
            str(instance["id"]), CREATE_DONE_STATES, timeout=wait_timeout
        )
    elapsed = clock() - start
    if instance.get("state") != "running":
        raise TritonError(
            f"failed to create instance {instance.get('name')} ({instance.get('id')})"
        )
    return instance, elapsed


__all__ = [
    "CREATE_DONE_STATES",
    "CreateOptions",
    "CreatePlan",
    "DRY_RUN_ID",
    "DRY_RUN_NAME",
    "create_instance",
    "parse_disks",
    "parse_nic",
    "parse_nics",
    "parse_volume_mount",
    "parse_volume_size",
    "parse_volumes",
    "plan_instance_create",
]
