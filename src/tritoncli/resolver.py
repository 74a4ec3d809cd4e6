"""Name, short id and UUID resolution for CloudAPI resources.

A token that is already a canonical UUID resolves to ``{"id": token}``
without any request. Anything else is looked up in the resource listing
(optionally served from :class:`tritoncli.cache.ListingCache`): first by
exact name, then by id prefix.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .cache import ListingCache
from .cloudapi import CloudApi
from .common import is_uuid, norm_short_id
from .errors import AmbiguousResourceError, ResourceNotFoundError, TritonError, UsageError

LOGGER = logging.getLogger(__name__)

#: resource type -> (singular label used in messages, cache key)
RESOURCE_LABELS = {
    "instances": "instance",
    "images": "image",
    "packages": "package",
    "networks": "network",
    "volumes": "volume",
    "fwrules": "firewall rule",
}

_AFFINITY_RE = re.compile(r"^(?:(instance|inst|container)(==~|!=~|==|!=|=~|=))?(.*)$")


@dataclass(frozen=True)
class Affinity:
    """One parsed ``--affinity`` rule."""

    key: str
    op: str
    strict: bool
    value: str
    raw: str

    def to_rule(self, value: str | None = None) -> str:
        """Return the CloudAPI ``affinity`` string, e.g. ``instance!=~<id>``."""
        return f"{self.key}{self.op}{'' if self.strict else '~'}{value or self.value}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "key": self.key,
            "op": self.op,
            "strict": self.strict,
            "val": self.value,
            "raw": self.raw,
        }


def parse_affinities(rules: Iterable[str]) -> list[Affinity]:
    """Parse ``--affinity`` values, rejecting strict/non-strict mixes."""
    affinities: list[Affinity] = []
    for raw in rules:
        match = _AFFINITY_RE.match(raw)
        value = match.group(3) if match else ""
        if not match or not value:
            raise UsageError(f'invalid affinity: "{raw}"')
        op = match.group(2) or "=="
        strict = not op.endswith("~")
        op = op.rstrip("~")
        if op == "=":
            op = "=="
        affinity = Affinity(key="instance", op=op, strict=strict, value=value, raw=raw)
        if affinities and affinities[-1].strict != affinity.strict:
            last = affinities[-1]
            raise UsageError(
                "mixed strict and non-strict affinities are not supported: "
                f'"{last.raw}" ({_strictness(last.strict)}) and '
                f'"{raw}" ({_strictness(strict)})'
            )
        affinities.append(affinity)
    return affinities


def _strictness(strict: bool) -> str:
    return "strict" if strict else "non-strict"


def locality_from_affinities(
    affinities: Sequence[Affinity], resolved_ids: Sequence[str]
) -> dict[str, object] | None:
    """Translate affinities into the older ``locality`` hint mapping."""
    if not affinities:
        return None
    near = [rid for aff, rid in zip(affinities, resolved_ids) if aff.op == "=="]
    far = [rid for aff, rid in zip(affinities, resolved_ids) if aff.op == "!="]
    locality: dict[str, object] = {"strict": affinities[-1].strict}
    if near:
        locality["near"] = near
    if far:
        locality["far"] = far
    return locality


class Resolver:
    """Resolve user tokens to resource records for one profile."""

    def __init__(
        self,
        api: CloudApi,
        *,
        cache: ListingCache | None = None,
        use_cache: bool = False,
    ) -> None:
        """Bind the facade and, optionally, the profile's listing cache."""
        self.api = api
        self.cache = cache
        self.use_cache = use_cache
        self._fetchers: dict[str, Callable[[], list[dict[str, Any]]]] = {
            "instances": api.list_machines,
            "images": api.list_images,
            "packages": api.list_packages,
            "networks": api.list_networks,
            "volumes": api.list_volumes,
            "fwrules": api.list_firewall_rules,
        }

    def listing(self, resource_type: str, *, use_cache: bool | None = None) -> list[dict[str, Any]]:
        """Return the listing for *resource_type*, refreshing the cache on fetch."""
        if resource_type not in self._fetchers:
            raise TritonError(f"unknown resource type: {resource_type}")
        wants_cache = self.use_cache if use_cache is None else use_cache
        if wants_cache and self.cache is not None:
            cached = self.cache.get(resource_type)
            if cached is not None:
                LOGGER.debug("using cached %s listing", resource_type)
                return cached
        items = self._fetchers[resource_type]()
        if self.cache is not None:
            self.cache.put(resource_type, items)
        return items

    def resolve(
        self, resource_type: str, token: str, *, use_cache: bool | None = None
    ) -> dict[str, Any]:
        """Resolve *token* to ``{"id": token}`` (UUIDs) or a listing record."""
        if is_uuid(token):
            return {"id": token}
        label = RESOURCE_LABELS.get(resource_type, resource_type)
        items = self.listing(resource_type, use_cache=use_cache)

        if resource_type == "images":
            found = _match_image_name(items, token)
            if found is not None:
                return found
        else:
            named = [item for item in items if item.get("name") == token]
            if len(named) == 1:
                return named[0]
            if len(named) > 1:
                ids = [str(item.get("id")) for item in named]
                raise AmbiguousResourceError(
                    f'{label} name "{token}" is ambiguous: matches {len(named)} '
                    f'{label}s ({", ".join(ids)})',
                    ids,
                )

        prefix = norm_short_id(token)
        matches = []
        if prefix is not None:
            matches = [item for item in items if str(item.get("id", "")).startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            ids = [str(item.get("id")) for item in matches]
            raise AmbiguousResourceError(
                f'no {label} with name "{token}" was found and "{token}" is an '
                f'ambiguous short id (matches {", ".join(ids)})',
                ids,
            )
        raise ResourceNotFoundError(f'no {label} with name or short id "{token}" was found')

    def resolve_id(self, resource_type: str, token: str, *, use_cache: bool | None = None) -> str:
        """Shorthand for ``resolve(...)["id"]``."""
        return str(self.resolve(resource_type, token, use_cache=use_cache)["id"])

    # -- full records ----------------------------------------------------

    def get_instance(self, token: str) -> dict[str, Any]:
        """Return the full instance record for *token*.

        Docker style 32+ character ids are normalised to the instance UUID.
        """
        normalized = norm_short_id(token)
        if is_uuid(token) or (normalized and is_uuid(normalized)):
            return self.api.get_machine(token if is_uuid(token) else str(normalized))
        return self.resolve("instances", token)

    def get_image(self, token: str) -> dict[str, Any]:
        """Return the full, active image record for *token*."""
        if is_uuid(token):
            image = self.api.get_image(token)
            if image.get("state") not in (None, "active"):
                raise TritonError(f"image {token} is not active")
            return image
        return self.resolve("images", token)

    def get_package(self, token: str) -> dict[str, Any]:
        """Return the full, active package record for *token*."""
        if is_uuid(token):
            package = self.api.get_package(token)
            if package.get("active") is False:
                raise TritonError(f"package {token} is not active")
            return package
        return self.resolve("packages", token)

    def get_network(self, token: str) -> dict[str, Any]:
        """Return the full network record for *token*."""
        if is_uuid(token):
            return self.api.get_network(token)
        return self.resolve("networks", token)

    def get_volume(self, token: str) -> dict[str, Any]:
        """Return the full volume record for *token*."""
        if is_uuid(token):
            return self.api.get_volume(token)
        return self.resolve("volumes", token)

    def get_firewall_rule(self, token: str) -> dict[str, Any]:
        """Return the full firewall rule record for *token* (id or short id)."""
        if is_uuid(token):
            return self.api.get_firewall_rule(token)
        return self.resolve("fwrules", token)

    # -- affinity --------------------------------------------------------

    def resolve_affinities(self, affinities: Sequence[Affinity]) -> list[str]:
        """Resolve affinity values to instance ids, in rule order."""
        resolved: list[str] = []
        for affinity in affinities:
            if is_uuid(affinity.value):
                resolved.append(affinity.value)
            else:
                instance = self.get_instance(affinity.value)
                LOGGER.debug("affinity %s resolved to %s", affinity.raw, instance.get("id"))
                resolved.append(str(instance["id"]))
        return resolved


def _match_image_name(items: Sequence[Mapping[str, Any]], token: str) -> dict[str, Any] | None:
    """Match ``name`` or ``name@version``; several versions pick the latest."""
    name, sep, version = token.partition("@")
    if sep and name and version:
        matches = [
            item for item in items if item.get("name") == name and item.get("version") == version
        ]
    else:
        matches = [item for item in items if item.get("name") == token]
    if not matches:
        return None
    latest = sorted(matches, key=lambda item: str(item.get("published_at") or ""))[-1]
    return dict(latest)


__all__ = [
    "Affinity",
    "RESOURCE_LABELS",
    "Resolver",
    "locality_from_affinities",
    "parse_affinities",
]
