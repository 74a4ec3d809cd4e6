"""On-disk listing cache.

Listings are stored one JSON file per resource type under
``<cache dir>/<profile slug>/``, so entries for different profiles never mix.
Writes go through a temp file and :func:`os.replace`; readers either see the
previous complete file or the new one.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

RESOURCE_TYPES = (
    "instances",
    "images",
    "packages",
    "networks",
    "volumes",
    "fwrules",
    "datacenters",
)


@dataclass(frozen=True)
class ListingCache:
    """Per-profile cache of CloudAPI listings."""

    root: Path
    ttl: float = 300.0

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def path_for(self, resource_type: str) -> Path:
        """Return the cache file for *resource_type*."""
        return self.root / f"{resource_type}.json"

    def get(self, resource_type: str, *, allow_stale: bool = False) -> list[Any] | None:
        """Return the cached listing, or ``None`` if missing, stale or corrupt.

        Shell completion passes *allow_stale* since any hint beats none.
        """
        path = self.path_for(resource_type)
        try:
            stat = path.stat()
        except FileNotFoundError:
            LOGGER.debug("cache miss for %s", path)
            return None
        if not allow_stale and self.ttl and time.time() - stat.st_mtime > self.ttl:
            LOGGER.debug("cache entry %s is stale", path)
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("ignoring unreadable cache file %s: %s", path, exc)
            return None
        if not isinstance(data, list):
            return None
        return data

    def put(self, resource_type: str, items: list[Any]) -> None:
        """Atomically replace the cached listing for *resource_type*."""
        path = self.path_for(resource_type)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            LOGGER.info("not caching %s: %s", resource_type, exc)
            return
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(items, handle)
            os.replace(tmp_path, path)
        except OSError as exc:
            LOGGER.info("error caching %s: %s", resource_type, exc)
        finally:
            tmp_path.unlink(missing_ok=True)

    def invalidate(self, resource_type: str | None = None) -> None:
        """Drop one cached listing, or all of them."""
        types = [resource_type] if resource_type else list(RESOURCE_TYPES)
        for name in types:
            self.path_for(name).unlink(missing_ok=True)


__all__ = ["ListingCache", "RESOURCE_TYPES"]
