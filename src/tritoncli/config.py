"""Configuration and profile loading for tritoncli.

Two kinds of settings are resolved here.

CLI settings (:class:`AppConfig`) are merged from, in order of precedence:

1. Built-in defaults.
2. ``config.json`` inside the config directory (``~/.triton`` by default,
   ``TRITON_CONFIG_DIR`` or ``--config-dir`` to override).
3. Environment variables prefixed with ``TRITONCLI_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting and values are
coerced via PyYAML's ``safe_load`` so that booleans and numbers are parsed
naturally, e.g.::

    export TRITONCLI_CACHE_TTL=60
    export TRITONCLI_WAIT_INTERVAL=2.5

Profiles (:class:`Profile`) describe one CloudAPI endpoint and identity. They
live in ``profiles.d/<name>.json``; ``profile.json`` points at the current one.
A synthetic ``env`` profile is assembled from ``TRITON_*`` variables (with the
legacy ``SDC_*`` names as a fallback).
"""
from __future__ import annotations

import json
import os
import re
import tempfile
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

from .common import slug
from .errors import ConfigError

ENV_PREFIX = "TRITONCLI_"
CONFIG_DIR_ENV_VAR = "TRITON_CONFIG_DIR"
PROFILE_ENV_VAR = "TRITON_PROFILE"
DEFAULT_CONFIG_DIR = "~/.triton"
ENV_PROFILE_NAME = "env"
DEFAULT_ACCEPT_VERSION = "~9||~8"

PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# (profile field, TRITON_* name, legacy SDC_* name)
PROFILE_ENV_VARS: tuple[tuple[str, str, str], ...] = (
    ("url", "TRITON_URL", "SDC_URL"),
    ("account", "TRITON_ACCOUNT", "SDC_ACCOUNT"),
    ("user", "TRITON_USER", "SDC_USER"),
    ("keyId", "TRITON_KEY_ID", "SDC_KEY_ID"),
    ("insecure", "TRITON_TLS_INSECURE", "SDC_TLS_INSECURE"),
)

PROFILE_FIELDS = ("name", "url", "account", "user", "keyId", "insecure", "actAsAccount", "roles")
REQUIRED_PROFILE_FIELDS = ("url", "account", "keyId")


@dataclass(frozen=True)
class AppConfig:
    """Resolved CLI settings."""

    config_dir: Path
    config_file: Path
    profiles_dir: Path
    cache_dir: Path
    logs_dir: Path
    cache_ttl: float
    wait_interval: float
    wait_timeout: float | None
    accept_version: str
    request_timeout: float
    max_concurrency: int
    profile: str | None

    @property
    def current_profile_file(self) -> Path:
        """Return the path of the current-profile pointer file."""
        return self.config_dir / "profile.json"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_dir": str(self.config_dir),
            "config_file": str(self.config_file),
            "profiles_dir": str(self.profiles_dir),
            "cache_dir": str(self.cache_dir),
            "logs_dir": str(self.logs_dir),
            "cache_ttl": self.cache_ttl,
            "wait_interval": self.wait_interval,
            "wait_timeout": self.wait_timeout,
            "accept_version": self.accept_version,
            "request_timeout": self.request_timeout,
            "max_concurrency": self.max_concurrency,
            "profile": self.profile,
        }


DEFAULTS: dict[str, object] = {
    "cache_dir": None,  # derived from the config dir when absent
    "logs_dir": None,  # derived from the config dir when absent
    "cache_ttl": 300.0,
    "wait_interval": 1.0,
    "wait_timeout": None,
    "accept_version": DEFAULT_ACCEPT_VERSION,
    "request_timeout": 60.0,
    "max_concurrency": 10,
    "profile": None,
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def default_config_dir(env: Mapping[str, str] | None = None) -> Path:
    """Return the config directory honouring ``TRITON_CONFIG_DIR``."""
    resolved_env = os.environ if env is None else env
    return Path(resolved_env.get(CONFIG_DIR_ENV_VAR) or DEFAULT_CONFIG_DIR).expanduser()


def load_config(
    config_dir: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = dict(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    directory = (
        Path(config_dir).expanduser() if config_dir else default_config_dir(resolved_env)
    )
    config_path = directory / "config.json"

    file_values = _load_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    _validate_structure(merged)
    return _build_app_config(directory, config_path, merged)


def _load_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f'"{path}" is not an object')
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    concurrency = raw.get("max_concurrency")
    if concurrency is not None and _expect_int(concurrency, "max_concurrency", default=1) < 1:
        raise ConfigError("max_concurrency must be at least 1.")


def _build_app_config(
    config_dir: Path,
    config_file: Path,
    raw: Mapping[str, object],
) -> AppConfig:
    cache_value = raw.get("cache_dir")
    cache_dir = _to_path(cache_value) if cache_value else config_dir / "cache"
    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else config_dir / "logs"

    wait_timeout_value = raw.get("wait_timeout")
    wait_timeout = (
        None
        if wait_timeout_value in (None, "", 0)
        else _expect_positive_float(wait_timeout_value, "wait_timeout", default=600.0)
    )
    profile_value = raw.get("profile")

    return AppConfig(
        config_dir=config_dir,
        config_file=config_file,
        profiles_dir=config_dir / "profiles.d",
        cache_dir=cache_dir,
        logs_dir=logs_dir,
        cache_ttl=_expect_non_negative_float(raw.get("cache_ttl"), "cache_ttl", default=300.0),
        wait_interval=_expect_positive_float(
            raw.get("wait_interval"), "wait_interval", default=1.0
        ),
        wait_timeout=wait_timeout,
        accept_version=str(raw.get("accept_version") or DEFAULT_ACCEPT_VERSION),
        request_timeout=_expect_positive_float(
            raw.get("request_timeout"), "request_timeout", default=60.0
        ),
        max_concurrency=_expect_int(raw.get("max_concurrency"), "max_concurrency", default=10),
        profile=str(profile_value) if profile_value else None,
    )


# ----------------------------------------------------------------------
# Profiles
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Profile:
    """One CloudAPI endpoint plus the identity used to talk to it."""

    name: str
    url: str
    account: str
    key_id: str
    user: str | None = None
    insecure: bool = False
    act_as_account: str | None = None
    roles: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, name: str | None = None) -> Profile:
        """Build a profile from its on-disk (camelCase) representation."""
        profile_name = str(name or data.get("name") or "")
        if not profile_name:
            raise ConfigError("profile is missing a name")
        missing = [key for key in REQUIRED_PROFILE_FIELDS if not data.get(key)]
        if missing:
            joined = ", ".join(f'"{key}"' for key in missing)
            raise ConfigError(f'profile "{profile_name}" is missing {joined}')
        roles_raw = data.get("roles") or ()
        if isinstance(roles_raw, str):
            roles = tuple(part.strip() for part in roles_raw.split(",") if part.strip())
        elif isinstance(roles_raw, (list, tuple)):
            roles = tuple(str(role) for role in roles_raw)
        else:
            raise ConfigError(f'profile "{profile_name}" has invalid "roles"')
        user = data.get("user")
        act_as = data.get("actAsAccount")
        return cls(
            name=profile_name,
            url=str(data["url"]).rstrip("/"),
            account=str(data["account"]),
            key_id=str(data["keyId"]),
            user=str(user) if user else None,
            insecure=_coerce_bool(data.get("insecure"), f"profile {profile_name} insecure"),
            act_as_account=str(act_as) if act_as else None,
            roles=roles,
        )

    def to_dict(self) -> dict[str, object]:
        """Return the on-disk representation (no private key material)."""
        payload: dict[str, object] = {
            "name": self.name,
            "url": self.url,
            "account": self.account,
            "keyId": self.key_id,
        }
        if self.user:
            payload["user"] = self.user
        if self.insecure:
            payload["insecure"] = True
        if self.act_as_account:
            payload["actAsAccount"] = self.act_as_account
        if self.roles:
            payload["roles"] = list(self.roles)
        return payload

    @property
    def slug(self) -> str:
        """Filesystem-safe identity used to key listing caches."""
        return slug({"account": self.act_as_account or self.account, "url": self.url})


class ProfileStore:
    """Read and write profiles under ``<config dir>/profiles.d``."""

    def __init__(self, config: AppConfig, env: Mapping[str, str] | None = None) -> None:
        """Bind the store to *config* and the process environment."""
        self._config = config
        self._env = dict(os.environ if env is None else env)

    @property
    def profiles_dir(self) -> Path:
        """Directory holding one JSON file per profile."""
        return self._config.profiles_dir

    def path_for(self, name: str) -> Path:
        """Return the file backing the profile *name*."""
        return self.profiles_dir / f"{name}.json"

    def names(self) -> list[str]:
        """Return every known profile name, ``env`` first when defined."""
        names: list[str] = []
        if self.env_profile_data():
            names.append(ENV_PROFILE_NAME)
        if self.profiles_dir.is_dir():
            names.extend(sorted(path.stem for path in self.profiles_dir.glob("*.json")))
        return names

    def env_profile_data(self) -> dict[str, object]:
        """Return the raw ``env`` profile assembled from environment variables."""
        data: dict[str, object] = {}
        for key, triton_name, sdc_name in PROFILE_ENV_VARS:
            value = self._env.get(triton_name)
            if value in (None, ""):
                value = self._env.get(sdc_name)
            if value in (None, ""):
                continue
            data[key] = value
        if not data:
            return {}
        data["name"] = ENV_PROFILE_NAME
        return data

    def load_raw(self, name: str) -> dict[str, object]:
        """Return the stored mapping for *name* without validation."""
        if name == ENV_PROFILE_NAME:
            data = self.env_profile_data()
            if not data:
                raise ConfigError(
                    'no "env" profile: TRITON_URL, TRITON_ACCOUNT and TRITON_KEY_ID are unset'
                )
            return data
        path = self.path_for(name)
        if not path.exists():
            raise ConfigError(f'no such profile: "{name}"')
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f'error loading profile "{name}" from {path}: {exc}') from exc
        if not isinstance(data, dict):
            raise ConfigError(f'profile file "{path}" is not an object')
        data["name"] = name
        return data

    def load(self, name: str) -> Profile:
        """Load and validate the profile *name*."""
        return Profile.from_dict(self.load_raw(name), name=name)

    def list(self) -> list[dict[str, object]]:
        """Return raw profile mappings for every known profile."""
        profiles = []
        for name in self.names():
            try:
                profiles.append(self.load_raw(name))
            except ConfigError:
                continue
        return profiles

    def save(self, profile: Profile) -> Path:
        """Atomically persist *profile* to ``profiles.d``."""
        validate_profile_name(profile.name)
        path = self.path_for(profile.name)
        atomic_write_json(path, profile.to_dict())
        return path

    def delete(self, name: str) -> None:
        """Remove the profile *name* (clearing the current pointer if needed)."""
        if name == ENV_PROFILE_NAME:
            raise ConfigError('cannot delete the "env" profile')
        path = self.path_for(name)
        if not path.exists():
            raise ConfigError(f'no such profile: "{name}"')
        path.unlink()
        pointer = self.read_pointer()
        if pointer.get("profile") == name:
            pointer.pop("profile", None)
            self.write_pointer(pointer)

    def read_pointer(self) -> dict[str, object]:
        """Return the contents of ``profile.json`` (empty mapping if missing)."""
        path = self._config.current_profile_file
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"error reading {path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def write_pointer(self, payload: Mapping[str, object]) -> None:
        """Atomically rewrite ``profile.json``."""
        atomic_write_json(self._config.current_profile_file, dict(payload))

    def current_name(self) -> str | None:
        """Return the name stored in ``profile.json`` if any."""
        value = self.read_pointer().get("profile")
        return str(value) if value else None

    def set_current(self, name: str) -> str | None:
        """Make *name* current and return the previously current profile.

        ``-`` switches back to the previous profile.
        """
        pointer = self.read_pointer()
        previous = pointer.get("profile")
        if name == "-":
            old = pointer.get("oldProfile")
            if not old:
                raise ConfigError('"oldProfile" is not set in config')
            name = str(old)
        self.load(name)
        pointer["profile"] = name
        if previous and previous != name:
            pointer["oldProfile"] = previous
        self.write_pointer(pointer)
        return str(previous) if previous else None


def resolve_profile(
    store: ProfileStore,
    *,
    name: str | None = None,
    env: Mapping[str, str] | None = None,
    default: str | None = None,
    overrides: Mapping[str, object] | None = None,
) -> Profile:
    """Choose and load the active profile.

    Precedence: explicit *name* (``-p``), ``TRITON_PROFILE``, the config default,
    ``profile.json``, then ``env``. *overrides* (``--url``, ``--account``,
    ``--user``, ``--key-id``, ``--insecure``, ``--act-as``) patch the result; when
    they alone describe a complete profile no stored profile is required.
    """
    resolved_env = os.environ if env is None else env
    chosen = (
        name
        or resolved_env.get(PROFILE_ENV_VAR)
        or default
        or store.current_name()
    )
    patch = {key: value for key, value in (overrides or {}).items() if value not in (None, "")}

    base: dict[str, object]
    if chosen:
        base = store.load_raw(chosen)
    else:
        base = store.env_profile_data()
        if not base and not patch:
            raise ConfigError(
                "no profile configured: create one with \"triton profile create\" "
                "or set TRITON_URL, TRITON_ACCOUNT and TRITON_KEY_ID"
            )
        base.setdefault("name", ENV_PROFILE_NAME)

    base.update(patch)
    return Profile.from_dict(base)


def validate_profile_name(name: str) -> str:
    """Ensure *name* can be used as a profile file name."""
    if name == ENV_PROFILE_NAME:
        raise ConfigError('"env" is a reserved profile name')
    if not PROFILE_NAME_RE.match(name):
        raise ConfigError(f'invalid profile name: "{name}"')
    return name


def atomic_write_json(path: Path, payload: object) -> None:
    """Write *payload* as JSON to *path* via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=4, sort_keys=False)
            handle.write("\n")
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


# ----------------------------------------------------------------------
# Coercion helpers
# ----------------------------------------------------------------------


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _coerce_bool(value: object, label: str) -> bool:
    if value in (None, ""):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes"}:
            return True
        if lowered in {"0", "false", "no"}:
            return False
    raise ConfigError(f"invalid boolean for {label}: {value!r}")


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULT_ACCEPT_VERSION",
    "ENV_PROFILE_NAME",
    "Profile",
    "ProfileStore",
    "atomic_write_json",
    "default_config_dir",
    "load_config",
    "resolve_profile",
    "validate_profile_name",
]
