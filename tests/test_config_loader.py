"""Configuration loader and profile store tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from tritoncli.config import (
    DEFAULT_ACCEPT_VERSION,
    AppConfig,
    ConfigError,
    Profile,
    ProfileStore,
    load_config,
    resolve_profile,
)


def _write_profile(config: AppConfig, name: str, **fields: object) -> None:
    config.profiles_dir.mkdir(parents=True, exist_ok=True)
    payload = {"url": "https://cloudapi.test", "account": "alice", "keyId": "SHA256:abc"}
    payload.update(fields)
    (config.profiles_dir / f"{name}.json").write_text(json.dumps(payload), encoding="utf-8")


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(tmp_path, env={})

    assert isinstance(config, AppConfig)
    assert config.config_dir == tmp_path
    assert config.profiles_dir == tmp_path / "profiles.d"
    assert config.cache_dir == tmp_path / "cache"
    assert config.logs_dir == tmp_path / "logs"
    assert config.cache_ttl == 300.0
    assert config.wait_interval == 1.0
    assert config.wait_timeout is None
    assert config.accept_version == DEFAULT_ACCEPT_VERSION
    assert config.max_concurrency == 10


def test_config_dir_from_environment(tmp_path: Path) -> None:
    """TRITON_CONFIG_DIR selects the config directory."""
    config = load_config(env={"TRITON_CONFIG_DIR": str(tmp_path / "alt")})

    assert config.config_dir == tmp_path / "alt"
    assert config.config_file == tmp_path / "alt" / "config.json"


def test_load_config_reads_config_file(tmp_path: Path) -> None:
    """Values are loaded from ``config.json``."""
    (tmp_path / "config.json").write_text(
        json.dumps({"cache_ttl": 60, "wait_timeout": 120, "profile": "west"}),
        encoding="utf-8",
    )

    config = load_config(tmp_path, env={})

    assert config.cache_ttl == 60.0
    assert config.wait_timeout == 120.0
    assert config.profile == "west"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """TRITONCLI_* variables override file settings."""
    (tmp_path / "config.json").write_text(json.dumps({"cache_ttl": 60}), encoding="utf-8")
    env = {
        "TRITONCLI_CACHE_TTL": "5",
        "TRITONCLI_WAIT_INTERVAL": "2.5",
        "TRITONCLI_MAX_CONCURRENCY": "3",
    }

    config = load_config(tmp_path, env=env)

    assert config.cache_ttl == 5.0
    assert config.wait_interval == 2.5
    assert config.max_concurrency == 3


def test_explicit_overrides_win(tmp_path: Path) -> None:
    """Programmatic overrides beat the environment."""
    config = load_config(tmp_path, env={"TRITONCLI_CACHE_TTL": "5"}, overrides={"cache_ttl": 0})

    assert config.cache_ttl == 0.0


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A config file that is not an object raises ConfigError."""
    (tmp_path / "config.json").write_text("[1, 2]\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="is not an object"):
        load_config(tmp_path, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    (tmp_path / "config.json").write_text(json.dumps({"unknown": 1}), encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(tmp_path, env={})


def test_non_positive_wait_interval_raises(tmp_path: Path) -> None:
    """The polling interval must be positive."""
    with pytest.raises(ConfigError, match="wait_interval must be greater than zero"):
        load_config(tmp_path, env={"TRITONCLI_WAIT_INTERVAL": "0"})


def test_profile_requires_url_account_and_key_id() -> None:
    """Missing required fields are all named."""
    with pytest.raises(ConfigError, match='"account", "keyId"'):
        Profile.from_dict({"name": "x", "url": "https://cloudapi.test"})


def test_profile_round_trips_on_disk_representation() -> None:
    """camelCase fields map to attributes and back."""
    profile = Profile.from_dict(
        {
            "name": "west",
            "url": "https://cloudapi.test/",
            "account": "alice",
            "keyId": "SHA256:abc",
            "insecure": "true",
            "roles": "ops, dev",
        }
    )

    assert profile.url == "https://cloudapi.test"
    assert profile.insecure is True
    assert profile.roles == ("ops", "dev")
    assert profile.to_dict() == {
        "name": "west",
        "url": "https://cloudapi.test",
        "account": "alice",
        "keyId": "SHA256:abc",
        "insecure": True,
        "roles": ["ops", "dev"],
    }


def test_env_profile_falls_back_to_sdc_variables(tmp_path: Path) -> None:
    """SDC_* variables fill in fields whose TRITON_* variable is unset."""
    config = load_config(tmp_path, env={})
    store = ProfileStore(
        config,
        env={"TRITON_URL": "https://cloudapi.test", "SDC_ACCOUNT": "bob", "SDC_KEY_ID": "SHA256:k"},
    )

    assert store.names() == ["env"]
    assert store.load("env").account == "bob"


def test_set_current_dash_switches_to_previous(tmp_path: Path) -> None:
    """``-`` swaps back to the profile that was current before."""
    config = load_config(tmp_path, env={})
    _write_profile(config, "east")
    _write_profile(config, "west")
    store = ProfileStore(config, env={})

    store.set_current("east")
    assert store.set_current("west") == "east"
    store.set_current("-")

    assert store.current_name() == "east"
    assert store.read_pointer()["oldProfile"] == "west"


def test_delete_clears_current_pointer(tmp_path: Path) -> None:
    """Deleting the current profile leaves no current profile."""
    config = load_config(tmp_path, env={})
    _write_profile(config, "east")
    store = ProfileStore(config, env={})
    store.set_current("east")

    store.delete("east")

    assert store.current_name() is None
    assert store.names() == []


def test_resolve_profile_precedence(tmp_path: Path) -> None:
    """An explicit name beats TRITON_PROFILE, which beats the current pointer."""
    config = load_config(tmp_path, env={})
    for name in ("east", "west", "north"):
        _write_profile(config, name, account=name)
    store = ProfileStore(config, env={})
    store.set_current("north")

    assert resolve_profile(store, env={}).name == "north"
    assert resolve_profile(store, env={"TRITON_PROFILE": "west"}).name == "west"
    assert resolve_profile(store, name="east", env={"TRITON_PROFILE": "west"}).name == "east"


def test_resolve_profile_applies_overrides(tmp_path: Path) -> None:
    """Command line overrides patch the stored profile; ``None`` values are ignored."""
    config = load_config(tmp_path, env={})
    _write_profile(config, "east")
    store = ProfileStore(config, env={})

    profile = resolve_profile(
        store, name="east", env={}, overrides={"account": "carol", "user": None, "insecure": True}
    )

    assert profile.account == "carol"
    assert profile.user is None
    assert profile.insecure is True


def test_resolve_profile_without_any_source_raises(tmp_path: Path) -> None:
    """No stored profile and no environment is a configuration error."""
    store = ProfileStore(load_config(tmp_path, env={}), env={})

    with pytest.raises(ConfigError, match="no profile configured"):
        resolve_profile(store, env={})
