"""Completion, help formatting and listing helper tests."""
from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from tritoncli.cache import ListingCache
from tritoncli.config import Profile, ProfileStore, load_config
from tritoncli.dispatch import argtypes, completion_candidates, format_option_rows, render_help
from tritoncli.errors import InternalError, UsageError
from tritoncli.output import cell, sort_items

WEB0 = "3d51f2d5-46f2-4da5-bb04-3238f2f64768"
DB0 = "9c1f0a7e-5d1e-4c5e-8f0b-4c3c2b1a0f99"


@pytest.fixture
def env(tmp_path: Path) -> dict[str, str]:
    return {"TRITON_CONFIG_DIR": str(tmp_path / "triton")}


def _seed_profile(env: dict[str, str]) -> ListingCache:
    config = load_config(env=env)
    store = ProfileStore(config, env=env)
    profile = Profile(name="east", url="https://cloudapi.test", account="alice", key_id="SHA256:k")
    store.save(profile)
    store.set_current("east")
    return ListingCache(config.cache_dir / profile.slug, ttl=config.cache_ttl)


def test_profile_names_complete_from_disk(env: dict[str, str]) -> None:
    _seed_profile(env)

    assert completion_candidates("tritonprofile", "", env=env) == ["east"]
    assert completion_candidates("tritonprofile", "w", env=env) == []


def test_instances_complete_from_stale_cache(env: dict[str, str]) -> None:
    """Completion never fetches; old cache entries are still offered."""
    cache = _seed_profile(env)
    cache.put("instances", [{"id": WEB0, "name": "web0"}, {"id": DB0, "name": "db0"}])
    old = time.time() - 3600
    os.utime(cache.path_for("instances"), (old, old))

    assert completion_candidates("tritoninstance", "", env=env) == ["3d51f2d5", "9c1f0a7e", "db0", "web0"]
    assert completion_candidates("tritonaffinityrule", "instance!=~w", env=env) == ["instance!=~web0"]


def test_datacenters_complete_from_listing_cache(env: dict[str, str]) -> None:
    cache = _seed_profile(env)
    cache.put(
        "datacenters",
        [{"name": "us-east-1", "url": "https://east.test"}, {"name": "us-west-1", "url": "https://west.test"}],
    )

    assert completion_candidates("tritondatacenter", "us-w", env=env) == ["us-west-1"]


def test_update_fields_complete_with_equals(env: dict[str, str]) -> None:
    assert completion_candidates("tritonupdatefwrulefield", "", env=env) == [
        "description=",
        "enabled=",
        "log=",
        "rule=",
    ]
    assert completion_candidates("tritonupdatevlanfield", "n", env=env) == ["name="]
    assert completion_candidates("file", "", env=env) == []


def test_unknown_completion_tag_is_rejected(env: dict[str, str]) -> None:
    with pytest.raises(UsageError, match='unknown argtype "tritonbogus"'):
        completion_candidates("tritonbogus", env=env)


def test_argtypes_rejects_unknown_tags() -> None:
    with pytest.raises(InternalError, match="unknown argtype tags: tritonbogus"):
        argtypes("tritoninstance", "tritonbogus")


def test_format_option_rows_aligns_and_wraps() -> None:
    rows = [
        "Wait options:",
        ("-w, --wait", "Wait for completion."),
        None,
        ("--a-really-long-option-name VALUE", "Help on next line."),
    ]

    text = format_option_rows(rows, max_help_col=20)

    assert text.splitlines() == [
        "Wait options:",
        "    -w, --wait      Wait for completion.",
        "",
        "    --a-really-long-option-name VALUE",
        " " * 20 + "Help on next line.",
    ]


def test_render_help_substitutes_placeholders() -> None:
    template = "\nUsage:\n    {{name}} {{cmd}} {{usage}}\n\n{{options}}\n"

    assert render_help(template, name="triton", cmd="ip", usage="INST", options="    -h\n") == (
        "Usage:\n    triton ip INST\n\n    -h\n"
    )


def test_cell_rendering() -> None:
    assert cell(None) == "-"
    assert cell(True) == "true"
    assert cell(["a", "b"]) == "a,b"
    assert cell([]) == "-"
    assert cell({"a": 1}) == '{"a":1}'
    assert cell(1024) == "1024"


def test_sort_items_multi_key_and_descending() -> None:
    """``-field`` sorts descending; numbers sort as numbers; missing values first."""
    items = [
        {"name": "b", "memory": 1024},
        {"name": "a", "memory": 512},
        {"name": "c", "memory": 1024},
        {"name": "d"},
    ]

    ordered = sort_items(items, ["-memory", "name"])

    assert [item["name"] for item in ordered] == ["b", "c", "a", "d"]
    assert [item["name"] for item in sort_items(items, ["memory"])] == ["d", "a", "b", "c"]


def test_cache_honours_ttl_and_invalidate(tmp_path: Path) -> None:
    cache = ListingCache(tmp_path / "cache", ttl=60)
    cache.put("images", [{"id": WEB0}])
    old = time.time() - 120
    os.utime(cache.path_for("images"), (old, old))

    assert cache.get("images") is None
    assert cache.get("images", allow_stale=True) == [{"id": WEB0}]

    cache.invalidate("images")
    assert cache.get("images", allow_stale=True) is None


def test_corrupt_cache_file_is_a_miss(tmp_path: Path) -> None:
    cache = ListingCache(tmp_path / "cache")
    cache.root.mkdir(parents=True)
    cache.path_for("networks").write_text("{not json", encoding="utf-8")

    assert cache.get("networks") is None
