"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from fakes import ACCOUNT, CLOUDAPI_URL, FakeCloud

from tritoncli import dispatch
from tritoncli.cloudapi import CloudApi
from tritoncli.transport import CloudApiTransport


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def cloud() -> FakeCloud:
    """Fake CloudAPI endpoint for the ``alice`` account."""
    return FakeCloud()


@pytest.fixture
def api(cloud: FakeCloud) -> CloudApi:
    """Unsigned facade talking to :func:`cloud`."""
    transport = CloudApiTransport(CLOUDAPI_URL, ACCOUNT, None, session=cloud)
    return CloudApi(transport, wait_interval=0.01)


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, cloud: FakeCloud) -> Path:
    """Point the CLI at a scratch config dir, an ``env`` profile and :func:`cloud`."""
    config_dir = tmp_path / "triton"
    monkeypatch.setenv("TRITON_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("TRITON_URL", CLOUDAPI_URL)
    monkeypatch.setenv("TRITON_ACCOUNT", ACCOUNT)
    monkeypatch.setenv("TRITON_KEY_ID", "SHA256:testkey")
    for name in (
        "TRITON_PROFILE",
        "TRITON_USER",
        "TRITON_TLS_INSECURE",
        "SDC_URL",
        "SDC_ACCOUNT",
        "SDC_USER",
        "SDC_KEY_ID",
        "SDC_TLS_INSECURE",
    ):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("TRITONCLI_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TRITONCLI_WAIT_INTERVAL", "0.01")

    def fake_build_api(runtime: dispatch.RuntimeContext) -> CloudApi:
        profile = runtime.profile
        transport = CloudApiTransport(profile.url, profile.account, None, session=cloud)
        return CloudApi(transport, cancel=runtime.cancel, wait_interval=runtime.config.wait_interval)

    monkeypatch.setattr(dispatch, "build_api", fake_build_api)
    return config_dir
