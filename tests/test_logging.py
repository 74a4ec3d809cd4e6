"""Stderr verbosity and operations log tests."""
from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest
from fakes import FakeCloud
from typer.testing import CliRunner

from tritoncli.cli import app
from tritoncli.errors import CloudApiError
from tritoncli.logging import LOGGER, StructuredLogger, configure_verbosity

IMAGE_ID = "2b683a82-a066-11e3-97ab-2faa44701c5a"
PACKAGE_ID = "7b17343c-94af-6266-e0e8-893a3b9993d0"
WEB0 = "3d51f2d5-46f2-4da5-bb04-3238f2f64768"


def _records(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.mark.parametrize(
    ("verbose", "level"), [(0, logging.WARNING), (1, logging.INFO), (2, logging.DEBUG), (5, logging.DEBUG)]
)
def test_verbosity_levels(verbose: int, level: int) -> None:
    assert configure_verbosity(verbose, stream=io.StringIO()) == level
    assert LOGGER.level == level


def test_configure_verbosity_replaces_its_handler() -> None:
    first, second = io.StringIO(), io.StringIO()
    configure_verbosity(1, stream=first)
    configure_verbosity(1, stream=second)

    LOGGER.info("listing machines")

    assert first.getvalue() == ""
    assert second.getvalue() == "INFO tritoncli: listing machines\n"
    configure_verbosity(0)


def test_unwritable_logs_dir_disables_instance_create_log(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The create still runs its block when ``logs/`` cannot be created."""
    logs_dir = tmp_path / "triton" / "logs"
    original_mkdir = Path.mkdir

    def refuse(self: Path, *args: object, **kwargs: object) -> None:
        if self == logs_dir:
            raise PermissionError("read-only config dir")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", refuse)
    logger = StructuredLogger(logs_dir)

    ran = []
    with logger.operation("instance create", args={"name": "web0"}, target={"kind": "instance"}) as op:
        ran.append(op.name)
        op.success(f"Created instance {WEB0}.", changed=1)

    assert ran == ["instance create"]
    assert not logger.path.exists()


def test_write_failure_disables_later_operations(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    logger = StructuredLogger(tmp_path / "logs")
    original_open = Path.open
    attempts: list[Path] = []

    def disk_full(self: Path, *args: object, **kwargs: object) -> object:
        if self == logger.path:
            attempts.append(self)
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", disk_full)

    with logger.operation("instance delete", args={"instances": ["web0"]}) as op:
        op.success("Deleted 1 instance(s).", changed=1)
    with logger.operation("instance start", args={"instances": ["web1"]}) as op:
        op.success("Started 1 instance(s).", changed=1)

    assert len(attempts) == 1


def test_target_and_context_are_made_json_safe(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "image export", args={"manta_path": Path("/alice/stor/images")}, target={"kind": "image", "id": IMAGE_ID}
    ) as op:
        op.error("export failed", context={"files": ("image.zfs.gz", "image.imgmanifest"), "sizes": {4096}})

    [record] = _records(logger.path)
    assert record["args"] == {"manta_path": "/alice/stor/images"}
    assert record["target"] == {"kind": "image", "id": IMAGE_ID}
    assert record["result"] == {
        "status": "error",
        "message": "export failed",
        "errors": ["export failed"],
        "context": {"files": ["image.zfs.gz", "image.imgmanifest"], "sizes": "{4096}"},
    }


def test_operation_records_escaping_exception(tmp_path: Path) -> None:
    """An exception leaving the block is logged with its exit status and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(CloudApiError):
        with logger.operation("instance start", args={"instances": ["web0"]}) as op:
            assert op.result is None
            raise CloudApiError("machine is busy", status_code=409, code="InvalidState")

    [record] = _records(logger.path)
    assert record["command"] == "instance start"
    assert record["args"] == {"instances": ["web0"]}
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["machine is busy"]
    assert record["result"]["rc"] == 1


def test_each_operation_appends_one_line(tmp_path: Path) -> None:
    """Operations are appended as JSON lines in completion order."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("fwrule create") as op:
        op.success("Created firewall rule.", changed=1)
    with logger.operation("fwrule enable") as op:
        op.success("Enabled 0 rule(s).", changed=0)

    records = _records(logger.path)
    assert [record["command"] for record in records] == ["fwrule create", "fwrule enable"]
    assert records[0]["result"]["changed"] == 1


def test_create_logs_replaced_metadata_as_warning(cli_env: Path, cloud: FakeCloud) -> None:
    """A metadata key given twice is warned about on stderr and in the log."""
    cloud.json("POST", "/machines", {"id": WEB0, "name": "web0", "state": "provisioning"})

    result = CliRunner().invoke(
        app, ["create", "-n", "web0", "-m", "foo=one", "-m", "foo=two", IMAGE_ID, PACKAGE_ID], prog_name="triton"
    )

    assert result.exit_code == 0, result.output
    [record] = _records(cli_env / "logs" / "operations.log")
    assert record["command"] == "instance create"
    assert record["result"]["status"] == "warning"
    assert record["result"]["changed"] == 1
    [warning] = record["result"]["warnings"]
    assert '"foo=two"' in warning and 'replaces earlier value for "foo"' in warning
    assert cloud.requests_to("POST", "/machines")[0].body["metadata.foo"] == "two"


def test_cli_auth_failure_logs_exit_status(cli_env: Path, cloud: FakeCloud) -> None:
    cloud.json("GET", f"/machines/{WEB0}", {"code": "InvalidCredentials", "message": "invalid key"}, status=401)

    result = CliRunner().invoke(app, ["start", WEB0], prog_name="triton")

    assert result.exit_code == 3
    [record] = _records(cli_env / "logs" / "operations.log")
    assert record["command"] == "instance start"
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 3
