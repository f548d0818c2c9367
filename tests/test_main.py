"""Tests for the configure job entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from configurator.config import Config
from configurator.main import JsonFormatter, main, run, setup_logging
from configurator.steps import SYNC_STEPS

CLEAN_ENV = {
    "CONFIG_ROOT": None,
    "PACHD_ADDRESS": None,
    "OPENSSL_DIR": None,
    "REQUEST_TIMEOUT": None,
    "LOG_LEVEL": None,
}


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo the handlers and level that setup_logging installs."""
    root_logger = logging.getLogger()
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root_logger.removeHandler(handler)
    root_logger.setLevel(level)


class TestJsonFormatter:
    """Tests for structured log output."""

    def test_includes_extra_fields(self) -> None:
        record = logging.LogRecord(
            "configurator.pipeline", logging.INFO, __file__, 1, "Step completed", None, None
        )
        record.step = "license key"
        record.created_count = 2

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Step completed"
        assert data["level"] == "INFO"
        assert data["logger"] == "configurator.pipeline"
        assert data["step"] == "license key"
        assert data["created_count"] == 2
        assert data["timestamp"].endswith("Z")
        assert "msg" not in data

    def test_non_serializable_values(self) -> None:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "m", None, None)
        record.path = Path("/pachConfig")

        data = json.loads(JsonFormatter().format(record))

        assert data["path"] == "/pachConfig"

    def test_exception(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "m", None, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]

    def test_setup_logging_is_repeatable(self) -> None:
        setup_logging("DEBUG")
        setup_logging("INFO")

        json_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h.formatter, JsonFormatter)
        ]
        assert len(json_handlers) == 1
        assert logging.getLogger().level == logging.INFO


class TestMain:
    """Tests for the async entry point."""

    @pytest.mark.asyncio
    async def test_empty_bundle_succeeds(self, config_root: Path) -> None:
        assert await main(Config(config_root=config_root)) == 0

    @pytest.mark.asyncio
    async def test_missing_root_succeeds(self, tmp_path: Path) -> None:
        assert await main(Config(config_root=tmp_path / "absent")) == 0

    @pytest.mark.asyncio
    async def test_invalid_enterprise_address_fails(self, config_root: Path, bundle) -> None:
        bundle(enterpriseServerAddress="ftp://enterprise:21")

        assert await main(Config(config_root=config_root)) == 1

    @pytest.mark.asyncio
    async def test_invalid_ca_bundle_fails(self, config_root: Path, tmp_path: Path) -> None:
        ca_file = tmp_path / "ca.pem"
        ca_file.write_text("not a certificate\n")

        assert await main(Config(config_root=config_root, ca_path=ca_file)) == 1

    @pytest.mark.asyncio
    async def test_malformed_entry_fails(self, config_root: Path, bundle) -> None:
        bundle(clusterRoleBindings="robot:test: [unclosed\n")

        assert await main(Config(config_root=config_root)) == 1


class TestCli:
    """Tests for the click command."""

    def test_list_steps(self) -> None:
        result = CliRunner().invoke(run, ["--list-steps"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == len(SYNC_STEPS)
        assert lines[0] == " 1. license key"
        assert lines[-1] == "10. sync cluster role bindings"

    def test_empty_bundle_exits_zero(self, config_root: Path) -> None:
        result = CliRunner().invoke(run, ["--config-root", str(config_root)], env=CLEAN_ENV)

        assert result.exit_code == 0
        assert "Configuration run finished" in result.output

    def test_malformed_idps_exits_one(self, config_root: Path, bundle) -> None:
        bundle(idps="- id: [unclosed\n")

        result = CliRunner().invoke(run, ["--config-root", str(config_root)], env=CLEAN_ENV)

        assert result.exit_code == 1
        assert "Error syncing cluster state" in result.output

    def test_address_override(self, config_root: Path) -> None:
        result = CliRunner().invoke(
            run,
            ["--config-root", str(config_root), "--address", "grpcs://pachd.example.com:443"],
            env=CLEAN_ENV,
        )

        assert result.exit_code == 0
        assert "https://pachd.example.com:443" in result.output

    def test_invalid_environment_exits_one(self, config_root: Path) -> None:
        env = {**CLEAN_ENV, "REQUEST_TIMEOUT": "forever"}

        result = CliRunner().invoke(run, ["--config-root", str(config_root)], env=env)

        assert result.exit_code == 1
        assert "REQUEST_TIMEOUT must be an integer" in result.output

    def test_invalid_address_override_exits_one(self, config_root: Path) -> None:
        result = CliRunner().invoke(
            run, ["--config-root", str(config_root), "--address", "pachd"], env=CLEAN_ENV
        )

        assert result.exit_code == 1
