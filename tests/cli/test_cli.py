"""Tests for the teamcal CLI commands."""

from __future__ import annotations

import os
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from teamcal import cli as cli_module
from teamcal.cli import cli
from teamcal.engine.models import BatchResult

pytestmark = pytest.mark.unit


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated_process():
    with patch("teamcal.cli.configure_logging"), patch.dict(os.environ):
        yield


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "teamcal.toml"
    path.write_text('[teamcal.api]\nhost = "0.0.0.0"\nport = 9100\n')
    return path


class TestVersion:
    def test_version_flag(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestHelp:
    def test_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "migrate", "recompute-availability", "scheduler"):
            assert command in result.output


class TestServe:
    def test_uses_config_host_and_port(self, runner, config_file):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["--config", str(config_file), "serve"])

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once_with(
            "teamcal.api.app:create_app", host="0.0.0.0", port=9100, factory=True
        )

    def test_flags_override_config(self, runner, config_file):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(
                cli,
                ["--config", str(config_file), "serve", "--host", "127.0.0.1", "--port", "8123"],
            )

        assert result.exit_code == 0, result.output
        assert mock_run.call_args.kwargs["host"] == "127.0.0.1"
        assert mock_run.call_args.kwargs["port"] == 8123

    def test_invalid_config_exits(self, runner, tmp_path):
        bad = tmp_path / "teamcal.toml"
        bad.write_text('[teamcal.api]\nport = "not-a-port"\n')

        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["--config", str(bad), "serve"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        mock_run.assert_not_called()


class TestRecomputeAvailability:
    def test_reports_counts(self, runner, config_file):
        result_value = BatchResult(day=date(2025, 3, 10), processed=["a", "b"])
        with patch.object(
            cli_module, "_recompute", new=AsyncMock(return_value=result_value)
        ) as mock_recompute:
            result = runner.invoke(
                cli,
                ["--config", str(config_file), "recompute-availability", "--date", "2025-03-10"],
            )

        assert result.exit_code == 0, result.output
        assert "2025-03-10: 2 processed, 0 failed" in result.output
        assert mock_recompute.await_args.args[1] == date(2025, 3, 10)

    def test_failures_exit_nonzero(self, runner, config_file):
        result_value = BatchResult(
            day=date(2025, 3, 10), processed=["a"], failed={"b": "store down"}
        )
        with patch.object(cli_module, "_recompute", new=AsyncMock(return_value=result_value)):
            result = runner.invoke(cli, ["--config", str(config_file), "recompute-availability"])

        assert result.exit_code == 1
        assert "failed: b: store down" in result.output


class TestMigrate:
    def test_runs_migrations_with_database_url(self, runner, config_file):
        with patch("teamcal.migrations.run_migrations", new=AsyncMock()) as mock_migrate:
            result = runner.invoke(cli, ["--config", str(config_file), "migrate"])

        assert result.exit_code == 0, result.output
        assert mock_migrate.await_args.args[0].startswith("postgresql://")
        assert "Migrations complete" in result.output
