"""Tests for the slotwise CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from slotwise import __version__
from slotwise import cli as cli_module
from slotwise.cli import cli
from slotwise.errors import CalendarAuthorizationError
from slotwise.models import CalendarType
from slotwise.orchestrator import SyncSummary

pytestmark = pytest.mark.unit


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("SLOTWISE_CONFIG", "DATABASE_URL", "BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def memory_config(tmp_path):
    path = tmp_path / "slotwise.toml"
    path.write_text('[storage]\nbackend = "memory"\n')
    return path


class TestVersion:
    def test_version_flag(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestConfigErrors:
    def test_invalid_toml(self, runner, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("[storage\n")

        result = runner.invoke(cli, ["init-db", "--config", str(bad)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_invalid_backend(self, runner, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text('[storage]\nbackend = "sqlite"\n')

        result = runner.invoke(
            cli, ["sync", "--config", str(bad), "--user", "1", "--type", "google"]
        )

        assert result.exit_code == 1
        assert "storage.backend" in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["init-db", "--config", str(tmp_path / "missing.toml")])
        assert result.exit_code == 2


class TestInitDb:
    def test_requires_postgres(self, runner, memory_config):
        result = runner.invoke(cli, ["init-db", "--config", str(memory_config)])
        assert result.exit_code == 1
        assert "requires storage.backend = 'postgres'" in result.output

    def test_opens_and_closes_postgres(self, runner, tmp_path, monkeypatch):
        path = tmp_path / "slotwise.toml"
        path.write_text('[storage]\ndatabase_url = "postgres://db/slotwise"\n')
        opened = []

        async def fake_init_db(config):
            opened.append(config.storage.database_url)

        monkeypatch.setattr(cli_module, "_init_db", fake_init_db)

        result = runner.invoke(cli, ["init-db", "--config", str(path)])

        assert result.exit_code == 0, result.output
        assert opened == ["postgres://db/slotwise"]
        assert "up to date" in result.output


class TestSync:
    def test_prints_summary(self, runner, memory_config, monkeypatch):
        calls = []

        async def fake_sync(config, user_id, calendar_type, integration_id):
            calls.append((user_id, calendar_type, integration_id))
            return SyncSummary(calendar_type=CalendarType.OUTLOOK, synced_count=1, total_count=1)

        monkeypatch.setattr(cli_module, "_sync", fake_sync)

        result = runner.invoke(
            cli,
            [
                "sync",
                "--config",
                str(memory_config),
                "--user",
                "7",
                "--type",
                "outlook",
                "--integration",
                "3",
            ],
        )

        assert result.exit_code == 0, result.output
        assert calls == [(7, "outlook", 3)]
        summary = json.loads(result.output[result.output.index("{") :])
        assert summary["synced_count"] == 1

    def test_partial_failure_exit_code(self, runner, memory_config, monkeypatch):
        async def fake_sync(config, user_id, calendar_type, integration_id):
            return SyncSummary(
                calendar_type=CalendarType.GOOGLE, synced_count=1, total_count=2, failed=[4]
            )

        monkeypatch.setattr(cli_module, "_sync", fake_sync)

        result = runner.invoke(
            cli, ["sync", "--config", str(memory_config), "--user", "1", "--type", "google"]
        )

        assert result.exit_code == 2

    def test_calendar_error_reported(self, runner, memory_config, monkeypatch):
        async def fake_sync(config, user_id, calendar_type, integration_id):
            raise CalendarAuthorizationError("Invalid calendar integration ID")

        monkeypatch.setattr(cli_module, "_sync", fake_sync)

        result = runner.invoke(
            cli,
            ["sync", "--config", str(memory_config), "--user", "1", "--type", "google"],
        )

        assert result.exit_code == 1
        assert "Sync failed: Invalid calendar integration ID" in result.output

    def test_local_type_not_offered(self, runner, memory_config):
        result = runner.invoke(
            cli, ["sync", "--config", str(memory_config), "--user", "1", "--type", "local"]
        )
        assert result.exit_code == 2

    def test_real_sync_against_empty_memory_storage(self, runner, memory_config):
        result = runner.invoke(
            cli, ["sync", "--config", str(memory_config), "--user", "1", "--type", "ical"]
        )
        assert result.exit_code == 0, result.output
        assert '"total_count": 0' in result.output


class TestServe:
    def test_runs_uvicorn(self, runner, memory_config, monkeypatch):
        import uvicorn

        captured = {}

        def fake_run(app, host, port, log_config):
            captured.update(app=app, host=host, port=port)

        monkeypatch.setattr(uvicorn, "run", fake_run)
        monkeypatch.setattr(cli_module, "configure_logging", lambda *args: None)

        result = runner.invoke(
            cli, ["serve", "--config", str(memory_config), "--port", "8123"]
        )

        assert result.exit_code == 0, result.output
        assert captured["port"] == 8123
        assert captured["app"].title == "slotwise API"
