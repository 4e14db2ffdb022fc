"""Tests for slotwise.config: TOML loading, env resolution and validation."""

from __future__ import annotations

import pytest

from slotwise.config import (
    DEFAULT_BASE_URL,
    AppConfig,
    ConfigError,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

_ENV_VARS = (
    "SLOTWISE_CONFIG",
    "BASE_URL",
    "DATABASE_URL",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "OUTLOOK_CLIENT_ID",
    "OUTLOOK_CLIENT_SECRET",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# resolve_env_vars
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("SLOTWISE_TEST_HOST", "db.internal")
        data = {"a": ["postgres://${SLOTWISE_TEST_HOST}/x", 5], "b": {"c": True}}
        assert resolve_env_vars(data) == {"a": ["postgres://db.internal/x", 5], "b": {"c": True}}

    def test_missing_variables_reported_together(self):
        with pytest.raises(ConfigError, match="SLOTWISE_NOPE_A, SLOTWISE_NOPE_B"):
            resolve_env_vars("${SLOTWISE_NOPE_A}:${SLOTWISE_NOPE_B}")


# ---------------------------------------------------------------------------
# parse_config
# ---------------------------------------------------------------------------


class TestParseConfig:
    def test_defaults(self):
        config = parse_config({})
        assert config.base_url == DEFAULT_BASE_URL
        assert config.storage.backend == "memory"
        assert config.google is None and config.outlook is None
        assert (config.sync.past_days, config.sync.future_days) == (30, 90)
        assert config.logging.format == "text"

    def test_database_url_env_selects_postgres(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@localhost/cal")
        config = parse_config({})
        assert config.storage.backend == "postgres"
        assert config.storage.database_url == "postgres://u:p@localhost/cal"

    def test_postgres_requires_url(self):
        with pytest.raises(ConfigError, match="database_url"):
            parse_config({"storage": {"backend": "postgres"}})

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="storage.backend"):
            parse_config({"storage": {"backend": "sqlite"}})

    def test_oauth_redirect_defaults_to_base_url(self):
        config = parse_config(
            {
                "server": {"base_url": "https://cal.example.com/"},
                "oauth": {"google": {"client_id": "id", "client_secret": "secret"}},
            }
        )
        assert config.base_url == "https://cal.example.com"
        assert config.google.redirect_uri == (
            "https://cal.example.com/api/integrations/google/callback"
        )
        assert config.outlook is None

    def test_oauth_from_environment(self, monkeypatch):
        monkeypatch.setenv("OUTLOOK_CLIENT_ID", "outlook-id")
        monkeypatch.setenv("OUTLOOK_CLIENT_SECRET", "outlook-secret")
        config = parse_config({})
        assert config.outlook.client_id == "outlook-id"

    def test_oauth_half_configured(self):
        with pytest.raises(ConfigError, match="both client_id and client_secret"):
            parse_config({"oauth": {"google": {"client_id": "only-id"}}})

    @pytest.mark.parametrize("value", [-1, "7", True])
    def test_sync_window_must_be_non_negative_int(self, value):
        with pytest.raises(ConfigError, match="sync.past_days"):
            parse_config({"sync": {"past_days": value}})

    def test_log_format_validated(self):
        with pytest.raises(ConfigError, match="logging.format"):
            parse_config({"logging": {"format": "xml"}})

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError, match="http_timeout_seconds"):
            parse_config({"http_timeout_seconds": 0})

    def test_section_must_be_table(self):
        with pytest.raises(ConfigError, match=r"\[server\] must be a table"):
            parse_config({"server": "nope"})


class TestOAuthApp:
    def test_missing_registration_raises(self):
        with pytest.raises(ConfigError, match="google"):
            AppConfig().oauth_app("google")

    def test_unknown_provider_raises(self):
        with pytest.raises(ConfigError):
            AppConfig().oauth_app("ical")


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_no_file_uses_defaults(self):
        assert load_config().storage.backend == "memory"

    def test_reads_file_in_working_directory(self, tmp_path):
        (tmp_path / "slotwise.toml").write_text('[logging]\nlevel = "debug"\n')
        assert load_config().logging.level == "DEBUG"

    def test_env_var_names_file(self, monkeypatch, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text("[sync]\nfuture_days = 14\n")
        monkeypatch.setenv("SLOTWISE_CONFIG", str(path))
        assert load_config().sync.future_days == 14

    def test_missing_named_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[server\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)
