"""
Tests for settings and logging configuration.
"""
import pytest
from pydantic import ValidationError

from occ_repro.core.config import Settings, TokenSource


class TestSettings:
    """Test settings defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OCC_REPRO__CONNECTION_STRING", raising=False)
        settings = Settings(_env_file=None)

        assert settings.connection_string is None
        assert settings.token_source is TokenSource.SNAPSHOT
        assert settings.command_timeout == 120.0
        assert settings.retry_attempts == 3
        assert settings.echo_sql is False
        assert settings.log_level == "INFO"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("OCC_REPRO__CONNECTION_STRING", "sqlite:///env.db")
        monkeypatch.setenv("OCC_REPRO__TOKEN_SOURCE", "server")
        monkeypatch.setenv("OCC_REPRO__ECHO_SQL", "true")

        settings = Settings(_env_file=None)

        assert settings.connection_string == "sqlite:///env.db"
        assert settings.token_source is TokenSource.SERVER
        assert settings.echo_sql is True

    def test_init_arguments_override_environment(self, monkeypatch):
        monkeypatch.setenv("OCC_REPRO__CONNECTION_STRING", "sqlite:///env.db")
        settings = Settings(_env_file=None, connection_string="sqlite:///cli.db")
        assert settings.connection_string == "sqlite:///cli.db"

    def test_log_level_is_normalized(self):
        settings = Settings(_env_file=None, log_level="debug")
        assert settings.log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="chatty")

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, retry_attempts=0)

    def test_command_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, command_timeout=0)

    def test_unknown_token_source_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, token_source="client")
