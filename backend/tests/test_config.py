"""Tests for YAML settings loading."""
import pytest
import yaml
from pydantic import ValidationError

from codecollab.config import AppSettings, get_config, load_settings, set_config


def _write(path, data) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_files_use_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "none.yaml", tmp_path / "none-secrets.yaml")

        assert settings.server.port == 3000
        assert settings.redis.max_messages == 1000
        assert settings.chat.initial_page_size == 100
        assert settings.chat.ai_directive == "@ai"
        assert settings.chat.ai_timeout_seconds == 45.0
        assert settings.ai.provider == "none"
        assert settings.secrets.anthropic.api_key is None

    def test_settings_and_secrets_merged(self, tmp_path):
        settings_path = tmp_path / "codecollab.settings.yaml"
        secrets_path = tmp_path / "codecollab.secrets.yaml"
        _write(settings_path, {
            "redis": {"url": "redis://cache:6379/2", "max_messages": 50},
            "chat": {"ai_timeout_seconds": 10},
            "ai": {"provider": "anthropic"},
        })
        _write(secrets_path, {
            "anthropic": {"api_key": "sk-ant"},
            "jwt": {"secret_key": "s3cret"},
        })

        settings = load_settings(settings_path, secrets_path)

        assert settings.redis.url == "redis://cache:6379/2"
        assert settings.redis.max_messages == 50
        assert settings.chat.ai_timeout_seconds == 10.0
        assert settings.ai.provider == "anthropic"
        assert settings.secrets.anthropic.api_key == "sk-ant"
        assert settings.secrets.jwt.secret_key == "s3cret"
        assert settings.secrets.jwt.algorithm == "HS256"

    def test_empty_file(self, tmp_path):
        settings_path = tmp_path / "empty.yaml"
        settings_path.write_text("", encoding="utf-8")
        assert load_settings(settings_path, tmp_path / "x.yaml").server.host == "0.0.0.0"

    def test_capacity_must_be_positive(self, tmp_path):
        settings_path = tmp_path / "codecollab.settings.yaml"
        _write(settings_path, {"redis": {"max_messages": 0}})
        with pytest.raises(ValidationError):
            load_settings(settings_path, tmp_path / "x.yaml")

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            AppSettings(ai={"provider": "bedrock"})


class TestGetConfig:
    """Tests for the process-wide settings cache."""

    def test_set_and_reset(self):
        custom = AppSettings(server={"port": 4000})
        set_config(custom)
        try:
            assert get_config() is custom
        finally:
            set_config(None)
