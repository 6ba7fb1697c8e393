"""
Tests for settings loading.
"""

import pytest

from interview_core.config import Settings, load_settings
from interview_core.errors import ConfigError


def write(tmp_path, text):
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadSettings:
    """YAML settings with environment expansion."""

    def test_defaults(self):
        """Should fall back to defaults without a file."""
        settings = load_settings()
        assert settings == Settings()
        assert settings.sync_endpoint is None
        assert settings.sync_debounce_seconds == 3.0

    def test_empty_file(self, tmp_path):
        """Should treat an empty file as no overrides."""
        assert load_settings(write(tmp_path, "")) == Settings()

    def test_values_from_file(self, tmp_path):
        """Should read overrides from YAML."""
        path = write(tmp_path, "sync_endpoint: https://example.test\nsync_debounce_seconds: 0.5\nlog_level: DEBUG\n")
        settings = load_settings(path)
        assert settings.sync_endpoint == "https://example.test"
        assert settings.sync_debounce_seconds == 0.5
        assert settings.log_level == "DEBUG"

    def test_env_expansion(self, tmp_path, monkeypatch):
        """Should expand ${VAR} and fall back for ${VAR:-default}."""
        monkeypatch.setenv("SYNC_HOST", "sync.example.test")
        monkeypatch.delenv("SYNC_WINDOW", raising=False)
        path = write(tmp_path, "sync_endpoint: https://${SYNC_HOST}/sessions\nsync_debounce_seconds: ${SYNC_WINDOW:-1.5}\n")
        settings = load_settings(path)
        assert settings.sync_endpoint == "https://sync.example.test/sessions"
        assert settings.sync_debounce_seconds == 1.5

    def test_missing_env_variable(self, tmp_path, monkeypatch):
        """Should raise ConfigError for an unset variable without default."""
        monkeypatch.delenv("SYNC_HOST", raising=False)
        with pytest.raises(ConfigError, match="SYNC_HOST"):
            load_settings(write(tmp_path, "sync_endpoint: https://${SYNC_HOST}\n"))

    def test_invalid_value(self, tmp_path):
        """Should wrap validation errors in ConfigError."""
        with pytest.raises(ConfigError):
            load_settings(write(tmp_path, "sync_debounce_seconds: soon\n"))

    def test_not_a_mapping(self, tmp_path):
        """Should reject a document that is not a mapping."""
        with pytest.raises(ConfigError):
            load_settings(write(tmp_path, "- a\n- b\n"))

    def test_missing_file(self, tmp_path):
        """Should wrap unreadable files in ConfigError."""
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "absent.yaml")
