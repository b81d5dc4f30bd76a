#!/usr/bin/env python3
"""Tests for the configuration loader and settings."""

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from backlog_migrate.config_loader import ConfigLoader, is_test_environment
from backlog_migrate.models.migration_error import ConfigurationError
from backlog_migrate.settings import Settings

pytestmark = pytest.mark.unit


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run in an empty directory without BACKLOG_MIGRATE_* variables."""
    for key in list(os.environ):
        if key.startswith("BACKLOG_MIGRATE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestSettings:
    """Settings validation."""

    def test_defaults(self, clean_env: Path) -> None:
        settings = Settings()

        assert settings.base_branch == "main"
        assert settings.line_break == "<br>"
        assert settings.unsafe_rules == []
        assert settings.page_size == 100

    def test_environment_values(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BACKLOG_MIGRATE_SPACE", "acme")
        monkeypatch.setenv("BACKLOG_MIGRATE_UNSAFE_RULES", "toc, emphasis_bold")
        monkeypatch.setenv("BACKLOG_MIGRATE_LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.space == "acme"
        assert settings.unsafe_rules == ["toc", "emphasis_bold"]
        assert settings.log_level == "DEBUG"
        assert settings.resolved_base_url() == "https://acme.backlog.com"

    def test_unknown_rule_is_rejected(self, clean_env: Path) -> None:
        with pytest.raises(ValidationError, match="Unknown converter rules"):
            Settings(unsafe_rules=["no_such_rule"])

    def test_base_url(self, clean_env: Path) -> None:
        assert Settings(base_url="https://backlog.example.com/").resolved_base_url() == "https://backlog.example.com"
        with pytest.raises(ValidationError):
            Settings(base_url="ftp://example.com")

    def test_base_url_requires_space(self, clean_env: Path) -> None:
        with pytest.raises(ValueError, match="space is not configured"):
            Settings().resolved_base_url()


class TestConfigLoader:
    """YAML overrides and .env loading."""

    def test_yaml_overrides_environment(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BACKLOG_MIGRATE_SPACE", "from-env")
        config_file = clean_env / "config.yaml"
        config_file.write_text("space: from-yaml\nbase_branch: trunk\n", encoding="utf-8")

        loader = ConfigLoader(config_file)

        assert loader.get_settings().space == "from-yaml"
        assert loader.get_value("base_branch") == "trunk"
        assert loader.get_value("missing", "default") == "default"

    def test_default_config_file(self, clean_env: Path) -> None:
        (clean_env / "config").mkdir()
        (clean_env / "config" / "config.yaml").write_text("log_limit: 7\n", encoding="utf-8")

        assert ConfigLoader().get_settings().log_limit == 7

    def test_dotenv_file(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        # load_dotenv writes to os.environ directly, register the variable for removal
        monkeypatch.setenv("BACKLOG_MIGRATE_SPACE", "")
        monkeypatch.delenv("BACKLOG_MIGRATE_SPACE")
        (clean_env / ".env").write_text("BACKLOG_MIGRATE_SPACE=dotenv-space\n", encoding="utf-8")

        settings = ConfigLoader().get_settings()

        assert settings.space == "dotenv-space"

    def test_unknown_key(self, clean_env: Path) -> None:
        config_file = clean_env / "config.yaml"
        config_file.write_text("no_such_key: 1\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Unknown configuration key"):
            ConfigLoader(config_file)

    def test_invalid_value(self, clean_env: Path) -> None:
        config_file = clean_env / "config.yaml"
        config_file.write_text("page_size: 500\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="page_size"):
            ConfigLoader(config_file)

    def test_missing_and_malformed_files(self, clean_env: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader(clean_env / "missing.yaml")

        listing = clean_env / "list.yaml"
        listing.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            ConfigLoader(listing)

    def test_detects_pytest(self) -> None:
        assert is_test_environment()
