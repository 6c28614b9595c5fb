"""
Unit tests for configuration loading.
"""

import json
import logging
import pytest

from toodle.bootstrap import config as config_module
from toodle.bootstrap.config import (
    LinkConfig,
    ReconcilerConfig,
    ToodleConfig,
    get_config,
    load_config,
)
from toodle.core.constants import MAX_LINKS_PER_BATCH, MAX_TOTAL_LINKS


@pytest.fixture(autouse=True)
def reset_global_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)


class TestDefaults:
    """Tests for default values."""

    def test_link_limits(self):
        config = ToodleConfig()
        assert config.link.max_links_per_batch == MAX_LINKS_PER_BATCH
        assert config.link.max_total_links == MAX_TOTAL_LINKS

    def test_reconciler_defaults(self):
        config = ReconcilerConfig()
        assert config.recency_window_ms == 1000
        assert config.trust_event_cause is True
        assert config.max_tracked_entities == 5000

    def test_no_operators_by_default(self):
        assert ToodleConfig().api.operator_ids == []

    def test_to_dict(self):
        data = ToodleConfig().to_dict()
        assert data["environment"] == "development"
        assert data["link"]["max_links_per_batch"] == MAX_LINKS_PER_BATCH
        assert data["api"]["port"] == 8000


class TestEnvironment:
    """Tests for TOODLE_* environment variables."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TOODLE_ENVIRONMENT", "production")
        monkeypatch.setenv("TOODLE_DEBUG", "true")
        monkeypatch.setenv("TOODLE_LINK_MAX_BATCH", "5")
        monkeypatch.setenv("TOODLE_TXN_LOCK_TIMEOUT", "0.5")
        monkeypatch.setenv("TOODLE_RECONCILER_TRUST_CAUSE", "false")
        monkeypatch.setenv("TOODLE_API_CORS_ORIGINS", "http://a,http://b")
        monkeypatch.setenv("TOODLE_API_OPERATORS", "ops,admin")
        monkeypatch.setenv("TOODLE_RECONCILER_MAX_TRACKED", "10")

        config = ToodleConfig.from_env()
        assert config.environment == "production"
        assert config.debug is True
        assert config.link.max_links_per_batch == 5
        assert config.transaction.lock_timeout_seconds == 0.5
        assert config.reconciler.trust_event_cause is False
        assert config.api.cors_origins == ["http://a", "http://b"]
        assert config.api.operator_ids == ["ops", "admin"]
        assert config.reconciler.max_tracked_entities == 10

    def test_section_from_env(self, monkeypatch):
        monkeypatch.setenv("TOODLE_LINK_MAX_TOTAL", "7")
        assert LinkConfig.from_env().max_total_links == 7


class TestFile:
    """Tests for JSON config files."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "toodle.json"
        path.write_text(json.dumps({
            "environment": "staging",
            "link": {"max_total_links": 10},
            "api": {"port": 9000},
        }))

        config = ToodleConfig.from_file(str(path))
        assert config.environment == "staging"
        assert config.link.max_total_links == 10
        assert config.link.max_links_per_batch == MAX_LINKS_PER_BATCH
        assert config.api.port == 9000

    def test_file_overrides_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TOODLE_API_PORT", "7000")
        path = tmp_path / "toodle.json"
        path.write_text(json.dumps({"api": {"port": 9000}}))
        assert ToodleConfig.from_file(str(path)).api.port == 9000

    def test_unknown_key_warns(self, tmp_path, caplog):
        path = tmp_path / "toodle.json"
        path.write_text(json.dumps({"link": {"bogus": 1}}))

        with caplog.at_level(logging.WARNING, logger="bootstrap.config"):
            config = ToodleConfig.from_file(str(path))
        assert not hasattr(config.link, "bogus")
        assert "link.bogus" in caplog.text

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ToodleConfig.from_file(str(tmp_path / "absent.json"))
        assert config.api.port == 8000


class TestGlobalConfig:
    """Tests for load_config/get_config."""

    def test_load_config_from_path(self, tmp_path):
        path = tmp_path / "toodle.json"
        path.write_text(json.dumps({"environment": "test"}))
        config = load_config(str(path))
        assert config.environment == "test"
        assert get_config() is config

    def test_get_config_loads_once(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        first = get_config()
        assert get_config() is first
