"""Unit tests for configuration loading."""

import pytest
import yaml
from pathlib import Path

from usage_sentinel.config.loader import (
    SentinelConfig,
    create_default_config,
    load_config,
    save_default_config,
)
from usage_sentinel.errors import ConfigLoadError


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "usage_sentinel.yaml"
        path.write_text(yaml.safe_dump(data))
        return path
    return _write


class TestLoadConfig:
    """Tests for load_config."""

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError) as exc_info:
            load_config(tmp_path / "nope.yaml")

        assert exc_info.value.kind == "config"

    def test_default_path_missing_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config == SentinelConfig()

    def test_values_from_file(self, config_file):
        path = config_file({
            "browser": {"headless": False, "debug_port": 9333},
            "timeouts": {"login_ms": 1000},
        })

        config = load_config(path)

        assert config.browser.headless is False
        assert config.browser.debug_port == 9333
        assert config.timeouts.login_ms == 1000
        assert config.timeouts.page_ms == 30000

    def test_environment_overrides(self, config_file):
        path = config_file({
            "browser": {"headless": True, "debug_port": 9222},
            "environments": {"development": {"browser": {"headless": False}}},
        })

        config = load_config(path, environment="development")

        assert config.browser.headless is False
        assert config.browser.debug_port == 9222

    def test_environment_from_variable(self, config_file, monkeypatch):
        path = config_file({"environments": {"test": {"history": {"enabled": False}}}})
        monkeypatch.setenv("USAGE_SENTINEL_ENV", "test")

        assert load_config(path).history.enabled is False

    def test_programmatic_overrides_win(self, config_file):
        path = config_file({"browser": {"debug_port": 9333}})

        config = load_config(path, overrides={"browser": {"debug_port": 9444}})

        assert config.browser.debug_port == 9444

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("browser: [unclosed")

        with pytest.raises(ConfigLoadError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigLoadError):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == SentinelConfig()

    @pytest.mark.parametrize("data", [
        {"browser": {"debug_port": 0}},
        {"browser": {"usage_url": "claude.ai/settings/usage"}},
        {"unknown_section": {}},
    ])
    def test_validation_errors(self, config_file, data):
        with pytest.raises(ConfigLoadError):
            load_config(config_file(data))


class TestConversions:
    """Tests for runtime object construction."""

    def test_to_browser_config(self):
        config = SentinelConfig(**{
            "browser": {"debug_port": 9333, "user_data_dir": "/tmp/profile", "window_width": 1024},
            "timeouts": {"page_ms": 1000, "login_ms": 2000, "settle_ms": 0},
        })

        browser_config = config.to_browser_config(headless=False)

        assert browser_config.headless is False
        assert browser_config.debug_port == 9333
        assert browser_config.user_data_dir == Path("/tmp/profile")
        assert browser_config.viewport == {'width': 1024, 'height': 800}
        assert browser_config.page_timeout_ms == 1000
        assert browser_config.login_timeout_ms == 2000
        assert browser_config.settle_delay_ms == 0

    def test_to_aggregator(self, tmp_path):
        config = SentinelConfig(**{"logs": {"directories": [str(tmp_path)]}})

        assert config.to_aggregator().candidate_dirs == [tmp_path]

    def test_to_history(self, tmp_path):
        config = SentinelConfig(**{"history": {"file": str(tmp_path / "h.json"), "max_data_points": 10}})

        history = config.to_history()

        assert history.history_file == tmp_path / "h.json"
        assert history.max_data_points == 10

    def test_history_disabled(self):
        assert SentinelConfig(**{"history": {"enabled": False}}).to_history() is None

    def test_to_session_tracker(self, tmp_path):
        config = SentinelConfig(**{"session": {"file": str(tmp_path / "s.json"), "token_limit": 5000}})

        tracker = config.to_session_tracker()

        assert tracker.session_file == tmp_path / "s.json"
        assert tracker.token_limit == 5000

    def test_session_defaults(self):
        assert SentinelConfig().to_session_tracker().token_limit == 200000


class TestDefaultConfig:
    """Tests for default config generation."""

    def test_saved_default_loads(self, tmp_path):
        path = tmp_path / "default.yaml"

        save_default_config(path)
        config = load_config(path, environment="production")

        assert config == SentinelConfig()

    def test_default_has_environments(self):
        assert set(create_default_config()["environments"]) == {"development", "test"}
