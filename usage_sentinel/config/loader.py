"""Configuration loader with YAML support and environment overrides.

This module loads SentinelConfig from a YAML file, applies the overrides
for the environment named by USAGE_SENTINEL_ENV and any programmatic
overrides, and converts the result into the runtime objects.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..capture.browser_session import DEFAULT_USAGE_URL, BrowserConfig
from ..errors import ConfigLoadError
from ..history import DEFAULT_MAX_DATA_POINTS, UsageHistory
from ..logs.aggregator import DEFAULT_ENV_VAR, DEFAULT_FILE_SUFFIX, LogAggregator
from ..session_tracker import DEFAULT_TOKEN_LIMIT, SessionTracker

logger = logging.getLogger(__name__)


ENVIRONMENT_VAR = "USAGE_SENTINEL_ENV"
DEFAULT_CONFIG_PATH = Path("config") / "usage_sentinel.yaml"


class BrowserSettings(BaseModel):
    """Browser section."""

    headless: bool = Field(default=True, description="Run a launched browser without a window")
    debug_port: int = Field(default=9222, ge=1, le=65535, description="Remote debugging port")
    user_data_dir: Optional[str] = Field(default=None, description="Persistent profile directory")
    executable_path: Optional[str] = Field(default=None, description="Browser executable")
    window_width: int = Field(default=1280, ge=320)
    window_height: int = Field(default=800, ge=240)
    user_agent: Optional[str] = Field(default=None, description="User-Agent override")
    usage_url: str = Field(default=DEFAULT_USAGE_URL)
    target_host: str = Field(default="claude.ai")
    auth_markers: List[str] = Field(default_factory=lambda: ["login", "auth"])

    @field_validator('usage_url')
    @classmethod
    def validate_usage_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError("usage_url must be an http(s) URL")
        return v


class TimeoutSettings(BaseModel):
    """Timeouts in milliseconds."""

    page_ms: int = Field(default=30000, gt=0)
    login_ms: int = Field(default=300000, gt=0)
    settle_ms: int = Field(default=2000, ge=0)
    liveness_ms: int = Field(default=5000, gt=0)
    api_ms: int = Field(default=15000, gt=0)


class LogSettings(BaseModel):
    """Local activity log section."""

    directories: List[str] = Field(
        default_factory=list,
        description="Explicit log directories; empty means auto-discover"
    )
    env_var: str = Field(default=DEFAULT_ENV_VAR)
    file_suffix: str = Field(default=DEFAULT_FILE_SUFFIX)


class HistorySettings(BaseModel):
    """Usage history section."""

    enabled: bool = Field(default=True)
    file: Optional[str] = Field(default=None, description="History file (defaults to temp dir)")
    max_data_points: int = Field(default=DEFAULT_MAX_DATA_POINTS, ge=1)


class SessionSettings(BaseModel):
    """Development session ledger section."""

    file: Optional[str] = Field(default=None, description="Ledger file (defaults to temp dir)")
    token_limit: int = Field(default=DEFAULT_TOKEN_LIMIT, ge=1)


class SentinelConfig(BaseModel):
    """Root configuration."""

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    logs: LogSettings = Field(default_factory=LogSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    model_config = {"extra": "forbid"}

    def to_browser_config(self, headless: Optional[bool] = None) -> BrowserConfig:
        """Build the browser session configuration."""
        browser = self.browser
        options: Dict[str, Any] = {}
        if browser.user_agent:
            options['user_agent'] = browser.user_agent

        return BrowserConfig(
            headless=browser.headless if headless is None else headless,
            debug_port=browser.debug_port,
            user_data_dir=Path(browser.user_data_dir) if browser.user_data_dir else None,
            executable_path=Path(browser.executable_path) if browser.executable_path else None,
            viewport={'width': browser.window_width, 'height': browser.window_height},
            usage_url=browser.usage_url,
            target_host=browser.target_host,
            auth_markers=browser.auth_markers,
            page_timeout_ms=self.timeouts.page_ms,
            login_timeout_ms=self.timeouts.login_ms,
            settle_delay_ms=self.timeouts.settle_ms,
            liveness_timeout_ms=self.timeouts.liveness_ms,
            **options
        )

    def to_aggregator(self) -> LogAggregator:
        """Build the log aggregator."""
        return LogAggregator(
            candidate_dirs=self.logs.directories or None,
            env_var=self.logs.env_var,
            file_suffix=self.logs.file_suffix,
        )

    def to_history(self) -> Optional[UsageHistory]:
        """Build the history store, or None when disabled."""
        if not self.history.enabled:
            return None
        return UsageHistory(
            history_file=self.history.file,
            max_data_points=self.history.max_data_points,
        )

    def to_session_tracker(self) -> SessionTracker:
        """Build the session ledger."""
        return SessionTracker(
            session_file=self.session.file,
            token_limit=self.session.token_limit,
        )


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    environment: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> SentinelConfig:
    """Load SentinelConfig from a YAML file with environment overrides.

    Args:
        config_path: Path to the YAML file. If None, config/usage_sentinel.yaml
            is used when present, otherwise built-in defaults.
        environment: Environment name for override selection. If None, uses
            the USAGE_SENTINEL_ENV variable.
        overrides: Additional configuration overrides to apply last.

    Returns:
        Validated SentinelConfig.

    Raises:
        ConfigLoadError: If the file is missing (when given explicitly),
            unreadable, not a mapping, or fails validation.

    Example:
        >>> config = load_config("config/usage_sentinel.yaml", environment="development")
        >>> config.browser.headless
        False
    """
    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        if not path.exists():
            logger.debug(f"No config file at {path}, using defaults")
            config_data: Dict[str, Any] = {}
        else:
            config_data = _read_yaml(path)
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigLoadError(f"Config file not found: {path}")
        config_data = _read_yaml(path)

    if environment is None:
        environment = os.getenv(ENVIRONMENT_VAR, "production")

    environments = config_data.pop("environments", None) or {}
    if not isinstance(environments, dict):
        raise ConfigLoadError("'environments' must be a mapping")

    if environment in environments:
        config_data = _deep_merge(config_data, environments[environment] or {})
        logger.info(f"Applied environment overrides for: {environment}")

    if overrides:
        config_data = _deep_merge(config_data, overrides)
        logger.debug("Applied additional configuration overrides")

    try:
        return SentinelConfig(**config_data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid configuration: {e}") from e


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML config: {e}") from e
    except OSError as e:
        raise ConfigLoadError(f"Failed to read config file: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigLoadError("Config file must contain a YAML dictionary")
    return config_data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def create_default_config() -> Dict[str, Any]:
    """Default configuration dictionary suitable for YAML serialization."""
    return {
        "browser": {
            "headless": True,
            "debug_port": 9222,
            "user_data_dir": None,
            "executable_path": None,
            "window_width": 1280,
            "window_height": 800,
            "usage_url": DEFAULT_USAGE_URL,
            "target_host": "claude.ai",
            "auth_markers": ["login", "auth"],
        },
        "timeouts": {
            "page_ms": 30000,
            "login_ms": 300000,
            "settle_ms": 2000,
            "liveness_ms": 5000,
            "api_ms": 15000,
        },
        "logs": {
            "directories": [],
            "env_var": DEFAULT_ENV_VAR,
            "file_suffix": DEFAULT_FILE_SUFFIX,
        },
        "history": {
            "enabled": True,
            "file": None,
            "max_data_points": DEFAULT_MAX_DATA_POINTS,
        },
        "session": {
            "file": None,
            "token_limit": DEFAULT_TOKEN_LIMIT,
        },
        "environments": {
            "development": {
                "browser": {"headless": False},
            },
            "test": {
                "history": {"enabled": False},
                "timeouts": {"login_ms": 60000},
            },
        },
    }


def save_default_config(output_path: Union[str, Path]) -> None:
    """Save the default configuration to a YAML file.

    Raises:
        ConfigLoadError: If file writing fails.
    """
    config_data = create_default_config()

    try:
        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Saved default configuration to: {output_path}")
    except OSError as e:
        raise ConfigLoadError(f"Failed to save config file: {e}") from e
