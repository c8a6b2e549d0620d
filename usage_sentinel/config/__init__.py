"""Configuration loading for usage-sentinel."""

from .loader import (
    SentinelConfig,
    BrowserSettings,
    TimeoutSettings,
    LogSettings,
    HistorySettings,
    SessionSettings,
    load_config,
    create_default_config,
    save_default_config,
)

__all__ = [
    'SentinelConfig',
    'BrowserSettings',
    'TimeoutSettings',
    'LogSettings',
    'HistorySettings',
    'SessionSettings',
    'load_config',
    'create_default_config',
    'save_default_config',
]
