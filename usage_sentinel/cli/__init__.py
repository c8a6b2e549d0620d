"""CLI module for usage-sentinel.

This package provides the command-line interface for fetching usage
snapshots and summing local token usage.
"""

from .main import ExitCode, app, cli_main

__all__ = [
    'ExitCode',
    'app',
    'cli_main',
]
