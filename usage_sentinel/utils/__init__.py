"""Utility functions for usage-sentinel."""

from .reset_time import parse_timestamp, time_until, relative_to_clock_time, relative_to_minutes

__all__ = ['parse_timestamp', 'time_until', 'relative_to_clock_time', 'relative_to_minutes']
