"""Local activity log aggregation."""

from .aggregator import LogAggregator, default_candidate_dirs

__all__ = ['LogAggregator', 'default_candidate_dirs']
