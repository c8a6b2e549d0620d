"""Extraction of usage figures from API payloads and page text."""

from .schema import (
    SCHEMA_VERSION,
    USAGE_API_SCHEMA,
    PER_MODEL_SCHEMA,
    OVERAGE_API_SCHEMA,
    API_ENDPOINTS,
    get_nested_value,
    extract_from_schema,
    normalize_percent,
    process_overage_data,
    build_usage_snapshot,
    schema_info,
)
from .html_parser import parse_usage_text

__all__ = [
    'SCHEMA_VERSION',
    'USAGE_API_SCHEMA',
    'PER_MODEL_SCHEMA',
    'OVERAGE_API_SCHEMA',
    'API_ENDPOINTS',
    'get_nested_value',
    'extract_from_schema',
    'normalize_percent',
    'process_overage_data',
    'build_usage_snapshot',
    'schema_info',
    'parse_usage_text',
]
