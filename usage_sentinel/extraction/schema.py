"""Schema-driven extraction of usage data from internal API payloads.

All knowledge of the remote field layout lives in the schema constants
below. When the service changes its payloads, update the schemas and
bump ``SCHEMA_VERSION``; the extraction code stays the same.

Schema format:
    { group: { field: {"path": "dot.path", "default": value} } }
or, for a single-field group:
    { group: {"path": "dot.path", "default": value} }
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models.capture import EndpointCategory, EndpointDescriptor
from ..models.usage import LimitWindow, MonthlyCredits, UsageSnapshot

logger = logging.getLogger(__name__)


SCHEMA_VERSION = "2025-11"


USAGE_API_SCHEMA: Dict[str, Dict[str, Any]] = {
    # Rolling 5-hour session limit
    "five_hour": {
        "utilization": {"path": "five_hour.utilization", "default": None},
        "resets_at": {"path": "five_hour.resets_at", "default": None},
    },
    # 7-day limit across all models
    "seven_day": {
        "utilization": {"path": "seven_day.utilization", "default": None},
        "resets_at": {"path": "seven_day.resets_at", "default": None},
    },
    "extra_usage": {"path": "extra_usage", "default": None},
}

# Per-model 7-day windows, keyed by the model name reported to callers
PER_MODEL_SCHEMA: Dict[str, Dict[str, Any]] = {
    "sonnet": {
        "utilization": {"path": "seven_day_sonnet.utilization", "default": None},
        "resets_at": {"path": "seven_day_sonnet.resets_at", "default": None},
    },
    "opus": {
        "utilization": {"path": "seven_day_opus.utilization", "default": None},
        "resets_at": {"path": "seven_day_opus.resets_at", "default": None},
    },
}

# Monetary amounts are integer minor units (cents)
OVERAGE_API_SCHEMA: Dict[str, Dict[str, Any]] = {
    "is_enabled": {"path": "is_enabled", "default": False},
    "monthly_limit": {"path": "monthly_credit_limit", "default": 0},
    "used_credits": {"path": "used_credits", "default": 0},
    "currency": {"path": "currency", "default": "USD"},
    "out_of_credits": {"path": "out_of_credits", "default": False},
}

# Checked in order; the first descriptor matching a URL wins
API_ENDPOINTS: List[EndpointDescriptor] = [
    EndpointDescriptor(
        category=EndpointCategory.USAGE,
        path_prefix="/api/organizations/",
        path_substring="/usage",
        description="Main usage metrics endpoint",
    ),
    EndpointDescriptor(
        category=EndpointCategory.CREDITS,
        path_prefix="/api/organizations/",
        path_substring="/prepaid/credits",
        description="Prepaid credits balance",
    ),
    EndpointDescriptor(
        category=EndpointCategory.OVERAGE_LIMIT,
        path_prefix="/api/organizations/",
        path_substring="/overage_spend_limit",
        description="Monthly spend limit / extra usage",
    ),
]


_MISSING = object()


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """Look up a value in nested mappings by dot-separated path.

    Only None (or a missing key) falls back to ``default``; falsy values
    such as 0, False and "" are returned as-is.

    Example:
        >>> get_nested_value({"a": {"b": 0}}, "a.b", 5)
        0
    """
    if obj is None or not path:
        return default

    current = obj
    for part in path.split('.'):
        if not isinstance(current, Mapping):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING or current is None:
            return default

    return current


def _is_leaf(entry: Any) -> bool:
    return isinstance(entry, Mapping) and 'path' in entry


def extract_from_schema(payload: Any, schema: Mapping[str, Any]) -> Dict[str, Any]:
    """Resolve every field of ``schema`` against ``payload``.

    Returns a plain dict with the same group/field shape as the schema.
    """
    result: Dict[str, Any] = {}

    for group_name, group in schema.items():
        if _is_leaf(group):
            result[group_name] = get_nested_value(payload, group['path'], group.get('default'))
            continue

        result[group_name] = {
            field_name: get_nested_value(payload, entry['path'], entry.get('default'))
            for field_name, entry in group.items()
        }

    return result


def _finite_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric utilization: {value!r}")
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def utilization_scale(values: Iterable[Any]) -> float:
    """Multiplier that turns one payload's utilizations into percentages.

    A payload reports either fractions or whole percentages for every
    window. Any value above 1 marks it as percentages (scale 1);
    otherwise all values are fractions (scale 100).
    """
    for value in values:
        number = _finite_number(value)
        if number is not None and number > 1:
            return 1.0
    return 100.0


def normalize_percent(value: Any, scale: Optional[float] = None) -> Optional[float]:
    """Normalize a reported utilization to a percentage in [0, 100].

    ``scale`` comes from ``utilization_scale`` over the whole payload.
    Without it the value is judged on its own: [0, 1] is a fraction,
    anything larger is already a percentage. None and non-numeric values
    yield None.
    """
    number = _finite_number(value)
    if number is None:
        return None

    if scale is None:
        scale = utilization_scale([number])
    number *= scale
    return round(min(max(number, 0.0), 100.0), 2)


def _limit_window(fields: Mapping[str, Any], scale: Optional[float] = None) -> LimitWindow:
    resets_at = fields.get('resets_at')
    return LimitWindow(
        utilization=normalize_percent(fields.get('utilization'), scale),
        resets_at=str(resets_at) if resets_at is not None else None,
    )


def process_overage_data(overage_data: Optional[Mapping[str, Any]]) -> Optional[MonthlyCredits]:
    """Convert the overage spend-limit payload into monthly credits.

    Returns None when the payload is missing or overage is not enabled.
    A zero limit yields a percent of 0.
    """
    if not overage_data:
        return None

    extracted = extract_from_schema(overage_data, OVERAGE_API_SCHEMA)
    if not extracted['is_enabled']:
        return None

    try:
        used = float(extracted['used_credits']) / 100
        limit = float(extracted['monthly_limit']) / 100
    except (TypeError, ValueError):
        logger.warning("Overage payload has non-numeric credit amounts")
        return None

    percent = round((used / limit) * 100) if limit > 0 else 0

    return MonthlyCredits(
        used=used,
        limit=limit,
        currency=str(extracted['currency']),
        percent=max(percent, 0),
        out_of_credits=bool(extracted['out_of_credits']),
    )


def build_usage_snapshot(
    usage_payload: Mapping[str, Any],
    overage_payload: Optional[Mapping[str, Any]] = None,
    credits_payload: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> UsageSnapshot:
    """Build a normalized snapshot from captured endpoint payloads."""
    extracted = extract_from_schema(usage_payload, USAGE_API_SCHEMA)
    per_model = extract_from_schema(usage_payload, PER_MODEL_SCHEMA)
    scale = utilization_scale(
        [extracted['five_hour']['utilization'], extracted['seven_day']['utilization']]
        + [fields['utilization'] for fields in per_model.values()]
    )

    seven_day_per_model = {}
    for model_name, fields in per_model.items():
        if fields['utilization'] is None and fields['resets_at'] is None:
            continue
        seven_day_per_model[model_name] = _limit_window(fields, scale)

    raw_payload: Dict[str, Any] = {"usage": dict(usage_payload)}
    if overage_payload is not None:
        raw_payload["overage_limit"] = overage_payload
    if credits_payload is not None:
        raw_payload["credits"] = credits_payload

    return UsageSnapshot(
        five_hour=_limit_window(extracted['five_hour'], scale),
        seven_day=_limit_window(extracted['seven_day'], scale),
        seven_day_per_model=seven_day_per_model,
        extra_usage=extracted['extra_usage'],
        monthly_credits=process_overage_data(overage_payload),
        prepaid_credits=dict(credits_payload) if isinstance(credits_payload, Mapping) else None,
        timestamp=now or datetime.now(timezone.utc),
        schema_version=SCHEMA_VERSION,
        raw_payload=raw_payload,
        source="api",
    )


def schema_info() -> Dict[str, Any]:
    """Describe the active schema for debugging."""
    return {
        "version": SCHEMA_VERSION,
        "usage_fields": list(USAGE_API_SCHEMA.keys()),
        "per_model_fields": list(PER_MODEL_SCHEMA.keys()),
        "overage_fields": list(OVERAGE_API_SCHEMA.keys()),
        "endpoints": [descriptor.category.value for descriptor in API_ENDPOINTS],
    }
