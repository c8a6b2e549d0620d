"""Shared test fixtures and configuration for usage-sentinel tests."""

import json
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
import sys

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from usage_sentinel.capture.browser_session import BrowserConfig
from usage_sentinel.capture.network_observer import EndpointObserver


def make_log_entry(
    message_id="msg_1",
    request_id="req_1",
    input_tokens=100,
    output_tokens=50,
    cache_creation=0,
    cache_read=0,
    timestamp="2025-11-03T10:00:00Z",
    model="claude-sonnet-4-5",
    **extra
):
    """Build one raw activity log entry."""
    entry = {
        "type": "assistant",
        "timestamp": timestamp,
        "requestId": request_id,
        "message": {
            "id": message_id,
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": cache_creation,
                "cache_read_input_tokens": cache_read,
            },
        },
    }
    entry.update(extra)
    return entry


def write_log(path: Path, entries, raw_lines=()):
    """Write entries (and optional raw lines) as a JSONL file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(entry) for entry in entries]
    lines.extend(raw_lines)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_response(payload=None, status=200, json_error=None):
    """Mock Playwright APIResponse."""
    response = MagicMock()
    response.status = status
    response.status_text = "OK" if status < 400 else "Internal Server Error"
    response.ok = 200 <= status < 300
    response.json = AsyncMock(return_value=payload, side_effect=json_error)
    return response


def make_fake_session(observed_urls=(), responses=None, page_text="62% used", existing_session=True):
    """BrowserSession stand-in driving a real EndpointObserver.

    Navigating to the usage page "fires" a request for every URL in
    ``observed_urls``; replays answer from ``responses`` keyed by URL.
    """
    session = MagicMock()
    session.observer = EndpointObserver()
    session.has_existing_session = MagicMock(return_value=existing_session)
    session.ensure_ready = AsyncMock()
    session.mark_ready = MagicMock()
    session.close = AsyncMock()
    session.page_text = AsyncMock(return_value=page_text)

    def _browse(*args, **kwargs):
        for url in observed_urls:
            request = MagicMock()
            request.url = url
            request.headers = {"accept": "*/*", "host": "claude.ai", "content-length": "0"}
            session.observer._on_request(request)
        return "https://claude.ai/settings/usage"

    session.ensure_logged_in = AsyncMock(side_effect=_browse)
    session.navigate_to_usage = AsyncMock(side_effect=_browse)

    responses = responses or {}

    def _get(url, **kwargs):
        if url not in responses:
            raise Exception(f"net::ERR_FAILED {url}")
        return responses[url]

    session.context.request.get = AsyncMock(side_effect=_get)
    return session


@pytest.fixture
def fake_session():
    """Factory for BrowserSession stand-ins."""
    return make_fake_session


@pytest.fixture
def api_response():
    """Factory for mocked API responses."""
    return make_response


@pytest.fixture
def log_entry():
    """Factory for raw activity log entries."""
    return make_log_entry


@pytest.fixture
def write_jsonl():
    """Helper that writes a JSONL log file."""
    return write_log


@pytest.fixture
def log_dir(tmp_path):
    """Empty activity log directory."""
    directory = tmp_path / "projects"
    directory.mkdir()
    return directory


@pytest.fixture
def usage_payload():
    """Usage endpoint payload with fractional utilization."""
    return {
        "five_hour": {"utilization": 0.45, "resets_at": "2025-11-03T15:00:00Z"},
        "seven_day": {"utilization": 0.78, "resets_at": None},
        "seven_day_sonnet": {"utilization": 0.12, "resets_at": "2025-11-08T00:00:00Z"},
        "extra_usage": None,
    }


@pytest.fixture
def overage_payload():
    """Overage spend limit payload in cents."""
    return {
        "is_enabled": True,
        "monthly_credit_limit": 10000,
        "used_credits": 6300,
        "currency": "USD",
        "out_of_credits": False,
    }


@pytest.fixture
def browser_config(tmp_path):
    """Browser configuration with a temporary profile and short timeouts."""
    return BrowserConfig(
        user_data_dir=tmp_path / "profile",
        discover_executable=False,
        page_timeout_ms=1000,
        login_timeout_ms=2000,
        settle_delay_ms=0,
        liveness_timeout_ms=500,
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
