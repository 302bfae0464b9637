"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from eco_stream.streaming.session import SessionConfig  # noqa: E402
from tests.test_fixtures.backend_factory import FakeEcoBackend  # noqa: E402
from tests.test_fixtures.handler_recorder import HandlerRecorder  # noqa: E402
from tests.test_fixtures.request_factory import RequestFactory  # noqa: E402

# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio runs in auto mode (see pyproject.toml)

STREAM_URL = "http://eco.test/api/ask-eco"


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def session_config():
    """
    SessionConfig with generous timers and instant retries.

    Individual tests shrink the timer they exercise with ``model_copy``.
    """
    return SessionConfig(
        stream_url=STREAM_URL,
        fallback_url=STREAM_URL,
        request_timeout=5.0,
        max_retries=1,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        first_token_ms=5_000,
        heartbeat_ms=5_000,
        typing_ms=5_000,
        fallback_enabled=False,
        guard_timeout_ms=0,
    )


@pytest.fixture
def fallback_config(session_config):
    """SessionConfig with the JSON fallback enabled."""
    return session_config.model_copy(update={"fallback_enabled": True})


# ============================================================================
# Fake Backend Fixtures
# ============================================================================


@pytest.fixture
def fake_backend():
    """
    Factory for scripted ``ask-eco`` backends.

    Usage:
        backend = fake_backend(stream_parts=[sse_event({"text": "Olá"}, event="chunk")])
        async with backend.client() as http_client:
            ...
    """

    def _create(**kwargs) -> FakeEcoBackend:
        return FakeEcoBackend(**kwargs)

    return _create


@pytest.fixture
def recorder():
    """HandlerRecorder whose ``handlers`` capture every callback invocation."""
    return HandlerRecorder()


@pytest.fixture
def request_factory():
    return RequestFactory
