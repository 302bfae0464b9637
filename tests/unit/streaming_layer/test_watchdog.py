"""
Unit Tests for Watchdog Timers

Timers run on the real loop with millisecond timeouts.
"""

import asyncio

import pytest

from eco_stream.core.config.constants import CloseReason, WatchdogMode
from eco_stream.streaming.watchdog import SSEWatchdog, TypingWatchdog


@pytest.mark.unit
class TestSSEWatchdog:
    """Test first-token and steady modes."""

    async def test_first_token_fires_once(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=10, heartbeat_ms=1_000)

        watchdog.mark_prompt_ready(fired.append)
        assert watchdog.mode is WatchdogMode.FIRST
        await asyncio.sleep(0.08)

        assert fired == [CloseReason.WATCHDOG_FIRST_TOKEN]
        assert watchdog.fired_count == 1
        assert watchdog.armed is False

    async def test_heartbeat_reason_in_steady_mode(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=1_000, heartbeat_ms=10)

        watchdog.bump_first_token(fired.append)
        assert watchdog.mode is WatchdogMode.STEADY
        await asyncio.sleep(0.08)

        assert fired == [CloseReason.WATCHDOG_HEARTBEAT]

    async def test_rearm_replaces_timer(self):
        """Bumping before expiry postpones the timeout."""
        fired = []
        watchdog = SSEWatchdog(first_token_ms=1_000, heartbeat_ms=150)

        watchdog.bump_first_token(fired.append)
        await asyncio.sleep(0.1)
        watchdog.bump_heartbeat()
        await asyncio.sleep(0.1)

        assert fired == []
        await asyncio.sleep(0.15)
        assert fired == [CloseReason.WATCHDOG_HEARTBEAT]

    async def test_bump_keeps_last_handler(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=1_000, heartbeat_ms=10)

        watchdog.mark_prompt_ready(fired.append)
        watchdog.bump_heartbeat()
        await asyncio.sleep(0.08)

        assert fired == [CloseReason.WATCHDOG_HEARTBEAT]

    async def test_clear_with_notify_reports_server_done(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=1_000, heartbeat_ms=1_000)
        watchdog.mark_prompt_ready(fired.append)

        watchdog.clear(notify=True)
        watchdog.clear(notify=True)
        await asyncio.sleep(0.02)

        assert fired == [CloseReason.SERVER_DONE]
        assert watchdog.mode is WatchdogMode.IDLE

    async def test_clear_without_outstanding_timer_is_silent(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=10, heartbeat_ms=10)
        watchdog.mark_prompt_ready(fired.append)
        await asyncio.sleep(0.05)

        watchdog.clear(notify=True)

        assert fired == [CloseReason.WATCHDOG_FIRST_TOKEN]

    async def test_zero_timeout_disables(self):
        fired = []
        watchdog = SSEWatchdog(first_token_ms=0, heartbeat_ms=0)

        watchdog.mark_prompt_ready(fired.append)
        await asyncio.sleep(0.02)

        assert fired == []
        assert watchdog.armed is False

    async def test_failing_handler_is_contained(self):
        def broken(reason):
            raise RuntimeError("boom")

        watchdog = SSEWatchdog(first_token_ms=5, heartbeat_ms=5)
        watchdog.mark_prompt_ready(broken)
        await asyncio.sleep(0.05)

        assert watchdog.fired_count == 1

    async def test_since_prompt_ready(self):
        watchdog = SSEWatchdog()
        assert watchdog.since_prompt_ready_ms == 0.0

        watchdog.mark_prompt_ready(lambda reason: None)
        await asyncio.sleep(0.02)

        assert watchdog.since_prompt_ready_ms >= 10
        watchdog.clear()


@pytest.mark.unit
class TestTypingWatchdog:
    async def test_fires_after_timeout(self):
        calls = []
        typing = TypingWatchdog(timeout_ms=10, on_timeout=lambda: calls.append(1))

        typing.start()
        await asyncio.sleep(0.06)

        assert calls == [1]
        assert typing.armed is False

    async def test_clear_prevents_firing(self):
        calls = []
        typing = TypingWatchdog(timeout_ms=20, on_timeout=lambda: calls.append(1))

        typing.start()
        typing.clear()
        await asyncio.sleep(0.05)

        assert calls == []
