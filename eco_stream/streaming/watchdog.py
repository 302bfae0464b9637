"""
Watchdog Timers

Stall detection for one streaming session.

SSEWatchdog runs in two modes:
- ``first``: armed on prompt_ready; fires ``watchdog_first_token`` when no
  chunk arrives in time.
- ``steady``: re-armed on every accepted chunk; fires ``watchdog_heartbeat``
  after a period of silence.

Re-arming always cancels and replaces the current timer, so at most one timer
is live per watchdog. ``clear(notify=True)`` is used on teardown: if a timer
was outstanding, its handler is invoked once with ``server_done``.

TypingWatchdog is a separate, longer timer guarding the "assistant is typing"
indicator. It is cleared on the first chunk or on termination.

Timers are ``loop.call_later`` handles; a timeout <= 0 disables the timer.

Author: System Architect
Date: 2025-12-06
"""

import asyncio
import time
from collections.abc import Callable

from eco_stream.core.config.constants import CloseReason, Stage, WatchdogMode
from eco_stream.core.logging import get_logger, log_stage

logger = get_logger(__name__)

TimeoutHandler = Callable[[CloseReason], None]

DEFAULT_FIRST_TOKEN_MS = 25_000
DEFAULT_HEARTBEAT_MS = 30_000
DEFAULT_TYPING_MS = 45_000


def _invoke(handler: Callable, *args) -> None:
    try:
        handler(*args)
    except Exception as exc:
        logger.error(
            "Watchdog handler failed",
            stage=Stage.WATCHDOG.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )


class SSEWatchdog:
    """
    First-token / steady watchdog pair for one session.

    Usage:
        watchdog = SSEWatchdog(first_token_ms=25_000, heartbeat_ms=30_000)
        watchdog.mark_prompt_ready(on_timeout)   # mode = first
        watchdog.bump_heartbeat()                # mode = steady, same handler
        watchdog.clear(notify=True)              # teardown
    """

    def __init__(
        self,
        first_token_ms: int = DEFAULT_FIRST_TOKEN_MS,
        heartbeat_ms: int = DEFAULT_HEARTBEAT_MS,
        name: str = "session",
    ):
        self.first_token_ms = first_token_ms
        self.heartbeat_ms = heartbeat_ms
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._mode = WatchdogMode.IDLE
        self._handler: TimeoutHandler | None = None
        self._prompt_ready_at: float | None = None
        self._fired = 0

    @property
    def mode(self) -> WatchdogMode:
        return self._mode

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def fired_count(self) -> int:
        return self._fired

    @property
    def since_prompt_ready_ms(self) -> float:
        if self._prompt_ready_at is None:
            return 0.0
        return (time.monotonic() - self._prompt_ready_at) * 1000

    def mark_prompt_ready(self, on_timeout: TimeoutHandler | None = None) -> None:
        self._prompt_ready_at = time.monotonic()
        self._arm(WatchdogMode.FIRST, on_timeout)

    def bump_first_token(self, on_timeout: TimeoutHandler | None = None) -> None:
        self._arm(WatchdogMode.STEADY, on_timeout)

    def bump_heartbeat(self, on_timeout: TimeoutHandler | None = None) -> None:
        self._arm(WatchdogMode.STEADY, on_timeout)

    def clear(self, notify: bool = False) -> None:
        """
        Cancel the outstanding timer.

        With ``notify=True`` the registered handler is invoked once with
        ``server_done`` if a timer was outstanding.
        """
        outstanding = self._handle is not None
        self._cancel()
        if notify and outstanding and self._handler is not None:
            handler, self._handler = self._handler, None
            _invoke(handler, CloseReason.SERVER_DONE)

    def _arm(self, mode: WatchdogMode, on_timeout: TimeoutHandler | None) -> None:
        self._cancel()
        self._mode = mode
        if on_timeout is not None:
            self._handler = on_timeout
        if self._handler is None:
            return

        timeout_ms = self.first_token_ms if mode is WatchdogMode.FIRST else self.heartbeat_ms
        if timeout_ms <= 0:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(timeout_ms / 1000, self._fire, mode)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._mode = WatchdogMode.IDLE

    def _fire(self, mode: WatchdogMode) -> None:
        self._handle = None
        self._mode = WatchdogMode.IDLE
        handler = self._handler
        if handler is None:
            return
        reason = (
            CloseReason.WATCHDOG_FIRST_TOKEN
            if mode is WatchdogMode.FIRST
            else CloseReason.WATCHDOG_HEARTBEAT
        )
        self._fired += 1
        log_stage(
            logger, Stage.WATCHDOG, "Watchdog fired", level="warning",
            watchdog=self.name, reason=reason.value,
            since_prompt_ready_ms=round(self.since_prompt_ready_ms),
        )
        _invoke(handler, reason)


class TypingWatchdog:
    """Single-shot timer for the typing indicator."""

    def __init__(self, timeout_ms: int = DEFAULT_TYPING_MS, on_timeout: Callable[[], None] | None = None):
        self.timeout_ms = timeout_ms
        self._on_timeout = on_timeout
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.clear()
        if self.timeout_ms <= 0 or self._on_timeout is None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout_ms / 1000, self._fire)

    def clear(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        log_stage(logger, Stage.WATCHDOG, "Typing watchdog fired", level="debug", timeout_ms=self.timeout_ms)
        _invoke(self._on_timeout)
