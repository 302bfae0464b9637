"""
Abort Coordination - Educational Documentation
==============================================

WHAT IS THIS MODULE?
--------------------
Cancellation primitives for one streaming turn. Several independent sources
may want to stop a stream:

- the caller (user pressed "stop", component unmounted)
- a watchdog that detected a stall
- a newer send for the same message (single-flight)
- the session itself when it finalizes

An ``AbortController`` owns an ``AbortSignal``. Signals can be merged so one
read loop observes every source at once.

THE ALLOW-LIST:
---------------
Unrelated code paths must not be able to tear a live stream down by accident.
``abort_controller_safely`` only forwards a small set of reasons
(``watchdog_timeout``, ``user_cancel``, ``finalize``) to the controller; any
other reason is logged and ignored. It is also idempotent: the second call
for a controller is a no-op.

RACING A READ AGAINST A SIGNAL:
-------------------------------
``race_with_signal`` awaits an operation and the signal together. If the
signal wins, the pending operation is cancelled and ``StreamAbortedError`` is
raised carrying the abort reason.

Author: System Architect
Date: 2025-12-06
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from eco_stream.core.config.constants import (
    ABORT_REASON_ALIASES,
    ALLOWED_ABORT_REASONS,
    NEW_SEND_REASON,
    CloseReason,
    Stage,
)
from eco_stream.core.exceptions import StreamAbortedError
from eco_stream.core.logging import get_logger, log_stage

logger = get_logger(__name__)

T = TypeVar("T")

AbortListener = Callable[[Any], None]


# ============================================================================
# SIGNAL / CONTROLLER
# ============================================================================


class AbortSignal:
    """
    Read side of a cancellation pair.

    Listeners are called synchronously, once, with the abort reason.
    """

    def __init__(self):
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[AbortListener] = []
        self._event: asyncio.Event | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, listener: AbortListener) -> None:
        """Register a listener; called immediately if already aborted."""
        if self._aborted:
            _call_listener(listener, self._reason)
            return
        self._listeners.append(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def wait(self) -> Any:
        """Block until aborted; returns the reason."""
        if self._aborted:
            return self._reason
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()
        return self._reason

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise StreamAbortedError(reason=_reason_text(self._reason))

    def _fire(self, reason: Any) -> bool:
        if self._aborted:
            return False
        self._aborted = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            _call_listener(listener, reason)
        return True


class AbortController:
    """Write side: ``abort(reason)`` fires the signal once."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> bool:
        """Returns False when the signal was already aborted."""
        return self.signal._fire(reason)

    def __repr__(self) -> str:
        state = f"aborted reason={self.signal.reason!r}" if self.signal.aborted else "live"
        return f"AbortController({state})"


def _call_listener(listener: AbortListener, reason: Any) -> None:
    try:
        listener(reason)
    except Exception as exc:
        logger.error("Abort listener failed", error=str(exc), error_type=type(exc).__name__)


def _reason_text(reason: Any) -> str | None:
    if reason is None:
        return None
    return reason.value if hasattr(reason, "value") else str(reason)


# ============================================================================
# MERGING
# ============================================================================


def merge_signals(*signals: AbortSignal | None) -> tuple[AbortSignal, Callable[[], None]]:
    """
    Derive a signal that aborts as soon as any source aborts.

    Returns:
        (signal, cleanup) - cleanup removes the listeners from the sources.

    Example:
        merged, cleanup = merge_signals(user_signal, controller.signal)
        try:
            ...
        finally:
            cleanup()
    """
    derived = AbortController()
    registered: list[tuple[AbortSignal, AbortListener]] = []

    for source in signals:
        if source is None:
            continue
        if source.aborted:
            derived.abort(source.reason)
            continue

        def forward(reason: Any, _derived: AbortController = derived) -> None:
            _derived.abort(reason)

        source.add_listener(forward)
        registered.append((source, forward))

    def cleanup() -> None:
        for source, listener in registered:
            source.remove_listener(listener)
        registered.clear()

    return derived.signal, cleanup


# ============================================================================
# SAFE ABORT (ALLOW-LIST)
# ============================================================================


def normalize_abort_reason(reason: Any) -> str | None:
    """Map legacy spellings to the canonical allow-listed reason."""
    text = _reason_text(reason)
    if text is None:
        return None
    alias = ABORT_REASON_ALIASES.get(text)
    return alias.value if alias is not None else text


def abort_controller_safely(controller: AbortController, reason: Any) -> bool:
    """
    Abort ``controller`` if ``reason`` is allow-listed and it is still live.

    Returns:
        True only for the call that actually aborted the controller.
    """
    text = _reason_text(reason)

    if controller.signal.aborted:
        log_stage(
            logger, Stage.ABORT, "Abort skipped, controller already aborted",
            level="debug", reason=text, previous_reason=_reason_text(controller.signal.reason),
        )
        return False

    if text not in ALLOWED_ABORT_REASONS:
        log_stage(logger, Stage.ABORT, "Abort ignored, reason not allowed", level="warning", reason=text)
        return False

    canonical = normalize_abort_reason(text)
    log_stage(logger, Stage.ABORT, "Aborting controller", level="info", reason=canonical)
    return controller.abort(canonical)


def resolve_close_reason(reason: Any) -> str:
    """
    Map an abort reason to the close reason recorded for the turn.

    Caller cancellations (including a bare external abort) are ``ui_abort``.
    """
    canonical = normalize_abort_reason(reason)
    if canonical in (None, "user_cancel"):
        return CloseReason.UI_ABORT.value
    if canonical == NEW_SEND_REASON:
        return NEW_SEND_REASON
    return canonical


def is_abort_error(exc: BaseException | None, signal: AbortSignal | None = None) -> bool:
    """
    True when ``exc`` represents an intentional cancellation.

    Checks the signal first: any error raised while the signal is aborted
    is an abort, whatever its type.
    """
    if signal is not None and signal.aborted:
        return True
    return isinstance(exc, (StreamAbortedError, asyncio.CancelledError))


# ============================================================================
# RACING
# ============================================================================


async def race_with_signal(awaitable: Awaitable[T], signal: AbortSignal) -> T:
    """
    Await ``awaitable`` unless ``signal`` aborts first.

    On abort the pending operation is cancelled (and awaited) before
    ``StreamAbortedError`` is raised.
    """
    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise StreamAbortedError(reason=_reason_text(signal.reason))

    operation = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not operation.done():
            operation.cancel()
            await asyncio.wait({operation})
            if not operation.cancelled():
                operation.exception()  # mark as retrieved

    if operation in done:
        return operation.result()
    raise StreamAbortedError(reason=_reason_text(signal.reason))
