"""
Streaming Exceptions

Errors raised once the event stream is open.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from eco_stream.core.exceptions.base import EcoStreamError

DEFAULT_STREAM_ERROR_MESSAGE = "Erro na stream SSE da Eco."


class StreamError(EcoStreamError):
    """
    Raised when the backend sends an explicit error event.

    Common causes:
    - Model/provider failure on the server side
    - Payload with ``status == "error"``

    Terminal: the message is surfaced to the caller.
    """
    pass


class StreamAbortedError(EcoStreamError):
    """
    Raised when a stream ends because of an accepted cancellation.

    Aborts are intentional and must not surface as a user-visible failure.
    Use ``is_abort_error`` instead of ``isinstance`` checks where the cause
    may also be a bare ``asyncio.CancelledError``.
    """

    def __init__(
        self,
        message: str = "A leitura do stream foi abortada.",
        stream_id: str | None = None,
        details: dict[str, Any] | None = None,
        reason: str | None = None,
    ):
        super().__init__(message, stream_id=stream_id, details=details)
        self.reason = reason
        if reason:
            self.details.setdefault("reason", reason)


class StreamStalledError(StreamAbortedError):
    """
    Raised when a watchdog aborted a stalled stream and no fallback ran.

    Unlike other aborts this one is also reported through ``on_error``.
    """
    pass
