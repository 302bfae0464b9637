"""
JSON Fallback Manager

Degraded mode for a stream that never starts producing text.

FLOW:
-----
1. ``start_guard()`` arms a timer when the request is sent.
2. The guard (or a first-token / heartbeat watchdog) calls ``trigger()``.
   When eligible, the SSE read is aborted with ``watchdog_timeout``.
3. The session sees ``requested`` after the read loop unwinds and awaits
   ``run_request()``: one POST to the non-streaming endpoint.
4. The JSON answer is turned into a ``chunk`` + control ``done`` envelope
   pair that the session replays through its normal event pipeline.

ELIGIBILITY:
------------
- fallback enabled for the session
- no real chunk delivered yet
- not already requested (at most one POST per session)
- turn not cancelled by the caller or superseded by a new send

Author: System Architect
Date: 2025-12-07
"""

import asyncio
from typing import Any

import httpx
import orjson

from eco_stream.core.config.constants import (
    JSON_FALLBACK_SOURCE,
    AbortReason,
    EventType,
    Stage,
)
from eco_stream.core.exceptions import ProtocolError, TransportError
from eco_stream.core.logging import get_logger, log_stage
from eco_stream.streaming.cancellation import (
    AbortController,
    AbortSignal,
    abort_controller_safely,
    race_with_signal,
    resolve_close_reason,
)
from eco_stream.streaming.models import StreamRunStats
from eco_stream.streaming.request_builder import parse_non_stream_response

logger = get_logger(__name__)

GUARD_TIMEOUT_REASON = "guard_timeout"


def build_fallback_envelopes(text: str, parsed: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """Synthetic ``chunk`` + control ``done`` envelopes for a fallback answer."""
    parsed = parsed or {}
    metadata: dict[str, Any] = {}
    if isinstance(parsed.get("metadata"), dict):
        metadata.update(parsed["metadata"])
    metadata["finish_reason"] = JSON_FALLBACK_SOURCE
    metadata["source"] = JSON_FALLBACK_SOURCE

    done_payload: dict[str, Any] = {
        "name": EventType.DONE.value,
        "text": text,
        "metadata": metadata,
    }
    if parsed.get("primeira_memoria_significativa"):
        done_payload["primeiraMemoriaSignificativa"] = True

    return [
        {
            "type": EventType.CHUNK.value,
            "payload": {
                "index": 0,
                "text": text,
                "source": JSON_FALLBACK_SOURCE,
                "isFirstChunk": True,
            },
        },
        {"type": EventType.CONTROL.value, "payload": done_payload},
    ]


class FallbackManager:
    """
    Per-session fallback state.

    ``stream_controller`` is the controller of the SSE read only; the
    fallback POST itself races ``turn_signal`` so caller cancellation still
    stops it.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        guard_timeout_ms: int,
        stats: StreamRunStats,
        stream_controller: AbortController,
        turn_signal: AbortSignal,
        http_client: httpx.AsyncClient | None = None,
        url: str | None = None,
        timeout: float | None = None,
    ):
        self.enabled = enabled
        self.guard_timeout_ms = guard_timeout_ms
        self.stats = stats
        self.http_client = http_client
        self.url = url
        self.timeout = timeout
        self._stream_controller = stream_controller
        self._turn_signal = turn_signal
        self._guard: asyncio.TimerHandle | None = None
        self._requested = False
        self._first_chunk_seen = False

    @property
    def requested(self) -> bool:
        return self._requested

    @property
    def guard_armed(self) -> bool:
        return self._guard is not None

    def mark_first_chunk(self) -> None:
        self._first_chunk_seen = True
        self.clear_guard()

    def start_guard(self) -> None:
        self.clear_guard()
        if not self.enabled or self.guard_timeout_ms <= 0:
            return
        self.stats.guard_timeout_ms = self.guard_timeout_ms
        loop = asyncio.get_running_loop()
        self._guard = loop.call_later(self.guard_timeout_ms / 1000, self._on_guard_timeout)

    def clear_guard(self) -> None:
        if self._guard is not None:
            self._guard.cancel()
            self._guard = None

    def _on_guard_timeout(self) -> None:
        self._guard = None
        log_stage(logger, Stage.FALLBACK, "Fallback guard fired", level="warning",
                  guard_timeout_ms=self.guard_timeout_ms)
        if self.trigger(GUARD_TIMEOUT_REASON):
            self.stats.guard_fallback_triggered = True

    def is_blocked(self) -> bool:
        """True once the caller cancelled the turn or a new send superseded it."""
        return self._turn_signal.aborted

    def blocking_reason(self) -> str | None:
        if not self._turn_signal.aborted:
            return None
        return resolve_close_reason(self._turn_signal.reason)

    def can_trigger(self) -> bool:
        return (
            self.enabled
            and not self._first_chunk_seen
            and not self._requested
            and not self.is_blocked()
        )

    def trigger(self, reason: str) -> bool:
        """
        Request the fallback and abort the SSE read.

        Returns:
            True only for the call that actually requested the fallback.
        """
        if not self.can_trigger():
            log_stage(
                logger, Stage.FALLBACK, "Fallback not eligible", level="debug",
                reason=reason, requested=self._requested,
                first_chunk_seen=self._first_chunk_seen, blocked_by=self.blocking_reason(),
            )
            return False

        self._requested = True
        self.stats.client_finish_reason = reason
        self.clear_guard()
        log_stage(logger, Stage.FALLBACK, "JSON fallback requested", level="warning", reason=reason)

        abort_controller_safely(self._stream_controller, AbortReason.WATCHDOG_TIMEOUT)
        return True

    async def run_request(self, body: dict[str, Any], headers: dict[str, str]) -> list[dict[str, Any]]:
        """
        POST ``body`` to the non-streaming endpoint.

        Returns:
            The envelopes to replay through the session pipeline.

        Raises:
            ProtocolError: non-2xx answer
            TransportError: network failure
            StreamAbortedError: the turn was cancelled while waiting
        """
        if self.http_client is None or not self.url:
            raise ProtocolError(
                "Eco fallback endpoint is not configured",
                details={"reason": "json_fallback_unconfigured"},
            )

        self.stats.json_fallback_attempts += 1
        log_stage(logger, Stage.FALLBACK, "Sending JSON fallback request", level="info",
                  attempt=self.stats.json_fallback_attempts)

        try:
            response = await race_with_signal(
                self.http_client.post(self.url, json=body, headers=headers, timeout=self.timeout),
                self._turn_signal,
            )
        except httpx.TransportError as exc:
            raise TransportError.from_exception(
                exc, message="Eco fallback request failed", reason="json_fallback_network_error"
            ) from exc

        if not response.is_success:
            message = response.text.strip() or f"Eco fallback request failed ({response.status_code})"
            raise ProtocolError(
                message,
                details={"reason": "json_fallback_http_error"},
                status=response.status_code,
            )

        try:
            data = orjson.loads(response.content) if response.content else {}
        except orjson.JSONDecodeError:
            data = {"text": response.text}

        parsed = parse_non_stream_response(data)
        text = parsed["text"] or ""
        self.stats.json_fallback_succeeded = True
        self.stats.status = response.status_code
        log_stage(logger, Stage.FALLBACK, "JSON fallback succeeded", level="info", text_length=len(text))
        return build_fallback_envelopes(text, parsed)
