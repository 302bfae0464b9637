"""
Stream Session - Educational Documentation
==========================================

WHAT IS A STREAM SESSION?
-------------------------
One conversational turn: one POST to ``ask-eco``, one SSE response body, one
aggregated answer. The session owns every per-turn component:

    bytes ─► SSEFrameReader ─► normalize_event ─► ChunkGuard ─► _apply ─► _dispatch
                                                                  │
                              SSEWatchdog / TypingWatchdog ◄──────┤
                              FallbackManager ◄───────────────────┘

STATE MACHINE:
--------------
    idle ─► sending ─► streaming ─► done
                 │          ├─────► errored
                 └──────────┴─────► aborted

Exactly one terminal outcome per session.

CANCELLATION:
-------------
Two controllers are involved:

- ``controller`` (turn level): caller cancellation (``user_cancel``) and
  single-flight supersession (``new-send``). Stops everything, including a
  running JSON fallback.
- ``_stream_controller`` (SSE level): watchdogs, the fallback guard and
  teardown (``finalize``). Stops the SSE read only, so the fallback POST can
  still run afterwards.

The SSE read races ``merge(stream, turn, external)``; the fallback POST races
``merge(turn, external)``.

RESULT MODES:
-------------
- ``await session.run()`` returns a ``StreamResult`` (``aborted=True`` for
  intentional cancellations) and raises on errors.
- ``async for event in session.events()`` yields every dispatched event.

Author: System Architect
Date: 2025-12-07
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import orjson
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from eco_stream.core.config import Settings, get_settings
from eco_stream.core.config.constants import (
    SSE_CONTENT_TYPE,
    TERMINAL_PHASES,
    AbortReason,
    CloseReason,
    EventType,
    Stage,
    StreamPhase,
)
from eco_stream.core.exceptions import (
    EcoStreamError,
    ProtocolError,
    StreamAbortedError,
    StreamError,
    StreamStalledError,
    TransportError,
    friendly_status_message,
)
from eco_stream.core.exceptions.transport import INVALID_STREAM_MESSAGE, NETWORK_ERROR_MESSAGE
from eco_stream.core.logging import clear_stream_id, get_logger, log_stage, set_stream_id
from eco_stream.streaming.cancellation import (
    AbortController,
    AbortSignal,
    abort_controller_safely,
    merge_signals,
    race_with_signal,
    resolve_close_reason,
)
from eco_stream.streaming.chunk_guard import ChunkGuard
from eco_stream.streaming.event_normalizer import (
    extract_finish_reason,
    normalize_event,
    should_ignore_text,
)
from eco_stream.streaming.fallback import FallbackManager
from eco_stream.streaming.frame_reader import RawFrame, SSEFrameReader
from eco_stream.streaming.models import (
    NormalizedEvent,
    StreamHandlers,
    StreamRequest,
    StreamResult,
    StreamRunStats,
    StreamState,
)
from eco_stream.streaming.request_builder import (
    IdentityProvider,
    build_fallback_headers,
    build_request_body,
    build_stream_headers,
    capture_response_headers,
    new_stream_id,
)
from eco_stream.streaming.text_extraction import normalize_response_text
from eco_stream.streaming.watchdog import SSEWatchdog, TypingWatchdog

logger = get_logger(__name__)

_END = object()


class SessionConfig(BaseModel):
    """
    Immutable per-session configuration.

    Built from ``Settings`` by default; tests construct it directly with
    tiny timeouts.
    """

    model_config = {"frozen": True}

    stream_url: str
    fallback_url: str | None = None
    request_timeout: float = 60.0
    max_retries: int = 1
    retry_base_delay: float = 0.25
    retry_max_delay: float = 2.0
    first_token_ms: int = 25_000
    heartbeat_ms: int = 30_000
    typing_ms: int = 45_000
    fallback_enabled: bool = False
    guard_timeout_ms: int = 15_000

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "SessionConfig":
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "stream_url": settings.stream_url,
            "fallback_url": settings.fallback_url,
            "request_timeout": settings.STREAM_REQUEST_TIMEOUT,
            "max_retries": settings.STREAM_MAX_RETRIES,
            "retry_base_delay": settings.STREAM_RETRY_BASE_DELAY,
            "retry_max_delay": settings.STREAM_RETRY_MAX_DELAY,
            "first_token_ms": settings.WATCHDOG_FIRST_TOKEN_MS,
            "heartbeat_ms": settings.WATCHDOG_HEARTBEAT_MS,
            "typing_ms": settings.TYPING_WATCHDOG_MS,
            "fallback_enabled": settings.STREAM_FALLBACK_ENABLED,
            "guard_timeout_ms": settings.STREAM_GUARD_TIMEOUT_MS,
        }
        values.update(overrides)
        return cls(**values)


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _server_error_message(raw: bytes) -> str | None:
    """``error`` / ``error.message`` / ``message`` of a JSON body, else the body text."""
    if not raw:
        return None
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError:
        text = raw.decode("utf-8", errors="replace").strip()
        return text or None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        for candidate in (error, data.get("message")):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


class StreamSession:
    """
    One streaming turn.

    Usage:
        session = StreamSession(request, http_client=client, config=config, handlers=handlers)
        result = await session.run()
    """

    def __init__(
        self,
        request: StreamRequest,
        *,
        http_client: httpx.AsyncClient,
        config: SessionConfig,
        handlers: StreamHandlers | None = None,
        identity: IdentityProvider | None = None,
        signal: AbortSignal | None = None,
        controller: AbortController | None = None,
        stats: StreamRunStats | None = None,
        on_finish: Callable[["StreamSession"], None] | None = None,
    ):
        self.request = request
        self.http_client = http_client
        self.config = config
        self.handlers = handlers or StreamHandlers()
        self.identity = identity
        self.controller = controller or AbortController()
        self.stats = stats or StreamRunStats()
        self.state = StreamState()
        self.guard = ChunkGuard()
        self.result: StreamResult | None = None
        self._on_finish = on_finish
        self._started = False
        self._stall_reason: str | None = None
        self._queue: asyncio.Queue | None = None
        self.log = logger.bind(client_message_id=request.client_message_id)

        # STEP 1: Signals (turn level and SSE level)
        self._stream_controller = AbortController()
        self._turn_signal, turn_cleanup = merge_signals(self.controller.signal, signal)
        self._read_signal, read_cleanup = merge_signals(self._stream_controller.signal, self._turn_signal)
        self._cleanups = [read_cleanup, turn_cleanup]

        # STEP 2: Timers
        self.watchdog = SSEWatchdog(
            first_token_ms=config.first_token_ms,
            heartbeat_ms=config.heartbeat_ms,
            name=request.client_message_id,
        )
        self.typing = TypingWatchdog(config.typing_ms, on_timeout=self._on_typing_timeout)
        self.fallback = FallbackManager(
            enabled=config.fallback_enabled,
            guard_timeout_ms=config.guard_timeout_ms,
            stats=self.stats,
            stream_controller=self._stream_controller,
            turn_signal=self._turn_signal,
            http_client=http_client,
            url=config.fallback_url,
            timeout=config.request_timeout,
        )

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def phase(self) -> StreamPhase:
        return self.state.phase

    @property
    def client_message_id(self) -> str:
        return self.request.client_message_id

    def cancel(self, reason: str = AbortReason.USER_CANCEL.value) -> bool:
        """Caller-side cancellation; only allow-listed reasons take effect."""
        return abort_controller_safely(self.controller, reason)

    async def run(self) -> StreamResult:
        """
        Run the turn to completion.

        Returns:
            StreamResult (``aborted=True`` when the turn was cancelled)

        Raises:
            ProtocolError: unusable response
            TransportError: network failure after retries
            StreamError: error event from the backend
            StreamStalledError: watchdog stall without fallback
        """
        if self._started:
            raise RuntimeError("StreamSession.run() can only be called once")
        self._started = True
        self.stats.started_at = time.time()

        log_stage(self.log, Stage.INITIALIZATION, "Stream session started", level="info",
                  fallback_enabled=self.config.fallback_enabled)

        try:
            self.result = await self._execute()
            return self.result
        except StreamStalledError as exc:
            self._terminate(StreamPhase.ABORTED, self._stall_reason)
            self._notify_error(exc)
            raise
        except StreamAbortedError:
            self._terminate(StreamPhase.ABORTED, resolve_close_reason(self._abort_reason()))
            self.result = self._aborted_result()
            return self.result
        except asyncio.CancelledError:
            self._terminate(StreamPhase.ABORTED, CloseReason.UI_ABORT.value)
            raise
        except StreamError as exc:
            self._terminate(StreamPhase.ERRORED, CloseReason.SERVER_ERROR.value)
            self._notify_error(exc)
            raise
        except TransportError as exc:
            self._terminate(StreamPhase.ERRORED, CloseReason.NETWORK_ERROR.value)
            self._notify_error(exc)
            raise
        except EcoStreamError as exc:
            self._terminate(StreamPhase.ERRORED, CloseReason.SERVER_ERROR.value)
            self._notify_error(exc)
            raise
        finally:
            self._teardown()

    async def events(self) -> AsyncIterator[NormalizedEvent]:
        """
        Iterate over dispatched events.

        Errors raised by the run are re-raised after the last event. Leaving
        the loop early cancels the turn.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue

        async def runner() -> StreamResult:
            try:
                return await self.run()
            finally:
                queue.put_nowait(_END)

        task = asyncio.create_task(runner())
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
            await task
        finally:
            if not task.done():
                self.cancel()
                await asyncio.wait({task})
                if not task.cancelled() and task.exception() is not None:
                    self.log.debug("Stream runner ended after iterator close", error=str(task.exception()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _execute(self) -> StreamResult:
        # STEP 1: Send
        self._enter(StreamPhase.SENDING)
        self.fallback.start_guard()
        self.typing.start()

        try:
            response = await self._open_stream()
        except ProtocolError as exc:
            # Non-2xx surfaces as-is; only a non-SSE body is retried as JSON
            if exc.reason != "invalid_content_type":
                raise
            self.fallback.trigger(exc.reason)
            if self._fallback_pending():
                return await self._run_fallback()
            raise
        except StreamAbortedError as exc:
            return await self._recover_from_abort(exc)

        # STEP 2: Stream
        self._enter(StreamPhase.STREAMING)
        try:
            await self._consume(response)
        except StreamAbortedError as exc:
            if self.state.done_received:
                return self._finalize()
            return await self._recover_from_abort(exc)

        # STEP 3: Done
        return self._finalize()

    async def _recover_from_abort(self, exc: StreamAbortedError) -> StreamResult:
        if self._fallback_pending():
            return await self._run_fallback()
        if self._stall_reason and not self._turn_signal.aborted:
            raise StreamStalledError(
                "A Eco parou de responder. Tente novamente.",
                stream_id=self.stats.stream_id,
                reason=self._stall_reason,
            ) from exc
        raise exc

    def _fallback_pending(self) -> bool:
        return (
            self.fallback.requested
            and not self.fallback.is_blocked()
            and not self.state.done_received
        )

    async def _run_fallback(self) -> StreamResult:
        log_stage(self.log, Stage.FALLBACK, "Running JSON fallback", level="info",
                  reason=self.stats.client_finish_reason)
        body = build_request_body(self.request)
        headers = build_fallback_headers(self.request, self.identity)
        envelopes = await self.fallback.run_request(body, headers)
        # The replayed chunk restarts at index 0
        self.guard.reset()
        for envelope in envelopes:
            self._process(envelope)
        return self._finalize()

    async def _open_stream(self) -> httpx.Response:
        body = build_request_body(self.request)
        timeout = httpx.Timeout(self.config.request_timeout, read=None)

        @retry(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential_jitter(
                initial=self.config.retry_base_delay, max=self.config.retry_max_delay
            ),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
            before_sleep=lambda retry_state: log_stage(
                self.log, Stage.RETRY, "Retrying stream request", level="warning",
                attempt=retry_state.attempt_number,
                delay=round(retry_state.idle_for, 3),
            ),
        )
        async def _attempt() -> httpx.Response:
            # Fresh stream id per attempt
            stream_id = new_stream_id()
            self.stats.stream_id = stream_id
            set_stream_id(stream_id)

            headers = build_stream_headers(self.request, self.identity, stream_id)
            request = self.http_client.build_request(
                "POST", self.config.stream_url, json=body, headers=headers, timeout=timeout
            )
            log_stage(self.log, Stage.REQUEST_SEND, "Sending stream request", level="info",
                      url=self.config.stream_url)
            try:
                return await race_with_signal(
                    self.http_client.send(request, stream=True), self._read_signal
                )
            except httpx.TransportError as exc:
                raise TransportError.from_exception(
                    exc, message=NETWORK_ERROR_MESSAGE, stream_id=stream_id, reason="network_error"
                ) from exc

        response = await _attempt()
        await self._validate_response(response)
        return response

    async def _validate_response(self, response: httpx.Response) -> None:
        status = response.status_code
        self.stats.status = status
        self.stats.response_headers.update(capture_response_headers(response.headers))

        if not response.is_success:
            try:
                raw = await race_with_signal(response.aread(), self._read_signal)
            finally:
                await response.aclose()
            server_message = _server_error_message(raw)
            log_stage(self.log, Stage.RESPONSE_VALIDATION, "Stream request rejected", level="error",
                      status=status, server_error=server_message)
            raise ProtocolError(
                friendly_status_message(status, server_message or INVALID_STREAM_MESSAGE),
                stream_id=self.stats.stream_id,
                details={"reason": "http_error", "server_error": server_message},
                status=status,
                retry_after=response.headers.get("retry-after"),
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.lower().startswith(SSE_CONTENT_TYPE):
            await response.aclose()
            log_stage(self.log, Stage.RESPONSE_VALIDATION, "Unexpected content type", level="error",
                      status=status, content_type=content_type)
            raise ProtocolError(
                INVALID_STREAM_MESSAGE,
                stream_id=self.stats.stream_id,
                details={"reason": "invalid_content_type", "content_type": content_type},
                status=status,
            )

    async def _consume(self, response: httpx.Response) -> None:
        reader = SSEFrameReader()
        iterator = response.aiter_bytes().__aiter__()
        log_stage(self.log, Stage.FRAME_READING, "Reading event stream", level="debug")

        try:
            while not self.state.done_received:
                self._read_signal.raise_if_aborted()
                try:
                    data = await race_with_signal(_next_chunk(iterator), self._read_signal)
                except httpx.TransportError as exc:
                    raise TransportError.from_exception(
                        exc, message=NETWORK_ERROR_MESSAGE, stream_id=self.stats.stream_id, reason="network_error"
                    ) from exc
                if data is None:
                    break
                self._process_frames(reader.feed(data))

            if not self.state.done_received:
                self._process_frames(reader.flush())
                if not self.state.done_received:
                    log_stage(self.log, Stage.FRAME_READING, "Stream ended without done event",
                              level="warning", aggregated_length=self.stats.aggregated_length)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            await response.aclose()

    def _process_frames(self, frames: list[RawFrame]) -> None:
        for frame in frames:
            if self.state.done_received:
                return
            self._process(frame)

    # ------------------------------------------------------------------
    # Event pipeline
    # ------------------------------------------------------------------

    def _process(self, frame: RawFrame | dict[str, Any]) -> None:
        if self.state.done_received:
            return

        event = normalize_event(frame)
        if event is None:
            return

        if event.is_chunk and should_ignore_text(event.text):
            log_stage(self.log, Stage.EVENT_DISPATCH, "Trivial chunk ignored", level="debug",
                      text=event.text)
            self._keep_alive()
            return

        if event.is_chunk and self.guard.should_skip(*event.dedup_sources):
            return

        if event.type is EventType.ERROR:
            self._dispatch(event)
            raise StreamError(
                event.error_message or "Erro na stream SSE da Eco.",
                stream_id=self.stats.stream_id,
                details={"payload": event.payload} if isinstance(event.payload, dict) else {},
            )

        self._apply(event)
        self._dispatch(event)

    def _apply(self, event: NormalizedEvent) -> None:
        """Update state for one accepted event."""
        state = self.state

        if event.is_chunk:
            first = not state.first_chunk_delivered
            state.first_chunk_delivered = True
            event.is_first_chunk = first
            state.push_text(event.text)
            self.stats.got_any_chunk = True
            self.stats.aggregated_length += len(event.text)

            if first:
                self.stats.first_chunk_at = time.time()
                self.watchdog.bump_first_token(self._on_watchdog_timeout)
                self.typing.clear()
                self.fallback.mark_first_chunk()
                log_stage(self.log, Stage.EVENT_DISPATCH, "First chunk received", level="info",
                          source=event.source)
            else:
                self.watchdog.bump_heartbeat(self._on_watchdog_timeout)
            return

        if event.type is not EventType.DONE:
            self._keep_alive()

        if event.type is EventType.PROMPT_READY:
            state.prompt_ready_received = True
            self.watchdog.mark_prompt_ready(self._on_watchdog_timeout)
        elif event.type in (EventType.META, EventType.META_PENDING):
            self._store_metadata(event.metadata)
        elif event.type is EventType.MEMORY_SAVED:
            if event.primeira_memoria_significativa:
                state.primeira_memoria_significativa = True
        elif event.type is EventType.LATENCY:
            if event.latency_ms is not None:
                state.latency_ms = event.latency_ms
        elif event.type is EventType.DONE:
            state.done_received = True
            state.done_payload = event.payload
            if event.metadata is not None:
                self._store_metadata(event.metadata)
            if event.primeira_memoria_significativa:
                state.primeira_memoria_significativa = True
            if not state.aggregated_parts and not should_ignore_text(event.text):
                state.push_text(event.text)
            self.typing.clear()
            log_stage(self.log, Stage.EVENT_DISPATCH, "Done received", level="info",
                      channel=event.channel.value)

    def _keep_alive(self) -> None:
        """Re-arm the steady watchdog for non-text traffic after the first chunk."""
        if self.state.first_chunk_delivered and not self.state.done_received:
            self.watchdog.bump_heartbeat(self._on_watchdog_timeout)

    def _store_metadata(self, metadata: Any) -> None:
        self.state.metadata = metadata
        self.stats.last_meta = metadata
        finish_reason = extract_finish_reason(metadata)
        if finish_reason:
            self.stats.finish_reason_from_meta = finish_reason

    def _dispatch(self, event: NormalizedEvent) -> None:
        """Single dispatch point: ``on_event`` then the per-kind callback."""
        handlers = self.handlers
        self._emit(handlers.on_event, event)
        if self._queue is not None:
            self._queue.put_nowait(event)

        if event.is_control:
            self._emit(handlers.on_control, event)
            if event.type is EventType.PROMPT_READY:
                self._emit(handlers.on_prompt_ready, event)
            elif event.type is EventType.DONE:
                self._emit(handlers.on_done, event)
            return

        callback = {
            EventType.PROMPT_READY: handlers.on_prompt_ready,
            EventType.FIRST_TOKEN: handlers.on_first_token,
            EventType.CHUNK: handlers.on_chunk,
            EventType.META: handlers.on_meta,
            EventType.META_PENDING: handlers.on_meta_pending,
            EventType.MEMORY_SAVED: handlers.on_memory_saved,
            EventType.LATENCY: handlers.on_latency,
            EventType.CONTROL: handlers.on_control,
            EventType.DONE: handlers.on_done,
        }.get(event.type)
        self._emit(callback, event)

    def _emit(self, callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:
            log_stage(self.log, Stage.EVENT_DISPATCH, "Handler raised", level="error",
                      handler=getattr(callback, "__name__", repr(callback)),
                      error=str(exc), error_type=type(exc).__name__)

    def _notify_error(self, exc: Exception) -> None:
        self._emit(self.handlers.on_error, exc)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _on_watchdog_timeout(self, reason: CloseReason) -> None:
        if reason is CloseReason.SERVER_DONE:
            return
        if self.state.done_received or self.state.phase in TERMINAL_PHASES:
            return
        if self.fallback.trigger(reason.value):
            return

        self._stall_reason = reason.value
        self.stats.client_finish_reason = reason.value
        abort_controller_safely(self._stream_controller, AbortReason.WATCHDOG_TIMEOUT)

    def _on_typing_timeout(self) -> None:
        self._emit(self.handlers.on_typing_timeout)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _finalize(self) -> StreamResult:
        state = self.state
        text = state.aggregated_text
        if not text.strip():
            text = state.last_non_empty_text or ""
        text = text.strip()
        if not text:
            text = normalize_response_text(state.done_payload) or ""

        # Reached via done, EOF or the fallback replay
        no_text_received = not state.got_any_token
        if no_text_received:
            log_stage(self.log, Stage.FINALIZATION, "Stream finished without text", level="warning")

        self._terminate(StreamPhase.DONE, CloseReason.SERVER_DONE.value)
        return StreamResult(
            text=text,
            metadata=state.metadata,
            done=state.done_payload,
            primeira_memoria_significativa=state.primeira_memoria_significativa,
            no_text_received=no_text_received,
            status=self.stats.status,
        )

    def _aborted_result(self) -> StreamResult:
        return StreamResult(
            text=self.state.aggregated_text.strip(),
            metadata=self.state.metadata,
            primeira_memoria_significativa=self.state.primeira_memoria_significativa,
            aborted=True,
            status=self.stats.status,
        )

    def _abort_reason(self) -> Any:
        if self._turn_signal.aborted:
            return self._turn_signal.reason
        return self._stream_controller.signal.reason

    def _enter(self, phase: StreamPhase) -> None:
        previous = self.state.phase
        self.state.phase = phase
        log_stage(self.log, Stage.INITIALIZATION, "Phase transition", level="debug",
                  previous=previous.value, phase=phase.value)

    def _terminate(self, phase: StreamPhase, close_reason: str | None) -> None:
        if self.state.phase in TERMINAL_PHASES:
            return
        self._enter(phase)
        self.stats.close_reason = close_reason
        log_stage(self.log, Stage.FINALIZATION, "Stream session terminated", level="info",
                  phase=phase.value, close_reason=close_reason)

    def _teardown(self) -> None:
        self.fallback.clear_guard()
        self.typing.clear()
        self.watchdog.clear(notify=True)
        abort_controller_safely(self._stream_controller, AbortReason.FINALIZE)
        for cleanup in self._cleanups:
            cleanup()
        self._cleanups.clear()

        self.stats.total_ms = round((time.time() - self.stats.started_at) * 1000)
        if self._on_finish is not None:
            self._on_finish(self)
        log_stage(self.log, Stage.CLEANUP, "Stream session closed", level="info", **self.stats.as_dict())
        clear_stream_id()
