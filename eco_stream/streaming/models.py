"""
Streaming Data Models

- NormalizedEvent: one canonical event produced from a frame
- StreamState: mutable per-session aggregation state
- StreamRunStats: per-session diagnostics
- StreamResult: aggregate returned once the session reaches ``done``
- StreamHandlers: callback surface
- ChatMessage / StreamRequest: what the caller asks for
- SessionHandle: entry of the in-flight registry
"""

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from eco_stream.core.config.constants import (
    CHUNK_EVENT_TYPES,
    EventChannel,
    EventType,
    StreamPhase,
)

if TYPE_CHECKING:
    from eco_stream.streaming.cancellation import AbortController


@dataclass
class NormalizedEvent:
    """
    One canonical event.

    ``payload`` is the unwrapped payload, ``raw`` the frame envelope it came
    from. ``text``, ``metadata``, ``memory``, ``latency_ms`` and
    ``error_message`` are resolved by the normalizer for the kinds that carry
    them.
    """

    type: EventType
    payload: Any = None
    raw: Any = None
    original_type: str | None = None
    channel: EventChannel = EventChannel.DATA
    name: str | None = None
    text: str | None = None
    metadata: Any = None
    memory: Any = None
    latency_ms: float | None = None
    error_message: str | None = None
    primeira_memoria_significativa: bool = False
    is_first_chunk: bool = False
    source: str | None = None
    interaction_id: str | None = None
    message_id: str | None = None
    created_at: str | None = None
    dedup_sources: tuple[Any, ...] = field(default=(), repr=False)

    @property
    def is_chunk(self) -> bool:
        return self.type in CHUNK_EVENT_TYPES

    @property
    def is_control(self) -> bool:
        return self.channel is EventChannel.CONTROL


@dataclass
class StreamState:
    """Aggregation state; owned and mutated by exactly one session."""

    phase: StreamPhase = StreamPhase.IDLE
    aggregated_parts: list[str] = field(default_factory=list)
    done_received: bool = False
    prompt_ready_received: bool = False
    got_any_token: bool = False
    first_chunk_delivered: bool = False
    last_non_empty_text: str | None = None
    metadata: Any = None
    done_payload: Any = None
    primeira_memoria_significativa: bool = False
    latency_ms: float | None = None

    @property
    def aggregated_text(self) -> str:
        return "".join(self.aggregated_parts)

    def push_text(self, text: str) -> None:
        self.aggregated_parts.append(text)
        trimmed = text.strip()
        if trimmed:
            self.last_non_empty_text = trimmed
            self.got_any_token = True


@dataclass
class StreamRunStats:
    """Diagnostics for one run."""

    aggregated_length: int = 0
    got_any_chunk: bool = False
    last_meta: Any = None
    finish_reason_from_meta: str | None = None
    started_at: float = field(default_factory=time.time)
    first_chunk_at: float | None = None
    total_ms: float | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    client_finish_reason: str | None = None
    stream_id: str | None = None
    status: int | None = None
    guard_timeout_ms: int | None = None
    guard_fallback_triggered: bool = False
    json_fallback_attempts: int = 0
    json_fallback_succeeded: bool = False
    close_reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "aggregated_length": self.aggregated_length,
            "got_any_chunk": self.got_any_chunk,
            "finish_reason_from_meta": self.finish_reason_from_meta,
            "first_chunk_ms": (
                round((self.first_chunk_at - self.started_at) * 1000)
                if self.first_chunk_at is not None
                else None
            ),
            "total_ms": self.total_ms,
            "client_finish_reason": self.client_finish_reason,
            "stream_id": self.stream_id,
            "status": self.status,
            "guard_fallback_triggered": self.guard_fallback_triggered,
            "json_fallback_attempts": self.json_fallback_attempts,
            "json_fallback_succeeded": self.json_fallback_succeeded,
            "close_reason": self.close_reason,
        }


class StreamResult(BaseModel):
    """
    Aggregate of a finished turn.

    ``no_text_received`` flags a stream that completed (or became ready)
    without delivering any token. It is a soft signal, never an error.
    """

    text: str = ""
    metadata: Any = None
    done: Any = None
    primeira_memoria_significativa: bool = False
    no_text_received: bool = False
    aborted: bool = False
    status: int | None = None


@dataclass
class StreamHandlers:
    """
    Callbacks invoked per accepted event.

    ``on_event`` receives every event; the per-kind callback receives the
    events of its kind. Exceptions raised by callbacks are logged and never
    interrupt the stream.
    """

    on_prompt_ready: Callable[[NormalizedEvent], None] | None = None
    on_first_token: Callable[[NormalizedEvent], None] | None = None
    on_chunk: Callable[[NormalizedEvent], None] | None = None
    on_meta: Callable[[NormalizedEvent], None] | None = None
    on_meta_pending: Callable[[NormalizedEvent], None] | None = None
    on_memory_saved: Callable[[NormalizedEvent], None] | None = None
    on_latency: Callable[[NormalizedEvent], None] | None = None
    on_control: Callable[[NormalizedEvent], None] | None = None
    on_done: Callable[[NormalizedEvent], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_event: Callable[[NormalizedEvent], None] | None = None
    on_typing_timeout: Callable[[], None] | None = None


class ChatMessage(BaseModel):
    """One message of the conversation history as the UI stores it."""

    id: str | None = None
    role: str | None = None
    sender: str | None = None
    content: Any = None
    text: Any = None
    client_message_id: str | None = None


class StreamRequest(BaseModel):
    """Everything needed to start one conversational turn."""

    history: list[ChatMessage] = Field(default_factory=list)
    client_message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    system_hint: str | None = None
    user_id: str | None = None
    user_name: str | None = None
    guest_id: str | None = None
    session_id: str | None = None
    is_guest: bool | None = None
    headers: dict[str, str] = Field(default_factory=dict)


@dataclass
class SessionHandle:
    """Live entry of the in-flight registry."""

    client_message_id: str
    controller: "AbortController"
    stats: StreamRunStats = field(default_factory=StreamRunStats)
