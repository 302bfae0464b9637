"""
Streaming Module

SSE ingestion and session management for one conversational turn.

Module Structure:
-----------------
- **frame_reader.py**: bytes → RawFrame
- **event_normalizer.py**: RawFrame → NormalizedEvent
- **chunk_guard.py**: duplicate / out-of-order chunk suppression
- **watchdog.py**: first-token, heartbeat and typing timers
- **cancellation.py**: AbortController / AbortSignal, allow-listed aborts
- **fallback.py**: degraded-mode JSON request
- **session.py**: the per-turn state machine
- **client.py**: façade and in-flight registry
"""

from eco_stream.streaming.cancellation import (
    AbortController,
    AbortSignal,
    abort_controller_safely,
    is_abort_error,
    merge_signals,
)
from eco_stream.streaming.chunk_guard import ChunkGuard
from eco_stream.streaming.client import EcoStreamClient, InFlightRegistry
from eco_stream.streaming.event_normalizer import normalize_event
from eco_stream.streaming.fallback import FallbackManager
from eco_stream.streaming.frame_reader import RawFrame, SSEFrameReader, iter_frames, parse_frame
from eco_stream.streaming.models import (
    ChatMessage,
    NormalizedEvent,
    SessionHandle,
    StreamHandlers,
    StreamRequest,
    StreamResult,
    StreamRunStats,
)
from eco_stream.streaming.request_builder import IdentityProvider, StaticIdentityProvider
from eco_stream.streaming.session import SessionConfig, StreamSession
from eco_stream.streaming.watchdog import SSEWatchdog, TypingWatchdog

__all__ = [
    # Cancellation
    "AbortController",
    "AbortSignal",
    "abort_controller_safely",
    "merge_signals",
    "is_abort_error",
    # Pipeline
    "RawFrame",
    "SSEFrameReader",
    "parse_frame",
    "iter_frames",
    "normalize_event",
    "ChunkGuard",
    "SSEWatchdog",
    "TypingWatchdog",
    "FallbackManager",
    # Session
    "SessionConfig",
    "StreamSession",
    "EcoStreamClient",
    "InFlightRegistry",
    "IdentityProvider",
    "StaticIdentityProvider",
    # Models
    "ChatMessage",
    "NormalizedEvent",
    "SessionHandle",
    "StreamHandlers",
    "StreamRequest",
    "StreamResult",
    "StreamRunStats",
]
