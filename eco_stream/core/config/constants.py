"""
System Constants and Enumerations

This module defines protocol constants and enumerations used across the
Eco streaming client: canonical event tags, session phases, close reasons,
abort reasons, header names and the key lists used while walking payloads.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic strings
- Type-safe enums for state management

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Session processing stages used as the ``stage`` field of log entries.

    Format: {SEQUENCE}_{DESCRIPTIVE_NAME}
    """

    # Main session lifecycle (sequential 0.0 - 6.0)
    INITIALIZATION = "0.0_INITIALIZATION"
    REQUEST_SEND = "1.0_REQUEST_SEND"
    RESPONSE_VALIDATION = "2.0_RESPONSE_VALIDATION"
    FRAME_READING = "3.0_FRAME_READING"
    EVENT_DISPATCH = "4.0_EVENT_DISPATCH"
    FINALIZATION = "5.0_FINALIZATION"
    CLEANUP = "6.0_CLEANUP"

    # Cross-cutting concerns (alphabetic prefixes)
    WATCHDOG = "W_WATCHDOG"
    FALLBACK = "F_JSON_FALLBACK"
    ABORT = "A_ABORT_COORDINATION"
    DEDUP = "D_CHUNK_GUARD"
    RETRY = "R_RETRY_LOGIC"
    LOGGING = "L_LOGGING_OPERATIONS"


# ============================================================================
# Canonical Event Types
# ============================================================================


class EventType(str, Enum):
    """
    Canonical event tags every backend dialect is normalized into.
    """

    PROMPT_READY = "prompt_ready"
    FIRST_TOKEN = "first_token"
    CHUNK = "chunk"
    META = "meta"
    META_PENDING = "meta_pending"
    MEMORY_SAVED = "memory_saved"
    LATENCY = "latency"
    ERROR = "error"
    DONE = "done"
    CONTROL = "control"


CHUNK_EVENT_TYPES = frozenset({EventType.CHUNK, EventType.FIRST_TOKEN})


class EventChannel(str, Enum):
    """Channel a normalized event arrived on."""

    DATA = "data"
    CONTROL = "control"


# ============================================================================
# Session Phases
# ============================================================================


class StreamPhase(str, Enum):
    """
    Stream session state machine.

    idle -> sending -> streaming -> {done | errored | aborted}
    """

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"
    ABORTED = "aborted"


TERMINAL_PHASES = frozenset({StreamPhase.DONE, StreamPhase.ERRORED, StreamPhase.ABORTED})


# ============================================================================
# Watchdog / Close Reasons
# ============================================================================


class WatchdogMode(str, Enum):
    """Which interval a watchdog is currently armed with."""

    IDLE = "idle"
    FIRST = "first"
    STEADY = "steady"


class CloseReason(str, Enum):
    """Why a session (or one of its watchdogs) ended."""

    SERVER_DONE = "server_done"
    SERVER_ERROR = "server_error"
    UI_ABORT = "ui_abort"
    WATCHDOG_FIRST_TOKEN = "watchdog_first_token"
    WATCHDOG_HEARTBEAT = "watchdog_heartbeat"
    NETWORK_ERROR = "network_error"


# ============================================================================
# Abort Reasons
# ============================================================================


class AbortReason(str, Enum):
    """
    Reasons that may actually trigger an underlying abort.

    Any other reason passed to abort_controller_safely is logged and ignored.
    """

    WATCHDOG_TIMEOUT = "watchdog_timeout"
    USER_CANCEL = "user_cancel"
    FINALIZE = "finalize"


# Legacy spelling still emitted by older call sites
ABORT_REASON_ALIASES = {"user_cancelled": AbortReason.USER_CANCEL}

ALLOWED_ABORT_REASONS = frozenset(reason.value for reason in AbortReason) | frozenset(
    ABORT_REASON_ALIASES
)

# Reason recorded when a new send supersedes a live stream for the same turn
NEW_SEND_REASON = "new-send"


# ============================================================================
# Protocol Markers
# ============================================================================

SSE_CONTENT_TYPE = "text/event-stream"
JSON_CONTENT_TYPE = "application/json"
DONE_MARKER = "[DONE]"
RESPONSE_NAMESPACE = "response."
JSON_FALLBACK_SOURCE = "json_fallback"

# Texts treated as protocol noise rather than content (compared lower-cased)
TRIVIAL_TEXTS = frozenset({"ok"})

# Legacy aliases for canonical event types
EVENT_TYPE_ALIASES = {
    "meta-pending": EventType.META_PENDING.value,
    "DONE": EventType.DONE.value,
}


# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_GUEST_ID = "X-Eco-Guest-Id"
HEADER_SESSION_ID = "X-Eco-Session-Id"
HEADER_CLIENT_ID = "X-Client-Id"
HEADER_CLIENT_MESSAGE_ID = "X-Eco-Client-Message-Id"
HEADER_STREAM_ID = "X-Stream-Id"
HEADER_BIAS_HINT = "X-Eco-Bias-Hint"
RESPONSE_GUEST_HEADERS = ("x-eco-guest-id", "x-guest-id")

DEFAULT_CLIENT_ID = "webapp"


# ============================================================================
# Payload Key Lists
# ============================================================================

# Keys whose values identify/order a chunk
CHUNK_IDENTIFIER_KEYS = (
    "chunk_index",
    "chunkIndex",
    "index",
    "cursor",
    "cursor_index",
    "cursorIndex",
    "token_index",
    "tokenIndex",
    "delta_index",
    "deltaIndex",
    "delta_id",
    "deltaId",
    "id",
)

# Nested keys the chunk guard is allowed to descend into
CHUNK_NESTED_KEYS = ("payload", "delta", "message", "content", "data")

# Upper bound on objects visited while walking one payload
CHUNK_GUARD_MAX_NODES = 256

# Number of history messages forwarded as "mensagens"
RECENT_MESSAGES_LIMIT = 3
