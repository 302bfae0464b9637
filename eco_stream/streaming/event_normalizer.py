"""
Event Normalizer

Maps a raw frame (``{type, payload, rawData}`` envelope) onto one canonical
``EventType`` and resolves the fields the session needs.

TYPE RESOLUTION ORDER:
----------------------
1. ``payload.type`` > unwrapped payload ``type`` > frame ``event:`` name
2. Index contract: numeric ``index`` + ``done: true`` → done; numeric
   ``index`` + string ``text`` with a missing/``delta``/``data``/``chunk``
   type → chunk
3. ``response.*`` namespace rules (``map_response_event_type``)
4. No type yet: ``[DONE]`` / ``done: true`` / ``DONE: true`` → done, string
   ``text`` → chunk
5. Legacy aliases (``meta-pending``)

A type of ``control`` (on the frame, the payload or the unwrapped payload)
routes the event to the control channel. Its ``name``/``event`` leaf is
snake-cased and re-mapped to find the effective action.

Author: System Architect
Date: 2025-12-06
"""

import math
import re
from typing import Any

from eco_stream.core.config.constants import (
    DONE_MARKER,
    EVENT_TYPE_ALIASES,
    RESPONSE_NAMESPACE,
    TRIVIAL_TEXTS,
    EventChannel,
    EventType,
    Stage,
)
from eco_stream.core.exceptions.streaming import DEFAULT_STREAM_ERROR_MESSAGE
from eco_stream.core.logging import get_logger, log_stage
from eco_stream.streaming.frame_reader import RawFrame
from eco_stream.streaming.models import NormalizedEvent
from eco_stream.streaming.text_extraction import (
    collect_texts,
    normalize_response_text,
    unwrap_payload,
)

logger = get_logger(__name__)

_PROMPT_READY_TYPES = frozenset({
    "response.created",
    "response.started",
    "response.in_progress",
    "response.input_message.delta",
})
_CHUNK_MARKERS = ("output", "message", "tool", "refusal")
_CONTRACT_CHUNK_TYPES = frozenset({"delta", "data", "chunk"})
_CONTROL_ACTIONS = frozenset({EventType.PROMPT_READY.value, EventType.DONE.value})
_CANONICAL_TYPES = {member.value: member for member in EventType}

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[\s.\-]+")


# ============================================================================
# PURE STRING MAPPINGS
# ============================================================================


def map_response_event_type(event_type: str | None) -> tuple[str | None, str | None]:
    """
    Map a ``response.*`` type onto a canonical tag.

    Returns:
        (normalized, original) - original is set only for namespaced types.
        Non-namespaced types are returned unchanged.
    """
    if not event_type or not event_type.startswith(RESPONSE_NAMESPACE):
        return event_type, None

    lower = event_type.lower()

    if lower in _PROMPT_READY_TYPES:
        return EventType.PROMPT_READY.value, event_type
    if lower == "response.error":
        return EventType.ERROR.value, event_type
    if (
        lower == "response.completed"
        or lower.endswith(".completed")
        or lower.endswith(".done")
        or lower == "response.final"
    ):
        return EventType.DONE.value, event_type
    if "metadata" in lower:
        pending = "pending" in lower or lower.endswith(".delta")
        return (EventType.META_PENDING if pending else EventType.META).value, event_type
    if "memory" in lower:
        return EventType.MEMORY_SAVED.value, event_type
    if "latency" in lower:
        return EventType.LATENCY.value, event_type
    # output/message/tool/refusal/*.delta and everything else in the namespace
    return EventType.CHUNK.value, event_type


def normalize_control_name(value: Any) -> str | None:
    """``promptReady`` / ``prompt-ready`` / ``prompt ready`` → ``prompt_ready``."""
    if value is None or value is False or value == "":
        return None
    raw = str(value).strip()
    if not raw:
        return None
    snake = _CAMEL_BOUNDARY.sub(r"\1_\2", raw)
    return _SEPARATORS.sub("_", snake).lower()


# ============================================================================
# FIELD HELPERS
# ============================================================================


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _first_present(obj: Any, *keys: str) -> Any:
    """First value that is not None (``??`` chain)."""
    for key in keys:
        value = _get(obj, key)
        if value is not None:
            return value
    return None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _first_trimmed_string(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def extract_interaction_id(payload: Any) -> str | None:
    response = _get(payload, "response")
    metadata = _get(payload, "metadata")
    context = _get(payload, "context")
    return _first_trimmed_string(
        _get(payload, "interaction_id"),
        _get(payload, "interactionId"),
        _get(payload, "interactionID"),
        _get(payload, "id"),
        _get(payload, "message_id"),
        _get(payload, "messageId"),
        _get(response, "interaction_id"),
        _get(response, "interactionId"),
        _get(response, "id"),
        _get(metadata, "interaction_id"),
        _get(metadata, "interactionId"),
        _get(context, "interaction_id"),
        _get(context, "interactionId"),
    )


def extract_message_id(payload: Any) -> str | None:
    response = _get(payload, "response")
    delta = _get(payload, "delta")
    return _first_trimmed_string(
        _get(payload, "message_id"),
        _get(payload, "messageId"),
        _get(payload, "id"),
        _get(response, "message_id"),
        _get(response, "messageId"),
        _get(delta, "message_id"),
        _get(delta, "messageId"),
    )


def extract_created_at(payload: Any) -> str | None:
    response = _get(payload, "response")
    return _first_trimmed_string(
        _get(payload, "created_at"),
        _get(payload, "createdAt"),
        _get(response, "created_at"),
        _get(response, "createdAt"),
        _get(payload, "timestamp"),
        _get(payload, "ts"),
    )


def extract_finish_reason(metadata: Any) -> str | None:
    """``finishReason`` / ``finish_reason`` / ``reason`` of a metadata object."""
    return _first_trimmed_string(
        _get(metadata, "finishReason"),
        _get(metadata, "finish_reason"),
        _get(metadata, "reason"),
    )


def extract_error_message(payload: Any) -> str:
    error = _get(payload, "error")
    message = _get(error, "message")
    for candidate in (message, error, _get(payload, "message")):
        if candidate:
            return candidate if isinstance(candidate, str) else str(candidate)
    return DEFAULT_STREAM_ERROR_MESSAGE


def should_ignore_text(text: str | None) -> bool:
    """Empty text and protocol acks (``"ok"``) are not content."""
    if text is None or text == "":
        return True
    return text.strip().lower() in TRIVIAL_TEXTS


def _significant_memory(payload: Any) -> bool:
    return bool(_get(payload, "primeiraMemoriaSignificativa") or _get(payload, "primeira"))


def _joined_texts(source: Any) -> str:
    if source is None:
        return ""
    return "".join(collect_texts(source))


# ============================================================================
# NORMALIZATION
# ============================================================================


def _resolve_type(envelope: dict[str, Any], payload: dict[str, Any], unwrapped: Any) -> tuple[str | None, str | None, bool]:
    hinted_type = _str_or_none(envelope.get("type"))
    payload_type = _str_or_none(payload.get("type"))
    unwrapped_type = _str_or_none(_get(unwrapped, "type"))

    event_type = next(
        (candidate for candidate in (payload_type, unwrapped_type, hinted_type) if candidate is not None),
        None,
    )

    contract_index = _finite_number(payload.get("index"))
    if contract_index is not None:
        if payload.get("done") is True:
            event_type = EventType.DONE.value
        elif (not event_type or event_type in _CONTRACT_CHUNK_TYPES) and isinstance(payload.get("text"), str):
            event_type = EventType.CHUNK.value

    is_control = EventType.CONTROL.value in (hinted_type, payload_type, unwrapped_type)

    normalized, original = map_response_event_type(event_type)
    if normalized is not None:
        event_type = normalized

    looks_like_done = (
        envelope.get("rawData") == DONE_MARKER
        or payload.get("done") is True
        or payload.get("DONE") is True
    )
    if not event_type and looks_like_done:
        event_type = EventType.DONE.value
    if not event_type and isinstance(payload.get("text"), str):
        event_type = EventType.CHUNK.value

    if event_type:
        event_type = EVENT_TYPE_ALIASES.get(event_type, event_type)

    return event_type or None, original, is_control


def normalize_event(frame: RawFrame | dict[str, Any]) -> NormalizedEvent | None:
    """
    Normalize one frame.

    Returns None when no type can be resolved, or when an unknown type
    carries no extractable text.
    """
    if isinstance(frame, RawFrame):
        envelope = frame.as_dict()
    elif isinstance(frame, dict):
        envelope = frame
    else:
        return None

    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        payload = envelope
    unwrapped = unwrap_payload(payload)

    event_type, original_type, is_control = _resolve_type(envelope, payload, unwrapped)
    if not event_type:
        log_stage(logger, Stage.EVENT_DISPATCH, "Event without recognizable type", level="debug")
        return None

    event = NormalizedEvent(
        type=EventType.CONTROL,
        payload=unwrapped,
        raw=envelope,
        original_type=original_type,
        dedup_sources=(envelope, payload, unwrapped),
        source=_str_or_none(_get(unwrapped, "source")),
        interaction_id=extract_interaction_id(unwrapped),
        message_id=extract_message_id(unwrapped),
        created_at=extract_created_at(unwrapped),
    )

    fallback_text = normalize_response_text(unwrapped) or normalize_response_text(payload)

    # STEP 1: Control channel
    if is_control or event_type == EventType.CONTROL.value:
        name = (
            normalize_control_name(_get(unwrapped, "name"))
            or normalize_control_name(_get(unwrapped, "event"))
            or normalize_control_name(payload.get("name"))
            or normalize_control_name(payload.get("event"))
        )
        action = None
        if name:
            mapped, _ = map_response_event_type(name)
            action = mapped or name
        event.channel = EventChannel.CONTROL
        event.name = name
        if action in _CONTROL_ACTIONS:
            event.type = _CANONICAL_TYPES[action]
        if event.type is EventType.DONE:
            _resolve_done_fields(event, unwrapped, fallback_text)
        return event

    # STEP 2: Errors
    if event_type == EventType.ERROR.value or payload.get("status") == "error":
        event.type = EventType.ERROR
        event.error_message = extract_error_message(payload)
        return event

    canonical = _CANONICAL_TYPES.get(event_type)

    # STEP 3: Unknown types degrade to chunks when they carry text
    if canonical is None:
        if not fallback_text:
            log_stage(
                logger, Stage.EVENT_DISPATCH, "Unknown event ignored",
                level="debug", event_type=event_type,
            )
            return None
        event.type = EventType.CHUNK
        event.original_type = original_type or event_type
        event.text = fallback_text
        return event

    event.type = canonical

    # STEP 4: Per-kind fields
    if canonical in (EventType.CHUNK, EventType.FIRST_TOKEN):
        source = _first_present(unwrapped, "delta", "content", "message")
        if source is None:
            source = unwrapped
        chunk_text = _joined_texts(source)
        event.text = chunk_text if chunk_text else fallback_text
    elif canonical in (EventType.META, EventType.META_PENDING):
        metadata = _first_present(unwrapped, "metadata", "response")
        event.metadata = metadata if metadata is not None else unwrapped
    elif canonical is EventType.MEMORY_SAVED:
        memory = _first_present(unwrapped, "memory", "memoria")
        event.memory = memory if memory is not None else unwrapped
        event.primeira_memoria_significativa = _significant_memory(unwrapped)
    elif canonical is EventType.LATENCY:
        for key in ("value", "latency"):
            value = _get(unwrapped, key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                event.latency_ms = value
                break
    elif canonical is EventType.DONE:
        _resolve_done_fields(event, unwrapped, fallback_text)

    return event


def _resolve_done_fields(event: NormalizedEvent, unwrapped: Any, fallback_text: str | None) -> None:
    metadata = _first_present(unwrapped, "response", "metadata")
    event.metadata = metadata if metadata is not None else unwrapped
    event.primeira_memoria_significativa = _significant_memory(unwrapped)
    done_text = _joined_texts(_first_present(unwrapped, "delta", "content", "message", "response"))
    event.text = done_text if done_text else fallback_text
