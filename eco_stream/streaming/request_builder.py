"""
Request Building

Builds the body and headers of one ``ask-eco`` request.

BODY LAYOUT:
------------
- ``history``: every message, mapped to ``{role, content}``
- ``mensagens``: the last three messages that have a role and text
- ``texto``: content of the last user message in ``mensagens``
- ``clientHour`` / ``clientTz``: local hour and timezone name
- ``contexto``: ``{origem: "web", ts, client_message_id}``
- identity: ``usuario_id``, ``nome_usuario``, ``userId``, ``guestId`` ...

Identity headers come from an ``IdentityProvider``. Each attempt carries a
fresh ``X-Stream-Id`` so retries are distinguishable server side.

Author: System Architect
Date: 2025-12-07
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from eco_stream.core.config.constants import (
    DEFAULT_CLIENT_ID,
    HEADER_BIAS_HINT,
    HEADER_CLIENT_ID,
    HEADER_CLIENT_MESSAGE_ID,
    HEADER_GUEST_ID,
    HEADER_SESSION_ID,
    HEADER_STREAM_ID,
    JSON_CONTENT_TYPE,
    RECENT_MESSAGES_LIMIT,
    RESPONSE_GUEST_HEADERS,
    SSE_CONTENT_TYPE,
)
from eco_stream.streaming.models import ChatMessage, StreamRequest
from eco_stream.streaming.text_extraction import normalize_response_text


# ============================================================================
# IDENTITY
# ============================================================================


@runtime_checkable
class IdentityProvider(Protocol):
    """
    Source of the identity headers sent with every request.

    Implementations may read from storage, cookies or an auth session; the
    client only needs the resulting header mapping.
    """

    def identity_headers(self) -> dict[str, str]:
        ...


@dataclass
class StaticIdentityProvider:
    """Identity fixed at construction time."""

    guest_id: str | None = None
    session_id: str | None = None
    client_id: str = DEFAULT_CLIENT_ID

    def identity_headers(self) -> dict[str, str]:
        headers = {HEADER_CLIENT_ID: self.client_id or DEFAULT_CLIENT_ID}
        if self.guest_id:
            headers[HEADER_GUEST_ID] = self.guest_id
        if self.session_id:
            headers[HEADER_SESSION_ID] = self.session_id
        return headers


def new_stream_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# HISTORY MAPPING
# ============================================================================


def map_history_message(message: ChatMessage | dict[str, Any]) -> dict[str, Any]:
    """
    ``{role, content, client_message_id?}`` for one stored message.

    The UI stores the assistant as ``eco``; messages without role fall back
    to ``sender``.
    """
    if isinstance(message, dict):
        message = ChatMessage.model_validate(message)

    role = message.role
    if role == "eco":
        role = "assistant"
    elif not role:
        role = "user" if message.sender == "user" else "assistant"

    content = message.content if message.content is not None else message.text
    mapped: dict[str, Any] = {
        "role": role,
        "content": content if isinstance(content, str) else "",
    }
    client_message_id = message.client_message_id or message.id
    if client_message_id:
        mapped["client_message_id"] = client_message_id
    return mapped


def recent_messages(history: list[dict[str, Any]], limit: int = RECENT_MESSAGES_LIMIT) -> list[dict[str, Any]]:
    usable = [item for item in history if item.get("role") and item.get("content", "").strip()]
    return usable[-limit:]


def last_user_text(messages: list[dict[str, Any]]) -> str:
    for item in reversed(messages):
        if item.get("role") == "user":
            return item.get("content", "").strip()
    return ""


def _local_timezone_name() -> str:
    tzinfo = datetime.now().astimezone().tzinfo
    name = getattr(tzinfo, "key", None) or (tzinfo.tzname(None) if tzinfo else None)
    return name or "UTC"


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def build_request_body(request: StreamRequest, now: datetime | None = None) -> dict[str, Any]:
    """JSON body of one ``ask-eco`` request."""
    now = now or datetime.now().astimezone()
    history = [map_history_message(message) for message in request.history]
    mensagens = recent_messages(history)

    user_id = _strip_or_none(request.user_id)
    guest_id = _strip_or_none(request.guest_id)
    user_name = _strip_or_none(request.user_name)
    is_guest = request.is_guest if request.is_guest is not None else (user_id is None and guest_id is not None)

    body: dict[str, Any] = {
        "history": history,
        "mensagens": mensagens,
        "texto": last_user_text(mensagens),
        "clientHour": now.hour,
        "clientTz": _local_timezone_name(),
        "clientMessageId": request.client_message_id,
        "contexto": {
            "origem": "web",
            "ts": int(time.time() * 1000),
            "client_message_id": request.client_message_id,
        },
        "isGuest": is_guest,
    }

    usuario_id = user_id or guest_id
    if usuario_id:
        body["usuario_id"] = usuario_id
    if user_id:
        body["userId"] = user_id
    if guest_id:
        body["guestId"] = guest_id
    if user_name:
        body["nome_usuario"] = user_name
        body["userName"] = user_name
    if request.system_hint:
        body["systemHint"] = request.system_hint

    return body


# ============================================================================
# HEADERS
# ============================================================================


def build_stream_headers(
    request: StreamRequest,
    identity: IdentityProvider | None = None,
    stream_id: str | None = None,
) -> dict[str, str]:
    """Headers of one SSE attempt; ``stream_id`` defaults to a fresh UUID."""
    headers = {
        "Accept": SSE_CONTENT_TYPE,
        "Content-Type": JSON_CONTENT_TYPE,
    }
    headers.update(_identity(request, identity))
    if request.system_hint:
        headers[HEADER_BIAS_HINT] = request.system_hint
    headers[HEADER_CLIENT_MESSAGE_ID] = request.client_message_id
    headers[HEADER_STREAM_ID] = stream_id or new_stream_id()
    headers.update(request.headers)
    return headers


def build_fallback_headers(request: StreamRequest, identity: IdentityProvider | None = None) -> dict[str, str]:
    """Headers of the non-streaming JSON request."""
    headers = {
        "Accept": JSON_CONTENT_TYPE,
        "Content-Type": JSON_CONTENT_TYPE,
    }
    headers.update(_identity(request, identity))
    headers[HEADER_CLIENT_MESSAGE_ID] = request.client_message_id
    headers.update(request.headers)
    return headers


def _identity(request: StreamRequest, identity: IdentityProvider | None) -> dict[str, str]:
    headers = {HEADER_CLIENT_ID: DEFAULT_CLIENT_ID}
    if identity is not None:
        headers.update({key: value for key, value in identity.identity_headers().items() if value})
    if request.guest_id and HEADER_GUEST_ID not in headers:
        headers[HEADER_GUEST_ID] = request.guest_id
    if request.session_id and HEADER_SESSION_ID not in headers:
        headers[HEADER_SESSION_ID] = request.session_id
    return headers


def capture_response_headers(headers: Any) -> dict[str, str]:
    """Guest identifiers the backend assigned on the response, if any."""
    captured: dict[str, str] = {}
    for name in RESPONSE_GUEST_HEADERS:
        value = headers.get(name)
        if value:
            captured[name] = value
    return captured


# ============================================================================
# NON-STREAMING RESPONSE
# ============================================================================


def parse_non_stream_response(data: Any) -> dict[str, Any]:
    """
    ``{text, metadata, primeira_memoria_significativa}`` of a JSON answer.

    Text comes from ``text``/``content`` and, failing that, from the
    generic textual walk.
    """
    if not isinstance(data, dict):
        return {"text": normalize_response_text(data) or "", "metadata": None,
                "primeira_memoria_significativa": False}

    text = data.get("text")
    if not isinstance(text, str) or not text:
        content = data.get("content")
        text = content if isinstance(content, str) and content else normalize_response_text(data) or ""

    metadata = data.get("metadata")
    if metadata is None:
        metadata = data.get("response")

    return {
        "text": text,
        "metadata": metadata,
        "primeira_memoria_significativa": bool(
            data.get("primeiraMemoriaSignificativa") or data.get("primeira")
        ),
    }
