"""
Unit Tests for Request Building

Tests history mapping, the request body and the header set.
"""

from datetime import datetime

import pytest

from eco_stream.streaming.models import ChatMessage, StreamRequest
from eco_stream.streaming.request_builder import (
    IdentityProvider,
    StaticIdentityProvider,
    build_fallback_headers,
    build_request_body,
    build_stream_headers,
    capture_response_headers,
    last_user_text,
    map_history_message,
    parse_non_stream_response,
    recent_messages,
)


@pytest.mark.unit
class TestHistoryMapping:
    def test_eco_role_becomes_assistant(self):
        mapped = map_history_message(ChatMessage(role="eco", content="oi"))
        assert mapped == {"role": "assistant", "content": "oi"}

    def test_sender_fallback(self):
        assert map_history_message({"sender": "user", "text": "a"})["role"] == "user"
        assert map_history_message({"sender": "eco", "text": "b"})["role"] == "assistant"

    def test_content_preferred_over_text(self):
        mapped = map_history_message({"role": "user", "content": "c", "text": "t"})
        assert mapped["content"] == "c"

    def test_non_string_content_is_empty(self):
        assert map_history_message({"role": "user", "content": {"x": 1}})["content"] == ""

    def test_client_message_id_falls_back_to_id(self):
        assert map_history_message({"id": "m1", "role": "user", "content": "a"})["client_message_id"] == "m1"
        mapped = map_history_message({"id": "m1", "client_message_id": "c1", "role": "user", "content": "a"})
        assert mapped["client_message_id"] == "c1"

    def test_recent_messages_skips_blank_and_keeps_last_three(self):
        history = [
            {"role": "user", "content": "1"},
            {"role": "assistant", "content": "2"},
            {"role": "user", "content": "3"},
            {"role": "assistant", "content": "  "},
            {"role": "assistant", "content": "4"},
        ]

        assert [item["content"] for item in recent_messages(history)] == ["2", "3", "4"]

    def test_last_user_text(self):
        messages = [{"role": "user", "content": " pergunta "}, {"role": "assistant", "content": "x"}]
        assert last_user_text(messages) == "pergunta"
        assert last_user_text([{"role": "assistant", "content": "x"}]) == ""


@pytest.mark.unit
class TestBuildRequestBody:
    def test_conversation_body(self, request_factory):
        body = build_request_body(request_factory.conversation(), now=datetime(2025, 1, 1, 14, 30))

        assert len(body["history"]) == 5
        assert [m["content"] for m in body["mensagens"]] == ["resposta um", "segunda", "resposta dois"]
        assert body["texto"] == "segunda"
        assert body["clientHour"] == 14
        assert isinstance(body["clientTz"], str) and body["clientTz"]
        assert body["clientMessageId"] == "msg-conv"
        assert body["contexto"]["origem"] == "web"
        assert body["contexto"]["client_message_id"] == "msg-conv"
        assert isinstance(body["contexto"]["ts"], int)

    def test_guest_identity(self, request_factory):
        body = build_request_body(request_factory.basic())

        assert body["isGuest"] is True
        assert body["usuario_id"] == "guest-123"
        assert body["guestId"] == "guest-123"
        assert "userId" not in body

    def test_authenticated_identity(self, request_factory):
        body = build_request_body(request_factory.authenticated())

        assert body["isGuest"] is False
        assert body["usuario_id"] == "user-1"
        assert body["userId"] == "user-1"
        assert body["nome_usuario"] == "Ana"
        assert body["userName"] == "Ana"

    def test_explicit_is_guest_wins(self):
        body = build_request_body(StreamRequest(user_id="u1", is_guest=True))
        assert body["isGuest"] is True

    def test_system_hint(self):
        body = build_request_body(StreamRequest(system_hint="calmo"))
        assert body["systemHint"] == "calmo"

    def test_empty_history(self):
        body = build_request_body(StreamRequest())

        assert body["history"] == []
        assert body["mensagens"] == []
        assert body["texto"] == ""


@pytest.mark.unit
class TestHeaders:
    def test_stream_headers(self, request_factory):
        headers = build_stream_headers(request_factory.basic(), stream_id="s-1")

        assert headers["Accept"] == "text/event-stream"
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Client-Id"] == "webapp"
        assert headers["X-Eco-Guest-Id"] == "guest-123"
        assert headers["X-Eco-Session-Id"] == "session-456"
        assert headers["X-Eco-Client-Message-Id"] == "msg-1"
        assert headers["X-Stream-Id"] == "s-1"

    def test_fresh_stream_id_each_call(self, request_factory):
        request = request_factory.basic()

        first = build_stream_headers(request)["X-Stream-Id"]
        second = build_stream_headers(request)["X-Stream-Id"]

        assert first != second

    def test_identity_provider_wins_over_request(self, request_factory):
        identity = StaticIdentityProvider(guest_id="guest-store", client_id="mobile")

        headers = build_stream_headers(request_factory.basic(), identity=identity)

        assert isinstance(identity, IdentityProvider)
        assert headers["X-Eco-Guest-Id"] == "guest-store"
        assert headers["X-Client-Id"] == "mobile"
        assert headers["X-Eco-Session-Id"] == "session-456"

    def test_bias_hint_and_extra_headers(self):
        request = StreamRequest(system_hint="calmo", headers={"Authorization": "Bearer t"})

        headers = build_stream_headers(request)

        assert headers["X-Eco-Bias-Hint"] == "calmo"
        assert headers["Authorization"] == "Bearer t"

    def test_fallback_headers(self, request_factory):
        headers = build_fallback_headers(request_factory.basic())

        assert headers["Accept"] == "application/json"
        assert "X-Stream-Id" not in headers
        assert headers["X-Eco-Client-Message-Id"] == "msg-1"

    def test_capture_response_headers(self):
        captured = capture_response_headers({"x-eco-guest-id": "g-9", "content-type": "text/plain"})
        assert captured == {"x-eco-guest-id": "g-9"}


@pytest.mark.unit
class TestParseNonStreamResponse:
    def test_text_and_metadata(self):
        parsed = parse_non_stream_response(
            {"text": "Olá", "metadata": {"intensity": 2}, "primeiraMemoriaSignificativa": True}
        )

        assert parsed == {"text": "Olá", "metadata": {"intensity": 2}, "primeira_memoria_significativa": True}

    def test_content_fallback(self):
        assert parse_non_stream_response({"content": "c"})["text"] == "c"

    def test_generic_walk(self):
        assert parse_non_stream_response({"message": {"content": "deep"}})["text"] == "deep"

    def test_response_as_metadata(self):
        assert parse_non_stream_response({"text": "a", "response": {"id": 1}})["metadata"] == {"id": 1}

    def test_non_dict(self):
        parsed = parse_non_stream_response("texto solto")

        assert parsed["text"] == "texto solto"
        assert parsed["metadata"] is None
