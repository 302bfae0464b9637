"""
Unit Tests for the Event Normalizer

Tests type resolution, the response.* namespace mapping, the control
channel and per-kind field resolution.
"""

import pytest

from eco_stream.core.config.constants import EventChannel, EventType
from eco_stream.core.exceptions.streaming import DEFAULT_STREAM_ERROR_MESSAGE
from eco_stream.streaming.event_normalizer import (
    extract_created_at,
    extract_finish_reason,
    extract_interaction_id,
    extract_message_id,
    map_response_event_type,
    normalize_control_name,
    normalize_event,
    should_ignore_text,
)
from eco_stream.streaming.frame_reader import parse_frame


@pytest.mark.unit
class TestMapResponseEventType:
    """Test the response.* namespace rules."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("response.created", "prompt_ready"),
            ("response.started", "prompt_ready"),
            ("response.in_progress", "prompt_ready"),
            ("response.input_message.delta", "prompt_ready"),
            ("response.error", "error"),
            ("response.completed", "done"),
            ("response.output_text.done", "done"),
            ("response.final", "done"),
            ("response.metadata", "meta"),
            ("response.metadata.pending", "meta_pending"),
            ("response.metadata.delta", "meta_pending"),
            ("response.memory.saved", "memory_saved"),
            ("response.latency", "latency"),
            ("response.output_text.delta", "chunk"),
            ("response.refusal", "chunk"),
            ("response.tool_call", "chunk"),
            ("response.something_new", "chunk"),
        ],
    )
    def test_namespace_mapping(self, raw, expected):
        normalized, original = map_response_event_type(raw)

        assert normalized == expected
        assert original == raw

    def test_mapping_is_case_insensitive(self):
        assert map_response_event_type("response.COMPLETED")[0] == "done"

    def test_non_namespaced_passes_through(self):
        assert map_response_event_type("chunk") == ("chunk", None)
        assert map_response_event_type(None) == (None, None)


@pytest.mark.unit
class TestNormalizeControlName:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("promptReady", "prompt_ready"),
            ("prompt-ready", "prompt_ready"),
            ("Prompt Ready", "prompt_ready"),
            ("memory.flush", "memory_flush"),
            ("done", "done"),
        ],
    )
    def test_snake_cases_names(self, raw, expected):
        assert normalize_control_name(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_is_none(self, raw):
        assert normalize_control_name(raw) is None


@pytest.mark.unit
class TestTypeResolution:
    """Test the order in which the event type is resolved."""

    def test_frame_chunk(self):
        event = normalize_event(parse_frame('event: chunk\ndata: {"text":"Olá"}'))

        assert event.type is EventType.CHUNK
        assert event.text == "Olá"
        assert event.channel is EventChannel.DATA

    def test_payload_type_wins_over_frame_type(self):
        event = normalize_event(
            {"type": "chunk", "payload": {"type": "response.completed", "response": {"text": "fim"}}}
        )

        assert event.type is EventType.DONE
        assert event.original_type == "response.completed"
        assert event.metadata == {"text": "fim"}
        assert event.text == "fim"

    def test_index_contract_chunk(self):
        event = normalize_event({"type": "delta", "payload": {"index": 2, "text": "x"}})

        assert event.type is EventType.CHUNK
        assert event.text == "x"

    def test_index_contract_string_index(self):
        event = normalize_event({"payload": {"index": "4", "text": "y"}})
        assert event.type is EventType.CHUNK

    def test_index_contract_done(self):
        event = normalize_event({"type": "chunk", "payload": {"index": 3, "done": True}})
        assert event.type is EventType.DONE

    def test_done_marker_frame(self):
        event = normalize_event(parse_frame("data: [DONE]"))
        assert event.type is EventType.DONE

    def test_upper_case_done_flag(self):
        event = normalize_event({"payload": {"DONE": True}})
        assert event.type is EventType.DONE

    def test_untyped_text_is_chunk(self):
        event = normalize_event({"payload": {"text": "solto"}})

        assert event.type is EventType.CHUNK
        assert event.text == "solto"

    def test_legacy_meta_pending_alias(self):
        event = normalize_event({"type": "meta-pending", "payload": {"metadata": {"a": 1}}})

        assert event.type is EventType.META_PENDING
        assert event.metadata == {"a": 1}

    def test_upper_case_done_alias(self):
        event = normalize_event({"type": "DONE", "payload": {}})
        assert event.type is EventType.DONE

    def test_namespaced_delta(self):
        event = normalize_event({"type": "response.output_text.delta", "payload": {"delta": "Olá"}})

        assert event.type is EventType.CHUNK
        assert event.text == "Olá"
        assert event.original_type == "response.output_text.delta"

    def test_non_dict_payload(self):
        event = normalize_event({"type": "chunk", "payload": "texto"})

        assert event.type is EventType.CHUNK
        assert event.text == "texto"

    def test_unknown_type_with_text_degrades_to_chunk(self):
        event = normalize_event({"type": "novidade", "payload": {"text": "oi"}})

        assert event.type is EventType.CHUNK
        assert event.original_type == "novidade"
        assert event.text == "oi"

    def test_unknown_type_without_text_is_dropped(self):
        assert normalize_event({"type": "novidade", "payload": {"count": 1}}) is None

    def test_no_type_is_dropped(self):
        assert normalize_event({"payload": {"foo": 1}}) is None

    def test_event_without_data_is_dropped(self):
        assert normalize_event(parse_frame("event: ping")) is None

    def test_dedup_sources(self):
        event = normalize_event({"type": "chunk", "payload": {"payload": {"index": 1, "text": "a"}}})

        envelope, payload, unwrapped = event.dedup_sources
        assert envelope["type"] == "chunk"
        assert payload == {"payload": {"index": 1, "text": "a"}}
        assert unwrapped == {"index": 1, "text": "a"}


@pytest.mark.unit
class TestControlChannel:
    """Test control events and their effective action."""

    def test_control_prompt_ready(self):
        event = normalize_event({"type": "control", "payload": {"name": "promptReady"}})

        assert event.type is EventType.PROMPT_READY
        assert event.channel is EventChannel.CONTROL
        assert event.name == "prompt_ready"

    def test_control_done_with_text(self):
        event = normalize_event({"type": "control", "payload": {"event": "done", "text": "fim"}})

        assert event.type is EventType.DONE
        assert event.is_control
        assert event.text == "fim"

    def test_control_type_in_payload(self):
        event = normalize_event({"payload": {"type": "control", "name": "done"}})
        assert event.type is EventType.DONE

    def test_nested_control_payload(self):
        event = normalize_event({"type": "control", "payload": {"payload": {"name": "done"}}})
        assert event.type is EventType.DONE

    def test_other_control_names_stay_control(self):
        event = normalize_event({"type": "control", "payload": {"name": "memory-flush"}})

        assert event.type is EventType.CONTROL
        assert event.name == "memory_flush"


@pytest.mark.unit
class TestFieldResolution:
    """Test per-kind fields."""

    def test_error_message_from_error_object(self):
        event = normalize_event({"type": "error", "payload": {"error": {"message": "quebrou"}}})

        assert event.type is EventType.ERROR
        assert event.error_message == "quebrou"

    def test_status_error_is_error(self):
        event = normalize_event({"type": "chunk", "payload": {"status": "error", "message": "falha"}})

        assert event.type is EventType.ERROR
        assert event.error_message == "falha"

    def test_default_error_message(self):
        event = normalize_event({"type": "error", "payload": {}})
        assert event.error_message == DEFAULT_STREAM_ERROR_MESSAGE

    def test_memory_saved(self):
        event = normalize_event(
            {"type": "memory_saved", "payload": {"memoria": {"id": "m1"}, "primeiraMemoriaSignificativa": True}}
        )

        assert event.memory == {"id": "m1"}
        assert event.primeira_memoria_significativa is True

    @pytest.mark.parametrize("payload, expected", [({"value": 123}, 123), ({"latency": 50}, 50)])
    def test_latency(self, payload, expected):
        event = normalize_event({"type": "latency", "payload": payload})
        assert event.latency_ms == expected

    def test_meta_falls_back_to_payload(self):
        event = normalize_event({"type": "meta", "payload": {"intensity": 3}})
        assert event.metadata == {"intensity": 3}

    def test_identity_fields(self):
        event = normalize_event(
            {
                "type": "chunk",
                "payload": {
                    "text": "a",
                    "source": "stream",
                    "response": {"id": " r-1 "},
                    "delta": {"messageId": "d-1"},
                    "ts": "2025-01-01T00:00:00Z",
                },
            }
        )

        assert event.source == "stream"
        assert event.interaction_id == "r-1"
        assert event.message_id == "d-1"
        assert event.created_at == "2025-01-01T00:00:00Z"


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize("text", [None, "", "ok", " OK "])
    def test_trivial_texts_ignored(self, text):
        assert should_ignore_text(text) is True

    @pytest.mark.parametrize("text", [" ", "okay", "Olá"])
    def test_real_texts_kept(self, text):
        assert should_ignore_text(text) is False

    def test_extract_finish_reason(self):
        assert extract_finish_reason({"finishReason": "stop"}) == "stop"
        assert extract_finish_reason({"reason": "length"}) == "length"
        assert extract_finish_reason(None) is None

    def test_extractors_on_plain_payload(self):
        payload = {"interactionId": "i-1", "message_id": "m-1", "createdAt": "now"}

        assert extract_interaction_id(payload) == "i-1"
        assert extract_message_id(payload) == "m-1"
        assert extract_created_at(payload) == "now"
