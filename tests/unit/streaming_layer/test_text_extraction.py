"""
Unit Tests for Response Text Extraction
"""

import pytest

from eco_stream.streaming.text_extraction import (
    collect_texts,
    normalize_response_text,
    split_key_tokens,
    unwrap_payload,
)


@pytest.mark.unit
class TestCollectTexts:
    def test_plain_string(self):
        assert collect_texts("oi") == ["oi"]

    def test_textual_then_nested_keys(self):
        payload = {"message": {"content": "b"}, "text": "a"}
        assert collect_texts(payload) == ["a", "b"]

    def test_choices(self):
        payload = {"choices": [{"delta": {"content": "x"}}, {"delta": {"content": "y"}}]}
        assert collect_texts(payload) == ["x", "y"]

    def test_unknown_textual_key_by_token(self):
        assert collect_texts({"finalAnswerText": "z"}) == ["z"]

    def test_irrelevant_keys_ignored(self):
        assert collect_texts({"source": "json", "id": "1"}) == []

    def test_cycles_are_cut(self):
        payload: dict = {"text": "a"}
        payload["payload"] = payload
        assert collect_texts(payload) == ["a"]


@pytest.mark.unit
class TestNormalizeResponseText:
    def test_unique_trimmed_join(self):
        payload = {"text": " Olá ", "content": "Olá", "resposta": "tudo bem?"}
        assert normalize_response_text(payload) == "Olá\n\ntudo bem?"

    @pytest.mark.parametrize("payload", [None, {}, {"text": "   "}, 42])
    def test_nothing_is_none(self, payload):
        assert normalize_response_text(payload) is None


@pytest.mark.unit
class TestUnwrapAndTokens:
    def test_unwrap_nested_payloads(self):
        assert unwrap_payload({"payload": {"payload": {"text": "x"}}}) == {"text": "x"}

    def test_unwrap_follows_empty_payload(self):
        assert unwrap_payload({"payload": {}}) == {}

    def test_unwrap_non_dict(self):
        assert unwrap_payload("x") == "x"

    def test_split_key_tokens(self):
        assert split_key_tokens("respostaFinal_text") == ["resposta", "final", "text"]
