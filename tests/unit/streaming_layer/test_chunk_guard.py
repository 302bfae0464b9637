"""
Unit Tests for the Chunk Dedup / Ordering Guard
"""

import pytest

from eco_stream.streaming.chunk_guard import (
    ChunkGuard,
    collect_candidate_values,
    resolve_chunk_identifier,
    resolve_chunk_index,
    to_chunk_index,
)


@pytest.mark.unit
class TestIdentifierResolution:
    """Test identifier and index lookup."""

    def test_numeric_identifier(self):
        assert resolve_chunk_identifier({"index": 3}) == "index:3"

    def test_integral_float_formats_as_int(self):
        assert resolve_chunk_identifier({"chunkIndex": 1.0}) == "index:1"

    def test_numeric_beats_string(self):
        assert resolve_chunk_identifier({"id": "abc", "index": 7}) == "index:7"

    def test_string_identifier(self):
        assert resolve_chunk_identifier({"delta_id": " d-9 "}) == "index:d-9"

    def test_booleans_are_not_numbers(self):
        assert resolve_chunk_identifier({"index": True}) is None
        assert resolve_chunk_index({"index": True}) is None

    def test_nested_keys_are_walked(self):
        payload = {"payload": {"delta": {"cursor": 5}}}
        assert resolve_chunk_index(payload) == 5

    def test_unrelated_keys_are_not_walked(self):
        assert resolve_chunk_index({"metadata": {"index": 5}}) is None

    def test_list_items_are_walked(self):
        assert resolve_chunk_index({"data": [{"token_index": 2}]}) == 2

    def test_cycles_are_safe(self):
        payload: dict = {"index": 1}
        payload["payload"] = payload
        assert collect_candidate_values(payload) == [1]

    def test_first_source_with_candidates_wins(self):
        assert resolve_chunk_identifier({"text": "a"}, {"index": 4}) == "index:4"

    @pytest.mark.parametrize("value, expected", [(3, 3), ("12abc", 12), ("  7", 7), ("abc", None), (None, None)])
    def test_to_chunk_index(self, value, expected):
        assert to_chunk_index(value) == expected


@pytest.mark.unit
class TestChunkGuard:
    """Test the drop policy."""

    def test_duplicate_identifier_dropped(self):
        """Two chunks with the same identifier: only the first passes."""
        guard = ChunkGuard()

        assert guard.should_skip({"id": "abc", "text": "Olá"}) is False
        assert guard.should_skip({"id": "abc", "text": "Olá"}) is True
        assert guard.seen_count == 1

    def test_ordering_enforcement(self):
        """Indices [0,1,2,1,3] accept everything except the repeated 1."""
        guard = ChunkGuard()

        accepted = [i for i in [0, 1, 2, 1, 3] if not guard.should_skip({"index": i})]

        assert accepted == [0, 1, 2, 3]
        assert guard.watermark == 3

    def test_lower_index_with_new_identifier_dropped(self):
        guard = ChunkGuard()
        guard.should_skip({"index": 5})
        assert guard.should_skip({"chunk_index": 4}) is True

    def test_chunks_without_identifiers_pass(self):
        guard = ChunkGuard()
        assert guard.should_skip({"text": "a"}) is False
        assert guard.should_skip({"text": "a"}) is False

    def test_watermark_never_decreases(self):
        guard = ChunkGuard()
        for index in [2, 9, 4, 10]:
            guard.should_skip({"index": index})
        assert guard.watermark == 10

    def test_reset(self):
        guard = ChunkGuard()
        guard.should_skip({"index": 1})

        guard.reset()

        assert guard.watermark is None
        assert guard.should_skip({"index": 1}) is False
