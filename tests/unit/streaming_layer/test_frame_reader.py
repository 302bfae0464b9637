"""
Unit Tests for the SSE Frame Reader

Tests block parsing, degradation rules and incremental reading.
"""

import pytest

from eco_stream.streaming.frame_reader import (
    RawFrame,
    SSEFrameReader,
    iter_frames,
    normalize_newlines,
    parse_frame,
)
from tests.test_fixtures.backend_factory import sse_body, sse_event, split_every


def read_all(parts: list[bytes]) -> list[RawFrame]:
    reader = SSEFrameReader()
    frames: list[RawFrame] = []
    for part in parts:
        frames.extend(reader.feed(part))
    frames.extend(reader.flush())
    return frames


@pytest.mark.unit
class TestParseFrame:
    """Test parsing of a single block."""

    def test_event_and_json_data(self):
        frame = parse_frame('event: chunk\ndata: {"text":"Olá"}')

        assert frame.event_name == "chunk"
        assert frame.payload == {"text": "Olá"}
        assert frame.raw_data == '{"text":"Olá"}'

    def test_heartbeat_returns_none(self):
        assert parse_frame(": keep-alive") is None

    def test_empty_block_returns_none(self):
        assert parse_frame("\n\n") is None

    def test_multiple_data_lines_are_joined(self):
        frame = parse_frame('data: {"text":\ndata: "a"}')
        assert frame.payload == {"text": "a"}

    def test_data_without_space(self):
        frame = parse_frame('data:{"index":1}')
        assert frame.payload == {"index": 1}

    def test_done_marker(self):
        frame = parse_frame("data: [DONE]")

        assert frame.type == "done"
        assert frame.payload == {"done": True}

    def test_done_marker_keeps_event_name(self):
        frame = parse_frame("event: control\ndata: [DONE]")
        assert frame.type == "control"

    def test_invalid_json_in_chunk_becomes_text(self):
        frame = parse_frame("event: chunk\ndata: texto solto")
        assert frame.payload == {"text": "texto solto"}

    def test_invalid_json_elsewhere_becomes_empty(self):
        frame = parse_frame("event: meta\ndata: {quebrado")
        assert frame.payload == {}

    def test_event_without_data(self):
        frame = parse_frame("event: ping")

        assert frame.type == "ping"
        assert frame.payload is None
        assert frame.raw_data is None

    def test_bare_line_is_raw_data(self):
        frame = parse_frame('{"text":"sem prefixo"}')
        assert frame.payload == {"text": "sem prefixo"}

    def test_as_dict_envelope(self):
        frame = parse_frame('event: chunk\ndata: {"text":"x"}')
        assert frame.as_dict() == {"type": "chunk", "payload": {"text": "x"}, "rawData": '{"text":"x"}'}


@pytest.mark.unit
class TestNewlines:
    def test_crlf_and_cr_normalized(self):
        assert normalize_newlines("a\r\nb\rc\n") == "a\nb\nc\n"

    def test_crlf_delimited_frames(self):
        frames = read_all([b'event: chunk\r\ndata: {"text":"a"}\r\n\r\nevent: done\r\ndata: {}\r\n\r\n'])
        assert [f.type for f in frames] == ["chunk", "done"]


@pytest.mark.unit
class TestIncrementalReader:
    """Test SSEFrameReader across read boundaries."""

    BODY = sse_body(
        sse_event({}, event="prompt_ready"),
        b": heartbeat\n\n",
        sse_event({"text": "Olá, coração"}, event="chunk"),
        sse_event({"text": "mundo"}, event="chunk"),
        sse_event(raw="[DONE]"),
    )

    def test_frames_from_single_read(self):
        frames = read_all([self.BODY])
        assert [f.type for f in frames] == ["prompt_ready", "chunk", "chunk", "done"]

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 64])
    def test_boundary_insensitivity(self, size):
        """Any split of the byte stream yields the same frames."""
        expected = read_all([self.BODY])
        assert read_all(split_every(self.BODY, size)) == expected

    def test_every_single_split_point(self):
        expected = read_all([self.BODY])
        for cut in range(1, len(self.BODY)):
            assert read_all([self.BODY[:cut], self.BODY[cut:]]) == expected

    def test_crlf_split_across_reads(self):
        frames = read_all([b'data: {"text":"a"}\r', b"\n\r", b"\n"])
        assert [f.payload for f in frames] == [{"text": "a"}]

    def test_multibyte_character_split(self):
        data = sse_event({"text": "ção"}, event="chunk")
        cut = data.index("ç".encode()) + 1

        frames = read_all([data[:cut], data[cut:]])

        assert frames[0].payload == {"text": "ção"}

    def test_flush_emits_unterminated_remainder_once(self):
        reader = SSEFrameReader()
        assert reader.feed(b'event: chunk\ndata: {"text":"fim"}') == []
        assert reader.buffered

        frames = reader.flush()

        assert [f.payload for f in frames] == [{"text": "fim"}]
        assert reader.flush() == []

    def test_feed_after_flush_raises(self):
        reader = SSEFrameReader()
        reader.flush()
        with pytest.raises(RuntimeError):
            reader.feed(b"data: {}\n\n")

    async def test_iter_frames(self):
        async def source():
            for part in split_every(self.BODY, 4):
                yield part

        frames = [frame async for frame in iter_frames(source())]

        assert [f.type for f in frames] == ["prompt_ready", "chunk", "chunk", "done"]
