"""
SSE Frame Reader

Turns the raw byte stream of an ``text/event-stream`` response into discrete
frames. One frame is one blank-line delimited block:

    event: chunk
    data: {"text": "Olá"}

Behaviour:
- CRLF and lone CR are normalized to LF before delimiters are searched.
- A block whose first non-empty line starts with ``:`` is a heartbeat and
  produces no frame.
- ``event:`` sets the event name, ``data:`` lines accumulate (one leading
  space stripped), any other non-empty line is kept as raw data.
- ``[DONE]`` synthesizes a done frame. JSON failures degrade, never raise.
- Bytes are decoded incrementally, so a multi-byte character split across
  two reads is reassembled before parsing.

Author: System Architect
Date: 2025-12-05
"""

import codecs
import re
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import orjson

from eco_stream.core.config.constants import DONE_MARKER, Stage
from eco_stream.core.logging import get_logger, log_stage

logger = get_logger(__name__)

_NEWLINES = re.compile(r"\r\n|\r")
_FRAME_DELIMITER = "\n\n"


@dataclass
class RawFrame:
    """One parsed SSE block, before normalization."""

    event_name: str | None = None
    data_lines: list[str] = field(default_factory=list)
    payload: Any = None
    raw_data: str | None = None

    @property
    def type(self) -> str | None:
        """Hinted event type (the ``event:`` name, or ``done`` for ``[DONE]``)."""
        if self.event_name is None and self.raw_data == DONE_MARKER:
            return "done"
        return self.event_name

    def as_dict(self) -> dict[str, Any]:
        """Envelope form consumed by the event normalizer."""
        envelope: dict[str, Any] = {"type": self.type, "payload": self.payload}
        if self.raw_data is not None:
            envelope["rawData"] = self.raw_data
        return envelope


def normalize_newlines(text: str) -> str:
    """CRLF / CR / LF → LF."""
    return _NEWLINES.sub("\n", text)


def parse_frame(block: str) -> RawFrame | None:
    """
    Parse one blank-line delimited block.

    Returns None for heartbeats and blocks without any content line.
    """
    lines = normalize_newlines(block).split("\n")
    first_non_empty = next((line for line in lines if line), None)
    if first_non_empty is None:
        return None
    if first_non_empty.startswith(":"):
        log_stage(logger, Stage.FRAME_READING, "Heartbeat received", level="debug")
        return None

    event_name: str | None = None
    data_parts: list[str] = []

    for line in lines:
        if not line or line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[len("event:"):].strip()
            continue
        if line.startswith("data:"):
            value = line[len("data:"):]
            data_parts.append(value[1:] if value.startswith(" ") else value)
            continue
        data_parts.append(line)

    data = "\n".join(data_parts)
    frame = RawFrame(event_name=event_name, data_lines=data_parts)

    if not data:
        return frame

    frame.raw_data = data
    if data == DONE_MARKER:
        frame.payload = {"done": True}
        return frame

    try:
        frame.payload = orjson.loads(data)
    except orjson.JSONDecodeError:
        frame.payload = {"text": data} if event_name == "chunk" else {}
        log_stage(
            logger,
            Stage.FRAME_READING,
            "Frame data is not JSON, degraded",
            level="debug",
            event_name=event_name,
            preview=data[:80],
        )
    return frame


class SSEFrameReader:
    """
    Incremental frame reader.

    Usage:
        reader = SSEFrameReader()
        for raw in chunks:
            for frame in reader.feed(raw):
                ...
        for frame in reader.flush():
            ...
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._pending_cr = False
        self._closed = False

    def feed(self, data: bytes | str) -> list[RawFrame]:
        """Append data and return every frame completed by it."""
        if self._closed:
            raise RuntimeError("SSEFrameReader already flushed")
        text = self._decoder.decode(data) if isinstance(data, (bytes, bytearray)) else data
        self._append(text)
        return self._drain()

    def flush(self) -> list[RawFrame]:
        """
        Signal end of input.

        Flushes the decoder and emits any non-empty remainder once.
        """
        if self._closed:
            return []
        self._append(self._decoder.decode(b"", final=True))
        if self._pending_cr:
            self._buffer += "\n"
            self._pending_cr = False
        frames = self._drain()
        remainder, self._buffer = self._buffer, ""
        self._closed = True
        if remainder:
            frame = parse_frame(remainder)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def buffered(self) -> str:
        """Text received but not yet part of a complete frame."""
        return self._buffer

    def _append(self, text: str) -> None:
        if not text:
            return
        # A trailing CR may be the first half of a CRLF split across reads.
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            text = text[:-1]
            self._pending_cr = True
        self._buffer += normalize_newlines(text)

    def _drain(self) -> list[RawFrame]:
        frames: list[RawFrame] = []
        idx = self._buffer.find(_FRAME_DELIMITER)
        while idx != -1:
            block = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(_FRAME_DELIMITER):]
            frame = parse_frame(block)
            if frame is not None:
                frames.append(frame)
            idx = self._buffer.find(_FRAME_DELIMITER)
        return frames


async def iter_frames(source: AsyncIterable[bytes]) -> AsyncIterator[RawFrame]:
    """Async generator yielding frames from an async byte source."""
    reader = SSEFrameReader()
    async for chunk in source:
        for frame in reader.feed(chunk):
            yield frame
    for frame in reader.flush():
        yield frame
