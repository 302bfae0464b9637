"""
Chunk Dedup / Ordering Guard

Drops chunk events that were already delivered (same identifier) or that
arrive out of order (index at or below the last accepted one). One guard
belongs to one session and is never shared across turns.

Identifiers and indices are looked up in the raw frame, the payload and the
unwrapped payload. The walk only descends into a fixed set of container keys
and list items, and is cycle safe.

Author: System Architect
Date: 2025-12-06
"""

import math
import re
from typing import Any

from eco_stream.core.config.constants import (
    CHUNK_GUARD_MAX_NODES,
    CHUNK_IDENTIFIER_KEYS,
    CHUNK_NESTED_KEYS,
    Stage,
)
from eco_stream.core.logging import get_logger, log_stage

logger = get_logger(__name__)

_LEADING_INT = re.compile(r"[+-]?\d+")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def collect_candidate_values(root: Any) -> list[Any]:
    """
    Values found under identifier keys, walking known container keys.

    The walk is iterative (explicit stack) and bounded by
    ``CHUNK_GUARD_MAX_NODES`` visited objects.
    """
    if not root:
        return []

    values: list[Any] = []
    visited: set[int] = set()
    stack: list[Any] = [root]

    while stack and len(visited) < CHUNK_GUARD_MAX_NODES:
        current = stack.pop()
        if not current:
            continue
        if isinstance(current, list):
            stack.extend(current)
            continue
        if not isinstance(current, dict) or id(current) in visited:
            continue
        visited.add(id(current))

        for key in CHUNK_IDENTIFIER_KEYS:
            if key in current:
                values.append(current[key])

        for key in CHUNK_NESTED_KEYS:
            nested = current.get(key)
            if nested is not None:
                stack.append(nested)

    return values


def _candidates(sources: tuple[Any, ...]) -> list[Any]:
    found: list[Any] = []
    for source in sources:
        found.extend(collect_candidate_values(source))
    return found


def resolve_chunk_identifier(*sources: Any) -> str | None:
    """
    ``index:<n>`` for the first numeric candidate, else ``index:<s>`` for the
    first non-empty string candidate, else None.
    """
    candidates = _candidates(sources)
    for candidate in candidates:
        if _is_number(candidate):
            return f"index:{_format_number(candidate)}"
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return f"index:{candidate.strip()}"
    return None


def to_chunk_index(value: Any) -> float | None:
    """Finite number, or the leading integer of a string; None otherwise."""
    if _is_number(value):
        return value
    if isinstance(value, str):
        match = _LEADING_INT.match(value.strip())
        if match:
            return int(match.group())
    return None


def resolve_chunk_index(*sources: Any) -> float | None:
    """First candidate convertible to a finite number."""
    for candidate in _candidates(sources):
        index = to_chunk_index(candidate)
        if index is not None:
            return index
    return None


class ChunkGuard:
    """
    Per-session dedup and ordering filter.

    Drop policy, in order:
    1. identifier already recorded → drop
    2. index present and <= watermark → drop
    3. otherwise accept, record identifier, watermark = max(watermark, index)
    """

    def __init__(self):
        self._seen: set[str] = set()
        self._watermark: float | None = None

    @property
    def watermark(self) -> float | None:
        return self._watermark

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def should_skip(self, *sources: Any) -> bool:
        identifier = resolve_chunk_identifier(*sources)
        index = resolve_chunk_index(*sources)

        if identifier is not None and identifier in self._seen:
            log_stage(
                logger, Stage.DEDUP, "Chunk dropped (duplicate)",
                level="debug", identifier=identifier,
            )
            return True

        if index is not None and self._watermark is not None and index <= self._watermark:
            log_stage(
                logger, Stage.DEDUP, "Chunk dropped (out of order)",
                level="debug", chunk_index=index, watermark=self._watermark,
            )
            return True

        if identifier is not None:
            self._seen.add(identifier)
        if index is not None:
            self._watermark = index if self._watermark is None else max(self._watermark, index)
        return False

    def reset(self) -> None:
        self._seen.clear()
        self._watermark = None
