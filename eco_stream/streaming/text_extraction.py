"""
Response Text Extraction

The backend has shipped several response shapes over time (``text``,
``content``, ``resposta``, OpenAI-like ``choices``, nested ``payload``
envelopes...). These helpers walk an arbitrary decoded JSON value and pull
the human-readable text out of it.

Author: System Architect
Date: 2025-12-06
"""

import re
from typing import Any

TEXTUAL_KEYS = (
    "content",
    "texto",
    "text",
    "output_text",
    "outputText",
    "output",
    "answer",
    "resposta",
    "respostaFinal",
    "reply",
    "fala",
    "speech",
    "response",
    "final",
    "resultText",
)

NESTED_KEYS = (
    "message",
    "mensagem",
    "resposta",
    "response",
    "responses",
    "data",
    "value",
    "delta",
    "result",
    "results",
    "payload",
    "messages",
    "outputs",
    "items",
    "entries",
    "alternatives",
    "segments",
)

# Last token of an unknown key that marks it as text-bearing
TEXTUAL_TOKENS = frozenset({
    "content", "texto", "text", "output", "answer", "resposta", "reply", "fala",
    "speech", "response", "final", "result", "resulttext", "value",
})

# Last token of an unknown key that marks it as a container worth descending into
NESTED_TOKENS = frozenset({
    "message", "messages", "mensagem", "mensagens", "response", "responses",
    "resposta", "respostas", "payload", "data", "delta", "result", "results",
    "output", "outputs", "item", "items", "entry", "entries", "alternative",
    "alternatives", "segment", "segments", "choice", "choices", "record",
    "records", "list", "lists", "part", "parts", "variant", "variants", "value",
})

_KNOWN_KEYS = frozenset(TEXTUAL_KEYS) | frozenset(NESTED_KEYS)
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")


def split_key_tokens(key: str) -> list[str]:
    """``respostaFinal_text`` → ``["resposta", "final", "text"]``."""
    if not key:
        return []
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", key)
    return [token.lower() for token in _NON_ALNUM.split(spaced) if token.strip()]


def collect_texts(value: Any, visited: set[int] | None = None) -> list[str]:
    """
    Collect every string reachable through text-bearing keys.

    Known textual keys are visited first, then known nested keys, then
    ``choices``, then any other key whose last token looks textual or nested.
    Cycles are cut with an id-based visited set.
    """
    if visited is None:
        visited = set()

    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        results: list[str] = []
        for item in value:
            results.extend(collect_texts(item, visited))
        return results
    if not isinstance(value, dict):
        return []

    if id(value) in visited:
        return []
    visited.add(id(value))

    results = []
    processed: set[str] = set()

    for key in TEXTUAL_KEYS + NESTED_KEYS:
        if key in value and key not in processed:
            processed.add(key)
            results.extend(collect_texts(value[key], visited))

    choices = value.get("choices")
    if isinstance(choices, list):
        processed.add("choices")
        for choice in choices:
            results.extend(collect_texts(choice, visited))

    for key, entry in value.items():
        if not key or key in processed or key in _KNOWN_KEYS:
            continue
        tokens = split_key_tokens(key)
        if not tokens:
            continue
        if tokens[-1] in TEXTUAL_TOKENS or tokens[-1] in NESTED_TOKENS:
            processed.add(key)
            results.extend(collect_texts(entry, visited))

    return results


def normalize_response_text(payload: Any) -> str | None:
    """Unique, trimmed, non-empty texts joined by a blank line; None if nothing."""
    unique: list[str] = []
    for text in collect_texts(payload):
        trimmed = text.strip()
        if trimmed and trimmed not in unique:
            unique.append(trimmed)
    if not unique:
        return None
    return "\n\n".join(unique)


def unwrap_payload(payload: Any) -> Any:
    """Follow nested ``payload`` objects down to the innermost one."""
    if not isinstance(payload, dict):
        return payload

    visited: set[int] = set()
    current = payload
    while isinstance(current, dict):
        inner = current.get("payload")
        if not isinstance(inner, dict) or id(inner) in visited:
            break
        visited.add(id(inner))
        current = inner
    return current
