# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import codecs
import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

from .core.errors import MalformedChunkError

lib_logger = logging.getLogger("antigravity_router")

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class BufferedLineSplitter:
    """
    Split an incrementally received text stream into complete lines.

    A trailing partial line is carried over to the next ``feed`` call and
    only released by ``flush`` once the stream has ended. Works on text, so
    callers feeding bytes should decode incrementally (see ``iter_lines``).
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[str]:
        if not text:
            return []
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        remainder, self._buffer = self._buffer.rstrip("\r"), ""
        return [remainder] if remainder else []


async def iter_lines(chunks: AsyncIterator[Union[str, bytes]]) -> AsyncIterator[str]:
    """
    Yield complete lines from an async stream of text or byte chunks.

    Bytes are decoded incrementally so a multi-byte character split across
    two chunks is handled.
    """
    splitter = BufferedLineSplitter()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        for line in splitter.feed(text):
            yield line
    tail = decoder.decode(b"", final=True)
    for line in splitter.feed(tail) + splitter.flush():
        yield line


def decode_sse_data_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Decode one SSE line.

    Returns:
        The JSON payload of a ``data:`` line, or None for any other line,
        an empty payload or the ``[DONE]`` terminator.

    Raises:
        MalformedChunkError: if the payload is not a JSON object
    """
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    payload = line[len(SSE_DATA_PREFIX):].strip()
    if not payload or payload == SSE_DONE:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedChunkError(f"Invalid JSON in SSE line: {e}", raw=payload) from e
    if not isinstance(data, dict):
        raise MalformedChunkError("SSE payload is not a JSON object", raw=payload)
    return data


def unwrap_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """The upstream wraps each chunk in ``{"response": ...}``; accept both."""
    inner = data.get("response")
    return inner if isinstance(inner, dict) else data


def split_chunk(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[Dict[str, Any]], Optional[str]]:
    """
    Pull ``(usageMetadata, parts, finishReason)`` out of one decoded chunk.

    Only the first candidate is read. Parts that are not objects are dropped.

    Raises:
        MalformedChunkError: if the chunk is valid JSON with the wrong shape
    """
    inner = unwrap_response(data)

    usage = inner.get("usageMetadata") or {}
    if not isinstance(usage, dict):
        raise MalformedChunkError("usageMetadata is not an object", raw=str(usage)[:200])

    candidates = inner.get("candidates") or []
    if not isinstance(candidates, list):
        raise MalformedChunkError("candidates is not a list", raw=str(candidates)[:200])
    first = candidates[0] if candidates else {}
    if not isinstance(first, dict):
        raise MalformedChunkError("candidate is not an object", raw=str(first)[:200])

    content = first.get("content") or {}
    if not isinstance(content, dict):
        raise MalformedChunkError("candidate content is not an object", raw=str(content)[:200])
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise MalformedChunkError("content parts is not a list", raw=str(parts)[:200])

    finish_reason = first.get("finishReason")
    return (
        usage,
        [part for part in parts if isinstance(part, dict)],
        finish_reason if isinstance(finish_reason, str) else None,
    )


def accumulate_sse_response(lines: Iterable[str]) -> Dict[str, Any]:
    """
    Assemble a complete SSE body into a single upstream-shaped response.

    - Consecutive thought parts are merged; the last signature seen wins
    - Consecutive text parts are merged; empty text is dropped
    - Function-call and inline-data parts are kept in order
    - The last ``usageMetadata`` and ``finishReason`` win

    Malformed lines are logged and skipped.
    """
    final_parts: List[Dict[str, Any]] = []
    thinking_text = ""
    thinking_signature = ""
    text = ""
    usage: Dict[str, Any] = {}
    finish_reason = "STOP"

    def flush_thinking() -> None:
        nonlocal thinking_text, thinking_signature
        if thinking_text:
            final_parts.append(
                {
                    "thought": True,
                    "text": thinking_text,
                    "thoughtSignature": thinking_signature,
                }
            )
        thinking_text = ""
        thinking_signature = ""

    def flush_text() -> None:
        nonlocal text
        if text:
            final_parts.append({"text": text})
        text = ""

    for line in lines:
        try:
            data = decode_sse_data_line(line)
            if data is None:
                continue
            chunk_usage, parts, chunk_finish = split_chunk(data)
        except MalformedChunkError as e:
            lib_logger.warning(f"SSE parse warning: {e}")
            continue

        if chunk_usage:
            usage = chunk_usage
        if chunk_finish:
            finish_reason = chunk_finish

        for part in parts:
            if part.get("thought") is True:
                flush_text()
                thinking_text += str(part.get("text") or "")
                if isinstance(part.get("thoughtSignature"), str) and part["thoughtSignature"]:
                    thinking_signature = part["thoughtSignature"]
            elif isinstance(part.get("functionCall"), dict):
                flush_thinking()
                flush_text()
                final_parts.append(part)
            elif "text" in part:
                if not part["text"]:
                    continue
                flush_thinking()
                text += str(part["text"])
            elif isinstance(part.get("inlineData"), dict):
                flush_thinking()
                flush_text()
                final_parts.append(part)

    flush_thinking()
    flush_text()

    return {
        "candidates": [
            {"content": {"role": "model", "parts": final_parts}, "finishReason": finish_reason}
        ],
        "usageMetadata": usage,
    }
