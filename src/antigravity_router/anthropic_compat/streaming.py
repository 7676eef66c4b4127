# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Streaming translation from upstream SSE chunks to Anthropic stream events.

Anthropic stream events:
- message_start: Initial message metadata
- content_block_start: Start of a content block
- content_block_delta: Content chunk (text, thinking, signature, tool input)
- content_block_stop: End of a content block
- message_delta: Final message metadata (stop_reason, usage)
- message_stop: End of message

All state is held by one StreamingTranslator per call; nothing is shared
between calls.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..core.errors import EmptyResponseError, MalformedChunkError
from ..providers.antigravity_utils import (
    SignatureCache,
    generate_message_id,
    generate_tool_use_id,
    get_model_family,
    is_valid_signature,
)
from ..stream_utils import decode_sse_data_line, iter_lines, split_chunk
from .translator import FINISH_REASON_MAP

logger = logging.getLogger("antigravity_router.anthropic_compat")

Event = Dict[str, Any]


def _token_count(usage: Dict[str, Any], key: str, current: int) -> int:
    value = usage.get(key)
    if isinstance(value, int) and not isinstance(value, bool) and value:
        return value
    return current


class StreamingTranslator:
    """
    State machine for one streamed response.

    Block states: None -> thinking | text | tool_use | image -> None. A
    block of a different type always closes the open one first; a pending
    thinking signature is emitted as ``signature_delta`` right before the
    thinking block closes.

    Usage:
        translator = StreamingTranslator(model, cache)
        for chunk in chunks:
            events.extend(translator.process_chunk(chunk))
        events.extend(translator.finish())
    """

    def __init__(
        self,
        original_model: str,
        signature_cache: Optional[SignatureCache] = None,
        message_id: Optional[str] = None,
    ):
        self.original_model = original_model
        self.model_family = get_model_family(original_model)
        self.signature_cache = signature_cache
        self.message_id = message_id or generate_message_id()

        self.started = False
        self.finished = False
        self.block_index = 0
        self.current_block_type: Optional[str] = None
        self.current_thinking_signature = ""
        self.input_tokens = 0
        self.output_tokens = 0
        self.cache_read_tokens = 0
        self.stop_reason: Optional[str] = None

    # =========================================================================
    # BLOCK HELPERS
    # =========================================================================

    def _flush_signature(self) -> List[Event]:
        if self.current_block_type != "thinking" or not self.current_thinking_signature:
            return []
        event = {
            "type": "content_block_delta",
            "index": self.block_index,
            "delta": {"type": "signature_delta", "signature": self.current_thinking_signature},
        }
        self.current_thinking_signature = ""
        return [event]

    def _close_block(self) -> List[Event]:
        if self.current_block_type is None:
            return []
        event = {"type": "content_block_stop", "index": self.block_index}
        self.block_index += 1
        self.current_block_type = None
        return [event]

    def _open_block(self, block_type: str, content_block: Dict[str, Any]) -> List[Event]:
        self.current_block_type = block_type
        return [
            {
                "type": "content_block_start",
                "index": self.block_index,
                "content_block": content_block,
            }
        ]

    # =========================================================================
    # PARTS
    # =========================================================================

    def _thinking(self, part: Dict[str, Any]) -> List[Event]:
        events: List[Event] = []
        if self.current_block_type != "thinking":
            events += self._close_block()
            self.current_thinking_signature = ""
            events += self._open_block("thinking", {"type": "thinking", "thinking": ""})

        signature = part.get("thoughtSignature") or ""
        if is_valid_signature(signature):
            self.current_thinking_signature = signature
            if self.signature_cache is not None:
                self.signature_cache.cache_thinking_signature(signature, self.model_family)

        events.append(
            {
                "type": "content_block_delta",
                "index": self.block_index,
                "delta": {"type": "thinking_delta", "thinking": str(part.get("text") or "")},
            }
        )
        return events

    def _text(self, text: str) -> List[Event]:
        events: List[Event] = []
        if self.current_block_type != "text":
            events += self._flush_signature()
            events += self._close_block()
            events += self._open_block("text", {"type": "text", "text": ""})
        events.append(
            {
                "type": "content_block_delta",
                "index": self.block_index,
                "delta": {"type": "text_delta", "text": text},
            }
        )
        return events

    def _tool_use(self, part: Dict[str, Any]) -> List[Event]:
        call = part["functionCall"]
        events = self._flush_signature() + self._close_block()
        self.stop_reason = "tool_use"

        tool_id = str(call.get("id") or generate_tool_use_id())
        block: Dict[str, Any] = {
            "type": "tool_use",
            "id": tool_id,
            "name": str(call.get("name", "")),
            "input": {},
        }
        # The signature is a sibling of functionCall, not inside it
        signature = part.get("thoughtSignature") or ""
        if is_valid_signature(signature):
            block["thoughtSignature"] = signature
            if self.signature_cache is not None:
                self.signature_cache.cache_tool_signature(tool_id, signature)

        events += self._open_block("tool_use", block)
        events.append(
            {
                "type": "content_block_delta",
                "index": self.block_index,
                "delta": {
                    "type": "input_json_delta",
                    "partial_json": json.dumps(call.get("args") or {}),
                },
            }
        )
        return events

    def _image(self, inline: Dict[str, Any]) -> List[Event]:
        events = self._flush_signature() + self._close_block()
        events += self._open_block(
            "image",
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": str(inline.get("mimeType", "")),
                    "data": str(inline.get("data", "")),
                },
            },
        )
        events += self._close_block()
        return events

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def process_chunk(self, data: Dict[str, Any]) -> List[Event]:
        """
        Translate one decoded upstream chunk into zero or more events.

        Raises:
            MalformedChunkError: if the chunk has the wrong shape; the
                translator state is left untouched
        """
        usage, parts, finish_reason = split_chunk(data)
        events: List[Event] = []

        self.input_tokens = _token_count(usage, "promptTokenCount", self.input_tokens)
        self.output_tokens = _token_count(usage, "candidatesTokenCount", self.output_tokens)
        self.cache_read_tokens = _token_count(
            usage, "cachedContentTokenCount", self.cache_read_tokens
        )

        if not self.started and parts:
            self.started = True
            events.append(
                {
                    "type": "message_start",
                    "message": {
                        "id": self.message_id,
                        "type": "message",
                        "role": "assistant",
                        "content": [],
                        "model": self.original_model,
                        "stop_reason": None,
                        "stop_sequence": None,
                        "usage": {
                            "input_tokens": self.input_tokens - self.cache_read_tokens,
                            "output_tokens": 0,
                            "cache_read_input_tokens": self.cache_read_tokens,
                            "cache_creation_input_tokens": 0,
                        },
                    },
                }
            )

        for part in parts:
            if part.get("thought") is True:
                events += self._thinking(part)
            elif "text" in part:
                # Empty text is skipped; whitespace-only text is kept for spacing
                if part["text"] == "" or part["text"] is None:
                    continue
                events += self._text(str(part["text"]))
            elif isinstance(part.get("functionCall"), dict):
                events += self._tool_use(part)
            elif isinstance(part.get("inlineData"), dict):
                events += self._image(part["inlineData"])
            else:
                logger.debug(f"Skipping unrecognised part: {sorted(part)}")

        if finish_reason and not self.stop_reason:
            self.stop_reason = FINISH_REASON_MAP.get(finish_reason)

        return events

    def finish(self) -> List[Event]:
        """
        Close the stream.

        Raises:
            EmptyResponseError: if no content was ever received; in that
                case no event at all has been emitted.
        """
        if self.finished:
            return []
        self.finished = True
        if not self.started:
            logger.warning("No content parts received, raising for retry")
            raise EmptyResponseError("No content parts received from API")

        events = self._flush_signature() + self._close_block()
        events.append(
            {
                "type": "message_delta",
                "delta": {"stop_reason": self.stop_reason or "end_turn", "stop_sequence": None},
                "usage": {
                    "output_tokens": self.output_tokens,
                    "cache_read_input_tokens": self.cache_read_tokens,
                    "cache_creation_input_tokens": 0,
                },
            }
        )
        events.append({"type": "message_stop"})
        return events


async def translate_stream(
    chunks: AsyncIterator[Union[str, bytes]],
    original_model: str,
    signature_cache: Optional[SignatureCache] = None,
    translator: Optional[StreamingTranslator] = None,
) -> AsyncIterator[Event]:
    """
    Translate a raw upstream SSE body into Anthropic stream events.

    Malformed lines are logged and skipped; they never end the stream.

    Raises:
        EmptyResponseError: if the stream carried no content parts
    """
    translator = translator or StreamingTranslator(original_model, signature_cache)
    async for line in iter_lines(chunks):
        try:
            data = decode_sse_data_line(line)
            if data is None:
                continue
            events = translator.process_chunk(data)
        except MalformedChunkError as e:
            logger.warning(f"SSE parse error: {e}")
            continue
        for event in events:
            yield event
    for event in translator.finish():
        yield event


def format_sse_event(event: Event) -> str:
    """Serialize an event in Anthropic SSE wire format."""
    return f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"
