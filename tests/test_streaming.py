import json

import pytest

from antigravity_router.anthropic_compat import StreamingTranslator, format_sse_event, translate_stream
from antigravity_router.core.errors import EmptyResponseError, MalformedChunkError
from antigravity_router.providers.antigravity_utils import SignatureCache

from conftest import sse_body, text_chunk

SIGNATURE = "s" * 64
MODEL = "claude-sonnet-4-5-thinking"


async def _chunks(*items):
    for item in items:
        yield item


async def _collect(stream):
    return [event async for event in stream]


def _part_chunk(*parts, finish_reason=None, usage=None):
    candidate = {"content": {"role": "model", "parts": list(parts)}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    inner = {"candidates": [candidate]}
    if usage:
        inner["usageMetadata"] = usage
    return {"response": inner}


def _types(events):
    out = []
    for event in events:
        if event["type"] == "content_block_delta":
            out.append(event["delta"]["type"])
        elif event["type"] == "content_block_start":
            out.append("start:" + event["content_block"]["type"])
        else:
            out.append(event["type"])
    return out


def test_thinking_then_tool_use_event_order() -> None:
    cache = SignatureCache()
    translator = StreamingTranslator(MODEL, cache)

    events = translator.process_chunk(
        _part_chunk(
            {"thought": True, "text": "Let me think"},
            {"thought": True, "text": "", "thoughtSignature": SIGNATURE},
            usage={"promptTokenCount": 10},
        )
    )
    events += translator.process_chunk(
        _part_chunk(
            {"functionCall": {"id": "toolu_1", "name": "f", "args": {"a": 1}}, "thoughtSignature": SIGNATURE},
            finish_reason="STOP",
            usage={"promptTokenCount": 10, "candidatesTokenCount": 7},
        )
    )
    events += translator.finish()

    assert _types(events) == [
        "message_start",
        "start:thinking",
        "thinking_delta",
        "thinking_delta",
        "signature_delta",
        "content_block_stop",
        "start:tool_use",
        "input_json_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    signature_event = events[4]
    assert signature_event["index"] == 0
    assert signature_event["delta"]["signature"] == SIGNATURE

    tool_start = events[6]
    assert tool_start["index"] == 1
    assert tool_start["content_block"]["thoughtSignature"] == SIGNATURE
    assert json.loads(events[7]["delta"]["partial_json"]) == {"a": 1}

    message_delta = events[-2]
    assert message_delta["delta"]["stop_reason"] == "tool_use"
    assert message_delta["usage"]["output_tokens"] == 7

    assert cache.get_tool_signature("toolu_1") == SIGNATURE
    assert cache.get_signature_family(SIGNATURE) == "claude"


def test_text_blocks_merge_across_chunks() -> None:
    translator = StreamingTranslator("claude-sonnet-4-5")
    events = translator.process_chunk(text_chunk("Hel"))
    events += translator.process_chunk(text_chunk("lo", finish_reason="MAX_TOKENS"))
    events += translator.finish()

    assert _types(events) == [
        "message_start",
        "start:text",
        "text_delta",
        "text_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    assert events[-2]["delta"]["stop_reason"] == "max_tokens"


def test_empty_and_whitespace_text() -> None:
    translator = StreamingTranslator("claude-sonnet-4-5")
    events = translator.process_chunk(_part_chunk({"text": ""}, {"text": "  "}))

    deltas = [e for e in events if e["type"] == "content_block_delta"]
    assert [d["delta"]["text"] for d in deltas] == ["  "]


def test_image_block_opens_and_closes() -> None:
    translator = StreamingTranslator("gemini-3-pro-image")
    events = translator.process_chunk(
        _part_chunk({"text": "Here"}, {"inlineData": {"mimeType": "image/png", "data": "AAAA"}})
    )

    assert _types(events) == [
        "message_start",
        "start:text",
        "text_delta",
        "content_block_stop",
        "start:image",
        "content_block_stop",
    ]
    assert events[4]["index"] == 1
    assert events[4]["content_block"]["source"]["media_type"] == "image/png"


def test_finish_without_content_raises() -> None:
    translator = StreamingTranslator("claude-sonnet-4-5")
    assert translator.process_chunk({"response": {"usageMetadata": {"promptTokenCount": 3}}}) == []

    with pytest.raises(EmptyResponseError):
        translator.finish()


def test_message_start_reports_uncached_input_tokens() -> None:
    translator = StreamingTranslator("claude-sonnet-4-5")
    events = translator.process_chunk(
        _part_chunk({"text": "x"}, usage={"promptTokenCount": 50, "cachedContentTokenCount": 20})
    )

    usage = events[0]["message"]["usage"]
    assert usage["input_tokens"] == 30
    assert usage["cache_read_input_tokens"] == 20


@pytest.mark.asyncio
async def test_translate_stream_skips_malformed_lines() -> None:
    body = "data: {not json}\n\n" + sse_body(text_chunk("ok", finish_reason="STOP")) + "data: [DONE]\n\n"

    events = await _collect(translate_stream(_chunks(body), "claude-sonnet-4-5"))

    assert events[0]["type"] == "message_start"
    assert events[-1]["type"] == "message_stop"
    texts = [e["delta"]["text"] for e in events if e["type"] == "content_block_delta"]
    assert texts == ["ok"]


@pytest.mark.asyncio
async def test_translate_stream_skips_chunks_with_wrong_shape() -> None:
    body = (
        sse_body(
            {"response": {"candidates": ["oops"]}},
            {"response": {"candidates": [{"content": "x"}]}},
            {"response": {"usageMetadata": "x"}},
            text_chunk("ok"),
            _part_chunk({"functionCall": "x"}, {"inlineData": ["x"]}),
            text_chunk("!", finish_reason="STOP"),
        )
    )

    events = await _collect(translate_stream(_chunks(body), "claude-sonnet-4-5"))

    assert _types(events) == [
        "message_start",
        "start:text",
        "text_delta",
        "text_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
    ]
    assert events[-2]["delta"]["stop_reason"] == "end_turn"


def test_wrong_shape_chunk_leaves_translator_untouched() -> None:
    translator = StreamingTranslator("claude-sonnet-4-5")

    with pytest.raises(MalformedChunkError):
        translator.process_chunk({"candidates": "x", "usageMetadata": {"promptTokenCount": 9}})

    assert not translator.started
    assert translator.input_tokens == 0


@pytest.mark.asyncio
async def test_translate_stream_handles_lines_split_across_chunks() -> None:
    body = sse_body(text_chunk("héllo"))
    raw = body.encode("utf-8")
    split = raw.index("é".encode("utf-8")) + 1

    events = await _collect(translate_stream(_chunks(raw[:split], raw[split:]), "claude-sonnet-4-5"))

    texts = [e["delta"]["text"] for e in events if e["type"] == "content_block_delta"]
    assert texts == ["héllo"]


@pytest.mark.asyncio
async def test_translate_stream_empty_body_emits_nothing() -> None:
    events = []
    with pytest.raises(EmptyResponseError):
        async for event in translate_stream(_chunks("data: [DONE]\n\n"), "claude-sonnet-4-5"):
            events.append(event)
    assert events == []


def test_format_sse_event() -> None:
    assert format_sse_event({"type": "message_stop"}) == 'event: message_stop\ndata: {"type": "message_stop"}\n\n'
