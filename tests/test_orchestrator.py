import json

import pytest

from antigravity_router.accounts import AccountManager, CooldownReason, RetryConfig
from antigravity_router.client import RequestOrchestrator
from antigravity_router.core.constants import ANTIGRAVITY_ENDPOINT_DAILY, ANTIGRAVITY_ENDPOINT_PROD
from antigravity_router.core.errors import (
    AccountInvalidError,
    EmptyResponseError,
    ModelNotFoundError,
    NoCapacityError,
    RateLimitedError,
    UpstreamError,
)
from antigravity_router.providers.antigravity_catalog import AntigravityCatalog, ModelValidityCache
from antigravity_router.providers.antigravity_transport import TransportResponse

from conftest import FakeStreamResponse, json_response, sse_body, text_chunk

MODEL = "claude-sonnet-4-5"
REQUEST = {"model": MODEL, "max_tokens": 100, "messages": [{"role": "user", "content": "Hi"}]}


class TokenResolver:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, account) -> str:
        self.calls += 1
        return f"tok-{account.email}-{self.calls}"


@pytest.fixture
def tokens() -> TokenResolver:
    return TokenResolver()


@pytest.fixture
def build(transport, sleeper, tokens, make_account):
    def factory(emails=("a@example.com",), validity_cache=None, **retry):
        manager = AccountManager([make_account(e) for e in emails], token_resolver=tokens)
        orchestrator = RequestOrchestrator(
            manager,
            transport,
            retry=RetryConfig(**retry),
            validity_cache=validity_cache,
            sleep=sleeper,
        )
        return orchestrator, manager

    return factory


def ok(text: str = "Hello") -> TransportResponse:
    return json_response(text_chunk(text, finish_reason="STOP"))


def rate_limited(retry_after: str = "30") -> TransportResponse:
    return json_response({"error": {"message": "Too many requests"}}, 429, {"retry-after": retry_after})


def error(status: int, message: str = "boom") -> TransportResponse:
    return json_response({"error": {"message": message}}, status)


async def collect(stream):
    return [event async for event in stream]


# =============================================================================
# BATCH
# =============================================================================


@pytest.mark.asyncio
async def test_successful_call(clock, build, transport) -> None:
    orchestrator, manager = build()
    transport.queue(ok("Hi there"))

    message = await orchestrator.send_message(REQUEST)

    assert message["content"] == [{"type": "text", "text": "Hi there"}]
    assert message["model"] == MODEL
    call = transport.calls[0]
    assert call["url"] == f"{ANTIGRAVITY_ENDPOINT_PROD}/v1internal:generateContent"
    assert call["headers"]["Authorization"] == "Bearer tok-a@example.com-1"
    assert call["body"]["project"] == "project-a"
    assert manager.strategy.health.get_score("a@example.com") == 71


@pytest.mark.asyncio
async def test_rate_limit_rotates_to_next_account(clock, build, transport, sleeper) -> None:
    orchestrator, manager = build(("a@example.com", "b@example.com"))
    transport.queue(rate_limited("30"), ok())

    message = await orchestrator.send_message(REQUEST)

    assert message["content"][0]["text"] == "Hello"
    assert manager.rate_limits.is_rate_limited("a@example.com", MODEL)
    assert manager.get_rate_limit_info("a@example.com", MODEL).actual_reset_ms == 30_000
    assert transport.calls[1]["headers"]["Authorization"] == "Bearer tok-b@example.com-2"
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_single_account_retries_after_hint(clock, build, transport, sleeper) -> None:
    orchestrator, manager = build()
    transport.queue(rate_limited("2"), ok())

    await orchestrator.send_message(REQUEST)

    assert sleeper.delays == [2.0]
    assert not manager.rate_limits.is_rate_limited("a@example.com", MODEL)


@pytest.mark.asyncio
async def test_long_rate_limit_surfaces_no_capacity(clock, build, transport, sleeper) -> None:
    orchestrator, manager = build()
    transport.queue(rate_limited("600"), rate_limited("600"))

    with pytest.raises(NoCapacityError) as excinfo:
        await orchestrator.send_message(REQUEST)

    assert excinfo.value.wait_ms == 600_000
    assert isinstance(excinfo.value.__cause__, RateLimitedError)
    assert sleeper.delays == []
    assert manager.is_all_rate_limited(MODEL)


@pytest.mark.asyncio
async def test_empty_response_is_retried(clock, build, transport) -> None:
    orchestrator, manager = build()
    transport.queue(json_response({"response": {"candidates": []}}), ok())

    message = await orchestrator.send_message(REQUEST)

    assert message["content"][0]["text"] == "Hello"
    assert len(transport.calls) == 2
    assert manager.strategy.health.get_score("a@example.com") == 51


@pytest.mark.asyncio
async def test_empty_response_retry_limit(clock, build, transport) -> None:
    orchestrator, _ = build(max_empty_response_retries=0)
    transport.queue(json_response({"response": {"candidates": []}}))

    with pytest.raises(EmptyResponseError):
        await orchestrator.send_message(REQUEST)


@pytest.mark.asyncio
async def test_server_error_falls_back_to_daily_endpoint(clock, build, transport) -> None:
    orchestrator, manager = build()
    transport.queue(error(503), ok())

    await orchestrator.send_message(REQUEST)

    assert transport.calls[1]["url"].startswith(ANTIGRAVITY_ENDPOINT_DAILY)
    assert not manager.rate_limits.is_cooling_down("a@example.com")


@pytest.mark.asyncio
async def test_server_errors_on_every_endpoint_cool_account_down(clock, build, transport) -> None:
    orchestrator, manager = build(("a@example.com", "b@example.com"))
    transport.queue(error(503), UpstreamError("connection reset"), ok())

    await orchestrator.send_message(REQUEST)

    state = manager.rate_limits.state("a@example.com")
    assert manager.rate_limits.is_cooling_down("a@example.com")
    assert state.cooldown_reason == CooldownReason.SERVER_ERROR
    assert manager.get_consecutive_failures("a@example.com") == 1
    assert transport.calls[2]["headers"]["Authorization"].startswith("Bearer tok-b@example.com")


@pytest.mark.asyncio
async def test_client_error_is_not_retried(clock, build, transport) -> None:
    orchestrator, _ = build(("a@example.com", "b@example.com"))
    transport.queue(error(400, "bad request field"))

    with pytest.raises(UpstreamError) as excinfo:
        await orchestrator.send_message(REQUEST)

    assert excinfo.value.status_code == 400
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_auth_error_refreshes_token_once(clock, build, transport, tokens) -> None:
    orchestrator, manager = build()
    transport.queue(error(401, "expired"), ok())

    await orchestrator.send_message(REQUEST)

    assert tokens.calls == 2
    assert transport.calls[1]["headers"]["Authorization"] == "Bearer tok-a@example.com-2"
    assert manager.get_invalid_accounts() == []


@pytest.mark.asyncio
async def test_repeated_auth_error_marks_account_invalid(clock, build, transport) -> None:
    orchestrator, manager = build(("a@example.com", "b@example.com"))
    transport.queue(error(401), error(401), ok())

    await orchestrator.send_message(REQUEST)

    assert [a.email for a in manager.get_invalid_accounts()] == ["a@example.com"]


@pytest.mark.asyncio
async def test_invalid_grant_surfaces_for_single_account(clock, build, transport) -> None:
    orchestrator, manager = build()
    transport.queue(error(400, "invalid_grant"), error(400, "invalid_grant"))

    with pytest.raises(AccountInvalidError):
        await orchestrator.send_message(REQUEST)

    assert manager.rate_limits.is_invalid("a@example.com")


@pytest.mark.asyncio
async def test_no_usable_account_raises_immediately(clock, build, transport) -> None:
    orchestrator, manager = build()
    manager.mark_invalid("a@example.com", "revoked")

    with pytest.raises(NoCapacityError) as excinfo:
        await orchestrator.send_message(REQUEST)

    assert excinfo.value.wait_ms == 0
    assert transport.calls == []


@pytest.mark.asyncio
async def test_waits_for_capacity_within_limit(clock, build, transport, sleeper) -> None:
    orchestrator, manager = build()
    manager.mark_rate_limited("a@example.com", MODEL, 5_000)
    transport.queue(ok())

    await orchestrator.send_message(REQUEST)

    assert sleeper.delays == [5.0]


@pytest.mark.asyncio
async def test_capacity_wait_beyond_limit_raises(clock, build, transport, sleeper) -> None:
    orchestrator, manager = build(max_wait_ms=60_000)
    manager.mark_rate_limited("a@example.com", MODEL, 600_000)

    with pytest.raises(NoCapacityError) as excinfo:
        await orchestrator.send_message(REQUEST)

    assert excinfo.value.wait_ms == 600_000
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_unknown_model_rejected_before_call(clock, build, transport) -> None:
    cache = ModelValidityCache(AntigravityCatalog(transport))
    orchestrator, manager = build(validity_cache=cache)
    transport.queue(json_response({"models": {MODEL: {}}}))

    with pytest.raises(ModelNotFoundError):
        await orchestrator.send_message({**REQUEST, "model": "claude-nonexistent"})

    assert len(transport.calls) == 1
    # The token taken at selection is given back; health is untouched
    assert manager.strategy.token_bucket.get_tokens("a@example.com") == 50
    assert manager.strategy.health.get_score("a@example.com") == 70


@pytest.mark.asyncio
async def test_gemini_thinking_batch_uses_sse(clock, build, transport) -> None:
    orchestrator, _ = build()
    body = sse_body(
        {"response": {"candidates": [{"content": {"parts": [{"thought": True, "text": "hmm"}]}}]}},
        text_chunk("Answer", finish_reason="STOP"),
    )
    transport.queue(TransportResponse(200, {}, body))

    message = await orchestrator.send_message({**REQUEST, "model": "gemini-3-pro-high"})

    assert transport.calls[0]["url"].endswith("streamGenerateContent?alt=sse")
    assert [b["type"] for b in message["content"]] == ["thinking", "text"]


# =============================================================================
# STREAMING
# =============================================================================


@pytest.mark.asyncio
async def test_streaming_call(clock, build, transport) -> None:
    orchestrator, manager = build()
    transport.queue(FakeStreamResponse(200, [sse_body(text_chunk("Hel"), text_chunk("lo", finish_reason="STOP"))]))

    events = await collect(orchestrator.stream_message(REQUEST))

    assert events[0]["type"] == "message_start"
    assert events[-1]["type"] == "message_stop"
    text = "".join(e["delta"]["text"] for e in events if e["type"] == "content_block_delta")
    assert text == "Hello"
    call = transport.calls[0]
    assert call["url"].endswith("streamGenerateContent?alt=sse")
    assert call["headers"]["Accept"] == "text/event-stream"
    assert manager.strategy.health.get_score("a@example.com") == 71


@pytest.mark.asyncio
async def test_streaming_rate_limit_before_output_rotates(clock, build, transport) -> None:
    orchestrator, manager = build(("a@example.com", "b@example.com"))
    transport.queue(
        FakeStreamResponse(429, [json.dumps({"error": {"message": "slow"}})], {"retry-after": "10"}),
        FakeStreamResponse(200, [sse_body(text_chunk("ok", finish_reason="STOP"))]),
    )

    events = await collect(orchestrator.stream_message(REQUEST))

    assert events[-1]["type"] == "message_stop"
    assert manager.rate_limits.is_rate_limited("a@example.com", MODEL)


@pytest.mark.asyncio
async def test_streaming_failure_after_output_is_not_retried(clock, build, transport) -> None:
    orchestrator, manager = build(("a@example.com", "b@example.com"))
    transport.queue(
        FakeStreamResponse(200, [sse_body(text_chunk("partial")), UpstreamError("Stream interrupted")]),
    )

    events = []
    with pytest.raises(UpstreamError):
        async for event in orchestrator.stream_message(REQUEST):
            events.append(event)

    assert [e["type"] for e in events] == ["message_start", "content_block_start", "content_block_delta"]
    assert len(transport.calls) == 1
    assert manager.rate_limits.is_cooling_down("a@example.com")


@pytest.mark.asyncio
async def test_streaming_empty_response_is_retried(clock, build, transport) -> None:
    orchestrator, _ = build()
    transport.queue(
        FakeStreamResponse(200, ["data: [DONE]\n\n"]),
        FakeStreamResponse(200, [sse_body(text_chunk("ok", finish_reason="STOP"))]),
    )

    events = await collect(orchestrator.stream_message(REQUEST))

    assert events[0]["type"] == "message_start"
    assert len(transport.calls) == 2
