from antigravity_router.providers.antigravity_utils import SignatureCache, is_valid_signature

SIGNATURE = "s" * 64
OTHER = "t" * 64


def test_expired_entries_are_swept_on_later_writes(clock) -> None:
    cache = SignatureCache(ttl_ms=1_000)
    cache.cache_tool_signature("toolu_1", SIGNATURE)
    cache.cache_thinking_signature(OTHER, "claude")
    assert cache.size() == 2

    clock.advance(1_500)
    cache.cache_tool_signature("toolu_2", SIGNATURE)

    # Neither old entry was looked up again, yet both are gone
    assert cache.size() == 1
    assert cache.get_tool_signature("toolu_2") == SIGNATURE


def test_sweep_runs_at_most_once_per_ttl(clock) -> None:
    cache = SignatureCache(ttl_ms=1_000)
    cache.cache_tool_signature("toolu_1", SIGNATURE)
    clock.advance(900)
    cache.cache_tool_signature("toolu_2", SIGNATURE)
    assert cache.size() == 2

    clock.advance(200)
    cache.cache_tool_signature("toolu_3", SIGNATURE)
    assert cache.size() == 2

    # toolu_2 has expired, but the last sweep was under a TTL ago
    clock.advance(850)
    cache.cache_tool_signature("toolu_4", SIGNATURE)
    assert cache.size() == 3
    assert cache.get_tool_signature("toolu_2") is None
    assert cache.size() == 2


def test_purge_expired(clock) -> None:
    cache = SignatureCache(ttl_ms=1_000)
    cache.cache_tool_signature("toolu_1", SIGNATURE)
    cache.cache_thinking_signature(OTHER, "gemini")

    clock.advance(1_000)

    assert cache.purge_expired() == 2
    assert cache.size() == 0


def test_only_long_string_signatures_are_valid() -> None:
    assert is_valid_signature(SIGNATURE)
    assert not is_valid_signature("short")
    assert not is_valid_signature(None)
    assert not is_valid_signature(["x"] * 64)
