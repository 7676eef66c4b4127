from antigravity_router.accounts import CooldownReason, RateLimitStore

MODEL = "claude-sonnet-4-5"


def test_rate_limit_expires_lazily(clock, make_account) -> None:
    store = RateLimitStore(default_cooldown_ms=10_000)
    store.mark_rate_limited("a@example.com", MODEL, 2_000)

    assert store.is_rate_limited("a@example.com", MODEL)
    clock.advance(2_000)
    # Not swept yet, but readers must treat it as expired
    assert store.state("a@example.com").model_rate_limits[MODEL].is_rate_limited
    assert not store.is_rate_limited("a@example.com", MODEL)


def test_missing_reset_uses_default_cooldown(clock) -> None:
    store = RateLimitStore(default_cooldown_ms=10_000)
    store.mark_rate_limited("a@example.com", MODEL, None)
    store.mark_rate_limited("b@example.com", MODEL, -5)

    for email in ("a@example.com", "b@example.com"):
        entry = store.state(email).model_rate_limits[MODEL]
        assert entry.reset_time == clock.now + 10_000
        assert entry.actual_reset_ms == 10_000


def test_mark_rate_limited_increments_consecutive_failures(clock) -> None:
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 1_000)
    store.mark_rate_limited("a@example.com", MODEL, 1_000)

    assert store.get_consecutive_failures("a@example.com") == 2
    store.reset_consecutive_failures("a@example.com")
    assert store.get_consecutive_failures("a@example.com") == 0


def test_clear_expired_limits_is_idempotent(clock, make_account) -> None:
    accounts = [make_account("a@example.com"), make_account("b@example.com")]
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 1_000)
    store.mark_rate_limited("b@example.com", MODEL, 60_000)

    clock.advance(1_000)
    assert store.clear_expired_limits(accounts) == 1
    assert store.clear_expired_limits(accounts) == 0

    entry = store.state("a@example.com").model_rate_limits[MODEL]
    assert not entry.is_rate_limited
    assert entry.reset_time is None
    assert store.is_rate_limited("b@example.com", MODEL)


def test_is_all_rate_limited_edge_cases(clock, make_account) -> None:
    store = RateLimitStore()
    accounts = [make_account()]

    assert store.is_all_rate_limited([], MODEL)
    assert not store.is_all_rate_limited(accounts, None)
    assert not store.is_all_rate_limited(accounts, MODEL)


def test_invalid_and_disabled_accounts_count_as_limited(clock, make_account) -> None:
    store = RateLimitStore()
    accounts = [make_account("a@example.com"), make_account("b@example.com", enabled=False)]
    store.mark_invalid("a@example.com", "invalid_grant")

    assert store.is_all_rate_limited(accounts, MODEL)
    assert store.get_available_accounts(accounts, MODEL) == []
    assert store.get_invalid_accounts(accounts) == [accounts[0]]


def test_min_wait_is_shortest_reset(clock, make_account) -> None:
    accounts = [make_account("a@example.com"), make_account("b@example.com")]
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 1_000)
    store.mark_rate_limited("b@example.com", MODEL, 5_000)

    assert store.get_min_wait_time_ms(accounts, MODEL) == 1_000


def test_min_wait_is_zero_while_capacity_remains(clock, make_account) -> None:
    accounts = [make_account("a@example.com"), make_account("b@example.com")]
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 1_000)

    assert store.get_min_wait_time_ms(accounts, MODEL) == 0


def test_min_wait_falls_back_to_default_cooldown(clock, make_account) -> None:
    accounts = [make_account("a@example.com")]
    store = RateLimitStore(default_cooldown_ms=7_000)
    store.mark_invalid("a@example.com", "revoked")

    assert store.get_min_wait_time_ms(accounts, MODEL) == 7_000


def test_rate_limit_info_reports_remaining_wait(clock) -> None:
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 30_000)
    clock.advance(10_000)

    info = store.get_rate_limit_info("a@example.com", MODEL)
    assert info.is_rate_limited
    assert info.actual_reset_ms == 30_000
    assert info.wait_ms == 20_000

    unknown = store.get_rate_limit_info("a@example.com", "other-model")
    assert not unknown.is_rate_limited
    assert unknown.wait_ms == 0


def test_reset_all_rate_limits(clock, make_account) -> None:
    accounts = [make_account()]
    store = RateLimitStore()
    store.mark_rate_limited("a@example.com", MODEL, 60_000)

    store.reset_all_rate_limits(accounts)

    assert not store.is_rate_limited("a@example.com", MODEL)


def test_cooldown_is_independent_and_expires_on_read(clock) -> None:
    store = RateLimitStore()
    store.mark_cooling_down("a@example.com", 5_000, CooldownReason.SERVER_ERROR)

    assert store.is_cooling_down("a@example.com")
    assert store.get_cooldown_remaining("a@example.com") == 5_000
    assert not store.is_rate_limited("a@example.com", MODEL)

    clock.advance(5_000)
    assert not store.is_cooling_down("a@example.com")
    assert store.state("a@example.com").cooldown_reason is None


def test_clear_cooldown_and_invalid(clock) -> None:
    store = RateLimitStore()
    store.mark_cooling_down("a@example.com", 5_000)
    store.mark_invalid("a@example.com", "revoked")

    store.clear_cooldown("a@example.com")
    store.clear_invalid("a@example.com")

    assert not store.is_cooling_down("a@example.com")
    assert not store.is_invalid("a@example.com")
