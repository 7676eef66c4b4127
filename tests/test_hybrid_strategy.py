import logging

import pytest

from antigravity_router.accounts import (
    BaseStrategy,
    FallbackLevel,
    HybridStrategy,
    QuotaSnapshot,
    StrategyConfig,
    TokenBucketConfig,
)

MODEL = "claude-sonnet-4-5"


@pytest.fixture
def pair(make_account):
    return [make_account("a@example.com"), make_account("b@example.com")]


def test_empty_pool_returns_no_account(clock) -> None:
    result = HybridStrategy().select_account([], MODEL)
    assert result.account is None
    assert result.reason == "no accounts"


def test_first_account_wins_ties(clock, pair) -> None:
    result = HybridStrategy().select_account(pair, MODEL)

    assert result.account is pair[0]
    assert result.index == 0
    assert result.fallback_level == FallbackLevel.NORMAL
    assert result.wait_ms == 0


def test_healthier_account_scores_higher(clock, pair) -> None:
    strategy = HybridStrategy()
    strategy.health.record_success("b@example.com")

    assert strategy.select_account(pair, MODEL).account is pair[1]


def test_selection_rotates_to_idle_account(clock, pair) -> None:
    strategy = HybridStrategy()
    clock.advance(3_600_000)

    first = strategy.select_account(pair, MODEL).account
    second = strategy.select_account(pair, MODEL).account

    assert first is pair[0]
    assert second is pair[1]


def test_critical_quota_is_skipped(clock, pair) -> None:
    strategy = HybridStrategy()
    strategy.quota.update("a@example.com", MODEL, QuotaSnapshot(remaining_fraction=0.02))
    strategy.quota.update("b@example.com", MODEL, QuotaSnapshot(remaining_fraction=0.9))
    for _ in range(10):
        strategy.health.record_success("a@example.com")
    for _ in range(40):
        strategy.token_bucket.consume("b@example.com")

    assert strategy.score(pair[0], MODEL) > strategy.score(pair[1], MODEL)

    result = strategy.select_account(pair, MODEL)

    assert result.account is pair[1]
    assert result.fallback_level == FallbackLevel.NORMAL


def test_all_critical_falls_back_to_quota_level(clock, pair) -> None:
    strategy = HybridStrategy()
    for account in pair:
        strategy.quota.update(account.email, MODEL, QuotaSnapshot(remaining_fraction=0.01))

    result = strategy.select_account(pair, MODEL)

    assert result.account is not None
    assert result.fallback_level == FallbackLevel.QUOTA
    assert result.wait_ms == 0


def test_per_account_threshold_overrides_global(clock, make_account) -> None:
    strategy = HybridStrategy(StrategyConfig(global_quota_threshold=0.1))
    strict = make_account("a@example.com", model_quota_thresholds={MODEL: 0.5})
    relaxed = make_account("b@example.com")
    for account in (strict, relaxed):
        strategy.quota.update(account.email, MODEL, QuotaSnapshot(remaining_fraction=0.3))

    assert strategy.effective_quota_threshold(strict, MODEL) == 0.5
    assert strategy.effective_quota_threshold(relaxed, MODEL) == 0.1
    assert strategy.select_account([strict, relaxed], MODEL).account is relaxed


def test_zero_global_threshold_disables_critical_filter(clock, pair) -> None:
    strategy = HybridStrategy(StrategyConfig(global_quota_threshold=0.0))
    for account in pair:
        strategy.quota.update(account.email, MODEL, QuotaSnapshot(remaining_fraction=0.01))

    assert strategy.effective_quota_threshold(pair[0], MODEL) == 0.0
    assert strategy.select_account(pair, MODEL).fallback_level == FallbackLevel.NORMAL


def test_unhealthy_pool_uses_emergency_throttle(clock, pair) -> None:
    strategy = HybridStrategy()
    for account in pair:
        strategy.health.record_failure(account.email)
        strategy.health.record_failure(account.email)

    result = strategy.select_account(pair, MODEL)

    assert result.account is not None
    assert result.fallback_level == FallbackLevel.EMERGENCY
    assert result.wait_ms == 250


def test_last_resort_does_not_consume_tokens(clock, make_account) -> None:
    config = StrategyConfig(token_bucket=TokenBucketConfig(max_tokens=1, initial_tokens=1))
    strategy = HybridStrategy(config)
    account = make_account()

    assert strategy.select_account([account], MODEL).fallback_level == FallbackLevel.NORMAL
    assert strategy.token_bucket.get_tokens(account.email) == 0

    result = strategy.select_account([account], MODEL)
    assert result.account is account
    assert result.fallback_level == FallbackLevel.LAST_RESORT
    assert result.wait_ms == 500
    assert strategy.token_bucket.get_tokens(account.email) == 0


def test_rate_limited_pool_has_no_candidates(clock, pair) -> None:
    strategy = HybridStrategy()
    for account in pair:
        strategy.rate_limits.mark_rate_limited(account.email, MODEL, 30_000)

    result = strategy.select_account(pair, MODEL)

    assert result.account is None
    assert result.reason == "2 unusable/disabled"
    assert result.wait_ms == 0
    # Other models are unaffected
    assert strategy.select_account(pair, "gemini-3-pro").account is not None


def test_diagnose_token_starvation_reports_refill_wait(clock, pair) -> None:
    config = StrategyConfig(token_bucket=TokenBucketConfig(max_tokens=1, initial_tokens=1, tokens_per_minute=6))
    strategy = HybridStrategy(config)
    for account in pair:
        strategy.token_bucket.consume(account.email)

    reason, wait_ms = strategy.diagnose_no_candidates(pair, MODEL)

    assert "token bucket" in reason
    assert wait_ms == pytest.approx(10_000)


def test_on_failure_refunds_token_and_penalizes(clock, make_account) -> None:
    strategy = HybridStrategy()
    account = make_account()
    strategy.select_account([account], MODEL)
    assert strategy.token_bucket.get_tokens(account.email) == 49

    strategy.on_failure(account, MODEL)

    assert strategy.token_bucket.get_tokens(account.email) == 50
    assert strategy.health.get_score(account.email) == 50


def test_on_rate_limit_only_touches_health(clock, make_account) -> None:
    strategy = HybridStrategy()
    account = make_account()
    strategy.on_rate_limit(account, MODEL)

    assert strategy.health.get_score(account.email) == 60
    assert strategy.token_bucket.get_tokens(account.email) == 50


def test_base_strategy_is_abstract() -> None:
    with pytest.raises(TypeError):
        BaseStrategy()


def test_low_quota_is_noted_when_selected(clock, make_account, caplog) -> None:
    strategy = HybridStrategy()
    account = make_account()
    strategy.quota.update(account.email, MODEL, QuotaSnapshot(remaining_fraction=0.08))

    with caplog.at_level(logging.INFO, logger="antigravity_router"):
        result = strategy.select_account([account], MODEL)

    assert result.fallback_level == FallbackLevel.NORMAL
    assert "quota low" in caplog.text
