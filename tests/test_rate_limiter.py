"""Tests for the fixed-window quota limiter."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from api.rate_limiter import (
    QuotaLimiter, Tier, anonymous_key, default_limit_resolver, per_minute_limit,
)


class TestFixedWindow:
    def test_allows_up_to_limit(self, limiter):
        for i in range(5):
            decision = limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 5)
            assert decision.allowed
            assert decision.remaining == 4 - i

    def test_blocks_excess(self, limiter):
        for _ in range(5):
            limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 5)
        decision = limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 5)
        assert not decision.allowed
        assert decision.limit == 5
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == 5

    def test_denial_reports_time_to_reset(self, limiter, clock):
        limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 1)
        clock.advance(600)
        decision = limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 1)
        assert decision.retry_after == 3000
        assert decision.reset_time.endswith("Z")

    def test_burst_allowed_anywhere_in_window(self, limiter, clock):
        limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 3)
        clock.advance(59)
        assert limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 3).allowed
        assert limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 3).allowed
        assert not limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 3).allowed

    def test_resets_exactly_at_window_end(self, limiter, clock):
        limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 1)
        clock.advance(59)
        assert not limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 1).allowed
        clock.advance(1)
        decision = limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 1)
        assert decision.allowed
        assert decision.window_start == clock.now

    def test_global_window_is_fifteen_minutes(self, limiter, clock):
        limiter.check_and_increment(Tier.GLOBAL, "1.2.3.4", 1)
        clock.advance(14 * 60)
        assert not limiter.check_and_increment(Tier.GLOBAL, "1.2.3.4", 1).allowed
        clock.advance(60)
        assert limiter.check_and_increment(Tier.GLOBAL, "1.2.3.4", 1).allowed


class TestIsolation:
    def test_different_keys_independent(self, limiter):
        for _ in range(3):
            limiter.check_and_increment(Tier.CLIENT_HOURLY, "key_a", 3)
        assert not limiter.check_and_increment(Tier.CLIENT_HOURLY, "key_a", 3).allowed
        assert limiter.check_and_increment(Tier.CLIENT_HOURLY, "key_b", 3).allowed

    def test_different_tiers_independent(self, limiter):
        limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 1)
        assert limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 1).allowed

    def test_single_stripe(self, clock):
        limiter = QuotaLimiter(stripes=1, clock=clock)
        assert limiter.check_and_increment(Tier.CLIENT_HOURLY, "a", 1).allowed
        assert limiter.check_and_increment(Tier.CLIENT_HOURLY, "b", 1).allowed
        assert not limiter.check_and_increment(Tier.CLIENT_HOURLY, "a", 1).allowed


class TestChain:
    def test_denial_skips_later_tiers(self, limiter):
        limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 1)
        decision = limiter.check_chain([
            (Tier.CLIENT_HOURLY, "client_a", 1),
            (Tier.CLIENT_PER_MINUTE, "client_a", 5),
        ])
        assert decision.tier == Tier.CLIENT_HOURLY
        assert limiter.count(Tier.CLIENT_PER_MINUTE, "client_a") == 0

    def test_later_denial_releases_earlier_increment(self, limiter):
        limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 1)
        decision = limiter.check_chain([
            (Tier.CLIENT_HOURLY, "client_a", 10),
            (Tier.CLIENT_PER_MINUTE, "client_a", 1),
        ])
        assert not decision.allowed
        assert decision.tier == Tier.CLIENT_PER_MINUTE
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == 0

    def test_all_allowed_returns_last(self, limiter):
        decision = limiter.check_chain([
            (Tier.CLIENT_HOURLY, "client_a", 10),
            (Tier.CLIENT_PER_MINUTE, "client_a", 2),
        ])
        assert decision.allowed
        assert decision.tier == Tier.CLIENT_PER_MINUTE
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == 1

    def test_release_ignores_stale_window(self, limiter, clock):
        old = limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 5)
        clock.advance(60)
        limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 5)
        limiter.release(old)
        assert limiter.count(Tier.CLIENT_PER_MINUTE, "client_a") == 1


class TestResolver:
    def test_resolver_used_without_explicit_limit(self, clock):
        limiter = QuotaLimiter(resolver=lambda tier, key: 2, clock=clock)
        assert limiter.check_and_increment(Tier.GLOBAL, "ip").allowed
        assert limiter.check_and_increment(Tier.GLOBAL, "ip").allowed
        assert not limiter.check_and_increment(Tier.GLOBAL, "ip").allowed

    def test_default_limits(self):
        assert default_limit_resolver(Tier.GLOBAL, "1.2.3.4") == 100
        assert default_limit_resolver(Tier.CLIENT_HOURLY, anonymous_key("1.2.3.4")) == 10
        assert default_limit_resolver(Tier.ADMIN, "1.2.3.4") == 30

    @pytest.mark.parametrize("plan,expected", [
        ("sandbox", 2), ("basic", 5), ("premium", 20), ("enterprise", 50), (None, 1),
    ])
    def test_per_minute_plan_table(self, plan, expected):
        assert per_minute_limit(plan) == expected

    def test_remaining(self, limiter):
        limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 10)
        assert limiter.remaining(Tier.CLIENT_HOURLY, "client_a", 10) == 9
        assert limiter.remaining(Tier.CLIENT_HOURLY, "unused", 10) == 10


class TestEviction:
    def test_evict_expired(self, limiter, clock):
        limiter.check_and_increment(Tier.CLIENT_PER_MINUTE, "client_a", 5)
        limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", 5)
        clock.advance(61)
        assert limiter.evict_expired() == 1
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == 1


class TestConcurrency:
    @pytest.mark.parametrize("stripes", [1, 64])
    def test_parallel_requests_never_overcount(self, clock, stripes):
        limiter = QuotaLimiter(stripes=stripes, clock=clock)
        quota, attempts = 30, 100
        barrier = threading.Barrier(attempts)

        def attempt(_):
            barrier.wait()
            return limiter.check_and_increment(Tier.CLIENT_HOURLY, "client_a", quota).allowed

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            results = list(pool.map(attempt, range(attempts)))

        assert results.count(True) == quota
        assert results.count(False) == attempts - quota
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == quota

    def test_parallel_chains_account_exactly(self, clock):
        limiter = QuotaLimiter(clock=clock)
        attempts = 120

        def attempt(_):
            return limiter.check_chain([
                (Tier.CLIENT_HOURLY, "client_a", 1000),
                (Tier.CLIENT_PER_MINUTE, "client_a", 20),
            ]).allowed

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(attempt, range(attempts)))

        assert results.count(True) == 20
        assert limiter.count(Tier.CLIENT_HOURLY, "client_a") == 20
        assert limiter.count(Tier.CLIENT_PER_MINUTE, "client_a") == 20
