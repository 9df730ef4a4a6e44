"""
Unit Tests for RateLimiter

The limiter takes an injectable clock, so every window transition here is
driven explicitly.

Run with:
    pytest tests/unit/test_rate_limit.py -v
"""

import asyncio

import pytest

from core.rate_limit import LimitWindow, RateLimiter


class FakeClock:
    def __init__(self, now: int = 120_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter("test", {"weight": LimitWindow(1200, 60_000)}, clock=clock)


# ============================================
# Window Accounting
# ============================================

class TestReserve:

    @pytest.mark.asyncio
    async def test_overflow_waits_then_resets_after_window(self, limiter, clock):
        """1200 then 1 in the same window must wait; 1200 after the window must not"""
        assert await limiter.reserve("weight", 1200) == 0

        clock.now += 10_000
        wait = await limiter.reserve("weight", 1)
        assert wait > 0
        assert wait == 50_000

        clock.now = 180_001
        assert await limiter.reserve("weight", 1200) == 0
        assert limiter.weight("weight") == 1200

    @pytest.mark.asyncio
    async def test_window_boundary_opens_a_new_window(self, clock):
        """a full window followed by a request exactly one window later is not over quota"""
        clock.now = 60_000
        limiter = RateLimiter("boundary", {"weight": LimitWindow(1200, 60_000)}, clock=clock)
        assert await limiter.reserve("weight", 1200) == 0

        clock.now = 120_000
        assert await limiter.reserve("weight", 1) == 0
        assert limiter.weight("weight") == 1
        assert limiter._states["weight"].window_start == 120_000

    @pytest.mark.asyncio
    async def test_overflow_always_waits(self, clock):
        limiter = RateLimiter("edge", {"weight": LimitWindow(10, 1_000, align=False)}, clock=clock)
        await limiter.reserve("weight", 5)
        await limiter.reserve("weight", 5)

        clock.now += 999
        assert await limiter.reserve("weight", 1) == 1
        assert limiter.weight("weight") > 10

    @pytest.mark.asyncio
    async def test_skew_grows_per_overflow_and_resets(self, clock):
        limiter = RateLimiter("skew", {"weight": LimitWindow(10, 1_000)}, clock=clock)
        await limiter.reserve("weight", 10)

        first = await limiter.reserve("weight", 1)
        second = await limiter.reserve("weight", 1)
        third = await limiter.reserve("weight", 1)

        assert [first, second, third] == [1_000, 1_001, 1_002]

        clock.now += 1_001
        assert await limiter.reserve("weight", 1) == 0
        clock.now += 1
        assert await limiter.reserve("weight", 1) == 0
        assert limiter._states["weight"].skew == 0

    @pytest.mark.asyncio
    async def test_aligned_window_starts_on_boundary(self, clock):
        clock.now = 125_500
        limiter = RateLimiter("aligned", {"weight": LimitWindow(1, 60_000)}, clock=clock)

        await limiter.reserve("weight", 1)

        assert limiter._states["weight"].window_start == 120_000
        assert await limiter.reserve("weight", 1) == 54_500

    @pytest.mark.asyncio
    async def test_unaligned_window_starts_at_first_request(self, clock):
        clock.now = 125_500
        limiter = RateLimiter("sliding", {"weight": LimitWindow(1, 3_000, align=False)}, clock=clock)

        await limiter.reserve("weight", 1)

        assert limiter._states["weight"].window_start == 125_500
        assert await limiter.reserve("weight", 1) == 3_000

    @pytest.mark.asyncio
    async def test_multiplier_applies_to_weight(self, clock):
        limiter = RateLimiter("mult", {"weight": LimitWindow(100, 60_000, multiplier=1.2)}, clock=clock)

        await limiter.reserve("weight", 10)

        assert limiter.weight("weight") == pytest.approx(12)

    @pytest.mark.asyncio
    async def test_unknown_limit_key_raises(self, limiter):
        with pytest.raises(KeyError):
            await limiter.reserve("orders", 1)

    def test_requires_windows(self):
        with pytest.raises(ValueError):
            RateLimiter("empty", {})


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_reservations_lose_no_updates(self, clock):
        limiter = RateLimiter("busy", {"weight": LimitWindow(10_000, 60_000)}, clock=clock)

        async def reserve():
            await asyncio.sleep(0)
            return await limiter.reserve("weight", 2)

        waits = await asyncio.gather(*(reserve() for _ in range(200)))

        assert all(wait == 0 for wait in waits)
        assert limiter.weight("weight") == 400

    @pytest.mark.asyncio
    async def test_concurrent_overflow_gets_distinct_waits(self, clock):
        limiter = RateLimiter("burst", {"weight": LimitWindow(5, 1_000)}, clock=clock)

        waits = await asyncio.gather(*(limiter.reserve("weight", 1) for _ in range(10)))

        overflowed = [wait for wait in waits if wait > 0]
        assert len(overflowed) == 5
        assert len(set(overflowed)) == 5


# ============================================
# Bans & Server Sync
# ============================================

class TestBanAndSync:

    @pytest.mark.asyncio
    async def test_ban_blocks_until_deadline(self, limiter, clock):
        await limiter.ban("weight", clock.now + 5_000)

        assert await limiter.reserve("weight", 1) == 5_000
        assert limiter.banned_for("weight") == 5_000

        clock.now += 5_001
        assert await limiter.reserve("weight", 1) == 0
        assert limiter.banned_for("weight") == 0

    @pytest.mark.asyncio
    async def test_sync_weight_overwrites_tracked_weight(self, limiter):
        await limiter.reserve("weight", 10)

        await limiter.sync_weight("weight", 1_100)

        assert limiter.weight("weight") == 1_100
        assert await limiter.reserve("weight", 200) > 0

    @pytest.mark.asyncio
    async def test_fill_exhausts_every_limit(self, clock):
        limiter = RateLimiter(
            "full",
            {"a": LimitWindow(10, 1_000), "b": LimitWindow(20, 1_000)},
            clock=clock
        )

        await limiter.fill()

        assert await limiter.reserve("a", 1) > 0
        assert await limiter.reserve("b", 1) > 0


# ============================================
# Usage Snapshot
# ============================================

class TestUsage:

    @pytest.mark.asyncio
    async def test_usage_is_weight_over_ceiling(self, limiter):
        await limiter.reserve("weight", 600)

        usage = limiter.get_usage()

        assert len(usage) == 1
        assert usage[0].type == "weight"
        assert usage[0].value == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_usage_is_zero_after_window(self, limiter, clock):
        await limiter.reserve("weight", 600)
        clock.now += 60_001

        assert limiter.get_usage()[0].value == 0

    @pytest.mark.asyncio
    async def test_aggregate_usage(self, clock):
        limiter = RateLimiter(
            "agg",
            {"spot": LimitWindow(100, 1_000), "futures": LimitWindow(300, 1_000)},
            clock=clock,
            aggregate_usage=True
        )
        await limiter.reserve("spot", 100)
        await limiter.reserve("futures", 100)

        usage = limiter.get_usage()

        assert [item.type for item in usage] == ["usage"]
        assert usage[0].value == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_usage_keys_restrict_report(self, clock):
        limiter = RateLimiter(
            "keys",
            {"requests": LimitWindow(100, 60_000), "getTicker": LimitWindow(20, 1_000, align=False)},
            clock=clock,
            usage_keys=["requests"]
        )
        await limiter.reserve("requests", 50)
        await limiter.reserve("getTicker", 20)

        usage = limiter.get_usage()

        assert [item.type for item in usage] == ["requests"]
        assert usage[0].value == pytest.approx(0.5)

    def test_fresh_limiter_reports_zero(self, limiter):
        assert [item.value for item in limiter.get_usage()] == [0]
