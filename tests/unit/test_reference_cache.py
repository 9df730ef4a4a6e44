"""
Unit Tests for ReferenceDataCache

Run with:
    pytest tests/unit/test_reference_cache.py -v
"""

import asyncio

import pytest

from core.reference_cache import ReferenceDataCache


class CountingLoader:
    def __init__(self, mapping, fail=False):
        self.mapping = mapping
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("meta endpoint down")
        return dict(self.mapping)


class TestResolve:

    @pytest.mark.asyncio
    async def test_concurrent_resolves_trigger_one_refresh(self):
        loader = CountingLoader({"BTC-USDC": 0, "ETH-USDC": 1})
        cache = ReferenceDataCache("assets", loader, update_interval=60_000)

        results = await asyncio.gather(*(cache.resolve("ETH-USDC") for _ in range(20)))

        assert results == [1] * 20
        assert loader.calls == 1
        assert cache.refresh_count == 1

    @pytest.mark.asyncio
    async def test_reverse_lookup(self):
        cache = ReferenceDataCache("assets", CountingLoader({"BTC-USDC": 0}), update_interval=60_000)

        assert await cache.resolve_reverse(0) == "BTC-USDC"
        assert await cache.resolve("DOGE-USDC") is None

    @pytest.mark.asyncio
    async def test_refreshes_after_interval(self):
        now = {"t": 1_000}
        loader = CountingLoader({"BTC-USDC": 0})
        cache = ReferenceDataCache("assets", loader, update_interval=500, clock=lambda: now["t"])

        await cache.resolve("BTC-USDC")
        now["t"] += 400
        await cache.resolve("BTC-USDC")
        assert loader.calls == 1

        now["t"] += 200
        await cache.resolve("BTC-USDC")
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_maps(self):
        now = {"t": 1_000}
        loader = CountingLoader({"BTC-USDC": 0})
        cache = ReferenceDataCache("assets", loader, update_interval=500, clock=lambda: now["t"])
        await cache.resolve("BTC-USDC")

        loader.fail = True
        now["t"] += 1_000

        assert await cache.resolve("BTC-USDC") == 0
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_force_refresh_and_clear(self):
        loader = CountingLoader({"BTC-USDC": 0})
        cache = ReferenceDataCache("assets", loader, update_interval=60_000)
        await cache.pairs()

        await cache.refresh(force=True)
        assert loader.calls == 2

        cache.clear()
        assert cache.is_stale()
        assert await cache.pairs() == {"BTC-USDC": 0}
        assert loader.calls == 3
