"""
Hyperliquid Rate Limits

Hyperliquid meters REST traffic per IP in weight per minute (1200). Every
reserved weight is inflated by 1.2 so the connector stays clear of the
exchange-side limit.

The assets cache maps pair names to Hyperliquid asset ids:
    - perpetuals: "BTC-USD"   -> index in meta.universe
    - spot:       "PURR-USDC" -> 10000 + index in spotMeta.universe
Refreshing it costs weight 20 per metadata request.
"""

import asyncio
from typing import Dict, Hashable, Optional

from core.logging import get_logger
from core.mutex import KeyedMutex
from core.rate_limit import LimitWindow, RateLimiter
from core.reference_cache import ReferenceDataCache

from .api_client import HyperliquidAPIClient

logger = get_logger(__name__)

WINDOWS = {
    "weight": LimitWindow(ceiling=1200, window=60_000, multiplier=1.2),
}

SPOT_ASSET_OFFSET = 10000
META_WEIGHT = 20

_mutex = KeyedMutex()
_limiter: Optional[RateLimiter] = None
_assets_cache: Optional[ReferenceDataCache] = None


def get_limiter() -> RateLimiter:
    """Process-wide Hyperliquid limiter."""
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter("hyperliquid", WINDOWS, mutex=_mutex)
    return _limiter


async def wait_for_weight(limiter: RateLimiter, weight: float) -> None:
    """Reserve ``weight`` on the limiter, sleeping until it is granted."""
    wait = await limiter.reserve("weight", weight)
    while wait > 0:
        logger.warning(f"Hyperliquid request must sleep for {wait / 1000:.3f}s. Limit: weight")
        await asyncio.sleep(wait / 1000)
        wait = await limiter.reserve("weight", weight)


def build_asset_map(spot_meta: Dict, meta: Dict) -> Dict[str, Hashable]:
    """
    Build the pair -> asset id mapping from spotMeta and meta payloads.

    Example:
        >>> build_asset_map(
        ...     {"tokens": [{"index": 0, "name": "USDC"}, {"index": 1, "name": "PURR"}],
        ...      "universe": [{"tokens": [1, 0], "index": 0}]},
        ...     {"universe": [{"name": "BTC"}]},
        ... )
        {'PURR-USDC': 10000, 'BTC-USD': 0}
    """
    assets: Dict[str, Hashable] = {}
    tokens = {token["index"]: token["name"] for token in spot_meta.get("tokens", [])}
    for position, pair in enumerate(spot_meta.get("universe", [])):
        base_index, quote_index = pair["tokens"][0], pair["tokens"][1]
        if base_index in tokens and quote_index in tokens:
            assets[f"{tokens[base_index]}-{tokens[quote_index]}"] = SPOT_ASSET_OFFSET + pair.get("index", position)
    for index, asset in enumerate(meta.get("universe", [])):
        assets[f"{asset['name']}-USD"] = index
    return assets


def get_assets_cache(
    client: Optional[HyperliquidAPIClient] = None,
    limiter: Optional[RateLimiter] = None
) -> ReferenceDataCache:
    """
    Process-wide pair <-> asset id cache (refreshed every REFERENCE_DATA_TTL_MINUTES).

    The first call fixes the client and limiter used by the loader.
    """
    global _assets_cache
    if _assets_cache is None:
        loader_client = client or HyperliquidAPIClient()
        loader_limiter = limiter or get_limiter()

        async def load_assets() -> Dict[str, Hashable]:
            await wait_for_weight(loader_limiter, META_WEIGHT)
            spot_meta = await loader_client.info("spotMeta")
            await wait_for_weight(loader_limiter, META_WEIGHT)
            meta = await loader_client.info("meta")
            return build_asset_map(spot_meta, meta)

        _assets_cache = ReferenceDataCache("hyperliquid-assets", load_assets, mutex=_mutex)
    return _assets_cache
