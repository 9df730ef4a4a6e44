"""
Reference-Data Cache

TTL-bound mapping between human-readable pairs ("BTC-USD", "PURR-USDC") and
exchange-internal identifiers (Hyperliquid asset indices, ...).

Behaviour:
    - resolve()/resolve_reverse() refresh first when the map is empty or older
      than ``update_interval``
    - the refresh runs under one KeyedMutex key for the whole cache, so
      concurrent resolvers trigger a single loader call and then read the
      freshly built maps
    - the loader returns a complete {pair: id} mapping; both directions are
      swapped in together, readers never see a half-built map
    - a loader error is logged and swallowed; the previous (possibly stale)
      maps stay in place

Usage:
    cache = ReferenceDataCache("hyperliquid-assets", loader=load_assets)
    asset_id = await cache.resolve("BTC-USD")
"""

from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from core.config import settings
from core.logging import get_logger
from core.mutex import KeyedMutex
from core.utils.time import now_ms

logger = get_logger(__name__)

Loader = Callable[[], Awaitable[Dict[str, Hashable]]]


class ReferenceDataCache:
    """
    Lazily refreshed pair <-> id cache.

    Args:
        name: Cache name, used as mutex key and in log lines
        loader: Coroutine returning the full {pair: id} mapping
        update_interval: Refresh interval in milliseconds
        clock: Returns epoch milliseconds
        mutex: Shared KeyedMutex (private one when omitted)
    """

    def __init__(
        self,
        name: str,
        loader: Loader,
        update_interval: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
        mutex: Optional[KeyedMutex] = None
    ):
        self.name = name
        self.loader = loader
        self.update_interval = settings.reference_data_ttl_ms if update_interval is None else update_interval
        self.clock = clock
        self.mutex = mutex or KeyedMutex()
        self.last_update = 0
        self.refresh_count = 0
        self._by_pair: Dict[str, Hashable] = {}
        self._by_id: Dict[Hashable, str] = {}

    def is_stale(self) -> bool:
        return not self._by_pair or self.clock() - self.last_update > self.update_interval

    async def refresh(self, force: bool = False) -> None:
        """
        Rebuild both maps from the loader.

        Waiters that queued behind another refresh skip their own loader call
        when the maps became fresh meanwhile (unless ``force``).
        """
        async with self.mutex.lock(self.name):
            if not force and not self.is_stale():
                return
            self.refresh_count += 1
            try:
                mapping = await self.loader()
            except Exception as e:
                logger.error(f"{self.name} refresh failed, keeping {len(self._by_pair)} cached entries: {e}")
                return
            by_pair = dict(mapping)
            by_id = {value: key for key, value in by_pair.items()}
            self._by_pair, self._by_id = by_pair, by_id
            self.last_update = self.clock()
            logger.info(f"{self.name} refreshed: {len(by_pair)} entries")

    async def resolve(self, pair: str) -> Optional[Any]:
        """Exchange id of ``pair`` (None when unknown)."""
        if self.is_stale():
            await self.refresh()
        return self._by_pair.get(pair)

    async def resolve_reverse(self, identifier: Hashable) -> Optional[str]:
        """Pair name of ``identifier`` (None when unknown)."""
        if self.is_stale():
            await self.refresh()
        return self._by_id.get(identifier)

    async def pairs(self) -> Dict[str, Hashable]:
        """Snapshot of the full pair -> id mapping."""
        if self.is_stale():
            await self.refresh()
        return dict(self._by_pair)

    def clear(self) -> None:
        self._by_pair, self._by_id = {}, {}
        self.last_update = 0
