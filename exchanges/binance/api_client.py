"""
Binance REST API Client

This module provides an async HTTP client for the Binance REST APIs:
- Spot:    https://api.binance.com (.com) / https://api.binance.us (.us)
- USD-M:   https://fapi.binance.com
- COIN-M:  https://dapi.binance.com

The client handles:
- HTTP requests through the shared RestClient transport
- Syncing the local weight counter with X-MBX-USED-WEIGHT-1M
- Turning Binance error bodies ({"code": -1121, "msg": "Invalid symbol."})
  into ExchangeAPIError

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/rest-api
    https://developers.binance.com/docs/derivatives/usds-margined-futures/general-info

Usage:
    async with BinanceAPIClient.for_market(Futures.usdm) as client:
        prices = await client.request("GET", "/fapi/v1/premiumIndex")
"""

from typing import Any, Optional

from core.config import settings
from core.rate_limit import RateLimiter
from core.schemas import ExchangeDomain, Futures
from core.transport import RestClient

SPOT_COM_URL = "https://api.binance.com"
SPOT_US_URL = "https://api.binance.us"
USDM_URL = "https://fapi.binance.com"
COINM_URL = "https://dapi.binance.com"

USED_WEIGHT_HEADER = "X-MBX-USED-WEIGHT-1M"


def get_binance_base(domain: ExchangeDomain = ExchangeDomain.com) -> str:
    """
    Spot API base URL for a Binance domain.

    Example:
        >>> get_binance_base(ExchangeDomain.us)
        'https://api.binance.us'
    """
    if domain == ExchangeDomain.us:
        return SPOT_US_URL
    return settings.binance_domain or SPOT_COM_URL


class BinanceAPIClient(RestClient):
    """
    Async HTTP client for one Binance market.

    Attributes:
        limiter: Limiter whose "weight" counter follows the server-reported weight

    Example:
        >>> client = BinanceAPIClient.for_market(Futures.null, ExchangeDomain.com)
        >>> client.base_url
        'https://api.binance.com'
    """

    exchange = "binance"
    BASE_URL = SPOT_COM_URL

    def __init__(self, *args, limiter: Optional[RateLimiter] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.limiter = limiter

    @classmethod
    def for_market(
        cls,
        futures: Futures = Futures.null,
        domain: ExchangeDomain = ExchangeDomain.com,
        **kwargs: Any
    ) -> "BinanceAPIClient":
        if futures == Futures.usdm:
            base_url = USDM_URL
        elif futures == Futures.coinm:
            base_url = COINM_URL
        else:
            base_url = get_binance_base(domain)
        return cls(base_url=base_url, **kwargs)

    async def on_response(self, headers: Any) -> None:
        if self.limiter is None:
            return
        used = headers.get(USED_WEIGHT_HEADER) or headers.get(USED_WEIGHT_HEADER.lower())
        if used is None:
            return
        try:
            await self.limiter.sync_weight("weight", float(used))
        except ValueError:
            self.logger.debug(f"Unparsable {USED_WEIGHT_HEADER} header: {used!r}")
