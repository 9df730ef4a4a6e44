"""
Kucoin REST API Client

This module provides an async HTTP client for the Kucoin REST APIs:
- Spot:    https://api.kucoin.com
- Futures: https://api-futures.kucoin.com

Every Kucoin answer is wrapped as {"code": "200000", "data": ...}; any other
code is an error and is raised as ExchangeAPIError with that code.

API Documentation:
    https://www.kucoin.com/docs/rest/spot-trading/orders/place-order
    https://www.kucoin.com/docs/rest/futures-trading/orders/place-order
"""

from typing import Any

from core.exceptions import ExchangeAPIError
from core.schemas import Futures
from core.transport import RestClient

SPOT_URL = "https://api.kucoin.com"
FUTURES_URL = "https://api-futures.kucoin.com"

SUCCESS_CODE = "200000"


class KucoinAPIClient(RestClient):
    """
    Async HTTP client for Kucoin spot or futures.

    Example:
        >>> KucoinAPIClient.for_market(Futures.usdm).base_url
        'https://api-futures.kucoin.com'
    """

    exchange = "kucoin"
    BASE_URL = SPOT_URL
    JSON_BODY = True

    @classmethod
    def for_market(cls, futures: Futures = Futures.null, **kwargs: Any) -> "KucoinAPIClient":
        kwargs.setdefault("base_url", SPOT_URL if futures == Futures.null else FUTURES_URL)
        return cls(**kwargs)

    def unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or "code" not in payload:
            return payload
        if str(payload["code"]) != SUCCESS_CODE:
            raise ExchangeAPIError(payload.get("msg") or "Unknown error", code=str(payload["code"]), body=payload)
        return payload.get("data")
