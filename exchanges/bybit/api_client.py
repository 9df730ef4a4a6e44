"""
Bybit REST API Client

This module provides an async HTTP client for the Bybit v5 REST API.
It handles:
- Regional hosts (bybit.com, bybit.eu, bybit-tr.com, bybit.kz, bybitgeorgia.ge)
- Unwrapping the v5 envelope {"retCode": 0, "retMsg": "OK", "result": {...}}
- Turning non-zero retCode answers into ExchangeAPIError

API Documentation:
    https://bybit-exchange.github.io/docs/v5/intro

Usage:
    async with BybitAPIClient(host=BybitHost.eu) as client:
        tickers = await client.request("GET", "/v5/market/tickers", {"category": "spot"})
"""

from typing import Any, Optional

from core.exceptions import ExchangeAPIError
from core.schemas import BYBIT_HOST_MAP, BybitHost
from core.transport import RestClient


class BybitAPIClient(RestClient):
    """
    Async HTTP client for Bybit REST API

    Attributes:
        host: Regional host the client talks to

    Example:
        >>> BybitAPIClient(host=BybitHost.tr).base_url
        'https://api.bybit-tr.com'

    Notes:
        - POST parameters are sent as a JSON body
        - ``request`` returns the ``result`` member of the envelope
    """

    exchange = "bybit"
    BASE_URL = BYBIT_HOST_MAP[BybitHost.com]
    JSON_BODY = True

    def __init__(self, host: Optional[BybitHost] = None, **kwargs: Any):
        self.host = BybitHost(host) if host else BybitHost.com
        kwargs.setdefault("base_url", BYBIT_HOST_MAP[self.host])
        super().__init__(**kwargs)

    def unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or "retCode" not in payload:
            return payload
        if payload["retCode"] != 0:
            raise ExchangeAPIError(payload.get("retMsg") or "Unknown error", code=payload["retCode"], body=payload)
        return payload.get("result")
