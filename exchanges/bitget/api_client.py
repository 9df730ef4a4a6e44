"""
Bitget REST API Client

Async HTTP client for the Bitget v2 REST API (spot and mix/futures share
one host). Answers are wrapped as

    {"code": "00000", "msg": "success", "requestTime": ..., "data": ...}

Any other code is raised as ExchangeAPIError carrying that code.

API Documentation:
    https://www.bitget.com/api-doc/common/intro
"""

from typing import Any

from core.exceptions import ExchangeAPIError
from core.transport import RestClient

BASE_URL = "https://api.bitget.com"

SUCCESS_CODE = "00000"


class BitgetAPIClient(RestClient):
    """
    Async HTTP client for Bitget.

    Example:
        >>> client = BitgetAPIClient()
        >>> data = await client.request("GET", "/api/v2/spot/market/tickers", signed=False)
    """

    exchange = "bitget"
    BASE_URL = BASE_URL
    JSON_BODY = True

    def unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or "code" not in payload:
            return payload
        if str(payload["code"]) != SUCCESS_CODE:
            raise ExchangeAPIError(payload.get("msg") or "Unknown error", code=str(payload["code"]), body=payload)
        return payload.get("data")
