"""
Coinbase Advanced Trade REST API Client

Async HTTP client for https://api.coinbase.com/api/v3/brokerage. Answers
are plain JSON objects (no status envelope); failures come back as HTTP
errors shaped as

    {"error": "NOT_FOUND", "message": "...", "error_details": "..."}

Order placement reports business failures inside a 200 answer:

    {"success": false, "error_response": {"error": "...", "message": "..."}}

which unwrap() raises as ExchangeAPIError.

API Documentation:
    https://docs.cdp.coinbase.com/advanced-trade/reference
"""

from typing import Any

from core.exceptions import ExchangeAPIError
from core.transport import RestClient

BASE_URL = "https://api.coinbase.com"


class CoinbaseAPIClient(RestClient):
    """Async HTTP client for Coinbase Advanced Trade."""

    exchange = "coinbase"
    BASE_URL = BASE_URL
    JSON_BODY = True

    def unwrap(self, payload: Any) -> Any:
        if isinstance(payload, dict) and payload.get("success") is False and payload.get("error_response"):
            error = payload["error_response"]
            message = ": ".join(part for part in (error.get("error"), error.get("message")) if part)
            if error.get("error_details"):
                message = f"{message}, {error['error_details']}"
            raise ExchangeAPIError(message or "Unknown error", code=error.get("error"), body=payload)
        return payload

    def error_from_response(self, status: int, payload: Any, text: str, reason: str = "") -> ExchangeAPIError:
        if isinstance(payload, dict) and (payload.get("error_details") or payload.get("message")):
            message = payload.get("error_details") or payload.get("message")
            return ExchangeAPIError(str(message).replace("\n", "").replace("\r", ""), code=status, body=payload, status=status)
        return super().error_from_response(status, payload, text, reason)
