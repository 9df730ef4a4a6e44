"""
OKX REST API Client

Async HTTP client for the OKX v5 REST API. Answers are wrapped as

    {"code": "0", "msg": "", "data": [...]}

Any non-zero code is raised as ExchangeAPIError. Batch-style endpoints
(place / cancel order) report per-item failures in ``data[0].sCode`` /
``data[0].sMsg``; those take precedence over the outer code and message.

Regional sources:
    com -> https://www.okx.com
    my  -> https://eea.okx.com

API Documentation:
    https://www.okx.com/docs-v5/en/
"""

from typing import Any, Optional

from core.exceptions import ExchangeAPIError
from core.schemas import OKXSource
from core.transport import RestClient

OKX_URLS = {
    OKXSource.com: "https://www.okx.com",
    OKXSource.my: "https://eea.okx.com",
}


def _item_error(payload: Any) -> Optional[ExchangeAPIError]:
    data = payload.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        s_code = data[0].get("sCode")
        if s_code not in (None, "", "0"):
            return ExchangeAPIError(data[0].get("sMsg") or payload.get("msg") or "Unknown error", code=str(s_code), body=payload)
    return None


class OKXAPIClient(RestClient):
    """
    Async HTTP client for OKX.

    Example:
        >>> OKXAPIClient(source=OKXSource.my).base_url
        'https://eea.okx.com'
    """

    exchange = "okx"
    BASE_URL = OKX_URLS[OKXSource.com]
    JSON_BODY = True

    def __init__(self, source: Optional[OKXSource] = None, **kwargs: Any):
        self.source = OKXSource(source) if source else OKXSource.com
        kwargs.setdefault("base_url", OKX_URLS[self.source])
        super().__init__(**kwargs)

    def unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or "code" not in payload:
            return payload
        item_error = _item_error(payload)
        if item_error is not None:
            raise item_error
        if str(payload["code"]) != "0":
            raise ExchangeAPIError(payload.get("msg") or "Unknown error", code=str(payload["code"]), body=payload)
        return payload.get("data", [])

    def error_from_response(self, status: int, payload: Any, text: str, reason: str = "") -> ExchangeAPIError:
        if isinstance(payload, dict):
            item_error = _item_error(payload)
            if item_error is not None:
                item_error.status = status
                return item_error
        return super().error_from_response(status, payload, text, reason)
