"""
Hyperliquid REST API Client

This module provides an async HTTP client for the Hyperliquid REST API.
It handles:
- POST requests with JSON payloads (Hyperliquid API standard)
- Info queries (POST /info) and signed actions (POST /exchange)
- Unwrapping the {"status": "ok"|"err", "response": ...} action envelope

API Documentation:
    https://hyperliquid.gitbook.io/hyperliquid-docs/for-developers/api

Every request is a POST; the request kind travels in the body:

    POST /info      {"type": "allMids"}
    POST /exchange  {"action": {"type": "order", ...}, "nonce": ..., "signature": ...}

The nonce and signature of /exchange requests are added by the registered
signer (see core.transport.register_signer).

Usage:
    async with HyperliquidAPIClient() as client:
        mids = await client.info("allMids")
        meta = await client.info("meta")
"""

from typing import Any, Dict, Optional

from core.config import settings
from core.exceptions import ExchangeAPIError
from core.transport import RestClient

MAINNET_URL = "https://api.hyperliquid.xyz"
TESTNET_URL = "https://api.hyperliquid-testnet.xyz"


def get_hyperliquid_base(testnet: Optional[bool] = None) -> str:
    """
    Base URL for the configured Hyperliquid environment.

    Example:
        >>> get_hyperliquid_base(testnet=True)
        'https://api.hyperliquid-testnet.xyz'
    """
    if testnet is None:
        testnet = settings.hyperliquid_testnet
    return TESTNET_URL if testnet else MAINNET_URL


class HyperliquidAPIClient(RestClient):
    """
    Async HTTP client for Hyperliquid REST API

    Attributes:
        BASE_URL: Hyperliquid API base URL (mainnet)

    Example:
        >>> async with HyperliquidAPIClient() as client:
        ...     meta = await client.info("meta")
        ...     print(f"{len(meta['universe'])} perpetuals listed")

    Notes:
        - All parameters are sent as a JSON body
        - Action errors arrive with HTTP 200 and {"status": "err"}
    """

    exchange = "hyperliquid"
    BASE_URL = MAINNET_URL
    JSON_BODY = True

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(base_url=base_url or get_hyperliquid_base(), **kwargs)

    def unwrap(self, payload: Any) -> Any:
        if isinstance(payload, dict) and payload.get("status") == "err":
            raise ExchangeAPIError(str(payload.get("response", "Unknown error")), body=payload)
        return payload

    # ============================================
    # API Methods
    # ============================================

    async def info(self, request_type: str, **fields: Any) -> Any:
        """
        Query the info endpoint.

        Args:
            request_type: Info request type ("meta", "spotMeta", "allMids", ...)
            **fields: Extra body fields (user, oid, req, ...)

        Example:
            >>> await client.info("orderStatus", user="0xabc...", oid=12345)
        """
        body: Dict[str, Any] = {"type": request_type, **fields}
        return await self.request("POST", "/info", body)

    async def action(self, action: Dict[str, Any]) -> Any:
        """
        Submit a signed action to the exchange endpoint.

        Returns:
            The ``response`` member of the action envelope
        """
        payload = await self.request("POST", "/exchange", {"action": action}, signed=True)
        if isinstance(payload, dict) and "response" in payload:
            return payload["response"]
        return payload
