"""
REST Transport

Base aiohttp client every exchange client derives from. It handles:
- HTTP session lifecycle (async context manager or lazy session)
- Request logging
- Mapping network failures to messages the retry engine recognizes
- Turning HTTP errors and exchange error envelopes into ExchangeAPIError
- Delegating authentication to a pluggable RequestSigner

Request signing is not implemented here. An application registers one signer
factory per exchange:

    from core.transport import register_signer

    class MyBinanceSigner:
        def __init__(self, key, secret, **kwargs): ...
        async def sign(self, method, path, params, headers):
            ...
            return params, headers

    register_signer("binance", MyBinanceSigner)

Signed requests on an exchange without a registered signer fail with
ConfigurationError.

Exchange clients override:
    BASE_URL       - default base URL
    JSON_BODY      - send POST and PUT parameters as a JSON body instead of a query
    unwrap()       - strip the exchange response envelope, raise on error codes
    on_response()  - inspect response headers (used-weight headers, ...)
"""

import asyncio
import json
import socket
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import aiohttp

from core.config import settings
from core.exceptions import ConfigurationError, ExchangeAPIError
from core.logging import get_logger, log_api_request, log_api_response


# ============================================
# Signer Seam
# ============================================

class RequestSigner(Protocol):
    """Authenticates one request; returns the final params and headers."""

    async def sign(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        headers: Dict[str, str]
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        ...


SignerFactory = Callable[..., RequestSigner]

_signers: Dict[str, SignerFactory] = {}


def register_signer(exchange: str, factory: SignerFactory) -> None:
    """
    Register the signer factory used for ``exchange``.

    The factory is called with the adapter credentials as keyword arguments
    (key, secret, passphrase and exchange-specific extras).
    """
    _signers[exchange] = factory


def unregister_signer(exchange: str) -> None:
    _signers.pop(exchange, None)


def build_signer(exchange: str, **credentials: Any) -> Optional[RequestSigner]:
    """Create a signer for ``exchange`` or return None when none is registered."""
    factory = _signers.get(exchange)
    if factory is None:
        return None
    return factory(**credentials)


# ============================================
# REST Client
# ============================================

def _clean_params(params: Optional[Dict[str, Any]], stringify_bools: bool = True) -> Dict[str, Any]:
    cleaned = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if stringify_bools and isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def map_network_error(error: BaseException, url: str) -> ExchangeAPIError:
    """
    Translate an aiohttp/asyncio failure into a classifiable ExchangeAPIError.

    Example:
        >>> map_network_error(asyncio.TimeoutError(), "https://api.binance.com/api/v3/time").message
        'ETIMEDOUT https://api.binance.com/api/v3/time'
    """
    if isinstance(error, asyncio.TimeoutError):
        return ExchangeAPIError(f"ETIMEDOUT {url}")
    if isinstance(error, aiohttp.ClientSSLError):
        return ExchangeAPIError(
            f"Client network socket disconnected before secure TLS connection was established: {error}"
        )
    if isinstance(error, aiohttp.ClientConnectorError):
        if isinstance(error.os_error, socket.gaierror):
            return ExchangeAPIError(f"getaddrinfo ENOTFOUND {error.host}")
        return ExchangeAPIError(f"connect ECONNREFUSED {error.host}:{error.port}")
    if isinstance(error, aiohttp.ServerDisconnectedError):
        return ExchangeAPIError("socket hang up")
    if isinstance(error, aiohttp.ClientOSError):
        return ExchangeAPIError(f"read ECONNRESET {error}")
    return ExchangeAPIError(f"fetch failed: {error}")


class RestClient:
    """
    Async HTTP client for one exchange REST API.

    Attributes:
        exchange: Exchange name (signer registry key, log prefix)
        BASE_URL: Default API base URL
        JSON_BODY: Send POST/PUT params as JSON body

    Example:
        >>> async with BinanceAPIClient() as client:
        ...     prices = await client.request("GET", "/api/v3/ticker/price")
    """

    exchange = "exchange"
    BASE_URL = ""
    JSON_BODY = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        signer: Optional[RequestSigner] = None,
        timeout: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.signer = signer
        self.timeout = timeout or settings.request_timeout
        self.session = session
        self._owns_session = session is None
        self.logger = get_logger(f"exchanges.{self.exchange}")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
            self.logger.debug(f"{self.exchange} session created")
        return self.session

    async def close(self) -> None:
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()
            self.logger.debug(f"{self.exchange} session closed")
        if self._owns_session:
            self.session = None

    # ============================================
    # Hooks
    # ============================================

    def unwrap(self, payload: Any) -> Any:
        """Strip the exchange response envelope. Raise ExchangeAPIError on error codes."""
        return payload

    async def on_response(self, headers: Any) -> None:
        """Inspect response headers (rate-limit counters, ...)."""

    def error_from_response(self, status: int, payload: Any, text: str, reason: str = "") -> ExchangeAPIError:
        code: Any = None
        message = None
        if isinstance(payload, dict):
            code = payload.get("code", payload.get("retCode"))
            message = payload.get("msg") or payload.get("message") or payload.get("retMsg") or payload.get("error")
        if code is None:
            code = status
        if not message:
            message = text.strip() or reason or f"HTTP {status}"
        return ExchangeAPIError(str(message), code=code, body=payload, status=status)

    # ============================================
    # Request
    # ============================================

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False
    ) -> Any:
        """
        Send one request and return the unwrapped JSON payload.

        Args:
            method: HTTP method
            path: Endpoint path appended to the base URL
            params: Query (GET) or body parameters; None values are dropped
            signed: Authenticate through the registered signer

        Raises:
            ConfigurationError: signed request without a signer
            ExchangeAPIError: HTTP error, exchange error code or network failure
        """
        method = method.upper()
        send_json = self.JSON_BODY and method in ("POST", "PUT")
        params = _clean_params(params, stringify_bools=not send_json)
        headers: Dict[str, str] = {"Content-Type": "application/json"}

        if signed:
            if self.signer is None:
                raise ConfigurationError(f"No request signer registered for {self.exchange}")
            params, headers = await self.signer.sign(method, path, params, headers)

        url = f"{self.base_url}{path}"
        session = self._ensure_session()

        log_api_request(self.exchange, method, path, params)
        started = time.monotonic()
        try:
            async with session.request(
                method,
                url,
                params=None if send_json else params or None,
                data=json.dumps(params) if send_json else None,
                headers=headers
            ) as resp:
                text = await resp.text()
                status = resp.status
                reason = resp.reason or ""
                await self.on_response(resp.headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.debug(f"{method} {path} failed: {e!r}")
            raise map_network_error(e, url) from e

        log_api_response(self.exchange, path, status, time.monotonic() - started)

        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = text

        if status >= 400:
            raise self.error_from_response(status, payload, text, reason)

        return self.unwrap(payload)
