"""
Connector Exceptions

Exception hierarchy shared by the transport, the retry engine and the adapters.

    ConnectorError
    ├── ConfigurationError         unknown exchange, missing signer
    ├── QueueTimeoutError          rate-limit queue wait exceeded the timeout
    ├── EmptyResponseError         exchange answered with no usable payload
    └── ExchangeAPIError           failure reported by (or on the way to) an exchange

Adapters never let these escape: every public adapter operation turns them into
a NOTOK envelope. Only the chooser raises ConfigurationError to its caller.
"""

from typing import Any, Optional, Union


class ConnectorError(Exception):
    """Base class for every error raised inside the connector."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigurationError(ConnectorError):
    """Invalid setup: unknown exchange identifier, missing signer or credentials."""


class QueueTimeoutError(ConnectorError):
    """A call spent longer than the configured timeout waiting on a rate limiter."""

    def __init__(self, message: str = "Response timeout"):
        super().__init__(message)


class EmptyResponseError(ConnectorError):
    """The exchange answered without the payload the operation needs."""

    def __init__(self, message: str = "Empty response from exchange"):
        super().__init__(message)


class ExchangeAPIError(ConnectorError):
    """
    Error returned by an exchange or raised while talking to it.

    Attributes:
        code: Exchange error code (Binance -1003, Bybit 10006, HTTP 429, ...)
        message: Human-readable error text
        body: Raw response body, when one was received
        status: HTTP status code, when one was received
    """

    def __init__(
        self,
        message: str,
        code: Optional[Union[int, str]] = None,
        body: Any = None,
        status: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.body = body
        self.status = status

    def __repr__(self) -> str:
        return f"ExchangeAPIError(code={self.code!r}, status={self.status!r}, message={self.message!r})"
