"""
Exchange Interface - Abstract Contract for All Exchanges

This module defines the abstract base class that all exchange adapters must implement.
By enforcing a consistent interface, we ensure:
- All exchanges expose the same operations
- Every operation returns the same Envelope shape (OK / NOTOK)
- Rate limiting, retries and timing are applied the same way everywhere
- Unsupported operations degrade to a failure envelope instead of raising

Design Philosophy:
    "Program to an interface, not an implementation"

    The router works with ExchangeInterface, not specific exchange
    implementations. Adding an exchange means adding an adapter and one
    chooser entry.

Request Pipeline (ExchangeInterface._request):
    1. precondition checks (credentials, market kind) -> immediate NOTOK
    2. reserve limiter weight, sleeping while told to   ("queue" phase)
    3. call the exchange                                 ("exchange" phase)
    4. normalize the raw payload with the adapter's mapping function
       (an empty payload fails without a retry)
    5. failures go to the RetryEngine: retry or final NOTOK

Example:
    class BinanceExchange(ExchangeInterface):
        name = "binance"

        async def latest_price(self, symbol):
            return await self._request(
                "latestPrice",
                lambda: self.client.request("GET", "/api/v3/ticker/price", {"symbol": symbol}),
                lambda raw: float(raw["price"]),
                weight=2,
                private=False
            )

    exchange = ExchangeChooser.get_exchange("binance", key=..., secret=...)
    envelope = await exchange.latest_price("BTCUSDT")

Capabilities System:
    Each adapter declares which optional features it supports via the
    `capabilities` dict, e.g. {"hedge": True, "rebates": False}.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from core.config import settings
from core.exceptions import EmptyResponseError, QueueTimeoutError
from core.logging import get_logger
from core.rate_limit import RateLimiter
from core.retry import EXCHANGE_PROBLEMS, ErrorClassifier, RetryEngine, RetrySignature
from core.schemas import (
    Asset,
    BybitHost,
    Candle,
    CoinbaseKeysType,
    CommonOrder,
    Envelope,
    ExchangeInfo,
    ExchangeIntervals,
    Futures,
    LeverageBracket,
    MarginType,
    OKXSource,
    OrderRequest,
    PairExchangeInfo,
    PairPrice,
    PairUserFee,
    PositionInfo,
    RebateOverview,
    RebateRecord,
    StatusEnum,
    TimeProfile,
    Trade,
    TradeType,
    UsageItem,
    UserFee,
)
from core.transport import RestClient
from core.utils.numbers import convert_number_to_string, get_price_precision
from core.utils.time import now_ms

FUTURES_TYPE_MISSED = "Futures type missed"
CREDENTIALS_MISSING = "API credentials are missing"
METHOD_NOT_SUPPORTED = "Method not supported"
EMPTY_RESPONSE = "Empty response from exchange"


class ExchangeInterface(ABC):
    """
    Abstract Base Class for Exchange Adapters

    Class Attributes:
        name: Unique identifier for the exchange (e.g., "binance", "kucoin")
        capabilities: Dictionary indicating which optional features are supported
        supported_futures: Market kinds the adapter can be constructed with
        retry_signatures: Exchange-specific retry signatures checked first

    Abstract Methods (MUST be implemented by all exchanges):
        - get_balance, open_order, get_order, cancel_order
        - latest_price, get_exchange_info, get_all_exchange_info
        - get_all_open_orders, get_user_fees, get_all_user_fees
        - get_candles, get_trades, get_all_prices
        - create_client, create_limiter

    Optional Methods (defaults return a fixed value or "Method not supported"):
        - cancel_order_by_order_id
        - futures_change_leverage, futures_change_margin_type
        - futures_get_hedge, futures_set_hedge
        - futures_leverage_bracket, futures_get_positions
        - get_uid, get_affiliate, get_rebate_records, get_rebate_overview
        - verify_permissions, get_account_type
    """

    # ============================================
    # Class Attributes (must be set by subclasses)
    # ============================================

    name: str = "exchange"
    """Exchange identifier used in logs and limiter names"""

    capabilities: Dict[str, bool] = {
        "spot": True,
        "futures": False,
        "hedge": False,
        "rebates": False,
        "affiliate": False
    }
    """Dictionary indicating which features this exchange supports"""

    supported_futures: Tuple[Futures, ...] = (Futures.null,)

    retry_signatures: Tuple[RetrySignature, ...] = ()

    exchange_problems = EXCHANGE_PROBLEMS

    def __init__(
        self,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        futures: Futures = Futures.null,
        *,
        environment: Optional[str] = None,
        keys_type: Optional[CoinbaseKeysType] = None,
        okx_source: Optional[OKXSource] = None,
        bybit_host: Optional[BybitHost] = None,
        code: Optional[str] = None,
        client: Optional[RestClient] = None,
        limiter: Optional[RateLimiter] = None,
        retry_engine: Optional[RetryEngine] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Bind credentials, market kind and the shared building blocks.

        Args:
            key: API key
            secret: API secret
            passphrase: API passphrase (Kucoin, OKX, Bitget)
            futures: Market kind (Futures.null = spot)
            environment: "live" or "sandbox"/"demo" where the exchange has one
            keys_type: Coinbase key type
            okx_source: OKX regional source
            bybit_host: Bybit regional host
            code: Affiliate/broker code
            client: REST client (built by create_client() when omitted)
            limiter: Rate limiter (process-wide singleton when omitted)
            retry_engine: Retry engine (built from retry_signatures when omitted)
            sleep: Awaitable sleep used while waiting on the limiter
        """
        self.key = key
        self.secret = secret
        self.passphrase = passphrase
        self.futures = Futures(futures) if futures is not None else Futures.null
        self.environment = environment
        self.keys_type = keys_type
        self.okx_source = okx_source
        self.bybit_host = bybit_host
        self.code = code
        self.logger = get_logger(f"exchanges.{self.name}")
        self._sleep = sleep
        self.client = client if client is not None else self.create_client()
        self.limiter = limiter if limiter is not None else self.create_limiter()
        self.retry_engine = retry_engine or RetryEngine(
            ErrorClassifier(extra_signatures=self.retry_signatures),
            sleep=sleep,
            connector=self.name.capitalize(),
            prefix=self.exchange_problems
        )

    # ============================================
    # Lifecycle
    # ============================================

    @abstractmethod
    def create_client(self) -> RestClient:
        """Build the exchange REST client for the bound market and credentials."""

    @abstractmethod
    def create_limiter(self) -> RateLimiter:
        """Return the process-wide limiter for the bound market."""

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def supports(self, feature: str) -> bool:
        """
        Check if this exchange supports a specific feature.

        Example:
            >>> exchange.supports("hedge")
            True
        """
        return self.capabilities.get(feature, False)

    @property
    def is_futures(self) -> bool:
        return self.futures in (Futures.usdm, Futures.coinm)

    @property
    def is_usdm(self) -> bool:
        return self.futures == Futures.usdm

    @property
    def is_coinm(self) -> bool:
        return self.futures == Futures.coinm

    @property
    def has_credentials(self) -> bool:
        return bool(self.key and self.secret)

    # ============================================
    # Envelope Builders & Profiler
    # ============================================

    def get_empty_time_profile(self) -> TimeProfile:
        return TimeProfile(attempts=1, incoming_time=now_ms())

    def start_profiler_time(self, time_profile: TimeProfile, phase: str) -> TimeProfile:
        time_profile.start_phase(phase)
        return time_profile

    def end_profiler_time(self, time_profile: TimeProfile, phase: str) -> TimeProfile:
        time_profile.end_phase(phase)
        return time_profile

    def get_usage(self) -> List[UsageItem]:
        """Current usage snapshot of the bound limiter."""
        return self.limiter.get_usage()

    def return_good(self, time_profile: TimeProfile, usage: Optional[List[UsageItem]] = None):
        """
        Bind a success builder to one call.

        Example:
            >>> envelope = self.return_good(profile)(42.0)
            >>> envelope.status
            <StatusEnum.OK: 'OK'>
        """
        def build(value: Any) -> Envelope:
            if value is None:
                return self.return_bad(time_profile, usage)(EMPTY_RESPONSE)
            time_profile.outcoming_time = now_ms()
            return Envelope(
                status=StatusEnum.OK,
                data=value,
                usage=usage if usage is not None else self.get_usage(),
                time_profile=time_profile
            )
        return build

    def return_bad(self, time_profile: TimeProfile, usage: Optional[List[UsageItem]] = None):
        """Bind a failure builder to one call; accepts an exception or a message."""
        def build(error: Union[BaseException, str]) -> Envelope:
            time_profile.outcoming_time = now_ms()
            reason = error if isinstance(error, str) else (getattr(error, "message", None) or str(error))
            return Envelope(
                status=StatusEnum.NOTOK,
                reason=reason or error.__class__.__name__,
                usage=usage if usage is not None else self.get_usage(),
                time_profile=time_profile
            )
        return build

    def return_mapped(self, time_profile: TimeProfile, build: Callable[[], Any]) -> Envelope:
        """
        Wrap the mapping of payloads fetched by earlier _request calls.

        A payload missing a field the mapping needs yields a NOTOK envelope.
        """
        try:
            value = build()
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as error:
            self.logger.error(f"{self.name} returned an unexpected payload: {error!r}")
            return self.return_bad(time_profile)(f"Unexpected response from exchange: {error}")
        return self.return_good(time_profile)(value)

    def error_futures(self, time_profile: Optional[TimeProfile] = None) -> Envelope:
        return self.return_bad(time_profile or self.get_empty_time_profile())(FUTURES_TYPE_MISSED)

    def method_not_supported(self, time_profile: Optional[TimeProfile] = None) -> Envelope:
        return self.return_bad(time_profile or self.get_empty_time_profile())(METHOD_NOT_SUPPORTED)

    def credentials_missing(self, time_profile: Optional[TimeProfile] = None) -> Envelope:
        return self.return_bad(time_profile or self.get_empty_time_profile())(CREDENTIALS_MISSING)

    def get_price_precision(self, tick: str) -> int:
        return get_price_precision(tick)

    def convert_number_to_string(self, number: Any) -> str:
        return convert_number_to_string(number)

    # ============================================
    # Request Pipeline
    # ============================================

    async def check_limits(self, limit_key: str, weight: float, time_profile: TimeProfile) -> None:
        """
        Reserve limiter weight, sleeping for as long as the limiter says.

        Raises:
            QueueTimeoutError: the accumulated queue time exceeded QUEUE_TIMEOUT_SECONDS
        """
        self.start_profiler_time(time_profile, "queue")
        try:
            wait = await self.limiter.reserve(limit_key, weight)
            while wait > 0:
                self.logger.warning(
                    f"{self.name} request must sleep for {wait / 1000:.3f}s. Limit: {limit_key}"
                )
                await self._sleep(wait / 1000)
                wait = await self.limiter.reserve(limit_key, weight)
        finally:
            self.end_profiler_time(time_profile, "queue")

        if time_profile.elapsed("queue") >= settings.queue_timeout_ms:
            raise QueueTimeoutError()

    async def on_error(self, error: BaseException) -> None:
        """Called with every failed attempt before it is classified."""

    async def _request(
        self,
        name: str,
        call: Callable[[], Awaitable[Any]],
        normalize: Optional[Callable[[Any], Any]] = None,
        *,
        weight: float = 1,
        limit_key: Optional[str] = None,
        time_profile: Optional[TimeProfile] = None,
        private: bool = True
    ) -> Envelope:
        """
        Run one metered, retried exchange call and wrap it in an Envelope.

        Args:
            name: Operation name for logs
            call: Coroutine function performing the transport call
            normalize: Mapping from the raw payload to the shared records
                (may be a coroutine function)
            weight: Limiter weight of the endpoint
            limit_key: Limiter key (first configured limit when omitted)
            time_profile: Profile to continue (new one when omitted)
            private: Requires API credentials
        """
        time_profile = time_profile or self.get_empty_time_profile()
        if private and not self.has_credentials:
            return self.credentials_missing(time_profile)

        limit_key = limit_key or next(iter(self.limiter.windows))

        async def attempt():
            await self.check_limits(limit_key, weight, time_profile)
            self.start_profiler_time(time_profile, "exchange")
            try:
                raw = await call()
            finally:
                self.end_profiler_time(time_profile, "exchange")
            result = raw if normalize is None else normalize(raw)
            if inspect.isawaitable(result):
                result = await result
            if result is None:
                raise EmptyResponseError()
            return result

        outcome = await self.retry_engine.run(attempt, time_profile, operation=name, on_error=self.on_error)
        if not outcome.succeeded:
            return self.return_bad(time_profile)(outcome.reason)
        return self.return_good(time_profile)(outcome.value)

    # ============================================
    # Core Operations (abstract)
    # ============================================

    @abstractmethod
    async def get_balance(self) -> Envelope[List[Asset]]:
        """Free and locked amount of every asset."""

    @abstractmethod
    async def open_order(self, order: OrderRequest) -> Envelope[CommonOrder]:
        """Place a LIMIT or MARKET order."""

    @abstractmethod
    async def get_order(self, symbol: str, new_client_order_id: str) -> Envelope[CommonOrder]:
        """Look an order up by client order id."""

    @abstractmethod
    async def cancel_order(self, symbol: str, new_client_order_id: str) -> Envelope[CommonOrder]:
        """Cancel an order by client order id."""

    @abstractmethod
    async def latest_price(self, symbol: str) -> Envelope[float]:
        """Last traded price of ``symbol``."""

    @abstractmethod
    async def get_exchange_info(self, symbol: str) -> Envelope[ExchangeInfo]:
        """Trading rules of one pair."""

    @abstractmethod
    async def get_all_exchange_info(self) -> Envelope[List[PairExchangeInfo]]:
        """Trading rules of every pair."""

    @abstractmethod
    async def get_all_open_orders(self, symbol: Optional[str] = None) -> Envelope[List[CommonOrder]]:
        """Open orders, optionally for one pair."""

    @abstractmethod
    async def get_user_fees(self, symbol: str) -> Envelope[UserFee]:
        """Maker/taker fee of one pair."""

    @abstractmethod
    async def get_all_user_fees(self) -> Envelope[List[PairUserFee]]:
        """Maker/taker fees of every pair."""

    @abstractmethod
    async def get_candles(
        self,
        symbol: str,
        interval: ExchangeIntervals,
        start: Optional[int] = None,
        end: Optional[int] = None,
        count: Optional[int] = None
    ) -> Envelope[List[Candle]]:
        """Candles between ``start`` and ``end`` (epoch ms)."""

    @abstractmethod
    async def get_trades(
        self,
        symbol: str,
        from_id: Optional[int] = None,
        start: Optional[int] = None,
        end: Optional[int] = None
    ) -> Envelope[List[Trade]]:
        """Recent public trades."""

    @abstractmethod
    async def get_all_prices(self) -> Envelope[List[PairPrice]]:
        """Last price of every pair."""

    # ============================================
    # Derived & Optional Operations
    # ============================================

    async def count_open_orders(self, symbol: Optional[str] = None) -> Envelope[int]:
        """Number of open orders; built on get_all_open_orders."""
        envelope = await self.get_all_open_orders(symbol)
        if not envelope.ok:
            return envelope
        return Envelope(
            status=StatusEnum.OK,
            data=len(envelope.data),
            usage=envelope.usage,
            time_profile=envelope.time_profile
        )

    async def cancel_order_by_order_id(self, symbol: str, order_id: str) -> Envelope[CommonOrder]:
        return self.method_not_supported()

    def _futures_only(self) -> Optional[Envelope]:
        if not self.is_futures:
            return self.error_futures()
        return None

    async def futures_change_leverage(self, symbol: str, leverage: int) -> Envelope[int]:
        return self._futures_only() or self.method_not_supported()

    async def futures_change_margin_type(
        self,
        symbol: str,
        margin: MarginType,
        leverage: int
    ) -> Envelope[MarginType]:
        return self._futures_only() or self.method_not_supported()

    async def futures_get_hedge(self, symbol: Optional[str] = None) -> Envelope[bool]:
        return self._futures_only() or self.return_good(self.get_empty_time_profile())(False)

    async def futures_set_hedge(self, value: bool) -> Envelope[bool]:
        return self._futures_only() or self.method_not_supported()

    async def futures_leverage_bracket(self) -> Envelope[List[LeverageBracket]]:
        return self._futures_only() or self.method_not_supported()

    async def futures_get_positions(self, symbol: Optional[str] = None) -> Envelope[List[PositionInfo]]:
        return self._futures_only() or self.method_not_supported()

    async def verify_permissions(self, trade_type: Optional[TradeType] = None) -> Envelope[bool]:
        """
        Check that the bound API key can trade on this market.

        The default reads the balance: a key that can read it is accepted.
        Adapters with a permission endpoint override this. ``trade_type``
        picks the permission where an exchange reports several per key.
        """
        balance = await self.get_balance()
        if not balance.ok:
            return balance
        return self.return_good(balance.time_profile)(True)

    async def get_account_type(self) -> Envelope[int]:
        return self.method_not_supported()

    async def get_uid(self) -> Envelope[Union[str, int]]:
        return self.method_not_supported()

    async def get_affiliate(self, uid: Union[str, int]) -> Envelope[bool]:
        return self.return_good(self.get_empty_time_profile())(False)

    async def get_rebate_records(
        self,
        timestamp: int,
        start: Optional[int] = None,
        end: Optional[int] = None
    ) -> Envelope[List[RebateRecord]]:
        return self.method_not_supported()

    async def get_rebate_overview(self, timestamp: int) -> Envelope[RebateOverview]:
        return self.method_not_supported()
