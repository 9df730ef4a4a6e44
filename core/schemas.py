"""
Normalized Data Schemas

This module defines Pydantic models for every value that crosses the adapter
boundary. Regardless of which exchange answered (Binance, Kucoin, Bybit, OKX,
Bitget, Coinbase, Hyperliquid), the response is normalized into these schemas
so callers never see exchange-specific field names.

Key Principle:
    Python attributes are snake_case, the JSON surface is camelCase. Every
    model accepts both spellings on input and serializes by alias, so an
    envelope dumped with ``to_response()`` keeps the established wire shape:

        {"status": "OK", "data": ..., "usage": [...], "timeProfile": {...}}

Models:
    - Envelope: Uniform OK/NOTOK result of every adapter operation
    - TimeProfile: Per-call timing instrumentation carried across retries
    - UsageItem: One entry of the rate-limit usage snapshot
    - Asset, CommonOrder, ExchangeInfo, UserFee, Candle, Trade, PairPrice,
      LeverageBracket, PositionInfo, RebateRecord, RebateOverview: shared records
    - OrderRequest, Credentials: adapter inputs
"""

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.utils.time import now_ms


# ============================================
# Base Model
# ============================================

class CamelModel(BaseModel):
    """
    Base model for all connector schemas.

    Fields are declared in snake_case and exposed in camelCase. Both names
    are accepted when constructing a model.

    Example:
        >>> UserFee(maker=0.001, taker=0.001).model_dump(by_alias=True)
        {'maker': 0.001, 'taker': 0.001}
        >>> Candle(open="1", high="2", low="0.5", close="1.5", time=1, volume="10").time
        1
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False
    )


# ============================================
# Enumerations
# ============================================

class StatusEnum(str, Enum):
    """Envelope tag"""
    OK = "OK"
    NOTOK = "NOTOK"


class ExchangeEnum(str, Enum):
    """Public exchange identifiers accepted by the chooser"""
    binance = "binance"
    binanceUS = "binanceUS"
    binanceUsdm = "binanceUsdm"
    binanceCoinm = "binanceCoinm"
    kucoin = "kucoin"
    kucoinLinear = "kucoinLinear"
    kucoinInverse = "kucoinInverse"
    bybit = "bybit"
    bybitLinear = "bybitLinear"
    bybitInverse = "bybitInverse"
    okx = "okx"
    okxLinear = "okxLinear"
    okxInverse = "okxInverse"
    bitget = "bitget"
    bitgetUsdm = "bitgetUsdm"
    bitgetCoinm = "bitgetCoinm"
    coinbase = "coinbase"
    hyperliquid = "hyperliquid"
    hyperliquidLinear = "hyperliquidLinear"


class ExchangeDomain(str, Enum):
    """Binance regional domain"""
    us = "us"
    com = "com"


class Futures(str, Enum):
    """Market kind: spot (null), linear futures (usdm) or inverse futures (coinm)"""
    usdm = "usdm"
    coinm = "coinm"
    null = "null"


class TradeType(str, Enum):
    """Trading permission checked by an API-key verification"""
    all = "all"
    margin = "margin"
    spot = "spot"
    futures = "futures"


class CoinbaseKeysType(str, Enum):
    legacy = "legacy"
    cloud = "cloud"


class OKXSource(str, Enum):
    my = "my"
    com = "com"


class BybitHost(str, Enum):
    eu = "eu"
    com = "com"
    nl = "nl"
    tr = "tr"
    kz = "kz"
    ge = "ge"


BYBIT_HOST_MAP: Dict[BybitHost, str] = {
    BybitHost.eu: "https://api.bybit.eu",
    BybitHost.com: "https://api.bybit.com",
    BybitHost.nl: "https://api.bybit.eu",
    BybitHost.tr: "https://api.bybit-tr.com",
    BybitHost.kz: "https://api.bybit.kz",
    BybitHost.ge: "https://api.bybitgeorgia.ge",
}


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"


class MarginType(str, Enum):
    ISOLATED = "ISOLATED"
    CROSSED = "CROSSED"


class PositionSide(str, Enum):
    BOTH = "BOTH"
    SHORT = "SHORT"
    LONG = "LONG"


class ExchangeIntervals(str, Enum):
    """Candle intervals understood by every adapter"""
    oneM = "1m"
    threeM = "3m"
    fiveM = "5m"
    fifteenM = "15m"
    thirtyM = "30m"
    oneH = "1h"
    twoH = "2h"
    fourH = "4h"
    eightH = "8h"
    oneD = "1d"
    oneW = "1w"


# ============================================
# Usage & Time Profile
# ============================================

class UsageItem(CamelModel):
    """
    Fraction of one rate-limit window consumed.

    Attributes:
        type: Limit type name ("weight", "orders", "usage", "placeOrder", ...)
        value: Consumed fraction, 0-1 (above 1 while over quota)
    """
    type: str
    value: float


PHASES = {
    "queue": ("in_queue_start_time", "in_queue_end_time"),
    "exchange": ("exchange_request_start_time", "exchange_request_end_time"),
}


class TimeProfile(CamelModel):
    """
    Timing record attached to one logical call across all retry attempts.

    All timestamps are epoch milliseconds; 0 means "not set".

    Phases:
        queue    - time spent blocked on the rate limiter
        exchange - time spent waiting on the exchange

    When a phase restarts after it was already closed (a retry), its start is
    back-dated by the elapsed time accumulated so far, so ``end - start``
    stays the cumulative time spent in that phase.

    Example:
        >>> profile = TimeProfile(incoming_time=1000)
        >>> profile.start_phase("exchange", now=1000)
        >>> profile.end_phase("exchange", now=1200)
        >>> profile.start_phase("exchange", now=5000)
        >>> profile.end_phase("exchange", now=5100)
        >>> profile.elapsed("exchange")
        300
    """

    attempts: int = 1
    incoming_time: int = Field(default_factory=now_ms)
    outcoming_time: int = 0
    in_queue_start_time: int = 0
    in_queue_end_time: int = 0
    exchange_request_start_time: int = 0
    exchange_request_end_time: int = 0

    @staticmethod
    def _fields(phase: str):
        try:
            return PHASES[phase]
        except KeyError:
            raise ValueError(f"Unknown profiler phase: {phase}") from None

    def start_phase(self, phase: str, now: Optional[int] = None) -> None:
        start_field, end_field = self._fields(phase)
        now = now_ms() if now is None else now
        start = getattr(self, start_field)
        end = getattr(self, end_field)
        if start and end:
            setattr(self, start_field, now - max(end - start, 0))
        else:
            setattr(self, start_field, now)

    def end_phase(self, phase: str, now: Optional[int] = None) -> None:
        start_field, end_field = self._fields(phase)
        now = now_ms() if now is None else now
        setattr(self, end_field, max(now, getattr(self, start_field)))

    def elapsed(self, phase: str) -> int:
        """Cumulative milliseconds spent in ``phase`` (0 while it is open)."""
        start_field, end_field = self._fields(phase)
        start = getattr(self, start_field)
        end = getattr(self, end_field)
        if not start or end < start:
            return 0
        return end - start


# ============================================
# Result Envelope
# ============================================

T = TypeVar("T")


class Envelope(CamelModel, Generic[T]):
    """
    Uniform outcome of every adapter operation.

    Exactly one of ``data`` (status OK) and ``reason`` (status NOTOK) is set;
    ``usage`` and ``time_profile`` are always present.

    Example:
        >>> env = Envelope(status=StatusEnum.OK, data=True, usage=[], time_profile=TimeProfile())
        >>> env.ok
        True
    """

    status: StatusEnum
    data: Optional[T] = None
    reason: Optional[str] = None
    usage: List[UsageItem] = Field(default_factory=list)
    time_profile: TimeProfile

    @model_validator(mode="after")
    def check_exclusive(self) -> "Envelope":
        if self.status == StatusEnum.OK:
            if self.data is None or self.reason is not None:
                raise ValueError("OK envelope must carry data and no reason")
        else:
            if self.reason is None or self.data is not None:
                raise ValueError("NOTOK envelope must carry a reason and no data")
        return self

    @property
    def ok(self) -> bool:
        return self.status == StatusEnum.OK

    def to_response(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire shape, dropping unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================
# Shared Records
# ============================================

class Asset(CamelModel):
    asset: str
    free: float
    locked: float = 0.0


class OrderFill(CamelModel):
    price: str
    qty: str
    commission: str = "0"
    commission_asset: str = ""
    trade_id: str = ""


class CommonOrder(CamelModel):
    """
    Order normalized across exchanges.

    Unknown exchange statuses are mapped to CANCELED and unknown order types
    to MARKET by the adapters before this model is built.
    """

    symbol: str
    order_id: Union[str, int]
    client_order_id: str = ""
    transact_time: Optional[int] = None
    update_time: int = 0
    price: str = "0"
    orig_qty: str = "0"
    executed_qty: str = "0"
    cummulative_quote_qty: Optional[str] = None
    status: OrderStatus
    type: OrderType
    side: OrderSide
    fills: Optional[List[OrderFill]] = None

    # futures only
    position_side: Optional[PositionSide] = None
    reduce_only: Optional[bool] = None
    close_position: Optional[bool] = None
    time_in_force: Optional[str] = None
    cum_quote: Optional[str] = None
    cum_base: Optional[str] = None
    cum_qty: Optional[str] = None
    avg_price: Optional[str] = None


class BaseAssetInfo(CamelModel):
    min_amount: float
    max_amount: float
    step: float
    name: str
    max_market_amount: float
    multiplier: Optional[float] = None


class QuoteAssetInfo(CamelModel):
    min_amount: float
    name: str
    precision: Optional[int] = None


class PriceMultiplier(CamelModel):
    up: float
    down: float
    decimals: int


class ExchangeInfo(CamelModel):
    """Trading rules of one pair"""
    code: Optional[str] = None
    base_asset: BaseAssetInfo
    quote_asset: QuoteAssetInfo
    max_orders: int
    price_asset_precision: int
    price_multiplier: Optional[PriceMultiplier] = None
    type: Optional[str] = None
    cross_available: Optional[bool] = None


class PairExchangeInfo(ExchangeInfo):
    pair: str


class UserFee(CamelModel):
    maker: float
    taker: float


class PairUserFee(UserFee):
    pair: str


class Candle(CamelModel):
    open: str
    high: str
    low: str
    close: str
    time: int
    volume: str

    @field_validator("open", "high", "low", "close", "volume", mode="before")
    @classmethod
    def stringify(cls, v):
        return str(v)


class Trade(CamelModel):
    agg_id: str
    symbol: str
    price: str
    quantity: str
    first_id: int = 0
    last_id: int = 0
    timestamp: int

    @field_validator("agg_id", "price", "quantity", mode="before")
    @classmethod
    def stringify(cls, v):
        return str(v)


class PairPrice(CamelModel):
    pair: str
    price: float


class LeverageBracket(CamelModel):
    symbol: str
    leverage: int
    step: int = 1
    min: int = 1


class PositionInfo(CamelModel):
    symbol: str
    initial_margin: str = "0"
    maint_margin: str = "0"
    unrealized_profit: str = "0"
    position_initial_margin: str = "0"
    open_order_initial_margin: str = "0"
    leverage: str = "1"
    isolated: bool = False
    entry_price: str = "0"
    max_notional: str = "0"
    position_side: PositionSide = PositionSide.BOTH
    position_amt: str = "0"
    notional: str = "0"
    isolated_wallet: str = "0"
    update_time: int = 0
    bid_notional: str = "0"
    ask_notional: str = "0"
    position_id: Optional[str] = None


class RebateRecord(CamelModel):
    customer_id: str
    email: str = ""
    income: str
    asset: str
    symbol: str
    time: int
    order_id: str = ""
    trade_id: str = ""


class RebateOverview(CamelModel):
    unit: str
    rebate_vol: str
    time: int


# ============================================
# Inputs
# ============================================

class OrderRequest(CamelModel):
    """
    Order to place.

    Example:
        >>> OrderRequest(symbol="BTCUSDT", side="BUY", quantity=0.01, price=30000)
    """

    symbol: str
    side: OrderSide
    quantity: float = Field(gt=0)
    price: float = Field(ge=0)
    new_client_order_id: Optional[str] = None
    type: OrderType = OrderType.LIMIT
    reduce_only: Optional[bool] = None
    position_side: Optional[PositionSide] = None
    margin_type: Optional[MarginType] = None
    leverage: Optional[int] = None


class Credentials(CamelModel):
    """
    Caller credentials plus exchange-specific auth variants.

    ``adapter_kwargs()`` returns the keyword arguments accepted by every
    adapter factory.
    """

    key: Optional[str] = None
    secret: Optional[str] = None
    passphrase: Optional[str] = None
    keys_type: Optional[CoinbaseKeysType] = None
    okx_source: Optional[OKXSource] = None
    bybit_host: Optional[BybitHost] = None
    code: Optional[str] = None

    def adapter_kwargs(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "secret": self.secret,
            "passphrase": self.passphrase,
            "keys_type": self.keys_type,
            "okx_source": self.okx_source,
            "bybit_host": self.bybit_host,
            "code": self.code,
        }


class VerifyResult(CamelModel):
    """
    Outcome of an API-key verification.

    Example:
        >>> VerifyResult(status=False, reason="Check permissions").model_dump()
        {'status': False, 'reason': 'Check permissions'}
    """

    status: bool
    reason: str = ""
