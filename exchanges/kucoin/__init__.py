"""
Kucoin Exchange Connector

This module implements the ExchangeInterface for Kucoin spot and Kucoin
Futures (linear USDT/USDC-margined and inverse coin-margined contracts).

API Documentation:
    https://www.kucoin.com/docs/beginners/introduction

Symbol Conventions:
    Kucoin Futures names contracts XBTUSDTM / XBTUSDM. The connector exposes
    them as BTCUSDT / BTCUSD and converts both ways:

        >>> to_kucoin_symbol("BTCUSDT")
        'XBTUSDTM'
        >>> from_kucoin_symbol("XBTUSDM")
        'BTCUSD'

Rate Limits:
    One process-wide limiter with four pools (spot, futures, management,
    public); see exchanges.kucoin.limits. Rate-limit errors fill every pool.

Limitations:
    - Hedge mode: not available (always one-way)
    - Leverage and margin mode are sent with every futures order; the
      change-leverage / change-margin calls only echo the requested value
    - Public trades and rebates: not available
"""

import re
from typing import Any, Dict, List, Optional

from core.exceptions import ExchangeAPIError
from core.exchange_interface import ExchangeInterface
from core.rate_limit import RateLimiter
from core.retry import RetrySignature, normalize_failure, transient_codes
from core.schemas import (
    Asset,
    BaseAssetInfo,
    Candle,
    CommonOrder,
    ExchangeInfo,
    ExchangeIntervals,
    Futures,
    LeverageBracket,
    MarginType,
    OrderFill,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    PairExchangeInfo,
    PairPrice,
    PairUserFee,
    PositionInfo,
    PositionSide,
    QuoteAssetInfo,
    UserFee,
)
from core.transport import build_signer
from core.utils.numbers import convert_number_to_string, get_price_precision, to_float
from core.utils.time import now_ms

from .api_client import KucoinAPIClient
from .limits import FUTURES, MANAGEMENT, PUBLIC, SPOT, get_limiter

INTERVALS = {
    ExchangeIntervals.oneM: ("1min", 60),
    ExchangeIntervals.threeM: ("3min", 3 * 60),
    ExchangeIntervals.fiveM: ("5min", 5 * 60),
    ExchangeIntervals.fifteenM: ("15min", 15 * 60),
    ExchangeIntervals.thirtyM: ("30min", 30 * 60),
    ExchangeIntervals.oneH: ("1hour", 60 * 60),
    ExchangeIntervals.twoH: ("2hour", 2 * 60 * 60),
    ExchangeIntervals.fourH: ("4hour", 4 * 60 * 60),
    ExchangeIntervals.eightH: ("8hour", 8 * 60 * 60),
    ExchangeIntervals.oneD: ("1day", 24 * 60 * 60),
    ExchangeIntervals.oneW: ("1week", 7 * 24 * 60 * 60),
}

RATE_LIMIT_CODES = ("429", "429000", "530", "200002", "403", "1015")

# sleeps before each lookup of a just placed order that Kucoin has not indexed yet
SPOT_LOOKUP_DELAYS = (0.1, 0.5, 1.5, 5.0)
FUTURES_LOOKUP_DELAYS = (0.5, 0.5, 0.5, 1.0, 1.0, 1.0)

MAX_ORDERS = 200


# ============================================
# Symbol Helpers
# ============================================

def from_kucoin_symbol(symbol: str) -> str:
    symbol = re.sub(r"USDTM$", "USDT", symbol)
    symbol = re.sub(r"USDCM$", "USDC", symbol)
    symbol = re.sub(r"USDM$", "USD", symbol)
    return re.sub(r"^XBT", "BTC", symbol)


def to_kucoin_symbol(symbol: str) -> str:
    symbol = re.sub(r"USDT$", "USDTM", symbol)
    symbol = re.sub(r"USDC$", "USDCM", symbol)
    symbol = re.sub(r"USD$", "USDM", symbol)
    return re.sub(r"^BTC", "XBT", symbol)


def from_kucoin_currency(currency: str) -> str:
    return re.sub(r"^XBT", "BTC", currency)


# ============================================
# Mapping Functions
# ============================================

def convert_order_status(order: Dict[str, Any]) -> OrderStatus:
    if order.get("isActive"):
        if str(order.get("dealSize")) in ("0", "0.0", ""):
            return OrderStatus.NEW
        if str(order.get("size")) != str(order.get("dealSize")):
            return OrderStatus.PARTIALLY_FILLED
    if not order.get("cancelExist"):
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def _average_price(order: Dict[str, Any], status: OrderStatus, inverse: bool) -> str:
    price = str(order.get("price") or "0")
    if status not in (OrderStatus.FILLED, OrderStatus.PARTIALLY_FILLED):
        return price
    deal_size = to_float(order.get("dealSize"))
    deal_funds = to_float(order.get("dealFunds"))
    deal_value = to_float(order.get("dealValue"))
    if deal_funds > 0 and deal_size > 0:
        return str(deal_funds / deal_size)
    if deal_value > 0 and deal_size > 0:
        return str(deal_size / deal_value) if inverse else str(deal_value / deal_size)
    return price


def convert_order(
    order: Dict[str, Any],
    fills: Optional[List[Dict[str, Any]]] = None,
    inverse: bool = False
) -> CommonOrder:
    """
    Kucoin spot or futures order to CommonOrder.

    Fills (spot only) are attached when given; the most recent fill time
    becomes the update time.
    """
    fills = sorted(fills or [], key=lambda f: f.get("createdAt", 0), reverse=True)
    status = convert_order_status(order)
    return CommonOrder(
        symbol=from_kucoin_symbol(order["symbol"]),
        order_id=order["id"],
        client_order_id=order.get("clientOid") or "",
        transact_time=order.get("createdAt"),
        update_time=fills[0]["createdAt"] if fills else order.get("createdAt") or 0,
        price=_average_price(order, status, inverse),
        orig_qty=str(order.get("size", "0")),
        executed_qty=str(order.get("dealSize", "0")),
        cummulative_quote_qty=str(order.get("dealFunds", order.get("dealValue", "0"))),
        status=status,
        type=OrderType.LIMIT if order.get("type") == "limit" else OrderType.MARKET,
        side=OrderSide.BUY if order.get("side") == "buy" else OrderSide.SELL,
        fills=[
            OrderFill(
                price=str(f["price"]),
                qty=str(f["size"]),
                commission=str(f.get("fee", "0")),
                commission_asset=f.get("feeCurrency", ""),
                trade_id=str(f.get("tradeId", "")),
            )
            for f in fills
        ],
        reduce_only=order.get("reduceOnly"),
    )


def convert_spot_symbol(symbol: Dict[str, Any]) -> PairExchangeInfo:
    quote_increment = str(symbol.get("quoteIncrement", "0.01"))
    precision = get_price_precision(quote_increment)
    increment = to_float(quote_increment)
    quote_min = to_float(symbol.get("quoteMinSize"))
    min_funds = to_float(symbol.get("minFunds"), quote_min)
    return PairExchangeInfo(
        pair=symbol["symbol"],
        max_orders=MAX_ORDERS,
        base_asset=BaseAssetInfo(
            name=symbol["baseCurrency"],
            min_amount=to_float(symbol.get("baseMinSize")),
            max_amount=to_float(symbol.get("baseMaxSize")),
            step=to_float(symbol.get("baseIncrement")),
            max_market_amount=to_float(symbol.get("baseMaxSize")),
        ),
        quote_asset=QuoteAssetInfo(
            name=symbol["quoteCurrency"],
            min_amount=max(round(increment + quote_min, precision), round(min_funds + increment, precision)),
        ),
        price_asset_precision=get_price_precision(str(symbol.get("priceIncrement", "0.01"))),
    )


def convert_contract(contract: Dict[str, Any]) -> PairExchangeInfo:
    inverse = bool(contract.get("isInverse"))
    multiplier = to_float(contract.get("multiplier"), 1.0)
    max_amount = to_float(contract.get("maxOrderQty")) * max(multiplier, 1)
    return PairExchangeInfo(
        pair=from_kucoin_symbol(contract["symbol"]),
        max_orders=MAX_ORDERS,
        base_asset=BaseAssetInfo(
            name=from_kucoin_currency(contract["baseCurrency"]),
            min_amount=0.00000001 if inverse else multiplier,
            max_amount=max_amount,
            step=0.00000001 if inverse else multiplier,
            max_market_amount=max_amount,
        ),
        quote_asset=QuoteAssetInfo(
            name=from_kucoin_symbol(contract["quoteCurrency"]),
            min_amount=to_float(contract.get("lotSize")),
        ),
        price_asset_precision=get_price_precision(convert_number_to_string(contract.get("tickSize", "0.1"))),
        cross_available=contract.get("supportCross"),
    )


def convert_position(position: Dict[str, Any]) -> PositionInfo:
    margin = str(position.get("maintMargin", "0"))
    return PositionInfo(
        symbol=from_kucoin_symbol(position["symbol"]),
        initial_margin=margin,
        maint_margin=margin,
        unrealized_profit=str(position.get("unrealisedPnl", "0")),
        position_initial_margin=margin,
        open_order_initial_margin=margin,
        leverage=str(round(to_float(position.get("realLeverage"), 1))),
        isolated=not position.get("crossMode", False),
        entry_price=str(position.get("avgEntryPrice", "0")),
        max_notional="",
        position_side=PositionSide.BOTH,
        position_amt=str(position.get("currentQty", "0")),
        notional="",
        isolated_wallet="",
        update_time=int(position.get("currentTimestamp") or 0),
        bid_notional="",
        ask_notional="",
    )


def _coefficient_fee(coefficient: Any, base: float) -> float:
    if str(coefficient) == "0":
        return 0.0
    return to_float(coefficient) * base


def _rate_limit_delay(failure, attempts: int) -> float:
    return 50.0 if failure.code == "1015" else 30.0


def _order_missing(error: ExchangeAPIError) -> bool:
    return str(error.code) == "100001" or "order does not exist" in error.message.lower()


RATE_LIMIT_SIGNATURE = RetrySignature(
    "kucoin rate limit",
    patterns=("too many request",),
    codes=RATE_LIMIT_CODES,
    delay_fn=_rate_limit_delay,
)

RETRY_SIGNATURES = (
    RATE_LIMIT_SIGNATURE,
    RetrySignature("kc-api-timestamp", patterns=("kc-api-timestamp",), delay=2, step=2),
    RetrySignature("request timeout", patterns=("request timeout", "connect timeout error"), delay=5),
    RetrySignature("cloudflare", patterns=("524 code",), codes=("520", "524"), delay=10),
    RetrySignature("gateway timeout", codes=("504",), delay=2),
    RetrySignature("bad gateway", codes=("502",), delay=10),
    RetrySignature("fetch failed", patterns=("fetch failed",), codes=("-104",), delay=2),
    RetrySignature("server error", codes=("500", "503", "503000"), delay=10),
    RetrySignature("internal error", patterns=("internal error",), codes=("500000",), delay=5),
    transient_codes("kucoin transient code", ("400000", "400002")),
)


# ============================================
# Adapter
# ============================================

class KucoinExchange(ExchangeInterface):
    """
    Kucoin Exchange Connector

    Spot calls go to api.kucoin.com, futures calls to api-futures.kucoin.com.
    Account management (API key info) always lives on the spot host.

    Example:
        >>> exchange = KucoinExchange(Futures.usdm, key="...", secret="...", passphrase="...")
        >>> envelope = await exchange.latest_price("BTCUSDT")   # XBTUSDTM ticker
    """

    name = "kucoin"

    capabilities = {
        "spot": True,
        "futures": True,
        "hedge": False,
        "rebates": False,
        "affiliate": False
    }

    supported_futures = (Futures.null, Futures.usdm, Futures.coinm)

    retry_signatures = RETRY_SIGNATURES

    def __init__(
        self,
        futures: Futures = Futures.null,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        **kwargs: Any
    ):
        super().__init__(key, secret, passphrase, futures, **kwargs)
        self._management_client: Optional[KucoinAPIClient] = None

    def _signer(self):
        return build_signer(
            self.name,
            key=self.key,
            secret=self.secret,
            passphrase=self.passphrase,
            futures=self.futures,
            code=self.code
        )

    def create_client(self) -> KucoinAPIClient:
        return KucoinAPIClient.for_market(self.futures, signer=self._signer())

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    @property
    def management_client(self) -> KucoinAPIClient:
        if not self.is_futures:
            return self.client
        if self._management_client is None:
            self._management_client = KucoinAPIClient.for_market(Futures.null, signer=self._signer())
        return self._management_client

    async def close(self) -> None:
        await super().close()
        if self._management_client is not None:
            await self._management_client.close()

    async def on_error(self, error: BaseException) -> None:
        """Exhaust every pool when Kucoin reports a rate-limit violation."""
        if RATE_LIMIT_SIGNATURE.matches(normalize_failure(error)):
            self.logger.warning(f"Kucoin rate limit hit: {error}")
            await self.limiter.fill()

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        return lambda: self.client.request(method, path, params, signed=signed)

    def _lookup_placed(self, path: str, params: Optional[Dict[str, Any]] = None):
        """Fetch a just placed or cancelled order, waiting while Kucoin has not indexed it."""
        delays = FUTURES_LOOKUP_DELAYS if self.is_futures else SPOT_LOOKUP_DELAYS

        async def lookup():
            for i, delay in enumerate(delays):
                await self._sleep(delay)
                try:
                    return await self.client.request("GET", path, params, signed=True)
                except ExchangeAPIError as e:
                    if i == len(delays) - 1 or not _order_missing(e):
                        raise
                    self.logger.warning(f"Cannot find Kucoin order {path} yet, waiting {delays[i + 1]}s")

        return lookup

    async def _order_envelope(self, name: str, call, weight: float, time_profile=None):
        """Run an order lookup and convert it; spot orders get their fills attached."""
        limit_key = FUTURES if self.is_futures else SPOT
        if self.is_futures:
            return await self._request(
                name,
                call,
                lambda raw: convert_order(raw, inverse=self.is_coinm),
                weight=weight,
                limit_key=limit_key,
                time_profile=time_profile
            )

        # the bare conversion checks the payload before the fills are fetched
        order = await self._request(
            name,
            call,
            lambda raw: (raw, convert_order(raw)),
            weight=weight,
            limit_key=limit_key,
            time_profile=time_profile
        )
        if not order.ok:
            return order
        raw, converted = order.data
        fills = await self._request(
            "listFills",
            self._call("GET", "/api/v1/fills", {"orderId": converted.order_id}),
            lambda raw: raw.get("items", []),
            weight=10,
            limit_key=SPOT,
            time_profile=order.time_profile
        )
        if not fills.ok:
            self.logger.warning(f"Kucoin fills of {converted.order_id} unavailable: {fills.reason}")
        return self.return_mapped(order.time_profile, lambda: convert_order(raw, fills.data if fills.ok else []))

    # ============================================
    # Account
    # ============================================

    async def get_balance(self):
        if not self.is_futures:
            return await self._request(
                "getBalance",
                self._call("GET", "/api/v1/accounts", {"type": "trade"}),
                lambda raw: [
                    Asset(asset=b["currency"], free=to_float(b["available"]), locked=to_float(b["holds"]))
                    for b in raw
                    if b.get("type") == "trade"
                ],
                weight=5,
                limit_key=MANAGEMENT
            )

        contracts = await self._contracts()
        if not contracts.ok:
            return contracts
        currency_key = "baseCurrency" if self.is_coinm else "quoteCurrency"
        currencies = sorted({c[currency_key] for c in contracts.data if c.get(currency_key)})

        async def fetch():
            accounts = []
            for currency in currencies:
                account = await self.client.request("GET", "/api/v1/account-overview", {"currency": currency}, signed=True)
                if account:
                    accounts.append(account)
            return accounts

        return await self._request(
            "getBalance",
            fetch,
            lambda raw: [
                Asset(
                    asset=from_kucoin_currency(a["currency"]) if self.is_coinm else a["currency"],
                    free=to_float(a.get("availableBalance")),
                    locked=to_float(a.get("positionMargin")) + to_float(a.get("orderMargin")) + to_float(a.get("frozenFunds")),
                )
                for a in raw
            ],
            weight=5 * max(len(currencies), 1),
            limit_key=FUTURES,
            time_profile=contracts.time_profile
        )

    async def get_uid(self):
        return await self._request(
            "getUid",
            lambda: self.management_client.request("GET", "/api/v1/user/api-key", signed=True),
            lambda raw: raw["uid"],
            weight=5,
            limit_key=MANAGEMENT
        )

    # ============================================
    # Orders
    # ============================================

    async def open_order(self, order: OrderRequest):
        request: Dict[str, Any] = {
            "clientOid": order.new_client_order_id or "",
            "side": "buy" if order.side == OrderSide.BUY else "sell",
            "size": convert_number_to_string(order.quantity),
            "type": "market" if order.type == OrderType.MARKET else "limit",
        }
        if order.type != OrderType.MARKET:
            request["price"] = convert_number_to_string(order.price)

        if self.is_futures:
            request["symbol"] = to_kucoin_symbol(order.symbol)
            request["leverage"] = order.leverage or 1
            request["marginMode"] = "CROSS" if order.margin_type == MarginType.CROSSED else "ISOLATED"
            if order.reduce_only is not None:
                request["reduceOnly"] = order.reduce_only
            placed = await self._request(
                "openOrder",
                self._call("POST", "/api/v1/orders", request),
                lambda raw: raw["orderId"],
                weight=2,
                limit_key=FUTURES
            )
            if not placed.ok:
                return placed
            return await self._order_envelope(
                "getOrder",
                self._lookup_placed(f"/api/v1/orders/{placed.data}"),
                5,
                placed.time_profile
            )

        request["symbol"] = order.symbol
        placed = await self._request(
            "openOrder",
            self._call("POST", "/api/v1/orders", request),
            lambda raw: raw["orderId"],
            weight=2,
            limit_key=SPOT
        )
        if not placed.ok:
            return placed
        return await self._order_envelope(
            "getOrder",
            self._lookup_placed(f"/api/v1/orders/{placed.data}"),
            2,
            placed.time_profile
        )

    async def get_order(self, symbol: str, new_client_order_id: str):
        if self.is_futures:
            return await self._order_envelope(
                "getOrder",
                self._call("GET", "/api/v1/orders/byClientOid", {"clientOid": new_client_order_id}),
                5
            )
        return await self._order_envelope(
            "getOrder",
            self._call("GET", f"/api/v1/order/client-order/{new_client_order_id}"),
            3
        )

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        if self.is_futures:
            cancelled = await self._request(
                "cancelOrder",
                self._call(
                    "DELETE",
                    f"/api/v1/orders/client-order/{new_client_order_id}",
                    {"symbol": to_kucoin_symbol(symbol)}
                ),
                weight=1,
                limit_key=FUTURES
            )
            if not cancelled.ok:
                return cancelled
            return await self._order_envelope(
                "getOrder",
                self._lookup_placed("/api/v1/orders/byClientOid", {"clientOid": new_client_order_id}),
                5,
                cancelled.time_profile
            )

        cancelled = await self._request(
            "cancelOrder",
            self._call("DELETE", f"/api/v1/order/client-order/{new_client_order_id}"),
            weight=5,
            limit_key=SPOT
        )
        if not cancelled.ok:
            return cancelled
        return await self._order_envelope(
            "getOrder",
            self._lookup_placed(f"/api/v1/order/client-order/{new_client_order_id}"),
            2,
            cancelled.time_profile
        )

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        limit_key = FUTURES if self.is_futures else SPOT
        cancelled = await self._request(
            "cancelOrderByOrderIdAndSymbol",
            self._call("DELETE", f"/api/v1/orders/{order_id}"),
            weight=1 if self.is_futures else 3,
            limit_key=limit_key
        )
        if not cancelled.ok:
            return cancelled
        return await self._order_envelope(
            "getOrder",
            self._lookup_placed(f"/api/v1/orders/{order_id}"),
            5 if self.is_futures else 2,
            cancelled.time_profile
        )

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        if symbol and self.is_futures:
            symbol = to_kucoin_symbol(symbol)
        params = {"status": "active", "symbol": symbol, "pageSize": 1000 if self.is_futures else 500}
        return await self._request(
            "getAllOpenOrders",
            self._call("GET", "/api/v1/orders", params),
            lambda raw: [convert_order(o, inverse=self.is_coinm) for o in raw.get("items", [])],
            weight=2,
            limit_key=FUTURES if self.is_futures else SPOT
        )

    # ============================================
    # Market Data
    # ============================================

    async def _contracts(self):
        """Active futures contracts of the bound kind (linear or inverse)."""
        return await self._request(
            "getContracts",
            self._call("GET", "/api/v1/contracts/active", signed=False),
            lambda raw: [c for c in raw if bool(c.get("isInverse")) == self.is_coinm],
            weight=3,
            limit_key=PUBLIC,
            private=False
        )

    async def _tickers(self, name: str):
        return await self._request(
            name,
            self._call("GET", "/api/v1/market/allTickers", signed=False),
            lambda raw: raw.get("ticker", []),
            weight=15,
            limit_key=PUBLIC,
            private=False
        )

    async def latest_price(self, symbol: str):
        if self.is_futures:
            return await self._request(
                "latestPrice",
                self._call("GET", "/api/v1/ticker", {"symbol": to_kucoin_symbol(symbol)}, signed=False),
                lambda raw: to_float(raw["price"]),
                weight=2,
                limit_key=PUBLIC,
                private=False
            )

        tickers = await self._tickers("latestPrice")
        if not tickers.ok:
            return tickers
        for ticker in tickers.data:
            if ticker.get("symbol") == symbol:
                return self.return_good(tickers.time_profile)(to_float(ticker.get("last")))
        return self.return_bad(tickers.time_profile)("Symbol not found")

    async def get_all_exchange_info(self):
        if self.is_futures:
            contracts = await self._contracts()
            if not contracts.ok:
                return contracts
            return self.return_mapped(contracts.time_profile, lambda: [convert_contract(c) for c in contracts.data])

        return await self._request(
            "getAllExchangeInfo",
            self._call("GET", "/api/v2/symbols", signed=False),
            lambda raw: [convert_spot_symbol(s) for s in raw],
            weight=4,
            limit_key=PUBLIC,
            private=False
        )

    async def get_exchange_info(self, symbol: str):
        all_info = await self.get_all_exchange_info()
        if not all_info.ok:
            return all_info
        for info in all_info.data:
            if info.pair == symbol:
                return self.return_good(all_info.time_profile)(ExchangeInfo(**info.model_dump(exclude={"pair"})))
        return self.return_bad(all_info.time_profile)("Symbol not found")

    async def get_candles(
        self,
        symbol: str,
        interval: ExchangeIntervals,
        start: Optional[int] = None,
        end: Optional[int] = None,
        count: Optional[int] = None
    ):
        kucoin_interval, seconds = INTERVALS[ExchangeIntervals(interval)]

        if self.is_futures:
            # futures candles take epoch milliseconds; shorter values are rejected up front
            now_length = len(str(now_ms()))
            if (start and len(str(int(start))) < now_length) or (end and len(str(int(end))) < now_length):
                return self.return_good(self.get_empty_time_profile())([])
            params: Dict[str, Any] = {
                "symbol": to_kucoin_symbol(symbol),
                "granularity": seconds // 60,
                "from": int(start) if start else None,
                "to": int(end) if end else None,
            }
            if count:
                params["to"] = now_ms()
                params["from"] = params["to"] - seconds * 1000 * count
            return await self._request(
                "getCandles",
                self._call("GET", "/api/v1/kline/query", params, signed=False),
                lambda raw: [
                    Candle(open=k[1], high=k[2], low=k[3], close=k[4], time=int(k[0]), volume=k[5])
                    for k in raw
                ],
                weight=3,
                limit_key=PUBLIC,
                private=False
            )

        params = {
            "symbol": symbol,
            "type": kucoin_interval,
            "startAt": int(start) // 1000 if start else None,
            "endAt": int(end) // 1000 if end else None,
        }
        if count:
            params["endAt"] = now_ms() // 1000
            params["startAt"] = params["endAt"] - seconds * count
        # spot candles are [time(s), open, close, high, low, volume, turnover]
        return await self._request(
            "getCandles",
            self._call("GET", "/api/v1/market/candles", params, signed=False),
            lambda raw: [
                Candle(open=k[1], close=k[2], high=k[3], low=k[4], time=int(k[0]) * 1000, volume=k[5])
                for k in raw
            ],
            weight=3,
            limit_key=PUBLIC,
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    async def get_all_prices(self):
        if self.is_futures:
            contracts = await self._contracts()
            if not contracts.ok:
                return contracts
            return self.return_mapped(contracts.time_profile, lambda: [
                PairPrice(pair=from_kucoin_symbol(c["symbol"]), price=to_float(c.get("markPrice")))
                for c in contracts.data
            ])

        tickers = await self._tickers("getAllPrices")
        if not tickers.ok:
            return tickers
        return self.return_mapped(tickers.time_profile, lambda: [
            PairPrice(pair=t["symbol"], price=to_float(t.get("last"))) for t in tickers.data
        ])

    # ============================================
    # Fees
    # ============================================

    async def get_all_user_fees(self):
        if self.is_futures:
            contracts = await self._contracts()
            if not contracts.ok:
                return contracts
            return self.return_mapped(contracts.time_profile, lambda: [
                PairUserFee(
                    pair=from_kucoin_symbol(c["symbol"]),
                    maker=to_float(c.get("makerFeeRate")),
                    taker=to_float(c.get("takerFeeRate")),
                )
                for c in contracts.data
            ])

        base = await self._request(
            "getAllUserFees",
            self._call("GET", "/api/v1/base-fee"),
            lambda raw: (
                _coefficient_fee(raw.get("makerFeeRate"), 1.0),
                _coefficient_fee(raw.get("takerFeeRate"), 1.0),
            ),
            weight=3,
            limit_key=SPOT
        )
        if not base.ok:
            return base
        tickers = await self._request(
            "getAllUserFees",
            self._call("GET", "/api/v1/market/allTickers", signed=False),
            lambda raw: raw.get("ticker", []),
            weight=15,
            limit_key=PUBLIC,
            time_profile=base.time_profile,
            private=False
        )
        if not tickers.ok:
            return tickers
        base_maker, base_taker = base.data
        return self.return_mapped(tickers.time_profile, lambda: [
            PairUserFee(
                pair=t["symbol"],
                maker=_coefficient_fee(t.get("makerCoefficient", "1"), base_maker),
                taker=_coefficient_fee(t.get("takerCoefficient", "1"), base_taker),
            )
            for t in tickers.data
        ])

    async def get_user_fees(self, symbol: str):
        if self.is_futures:
            fees = await self.get_all_user_fees()
            if not fees.ok:
                return fees
            for fee in fees.data:
                if fee.pair == symbol:
                    return self.return_good(fees.time_profile)(UserFee(maker=fee.maker, taker=fee.taker))
            return self.return_bad(fees.time_profile)("Fee not found")

        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Symbol not found")
            return UserFee(
                maker=to_float(raw[0].get("makerFeeRate") or "1"),
                taker=to_float(raw[0].get("takerFeeRate") or "1"),
            )

        return await self._request(
            "getUserFees",
            self._call("GET", "/api/v1/trade-fees", {"symbols": symbol}),
            normalize,
            weight=3,
            limit_key=SPOT
        )

    # ============================================
    # Futures
    # ============================================

    async def futures_change_leverage(self, symbol: str, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        return self.return_good(self.get_empty_time_profile())(int(leverage))

    async def futures_change_margin_type(self, symbol: str, margin: MarginType, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        return self.return_good(self.get_empty_time_profile())(MarginType(margin))

    async def futures_set_hedge(self, value: bool):
        if not self.is_futures:
            return self.error_futures()
        return self.return_good(self.get_empty_time_profile())(False)

    async def futures_leverage_bracket(self):
        if not self.is_futures:
            return self.error_futures()
        contracts = await self._contracts()
        if not contracts.ok:
            return contracts
        return self.return_mapped(contracts.time_profile, lambda: [
            LeverageBracket(symbol=from_kucoin_symbol(c["symbol"]), leverage=int(to_float(c.get("maxLeverage"), 1)))
            for c in contracts.data
        ])

    async def futures_get_positions(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        if symbol:
            return await self._request(
                "futures_getPositions",
                self._call("GET", "/api/v1/position", {"symbol": to_kucoin_symbol(symbol)}),
                lambda raw: [convert_position(raw)] if raw else [],
                weight=2,
                limit_key=FUTURES
            )
        return await self._request(
            "futures_getPositions",
            self._call("GET", "/api/v1/positions"),
            lambda raw: [convert_position(p) for p in raw or []],
            weight=2,
            limit_key=FUTURES
        )


__all__ = ["KucoinExchange", "from_kucoin_symbol", "to_kucoin_symbol", "convert_order"]
