"""
Coinbase Exchange Connector

This module implements the ExchangeInterface for Coinbase Advanced Trade
(spot only). Futures operations answer "Futures type missed".

API Documentation:
    https://docs.cdp.coinbase.com/advanced-trade/reference

Key Types:
    legacy -> API key + secret (HMAC)
    cloud  -> CDP API key name + private key (JWT)
    The key type is handed to the registered signer.

Endpoints Used:
    - GET  /api/v3/brokerage/accounts
    - POST /api/v3/brokerage/orders | /api/v3/brokerage/orders/batch_cancel
    - GET  /api/v3/brokerage/orders/historical/{order_id} | /api/v3/brokerage/orders/historical/batch
    - GET  /api/v3/brokerage/transaction_summary
    - GET  /api/v3/brokerage/market/products | /api/v3/brokerage/market/products/{product_id}
    - GET  /api/v3/brokerage/market/products/{product_id}/candles

Limitations:
    - Orders are looked up and cancelled by the exchange order id; the
      "client order id" argument of get/cancel carries that id
    - Fees are account-wide (one tier for every product)
    - Public trades, uid, affiliate and rebates: not available
"""

from typing import Any, Dict, Optional

from core.exceptions import ExchangeAPIError
from core.exchange_interface import ExchangeInterface
from core.rate_limit import RateLimiter
from core.retry import RetrySignature, transient_codes
from core.schemas import (
    Asset,
    BaseAssetInfo,
    Candle,
    CommonOrder,
    ExchangeInfo,
    ExchangeIntervals,
    Futures,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    PairExchangeInfo,
    PairPrice,
    PairUserFee,
    QuoteAssetInfo,
    UserFee,
)
from core.transport import build_signer
from core.utils.numbers import convert_number_to_string, get_price_precision, to_float
from core.utils.time import now_ms, to_milliseconds

from .api_client import CoinbaseAPIClient
from .limits import PRIVATE, PUBLIC, get_limiter

RETRY_CODES = ["504", "429", "500", "503", "502", "520", "521", "522"]

# (granularity, interval length in ms)
INTERVALS = {
    ExchangeIntervals.oneM: ("ONE_MINUTE", 60_000),
    ExchangeIntervals.threeM: ("ONE_MINUTE", 3 * 60_000),
    ExchangeIntervals.fiveM: ("FIVE_MINUTE", 5 * 60_000),
    ExchangeIntervals.fifteenM: ("FIFTEEN_MINUTE", 15 * 60_000),
    ExchangeIntervals.thirtyM: ("THIRTY_MINUTE", 30 * 60_000),
    ExchangeIntervals.oneH: ("ONE_HOUR", 60 * 60_000),
    ExchangeIntervals.twoH: ("TWO_HOUR", 2 * 60 * 60_000),
    ExchangeIntervals.fourH: ("SIX_HOUR", 4 * 60 * 60_000),
    ExchangeIntervals.eightH: ("SIX_HOUR", 8 * 60 * 60_000),
    ExchangeIntervals.oneD: ("ONE_DAY", 24 * 60 * 60_000),
    ExchangeIntervals.oneW: ("ONE_DAY", 7 * 24 * 60 * 60_000),
}

MAX_CANDLES = 300

DEFAULT_FEE = UserFee(maker=0.006, taker=0.008)

MAX_ORDERS = 500

# waits between lookups of an order Coinbase has not indexed yet
ORDER_LOOKUP_DELAYS = (5.0, 5.0, 5.0, 5.0, 5.0)

MARKET_ORDER_SETTLE = 1.0

RETRY_SIGNATURES = (
    RetrySignature("coinbase internal timeout", patterns=("internal timeout",), delay=10, step=1),
    RetrySignature("coinbase too many visits", patterns=("too many visits", "too many errors"), delay=10, step=1),
    RetrySignature("coinbase unknown failure", patterns=("unknown_failure_reason",), delay=1, step=1),
    RetrySignature("coinbase firewall", patterns=("<html>", "go/sg"), delay=10, step=1),
    RetrySignature("coinbase something went wrong", patterns=("something went wrong",), delay=2, step=1),
    RetrySignature("coinbase unauthorized", patterns=("unauthorized",), delay=2),
    RetrySignature("coinbase service unavailable", patterns=("the service is unavailable",), delay=5),
    transient_codes("coinbase transient code", RETRY_CODES),
)


# ============================================
# Mapping Functions
# ============================================


def convert_order_status(order: Dict[str, Any]) -> OrderStatus:
    status = order.get("status")
    if status in ("OPEN", "PENDING", "QUEUED"):
        if to_float(order.get("completion_percentage")) > 0:
            return OrderStatus.PARTIALLY_FILLED
        return OrderStatus.NEW
    if status == "FILLED":
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def convert_order(order: Dict[str, Any]) -> CommonOrder:
    """
    Coinbase order to CommonOrder.

    Limit orders report the limit price until a fill at a different average
    price exists; market orders report the average fill price.
    """
    configuration = order.get("order_configuration") or {}
    limit = configuration.get("limit_limit_gtc") or {}
    market = configuration.get("market_market_ioc") or {}
    average = to_float(order.get("average_filled_price"))

    if order.get("order_type") == "MARKET":
        price = convert_number_to_string(average)
    elif average and average != to_float(limit.get("limit_price")):
        price = str(order["average_filled_price"])
    else:
        price = str(limit.get("limit_price", "0"))

    if market.get("base_size"):
        orig_qty = str(market["base_size"])
    elif market:
        # quote sized market buy
        orig_qty = convert_number_to_string(to_float(market.get("quote_size")) / average if average else 0)
    else:
        orig_qty = str(limit.get("base_size", "0"))

    created = to_milliseconds(order.get("created_time")) or 0
    return CommonOrder(
        symbol=order["product_id"],
        order_id=order["order_id"],
        client_order_id=order.get("client_order_id") or "",
        transact_time=created,
        update_time=to_milliseconds(order.get("last_fill_time")) or created,
        price=price,
        orig_qty=orig_qty,
        executed_qty=str(order.get("filled_size") or "0"),
        cummulative_quote_qty=str(order.get("filled_value") or "0"),
        status=convert_order_status(order),
        type=OrderType.LIMIT if order.get("order_type") == "LIMIT" else OrderType.MARKET,
        side=OrderSide.SELL if order.get("side") == "SELL" else OrderSide.BUY,
        fills=[],
    )


def convert_product(product: Dict[str, Any]) -> PairExchangeInfo:
    return PairExchangeInfo(
        pair=product["product_id"],
        base_asset=BaseAssetInfo(
            name=product.get("base_currency_id", ""),
            min_amount=to_float(product.get("base_min_size")),
            max_amount=to_float(product.get("base_max_size")),
            step=to_float(product.get("base_increment")),
            max_market_amount=to_float(product.get("base_max_size")),
        ),
        quote_asset=QuoteAssetInfo(
            name=product.get("quote_currency_id", ""),
            min_amount=to_float(product.get("quote_min_size")),
        ),
        max_orders=MAX_ORDERS,
        price_asset_precision=get_price_precision(product.get("price_increment") or "1"),
    )


def convert_candle(candle: Dict[str, Any]) -> Candle:
    return Candle(
        open=str(candle["open"]),
        high=str(candle["high"]),
        low=str(candle["low"]),
        close=str(candle["close"]),
        volume=str(candle.get("volume", "0")),
        time=int(candle["start"]) * 1000,
    )


# ============================================
# Adapter
# ============================================

class CoinbaseExchange(ExchangeInterface):
    """
    Coinbase Advanced Trade Connector (spot)

    Example:
        >>> exchange = CoinbaseExchange(key="organizations/.../apiKeys/...", secret="-----BEGIN EC...",
        ...                             keys_type=CoinbaseKeysType.cloud)
        >>> envelope = await exchange.latest_price("BTC-USD")
    """

    name = "coinbase"

    capabilities = {
        "spot": True,
        "futures": False,
        "hedge": False,
        "rebates": False,
        "affiliate": False
    }

    supported_futures = (Futures.null,)

    retry_signatures = RETRY_SIGNATURES

    def create_client(self) -> CoinbaseAPIClient:
        signer = build_signer(
            self.name,
            key=self.key,
            secret=self.secret,
            keys_type=self.keys_type
        )
        return CoinbaseAPIClient(signer=signer)

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        return lambda: self.client.request(method, path, params, signed=signed)

    # ============================================
    # Account
    # ============================================

    async def get_balance(self):
        async def fetch():
            accounts = []
            cursor = None
            while True:
                page = await self.client.request(
                    "GET",
                    "/api/v3/brokerage/accounts",
                    {"limit": 250, "cursor": cursor},
                    signed=True
                )
                accounts.extend(page.get("accounts", []))
                cursor = page.get("cursor")
                if not page.get("has_next") or not cursor:
                    return accounts

        return await self._request(
            "getBalance",
            fetch,
            lambda raw: [
                Asset(
                    asset=a["currency"],
                    free=to_float((a.get("available_balance") or {}).get("value")),
                    locked=to_float((a.get("hold") or {}).get("value")),
                )
                for a in raw
            ],
            limit_key=PRIVATE
        )

    async def get_uid(self):
        return self.return_good(self.get_empty_time_profile())(-1)

    async def verify_permissions(self, trade_type=None):
        """A key that lists at least one account is accepted; any failure is a plain False."""
        listed = await self._request(
            "verifyPermissions",
            self._call("GET", "/api/v3/brokerage/accounts", {"limit": 1}),
            lambda raw: bool((raw or {}).get("accounts")),
            limit_key=PRIVATE
        )
        if not listed.ok:
            return self.return_good(listed.time_profile)(False)
        return listed

    # ============================================
    # Orders
    # ============================================

    def _lookup(self, order_id: str, delays=ORDER_LOOKUP_DELAYS):
        """Fetch an order, waiting while Coinbase answers it as missing."""
        path = f"/api/v3/brokerage/orders/historical/{order_id}"

        async def lookup():
            for attempt in range(len(delays) + 1):
                try:
                    answer = await self.client.request("GET", path, signed=True)
                except ExchangeAPIError as e:
                    if e.status != 404 or attempt == len(delays):
                        raise
                    answer = None
                if answer and answer.get("order"):
                    return answer["order"]
                if attempt == len(delays):
                    break
                self.logger.info(f"Order {order_id} not found. Wait {delays[attempt]}s")
                await self._sleep(delays[attempt])
            raise ExchangeAPIError("Coinbase order not found after execution.")

        return lookup

    async def _get_order(self, order_id: str, time_profile=None, delays=ORDER_LOOKUP_DELAYS):
        return await self._request(
            "getOrder",
            self._lookup(order_id, delays),
            convert_order,
            limit_key=PRIVATE,
            time_profile=time_profile
        )

    async def open_order(self, order: OrderRequest):
        if order.type == OrderType.LIMIT:
            configuration = {
                "limit_limit_gtc": {
                    "base_size": convert_number_to_string(order.quantity),
                    "limit_price": convert_number_to_string(order.price),
                    "post_only": False,
                }
            }
        else:
            configuration = {"market_market_ioc": {"base_size": convert_number_to_string(order.quantity)}}
        request = {
            "product_id": order.symbol,
            "side": "BUY" if order.side == OrderSide.BUY else "SELL",
            "order_configuration": configuration,
            "client_order_id": order.new_client_order_id or "",
        }
        placed = await self._request(
            "openOrder",
            self._call("POST", "/api/v3/brokerage/orders", request),
            lambda raw: (raw.get("success_response") or {}).get("order_id") or raw.get("order_id"),
            limit_key=PRIVATE
        )
        if not placed.ok:
            return placed
        if order.type == OrderType.MARKET:
            await self._sleep(MARKET_ORDER_SETTLE)
        return await self._get_order(placed.data, placed.time_profile)

    async def get_order(self, symbol: str, new_client_order_id: str):
        return await self._get_order(new_client_order_id)

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        def normalize(raw):
            results = raw.get("results") or []
            if not results or not results[0].get("success"):
                reason = results[0].get("failure_reason") if results else None
                raise ExchangeAPIError(reason or "UNKNOWN_FAILURE_REASON")
            return results[0].get("order_id") or new_client_order_id

        cancelled = await self._request(
            "cancelOrder",
            self._call("POST", "/api/v3/brokerage/orders/batch_cancel", {"order_ids": [new_client_order_id]}),
            normalize,
            limit_key=PRIVATE
        )
        if not cancelled.ok:
            return cancelled
        return await self._get_order(cancelled.data, cancelled.time_profile, delays=())

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        return await self.cancel_order(symbol, order_id)

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        return await self._request(
            "getAllOpenOrders",
            self._call(
                "GET",
                "/api/v3/brokerage/orders/historical/batch",
                {"order_status": "OPEN", "product_ids": symbol}
            ),
            lambda raw: [convert_order(o) for o in raw.get("orders", [])],
            limit_key=PRIVATE
        )

    # ============================================
    # Market Data
    # ============================================

    async def _products(self, name: str, normalize):
        return await self._request(
            name,
            self._call("GET", "/api/v3/brokerage/market/products", signed=False),
            lambda raw: normalize(raw.get("products", [])),
            limit_key=PUBLIC,
            private=False
        )

    async def get_all_exchange_info(self):
        return await self._products("getAllExchangeInfo", lambda products: [convert_product(p) for p in products])

    async def get_exchange_info(self, symbol: str):
        all_info = await self.get_all_exchange_info()
        if not all_info.ok:
            return all_info
        for info in all_info.data:
            if info.pair == symbol:
                return self.return_good(all_info.time_profile)(ExchangeInfo(**info.model_dump(exclude={"pair"})))
        return self.return_bad(all_info.time_profile)(f"Symbol {symbol} not found")

    async def get_all_prices(self):
        return await self._products(
            "getAllPrices",
            lambda products: [PairPrice(pair=p["product_id"], price=to_float(p.get("price"))) for p in products]
        )

    async def latest_price(self, symbol: str):
        return await self._request(
            "latestPrice",
            self._call("GET", f"/api/v3/brokerage/market/products/{symbol}", signed=False),
            lambda raw: to_float(raw.get("price")),
            limit_key=PUBLIC,
            private=False
        )

    async def get_candles(
        self,
        symbol: str,
        interval: ExchangeIntervals,
        start: Optional[int] = None,
        end: Optional[int] = None,
        count: Optional[int] = None
    ):
        granularity, interval_ms = INTERVALS[ExchangeIntervals(interval)]
        if start and end and (end - start) // interval_ms > MAX_CANDLES:
            end = start + MAX_CANDLES * interval_ms
        params = {
            "start": str(start // 1000) if start else "0",
            "end": str(-(-(end or now_ms()) // 1000)),
            "granularity": granularity,
        }
        return await self._request(
            "getCandles",
            self._call("GET", f"/api/v3/brokerage/market/products/{symbol}/candles", params, signed=False),
            lambda raw: sorted((convert_candle(c) for c in raw.get("candles", [])), key=lambda c: c.time),
            limit_key=PUBLIC,
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    # ============================================
    # Fees
    # ============================================

    async def get_all_user_fees(self):
        products = await self.get_all_exchange_info()
        if not products.ok:
            return products

        def normalize(raw):
            tier = raw.get("fee_tier") or {}
            maker = to_float(tier.get("maker_fee_rate"))
            taker = to_float(tier.get("taker_fee_rate"))
            return [PairUserFee(pair=info.pair, maker=maker, taker=taker) for info in products.data]

        return await self._request(
            "getAllUserFees",
            self._call("GET", "/api/v3/brokerage/transaction_summary"),
            normalize,
            limit_key=PRIVATE,
            time_profile=products.time_profile
        )

    async def get_user_fees(self, symbol: str):
        fees = await self.get_all_user_fees()
        if not fees.ok:
            return fees
        for fee in fees.data:
            if fee.pair == symbol:
                return self.return_good(fees.time_profile)(UserFee(maker=fee.maker, taker=fee.taker))
        return self.return_good(fees.time_profile)(DEFAULT_FEE.model_copy())


__all__ = ["CoinbaseExchange", "convert_order", "convert_product"]
