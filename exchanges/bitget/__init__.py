"""
Bitget Exchange Connector

This module implements the ExchangeInterface for Bitget spot and the
v2 "mix" futures markets (USDT-M / USDC-M linear, COIN-M inverse).

API Documentation:
    https://www.bitget.com/api-doc/spot/intro
    https://www.bitget.com/api-doc/contract/intro

Product Types:
    usdm  -> USDT-FUTURES, USDC-FUTURES
    coinm -> COIN-FUTURES
    In the demo environment every product type and margin coin carries an
    "S" prefix (SUSDT-FUTURES, SUSDT, ...).

Endpoints Used:
    - GET  /api/v2/spot/account/info | /api/v2/spot/account/assets
    - POST /api/v2/spot/trade/place-order | /api/v2/spot/trade/cancel-order
    - GET  /api/v2/spot/trade/orderInfo | /api/v2/spot/trade/history-orders | /api/v2/spot/trade/unfilled-orders
    - GET  /api/v2/spot/public/symbols | /api/v2/spot/market/tickers
    - GET  /api/v2/spot/market/candles | /api/v2/spot/market/history-candles
    - GET  /api/v2/common/trade-rate
    - GET  /api/v2/mix/account/accounts | /api/v2/mix/account/account
    - POST /api/v2/mix/account/set-leverage | set-margin-mode | set-position-mode
    - POST /api/v2/mix/order/place-order | /api/v2/mix/order/cancel-order
    - GET  /api/v2/mix/order/detail | /api/v2/mix/order/orders-pending
    - GET  /api/v2/mix/market/contracts | /api/v2/mix/market/tickers | /api/v2/mix/market/history-candles
    - GET  /api/v2/mix/position/all-position

Limitations:
    - Public trades and rebates: not available
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Tuple

from core.config import settings
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
    LeverageBracket,
    MarginType,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    PairExchangeInfo,
    PairPrice,
    PairUserFee,
    PositionInfo,
    PositionSide,
    PriceMultiplier,
    QuoteAssetInfo,
    TimeProfile,
    UserFee,
)
from core.transport import build_signer
from core.utils.numbers import convert_number_to_string, to_float

from .api_client import BitgetAPIClient
from .limits import REQUESTS, WINDOWS, get_limiter

RETRY_CODES = ["10006", "12816", "12146", "12147", "5004", "10000", "10016", "502", "12149", "429"]

# (futures granularity, spot granularity)
INTERVALS = {
    ExchangeIntervals.oneM: ("1m", "1min"),
    ExchangeIntervals.threeM: ("3m", "3min"),
    ExchangeIntervals.fiveM: ("5m", "5min"),
    ExchangeIntervals.fifteenM: ("15m", "15min"),
    ExchangeIntervals.thirtyM: ("30m", "30min"),
    ExchangeIntervals.oneH: ("1H", "1h"),
    # spot has no 2 hour candle
    ExchangeIntervals.twoH: ("2H", "1h"),
    ExchangeIntervals.fourH: ("4H", "4h"),
    ExchangeIntervals.eightH: ("6Hutc", "6Hutc"),
    ExchangeIntervals.oneD: ("1Dutc", "1Dutc"),
    ExchangeIntervals.oneW: ("1Wutc", "1Wutc"),
}

CANDLES_LIMIT = 200

# concurrent trade-rate lookups while collecting all fees
FEE_CHUNK = 8

MARKET_ORDER_SETTLE = 1.0

HEDGE_MODE = "hedge_mode"
ONE_WAY_MODE = "one_way_mode"


# ============================================
# Mapping Functions
# ============================================

def convert_order_status(state: Optional[str]) -> OrderStatus:
    if state == "live":
        return OrderStatus.NEW
    if state == "partially_filled":
        return OrderStatus.PARTIALLY_FILLED
    if state == "filled":
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def _order_type(value: Optional[str]) -> OrderType:
    return OrderType.LIMIT if value == "limit" else OrderType.MARKET


def step_from_places(places: Any) -> float:
    """Decimal places to step size: 0 -> 1, 3 -> 0.001."""
    places = int(to_float(places))
    return 1.0 if places <= 0 else float(f"1e-{places}")


def convert_spot_order(order: Dict[str, Any]) -> CommonOrder:
    price = to_float(order.get("priceAvg")) or to_float(order.get("price"))
    if order.get("orderType") == "market" and to_float(order.get("basePrice")):
        price = to_float(order.get("basePrice"))
    return CommonOrder(
        symbol=order["symbol"],
        order_id=order["orderId"],
        client_order_id=order.get("clientOid") or "",
        transact_time=int(order.get("cTime") or 0),
        update_time=int(order.get("uTime") or 0),
        price=convert_number_to_string(price),
        orig_qty=str(order.get("size", "0")),
        executed_qty=str(order.get("baseVolume") or "0"),
        cummulative_quote_qty=str(order.get("quoteVolume") or "0"),
        status=convert_order_status(order.get("status")),
        type=_order_type(order.get("orderType")),
        side=OrderSide.SELL if order.get("side") == "sell" else OrderSide.BUY,
        fills=[],
    )


def convert_futures_order(order: Dict[str, Any]) -> CommonOrder:
    """
    Mix order to CommonOrder.

    In hedge mode Bitget reports the position direction in ``side`` and the
    action in ``tradeSide``: closing a long is a "buy" + "close", which is a
    SELL in the shared model.
    """
    pos_side = order.get("posSide")
    side = order.get("side")
    if pos_side == "net" or order.get("tradeSide") in (None, "open"):
        common_side = OrderSide.SELL if side == "sell" else OrderSide.BUY
    else:
        common_side = OrderSide.SELL if side == "buy" else OrderSide.BUY

    if pos_side == "net":
        position_side = PositionSide.BOTH
    elif pos_side == "long":
        position_side = PositionSide.LONG
    else:
        position_side = PositionSide.SHORT

    price = order.get("price") or "0"
    if order.get("orderType") == "market" and to_float(order.get("priceAvg")):
        price = convert_number_to_string(to_float(order.get("priceAvg")))

    return CommonOrder(
        symbol=order["symbol"],
        order_id=order["orderId"],
        client_order_id=order.get("clientOid") or "",
        transact_time=int(order.get("cTime") or 0),
        update_time=int(order.get("uTime") or 0),
        price=str(price),
        orig_qty=str(order.get("size", "0")),
        executed_qty=str(order.get("baseVolume") or "0"),
        cummulative_quote_qty=str(order.get("quoteVolume") or "0"),
        status=convert_order_status(order.get("state") or order.get("status")),
        type=_order_type(order.get("orderType")),
        side=common_side,
        fills=[],
        reduce_only=str(order.get("reduceOnly", "")).lower() == "yes",
        position_side=position_side,
    )


def convert_spot_symbol(symbol: Dict[str, Any], prices: Dict[str, float]) -> PairExchangeInfo:
    """
    Spot symbol to PairExchangeInfo.

    ``minTradeUSDT`` is expressed in USDT; for other quote coins it is
    converted through the quote coin's USDT price.
    """
    quote = symbol.get("quoteCoin", "")
    min_usdt = to_float(symbol.get("minTradeUSDT"))
    if quote in ("USDT", "USDC"):
        quote_min = min_usdt
    else:
        quote_min = min_usdt / (prices.get(f"{quote}USDT") or 1)
    return PairExchangeInfo(
        pair=symbol["symbol"],
        base_asset=BaseAssetInfo(
            name=symbol.get("baseCoin", ""),
            min_amount=to_float(symbol.get("minTradeAmount")),
            max_amount=to_float(symbol.get("maxTradeAmount")),
            step=step_from_places(symbol.get("quantityPrecision")),
            max_market_amount=0,
        ),
        quote_asset=QuoteAssetInfo(
            name=quote,
            min_amount=quote_min,
            precision=int(to_float(symbol.get("quotePrecision"))),
        ),
        max_orders=int(to_float(symbol.get("orderQuantity"))),
        price_asset_precision=int(to_float(symbol.get("pricePrecision"))),
        price_multiplier=PriceMultiplier(
            up=to_float(symbol.get("sellLimitPriceRatio")),
            down=to_float(symbol.get("buyLimitPriceRatio")),
            decimals=0,
        ),
    )


def convert_contract(contract: Dict[str, Any]) -> PairExchangeInfo:
    price_place = int(to_float(contract.get("pricePlace")))
    return PairExchangeInfo(
        pair=contract["symbol"],
        base_asset=BaseAssetInfo(
            name=contract.get("baseCoin", ""),
            min_amount=to_float(contract.get("minTradeNum")),
            max_amount=0,
            step=step_from_places(contract.get("volumePlace")),
            max_market_amount=0,
            multiplier=to_float(contract.get("sizeMultiplier")),
        ),
        quote_asset=QuoteAssetInfo(name=contract.get("quoteCoin", ""), min_amount=to_float(contract.get("minTradeUSDT"))),
        max_orders=int(to_float(contract.get("maxSymbolOrderNum"))),
        price_asset_precision=price_place,
        price_multiplier=PriceMultiplier(
            up=to_float(contract.get("sellLimitPriceRatio")),
            down=to_float(contract.get("buyLimitPriceRatio")),
            decimals=price_place,
        ),
    )


def convert_position(position: Dict[str, Any]) -> PositionInfo:
    margin = str(position.get("marginSize", "0"))
    if position.get("posMode") == HEDGE_MODE:
        side = PositionSide.LONG if position.get("holdSide") == "long" else PositionSide.SHORT
    else:
        side = PositionSide.LONG if to_float(position.get("total")) > 0 else PositionSide.SHORT
    return PositionInfo(
        symbol=position["symbol"],
        initial_margin=margin,
        maint_margin=margin,
        unrealized_profit=str(position.get("unrealizedPL", "0")),
        position_initial_margin=margin,
        open_order_initial_margin=margin,
        leverage=str(position.get("leverage", "1")),
        isolated=position.get("marginMode") == "isolated",
        entry_price=str(position.get("openPriceAvg", "0")),
        max_notional="",
        position_side=side,
        position_amt=str(position.get("total", "0")),
        notional="",
        isolated_wallet="",
        update_time=int(position.get("uTime") or 0),
        bid_notional="",
        ask_notional="",
    )


def convert_candle(kline: List[Any], volume_index: int) -> Candle:
    return Candle(
        open=kline[1],
        high=kline[2],
        low=kline[3],
        close=kline[4],
        volume=kline[volume_index],
        time=int(kline[0]),
    )


def _is_isolated_hedge(account: Optional[Dict[str, Any]]) -> bool:
    account = account or {}
    return account.get("marginMode") == "isolated" and account.get("posMode") == HEDGE_MODE


# ============================================
# Adapter
# ============================================

class BitgetExchange(ExchangeInterface):
    """
    Bitget Exchange Connector

    Every request is counted against the global "requests" quota; heavy
    endpoints also reserve their own one-second window.

    Example:
        >>> exchange = BitgetExchange(Futures.usdm, key="...", secret="...", passphrase="...")
        >>> exchange.product_type_for("BTCUSDT")
        'USDT-FUTURES'
    """

    name = "bitget"

    capabilities = {
        "spot": True,
        "futures": True,
        "hedge": True,
        "rebates": False,
        "affiliate": True
    }

    supported_futures = (Futures.null, Futures.usdm, Futures.coinm)

    retry_signatures = (
        RetrySignature(
            "bitget order not indexed yet",
            patterns=("the data of the order cannot be found",),
            delay=1
        ),
        transient_codes("bitget transient code", RETRY_CODES),
    )

    def __init__(
        self,
        futures: Futures = Futures.null,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        **kwargs: Any
    ):
        super().__init__(key, secret, passphrase, futures, **kwargs)

    @property
    def demo(self) -> bool:
        if self.environment:
            return self.environment == "demo"
        return settings.bitget_demo

    def _demo_prefix(self, value: str) -> str:
        return f"S{value}" if self.demo else value

    @property
    def product_types(self) -> Tuple[str, ...]:
        if self.is_coinm:
            return (self._demo_prefix("COIN-FUTURES"),)
        return self._demo_prefix("USDT-FUTURES"), self._demo_prefix("USDC-FUTURES")

    def product_type_for(self, symbol: str) -> str:
        if self.is_coinm:
            return self._demo_prefix("COIN-FUTURES")
        if symbol.endswith("USDT"):
            return self._demo_prefix("USDT-FUTURES")
        return self._demo_prefix("USDC-FUTURES")

    def margin_coin_for(self, symbol: str, product_type: Optional[str] = None) -> str:
        """
        Margin coin of a futures pair: the settlement stablecoin for linear
        contracts, the base coin for inverse ones.

        Example:
            >>> exchange.margin_coin_for("BTCUSD", "COIN-FUTURES")
            'BTC'
        """
        product_type = product_type or self.product_type_for(symbol)
        if product_type.lstrip("S").startswith("USDT"):
            return self._demo_prefix("USDT")
        if product_type.lstrip("S").startswith("USDC"):
            return self._demo_prefix("USDC")
        return re.sub(r"S?USD\w*$" if self.demo else r"USD\w*$", "", symbol)

    def create_client(self) -> BitgetAPIClient:
        signer = build_signer(
            self.name,
            key=self.key,
            secret=self.secret,
            passphrase=self.passphrase,
            environment=self.environment,
            code=self.code
        )
        return BitgetAPIClient(signer=signer)

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    async def check_limits(self, limit_key: str, weight: float, time_profile: TimeProfile) -> None:
        await super().check_limits(REQUESTS, weight, time_profile)
        if limit_key != REQUESTS and limit_key in WINDOWS:
            await super().check_limits(limit_key, weight, time_profile)

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        return lambda: self.client.request(method, path, params, signed=signed)

    def _per_product(self, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        """Call ``path`` once per product type and concatenate the answers."""
        async def fetch():
            collected = []
            for product_type in self.product_types:
                collected.append(
                    (product_type, await self.client.request("GET", path, {**(params or {}), "productType": product_type}, signed=signed))
                )
            return collected
        return fetch

    # ============================================
    # Account
    # ============================================

    async def get_balance(self):
        if self.is_futures:
            def normalize(answers):
                balances = []
                for _, accounts in answers:
                    for account in accounts or []:
                        locked = to_float(account.get("locked"))
                        balances.append(Asset(
                            asset=account["marginCoin"],
                            free=to_float(account.get("available")) - locked,
                            locked=locked + to_float(account.get("isolatedMargin")),
                        ))
                return balances

            return await self._request(
                "futures_getBalance",
                self._per_product("/api/v2/mix/account/accounts"),
                normalize,
                weight=len(self.product_types)
            )

        return await self._request(
            "getBalance",
            self._call("GET", "/api/v2/spot/account/assets"),
            lambda raw: [
                Asset(
                    asset=b["coin"],
                    free=to_float(b.get("available")),
                    locked=to_float(b.get("locked")) + to_float(b.get("frozen")),
                )
                for b in raw or []
            ]
        )

    async def _spot_account(self, name: str, normalize):
        return await self._request(name, self._call("GET", "/api/v2/spot/account/info"), normalize)

    async def get_uid(self):
        return await self._spot_account("getUid", lambda raw: (raw or {}).get("userId") or -1)

    async def get_affiliate(self, uid):
        return await self._spot_account("getAffiliate", lambda raw: str((raw or {}).get("inviterId")) == str(uid))

    async def verify_permissions(self, trade_type=None):
        """``coow`` (contract orders) for futures keys, ``stow`` (spot orders) otherwise."""
        authority = "coow" if self.is_futures else "stow"
        return await self._spot_account("verifyPermissions", lambda raw: authority in ((raw or {}).get("authorities") or []))

    # ============================================
    # Orders
    # ============================================

    async def _lookup(self, symbol: str, client_order_id: str, time_profile: Optional[TimeProfile] = None):
        if self.is_futures:
            params = {
                "symbol": symbol,
                "productType": self.product_type_for(symbol),
                "clientOid": client_order_id,
            }
            return await self._request(
                "futures_getOrder",
                self._call("GET", "/api/v2/mix/order/detail", params),
                convert_futures_order,
                time_profile=time_profile
            )

        async def fetch():
            orders = await self.client.request("GET", "/api/v2/spot/trade/orderInfo", {"clientOid": client_order_id}, signed=True)
            if orders:
                return orders[0]
            history = await self.client.request("GET", "/api/v2/spot/trade/history-orders", {"symbol": symbol}, signed=True)
            for order in history or []:
                if order.get("clientOid") == client_order_id:
                    return order
            raise ExchangeAPIError("Order not found")

        return await self._request("getOrder", fetch, convert_spot_order, weight=2, time_profile=time_profile)

    async def open_order(self, order: OrderRequest):
        market = order.type == OrderType.MARKET
        if self.is_futures:
            path = "/api/v2/mix/order/place-order"
            product_type = self.product_type_for(order.symbol)
            request: Dict[str, Any] = {
                "symbol": order.symbol,
                "productType": product_type,
                "marginCoin": self.margin_coin_for(order.symbol, product_type),
                "marginMode": "isolated" if order.margin_type == MarginType.ISOLATED else "crossed",
                "size": convert_number_to_string(order.quantity),
                "orderType": "market" if market else "limit",
                "clientOid": order.new_client_order_id,
            }
            position_side = order.position_side or PositionSide.BOTH
            if position_side == PositionSide.BOTH:
                request["side"] = "buy" if order.side == OrderSide.BUY else "sell"
            else:
                # hedge mode: side names the position, tradeSide the action
                request["side"] = "buy" if position_side == PositionSide.LONG else "sell"
                opening = (order.side == OrderSide.BUY) == (position_side == PositionSide.LONG)
                request["tradeSide"] = "open" if opening else "close"
                request["reduceOnly"] = "YES" if order.reduce_only else "NO"
        else:
            path = "/api/v2/spot/trade/place-order"
            request = {
                "symbol": order.symbol,
                "side": "buy" if order.side == OrderSide.BUY else "sell",
                "orderType": "market" if market else "limit",
                "force": None if market else "gtc",
                "size": convert_number_to_string(order.quantity),
                "clientOid": order.new_client_order_id,
            }
        if not market:
            request["price"] = convert_number_to_string(order.price)

        placed = await self._request(
            "futures_openOrder" if self.is_futures else "openOrder",
            self._call("POST", path, request),
            lambda raw: raw.get("clientOid") or order.new_client_order_id
        )
        if not placed.ok:
            return placed
        if market:
            await self._sleep(MARKET_ORDER_SETTLE)
        return await self._lookup(order.symbol, placed.data, placed.time_profile)

    async def get_order(self, symbol: str, new_client_order_id: str):
        return await self._lookup(symbol, new_client_order_id)

    async def _cancel(self, name: str, symbol: str, params: Dict[str, Any]):
        if self.is_futures:
            path = "/api/v2/mix/order/cancel-order"
            params = {"productType": self.product_type_for(symbol), **params}
        else:
            path = "/api/v2/spot/trade/cancel-order"
        fallback = params.get("clientOid")

        def normalize(raw):
            client_order_id = (raw or {}).get("clientOid") or fallback
            if not client_order_id:
                raise ExchangeAPIError("Order not found")
            return client_order_id

        cancelled = await self._request(
            name,
            self._call("POST", path, {"symbol": symbol, **params}),
            normalize
        )
        if not cancelled.ok:
            return cancelled
        return await self._lookup(symbol, cancelled.data, cancelled.time_profile)

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        return await self._cancel("cancelOrder", symbol, {"clientOid": new_client_order_id})

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        return await self._cancel("cancelOrderByOrderIdAndSymbol", symbol, {"orderId": order_id})

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        if self.is_futures:
            product_types = [self.product_type_for(symbol)] if symbol else list(self.product_types)

            async def fetch():
                orders = []
                for product_type in product_types:
                    answer = await self.client.request(
                        "GET",
                        "/api/v2/mix/order/orders-pending",
                        {"productType": product_type, "symbol": symbol},
                        signed=True
                    )
                    orders.extend((answer or {}).get("entrustedList") or [])
                return orders

            return await self._request(
                "futures_getAllOpenOrders",
                fetch,
                lambda raw: [convert_futures_order(o) for o in raw],
                weight=len(product_types)
            )

        return await self._request(
            "getAllOpenOrders",
            self._call("GET", "/api/v2/spot/trade/unfilled-orders", {"symbol": symbol}),
            lambda raw: [convert_spot_order(o) for o in raw or []]
        )

    # ============================================
    # Market Data
    # ============================================

    async def get_all_prices(self):
        def tickers(raw):
            return [PairPrice(pair=t["symbol"], price=to_float(t.get("lastPr"))) for t in raw or []]

        if self.is_futures:
            return await self._request(
                "futures_getAllPrices",
                self._per_product("/api/v2/mix/market/tickers", signed=False),
                lambda answers: [price for _, raw in answers for price in tickers(raw)],
                weight=len(self.product_types),
                limit_key="getFuturesAllTickers",
                private=False
            )
        return await self._request(
            "getAllPrices",
            self._call("GET", "/api/v2/spot/market/tickers", signed=False),
            tickers,
            limit_key="getSpotTicker",
            private=False
        )

    async def latest_price(self, symbol: str):
        prices = await self.get_all_prices()
        if not prices.ok:
            return prices
        for price in prices.data:
            if price.pair == symbol:
                return self.return_good(prices.time_profile)(price.price)
        return self.return_bad(prices.time_profile)(f"Symbol {symbol} not found")

    async def _instruments(self, time_profile: Optional[TimeProfile] = None):
        """Raw tradable symbols (spot) or contracts (futures)."""
        if self.is_futures:
            return await self._request(
                "futures_getAllExchangeInfo",
                self._per_product("/api/v2/mix/market/contracts", signed=False),
                lambda answers: [
                    c for _, raw in answers for c in raw or [] if c.get("symbolStatus") == "normal"
                ],
                weight=len(self.product_types),
                limit_key="getAllExchangeInfo",
                time_profile=time_profile,
                private=False
            )
        return await self._request(
            "getAllExchangeInfo",
            self._call("GET", "/api/v2/spot/public/symbols", signed=False),
            lambda raw: [s for s in raw or [] if s.get("status") == "online"],
            limit_key="getSpotSymbolInfo",
            time_profile=time_profile,
            private=False
        )

    async def get_all_exchange_info(self):
        if self.is_futures:
            contracts = await self._instruments()
            if not contracts.ok:
                return contracts
            return self.return_mapped(contracts.time_profile, lambda: [convert_contract(c) for c in contracts.data])

        prices = await self.get_all_prices()
        if not prices.ok:
            return prices
        symbols = await self._instruments(prices.time_profile)
        if not symbols.ok:
            return symbols
        by_pair = {p.pair: p.price for p in prices.data}
        return self.return_mapped(symbols.time_profile, lambda: [convert_spot_symbol(s, by_pair) for s in symbols.data])

    async def get_exchange_info(self, symbol: str):
        all_info = await self.get_all_exchange_info()
        if not all_info.ok:
            return all_info
        for info in all_info.data:
            if info.pair == symbol:
                return self.return_good(all_info.time_profile)(ExchangeInfo(**info.model_dump(exclude={"pair"})))
        return self.return_bad(all_info.time_profile)(f"Symbol {symbol} not found")

    async def get_candles(
        self,
        symbol: str,
        interval: ExchangeIntervals,
        start: Optional[int] = None,
        end: Optional[int] = None,
        count: Optional[int] = None
    ):
        futures_granularity, spot_granularity = INTERVALS[ExchangeIntervals(interval)]
        if self.is_futures:
            params = {
                "symbol": symbol,
                "productType": self.product_type_for(symbol),
                "granularity": futures_granularity,
                "startTime": start,
                "endTime": end,
                "limit": CANDLES_LIMIT,
            }
            return await self._request(
                "futures_getCandles",
                self._call("GET", "/api/v2/mix/market/history-candles", params, signed=False),
                lambda raw: [convert_candle(k, 6) for k in raw or []],
                limit_key="getFuturesHistoricCandles",
                private=False
            )

        if end:
            path = "/api/v2/spot/market/history-candles"
            params = {"symbol": symbol, "granularity": spot_granularity, "endTime": end, "limit": CANDLES_LIMIT}
        else:
            path = "/api/v2/spot/market/candles"
            params = {"symbol": symbol, "granularity": spot_granularity, "startTime": start, "limit": CANDLES_LIMIT}
        return await self._request(
            "getCandles",
            self._call("GET", path, params, signed=False),
            lambda raw: [convert_candle(k, 7) for k in raw or []],
            limit_key="getSpotHistoricCandles",
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    # ============================================
    # Fees
    # ============================================

    async def get_user_fees(self, symbol: str):
        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Fee not found")
            return UserFee(maker=to_float(raw.get("makerFeeRate")), taker=to_float(raw.get("takerFeeRate")))

        return await self._request(
            "getUserFees",
            self._call(
                "GET",
                "/api/v2/common/trade-rate",
                {"symbol": symbol, "businessType": "mix" if self.is_futures else "spot"}
            ),
            normalize
        )

    async def get_all_user_fees(self):
        """
        Account fees of every pair, looked up eight pairs at a time.

        A pair whose lookup fails falls back to the fee published with the
        instrument.
        """
        instruments = await self._instruments()
        if not instruments.ok:
            return instruments

        async def fee_of(instrument: Dict[str, Any]) -> PairUserFee:
            pair = instrument["symbol"]
            fee = await self.get_user_fees(pair)
            if fee.ok:
                return PairUserFee(pair=pair, maker=fee.data.maker, taker=fee.data.taker)
            self.logger.warning(f"Error getting fees for {pair} {fee.reason}")
            return PairUserFee(
                pair=pair,
                maker=to_float(instrument.get("makerFeeRate")),
                taker=to_float(instrument.get("takerFeeRate"))
            )

        fees: List[PairUserFee] = []
        for i in range(0, len(instruments.data), FEE_CHUNK):
            chunk = instruments.data[i:i + FEE_CHUNK]
            fees.extend(await asyncio.gather(*(fee_of(instrument) for instrument in chunk)))
        return self.return_good(instruments.time_profile)(fees)

    # ============================================
    # Futures
    # ============================================

    def _account_params(self, symbol: str) -> Dict[str, Any]:
        product_type = self.product_type_for(symbol)
        return {
            "symbol": symbol,
            "productType": product_type,
            "marginCoin": self.margin_coin_for(symbol, product_type),
        }

    async def _futures_account(self, name: str, symbol: str, normalize, time_profile=None):
        return await self._request(
            name,
            self._call("GET", "/api/v2/mix/account/account", self._account_params(symbol)),
            normalize,
            time_profile=time_profile
        )

    async def futures_change_leverage(self, symbol: str, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        account = await self._futures_account("futures_getAccount", symbol, _is_isolated_hedge)
        if not account.ok:
            return account
        isolated_hedge = account.data
        hold_sides = ["long", "short"] if isolated_hedge else [None]
        params = self._account_params(symbol)

        async def apply():
            for hold_side in hold_sides:
                await self.client.request(
                    "POST",
                    "/api/v2/mix/account/set-leverage",
                    {**params, "leverage": str(leverage), "holdSide": hold_side},
                    signed=True
                )

        return await self._request(
            "futures_changeLeverage",
            apply,
            lambda raw: int(leverage),
            weight=len(hold_sides),
            time_profile=account.time_profile
        )

    async def futures_change_margin_type(self, symbol: str, margin: MarginType, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        margin = MarginType(margin)
        return await self._request(
            "futures_changeMarginType",
            self._call(
                "POST",
                "/api/v2/mix/account/set-margin-mode",
                {**self._account_params(symbol), "marginMode": "isolated" if margin == MarginType.ISOLATED else "crossed"}
            ),
            lambda raw: margin,
            limit_key="setFuturesMarginMode"
        )

    async def futures_get_hedge(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        time_profile = None
        if not symbol:
            contracts = await self._instruments()
            if not contracts.ok:
                return contracts
            symbol = next((c.get("symbol") for c in contracts.data if c.get("symbol")), None)
            if not symbol:
                return self.return_bad(contracts.time_profile)("No contracts found")
            time_profile = contracts.time_profile
        return await self._futures_account(
            "futures_getHedge",
            symbol,
            lambda raw: (raw or {}).get("posMode") == HEDGE_MODE,
            time_profile
        )

    async def futures_set_hedge(self, value: bool):
        if not self.is_futures:
            return self.error_futures()
        mode = HEDGE_MODE if value else ONE_WAY_MODE

        async def apply():
            for product_type in self.product_types:
                await self.client.request(
                    "POST",
                    "/api/v2/mix/account/set-position-mode",
                    {"productType": product_type, "posMode": mode},
                    signed=True
                )

        return await self._request(
            "futures_setHedge",
            apply,
            lambda raw: bool(value),
            weight=len(self.product_types),
            limit_key="setFuturesPositionMode"
        )

    async def futures_leverage_bracket(self):
        if not self.is_futures:
            return self.error_futures()
        contracts = await self._instruments()
        if not contracts.ok:
            return contracts
        return self.return_mapped(contracts.time_profile, lambda: [
            LeverageBracket(
                symbol=c["symbol"],
                leverage=int(to_float(c.get("maxLever"))) or 100,
                min=int(to_float(c.get("minLever"))) or 1,
            )
            for c in contracts.data
        ])

    async def futures_get_positions(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        product_types = [self.product_type_for(symbol)] if symbol else list(self.product_types)

        async def fetch():
            positions = []
            for product_type in product_types:
                answer = await self.client.request(
                    "GET",
                    "/api/v2/mix/position/all-position",
                    {"productType": product_type},
                    signed=True
                )
                positions.extend(answer or [])
            return positions

        return await self._request(
            "futures_getPositions",
            fetch,
            lambda raw: [convert_position(p) for p in raw if symbol is None or p.get("symbol") == symbol],
            weight=len(product_types)
        )


__all__ = ["BitgetExchange", "convert_spot_order", "convert_futures_order", "convert_contract", "convert_spot_symbol"]
