"""
Bybit Exchange Connector

This module implements the ExchangeInterface for Bybit spot, linear (USDT/USDC)
and inverse contracts through the unified v5 API.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/intro

Endpoints Used (category = spot | linear | inverse):
    - GET  /v5/account/info                 - Account type (classic / unified)
    - GET  /v5/account/wallet-balance       - Balances
    - GET  /v5/account/fee-rate             - Fee rates
    - POST /v5/order/create | /v5/order/cancel
    - GET  /v5/order/realtime | /v5/order/history
    - GET  /v5/market/instruments-info | /v5/market/tickers | /v5/market/kline
    - POST /v5/position/set-leverage | /v5/position/switch-isolated | /v5/position/switch-mode
    - POST /v5/account/set-margin-mode      - Margin mode of unified accounts
    - GET  /v5/position/list                - Positions / hedge mode
    - GET  /v5/user/query-api | /v5/user/aff-customer-info

Regional hosts are selected with the ``bybit_host`` credential
(see core.schemas.BYBIT_HOST_MAP).

Limitations:
    - Public trades and rebates: not available
"""

from typing import Any, Dict, List, Optional

from core.exceptions import ExchangeAPIError
from core.exchange_interface import ExchangeInterface
from core.rate_limit import RateLimiter
from core.retry import transient_codes
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
    QuoteAssetInfo,
    UserFee,
)
from core.transport import build_signer
from core.utils.numbers import convert_number_to_string, get_price_precision, to_float

from .api_client import BybitAPIClient
from .limits import get_limiter

RETRY_CODES = [10006, 12816, 12146, 12147, 5004, 10000, 10016, 502, 12149]

INTERVALS = {
    ExchangeIntervals.oneM: "1",
    ExchangeIntervals.threeM: "3",
    ExchangeIntervals.fiveM: "5",
    ExchangeIntervals.fifteenM: "15",
    ExchangeIntervals.thirtyM: "30",
    ExchangeIntervals.oneH: "60",
    ExchangeIntervals.twoH: "120",
    ExchangeIntervals.fourH: "240",
    ExchangeIntervals.eightH: "360",
    ExchangeIntervals.oneD: "D",
    ExchangeIntervals.oneW: "W",
}

POSITION_IDX = {PositionSide.BOTH: 0, PositionSide.LONG: 1, PositionSide.SHORT: 2}

MAX_ORDERS = 500

# unifiedMarginStatus of /v5/account/info: 1 = classic account
CLASSIC_ACCOUNT = 1


# ============================================
# Mapping Functions
# ============================================

def convert_order_status(order: Dict[str, Any]) -> OrderStatus:
    status = order.get("orderStatus")
    if status in ("New", "Created", "Untriggered"):
        return OrderStatus.NEW
    if status == "PartiallyFilled":
        return OrderStatus.PARTIALLY_FILLED
    if status == "Filled":
        return OrderStatus.FILLED
    # a market buy is cancelled once the quote budget is spent
    if status == "PartiallyFilledCanceled" and order.get("orderType") == "Market" and order.get("side") == "Buy":
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def convert_order(order: Dict[str, Any], futures: bool = False) -> CommonOrder:
    price = order.get("price", "0")
    if order.get("orderType") == "Market" and to_float(order.get("avgPrice")):
        price = order["avgPrice"]
    position_side = None
    if futures:
        position_side = {0: PositionSide.BOTH, 1: PositionSide.LONG}.get(order.get("positionIdx"), PositionSide.SHORT)
    return CommonOrder(
        symbol=order["symbol"],
        order_id=order["orderId"],
        client_order_id=order.get("orderLinkId", ""),
        transact_time=int(order.get("createdTime") or 0),
        update_time=int(order.get("updatedTime") or 0),
        price=str(price),
        orig_qty=str(order.get("qty", "0")),
        executed_qty=str(order.get("cumExecQty", "0")),
        cummulative_quote_qty=None if futures else convert_number_to_string(
            to_float(order.get("cumExecQty")) * to_float(order.get("avgPrice"))
        ),
        status=convert_order_status(order),
        type=OrderType.LIMIT if order.get("orderType") == "Limit" else OrderType.MARKET,
        side=OrderSide.SELL if order.get("side") == "Sell" else OrderSide.BUY,
        fills=[],
        reduce_only=order.get("reduceOnly"),
        position_side=position_side,
    )


def convert_instrument(instrument: Dict[str, Any], category: str) -> PairExchangeInfo:
    lot = instrument.get("lotSizeFilter", {})
    tick = instrument.get("priceFilter", {}).get("tickSize", "0.1")
    max_qty = to_float(lot.get("maxOrderQty"))
    if category == "spot":
        quote = instrument.get("quoteCoin", "")
        return PairExchangeInfo(
            pair=instrument["symbol"],
            max_orders=MAX_ORDERS,
            base_asset=BaseAssetInfo(
                name=instrument.get("baseCoin", ""),
                min_amount=to_float(lot.get("minOrderQty")),
                max_amount=max_qty,
                step=to_float(lot.get("basePrecision")),
                max_market_amount=max_qty,
            ),
            quote_asset=QuoteAssetInfo(
                name=quote,
                min_amount=1.0 if quote in ("USDC", "USDT") else to_float(lot.get("minOrderAmt")),
            ),
            price_asset_precision=get_price_precision(tick),
        )

    inverse = category == "inverse"
    return PairExchangeInfo(
        pair=instrument["symbol"],
        max_orders=MAX_ORDERS,
        base_asset=BaseAssetInfo(
            name=instrument.get("baseCoin", ""),
            min_amount=0.00000001 if inverse else to_float(lot.get("minOrderQty")),
            max_amount=max_qty,
            step=0.00000001 if inverse else to_float(lot.get("qtyStep")),
            max_market_amount=max_qty,
        ),
        quote_asset=QuoteAssetInfo(name=instrument.get("quoteCoin", ""), min_amount=1.0 if inverse else 0.0),
        price_asset_precision=get_price_precision(tick),
        type=instrument.get("contractType"),
    )


def convert_leverage_bracket(instrument: Dict[str, Any]) -> LeverageBracket:
    leverage = instrument.get("leverageFilter", {})
    return LeverageBracket(
        symbol=instrument["symbol"],
        leverage=int(to_float(leverage.get("maxLeverage"), 100)),
        step=int(to_float(leverage.get("leverageStep"), 1)) or 1,
        min=int(to_float(leverage.get("minLeverage"), 1)) or 1,
    )


def convert_position(position: Dict[str, Any]) -> PositionInfo:
    margin = str(position.get("positionIM", "0"))
    return PositionInfo(
        symbol=position["symbol"],
        initial_margin=margin,
        maint_margin=str(position.get("positionMM", "0")),
        unrealized_profit=str(position.get("unrealisedPnl", "0")),
        position_initial_margin=margin,
        open_order_initial_margin=margin,
        leverage=str(position.get("leverage", "1")),
        isolated=int(position.get("tradeMode", 0)) == 1,
        entry_price=str(position.get("avgPrice", "0")),
        max_notional="",
        position_side=PositionSide.LONG if position.get("side") == "Buy" else PositionSide.SHORT,
        position_amt=str(position.get("size", "0")),
        notional="",
        isolated_wallet="",
        update_time=int(position.get("updatedTime") or 0),
        bid_notional="",
        ask_notional="",
    )


def hedge_position_idx(side: OrderSide, reduce_only: bool) -> int:
    """positionIdx of a one-way order resent to a hedge-mode account."""
    if side == OrderSide.BUY:
        return 2 if reduce_only else 1
    return 1 if reduce_only else 2


# ============================================
# Adapter
# ============================================

class BybitExchange(ExchangeInterface):
    """
    Bybit Exchange Connector

    Attributes:
        category: v5 category of the bound market ("spot", "linear", "inverse")
        account_type: Cached unifiedMarginStatus of the account

    Example:
        >>> exchange = BybitExchange(Futures.usdm, key="...", secret="...", bybit_host=BybitHost.eu)
        >>> exchange.client.base_url
        'https://api.bybit.eu'
    """

    name = "bybit"

    capabilities = {
        "spot": True,
        "futures": True,
        "hedge": True,
        "rebates": False,
        "affiliate": True
    }

    supported_futures = (Futures.null, Futures.usdm, Futures.coinm)

    retry_signatures = (transient_codes("bybit transient code", RETRY_CODES),)

    def __init__(
        self,
        futures: Futures = Futures.null,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        **kwargs: Any
    ):
        super().__init__(key, secret, passphrase, futures, **kwargs)
        self.account_type: Optional[int] = None

    @property
    def category(self) -> str:
        if self.is_usdm:
            return "linear"
        if self.is_coinm:
            return "inverse"
        return "spot"

    def create_client(self) -> BybitAPIClient:
        signer = build_signer(self.name, key=self.key, secret=self.secret, bybit_host=self.bybit_host)
        return BybitAPIClient(host=self.bybit_host, signer=signer)

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        return lambda: self.client.request(method, path, params, signed=signed)

    async def get_account_type(self):
        """unifiedMarginStatus of the account (cached for the adapter's lifetime)."""
        if self.account_type is not None:
            return self.return_good(self.get_empty_time_profile())(self.account_type)

        def normalize(raw):
            self.account_type = int(raw.get("unifiedMarginStatus", CLASSIC_ACCOUNT))
            return self.account_type

        return await self._request("getAccountType", self._call("GET", "/v5/account/info"), normalize)

    # ============================================
    # Account
    # ============================================

    async def get_balance(self):
        account = await self.get_account_type()
        if not account.ok:
            return account
        classic = account.data == CLASSIC_ACCOUNT
        if classic:
            account_type = "CONTRACT" if self.is_futures else "SPOT"
        else:
            account_type = "CONTRACT" if self.is_coinm and account.data < 5 else "UNIFIED"

        def normalize(raw):
            balances = []
            for wallet in raw.get("list", []):
                if wallet.get("accountType") != account_type:
                    continue
                for coin in wallet.get("coin", []):
                    locked = to_float(coin.get("locked")) + to_float(coin.get("totalOrderIM")) + to_float(coin.get("totalPositionIM"))
                    if classic and not self.is_futures:
                        free = to_float(coin.get("free"))
                    else:
                        free = to_float(coin.get("walletBalance")) - locked
                    balances.append(Asset(asset=coin["coin"], free=free, locked=locked))
            return balances

        return await self._request(
            "getBalance",
            self._call("GET", "/v5/account/wallet-balance", {"accountType": account_type}),
            normalize,
            time_profile=account.time_profile
        )

    async def get_uid(self):
        def normalize(raw):
            if not raw.get("isMaster", True):
                return raw.get("parentUid") or -1
            return raw.get("userID", -1)

        return await self._request("getUid", self._call("GET", "/v5/user/query-api"), normalize)

    async def verify_permissions(self, trade_type=None):
        """Read-write key with order rights on the bound category."""
        def normalize(raw):
            permissions = raw.get("permissions") or {}
            if self.is_futures:
                contract = permissions.get("ContractTrade") or []
                allowed = ("Order" in contract and "Position" in contract) or "OptionsTrade" in (permissions.get("Options") or [])
            else:
                allowed = "SpotTrade" in (permissions.get("Spot") or [])
            if str(raw.get("readOnly")) != "0" or not allowed:
                raise ExchangeAPIError("Check permissions")
            return True

        return await self._request("verifyPermissions", self._call("GET", "/v5/user/query-api"), normalize)

    async def get_affiliate(self, uid):
        async def lookup():
            try:
                await self.client.request("GET", "/v5/user/aff-customer-info", {"uid": uid}, signed=True)
            except ExchangeAPIError as e:
                # a non-zero retCode means "not one of our customers"
                if e.status is None and e.code is not None and str(e.code) not in {str(c) for c in RETRY_CODES}:
                    return False
                raise
            return True

        return await self._request("getAffiliate", lookup)

    # ============================================
    # Orders
    # ============================================

    async def _find_order(self, params: Dict[str, Any]) -> Dict[str, Any]:
        for path in ("/v5/order/realtime", "/v5/order/history"):
            result = await self.client.request("GET", path, {"category": self.category, **params}, signed=True)
            orders = result.get("list", [])
            if orders:
                return orders[0]
        raise ExchangeAPIError("Order not found")

    async def _get_order(self, name: str, params: Dict[str, Any], time_profile=None):
        return await self._request(
            name,
            lambda: self._find_order(params),
            lambda raw: convert_order(raw, self.is_futures),
            time_profile=time_profile
        )

    async def open_order(self, order: OrderRequest):
        request: Dict[str, Any] = {
            "category": self.category,
            "symbol": order.symbol,
            "side": "Buy" if order.side == OrderSide.BUY else "Sell",
            "qty": convert_number_to_string(order.quantity),
            "orderLinkId": order.new_client_order_id or "",
            "orderType": "Market" if order.type == OrderType.MARKET else "Limit",
        }
        if order.type == OrderType.LIMIT:
            request["price"] = convert_number_to_string(order.price)
        if self.is_futures:
            if order.reduce_only is not None:
                request["reduceOnly"] = order.reduce_only
            request["positionIdx"] = POSITION_IDX[order.position_side or PositionSide.BOTH]

        async def submit():
            try:
                return await self.client.request("POST", "/v5/order/create", request, signed=True)
            except ExchangeAPIError as e:
                if "position idx not match position mode" not in e.message.lower():
                    raise
                idx = hedge_position_idx(order.side, bool(order.reduce_only)) if request.get("positionIdx") == 0 else 0
                if idx == request.get("positionIdx"):
                    raise
                return await self.client.request("POST", "/v5/order/create", {**request, "positionIdx": idx}, signed=True)

        placed = await self._request("openOrder", submit, lambda raw: raw["orderId"])
        if not placed.ok:
            return placed
        return await self._get_order(
            "getOrder",
            {"symbol": order.symbol, "orderId": placed.data},
            placed.time_profile
        )

    async def get_order(self, symbol: str, new_client_order_id: str):
        return await self._get_order("getOrder", {"symbol": symbol, "orderLinkId": new_client_order_id})

    async def _cancel(self, name: str, params: Dict[str, Any]):
        cancelled = await self._request(
            name,
            self._call("POST", "/v5/order/cancel", {"category": self.category, **params}),
        )
        if not cancelled.ok:
            return cancelled
        return await self._get_order("getOrder", params, cancelled.time_profile)

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        return await self._cancel("cancelOrder", {"symbol": symbol, "orderLinkId": new_client_order_id})

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        return await self._cancel("cancelOrderByOrderIdAndSymbol", {"symbol": symbol, "orderId": order_id})

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        async def fetch():
            if symbol or self.category != "linear":
                queries = [{"symbol": symbol}]
            else:
                # linear orders must be listed per settle coin
                queries = [{"settleCoin": "USDT"}, {"settleCoin": "USDC"}]
            orders: List[Dict[str, Any]] = []
            for query in queries:
                result = await self.client.request(
                    "GET",
                    "/v5/order/realtime",
                    {"category": self.category, "openOnly": 0, "limit": 50, **query},
                    signed=True
                )
                orders.extend(result.get("list", []))
            return orders

        return await self._request(
            "getAllOpenOrders",
            fetch,
            lambda raw: [convert_order(o, self.is_futures) for o in raw]
        )

    # ============================================
    # Market Data
    # ============================================

    async def latest_price(self, symbol: str):
        def normalize(raw):
            tickers = raw.get("list", [])
            return to_float(tickers[0].get("lastPrice")) if tickers else 0.0

        return await self._request(
            "latestPrice",
            self._call("GET", "/v5/market/tickers", {"category": self.category, "symbol": symbol}, signed=False),
            normalize,
            private=False
        )

    async def _instruments(self) -> List[Dict[str, Any]]:
        instruments: List[Dict[str, Any]] = []
        cursor = None
        while True:
            result = await self.client.request(
                "GET",
                "/v5/market/instruments-info",
                {"category": self.category, "status": "Trading", "limit": 1000, "cursor": cursor}
            )
            if result.get("category", self.category) == self.category:
                instruments.extend(result.get("list", []))
            cursor = result.get("nextPageCursor")
            if not cursor:
                return instruments

    async def get_all_exchange_info(self):
        return await self._request(
            "getAllExchangeInfo",
            self._instruments,
            lambda raw: [convert_instrument(i, self.category) for i in raw],
            private=False
        )

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
        params = {
            "category": self.category,
            "symbol": symbol,
            "interval": INTERVALS.get(ExchangeIntervals(interval), "1"),
            "start": start or None,
            "end": end or None,
            "limit": count or 200,
        }
        return await self._request(
            "getCandles",
            self._call("GET", "/v5/market/kline", params, signed=False),
            lambda raw: [
                Candle(open=k[1], high=k[2], low=k[3], close=k[4], time=int(k[0]), volume=k[5])
                for k in raw.get("list", [])
            ],
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    async def get_all_prices(self):
        def normalize(raw):
            if raw.get("category", self.category) != self.category:
                return []
            return [PairPrice(pair=t["symbol"], price=to_float(t.get("lastPrice"))) for t in raw.get("list", [])]

        return await self._request(
            "getAllPrices",
            self._call("GET", "/v5/market/tickers", {"category": self.category}, signed=False),
            normalize,
            private=False
        )

    # ============================================
    # Fees
    # ============================================

    async def get_all_user_fees(self):
        return await self._request(
            "getAllUserFees",
            self._call("GET", "/v5/account/fee-rate", {"category": self.category}),
            lambda raw: [
                PairUserFee(pair=f["symbol"], maker=to_float(f["makerFeeRate"]), taker=to_float(f["takerFeeRate"]))
                for f in raw.get("list", [])
            ]
        )

    async def get_user_fees(self, symbol: str):
        def normalize(raw):
            fees = raw.get("list", [])
            if not fees:
                raise ExchangeAPIError("Symbol not found")
            return UserFee(maker=to_float(fees[0]["makerFeeRate"]), taker=to_float(fees[0]["takerFeeRate"]))

        return await self._request(
            "getUserFees",
            self._call("GET", "/v5/account/fee-rate", {"category": self.category, "symbol": symbol}),
            normalize
        )

    # ============================================
    # Futures
    # ============================================

    def _tolerate(self, call, *markers: str):
        """Treat 'not modified' style answers as success."""
        async def run():
            try:
                return await call()
            except ExchangeAPIError as e:
                if any(marker in e.message.lower() for marker in markers):
                    return None
                raise
        return run

    async def futures_change_leverage(self, symbol: str, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        params = {
            "category": self.category,
            "symbol": symbol,
            "buyLeverage": str(leverage),
            "sellLeverage": str(leverage),
        }
        return await self._request(
            "futures_changeLeverage",
            self._tolerate(self._call("POST", "/v5/position/set-leverage", params), "leverage not modified"),
            lambda raw: int(leverage)
        )

    async def futures_change_margin_type(self, symbol: str, margin: MarginType, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        margin = MarginType(margin)
        account = await self.get_account_type()
        if not account.ok:
            return account

        if account.data == CLASSIC_ACCOUNT or (self.is_coinm and account.data < 5):
            params = {
                "category": self.category,
                "symbol": symbol,
                "tradeMode": 0 if margin == MarginType.CROSSED else 1,
                "buyLeverage": str(leverage),
                "sellLeverage": str(leverage),
            }
            call = self._call("POST", "/v5/position/switch-isolated", params)
        else:
            mode = "REGULAR_MARGIN" if margin == MarginType.CROSSED else "ISOLATED_MARGIN"
            call = self._call("POST", "/v5/account/set-margin-mode", {"setMarginMode": mode})

        return await self._request(
            "futures_changeMarginType",
            self._tolerate(call, "margin mode is not modified"),
            lambda raw: margin,
            time_profile=account.time_profile
        )

    async def futures_get_hedge(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        query: Dict[str, Any] = {"symbol": symbol} if symbol else (
            {"settleCoin": "USDT"} if self.is_usdm else {"symbol": "BTCUSD"}
        )

        def normalize(raw):
            positions = raw.get("list", [])
            return bool(positions) and positions[0].get("positionIdx", 0) != 0

        return await self._request(
            "futures_getHedge",
            self._call("GET", "/v5/position/list", {"category": self.category, **query}),
            normalize
        )

    async def futures_set_hedge(self, value: bool):
        if not self.is_futures:
            return self.error_futures()
        mode = 3 if value else 0

        async def switch():
            if self.is_usdm:
                coins = ["USDT"]
            else:
                instruments = await self._instruments()
                coins = sorted({i["baseCoin"] for i in instruments if i.get("contractType") == "InverseFutures"})
            for coin in coins:
                await self.client.request(
                    "POST",
                    "/v5/position/switch-mode",
                    {"category": self.category, "coin": coin, "mode": mode},
                    signed=True
                )

        return await self._request(
            "futures_setHedge",
            self._tolerate(switch, "position mode is not modified"),
            lambda raw: bool(value)
        )

    async def futures_leverage_bracket(self):
        if not self.is_futures:
            return self.error_futures()
        return await self._request(
            "futures_leverageBracket",
            self._instruments,
            lambda raw: [convert_leverage_bracket(i) for i in raw],
            private=False
        )

    async def futures_get_positions(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()

        async def fetch():
            if symbol or not self.is_usdm:
                queries = [{"symbol": symbol}] if symbol else [{"settleCoin": "BTC"}]
            else:
                queries = [{"settleCoin": "USDT"}, {"settleCoin": "USDC"}]
            positions: List[Dict[str, Any]] = []
            for query in queries:
                result = await self.client.request(
                    "GET",
                    "/v5/position/list",
                    {"category": self.category, "limit": 200, **query},
                    signed=True
                )
                positions.extend(result.get("list", []))
            return positions

        return await self._request(
            "futures_getPositions",
            fetch,
            lambda raw: [convert_position(p) for p in raw if p.get("positionStatus", "Normal") == "Normal"]
        )


__all__ = ["BybitExchange", "convert_order", "convert_instrument"]
