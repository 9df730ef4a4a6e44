"""
OKX Exchange Connector

This module implements the ExchangeInterface for OKX spot and perpetual
swaps (linear USDT-margined and inverse coin-margined).

API Documentation:
    https://www.okx.com/docs-v5/en/

Symbol Conventions:
    Spot pairs are OKX instrument ids ("BTC-USDT"). Swap pairs are the
    instrument family ("BTC-USDT", "BTC-USD"); the "-SWAP" suffix is added
    when talking to OKX and stripped from every answer.

Endpoints Used:
    - GET  /api/v5/account/balance | /api/v5/account/config | /api/v5/account/trade-fee
    - GET  /api/v5/account/positions
    - POST /api/v5/account/set-leverage | /api/v5/account/set-position-mode
    - POST /api/v5/trade/order | /api/v5/trade/cancel-order
    - GET  /api/v5/trade/order | /api/v5/trade/orders-pending
    - GET  /api/v5/public/instruments
    - GET  /api/v5/market/tickers | /api/v5/market/candles | /api/v5/market/history-candles
    - GET  /api/v5/affiliate/invitee/detail

Limitations:
    - Margin mode is chosen per order (tdMode); change-margin only echoes
    - Public trades and rebates: not available
"""

import re
from typing import Any, Dict, List, Optional

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
    OKXSource,
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

from .api_client import OKXAPIClient
from .limits import get_limiter

RETRY_CODES = [1, 50001, 50004, 50005, 50011, 50013, 50026, 50057, 50102]

INTERVALS = {
    ExchangeIntervals.oneM: ("1m", 60_000),
    ExchangeIntervals.threeM: ("3m", 3 * 60_000),
    ExchangeIntervals.fiveM: ("5m", 5 * 60_000),
    ExchangeIntervals.fifteenM: ("15m", 15 * 60_000),
    ExchangeIntervals.thirtyM: ("30m", 30 * 60_000),
    ExchangeIntervals.oneH: ("1H", 60 * 60_000),
    ExchangeIntervals.twoH: ("2H", 2 * 60 * 60_000),
    ExchangeIntervals.fourH: ("4H", 4 * 60 * 60_000),
    # OKX has no 8 hour bar
    ExchangeIntervals.eightH: ("4H", 8 * 60 * 60_000),
    ExchangeIntervals.oneD: ("1Dutc", 24 * 60 * 60_000),
    ExchangeIntervals.oneW: ("1Wutc", 7 * 24 * 60 * 60_000),
}

# recent candles come from /market/candles, older ones from /market/history-candles
RECENT_CANDLES = 1400

HEDGE_MODE = "long_short_mode"
NET_MODE = "net_mode"

DEFAULT_FEE = UserFee(maker=0.0008, taker=0.001)

MAX_ORDERS = 500


# ============================================
# Mapping Functions
# ============================================

def clear_symbol(inst_id: str) -> str:
    return re.sub(r"-SWAP$", "", inst_id)


def convert_order_status(state: str) -> OrderStatus:
    if state == "live":
        return OrderStatus.NEW
    if state == "partially_filled":
        return OrderStatus.PARTIALLY_FILLED
    if state == "filled":
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def convert_order(order: Dict[str, Any], futures: bool = False) -> CommonOrder:
    size = order.get("accFillSz") or order.get("fillSz") or order.get("sz") or "0"
    price = to_float(order.get("avgPx")) or to_float(order.get("px"))
    position_side = None
    if futures:
        position_side = PositionSide.SHORT if order.get("posSide") == "short" else PositionSide.LONG
    return CommonOrder(
        symbol=clear_symbol(order["instId"]),
        order_id=order["ordId"],
        client_order_id=order.get("clOrdId", ""),
        transact_time=int(order.get("cTime") or 0),
        update_time=int(order.get("uTime") or 0),
        price=convert_number_to_string(price),
        orig_qty=str(order.get("sz", "0")),
        executed_qty=str(size),
        cummulative_quote_qty=convert_number_to_string(price * to_float(size)),
        status=convert_order_status(order.get("state", "")),
        type=OrderType.LIMIT if order.get("ordType") == "limit" else OrderType.MARKET,
        side=OrderSide.SELL if order.get("side") == "sell" else OrderSide.BUY,
        fills=[],
        reduce_only=order.get("reduceOnly") in (True, "true"),
        position_side=position_side,
    )


def convert_instrument(instrument: Dict[str, Any], futures: Futures = Futures.null) -> PairExchangeInfo:
    """
    OKX instrument to PairExchangeInfo.

    Swap amounts are expressed in the contract's value currency: the minimum
    linear amount is ctVal * minSz, inverse contracts use 0.0001.
    """
    linear = futures == Futures.usdm
    inverse = futures == Futures.coinm
    if linear:
        min_amount = round(to_float(instrument.get("ctVal")) * to_float(instrument.get("minSz")), 10)
        min_amount = min_amount or to_float(instrument.get("ctVal"))
    elif inverse:
        min_amount = 0.0001
    else:
        min_amount = to_float(instrument.get("minSz"))

    max_amount = to_float(instrument.get("maxLmtSz"))
    if linear:
        base_name, quote_name = instrument.get("ctValCcy", ""), instrument.get("settleCcy", "")
        quote_min = to_float(instrument.get("lotSz"))
    elif inverse:
        base_name, quote_name = instrument.get("settleCcy", ""), instrument.get("ctValCcy", "")
        quote_min = to_float(instrument.get("ctVal"))
    else:
        base_name, quote_name = instrument.get("baseCcy", ""), instrument.get("quoteCcy", "")
        quote_min = to_float(instrument.get("lotSz"))

    return PairExchangeInfo(
        pair=instrument["instFamily"] if futures != Futures.null else instrument["instId"],
        max_orders=MAX_ORDERS,
        base_asset=BaseAssetInfo(
            name=base_name,
            min_amount=min_amount,
            max_amount=max_amount,
            step=min_amount if futures != Futures.null else to_float(instrument.get("lotSz")),
            max_market_amount=to_float(instrument.get("maxMktSz")) or max_amount,
            multiplier=to_float(instrument.get("ctVal")) if linear else None,
        ),
        quote_asset=QuoteAssetInfo(name=quote_name, min_amount=quote_min),
        price_asset_precision=get_price_precision(instrument.get("tickSz", "0.1")),
    )


def convert_position(position: Dict[str, Any]) -> PositionInfo:
    isolated = position.get("mgnMode") == "isolated"
    initial = position.get("margin") if isolated else position.get("imr")
    maint = "0" if isolated else position.get("margin")
    pos_side = position.get("posSide")
    if pos_side == "long":
        side = PositionSide.LONG
    elif pos_side == "short":
        side = PositionSide.SHORT
    else:
        side = PositionSide.LONG if to_float(position.get("pos")) > 0 else PositionSide.SHORT
    return PositionInfo(
        symbol=clear_symbol(position["instId"]),
        initial_margin=str(initial or "0"),
        maint_margin=str(maint or "0"),
        unrealized_profit=str(position.get("upl", "0")),
        position_initial_margin=str(initial or "0"),
        open_order_initial_margin=str(maint or "0"),
        leverage=str(position.get("lever", "1")),
        isolated=isolated,
        entry_price=str(position.get("avgPx", "0")),
        max_notional="",
        position_side=side,
        position_amt=str(position.get("pos", "0")),
        notional="",
        isolated_wallet="",
        update_time=int(position.get("uTime") or 0),
        bid_notional="",
        ask_notional="",
    )


def convert_candle(kline: List[Any]) -> Candle:
    return Candle(open=kline[1], high=kline[2], low=kline[3], close=kline[4], time=int(kline[0]), volume=kline[5])


# ============================================
# Adapter
# ============================================

class OKXExchange(ExchangeInterface):
    """
    OKX Exchange Connector

    Attributes:
        position_mode: Cached account position mode ("long_short_mode" / "net_mode")

    Example:
        >>> exchange = OKXExchange(Futures.usdm, key="...", secret="...", passphrase="...")
        >>> exchange.inst_id("BTC-USDT")
        'BTC-USDT-SWAP'
    """

    name = "okx"

    capabilities = {
        "spot": True,
        "futures": True,
        "hedge": True,
        "rebates": False,
        "affiliate": True
    }

    supported_futures = (Futures.null, Futures.usdm, Futures.coinm)

    retry_signatures = (
        RetrySignature("okx too many requests", codes=(50011,), delay=20, step=10),
        RetrySignature("requests too frequent", patterns=("requests too frequent",), delay=10),
        transient_codes("okx transient code", RETRY_CODES),
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
        self.position_mode: Optional[str] = None

    @property
    def inst_type(self) -> str:
        return "SWAP" if self.is_futures else "SPOT"

    @property
    def category(self) -> Optional[str]:
        if not self.is_futures:
            return None
        return "linear" if self.is_usdm else "inverse"

    def inst_id(self, symbol: str) -> str:
        return f"{symbol}-SWAP" if self.is_futures else symbol

    def create_client(self) -> OKXAPIClient:
        signer = build_signer(
            self.name,
            key=self.key,
            secret=self.secret,
            passphrase=self.passphrase,
            okx_source=self.okx_source,
            environment=self.environment
        )
        return OKXAPIClient(source=self.okx_source, signer=signer)

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, signed: bool = True):
        return lambda: self.client.request(method, path, params, signed=signed)

    # ============================================
    # Account
    # ============================================

    async def _account_config(self, name: str, extract):
        first = _first("Account not found")
        return await self._request(
            name,
            self._call("GET", "/api/v5/account/config"),
            lambda raw: extract(first(raw)),
            limit_key="getAccountConfiguration"
        )

    async def _get_position_mode(self):
        if self.position_mode:
            return self.return_good(self.get_empty_time_profile())(self.position_mode)
        config = await self._account_config("getPositionMode", lambda account: account.get("posMode") or NET_MODE)
        if not config.ok:
            return config
        self.position_mode = config.data
        return self.return_good(config.time_profile)(self.position_mode)

    async def get_balance(self):
        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Balances not found")
            return [
                Asset(asset=b["ccy"], free=to_float(b.get("availBal")), locked=to_float(b.get("frozenBal")))
                for b in raw[0].get("details", [])
            ]

        return await self._request(
            "getBalance",
            self._call("GET", "/api/v5/account/balance"),
            normalize,
            limit_key="getBalance"
        )

    async def get_uid(self):
        return await self._account_config("getUid", lambda account: account["uid"])

    async def verify_permissions(self, trade_type=None):
        def check(account):
            # swaps need a multi-currency or portfolio margin account level
            allowed = "trade" in (account.get("perm") or "")
            if self.is_futures:
                allowed = allowed and account.get("acctLv") in ("2", "3", "4")
            if not allowed:
                raise ExchangeAPIError("Check permissions")
            return True

        return await self._account_config("verifyPermissions", check)

    async def get_affiliate(self, uid):
        if self.okx_source == OKXSource.my:
            return self.return_good(self.get_empty_time_profile())(False)
        return await self._request(
            "getAffiliate",
            self._call("GET", "/api/v5/affiliate/invitee/detail", {"uid": uid}),
            lambda raw: bool(raw and raw[0].get("level")),
            limit_key="getAffiliate"
        )

    # ============================================
    # Orders
    # ============================================

    def _order_details(self, symbol: str, client_order_id: str, retry_delay: Optional[float] = None):
        params = {"instId": self.inst_id(symbol), "clOrdId": client_order_id}

        async def fetch():
            orders = await self.client.request("GET", "/api/v5/trade/order", params, signed=True)
            if not orders and retry_delay:
                self.logger.warning(f"OKX order data not found for {client_order_id}. Sleep {retry_delay}s")
                await self._sleep(retry_delay)
                orders = await self.client.request("GET", "/api/v5/trade/order", params, signed=True)
            if not orders:
                raise ExchangeAPIError("Cannot find order")
            return orders[0]

        return fetch

    async def _get_order(self, symbol: str, client_order_id: str, time_profile=None, retry_delay=None):
        return await self._request(
            "getOrder",
            self._order_details(symbol, client_order_id, retry_delay),
            lambda raw: convert_order(raw, self.is_futures),
            limit_key="getOrderDetails",
            time_profile=time_profile
        )

    async def open_order(self, order: OrderRequest):
        request: Dict[str, Any] = {
            "instId": self.inst_id(order.symbol),
            "side": "buy" if order.side == OrderSide.BUY else "sell",
            "sz": convert_number_to_string(order.quantity),
            "clOrdId": order.new_client_order_id or "",
            "ordType": "market" if order.type == OrderType.MARKET else "limit",
            "tag": self.code,
        }
        if self.is_futures:
            request["tdMode"] = "cross" if order.margin_type == MarginType.CROSSED else "isolated"
            request["posSide"] = {
                PositionSide.LONG: "long",
                PositionSide.SHORT: "short",
            }.get(order.position_side, "net")
            if order.reduce_only is not None:
                request["reduceOnly"] = order.reduce_only
        else:
            request["tdMode"] = "cash"
            request["tgtCcy"] = "base_ccy"
        if order.type == OrderType.LIMIT:
            request["px"] = convert_number_to_string(order.price)

        placed = await self._request(
            "openOrder",
            self._call("POST", "/api/v5/trade/order", request),
            lambda raw: raw[0]["clOrdId"] if raw else request["clOrdId"],
            limit_key="openOrder"
        )
        if not placed.ok:
            return placed
        return await self._get_order(
            order.symbol,
            order.new_client_order_id or placed.data,
            placed.time_profile,
            retry_delay=1.0
        )

    async def get_order(self, symbol: str, new_client_order_id: str):
        return await self._get_order(symbol, new_client_order_id)

    async def _cancel(self, name: str, symbol: str, params: Dict[str, Any]):
        cancelled = await self._request(
            name,
            self._call("POST", "/api/v5/trade/cancel-order", {"instId": self.inst_id(symbol), **params}),
            _first("Cannot cancel order"),
            limit_key="cancelOrder"
        )
        if not cancelled.ok:
            return cancelled
        return await self._get_order(symbol, cancelled.data.get("clOrdId", ""), cancelled.time_profile)

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        return await self._cancel("cancelOrder", symbol, {"clOrdId": new_client_order_id})

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        return await self._cancel("cancelOrderByOrderIdAndSymbol", symbol, {"ordId": order_id})

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        instruments = await self.get_all_exchange_info()
        if not instruments.ok:
            return instruments
        pairs = {info.pair for info in instruments.data}
        params = {"instType": self.inst_type, "instId": self.inst_id(symbol) if symbol else None}

        def normalize(raw):
            return [
                convert_order(o, self.is_futures)
                for o in raw
                if clear_symbol(o["instId"]) in pairs and (symbol is None or clear_symbol(o["instId"]) == symbol)
            ]

        return await self._request(
            "getAllOpenOrders",
            self._call("GET", "/api/v5/trade/orders-pending", params),
            normalize,
            limit_key="getOrderList",
            time_profile=instruments.time_profile
        )

    # ============================================
    # Market Data
    # ============================================

    async def _instruments(self):
        """Live instruments of the bound market kind."""
        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("No data")
            return [
                i for i in raw
                if i.get("state") == "live" and (self.category is None or i.get("ctType") == self.category)
            ]

        return await self._request(
            "getAllExchangeInfo",
            self._call("GET", "/api/v5/public/instruments", {"instType": self.inst_type}, signed=False),
            normalize,
            limit_key="getInstruments",
            private=False
        )

    async def get_all_exchange_info(self):
        instruments = await self._instruments()
        if not instruments.ok:
            return instruments
        return self.return_mapped(
            instruments.time_profile,
            lambda: [convert_instrument(i, self.futures) for i in instruments.data]
        )

    async def get_exchange_info(self, symbol: str):
        all_info = await self.get_all_exchange_info()
        if not all_info.ok:
            return all_info
        for info in all_info.data:
            if info.pair == symbol:
                return self.return_good(all_info.time_profile)(ExchangeInfo(**info.model_dump(exclude={"pair"})))
        return self.return_bad(all_info.time_profile)(f"Symbol {symbol} not found")

    async def get_all_prices(self):
        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Cannot found prices")
            return [PairPrice(pair=clear_symbol(t["instId"]), price=to_float(t.get("last"))) for t in raw]

        return await self._request(
            "getAllPrices",
            self._call("GET", "/api/v5/market/tickers", {"instType": self.inst_type}, signed=False),
            normalize,
            limit_key="getTickers",
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

    async def get_candles(
        self,
        symbol: str,
        interval: ExchangeIntervals,
        start: Optional[int] = None,
        end: Optional[int] = None,
        count: Optional[int] = None
    ):
        bar, interval_ms = INTERVALS[ExchangeIntervals(interval)]
        recent = bool(start) and now_ms() - int(start) < interval_ms * RECENT_CANDLES
        params = {
            "instId": self.inst_id(symbol),
            "bar": bar,
            "before": str(start) if start is not None else None,
            "after": str(end) if end is not None else None,
        }
        return await self._request(
            "getCandles",
            self._call(
                "GET",
                "/api/v5/market/candles" if recent else "/api/v5/market/history-candles",
                params,
                signed=False
            ),
            lambda raw: [convert_candle(k) for k in raw],
            limit_key="getCandles" if recent else "getHistoricCandles",
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    # ============================================
    # Fees
    # ============================================

    async def get_all_user_fees(self):
        instruments = await self.get_all_exchange_info()
        if not instruments.ok:
            return instruments

        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Cannot get fees")
            # OKX reports fees as negative rates
            maker = -to_float(raw[0].get("maker"))
            taker = -to_float(raw[0].get("taker"))
            return [PairUserFee(pair=info.pair, maker=maker, taker=taker) for info in instruments.data]

        return await self._request(
            "getAllUserFees",
            self._call("GET", "/api/v5/account/trade-fee", {"instType": self.inst_type}),
            normalize,
            limit_key="getFeeRates",
            time_profile=instruments.time_profile
        )

    async def get_user_fees(self, symbol: str):
        fees = await self.get_all_user_fees()
        if not fees.ok:
            return fees
        for fee in fees.data:
            if fee.pair == symbol:
                return self.return_good(fees.time_profile)(UserFee(maker=fee.maker, taker=fee.taker))
        return self.return_good(fees.time_profile)(DEFAULT_FEE.model_copy())

    # ============================================
    # Futures
    # ============================================

    async def futures_change_leverage(self, symbol: str, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        mode = await self._get_position_mode()
        position_mode = mode.data if mode.ok else HEDGE_MODE
        sides = ["long", "short"] if position_mode == HEDGE_MODE else [None]

        async def apply():
            requests = [("isolated", side) for side in sides] + [("cross", None)]
            for margin_mode, side in requests:
                result = await self.client.request(
                    "POST",
                    "/api/v5/account/set-leverage",
                    {"instId": self.inst_id(symbol), "lever": str(leverage), "mgnMode": margin_mode, "posSide": side},
                    signed=True
                )
                if not result:
                    raise ExchangeAPIError("Cannot set leverage")

        return await self._request(
            "futures_changeLeverage",
            apply,
            lambda raw: int(leverage),
            weight=len(sides) + 1,
            limit_key="setLeverage",
            time_profile=mode.time_profile
        )

    async def futures_change_margin_type(self, symbol: str, margin: MarginType, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        return self.return_good(self.get_empty_time_profile())(MarginType(margin))

    async def futures_get_hedge(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        mode = await self._get_position_mode()
        if not mode.ok:
            return mode
        return self.return_good(mode.time_profile)(mode.data == HEDGE_MODE)

    async def futures_set_hedge(self, value: bool):
        if not self.is_futures:
            return self.error_futures()
        mode = HEDGE_MODE if value else NET_MODE

        def normalize(raw):
            if not raw:
                raise ExchangeAPIError("Cannot set hedge mode")
            self.position_mode = mode
            return bool(value)

        return await self._request(
            "futures_setHedge",
            self._call("POST", "/api/v5/account/set-position-mode", {"posMode": mode}),
            normalize,
            limit_key="setPositionMode"
        )

    async def futures_leverage_bracket(self):
        if not self.is_futures:
            return self.error_futures()
        instruments = await self._instruments()
        if not instruments.ok:
            return instruments
        return self.return_mapped(instruments.time_profile, lambda: [
            LeverageBracket(symbol=i["instFamily"], leverage=int(to_float(i.get("lever"), 100)) or 100)
            for i in instruments.data
        ])

    async def futures_get_positions(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()
        instruments = await self.get_all_exchange_info()
        if not instruments.ok:
            return instruments
        pairs = {info.pair for info in instruments.data}
        params = {"instType": "SWAP", "instId": self.inst_id(symbol) if symbol else None}

        def normalize(raw):
            return [
                convert_position(p)
                for p in raw
                if clear_symbol(p["instId"]) in pairs and (symbol is None or clear_symbol(p["instId"]) == symbol)
            ]

        return await self._request(
            "futures_getPositions",
            self._call("GET", "/api/v5/account/positions", params),
            normalize,
            limit_key="getPositions",
            time_profile=instruments.time_profile
        )


def _first(missing: str):
    """Normalizer returning the first item of an OKX data list."""
    def normalize(raw):
        if not raw:
            raise ExchangeAPIError(missing)
        return raw[0]
    return normalize


__all__ = ["OKXExchange", "convert_order", "convert_instrument", "clear_symbol"]
