"""
Hyperliquid Exchange Connector

This module implements the ExchangeInterface for Hyperliquid spot and
perpetuals (hyperliquidLinear).

API Documentation:
    https://hyperliquid.gitbook.io/hyperliquid-docs/for-developers/api

Endpoints Used:
    Info (POST /info):
        - {"type": "meta"} / {"type": "spotMeta"}     - Pair universe
        - {"type": "allMids"}                         - Mid prices
        - {"type": "candleSnapshot"}                  - Historical candles
        - {"type": "orderStatus"}                     - One order
        - {"type": "frontendOpenOrders"}              - Open orders
        - {"type": "clearinghouseState"}              - Perp balance & positions
        - {"type": "spotClearinghouseState"}          - Spot balances
        - {"type": "userFees"}                        - Fee rates
    Actions (POST /exchange, signed):
        - order, cancelByCloid, cancel, updateLeverage

Identifiers:
    Pairs are "BASE-QUOTE" ("PURR-USDC") on spot and "NAME-USD" ("BTC-USD")
    on perpetuals. Orders need the numeric asset id, and spot info responses
    name coins "@<index>": both translations go through the assets cache
    (exchanges.hyperliquid.limits.get_assets_cache).

Limitations:
    - Hedge mode: not available (always False)
    - Public trades, account uid, affiliates, rebates: not available
"""

from typing import Any, Dict, List, Optional

from core.exceptions import ExchangeAPIError
from core.exchange_interface import ExchangeInterface
from core.rate_limit import RateLimiter
from core.reference_cache import ReferenceDataCache
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
from core.utils.numbers import convert_number_to_string, to_float
from core.utils.time import now_ms

from .api_client import HyperliquidAPIClient
from .limits import SPOT_ASSET_OFFSET, get_assets_cache, get_limiter

MAX_ORDERS = 200


def _min_size(decimals: int) -> float:
    return 1.0 if not decimals else float(f"1e-{decimals}")


# ============================================
# Mapping Functions
# ============================================

def convert_order_status(status: str) -> OrderStatus:
    """open -> NEW, filled -> FILLED, every cancel/reject flavour -> CANCELED"""
    if status == "open":
        return OrderStatus.NEW
    if status == "filled":
        return OrderStatus.FILLED
    return OrderStatus.CANCELED


def convert_order(order: Dict[str, Any], pair: str, status: str, timestamp: Optional[int] = None) -> CommonOrder:
    quote = to_float(order.get("limitPx")) * to_float(order.get("sz"))
    return CommonOrder(
        symbol=pair,
        order_id=order["oid"],
        client_order_id=order.get("cloid") or "",
        transact_time=order.get("timestamp", 0),
        update_time=timestamp or order.get("timestamp", 0),
        price=str(order.get("limitPx", "0")),
        orig_qty=str(order.get("origSz", order.get("sz", "0"))),
        executed_qty=str(order.get("sz", "0")),
        cummulative_quote_qty=convert_number_to_string(quote),
        status=convert_order_status(status),
        type=OrderType.MARKET if order.get("orderType") == "Market" else OrderType.LIMIT,
        side=OrderSide.SELL if order.get("side") == "A" else OrderSide.BUY,
        fills=[],
    )


def convert_perp_info(asset: Dict[str, Any]) -> PairExchangeInfo:
    decimals = int(asset.get("szDecimals", 0))
    min_amount = _min_size(decimals)
    return PairExchangeInfo(
        code=asset["name"],
        pair=f"{asset['name']}-USD",
        base_asset=BaseAssetInfo(min_amount=min_amount, max_amount=0, step=min_amount, name=asset["name"], max_market_amount=0),
        quote_asset=QuoteAssetInfo(min_amount=0, name="USD"),
        max_orders=MAX_ORDERS,
        price_asset_precision=min(5, 6 - decimals),
    )


def convert_spot_info(pair: Dict[str, Any], tokens: Dict[int, Dict[str, Any]]) -> Optional[PairExchangeInfo]:
    base = tokens.get(pair["tokens"][0])
    quote = tokens.get(pair["tokens"][1])
    if base is None or quote is None:
        return None
    base_decimals = int(base.get("szDecimals", 0))
    quote_decimals = int(quote.get("szDecimals", 0))
    min_base = _min_size(base_decimals)
    return PairExchangeInfo(
        code=pair.get("name"),
        pair=f"{base['name']}-{quote['name']}",
        base_asset=BaseAssetInfo(min_amount=min_base, max_amount=0, step=min_base, name=base["name"], max_market_amount=0),
        quote_asset=QuoteAssetInfo(min_amount=_min_size(quote_decimals), name=quote["name"], precision=quote_decimals),
        max_orders=MAX_ORDERS,
        price_asset_precision=min(5, 8 - base_decimals),
    )


def convert_position(position: Dict[str, Any], pair: str) -> PositionInfo:
    size = to_float(position.get("szi"))
    margin = str(position.get("marginUsed", "0"))
    leverage = position.get("leverage") or {}
    return PositionInfo(
        symbol=pair,
        initial_margin=margin,
        maint_margin=margin,
        unrealized_profit=str(position.get("unrealizedPnl", "0")),
        position_initial_margin=margin,
        open_order_initial_margin=margin,
        leverage=str(leverage.get("value", 1)),
        isolated=leverage.get("type") == "isolated",
        entry_price=str(position.get("entryPx") or "0"),
        max_notional="",
        position_side=PositionSide.LONG if size > 0 else PositionSide.SHORT,
        position_amt=convert_number_to_string(abs(size)),
        notional=str(position.get("positionValue", "")),
        isolated_wallet="",
        update_time=now_ms(),
        bid_notional="",
        ask_notional="",
    )


def order_id_from_statuses(response: Dict[str, Any]) -> int:
    """oid of a resting or filled order; raises with the exchange error otherwise."""
    status = response["data"]["statuses"][0]
    if "error" in status:
        raise ExchangeAPIError(status["error"], body=response)
    if "filled" in status:
        return status["filled"]["oid"]
    return status["resting"]["oid"]


# ============================================
# Adapter
# ============================================

class HyperliquidExchange(ExchangeInterface):
    """
    Hyperliquid Exchange Connector

    ``key`` is the account (wallet) address used by info queries; ``secret``
    is handed to the registered signer for /exchange actions.

    Example:
        >>> exchange = HyperliquidExchange(Futures.usdm, key="0xabc...", secret="0x...")
        >>> envelope = await exchange.futures_get_positions()
        >>> [p.symbol for p in envelope.data]
        ['BTC-USD']
    """

    name = "hyperliquid"

    capabilities = {
        "spot": True,
        "futures": True,
        "hedge": False,
        "rebates": False,
        "affiliate": False
    }

    supported_futures = (Futures.null, Futures.usdm)

    retry_signatures = (transient_codes("hyperliquid rate limit", [429]),)

    def __init__(
        self,
        futures: Futures = Futures.null,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        assets_cache: Optional[ReferenceDataCache] = None,
        **kwargs: Any
    ):
        super().__init__(key, secret, passphrase, futures, **kwargs)
        self.assets = assets_cache or get_assets_cache()

    def create_client(self) -> HyperliquidAPIClient:
        return HyperliquidAPIClient(signer=build_signer(self.name, key=self.key, secret=self.secret))

    def create_limiter(self) -> RateLimiter:
        return get_limiter()

    # ============================================
    # Identifier Translation
    # ============================================

    async def get_asset_id(self, pair: str) -> int:
        asset = await self.assets.resolve(pair)
        if asset is None:
            raise ExchangeAPIError(f"Unknown Hyperliquid pair {pair}")
        return int(asset)

    async def get_coin_by_pair(self, pair: str) -> str:
        """Coin name understood by info requests ("BTC" or "@107")."""
        if self.is_futures:
            return pair.split("-")[0]
        asset = await self.get_asset_id(pair)
        return f"@{asset - SPOT_ASSET_OFFSET}"

    async def get_pair_by_coin(self, coin: str) -> str:
        if self.is_futures:
            return f"{coin}-USD"
        if coin.startswith("@") and coin[1:].isdigit():
            return await self.assets.resolve_reverse(SPOT_ASSET_OFFSET + int(coin[1:])) or coin
        return coin.replace("/", "-")

    def _info(self, request_type: str, **fields: Any):
        return lambda: self.client.info(request_type, **fields)

    # ============================================
    # Account
    # ============================================

    async def get_balance(self):
        if self.is_futures:
            def normalize(raw):
                summary = raw["marginSummary"]
                used = to_float(summary.get("totalMarginUsed"))
                return [Asset(asset="USDC", free=to_float(summary.get("totalRawUsd")) - used, locked=used)]

            return await self._request("getBalance", self._info("clearinghouseState", user=self.key), normalize, weight=2)

        return await self._request(
            "getBalance",
            self._info("spotClearinghouseState", user=self.key),
            lambda raw: [
                Asset(asset=b["coin"], free=to_float(b["total"]) - to_float(b["hold"]), locked=to_float(b["hold"]))
                for b in raw.get("balances", [])
            ],
            weight=2
        )

    async def get_uid(self):
        return self.method_not_supported()

    async def get_affiliate(self, uid):
        return self.method_not_supported()

    async def verify_permissions(self, trade_type=None):
        # agent wallets carry no permission scopes
        return self.return_good(self.get_empty_time_profile())(True)

    # ============================================
    # Orders
    # ============================================

    async def open_order(self, order: OrderRequest):
        async def place():
            tif = "Gtc" if order.type == OrderType.LIMIT else "Ioc"
            wire: Dict[str, Any] = {
                "a": await self.get_asset_id(order.symbol),
                "b": order.side == OrderSide.BUY,
                "p": convert_number_to_string(order.price),
                "s": convert_number_to_string(order.quantity),
                "r": bool(order.reduce_only),
                "t": {"limit": {"tif": tif}},
            }
            if order.new_client_order_id:
                wire["c"] = order.new_client_order_id
            return await self.client.action({"type": "order", "orders": [wire], "grouping": "na"})

        placed = await self._request("openOrder", place, order_id_from_statuses, weight=1)
        if not placed.ok:
            return placed
        return await self._get_order(order.symbol, placed.data, placed.time_profile)

    async def _get_order(self, symbol: str, oid, time_profile=None):
        async def normalize(raw):
            if raw.get("status") != "order":
                raise ExchangeAPIError(raw.get("status", "unknownOid"))
            found = raw["order"]
            pair = await self.get_pair_by_coin(found["order"]["coin"])
            return convert_order(found["order"], pair, found["status"], found.get("statusTimestamp"))

        if isinstance(oid, str) and oid.isdigit():
            oid = int(oid)
        return await self._request(
            "getOrder",
            self._info("orderStatus", user=self.key, oid=oid),
            normalize,
            weight=1,
            time_profile=time_profile
        )

    async def get_order(self, symbol: str, new_client_order_id: str):
        return await self._get_order(symbol, new_client_order_id)

    async def _cancel(self, name: str, symbol: str, build_cancel, lookup_id):
        async def cancel():
            action = build_cancel(await self.get_asset_id(symbol))
            return await self.client.action(action)

        def normalize(raw):
            status = raw["data"]["statuses"][0]
            if status != "success":
                raise ExchangeAPIError(status.get("error", str(status)) if isinstance(status, dict) else str(status))
            return True

        cancelled = await self._request(name, cancel, normalize, weight=1)
        if not cancelled.ok:
            return cancelled
        return await self._get_order(symbol, lookup_id, cancelled.time_profile)

    async def cancel_order(self, symbol: str, new_client_order_id: str):
        return await self._cancel(
            "cancelOrder",
            symbol,
            lambda asset: {"type": "cancelByCloid", "cancels": [{"asset": asset, "cloid": new_client_order_id}]},
            new_client_order_id
        )

    async def cancel_order_by_order_id(self, symbol: str, order_id: str):
        return await self._cancel(
            "cancelOrderByOrderIdAndSymbol",
            symbol,
            lambda asset: {"type": "cancel", "cancels": [{"a": asset, "o": int(order_id)}]},
            order_id
        )

    async def get_all_open_orders(self, symbol: Optional[str] = None):
        async def normalize(raw):
            orders = []
            for o in raw or []:
                pair = await self.get_pair_by_coin(o["coin"])
                if symbol and pair != symbol:
                    continue
                orders.append(convert_order(o, pair, "open"))
            return orders

        return await self._request(
            "getAllOpenOrders",
            self._info("frontendOpenOrders", user=self.key),
            normalize,
            weight=20
        )

    # ============================================
    # Market Data
    # ============================================

    async def get_all_prices(self):
        async def normalize(raw):
            prices = []
            for coin, price in raw.items():
                is_spot_coin = coin.startswith("@") or "/" in coin
                if self.is_futures == is_spot_coin:
                    continue
                prices.append(PairPrice(pair=await self.get_pair_by_coin(coin), price=to_float(price)))
            return prices

        return await self._request("getAllPrices", self._info("allMids"), normalize, weight=2, private=False)

    async def latest_price(self, symbol: str):
        prices = await self.get_all_prices()
        if not prices.ok:
            return prices
        price = next((p.price for p in prices.data if p.pair == symbol), 0.0)
        return self.return_good(prices.time_profile)(price)

    async def get_all_exchange_info(self):
        if self.is_futures:
            return await self._request(
                "getAllExchangeInfo",
                self._info("meta"),
                lambda raw: [convert_perp_info(a) for a in raw.get("universe", []) if not a.get("isDelisted")],
                weight=20,
                private=False
            )

        def normalize_spot(raw):
            tokens = {t["index"]: t for t in raw.get("tokens", [])}
            converted = (convert_spot_info(p, tokens) for p in raw.get("universe", []))
            return [info for info in converted if info is not None]

        return await self._request("getAllExchangeInfo", self._info("spotMeta"), normalize_spot, weight=20, private=False)

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
        async def fetch():
            req = {
                "coin": await self.get_coin_by_pair(symbol),
                "interval": ExchangeIntervals(interval).value,
                "startTime": start or 0,
                "endTime": end or now_ms(),
            }
            return await self.client.info("candleSnapshot", req=req)

        return await self._request(
            "getCandles",
            fetch,
            lambda raw: [
                Candle(open=c["o"], high=c["h"], low=c["l"], close=c["c"], volume=c["v"], time=int(c["t"]))
                for c in raw or []
            ],
            weight=20,
            private=False
        )

    async def get_trades(self, symbol: str, from_id: Optional[int] = None, start: Optional[int] = None, end: Optional[int] = None):
        return self.return_good(self.get_empty_time_profile())([])

    # ============================================
    # Fees
    # ============================================

    async def get_all_user_fees(self):
        pairs = await self.get_all_exchange_info()
        if not pairs.ok:
            return pairs

        def normalize(raw):
            maker = to_float(raw.get("userAddRate" if self.is_futures else "userSpotAddRate"))
            taker = to_float(raw.get("userCrossRate" if self.is_futures else "userSpotCrossRate"))
            return [PairUserFee(pair=p.pair, maker=maker, taker=taker) for p in pairs.data]

        return await self._request(
            "getAllUserFees",
            self._info("userFees", user=self.key),
            normalize,
            weight=20,
            time_profile=pairs.time_profile
        )

    async def get_user_fees(self, symbol: str):
        fees = await self.get_all_user_fees()
        if not fees.ok:
            return fees
        fee = next((f for f in fees.data if f.pair == symbol), None)
        return self.return_good(fees.time_profile)(
            UserFee(maker=fee.maker, taker=fee.taker) if fee else UserFee(maker=0, taker=0)
        )

    # ============================================
    # Futures
    # ============================================

    async def _update_leverage(self, name: str, symbol: str, leverage: int, is_cross: bool, result):
        async def update():
            action = {
                "type": "updateLeverage",
                "asset": await self.get_asset_id(symbol),
                "isCross": is_cross,
                "leverage": int(leverage),
            }
            return await self.client.action(action)

        return await self._request(name, update, lambda raw: result, weight=1)

    async def futures_change_leverage(self, symbol: str, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        return await self._update_leverage("futures_changeLeverage", symbol, leverage, False, int(leverage))

    async def futures_change_margin_type(self, symbol: str, margin: MarginType, leverage: int):
        if not self.is_futures:
            return self.error_futures()
        margin = MarginType(margin)
        return await self._update_leverage(
            "futures_changeMarginType", symbol, leverage, margin == MarginType.CROSSED, margin
        )

    async def futures_set_hedge(self, value: bool):
        if not self.is_futures:
            return self.error_futures()
        return self.return_good(self.get_empty_time_profile())(False)

    async def futures_leverage_bracket(self):
        if not self.is_futures:
            return self.error_futures()
        return await self._request(
            "futures_leverageBracket",
            self._info("meta"),
            lambda raw: [
                LeverageBracket(symbol=f"{a['name']}-USD", leverage=int(a.get("maxLeverage") or 100), step=1, min=1)
                for a in raw.get("universe", [])
                if not a.get("isDelisted")
            ],
            weight=20,
            private=False
        )

    async def futures_get_positions(self, symbol: Optional[str] = None):
        if not self.is_futures:
            return self.error_futures()

        async def normalize(raw):
            positions: List[PositionInfo] = []
            for entry in raw.get("assetPositions", []):
                position = entry["position"]
                pair = await self.get_pair_by_coin(position["coin"])
                if symbol and pair != symbol:
                    continue
                positions.append(convert_position(position, pair))
            return positions

        return await self._request(
            "futures_getPositions",
            self._info("clearinghouseState", user=self.key),
            normalize,
            weight=2
        )


__all__ = ["HyperliquidExchange"]
