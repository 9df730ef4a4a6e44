"""
Unit Tests for the Bitget adapter

Run with:
    pytest tests/unit/test_bitget.py -v
"""

import pytest

from core.exceptions import ExchangeAPIError
from core.schemas import Futures, MarginType, OrderRequest, OrderSide, OrderStatus, PositionSide, StatusEnum
from exchanges.bitget import BitgetExchange, convert_contract, convert_futures_order, convert_spot_order
from exchanges.bitget.api_client import BitgetAPIClient
from exchanges.bitget.limits import REQUESTS
from tests.unit.fakes import make_adapter


SPOT_ORDER = {
    "symbol": "BTCUSDT",
    "orderId": "1001",
    "clientOid": "my-order-1",
    "price": "30000",
    "priceAvg": "",
    "size": "0.01",
    "baseVolume": "0",
    "quoteVolume": "0",
    "status": "live",
    "orderType": "limit",
    "side": "buy",
    "cTime": "1695806875837",
    "uTime": "1695806875840",
}

FUTURES_ORDER = {
    "symbol": "BTCUSDT",
    "orderId": "2001",
    "clientOid": "my-order-2",
    "price": "30000",
    "size": "0.01",
    "state": "filled",
    "orderType": "limit",
    "side": "buy",
    "posSide": "net",
    "reduceOnly": "NO",
    "cTime": "1695806875837",
    "uTime": "1695806875840",
}


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def spot(client, sleep):
    return make_adapter(BitgetExchange, Futures.null, passphrase="pass", environment="live", client=client, sleep=sleep)


@pytest.fixture
def usdm(client, sleep):
    return make_adapter(BitgetExchange, Futures.usdm, passphrase="pass", environment="live", client=client, sleep=sleep)


# ============================================
# Mapping Functions
# ============================================

class TestMapping:

    def test_spot_order(self):
        order = convert_spot_order(SPOT_ORDER)

        assert order.status == OrderStatus.NEW
        assert order.price == "30000"
        assert order.transact_time == 1695806875837
        assert order.update_time == 1695806875840

    def test_one_way_futures_order(self):
        order = convert_futures_order(FUTURES_ORDER)

        assert order.side == OrderSide.BUY
        assert order.position_side == PositionSide.BOTH
        assert order.reduce_only is False
        assert order.status == OrderStatus.FILLED

    def test_closing_long_in_hedge_mode_is_a_sell(self):
        order = convert_futures_order({**FUTURES_ORDER, "posSide": "long", "tradeSide": "close", "reduceOnly": "YES"})

        assert order.side == OrderSide.SELL
        assert order.position_side == PositionSide.LONG
        assert order.reduce_only is True

    def test_market_order_uses_average_price(self):
        order = convert_futures_order({**FUTURES_ORDER, "orderType": "market", "price": "0", "priceAvg": "30012.5"})

        assert order.price == "30012.5"

    def test_contract(self):
        info = convert_contract({
            "symbol": "BTCUSDT", "baseCoin": "BTC", "quoteCoin": "USDT", "minTradeNum": "0.001",
            "volumePlace": "3", "pricePlace": "1", "sizeMultiplier": "0.001", "minTradeUSDT": "5",
            "maxSymbolOrderNum": "200", "sellLimitPriceRatio": "0.05", "buyLimitPriceRatio": "0.05",
        })

        assert info.base_asset.step == 0.001
        assert info.base_asset.multiplier == 0.001
        assert info.quote_asset.min_amount == 5
        assert info.price_multiplier.decimals == 1
        assert info.max_orders == 200


# ============================================
# Product Types
# ============================================

class TestProductTypes:

    def test_live_product_types(self, usdm):
        assert usdm.product_types == ("USDT-FUTURES", "USDC-FUTURES")
        assert usdm.product_type_for("BTCPERP") == "USDC-FUTURES"
        assert usdm.margin_coin_for("BTCUSDT") == "USDT"

    def test_demo_prefix(self, client):
        exchange = make_adapter(BitgetExchange, Futures.usdm, environment="demo", client=client)

        assert exchange.product_types == ("SUSDT-FUTURES", "SUSDC-FUTURES")
        assert exchange.margin_coin_for("BTCUSDT") == "SUSDT"

    def test_demo_from_settings(self, client, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "bitget_env", "demo")
        exchange = make_adapter(BitgetExchange, Futures.coinm, client=client)

        assert exchange.product_types == ("SCOIN-FUTURES",)

    def test_inverse_margin_coin_is_base(self, client):
        exchange = make_adapter(BitgetExchange, Futures.coinm, environment="live", client=client)

        assert exchange.margin_coin_for("BTCUSD") == "BTC"
        assert exchange.margin_coin_for("ETHUSD_231229") == "ETH"


# ============================================
# Orders
# ============================================

class TestOrders:

    @pytest.mark.asyncio
    async def test_spot_market_order_settles_before_lookup(self, spot, client, sleep):
        client.on("POST", "/api/v2/spot/trade/place-order", {"orderId": "1001", "clientOid": "my-order-1"})
        client.on("GET", "/api/v2/spot/trade/orderInfo", [{**SPOT_ORDER, "orderType": "market", "status": "filled"}])
        order = OrderRequest(symbol="BTCUSDT", side="BUY", quantity=0.01, price=0, type="MARKET", new_client_order_id="my-order-1")

        envelope = await spot.open_order(order)

        assert envelope.data.status == OrderStatus.FILLED
        assert sleep.calls == [1.0]
        sent = client.calls("POST", "/api/v2/spot/trade/place-order")[0]
        assert sent["force"] is None
        assert "price" not in sent

    @pytest.mark.asyncio
    async def test_hedge_order_closing_long(self, usdm, client):
        client.on("POST", "/api/v2/mix/order/place-order", {"orderId": "2001", "clientOid": "my-order-2"})
        client.on("GET", "/api/v2/mix/order/detail", FUTURES_ORDER)
        order = OrderRequest(
            symbol="BTCUSDT", side="SELL", quantity=0.01, price=30000, new_client_order_id="my-order-2",
            position_side="LONG", reduce_only=True, margin_type=MarginType.ISOLATED
        )

        await usdm.open_order(order)

        sent = client.calls("POST", "/api/v2/mix/order/place-order")[0]
        assert sent["side"] == "buy"
        assert sent["tradeSide"] == "close"
        assert sent["reduceOnly"] == "YES"
        assert sent["marginMode"] == "isolated"
        assert sent["marginCoin"] == "USDT"
        assert sent["price"] == "30000"

    @pytest.mark.asyncio
    async def test_spot_lookup_falls_back_to_history(self, spot, client):
        client.on("GET", "/api/v2/spot/trade/orderInfo", [])
        client.on("GET", "/api/v2/spot/trade/history-orders", [
            {**SPOT_ORDER, "clientOid": "other", "orderId": "1"},
            {**SPOT_ORDER, "status": "cancelled"},
        ])

        envelope = await spot.get_order("BTCUSDT", "my-order-1")

        assert envelope.data.order_id == "1001"
        assert envelope.data.status == OrderStatus.CANCELED

    @pytest.mark.asyncio
    async def test_order_not_indexed_yet_is_retried(self, usdm, client, sleep):
        client.on(
            "GET", "/api/v2/mix/order/detail",
            ExchangeAPIError("The data of the order cannot be found, please confirm the order number", code="40109"),
            FUTURES_ORDER,
        )

        envelope = await usdm.get_order("BTCUSDT", "my-order-2")

        assert envelope.ok
        assert sleep.calls == [1]
        assert envelope.time_profile.attempts == 2

    @pytest.mark.asyncio
    async def test_cancel_without_client_oid(self, spot, client):
        client.on("POST", "/api/v2/spot/trade/cancel-order", {"orderId": "1001"})

        envelope = await spot.cancel_order_by_order_id("BTCUSDT", "1001")

        assert envelope.reason == "Order not found"


# ============================================
# Market Data & Limits
# ============================================

class TestMarketData:

    @pytest.mark.asyncio
    async def test_prices_reserve_global_and_endpoint_quota(self, spot, client):
        client.on("GET", "/api/v2/spot/market/tickers", [{"symbol": "BTCUSDT", "lastPr": "30000"}])

        envelope = await spot.latest_price("BTCUSDT")

        assert envelope.data == 30000
        assert spot.limiter.weight(REQUESTS) == pytest.approx(1.2)
        assert spot.limiter.weight("getSpotTicker") == pytest.approx(1.2)
        assert [item.type for item in envelope.usage] == [REQUESTS]

    @pytest.mark.asyncio
    async def test_latest_price_unknown_symbol(self, spot, client):
        client.on("GET", "/api/v2/spot/market/tickers", [])

        assert (await spot.latest_price("NOPE")).reason == "Symbol NOPE not found"

    @pytest.mark.asyncio
    async def test_spot_exchange_info_converts_quote_minimum(self, spot, client):
        client.on("GET", "/api/v2/spot/market/tickers", [{"symbol": "BTCUSDT", "lastPr": "20000"}])
        client.on("GET", "/api/v2/spot/public/symbols", [
            {"symbol": "ETHBTC", "baseCoin": "ETH", "quoteCoin": "BTC", "minTradeUSDT": "10", "quantityPrecision": "4",
             "pricePrecision": "6", "quotePrecision": "8", "orderQuantity": "200", "status": "online"},
            {"symbol": "OLDBTC", "baseCoin": "OLD", "quoteCoin": "BTC", "status": "offline"},
        ])

        envelope = await spot.get_all_exchange_info()

        assert [info.pair for info in envelope.data] == ["ETHBTC"]
        info = envelope.data[0]
        assert info.quote_asset.min_amount == 0.0005
        assert info.base_asset.step == 0.0001
        assert info.price_asset_precision == 6

    @pytest.mark.asyncio
    async def test_spot_history_candles_when_end_given(self, spot, client):
        client.on("GET", "/api/v2/spot/market/history-candles", [["1695800000000", "1", "2", "0.5", "1.5", "10", "15", "15"]])

        envelope = await spot.get_candles("BTCUSDT", "2h", end=1695800000000)

        assert envelope.data[0].volume == "15"
        assert client.calls("GET", "/api/v2/spot/market/history-candles")[0]["granularity"] == "1h"

    @pytest.mark.asyncio
    async def test_futures_prices_per_product_type(self, usdm, client):
        client.on("GET", "/api/v2/mix/market/tickers", [{"symbol": "BTCUSDT", "lastPr": "1"}], [{"symbol": "BTCPERP", "lastPr": "2"}])

        envelope = await usdm.get_all_prices()

        assert [p.pair for p in envelope.data] == ["BTCUSDT", "BTCPERP"]
        assert [c["productType"] for c in client.calls("GET", "/api/v2/mix/market/tickers")] == ["USDT-FUTURES", "USDC-FUTURES"]


# ============================================
# Fees
# ============================================

class TestFees:

    @pytest.mark.asyncio
    async def test_failed_lookup_uses_published_fee(self, usdm, client):
        client.on("GET", "/api/v2/mix/market/contracts", [
            {"symbol": "BTCUSDT", "symbolStatus": "normal", "makerFeeRate": "0.0002", "takerFeeRate": "0.0006"},
            {"symbol": "ETHUSDT", "symbolStatus": "normal", "makerFeeRate": "0.0002", "takerFeeRate": "0.0006"},
        ], [])

        def trade_rate(params):
            if params["symbol"] == "ETHUSDT":
                raise ExchangeAPIError("Parameter verification failed", code="40017")
            return {"makerFeeRate": "0.0001", "takerFeeRate": "0.0004"}

        client.on("GET", "/api/v2/common/trade-rate", trade_rate)

        envelope = await usdm.get_all_user_fees()

        fees = {fee.pair: (fee.maker, fee.taker) for fee in envelope.data}
        assert fees == {"BTCUSDT": (0.0001, 0.0004), "ETHUSDT": (0.0002, 0.0006)}


# ============================================
# Futures & Account
# ============================================

class TestFutures:

    @pytest.mark.asyncio
    async def test_leverage_per_side_in_isolated_hedge(self, usdm, client):
        client.on("GET", "/api/v2/mix/account/account", {"marginMode": "isolated", "posMode": "hedge_mode"})
        client.on("POST", "/api/v2/mix/account/set-leverage", {})

        envelope = await usdm.futures_change_leverage("BTCUSDT", 20)

        assert envelope.data == 20
        assert [c["holdSide"] for c in client.calls("POST", "/api/v2/mix/account/set-leverage")] == ["long", "short"]

    @pytest.mark.asyncio
    async def test_set_hedge_for_every_product_type(self, usdm, client):
        client.on("POST", "/api/v2/mix/account/set-position-mode", {"posMode": "hedge_mode"})

        envelope = await usdm.futures_set_hedge(True)

        assert envelope.data is True
        assert len(client.calls("POST", "/api/v2/mix/account/set-position-mode")) == 2

    @pytest.mark.asyncio
    async def test_positions_filtered_by_symbol(self, usdm, client):
        client.on("GET", "/api/v2/mix/position/all-position", [
            {"symbol": "BTCUSDT", "total": "0.5", "posMode": "one_way_mode", "marginMode": "crossed"},
            {"symbol": "ETHUSDT", "total": "1", "posMode": "one_way_mode", "marginMode": "crossed"},
        ])

        envelope = await usdm.futures_get_positions("BTCUSDT")

        assert [p.symbol for p in envelope.data] == ["BTCUSDT"]
        assert envelope.data[0].position_side == PositionSide.LONG

    @pytest.mark.asyncio
    async def test_spot_has_no_leverage_bracket(self, spot):
        assert (await spot.futures_leverage_bracket()).status == StatusEnum.NOTOK

    @pytest.mark.asyncio
    async def test_uid_and_affiliate(self, spot, client):
        client.on("GET", "/api/v2/spot/account/info", {"userId": "5551", "inviterId": "42"})

        assert (await spot.get_uid()).data == "5551"
        assert (await spot.get_affiliate(42)).data is True
        assert (await spot.get_affiliate(43)).data is False

    @pytest.mark.asyncio
    async def test_key_authorities(self, spot, usdm, client):
        client.on("GET", "/api/v2/spot/account/info", {"userId": "5551", "authorities": ["stor", "stow", "coor"]})

        assert (await spot.verify_permissions()).data is True
        assert (await usdm.verify_permissions()).data is False


class TestClient:

    def test_unwrap(self):
        client = BitgetAPIClient()

        assert client.unwrap({"code": "00000", "msg": "success", "data": {"a": 1}}) == {"a": 1}
        with pytest.raises(ExchangeAPIError) as info:
            client.unwrap({"code": "40009", "msg": "sign signature error"})
        assert info.value.code == "40009"
