"""
Unit Tests for the Coinbase Advanced Trade adapter

Run with:
    pytest tests/unit/test_coinbase.py -v
"""

import pytest

from core.exceptions import ExchangeAPIError
from core.exchange_interface import FUTURES_TYPE_MISSED, METHOD_NOT_SUPPORTED
from core.schemas import OrderRequest, OrderStatus, OrderType, StatusEnum
from exchanges.coinbase import CoinbaseExchange, convert_order, convert_product
from exchanges.coinbase.api_client import CoinbaseAPIClient
from exchanges.coinbase.limits import PRIVATE, PUBLIC
from tests.unit.fakes import make_adapter


LIMIT_ORDER = {
    "order_id": "0000-000000-000000",
    "product_id": "BTC-USD",
    "client_order_id": "my-order-1",
    "side": "BUY",
    "order_type": "LIMIT",
    "status": "OPEN",
    "completion_percentage": "0",
    "average_filled_price": "0",
    "filled_size": "0",
    "filled_value": "0",
    "created_time": "2024-01-01T00:00:00Z",
    "order_configuration": {"limit_limit_gtc": {"base_size": "0.01", "limit_price": "30000", "post_only": False}},
}

MARKET_ORDER = {
    **LIMIT_ORDER,
    "order_type": "MARKET",
    "status": "FILLED",
    "average_filled_price": "30010.5",
    "filled_size": "0.01",
    "filled_value": "300.105",
    "last_fill_time": "2024-01-01T00:00:01Z",
    "order_configuration": {"market_market_ioc": {"base_size": "0.01"}},
}

HISTORICAL = f"/api/v3/brokerage/orders/historical/{LIMIT_ORDER['order_id']}"


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def exchange(client, sleep):
    return make_adapter(CoinbaseExchange, client=client, sleep=sleep)


# ============================================
# Mapping Functions
# ============================================

class TestMapping:

    def test_open_limit_order(self):
        order = convert_order(LIMIT_ORDER)

        assert order.status == OrderStatus.NEW
        assert order.price == "30000"
        assert order.orig_qty == "0.01"
        assert order.transact_time == 1704067200000
        assert order.update_time == 1704067200000

    def test_partially_filled(self):
        order = convert_order({**LIMIT_ORDER, "completion_percentage": "40"})

        assert order.status == OrderStatus.PARTIALLY_FILLED

    def test_market_order_uses_average_price(self):
        order = convert_order(MARKET_ORDER)

        assert order.type == OrderType.MARKET
        assert order.price == "30010.5"
        assert order.update_time == 1704067201000
        assert order.cummulative_quote_qty == "300.105"

    def test_quote_sized_market_buy(self):
        order = convert_order({
            **MARKET_ORDER,
            "average_filled_price": "20000",
            "order_configuration": {"market_market_ioc": {"quote_size": "100"}},
        })

        assert order.orig_qty == "0.005"

    def test_product(self):
        info = convert_product({
            "product_id": "BTC-USD", "base_currency_id": "BTC", "quote_currency_id": "USD",
            "base_min_size": "0.00000001", "base_max_size": "3400", "base_increment": "0.00000001",
            "quote_min_size": "1", "price_increment": "0.01",
        })

        assert info.price_asset_precision == 2
        assert info.quote_asset.min_amount == 1
        assert info.base_asset.step == 0.00000001


# ============================================
# Orders
# ============================================

class TestOrders:

    @pytest.mark.asyncio
    async def test_market_order_sized_in_base(self, exchange, client, sleep):
        client.on("POST", "/api/v3/brokerage/orders", {"success": True, "success_response": {"order_id": LIMIT_ORDER["order_id"]}})
        client.on("GET", HISTORICAL, {"order": MARKET_ORDER})
        order = OrderRequest(symbol="BTC-USD", side="BUY", quantity=0.01, price=0, type="MARKET", new_client_order_id="my-order-1")

        envelope = await exchange.open_order(order)

        assert envelope.data.status == OrderStatus.FILLED
        assert sleep.calls == [1.0]
        sent = client.calls("POST", "/api/v3/brokerage/orders")[0]
        assert sent["order_configuration"] == {"market_market_ioc": {"base_size": "0.01"}}
        assert sent["client_order_id"] == "my-order-1"

    @pytest.mark.asyncio
    async def test_lookup_waits_for_missing_order(self, exchange, client, sleep):
        client.on("GET", HISTORICAL, ExchangeAPIError("order not found", status=404, code=404), {"order": LIMIT_ORDER})

        envelope = await exchange.get_order("BTC-USD", LIMIT_ORDER["order_id"])

        assert envelope.ok
        assert sleep.calls == [5.0]

    @pytest.mark.asyncio
    async def test_lookup_gives_up(self, exchange, client, sleep):
        client.on("GET", HISTORICAL, {})

        envelope = await exchange.get_order("BTC-USD", LIMIT_ORDER["order_id"])

        assert envelope.reason == "Coinbase order not found after execution."
        assert sleep.calls == [5.0] * 5
        assert len(client.calls("GET", HISTORICAL)) == 6

    @pytest.mark.asyncio
    async def test_cancel_looks_up_without_waiting(self, exchange, client, sleep):
        client.on("POST", "/api/v3/brokerage/orders/batch_cancel", {"results": [{"success": True, "order_id": LIMIT_ORDER["order_id"]}]})
        client.on("GET", HISTORICAL, {"order": {**LIMIT_ORDER, "status": "CANCELLED"}})

        envelope = await exchange.cancel_order("BTC-USD", LIMIT_ORDER["order_id"])

        assert envelope.data.status == OrderStatus.CANCELED
        assert sleep.calls == []
        assert client.calls("POST", "/api/v3/brokerage/orders/batch_cancel") == [{"order_ids": [LIMIT_ORDER["order_id"]]}]

    @pytest.mark.asyncio
    async def test_cancel_failure_reason(self, exchange, client):
        client.on("POST", "/api/v3/brokerage/orders/batch_cancel", {"results": [{"success": False, "failure_reason": "DUPLICATE_CANCEL_REQUEST"}]})

        envelope = await exchange.cancel_order_by_order_id("BTC-USD", "x")

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == "DUPLICATE_CANCEL_REQUEST"


# ============================================
# Market Data & Fees
# ============================================

class TestMarketData:

    @pytest.mark.asyncio
    async def test_latest_price_uses_public_limit(self, exchange, client):
        client.on("GET", "/api/v3/brokerage/market/products/BTC-USD", {"product_id": "BTC-USD", "price": "42000.5"})

        envelope = await exchange.latest_price("BTC-USD")

        assert envelope.data == 42000.5
        assert exchange.limiter.weight(PUBLIC) == 1
        assert exchange.limiter.weight(PRIVATE) == 0
        assert client.requests[0][3] is False

    @pytest.mark.asyncio
    async def test_candles_clamped_and_sorted(self, exchange, client):
        path = "/api/v3/brokerage/market/products/BTC-USD/candles"
        client.on("GET", path, {"candles": [
            {"start": "1700000060", "open": "2", "high": "2", "low": "2", "close": "2", "volume": "1"},
            {"start": "1700000000", "open": "1", "high": "1", "low": "1", "close": "1", "volume": "1"},
        ]})
        start = 1_700_000_000_000

        envelope = await exchange.get_candles("BTC-USD", "1m", start=start, end=start + 1000 * 60_000)

        assert [c.time for c in envelope.data] == [1_700_000_000_000, 1_700_000_060_000]
        params = client.calls("GET", path)[0]
        assert params == {"start": "1700000000", "end": str(1_700_000_000 + 300 * 60), "granularity": "ONE_MINUTE"}

    @pytest.mark.asyncio
    async def test_weekly_candles_fall_back_to_daily(self, exchange, client):
        path = "/api/v3/brokerage/market/products/BTC-USD/candles"
        client.on("GET", path, {"candles": []})

        await exchange.get_candles("BTC-USD", "1w", start=1_700_000_000_000, end=1_700_086_400_000)

        assert client.calls("GET", path)[0]["granularity"] == "ONE_DAY"

    @pytest.mark.asyncio
    async def test_fees_apply_account_tier(self, exchange, client):
        client.on("GET", "/api/v3/brokerage/market/products", {"products": [{"product_id": "BTC-USD", "price_increment": "0.01"}]})
        client.on("GET", "/api/v3/brokerage/transaction_summary", {"fee_tier": {"maker_fee_rate": "0.004", "taker_fee_rate": "0.006"}})

        known = await exchange.get_user_fees("BTC-USD")
        unknown = await exchange.get_user_fees("DOGE-USD")

        assert (known.data.maker, known.data.taker) == (0.004, 0.006)
        assert (unknown.data.maker, unknown.data.taker) == (0.006, 0.008)

    @pytest.mark.asyncio
    async def test_balance_pages(self, exchange, client):
        client.on(
            "GET", "/api/v3/brokerage/accounts",
            {"accounts": [{"currency": "BTC", "available_balance": {"value": "1"}, "hold": {"value": "0.5"}}], "has_next": True, "cursor": "c2"},
            {"accounts": [{"currency": "USD", "available_balance": {"value": "10"}, "hold": {"value": "0"}}], "has_next": False, "cursor": ""},
        )

        envelope = await exchange.get_balance()

        assert [(a.asset, a.free, a.locked) for a in envelope.data] == [("BTC", 1, 0.5), ("USD", 10, 0)]
        assert [c["cursor"] for c in client.calls("GET", "/api/v3/brokerage/accounts")] == [None, "c2"]


# ============================================
# Unsupported Operations
# ============================================

class TestUnsupported:

    @pytest.mark.asyncio
    async def test_futures_operations(self, exchange, client):
        assert (await exchange.futures_change_leverage("BTC-USD", 2)).reason == FUTURES_TYPE_MISSED
        assert (await exchange.futures_get_positions()).reason == FUTURES_TYPE_MISSED
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_uid_affiliate_rebates(self, exchange):
        assert (await exchange.get_uid()).data == -1
        assert (await exchange.get_affiliate("1")).data is False
        assert (await exchange.get_rebate_overview(0)).reason == METHOD_NOT_SUPPORTED


# ============================================
# Key Permissions
# ============================================

class TestPermissions:

    @pytest.mark.asyncio
    async def test_listed_account_accepted(self, exchange, client):
        client.on("GET", "/api/v3/brokerage/accounts", {"accounts": [{"currency": "BTC"}], "has_next": True})

        envelope = await exchange.verify_permissions()

        assert envelope.data is True
        assert client.calls("GET", "/api/v3/brokerage/accounts") == [{"limit": 1}]

    @pytest.mark.asyncio
    async def test_failure_is_false(self, exchange, client):
        client.on("GET", "/api/v3/brokerage/accounts", ExchangeAPIError("Permission denied", code="PERMISSION_DENIED", status=400))

        envelope = await exchange.verify_permissions()

        assert envelope.status == StatusEnum.OK
        assert envelope.data is False


class TestClient:

    def test_error_response_in_success_answer(self):
        payload = {"success": False, "error_response": {"error": "INSUFFICIENT_FUND", "message": "Insufficient balance in source account"}}

        with pytest.raises(ExchangeAPIError) as info:
            CoinbaseAPIClient().unwrap(payload)

        assert info.value.message == "INSUFFICIENT_FUND: Insufficient balance in source account"
        assert info.value.code == "INSUFFICIENT_FUND"

    def test_http_error_details(self):
        error = CoinbaseAPIClient().error_from_response(401, {"error": "UNAUTHORIZED", "error_details": "Unauthorized\n"}, "", "Unauthorized")

        assert error.message == "Unauthorized"
        assert error.status == 401
