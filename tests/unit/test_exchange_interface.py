"""
Unit Tests for ExchangeInterface

These tests verify that:
- ExchangeInterface is properly defined as an abstract class
- The request pipeline meters, retries and wraps every call in an Envelope
- OK and NOTOK envelopes are mutually exclusive
- Time profiles stay monotonic across retries
- Optional operations degrade to fixed values or "Method not supported"

Run with:
    pytest tests/unit/test_exchange_interface.py -v
"""

import pytest
from pydantic import ValidationError

from core.config import settings
from core.exceptions import ExchangeAPIError
from core.exchange_interface import (
    CREDENTIALS_MISSING,
    EMPTY_RESPONSE,
    FUTURES_TYPE_MISSED,
    METHOD_NOT_SUPPORTED,
    ExchangeInterface,
)
from core.rate_limit import LimitWindow, RateLimiter
from core.retry import EXCHANGE_PROBLEMS
from core.schemas import Envelope, Futures, MarginType, PairPrice, StatusEnum, TimeProfile
from tests.unit.fakes import FakeClient


# ============================================
# Dummy Exchange for Testing
# ============================================

class DummyExchange(ExchangeInterface):
    """
    Minimal implementation of ExchangeInterface for testing purposes.

    Only latest_price, get_all_prices, get_balance and get_all_open_orders
    talk to the (fake) client; the remaining abstract methods are stubs.
    """

    name = "dummy"
    capabilities = {"spot": True, "futures": True, "hedge": False, "rebates": False, "affiliate": False}

    def create_client(self):
        return FakeClient()

    def create_limiter(self):
        return RateLimiter("dummy", {"weight": LimitWindow(100, 60_000)})

    async def latest_price(self, symbol):
        return await self._request(
            "latestPrice",
            lambda: self.client.request("GET", "/price", {"symbol": symbol}),
            lambda raw: float(raw["price"]),
            private=False
        )

    async def get_all_prices(self):
        return await self._request(
            "getAllPrices",
            lambda: self.client.request("GET", "/prices"),
            lambda raw: [PairPrice(pair=p["symbol"], price=float(p["price"])) for p in raw],
            weight=4,
            private=False
        )

    async def get_balance(self):
        return await self._request("getBalance", lambda: self.client.request("GET", "/balance", signed=True))

    async def get_all_open_orders(self, symbol=None):
        return await self._request(
            "getAllOpenOrders",
            lambda: self.client.request("GET", "/open", signed=True),
            lambda raw: list(raw)
        )

    async def open_order(self, order):
        return self.method_not_supported()

    async def get_order(self, symbol, new_client_order_id):
        return self.method_not_supported()

    async def cancel_order(self, symbol, new_client_order_id):
        return self.method_not_supported()

    async def get_exchange_info(self, symbol):
        return self.method_not_supported()

    async def get_all_exchange_info(self):
        return self.method_not_supported()

    async def get_user_fees(self, symbol):
        return self.method_not_supported()

    async def get_all_user_fees(self):
        return self.method_not_supported()

    async def get_candles(self, symbol, interval, start=None, end=None, count=None):
        return self.method_not_supported()

    async def get_trades(self, symbol, from_id=None, start=None, end=None):
        return self.return_good(self.get_empty_time_profile())([])


class AdvancingClock:
    """Clock moved forward by the sleeps the adapter performs."""

    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += int(seconds * 1000)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def exchange(client, sleep):
    return DummyExchange("key", "secret", client=client, sleep=sleep)


# ============================================
# Tests for the abstract contract
# ============================================

class TestExchangeInterface:

    def test_cannot_instantiate_abstract_interface(self):
        with pytest.raises(TypeError):
            ExchangeInterface()

    def test_incomplete_implementation_cannot_be_instantiated(self):
        class Incomplete(ExchangeInterface):
            name = "incomplete"

        with pytest.raises(TypeError):
            Incomplete()

    def test_supports_reads_capabilities(self, exchange):
        assert exchange.supports("spot") is True
        assert exchange.supports("hedge") is False
        assert exchange.supports("unknown") is False

    def test_market_kind_properties(self, client):
        spot = DummyExchange(client=client)
        usdm = DummyExchange(futures=Futures.usdm, client=client)
        coinm = DummyExchange(futures="coinm", client=client)

        assert not spot.is_futures and not spot.has_credentials
        assert usdm.is_futures and usdm.is_usdm and not usdm.is_coinm
        assert coinm.is_coinm

    @pytest.mark.asyncio
    async def test_close_closes_client(self, exchange, client):
        async with exchange:
            pass

        assert client.closed


# ============================================
# Tests for the request pipeline
# ============================================

class TestRequestPipeline:

    @pytest.mark.asyncio
    async def test_success_envelope(self, exchange, client):
        client.on("GET", "/price", {"price": "30000.5"})

        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.status == StatusEnum.OK
        assert envelope.data == 30000.5
        assert envelope.reason is None
        assert envelope.usage[0].type == "weight"
        assert envelope.usage[0].value == pytest.approx(0.01)
        assert client.calls("GET", "/price") == [{"symbol": "BTCUSDT"}]

    @pytest.mark.asyncio
    async def test_weight_is_reserved(self, exchange, client):
        client.on("GET", "/prices", [{"symbol": "BTCUSDT", "price": "1"}])

        envelope = await exchange.get_all_prices()

        assert envelope.data == [PairPrice(pair="BTCUSDT", price=1.0)]
        assert exchange.limiter.weight("weight") == 4

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_without_request(self, client):
        exchange = DummyExchange(client=client)

        envelope = await exchange.get_balance()

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == CREDENTIALS_MISSING
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, exchange, client, sleep):
        client.on("GET", "/price", ExchangeAPIError("Too many requests"), ExchangeAPIError("Too many requests"), {"price": "2"})

        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.ok
        assert envelope.time_profile.attempts == 3
        assert sleep.calls == [1, 1]

    @pytest.mark.asyncio
    async def test_exhausted_retries_carry_connector_prefix(self, exchange, client):
        client.on("GET", "/price", ExchangeAPIError("socket hang up"))

        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == f"{EXCHANGE_PROBLEMS}socket hang up"
        assert envelope.time_profile.attempts == settings.max_retries

    @pytest.mark.asyncio
    async def test_permanent_error_fails_at_once(self, exchange, client, sleep):
        client.on("GET", "/price", ExchangeAPIError("Invalid symbol.", code=-1121))

        envelope = await exchange.latest_price("NOPE")

        assert envelope.reason == "Invalid symbol."
        assert envelope.time_profile.attempts == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_normalization_error_becomes_failure(self, exchange, client):
        client.on("GET", "/price", {"unexpected": True})

        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.status == StatusEnum.NOTOK
        assert "price" in envelope.reason
        assert len(client.requests) == 1

    @pytest.mark.asyncio
    async def test_null_payload_fails_without_retry(self, exchange, client, sleep):
        client.on("GET", "/balance", None)

        envelope = await exchange.get_balance()

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == EMPTY_RESPONSE
        assert envelope.data is None
        assert len(client.requests) == 1
        assert sleep.calls == []

    def test_success_builder_rejects_missing_value(self, exchange):
        envelope = exchange.return_good(exchange.get_empty_time_profile())(None)

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == EMPTY_RESPONSE

    def test_mapping_of_fetched_payload_missing_keys(self, exchange):
        profile = exchange.get_empty_time_profile()

        envelope = exchange.return_mapped(profile, lambda: [PairPrice(pair=p["symbol"], price=1) for p in [{"id": 1}]])

        assert envelope.status == StatusEnum.NOTOK
        assert "symbol" in envelope.reason
        assert envelope.time_profile.outcoming_time >= profile.incoming_time

    def test_mapping_of_fetched_payload(self, exchange):
        envelope = exchange.return_mapped(exchange.get_empty_time_profile(), lambda: [1, 2])

        assert envelope.data == [1, 2]

    @pytest.mark.asyncio
    async def test_limiter_wait_is_slept_and_profiled(self):
        clock = AdvancingClock()
        limiter = RateLimiter("tight", {"weight": LimitWindow(1, 60_000, align=False)}, clock=clock)
        client = FakeClient().on("GET", "/price", {"price": "1"})
        exchange = DummyExchange(client=client, limiter=limiter, sleep=clock.sleep)

        await exchange.latest_price("BTCUSDT")
        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.ok
        assert clock.now >= 1_060_000

    @pytest.mark.asyncio
    async def test_queue_timeout_fails_the_call(self, exchange, client, monkeypatch):
        monkeypatch.setattr(settings, "queue_timeout_seconds", 0)
        client.on("GET", "/price", {"price": "1"})

        envelope = await exchange.latest_price("BTCUSDT")

        assert envelope.status == StatusEnum.NOTOK
        assert envelope.reason == "Response timeout"
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_time_profile_is_monotonic_across_retries(self, exchange, client):
        client.on("GET", "/price", ExchangeAPIError("bad request"), {"price": "1"})

        envelope = await exchange.latest_price("BTCUSDT")
        profile = envelope.time_profile

        assert profile.attempts == 2
        assert profile.exchange_request_end_time >= profile.exchange_request_start_time > 0
        assert profile.in_queue_end_time >= profile.in_queue_start_time > 0
        assert profile.outcoming_time >= profile.incoming_time

    @pytest.mark.asyncio
    async def test_count_open_orders_is_derived(self, exchange, client):
        client.on("GET", "/open", [{"id": 1}, {"id": 2}, {"id": 3}])

        envelope = await exchange.count_open_orders()

        assert envelope.data == 3


# ============================================
# Tests for optional operations
# ============================================

class TestOptionalOperations:

    @pytest.mark.asyncio
    async def test_futures_operations_on_spot_report_missing_futures_type(self, exchange):
        for envelope in (
            await exchange.futures_change_leverage("BTCUSDT", 10),
            await exchange.futures_change_margin_type("BTCUSDT", MarginType.ISOLATED, 5),
            await exchange.futures_get_hedge(),
            await exchange.futures_set_hedge(True),
            await exchange.futures_leverage_bracket(),
            await exchange.futures_get_positions(),
        ):
            assert envelope.reason == FUTURES_TYPE_MISSED

    @pytest.mark.asyncio
    async def test_futures_defaults(self, client):
        exchange = DummyExchange("key", "secret", futures=Futures.usdm, client=client)

        assert (await exchange.futures_get_hedge()).data is False
        assert (await exchange.futures_set_hedge(True)).reason == METHOD_NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_account_defaults(self, exchange):
        assert (await exchange.get_affiliate("123")).data is False
        assert (await exchange.get_uid()).reason == METHOD_NOT_SUPPORTED
        assert (await exchange.get_rebate_records(0)).reason == METHOD_NOT_SUPPORTED
        assert (await exchange.get_rebate_overview(0)).reason == METHOD_NOT_SUPPORTED
        assert (await exchange.cancel_order_by_order_id("BTCUSDT", "1")).reason == METHOD_NOT_SUPPORTED
        assert (await exchange.get_account_type()).reason == METHOD_NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_readable_balance_verifies_the_key(self, exchange, client):
        client.on("GET", "/balance", [], ExchangeAPIError("Invalid API-key", code=401))

        assert (await exchange.verify_permissions()).data is True
        assert (await exchange.verify_permissions()).reason == "Invalid API-key"


# ============================================
# Tests for the Envelope schema
# ============================================

class TestEnvelope:

    def test_ok_requires_data_and_no_reason(self):
        with pytest.raises(ValidationError):
            Envelope(status=StatusEnum.OK, time_profile=TimeProfile())
        with pytest.raises(ValidationError):
            Envelope(status=StatusEnum.OK, data=1, reason="x", time_profile=TimeProfile())

    def test_notok_requires_reason_and_no_data(self):
        with pytest.raises(ValidationError):
            Envelope(status=StatusEnum.NOTOK, time_profile=TimeProfile())
        with pytest.raises(ValidationError):
            Envelope(status=StatusEnum.NOTOK, data=1, reason="x", time_profile=TimeProfile())

    def test_false_is_valid_data(self):
        assert Envelope(status=StatusEnum.OK, data=False, time_profile=TimeProfile()).ok

    def test_to_response_uses_camel_case(self):
        envelope = Envelope(status=StatusEnum.NOTOK, reason="boom", time_profile=TimeProfile(incoming_time=5))

        body = envelope.to_response()

        assert body["status"] == "NOTOK"
        assert body["reason"] == "boom"
        assert "data" not in body
        assert body["timeProfile"]["incomingTime"] == 5
        assert body["timeProfile"]["attempts"] == 1


class TestTimeProfile:

    def test_restarted_phase_keeps_accumulated_time(self):
        profile = TimeProfile(incoming_time=1_000)
        profile.start_phase("queue", now=1_000)
        profile.end_phase("queue", now=1_300)
        profile.start_phase("queue", now=2_000)
        profile.end_phase("queue", now=2_050)

        assert profile.elapsed("queue") == 350
        assert profile.in_queue_end_time >= profile.in_queue_start_time

    def test_end_never_precedes_start(self):
        profile = TimeProfile()
        profile.start_phase("exchange", now=5_000)
        profile.end_phase("exchange", now=4_000)

        assert profile.exchange_request_end_time == 5_000
        assert profile.elapsed("exchange") == 0

    def test_unknown_phase_raises(self):
        with pytest.raises(ValueError):
            TimeProfile().start_phase("network")
