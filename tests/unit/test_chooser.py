"""
Unit Tests for the Exchange Chooser

Run with:
    pytest tests/unit/test_chooser.py -v
"""

import pytest

from core.exceptions import ConfigurationError
from core.exchange_chooser import REGISTRY, ExchangeChooser
from core.schemas import Credentials, ExchangeDomain, ExchangeEnum, Futures, OKXSource
from exchanges.binance import BinanceExchange
from exchanges.bitget import BitgetExchange
from exchanges.coinbase import CoinbaseExchange
from exchanges.hyperliquid import HyperliquidExchange
from exchanges.okx import OKXExchange


class TestRegistry:

    def test_every_identifier_registered(self):
        assert ExchangeChooser.list_exchanges() == [identifier.value for identifier in ExchangeEnum]
        assert len(REGISTRY) == 19

    @pytest.mark.parametrize("identifier", [None, "", "binanceSpot", "BINANCE", "ftx"])
    def test_unknown_identifier(self, identifier):
        assert ExchangeChooser.choose_exchange_factory(identifier) is None

    def test_get_exchange_unknown_raises(self):
        with pytest.raises(ConfigurationError, match="Exchange 'ftx' is not supported"):
            ExchangeChooser.get_exchange("ftx", key="k")


class TestFactories:

    @pytest.mark.parametrize("identifier,cls,futures", [
        ("binance", BinanceExchange, Futures.null),
        ("binanceCoinm", BinanceExchange, Futures.coinm),
        ("okxLinear", OKXExchange, Futures.usdm),
        ("bitgetUsdm", BitgetExchange, Futures.usdm),
        ("bitgetCoinm", BitgetExchange, Futures.coinm),
        ("coinbase", CoinbaseExchange, Futures.null),
        ("hyperliquidLinear", HyperliquidExchange, Futures.usdm),
    ])
    def test_market_kind_bound(self, identifier, cls, futures):
        exchange = ExchangeChooser.get_exchange(identifier, key="k", secret="s", passphrase="p")

        assert isinstance(exchange, cls)
        assert exchange.futures == futures
        assert (exchange.key, exchange.secret) == ("k", "s")

    def test_binance_domain_bound(self):
        exchange = ExchangeChooser.choose_exchange_factory("binanceUS")(key="k", secret="s")

        assert exchange.domain == ExchangeDomain.us
        assert exchange.futures == Futures.null

    def test_from_credentials(self):
        credentials = Credentials(key="k", secret="s", passphrase="p", okx_source=OKXSource.com)

        exchange = ExchangeChooser.from_credentials("okxInverse", credentials)

        assert exchange.futures == Futures.coinm
        assert exchange.passphrase == "p"
        assert exchange.okx_source == OKXSource.com


class TestCapabilities:

    def test_futures_flag_follows_identifier(self):
        assert ExchangeChooser.get_capabilities("bybit")["futures"] is False
        assert ExchangeChooser.get_capabilities("bybitInverse")["futures"] is True

    def test_adapter_capabilities_kept(self):
        capabilities = ExchangeChooser.get_capabilities("coinbase")

        assert capabilities["spot"] is True
        assert capabilities["hedge"] is False

    def test_unknown(self):
        assert ExchangeChooser.get_capabilities("ftx") == {}
