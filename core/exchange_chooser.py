"""
Exchange Chooser - Registry and Factory for Exchange Adapters

Maps the public exchange identifiers (``binanceUsdm``, ``okxInverse``, ...)
to adapter factories. A factory is the adapter class with its market kind
(and Binance domain) already bound, so callers only supply credentials.

Design Benefits:
    - Single source of truth for the supported identifiers
    - Adapters are imported lazily, on first use of their identifier
    - Adding an exchange means adding an adapter and one registry entry

Identifiers:
    binance, binanceUS, binanceUsdm, binanceCoinm
    kucoin, kucoinLinear, kucoinInverse
    bybit, bybitLinear, bybitInverse
    okx, okxLinear, okxInverse
    bitget, bitgetUsdm, bitgetCoinm
    coinbase
    hyperliquid, hyperliquidLinear

Example Usage:
    factory = ExchangeChooser.choose_exchange_factory("bybitLinear")
    exchange = factory(key="...", secret="...")

    exchange = ExchangeChooser.get_exchange("okx", key="...", secret="...", passphrase="...")
    envelope = await exchange.get_balance()
"""

import importlib
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.exceptions import ConfigurationError
from core.exchange_interface import ExchangeInterface
from core.logging import get_logger
from core.schemas import Credentials, ExchangeDomain, ExchangeEnum, Futures

logger = get_logger(__name__)

ExchangeFactory = Callable[..., ExchangeInterface]

# identifier -> (module, class name, positional arguments bound into the factory)
REGISTRY: Dict[ExchangeEnum, Tuple[str, str, Tuple[Any, ...]]] = {
    ExchangeEnum.binance: ("exchanges.binance", "BinanceExchange", (ExchangeDomain.com, Futures.null)),
    ExchangeEnum.binanceUS: ("exchanges.binance", "BinanceExchange", (ExchangeDomain.us, Futures.null)),
    ExchangeEnum.binanceUsdm: ("exchanges.binance", "BinanceExchange", (ExchangeDomain.com, Futures.usdm)),
    ExchangeEnum.binanceCoinm: ("exchanges.binance", "BinanceExchange", (ExchangeDomain.com, Futures.coinm)),
    ExchangeEnum.kucoin: ("exchanges.kucoin", "KucoinExchange", (Futures.null,)),
    ExchangeEnum.kucoinLinear: ("exchanges.kucoin", "KucoinExchange", (Futures.usdm,)),
    ExchangeEnum.kucoinInverse: ("exchanges.kucoin", "KucoinExchange", (Futures.coinm,)),
    ExchangeEnum.bybit: ("exchanges.bybit", "BybitExchange", (Futures.null,)),
    ExchangeEnum.bybitLinear: ("exchanges.bybit", "BybitExchange", (Futures.usdm,)),
    ExchangeEnum.bybitInverse: ("exchanges.bybit", "BybitExchange", (Futures.coinm,)),
    ExchangeEnum.okx: ("exchanges.okx", "OKXExchange", (Futures.null,)),
    ExchangeEnum.okxLinear: ("exchanges.okx", "OKXExchange", (Futures.usdm,)),
    ExchangeEnum.okxInverse: ("exchanges.okx", "OKXExchange", (Futures.coinm,)),
    ExchangeEnum.bitget: ("exchanges.bitget", "BitgetExchange", (Futures.null,)),
    ExchangeEnum.bitgetUsdm: ("exchanges.bitget", "BitgetExchange", (Futures.usdm,)),
    ExchangeEnum.bitgetCoinm: ("exchanges.bitget", "BitgetExchange", (Futures.coinm,)),
    ExchangeEnum.coinbase: ("exchanges.coinbase", "CoinbaseExchange", ()),
    ExchangeEnum.hyperliquid: ("exchanges.hyperliquid", "HyperliquidExchange", (Futures.null,)),
    ExchangeEnum.hyperliquidLinear: ("exchanges.hyperliquid", "HyperliquidExchange", (Futures.usdm,)),
}


class ExchangeChooser:
    """
    Resolve exchange identifiers to adapters.

    Example:
        >>> ExchangeChooser.choose_exchange_factory("unknown") is None
        True
        >>> ExchangeChooser.get_exchange("binanceUsdm").futures
        <Futures.usdm: 'usdm'>
    """

    @staticmethod
    def list_exchanges() -> List[str]:
        """All supported identifiers, in registry order."""
        return [identifier.value for identifier in REGISTRY]

    @staticmethod
    def choose_exchange_factory(identifier: Optional[str]) -> Optional[ExchangeFactory]:
        """
        Factory for ``identifier`` or None when the identifier is unknown.

        The returned callable accepts the credentials and adapter options as
        keyword arguments (key, secret, passphrase, keys_type, okx_source,
        bybit_host, code, environment).
        """
        try:
            entry = REGISTRY[ExchangeEnum(identifier)]
        except ValueError:
            return None
        module_name, class_name, bound = entry
        adapter = getattr(importlib.import_module(module_name), class_name)
        return partial(adapter, *bound)

    @classmethod
    def get_capabilities(cls, identifier: str) -> Dict[str, bool]:
        """Capabilities dict of the adapter behind ``identifier`` ({} when unknown)."""
        factory = cls.choose_exchange_factory(identifier)
        if factory is None:
            return {}
        capabilities = dict(factory.func.capabilities)
        capabilities["futures"] = any(arg in (Futures.usdm, Futures.coinm) for arg in factory.args)
        return capabilities

    @classmethod
    def get_exchange(
        cls,
        identifier: Optional[str],
        key: Optional[str] = None,
        secret: Optional[str] = None,
        passphrase: Optional[str] = None,
        **options: Any
    ) -> ExchangeInterface:
        """
        Build the adapter for ``identifier``.

        Raises:
            ConfigurationError: unknown identifier
        """
        factory = cls.choose_exchange_factory(identifier)
        if factory is None:
            logger.error(f"Unsupported exchange requested: {identifier}")
            raise ConfigurationError(
                f"Exchange '{identifier}' is not supported. Available exchanges: {', '.join(cls.list_exchanges())}"
            )
        return factory(key=key, secret=secret, passphrase=passphrase, **options)

    @classmethod
    def from_credentials(cls, identifier: Optional[str], credentials: Credentials) -> ExchangeInterface:
        """Build the adapter from a Credentials record (HTTP headers, config, ...)."""
        return cls.get_exchange(identifier, **credentials.adapter_kwargs())


__all__ = ["ExchangeChooser", "ExchangeFactory", "REGISTRY"]
