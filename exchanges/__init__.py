"""
Exchange Connectors Package

This package contains one adapter per exchange. Each exchange (Binance, Bybit,
OKX, ...) has its own subfolder with:
- api_client.py: REST client (base URL, response unwrapping, error mapping)
- limits.py: Rate-limit windows and the process-wide limiter
- __init__.py: The adapter class implementing ExchangeInterface

The modular design allows adding new exchanges without modifying existing code.
"""
