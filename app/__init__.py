"""
FastAPI Application Package

This package contains the FastAPI application that exposes the exchange
adapters over REST. Every endpoint resolves an adapter through the
ExchangeChooser and returns its result envelope.
"""
