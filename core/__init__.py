"""
Core Package

Contains the exchange-agnostic core logic including:
- ExchangeInterface: Abstract base class defining the contract for all exchanges
- ExchangeChooser: Registry mapping exchange identifiers to adapter factories
- RateLimiter / KeyedMutex: Shared, per-exchange request budgeting
- RetryEngine: Classification and retry of transient exchange errors
- Schemas: Pydantic models for the result envelope and normalized records

This layer ensures all exchanges follow the same interface, making the system modular and scalable.
"""
