"""
Test Suite

Contains unit tests for the connector.

Structure:
- tests/unit/: Tests for individual components (limiter, retry, adapters, router)

Exchange clients are replaced with in-memory fakes, so no test touches the network.
Uses pytest with pytest-asyncio for testing async functionality.
"""
