"""Unit tests: components and adapters against in-memory fakes."""
