"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Retry, queue and cache tuning for the exchange adapters
- Exchange-specific endpoint overrides (Binance domain, Hyperliquid testnet)

Usage:
    from core.config import settings

    print(settings.max_retries)
    print(settings.queue_timeout_ms)
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        app_host: Host address for FastAPI server
        app_port: Port number for FastAPI server
        environment: Current environment (development, production)
        log_level: Logging level
        request_timeout: Timeout for a single exchange HTTP request in seconds
        max_retries: Attempt ceiling for transient exchange errors
        queue_timeout_seconds: Longest time a call may wait on a rate limiter
        reference_data_ttl_minutes: Refresh interval of pair/asset-id caches
        binance_domain: Base URL of Binance spot (.com) API
        hyperliquid_env: "live" or "demo" (testnet)
        cors_origins: Allowed CORS origins for the router
    """

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================
    # Exchange Request Handling
    # ============================================

    request_timeout: int = Field(
        default=300,
        description="HTTP request timeout in seconds"
    )

    max_retries: int = Field(
        default=10,
        description="Maximum attempts for a call failing with a transient error"
    )

    queue_timeout_seconds: int = Field(
        default=300,
        description="Fail a call whose rate-limit queue wait exceeded this many seconds"
    )

    reference_data_ttl_minutes: int = Field(
        default=20,
        description="Refresh interval of pair <-> asset id caches"
    )

    # ============================================
    # Exchange Endpoints
    # ============================================

    binance_domain: str = Field(
        default="https://api.binance.com",
        description="Binance spot API base URL (.com domain)"
    )

    hyperliquid_env: str = Field(
        default="live",
        description="Hyperliquid environment: live or demo (testnet)"
    )

    bitget_env: str = Field(
        default="live",
        description="Bitget environment: live or demo (S-prefixed demo product types)"
    )

    # ============================================
    # CORS Configuration
    # ============================================

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=".env",
        # Ignore extra fields in .env that aren't defined here
        extra="ignore",
        # Case-insensitive environment variable matching
        case_sensitive=False
    )

    # ============================================
    # Derived Values
    # ============================================

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def queue_timeout_ms(self) -> int:
        """Queue timeout in milliseconds (time profile units)."""
        return self.queue_timeout_seconds * 1000

    @property
    def reference_data_ttl_ms(self) -> int:
        """Reference-data refresh interval in milliseconds."""
        return self.reference_data_ttl_minutes * 60_000

    @property
    def hyperliquid_testnet(self) -> bool:
        """True when Hyperliquid calls should go to the testnet."""
        return self.hyperliquid_env.lower() == "demo"

    @property
    def bitget_demo(self) -> bool:
        """True when Bitget calls should use the demo product types."""
        return self.bitget_env.lower() == "demo"


# ============================================
# Global Settings Instance
# ============================================

# Create a single instance of settings to be imported throughout the application
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration() -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    if not (1 <= settings.app_port <= 65535):
        raise ValueError(f"Invalid port number: {settings.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{settings.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if settings.max_retries < 1:
        raise ValueError(f"MAX_RETRIES must be at least 1, got {settings.max_retries}")

    if settings.request_timeout <= 0:
        raise ValueError(f"REQUEST_TIMEOUT must be positive, got {settings.request_timeout}")

    if settings.queue_timeout_seconds <= 0:
        raise ValueError(f"QUEUE_TIMEOUT_SECONDS must be positive, got {settings.queue_timeout_seconds}")

    if settings.reference_data_ttl_minutes <= 0:
        raise ValueError(
            f"REFERENCE_DATA_TTL_MINUTES must be positive, got {settings.reference_data_ttl_minutes}"
        )

    if settings.hyperliquid_env.lower() not in ("live", "demo"):
        raise ValueError(f"HYPERLIQUID_ENV must be 'live' or 'demo', got '{settings.hyperliquid_env}'")

    if settings.bitget_env.lower() not in ("live", "demo"):
        raise ValueError(f"BITGET_ENV must be 'live' or 'demo', got '{settings.bitget_env}'")

    logger.info("Configuration validated successfully")
    logger.info(f"Server: {settings.app_host}:{settings.app_port}")
    logger.info(f"Retries: {settings.max_retries} | Queue timeout: {settings.queue_timeout_seconds}s")
    logger.info(f"Binance domain: {settings.binance_domain}")
    logger.info(f"Log level: {settings.log_level.upper()}")
