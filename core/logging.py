"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire application.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import logger, get_logger

    logger.info("General informational messages")

    log = get_logger(__name__)
    log.warning("Binance request must sleep for 1.5s. Method: getBalance")

Log Levels used by the connector:
    DEBUG    - Request/response traces from the REST clients
    INFO     - Startup, factory resolution, cache refreshes
    WARNING  - Rate-limit waits and retry backoffs
    ERROR    - Swallowed reference-data refresh failures, final failures

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include module name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] connector: Application started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    logger = logging.getLogger("connector")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, 'log_level') else "INFO"
except ImportError:
    log_level = "INFO"

# Create the global logger instance
logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger instance named "connector.<name>"

    Example:
        # In exchanges/binance/api_client.py:
        logger = get_logger(__name__)
        # Output: 2024-01-01 12:00:00 [DEBUG] connector.exchanges.binance.api_client: GET /api/v3/account
    """
    return logging.getLogger(f"connector.{name}")


# ============================================
# Log Helper Functions
# ============================================

def log_api_request(exchange: str, method: str, endpoint: str, params: dict = None) -> None:
    """
    Log an outgoing exchange request.

    Example:
        >>> log_api_request("binance", "GET", "/api/v3/klines", {"symbol": "BTCUSDT"})
        [DEBUG] API Request: binance GET /api/v3/klines | Params: {'symbol': 'BTCUSDT'}
    """
    if params:
        logger.debug(f"API Request: {exchange} {method} {endpoint} | Params: {params}")
    else:
        logger.debug(f"API Request: {exchange} {method} {endpoint}")


def log_api_response(exchange: str, endpoint: str, status: int, response_time: float = None) -> None:
    """
    Log an exchange response with status and timing information.

    Example:
        >>> log_api_response("binance", "/api/v3/klines", 200, 0.342)
        [DEBUG] API Response: binance /api/v3/klines | Status: 200 | Time: 0.342s
    """
    time_str = f" | Time: {response_time:.3f}s" if response_time else ""
    logger.debug(f"API Response: {exchange} {endpoint} | Status: {status}{time_str}")


def log_retry(connector: str, cause: str, delay: float, attempt: int, operation: str = None) -> None:
    """
    Log a retry backoff decided by the retry engine.

    Example:
        >>> log_retry("Hyperliquid", "too many requests", 1.0, 2, "getBalance")
        [WARNING] Hyperliquid too many requests wait 1.0s | attempt 2 | getBalance
    """
    operation_str = f" | {operation}" if operation else ""
    logger.warning(f"{connector} {cause} wait {delay:g}s | attempt {attempt}{operation_str}")


logger.debug("Logging system initialized")
