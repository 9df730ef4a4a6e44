"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when nothing is configured
- Derived millisecond values follow the configured minutes/seconds
- Validation catches invalid configurations

Run with:
    pytest tests/unit/test_config.py -v
"""

import pytest

from core.config import Settings, settings, validate_configuration


class TestConfigurationLoading:
    """Test that configuration loads with sane values"""

    def test_app_port_is_valid_integer(self):
        assert isinstance(settings.app_port, int)
        assert 1 <= settings.app_port <= 65535

    def test_log_level_is_set(self):
        assert isinstance(settings.log_level, str)
        assert len(settings.log_level) > 0

    def test_binance_domain_is_url(self):
        assert settings.binance_domain.startswith("http")

    def test_defaults(self, monkeypatch):
        """Defaults apply when the environment is empty"""
        for name in ("MAX_RETRIES", "QUEUE_TIMEOUT_SECONDS", "REFERENCE_DATA_TTL_MINUTES", "HYPERLIQUID_ENV", "BITGET_ENV"):
            monkeypatch.delenv(name, raising=False)

        defaults = Settings(_env_file=None)

        assert defaults.max_retries == 10
        assert defaults.queue_timeout_seconds == 300
        assert defaults.reference_data_ttl_minutes == 20
        assert defaults.hyperliquid_env == "live"
        assert defaults.bitget_env == "live"

    def test_environment_variables_override(self, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "3")
        monkeypatch.setenv("BITGET_ENV", "demo")

        configured = Settings(_env_file=None)

        assert configured.max_retries == 3
        assert configured.bitget_demo is True


class TestConfigurationProperties:
    """Test property methods and computed values"""

    def test_queue_timeout_ms(self):
        assert Settings(_env_file=None, queue_timeout_seconds=2).queue_timeout_ms == 2000

    def test_reference_data_ttl_ms(self):
        assert Settings(_env_file=None, reference_data_ttl_minutes=20).reference_data_ttl_ms == 1_200_000

    @pytest.mark.parametrize("env,testnet", [("live", False), ("demo", True), ("DEMO", True)])
    def test_hyperliquid_testnet(self, env, testnet):
        assert Settings(_env_file=None, hyperliquid_env=env).hyperliquid_testnet is testnet

    def test_cors_origins_list(self):
        configured = Settings(_env_file=None, cors_origins="http://a.test, http://b.test,")

        assert configured.cors_origins_list == ["http://a.test", "http://b.test"]


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        try:
            validate_configuration()
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    @pytest.mark.parametrize("field,value,message", [
        ("app_port", 0, "Invalid port number"),
        ("log_level", "LOUD", "Invalid LOG_LEVEL"),
        ("max_retries", 0, "MAX_RETRIES"),
        ("request_timeout", 0, "REQUEST_TIMEOUT"),
        ("queue_timeout_seconds", -1, "QUEUE_TIMEOUT_SECONDS"),
        ("reference_data_ttl_minutes", 0, "REFERENCE_DATA_TTL_MINUTES"),
        ("hyperliquid_env", "mainnet", "HYPERLIQUID_ENV"),
        ("bitget_env", "paper", "BITGET_ENV"),
    ])
    def test_validation_rejects(self, monkeypatch, field, value, message):
        monkeypatch.setattr(settings, field, value)

        with pytest.raises(ValueError, match=message):
            validate_configuration()
