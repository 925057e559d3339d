"""Tests for configuration management."""

import pytest

from odata_sql_gateway.config.settings import GatewayConfig
from odata_sql_gateway.errors import ConfigurationError


def test_gateway_config_validation(gateway_config):
    """Test gateway configuration validation."""
    # Should not raise any exceptions
    gateway_config.validate()


def test_gateway_config_invalid_port():
    config = GatewayConfig(port=70000)

    with pytest.raises(ConfigurationError, match="port must be between"):
        config.validate()


def test_gateway_config_invalid_timeout():
    """Test gateway configuration with invalid timeout."""
    config = GatewayConfig(query_timeout=-1)

    with pytest.raises(ConfigurationError, match="query_timeout must be positive"):
        config.validate()


def test_gateway_config_max_top_below_default():
    config = GatewayConfig(default_top=50, max_top=10)

    with pytest.raises(ConfigurationError, match="max_top must be >= default_top"):
        config.validate()


def test_gateway_config_invalid_log_level():
    config = GatewayConfig(log_level="VERBOSE")

    with pytest.raises(ConfigurationError, match="log_level must be one of"):
        config.validate()


def test_gateway_config_from_env(monkeypatch):
    """Test configuration creation from environment variables."""
    monkeypatch.setenv("GATEWAY_PORT", "8080")
    monkeypatch.setenv("GATEWAY_AUTH_ENABLED", "false")
    monkeypatch.setenv("GATEWAY_MAX_TOP", "250")
    monkeypatch.setenv("GATEWAY_ENDPOINTS_DIR", "/srv/endpoints")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = GatewayConfig.from_env()

    assert config.port == 8080
    assert config.auth_enabled is False
    assert config.max_top == 250
    assert config.endpoints_dir == "/srv/endpoints"
    assert config.log_level == "DEBUG"
    config.validate()


def test_gateway_config_from_env_invalid_integer(monkeypatch):
    monkeypatch.setenv("GATEWAY_QUERY_TIMEOUT", "soon")

    with pytest.raises(ConfigurationError, match="GATEWAY_QUERY_TIMEOUT must be an integer"):
        GatewayConfig.from_env()
