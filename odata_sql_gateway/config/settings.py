"""Configuration settings for the SQL OData Gateway."""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from ..errors import ConfigurationError, get_logger

# Load environment variables from .env file if it exists
load_dotenv()

logger = get_logger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'", config_key=name, cause=e)


@dataclass
class GatewayConfig:
    """Gateway configuration settings."""

    # Configuration folders
    endpoints_dir: str = "endpoints"
    environments_dir: str = "environments"

    # HTTP settings
    host: str = "0.0.0.0"
    port: int = 5252

    # Database settings
    query_timeout: int = 30  # seconds
    connect_timeout: int = 15  # seconds
    odbc_driver: str = "ODBC Driver 18 for SQL Server"

    # Paging settings
    default_top: int = 10
    max_top: int = 1000

    # Security settings
    auth_enabled: bool = True
    token_db: str = "auth.db"
    tokens_dir: Optional[str] = "tokens"
    rate_limit_enabled: bool = True
    requests_per_minute: int = 120

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None
    structured_logging: bool = True

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Create configuration from environment variables."""
        return cls(
            endpoints_dir=os.getenv("GATEWAY_ENDPOINTS_DIR", "endpoints"),
            environments_dir=os.getenv("GATEWAY_ENVIRONMENTS_DIR", "environments"),
            host=os.getenv("GATEWAY_HOST", "0.0.0.0"),
            port=_env_int("GATEWAY_PORT", "5252"),
            query_timeout=_env_int("GATEWAY_QUERY_TIMEOUT", "30"),
            connect_timeout=_env_int("GATEWAY_CONNECT_TIMEOUT", "15"),
            odbc_driver=os.getenv("GATEWAY_ODBC_DRIVER", "ODBC Driver 18 for SQL Server"),
            default_top=_env_int("GATEWAY_DEFAULT_TOP", "10"),
            max_top=_env_int("GATEWAY_MAX_TOP", "1000"),
            auth_enabled=_env_bool("GATEWAY_AUTH_ENABLED", "true"),
            token_db=os.getenv("GATEWAY_TOKEN_DB", "auth.db"),
            tokens_dir=os.getenv("GATEWAY_TOKENS_DIR", "tokens") or None,
            rate_limit_enabled=_env_bool("GATEWAY_RATE_LIMIT_ENABLED", "true"),
            requests_per_minute=_env_int("GATEWAY_REQUESTS_PER_MINUTE", "120"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE"),
            structured_logging=_env_bool("STRUCTURED_LOGGING", "true"),
        )

    def validate(self) -> None:
        """Validate configuration settings."""
        if not 0 < self.port < 65536:
            raise ConfigurationError("port must be between 1 and 65535", config_key="port")

        if self.query_timeout <= 0:
            raise ConfigurationError("query_timeout must be positive", config_key="query_timeout")

        if self.connect_timeout <= 0:
            raise ConfigurationError("connect_timeout must be positive", config_key="connect_timeout")

        if self.default_top < 0:
            raise ConfigurationError("default_top must be non-negative", config_key="default_top")

        if self.max_top < self.default_top:
            raise ConfigurationError("max_top must be >= default_top", config_key="max_top")

        if self.requests_per_minute <= 0:
            raise ConfigurationError("requests_per_minute must be positive", config_key="requests_per_minute")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                "log_level must be one of: " + ", ".join(VALID_LOG_LEVELS),
                config_key="log_level"
            )

        if not self.endpoints_dir:
            raise ConfigurationError("endpoints_dir is required", config_key="endpoints_dir")

        if not self.environments_dir:
            raise ConfigurationError("environments_dir is required", config_key="environments_dir")
