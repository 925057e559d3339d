"""Environment name to database connection target resolution."""

import json
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ConfigurationError, ValidationError, ErrorContext, get_logger, log_operation
from ..models import EnvironmentTarget

logger = get_logger(__name__)

ENVIRONMENT_NAME = re.compile(r"^[A-Za-z0-9_\-]+$")

SECRET_KEYS = frozenset({
    "password", "pwd", "secret", "client secret", "clientsecret",
    "accesstoken", "access token", "accountkey", "account key",
})


def mask_connection_string(connection_string: Optional[str]) -> str:
    """Redact secrets from an ODBC/ADO connection string, keeping host and database names."""
    if not connection_string:
        return ""
    parts = []
    for segment in connection_string.split(";"):
        if not segment.strip():
            continue
        key, sep, value = segment.partition("=")
        if sep and key.strip().lower() in SECRET_KEYS:
            parts.append(f"{key}=*****")
        else:
            parts.append(segment)
    return ";".join(parts)


class EnvironmentStrategy(ABC):
    """One source of environment definitions."""

    source = "unknown"

    @abstractmethod
    def resolve(self, name: str) -> Optional[EnvironmentTarget]:
        """The environment called name, or None when this source does not define it."""

    def names(self) -> List[str]:
        return []


class FileEnvironmentStrategy(EnvironmentStrategy):
    """Reads <base_dir>/<env>/settings.json."""

    source = "file"

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def resolve(self, name: str) -> Optional[EnvironmentTarget]:
        settings_path = self.base_dir / name / "settings.json"
        if not settings_path.is_file():
            return None

        try:
            config = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Invalid settings.json for environment: {name}",
                config_key=str(settings_path),
                context=ErrorContext(operation="load_environment", environment=name),
                cause=e
            ) from e

        connection_string = config.get("ConnectionString") if isinstance(config, dict) else None
        if not connection_string or not str(connection_string).strip():
            raise ConfigurationError(
                f"Missing or invalid connection string for environment: {name}",
                config_key="ConnectionString",
                context=ErrorContext(operation="load_environment", environment=name)
            )

        credentials = {
            key: config[source_key]
            for key, source_key in (("tenant_id", "TenantId"), ("client_id", "ClientId"), ("client_secret", "ClientSecret"))
            if config.get(source_key)
        }
        return EnvironmentTarget(
            name=name,
            connection_string=connection_string,
            server_name=config.get("ServerName") or ".",
            authentication=config.get("Authentication"),
            credentials=credentials,
        )

    def names(self) -> List[str]:
        if not self.base_dir.is_dir():
            return []
        return sorted(entry.name for entry in self.base_dir.iterdir() if (entry / "settings.json").is_file())


class EnvVarEnvironmentStrategy(EnvironmentStrategy):
    """Reads GATEWAY_ENV_<NAME>_CONNECTION_STRING and friends from the process environment."""

    source = "environment"

    def __init__(self, prefix: str = "GATEWAY_ENV_", environ: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        self.environ = environ if environ is not None else os.environ

    def _key(self, name: str, suffix: str) -> str:
        return f"{self.prefix}{name.upper().replace('-', '_')}_{suffix}"

    def resolve(self, name: str) -> Optional[EnvironmentTarget]:
        connection_string = self.environ.get(self._key(name, "CONNECTION_STRING"))
        if not connection_string:
            return None
        return EnvironmentTarget(
            name=name,
            connection_string=connection_string,
            server_name=self.environ.get(self._key(name, "SERVER_NAME")) or ".",
            authentication=self.environ.get(self._key(name, "AUTHENTICATION")),
        )

    def names(self) -> List[str]:
        suffix = "_CONNECTION_STRING"
        return sorted(
            key[len(self.prefix):-len(suffix)].lower()
            for key in self.environ
            if key.startswith(self.prefix) and key.endswith(suffix)
        )


class EnvironmentResolver:
    """Tries each strategy in order; the first one that knows the environment wins."""

    def __init__(self, strategies: Sequence[EnvironmentStrategy]):
        self.strategies = list(strategies)

    @classmethod
    def from_directory(cls, environments_dir: str) -> "EnvironmentResolver":
        return cls([EnvVarEnvironmentStrategy(), FileEnvironmentStrategy(environments_dir)])

    def resolve(self, name: str) -> EnvironmentTarget:
        """
        Resolve an environment name.

        Raises:
            ValidationError: If no strategy yields a usable connection target
        """
        if not name or not ENVIRONMENT_NAME.match(name):
            raise ValidationError(
                f"Invalid or missing environment: {name}",
                field="env",
                error_code="INVALID_ENVIRONMENT"
            )

        for strategy in self.strategies:
            try:
                target = strategy.resolve(name)
            except ConfigurationError as e:
                logger.warning(
                    "Environment strategy failed",
                    environment=name,
                    source=strategy.source,
                    error=e.message
                )
                continue
            if target is not None:
                log_operation(
                    logger,
                    "environment_resolved",
                    level="debug",
                    environment=name,
                    source=strategy.source,
                    server_name=target.server_name,
                    connection=mask_connection_string(target.connection_string)
                )
                return target

        raise ValidationError(
            f"Invalid or missing environment: {name}",
            field="env",
            error_code="INVALID_ENVIRONMENT"
        )

    def list_environments(self) -> List[str]:
        seen = {}
        for strategy in self.strategies:
            for name in strategy.names():
                seen.setdefault(name.lower(), name)
        return sorted(seen.values())
