"""Azure AD credentials for token-authenticated SQL Server connections."""

import struct
import threading
from typing import Dict, Optional, Union
from enum import Enum

from azure.identity import (
    ClientSecretCredential,
    DefaultAzureCredential,
    ManagedIdentityCredential,
)
from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError

from ..errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorContext,
    get_logger,
    log_error,
    log_operation,
    retry_with_backoff,
    RetryConfig
)
from ..models import EnvironmentTarget


logger = get_logger(__name__)

# Pre-connect attribute understood by the Microsoft ODBC drivers
SQL_COPT_SS_ACCESS_TOKEN = 1256

SQL_SCOPE = "https://database.windows.net/.default"


class AuthMethod(Enum):
    """Supported Azure AD authentication methods for database access."""
    SERVICE_PRINCIPAL = "service_principal"
    MANAGED_IDENTITY = "managed_identity"
    DEFAULT = "default"


def encode_access_token(token: str) -> bytes:
    """Pack an access token the way the ODBC driver expects it."""
    token_bytes = token.encode("utf-16-le")
    return struct.pack("<I", len(token_bytes)) + token_bytes


class DatabaseCredentialManager:
    """Creates and caches one Azure credential per environment."""

    def __init__(self):
        self._credentials: Dict[str, TokenCredential] = {}
        self._lock = threading.Lock()

    def _parse_method(self, method: Union[str, AuthMethod]) -> AuthMethod:
        if isinstance(method, AuthMethod):
            return method
        try:
            return AuthMethod(method.lower())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported authentication method: {method}",
                config_key="Authentication",
                context=ErrorContext(operation="parse_auth_method")
            ) from None

    def create_credential(
        self,
        method: Union[str, AuthMethod],
        credentials: Optional[Dict[str, str]] = None
    ) -> TokenCredential:
        """
        Build an Azure credential for the given method.

        Args:
            method: Authentication method to use
            credentials: tenant_id / client_id / client_secret as required by the method

        Returns:
            TokenCredential: Azure credential object
        """
        method = self._parse_method(method)
        credentials = credentials or {}
        log_operation(logger, f"create_credential_{method.value}", level="debug")

        if method == AuthMethod.SERVICE_PRINCIPAL:
            required_fields = ["tenant_id", "client_id", "client_secret"]
            missing_fields = [name for name in required_fields if not credentials.get(name)]
            if missing_fields:
                raise ConfigurationError(
                    f"Missing required credentials for service principal: {missing_fields}",
                    config_key="Credentials",
                    context=ErrorContext(
                        operation="create_credential",
                        additional_data={"missing_fields": missing_fields}
                    )
                )
            return ClientSecretCredential(
                tenant_id=credentials["tenant_id"],
                client_id=credentials["client_id"],
                client_secret=credentials["client_secret"]
            )

        if method == AuthMethod.MANAGED_IDENTITY:
            client_id = credentials.get("client_id")
            if client_id:
                return ManagedIdentityCredential(client_id=client_id)
            return ManagedIdentityCredential()

        return DefaultAzureCredential()

    def credential_for(self, target: EnvironmentTarget) -> TokenCredential:
        # Racing requests may both build a credential; the first one stored wins
        with self._lock:
            credential = self._credentials.get(target.name)
        if credential is not None:
            return credential

        credential = self.create_credential(target.authentication, target.credentials)
        with self._lock:
            return self._credentials.setdefault(target.name, credential)

    @retry_with_backoff(
        config=RetryConfig(max_attempts=2, initial_delay=0.5),
        retryable_exceptions=[ClientAuthenticationError]
    )
    def _fetch_token(self, credential: TokenCredential) -> str:
        return credential.get_token(SQL_SCOPE).token

    def get_connect_attrs(self, target: EnvironmentTarget) -> Dict[int, bytes]:
        """
        Get ODBC pre-connect attributes carrying an access token.

        Raises:
            AuthenticationError: If the token cannot be acquired
        """
        try:
            token = self._fetch_token(self.credential_for(target))
        except ConfigurationError:
            raise
        except Exception as e:
            auth_error = AuthenticationError(
                f"Failed to acquire database access token for environment '{target.name}'",
                context=ErrorContext(operation="get_sql_access_token", environment=target.name),
                cause=e,
                retryable=True
            )
            log_error(logger, auth_error, operation="get_sql_access_token")
            raise auth_error from e

        return {SQL_COPT_SS_ACCESS_TOKEN: encode_access_token(token)}

    def clear(self) -> None:
        with self._lock:
            self._credentials.clear()
        logger.info("Database credential cache cleared")
