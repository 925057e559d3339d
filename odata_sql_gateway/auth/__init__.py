"""Authentication: API bearer tokens and Azure AD database credentials."""

from .manager import DatabaseCredentialManager, AuthMethod, encode_access_token, SQL_COPT_SS_ACCESS_TOKEN
from .tokens import TokenStore, hash_token

__all__ = [
    "DatabaseCredentialManager",
    "AuthMethod",
    "encode_access_token",
    "SQL_COPT_SS_ACCESS_TOKEN",
    "TokenStore",
    "hash_token",
]
