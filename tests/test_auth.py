"""Tests for API tokens and database credentials."""

import sqlite3
import struct
from unittest.mock import Mock, patch

import pytest

from odata_sql_gateway.auth import (
    AuthMethod,
    DatabaseCredentialManager,
    SQL_COPT_SS_ACCESS_TOKEN,
    TokenStore,
    encode_access_token,
)
from odata_sql_gateway.errors import AuthenticationError, ConfigurationError
from odata_sql_gateway.models import EnvironmentTarget


@pytest.fixture
def store(tmp_path):
    return TokenStore(str(tmp_path / "auth.db"), str(tmp_path / "tokens"))


class TestTokenStore:
    """Test token issuance and verification."""

    def test_generate_and_verify(self, store):
        token = store.generate_token("alice")

        assert store.verify_token(token) is True
        assert store.verify_token("not-a-token") is False
        assert store.verify_token("") is False
        assert store.count() == 1

    def test_only_hashes_are_persisted(self, store):
        token = store.generate_token("alice")

        with sqlite3.connect(store.db_path) as conn:
            rows = conn.execute("SELECT Username, TokenHash, TokenSalt FROM Tokens").fetchall()

        assert len(rows) == 1
        username, token_hash, salt = rows[0]
        assert username == "alice"
        assert token not in (token_hash, salt)

    def test_token_file(self, store, tmp_path):
        token = store.generate_token("bob")

        assert (tmp_path / "tokens" / "bob.txt").read_text(encoding="utf-8") == token
        assert store.token_file_path("bob") == tmp_path / "tokens" / "bob.txt"

    def test_no_token_file_without_directory(self, tmp_path):
        store = TokenStore(str(tmp_path / "auth.db"))

        store.generate_token("carol")

        assert store.token_file_path("carol") is None
        assert not (tmp_path / "tokens").exists()

    def test_each_user_gets_a_distinct_token(self, store):
        assert store.generate_token("alice") != store.generate_token("alice")
        assert store.count() == 2

    @pytest.mark.parametrize("header,code", [
        (None, "INVALID_AUTH_HEADER"),
        ("Basic dXNlcjpwYXNz", "INVALID_AUTH_HEADER"),
        ("Bearer wrong", "INVALID_TOKEN"),
    ])
    def test_authenticate_header_rejects(self, store, header, code):
        store.generate_token("alice")

        with pytest.raises(AuthenticationError) as exc_info:
            store.authenticate_header(header)

        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == code

    def test_authenticate_header_accepts(self, store):
        token = store.generate_token("alice")

        store.authenticate_header(f"Bearer {token}")


def test_encode_access_token():
    encoded = encode_access_token("abc")

    assert struct.unpack("<I", encoded[:4])[0] == 6
    assert encoded[4:] == "abc".encode("utf-16-le")


class TestDatabaseCredentialManager:
    """Test Azure credential creation and token attributes."""

    @patch("odata_sql_gateway.auth.manager.ClientSecretCredential")
    def test_service_principal(self, mock_credential):
        manager = DatabaseCredentialManager()

        manager.create_credential("Service_Principal", {"tenant_id": "t", "client_id": "c", "client_secret": "s"})

        mock_credential.assert_called_once_with(tenant_id="t", client_id="c", client_secret="s")

    def test_service_principal_missing_fields(self):
        with pytest.raises(ConfigurationError, match="Missing required credentials"):
            DatabaseCredentialManager().create_credential(AuthMethod.SERVICE_PRINCIPAL, {"tenant_id": "t"})

    @patch("odata_sql_gateway.auth.manager.ManagedIdentityCredential")
    def test_managed_identity(self, mock_credential):
        DatabaseCredentialManager().create_credential("managed_identity", {"client_id": "uami"})

        mock_credential.assert_called_once_with(client_id="uami")

    def test_unsupported_method(self):
        with pytest.raises(ConfigurationError, match="Unsupported authentication method"):
            DatabaseCredentialManager().create_credential("kerberos")

    @patch("odata_sql_gateway.auth.manager.DefaultAzureCredential")
    def test_connect_attrs_cached_per_environment(self, mock_default):
        mock_default.return_value.get_token.return_value = Mock(token="abc")
        manager = DatabaseCredentialManager()
        target = EnvironmentTarget(name="cloud", connection_string="Server=x", authentication="default")

        first = manager.get_connect_attrs(target)
        second = manager.get_connect_attrs(target)

        assert first == second == {SQL_COPT_SS_ACCESS_TOKEN: encode_access_token("abc")}
        mock_default.assert_called_once_with()
        mock_default.return_value.get_token.assert_called_with("https://database.windows.net/.default")

    @patch("odata_sql_gateway.auth.manager.DefaultAzureCredential")
    def test_token_failure(self, mock_default):
        mock_default.return_value.get_token.side_effect = RuntimeError("no identity available")
        target = EnvironmentTarget(name="cloud", connection_string="Server=x", authentication="default")

        with pytest.raises(AuthenticationError) as exc_info:
            DatabaseCredentialManager().get_connect_attrs(target)

        assert exc_info.value.retryable is True
        assert "cloud" in exc_info.value.message

    def test_clear(self):
        manager = DatabaseCredentialManager()
        manager._credentials["cloud"] = Mock()

        manager.clear()

        assert manager._credentials == {}
