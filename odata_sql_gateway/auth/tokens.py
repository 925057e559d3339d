"""Bearer token issuance and verification backed by a SQLite file."""

import base64
import hashlib
import hmac
import os
import sqlite3
import threading
import uuid
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import AuthenticationError, ErrorContext, get_logger, log_operation

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 10000
SALT_BYTES = 16
KEY_BYTES = 32


def hash_token(token: str, salt: bytes) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", token.encode("utf-8"), salt, PBKDF2_ITERATIONS, dklen=KEY_BYTES)
    return base64.b64encode(digest).decode("ascii")


class TokenStore:
    """Stores salted PBKDF2 hashes of issued tokens; the tokens themselves are never persisted."""

    def __init__(self, db_path: str, tokens_dir: Optional[str] = None):
        self.db_path = db_path
        self.tokens_dir = Path(tokens_dir) if tokens_dir else None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._lock, closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS Tokens (
                    Id INTEGER PRIMARY KEY AUTOINCREMENT,
                    Username TEXT NOT NULL,
                    TokenHash TEXT NOT NULL,
                    TokenSalt TEXT NOT NULL,
                    CreatedAt TEXT NOT NULL
                )
                """
            )

    def count(self) -> int:
        with closing(self._connect()) as conn:
            return conn.execute("SELECT COUNT(1) FROM Tokens").fetchone()[0]

    def generate_token(self, username: str) -> str:
        """Issue a new token for the user and return it in clear text."""
        token = str(uuid.uuid4())
        salt = os.urandom(SALT_BYTES)

        with self._lock, closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO Tokens (Username, TokenHash, TokenSalt, CreatedAt) VALUES (?, ?, ?, ?)",
                (
                    username,
                    hash_token(token, salt),
                    base64.b64encode(salt).decode("ascii"),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

        if self.tokens_dir is not None:
            self._save_token_file(username, token)

        log_operation(logger, "token_generated", username=username)
        return token

    def _save_token_file(self, username: str, token: str) -> Path:
        self.tokens_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.tokens_dir / f"{username}.txt"
        file_path.write_text(token, encoding="utf-8")
        logger.info("Token file saved", path=str(file_path))
        return file_path

    def token_file_path(self, username: str) -> Optional[Path]:
        return self.tokens_dir / f"{username}.txt" if self.tokens_dir is not None else None

    def verify_token(self, token: str) -> bool:
        if not token:
            return False

        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT TokenHash, TokenSalt FROM Tokens").fetchall()

        for stored_hash, stored_salt in rows:
            candidate = hash_token(token, base64.b64decode(stored_salt))
            if hmac.compare_digest(candidate, stored_hash):
                return True
        return False

    def authenticate_header(self, authorization: Optional[str]) -> None:
        """
        Validate an Authorization header value.

        Raises:
            AuthenticationError: If the header is missing, malformed or carries an unknown token
        """
        if not authorization or not authorization.startswith("Bearer "):
            logger.warning("Invalid authentication header received")
            raise AuthenticationError(
                "Invalid authentication header",
                error_code="INVALID_AUTH_HEADER",
                context=ErrorContext(operation="authenticate")
            )

        token = authorization[len("Bearer "):].strip()
        if not self.verify_token(token):
            logger.warning("Invalid token")
            raise AuthenticationError(
                "Invalid token",
                error_code="INVALID_TOKEN",
                context=ErrorContext(operation="authenticate")
            )
