"""
POS token encryption at rest (Fernet).
Access and refresh tokens are stored in pos_integrations as Fernet ciphertext so a
database compromise does not expose provider credentials.
"""

import structlog
from cryptography.fernet import Fernet, InvalidToken

from barter_pos.errors import TokenEncryptionError

logger = structlog.get_logger()

FERNET_KEY_LENGTH = 44  # url-safe base64 of 32 bytes


class TokenCipher:
    """Encrypts and decrypts provider tokens with a single Fernet key."""

    def __init__(self, key: str):
        self._fernet = self._build_fernet(key)

    @staticmethod
    def _build_fernet(key: str) -> Fernet | None:
        key = (key or "").strip()
        if not key:
            logger.warning("token_encryption_key not configured; tokens cannot be stored")
            return None
        if len(key) != FERNET_KEY_LENGTH:
            logger.error(
                "token_encryption_key must be a 44-char Fernet key",
                key_len=len(key),
            )
            return None
        try:
            return Fernet(key.encode("utf-8"))
        except ValueError as e:
            logger.error("Invalid token_encryption_key", error=str(e))
            return None

    @property
    def is_configured(self) -> bool:
        return self._fernet is not None

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise TokenEncryptionError("Token encryption key is not configured")
        return self._fernet

    def encrypt(self, value: str | None) -> str | None:
        """Encrypt a token for storage. None/empty values are stored as None."""
        if not value:
            return None
        return self._require_fernet().encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str | None) -> str | None:
        """
        Decrypt a stored token.

        Raises:
            TokenEncryptionError: If the value was not written with the configured key
        """
        if not value:
            return None
        try:
            return self._require_fernet().decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            logger.error("Stored POS token could not be decrypted")
            raise TokenEncryptionError("Stored token could not be decrypted") from e
