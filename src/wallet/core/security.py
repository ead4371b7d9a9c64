"""Security utilities for identity tokens and credential encryption."""

import base64
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import JWTError, jwt

from wallet.config import Settings
from wallet.core.exceptions import AuthenticationError, ConfigError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


def create_identity_token(
    user_id: str, settings: Settings, expires_delta: timedelta | None = None
) -> str:
    """
    Create a signed identity token for a user.

    The identity provider normally issues these; this helper exists for
    local tooling and tests.

    Args:
        user_id: User ID to encode in the ``sub`` claim
        settings: Settings carrying the signing secret
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=30)

    to_encode = {
        "sub": user_id,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Decode and verify an identity token.

    Raises:
        JWTError: If token is invalid or expired
    """
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_user_id_from_token(token: str, settings: Settings) -> str:
    """
    Extract the verified user id claim from an identity token.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    try:
        payload = decode_token(token, settings)
    except JWTError as exc:
        raise AuthenticationError("Invalid identity token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token missing 'sub' claim")
    return str(user_id)


class SecretCipher:
    """AES-GCM wrapper for credentials stored in ``ynab_config``.

    Ciphertext is ``base64(nonce || sealed)``.
    """

    def __init__(self, key: str):
        if not key:
            raise ConfigError("Encryption key is not configured")
        raw = key.encode("utf-8")
        # Short keys are zero-padded so existing rows stay readable
        self._aead = AESGCM(raw.ljust(KEY_SIZE, b"\0")[:KEY_SIZE])

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        try:
            data = base64.b64decode(encrypted, validate=True)
        except ValueError as exc:
            raise ConfigError("Stored credential is not valid base64") from exc

        if len(data) <= NONCE_SIZE:
            raise ConfigError("Stored credential is too short")

        try:
            plaintext = self._aead.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
        except InvalidTag as exc:
            logger.warning("Failed to decrypt stored credential (length %d)", len(encrypted))
            raise ConfigError("Stored credential could not be decrypted") from exc

        return plaintext.decode("utf-8")
