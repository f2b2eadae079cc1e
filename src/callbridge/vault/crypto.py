"""
AES-256-GCM encryption for provider credentials at rest.

Blob format: ``iv_hex:authTag_hex:ciphertext_hex``. The key is derived with
scrypt (N=16384, r=8, p=1) from a static secret and a fixed salt, which
matches Node's ``crypto.scryptSync`` defaults so blobs written by the web
application decrypt here unchanged. Each blob gets its own 16-byte IV.
"""

from __future__ import annotations

import binascii
import json
import secrets
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from callbridge.config import Settings, get_settings
from callbridge.shared.logging import get_logger

logger = get_logger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KDF_SALT = b"salt"
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class VaultError(Exception):
    """Base exception for credential vault errors."""


class MalformedBlobError(VaultError):
    """Blob is not three colon-delimited hex segments of the expected sizes."""


class AuthenticationFailedError(VaultError):
    """GCM tag check failed: the blob was tampered with or the key differs."""


class InvalidJSONError(VaultError):
    """Decrypted plaintext is not a JSON object."""


class VaultConfigurationError(VaultError):
    """The vault secret is unsafe for the current environment."""


def derive_key(secret: str) -> bytes:
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def mask_config(config: dict[str, Any]) -> dict[str, Any]:
    """Mask every string value of a provider config for display.

    Strings longer than 8 characters keep their first and last 4 characters,
    strings of 5 to 8 characters keep their first 2, anything shorter is
    fully hidden. Non-string values pass through unchanged.
    """
    masked: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, str):
            if len(value) > 8:
                masked[key] = f"{value[:4]}****{value[-4:]}"
            elif len(value) > 4:
                masked[key] = f"{value[:2]}****"
            else:
                masked[key] = "****"
        else:
            masked[key] = value
    return masked


class CredentialVault:
    """Encrypts and decrypts provider config objects."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise VaultConfigurationError("Encryption secret must not be empty")
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, config: dict[str, Any]) -> str:
        """Encrypt a JSON-serializable config into an ``iv:tag:ciphertext`` blob."""
        iv = secrets.token_bytes(IV_LENGTH)
        plaintext = json.dumps(config, separators=(",", ":"), ensure_ascii=False)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, auth_tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return f"{iv.hex()}:{auth_tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> dict[str, Any]:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises:
            MalformedBlobError: Wrong segment count, non-hex data or bad sizes.
            AuthenticationFailedError: The authentication tag does not verify.
            InvalidJSONError: The plaintext is not a JSON object.
        """
        parts = blob.split(":")
        if len(parts) != 3:
            raise MalformedBlobError(
                f"Expected 3 colon-delimited segments, got {len(parts)}"
            )

        try:
            iv, auth_tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise MalformedBlobError(f"Blob segment is not valid hex: {e}") from e

        if len(iv) != IV_LENGTH or len(auth_tag) != AUTH_TAG_LENGTH:
            raise MalformedBlobError("Invalid IV or authentication tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + auth_tag, None)
        except InvalidTag as e:
            raise AuthenticationFailedError("Authentication tag mismatch") from e

        try:
            config = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidJSONError(f"Decrypted data is not valid JSON: {e}") from e

        if not isinstance(config, dict):
            raise InvalidJSONError("Decrypted data is not a JSON object")
        return config

    def update_encrypted_config(self, existing: str, updates: dict[str, Any]) -> str:
        """Shallow-merge ``updates`` over the decrypted blob and re-encrypt.

        Keys in ``updates`` win. Callers drop keys they do not mean to set
        before calling; a ``None`` value is stored as JSON ``null``.
        """
        merged = {**self.decrypt(existing), **updates}
        return self.encrypt(merged)

    mask_config = staticmethod(mask_config)


def build_vault(settings: Settings) -> CredentialVault:
    if settings.uses_insecure_encryption_key:
        if settings.app_env == "prod":
            raise VaultConfigurationError(
                "PROVIDER_ENCRYPTION_KEY must be set in production"
            )
        logger.warning(
            "PROVIDER_ENCRYPTION_KEY not set, using insecure development key",
            extra={"app_env": settings.app_env},
        )
    return CredentialVault(settings.provider_encryption_key)


@lru_cache(maxsize=1)
def get_credential_vault() -> CredentialVault:
    """Return the process-wide vault built from Settings."""
    return build_vault(get_settings())


__all__ = [
    "AuthenticationFailedError",
    "CredentialVault",
    "InvalidJSONError",
    "MalformedBlobError",
    "VaultConfigurationError",
    "VaultError",
    "build_vault",
    "derive_key",
    "get_credential_vault",
    "mask_config",
]
