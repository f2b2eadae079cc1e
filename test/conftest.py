"""
Shared fixtures for the adapter layer tests.

Vendor HTTP fakes live in http_fakes.py.
"""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "APP_ENV",
        "PROVIDER_ENCRYPTION_KEY",
        "HTTP_TIMEOUT_SECONDS",
        "TELNYX_WEBHOOK_TOLERANCE_SECONDS",
        "ELEVENLABS_WEBHOOK_TOLERANCE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def twilio_credentials() -> dict[str, str]:
    # camelCase, as stored by the settings UI
    return {"accountSid": "AC_TEST_ACCOUNT_SID", "authToken": "test_auth_token_12345"}


@pytest.fixture
def telnyx_credentials() -> dict[str, str]:
    return {"apiKey": "KEY_TEST_TELNYX", "connectionId": "conn-123"}


@pytest.fixture
def vonage_credentials(rsa_private_key_pem: str) -> dict[str, str]:
    return {
        "apiKey": "vonage_key",
        "apiSecret": "vonage_secret",
        "applicationId": "app-123",
        "privateKey": rsa_private_key_pem,
    }


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
