"""
Credential vault for provider secrets at rest.
"""

from callbridge.vault.crypto import (
    AuthenticationFailedError,
    CredentialVault,
    InvalidJSONError,
    MalformedBlobError,
    VaultConfigurationError,
    VaultError,
    get_credential_vault,
    mask_config,
)

__all__ = [
    "AuthenticationFailedError",
    "CredentialVault",
    "InvalidJSONError",
    "MalformedBlobError",
    "VaultConfigurationError",
    "VaultError",
    "get_credential_vault",
    "mask_config",
]
