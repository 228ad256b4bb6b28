"""Security module - credential encryption."""

from core.security.encryption import (
    CredentialCipher,
    EncryptedCredential,
    generate_encryption_key,
)

__all__ = [
    "CredentialCipher",
    "EncryptedCredential",
    "generate_encryption_key",
]
