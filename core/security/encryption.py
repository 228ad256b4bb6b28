"""Credential encryption using AES-GCM.

Integration API keys are stored by the host application as opaque blobs
produced here. Uses AES-256-GCM for authenticated encryption; the blob is
decrypted inside the request path every time it is needed and the
plaintext is never cached.
"""

import base64
import binascii
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


BLOB_PREFIX = "v1:"


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    key = secrets.token_bytes(32)
    return base64.b64encode(key).decode('utf-8')


@dataclass
class EncryptedCredential:
    """Encrypted credential with metadata."""
    ciphertext: str  # Base64-encoded encrypted data (GCM tag appended)
    nonce: str       # Base64-encoded 96-bit nonce
    created_at: str  # ISO timestamp
    associated_data: str = ""  # Bound into the tag, e.g. the integration id
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "associated_data": self.associated_data,
            "key_version": self.key_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedCredential":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            created_at=data.get("created_at", ""),
            associated_data=data.get("associated_data", ""),
            key_version=data.get("key_version", 1),
        )

    def to_blob(self) -> str:
        """Serialize to the single string stored in integration configuration."""
        raw = json.dumps(self.to_dict(), separators=(",", ":")).encode('utf-8')
        return BLOB_PREFIX + base64.urlsafe_b64encode(raw).decode('ascii')

    @classmethod
    def from_blob(cls, blob: str) -> "EncryptedCredential":
        """Parse a blob produced by to_blob().

        Raises:
            ValueError: If the blob is malformed
        """
        if not isinstance(blob, str) or not blob.startswith(BLOB_PREFIX):
            raise ValueError("Not an encrypted credential blob")
        try:
            raw = base64.urlsafe_b64decode(blob[len(BLOB_PREFIX):].encode('ascii'))
            return cls.from_dict(json.loads(raw.decode('utf-8')))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed encrypted credential: {e}") from e


class CredentialCipher:
    """AES-256-GCM encryption for integration credentials.

    Security properties:
    - Confidentiality: AES-256 encryption
    - Integrity: GCM authentication tag
    - Uniqueness: Random 96-bit nonce per encryption

    Usage:
        cipher = CredentialCipher(settings.require_encryption_key())
        blob = cipher.encrypt("pat-na1-...").to_blob()
        api_key = cipher.decrypt(blob)
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded encryption key.

        Args:
            encryption_key: Base64-encoded 32-byte key (from generate_encryption_key())

        Raises:
            ValueError: If the key is not valid base64 or not 32 bytes
        """
        try:
            key = base64.b64decode(encryption_key, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise ValueError(f"Invalid encryption key: {e}") from e
        if len(key) != 32:
            raise ValueError("Invalid encryption key: must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(
        self,
        plaintext: str,
        associated_data: str = "",
        key_version: int = 1,
    ) -> EncryptedCredential:
        """Encrypt a credential.

        Args:
            plaintext: The secret, e.g. an API key
            associated_data: Context the ciphertext is bound to
            key_version: Key version for rotation support
        """
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(
            nonce,
            plaintext.encode('utf-8'),
            associated_data.encode('utf-8'),
        )
        return EncryptedCredential(
            ciphertext=base64.b64encode(ciphertext).decode('utf-8'),
            nonce=base64.b64encode(nonce).decode('utf-8'),
            created_at=datetime.now(timezone.utc).isoformat(),
            associated_data=associated_data,
            key_version=key_version,
        )

    def decrypt(self, encrypted: Union[EncryptedCredential, str]) -> str:
        """Decrypt a credential.

        Args:
            encrypted: EncryptedCredential or its blob form

        Returns:
            The plaintext secret

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong context)
        """
        if isinstance(encrypted, str):
            encrypted = EncryptedCredential.from_blob(encrypted)
        try:
            ciphertext = base64.b64decode(encrypted.ciphertext)
            nonce = base64.b64decode(encrypted.nonce)
            plaintext = self._aesgcm.decrypt(
                nonce,
                ciphertext,
                encrypted.associated_data.encode('utf-8'),
            )
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise ValueError("Credential decryption failed: wrong key or tampered data") from e
        return plaintext.decode('utf-8')

    def rotate_key(
        self,
        encrypted: Union[EncryptedCredential, str],
        new_cipher: "CredentialCipher",
        new_key_version: int,
    ) -> EncryptedCredential:
        """Re-encrypt a credential with a new key."""
        if isinstance(encrypted, str):
            encrypted = EncryptedCredential.from_blob(encrypted)
        return new_cipher.encrypt(
            self.decrypt(encrypted),
            associated_data=encrypted.associated_data,
            key_version=new_key_version,
        )
