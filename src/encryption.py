"""
IPVault - Snapshot Encryption

Encryption at rest for persisted ledger snapshots.
Uses AES-256-GCM for authenticated encryption with PBKDF2 key derivation.

Security Features:
- AES-256-GCM for encryption with authentication
- PBKDF2-HMAC-SHA256 for key derivation (600,000 iterations)
- Random salt and IV for each encryption operation
- Key supplied explicitly or through IPVAULT_ENCRYPTION_KEY
"""

import base64
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Constants
SALT_SIZE = 16  # 128 bits
IV_SIZE = 12  # 96 bits for GCM (recommended)
KEY_SIZE = 32  # 256 bits
TAG_SIZE = 16
PBKDF2_ITERATIONS = 600_000  # OWASP recommended minimum for PBKDF2-HMAC-SHA256

ENCRYPTION_KEY_ENV = "IPVAULT_ENCRYPTION_KEY"
ENCRYPTION_ENABLED_ENV = "IPVAULT_ENCRYPTION_ENABLED"

# Encrypted data prefix for identification
ENCRYPTED_PREFIX = "ENC:1:"  # Version 1 encrypted data


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class KeyDerivationError(EncryptionError):
    """Raised when key derivation fails."""
    pass


def _derive_key(password: str, salt: bytes) -> bytes:
    """
    Derive a 256-bit encryption key from a password using PBKDF2.

    Args:
        password: The password/passphrase to derive the key from
        salt: Random salt for key derivation

    Returns:
        32-byte derived key
    """
    if not password:
        raise KeyDerivationError("Password cannot be empty")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _get_encryption_key() -> str | None:
    return os.getenv(ENCRYPTION_KEY_ENV)


def is_encryption_enabled() -> bool:
    """
    Check if encryption is enabled.

    Returns:
        True if encryption is switched on and a key is configured
    """
    enabled = os.getenv(ENCRYPTION_ENABLED_ENV, "false").lower()
    if enabled not in ("true", "1", "yes", "on"):
        return False
    return _get_encryption_key() is not None


def generate_encryption_key() -> str:
    """
    Generate a cryptographically secure encryption key.

    Returns:
        Base64-encoded 256-bit random key
    """
    key_bytes = secrets.token_bytes(KEY_SIZE)
    return base64.b64encode(key_bytes).decode("utf-8")


def encrypt_data(data: str | bytes, key: str | None = None) -> str:
    """
    Encrypt data using AES-256-GCM.

    Args:
        data: Text or bytes to encrypt
        key: Optional encryption key. If not provided, uses environment variable.

    Returns:
        ENCRYPTED_PREFIX + base64(salt + iv + ciphertext)

    Raises:
        EncryptionError: If no key is available or encryption fails
    """
    encryption_key = key or _get_encryption_key()
    if not encryption_key:
        raise EncryptionError(
            f"No encryption key provided. Set {ENCRYPTION_KEY_ENV} environment variable "
            "or generate one with generate_encryption_key()"
        )

    data_bytes = data.encode("utf-8") if isinstance(data, str) else data

    salt = secrets.token_bytes(SALT_SIZE)
    iv = secrets.token_bytes(IV_SIZE)
    derived_key = _derive_key(encryption_key, salt)

    ciphertext = AESGCM(derived_key).encrypt(iv, data_bytes, None)

    encoded = base64.b64encode(salt + iv + ciphertext).decode("utf-8")
    return ENCRYPTED_PREFIX + encoded


def decrypt_data(encrypted_data: str, key: str | None = None) -> bytes:
    """
    Decrypt AES-256-GCM encrypted data.

    Args:
        encrypted_data: Output of ``encrypt_data``
        key: Optional decryption key. If not provided, uses environment variable.

    Returns:
        The decrypted bytes

    Raises:
        EncryptionError: If the key is missing, the format is wrong or
            authentication fails
    """
    encryption_key = key or _get_encryption_key()
    if not encryption_key:
        raise EncryptionError(
            f"No decryption key provided. Set {ENCRYPTION_KEY_ENV} environment variable."
        )

    if not is_encrypted(encrypted_data):
        raise EncryptionError("Invalid encrypted data format: missing prefix")

    try:
        encrypted_blob = base64.b64decode(encrypted_data[len(ENCRYPTED_PREFIX):])
    except ValueError as e:
        raise EncryptionError(f"Invalid encrypted data encoding: {e}") from e

    if len(encrypted_blob) < SALT_SIZE + IV_SIZE + TAG_SIZE:
        raise EncryptionError("Invalid encrypted data: too short")

    salt = encrypted_blob[:SALT_SIZE]
    iv = encrypted_blob[SALT_SIZE:SALT_SIZE + IV_SIZE]
    ciphertext = encrypted_blob[SALT_SIZE + IV_SIZE:]

    derived_key = _derive_key(encryption_key, salt)
    try:
        return AESGCM(derived_key).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        # InvalidTag carries an empty message
        raise EncryptionError("Decryption failed: wrong key or corrupted data") from e


def is_encrypted(data: str) -> bool:
    """Check if a string carries the encrypted-data prefix."""
    return isinstance(data, str) and data.startswith(ENCRYPTED_PREFIX)


def encrypt_snapshot(snapshot_json: str, key: str | None = None) -> str:
    """Encrypt a serialized ledger snapshot for storage."""
    return encrypt_data(snapshot_json, key)


def decrypt_snapshot(encrypted_snapshot: str, key: str | None = None) -> str:
    """Decrypt a stored ledger snapshot back to its JSON text."""
    return decrypt_data(encrypted_snapshot, key).decode("utf-8")


__all__ = [
    "EncryptionError",
    "KeyDerivationError",
    "is_encryption_enabled",
    "generate_encryption_key",
    "encrypt_data",
    "decrypt_data",
    "is_encrypted",
    "encrypt_snapshot",
    "decrypt_snapshot",
    "ENCRYPTION_KEY_ENV",
    "ENCRYPTION_ENABLED_ENV",
]
