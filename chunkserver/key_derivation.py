"""Derives fixed-length AES keys from configured secrets.

Two derivations live here:

* derive_key: the current scheme, a SHA-256 digest of the secret.
* derive_legacy_key_iv: the deprecated password-based scheme used by chunks
  written without a format marker. It is OpenSSL's EVP_BytesToKey with MD5,
  one iteration and no salt, which yields both the key and the IV from the
  password alone.
"""

import hashlib
from typing import Optional, Tuple, Union

from common.constants import DEFAULT_ENCRYPTION_KEY, KEY_SIZE_BYTES, IV_SIZE_BYTES

Secret = Union[str, bytes]


def secret_to_bytes(secret: Optional[Secret]) -> bytes:
    """
    Normalize a secret to bytes, substituting the default secret when absent.

    Args:
        secret: Secret as str or bytes; None or empty selects DEFAULT_ENCRYPTION_KEY

    Returns:
        Secret bytes (str secrets are UTF-8 encoded)
    """
    if not secret:
        secret = DEFAULT_ENCRYPTION_KEY
    if isinstance(secret, str):
        return secret.encode('utf-8')
    return bytes(secret)


def derive_key(secret: Optional[Secret]) -> bytes:
    """
    Derive the 32-byte AES-256 key for a secret.

    Deterministic: the same secret always yields the same key. Nothing is
    cached, callers derive per operation.

    Args:
        secret: Configured secret (None or empty selects the default secret)

    Returns:
        32-byte key
    """
    return hashlib.sha256(secret_to_bytes(secret)).digest()


def derive_key_hex(secret: Optional[Secret]) -> bytes:
    """Hex text of the derived key, used as a password by the second legacy variant."""
    return derive_key(secret).hex().encode('ascii')


def derive_legacy_key_iv(password: bytes,
                         key_size: int = KEY_SIZE_BYTES,
                         iv_size: int = IV_SIZE_BYTES) -> Tuple[bytes, bytes]:
    """
    Derive key and IV from a password the way the legacy scheme did.

    Args:
        password: Password bytes
        key_size: Key length in bytes
        iv_size: IV length in bytes

    Returns:
        Tuple of (key, iv)
    """
    material = b''
    block = b''
    while len(material) < key_size + iv_size:
        block = hashlib.md5(block + password).digest()
        material += block
    return material[:key_size], material[key_size:key_size + iv_size]
