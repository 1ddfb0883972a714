"""Encodes and decodes the on-disk byte layout of a single encrypted chunk.

Current format:  [marker = 1 (1 byte)][IV (16 bytes)][AES-256-CBC ciphertext]
Legacy format:   [AES-256-CBC ciphertext], key and IV derived from a password

New chunks are always written in the current format. The legacy branch is a
read-only compatibility path. Neither format carries a MAC: a wrong key is
usually detected by the padding check, but not always.
"""

import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from common.constants import (
    AES_BLOCK_SIZE_BITS,
    CURRENT_FORMAT_MARKER,
    CURRENT_FORMAT_MIN_LENGTH,
    DIAGNOSTIC_PREFIX_BYTES,
    FORMAT_CURRENT,
    FORMAT_LEGACY,
    IV_SIZE_BYTES,
)
from chunkserver.exceptions import DecodeFailure, EncodeFailure
from chunkserver.key_derivation import (
    Secret,
    derive_key,
    derive_key_hex,
    derive_legacy_key_iv,
    secret_to_bytes,
)

logger = logging.getLogger(__name__)


def _cbc_encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    padder = padding.PKCS7(AES_BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def _cbc_decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(AES_BLOCK_SIZE_BITS).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def detect_format(wire: bytes) -> int:
    """
    Guess the wire format of a chunk from its leading marker byte.

    This is a heuristic: a legacy ciphertext may begin with 0x01. Prefer the
    format_version recorded in the chunk's metadata when it is known.

    Args:
        wire: Raw chunk bytes

    Returns:
        FORMAT_CURRENT or FORMAT_LEGACY
    """
    if len(wire) >= CURRENT_FORMAT_MIN_LENGTH and wire[0] == CURRENT_FORMAT_MARKER:
        return FORMAT_CURRENT
    return FORMAT_LEGACY


def encode_chunk(plaintext: bytes, secret: Optional[Secret]) -> bytes:
    """
    Encrypt a chunk in the current format with a fresh random IV.

    Args:
        plaintext: Chunk payload (may be empty)
        secret: Configured secret; the AES key is derived from it

    Returns:
        marker || IV || ciphertext

    Raises:
        EncodeFailure: If the entropy source or cipher fails
    """
    try:
        iv = os.urandom(IV_SIZE_BYTES)
    except (OSError, NotImplementedError) as e:
        raise EncodeFailure(f"Failed to generate IV: {e}") from e

    try:
        ciphertext = _cbc_encrypt(plaintext, derive_key(secret), iv)
    except (ValueError, TypeError) as e:
        raise EncodeFailure(f"Failed to encrypt chunk: {e}") from e

    return bytes([CURRENT_FORMAT_MARKER]) + iv + ciphertext


def encode_legacy_chunk(plaintext: bytes, password: bytes) -> bytes:
    """
    Encrypt a chunk in the deprecated legacy format.

    Only used to produce fixtures and to verify compatibility; the engine never
    writes legacy chunks.

    Args:
        plaintext: Chunk payload
        password: Password the key and IV are derived from

    Returns:
        Raw ciphertext with no marker or IV
    """
    key, iv = derive_legacy_key_iv(password)
    try:
        return _cbc_encrypt(plaintext, key, iv)
    except (ValueError, TypeError) as e:
        raise EncodeFailure(f"Failed to encrypt legacy chunk: {e}") from e


def _describe(wire: bytes) -> str:
    return f"length={len(wire)} first_bytes={wire[:DIAGNOSTIC_PREFIX_BYTES].hex()}"


def _decode_current(wire: bytes, secret: Optional[Secret]) -> bytes:
    if len(wire) < CURRENT_FORMAT_MIN_LENGTH or wire[0] != CURRENT_FORMAT_MARKER:
        raise DecodeFailure(f"Chunk is not in the current format ({_describe(wire)})")

    iv = wire[1:1 + IV_SIZE_BYTES]
    ciphertext = wire[1 + IV_SIZE_BYTES:]
    try:
        return _cbc_decrypt(ciphertext, derive_key(secret), iv)
    except ValueError as e:
        logger.error(f"Current-format decryption failed ({_describe(wire)}): {e}")
        raise DecodeFailure(f"Failed to decrypt chunk: {e} ({_describe(wire)})") from e


def _decode_legacy(wire: bytes, secret: Optional[Secret]) -> bytes:
    passwords = (
        ("raw secret", secret_to_bytes(secret)),
        ("hashed secret", derive_key_hex(secret)),
    )

    errors = []
    for variant, password in passwords:
        key, iv = derive_legacy_key_iv(password)
        try:
            plaintext = _cbc_decrypt(wire, key, iv)
        except ValueError as e:
            logger.warning(f"Legacy decryption with {variant} failed ({_describe(wire)}): {e}")
            errors.append(f"{variant} ({e})")
            continue
        logger.debug(f"Decoded legacy chunk with {variant} ({_describe(wire)})")
        return plaintext

    raise DecodeFailure(
        f"Failed to decrypt legacy chunk ({_describe(wire)}): {'; '.join(errors)}"
    )


def decode_chunk(wire: bytes, secret: Optional[Secret], format_version: Optional[int] = None) -> bytes:
    """
    Decrypt a chunk written in either format.

    Args:
        wire: Raw chunk bytes as stored
        secret: Configured secret
        format_version: Format recorded in metadata; None falls back to marker detection

    Returns:
        Plaintext payload

    Raises:
        DecodeFailure: If the chunk is empty, corrupt or encrypted under another key
    """
    if len(wire) == 0:
        raise DecodeFailure("empty input")

    if format_version is None:
        format_version = detect_format(wire)

    if format_version == FORMAT_CURRENT:
        return _decode_current(wire, secret)
    if format_version == FORMAT_LEGACY:
        return _decode_legacy(wire, secret)

    raise DecodeFailure(f"Unknown chunk format version {format_version} ({_describe(wire)})")
