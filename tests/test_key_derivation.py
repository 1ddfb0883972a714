"""Unit tests for key derivation."""

import hashlib

from common.constants import DEFAULT_ENCRYPTION_KEY
from chunkserver.key_derivation import (
    derive_key,
    derive_key_hex,
    derive_legacy_key_iv,
    secret_to_bytes,
)


class TestDeriveKey:
    """Test current-format key derivation."""

    def test_key_is_32_bytes(self):
        assert len(derive_key("secret")) == 32

    def test_key_is_sha256_of_secret(self):
        assert derive_key("secret") == hashlib.sha256(b"secret").digest()

    def test_derivation_is_deterministic(self):
        assert derive_key("same secret") == derive_key("same secret")

    def test_different_secrets_give_different_keys(self):
        assert derive_key("secret-a") != derive_key("secret-b")

    def test_str_and_bytes_secrets_agree(self):
        assert derive_key("pässword") == derive_key("pässword".encode("utf-8"))

    def test_missing_secret_uses_default(self):
        expected = derive_key(DEFAULT_ENCRYPTION_KEY)
        assert derive_key(None) == expected
        assert derive_key("") == expected
        assert derive_key(b"") == expected

    def test_hex_variant(self):
        assert derive_key_hex("secret") == hashlib.sha256(b"secret").hexdigest().encode("ascii")


class TestSecretToBytes:
    """Test secret normalization."""

    def test_bytes_pass_through(self):
        assert secret_to_bytes(b"\x00\x01") == b"\x00\x01"

    def test_default_substitution(self):
        assert secret_to_bytes(None) == DEFAULT_ENCRYPTION_KEY.encode("utf-8")


class TestLegacyKeyIv:
    """Test the password-based legacy derivation."""

    def test_lengths(self):
        key, iv = derive_legacy_key_iv(b"password")
        assert len(key) == 32
        assert len(iv) == 16

    def test_matches_md5_chain(self):
        password = b"password"
        d1 = hashlib.md5(password).digest()
        d2 = hashlib.md5(d1 + password).digest()
        d3 = hashlib.md5(d2 + password).digest()

        key, iv = derive_legacy_key_iv(password)

        assert key == d1 + d2
        assert iv == d3

    def test_deterministic(self):
        assert derive_legacy_key_iv(b"abc") == derive_legacy_key_iv(b"abc")
