"""
Tests for household key wrapping and payload encryption.
"""

import base64

import pytest

from homeledger.services.encryption import (
    DecryptionError,
    EncryptionError,
    decrypt_payload,
    encrypt_payload,
    generate_household_key,
    unwrap_household_key,
    wrap_household_key,
)

# Keep key derivation fast in tests
FAST = 1_000


class TestKeyWrapping:
    """One household key, wrapped per member."""

    def test_unwrap_with_right_secret(self):
        key = generate_household_key()

        token = wrap_household_key(key, "alice-secret", iterations=FAST)

        assert unwrap_household_key(token, "alice-secret", iterations=FAST) == key

    def test_each_wrap_is_unique(self):
        key = generate_household_key()

        first = wrap_household_key(key, "s", iterations=FAST)
        second = wrap_household_key(key, "s", iterations=FAST)

        assert first != second

    def test_wrong_secret(self):
        token = wrap_household_key(generate_household_key(), "right", iterations=FAST)

        with pytest.raises(DecryptionError):
            unwrap_household_key(token, "wrong", iterations=FAST)

    @pytest.mark.parametrize("token", ["not base64!", base64.b64encode(b"short").decode()])
    def test_malformed_token(self, token):
        with pytest.raises(DecryptionError, match="Malformed"):
            unwrap_household_key(token, "s", iterations=FAST)

    def test_empty_secret_rejected(self):
        with pytest.raises(EncryptionError):
            wrap_household_key(generate_household_key(), "", iterations=FAST)


class TestPayloads:
    """Attachment encryption with the household key."""

    def test_round_trip(self):
        key = generate_household_key()

        payload = encrypt_payload(b"passport scan", key)

        assert payload.ciphertext != b"passport scan"
        assert len(payload.nonce_list) == 12
        assert decrypt_payload(payload, key) == b"passport scan"

    def test_tampering_detected(self):
        key = generate_household_key()
        payload = encrypt_payload(b"deed", key)
        tampered = type(payload)(bytes([payload.ciphertext[0] ^ 1]) + payload.ciphertext[1:], payload.nonce)

        with pytest.raises(DecryptionError):
            decrypt_payload(tampered, key)

    def test_other_household_key(self):
        payload = encrypt_payload(b"deed", generate_household_key())

        with pytest.raises(DecryptionError):
            decrypt_payload(payload, generate_household_key())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
