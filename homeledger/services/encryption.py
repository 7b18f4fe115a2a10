"""
Household Key Material

Each household has one 256-bit AES-GCM key used to encrypt sensitive
attachments (documents in the vault, asset paperwork). The key itself is
never stored in the clear: it is wrapped once per member with a
key-encryption key derived from that member's secret, and the wrapped
copies live in `Household.encrypted_keys`.

Wire format of a wrapped key (base64): salt(16) | nonce(12) | ciphertext.
Wire format of an encrypted payload: ciphertext with the 12-byte nonce
carried alongside it.

SECURITY NOTES:
- Every encryption uses a fresh random nonce
- PBKDF2-HMAC-SHA256 for key derivation, per-wrap random salt
- Tampering is detected by the GCM tag and reported as DecryptionError
"""

import base64
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

KEY_BITS = 256
NONCE_SIZE = 12
SALT_SIZE = 16
KDF_ITERATIONS = 390_000

# Binds wrapped keys to their purpose
_WRAP_AAD = b"homeledger:household-key:v1"


class EncryptionError(Exception):
    """Base exception for key handling."""
    pass


class DecryptionError(EncryptionError):
    """Wrong key or secret, or the data was tampered with."""
    pass


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    nonce: bytes

    @property
    def nonce_list(self) -> list[int]:
        """Nonce as a list of ints, for storing next to an attachment."""
        return list(self.nonce)


def generate_household_key() -> bytes:
    return AESGCM.generate_key(bit_length=KEY_BITS)


def derive_member_key(secret: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """Derive a member's key-encryption key from their secret."""
    if not secret:
        raise EncryptionError("Member secret is required")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BITS // 8,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def wrap_household_key(household_key: bytes, secret: str, iterations: int = KDF_ITERATIONS) -> str:
    """Wrap the household key for one member. Returns a base64 token."""
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    kek = derive_member_key(secret, salt, iterations)
    ciphertext = AESGCM(kek).encrypt(nonce, household_key, _WRAP_AAD)
    return base64.b64encode(salt + nonce + ciphertext).decode("ascii")


def unwrap_household_key(token: str, secret: str, iterations: int = KDF_ITERATIONS) -> bytes:
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
    except ValueError as e:
        raise DecryptionError(f"Malformed wrapped key: {e}") from e
    if len(raw) <= SALT_SIZE + NONCE_SIZE:
        raise DecryptionError("Malformed wrapped key: too short")

    salt, nonce, ciphertext = raw[:SALT_SIZE], raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE], raw[SALT_SIZE + NONCE_SIZE:]
    kek = derive_member_key(secret, salt, iterations)
    try:
        return AESGCM(kek).decrypt(nonce, ciphertext, _WRAP_AAD)
    except InvalidTag as e:
        raise DecryptionError("Could not unwrap household key (wrong secret?)") from e


def encrypt_payload(data: bytes, household_key: bytes) -> EncryptedPayload:
    nonce = os.urandom(NONCE_SIZE)
    return EncryptedPayload(AESGCM(household_key).encrypt(nonce, data, None), nonce)


def decrypt_payload(payload: EncryptedPayload, household_key: bytes) -> bytes:
    try:
        return AESGCM(household_key).decrypt(payload.nonce, payload.ciphertext, None)
    except InvalidTag as e:
        raise DecryptionError("Payload could not be decrypted") from e
