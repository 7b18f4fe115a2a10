"""Services package: backend adapters (storage, identity, key material)."""

from homeledger.services.encryption import (
    DecryptionError,
    EncryptedPayload,
    EncryptionError,
    decrypt_payload,
    encrypt_payload,
    generate_household_key,
    unwrap_household_key,
    wrap_household_key,
)
from homeledger.services.identity import (
    AuthenticatedUser,
    AuthenticationError,
    FirebaseIdentityProvider,
    IdentityProvider,
)
from homeledger.services.storage import (
    AuditStorageInterface,
    BackendUnavailableError,
    DocumentAuditStorage,
    DocumentStore,
    DuplicateError,
    InMemoryDocumentStore,
    NotFoundError,
    PreconditionFailedError,
    StorageError,
)

__all__ = [
    # Encryption
    "DecryptionError",
    "EncryptedPayload",
    "EncryptionError",
    "decrypt_payload",
    "encrypt_payload",
    "generate_household_key",
    "unwrap_household_key",
    "wrap_household_key",
    # Identity
    "AuthenticatedUser",
    "AuthenticationError",
    "FirebaseIdentityProvider",
    "IdentityProvider",
    # Storage
    "AuditStorageInterface",
    "BackendUnavailableError",
    "DocumentAuditStorage",
    "DocumentStore",
    "DuplicateError",
    "InMemoryDocumentStore",
    "NotFoundError",
    "PreconditionFailedError",
    "StorageError",
]
