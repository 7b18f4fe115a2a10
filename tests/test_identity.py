"""
Tests for Firebase ID token verification.
"""

import pytest

from homeledger.services import identity
from homeledger.services.identity import AuthenticationError, FirebaseIdentityProvider


class TestFirebaseIdentityProvider:
    """Token in, user ID out."""

    def test_claims_mapped(self, monkeypatch):
        def verify(token, app=None, check_revoked=False):
            assert token == "tok"
            return {"uid": "alice", "email": "alice@example.com", "name": "Alice"}

        monkeypatch.setattr(identity.auth, "verify_id_token", verify)

        user = FirebaseIdentityProvider().verify_token("tok")

        assert user.uid == "alice"
        assert user.email == "alice@example.com"
        assert user.display_name == "Alice"
        assert user.photo_url is None

    def test_empty_token(self):
        with pytest.raises(AuthenticationError, match="required"):
            FirebaseIdentityProvider().verify_token("")

    def test_malformed_token(self, monkeypatch):
        def verify(token, app=None, check_revoked=False):
            raise ValueError("Illegal ID token provided")

        monkeypatch.setattr(identity.auth, "verify_id_token", verify)

        with pytest.raises(AuthenticationError, match="Could not verify"):
            FirebaseIdentityProvider().verify_token("garbage")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
