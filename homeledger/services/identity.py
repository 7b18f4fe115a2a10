"""
Identity Service

Resolves an identity token into the authenticated user ID.

DESIGN DECISION: We never design or run our own authentication protocol.
The managed identity provider issues and signs tokens; we only verify
them and read the user ID out. Everything downstream (household scoping,
ownership) keys off that ID.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from firebase_admin import auth
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class AuthenticationError(Exception):
    """The identity token could not be verified."""
    pass


class AuthenticatedUser(BaseModel):
    """The verified identity behind a session."""

    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class IdentityProvider(ABC):
    """Abstract identity collaborator."""

    @abstractmethod
    def verify_token(self, token: str) -> AuthenticatedUser:
        """
        Verify an identity token.

        Raises:
            AuthenticationError: If the token is missing, malformed,
                                 expired or revoked
        """


class FirebaseIdentityProvider(IdentityProvider):
    """
    Verifies Firebase ID tokens with firebase-admin.

    Args:
        app: Firebase app to verify against (default app when None)
        check_revoked: Also reject tokens revoked after issue
    """

    def __init__(self, app=None, check_revoked: bool = False):
        self._app = app
        self._check_revoked = check_revoked

    def verify_token(self, token: str) -> AuthenticatedUser:
        if not token:
            raise AuthenticationError("Identity token is required")

        try:
            claims = auth.verify_id_token(token, app=self._app, check_revoked=self._check_revoked)
        except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError) as e:
            logger.warning("identity_token_rejected", error_type=type(e).__name__)
            raise AuthenticationError(str(e)) from e
        except (ValueError, auth.CertificateFetchError, auth.UserDisabledError) as e:
            logger.error("identity_verification_failed", error_type=type(e).__name__, error=str(e))
            raise AuthenticationError(f"Could not verify identity token: {e}") from e

        return AuthenticatedUser(
            uid=claims["uid"],
            email=claims.get("email"),
            display_name=claims.get("name"),
            photo_url=claims.get("picture"),
        )
