"""
shared/utils/security.py
Identity verification. Bearer tokens are Firebase ID tokens; the
verifier turns a token into an Identity or raises Unauthorized.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from shared.utils.errors import DependencyFailure, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity as asserted by the identity provider."""
    uid: str
    email: str
    email_verified: bool = False


class IdentityVerifier:
    async def verify(self, token: str) -> Identity:
        raise NotImplementedError


class FirebaseIdentityVerifier(IdentityVerifier):
    """Verifies Firebase ID tokens, including revocation checks."""

    def __init__(self, check_revoked: bool = True):
        self.check_revoked = check_revoked
        self._app: Optional[firebase_admin.App] = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is None:
            try:
                self._app = firebase_admin.get_app()
            except ValueError:
                cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
                options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
                self._app = firebase_admin.initialize_app(cred, options)
        return self._app

    async def verify(self, token: str) -> Identity:
        try:
            app = self._get_app()
        except (ValueError, OSError) as e:
            logger.error(f"Firebase initialisation failed: {e}")
            raise DependencyFailure("Identity provider unavailable")

        try:
            # firebase_admin is blocking (fetches public keys over HTTP)
            claims = await run_in_threadpool(
                firebase_auth.verify_id_token, token, app, self.check_revoked
            )
        except firebase_auth.RevokedIdTokenError:
            raise Unauthorized("Token has been revoked")
        except firebase_auth.ExpiredIdTokenError:
            raise Unauthorized("Token has expired")
        except firebase_auth.UserDisabledError:
            raise Unauthorized("User account is disabled")
        except (firebase_auth.InvalidIdTokenError, ValueError):
            raise Unauthorized("Invalid or expired token")
        except firebase_auth.CertificateFetchError as e:
            logger.warning(f"Firebase certificate fetch failed: {e}")
            raise DependencyFailure("Identity provider unavailable")

        email = claims.get("email")
        if not email:
            raise Unauthorized("Token carries no email address")

        return Identity(
            uid=claims["uid"],
            email=email,
            email_verified=bool(claims.get("email_verified", False)),
        )


_verifier: Optional[IdentityVerifier] = None


def get_identity_verifier() -> IdentityVerifier:
    """FastAPI dependency; overridden in tests."""
    global _verifier
    if _verifier is None:
        _verifier = FirebaseIdentityVerifier(check_revoked=settings.FIREBASE_CHECK_REVOKED)
    return _verifier
