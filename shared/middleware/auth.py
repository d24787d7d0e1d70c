"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Bearer ID tokens are verified here; accounts are loaded by firebase uid.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import AdminRole, PartnerProfile, RecordState, User, UserRole, utcnow
from shared.utils.errors import Forbidden, NotFound, Unauthorized
from shared.utils.security import Identity, IdentityVerifier, get_identity_verifier

security = HTTPBearer(auto_error=False)


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    """Verify the bearer token. No account lookup, used by registration."""
    if not credentials:
        raise Unauthorized("Authentication required")
    return await verifier.verify(credentials.credentials)


async def get_current_user(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the account bound to the verified identity."""
    result = await db.execute(
        select(User).where(
            User.firebase_uid == identity.uid,
            User.record_state == RecordState.ACTIVE,
        )
    )
    user = result.scalar_one_or_none()

    if not user:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("User account is inactive")

    # Provider is the source of truth for verification state
    if identity.email_verified and not user.email_verified:
        user.email_verified = True
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise Forbidden(f"Required role: {[r.value for r in self.roles]}")
        return current_user


# Convenience role dependencies
require_partner = RoleRequired(UserRole.PARTNER)
require_admin = RoleRequired(UserRole.ADMIN)


class RequirePermission:
    """Admin role, an active admin profile and the named capability flag."""

    def __init__(self, permission: str):
        self.permission = permission

    async def __call__(self, current_user: User = Depends(require_admin)) -> User:
        admin = current_user.admin_profile
        if admin is None or not admin.is_active:
            raise Forbidden("Admin profile is inactive")
        if not admin.has_permission(self.permission):
            raise Forbidden(f"Missing permission: {self.permission}")
        admin.last_active_at = utcnow()
        return current_user


async def require_super_admin(current_user: User = Depends(require_admin)) -> User:
    """Only an active super admin manages other admin accounts."""
    admin = current_user.admin_profile
    if admin is None or not admin.is_active or admin.admin_role != AdminRole.SUPER_ADMIN:
        raise Forbidden("Super admin access required")
    admin.last_active_at = utcnow()
    return current_user


async def require_email_verified(
    identity: Identity = Depends(get_identity),
) -> Identity:
    if not identity.email_verified:
        raise Forbidden("Email verification required")
    return identity


async def get_partner_profile(
    current_user: User = Depends(require_partner),
) -> PartnerProfile:
    """The caller's partner profile; missing profile is terminal for the request."""
    profile = current_user.partner_profile
    if profile is None or profile.record_state != RecordState.ACTIVE:
        raise NotFound("Partner profile not found")
    return profile
