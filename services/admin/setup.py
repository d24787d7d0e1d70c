"""
services/admin/setup.py
Admin account provisioning.

- One-time super admin bootstrap, guarded by SUPER_ADMIN_SETUP_KEY and
  optionally ALLOWED_ADMIN_EMAILS
- Super admins grant, re-scope and deactivate other admins
- Super admins themselves are never modified through the API
"""

import logging
import re
import secrets
import uuid
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.admin.review import audit
from shared.middleware.auth import require_email_verified, require_super_admin
from shared.models.models import (
    ROLE_DEFAULT_PERMISSIONS,
    AdminProfile,
    AdminRole,
    ClientProfile,
    RecordState,
    User,
    UserRole,
    utcnow,
)
from shared.schemas.schemas import (
    AdminAccountResponse,
    AdminCreateRequest,
    AdminListResponse,
    AdminPermissionsRequest,
    SetupStatusResponse,
    SuperAdminSetupRequest,
)
from shared.utils.errors import Forbidden, NotFound, PreconditionFailed, Unauthorized
from shared.utils.security import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/setup", tags=["Admin Setup"])


# ── Helpers ────────────────────────────────────────────────────────────────────

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _super_admin_exists(db: AsyncSession) -> bool:
    count = await db.scalar(
        select(func.count(AdminProfile.id)).where(AdminProfile.admin_role == AdminRole.SUPER_ADMIN)
    )
    return bool(count)


async def _unique_username(db: AsyncSession, email: str) -> str:
    """Username derived from the email local part, suffixed until free."""
    base = re.sub(r"[^a-zA-Z0-9_]", "_", email.split("@")[0])[:24]
    if len(base) < 3:
        base = f"{base}_admin"
    candidate = base
    while await db.scalar(select(User.id).where(User.username == candidate)) is not None:
        candidate = f"{base}_{secrets.token_hex(2)}"
    return candidate


def _grant(
    db: AsyncSession,
    user: User,
    existing: Optional[AdminProfile],
    role: AdminRole,
    permissions: Dict[str, bool],
) -> AdminProfile:
    """Attach (or reactivate) the admin profile and switch the account role."""
    granted = {**ROLE_DEFAULT_PERMISSIONS[role], **permissions}
    if existing is None:
        admin = AdminProfile(
            id=uuid.uuid4(),
            user_id=user.id,
            admin_role=role,
            permissions=granted,
            is_active=True,
        )
        db.add(admin)
    else:
        admin = existing
        admin.admin_role = role
        admin.permissions = granted
        admin.is_active = True
    user.role = UserRole.ADMIN
    return admin


async def _load_admin(db: AsyncSession, admin_id: uuid.UUID) -> Tuple[AdminProfile, User]:
    row = (await db.execute(
        select(AdminProfile, User)
        .join(User, User.id == AdminProfile.user_id)
        .where(AdminProfile.id == admin_id, User.record_state == RecordState.ACTIVE)
    )).first()
    if row is None:
        raise NotFound("Admin not found")
    return row[0], row[1]


# ── Bootstrap ──────────────────────────────────────────────────────────────────

@router.get("/status", response_model=SetupStatusResponse)
async def setup_status(db: AsyncSession = Depends(get_db)):
    """Public: whether the one-time super admin bootstrap is still open."""
    exists = await _super_admin_exists(db)
    return {"setup_required": not exists, "has_super_admin": exists}


@router.post(
    "/super-admin",
    response_model=AdminAccountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_super_admin(
    data: SuperAdminSetupRequest,
    request: Request,
    identity: Identity = Depends(require_email_verified),
    db: AsyncSession = Depends(get_db),
):
    """
    Create the first super admin for the calling identity.
    Closed for good once any super admin exists.
    """
    if await _super_admin_exists(db):
        raise PreconditionFailed("Super admin already exists")

    expected = settings.SUPER_ADMIN_SETUP_KEY
    if not expected:
        raise Forbidden("Super admin setup is not configured")
    if not secrets.compare_digest(data.setup_key.encode(), expected.encode()):
        logger.warning(f"Super admin setup attempted with an invalid key by {identity.uid}")
        raise Unauthorized("Invalid or missing setup key")

    allowed = settings.allowed_admin_emails_list
    if allowed and identity.email.lower() not in allowed:
        raise Forbidden("Email not authorized for admin creation")

    user = await db.scalar(select(User).where(User.firebase_uid == identity.uid))
    existing = None
    if user is None:
        if await db.scalar(select(User.id).where(User.email == identity.email)) is not None:
            raise PreconditionFailed("Email already belongs to another account")
        user = User(
            id=uuid.uuid4(),
            firebase_uid=identity.uid,
            username=await _unique_username(db, identity.email),
            email=identity.email,
            email_verified=identity.email_verified,
            role=UserRole.ADMIN,
            last_login_at=utcnow(),
        )
        db.add(user)
    elif user.record_state != RecordState.ACTIVE or not user.is_active:
        raise Forbidden("User account is inactive")
    elif user.role == UserRole.PARTNER:
        raise PreconditionFailed("Partner accounts cannot be made admins")
    else:
        existing = user.admin_profile

    admin = _grant(db, user, existing, AdminRole.SUPER_ADMIN, {})
    audit(db, user.id, "CREATE_SUPER_ADMIN", "AdminProfile", str(admin.id),
          {"email": user.email}, _client_ip(request))
    await db.commit()
    await db.refresh(user)
    await db.refresh(admin)

    logger.info(f"Super admin created for account {user.id}")
    return {"message": "Super admin created successfully", "user": user, "admin": admin}


# ── Admin management (super admin only) ────────────────────────────────────────

@router.get("/admins", response_model=AdminListResponse)
async def list_admins(
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AdminProfile, User)
        .join(User, User.id == AdminProfile.user_id)
        .where(User.record_state == RecordState.ACTIVE)
        .order_by(AdminProfile.created_at.desc())
    )
    return {"admins": [{"user": user, "admin": admin} for admin, user in result.all()]}


@router.post("/admins", response_model=AdminAccountResponse, status_code=status.HTTP_201_CREATED)
async def create_admin(
    data: AdminCreateRequest,
    request: Request,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Grant admin capabilities to an existing client account."""
    user = await db.scalar(
        select(User).where(User.id == data.user_id, User.record_state == RecordState.ACTIVE)
    )
    if user is None:
        raise NotFound("User not found")
    if user.role == UserRole.ADMIN:
        raise PreconditionFailed("User is already an admin")
    if user.role == UserRole.PARTNER:
        raise PreconditionFailed("Partner accounts cannot be made admins")

    role = AdminRole(data.admin_role)
    admin = _grant(db, user, user.admin_profile, role, data.permissions)
    audit(db, current_user.id, "CREATE_ADMIN", "AdminProfile", str(admin.id),
          {"user_id": str(user.id), "admin_role": role.value, "permissions": admin.permissions},
          _client_ip(request))
    await db.commit()
    await db.refresh(admin)

    logger.info(f"{role.value} access granted to {user.id} by {current_user.id}")
    return {"message": f"{role.value} created successfully", "user": user, "admin": admin}


@router.patch("/admins/{admin_id}/permissions", response_model=AdminAccountResponse)
async def update_admin_permissions(
    admin_id: uuid.UUID,
    data: AdminPermissionsRequest,
    request: Request,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    admin, user = await _load_admin(db, admin_id)
    if admin.admin_role == AdminRole.SUPER_ADMIN:
        raise Forbidden("Cannot modify super admin permissions")
    if not admin.is_active:
        raise PreconditionFailed("Admin is deactivated")

    if data.admin_role is not None:
        admin.admin_role = AdminRole(data.admin_role)
    if data.permissions:
        admin.permissions = {**(admin.permissions or {}), **data.permissions}

    audit(db, current_user.id, "UPDATE_ADMIN_PERMISSIONS", "AdminProfile", str(admin.id),
          {"admin_role": admin.admin_role.value, "permissions": admin.permissions},
          _client_ip(request))
    await db.commit()
    return {"message": "Admin permissions updated successfully", "user": user, "admin": admin}


@router.patch("/admins/{admin_id}/deactivate", response_model=AdminAccountResponse)
async def deactivate_admin(
    admin_id: uuid.UUID,
    request: Request,
    current_user: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Revoke admin access. The account falls back to a client account."""
    admin, user = await _load_admin(db, admin_id)
    if admin.admin_role == AdminRole.SUPER_ADMIN:
        raise Forbidden("Cannot deactivate super admin")
    if user.id == current_user.id:
        raise PreconditionFailed("Cannot deactivate your own account")
    if not admin.is_active:
        raise PreconditionFailed("Admin is already deactivated")

    admin.is_active = False
    user.role = UserRole.CLIENT
    if user.client_profile is None:
        db.add(ClientProfile(user_id=user.id))

    audit(db, current_user.id, "DEACTIVATE_ADMIN", "AdminProfile", str(admin.id),
          {"user_id": str(user.id)}, _client_ip(request))
    await db.commit()

    logger.info(f"Admin {admin.id} deactivated by {current_user.id}")
    return {"message": "Admin deactivated successfully", "user": user, "admin": admin}
