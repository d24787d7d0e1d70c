"""
services/auth/router.py
Account registration and session endpoints.
Identity comes from a verified Firebase ID token; this service only
keeps the marketplace account and its role profile.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.dispatcher import NotificationDispatcher, get_dispatcher
from services.onboarding.workflow import compute_progress
from shared.middleware.auth import get_current_user, get_identity
from shared.models.models import ClientProfile, PartnerProfile, User, UserRole, utcnow
from shared.schemas.schemas import MeResponse, MessageResponse, RegisterRequest
from shared.utils.errors import PreconditionFailed
from shared.utils.security import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _me(user: User) -> dict:
    """Account plus an onboarding summary for partners."""
    data = {"user": user, "onboarding": None}
    profile = user.partner_profile
    if user.role == UserRole.PARTNER and profile is not None:
        data["onboarding"] = {
            "step": profile.onboarding_step,
            "progress": compute_progress(profile),
            "status": profile.onboarding_status,
            "verified": profile.verified,
        }
    return data


@router.post("/register", response_model=MeResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Create the marketplace account for a freshly signed-up identity.
    Client and partner only; admins are provisioned out of band.
    """
    existing = await db.scalar(
        select(User).where(
            or_(
                User.firebase_uid == identity.uid,
                User.email == identity.email,
                User.username == data.username,
            )
        )
    )
    if existing:
        raise PreconditionFailed("User with this email, username, or Firebase UID already exists")

    role = UserRole(data.role)
    user = User(
        firebase_uid=identity.uid,
        username=data.username,
        email=identity.email,
        email_verified=identity.email_verified,
        phone=data.phone,
        address=data.address,
        role=role,
        last_login_at=utcnow(),
    )
    db.add(user)
    await db.flush()

    if role == UserRole.PARTNER:
        db.add(PartnerProfile(user_id=user.id))
    else:
        db.add(ClientProfile(user_id=user.id))

    await db.commit()
    await db.refresh(user)
    logger.info(f"Registered {role.value} account {user.id}")

    dispatcher.send_email(user.email, "welcome", {"username": user.username, "role": role.value})
    return _me(user)


@router.post("/login", response_model=MeResponse)
async def login(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a sign-in. The token itself was issued by the identity provider."""
    current_user.last_login_at = utcnow()
    await db.commit()
    return _me(current_user)


@router.get("/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)):
    return _me(current_user)


@router.delete("/account", response_model=MessageResponse)
async def delete_account(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete. The account and its partner profile are tombstoned, never removed."""
    now = utcnow()
    current_user.soft_delete(now)
    current_user.is_active = False
    if current_user.partner_profile is not None:
        current_user.partner_profile.soft_delete(now)

    await db.commit()
    logger.info(f"Account {current_user.id} deleted")
    return MessageResponse(message="Account deleted successfully")
