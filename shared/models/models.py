"""
shared/models/models.py
All SQLAlchemy ORM models for the Partner Marketplace.
UUID primary keys throughout; embedded arrays (services, locations,
portfolio) are JSONB on PostgreSQL, generic JSON elsewhere.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, attribute_keyed_dict, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CLIENT = "client"
    PARTNER = "partner"
    ADMIN = "admin"


class AdminRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


class RecordState(str, PyEnum):
    ACTIVE = "active"
    DELETED = "deleted"


class PartnerType(str, PyEnum):
    STUDIO = "studio"
    SOLO = "solo"
    FIRM = "firm"
    PARTNERSHIP = "partnership"


class OnboardingStatus(str, PyEnum):
    INCOMPLETE = "incomplete"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DocumentStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PriceUnit(str, PyEnum):
    PER_HOUR = "per_hour"
    PER_DAY = "per_day"
    PER_PROJECT = "per_project"


class Specialization(str, PyEnum):
    WEDDING_PHOTOGRAPHY = "wedding_photography"
    PORTRAIT_PHOTOGRAPHY = "portrait_photography"
    EVENT_PHOTOGRAPHY = "event_photography"
    COMMERCIAL_PHOTOGRAPHY = "commercial_photography"
    FASHION_PHOTOGRAPHY = "fashion_photography"
    PRODUCT_PHOTOGRAPHY = "product_photography"
    WEDDING_VIDEOGRAPHY = "wedding_videography"
    EVENT_VIDEOGRAPHY = "event_videography"
    COMMERCIAL_VIDEOGRAPHY = "commercial_videography"
    DOCUMENTARY_VIDEOGRAPHY = "documentary_videography"
    MUSIC_VIDEO = "music_video"
    CORPORATE_VIDEO = "corporate_video"


ADMIN_PERMISSIONS = (
    "manage_partners",
    "manage_users",
    "manage_content",
    "view_analytics",
    "system_settings",
)

DEFAULT_ADMIN_PERMISSIONS = {
    "manage_partners": True,
    "manage_users": False,
    "manage_content": False,
    "view_analytics": True,
    "system_settings": False,
}

ROLE_DEFAULT_PERMISSIONS = {
    AdminRole.SUPER_ADMIN: {name: True for name in ADMIN_PERMISSIONS},
    AdminRole.ADMIN: DEFAULT_ADMIN_PERMISSIONS,
    AdminRole.MODERATOR: {**DEFAULT_ADMIN_PERMISSIONS, "manage_content": True},
}


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class SoftDeleteMixin:
    """Explicit lifecycle state; rows are tombstoned, never hard-deleted."""
    record_state: Mapped[RecordState] = mapped_column(
        Enum(RecordState), default=RecordState.ACTIVE, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def soft_delete(self, when: Optional[datetime] = None) -> None:
        self.record_state = RecordState.DELETED
        self.deleted_at = when or utcnow()


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, SoftDeleteMixin, Base):
    """
    Core account, linked to a Firebase identity.
    Exactly one role-specific profile is attached, selected by ``role``.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firebase_uid: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    client_profile: Mapped[Optional["ClientProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )
    partner_profile: Mapped[Optional["PartnerProfile"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="selectin",
        foreign_keys="PartnerProfile.user_id",
    )
    admin_profile: Mapped[Optional["AdminProfile"]] = relationship(
        back_populates="user", uselist=False, lazy="selectin"
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_record_state", "record_state"),
    )

    @property
    def profile(self):
        """The role-specific profile for this account."""
        return {
            UserRole.CLIENT: self.client_profile,
            UserRole.PARTNER: self.partner_profile,
            UserRole.ADMIN: self.admin_profile,
        }[self.role]

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class ClientProfile(TimestampMixin, Base):
    __tablename__ = "client_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    favourite_partner_ids: Mapped[List[str]] = mapped_column(JSONType, default=list)

    user: Mapped["User"] = relationship(back_populates="client_profile")


class AdminProfile(TimestampMixin, Base):
    """Admin capabilities. Provisioned out of band, never self-registered."""
    __tablename__ = "admin_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    admin_role: Mapped[AdminRole] = mapped_column(
        Enum(AdminRole), default=AdminRole.ADMIN, nullable=False
    )
    permissions: Mapped[Dict[str, bool]] = mapped_column(
        JSONType, default=lambda: dict(DEFAULT_ADMIN_PERMISSIONS)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_active_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="admin_profile")

    def has_permission(self, permission: str) -> bool:
        if self.admin_role == AdminRole.SUPER_ADMIN:
            return True
        return bool((self.permissions or {}).get(permission))


# ── Partner onboarding ────────────────────────────────────────

class PartnerProfile(TimestampMixin, SoftDeleteMixin, Base):
    """
    Partner (vendor) profile and onboarding state. One-to-one with User.
    ``documents`` is an owned collection keyed by document id.
    """
    __tablename__ = "partner_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Basic info
    company_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    partner_type: Mapped[Optional[PartnerType]] = mapped_column(Enum(PartnerType), nullable=True)
    experience_years: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    specializations: Mapped[List[str]] = mapped_column(JSONType, default=list)
    social_links: Mapped[dict] = mapped_column(JSONType, default=dict)

    # e.g. [{"id": "...", "name": "Wedding shoot", "base_price": 1500.0, "price_unit": "per_day"}]
    services: Mapped[List[dict]] = mapped_column(JSONType, default=list)

    # e.g. [{"city": "Pune", "state": "MH", "coordinates": {"lat": .., "lng": ..}, "served_areas": [...]}]
    partner_locations: Mapped[List[dict]] = mapped_column(JSONType, default=list)
    serving_locations: Mapped[List[str]] = mapped_column(JSONType, default=list)
    location_pricing: Mapped[Dict[str, float]] = mapped_column(JSONType, default=dict)

    portfolio: Mapped[List[str]] = mapped_column(JSONType, default=list)
    payment_methods: Mapped[dict] = mapped_column(JSONType, default=dict)

    # Onboarding
    onboarding_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    onboarding_status: Mapped[OnboardingStatus] = mapped_column(
        Enum(OnboardingStatus), default=OnboardingStatus.INCOMPLETE, nullable=False
    )
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Verification
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(
        back_populates="partner_profile", foreign_keys=[user_id], lazy="selectin"
    )
    documents: Mapped[Dict[uuid.UUID, "PartnerDocument"]] = relationship(
        back_populates="partner",
        collection_class=attribute_keyed_dict("id"),
        cascade="all, delete-orphan",
        order_by="PartnerDocument.uploaded_at",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_partner_profiles_status", "onboarding_status"),
        Index("ix_partner_profiles_verified", "verified"),
    )

    @property
    def active_documents(self) -> List["PartnerDocument"]:
        """Documents that count towards review; superseded uploads are history."""
        return [d for d in self.documents.values() if d.is_active]

    def get_service(self, service_id: str) -> Optional[dict]:
        return next((s for s in self.services or [] if s["id"] == str(service_id)), None)


class PartnerDocument(Base):
    """Verification document uploaded by a partner and reviewed by an admin."""
    __tablename__ = "partner_documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("partner_profiles.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_ref: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    # Set when a rejected document is replaced by a fresh upload
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    superseded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    partner: Mapped["PartnerProfile"] = relationship(back_populates="documents")

    __table_args__ = (Index("ix_partner_documents_partner_id", "partner_id"),)

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None


# ── Audit ─────────────────────────────────────────────────────

class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
