"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    ADMIN_PERMISSIONS,
    AdminRole,
    DocumentStatus,
    OnboardingStatus,
    PartnerType,
    PriceUnit,
    Specialization,
    UserRole,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Accounts ──────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    role: Literal["client", "partner"]
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{9,14}$")
    address: Optional[str] = Field(None, max_length=500)


class UserResponse(BaseSchema):
    id: uuid.UUID
    firebase_uid: str
    username: str
    email: EmailStr
    email_verified: bool
    phone: Optional[str]
    address: Optional[str]
    role: UserRole
    is_active: bool
    last_login_at: Optional[datetime]
    created_at: datetime


class OnboardingSummary(BaseSchema):
    step: int
    progress: int
    status: OnboardingStatus
    verified: bool


class MeResponse(BaseSchema):
    user: UserResponse
    onboarding: Optional[OnboardingSummary] = None


# ── Partner onboarding ────────────────────────────────────────

class SocialLinks(BaseSchema):
    website: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    x: Optional[str] = None
    pinterest: Optional[str] = None
    youtube: Optional[str] = None


class BasicInfoRequest(BaseSchema):
    company_name: str = Field(..., min_length=2, max_length=100)
    partner_type: PartnerType
    experience_years: int = Field(..., ge=0, le=50)
    specializations: List[Specialization] = Field(..., min_length=1)
    social_links: SocialLinks = Field(default_factory=SocialLinks)

    @field_validator("company_name")
    @classmethod
    def strip_company_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Company name must be at least 2 characters")
        return v

    @field_validator("specializations")
    @classmethod
    def dedupe_specializations(cls, v: List[Specialization]) -> List[Specialization]:
        return list(dict.fromkeys(v))


class ServiceRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    base_price: float = Field(..., ge=0)
    price_unit: PriceUnit
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Service name must be at least 2 characters")
        return v


class Coordinates(BaseSchema):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PartnerLocation(BaseSchema):
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    coordinates: Optional[Coordinates] = None
    served_areas: List[str] = Field(default_factory=list)


class LocationsRequest(BaseSchema):
    partner_locations: List[PartnerLocation] = Field(..., min_length=1)
    serving_locations: List[str] = Field(..., min_length=1)
    location_pricing: Dict[str, float] = Field(default_factory=dict)

    @field_validator("serving_locations")
    @classmethod
    def non_blank_locations(cls, v: List[str]) -> List[str]:
        cleaned = [loc.strip() for loc in v if loc and loc.strip()]
        if not cleaned:
            raise ValueError("At least one serving location is required")
        return cleaned

    @field_validator("location_pricing")
    @classmethod
    def non_negative_pricing(cls, v: Dict[str, float]) -> Dict[str, float]:
        for location, price in v.items():
            if price < 0:
                raise ValueError(f"Price for {location} must be non-negative")
        return v


class PortfolioRequest(BaseSchema):
    items: List[str] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def non_blank_items(cls, v: List[str]) -> List[str]:
        if any(not item or not item.strip() for item in v):
            raise ValueError("Portfolio items must be non-empty media URLs")
        return [item.strip() for item in v]


class PortfolioRemoveRequest(BaseSchema):
    item: str = Field(..., min_length=1)


class DocumentRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    file_ref: str = Field(..., min_length=1)


class DocumentsRequest(BaseSchema):
    documents: List[DocumentRequest] = Field(..., min_length=1)


class PaymentMethodsRequest(BaseSchema):
    payment_methods: Dict[str, Any]

    @field_validator("payment_methods")
    @classmethod
    def non_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("Valid payment methods object is required")
        return v


class DocumentResponse(BaseSchema):
    id: uuid.UUID
    name: str
    file_ref: str
    status: DocumentStatus
    rejection_reason: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    uploaded_at: datetime
    superseded_at: Optional[datetime] = None
    superseded_by_id: Optional[uuid.UUID] = None


class PartnerProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    company_name: Optional[str]
    partner_type: Optional[PartnerType]
    experience_years: int
    specializations: List[str]
    social_links: Dict[str, Any]
    services: List[Dict[str, Any]]
    partner_locations: List[Dict[str, Any]]
    serving_locations: List[str]
    location_pricing: Dict[str, float]
    portfolio: List[str]
    payment_methods: Dict[str, Any]
    onboarding_step: int
    onboarding_status: OnboardingStatus
    verified: bool
    submitted_at: Optional[datetime]
    verified_at: Optional[datetime]
    verified_by_id: Optional[uuid.UUID]
    verification_notes: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by_id: Optional[uuid.UUID]
    rejection_reason: Optional[str]
    rejection_notes: Optional[str]
    documents: List[DocumentResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("documents", mode="before")
    @classmethod
    def documents_as_list(cls, v: Any) -> Any:
        # ORM collection is keyed by document id
        if isinstance(v, dict):
            return list(v.values())
        return v


class OnboardingStepResponse(BaseSchema):
    message: str
    partner: PartnerProfileResponse
    onboarding_step: int
    onboarding_progress: int
    onboarding_status: OnboardingStatus
    previous_status: OnboardingStatus


class OnboardingStatusResponse(BaseSchema):
    onboarding_step: int
    onboarding_progress: int
    onboarding_status: OnboardingStatus
    verified: bool
    missing_steps: List[str]
    profile: PartnerProfileResponse


class DocumentListResponse(BaseSchema):
    documents: List[DocumentResponse]
    onboarding_status: OnboardingStatus


# ── Admin ─────────────────────────────────────────────────────

class AdminNotesRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=1000)


class AdminRejectRequest(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rejection reason is required")
        return v.strip()


class BulkActionRequest(BaseSchema):
    action: Literal["verify", "reject"]
    partner_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def reason_required_for_reject(self) -> "BulkActionRequest":
        if self.action == "reject" and not (self.reason and self.reason.strip()):
            raise ValueError("Rejection reason is required for bulk reject")
        return self


class BulkActionItem(BaseSchema):
    partner_id: uuid.UUID
    status: Literal["verified", "rejected", "skipped", "error"]
    success: bool
    reason: Optional[str] = None


class BulkActionResponse(BaseSchema):
    action: str
    processed: int
    succeeded: int
    results: List[BulkActionItem]


class DocumentReviewResponse(BaseSchema):
    message: str
    document: DocumentResponse
    all_documents_approved: bool


class PartnerReviewResponse(BaseSchema):
    message: str
    partner: PartnerProfileResponse


class AdminPartnerDetail(BaseSchema):
    user: UserResponse
    partner: PartnerProfileResponse
    onboarding_progress: int
    missing_steps: List[str]


class DashboardStatsResponse(BaseSchema):
    total_users: int
    total_clients: int
    total_partners: int
    verified_partners: int
    pending_verification: int
    rejected_partners: int
    incomplete_partners: int
    pending_documents: int


# ── Admin accounts ────────────────────────────────────────────

def _known_permissions(v: Optional[Dict[str, bool]]) -> Optional[Dict[str, bool]]:
    unknown = sorted(set(v or {}) - set(ADMIN_PERMISSIONS))
    if unknown:
        raise ValueError(f"Unknown permissions: {unknown}. Valid: {list(ADMIN_PERMISSIONS)}")
    return v


class SetupStatusResponse(BaseSchema):
    setup_required: bool
    has_super_admin: bool


class SuperAdminSetupRequest(BaseSchema):
    setup_key: str = Field(..., min_length=1)


class AdminCreateRequest(BaseSchema):
    user_id: uuid.UUID
    admin_role: Literal["admin", "moderator"] = "admin"
    permissions: Dict[str, bool] = Field(default_factory=dict)

    @field_validator("permissions")
    @classmethod
    def permissions_known(cls, v):
        return _known_permissions(v)


class AdminPermissionsRequest(BaseSchema):
    admin_role: Optional[Literal["admin", "moderator"]] = None
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("permissions")
    @classmethod
    def permissions_known(cls, v):
        return _known_permissions(v)

    @model_validator(mode="after")
    def something_to_change(self) -> "AdminPermissionsRequest":
        if self.admin_role is None and not self.permissions:
            raise ValueError("Provide admin_role or permissions")
        return self


class AdminProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    admin_role: AdminRole
    permissions: Dict[str, bool]
    is_active: bool
    last_active_at: Optional[datetime]
    created_at: datetime


class AdminAccount(BaseSchema):
    user: UserResponse
    admin: AdminProfileResponse


class AdminAccountResponse(AdminAccount):
    message: str


class AdminListResponse(BaseSchema):
    admins: List[AdminAccount]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
