"""
services/onboarding/workflow.py
Partner onboarding engine: progress/status derivation and the step-wise
profile mutations. Operations mutate the profile in place; the caller
owns the session and commits.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Tuple

from shared.models.models import (
    DocumentStatus,
    OnboardingStatus,
    PartnerDocument,
    PartnerProfile,
    PartnerType,
    Specialization,
    utcnow,
)
from shared.schemas.schemas import (
    BasicInfoRequest,
    DocumentRequest,
    LocationsRequest,
    ServiceRequest,
)
from shared.utils.errors import NotFound, PreconditionFailed, ValidationFailed

logger = logging.getLogger(__name__)

FINAL_STEP = 5

# Section → (weight, label shown to the partner)
SECTIONS: Dict[str, Tuple[int, str]] = {
    "basic_info": (20, "Basic Information"),
    "specializations": (15, "Specializations"),
    "services": (25, "Services"),
    "locations": (20, "Locations"),
    "documents": (20, "Documents"),
}


@dataclass
class StepResult:
    profile: PartnerProfile
    previous_status: OnboardingStatus
    status: OnboardingStatus
    progress: int
    step: int

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status


# ── Derivations ───────────────────────────────────────────────

def completeness(profile: PartnerProfile) -> Dict[str, bool]:
    return {
        "basic_info": bool(
            profile.company_name
            and profile.partner_type
            and (profile.experience_years or 0) >= 0
        ),
        "specializations": bool(profile.specializations),
        "services": bool(profile.services),
        "locations": bool(profile.partner_locations),
        "documents": bool(profile.active_documents),
    }


def compute_progress(profile: PartnerProfile) -> int:
    """Weighted sum of the five completeness checks, clamped to [0, 100]."""
    flags = completeness(profile)
    progress = sum(SECTIONS[name][0] for name, done in flags.items() if done)
    return max(0, min(progress, 100))


def missing_steps(profile: PartnerProfile) -> List[str]:
    return [SECTIONS[name][1] for name, done in completeness(profile).items() if not done]


def derive_status(profile: PartnerProfile) -> OnboardingStatus:
    """
    Status as implied by completeness and document review state.
    Verified is terminal. Admin approval is the only way in; recomputation
    never promotes to verified.
    """
    if profile.onboarding_status == OnboardingStatus.VERIFIED:
        return OnboardingStatus.VERIFIED

    documents = profile.active_documents
    if compute_progress(profile) < 100 or not documents:
        return OnboardingStatus.INCOMPLETE
    if any(d.status == DocumentStatus.REJECTED for d in documents):
        return OnboardingStatus.REJECTED
    return OnboardingStatus.PENDING_VERIFICATION


def recompute_status(profile: PartnerProfile) -> Tuple[OnboardingStatus, OnboardingStatus]:
    old = profile.onboarding_status
    new = derive_status(profile)
    if new != old:
        profile.onboarding_status = new
        if new == OnboardingStatus.PENDING_VERIFICATION:
            profile.submitted_at = utcnow()
        logger.info(f"Partner {profile.id} onboarding status {old.value} -> {new.value}")
    return old, new


def _advance(profile: PartnerProfile, next_step: int) -> StepResult:
    previous = profile.onboarding_status
    profile.onboarding_step = min(FINAL_STEP, max(profile.onboarding_step or 1, next_step))
    recompute_status(profile)
    return StepResult(
        profile=profile,
        previous_status=previous,
        status=profile.onboarding_status,
        progress=compute_progress(profile),
        step=profile.onboarding_step,
    )


def _require_mutable_documents(profile: PartnerProfile) -> None:
    if profile.onboarding_status == OnboardingStatus.VERIFIED:
        raise PreconditionFailed(
            "Verified partners cannot change verification documents",
            expected_status="not verified",
        )


# ── Step 1: basic info ────────────────────────────────────────

def submit_basic_info(profile: PartnerProfile, data: BasicInfoRequest) -> StepResult:
    profile.company_name = data.company_name
    profile.partner_type = PartnerType(data.partner_type)
    profile.experience_years = data.experience_years
    profile.specializations = [Specialization(s).value for s in data.specializations]
    profile.social_links = data.social_links.model_dump(exclude_none=True)
    return _advance(profile, 2)


# ── Step 2: services ──────────────────────────────────────────

def add_service(profile: PartnerProfile, data: ServiceRequest) -> StepResult:
    service = {"id": str(uuid.uuid4()), **data.model_dump()}
    profile.services = [*(profile.services or []), service]
    return _advance(profile, 3)


def update_service(profile: PartnerProfile, service_id: str, data: ServiceRequest) -> StepResult:
    if profile.get_service(service_id) is None:
        raise NotFound("Service not found")

    profile.services = [
        {"id": s["id"], **data.model_dump()} if s["id"] == str(service_id) else s
        for s in profile.services
    ]
    return _advance(profile, 3)


def remove_service(profile: PartnerProfile, service_id: str) -> StepResult:
    if profile.get_service(service_id) is None:
        raise NotFound("Service not found")

    profile.services = [s for s in profile.services if s["id"] != str(service_id)]
    return _advance(profile, 3)


# ── Step 3: locations ─────────────────────────────────────────

def submit_locations(profile: PartnerProfile, data: LocationsRequest) -> StepResult:
    profile.partner_locations = [loc.model_dump() for loc in data.partner_locations]
    profile.serving_locations = list(data.serving_locations)
    profile.location_pricing = dict(data.location_pricing)
    return _advance(profile, 4)


# ── Step 4: portfolio ─────────────────────────────────────────

def add_portfolio_items(profile: PartnerProfile, items: List[str]) -> StepResult:
    if not items or any(not item or not item.strip() for item in items):
        raise ValidationFailed("Portfolio items must be non-empty media URLs")

    profile.portfolio = [*(profile.portfolio or []), *items]
    return _advance(profile, 4)


def remove_portfolio_item(profile: PartnerProfile, item: str) -> StepResult:
    if item not in (profile.portfolio or []):
        raise NotFound("Portfolio item not found")

    portfolio = list(profile.portfolio)
    portfolio.remove(item)
    profile.portfolio = portfolio
    return _advance(profile, 4)


# ── Step 5: documents ─────────────────────────────────────────

def _new_document(profile: PartnerProfile, data: DocumentRequest) -> PartnerDocument:
    document = PartnerDocument(
        id=uuid.uuid4(),
        partner_id=profile.id,
        name=data.name.strip(),
        file_ref=data.file_ref.strip(),
        status=DocumentStatus.PENDING,
        uploaded_at=utcnow(),
    )
    profile.documents[document.id] = document
    return document


def submit_documents(profile: PartnerProfile, documents: List[DocumentRequest]) -> StepResult:
    if not documents:
        raise ValidationFailed("At least one document is required")
    if any(not d.name.strip() or not d.file_ref.strip() for d in documents):
        raise ValidationFailed("Documents need a name and a file reference")
    _require_mutable_documents(profile)

    for data in documents:
        _new_document(profile, data)
    return _advance(profile, FINAL_STEP)


def replace_document(
    profile: PartnerProfile,
    document_id: uuid.UUID,
    data: DocumentRequest,
) -> Tuple[StepResult, PartnerDocument]:
    """Resubmit a rejected document. The old one is kept as superseded history."""
    if not data.name.strip() or not data.file_ref.strip():
        raise ValidationFailed("Documents need a name and a file reference")

    old = profile.documents.get(document_id)
    if old is None or not old.is_active:
        raise NotFound("Document not found")
    if old.status != DocumentStatus.REJECTED:
        raise PreconditionFailed(
            f"Only rejected documents can be replaced (document is {old.status.value})",
            expected_status=DocumentStatus.REJECTED.value,
        )
    _require_mutable_documents(profile)

    new = _new_document(profile, data)
    old.superseded_at = new.uploaded_at
    old.superseded_by_id = new.id
    return _advance(profile, FINAL_STEP), new


def complete_onboarding(profile: PartnerProfile) -> StepResult:
    """Explicit submission for admin review."""
    if profile.onboarding_status == OnboardingStatus.VERIFIED:
        raise PreconditionFailed("Partner is already verified", expected_status="incomplete")

    progress = compute_progress(profile)
    if progress < 100:
        raise PreconditionFailed(
            "Please complete all onboarding steps before submitting",
            current_progress=progress,
            missing_steps=missing_steps(profile),
        )

    documents = profile.active_documents
    if not documents:
        raise PreconditionFailed(
            "Please upload verification documents before completing onboarding"
        )
    if any(d.status == DocumentStatus.REJECTED for d in documents):
        raise PreconditionFailed("Replace rejected documents before submitting")

    previous = profile.onboarding_status
    profile.onboarding_step = FINAL_STEP
    if previous != OnboardingStatus.PENDING_VERIFICATION:
        profile.onboarding_status = OnboardingStatus.PENDING_VERIFICATION
        profile.submitted_at = utcnow()
    logger.info(f"Partner {profile.id} submitted onboarding for verification")

    return StepResult(
        profile=profile,
        previous_status=previous,
        status=profile.onboarding_status,
        progress=progress,
        step=profile.onboarding_step,
    )


# ── Misc ──────────────────────────────────────────────────────

def update_payment_methods(profile: PartnerProfile, payment_methods: dict) -> PartnerProfile:
    if not isinstance(payment_methods, dict) or not payment_methods:
        raise ValidationFailed("Valid payment methods object is required")
    profile.payment_methods = dict(payment_methods)
    return profile


def get_onboarding_status(profile: PartnerProfile) -> dict:
    return {
        "onboarding_step": profile.onboarding_step,
        "onboarding_progress": compute_progress(profile),
        "onboarding_status": profile.onboarding_status,
        "verified": profile.verified,
        "missing_steps": missing_steps(profile),
        "profile": profile,
    }


def list_documents(profile: PartnerProfile) -> dict:
    return {
        "documents": list(profile.documents.values()),
        "onboarding_status": profile.onboarding_status,
    }
