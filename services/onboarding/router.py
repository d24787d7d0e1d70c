"""
services/onboarding/router.py
Partner-facing onboarding endpoints (steps 1-5 and final submission).
All business rules live in services/onboarding/workflow.py.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.notification.dispatcher import NotificationDispatcher, get_dispatcher
from services.onboarding import workflow
from services.onboarding.workflow import StepResult
from shared.middleware.auth import get_partner_profile, require_email_verified
from shared.models.models import OnboardingStatus, PartnerProfile
from shared.schemas.schemas import (
    BasicInfoRequest,
    DocumentListResponse,
    DocumentRequest,
    DocumentsRequest,
    LocationsRequest,
    OnboardingStatusResponse,
    OnboardingStepResponse,
    PartnerReviewResponse,
    PaymentMethodsRequest,
    PortfolioRemoveRequest,
    PortfolioRequest,
    ServiceRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/partner/onboarding", tags=["Partner Onboarding"])

email_verified = [Depends(require_email_verified)]


async def _commit(
    db: AsyncSession,
    result: StepResult,
    message: str,
    redis,
    dispatcher: NotificationDispatcher,
) -> dict:
    """Commit, then tell admins once when the partner enters the review queue."""
    await db.commit()
    if result.status_changed:
        if result.status == OnboardingStatus.PENDING_VERIFICATION:
            dispatcher.partner_submitted_for_verification(result.profile)
        await RedisCache(redis).invalidate_admin_stats()
    return {
        "message": message,
        "partner": result.profile,
        "onboarding_step": result.step,
        "onboarding_progress": result.progress,
        "onboarding_status": result.status,
        "previous_status": result.previous_status,
    }


@router.get("/status", response_model=OnboardingStatusResponse)
async def get_status(profile: PartnerProfile = Depends(get_partner_profile)):
    return workflow.get_onboarding_status(profile)


# ── Step 1 ────────────────────────────────────────────────────

@router.post("/basic-info", response_model=OnboardingStepResponse)
async def submit_basic_info(
    data: BasicInfoRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.submit_basic_info(profile, data)
    return await _commit(db, result, "Basic information updated successfully", redis, dispatcher)


# ── Step 2 ────────────────────────────────────────────────────

@router.post(
    "/services",
    response_model=OnboardingStepResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=email_verified,
)
async def add_service(
    data: ServiceRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.add_service(profile, data)
    return await _commit(db, result, "Service added successfully", redis, dispatcher)


@router.patch("/services/{service_id}", response_model=OnboardingStepResponse, dependencies=email_verified)
async def update_service(
    service_id: str,
    data: ServiceRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.update_service(profile, service_id, data)
    return await _commit(db, result, "Service updated successfully", redis, dispatcher)


@router.delete("/services/{service_id}", response_model=OnboardingStepResponse, dependencies=email_verified)
async def remove_service(
    service_id: str,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.remove_service(profile, service_id)
    return await _commit(db, result, "Service removed successfully", redis, dispatcher)


# ── Step 3 ────────────────────────────────────────────────────

@router.post("/locations", response_model=OnboardingStepResponse)
async def submit_locations(
    data: LocationsRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.submit_locations(profile, data)
    return await _commit(db, result, "Locations updated successfully", redis, dispatcher)


# ── Step 4 ────────────────────────────────────────────────────

@router.post("/portfolio", response_model=OnboardingStepResponse, dependencies=email_verified)
async def add_portfolio_items(
    data: PortfolioRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.add_portfolio_items(profile, data.items)
    return await _commit(db, result, "Portfolio updated successfully", redis, dispatcher)


@router.delete("/portfolio", response_model=OnboardingStepResponse, dependencies=email_verified)
async def remove_portfolio_item(
    data: PortfolioRemoveRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.remove_portfolio_item(profile, data.item)
    return await _commit(db, result, "Portfolio item removed successfully", redis, dispatcher)


# ── Step 5 ────────────────────────────────────────────────────

@router.post(
    "/documents",
    response_model=OnboardingStepResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=email_verified,
)
async def submit_documents(
    data: DocumentsRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.submit_documents(profile, data.documents)
    return await _commit(
        db, result, "Documents uploaded successfully. Verification pending.", redis, dispatcher
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(profile: PartnerProfile = Depends(get_partner_profile)):
    return workflow.list_documents(profile)


@router.put("/documents/{document_id}", response_model=OnboardingStepResponse, dependencies=email_verified)
async def replace_document(
    document_id: UUID,
    data: DocumentRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Upload a replacement for a rejected document."""
    result, document = workflow.replace_document(profile, document_id, data)
    logger.info(f"Partner {profile.id} replaced document {document_id} with {document.id}")
    return await _commit(
        db, result, "Document replaced successfully. Verification pending.", redis, dispatcher
    )


@router.post("/complete", response_model=OnboardingStepResponse, dependencies=email_verified)
async def complete_onboarding(
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    result = workflow.complete_onboarding(profile)
    return await _commit(
        db, result, "Onboarding completed successfully! Your profile is now under review.",
        redis, dispatcher,
    )


# ── Payment methods ───────────────────────────────────────────

@router.patch("/payment-methods", response_model=PartnerReviewResponse)
async def update_payment_methods(
    data: PaymentMethodsRequest,
    profile: PartnerProfile = Depends(get_partner_profile),
    db: AsyncSession = Depends(get_db),
):
    workflow.update_payment_methods(profile, data.payment_methods)
    await db.commit()
    return {"message": "Payment methods updated successfully", "partner": profile}
