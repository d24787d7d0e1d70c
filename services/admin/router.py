"""
services/admin/router.py
Admin-only endpoints: partner verification queue, document review,
verify/reject decisions, dashboard counters and the audit log.

ALL mutations are logged to AdminAuditLog before returning.
Every route requires the manage_partners capability.
"""

import logging
from dataclasses import asdict
from datetime import timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.admin import review
from services.notification.dispatcher import NotificationDispatcher, get_dispatcher
from services.onboarding.workflow import compute_progress, missing_steps
from shared.middleware.auth import RequirePermission
from shared.models.models import (
    AdminAuditLog,
    DocumentStatus,
    OnboardingStatus,
    PartnerDocument,
    PartnerProfile,
    RecordState,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminNotesRequest,
    AdminPartnerDetail,
    AdminRejectRequest,
    BulkActionRequest,
    BulkActionResponse,
    DashboardStatsResponse,
    DocumentReviewResponse,
    PaginatedResponse,
    PartnerReviewResponse,
)
from shared.utils.errors import ValidationFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

require_partner_manager = RequirePermission("manage_partners")


# ── Helpers ────────────────────────────────────────────────────────────────────

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _partner_summary(profile: PartnerProfile, user: User) -> dict:
    documents = profile.active_documents
    return {
        "id": str(profile.id),
        "user_id": str(profile.user_id),
        "username": user.username,
        "email": user.email,
        "company_name": profile.company_name,
        "partner_type": profile.partner_type.value if profile.partner_type else None,
        "onboarding_step": profile.onboarding_step,
        "onboarding_progress": compute_progress(profile),
        "onboarding_status": profile.onboarding_status.value,
        "verified": profile.verified,
        "document_count": len(documents),
        "pending_documents": sum(1 for d in documents if d.status == DocumentStatus.PENDING),
        "submitted_at": profile.submitted_at.isoformat() if profile.submitted_at else None,
        "created_at": profile.created_at.isoformat(),
    }


def _page(items: list, total: int, page: int, page_size: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": -(-total // page_size),  # ceiling division
    }


# ── Dashboard ──────────────────────────────────────────────────────────────────

@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Account and onboarding counters. Cached briefly in Redis."""
    cache = RedisCache(redis)
    cached = await cache.get_admin_stats()
    if cached:
        return cached

    live_users = User.record_state == RecordState.ACTIVE
    live_partners = PartnerProfile.record_state == RecordState.ACTIVE

    total_users = await db.scalar(select(func.count(User.id)).where(live_users))
    total_clients = await db.scalar(
        select(func.count(User.id)).where(live_users, User.role == UserRole.CLIENT)
    )
    status_rows = await db.execute(
        select(PartnerProfile.onboarding_status, func.count(PartnerProfile.id))
        .where(live_partners)
        .group_by(PartnerProfile.onboarding_status)
    )
    by_status = {row[0]: row[1] for row in status_rows.all()}
    pending_documents = await db.scalar(
        select(func.count(PartnerDocument.id))
        .join(PartnerProfile, PartnerProfile.id == PartnerDocument.partner_id)
        .where(
            live_partners,
            PartnerDocument.status == DocumentStatus.PENDING,
            PartnerDocument.superseded_at.is_(None),
        )
    )

    stats = {
        "total_users": total_users or 0,
        "total_clients": total_clients or 0,
        "total_partners": sum(by_status.values()),
        "verified_partners": by_status.get(OnboardingStatus.VERIFIED, 0),
        "pending_verification": by_status.get(OnboardingStatus.PENDING_VERIFICATION, 0),
        "rejected_partners": by_status.get(OnboardingStatus.REJECTED, 0),
        "incomplete_partners": by_status.get(OnboardingStatus.INCOMPLETE, 0),
        "pending_documents": pending_documents or 0,
    }
    await cache.set_admin_stats(stats)
    return stats


# ── Partner Verification Queue ──────────────────────────────────────────────────

@router.get("/partners/pending", response_model=PaginatedResponse)
async def get_pending_partners(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
):
    """Partners awaiting verification, oldest submission first (FIFO queue)."""
    query = (
        select(PartnerProfile, User)
        .join(User, User.id == PartnerProfile.user_id)
        .where(
            PartnerProfile.onboarding_status == OnboardingStatus.PENDING_VERIFICATION,
            PartnerProfile.record_state == RecordState.ACTIVE,
        )
        .order_by(
            func.coalesce(PartnerProfile.submitted_at, PartnerProfile.created_at).asc()
        )
    )
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    items = []
    for profile, user in result.all():
        item = _partner_summary(profile, user)
        item["documents"] = [
            {
                "id": str(d.id),
                "name": d.name,
                "file_ref": d.file_ref,
                "status": d.status.value,
                "uploaded_at": d.uploaded_at.isoformat(),
            }
            for d in profile.active_documents
        ]
        items.append(item)
    return _page(items, total or 0, page, page_size)


@router.get("/partners", response_model=PaginatedResponse)
async def list_partners(
    status_filter: Optional[str] = Query(None, alias="status"),
    verified: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
):
    """All partners, newest first, filterable by status and searchable by name."""
    query = (
        select(PartnerProfile, User)
        .join(User, User.id == PartnerProfile.user_id)
        .where(PartnerProfile.record_state == RecordState.ACTIVE)
        .order_by(PartnerProfile.created_at.desc())
    )

    if status_filter:
        try:
            query = query.where(PartnerProfile.onboarding_status == OnboardingStatus(status_filter))
        except ValueError:
            valid = [s.value for s in OnboardingStatus]
            raise ValidationFailed(f"Invalid status. Valid: {valid}")
    if verified is not None:
        query = query.where(PartnerProfile.verified == verified)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                PartnerProfile.company_name.ilike(pattern),
            )
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    items = [_partner_summary(profile, user) for profile, user in result.all()]
    return _page(items, total or 0, page, page_size)


# ── Bulk (declared before /partners/{partner_id}) ───────────────────────────────

@router.patch("/partners/bulk-action", response_model=BulkActionResponse)
async def bulk_partner_action(
    data: BulkActionRequest,
    request: Request,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Verify or reject many partners at once.
    Each partner is processed independently; the response lists a per-id
    outcome (verified, rejected, skipped or error).
    """
    admin_id = current_user.id
    result = await review.bulk_action(
        db,
        admin_id,
        data.action,
        data.partner_ids,
        reason=data.reason,
        notes=data.notes,
        ip_address=_client_ip(request),
        dispatcher=dispatcher,
    )
    if result.succeeded:
        await RedisCache(redis).invalidate_admin_stats()

    return {
        "action": result.action,
        "processed": len(result.results),
        "succeeded": result.succeeded,
        "results": [asdict(r) for r in result.results],
    }


# ── Partner detail & history ───────────────────────────────────────────────────

@router.get("/partners/{partner_id}", response_model=AdminPartnerDetail)
async def get_partner(
    partner_id: UUID,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
):
    profile = await review.load_partner(db, partner_id)
    return {
        "user": profile.user,
        "partner": profile,
        "onboarding_progress": compute_progress(profile),
        "missing_steps": missing_steps(profile),
    }


@router.get("/partners/{partner_id}/history")
async def get_partner_history(
    partner_id: UUID,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
):
    """Verification and document review events, newest first."""
    profile = await review.load_partner(db, partner_id)
    history = []

    if profile.submitted_at:
        history.append({"event": "submitted_for_verification", "at": profile.submitted_at})
    if profile.verified_at:
        history.append({
            "event": "partner_verified",
            "at": profile.verified_at,
            "actor_id": profile.verified_by_id,
            "notes": profile.verification_notes,
        })
    if profile.rejected_at:
        history.append({
            "event": "partner_rejected",
            "at": profile.rejected_at,
            "actor_id": profile.rejected_by_id,
            "reason": profile.rejection_reason,
            "notes": profile.rejection_notes,
        })

    for document in profile.documents.values():
        history.append({
            "event": "document_uploaded",
            "at": document.uploaded_at,
            "document_id": document.id,
            "document_name": document.name,
        })
        if document.reviewed_at:
            history.append({
                "event": f"document_{document.status.value}",
                "at": document.reviewed_at,
                "actor_id": document.reviewed_by_id,
                "document_id": document.id,
                "document_name": document.name,
                "reason": document.rejection_reason,
                "notes": document.review_notes,
            })
        if document.superseded_at:
            history.append({
                "event": "document_replaced",
                "at": document.superseded_at,
                "document_id": document.id,
                "document_name": document.name,
            })

    # SQLite hands back naive datetimes
    def _key(entry: dict):
        at = entry["at"]
        return at.replace(tzinfo=timezone.utc) if at.tzinfo is None else at

    history.sort(key=_key, reverse=True)
    for entry in history:
        entry["at"] = _key(entry).isoformat()
        for key in ("actor_id", "document_id"):
            if entry.get(key) is not None:
                entry[key] = str(entry[key])

    return {"partner_id": str(profile.id), "history": history}


# ── Partner decisions ──────────────────────────────────────────────────────────

@router.patch("/partners/{partner_id}/verify", response_model=PartnerReviewResponse)
async def verify_partner(
    partner_id: UUID,
    data: AdminNotesRequest,
    request: Request,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Approve a partner.
    - Requires pending_verification with every document approved
    - Notifies the partner (in-app + email) and other admins
    """
    profile = await review.verify_partner(
        db, current_user.id, partner_id, data.notes, _client_ip(request)
    )
    await db.commit()
    review.notify_partner_decision(dispatcher, profile)
    await RedisCache(redis).invalidate_admin_stats()
    return {"message": "Partner verified successfully", "partner": profile}


@router.patch("/partners/{partner_id}/reject", response_model=PartnerReviewResponse)
async def reject_partner(
    partner_id: UUID,
    data: AdminRejectRequest,
    request: Request,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Reject a partner application with a reason. The partner can fix and resubmit."""
    profile = await review.reject_partner(
        db, current_user.id, partner_id, data.reason, data.notes, _client_ip(request)
    )
    await db.commit()
    review.notify_partner_decision(dispatcher, profile)
    await RedisCache(redis).invalidate_admin_stats()
    return {"message": "Partner application rejected", "partner": profile}


# ── Document review ────────────────────────────────────────────────────────────

@router.patch(
    "/partners/{partner_id}/documents/{document_id}/approve",
    response_model=DocumentReviewResponse,
)
async def approve_document(
    partner_id: UUID,
    document_id: UUID,
    data: AdminNotesRequest,
    request: Request,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    profile, document, all_approved = await review.approve_document(
        db, current_user.id, partner_id, document_id, data.notes, _client_ip(request)
    )
    await db.commit()
    dispatcher.document_status_updated(profile, document, notes=data.notes)
    await RedisCache(redis).invalidate_admin_stats()
    return {
        "message": "Document approved successfully",
        "document": document,
        "all_documents_approved": all_approved,
    }


@router.patch(
    "/partners/{partner_id}/documents/{document_id}/reject",
    response_model=DocumentReviewResponse,
)
async def reject_document(
    partner_id: UUID,
    document_id: UUID,
    data: AdminRejectRequest,
    request: Request,
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    profile, document = await review.reject_document(
        db, current_user.id, partner_id, document_id, data.reason, data.notes, _client_ip(request)
    )
    await db.commit()
    dispatcher.document_status_updated(profile, document, reason=data.reason, notes=data.notes)
    await RedisCache(redis).invalidate_admin_stats()
    return {
        "message": "Document rejected successfully",
        "document": document,
        "all_documents_approved": False,
    }


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse)
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. VERIFY_PARTNER"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_partner_manager),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, append-only and never editable."""
    query = (
        select(AdminAuditLog, User)
        .join(User, User.id == AdminAuditLog.admin_id)
        .order_by(AdminAuditLog.created_at.desc())
    )
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    rows = result.all()

    items = [
        {
            "id": str(log.id),
            "admin_username": admin.username,
            "admin_email": admin.email,
            "action": log.action,
            "entity_type": log.entity_type,
            "entity_id": log.entity_id,
            "payload": log.payload,
            "ip_address": log.ip_address,
            "created_at": log.created_at.isoformat(),
        }
        for log, admin in rows
    ]
    return _page(items, total or 0, page, page_size)
