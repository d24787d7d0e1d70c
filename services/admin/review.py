"""
services/admin/review.py
Admin verification workflow: document review, partner verify/reject and
bulk actions. Functions mutate and audit inside the caller's session;
the caller commits and then fires notifications.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.dispatcher import NotificationDispatcher
from services.onboarding.workflow import recompute_status
from shared.models.models import (
    AdminAuditLog,
    DocumentStatus,
    OnboardingStatus,
    PartnerDocument,
    PartnerProfile,
    RecordState,
    utcnow,
)
from shared.utils.errors import NotFound, PreconditionFailed, ValidationFailed, WorkflowError

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("verify", "reject")


@dataclass
class BulkItemResult:
    partner_id: uuid.UUID
    status: str
    success: bool
    reason: Optional[str] = None


@dataclass
class BulkResult:
    action: str
    results: List[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)


# ── Helpers ───────────────────────────────────────────────────

def _require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValidationFailed("Rejection reason is required")
    return reason.strip()


def audit(
    db: AsyncSession,
    admin_id: uuid.UUID,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> None:
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=ip_address,
    ))


async def load_partner(db: AsyncSession, partner_id: uuid.UUID) -> PartnerProfile:
    profile = await db.scalar(
        select(PartnerProfile).where(
            PartnerProfile.id == partner_id,
            PartnerProfile.record_state == RecordState.ACTIVE,
        )
    )
    if profile is None:
        raise NotFound("Partner not found")
    return profile


def _pending_document(profile: PartnerProfile, document_id: uuid.UUID) -> PartnerDocument:
    document = profile.documents.get(document_id)
    if document is None or not document.is_active:
        raise NotFound("Document not found")
    if document.status != DocumentStatus.PENDING:
        raise PreconditionFailed(
            f"Document is already {document.status.value}, expected pending",
            expected_status=DocumentStatus.PENDING.value,
        )
    return document


def _require_pending_verification(profile: PartnerProfile) -> None:
    if profile.onboarding_status != OnboardingStatus.PENDING_VERIFICATION:
        raise PreconditionFailed(
            f"Partner is {profile.onboarding_status.value}, expected pending_verification",
            expected_status=OnboardingStatus.PENDING_VERIFICATION.value,
        )


# ── Documents ─────────────────────────────────────────────────

async def approve_document(
    db: AsyncSession,
    admin_id: uuid.UUID,
    partner_id: uuid.UUID,
    document_id: uuid.UUID,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Tuple[PartnerProfile, PartnerDocument, bool]:
    """Returns (profile, document, all active documents approved)."""
    profile = await load_partner(db, partner_id)
    document = _pending_document(profile, document_id)

    document.status = DocumentStatus.APPROVED
    document.reviewed_at = utcnow()
    document.reviewed_by_id = admin_id
    document.review_notes = notes
    recompute_status(profile)

    audit(db, admin_id, "APPROVE_DOCUMENT", "PartnerDocument", str(document_id),
          {"partner_id": str(partner_id), "notes": notes}, ip_address)
    logger.info(f"Document {document_id} of partner {partner_id} approved by {admin_id}")

    all_approved = all(d.status == DocumentStatus.APPROVED for d in profile.active_documents)
    return profile, document, all_approved


async def reject_document(
    db: AsyncSession,
    admin_id: uuid.UUID,
    partner_id: uuid.UUID,
    document_id: uuid.UUID,
    reason: Optional[str],
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Tuple[PartnerProfile, PartnerDocument]:
    reason = _require_reason(reason)
    profile = await load_partner(db, partner_id)
    document = _pending_document(profile, document_id)

    document.status = DocumentStatus.REJECTED
    document.rejection_reason = reason
    document.reviewed_at = utcnow()
    document.reviewed_by_id = admin_id
    document.review_notes = notes
    recompute_status(profile)

    audit(db, admin_id, "REJECT_DOCUMENT", "PartnerDocument", str(document_id),
          {"partner_id": str(partner_id), "reason": reason, "notes": notes}, ip_address)
    logger.info(f"Document {document_id} of partner {partner_id} rejected by {admin_id}")
    return profile, document


# ── Partners ──────────────────────────────────────────────────

async def verify_partner(
    db: AsyncSession,
    admin_id: uuid.UUID,
    partner_id: uuid.UUID,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> PartnerProfile:
    profile = await load_partner(db, partner_id)
    _require_pending_verification(profile)

    documents = profile.active_documents
    pending = sum(1 for d in documents if d.status == DocumentStatus.PENDING)
    rejected = sum(1 for d in documents if d.status == DocumentStatus.REJECTED)
    if not documents or pending or rejected:
        raise PreconditionFailed(
            f"Cannot verify partner: documents not approved "
            f"({len(documents)} submitted, {pending} pending, {rejected} rejected)",
            expected_status=DocumentStatus.APPROVED.value,
        )

    profile.onboarding_status = OnboardingStatus.VERIFIED
    profile.verified = True
    profile.verified_at = utcnow()
    profile.verified_by_id = admin_id
    profile.verification_notes = notes

    audit(db, admin_id, "VERIFY_PARTNER", "PartnerProfile", str(partner_id),
          {"notes": notes}, ip_address)
    logger.info(f"Partner {partner_id} verified by {admin_id}")
    return profile


async def reject_partner(
    db: AsyncSession,
    admin_id: uuid.UUID,
    partner_id: uuid.UUID,
    reason: Optional[str],
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> PartnerProfile:
    reason = _require_reason(reason)
    profile = await load_partner(db, partner_id)
    _require_pending_verification(profile)

    documents = profile.active_documents
    pending = [d for d in documents if d.status == DocumentStatus.PENDING]
    # A rejected partner must have a rejected document to replace
    if not pending and not any(d.status == DocumentStatus.REJECTED for d in documents):
        raise PreconditionFailed(
            "Cannot reject partner: all documents are approved, reject a document first",
            expected_status=DocumentStatus.PENDING.value,
        )

    now = utcnow()
    for document in pending:
        document.status = DocumentStatus.REJECTED
        document.rejection_reason = reason
        document.reviewed_at = now
        document.reviewed_by_id = admin_id

    profile.onboarding_status = OnboardingStatus.REJECTED
    profile.verified = False
    profile.rejected_at = now
    profile.rejected_by_id = admin_id
    profile.rejection_reason = reason
    profile.rejection_notes = notes

    audit(db, admin_id, "REJECT_PARTNER", "PartnerProfile", str(partner_id),
          {"reason": reason, "notes": notes}, ip_address)
    logger.info(f"Partner {partner_id} rejected by {admin_id}: {reason}")
    return profile


def notify_partner_decision(
    dispatcher: NotificationDispatcher,
    profile: PartnerProfile,
) -> None:
    """Post-commit side effects of verify/reject. Never raises on delivery."""
    if profile.onboarding_status == OnboardingStatus.VERIFIED:
        dispatcher.partner_verification_status_updated(
            profile, "verified", notes=profile.verification_notes
        )
    else:
        dispatcher.partner_verification_status_updated(
            profile, "rejected", reason=profile.rejection_reason, notes=profile.rejection_notes
        )


async def bulk_action(
    db: AsyncSession,
    admin_id: uuid.UUID,
    action: str,
    partner_ids: List[uuid.UUID],
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> BulkResult:
    """
    Apply verify/reject to each partner independently. Every item is
    committed on its own; a skipped or failed item never affects the rest.
    """
    if action not in BULK_ACTIONS:
        raise ValidationFailed(f"Invalid action. Valid: {list(BULK_ACTIONS)}")
    if action == "reject":
        reason = _require_reason(reason)

    outcome = "verified" if action == "verify" else "rejected"
    result = BulkResult(action=action)

    for partner_id in dict.fromkeys(partner_ids):
        try:
            if action == "verify":
                profile = await verify_partner(db, admin_id, partner_id, notes, ip_address)
            else:
                profile = await reject_partner(db, admin_id, partner_id, reason, notes, ip_address)
            await db.commit()
        except PreconditionFailed as e:
            await db.rollback()
            result.results.append(BulkItemResult(partner_id, "skipped", False, e.message))
            continue
        except WorkflowError as e:
            await db.rollback()
            result.results.append(BulkItemResult(partner_id, "error", False, e.message))
            continue
        except Exception as e:
            await db.rollback()
            logger.exception(f"Bulk {action} failed for partner {partner_id}")
            result.results.append(BulkItemResult(partner_id, "error", False, str(e)))
            continue

        result.results.append(BulkItemResult(partner_id, outcome, True))
        if dispatcher is not None:
            notify_partner_decision(dispatcher, profile)

    audit(db, admin_id, f"BULK_{action.upper()}", "PartnerProfile", None,
          {"partner_ids": [str(p) for p in partner_ids], "succeeded": result.succeeded,
           "reason": reason, "notes": notes}, ip_address)
    await db.commit()
    return result
