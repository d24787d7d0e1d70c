"""
tests/test_admin.py
Tests for admin-only endpoints: verification queue, document review,
partner decisions, dashboard counters and the audit log.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.dispatcher import NotificationDispatcher
from shared.models.models import (
    AdminAuditLog,
    DocumentStatus,
    OnboardingStatus,
    PartnerDocument,
    PartnerProfile,
    User,
)
from tests.conftest import RecordingEmailSender, auth_headers, fetch, make_partner


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.get("/admin/partners/pending")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_partner_cannot_access_admin_endpoints(client: AsyncClient, partner_user: User):
    """Partners get 403 on admin endpoints."""
    response = await client.get("/admin/dashboard/stats", headers=auth_headers(partner_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_without_permission_is_forbidden(
    client: AsyncClient, moderator_user: User, db: AsyncSession, verifier
):
    """An admin lacking manage_partners cannot make decisions."""
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    response = await client.patch(
        f"/admin/partners/{profile.id}/verify", json={}, headers=auth_headers(moderator_user)
    )
    assert response.status_code == 403
    assert "manage_partners" in response.json()["detail"]

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.PENDING_VERIFICATION


# ── Verification Queue ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pending_queue_empty(client: AsyncClient, admin_user: User):
    response = await client.get("/admin/partners/pending", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["items"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_pending_queue_lists_only_pending_partners(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    pending = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    await make_partner(db, verifier)

    response = await client.get("/admin/partners/pending", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    item = data["items"][0]
    assert item["id"] == str(pending.id)
    assert item["onboarding_progress"] == 100
    assert item["pending_documents"] == 1
    assert len(item["documents"]) == 1


@pytest.mark.asyncio
async def test_list_partners_filters_by_status(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    verified = await make_partner(
        db, verifier, status=OnboardingStatus.VERIFIED,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    await make_partner(db, verifier)

    response = await client.get(
        "/admin/partners", params={"status": "verified"}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["items"]] == [str(verified.id)]

    response = await client.get(
        "/admin/partners", params={"status": "bogus"}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_partner_detail(
    client: AsyncClient, admin_user: User, partner: PartnerProfile
):
    response = await client.get(f"/admin/partners/{partner.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["partner"]["id"] == str(partner.id)
    assert data["onboarding_progress"] == 0

    response = await client.get(f"/admin/partners/{uuid.uuid4()}", headers=auth_headers(admin_user))
    assert response.status_code == 404


# ── Document Review ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approve_document(
    client: AsyncClient,
    admin_user: User,
    db: AsyncSession,
    verifier,
    email_sender: RecordingEmailSender,
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    document = next(iter(profile.documents.values()))

    response = await client.patch(
        f"/admin/partners/{profile.id}/documents/{document.id}/approve",
        json={"notes": "Looks good"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["document"]["status"] == "approved"
    assert data["all_documents_approved"] is True

    document = await fetch(db, PartnerDocument, document.id)
    assert document.status == DocumentStatus.APPROVED
    assert document.reviewed_by_id == admin_user.id
    assert email_sender.templates() == ["document_status"]


@pytest.mark.asyncio
async def test_approve_non_pending_document_conflicts(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    """Reviewing an already reviewed document fails and changes nothing."""
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.REJECTED,
        documents=[DocumentStatus.REJECTED], complete=True,
    )
    document = next(iter(profile.documents.values()))

    response = await client.patch(
        f"/admin/partners/{profile.id}/documents/{document.id}/approve",
        json={},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 409
    assert response.json()["expected_status"] == "pending"

    document = await fetch(db, PartnerDocument, document.id)
    assert document.status == DocumentStatus.REJECTED
    assert document.reviewed_by_id is None


@pytest.mark.asyncio
async def test_reject_document_marks_partner_rejected(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED, DocumentStatus.PENDING], complete=True,
    )
    document = next(d for d in profile.documents.values() if d.status == DocumentStatus.PENDING)

    response = await client.patch(
        f"/admin/partners/{profile.id}/documents/{document.id}/reject",
        json={"reason": "Scan is unreadable"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert response.json()["document"]["rejection_reason"] == "Scan is unreadable"

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.REJECTED


@pytest.mark.asyncio
async def test_reject_document_requires_reason(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    document = next(iter(profile.documents.values()))

    response = await client.patch(
        f"/admin/partners/{profile.id}/documents/{document.id}/reject",
        json={"reason": "   "},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 422

    document = await fetch(db, PartnerDocument, document.id)
    assert document.status == DocumentStatus.PENDING


# ── Partner Decisions ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_verify_partner(
    client: AsyncClient,
    admin_user: User,
    db: AsyncSession,
    verifier,
    email_sender: RecordingEmailSender,
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED, DocumentStatus.APPROVED], complete=True,
    )

    response = await client.patch(
        f"/admin/partners/{profile.id}/verify",
        json={"notes": "Welcome aboard"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert response.json()["partner"]["onboarding_status"] == "verified"

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.verified is True
    assert profile.verified_by_id == admin_user.id
    assert profile.verification_notes == "Welcome aboard"
    assert "partner_verified" in email_sender.templates()


@pytest.mark.asyncio
async def test_verify_twice_conflicts(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    url = f"/admin/partners/{profile.id}/verify"

    first = await client.patch(url, json={}, headers=auth_headers(admin_user))
    second = await client.patch(url, json={}, headers=auth_headers(admin_user))

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["expected_status"] == "pending_verification"


@pytest.mark.asyncio
async def test_verify_with_pending_documents_conflicts(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED, DocumentStatus.PENDING], complete=True,
    )
    response = await client.patch(
        f"/admin/partners/{profile.id}/verify", json={}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 409
    assert "documents not approved" in response.json()["detail"]

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.PENDING_VERIFICATION
    assert profile.verified is False


@pytest.mark.asyncio
async def test_verify_incomplete_partner_conflicts(
    client: AsyncClient, admin_user: User, partner: PartnerProfile
):
    response = await client.patch(
        f"/admin/partners/{partner.id}/verify", json={}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_reject_partner(
    client: AsyncClient,
    admin_user: User,
    db: AsyncSession,
    verifier,
    email_sender: RecordingEmailSender,
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    response = await client.patch(
        f"/admin/partners/{profile.id}/reject",
        json={"reason": "Portfolio does not match the company", "notes": "Resubmit with originals"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.REJECTED
    assert profile.rejection_reason == "Portfolio does not match the company"
    assert profile.rejected_by_id == admin_user.id
    assert all(d.status == DocumentStatus.REJECTED for d in profile.documents.values())
    assert email_sender.templates() == ["partner_rejected"]


@pytest.mark.asyncio
async def test_reject_partner_with_only_approved_documents_conflicts(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    """Approved documents are final; reject one of them first."""
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    response = await client.patch(
        f"/admin/partners/{profile.id}/reject",
        json={"reason": "Company name does not match documents"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "precondition_failed"

    profile = await fetch(db, PartnerProfile, profile.id)
    document = next(iter(profile.documents.values()))
    assert profile.onboarding_status == OnboardingStatus.PENDING_VERIFICATION
    assert document.status == DocumentStatus.APPROVED
    assert document.rejection_reason is None


@pytest.mark.asyncio
async def test_reject_partner_leaves_approved_documents_alone(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED, DocumentStatus.PENDING], complete=True,
    )
    statuses_before = {d.id: d.status for d in profile.documents.values()}

    response = await client.patch(
        f"/admin/partners/{profile.id}/reject",
        json={"reason": "Licence is unreadable"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200

    profile = await fetch(db, PartnerProfile, profile.id)
    for document in profile.documents.values():
        if statuses_before[document.id] == DocumentStatus.APPROVED:
            assert document.status == DocumentStatus.APPROVED
            assert document.rejection_reason is None
        else:
            assert document.status == DocumentStatus.REJECTED
            assert document.rejection_reason == "Licence is unreadable"


@pytest.mark.asyncio
async def test_reject_partner_without_reason_changes_nothing(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    response = await client.patch(
        f"/admin/partners/{profile.id}/reject", json={}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["errors"][0]["loc"] == ["body", "reason"]

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.PENDING_VERIFICATION
    assert profile.rejected_at is None


@pytest.mark.asyncio
async def test_verify_survives_cache_outage(
    redis_down: AsyncClient,
    admin_user: User,
    db: AsyncSession,
    verifier,
    email_sender: RecordingEmailSender,
    dispatcher: NotificationDispatcher,
):
    """The decision is committed, so the partner still hears about it."""
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    received = []
    dispatcher.subscribe(str(profile.user_id), received.append)

    response = await redis_down.patch(
        f"/admin/partners/{profile.id}/verify", json={}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 200

    profile = await fetch(db, PartnerProfile, profile.id)
    assert profile.onboarding_status == OnboardingStatus.VERIFIED
    assert email_sender.templates() == ["partner_verified"]
    assert received[0].type == "partner_verification_status"
    assert received[0].data["status"] == "verified"


@pytest.mark.asyncio
async def test_document_review_survives_cache_outage(
    redis_down: AsyncClient,
    admin_user: User,
    db: AsyncSession,
    verifier,
    email_sender: RecordingEmailSender,
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING], complete=True,
    )
    document = next(iter(profile.documents.values()))

    response = await redis_down.patch(
        f"/admin/partners/{profile.id}/documents/{document.id}/reject",
        json={"reason": "Blurry scan"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert email_sender.templates() == ["document_status"]


@pytest.mark.asyncio
async def test_dashboard_stats_without_cache(
    redis_down: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    await make_partner(db, verifier)

    response = await redis_down.get("/admin/dashboard/stats", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json()["total_partners"] == 1


# ── History ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_partner_history(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    await client.patch(f"/admin/partners/{profile.id}/verify", json={}, headers=auth_headers(admin_user))

    response = await client.get(
        f"/admin/partners/{profile.id}/history", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    events = [entry["event"] for entry in response.json()["history"]]
    assert events[0] == "partner_verified"
    assert "submitted_for_verification" in events
    assert "document_uploaded" in events


# ── Dashboard & Audit Log ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dashboard_stats(
    client: AsyncClient, admin_user: User, client_user: User, db: AsyncSession, verifier
):
    await make_partner(db, verifier)
    await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.PENDING, DocumentStatus.PENDING], complete=True,
    )

    response = await client.get("/admin/dashboard/stats", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total_clients"] == 1
    assert data["total_partners"] == 2
    assert data["pending_verification"] == 1
    assert data["incomplete_partners"] == 1
    assert data["pending_documents"] == 2


@pytest.mark.asyncio
async def test_decisions_are_audited(
    client: AsyncClient, admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(
        db, verifier, status=OnboardingStatus.PENDING_VERIFICATION,
        documents=[DocumentStatus.APPROVED], complete=True,
    )
    await client.patch(
        f"/admin/partners/{profile.id}/verify", json={"notes": "ok"}, headers=auth_headers(admin_user)
    )

    logs = (await db.execute(select(AdminAuditLog))).scalars().all()
    assert [(log.action, log.entity_id) for log in logs] == [("VERIFY_PARTNER", str(profile.id))]

    response = await client.get(
        "/admin/audit-logs", params={"action": "verify_partner"}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["admin_username"] == admin_user.username
