"""
tests/test_admin_setup.py
Tests for admin provisioning: the one-time super admin bootstrap and
super-admin management of admin accounts.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import AdminAuditLog, AdminProfile, AdminRole, User, UserRole
from shared.utils.security import Identity
from tests.conftest import auth_headers, fetch, make_admin, make_partner

SETUP_KEY = "first-boot-key"


@pytest.fixture
def setup_key(monkeypatch):
    monkeypatch.setattr(settings, "SUPER_ADMIN_SETUP_KEY", SETUP_KEY)
    monkeypatch.setattr(settings, "ALLOWED_ADMIN_EMAILS", "")
    return SETUP_KEY


@pytest_asyncio.fixture
async def super_admin_user(db, verifier) -> User:
    return await make_admin(db, verifier, admin_role=AdminRole.SUPER_ADMIN)


def _identity(verifier, uid: str, email: str, verified: bool = True) -> dict:
    token = f"setup-{uid}"
    verifier.register(token, Identity(uid=uid, email=email, email_verified=verified))
    return {"Authorization": f"Bearer {token}"}


# ── Bootstrap ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_setup_status_open_until_super_admin_exists(client: AsyncClient, db, verifier):
    response = await client.get("/admin/setup/status")
    assert response.json() == {"setup_required": True, "has_super_admin": False}

    await make_admin(db, verifier, admin_role=AdminRole.SUPER_ADMIN)

    response = await client.get("/admin/setup/status")
    assert response.json() == {"setup_required": False, "has_super_admin": True}


@pytest.mark.asyncio
async def test_bootstrap_creates_super_admin(
    client: AsyncClient, db: AsyncSession, verifier, setup_key
):
    headers = _identity(verifier, "uid-root", "root.admin@example.com")

    response = await client.post(
        "/admin/setup/super-admin", json={"setup_key": setup_key}, headers=headers
    )
    assert response.status_code == 201
    data = response.json()
    assert data["user"]["role"] == "admin"
    assert data["user"]["username"] == "root_admin"
    assert data["admin"]["admin_role"] == "super_admin"
    assert all(data["admin"]["permissions"].values())

    # The new account can work the verification queue straight away
    response = await client.get("/admin/partners/pending", headers=headers)
    assert response.status_code == 200

    actions = (await db.execute(select(AdminAuditLog.action))).scalars().all()
    assert actions == ["CREATE_SUPER_ADMIN"]


@pytest.mark.asyncio
async def test_bootstrap_only_once(client: AsyncClient, verifier, setup_key):
    first = _identity(verifier, "uid-first", "first@example.com")
    second = _identity(verifier, "uid-second", "second@example.com")

    response = await client.post("/admin/setup/super-admin", json={"setup_key": setup_key}, headers=first)
    assert response.status_code == 201

    response = await client.post("/admin/setup/super-admin", json={"setup_key": setup_key}, headers=second)
    assert response.status_code == 409
    assert response.json()["code"] == "precondition_failed"


@pytest.mark.asyncio
async def test_bootstrap_disabled_without_configured_key(client: AsyncClient, verifier, monkeypatch):
    monkeypatch.setattr(settings, "SUPER_ADMIN_SETUP_KEY", "")
    headers = _identity(verifier, "uid-root", "root@example.com")

    response = await client.post("/admin/setup/super-admin", json={"setup_key": "anything"}, headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bootstrap_wrong_key(client: AsyncClient, db: AsyncSession, verifier, setup_key):
    headers = _identity(verifier, "uid-root", "root@example.com")

    response = await client.post("/admin/setup/super-admin", json={"setup_key": "guess"}, headers=headers)
    assert response.status_code == 401
    assert await db.scalar(select(User).where(User.firebase_uid == "uid-root")) is None


@pytest.mark.asyncio
async def test_bootstrap_respects_email_allow_list(
    client: AsyncClient, verifier, setup_key, monkeypatch
):
    monkeypatch.setattr(settings, "ALLOWED_ADMIN_EMAILS", "ops@example.com, cto@example.com")
    outsider = _identity(verifier, "uid-outsider", "outsider@example.com")
    insider = _identity(verifier, "uid-cto", "CTO@example.com")

    response = await client.post("/admin/setup/super-admin", json={"setup_key": setup_key}, headers=outsider)
    assert response.status_code == 403

    response = await client.post("/admin/setup/super-admin", json={"setup_key": setup_key}, headers=insider)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_bootstrap_requires_verified_email(client: AsyncClient, verifier, setup_key):
    headers = _identity(verifier, "uid-root", "root@example.com", verified=False)

    response = await client.post("/admin/setup/super-admin", json={"setup_key": setup_key}, headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bootstrap_promotes_existing_client(
    client: AsyncClient, client_user: User, db: AsyncSession, setup_key
):
    response = await client.post(
        "/admin/setup/super-admin", json={"setup_key": setup_key}, headers=auth_headers(client_user)
    )
    assert response.status_code == 201
    assert response.json()["user"]["id"] == str(client_user.id)

    user = await fetch(db, User, client_user.id)
    assert user.role == UserRole.ADMIN
    assert user.admin_profile.admin_role == AdminRole.SUPER_ADMIN


# ── Admin management ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_super_admin_grants_admin_access(
    client: AsyncClient, super_admin_user: User, client_user: User, db: AsyncSession
):
    response = await client.post(
        "/admin/setup/admins",
        json={"user_id": str(client_user.id), "admin_role": "moderator"},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 201
    admin = response.json()["admin"]
    assert admin["admin_role"] == "moderator"
    assert admin["permissions"]["manage_partners"] is True
    assert admin["permissions"]["manage_content"] is True

    response = await client.get("/admin/partners/pending", headers=auth_headers(client_user))
    assert response.status_code == 200

    logs = (await db.execute(select(AdminAuditLog))).scalars().all()
    assert [(log.action, log.admin_id) for log in logs] == [("CREATE_ADMIN", super_admin_user.id)]


@pytest.mark.asyncio
async def test_create_admin_overrides_permissions(
    client: AsyncClient, super_admin_user: User, client_user: User
):
    response = await client.post(
        "/admin/setup/admins",
        json={"user_id": str(client_user.id), "permissions": {"manage_partners": False}},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 201

    response = await client.get("/admin/partners/pending", headers=auth_headers(client_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_admin_rejects_unknown_permission(
    client: AsyncClient, super_admin_user: User, client_user: User
):
    response = await client.post(
        "/admin/setup/admins",
        json={"user_id": str(client_user.id), "permissions": {"launch_rockets": True}},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_partner_cannot_be_made_admin(
    client: AsyncClient, super_admin_user: User, db: AsyncSession, verifier
):
    profile = await make_partner(db, verifier)
    response = await client.post(
        "/admin/setup/admins",
        json={"user_id": str(profile.user_id)},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_regular_admin_cannot_manage_admins(
    client: AsyncClient, admin_user: User, client_user: User
):
    response = await client.post(
        "/admin/setup/admins",
        json={"user_id": str(client_user.id)},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 403

    response = await client.get("/admin/setup/admins", headers=auth_headers(admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_admins(client: AsyncClient, super_admin_user: User, admin_user: User):
    response = await client.get("/admin/setup/admins", headers=auth_headers(super_admin_user))
    assert response.status_code == 200
    emails = sorted(entry["user"]["email"] for entry in response.json()["admins"])
    assert emails == sorted([super_admin_user.email, admin_user.email])


@pytest.mark.asyncio
async def test_update_admin_permissions(
    client: AsyncClient, super_admin_user: User, admin_user: User, db: AsyncSession
):
    admin_id = admin_user.admin_profile.id
    response = await client.patch(
        f"/admin/setup/admins/{admin_id}/permissions",
        json={"permissions": {"manage_partners": False}},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 200

    profile = await fetch(db, AdminProfile, admin_id)
    assert profile.permissions["manage_partners"] is False
    assert profile.permissions["view_analytics"] is True

    response = await client.get("/admin/partners/pending", headers=auth_headers(admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_requires_a_change(client: AsyncClient, super_admin_user: User, admin_user: User):
    response = await client.patch(
        f"/admin/setup/admins/{admin_user.admin_profile.id}/permissions",
        json={},
        headers=auth_headers(super_admin_user),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_super_admin_is_not_modifiable(client: AsyncClient, super_admin_user: User):
    admin_id = super_admin_user.admin_profile.id
    headers = auth_headers(super_admin_user)

    response = await client.patch(
        f"/admin/setup/admins/{admin_id}/permissions",
        json={"admin_role": "moderator"},
        headers=headers,
    )
    assert response.status_code == 403

    response = await client.patch(f"/admin/setup/admins/{admin_id}/deactivate", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_deactivate_and_regrant_admin(
    client: AsyncClient, super_admin_user: User, admin_user: User, db: AsyncSession
):
    admin_id = admin_user.admin_profile.id
    headers = auth_headers(super_admin_user)

    response = await client.patch(f"/admin/setup/admins/{admin_id}/deactivate", headers=headers)
    assert response.status_code == 200
    assert response.json()["admin"]["is_active"] is False

    user = await fetch(db, User, admin_user.id)
    assert user.role == UserRole.CLIENT
    assert user.client_profile is not None

    response = await client.get("/admin/partners/pending", headers=auth_headers(admin_user))
    assert response.status_code == 403
    response = await client.get("/auth/me", headers=auth_headers(admin_user))
    assert response.status_code == 200

    response = await client.patch(f"/admin/setup/admins/{admin_id}/deactivate", headers=headers)
    assert response.status_code == 409

    # Granting again reuses the existing admin profile
    response = await client.post(
        "/admin/setup/admins", json={"user_id": str(admin_user.id)}, headers=headers
    )
    assert response.status_code == 201
    assert response.json()["admin"]["id"] == str(admin_id)
    assert response.json()["admin"]["is_active"] is True
