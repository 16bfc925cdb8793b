from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from growthcrm import audit, events
from growthcrm.authz.pages import get_page_permissions
from growthcrm.core.auth import hash_password, issue_session_token
from growthcrm.core.config import get_settings
from growthcrm.core.database import Base, get_db
from growthcrm.main import app
from growthcrm.tenancy.models import Tenant
from growthcrm.tenancy.resolver import tenant_cache
from growthcrm.users.models import Invitation, User, utcnow
from growthcrm.users.service import PENDING_EXISTS_MESSAGE, hash_invitation_token


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    get_page_permissions.cache_clear()
    tenant_cache.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    get_page_permissions.cache_clear()
    tenant_cache.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _seed_tenant(session: Session, subdomain: str, **limits: int) -> Tenant:
    tenant = Tenant(subdomain=subdomain, business_name=subdomain.title(), subscription_status="active", **limits)
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


def _seed_user(session: Session, tenant: Tenant, email: str, role: str) -> User:
    user = User(tenant_id=tenant.id, email=email, role=role, password_hash=hash_password("secret-pass"))
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _headers(user: User, subdomain: str) -> dict[str, str]:
    token = issue_session_token(user_id=str(user.id), tenant_id=str(user.tenant_id), session_version=user.session_version)
    return {"Authorization": f"Bearer {token}", "x-tenant-subdomain": subdomain}


@pytest.fixture()
def acme(db_session: Session) -> dict[str, Any]:
    tenant = _seed_tenant(db_session, "acme", max_users=5, max_advisors=2)
    owner = _seed_user(db_session, tenant, "owner@acme.test", "saas")
    return {"tenant": tenant, "owner": _headers(owner, "acme")}


def _invite(client: TestClient, headers: dict[str, str], email: str, role: str = "advisor") -> Any:
    return client.post("/api/invitations", json={"email": email, "role": role}, headers=headers)


def test_create_invitation_returns_token_once(client: TestClient, acme: dict[str, Any], db_session: Session) -> None:
    response = _invite(client, acme["owner"], "New.Person@Example.com")

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["email"] == "new.person@example.com"
    assert data["status"] == "pending"
    assert data["tenant_id"] == str(acme["tenant"].id)
    assert len(data["token"]) == 64
    stored = db_session.scalar(select(Invitation))
    assert stored.token_hash == hash_invitation_token(data["token"])
    assert stored.token_hash != data["token"]
    assert events.published_events[-1]["event_type"] == "invitation.created"

    listed = client.get("/api/invitations", headers=acme["owner"]).json()["data"]
    assert len(listed) == 1
    assert "token" not in listed[0]


def test_second_pending_invitation_conflicts(client: TestClient, acme: dict[str, Any]) -> None:
    _invite(client, acme["owner"], "dup@example.com")

    response = _invite(client, acme["owner"], "DUP@example.com", role="consultant")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "invitation_create_failed"
    assert response.json()["error"]["message"] == PENDING_EXISTS_MESSAGE


def test_existing_user_cannot_be_invited(client: TestClient, acme: dict[str, Any]) -> None:
    response = _invite(client, acme["owner"], "owner@acme.test")

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "User already exists"


@pytest.mark.parametrize("role", ["saas", "wizard"])
def test_owner_and_unknown_roles_are_not_invitable(client: TestClient, acme: dict[str, Any], role: str) -> None:
    response = _invite(client, acme["owner"], "someone@example.com", role=role)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invitation_create_failed"


def test_invitations_require_users_create(client: TestClient, acme: dict[str, Any], db_session: Session) -> None:
    consultant = _seed_user(db_session, acme["tenant"], "consultant@acme.test", "consultant")

    response = _invite(client, _headers(consultant, "acme"), "friend@example.com")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "insufficient_permission"


def test_owner_cannot_invite_above_their_own_permissions(
    client: TestClient, acme: dict[str, Any], db_session: Session
) -> None:
    response = _invite(client, acme["owner"], "root@example.com", role="admin")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "invitation_create_failed"
    assert response.json()["error"]["message"] == "Not authorized to grant these permissions"
    assert db_session.scalar(select(Invitation)) is None


def test_redeem_creates_user_once(client: TestClient, acme: dict[str, Any], db_session: Session) -> None:
    token = _invite(client, acme["owner"], "advisor@example.com").json()["data"]["token"]

    redeemed = client.post(
        "/api/invitations/redeem",
        json={"token": token, "password": "long-enough", "name": "Ada"},
    )
    again = client.post("/api/invitations/redeem", json={"token": token, "password": "long-enough"})

    assert redeemed.status_code == 201
    data = redeemed.json()["data"]
    assert data["user"]["email"] == "advisor@example.com"
    assert data["user"]["role"] == "advisor"
    assert data["user"]["tenant_id"] == str(acme["tenant"].id)
    assert data["redirect_to"] == "/advisor-dashboard.html"
    me = client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {data['token']}", "x-tenant-subdomain": "acme"},
    )
    assert me.json()["data"]["email"] == "advisor@example.com"

    assert again.status_code == 409
    assert again.json()["error"]["message"] == "Invitation is accepted"
    assert len(list(db_session.scalars(select(User).where(User.email == "advisor@example.com")))) == 1
    db_session.expire_all()
    assert db_session.scalar(select(Invitation)).status == "accepted"


def test_expired_invitation_is_gone(client: TestClient, acme: dict[str, Any], db_session: Session) -> None:
    token = _invite(client, acme["owner"], "late@example.com").json()["data"]["token"]
    invitation = db_session.scalar(select(Invitation))
    invitation.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    response = client.post("/api/invitations/redeem", json={"token": token, "password": "long-enough"})

    assert response.status_code == 410
    assert response.json()["error"]["message"] == "Invitation has expired"
    db_session.expire_all()
    assert db_session.scalar(select(Invitation)).status == "expired"
    assert db_session.scalar(select(User).where(User.email == "late@example.com")) is None


def test_expired_pending_invitation_does_not_block_a_new_one(
    client: TestClient, acme: dict[str, Any], db_session: Session
) -> None:
    _invite(client, acme["owner"], "retry@example.com")
    invitation = db_session.scalar(select(Invitation))
    invitation.expires_at = utcnow() - timedelta(days=1)
    db_session.commit()

    response = _invite(client, acme["owner"], "retry@example.com")

    assert response.status_code == 201
    statuses = sorted(row.status for row in db_session.scalars(select(Invitation)))
    assert statuses == ["expired", "pending"]


def test_unknown_token_is_not_found(client: TestClient) -> None:
    response = client.post("/api/invitations/redeem", json={"token": "f" * 64, "password": "long-enough"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "invitation_redeem_failed"


def test_revoked_invitation_cannot_be_redeemed(client: TestClient, acme: dict[str, Any]) -> None:
    created = _invite(client, acme["owner"], "revoked@example.com").json()["data"]

    revoked = client.post(f"/api/invitations/{created['id']}/revoke", headers=acme["owner"])
    twice = client.post(f"/api/invitations/{created['id']}/revoke", headers=acme["owner"])
    redeem = client.post("/api/invitations/redeem", json={"token": created["token"], "password": "long-enough"})

    assert revoked.status_code == 200
    assert revoked.json()["data"]["status"] == "revoked"
    assert twice.status_code == 409
    assert redeem.status_code == 409
    assert redeem.json()["error"]["message"] == "Invitation is revoked"


def test_user_limit_counts_pending_invitations(client: TestClient, db_session: Session) -> None:
    tenant = _seed_tenant(db_session, "tiny", max_users=2, max_advisors=2)
    owner = _headers(_seed_user(db_session, tenant, "owner@tiny.test", "saas"), "tiny")

    first = _invite(client, owner, "one@example.com", role="client")
    second = _invite(client, owner, "two@example.com", role="client")

    assert first.status_code == 201
    assert second.status_code == 403
    assert second.json()["error"]["message"] == "User limit reached for this account"


def test_advisor_limit_is_separate(client: TestClient, db_session: Session) -> None:
    tenant = _seed_tenant(db_session, "small", max_users=10, max_advisors=1)
    owner = _headers(_seed_user(db_session, tenant, "owner@small.test", "saas"), "small")

    advisor = _invite(client, owner, "adv1@example.com", role="advisor")
    second_advisor = _invite(client, owner, "adv2@example.com", role="advisor")
    consultant = _invite(client, owner, "consult@example.com", role="consultant")

    assert advisor.status_code == 201
    assert second_advisor.status_code == 403
    assert second_advisor.json()["error"]["message"] == "Advisor limit reached for this account"
    assert consultant.status_code == 201


def test_invitations_are_tenant_scoped(client: TestClient, acme: dict[str, Any], db_session: Session) -> None:
    created = _invite(client, acme["owner"], "scoped@example.com").json()["data"]
    globex = _seed_tenant(db_session, "globex")
    outsider = _headers(_seed_user(db_session, globex, "owner@globex.test", "saas"), "globex")

    listed = client.get("/api/invitations", headers=outsider)
    revoke = client.post(f"/api/invitations/{created['id']}/revoke", headers=outsider)

    assert listed.json()["data"] == []
    assert revoke.status_code == 404
