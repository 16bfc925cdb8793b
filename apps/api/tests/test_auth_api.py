from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
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
from growthcrm.users.models import User


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


def _seed_tenant(session: Session, subdomain: str, status: str = "active") -> Tenant:
    tenant = Tenant(subdomain=subdomain, business_name=subdomain.title(), subscription_status="active", status=status)
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


def _seed_user(session: Session, tenant: Tenant | None, email: str, role: str, status: str = "active") -> User:
    user = User(
        tenant_id=tenant.id if tenant else None,
        email=email,
        name=email.split("@")[0],
        role=role,
        status=status,
        password_hash=hash_password("secret-pass"),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _bearer(user: User) -> str:
    token = issue_session_token(
        user_id=str(user.id),
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        session_version=user.session_version,
    )
    return f"Bearer {token}"


@pytest.fixture()
def acme(db_session: Session) -> Tenant:
    return _seed_tenant(db_session, "acme")


def test_login_sets_session_cookie_and_returns_landing_page(
    client: TestClient, db_session: Session, acme: Tenant
) -> None:
    _seed_user(db_session, acme, "advisor@acme.test", "advisor")

    response = client.post(
        "/api/auth/login",
        json={"email": "ADVISOR@acme.test", "password": "secret-pass"},
        headers={"x-tenant-subdomain": "acme"},
    )

    assert response.status_code == 200
    body = response.json()["data"]
    assert body["user"]["role"] == "advisor"
    assert body["user"]["tenant_id"] == str(acme.id)
    assert body["redirect_to"] == "/advisor-dashboard.html"
    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("session=")
    assert "httponly" in cookie

    me = client.get("/api/auth/me", headers={"x-tenant-subdomain": "acme"})
    assert me.status_code == 200
    assert me.json()["data"]["role"] == "advisor"


def test_login_rejects_bad_password_and_inactive_users(
    client: TestClient, db_session: Session, acme: Tenant
) -> None:
    _seed_user(db_session, acme, "advisor@acme.test", "advisor")
    _seed_user(db_session, acme, "gone@acme.test", "advisor", status="inactive")

    wrong = client.post("/api/auth/login", json={"email": "advisor@acme.test", "password": "nope"})
    inactive = client.post("/api/auth/login", json={"email": "gone@acme.test", "password": "secret-pass"})

    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "auth_login_failed"
    assert inactive.status_code == 401
    assert inactive.json()["error"]["message"] == wrong.json()["error"]["message"]


def test_login_on_another_tenant_host_fails(client: TestClient, db_session: Session, acme: Tenant) -> None:
    _seed_tenant(db_session, "globex")
    _seed_user(db_session, acme, "advisor@acme.test", "advisor")

    response = client.post(
        "/api/auth/login",
        json={"email": "advisor@acme.test", "password": "secret-pass"},
        headers={"x-tenant-subdomain": "globex"},
    )

    assert response.status_code == 401


def test_me_lists_pages_for_role(client: TestClient, db_session: Session, acme: Tenant) -> None:
    member = _seed_user(db_session, acme, "client@acme.test", "client")

    response = client.get("/api/auth/me", headers={"Authorization": _bearer(member), "x-tenant-subdomain": "acme"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["landing_page"] == "/client-portal.html"
    assert "client-portal.html" in data["pages"]
    assert "user-management.html" not in data["pages"]
    assert "billing.html" not in data["pages"]
    assert "users.view" not in data["permissions"]


def test_logout_revokes_outstanding_tokens(client: TestClient, db_session: Session, acme: Tenant) -> None:
    member = _seed_user(db_session, acme, "advisor@acme.test", "advisor")
    headers = {"Authorization": _bearer(member), "x-tenant-subdomain": "acme"}

    logout = client.post("/api/auth/logout", headers=headers)
    after = client.get("/api/auth/me", headers=headers)

    assert logout.status_code == 200
    assert after.status_code == 401
    assert after.json()["error"]["code"] == "unauthenticated"
    assert after.json()["redirect_to"] == "/login.html?tenant=acme"


def test_missing_credentials_redirect_to_login(client: TestClient, acme: Tenant) -> None:
    response = client.get("/api/auth/me", headers={"x-tenant-subdomain": "acme"})

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["redirect_to"] == "/login.html?tenant=acme"


def test_cross_tenant_session_is_cleared(client: TestClient, db_session: Session, acme: Tenant) -> None:
    _seed_tenant(db_session, "globex")
    admin = _seed_user(db_session, acme, "admin@acme.test", "admin")

    response = client.get("/api/users", headers={"Authorization": _bearer(admin), "x-tenant-subdomain": "globex"})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "tenant_mismatch"
    assert response.json()["redirect_to"] == "/login.html?tenant=globex"
    assert "globex" not in response.json()["error"]["message"]
    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("session=")
    assert "max-age=0" in cookie


def test_untenanted_admin_reaches_any_tenant(client: TestClient, db_session: Session, acme: Tenant) -> None:
    operator = _seed_user(db_session, None, "ops@growthmanagerpro.test", "admin")

    response = client.get("/api/auth/me", headers={"Authorization": _bearer(operator), "x-tenant-subdomain": "acme"})

    assert response.status_code == 200
    assert response.json()["data"]["permissions"] == "all"


def test_unknown_and_inactive_tenants(client: TestClient, db_session: Session) -> None:
    _seed_tenant(db_session, "sleepy", status="inactive")

    unknown = client.get("/api/auth/me", headers={"x-tenant-subdomain": "ghost"})
    inactive = client.get("/api/auth/me", headers={"x-tenant-subdomain": "sleepy"})

    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "tenant_not_found"
    assert unknown.json()["redirect_to"] == "/signup-saas.html"
    assert inactive.status_code == 403
    assert inactive.json()["error"]["code"] == "tenant_inactive"
    assert inactive.json()["redirect_to"] == "/tenant-inactive.html"


def test_page_check_reports_redirects(client: TestClient, db_session: Session, acme: Tenant) -> None:
    member = _seed_user(db_session, acme, "client@acme.test", "client")
    headers = {"Authorization": _bearer(member), "x-tenant-subdomain": "acme"}

    denied = client.get("/api/authz/pages/user-management.html", headers=headers).json()["data"]
    allowed = client.get("/api/authz/pages/client-portal.html", headers=headers).json()["data"]
    anonymous = client.get("/api/authz/pages/dashboard.html", headers={"x-tenant-subdomain": "acme"}).json()["data"]

    assert denied == {
        "page": "user-management.html",
        "allowed": False,
        "reason": "insufficient_permission",
        "redirect_to": "/client-portal.html",
    }
    assert allowed["allowed"] is True
    assert allowed["redirect_to"] is None
    assert anonymous["reason"] == "unauthenticated"
    assert anonymous["redirect_to"] == "/login.html?tenant=acme"
