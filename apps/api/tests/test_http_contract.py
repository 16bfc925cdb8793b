from __future__ import annotations

import uuid
from collections.abc import Generator

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


def _headers(session: Session, role: str) -> dict[str, str]:
    tenant = session.scalar(select(Tenant).where(Tenant.subdomain == "acme"))
    if tenant is None:
        tenant = Tenant(subdomain="acme", business_name="Acme", subscription_status="active")
        session.add(tenant)
        session.commit()
    user = User(
        tenant_id=tenant.id,
        email=f"{role}-{uuid.uuid4().hex[:8]}@acme.test",
        role=role,
        password_hash=hash_password("secret-pass"),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    token = issue_session_token(user_id=str(user.id), tenant_id=str(tenant.id), session_version=user.session_version)
    return {"Authorization": f"Bearer {token}", "x-tenant-subdomain": "acme"}


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_cors_preflight_allows_browser_calls(client: TestClient) -> None:
    response = client.options(
        "/api/podcast-interviews",
        headers={
            "Origin": "https://acme.growthmanagerpro.com",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "authorization,content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in {"*", "https://acme.growthmanagerpro.com"}
    assert "PUT" in response.headers["access-control-allow-methods"]


def test_cors_headers_on_simple_requests(client: TestClient) -> None:
    response = client.get("/health", headers={"Origin": "https://acme.growthmanagerpro.com"})

    assert "access-control-allow-origin" in response.headers
    assert "x-correlation-id" in response.headers["access-control-expose-headers"].lower()


def test_unsupported_method_uses_error_envelope(client: TestClient) -> None:
    response = client.delete("/health")

    assert response.status_code == 405
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "method_not_allowed"


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_correlation_id_is_echoed_and_reported(client: TestClient) -> None:
    response = client.get("/api/auth/me", headers={"x-correlation-id": "corr-123", "x-tenant-subdomain": "www"})

    assert response.status_code == 401
    assert response.headers["x-correlation-id"] == "corr-123"
    assert response.headers["x-request-id"] == "corr-123"
    assert response.json()["correlation_id"] == "corr-123"
    assert response.json()["redirect_to"] == "/login.html"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"x-correlation-id": "not valid!"})

    generated = response.headers["x-correlation-id"]
    assert generated != "not valid!"
    assert uuid.UUID(generated)


def test_upstream_request_id_is_adopted(client: TestClient) -> None:
    response = client.get("/health", headers={"x-request-id": "lb-42"})

    assert response.headers["x-correlation-id"] == "lb-42"


def test_audit_entries_carry_the_request_correlation_id(client: TestClient, db_session: Session) -> None:
    headers = {**_headers(db_session, "advisor"), "x-correlation-id": "corr-audit"}

    client.post("/api/podcast-interviews", json={"guest_name": "Jo", "guest_email": "jo@guest.test"}, headers=headers)

    assert audit.audit_entries[-1]["correlation_id"] == "corr-audit"
    assert events.published_events[-1]["correlation_id"] == "corr-audit"


def test_metrics_are_hidden_when_disabled(client: TestClient, db_session: Session) -> None:
    response = client.get("/metrics", headers=_headers(db_session, "admin"))

    assert response.status_code == 404


def test_metrics_require_permission(
    client: TestClient, db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()

    denied = client.get("/metrics", headers=_headers(db_session, "advisor"))
    allowed = client.get("/metrics", headers=_headers(db_session, "admin"))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert "authz_decisions_total" in allowed.text
    assert "http_requests_total" in allowed.text


def test_audit_trail_never_stores_secrets() -> None:
    entry = audit.record(
        actor_user_id="user-1",
        entity_type="identity.user",
        entity_id="user-2",
        action="update",
        before={"email": "a@acme.test", "password_hash": "$2b$abc"},
        after={"email": "a@acme.test", "token_hash": "deadbeef"},
        correlation_id="corr-secret",
    )

    assert entry["before"] == {"email": "a@acme.test", "password_hash": audit.REDACTED}
    assert entry["after"]["token_hash"] == audit.REDACTED
    assert entry["cascade_depth"] == 0
    assert audit.audit_entries[-1] is entry


def test_events_require_a_type_and_get_an_id(client: TestClient, db_session: Session) -> None:
    with pytest.raises(ValueError):
        events.publish({"tenant_id": "t-1"})

    client.post(
        "/api/podcast-interviews",
        json={"guest_name": "Jo", "guest_email": "jo@guest.test"},
        headers=_headers(db_session, "advisor"),
    )
    published = events.published_events[-1]
    assert uuid.UUID(published["event_id"])
    assert isinstance(published["tenant_id"], str)
    assert published["occurred_at"]
