from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from growthcrm import audit, events
from growthcrm.authz.pages import get_page_permissions
from growthcrm.authz.registry import permissions_for
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


class Team:
    def __init__(self, session: Session, subdomain: str) -> None:
        self.session = session
        self.subdomain = subdomain
        self.tenant = Tenant(subdomain=subdomain, business_name=subdomain.title(), subscription_status="active")
        session.add(self.tenant)
        session.commit()
        session.refresh(self.tenant)
        self.users: dict[str, User] = {}

    def add(self, key: str, role: str, advisor: str | None = None) -> User:
        user = User(
            tenant_id=self.tenant.id,
            email=f"{key}@{self.subdomain}.test",
            name=key.title(),
            role=role,
            advisor_id=self.users[advisor].id if advisor else None,
            password_hash=hash_password("secret-pass"),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.users[key] = user
        return user

    def headers(self, key: str) -> dict[str, str]:
        user = self.users[key]
        token = issue_session_token(
            user_id=str(user.id),
            tenant_id=str(user.tenant_id),
            session_version=user.session_version,
        )
        return {"Authorization": f"Bearer {token}", "x-tenant-subdomain": self.subdomain}

    def id(self, key: str) -> str:
        return str(self.users[key].id)


@pytest.fixture()
def acme(db_session: Session) -> Team:
    team = Team(db_session, "acme")
    team.add("owner", "saas")
    team.add("ada", "advisor")
    team.add("bob", "advisor")
    team.add("carol", "client", advisor="ada")
    team.add("dan", "client")
    team.add("erin", "consultant")
    return team


def test_list_users_is_tenant_scoped_and_filterable(client: TestClient, acme: Team, db_session: Session) -> None:
    other = Team(db_session, "globex")
    other.add("zed", "advisor")

    everyone = client.get("/api/users", headers=acme.headers("owner")).json()["data"]
    clients = client.get("/api/users", params={"role": "client"}, headers=acme.headers("owner")).json()["data"]
    foreign = client.get(f"/api/users/{other.id('zed')}", headers=acme.headers("owner"))

    assert {user["email"] for user in everyone} == {f"{key}@acme.test" for key in acme.users}
    assert {user["email"] for user in clients} == {"carol@acme.test", "dan@acme.test"}
    assert foreign.status_code == 404
    assert foreign.json()["error"]["code"] == "user_get_failed"


def test_role_change_revokes_sessions(client: TestClient, acme: Team) -> None:
    erin_headers = acme.headers("erin")
    assert client.get("/api/auth/me", headers=erin_headers).status_code == 200

    response = client.patch(f"/api/users/{acme.id('erin')}", json={"role": "advisor"}, headers=acme.headers("owner"))

    assert response.status_code == 200
    assert response.json()["data"]["role"] == "advisor"
    assert client.get("/api/auth/me", headers=erin_headers).status_code == 401
    assert client.get("/api/auth/me", headers=acme.headers("erin")).json()["data"]["role"] == "advisor"


def test_deactivated_user_is_locked_out(client: TestClient, acme: Team) -> None:
    dan_headers = acme.headers("dan")

    client.patch(f"/api/users/{acme.id('dan')}", json={"status": "inactive"}, headers=acme.headers("owner"))

    assert client.get("/api/auth/me", headers=dan_headers).status_code == 401


def test_advisor_with_clients_cannot_lose_the_role(client: TestClient, acme: Team) -> None:
    blocked = client.patch(f"/api/users/{acme.id('ada')}", json={"role": "consultant"}, headers=acme.headers("owner"))
    allowed = client.patch(f"/api/users/{acme.id('bob')}", json={"role": "consultant"}, headers=acme.headers("owner"))

    assert blocked.status_code == 409
    assert blocked.json()["error"]["message"] == "Reassign this user's clients before changing the role"
    assert allowed.status_code == 200


def test_unknown_role_is_rejected(client: TestClient, acme: Team) -> None:
    response = client.patch(f"/api/users/{acme.id('erin')}", json={"role": "wizard"}, headers=acme.headers("owner"))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "user_update_failed"


def test_user_management_requires_permissions(client: TestClient, acme: Team) -> None:
    listing = client.get("/api/users", headers=acme.headers("carol"))
    editing = client.patch(f"/api/users/{acme.id('dan')}", json={"name": "Daniel"}, headers=acme.headers("ada"))

    assert listing.status_code == 403
    assert editing.status_code == 403


def test_stored_permissions_override_role_defaults(client: TestClient, acme: Team) -> None:
    url = f"/api/users/{acme.id('carol')}/permissions"

    unknown = client.put(url, json={"permissions": ["users.view", "made.up"]}, headers=acme.headers("owner"))
    granted = client.put(url, json={"permissions": ["users.view", "calls.view"]}, headers=acme.headers("owner"))
    listing = client.get("/api/users", headers=acme.headers("carol"))
    reset = client.put(url, json={"permissions": None}, headers=acme.headers("owner"))
    after_reset = client.get("/api/users", headers=acme.headers("carol"))

    assert unknown.status_code == 422
    assert unknown.json()["error"]["message"] == "Unknown permission keys"
    assert unknown.json()["error"]["details"]["keys"] == ["made.up"]
    assert granted.json()["data"]["permissions"] == ["calls.view", "users.view"]
    assert listing.status_code == 200
    assert reset.json()["data"]["permissions"] is None
    assert after_reset.status_code == 403


def test_advisor_assigns_and_disconnects_own_client(client: TestClient, acme: Team) -> None:
    assigned = client.post(f"/api/advisor/clients/{acme.id('dan')}/assign", json={}, headers=acme.headers("bob"))
    roster = client.get("/api/advisor/clients", headers=acme.headers("bob")).json()["data"]
    disconnected = client.post(f"/api/advisor/clients/{acme.id('dan')}/disconnect", headers=acme.headers("bob"))
    again = client.post(f"/api/advisor/clients/{acme.id('dan')}/disconnect", headers=acme.headers("bob"))

    assert assigned.status_code == 200
    assert assigned.json()["data"]["advisor_id"] == acme.id("bob")
    assert [item["id"] for item in roster] == [acme.id("dan")]
    assert disconnected.status_code == 200
    assert disconnected.json()["data"]["advisor_id"] is None
    assert again.status_code == 409
    assert again.json()["error"]["message"] == "Client is not connected to an advisor"
    assert [event["event_type"] for event in events.published_events] == [
        "advisor.client_assigned",
        "advisor.client_disconnected",
    ]


def test_advisor_cannot_disconnect_another_advisors_client(client: TestClient, acme: Team) -> None:
    response = client.post(f"/api/advisor/clients/{acme.id('carol')}/disconnect", headers=acme.headers("bob"))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Client is not connected to this advisor"


def test_owner_can_reassign_between_advisors(client: TestClient, acme: Team) -> None:
    response = client.post(
        f"/api/advisor/clients/{acme.id('carol')}/assign",
        json={"advisor_id": acme.id("bob")},
        headers=acme.headers("owner"),
    )

    assert response.status_code == 200
    assert response.json()["data"]["advisor_id"] == acme.id("bob")


def test_assignment_validates_roles(client: TestClient, acme: Team) -> None:
    not_client = client.post(f"/api/advisor/clients/{acme.id('erin')}/assign", json={}, headers=acme.headers("ada"))
    not_advisor = client.post(
        f"/api/advisor/clients/{acme.id('dan')}/assign",
        json={"advisor_id": acme.id("erin")},
        headers=acme.headers("owner"),
    )
    for_someone_else = client.post(
        f"/api/advisor/clients/{acme.id('dan')}/assign",
        json={"advisor_id": acme.id("bob")},
        headers=acme.headers("ada"),
    )

    assert not_client.status_code == 422
    assert not_client.json()["error"]["message"] == "User is not a client"
    assert not_advisor.status_code == 422
    assert not_advisor.json()["error"]["message"] == "Advisor must have an advisor role"
    assert for_someone_else.status_code == 403


def test_clients_list_for_another_advisor(client: TestClient, acme: Team) -> None:
    roster = client.get("/api/advisor/clients", params={"advisor_id": acme.id("ada")}, headers=acme.headers("owner"))
    consultant = client.get("/api/advisor/clients", headers=acme.headers("erin"))

    assert [item["email"] for item in roster.json()["data"]] == ["carol@acme.test"]
    assert consultant.status_code == 403


def test_role_change_to_non_client_clears_advisor(client: TestClient, acme: Team) -> None:
    response = client.patch(f"/api/users/{acme.id('carol')}", json={"role": "consultant"}, headers=acme.headers("owner"))

    assert response.json()["data"]["advisor_id"] is None


def test_nobody_changes_their_own_access(client: TestClient, acme: Team) -> None:
    owner = acme.headers("owner")
    url = f"/api/users/{acme.id('owner')}"

    own_permissions = client.put(f"{url}/permissions", json={"permissions": "all"}, headers=owner)
    own_role = client.patch(url, json={"role": "admin"}, headers=owner)
    rename = client.patch(url, json={"name": "Boss"}, headers=owner)

    assert own_permissions.status_code == 403
    assert own_permissions.json()["error"]["message"] == "You cannot change your own access"
    assert own_role.status_code == 403
    assert own_role.json()["error"]["message"] == "You cannot change your own access"
    assert rename.status_code == 200
    assert client.get("/api/auth/me", headers=acme.headers("owner")).json()["data"]["role"] == "saas"


def test_grants_are_limited_to_the_actors_own_permissions(client: TestClient, acme: Team) -> None:
    owner = acme.headers("owner")

    to_admin = client.patch(f"/api/users/{acme.id('erin')}", json={"role": "admin"}, headers=owner)
    to_owner = client.patch(f"/api/users/{acme.id('erin')}", json={"role": "saas"}, headers=owner)
    everything = client.put(f"/api/users/{acme.id('carol')}/permissions", json={"permissions": "all"}, headers=owner)
    metrics = client.put(
        f"/api/users/{acme.id('carol')}/permissions",
        json={"permissions": ["calls.view", "system.metrics"]},
        headers=owner,
    )

    assert to_admin.status_code == 403
    assert to_admin.json()["error"]["message"] == "Not authorized to grant these permissions"
    assert to_owner.status_code == 422
    assert everything.status_code == 403
    assert metrics.status_code == 403
    assert metrics.json()["error"]["message"] == "Not authorized to grant these permissions"
    assert client.get("/api/auth/me", headers=acme.headers("erin")).json()["data"]["role"] == "consultant"
    assert client.get("/api/users", headers=acme.headers("carol")).status_code == 403


def test_permission_editors_cannot_touch_the_owner_or_escalate(
    client: TestClient, acme: Team, db_session: Session
) -> None:
    manager = acme.add("mia", "consultant")
    manager.permissions = sorted(permissions_for("client").keys | {"users.view", "users.edit", "users.permissions"})
    db_session.add(manager)
    db_session.commit()
    mia = acme.headers("mia")

    owner_role = client.patch(f"/api/users/{acme.id('owner')}", json={"status": "inactive"}, headers=mia)
    promote = client.patch(f"/api/users/{acme.id('dan')}", json={"role": "advisor"}, headers=mia)
    restrict = client.put(
        f"/api/users/{acme.id('dan')}/permissions",
        json={"permissions": ["calls.view", "users.view"]},
        headers=mia,
    )
    narrow = client.put(f"/api/users/{acme.id('dan')}/permissions", json={"permissions": ["calls.view"]}, headers=mia)

    assert owner_role.status_code == 403
    assert owner_role.json()["error"]["message"] == "The account owner's access cannot be changed"
    assert promote.status_code == 403
    assert restrict.status_code == 200
    assert restrict.json()["data"]["permissions"] == ["calls.view", "users.view"]
    assert narrow.status_code == 200
    assert client.get("/api/auth/me", headers=acme.headers("owner")).status_code == 200
