"""Static catalog of permission keys and role definitions.

This is the only module that knows role names. Everything else asks the registry:
``permissions_for`` for the default permission set of a role, ``can_advise`` for the
advisor invariant, ``landing_page_for`` for denial redirects and so on.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


PERMISSIONS: dict[str, str] = {
    "dashboard.view": "View main dashboard",
    "dashboard.edit": "Edit dashboard widgets",
    "contacts.view": "View contacts",
    "contacts.create": "Create new contacts",
    "contacts.edit": "Edit contacts",
    "contacts.delete": "Delete contacts",
    "calls.view": "View all calls",
    "calls.create": "Schedule calls",
    "calls.edit": "Edit call details",
    "calls.delete": "Delete calls",
    "deals.view": "View deals",
    "deals.create": "Create deals",
    "deals.edit": "Edit deals",
    "deals.delete": "Delete deals",
    "pipeline.view": "View pipeline",
    "pipeline.edit": "Modify pipeline stages",
    "campaigns.view": "View campaigns",
    "campaigns.create": "Create campaigns",
    "campaigns.edit": "Edit campaigns",
    "campaigns.delete": "Delete campaigns",
    "financials.view": "View financial data",
    "financials.edit": "Edit financial data",
    "sprints.view": "View sprints",
    "sprints.create": "Create sprints",
    "sprints.edit": "Edit sprints",
    "sprints.delete": "Delete sprints",
    "users.view": "View users",
    "users.create": "Create users",
    "users.edit": "Edit users",
    "users.delete": "Delete users",
    "users.permissions": "Manage user permissions",
    "clients.view": "View assigned clients",
    "clients.manage": "Assign and disconnect clients",
    "billing.manage": "Manage subscription and tenant status",
    "system.metrics": "Read service metrics",
}


class PermissionSetKind(StrEnum):
    ALL = "all"
    SET = "set"


@dataclass(frozen=True, slots=True)
class PermissionSet:
    kind: PermissionSetKind
    keys: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def all(cls) -> PermissionSet:
        return cls(kind=PermissionSetKind.ALL)

    @classmethod
    def of(cls, keys: Iterable[str]) -> PermissionSet:
        return cls(kind=PermissionSetKind.SET, keys=frozenset(keys))

    @classmethod
    def empty(cls) -> PermissionSet:
        return cls(kind=PermissionSetKind.SET)

    @classmethod
    def from_raw(cls, raw: Any) -> PermissionSet:
        """Parse the stored representation: the string ``"all"`` or a list of keys.

        Unknown keys are dropped so a stale row can never grant something the registry
        does not define.
        """
        if raw == PermissionSetKind.ALL.value:
            return cls.all()
        if isinstance(raw, (list, tuple, set, frozenset)):
            return cls.of(key for key in raw if isinstance(key, str) and is_known_permission(key))
        return cls.empty()

    @property
    def is_all(self) -> bool:
        return self.kind is PermissionSetKind.ALL

    def allows(self, permission: str) -> bool:
        return self.is_all or permission in self.keys

    def covers(self, other: PermissionSet) -> bool:
        """True when every permission in ``other`` is also granted here."""
        if self.is_all:
            return True
        return not other.is_all and other.keys <= self.keys

    def to_raw(self) -> str | list[str]:
        if self.is_all:
            return PermissionSetKind.ALL.value
        return sorted(self.keys)


@dataclass(frozen=True, slots=True)
class RoleDefinition:
    name: str
    description: str
    permissions: PermissionSet
    landing_page: str = "/dashboard.html"
    can_advise: bool = False
    is_client: bool = False
    invitable: bool = True


_ADVISOR_PERMISSIONS = (
    "dashboard.view",
    "dashboard.edit",
    "contacts.view",
    "contacts.create",
    "contacts.edit",
    "calls.view",
    "calls.create",
    "calls.edit",
    "deals.view",
    "deals.create",
    "deals.edit",
    "pipeline.view",
    "pipeline.edit",
    "campaigns.view",
    "campaigns.create",
    "campaigns.edit",
    "financials.view",
    "sprints.view",
    "sprints.create",
    "sprints.edit",
    "users.view",
    "clients.view",
    "clients.manage",
)

ROLES: dict[str, RoleDefinition] = {
    "admin": RoleDefinition(
        name="Administrator",
        description="Full system access",
        permissions=PermissionSet.all(),
        can_advise=True,
    ),
    "saas": RoleDefinition(
        name="Account owner",
        description="Owns the tenant subscription and its team",
        permissions=PermissionSet.of(
            (
                *_ADVISOR_PERMISSIONS,
                "contacts.delete",
                "calls.delete",
                "deals.delete",
                "financials.edit",
                "users.create",
                "users.edit",
                "users.permissions",
                "billing.manage",
            )
        ),
        invitable=False,
    ),
    "advisor": RoleDefinition(
        name="Advisor",
        description="Runs the sales pipeline and advises clients",
        permissions=PermissionSet.of(_ADVISOR_PERMISSIONS),
        landing_page="/advisor-dashboard.html",
        can_advise=True,
    ),
    "consultant": RoleDefinition(
        name="Consultant",
        description="Works calls and deals without team management",
        permissions=PermissionSet.of(
            (
                "dashboard.view",
                "contacts.view",
                "contacts.create",
                "contacts.edit",
                "calls.view",
                "calls.create",
                "calls.edit",
                "deals.view",
                "deals.create",
                "deals.edit",
                "pipeline.view",
                "sprints.view",
            )
        ),
    ),
    "client": RoleDefinition(
        name="Client",
        description="View own data only",
        permissions=PermissionSet.of(
            (
                "dashboard.view",
                "contacts.view",
                "calls.view",
                "deals.view",
                "pipeline.view",
                "financials.view",
            )
        ),
        landing_page="/client-portal.html",
        is_client=True,
    ),
}

DEFAULT_LANDING_PAGE = "/dashboard.html"


def permissions_for(role: str | None) -> PermissionSet:
    definition = ROLES.get(role or "")
    if definition is None:
        return PermissionSet.empty()
    return definition.permissions


def is_known_permission(key: str) -> bool:
    return key in PERMISSIONS


def is_known_role(role: str | None) -> bool:
    return (role or "") in ROLES


def can_advise(role: str | None) -> bool:
    definition = ROLES.get(role or "")
    return definition is not None and definition.can_advise


def is_client_role(role: str | None) -> bool:
    definition = ROLES.get(role or "")
    return definition is not None and definition.is_client


def is_invitable_role(role: str | None) -> bool:
    definition = ROLES.get(role or "")
    return definition is not None and definition.invitable


def advisor_roles() -> frozenset[str]:
    return frozenset(name for name, definition in ROLES.items() if definition.can_advise)


def client_roles() -> frozenset[str]:
    return frozenset(name for name, definition in ROLES.items() if definition.is_client)


def owner_role() -> str:
    """Role given to the user that signs a tenant up."""
    return next(name for name, definition in ROLES.items() if not definition.invitable)


def landing_page_for(role: str | None) -> str:
    definition = ROLES.get(role or "")
    if definition is None:
        return DEFAULT_LANDING_PAGE
    return definition.landing_page
