from growthcrm.authz.registry import (
    PERMISSIONS,
    ROLES,
    PermissionSet,
    PermissionSetKind,
    RoleDefinition,
    can_advise,
    is_client_role,
    is_known_permission,
    is_known_role,
    landing_page_for,
    permissions_for,
)

__all__ = [
    "PERMISSIONS",
    "ROLES",
    "PermissionSet",
    "PermissionSetKind",
    "RoleDefinition",
    "can_advise",
    "is_client_role",
    "is_known_permission",
    "is_known_role",
    "landing_page_for",
    "permissions_for",
]
