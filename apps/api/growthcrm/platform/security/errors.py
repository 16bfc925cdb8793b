from __future__ import annotations


class AccessError(Exception):
    """Terminal request resolution failure.

    Carries everything the HTTP layer needs to render a deterministic response: a stable
    code, a status, a user-facing message that reveals nothing about tenants or the
    permission catalog, and where the client should go next.
    """

    code = "access_denied"
    status_code = 403
    default_message = "Not authorized"

    def __init__(
        self,
        message: str | None = None,
        *,
        redirect_to: str | None = None,
        clear_session: bool = False,
    ) -> None:
        self.message = message or self.default_message
        self.redirect_to = redirect_to
        self.clear_session = clear_session
        super().__init__(self.message)


class Unauthenticated(AccessError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Not authenticated"


class TenantNotFound(AccessError):
    code = "tenant_not_found"
    status_code = 404
    default_message = "Tenant not found"


class TenantInactive(AccessError):
    code = "tenant_inactive"
    status_code = 403
    default_message = "Tenant account is inactive"


class TenantMismatch(AccessError):
    code = "tenant_mismatch"
    status_code = 403
    default_message = "Not authorized for this account"


class InsufficientPermission(AccessError):
    code = "insufficient_permission"
    status_code = 403
    default_message = "Not authorized"
