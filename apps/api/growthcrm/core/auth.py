from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from starlette.requests import Request

from growthcrm.core.config import Settings, get_settings


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    tenant_id: str | None
    session_version: int


class InvalidSessionToken(Exception):
    pass


def issue_session_token(
    *,
    user_id: str,
    tenant_id: str | None,
    session_version: int,
    settings: Settings | None = None,
) -> str:
    resolved_settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": user_id,
        "tid": tenant_id,
        "ver": session_version,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=resolved_settings.session_ttl_minutes)).timestamp()),
    }
    return jwt.encode(payload, resolved_settings.jwt_secret, algorithm=resolved_settings.jwt_algorithm)


def decode_session_token(token: str, settings: Settings | None = None) -> SessionClaims:
    """Verify signature and expiry. Roles and permissions are never read from the token."""

    resolved_settings = settings or get_settings()
    try:
        payload = jwt.decode(token, resolved_settings.jwt_secret, algorithms=[resolved_settings.jwt_algorithm])
    except JWTError as exc:
        raise InvalidSessionToken(str(exc)) from exc

    subject = payload.get("sub")
    version = payload.get("ver")
    if not isinstance(subject, str) or not subject or not isinstance(version, int):
        raise InvalidSessionToken("malformed session claims")
    tenant_id = payload.get("tid")
    return SessionClaims(
        user_id=subject,
        tenant_id=str(tenant_id) if tenant_id else None,
        session_version=version,
    )


def extract_credential(request: Request, settings: Settings | None = None) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer ") :].strip()
        if token:
            return token
    resolved_settings = settings or get_settings()
    cookie = request.cookies.get(resolved_settings.session_cookie_name)
    return cookie or None
