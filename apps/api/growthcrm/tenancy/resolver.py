from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from growthcrm.core.config import Settings, get_settings
from growthcrm.metrics import observe_tenant_cache_hit, observe_tenant_cache_miss, observe_tenant_resolution
from growthcrm.platform.security.errors import TenantInactive, TenantNotFound
from growthcrm.tenancy.models import Tenant
from growthcrm.tenancy.records import NO_TENANT, ResolvedTenant, TenantRecord


logger = logging.getLogger("growthcrm.tenancy")

_DNS_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class TenantStore(Protocol):
    def get_tenant_by_subdomain(self, subdomain: str) -> TenantRecord | None:
        ...

    def get_tenant_by_id(self, tenant_id: str) -> TenantRecord | None:
        ...


class SqlTenantStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_tenant_by_subdomain(self, subdomain: str) -> TenantRecord | None:
        tenant = self.session.scalar(select(Tenant).where(func.lower(Tenant.subdomain) == subdomain.lower()))
        if tenant is None:
            return None
        return TenantRecord.from_model(tenant)

    def get_tenant_by_id(self, tenant_id: str) -> TenantRecord | None:
        try:
            key = uuid.UUID(str(tenant_id))
        except ValueError:
            return None
        tenant = self.session.scalar(select(Tenant).where(Tenant.id == key))
        if tenant is None:
            return None
        return TenantRecord.from_model(tenant)


@dataclass
class _CacheEntry:
    record: TenantRecord
    expires_at: float


class TenantCache:
    """Read-through cache of tenant records keyed by subdomain."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _CacheEntry] = {}

    def _ttl(self) -> float:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return float(get_settings().tenant_cache_ttl_seconds)

    def get(self, subdomain: str) -> TenantRecord | None:
        key = subdomain.lower()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            # a record cached under another subdomain is never served for this origin
            if entry.expires_at <= self._clock() or entry.record.subdomain.lower() != key:
                del self._entries[key]
                return None
            return entry.record

    def put(self, record: TenantRecord) -> None:
        ttl = self._ttl()
        if ttl <= 0:
            return
        with self._lock:
            self._entries[record.subdomain.lower()] = _CacheEntry(record=record, expires_at=self._clock() + ttl)

    def invalidate(self, subdomain: str) -> None:
        with self._lock:
            self._entries.pop(subdomain.lower(), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


tenant_cache = TenantCache()


def is_dns_label(value: str) -> bool:
    return bool(_DNS_LABEL_RE.match(value))


def normalize_host(host: str | None) -> str:
    normalized = (host or "").split(",")[0].strip().lower()
    if not normalized:
        return ""
    if "://" in normalized:
        return (urlsplit(normalized).hostname or "").lower()
    normalized = normalized.split("/")[0].strip()
    if ":" in normalized:
        normalized = normalized.split(":")[0].strip()
    return normalized.rstrip(".")


def extract_tenant_label(host: str | None, root_domain: str) -> str | None:
    """Return the label in front of the root domain, or None for any other host."""

    normalized_host = normalize_host(host)
    root = normalize_host(root_domain)
    if not normalized_host or not root or normalized_host == root:
        return None
    suffix = f".{root}"
    if not normalized_host.endswith(suffix):
        return None
    return normalized_host[: -len(suffix)] or None


class TenantResolver:
    def __init__(
        self,
        store: TenantStore,
        *,
        cache: TenantCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings or get_settings()

    def is_untenanted(self, label: str) -> bool:
        """Root domain, product name and reserved labels such as www mean no tenant scoping."""
        reserved = {item.strip().lower() for item in self.settings.reserved_subdomains}
        reserved.add(self.settings.product_name.lower())
        reserved.add(normalize_host(self.settings.root_domain))
        return label in reserved

    def normalize_hint(self, origin_hint: str | None) -> str | None:
        """Turn a host name or bare label into a lowercase tenant label."""

        raw = (origin_hint or "").strip().lower()
        if not raw:
            return None
        if "." in raw or ":" in raw or "/" in raw:
            host = normalize_host(raw)
            if host == normalize_host(self.settings.root_domain):
                return host
            return extract_tenant_label(host, self.settings.root_domain)
        return raw

    def resolve_tenant(self, origin_hint: str | None, *, allow_inactive: bool = False) -> ResolvedTenant:
        label = self.normalize_hint(origin_hint)
        if label is None or self.is_untenanted(label):
            observe_tenant_resolution("no_tenant")
            return NO_TENANT

        if not is_dns_label(label):
            observe_tenant_resolution("not_found")
            logger.info("tenant.not_found", extra={"subdomain": label, "reason": "invalid_label"})
            raise TenantNotFound()

        record = self.cache.get(label) if self.cache is not None else None
        if record is not None:
            observe_tenant_cache_hit()
        else:
            if self.cache is not None:
                observe_tenant_cache_miss()
            record = self.store.get_tenant_by_subdomain(label)
            if record is None:
                observe_tenant_resolution("not_found")
                logger.info("tenant.not_found", extra={"subdomain": label})
                raise TenantNotFound()
            if self.cache is not None:
                self.cache.put(record)

        if not record.is_active and not allow_inactive:
            observe_tenant_resolution("inactive")
            logger.warning(
                "tenant.inactive",
                extra={"subdomain": label, "tenant_id": record.id, "status": record.status},
            )
            raise TenantInactive()

        observe_tenant_resolution("resolved")
        logger.debug("tenant.resolved", extra={"subdomain": label, "tenant_id": record.id})
        return record

    def resolve_home_tenant(self, tenant_id: str, *, allow_inactive: bool = False) -> TenantRecord:
        """Tenant a member belongs to, for requests whose origin names no tenant.

        Read from the store rather than the cache so a suspension applies at once.
        """

        record = self.store.get_tenant_by_id(tenant_id)
        if record is None:
            observe_tenant_resolution("not_found")
            logger.warning("tenant.not_found", extra={"tenant_id": tenant_id, "reason": "home_tenant_missing"})
            raise TenantNotFound()
        if not record.is_active and not allow_inactive:
            observe_tenant_resolution("inactive")
            logger.warning(
                "tenant.inactive",
                extra={"subdomain": record.subdomain, "tenant_id": record.id, "status": record.status},
            )
            raise TenantInactive()
        observe_tenant_resolution("resolved")
        return record


def origin_hint_from_headers(headers: Any, settings: Settings | None = None, *, query: Any = None) -> str | None:
    """Explicit tenant header, then the ``subdomain`` query value, then the request host."""

    resolved_settings = settings or get_settings()
    explicit = headers.get(resolved_settings.tenant_header_name)
    if explicit:
        return explicit.strip()
    queried = query.get("subdomain") if query is not None else None
    if queried:
        return queried.strip()
    host = headers.get("x-forwarded-host") or headers.get("host")
    label = extract_tenant_label(host, resolved_settings.root_domain)
    if label is not None:
        return label
    if normalize_host(host) == normalize_host(resolved_settings.root_domain):
        return normalize_host(host)
    return None
