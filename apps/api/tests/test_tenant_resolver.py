from __future__ import annotations

from collections.abc import Generator

import pytest

from growthcrm.core.config import Settings, get_settings
from growthcrm.platform.security.errors import TenantInactive, TenantNotFound
from growthcrm.tenancy.records import TenantLimits
from growthcrm.tenancy.resolver import (
    NO_TENANT,
    TenantCache,
    TenantRecord,
    TenantResolver,
    extract_tenant_label,
    normalize_host,
    origin_hint_from_headers,
)


def _record(subdomain: str, status: str = "active", tenant_id: str | None = None) -> TenantRecord:
    return TenantRecord(
        id=tenant_id or f"id-{subdomain}",
        subdomain=subdomain,
        business_name=subdomain.title(),
        subscription_tier="starter",
        subscription_status="active",
        status=status,
        limits=TenantLimits(max_contacts=500, max_users=5, max_advisors=2),
    )


class FakeStore:
    def __init__(self, *records: TenantRecord) -> None:
        self.records = {record.subdomain.lower(): record for record in records}
        self.lookups: list[str] = []

    def get_tenant_by_subdomain(self, subdomain: str) -> TenantRecord | None:
        self.lookups.append(subdomain)
        return self.records.get(subdomain.lower())

    def get_tenant_by_id(self, tenant_id: str) -> TenantRecord | None:
        self.lookups.append(tenant_id)
        return next((record for record in self.records.values() if record.id == tenant_id), None)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(root_domain="growthmanagerpro.com", product_name="growthmanagerpro", reserved_subdomains=["www"])


@pytest.mark.parametrize(
    "hint",
    [None, "", "www", "WWW", "growthmanagerpro", "growthmanagerpro.com", "www.growthmanagerpro.com"],
)
def test_untenanted_hints_resolve_to_no_tenant(settings: Settings, hint: str | None) -> None:
    store = FakeStore(_record("www"))

    assert TenantResolver(store, settings=settings).resolve_tenant(hint) is NO_TENANT
    assert store.lookups == []


def test_lookup_is_case_insensitive(settings: Settings) -> None:
    store = FakeStore(_record("acme"))
    resolver = TenantResolver(store, settings=settings)

    assert resolver.resolve_tenant("ACME").subdomain == "acme"
    assert resolver.resolve_tenant("Acme.GrowthManagerPro.com:443").subdomain == "acme"


def test_unknown_tenant_raises_not_found(settings: Settings) -> None:
    with pytest.raises(TenantNotFound):
        TenantResolver(FakeStore(), settings=settings).resolve_tenant("ghost")


def test_invalid_label_is_not_found_without_lookup(settings: Settings) -> None:
    store = FakeStore()

    with pytest.raises(TenantNotFound):
        TenantResolver(store, settings=settings).resolve_tenant("-bad_label-")
    assert store.lookups == []


def test_inactive_tenant_is_rejected_unless_allowed(settings: Settings) -> None:
    resolver = TenantResolver(FakeStore(_record("sleepy", status="inactive")), settings=settings)

    with pytest.raises(TenantInactive):
        resolver.resolve_tenant("sleepy")
    assert resolver.resolve_tenant("sleepy", allow_inactive=True).status == "inactive"


def test_home_tenant_is_read_from_the_store_by_id(settings: Settings) -> None:
    cache = TenantCache(ttl_seconds=60)
    cache.put(_record("sleepy"))
    store = FakeStore(_record("sleepy", status="inactive"), _record("acme"))
    resolver = TenantResolver(store, cache=cache, settings=settings)

    assert resolver.resolve_home_tenant("id-acme").subdomain == "acme"
    with pytest.raises(TenantInactive):
        resolver.resolve_home_tenant("id-sleepy")
    assert resolver.resolve_home_tenant("id-sleepy", allow_inactive=True).status == "inactive"
    with pytest.raises(TenantNotFound):
        resolver.resolve_home_tenant("id-gone")
    assert store.lookups == ["id-acme", "id-sleepy", "id-sleepy", "id-gone"]


def test_cache_serves_repeat_lookups_until_ttl(settings: Settings) -> None:
    clock = FakeClock()
    store = FakeStore(_record("acme"))
    resolver = TenantResolver(store, cache=TenantCache(ttl_seconds=60, clock=clock), settings=settings)

    resolver.resolve_tenant("acme")
    resolver.resolve_tenant("acme")
    assert store.lookups == ["acme"]

    clock.now += 61
    resolver.resolve_tenant("acme")
    assert store.lookups == ["acme", "acme"]


def test_cache_never_serves_a_record_for_another_subdomain() -> None:
    cache = TenantCache(ttl_seconds=60, clock=FakeClock())
    cache.put(_record("acme"))
    cache._entries["globex"] = cache._entries["acme"]

    assert cache.get("globex") is None
    assert cache.get("acme").subdomain == "acme"


def test_zero_ttl_disables_caching(settings: Settings) -> None:
    store = FakeStore(_record("acme"))
    resolver = TenantResolver(store, cache=TenantCache(ttl_seconds=0), settings=settings)

    resolver.resolve_tenant("acme")
    resolver.resolve_tenant("acme")
    assert store.lookups == ["acme", "acme"]


def test_invalidate_drops_entry() -> None:
    cache = TenantCache(ttl_seconds=60, clock=FakeClock())
    cache.put(_record("acme"))
    cache.invalidate("ACME")

    assert cache.get("acme") is None


def test_host_helpers(settings: Settings) -> None:
    assert normalize_host("https://Acme.GrowthManagerPro.com:8443/path") == "acme.growthmanagerpro.com"
    assert normalize_host("acme.growthmanagerpro.com., other") == "acme.growthmanagerpro.com"
    assert extract_tenant_label("acme.growthmanagerpro.com", settings.root_domain) == "acme"
    assert extract_tenant_label("growthmanagerpro.com", settings.root_domain) is None
    assert extract_tenant_label("acme.example.org", settings.root_domain) is None


def test_origin_hint_priority(settings: Settings) -> None:
    headers = {"x-tenant-subdomain": "explicit", "host": "acme.growthmanagerpro.com"}
    assert origin_hint_from_headers(headers, settings, query={"subdomain": "queried"}) == "explicit"

    headers = {"host": "acme.growthmanagerpro.com"}
    assert origin_hint_from_headers(headers, settings, query={"subdomain": "queried"}) == "queried"
    assert origin_hint_from_headers(headers, settings) == "acme"
    assert origin_hint_from_headers({"x-forwarded-host": "beta.growthmanagerpro.com"}, settings) == "beta"
    assert origin_hint_from_headers({"host": "growthmanagerpro.com"}, settings) == "growthmanagerpro.com"
    assert origin_hint_from_headers({"host": "testserver"}, settings) is None
