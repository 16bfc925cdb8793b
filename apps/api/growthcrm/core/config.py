from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Growth CRM API"
    app_version: str = "0.1.0"
    app_env: str = "local"
    app_debug: bool = True
    api_port: int = 8000
    database_url: str = "sqlite+pysqlite:///./growthcrm.db"
    redis_url: str = "redis://redis:6379/0"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    session_ttl_minutes: int = 60 * 12
    session_cookie_name: str = "session"
    root_domain: str = "growthmanagerpro.com"
    product_name: str = "growthmanagerpro"
    reserved_subdomains: list[str] = ["www"]
    tenant_header_name: str = "x-tenant-subdomain"
    tenant_cache_ttl_seconds: int = 300
    invitation_ttl_days: int = 7
    podcast_qualification_threshold: int = 35
    automation_max_hops: int = 1
    cascade_reconcile_interval_seconds: float = 300.0
    page_permissions_path: str | None = None
    login_page: str = "/login.html"
    signup_page: str = "/signup-saas.html"
    tenant_inactive_page: str = "/tenant-inactive.html"
    cors_allow_origins: list[str] = ["*"]
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_service_name: str = "growthcrm-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_exporter: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
