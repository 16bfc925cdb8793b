from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from growthcrm.authz.registry import is_known_permission
from growthcrm.core.config import get_settings


DEFAULT_PAGE_PERMISSIONS_PATH = Path(__file__).with_name("page_permissions.json")


class PagePermissionConfigError(ValueError):
    pass


def load_page_permissions(path: Path) -> dict[str, str]:
    with path.open(encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, dict):
        raise PagePermissionConfigError(f"{path}: expected an object of page -> permission")

    mapping: dict[str, str] = {}
    for page, permission in raw.items():
        if not isinstance(permission, str) or not is_known_permission(permission):
            raise PagePermissionConfigError(f"{path}: unknown permission {permission!r} for page {page!r}")
        mapping[str(page).strip().lower()] = permission
    return mapping


@lru_cache
def get_page_permissions() -> dict[str, str]:
    configured = get_settings().page_permissions_path
    path = Path(configured) if configured else DEFAULT_PAGE_PERMISSIONS_PATH
    return load_page_permissions(path)


def required_permission_for_page(page: str) -> str | None:
    """Pages missing from the configuration are open to any authenticated user."""
    normalized = page.strip().lstrip("/").lower()
    return get_page_permissions().get(normalized)
