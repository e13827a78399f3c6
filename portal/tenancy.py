"""
Tenant resolution from the request host.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .errors import NotFound, ValidationFailed
from .models.tenant import Tenant
from .repository import CampaignRepository


def resolve_tenant_domain(raw_host: Optional[str], override: Optional[str] = None) -> str:
    """Normalize a Host / X-Forwarded-Host value into a tenant domain.

    ``override`` wins when set (single-tenant deployments and local dev).
    """
    if override:
        return override.strip().lower()
    if not raw_host:
        raise ValidationFailed("Missing host header for tenant resolution")
    host = raw_host.split(",")[0].strip()
    if host.startswith("[") and "]" in host:
        host = host[: host.index("]") + 1]
    elif host.count(":") == 1:
        host = host.rsplit(":", 1)[0]
    return host.lower()


def request_host(headers) -> Optional[str]:
    return headers.get("x-forwarded-host") or headers.get("host")


def lookup_tenant(db: Session, raw_host: Optional[str]) -> Tenant:
    domain = resolve_tenant_domain(raw_host, get_settings().tenant_domain_override)
    tenant = CampaignRepository(db).get_tenant_by_domain(domain)
    if not tenant or not tenant.is_active:
        raise NotFound(f"Tenant '{domain}' not found")
    return tenant


def get_tenant(request: Request, db: Session = Depends(get_db)) -> Tenant:
    """Resolve the tenant for the current request."""
    return lookup_tenant(db, request_host(request.headers))
