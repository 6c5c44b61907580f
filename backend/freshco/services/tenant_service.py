# Overview: Tenant resolution from request headers and tenant-scoped query helpers.

"""
Multi-Tenant Service: Tenant Resolution and Scoping Helpers

WHY: Every request must be mapped to exactly one active company BEFORE any
business table is touched, and every downstream query must be filtered by
that company. Cross-tenant access is a correctness invariant, not only an
authorization check.

RESOLUTION PRIORITY (first hit wins):
1. X-Tenant-Subdomain header
2. Origin / Referer hostname (only when it carries a subdomain)
3. Host header

SECURITY INVARIANTS:
1. g.company_id is set by the before_request hook for every tenant route
2. Services never query business tables without company_id
3. A row that exists under another company is reported as NotFound,
   never as Forbidden (its existence is not revealed)

USAGE:
    from freshco.services.tenant_service import get_scoped_or_404, scoped_query

    order = get_scoped_or_404(Order, order_id, g.company_id)
    warehouses = scoped_query(Warehouse, g.company_id).all()
"""

from __future__ import annotations

from urllib.parse import urlparse

from flask import current_app, g, request

from ..errors import NotFoundError
from ..extensions import db
from ..models import Company


TENANT_HEADER = "X-Tenant-Subdomain"


def _strip_port(host: str) -> str:
    if host.startswith("["):
        # IPv6 literal
        return host.split("]", 1)[0] + "]"
    return host.split(":", 1)[0]


def extract_subdomain(
    host: str | None,
    base_domain: str,
    default_slug: str,
) -> str | None:
    """
    Map a hostname onto a company slug.

    - localhost / *.localhost (dev)          -> default_slug
    - <base_domain> or www.<base_domain>     -> default_slug
    - <slug>.<base_domain>                   -> slug
    - anything outside base_domain           -> None
    """
    if not host:
        return None
    hostname = _strip_port(host.strip().lower()).rstrip(".")
    base = base_domain.strip().lower()

    if hostname == "localhost" or hostname.endswith(".localhost") or hostname == "127.0.0.1":
        return default_slug

    if hostname in (base, f"www.{base}"):
        return default_slug

    suffix = f".{base}"
    if not hostname.endswith(suffix):
        return None

    label = hostname[: -len(suffix)].split(".")[-1]
    if not label or label == "www":
        return default_slug
    return label


def _hostname_from_url(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return urlparse(value).hostname
    except ValueError:
        return None


def slug_from_request() -> str | None:
    """Determine the requested tenant slug from the current request."""
    base_domain = current_app.config["TENANT_BASE_DOMAIN"]
    default_slug = current_app.config["DEFAULT_COMPANY_SLUG"]

    header = (request.headers.get(TENANT_HEADER) or "").strip().lower()
    if header:
        return header

    for candidate in (request.headers.get("Origin"), request.headers.get("Referer")):
        hostname = _hostname_from_url(candidate)
        if (
            hostname
            and hostname.count(".") >= 2
            and not hostname.endswith("localhost")
        ):
            slug = extract_subdomain(hostname, base_domain, default_slug)
            if slug:
                return slug

    return extract_subdomain(request.host, base_domain, default_slug)


def resolve_company(slug: str | None) -> Company:
    """
    Resolve a slug to exactly one ACTIVE company.

    Raises NotFoundError otherwise; inactive companies are indistinguishable
    from unknown ones.
    """
    if not slug:
        raise NotFoundError("Company not found for subdomain: (none)")
    company = db.session.query(Company).filter_by(slug=slug, is_active=True).first()
    if not company:
        raise NotFoundError(f"Company not found for subdomain: {slug}")
    return company


def resolve_request_tenant() -> Company:
    """Resolve the current request's tenant and store it on flask.g."""
    slug = slug_from_request()
    try:
        company = resolve_company(slug)
    except NotFoundError:
        current_app.logger.info("Tenant resolution failed for slug=%r path=%s", slug, request.path)
        raise
    g.company_id = company.id
    g.company_slug = company.slug
    return company


def scoped_query(model, company_id: int):
    """
    Base query filtered to one company.

    Every model with business data carries company_id directly, so the
    filter is a single equality (no join through parent tables).
    """
    if company_id is None:
        raise NotFoundError("Tenant context not established")
    return db.session.query(model).filter(model.company_id == company_id)


def get_scoped_or_404(model, entity_id, company_id: int, *, label: str | None = None, lock: bool = False):
    """
    Fetch one row by id inside the tenant, or raise NotFoundError.

    A row that exists under another company yields the same NotFoundError
    as a row that does not exist at all.
    """
    label = label or model.__name__
    if entity_id is None:
        raise NotFoundError(f"{label} not found")
    query = scoped_query(model, company_id).filter(model.id == entity_id)
    if lock:
        query = query.with_for_update()
    row = query.first()
    if row is None:
        exists_elsewhere = db.session.query(model.id).filter(model.id == entity_id).first()
        if exists_elsewhere is not None:
            current_app.logger.warning(
                "Cross-tenant access denied: %s id=%s requested by company_id=%s",
                label, entity_id, company_id,
            )
        raise NotFoundError(f"{label} not found")
    return row
