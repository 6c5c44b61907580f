# Overview: Company (tenant) registration, lookup and module bootstrap.

"""
Company Registration

A company is created together with its first admin user in ONE
transaction. Default feature modules are bootstrapped afterwards as a
non-critical effect: if that fails the company still exists and the
failure is reported back as an EffectResult.
"""

from __future__ import annotations

import re

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Company, CompanyModule
from ..models.auth import ROLE_ADMIN
from .auth_service import create_user
from .concurrency import run_atomic
from .effects import EffectResult, run_best_effort


DEFAULT_MODULES = (
    "catalog",
    "inventory",
    "procurement",
    "orders",
    "returns",
)

RESERVED_SLUGS = {"www", "api", "admin", "app"}


def slugify(value: str) -> str:
    value = (value or "").strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    return value.strip("-")[:63]


def initialize_company_modules(company_id: int) -> EffectResult:
    def _effect():
        for key in DEFAULT_MODULES:
            db.session.add(CompanyModule(company_id=company_id, module_key=key, is_enabled=True))
        db.session.flush()

    return run_best_effort("initialize_company_modules", _effect)


def register_company(
    *,
    company_name: str,
    email: str,
    password: str,
    company_slug: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> tuple[Company, object, EffectResult]:
    """
    Register a new tenant with its admin user.

    Returns (company, admin_user, modules_effect).

    Raises:
        ValidationError: missing name, unusable slug, bad email/password
        ConflictError: slug already taken
    """
    if not isinstance(company_name, str) or not company_name.strip():
        raise ValidationError("company_name is required")

    slug = slugify(company_slug if company_slug else company_name)
    if not slug:
        raise ValidationError("Company slug must contain at least one letter or digit")
    if slug in RESERVED_SLUGS:
        raise ValidationError(f"Company slug '{slug}' is reserved")

    def _op():
        if db.session.query(Company.id).filter_by(slug=slug).first():
            raise ConflictError(f"Company slug '{slug}' is already taken")

        company = Company(name=company_name.strip(), slug=slug, is_active=True)
        db.session.add(company)
        db.session.flush()

        admin = create_user(
            company.id,
            email,
            password,
            roles=(ROLE_ADMIN,),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        effect = initialize_company_modules(company.id)
        return company, admin, effect

    company, admin, effect = run_atomic(_op)
    current_app.logger.info("Registered company id=%s slug=%s", company.id, company.slug)
    return company, admin, effect


def get_company_by_slug(slug: str) -> Company:
    company = (
        db.session.query(Company)
        .filter_by(slug=(slug or "").strip().lower(), is_active=True)
        .first()
    )
    if not company:
        raise NotFoundError("Company not found")
    return company


def list_companies() -> list[Company]:
    return db.session.query(Company).order_by(Company.id).all()
