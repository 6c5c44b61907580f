# Overview: Flask API routes for company (tenant) registration and public lookup.

"""
Company Routes

Both routes run before a tenant exists (or is known), so they are exempt
from tenant resolution.
"""

from flask import Blueprint, request

from ..responses import created, ok
from ..services import company_service
from ..services import session_service
from ..validation import require_fields


companies_bp = Blueprint("companies", __name__, url_prefix="/api/companies")


@companies_bp.post("/register")
def register_company():
    """
    Register a company together with its admin user.

    Request body:
    {
        "company_name": "Fresh Foods",   // required
        "company_slug": "fresh-foods",   // optional, derived from the name
        "email": "owner@example.com",    // required
        "password": "...",               // required, strong password
        "first_name": "...",             // optional
        "last_name": "...",              // optional
        "phone": "..."                   // optional
    }

    Returns:
        {company, user, token, effects: EffectResult[]}

    The admin is logged in right away. A failed module bootstrap is
    reported in effects and does not fail the registration.
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, "company_name", "email", "password")

    company, admin, effect = company_service.register_company(
        company_name=data.get("company_name"),
        company_slug=data.get("company_slug"),
        email=data.get("email"),
        password=data.get("password"),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        phone=data.get("phone"),
    )
    session, token = session_service.create_session(
        user_id=admin.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    return created({
        "company": company.to_dict(),
        "user": admin.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "effects": [effect.to_dict()],
    })


@companies_bp.get("/by-slug/<slug>")
def get_company_by_slug(slug: str):
    """Public company info for a login page (id, name, slug, is_active)."""
    company = company_service.get_company_by_slug(slug)
    return ok(company.to_public_dict())
