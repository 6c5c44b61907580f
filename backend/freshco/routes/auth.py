# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/freshco/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Credentials are checked against the company resolved for the request
- Session management with hashed bearer tokens
- Token rotation on refresh (the old token stops working immediately)
"""

from flask import Blueprint, request, g

from ..decorators import require_auth
from ..errors import AuthenticationError
from ..responses import ok
from ..services import auth_service
from ..services import session_service
from ..validation import require_fields


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer "):
        raise AuthenticationError("Authorization header required")
    return auth_header.split(" ", 1)[1].strip()


def _session_payload(user, session, token: str) -> dict:
    return {
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "company_id": session.company_id,
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body:
    {
        "email": "...",     // required
        "password": "..."   // required
    }

    Returns user info and session token on success.
    Token must be included in Authorization header for protected routes.
    """
    data = request.get_json(silent=True) or {}
    require_fields(data, "email", "password")

    user = auth_service.authenticate(g.company_id, data["email"], data["password"])
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return ok(_session_payload(user, session, token))


@auth_bp.post("/refresh")
def refresh_route():
    """
    Exchange a valid token for a fresh one.

    Expects Authorization header: Bearer <token>

    WHY: Long-lived clients stay logged in without keeping one token forever.
    """
    session, token = session_service.refresh_session(
        _bearer_token(),
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    if session.company_id != g.company_id:
        session_service.revoke_session(token, reason="Tenant mismatch")
        raise AuthenticationError("Invalid or expired token")
    return ok(_session_payload(session.user, session, token))


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    WHY: Explicit logout prevents token reuse.
    """
    revoked = session_service.revoke_session(_bearer_token(), reason="User logout")
    if not revoked:
        raise AuthenticationError("Invalid or expired token")
    return ok({"message": "Logout successful"})


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user, roles and tenant context."""
    context = g.session_context
    return ok({
        "user": context.user.to_dict(),
        "roles": context.roles,
        "company_id": context.company_id,
        "company_slug": g.company_slug,
    })
