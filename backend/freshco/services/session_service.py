# Overview: Bearer session tokens with tenant context, timeouts and refresh.

"""
Session Token Management Service with Multi-Tenant Support

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

MULTI-TENANT: Sessions capture company_id at creation time. A session is
only valid for requests resolved to that same company (enforced in
decorators.require_auth).

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, 24 by default)
- Idle timeout (SESSION_IDLE_TIMEOUT_HOURS, 2 by default)
- Refresh rotates the token: the old one is revoked
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app

from ..errors import AuthenticationError
from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import as_utc_naive, utcnow


@dataclass
class SessionContext:
    """Identity attached to a request by require_auth."""
    user: User
    session: SessionToken
    company_id: int
    roles: list[str] = field(default_factory=list)


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_TIMEOUT_HOURS", 2))


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 of the plaintext token.

    WHY SHA-256 not bcrypt: tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for an active user of an active company.

    Returns (session_record, plaintext_token).
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    if not user.company or not user.company.is_active:
        raise AuthenticationError("Company is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        company_id=user.company_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Validate a bearer token and return its SessionContext.

    Returns None if the token is unknown, revoked, expired, idle for too
    long, or its user/company has been deactivated. Idle and deactivated
    sessions are revoked on the spot.
    """
    if not token:
        return None

    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not session:
        return None

    now = utcnow()
    if as_utc_naive(session.expires_at) < now:
        return None

    if now - as_utc_naive(session.last_used_at) > _idle_timeout():
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        db.session.commit()
        return None

    if not session.company or not session.company.is_active:
        _revoke(session, "Company deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        company_id=session.company_id,
        roles=user.role_names,
    )


def refresh_session(
    token: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Rotate a still-valid token: revoke it and issue a new one.

    Raises AuthenticationError if the token is not valid.
    """
    context = validate_session(token)
    if context is None:
        raise AuthenticationError("Invalid or expired token")
    _revoke(context.session, "Refreshed")
    db.session.flush()
    return create_session(context.user.id, user_agent=user_agent, ip_address=ip_address)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Returns True if an active session was revoked."""
    session = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not session:
        return False
    _revoke(session, reason)
    db.session.commit()
    return True

