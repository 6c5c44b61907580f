# Overview: Password hashing, user creation and credential checks.

"""
Authentication Service with Multi-Tenant Support

WHY: Every action must be attributable to a user. Passwords are hashed
with bcrypt; identity is scoped to a company.

MULTI-TENANT: Users belong to exactly one company (company_id).
Email uniqueness is tenant-scoped, so authentication always takes the
company resolved for the request.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
- Unknown email and wrong password produce the same error
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Company, User, UserRole
from ..models.auth import VALID_ROLES
from ..time_utils import utcnow


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises ValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise ValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise ValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise ValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise ValidationError("Password must contain at least one special character")


def normalize_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise ValidationError("A valid email address is required")
    return email.strip().lower()


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt verification; malformed hashes never verify."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    company_id: int,
    email: str,
    password: str,
    *,
    roles: tuple[str, ...] | list[str] = (),
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create a user (and role rows) inside the caller's transaction.

    Flushes but does not commit: registration creates the company, the
    admin user and its role as one unit.

    Raises:
        NotFoundError: company missing or inactive
        ConflictError: email already registered in this company
        ValidationError: bad email, weak password or unknown role
    """
    company = db.session.query(Company).filter_by(id=company_id).first()
    if not company or not company.is_active:
        raise NotFoundError("Company not found")

    email = normalize_email(email)
    for role in roles:
        if role not in VALID_ROLES:
            raise ValidationError(f"Unknown role: {role}")

    existing = db.session.query(User.id).filter_by(company_id=company_id, email=email).first()
    if existing:
        raise ConflictError("Email already exists in this company")

    user = User(
        company_id=company_id,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()

    for role in dict.fromkeys(roles):
        db.session.add(UserRole(user_id=user.id, role=role))
    db.session.flush()
    return user


def assign_role(user: User, role: str) -> UserRole:
    if role not in VALID_ROLES:
        raise ValidationError(f"Unknown role: {role}")
    existing = db.session.query(UserRole).filter_by(user_id=user.id, role=role).first()
    if existing:
        return existing
    user_role = UserRole(user_id=user.id, role=role)
    db.session.add(user_role)
    db.session.flush()
    return user_role


def authenticate(company_id: int, email: str, password: str) -> User:
    """
    Check credentials inside one company.

    Returns the User and stamps last_login_at. Raises AuthenticationError
    for unknown email, wrong password, or an inactive user/company.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        raise AuthenticationError("Invalid email or password")

    user = (
        db.session.query(User)
        .filter(
            User.company_id == company_id,
            User.email == email.strip().lower(),
            User.is_active.is_(True),
        )
        .first()
    )
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    if not user.company or not user.company.is_active:
        raise AuthenticationError("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
