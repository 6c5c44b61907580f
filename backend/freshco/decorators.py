# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, request

from .errors import AuthenticationError, AuthorizationError
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session for the resolved tenant.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY:
    - 401 if the Authorization header is missing, or the token is invalid,
      expired, idle or revoked
    - 403 if the session belongs to a different company than the one the
      request was resolved to (a token never crosses tenants)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise AuthenticationError("Authentication required")

        context = session_service.validate_session(token)
        if context is None:
            raise AuthenticationError("Invalid or expired token")

        resolved_company_id = getattr(g, "company_id", None)
        if resolved_company_id is not None and context.company_id != resolved_company_id:
            raise AuthorizationError("Session does not belong to this company")

        g.current_user = context.user
        g.session_context = context
        g.company_id = context.company_id
        g.bearer_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require ANY of the given roles. Must be applied after @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                raise AuthenticationError("Authentication required")
            if not user.has_any_role(*roles):
                raise AuthorizationError(f"Requires one of the roles: {', '.join(roles)}")
            return f(*args, **kwargs)

        return decorated_function
    return decorator
