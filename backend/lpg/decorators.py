# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import Unauthorized
from .permissions import Capability
from .services import session_service, permission_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'org_id')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication and establish tenant context.

    Sets on Flask g:
    - g.current_user: the authenticated User
    - g.org_id: the tenant (dealer organization) id
    - g.session_context: the full SessionContext

    Raises Unauthorized (401) for a missing, invalid, expired or revoked
    token, or a deactivated user or organization.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise Unauthorized("Authentication required")

        context = session_service.validate_session(token)
        if not context:
            raise Unauthorized("Invalid or expired token")

        g.current_user = context.user
        g.org_id = context.org_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(capability: Capability):
    """
    Require a capability granted through one of the user's roles.

    Denials are logged to security_events with tenant context and raised
    as Forbidden (403).
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                raise Unauthorized("Authentication required")

            permission_service.require_permission(
                user_id=g.current_user.id,
                capability=capability,
                resource=request.path,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                org_id=g.org_id,
            )
            return f(*args, **kwargs)

        return decorated_function
    return decorator
