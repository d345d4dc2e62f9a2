# backend/lpg/routes/auth.py
"""
Authentication API routes.

- Dealer self-registration creates the organization, its template roles
  and an owner user in one transaction
- Login issues a bearer session token; logout revokes it
- Failed logins are recorded as security events
"""

from flask import Blueprint, request, g

from ..decorators import require_auth, bearer_token
from ..errors import Unauthorized, ValidationFailed
from ..responses import ok, json_body
from ..services import auth_service, permission_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, message: str, status: int = 200):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return ok(
        {
            "user": user.to_dict(),
            "organization": user.organization.to_dict(),
            "permissions": sorted(permission_service.get_user_permissions(user.id)),
            "token": token,
            "session": session.to_dict(),
        },
        message=message,
        status=status,
    )


@auth_bp.post("/register")
def register_route():
    """
    Register a dealer organization with its owner account.

    Body: org_name, org_code?, username, email, password, full_name?, phone?,
    address?, city?
    """
    data = json_body()
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip()
    if not all([data.get("org_name"), username, email, data.get("password")]):
        raise ValidationFailed("org_name, username, email and password are required")

    user = auth_service.register_organization(
        org_name=data.get("org_name"),
        org_code=data.get("org_code"),
        username=username,
        email=email,
        password=data.get("password"),
        full_name=data.get("full_name"),
        phone=data.get("phone"),
        address=data.get("address"),
        city=data.get("city"),
    )
    return _session_payload(user, "Registration successful", status=201)


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by username or email (optionally scoped by org_code) and
    create a session token.
    """
    data = json_body()
    username = data.get("username") or data.get("email")
    password = data.get("password")
    if not all([username, password]):
        raise ValidationFailed("username/email and password required")

    user = auth_service.authenticate(username, password, org_code=data.get("org_code"))
    if not user:
        permission_service.log_security_event(
            user_id=None,
            event_type="LOGIN_FAILED",
            success=False,
            resource=request.path,
            action="LOGIN",
            reason=f"Invalid credentials for {username}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        raise Unauthorized("Invalid credentials")

    permission_service.log_security_event(
        user_id=user.id,
        event_type="LOGIN_SUCCESS",
        success=True,
        resource=request.path,
        action="LOGIN",
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        org_id=user.org_id,
    )
    return _session_payload(user, "Login successful")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token(), reason="User logout")
    return ok(message="Logged out")


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return ok({
        "user": user.to_dict(),
        "organization": user.organization.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    })


@auth_bp.put("/password")
@require_auth
def change_password_route():
    """Change own password. All other sessions are revoked."""
    data = json_body()
    auth_service.validate_password_strength(data.get("new_password") or "")
    auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))

    session_service.revoke_other_sessions(g.current_user.id, bearer_token(), "Password changed")
    return ok(message="Password updated")
