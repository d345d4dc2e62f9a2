# backend/lpg/routes/admin.py
"""
User and role administration API.

All routes are scoped to the caller's organization. User management
requires MANAGE_USERS; role and capability management requires MANAGE_ROLES.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..models import Role, User
from ..permissions import Capability, get_permission_definition
from ..responses import ok, ok_page, page_args, paginate, json_body, bool_arg
from ..services import admin_service
from ..services.tenant_service import require_owned


admin_bp = Blueprint("admin", __name__, url_prefix="/api")


# -- Users --

@admin_bp.get("/users")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def list_users_route():
    """
    Query params:
    - include_inactive: true|false (default false)
    - search: username, email or full name substring
    - page, limit
    """
    page, limit = page_args()
    query = admin_service.list_users(
        g.org_id,
        include_inactive=bool(bool_arg("include_inactive", False)),
        search=request.args.get("search"),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@admin_bp.post("/users")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def create_user_route():
    """Body: username, email, password, full_name?, phone?, roles? (role names)"""
    user = admin_service.create_user(g.org_id, g.current_user.id, json_body())
    return ok(user.to_dict(), message="User created", status=201)


@admin_bp.get("/users/<int:user_id>")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def get_user_route(user_id: int):
    return ok(require_owned(User, user_id, g.org_id, "User").to_dict())


@admin_bp.put("/users/<int:user_id>")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def update_user_route(user_id: int):
    user = admin_service.update_user(g.org_id, user_id, g.current_user.id, json_body())
    return ok(user.to_dict(), message="User updated")


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def deactivate_user_route(user_id: int):
    """Soft delete: the account is deactivated and its sessions revoked."""
    user = admin_service.deactivate_user(g.org_id, user_id, g.current_user.id)
    return ok(user.to_dict(), message="User deactivated")


@admin_bp.put("/users/<int:user_id>/roles")
@require_auth
@require_permission(Capability.MANAGE_USERS)
def set_user_roles_route(user_id: int):
    """Body: {"roles": ["sales", ...]} replaces the user's role set."""
    data = json_body()
    user = admin_service.set_user_roles(g.org_id, user_id, g.current_user.id, data.get("roles"))
    return ok(user.to_dict(), message="Roles updated")


# -- Roles --

@admin_bp.get("/roles")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def list_roles_route():
    roles = admin_service.list_roles(g.org_id)
    return ok([role.to_dict(include_permissions=True) for role in roles])


@admin_bp.get("/roles/capabilities")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def list_capabilities_route():
    """The closed capability set with display names and categories."""
    return ok([get_permission_definition(c) for c in Capability])


@admin_bp.post("/roles")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def create_role_route():
    """Body: name, description?, permissions? (capability codes)"""
    role = admin_service.create_role(g.org_id, g.current_user.id, json_body())
    return ok(role.to_dict(include_permissions=True), message="Role created", status=201)


@admin_bp.get("/roles/<int:role_id>")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def get_role_route(role_id: int):
    role = require_owned(Role, role_id, g.org_id, "Role")
    return ok(role.to_dict(include_permissions=True))


@admin_bp.put("/roles/<int:role_id>")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def update_role_route(role_id: int):
    role = admin_service.update_role(g.org_id, role_id, g.current_user.id, json_body())
    return ok(role.to_dict(include_permissions=True), message="Role updated")


@admin_bp.delete("/roles/<int:role_id>")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def delete_role_route(role_id: int):
    admin_service.delete_role(g.org_id, role_id, g.current_user.id)
    return ok(message="Role deleted")


@admin_bp.get("/roles/<int:role_id>/permissions")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def get_role_permissions_route(role_id: int):
    role = require_owned(Role, role_id, g.org_id, "Role")
    return ok(role.permission_codes())


@admin_bp.put("/roles/<int:role_id>/permissions")
@require_auth
@require_permission(Capability.MANAGE_ROLES)
def replace_role_permissions_route(role_id: int):
    """Body: {"permissions": [codes]} replaces the role's grants."""
    data = json_body()
    role = admin_service.replace_role_permissions(g.org_id, role_id, g.current_user.id, data.get("permissions"))
    return ok(role.to_dict(include_permissions=True), message="Permissions updated")
