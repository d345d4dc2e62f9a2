# Overview: Staff user and role administration within one dealer organization.

from __future__ import annotations

from ..extensions import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import AuditResource, Role, User, UserRole
from ..permissions import Capability
from . import audit_service, auth_service, permission_service, session_service
from .tenant_service import require_owned, scoped
from ..validation import require_str


USER_UPDATABLE = {"email", "full_name", "phone", "is_active"}


def list_users(org_id: int, *, include_inactive: bool = False, search: str | None = None):
    query = scoped(User, org_id)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(User.username.ilike(like), User.email.ilike(like), User.full_name.ilike(like)))
    return query.order_by(User.username.asc())


def create_user(org_id: int, actor_user_id: int | None, payload: dict) -> User:
    payload = payload or {}
    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        raise ValidationFailed("roles must be a list of role names")
    password = payload.get("password")
    if not isinstance(password, str):
        raise ValidationFailed("password is required")
    auth_service.validate_password_strength(password)

    user = auth_service.create_user(
        username=require_str("username", payload.get("username"), max_length=64, required=True),
        email=require_str("email", payload.get("email"), max_length=255, required=True),
        password=password,
        org_id=org_id,
        full_name=require_str("full_name", payload.get("full_name"), max_length=120),
        phone=require_str("phone", payload.get("phone"), max_length=20),
        roles=roles,
        commit=False,
    )
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.USER,
        resource_id=user.id,
        after=audit_service.snapshot(user),
    )
    db.session.commit()
    return user


def update_user(org_id: int, user_id: int, actor_user_id: int | None, payload: dict) -> User:
    user = require_owned(User, user_id, org_id, "User")
    payload = payload or {}
    unknown = sorted(set(payload) - USER_UPDATABLE)
    if unknown:
        raise ValidationFailed(f"Field not allowed: {unknown[0]}")

    if "email" in payload:
        email = (payload["email"] or "").strip().lower()
        if not email:
            raise ValidationFailed("email cannot be blank")
        clash = scoped(User, org_id).filter(User.email == email, User.id != user.id).first()
        if clash:
            raise Conflict("Email already in use in this organization")
        payload["email"] = email

    before = audit_service.snapshot(user)
    for key, value in payload.items():
        setattr(user, key, value)
    db.session.flush()
    if user.is_active is False:
        session_service.revoke_all_user_sessions(user.id, reason="User deactivated", commit=False)

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.USER,
        resource_id=user.id,
        before=before,
        after=audit_service.snapshot(user),
    )
    db.session.commit()
    return user


def deactivate_user(org_id: int, user_id: int, actor_user_id: int | None) -> User:
    if user_id == actor_user_id:
        raise ValidationFailed("You cannot deactivate your own account")
    return update_user(org_id, user_id, actor_user_id, {"is_active": False})


def set_user_roles(org_id: int, user_id: int, actor_user_id: int | None, role_names: list[str]) -> User:
    user = require_owned(User, user_id, org_id, "User")
    if not isinstance(role_names, list):
        raise ValidationFailed("roles must be a list of role names")

    wanted = {}
    for name in role_names:
        role = scoped(Role, org_id).filter(Role.name == name).first()
        if not role:
            raise NotFound(f"Role {name} not found")
        wanted[role.id] = role

    before = audit_service.snapshot(user)
    for user_role in list(user.user_roles):
        if user_role.role_id not in wanted:
            user.user_roles.remove(user_role)
    held = {ur.role_id for ur in user.user_roles}
    for role_id in wanted:
        if role_id not in held:
            user.user_roles.append(UserRole(role_id=role_id))
    db.session.flush()
    db.session.expire(user, ["user_roles"])

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.USER,
        resource_id=user.id,
        before=before,
        after=audit_service.snapshot(user),
        note="roles",
    )
    db.session.commit()
    return user


# -- Roles --

def list_roles(org_id: int) -> list[Role]:
    return scoped(Role, org_id).order_by(Role.name.asc()).all()


def _validate_codes(codes) -> list[str]:
    if not isinstance(codes, list):
        raise ValidationFailed("permissions must be a list of capability codes")
    valid = {c.value for c in Capability}
    unknown = sorted(set(codes) - valid)
    if unknown:
        raise ValidationFailed(f"Unknown capability: {unknown[0]}", details={"unknown": unknown})
    return codes


def create_role(org_id: int, actor_user_id: int | None, payload: dict) -> Role:
    payload = payload or {}
    name = require_str("name", payload.get("name"), max_length=64, required=True).lower()
    if scoped(Role, org_id).filter(Role.name == name).first():
        raise Conflict(f"Role {name} already exists")
    codes = _validate_codes(payload.get("permissions") or [])

    role = Role(org_id=org_id, name=name, description=require_str("description", payload.get("description")), is_system_role=False)
    db.session.add(role)
    db.session.flush()
    permission_service.set_role_permissions(role, codes)

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.ROLE,
        resource_id=role.id,
        after=role.to_dict(include_permissions=True),
    )
    db.session.commit()
    return role


def update_role(org_id: int, role_id: int, actor_user_id: int | None, payload: dict) -> Role:
    role = require_owned(Role, role_id, org_id, "Role")
    payload = payload or {}
    unknown = sorted(set(payload) - {"description"})
    if unknown:
        raise ValidationFailed(f"Field not allowed: {unknown[0]}")

    before = role.to_dict()
    role.description = require_str("description", payload.get("description"))
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.ROLE,
        resource_id=role.id,
        before=before,
        after=role.to_dict(),
    )
    db.session.commit()
    return role


def delete_role(org_id: int, role_id: int, actor_user_id: int | None) -> None:
    """Custom roles only, and only once no user holds them."""
    role = require_owned(Role, role_id, org_id, "Role")
    if role.is_system_role:
        raise ValidationFailed("System roles cannot be deleted")
    if role.user_roles:
        raise Conflict("Role is still assigned to users", details={"users": len(role.user_roles)})

    before = role.to_dict(include_permissions=True)
    db.session.delete(role)
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="DELETE",
        resource=AuditResource.ROLE,
        resource_id=role_id,
        before=before,
    )
    db.session.commit()


def replace_role_permissions(org_id: int, role_id: int, actor_user_id: int | None, codes) -> Role:
    role = require_owned(Role, role_id, org_id, "Role")
    codes = _validate_codes(codes)
    if role.name == "owner" and set(codes) != {c.value for c in Capability}:
        raise ValidationFailed("The owner role always holds every capability")

    before = role.to_dict(include_permissions=True)
    permission_service.set_role_permissions(role, codes)
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.ROLE,
        resource_id=role.id,
        before=before,
        after=role.to_dict(include_permissions=True),
        note="permissions",
    )
    db.session.commit()
    return role
