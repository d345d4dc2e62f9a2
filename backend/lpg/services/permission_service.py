# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission checking and security event logging.

Fail closed: deny by default, require an explicit capability grant
through one of the user's roles. Only denials are logged.
"""

from flask import current_app, g, has_request_context

from ..extensions import db
from ..errors import Forbidden
from ..models import UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, Capability
from lpg.time_utils import utcnow


def _code(capability: Capability | str) -> str:
    return capability.value if isinstance(capability, Capability) else str(capability)


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Append a security event with tenant context.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCESS
    - LOGOUT
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    if not success:
        current_app.logger.warning(
            "Security event %s user=%s org=%s resource=%s reason=%s",
            event_type, user_id, org_id, resource, reason,
        )
    return event


def get_user_permissions(user_id: int) -> set[str]:
    """Union of capability codes granted by all of the user's roles."""
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, capability: Capability | str) -> bool:
    return _code(capability) in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    capability: Capability | str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
) -> None:
    """
    Require user to have a capability, raise Forbidden if not.

    Denials are recorded in security_events with tenant context.
    """
    code = _code(capability)
    if user_has_permission(user_id, code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=code,
        reason=f"Missing permission: {code}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=org_id,
    )
    raise Forbidden(f"Permission denied: {code}", details={"required_permission": code})


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Create Permission rows for every capability.
    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for capability, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=capability.value).first()

        if not existing:
            db.session.add(Permission(
                code=capability.value,
                name=name,
                description=description,
                category=category
            ))
            created_count += 1

    db.session.flush()
    return created_count


def assign_default_role_permissions(org_id: int) -> int:
    """
    Grant each of the org's template roles its default capabilities.
    Idempotent: skips existing grants.
    """
    created_count = 0
    permissions = {p.code: p for p in db.session.query(Permission).all()}

    for role_name, capabilities in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
        if not role:
            continue

        granted = {rp.permission_id for rp in role.role_permissions}
        for capability in capabilities:
            permission = permissions.get(capability.value)
            if not permission or permission.id in granted:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
            created_count += 1

    db.session.flush()
    return created_count


def set_role_permissions(role: Role, codes: list[str]) -> Role:
    """Replace a role's capability grants. Unknown codes are rejected by the caller."""
    wanted = {_code(c) for c in codes}
    permissions = db.session.query(Permission).filter(Permission.code.in_(wanted)).all()

    for rp in list(role.role_permissions):
        if rp.permission.code not in wanted:
            role.role_permissions.remove(rp)

    existing = {rp.permission.code for rp in role.role_permissions}
    for permission in permissions:
        if permission.code not in existing:
            role.role_permissions.append(RolePermission(permission=permission))

    db.session.flush()
    return role


def defer_security_event(**fields) -> None:
    """
    Queue a security event to be written after the request's own
    transaction has finished (see flush_deferred_security_events).

    Used where the denial is detected mid-transaction and the error that
    follows rolls that transaction back.
    """
    if has_request_context():
        g.setdefault("deferred_security_events", []).append(fields)
    else:
        log_security_event(commit=False, **fields)


def flush_deferred_security_events() -> int:
    events = g.pop("deferred_security_events", None) if has_request_context() else None
    if not events:
        return 0
    db.session.rollback()
    for fields in events:
        log_security_event(commit=False, **fields)
    db.session.commit()
    return len(events)
