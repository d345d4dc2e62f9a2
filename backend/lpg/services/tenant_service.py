"""
Multi-Tenant Service: tenant validation and scoping helpers.

1. Every authenticated request has g.org_id set
2. IDs from client input are resolved only within g.org_id
3. Cross-tenant access attempts are logged as security events and
   reported as NotFound, never revealing that the row exists elsewhere

USAGE:
    from lpg.services.tenant_service import require_owned

    customer = require_owned(Customer, customer_id, g.org_id)
"""

from flask import g, has_request_context, request
from ..extensions import db
from ..errors import NotFound
from .concurrency import lock_for_update
from .permission_service import defer_security_event


def _log_cross_tenant_attempt(reason: str, org_id: int) -> None:
    user = getattr(g, 'current_user', None) if has_request_context() else None
    defer_security_event(
        user_id=user.id if user else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path if has_request_context() else None,
        action=request.method if has_request_context() else None,
        reason=reason,
        ip_address=request.remote_addr if has_request_context() else None,
        org_id=org_id,
    )


def require_owned(model, obj_id, org_id: int, label: str | None = None, *, lock: bool = False):
    """
    Load `model` row by id and require it to belong to `org_id`.

    Raises NotFound if missing or owned by another tenant (the latter is
    logged as CROSS_TENANT_ACCESS_DENIED).
    """
    label = label or model.__name__
    if obj_id is None:
        raise NotFound(f"{label} not found")
    try:
        obj_id = int(obj_id)
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")

    query = db.session.query(model).filter(model.id == obj_id)
    if lock:
        query = lock_for_update(query)
    obj = query.first()

    if obj is None:
        raise NotFound(f"{label} not found", details={"id": obj_id})

    if obj.org_id != org_id:
        _log_cross_tenant_attempt(
            f"{label} {obj_id} belongs to org {obj.org_id}, not {org_id}",
            org_id=org_id,
        )
        raise NotFound(f"{label} not found", details={"id": obj_id})

    return obj


def scoped(model, org_id: int):
    """Base query for `model` restricted to one tenant."""
    return db.session.query(model).filter(model.org_id == org_id)
