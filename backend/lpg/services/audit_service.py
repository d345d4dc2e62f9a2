# Overview: Append-only business audit trail written inside the caller's transaction.

from __future__ import annotations

from flask import has_request_context, request

from ..extensions import db
from ..errors import ValidationFailed
from ..models import AuditLog, AuditResource, AUDIT_RESOURCE_MODELS
from ..models.audit import AUDIT_ACTIONS
from lpg.time_utils import utcnow


def record(
    *,
    org_id: int,
    user_id: int | None,
    action: str,
    resource: AuditResource,
    resource_id: int | None = None,
    before: dict | None = None,
    after: dict | None = None,
    note: str | None = None,
) -> AuditLog:
    """
    Stage an audit row in the current session (flush, no commit).

    The caller's commit makes it durable together with the mutation; a
    rollback discards both.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    resource = AuditResource(resource)

    entry = AuditLog(
        org_id=org_id,
        user_id=user_id,
        action=action,
        resource=resource.value,
        resource_id=resource_id,
        before=before,
        after=after,
        note=note,
        occurred_at=utcnow(),
    )
    if has_request_context():
        entry.request_method = request.method
        entry.request_path = request.path[:255]
        entry.ip_address = request.remote_addr

    db.session.add(entry)
    db.session.flush()
    return entry


def snapshot(obj) -> dict:
    """JSON-safe copy of a model's serialized form, for before/after diffs."""
    data = obj.to_dict()
    for key in ("history", "inspections", "items", "payments", "premises", "stops"):
        data.pop(key, None)
    return data


def list_audit_logs(org_id: int, *, resource: str | None = None, resource_id: int | None = None,
                    user_id: int | None = None, action: str | None = None):
    """Tenant-scoped audit query, newest first."""
    query = db.session.query(AuditLog).filter(AuditLog.org_id == org_id)
    if resource:
        try:
            kind = AuditResource(resource)
        except ValueError:
            raise ValidationFailed(
                f"resource must be one of: {', '.join(r.value for r in AUDIT_RESOURCE_MODELS)}"
            )
        query = query.filter(AuditLog.resource == kind.value)
    if resource_id is not None:
        query = query.filter(AuditLog.resource_id == resource_id)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action == action.upper())
    return query.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc())
