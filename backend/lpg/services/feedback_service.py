# Overview: Staff feedback; submission by any user, triage by feedback managers.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import NotFound, ValidationFailed
from ..models import AuditResource, Feedback
from ..models.feedback import FEEDBACK_CATEGORIES, FEEDBACK_PRIORITIES, FEEDBACK_STATUSES
from ..permissions import Capability
from ..validation import ModelValidationPolicy, require_choice, require_str, validate_payload
from . import audit_service, permission_service
from .tenant_service import require_owned, scoped
from lpg.time_utils import utcnow


FEEDBACK_POLICY = ModelValidationPolicy(
    writable_fields={"category", "title", "message", "priority", "device_info", "is_public"},
    required_on_create={"title", "message"},
)

DEVICE_INFO_KEYS = {"platform", "version", "model"}


def can_manage(user_id: int) -> bool:
    return permission_service.user_has_permission(user_id, Capability.MANAGE_FEEDBACK.value)


def _clean_device_info(value):
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationFailed("device_info must be an object")
    unknown = sorted(set(value) - DEVICE_INFO_KEYS)
    if unknown:
        raise ValidationFailed(f"device_info field not allowed: {unknown[0]}")
    return {k: require_str(f"device_info.{k}", v, max_length=64) for k, v in value.items()}


def submit_feedback(org_id: int, user_id: int, payload: dict) -> Feedback:
    patch = validate_payload(model=Feedback, payload=payload, policy=FEEDBACK_POLICY, partial=False)
    for key in ("title", "message"):
        require_str(key, payload.get(key), required=True)
    patch["category"] = require_choice("category", patch.get("category") or "GENERAL", FEEDBACK_CATEGORIES)
    patch["priority"] = require_choice("priority", patch.get("priority") or "MEDIUM", FEEDBACK_PRIORITIES)
    patch["device_info"] = _clean_device_info(patch.get("device_info"))

    feedback = Feedback(org_id=org_id, user_id=user_id, status="PENDING", **patch)
    db.session.add(feedback)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=user_id,
        action="CREATE",
        resource=AuditResource.FEEDBACK,
        resource_id=feedback.id,
        after=audit_service.snapshot(feedback),
    )
    db.session.commit()
    return feedback


def _filtered(query, *, status=None, category=None, priority=None):
    if status:
        query = query.filter(Feedback.status == require_choice("status", status, FEEDBACK_STATUSES))
    if category:
        query = query.filter(Feedback.category == require_choice("category", category, FEEDBACK_CATEGORIES))
    if priority:
        query = query.filter(Feedback.priority == require_choice("priority", priority, FEEDBACK_PRIORITIES))
    return query.order_by(Feedback.created_at.desc(), Feedback.id.desc())


def list_my_feedback(org_id: int, user_id: int, *, status: str | None = None, category: str | None = None):
    return _filtered(scoped(Feedback, org_id).filter(Feedback.user_id == user_id),
                     status=status, category=category)


def list_feedback(org_id: int, *, status: str | None = None, category: str | None = None,
                  priority: str | None = None):
    return _filtered(scoped(Feedback, org_id), status=status, category=category, priority=priority)


def get_feedback(org_id: int, feedback_id: int, user_id: int) -> Feedback:
    """Authors see their own feedback; feedback managers see the whole dealer's."""
    feedback = require_owned(Feedback, feedback_id, org_id, "Feedback")
    if feedback.user_id != user_id and not can_manage(user_id):
        raise NotFound("Feedback not found", details={"id": feedback_id})
    return feedback


def delete_feedback(org_id: int, feedback_id: int, user_id: int) -> None:
    feedback = get_feedback(org_id, feedback_id, user_id)
    before = audit_service.snapshot(feedback)
    db.session.delete(feedback)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=user_id,
        action="DELETE",
        resource=AuditResource.FEEDBACK,
        resource_id=feedback_id,
        before=before,
    )
    db.session.commit()


def update_status(org_id: int, feedback_id: int, actor_user_id: int, *, status: str,
                  admin_response: str | None = None) -> Feedback:
    feedback = require_owned(Feedback, feedback_id, org_id, "Feedback")
    to_status = require_choice("status", status, FEEDBACK_STATUSES)
    response = require_str("admin_response", admin_response, max_length=500)

    before = audit_service.snapshot(feedback)
    feedback.status = to_status
    if response:
        feedback.admin_response = response
        feedback.responded_at = utcnow()
        feedback.responded_by_user_id = actor_user_id
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="STATUS_CHANGE",
        resource=AuditResource.FEEDBACK,
        resource_id=feedback.id,
        before=before,
        after=audit_service.snapshot(feedback),
    )
    db.session.commit()
    return feedback


def feedback_stats(org_id: int) -> dict:
    def counts(column, keys):
        rows = dict(
            db.session.query(column, func.count(Feedback.id))
            .filter(Feedback.org_id == org_id)
            .group_by(column)
            .all()
        )
        return {k: int(rows.get(k, 0)) for k in keys}

    by_status = counts(Feedback.status, FEEDBACK_STATUSES)
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_category": counts(Feedback.category, FEEDBACK_CATEGORIES),
        "by_priority": counts(Feedback.priority, FEEDBACK_PRIORITIES),
    }
