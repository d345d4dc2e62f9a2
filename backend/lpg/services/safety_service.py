# Overview: Safety checklists attached to sales, and incident reporting.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import (
    AuditResource,
    Customer,
    Cylinder,
    Sale,
    SafetyChecklist,
    SafetyChecklistItem,
    SafetyIncident,
)
from ..models.safety import CHECKLIST_TYPES, INCIDENT_SEVERITIES, INCIDENT_STATUSES, INCIDENT_TYPES
from ..validation import require_bool, require_choice, require_str
from . import audit_service
from .tenant_service import require_owned, scoped
from lpg.time_utils import parse_iso_datetime, utcnow


# (category, items) per checklist type
CHECKLIST_TEMPLATES: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "new-connection": (
        ("Installation", (
            "Cylinder placed in well-ventilated area",
            "Minimum 1 meter distance from ignition sources",
            "Cylinder placed on stable, level surface",
            "Regulator properly connected",
            "All connections checked for leaks",
            "Safety valve operational",
            "Cylinder secured to prevent tipping",
        )),
        ("Customer Education", (
            "Safety instructions provided in local language",
            "Emergency procedures explained",
            "Leak detection method demonstrated",
            "Proper cylinder handling demonstrated",
            "Emergency contact numbers provided",
            "Safety brochure provided",
        )),
    ),
    "refill": (
        ("Cylinder Inspection", (
            "Cylinder exterior inspected for damage",
            "Valve checked for leaks",
            "Regulator connection inspected",
            "No visible corrosion or dents",
        )),
    ),
    "exchange": (
        ("Returned Cylinder", (
            "Returned cylinder serial recorded",
            "Returned cylinder checked for damage",
        )),
        ("Issued Cylinder", (
            "Issued cylinder valve checked for leaks",
            "Regulator connection inspected",
        )),
    ),
    "inspection": (
        ("Premises", (
            "Cylinder location well ventilated",
            "Rubber tube within expiry date",
            "Regulator in working condition",
            "No leaks detected at connections",
        )),
    ),
}

# Incidents only move forward through these statuses
_INCIDENT_ORDER = {status: index for index, status in enumerate(INCIDENT_STATUSES)}


def template_items(checklist_type: str) -> list[tuple[str, str]]:
    return [
        (category, item)
        for category, items in CHECKLIST_TEMPLATES.get(checklist_type, ())
        for item in items
    ]


def _refresh_status(checklist: SafetyChecklist) -> None:
    if (
        checklist.all_items_checked
        and checklist.acknowledged
        and checklist.safety_instructions_given
        and checklist.emergency_contact_verified
    ):
        if checklist.status != "COMPLETED":
            checklist.status = "COMPLETED"
            checklist.completed_at = utcnow()
    elif any(i.checked for i in checklist.items) or checklist.acknowledged:
        checklist.status = "IN_PROGRESS"
    else:
        checklist.status = "PENDING"


def create_checklist(
    org_id: int,
    actor_user_id: int | None,
    *,
    sale: Sale,
    checklist_type: str,
    commit: bool = True,
) -> SafetyChecklist:
    """
    Create a checklist for a sale from the fixed template.

    With commit=False the checklist is only flushed, so the sale engine can
    stage it inside its own transaction.
    """
    checklist_type = require_choice("checklist_type", checklist_type, CHECKLIST_TYPES, upper=False)
    existing = (
        db.session.query(SafetyChecklist)
        .filter_by(sale_id=sale.id, checklist_type=checklist_type)
        .first()
    )
    if existing:
        raise Conflict(
            "Checklist already exists for this sale",
            details={"sale_id": sale.id, "checklist_type": checklist_type},
        )

    checklist = SafetyChecklist(
        org_id=org_id,
        sale_id=sale.id,
        customer_id=sale.customer_id,
        checklist_type=checklist_type,
        status="PENDING",
        created_by_user_id=actor_user_id,
    )
    for position, (category, item) in enumerate(template_items(checklist_type), start=1):
        checklist.items.append(SafetyChecklistItem(position=position, category=category, item=item))
    db.session.add(checklist)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.SAFETY_CHECKLIST,
        resource_id=checklist.id,
        after=audit_service.snapshot(checklist),
    )
    if commit:
        db.session.commit()
    return checklist


def create_checklist_for_sale(org_id: int, actor_user_id: int | None, payload: dict) -> SafetyChecklist:
    sale = require_owned(Sale, (payload or {}).get("sale_id"), org_id, "Sale")
    return create_checklist(
        org_id,
        actor_user_id,
        sale=sale,
        checklist_type=(payload or {}).get("checklist_type"),
    )


def checklists_for_sale(org_id: int, sale_id: int) -> list[SafetyChecklist]:
    sale = require_owned(Sale, sale_id, org_id, "Sale")
    return (
        scoped(SafetyChecklist, org_id)
        .filter(SafetyChecklist.sale_id == sale.id)
        .order_by(SafetyChecklist.id.asc())
        .all()
    )


def check_item(org_id: int, checklist_id: int, item_id: int, actor_user_id: int | None,
               *, notes: str | None = None) -> SafetyChecklist:
    notes = require_str("notes", notes, max_length=500)
    checklist = require_owned(SafetyChecklist, checklist_id, org_id, "Checklist")
    item = next((i for i in checklist.items if i.id == int(item_id)), None)
    if item is None:
        raise NotFound("Checklist item not found", details={"item_id": item_id})

    before = audit_service.snapshot(checklist)
    item.checked = True
    item.checked_by_user_id = actor_user_id
    item.checked_at = utcnow()
    if notes:
        item.notes = notes
    _refresh_status(checklist)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.SAFETY_CHECKLIST,
        resource_id=checklist.id,
        before=before,
        after=audit_service.snapshot(checklist),
        note=f"checked: {item.item}",
    )
    db.session.commit()
    return checklist


def set_flags(org_id: int, checklist_id: int, actor_user_id: int | None, payload: dict) -> SafetyChecklist:
    checklist = require_owned(SafetyChecklist, checklist_id, org_id, "Checklist")
    payload = payload or {}
    unknown = set(payload) - {"safety_instructions_given", "emergency_contact_verified"}
    if unknown:
        raise ValidationFailed(f"Field not allowed: {sorted(unknown)[0]}")

    before = audit_service.snapshot(checklist)
    if "safety_instructions_given" in payload:
        checklist.safety_instructions_given = require_bool(
            "safety_instructions_given", payload["safety_instructions_given"]
        )
    if "emergency_contact_verified" in payload:
        checklist.emergency_contact_verified = require_bool(
            "emergency_contact_verified", payload["emergency_contact_verified"]
        )
    _refresh_status(checklist)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.SAFETY_CHECKLIST,
        resource_id=checklist.id,
        before=before,
        after=audit_service.snapshot(checklist),
    )
    db.session.commit()
    return checklist


def acknowledge(org_id: int, checklist_id: int, actor_user_id: int | None, *,
                signature: str | None, customer_name: str | None) -> SafetyChecklist:
    signature = require_str("signature", signature, required=True)
    customer_name = require_str("customer_name", customer_name, max_length=120, required=True)
    checklist = require_owned(SafetyChecklist, checklist_id, org_id, "Checklist")

    before = audit_service.snapshot(checklist)
    checklist.acknowledged = True
    checklist.acknowledged_by = customer_name
    checklist.acknowledged_at = utcnow()
    checklist.acknowledgment_signature = signature
    _refresh_status(checklist)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.SAFETY_CHECKLIST,
        resource_id=checklist.id,
        before=before,
        after=audit_service.snapshot(checklist),
        note="customer acknowledgment",
    )
    db.session.commit()
    return checklist


# -- Incidents --

def report_incident(org_id: int, actor_user_id: int | None, payload: dict) -> SafetyIncident:
    payload = payload or {}
    incident_type = require_choice("incident_type", payload.get("incident_type"), INCIDENT_TYPES)
    severity = require_choice("severity", payload.get("severity"), INCIDENT_SEVERITIES)
    location = require_str("location", payload.get("location"), max_length=255, required=True)
    description = require_str("description", payload.get("description"), required=True)
    immediate_action = require_str("immediate_action", payload.get("immediate_action"))
    try:
        incident_date = parse_iso_datetime(payload.get("incident_date")) or utcnow()
    except ValueError:
        raise ValidationFailed("incident_date must be an ISO-8601 datetime")

    customer_id = payload.get("customer_id")
    if customer_id is not None:
        customer_id = require_owned(Customer, customer_id, org_id, "Customer").id
    cylinder_id = payload.get("cylinder_id")
    if cylinder_id is not None:
        cylinder_id = require_owned(Cylinder, cylinder_id, org_id, "Cylinder").id

    incident = SafetyIncident(
        org_id=org_id,
        incident_date=incident_date,
        incident_type=incident_type,
        severity=severity,
        location=location,
        customer_id=customer_id,
        cylinder_id=cylinder_id,
        description=description,
        immediate_action=immediate_action,
        status="REPORTED",
        reported_by_user_id=actor_user_id,
    )
    db.session.add(incident)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.SAFETY_INCIDENT,
        resource_id=incident.id,
        after=audit_service.snapshot(incident),
    )
    db.session.commit()
    return incident


def list_incidents(org_id: int, *, status: str | None = None, severity: str | None = None,
                   start=None, end=None):
    query = scoped(SafetyIncident, org_id)
    if status:
        query = query.filter(SafetyIncident.status == require_choice("status", status, INCIDENT_STATUSES))
    if severity:
        query = query.filter(SafetyIncident.severity == require_choice("severity", severity, INCIDENT_SEVERITIES))
    if start is not None:
        query = query.filter(SafetyIncident.incident_date >= start)
    if end is not None:
        query = query.filter(SafetyIncident.incident_date <= end)
    return query.order_by(SafetyIncident.incident_date.desc(), SafetyIncident.id.desc())


def update_incident_status(org_id: int, incident_id: int, actor_user_id: int | None, *,
                           status: str, notes: str | None = None) -> SafetyIncident:
    incident = require_owned(SafetyIncident, incident_id, org_id, "Incident")
    to_status = require_choice("status", status, INCIDENT_STATUSES)
    notes = require_str("notes", notes)
    if _INCIDENT_ORDER[to_status] <= _INCIDENT_ORDER[incident.status]:
        raise ValidationFailed(
            f"Cannot move incident from {incident.status} to {to_status}",
            details={"from": incident.status, "to": to_status},
        )

    before = audit_service.snapshot(incident)
    incident.status = to_status
    if notes:
        incident.resolution_notes = notes
    if to_status in ("RESOLVED", "CLOSED") and incident.resolved_at is None:
        incident.resolved_at = utcnow()
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="STATUS_CHANGE",
        resource=AuditResource.SAFETY_INCIDENT,
        resource_id=incident.id,
        before=before,
        after=audit_service.snapshot(incident),
        note=notes,
    )
    db.session.commit()
    return incident


def compliance_report(org_id: int, *, start=None, end=None) -> dict:
    checklist_q = db.session.query(SafetyChecklist.status, func.count(SafetyChecklist.id)).filter(
        SafetyChecklist.org_id == org_id
    )
    incident_q = db.session.query(
        SafetyIncident.incident_type, SafetyIncident.severity, func.count(SafetyIncident.id)
    ).filter(SafetyIncident.org_id == org_id)
    if start is not None:
        checklist_q = checklist_q.filter(SafetyChecklist.created_at >= start)
        incident_q = incident_q.filter(SafetyIncident.incident_date >= start)
    if end is not None:
        checklist_q = checklist_q.filter(SafetyChecklist.created_at <= end)
        incident_q = incident_q.filter(SafetyIncident.incident_date <= end)

    checklist_stats = dict(checklist_q.group_by(SafetyChecklist.status).all())
    incident_stats = [
        {"incident_type": t, "severity": s, "count": c}
        for t, s, c in incident_q.group_by(SafetyIncident.incident_type, SafetyIncident.severity).all()
    ]

    total = sum(checklist_stats.values())
    completed = checklist_stats.get("COMPLETED", 0)
    open_incidents = (
        scoped(SafetyIncident, org_id)
        .filter(SafetyIncident.status != "CLOSED")
        .count()
    )
    return {
        "checklist_stats": checklist_stats,
        "incident_stats": incident_stats,
        "pending_checklists": checklist_stats.get("PENDING", 0) + checklist_stats.get("IN_PROGRESS", 0),
        "open_incidents": open_incidents,
        "compliance_rate_pct": round(completed * 100 / total) if total else 0,
    }
