# Overview: Cylinder registry; status state machine, history log and inspections.

"""
Cylinder registry.

State machine (CONDEMNED is terminal):

    IN_STOCK -> WITH_CUSTOMER -> IN_STOCK          (sale, return/exchange)
    IN_STOCK -> UNDER_INSPECTION -> IN_STOCK | CONDEMNED
    IN_STOCK -> IN_TRANSIT -> WITH_CUSTOMER | IN_STOCK
    any      -> CONDEMNED

Every status change is a conditional UPDATE (`WHERE status = <from>`)
followed by one appended CylinderHistory row, in the same transaction.
"""

from __future__ import annotations

import re
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import Conflict, NotFound, RetryableConflict, ValidationFailed
from ..models import AuditResource, Customer, Cylinder, CylinderHistory, CylinderInspection
from ..models.catalog import CYLINDER_CAPACITIES
from ..models.cylinders import CYLINDER_STATUSES, INSPECTION_RESULTS, INSPECTION_TYPES
from ..validation import ModelValidationPolicy, enforce_money_fields, require_choice, require_str, validate_payload
from . import audit_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .tenant_service import require_owned, scoped
from lpg.time_utils import add_years, parse_iso_date, utcnow


SERIAL_PATTERN = re.compile(r"^CYL-\d{4}-\d{6}$")

HYDROSTATIC_INTERVAL_YEARS = 5
INSPECTION_INTERVAL_YEARS = 1

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "IN_STOCK": frozenset({"WITH_CUSTOMER", "UNDER_INSPECTION", "IN_TRANSIT", "CONDEMNED"}),
    "WITH_CUSTOMER": frozenset({"IN_STOCK", "CONDEMNED"}),
    "IN_TRANSIT": frozenset({"WITH_CUSTOMER", "IN_STOCK", "CONDEMNED"}),
    "UNDER_INSPECTION": frozenset({"IN_STOCK", "CONDEMNED"}),
    "CONDEMNED": frozenset(),
}

# History action recorded for each target status
_TRANSITION_ACTIONS = {
    "IN_STOCK": "RETURNED",
    "WITH_CUSTOMER": "ISSUED",
    "IN_TRANSIT": "DISPATCHED",
    "UNDER_INSPECTION": "SENT_FOR_INSPECTION",
    "CONDEMNED": "CONDEMNED",
}

CYLINDER_POLICY = ModelValidationPolicy(
    writable_fields={
        "serial_number", "capacity", "manufacturer", "manufacturing_date", "tare_weight",
        "certification_number", "last_hydrostatic_test", "next_test_due", "deposit_cents",
        "location_address",
    },
    required_on_create={"capacity", "manufacturer", "manufacturing_date"},
)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def append_history(
    cylinder: Cylinder,
    *,
    action: str,
    from_status: str | None,
    to_status: str,
    actor_user_id: int | None,
    customer_id: int | None = None,
    sale_id: int | None = None,
    note: str | None = None,
) -> CylinderHistory:
    entry = CylinderHistory(
        org_id=cylinder.org_id,
        cylinder_id=cylinder.id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        customer_id=customer_id,
        sale_id=sale_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def _location_for(to_status: str, customer_id: int | None) -> dict:
    if to_status == "WITH_CUSTOMER":
        return {
            Cylinder.location_type: "CUSTOMER" if customer_id else "WALK_IN",
            Cylinder.customer_id: customer_id,
        }
    if to_status == "IN_STOCK":
        return {Cylinder.location_type: "WAREHOUSE", Cylinder.customer_id: None}
    if to_status == "IN_TRANSIT":
        return {Cylinder.location_type: "IN_TRANSIT", Cylinder.customer_id: customer_id}
    if to_status == "UNDER_INSPECTION":
        return {Cylinder.location_type: "TESTING_FACILITY", Cylinder.customer_id: None}
    return {}


def apply_transition(
    cylinder: Cylinder,
    to_status: str,
    *,
    actor_user_id: int | None,
    customer_id: int | None = None,
    sale_id: int | None = None,
    note: str | None = None,
    action: str | None = None,
) -> Cylinder:
    """
    Flip one cylinder's status inside the caller's transaction.

    Raises ValidationFailed for an illegal transition and RetryableConflict
    if the row changed underneath us.
    """
    from_status = cylinder.status
    if not can_transition(from_status, to_status):
        raise ValidationFailed(
            f"Illegal cylinder transition {from_status} -> {to_status}",
            details={"serial_number": cylinder.serial_number, "from": from_status, "to": to_status},
        )
    # A dispatched cylinder is handed to the customer it was dispatched to
    if customer_id is None and from_status == "IN_TRANSIT" and to_status == "WITH_CUSTOMER":
        customer_id = cylinder.customer_id

    values = {Cylinder.status: to_status, Cylinder.updated_at: utcnow()}
    values.update(_location_for(to_status, customer_id))
    if to_status == "CONDEMNED":
        values[Cylinder.is_active] = False
        values[Cylinder.condemned_at] = utcnow()
        values[Cylinder.condemnation_reason] = (note or "Condemned")[:255]

    updated = (
        db.session.query(Cylinder)
        .filter(Cylinder.id == cylinder.id, Cylinder.status == from_status)
        .update(values, synchronize_session="fetch")
    )
    if updated != 1:
        raise RetryableConflict(f"Cylinder {cylinder.serial_number} changed concurrently")

    append_history(
        cylinder,
        action=action or _TRANSITION_ACTIONS[to_status],
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        customer_id=customer_id,
        sale_id=sale_id,
        note=note,
    )
    current_app.logger.info(
        "Cylinder %s %s -> %s (user=%s)", cylinder.serial_number, from_status, to_status, actor_user_id
    )
    return cylinder


def next_serial_number(org_id: int, year: int | None = None) -> str:
    year = year or utcnow().year
    prefix = f"CYL-{year}-"
    last = (
        db.session.query(func.max(Cylinder.serial_number))
        .filter(Cylinder.org_id == org_id, Cylinder.serial_number.like(f"{prefix}%"))
        .scalar()
    )
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def register_cylinder(org_id: int, actor_user_id: int | None, payload: dict) -> Cylinder:
    """Register a new cylinder (IN_STOCK, WAREHOUSE) with a REGISTERED history entry."""
    patch = validate_payload(model=Cylinder, payload=payload, policy=CYLINDER_POLICY, partial=False)
    enforce_money_fields(patch, "deposit_cents")

    patch["capacity"] = require_choice("capacity", patch["capacity"], CYLINDER_CAPACITIES, upper=False)

    serial = (patch.get("serial_number") or "").upper()
    if serial and not SERIAL_PATTERN.match(serial):
        raise ValidationFailed("serial_number must match CYL-YYYY-NNNNNN")

    mfg_date: date = patch["manufacturing_date"]
    if mfg_date > utcnow().date():
        raise ValidationFailed("manufacturing_date cannot be in the future")

    def _op():
        begin_write_transaction()
        serial_number = serial or next_serial_number(org_id)
        if scoped(Cylinder, org_id).filter(Cylinder.serial_number == serial_number).first():
            raise Conflict(f"Cylinder {serial_number} already registered")

        cylinder = Cylinder(org_id=org_id, status="IN_STOCK", location_type="WAREHOUSE", **patch)
        cylinder.serial_number = serial_number
        if not cylinder.next_test_due:
            base = cylinder.last_hydrostatic_test or mfg_date
            cylinder.next_test_due = add_years(base, HYDROSTATIC_INTERVAL_YEARS)

        db.session.add(cylinder)
        db.session.flush()

        append_history(
            cylinder,
            action="REGISTERED",
            from_status=None,
            to_status="IN_STOCK",
            actor_user_id=actor_user_id,
            note="Cylinder registered",
        )
        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="CREATE",
            resource=AuditResource.CYLINDER,
            resource_id=cylinder.id,
            after=audit_service.snapshot(cylinder),
        )
        db.session.commit()
        return cylinder

    return run_with_retry(_op, label="register_cylinder")


def list_cylinders(org_id: int, *, status: str | None = None, capacity: str | None = None,
                   search: str | None = None, customer_id: int | None = None):
    query = scoped(Cylinder, org_id)
    if status:
        query = query.filter(Cylinder.status == require_choice("status", status, CYLINDER_STATUSES))
    if capacity:
        query = query.filter(Cylinder.capacity == capacity)
    if customer_id is not None:
        query = query.filter(Cylinder.customer_id == customer_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Cylinder.serial_number.ilike(like),
            Cylinder.manufacturer.ilike(like),
            Cylinder.certification_number.ilike(like),
        ))
    return query.order_by(Cylinder.serial_number.asc())


def get_by_serial(org_id: int, serial_number: str) -> Cylinder:
    cylinder = scoped(Cylinder, org_id).filter(
        Cylinder.serial_number == serial_number.strip().upper()
    ).first()
    if not cylinder:
        raise NotFound("Cylinder not found", details={"serial_number": serial_number})
    return cylinder


def change_status(
    org_id: int,
    cylinder_id: int,
    actor_user_id: int | None,
    *,
    status: str,
    note: str | None = None,
    customer_id: int | None = None,
) -> Cylinder:
    """Manual status transition (return, dispatch, send for inspection, condemn)."""
    to_status = require_choice("status", status, CYLINDER_STATUSES)
    note = require_str("note", note, max_length=255)
    if customer_id is not None:
        require_owned(Customer, customer_id, org_id, "Customer")

    def _op():
        begin_write_transaction()
        cylinder = require_owned(Cylinder, cylinder_id, org_id, "Cylinder", lock=True)
        before = audit_service.snapshot(cylinder)
        apply_transition(
            cylinder,
            to_status,
            actor_user_id=actor_user_id,
            customer_id=customer_id,
            note=note,
        )
        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="STATUS_CHANGE",
            resource=AuditResource.CYLINDER,
            resource_id=cylinder.id,
            before=before,
            after=audit_service.snapshot(cylinder),
            note=note,
        )
        db.session.commit()
        return cylinder

    return run_with_retry(_op, label="cylinder_status")


def record_inspection(org_id: int, cylinder_id: int, actor_user_id: int | None, payload: dict) -> Cylinder:
    """
    Record an inspection.

    PASSED: next due = inspection date + 5 years (HYDROSTATIC) or + 1 year,
    and an UNDER_INSPECTION cylinder returns to IN_STOCK.
    FAILED: the cylinder is condemned.
    CONDITIONAL: next due = inspection date + 1 year, status unchanged.
    """
    inspection_type = require_choice("inspection_type", payload.get("inspection_type"), INSPECTION_TYPES)
    result = require_choice("result", payload.get("result"), INSPECTION_RESULTS)
    try:
        inspection_date = parse_iso_date(payload.get("inspection_date")) or utcnow().date()
    except ValueError:
        raise ValidationFailed("inspection_date must be an ISO-8601 date")
    inspector = require_str("inspector", payload.get("inspector"), max_length=120)
    notes = require_str("notes", payload.get("notes"))

    def _op():
        begin_write_transaction()
        cylinder = require_owned(Cylinder, cylinder_id, org_id, "Cylinder", lock=True)
        if cylinder.status not in ("IN_STOCK", "UNDER_INSPECTION"):
            raise ValidationFailed(
                f"Cannot inspect a cylinder that is {cylinder.status}",
                details={"serial_number": cylinder.serial_number},
            )
        before = audit_service.snapshot(cylinder)

        if result == "PASSED" and inspection_type == "HYDROSTATIC":
            next_due = add_years(inspection_date, HYDROSTATIC_INTERVAL_YEARS)
        elif result == "FAILED":
            next_due = None
        else:
            next_due = add_years(inspection_date, INSPECTION_INTERVAL_YEARS)

        inspection = CylinderInspection(
            org_id=org_id,
            cylinder_id=cylinder.id,
            inspection_date=inspection_date,
            inspection_type=inspection_type,
            result=result,
            inspector=inspector,
            notes=notes,
            next_due_date=next_due,
            recorded_by_user_id=actor_user_id,
        )
        db.session.add(inspection)

        if inspection_type == "HYDROSTATIC" and result != "FAILED":
            cylinder.last_hydrostatic_test = inspection_date
        if next_due:
            cylinder.next_test_due = next_due
        db.session.flush()

        note = f"{inspection_type} inspection {result}"
        if result == "FAILED":
            apply_transition(cylinder, "CONDEMNED", actor_user_id=actor_user_id,
                             note=notes or note)
        elif result == "PASSED" and cylinder.status == "UNDER_INSPECTION":
            apply_transition(cylinder, "IN_STOCK", actor_user_id=actor_user_id,
                             note=note, action="INSPECTED")
        else:
            append_history(cylinder, action="INSPECTED", from_status=cylinder.status,
                           to_status=cylinder.status, actor_user_id=actor_user_id, note=note)

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.CYLINDER,
            resource_id=cylinder.id,
            before=before,
            after=audit_service.snapshot(cylinder),
            note=note,
        )
        db.session.commit()
        return cylinder

    return run_with_retry(_op, label="cylinder_inspection")


def due_for_inspection(org_id: int, days: int = 30):
    """Active cylinders whose next test is due within `days` (overdue included)."""
    cutoff = utcnow().date() + timedelta(days=days)
    return (
        scoped(Cylinder, org_id)
        .filter(
            Cylinder.status != "CONDEMNED",
            Cylinder.next_test_due.isnot(None),
            Cylinder.next_test_due <= cutoff,
        )
        .order_by(Cylinder.next_test_due.asc(), Cylinder.serial_number.asc())
    )


def with_customer(org_id: int, customer_id: int) -> list[Cylinder]:
    require_owned(Customer, customer_id, org_id, "Customer")
    return (
        scoped(Cylinder, org_id)
        .filter(Cylinder.customer_id == customer_id, Cylinder.status == "WITH_CUSTOMER")
        .order_by(Cylinder.serial_number.asc())
        .all()
    )


def history(org_id: int, cylinder_id: int) -> list[CylinderHistory]:
    cylinder = require_owned(Cylinder, cylinder_id, org_id, "Cylinder")
    return list(cylinder.history)


def find_reservable(org_id: int, capacity: str, quantity: int, exclude_ids=()) -> list[Cylinder]:
    """
    First `quantity` IN_STOCK, active cylinders of a capacity class,
    ascending by serial number. May return fewer than requested.
    """
    query = scoped(Cylinder, org_id).filter(
        Cylinder.capacity == capacity,
        Cylinder.status == "IN_STOCK",
        Cylinder.is_active.is_(True),
    )
    if exclude_ids:
        query = query.filter(Cylinder.id.notin_(list(exclude_ids)))
    return lock_for_update(query.order_by(Cylinder.serial_number.asc()).limit(quantity)).all()
