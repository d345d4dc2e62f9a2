# Overview: Delivery personnel, route assignment and proof of delivery.

from __future__ import annotations

import re

from ..extensions import db
from ..errors import Conflict, ValidationFailed
from ..models import AuditResource, DeliveryPersonnel, DeliveryRoute, DeliveryRouteStop, Sale, User
from ..models.delivery import AVAILABILITY_STATUSES, ROUTE_STATUSES, VEHICLE_TYPES
from ..validation import ModelValidationPolicy, require_choice, require_str, validate_payload
from . import audit_service
from .concurrency import begin_write_transaction, run_with_retry
from .sales_service import set_delivery_status
from .tenant_service import require_owned, scoped
from lpg.time_utils import parse_iso_date, utcnow


PERSONNEL_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "phone", "vehicle_number", "vehicle_type", "license_number", "license_expiry",
        "availability", "user_id", "is_active",
    },
    required_on_create={"name", "phone"},
)

_PHONE = re.compile(r"^\+?\d{10,15}$")


def _normalize_personnel_patch(org_id: int, patch: dict) -> dict:
    if patch.get("phone"):
        phone = re.sub(r"[\s-]", "", patch["phone"])
        if not _PHONE.match(phone):
            raise ValidationFailed("phone must be 10-15 digits")
        patch["phone"] = phone
    if "vehicle_type" in patch:
        patch["vehicle_type"] = require_choice("vehicle_type", patch["vehicle_type"], VEHICLE_TYPES)
    if "availability" in patch:
        patch["availability"] = require_choice("availability", patch["availability"], AVAILABILITY_STATUSES)
    if patch.get("vehicle_number"):
        patch["vehicle_number"] = patch["vehicle_number"].upper()
    if patch.get("user_id") is not None:
        require_owned(User, patch["user_id"], org_id, "User")
    return patch


def license_valid(personnel: DeliveryPersonnel, on_date=None) -> bool:
    on_date = on_date or utcnow().date()
    return bool(personnel.license_number) and (
        personnel.license_expiry is None or personnel.license_expiry >= on_date
    )


def list_personnel(org_id: int, *, availability: str | None = None, include_inactive: bool = False):
    query = scoped(DeliveryPersonnel, org_id)
    if not include_inactive:
        query = query.filter(DeliveryPersonnel.is_active.is_(True))
    if availability:
        query = query.filter(
            DeliveryPersonnel.availability == require_choice("availability", availability, AVAILABILITY_STATUSES)
        )
    return query.order_by(DeliveryPersonnel.name.asc())


def create_personnel(org_id: int, actor_user_id: int | None, payload: dict) -> DeliveryPersonnel:
    patch = _normalize_personnel_patch(
        org_id, validate_payload(model=DeliveryPersonnel, payload=payload, policy=PERSONNEL_POLICY, partial=False)
    )
    if scoped(DeliveryPersonnel, org_id).filter(DeliveryPersonnel.phone == patch["phone"]).first():
        raise Conflict("Delivery personnel with this phone already exists", details={"phone": patch["phone"]})

    personnel = DeliveryPersonnel(org_id=org_id, **patch)
    db.session.add(personnel)
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.DELIVERY_PERSONNEL,
        resource_id=personnel.id,
        after=audit_service.snapshot(personnel),
    )
    db.session.commit()
    return personnel


def update_personnel(org_id: int, personnel_id: int, actor_user_id: int | None, payload: dict) -> DeliveryPersonnel:
    personnel = require_owned(DeliveryPersonnel, personnel_id, org_id, "Delivery personnel")
    patch = _normalize_personnel_patch(
        org_id, validate_payload(model=DeliveryPersonnel, payload=payload, policy=PERSONNEL_POLICY, partial=True)
    )
    if "phone" in patch and patch["phone"] != personnel.phone:
        clash = scoped(DeliveryPersonnel, org_id).filter(
            DeliveryPersonnel.phone == patch["phone"], DeliveryPersonnel.id != personnel.id
        ).first()
        if clash:
            raise Conflict("Delivery personnel with this phone already exists", details={"phone": patch["phone"]})

    before = audit_service.snapshot(personnel)
    for key, value in patch.items():
        setattr(personnel, key, value)
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.DELIVERY_PERSONNEL,
        resource_id=personnel.id,
        before=before,
        after=audit_service.snapshot(personnel),
    )
    db.session.commit()
    return personnel


def assign(org_id: int, actor_user_id: int | None, payload: dict) -> DeliveryRoute:
    """
    Plan a route: personnel must be AVAILABLE with a valid license; every
    sale must require delivery and be PENDING or FAILED. Sales become
    SCHEDULED, personnel ON_DELIVERY.
    """
    payload = payload or {}
    sale_ids = payload.get("sale_ids")
    if not isinstance(sale_ids, list) or not sale_ids:
        raise ValidationFailed("sale_ids must be a non-empty list")
    if len(set(map(str, sale_ids))) != len(sale_ids):
        raise ValidationFailed("sale_ids must not contain duplicates")
    try:
        route_date = parse_iso_date(payload.get("route_date")) or utcnow().date()
    except ValueError:
        raise ValidationFailed("route_date must be an ISO-8601 date")
    notes = require_str("notes", payload.get("notes"), max_length=500)

    def _op():
        begin_write_transaction()
        personnel = require_owned(DeliveryPersonnel, payload.get("personnel_id"), org_id,
                                  "Delivery personnel", lock=True)
        if not personnel.is_active or personnel.availability != "AVAILABLE":
            raise ValidationFailed(
                f"{personnel.name} is not available",
                details={"availability": personnel.availability},
            )
        if not license_valid(personnel, route_date):
            raise ValidationFailed(f"{personnel.name} has no valid driving license")

        route = DeliveryRoute(
            org_id=org_id,
            personnel_id=personnel.id,
            route_date=route_date,
            status="PLANNED",
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        db.session.add(route)

        for sequence, sale_id in enumerate(sale_ids, start=1):
            sale = require_owned(Sale, sale_id, org_id, "Sale", lock=True)
            if not sale.delivery_required:
                raise ValidationFailed(f"Sale {sale.invoice_number} does not require delivery")
            if sale.delivery_status not in ("PENDING", "FAILED"):
                raise ValidationFailed(
                    f"Sale {sale.invoice_number} is {sale.delivery_status}",
                    details={"sale_id": sale.id, "delivery_status": sale.delivery_status},
                )
            set_delivery_status(sale, "SCHEDULED")
            route.stops.append(DeliveryRouteStop(sale_id=sale.id, sequence=sequence))

        personnel.availability = "ON_DELIVERY"
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="CREATE",
            resource=AuditResource.DELIVERY_ROUTE,
            resource_id=route.id,
            after=audit_service.snapshot(route),
        )
        db.session.commit()
        return route

    return run_with_retry(_op, label="delivery_assign")


def list_routes(org_id: int, *, route_date=None, status: str | None = None, personnel_id: int | None = None):
    query = scoped(DeliveryRoute, org_id)
    if route_date is not None:
        query = query.filter(DeliveryRoute.route_date == route_date)
    if status:
        query = query.filter(DeliveryRoute.status == require_choice("status", status, ROUTE_STATUSES))
    if personnel_id is not None:
        query = query.filter(DeliveryRoute.personnel_id == personnel_id)
    return query.order_by(DeliveryRoute.route_date.desc(), DeliveryRoute.id.desc())


def start_route(org_id: int, route_id: int, actor_user_id: int | None) -> DeliveryRoute:
    """PLANNED -> IN_PROGRESS; every scheduled stop goes IN_TRANSIT."""
    def _op():
        begin_write_transaction()
        route = require_owned(DeliveryRoute, route_id, org_id, "Route", lock=True)
        if route.status != "PLANNED":
            raise ValidationFailed(f"Route is {route.status}", details={"status": route.status})
        before = audit_service.snapshot(route)

        route.status = "IN_PROGRESS"
        route.started_at = utcnow()
        for stop in route.stops:
            if stop.sale.delivery_status == "SCHEDULED":
                set_delivery_status(stop.sale, "IN_TRANSIT")
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="STATUS_CHANGE",
            resource=AuditResource.DELIVERY_ROUTE,
            resource_id=route.id,
            before=before,
            after=audit_service.snapshot(route),
        )
        db.session.commit()
        return route

    return run_with_retry(_op, label="route_start")


def complete_route(org_id: int, route_id: int, actor_user_id: int | None, *, notes: str | None = None) -> DeliveryRoute:
    """
    IN_PROGRESS -> COMPLETED. Stops still IN_TRANSIT are marked FAILED;
    personnel return to AVAILABLE and are credited with delivered stops.
    """
    notes = require_str("notes", notes, max_length=500)

    def _op():
        begin_write_transaction()
        route = require_owned(DeliveryRoute, route_id, org_id, "Route", lock=True)
        if route.status != "IN_PROGRESS":
            raise ValidationFailed(f"Route is {route.status}", details={"status": route.status})
        before = audit_service.snapshot(route)

        delivered = 0
        for stop in route.stops:
            if stop.sale.delivery_status == "IN_TRANSIT":
                set_delivery_status(stop.sale, "FAILED", notes="Not delivered on route")
            elif stop.sale.delivery_status == "DELIVERED":
                delivered += 1

        route.status = "COMPLETED"
        route.completed_at = utcnow()
        if notes:
            route.notes = notes

        db.session.query(DeliveryPersonnel).filter(DeliveryPersonnel.id == route.personnel_id).update(
            {
                DeliveryPersonnel.availability: "AVAILABLE",
                DeliveryPersonnel.completed_deliveries: DeliveryPersonnel.completed_deliveries + delivered,
            },
            synchronize_session="fetch",
        )
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="STATUS_CHANGE",
            resource=AuditResource.DELIVERY_ROUTE,
            resource_id=route.id,
            before=before,
            after=audit_service.snapshot(route),
            note=f"{delivered} of {len(route.stops)} delivered",
        )
        db.session.commit()
        return route

    return run_with_retry(_op, label="route_complete")


def record_proof(org_id: int, sale_id: int, actor_user_id: int | None, payload: dict) -> Sale:
    """Mark an in-transit sale DELIVERED with the recipient's signature."""
    payload = payload or {}
    signature = require_str("signature", payload.get("signature"), required=True)
    notes = require_str("notes", payload.get("notes"), max_length=500)

    def _op():
        begin_write_transaction()
        sale = require_owned(Sale, sale_id, org_id, "Sale", lock=True)
        before = audit_service.snapshot(sale)
        set_delivery_status(sale, "DELIVERED", notes=notes)
        sale.delivery_signature = signature
        db.session.flush()
        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="STATUS_CHANGE",
            resource=AuditResource.SALE,
            resource_id=sale.id,
            before=before,
            after=audit_service.snapshot(sale),
            note="proof of delivery",
        )
        db.session.commit()
        return sale

    return run_with_retry(_op, label="delivery_proof")


def pending_deliveries(org_id: int):
    return (
        scoped(Sale, org_id)
        .filter(
            Sale.delivery_required.is_(True),
            Sale.delivery_status.in_(("PENDING", "SCHEDULED", "IN_TRANSIT", "FAILED")),
        )
        .order_by(Sale.delivery_date.asc(), Sale.created_at.asc(), Sale.id.asc())
    )
