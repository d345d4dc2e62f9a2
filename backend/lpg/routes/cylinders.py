# backend/lpg/routes/cylinders.py
"""
Cylinder registry API: registration, status transitions, inspections
and the per-cylinder history log.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body
from ..services import cylinder_service


cylinders_bp = Blueprint("cylinders", __name__, url_prefix="/api/cylinders")


@cylinders_bp.post("")
@require_auth
@require_permission(Capability.MANAGE_CYLINDERS)
def register_cylinder_route():
    """
    Required: capacity, manufacturer, manufacturing_date.
    serial_number (CYL-YYYY-NNNNNN) is generated when omitted.
    """
    cylinder = cylinder_service.register_cylinder(g.org_id, g.current_user.id, json_body())
    return ok(cylinder.to_dict(), message="Cylinder registered", status=201)


@cylinders_bp.get("")
@require_auth
@require_permission(Capability.VIEW_CYLINDERS)
def list_cylinders_route():
    page, limit = page_args()
    query = cylinder_service.list_cylinders(
        g.org_id,
        status=request.args.get("status"),
        capacity=request.args.get("capacity"),
        search=request.args.get("search"),
        customer_id=request.args.get("customer_id", type=int),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@cylinders_bp.get("/due-inspection")
@require_auth
@require_permission(Capability.VIEW_CYLINDERS)
def due_inspection_route():
    """Query params: days (default 30). Overdue cylinders are included."""
    days = request.args.get("days", default=30, type=int)
    page, limit = page_args()
    query = cylinder_service.due_for_inspection(g.org_id, days=max(days, 0))
    return ok_page(paginate(query, page=page, limit=limit))


@cylinders_bp.get("/with-customer/<int:customer_id>")
@require_auth
@require_permission(Capability.VIEW_CYLINDERS)
def with_customer_route(customer_id: int):
    cylinders = cylinder_service.with_customer(g.org_id, customer_id)
    return ok([c.to_dict() for c in cylinders], count=len(cylinders))


@cylinders_bp.get("/<string:serial_number>")
@require_auth
@require_permission(Capability.VIEW_CYLINDERS)
def get_by_serial_route(serial_number: str):
    cylinder = cylinder_service.get_by_serial(g.org_id, serial_number)
    return ok(cylinder.to_dict(include_history=True))


@cylinders_bp.get("/<int:cylinder_id>/history")
@require_auth
@require_permission(Capability.VIEW_CYLINDERS)
def history_route(cylinder_id: int):
    entries = cylinder_service.history(g.org_id, cylinder_id)
    return ok([entry.to_dict() for entry in entries])


@cylinders_bp.put("/<int:cylinder_id>/status")
@require_auth
@require_permission(Capability.MANAGE_CYLINDERS)
def change_status_route(cylinder_id: int):
    """Body: status, note?, customer_id? (required when issuing to a customer)"""
    data = json_body()
    cylinder = cylinder_service.change_status(
        g.org_id,
        cylinder_id,
        g.current_user.id,
        status=data.get("status"),
        note=data.get("note"),
        customer_id=data.get("customer_id"),
    )
    return ok(cylinder.to_dict(), message="Cylinder status updated")


@cylinders_bp.post("/<int:cylinder_id>/inspection")
@require_auth
@require_permission(Capability.INSPECT_CYLINDERS)
def inspection_route(cylinder_id: int):
    """Body: inspection_type, result, inspection_date?, inspector?, notes?"""
    cylinder = cylinder_service.record_inspection(g.org_id, cylinder_id, g.current_user.id, json_body())
    return ok(cylinder.to_dict(include_history=True), message="Inspection recorded", status=201)
