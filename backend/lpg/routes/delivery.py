# backend/lpg/routes/delivery.py
"""
Delivery API: personnel roster, route assignment, route lifecycle and
proof of delivery.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..errors import ValidationFailed
from ..models import DeliveryPersonnel, DeliveryRoute
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body, bool_arg
from ..services import delivery_service
from ..services.tenant_service import require_owned
from lpg.time_utils import parse_iso_date


delivery_bp = Blueprint("delivery", __name__, url_prefix="/api/delivery")


# -- Personnel --

@delivery_bp.get("/personnel")
@require_auth
@require_permission(Capability.VIEW_DELIVERIES)
def list_personnel_route():
    """Query params: availability, include_inactive, page, limit"""
    page, limit = page_args()
    query = delivery_service.list_personnel(
        g.org_id,
        availability=request.args.get("availability"),
        include_inactive=bool(bool_arg("include_inactive", False)),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@delivery_bp.post("/personnel")
@require_auth
@require_permission(Capability.MANAGE_DELIVERIES)
def create_personnel_route():
    personnel = delivery_service.create_personnel(g.org_id, g.current_user.id, json_body())
    return ok(personnel.to_dict(), message="Delivery personnel added", status=201)


@delivery_bp.get("/personnel/<int:personnel_id>")
@require_auth
@require_permission(Capability.VIEW_DELIVERIES)
def get_personnel_route(personnel_id: int):
    personnel = require_owned(DeliveryPersonnel, personnel_id, g.org_id, "Delivery personnel")
    return ok(personnel.to_dict())


@delivery_bp.put("/personnel/<int:personnel_id>")
@require_auth
@require_permission(Capability.MANAGE_DELIVERIES)
def update_personnel_route(personnel_id: int):
    personnel = delivery_service.update_personnel(g.org_id, personnel_id, g.current_user.id, json_body())
    return ok(personnel.to_dict(), message="Delivery personnel updated")


# -- Routes --

@delivery_bp.post("/assign")
@require_auth
@require_permission(Capability.MANAGE_DELIVERIES)
def assign_route():
    """Body: personnel_id, sale_ids: [..], route_date?, notes?"""
    route = delivery_service.assign(g.org_id, g.current_user.id, json_body())
    return ok(route.to_dict(), message="Deliveries assigned", status=201)


@delivery_bp.get("/routes")
@require_auth
@require_permission(Capability.VIEW_DELIVERIES)
def list_routes_route():
    """Query params: date (YYYY-MM-DD), status, personnel_id, page, limit"""
    try:
        route_date = parse_iso_date(request.args.get("date"))
    except ValueError:
        raise ValidationFailed("date must be an ISO-8601 date")
    page, limit = page_args()
    query = delivery_service.list_routes(
        g.org_id,
        route_date=route_date,
        status=request.args.get("status"),
        personnel_id=request.args.get("personnel_id", type=int),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@delivery_bp.get("/routes/<int:route_id>")
@require_auth
@require_permission(Capability.VIEW_DELIVERIES)
def get_route_route(route_id: int):
    return ok(require_owned(DeliveryRoute, route_id, g.org_id, "Route").to_dict())


@delivery_bp.put("/routes/<int:route_id>/start")
@require_auth
@require_permission(Capability.UPDATE_SALE_STATUS)
def start_route_route(route_id: int):
    route = delivery_service.start_route(g.org_id, route_id, g.current_user.id)
    return ok(route.to_dict(), message="Route started")


@delivery_bp.put("/routes/<int:route_id>/complete")
@require_auth
@require_permission(Capability.UPDATE_SALE_STATUS)
def complete_route_route(route_id: int):
    """Stops still in transit are marked FAILED; the driver becomes AVAILABLE."""
    data = json_body()
    route = delivery_service.complete_route(g.org_id, route_id, g.current_user.id, notes=data.get("notes"))
    return ok(route.to_dict(), message="Route completed")


@delivery_bp.put("/<int:sale_id>/proof")
@require_auth
@require_permission(Capability.UPDATE_SALE_STATUS)
def proof_route(sale_id: int):
    """Body: signature, notes?"""
    sale = delivery_service.record_proof(g.org_id, sale_id, g.current_user.id, json_body())
    return ok(sale.to_dict(), message="Delivery confirmed")


@delivery_bp.get("/pending")
@require_auth
@require_permission(Capability.VIEW_DELIVERIES)
def pending_route():
    page, limit = page_args()
    query = delivery_service.pending_deliveries(g.org_id)
    return ok_page(paginate(query, page=page, limit=limit, serialize=lambda s: s.to_dict(include_lines=False)))
