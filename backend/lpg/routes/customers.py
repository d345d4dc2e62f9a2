# backend/lpg/routes/customers.py
"""
Customer API: profiles, premises, credit and purchase history.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..models import Customer
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body, bool_arg
from ..services import customer_service
from ..services.tenant_service import require_owned


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def list_customers_route():
    """
    Query params:
    - search: name, phone, email or business name substring
    - customer_type, loyalty_tier
    - is_active: true|false|all (default true)
    - page, limit
    """
    page, limit = page_args()
    query = customer_service.list_customers(
        g.org_id,
        search=request.args.get("search"),
        customer_type=request.args.get("customer_type"),
        loyalty_tier=request.args.get("loyalty_tier"),
        is_active=bool_arg("is_active", True),
    )
    return ok_page(paginate(query, page=page, limit=limit, serialize=lambda c: c.to_dict(include_premises=False)))


@customers_bp.get("/top")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def top_customers_route():
    limit = min(max(request.args.get("limit", default=10, type=int), 1), 100)
    customers = customer_service.top_customers(g.org_id, limit=limit)
    return ok([c.to_dict(include_premises=False) for c in customers])


@customers_bp.get("/analytics")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def customer_analytics_route():
    return ok(customer_service.customer_analytics(g.org_id))


@customers_bp.get("/due-refill")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def due_refill_route():
    """Query params: days (default 7). Overdue customers are included."""
    due = customer_service.due_for_refill(g.org_id, days=request.args.get("days", 7))
    return ok(due, count=len(due))


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def get_customer_route(customer_id: int):
    return ok(require_owned(Customer, customer_id, g.org_id, "Customer").to_dict())


@customers_bp.post("")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def create_customer_route():
    """Required: name, phone. Optional premises: [{name, street, city, pincode, ...}]"""
    customer = customer_service.create_customer(g.org_id, g.current_user.id, json_body())
    return ok(customer.to_dict(), message="Customer created", status=201)


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def update_customer_route(customer_id: int):
    customer = customer_service.update_customer(g.org_id, customer_id, g.current_user.id, json_body())
    return ok(customer.to_dict(), message="Customer updated")


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def delete_customer_route(customer_id: int):
    customer = customer_service.deactivate_customer(g.org_id, customer_id, g.current_user.id)
    return ok(customer.to_dict(), message="Customer deactivated")


# -- Premises --

@customers_bp.post("/<int:customer_id>/premises")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def add_premises_route(customer_id: int):
    premises = customer_service.add_premises(g.org_id, customer_id, g.current_user.id, json_body())
    return ok(premises.to_dict(), message="Premises added", status=201)


@customers_bp.put("/<int:customer_id>/premises/<int:premises_id>")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def update_premises_route(customer_id: int, premises_id: int):
    premises = customer_service.update_premises(
        g.org_id, customer_id, premises_id, g.current_user.id, json_body()
    )
    return ok(premises.to_dict(), message="Premises updated")


@customers_bp.delete("/<int:customer_id>/premises/<int:premises_id>")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMERS)
def remove_premises_route(customer_id: int, premises_id: int):
    """A customer keeps at least one premises; removing the primary promotes another."""
    customer = customer_service.remove_premises(g.org_id, customer_id, premises_id, g.current_user.id)
    return ok(customer.to_dict(), message="Premises removed")


# -- Credit and history --

@customers_bp.put("/<int:customer_id>/credit")
@require_auth
@require_permission(Capability.MANAGE_CUSTOMER_CREDIT)
def adjust_credit_route(customer_id: int):
    """Body: amount_cents, operation (add|subtract)"""
    data = json_body()
    customer = customer_service.adjust_credit(
        g.org_id,
        customer_id,
        g.current_user.id,
        amount_cents=data.get("amount_cents"),
        operation=data.get("operation", "add"),
    )
    return ok(customer.to_dict(), message="Credit updated")


@customers_bp.get("/<int:customer_id>/refill-history")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def refill_history_route(customer_id: int):
    entries = customer_service.refill_history(g.org_id, customer_id)
    return ok(entries, count=len(entries))


@customers_bp.get("/<int:customer_id>/consumption-pattern")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def consumption_pattern_route(customer_id: int):
    """Query params: months (default 12, max 24)"""
    return ok(customer_service.consumption_pattern(
        g.org_id, customer_id, months=request.args.get("months", customer_service.CONSUMPTION_WINDOW_MONTHS)
    ))
