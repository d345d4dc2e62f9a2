# backend/lpg/routes/purchase_history.py
"""
Purchase history API: one customer's sales with summary, preferences,
monthly trends and a CSV export.
"""

from flask import Blueprint, Response, g, request

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, datetime_arg
from ..services import purchase_history_service


purchase_history_bp = Blueprint("purchase_history", __name__, url_prefix="/api/purchase-history")


@purchase_history_bp.get("/<int:customer_id>")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def list_purchases_route(customer_id: int):
    """Query params: start_date, end_date, search (invoice number or notes), page, limit"""
    page, limit = page_args()
    query = purchase_history_service.list_purchases(
        g.org_id,
        customer_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
        search=request.args.get("search"),
    )
    return ok_page(paginate(query, page=page, limit=limit))


@purchase_history_bp.get("/<int:customer_id>/summary")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def summary_route(customer_id: int):
    return ok(purchase_history_service.purchase_summary(g.org_id, customer_id))


@purchase_history_bp.get("/<int:customer_id>/preferences")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def preferences_route(customer_id: int):
    return ok(purchase_history_service.product_preferences(
        g.org_id, customer_id, limit=request.args.get("limit", 5)
    ))


@purchase_history_bp.get("/<int:customer_id>/trends")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def trends_route(customer_id: int):
    """Query params: months (default 12, max 24)"""
    trends = purchase_history_service.purchase_trends(
        g.org_id, customer_id, months=request.args.get("months", 12)
    )
    return ok(trends, count=len(trends))


@purchase_history_bp.get("/<int:customer_id>/export")
@require_auth
@require_permission(Capability.VIEW_CUSTOMERS)
def export_route(customer_id: int):
    """CSV of the customer's sales. Query params: start_date, end_date"""
    body = purchase_history_service.export_csv(
        g.org_id,
        customer_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
    )
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=purchase-history-{customer_id}.csv"},
    )
