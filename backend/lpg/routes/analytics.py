# backend/lpg/routes/analytics.py
"""
Business analytics API. Windows default to the last 30 days.
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok, datetime_arg
from ..services import reporting_service


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("/insights")
@require_auth
@require_permission(Capability.VIEW_SALES_REPORTS)
def insights_route():
    """Query params: start_date, end_date (ISO dates)"""
    data = reporting_service.insights(
        g.org_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
    )
    return ok(data)


@analytics_bp.get("/customer-lifetime-value")
@require_auth
@require_permission(Capability.VIEW_SALES_REPORTS)
def customer_lifetime_value_route():
    limit = min(max(request.args.get("limit", default=10, type=int), 1), 100)
    return ok(reporting_service.customer_lifetime_value(g.org_id, limit=limit))
