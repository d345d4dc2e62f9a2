# backend/lpg/routes/sales.py
"""
Sales API.

POST /api/sales is the atomic sale: line validation, cylinder unit
reservation, counter updates, invoice numbering, payment, customer
aggregates and the audit entry commit together or not at all.
"""

from flask import Blueprint, g, request, current_app

from ..decorators import require_auth, require_permission
from ..permissions import Capability
from ..responses import ok, ok_page, page_args, paginate, json_body, datetime_arg
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_permission(Capability.CREATE_SALE)
def create_sale_route():
    """
    Body:
    - items: [{product_id, quantity, unit_price_cents?}]
    - customer_id? (required for CREDIT)
    - sale_type: NEW_SALE|REFILL|EXCHANGE|ACCESSORY_ONLY|NEW_CONNECTION (default NEW_SALE)
    - payment_method: CASH|CARD|UPI|BANK_TRANSFER|CREDIT
    - paid_amount_cents, discount_type (PERCENTAGE|FIXED), discount_rate_bps, discount_cents
    - tax_rate_bps, notes?
    - delivery_required, delivery_charges_cents, delivery_premises_id?, delivery_address?,
      delivery_date?, delivery_time?

    Returns:
    - 201: created sale with lines and reserved serial numbers
    - 400: validation failure
    - 404: product or customer not in this organization
    - 409: insufficient stock or a conflict that survived retries
    """
    sale = sales_service.create_sale(g.org_id, g.current_user.id, json_body())
    return ok(sale.to_dict(), message="Sale created", status=201)


@sales_bp.get("")
@require_auth
@require_permission(Capability.VIEW_SALES)
def list_sales_route():
    """
    Query params: start_date, end_date (ISO dates), customer_id, payment_status,
    delivery_status, sale_type, page, limit
    """
    page, limit = page_args()
    query = sales_service.list_sales(
        g.org_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
        customer_id=request.args.get("customer_id", type=int),
        payment_status=request.args.get("payment_status"),
        delivery_status=request.args.get("delivery_status"),
        sale_type=request.args.get("sale_type"),
    )
    return ok_page(paginate(query, page=page, limit=limit, serialize=lambda s: s.to_dict(include_lines=False)))


@sales_bp.get("/report")
@require_auth
@require_permission(Capability.VIEW_SALES_REPORTS)
def sales_report_route():
    report = sales_service.sales_report(
        g.org_id,
        start=datetime_arg("start_date"),
        end=datetime_arg("end_date", end_of_day=True),
    )
    return ok(report)


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission(Capability.VIEW_SALES)
def get_sale_route(sale_id: int):
    return ok(sales_service.get_sale(g.org_id, sale_id).to_dict())


@sales_bp.post("/<int:sale_id>/payments")
@require_auth
@require_permission(Capability.UPDATE_SALE_STATUS)
def add_payment_route(sale_id: int):
    """Body: amount_cents, method (not CREDIT), reference?"""
    sale = sales_service.add_payment(g.org_id, sale_id, g.current_user.id, json_body())
    current_app.logger.info("Payment recorded on %s, balance %s", sale.invoice_number, sale.balance_due_cents)
    return ok(sale.to_dict(), message="Payment recorded", status=201)


@sales_bp.put("/<int:sale_id>/delivery-status")
@require_auth
@require_permission(Capability.UPDATE_SALE_STATUS)
def delivery_status_route(sale_id: int):
    """Body: status, notes?"""
    data = json_body()
    sale = sales_service.update_delivery_status(
        g.org_id, sale_id, g.current_user.id, status=data.get("status"), notes=data.get("notes")
    )
    return ok(sale.to_dict(), message="Delivery status updated")
