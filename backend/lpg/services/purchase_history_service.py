# Overview: One customer's purchases; listing, summary, preferences, trends and CSV export.

from __future__ import annotations

import csv
import io

from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationFailed
from ..models import Customer, Sale, SaleLine
from ..models.sales import PAYMENT_STATUSES, SALE_PAYMENT_METHODS, SALE_TYPES
from ..validation import require_int
from .tenant_service import require_owned, scoped
from lpg.time_utils import as_naive_utc, month_keys, month_start, to_utc_z, utcnow


EXPORT_COLUMNS = (
    "invoice_number",
    "date",
    "sale_type",
    "items",
    "total",
    "paid",
    "balance",
    "payment_method",
    "payment_status",
    "delivery_status",
)


def _customer(org_id: int, customer_id: int) -> Customer:
    return require_owned(Customer, customer_id, org_id, "Customer")


def list_purchases(org_id: int, customer_id: int, *, start=None, end=None, search: str | None = None):
    """Customer's sales, newest first. `search` matches invoice number or notes."""
    customer = _customer(org_id, customer_id)
    if start and end and start > end:
        raise ValidationFailed("start_date must be before end_date")

    query = scoped(Sale, org_id).filter(Sale.customer_id == customer.id)
    if start:
        query = query.filter(Sale.created_at >= start)
    if end:
        query = query.filter(Sale.created_at <= end)
    if search and search.strip():
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Sale.invoice_number.ilike(like), Sale.notes.ilike(like)))
    return query.order_by(Sale.created_at.desc(), Sale.id.desc())


def purchase_summary(org_id: int, customer_id: int) -> dict:
    customer = _customer(org_id, customer_id)
    in_scope = (Sale.org_id == org_id, Sale.customer_id == customer.id)

    orders, spent, paid, first, last = (
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.paid_amount_cents), 0),
            func.min(Sale.created_at),
            func.max(Sale.created_at),
        )
        .filter(*in_scope)
        .one()
    )
    items = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(*in_scope)
        .scalar()
    )

    def counts(column, keys):
        rows = dict(db.session.query(column, func.count(Sale.id)).filter(*in_scope).group_by(column).all())
        return {k: int(rows.get(k, 0)) for k in keys}

    orders = int(orders)
    spent = int(spent)
    first, last = as_naive_utc(first), as_naive_utc(last)
    lifespan_days = (last - first).days if orders else 0

    return {
        "customer_id": customer.id,
        "name": customer.name,
        "total_orders": orders,
        "total_spent_cents": spent,
        "total_paid_cents": int(paid),
        "outstanding_cents": spent - int(paid),
        "average_order_cents": spent // orders if orders else 0,
        "items_purchased": int(items),
        "first_purchase_at": to_utc_z(first),
        "last_purchase_at": to_utc_z(last),
        "lifespan_days": lifespan_days,
        # Mean gap between consecutive orders
        "purchase_frequency_days": lifespan_days // (orders - 1) if orders > 1 else None,
        "by_sale_type": counts(Sale.sale_type, SALE_TYPES),
        "by_payment_method": counts(Sale.payment_method, SALE_PAYMENT_METHODS),
        "by_payment_status": counts(Sale.payment_status, PAYMENT_STATUSES),
        "loyalty_points": customer.loyalty_points,
        "loyalty_tier": customer.loyalty_tier,
    }


def product_preferences(org_id: int, customer_id: int, *, limit: int = 5) -> dict:
    """Most bought products by quantity, plus the customer's usual payment method."""
    customer = _customer(org_id, customer_id)
    limit = require_int("limit", limit, minimum=1, maximum=50)

    rows = (
        db.session.query(
            SaleLine.product_id,
            SaleLine.product_name,
            SaleLine.product_type,
            SaleLine.cylinder_type,
            func.sum(SaleLine.quantity).label("quantity"),
            func.sum(SaleLine.line_total_cents),
            func.count(func.distinct(SaleLine.sale_id)),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(Sale.org_id == org_id, Sale.customer_id == customer.id)
        .group_by(SaleLine.product_id, SaleLine.product_name, SaleLine.product_type, SaleLine.cylinder_type)
        .order_by(func.sum(SaleLine.quantity).desc(), SaleLine.product_id.asc())
        .limit(limit)
        .all()
    )
    usual_method = (
        db.session.query(Sale.payment_method)
        .filter(Sale.org_id == org_id, Sale.customer_id == customer.id)
        .group_by(Sale.payment_method)
        .order_by(func.count(Sale.id).desc(), Sale.payment_method.asc())
        .limit(1)
        .scalar()
    )
    return {
        "customer_id": customer.id,
        "top_products": [
            {
                "product_id": product_id,
                "product_name": name,
                "product_type": product_type,
                "cylinder_type": cylinder_type,
                "quantity": int(quantity),
                "total_cents": int(total),
                "order_count": int(orders),
            }
            for product_id, name, product_type, cylinder_type, quantity, total, orders in rows
        ],
        "preferred_payment_method": usual_method,
    }


def purchase_trends(org_id: int, customer_id: int, *, months: int = 12) -> list[dict]:
    """Order count and spend per calendar month, oldest first, empty months included."""
    customer = _customer(org_id, customer_id)
    months = require_int("months", months, minimum=1, maximum=24)
    now = utcnow()

    buckets = {key: {"month": key, "order_count": 0, "total_cents": 0} for key in month_keys(now, months)}
    rows = (
        db.session.query(Sale.created_at, Sale.total_cents)
        .filter(
            Sale.org_id == org_id,
            Sale.customer_id == customer.id,
            Sale.created_at >= month_start(now, months - 1),
        )
        .all()
    )
    for created_at, total in rows:
        bucket = buckets.get(as_naive_utc(created_at).strftime("%Y-%m"))
        if bucket is None:
            continue
        bucket["order_count"] += 1
        bucket["total_cents"] += total
    return list(buckets.values())


def _rupees(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def export_csv(org_id: int, customer_id: int, *, start=None, end=None) -> str:
    sales = list_purchases(org_id, customer_id, start=start, end=end).all()

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(EXPORT_COLUMNS)
    for sale in sales:
        writer.writerow([
            sale.invoice_number,
            to_utc_z(sale.created_at),
            sale.sale_type,
            sum(line.quantity for line in sale.lines),
            _rupees(sale.total_cents),
            _rupees(sale.paid_amount_cents),
            _rupees(sale.total_cents - sale.paid_amount_cents),
            sale.payment_method,
            sale.payment_status,
            sale.delivery_status,
        ])
    return out.getvalue()
