# Overview: Read-only business analytics over sales, customers and cylinders.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationFailed
from ..models import Customer, Cylinder, Sale, SaleLine
from lpg.time_utils import to_utc_z, utcnow


DEFAULT_WINDOW_DAYS = 30


def resolve_window(start=None, end=None):
    """Default to the last 30 days ending now."""
    end = end or utcnow()
    start = start or (end - timedelta(days=DEFAULT_WINDOW_DAYS))
    if start > end:
        raise ValidationFailed("start_date must be before end_date")
    return start, end


def insights(org_id: int, *, start=None, end=None) -> dict:
    start, end = resolve_window(start, end)
    in_window = (Sale.org_id == org_id, Sale.created_at >= start, Sale.created_at <= end)

    count, revenue = (
        db.session.query(func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(*in_window)
        .one()
    )
    count, revenue = int(count), int(revenue)

    day = func.date(Sale.created_at)
    daily = [
        {"date": str(d), "sales": int(n), "revenue_cents": int(total)}
        for d, n, total in (
            db.session.query(day, func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0))
            .filter(*in_window)
            .group_by(day)
            .order_by(day)
            .all()
        )
    ]

    top_products = [
        {"product_id": pid, "product_name": name, "quantity": int(q), "revenue_cents": int(total)}
        for pid, name, q, total in (
            db.session.query(
                SaleLine.product_id,
                SaleLine.product_name,
                func.sum(SaleLine.quantity),
                func.sum(SaleLine.line_total_cents).label("revenue"),
            )
            .join(Sale, Sale.id == SaleLine.sale_id)
            .filter(*in_window)
            .group_by(SaleLine.product_id, SaleLine.product_name)
            .order_by(func.sum(SaleLine.line_total_cents).desc(), SaleLine.product_id.asc())
            .limit(5)
            .all()
        )
    ]

    customers_by_type = dict(
        db.session.query(Customer.customer_type, func.count(Customer.id))
        .filter(Customer.org_id == org_id, Customer.is_active.is_(True))
        .group_by(Customer.customer_type)
        .all()
    )
    cylinders_by_status = dict(
        db.session.query(Cylinder.status, func.count(Cylinder.id))
        .filter(Cylinder.org_id == org_id)
        .group_by(Cylinder.status)
        .all()
    )

    return {
        "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
        "sales": {
            "count": count,
            "revenue_cents": revenue,
            "average_cents": revenue // count if count else 0,
        },
        "daily_trend": daily,
        "top_products": top_products,
        "customers_by_type": customers_by_type,
        "cylinders_by_status": cylinders_by_status,
    }


def customer_lifetime_value(org_id: int, *, limit: int = 10) -> list[dict]:
    rows = (
        db.session.query(
            Customer,
            func.count(Sale.id),
            func.min(Sale.created_at),
            func.max(Sale.created_at),
        )
        .join(Sale, Sale.customer_id == Customer.id)
        .filter(Customer.org_id == org_id, Sale.org_id == org_id)
        .group_by(Customer.id)
        .order_by(Customer.total_spent_cents.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )
    result = []
    for customer, orders, first, last in rows:
        lifespan_days = (last - first).days if first and last else 0
        result.append({
            "customer_id": customer.id,
            "name": customer.name,
            "customer_type": customer.customer_type,
            "loyalty_tier": customer.loyalty_tier,
            "total_spent_cents": customer.total_spent_cents,
            "order_count": int(orders),
            "average_order_cents": customer.total_spent_cents // orders if orders else 0,
            "first_purchase_at": to_utc_z(first),
            "last_purchase_at": to_utc_z(last),
            "lifespan_days": lifespan_days,
        })
    return result
