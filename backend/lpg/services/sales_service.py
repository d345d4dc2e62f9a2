# Overview: Sale engine; atomic reservation, pricing, invoicing and customer update.

"""
Sale engine.

create_sale() runs as one transaction:

    1. lock and re-read each product, in submitted order
    2. pick the first N IN_STOCK cylinders of the capacity class (by serial)
    3. conditional counter update (filled_count >= q / stock >= q)
    4. compute totals (pricing.compute_totals)
    5. allocate the next per-day invoice number and persist the sale
    6. flip reserved cylinders to WITH_CUSTOMER (conditional on IN_STOCK)
    7. fold the sale into the customer's aggregates
    8. downstream rows (safety checklist, audit) and commit

Any error rolls everything back. Lost races (invoice collision, cylinder
already taken, stale row version, database lock) are retried by
run_with_retry() and surface as Conflict once attempts run out.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientInventory, RetryableConflict, ValidationFailed
from ..models import (
    AuditResource,
    Customer,
    Cylinder,
    Premises,
    Product,
    Sale,
    SaleLine,
    SaleLineCylinder,
    SalePayment,
)
from ..models.customers import DELIVERY_TIME_SLOTS
from ..models.sales import DELIVERY_STATUSES, DISCOUNT_TYPES, PAYMENT_METHODS, PAYMENT_STATUSES, SALE_TYPES
from ..validation import MAX_AMOUNT_CENTS, MAX_RATE_BPS, require_bool, require_choice, require_int, require_str
from . import audit_service, customer_service, cylinder_service, safety_service
from .concurrency import begin_write_transaction, run_with_retry
from .pricing import compute_totals, payment_status
from .tenant_service import require_owned, scoped
from lpg.time_utils import parse_iso_date, utcnow


INVOICE_PREFIX = "LPG"

DELIVERY_TRANSITIONS: dict[str, frozenset[str]] = {
    "NOT_REQUIRED": frozenset(),
    "PENDING": frozenset({"SCHEDULED", "CANCELLED"}),
    "SCHEDULED": frozenset({"IN_TRANSIT", "CANCELLED"}),
    "IN_TRANSIT": frozenset({"DELIVERED", "FAILED", "CANCELLED"}),
    "FAILED": frozenset({"SCHEDULED", "CANCELLED"}),
    "DELIVERED": frozenset(),
    "CANCELLED": frozenset(),
}

_SALE_FIELDS = {
    "items", "customer_id", "sale_type", "payment_method", "paid_amount_cents",
    "discount_type", "discount_rate_bps", "discount_cents", "tax_rate_bps",
    "delivery_required", "delivery_charges_cents", "delivery_premises_id", "delivery_address",
    "delivery_date", "delivery_time", "notes",
}


@dataclass
class LineRequest:
    position: int
    product_id: int
    quantity: int
    unit_price_cents: int | None


@dataclass
class SaleRequest:
    lines: list[LineRequest]
    customer_id: int | None = None
    sale_type: str = "NEW_SALE"
    payment_method: str = "CASH"
    paid_amount_cents: int = 0
    discount_type: str = "PERCENTAGE"
    discount_rate_bps: int = 0
    discount_cents: int = 0
    tax_rate_bps: int = 0
    delivery_required: bool = False
    delivery_charges_cents: int = 0
    delivery_premises_id: int | None = None
    delivery_address: str | None = None
    delivery_date: object = None
    delivery_time: str | None = None
    notes: str | None = None


@dataclass
class _Reservation:
    request: LineRequest
    product: Product
    unit_price_cents: int
    cylinders: list[Cylinder] = field(default_factory=list)


def parse_sale_request(payload: dict) -> SaleRequest:
    """Validate a sale payload. Nothing is read from or written to the database here."""
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    unknown = sorted(set(payload) - _SALE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Field not allowed: {unknown[0]}")

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationFailed("items must be a non-empty list")

    lines = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationFailed(f"items[{position - 1}] must be an object")
        price = item.get("unit_price_cents")
        lines.append(LineRequest(
            position=position,
            product_id=require_int(f"items[{position - 1}].product_id", item.get("product_id"), minimum=1),
            quantity=require_int(f"items[{position - 1}].quantity", item.get("quantity"), minimum=1, maximum=1000),
            unit_price_cents=None if price is None else require_int(
                f"items[{position - 1}].unit_price_cents", price, minimum=0, maximum=MAX_AMOUNT_CENTS
            ),
        ))

    customer_id = payload.get("customer_id")
    req = SaleRequest(
        lines=lines,
        customer_id=None if customer_id in (None, "") else require_int("customer_id", customer_id, minimum=1),
        sale_type=require_choice("sale_type", payload.get("sale_type") or "NEW_SALE", SALE_TYPES),
        payment_method=require_choice("payment_method", payload.get("payment_method") or "CASH", PAYMENT_METHODS),
        paid_amount_cents=require_int("paid_amount_cents", payload.get("paid_amount_cents"), minimum=0,
                                      maximum=MAX_AMOUNT_CENTS, default=0),
        discount_type=require_choice("discount_type", payload.get("discount_type") or "PERCENTAGE", DISCOUNT_TYPES),
        discount_rate_bps=require_int("discount_rate_bps", payload.get("discount_rate_bps"), minimum=0,
                                      maximum=MAX_RATE_BPS, default=0),
        discount_cents=require_int("discount_cents", payload.get("discount_cents"), minimum=0,
                                   maximum=MAX_AMOUNT_CENTS, default=0),
        tax_rate_bps=require_int("tax_rate_bps", payload.get("tax_rate_bps"), minimum=0,
                                 maximum=MAX_RATE_BPS, default=0),
        delivery_required=require_bool("delivery_required", payload.get("delivery_required")),
        delivery_charges_cents=require_int("delivery_charges_cents", payload.get("delivery_charges_cents"),
                                           minimum=0, maximum=MAX_AMOUNT_CENTS, default=0),
        notes=require_str("notes", payload.get("notes")),
    )

    if req.payment_method == "CREDIT" and req.customer_id is None:
        raise ValidationFailed("Credit sales require a registered customer")

    if req.delivery_required:
        premises_id = payload.get("delivery_premises_id")
        if premises_id not in (None, ""):
            req.delivery_premises_id = require_int("delivery_premises_id", premises_id, minimum=1)
        req.delivery_address = require_str("delivery_address", payload.get("delivery_address"), max_length=500)
        if req.delivery_premises_id is None and req.delivery_address is None and req.customer_id is None:
            raise ValidationFailed("Delivery requires an address or a customer premises")
        try:
            req.delivery_date = parse_iso_date(payload.get("delivery_date"))
        except ValueError:
            raise ValidationFailed("delivery_date must be an ISO-8601 date")
        if payload.get("delivery_time"):
            req.delivery_time = require_choice("delivery_time", payload["delivery_time"], DELIVERY_TIME_SLOTS)
    elif req.delivery_charges_cents:
        raise ValidationFailed("delivery_charges_cents requires delivery_required")

    return req


def next_invoice_number(org_id: int, when) -> str:
    """LPG<YYYYMMDD><NNN>: highest suffix issued for that org and day, plus one."""
    prefix = f"{INVOICE_PREFIX}{when:%Y%m%d}"
    last = (
        db.session.query(Sale.invoice_number)
        .filter(Sale.org_id == org_id, Sale.invoice_number.like(f"{prefix}%"))
        .order_by(func.length(Sale.invoice_number).desc(), Sale.invoice_number.desc())
        .first()
    )
    seq = int(last[0][len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:03d}"


def _reserve_line(org_id: int, line: LineRequest, taken_cylinder_ids: set[int]) -> _Reservation:
    product = require_owned(Product, line.product_id, org_id, "Product", lock=True)
    if not product.is_active:
        raise ValidationFailed(f"Product {product.name} is not active", details={"product_id": product.id})

    reservation = _Reservation(
        request=line,
        product=product,
        unit_price_cents=product.price_cents if line.unit_price_cents is None else line.unit_price_cents,
    )
    qty = line.quantity

    if product.is_cylinder:
        units = cylinder_service.find_reservable(
            org_id, product.cylinder_type, qty, exclude_ids=taken_cylinder_ids
        )
        if len(units) < qty:
            raise InsufficientInventory(
                f"Not enough {product.cylinder_type} cylinders in stock for {product.name}",
                product_id=product.id,
                product_name=product.name,
                requested=qty,
                available=len(units),
            )
        reservation.cylinders = units
        taken_cylinder_ids.update(c.id for c in units)

        updated = (
            db.session.query(Product)
            .filter(Product.id == product.id, Product.filled_count >= qty)
            .update(
                {
                    Product.filled_count: Product.filled_count - qty,
                    Product.sold_count: Product.sold_count + qty,
                },
                synchronize_session="fetch",
            )
        )
        if updated != 1:
            raise InsufficientInventory(
                f"Not enough filled cylinders for {product.name}",
                product_id=product.id,
                product_name=product.name,
                requested=qty,
                available=product.filled_count,
            )
    else:
        updated = (
            db.session.query(Product)
            .filter(Product.id == product.id, Product.stock >= qty)
            .update({Product.stock: Product.stock - qty}, synchronize_session="fetch")
        )
        if updated != 1:
            raise InsufficientInventory(
                f"Not enough stock for {product.name}",
                product_id=product.id,
                product_name=product.name,
                requested=qty,
                available=product.stock,
            )
    return reservation


def _resolve_delivery(org_id: int, req: SaleRequest, customer: Customer | None) -> tuple[int | None, str | None]:
    if not req.delivery_required:
        return None, None
    if req.delivery_premises_id is not None:
        premises = require_owned(Premises, req.delivery_premises_id, org_id, "Premises")
        if customer is None or premises.customer_id != customer.id or not premises.is_active:
            raise ValidationFailed("Delivery premises does not belong to the customer")
        return premises.id, req.delivery_address or premises.address_line()
    if req.delivery_address:
        return None, req.delivery_address
    premises = customer.primary_premises() if customer else None
    if premises is None:
        raise ValidationFailed("Customer has no primary premises for delivery")
    return premises.id, premises.address_line()


def create_sale(org_id: int, actor_user_id: int, payload: dict) -> Sale:
    """
    Create a sale atomically.

    Raises NotFound (unknown product/customer), InsufficientInventory,
    ValidationFailed or Conflict (retries exhausted).
    """
    req = parse_sale_request(payload)

    def _op():
        begin_write_transaction()
        now = utcnow()

        customer = None
        if req.customer_id is not None:
            customer = require_owned(Customer, req.customer_id, org_id, "Customer", lock=True)
            if not customer.is_active:
                raise ValidationFailed("Customer is not active", details={"customer_id": customer.id})
        premises_id, address = _resolve_delivery(org_id, req, customer)

        taken: set[int] = set()
        reservations = [_reserve_line(org_id, line, taken) for line in req.lines]

        totals = compute_totals(
            [(r.request.quantity, r.unit_price_cents) for r in reservations],
            discount_type=req.discount_type,
            discount_rate_bps=req.discount_rate_bps,
            discount_cents=req.discount_cents,
            tax_rate_bps=req.tax_rate_bps,
            delivery_charges_cents=req.delivery_charges_cents,
        )
        paid = req.paid_amount_cents

        sale = Sale(
            org_id=org_id,
            invoice_number=next_invoice_number(org_id, now),
            sale_type=req.sale_type,
            customer_id=customer.id if customer else None,
            created_by_user_id=actor_user_id,
            subtotal_cents=totals.subtotal_cents,
            discount_type=req.discount_type,
            discount_rate_bps=req.discount_rate_bps if req.discount_type == "PERCENTAGE" else 0,
            discount_cents=totals.discount_cents,
            tax_rate_bps=req.tax_rate_bps,
            tax_cents=totals.tax_cents,
            delivery_charges_cents=totals.delivery_charges_cents,
            total_cents=totals.total_cents,
            payment_method=req.payment_method,
            payment_status=payment_status(paid, totals.total_cents),
            paid_amount_cents=paid,
            delivery_required=req.delivery_required,
            delivery_status="PENDING" if req.delivery_required else "NOT_REQUIRED",
            delivery_premises_id=premises_id,
            delivery_address=address,
            delivery_date=req.delivery_date,
            delivery_time=req.delivery_time,
            notes=req.notes,
            created_at=now,
        )
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise RetryableConflict(f"Invoice {sale.invoice_number} already issued") from exc

        cylinder_quantity = 0
        for r in reservations:
            line = SaleLine(
                sale=sale,
                position=r.request.position,
                product_id=r.product.id,
                product_name=r.product.name,
                product_type=r.product.product_type,
                cylinder_type=r.product.cylinder_type,
                quantity=r.request.quantity,
                unit_price_cents=r.unit_price_cents,
                line_total_cents=r.request.quantity * r.unit_price_cents,
            )
            db.session.add(line)
            if r.product.is_cylinder:
                cylinder_quantity += r.request.quantity
            for cylinder in r.cylinders:
                cylinder_service.apply_transition(
                    cylinder,
                    "WITH_CUSTOMER",
                    actor_user_id=actor_user_id,
                    customer_id=customer.id if customer else None,
                    sale_id=sale.id,
                    note=f"Sold on {sale.invoice_number}",
                    action="SOLD",
                )
                line.cylinders.append(SaleLineCylinder(cylinder_id=cylinder.id, serial_number=cylinder.serial_number))

        if paid > 0:
            db.session.add(SalePayment(
                sale=sale,
                method=req.payment_method,
                amount_cents=paid,
                received_by_user_id=actor_user_id,
                received_at=now,
            ))

        if customer is not None:
            credit = max(totals.total_cents - paid, 0) if req.payment_method == "CREDIT" else 0
            customer_service.apply_sale_to_customer(
                customer,
                total_cents=totals.total_cents,
                cylinder_quantity=cylinder_quantity,
                credit_cents=credit,
            )
        db.session.flush()

        if req.sale_type == "NEW_CONNECTION" and customer is not None:
            safety_service.create_checklist(
                org_id, actor_user_id, sale=sale, checklist_type="new-connection", commit=False
            )

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="CREATE",
            resource=AuditResource.SALE,
            resource_id=sale.id,
            after=audit_service.snapshot(sale),
        )
        db.session.commit()

        current_app.logger.info(
            "Sale %s created org=%s total=%s lines=%d cylinders=%d",
            sale.invoice_number, org_id, sale.total_cents, len(reservations), cylinder_quantity,
        )
        return sale

    return run_with_retry(_op, label="create_sale")


def list_sales(
    org_id: int,
    *,
    start=None,
    end=None,
    customer_id: int | None = None,
    payment_status: str | None = None,
    delivery_status: str | None = None,
    sale_type: str | None = None,
):
    query = scoped(Sale, org_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_status:
        query = query.filter(Sale.payment_status == require_choice("payment_status", payment_status, PAYMENT_STATUSES))
    if delivery_status:
        query = query.filter(
            Sale.delivery_status == require_choice("delivery_status", delivery_status, DELIVERY_STATUSES)
        )
    if sale_type:
        query = query.filter(Sale.sale_type == require_choice("sale_type", sale_type, SALE_TYPES))
    return query.order_by(Sale.created_at.desc(), Sale.id.desc())


def get_sale(org_id: int, sale_id: int) -> Sale:
    return require_owned(Sale, sale_id, org_id, "Sale")


def sales_report(org_id: int, *, start=None, end=None) -> dict:
    def _filtered(q):
        q = q.filter(Sale.org_id == org_id)
        if start is not None:
            q = q.filter(Sale.created_at >= start)
        if end is not None:
            q = q.filter(Sale.created_at <= end)
        return q

    count, revenue, paid, discount, tax = _filtered(db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.paid_amount_cents), 0),
        func.coalesce(func.sum(Sale.discount_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
    )).one()

    def _grouped(column):
        rows = _filtered(db.session.query(
            column, func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0)
        )).group_by(column).all()
        return [{"key": key, "count": n, "total_cents": int(total)} for key, n, total in rows]

    count = int(count)
    revenue = int(revenue)
    return {
        "summary": {
            "total_sales": count,
            "total_revenue_cents": revenue,
            "total_paid_cents": int(paid),
            "outstanding_cents": max(revenue - int(paid), 0),
            "total_discount_cents": int(discount),
            "total_tax_cents": int(tax),
            "average_sale_cents": revenue // count if count else 0,
        },
        "by_payment_method": _grouped(Sale.payment_method),
        "by_payment_status": _grouped(Sale.payment_status),
        "by_sale_type": _grouped(Sale.sale_type),
    }


def add_payment(org_id: int, sale_id: int, actor_user_id: int | None, payload: dict) -> Sale:
    """
    Record a payment against an open balance.

    Paying down a CREDIT sale also releases the customer's outstanding credit.
    """
    payload = payload or {}
    amount = require_int("amount_cents", payload.get("amount_cents"), minimum=1, maximum=MAX_AMOUNT_CENTS)
    method = require_choice("method", payload.get("method") or "CASH", [m for m in PAYMENT_METHODS if m != "CREDIT"])
    reference = require_str("reference", payload.get("reference"), max_length=100)

    def _op():
        begin_write_transaction()
        sale = require_owned(Sale, sale_id, org_id, "Sale", lock=True)
        if amount > sale.balance_due_cents:
            raise ValidationFailed(
                "Payment exceeds balance due",
                details={"balance_due_cents": sale.balance_due_cents, "amount_cents": amount},
            )
        before = audit_service.snapshot(sale)
        was_credit = sale.payment_method == "CREDIT" or any(p.method == "CREDIT" for p in sale.payments)

        db.session.add(SalePayment(
            sale=sale,
            method=method,
            amount_cents=amount,
            reference=reference,
            received_by_user_id=actor_user_id,
            received_at=utcnow(),
        ))
        if sale.payment_method != method:
            sale.payment_method = "MIXED"
        sale.paid_amount_cents = sale.paid_amount_cents + amount
        sale.payment_status = payment_status(sale.paid_amount_cents, sale.total_cents)
        if was_credit and sale.customer_id is not None:
            customer_service.release_credit(sale.customer_id, amount)
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.SALE,
            resource_id=sale.id,
            before=before,
            after=audit_service.snapshot(sale),
            note=f"payment {method} {amount}",
        )
        db.session.commit()
        return sale

    return run_with_retry(_op, label="add_payment")


def set_delivery_status(sale: Sale, to_status: str, *, notes: str | None = None) -> None:
    """Apply one delivery transition in the caller's transaction."""
    if to_status not in DELIVERY_TRANSITIONS.get(sale.delivery_status, frozenset()):
        raise ValidationFailed(
            f"Cannot change delivery status from {sale.delivery_status} to {to_status}",
            details={"invoice_number": sale.invoice_number, "from": sale.delivery_status, "to": to_status},
        )
    sale.delivery_status = to_status
    if to_status == "DELIVERED":
        sale.delivered_at = utcnow()
    if notes:
        sale.delivery_notes = notes


def update_delivery_status(org_id: int, sale_id: int, actor_user_id: int | None, *,
                           status: str, notes: str | None = None) -> Sale:
    to_status = require_choice("status", status, DELIVERY_STATUSES)
    notes = require_str("notes", notes, max_length=500)

    def _op():
        begin_write_transaction()
        sale = require_owned(Sale, sale_id, org_id, "Sale", lock=True)
        before = audit_service.snapshot(sale)
        set_delivery_status(sale, to_status, notes=notes)
        db.session.flush()
        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="STATUS_CHANGE",
            resource=AuditResource.SALE,
            resource_id=sale.id,
            before=before,
            after=audit_service.snapshot(sale),
            note=notes,
        )
        db.session.commit()
        return sale

    return run_with_retry(_op, label="delivery_status")
