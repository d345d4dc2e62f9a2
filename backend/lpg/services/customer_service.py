# Overview: Customer store; profiles, premises, credit and sale-driven aggregates.

"""
Customer store.

Aggregates (loyalty_points, total_spent_cents, total_refills,
current_credit_cents) only change through single UPDATE statements of the
form `col = col + delta`, so concurrent sales for the same customer never
lose an increment. Credit increments carry the limit in their WHERE clause.
"""

from __future__ import annotations

import re
from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..errors import Conflict, ValidationFailed
from ..models import AuditResource, Customer, Premises, Sale, SaleLine
from ..models.catalog import CAPACITY_GRAMS
from ..models.customers import CUSTOMER_TYPES, DELIVERY_TIME_SLOTS, LOYALTY_TIERS, PREMISES_TYPES, tier_bounds
from ..validation import ModelValidationPolicy, enforce_money_fields, require_choice, require_int, validate_payload
from . import audit_service
from .concurrency import begin_write_transaction, run_with_retry
from .pricing import loyalty_points_for
from .tenant_service import require_owned, scoped
from lpg.time_utils import as_naive_utc, month_keys, month_start, to_iso_date, to_utc_z, utcnow


PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")
PINCODE_PATTERN = re.compile(r"^\d{6}$")

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "phone", "alternate_phone", "customer_type", "business_name", "gst_number",
        "credit_limit_cents", "preferred_delivery_time", "delivery_instructions",
        "safety_training_completed", "notes", "is_active",
    },
    required_on_create={"name", "phone"},
)

PREMISES_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "premises_type", "street", "city", "state", "pincode", "landmark",
        "cylinder_capacity", "delivery_instructions", "is_primary",
    },
    required_on_create={"name", "street", "city", "pincode"},
)


def _normalize_customer_patch(patch: dict) -> dict:
    for key in ("phone", "alternate_phone"):
        if patch.get(key):
            phone = re.sub(r"[\s-]", "", patch[key])
            if not PHONE_PATTERN.match(phone):
                raise ValidationFailed(f"{key} must be 10-15 digits")
            patch[key] = phone
    if "customer_type" in patch:
        patch["customer_type"] = require_choice("customer_type", patch["customer_type"], CUSTOMER_TYPES)
    if "preferred_delivery_time" in patch:
        patch["preferred_delivery_time"] = require_choice(
            "preferred_delivery_time", patch["preferred_delivery_time"], DELIVERY_TIME_SLOTS
        )
    if patch.get("email"):
        patch["email"] = patch["email"].lower()
    enforce_money_fields(patch, "credit_limit_cents")
    return patch


def _normalize_premises_patch(patch: dict) -> dict:
    if "premises_type" in patch:
        patch["premises_type"] = require_choice("premises_type", patch["premises_type"], PREMISES_TYPES)
    if "pincode" in patch and not PINCODE_PATTERN.match(patch["pincode"] or ""):
        raise ValidationFailed("pincode must be 6 digits")
    if patch.get("cylinder_capacity") is not None and patch["cylinder_capacity"] < 1:
        raise ValidationFailed("cylinder_capacity must be >= 1")
    return patch


def _check_phone_unique(org_id: int, phone: str, exclude_id: int | None = None) -> None:
    query = scoped(Customer, org_id).filter(Customer.phone == phone)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise Conflict("Customer with this phone already exists", details={"phone": phone})


def list_customers(
    org_id: int,
    *,
    search: str | None = None,
    customer_type: str | None = None,
    loyalty_tier: str | None = None,
    is_active: bool | None = True,
):
    query = scoped(Customer, org_id)
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))
    if customer_type:
        query = query.filter(Customer.customer_type == require_choice("customer_type", customer_type, CUSTOMER_TYPES))
    if loyalty_tier:
        tier = require_choice("loyalty_tier", loyalty_tier, [name for _, name in LOYALTY_TIERS])
        lower, upper = tier_bounds(tier)
        query = query.filter(Customer.loyalty_points >= lower)
        if upper is not None:
            query = query.filter(Customer.loyalty_points < upper)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Customer.name.ilike(like),
            Customer.phone.ilike(like),
            Customer.email.ilike(like),
            Customer.business_name.ilike(like),
        ))
    return query.order_by(Customer.name.asc(), Customer.id.asc())


def create_customer(org_id: int, actor_user_id: int | None, payload: dict) -> Customer:
    """
    Create a customer, optionally with premises (`premises: [...]`).
    The first premises becomes primary.
    """
    payload = dict(payload or {})
    premises_payloads = payload.pop("premises", None) or []
    if not isinstance(premises_payloads, list):
        raise ValidationFailed("premises must be a list")

    patch = _normalize_customer_patch(
        validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    )
    _check_phone_unique(org_id, patch["phone"])

    customer = Customer(org_id=org_id, **patch)
    db.session.add(customer)
    db.session.flush()

    for index, raw in enumerate(premises_payloads):
        p = _normalize_premises_patch(
            validate_payload(model=Premises, payload=raw, policy=PREMISES_POLICY, partial=False)
        )
        p["is_primary"] = index == 0
        db.session.add(Premises(org_id=org_id, customer=customer, **p))
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.CUSTOMER,
        resource_id=customer.id,
        after=audit_service.snapshot(customer),
    )
    db.session.commit()
    return customer


def update_customer(org_id: int, customer_id: int, actor_user_id: int | None, payload: dict) -> Customer:
    """
    Partial profile update.

    A new credit limit is written with a conditional UPDATE
    (`WHERE current_credit_cents <= :limit`) so it can never drop below
    credit taken by a sale committed in the meantime.
    """
    require_owned(Customer, customer_id, org_id, "Customer")
    patch = _normalize_customer_patch(
        validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    )
    new_limit = patch.pop("credit_limit_cents", None)

    def _op():
        begin_write_transaction()
        customer = require_owned(Customer, customer_id, org_id, "Customer", lock=True)
        if "phone" in patch and patch["phone"] != customer.phone:
            _check_phone_unique(org_id, patch["phone"], exclude_id=customer.id)

        before = audit_service.snapshot(customer)
        if new_limit is not None:
            updated = (
                db.session.query(Customer)
                .filter(Customer.id == customer.id, Customer.current_credit_cents <= new_limit)
                .update({Customer.credit_limit_cents: new_limit}, synchronize_session="fetch")
            )
            if updated != 1:
                db.session.refresh(customer)
                raise ValidationFailed(
                    "credit_limit_cents cannot be below current outstanding credit",
                    details={"current_credit_cents": customer.current_credit_cents},
                )
        for key, value in patch.items():
            setattr(customer, key, value)
        db.session.flush()

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.CUSTOMER,
            resource_id=customer.id,
            before=before,
            after=audit_service.snapshot(customer),
        )
        db.session.commit()
        return customer

    return run_with_retry(_op, label="update_customer")


def deactivate_customer(org_id: int, customer_id: int, actor_user_id: int | None) -> Customer:
    customer = require_owned(Customer, customer_id, org_id, "Customer")
    before = audit_service.snapshot(customer)
    customer.is_active = False
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="DELETE",
        resource=AuditResource.CUSTOMER,
        resource_id=customer.id,
        before=before,
        after=audit_service.snapshot(customer),
    )
    db.session.commit()
    return customer


# -- Premises --

def _active_premises(customer: Customer) -> list[Premises]:
    return [p for p in customer.premises if p.is_active]


def _make_primary(customer: Customer, premises: Premises) -> None:
    for p in customer.premises:
        p.is_primary = p.id == premises.id


def add_premises(org_id: int, customer_id: int, actor_user_id: int | None, payload: dict) -> Premises:
    customer = require_owned(Customer, customer_id, org_id, "Customer")
    patch = _normalize_premises_patch(
        validate_payload(model=Premises, payload=payload, policy=PREMISES_POLICY, partial=False)
    )
    want_primary = patch.pop("is_primary", False)

    premises = Premises(org_id=org_id, customer=customer, **patch)
    db.session.add(premises)
    db.session.flush()

    if want_primary or len(_active_premises(customer)) == 1:
        _make_primary(customer, premises)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.PREMISES,
        resource_id=premises.id,
        after=audit_service.snapshot(premises),
    )
    db.session.commit()
    return premises


def _require_premises(org_id: int, customer_id: int, premises_id: int) -> tuple[Customer, Premises]:
    customer = require_owned(Customer, customer_id, org_id, "Customer")
    premises = require_owned(Premises, premises_id, org_id, "Premises")
    if premises.customer_id != customer.id or not premises.is_active:
        raise ValidationFailed("Premises does not belong to this customer")
    return customer, premises


def update_premises(org_id: int, customer_id: int, premises_id: int, actor_user_id: int | None,
                    payload: dict) -> Premises:
    customer, premises = _require_premises(org_id, customer_id, premises_id)
    patch = _normalize_premises_patch(
        validate_payload(model=Premises, payload=payload, policy=PREMISES_POLICY, partial=True)
    )
    want_primary = patch.pop("is_primary", None)
    if want_primary is False and premises.is_primary:
        raise ValidationFailed("Mark another premises as primary instead")

    before = audit_service.snapshot(premises)
    for key, value in patch.items():
        setattr(premises, key, value)
    if want_primary:
        _make_primary(customer, premises)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.PREMISES,
        resource_id=premises.id,
        before=before,
        after=audit_service.snapshot(premises),
    )
    db.session.commit()
    return premises


def remove_premises(org_id: int, customer_id: int, premises_id: int, actor_user_id: int | None) -> Customer:
    """Soft-remove a premises. The only premises cannot be removed; removing the primary promotes another."""
    customer, premises = _require_premises(org_id, customer_id, premises_id)
    active = _active_premises(customer)
    if len(active) <= 1:
        raise ValidationFailed("Customer must have at least one premises")

    before = audit_service.snapshot(premises)
    premises.is_active = False
    if premises.is_primary:
        premises.is_primary = False
        successor = next(p for p in active if p.id != premises.id)
        successor.is_primary = True
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="DELETE",
        resource=AuditResource.PREMISES,
        resource_id=premises.id,
        before=before,
        after=audit_service.snapshot(premises),
    )
    db.session.commit()
    return customer


# -- Credit and aggregates --

def _increment_credit(customer_id: int, amount_cents: int) -> bool:
    """current_credit += amount, only if it stays within the limit."""
    updated = (
        db.session.query(Customer)
        .filter(
            Customer.id == customer_id,
            Customer.current_credit_cents + amount_cents <= Customer.credit_limit_cents,
        )
        .update(
            {Customer.current_credit_cents: Customer.current_credit_cents + amount_cents},
            synchronize_session="fetch",
        )
    )
    return updated == 1


def release_credit(customer_id: int, amount_cents: int) -> None:
    """current_credit -= amount, floored at zero."""
    db.session.query(Customer).filter(Customer.id == customer_id).update(
        {
            Customer.current_credit_cents: db.case(
                (Customer.current_credit_cents > amount_cents, Customer.current_credit_cents - amount_cents),
                else_=0,
            )
        },
        synchronize_session="fetch",
    )


def adjust_credit(org_id: int, customer_id: int, actor_user_id: int | None, *, amount_cents,
                  operation: str = "add") -> Customer:
    """
    add: fails if the new balance would exceed the credit limit.
    subtract: floors at zero.
    """
    amount = require_int("amount_cents", amount_cents, minimum=1)
    enforce_money_fields({"amount_cents": amount}, "amount_cents")
    operation = require_choice("operation", operation, ("add", "subtract"), upper=False)

    def _op():
        begin_write_transaction()
        customer = require_owned(Customer, customer_id, org_id, "Customer", lock=True)
        before = audit_service.snapshot(customer)

        if operation == "add":
            if not _increment_credit(customer.id, amount):
                raise ValidationFailed(
                    "Credit limit exceeded",
                    details={
                        "credit_limit_cents": customer.credit_limit_cents,
                        "current_credit_cents": customer.current_credit_cents,
                        "requested_cents": amount,
                    },
                )
        else:
            release_credit(customer.id, amount)

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.CUSTOMER,
            resource_id=customer.id,
            before=before,
            after=audit_service.snapshot(customer),
            note=f"credit {operation} {amount}",
        )
        db.session.commit()
        return customer

    return run_with_retry(_op, label="adjust_credit")


def apply_sale_to_customer(
    customer: Customer,
    *,
    total_cents: int,
    cylinder_quantity: int,
    credit_cents: int = 0,
) -> None:
    """
    Fold a sale into the customer's aggregates inside the sale's transaction.

    credit_cents > 0 books the unpaid remainder of a CREDIT sale against
    the customer's limit and raises ValidationFailed if it does not fit.
    """
    db.session.query(Customer).filter(Customer.id == customer.id).update(
        {
            Customer.loyalty_points: Customer.loyalty_points + loyalty_points_for(total_cents),
            Customer.total_spent_cents: Customer.total_spent_cents + total_cents,
            Customer.total_refills: Customer.total_refills + cylinder_quantity,
            Customer.last_purchase_at: utcnow(),
        },
        synchronize_session="fetch",
    )
    if credit_cents > 0 and not _increment_credit(customer.id, credit_cents):
        raise ValidationFailed(
            "Credit limit exceeded",
            details={
                "credit_limit_cents": customer.credit_limit_cents,
                "current_credit_cents": customer.current_credit_cents,
                "requested_cents": credit_cents,
            },
        )


# -- Reads --

def refill_history(org_id: int, customer_id: int) -> list[dict]:
    """Cylinder line items bought by a customer, newest sale first."""
    customer = require_owned(Customer, customer_id, org_id, "Customer")
    rows = (
        db.session.query(Sale, SaleLine)
        .join(SaleLine, SaleLine.sale_id == Sale.id)
        .filter(
            Sale.org_id == org_id,
            Sale.customer_id == customer.id,
            SaleLine.product_type == "CYLINDER",
        )
        .order_by(Sale.created_at.desc(), Sale.id.desc(), SaleLine.position.asc())
        .all()
    )
    return [
        {
            "sale_id": sale.id,
            "invoice_number": sale.invoice_number,
            "sale_type": sale.sale_type,
            "date": sale.to_dict(include_lines=False)["created_at"],
            "product_id": line.product_id,
            "product_name": line.product_name,
            "cylinder_type": line.cylinder_type,
            "quantity": line.quantity,
            "serial_numbers": line.serial_numbers,
            "line_total_cents": line.line_total_cents,
        }
        for sale, line in rows
    ]


def top_customers(org_id: int, limit: int = 10) -> list[Customer]:
    return (
        scoped(Customer, org_id)
        .filter(Customer.is_active.is_(True))
        .order_by(Customer.total_spent_cents.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )


def customer_analytics(org_id: int) -> dict:
    totals = (
        db.session.query(
            func.count(Customer.id),
            func.coalesce(func.sum(Customer.total_spent_cents), 0),
            func.coalesce(func.sum(Customer.current_credit_cents), 0),
            func.coalesce(func.sum(Customer.loyalty_points), 0),
        )
        .filter(Customer.org_id == org_id, Customer.is_active.is_(True))
        .one()
    )
    by_type = dict(
        db.session.query(Customer.customer_type, func.count(Customer.id))
        .filter(Customer.org_id == org_id, Customer.is_active.is_(True))
        .group_by(Customer.customer_type)
        .all()
    )

    by_tier = {name: 0 for _, name in LOYALTY_TIERS}
    for (points,) in (
        db.session.query(Customer.loyalty_points)
        .filter(Customer.org_id == org_id, Customer.is_active.is_(True))
        .all()
    ):
        for threshold, name in LOYALTY_TIERS:
            if points >= threshold:
                by_tier[name] += 1
                break

    count = int(totals[0])
    total_spent = int(totals[1])
    return {
        "total_customers": count,
        "total_spent_cents": total_spent,
        "average_spent_cents": total_spent // count if count else 0,
        "outstanding_credit_cents": int(totals[2]),
        "total_loyalty_points": int(totals[3]),
        "by_type": {t: by_type.get(t, 0) for t in CUSTOMER_TYPES},
        "by_tier": by_tier,
    }


# -- Gas consumption and refill prediction --

CONSUMPTION_WINDOW_MONTHS = 12


def _cylinder_lines(org_id: int, since, customer_ids=None):
    query = (
        db.session.query(Sale.customer_id, Sale.id, Sale.created_at, SaleLine.cylinder_type,
                         SaleLine.quantity, SaleLine.line_total_cents)
        .join(SaleLine, SaleLine.sale_id == Sale.id)
        .filter(
            Sale.org_id == org_id,
            Sale.customer_id.isnot(None),
            Sale.created_at >= since,
            SaleLine.product_type == "CYLINDER",
        )
    )
    if customer_ids is not None:
        query = query.filter(Sale.customer_id.in_(customer_ids))
    return query.order_by(Sale.created_at.asc(), Sale.id.asc()).all()


def _consumption_profile(customer: Customer, lines, *, now, months: int) -> dict:
    """
    Monthly gas bought plus a refill forecast.

    The average is taken over the months the customer has existed within the
    window (at least one). The next refill is expected once the gas bought
    in the last refill has been used at that average rate.
    """
    buckets = {key: {"month": key, "weight_grams": 0, "refills": 0, "amount_cents": 0}
               for key in month_keys(now, months)}
    last_sale_id = None
    last_at = None
    weight_by_sale: dict[int, int] = {}

    for _, sale_id, created_at, cylinder_type, quantity, amount in lines:
        created_at = as_naive_utc(created_at)
        grams = CAPACITY_GRAMS.get(cylinder_type, 0) * quantity
        bucket = buckets.get(created_at.strftime("%Y-%m"))
        if bucket is not None:
            bucket["weight_grams"] += grams
            bucket["refills"] += quantity
            bucket["amount_cents"] += amount
        weight_by_sale[sale_id] = weight_by_sale.get(sale_id, 0) + grams
        last_sale_id, last_at = sale_id, created_at

    total_grams = sum(b["weight_grams"] for b in buckets.values())
    age_days = max((now - (as_naive_utc(customer.created_at) or now)).days, 0)
    months_observed = min(months, max(1, -(-age_days // 30)))
    average = total_grams // months_observed

    next_refill = None
    days_until = None
    last_weight = weight_by_sale.get(last_sale_id, 0)
    if last_at is not None and average > 0 and last_weight > 0:
        next_refill = last_at.date() + timedelta(days=-(-30 * last_weight // average))
        days_until = (next_refill - now.date()).days

    return {
        "customer_id": customer.id,
        "monthly": list(buckets.values()),
        "total_weight_grams": total_grams,
        "average_monthly_grams": average,
        "last_refill_at": to_utc_z(last_at),
        "last_refill_grams": last_weight,
        "next_expected_refill": to_iso_date(next_refill),
        "days_until_refill": days_until,
    }


def consumption_pattern(org_id: int, customer_id: int, *, months: int = CONSUMPTION_WINDOW_MONTHS) -> dict:
    customer = require_owned(Customer, customer_id, org_id, "Customer")
    months = require_int("months", months, minimum=1, maximum=24)
    now = utcnow()
    lines = _cylinder_lines(org_id, month_start(now, months - 1), customer_ids=[customer.id])
    return _consumption_profile(customer, lines, now=now, months=months)


def due_for_refill(org_id: int, *, days: int = 7) -> list[dict]:
    """Active customers whose next refill is expected within `days` (overdue included), soonest first."""
    days = require_int("days", days, minimum=0, maximum=365)
    now = utcnow()
    months = CONSUMPTION_WINDOW_MONTHS

    by_customer: dict[int, list] = {}
    for row in _cylinder_lines(org_id, month_start(now, months - 1)):
        by_customer.setdefault(row[0], []).append(row)
    if not by_customer:
        return []

    customers = (
        scoped(Customer, org_id)
        .filter(Customer.id.in_(list(by_customer)), Customer.is_active.is_(True))
        .all()
    )
    due = []
    for customer in customers:
        profile = _consumption_profile(customer, by_customer[customer.id], now=now, months=months)
        if profile["days_until_refill"] is None or profile["days_until_refill"] > days:
            continue
        del profile["monthly"]
        profile.update(name=customer.name, phone=customer.phone)
        due.append(profile)
    due.sort(key=lambda p: (p["days_until_refill"], p["customer_id"]))
    return due
