# backend/lpg/services/catalog_service.py
"""
Catalog service: products and brands, tenant-scoped.

Counter mutations (restock, exchange) are conditional UPDATEs so that
`stock`, `empty_count`, `filled_count` and `sold_count` never go negative
even under concurrent writers.
"""
from __future__ import annotations

import re

from sqlalchemy import func

from ..extensions import db
from ..errors import Conflict, InsufficientInventory, ValidationFailed
from ..models import AuditResource, Brand, Cylinder, Product
from ..models.catalog import CYLINDER_CAPACITIES, PRODUCT_CATEGORIES, PRODUCT_TYPES, UNITS
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    require_choice,
    require_int,
    validate_payload,
)
from . import audit_service
from .concurrency import begin_write_transaction, run_with_retry
from .tenant_service import require_owned, scoped


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "brand", "brand_id", "category", "product_type", "cylinder_type", "pressure_rating",
        "unit", "sku", "barcode", "description", "stock", "empty_count", "filled_count", "sold_count",
        "min_stock", "max_stock", "price_cents", "cost_price_cents", "deposit_cents", "is_active",
    },
    required_on_create={"name", "category", "price_cents"},
)

BRAND_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "contact_phone", "is_active"},
    required_on_create={"name"},
)

CYLINDER_STATES = ("empty", "filled", "sold")
_STATE_COLUMNS = {
    "empty": Product.empty_count,
    "filled": Product.filled_count,
    "sold": Product.sold_count,
}


def _normalize_product_patch(org_id: int, patch: dict) -> dict:
    if "category" in patch:
        if patch["category"] not in PRODUCT_CATEGORIES:
            raise ValidationFailed(f"category must be one of: {', '.join(PRODUCT_CATEGORIES)}")
    if "product_type" in patch:
        patch["product_type"] = require_choice("product_type", patch["product_type"], PRODUCT_TYPES)
    if patch.get("cylinder_type") is not None:
        patch["cylinder_type"] = require_choice(
            "cylinder_type", patch["cylinder_type"], CYLINDER_CAPACITIES, upper=False
        )
    if "unit" in patch and patch["unit"] not in UNITS:
        raise ValidationFailed(f"unit must be one of: {', '.join(UNITS)}")
    if patch.get("sku"):
        patch["sku"] = patch["sku"].upper()
    if patch.get("brand_id") is not None:
        brand = require_owned(Brand, patch["brand_id"], org_id, "Brand")
        patch.setdefault("brand", brand.name)
    return patch


def generate_sku(org_id: int, category: str, name: str) -> str:
    """CATEGORY-NAME prefix (3+3 letters) plus a per-prefix sequence."""
    def letters(s: str) -> str:
        return (re.sub(r"[^A-Za-z]", "", s or "").upper() + "XXX")[:3]

    prefix = f"{letters(category)}-{letters(name)}-"
    count = scoped(Product, org_id).filter(Product.sku.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:04d}"


def list_products(
    org_id: int,
    *,
    category: str | None = None,
    product_type: str | None = None,
    cylinder_type: str | None = None,
    brand: str | None = None,
    is_active: bool | None = True,
    search: str | None = None,
    stock_status: str | None = None,
):
    query = scoped(Product, org_id)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))
    if category:
        query = query.filter(Product.category == category)
    if product_type:
        query = query.filter(Product.product_type == require_choice("product_type", product_type, PRODUCT_TYPES))
    if cylinder_type:
        query = query.filter(Product.cylinder_type == cylinder_type)
    if brand:
        query = query.filter(Product.brand.ilike(f"%{brand.strip()}%"))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.brand.ilike(like),
            Product.barcode.ilike(like),
        ))
    if stock_status:
        available = db.case(
            (Product.product_type == "CYLINDER", Product.filled_count),
            else_=Product.stock,
        )
        if stock_status == "low":
            query = query.filter(available <= Product.min_stock)
        elif stock_status == "out":
            query = query.filter(available <= 0)
        else:
            raise ValidationFailed("stock_status must be one of: low, out")
    return query.order_by(Product.name.asc(), Product.id.asc())


def low_stock_products(org_id: int) -> list[Product]:
    return list_products(org_id, stock_status="low").all()


def create_product(org_id: int, actor_user_id: int | None, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    patch = _normalize_product_patch(org_id, patch)
    patch.setdefault("product_type", "CYLINDER" if patch.get("category") == "LPG Cylinder" else "ACCESSORY")
    enforce_rules_product(patch)

    if not patch.get("sku"):
        patch["sku"] = generate_sku(org_id, patch["category"], patch["name"])

    if scoped(Product, org_id).filter(Product.sku == patch["sku"]).first():
        raise Conflict("SKU already exists", details={"sku": patch["sku"]})

    product = Product(org_id=org_id, created_by_user_id=actor_user_id, **patch)
    db.session.add(product)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.PRODUCT,
        resource_id=product.id,
        after=audit_service.snapshot(product),
    )
    db.session.commit()
    return product


def update_product(org_id: int, product_id: int, actor_user_id: int | None, payload: dict) -> Product:
    product = require_owned(Product, product_id, org_id, "Product")
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    patch = _normalize_product_patch(org_id, patch)
    enforce_rules_product(patch, existing=product)

    if "sku" in patch and patch["sku"] != product.sku:
        if scoped(Product, org_id).filter(Product.sku == patch["sku"], Product.id != product.id).first():
            raise Conflict("SKU already exists", details={"sku": patch["sku"]})

    before = audit_service.snapshot(product)
    for key, value in patch.items():
        setattr(product, key, value)
    db.session.flush()

    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.PRODUCT,
        resource_id=product.id,
        before=before,
        after=audit_service.snapshot(product),
    )
    db.session.commit()
    return product


def deactivate_product(org_id: int, product_id: int, actor_user_id: int | None) -> Product:
    """Soft delete: products referenced by historical sales are never removed."""
    product = require_owned(Product, product_id, org_id, "Product")
    before = audit_service.snapshot(product)
    product.is_active = False
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="DELETE",
        resource=AuditResource.PRODUCT,
        resource_id=product.id,
        before=before,
        after=audit_service.snapshot(product),
    )
    db.session.commit()
    return product


def adjust_cylinder_state(
    org_id: int,
    product_id: int,
    actor_user_id: int | None,
    *,
    state: str,
    quantity,
    operation: str = "add",
) -> Product:
    """Add to or subtract from one tri-state counter (restock/returns). Never below zero."""
    state = require_choice("state", state, CYLINDER_STATES, upper=False)
    operation = require_choice("operation", operation, ("add", "subtract"), upper=False)
    qty = require_int("quantity", quantity, minimum=1)
    column = _STATE_COLUMNS[state]

    def _op():
        begin_write_transaction()
        product = require_owned(Product, product_id, org_id, "Product", lock=True)
        if not product.is_cylinder:
            raise ValidationFailed("Cylinder states apply to cylinder products only")
        before = audit_service.snapshot(product)

        query = db.session.query(Product).filter(Product.id == product.id)
        if operation == "subtract":
            query = query.filter(column >= qty)
            delta = -qty
        else:
            delta = qty
        updated = query.update({column: column + delta}, synchronize_session="fetch")
        if updated != 1:
            raise InsufficientInventory(
                f"Not enough {state} cylinders for {product.name}",
                product_id=product.id,
                product_name=product.name,
                requested=qty,
                available=getattr(product, column.key),
            )

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.PRODUCT,
            resource_id=product.id,
            before=before,
            after=audit_service.snapshot(product),
            note=f"{operation} {qty} {state}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op, label="adjust_cylinder_state")


def adjust_stock(org_id: int, product_id: int, actor_user_id: int | None, *, quantity, operation: str = "add") -> Product:
    """Scalar stock restock/write-off for accessory products."""
    operation = require_choice("operation", operation, ("add", "subtract"), upper=False)
    qty = require_int("quantity", quantity, minimum=1)

    def _op():
        begin_write_transaction()
        product = require_owned(Product, product_id, org_id, "Product", lock=True)
        if product.is_cylinder:
            raise ValidationFailed("Use cylinder-state for cylinder products")
        before = audit_service.snapshot(product)

        query = db.session.query(Product).filter(Product.id == product.id)
        if operation == "subtract":
            query = query.filter(Product.stock >= qty)
        delta = qty if operation == "add" else -qty
        if query.update({Product.stock: Product.stock + delta}, synchronize_session="fetch") != 1:
            raise InsufficientInventory(
                f"Not enough stock for {product.name}",
                product_id=product.id,
                product_name=product.name,
                requested=qty,
                available=product.stock,
            )
        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.PRODUCT,
            resource_id=product.id,
            before=before,
            after=audit_service.snapshot(product),
            note=f"{operation} {qty} stock",
        )
        db.session.commit()
        return product

    return run_with_retry(_op, label="adjust_stock")


def exchange_cylinders(org_id: int, product_id: int, actor_user_id: int | None, *, quantity) -> Product:
    """
    Counter-level exchange: customer hands in empties for filled ones.
    filled -= q, empty += q, sold += q.
    """
    qty = require_int("quantity", quantity, minimum=1)

    def _op():
        begin_write_transaction()
        product = require_owned(Product, product_id, org_id, "Product", lock=True)
        if not product.is_cylinder:
            raise ValidationFailed("Exchange applies to cylinder products only")
        before = audit_service.snapshot(product)

        updated = (
            db.session.query(Product)
            .filter(Product.id == product.id, Product.filled_count >= qty)
            .update(
                {
                    Product.filled_count: Product.filled_count - qty,
                    Product.empty_count: Product.empty_count + qty,
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

        audit_service.record(
            org_id=org_id,
            user_id=actor_user_id,
            action="UPDATE",
            resource=AuditResource.PRODUCT,
            resource_id=product.id,
            before=before,
            after=audit_service.snapshot(product),
            note=f"exchange {qty}",
        )
        db.session.commit()
        return product

    return run_with_retry(_op, label="exchange_cylinders")


def cylinder_summary(org_id: int) -> list[dict]:
    """Per capacity class: product counters plus tracked unit counts by status."""
    counters = {
        row.cylinder_type: row
        for row in (
            db.session.query(
                Product.cylinder_type,
                func.coalesce(func.sum(Product.empty_count), 0).label("empty"),
                func.coalesce(func.sum(Product.filled_count), 0).label("filled"),
                func.coalesce(func.sum(Product.sold_count), 0).label("sold"),
            )
            .filter(Product.org_id == org_id, Product.product_type == "CYLINDER", Product.is_active.is_(True))
            .group_by(Product.cylinder_type)
            .all()
        )
    }
    units: dict[str, dict[str, int]] = {}
    for capacity, status, count in (
        db.session.query(Cylinder.capacity, Cylinder.status, func.count(Cylinder.id))
        .filter(Cylinder.org_id == org_id)
        .group_by(Cylinder.capacity, Cylinder.status)
        .all()
    ):
        units.setdefault(capacity, {})[status] = count

    summary = []
    for capacity in CYLINDER_CAPACITIES:
        row = counters.get(capacity)
        summary.append({
            "cylinder_type": capacity,
            "empty": int(row.empty) if row else 0,
            "filled": int(row.filled) if row else 0,
            "sold": int(row.sold) if row else 0,
            "units_by_status": units.get(capacity, {}),
        })
    return summary


# -- Brands --

def list_brands(org_id: int, include_inactive: bool = False) -> list[Brand]:
    query = scoped(Brand, org_id)
    if not include_inactive:
        query = query.filter(Brand.is_active.is_(True))
    return query.order_by(Brand.name.asc()).all()


def create_brand(org_id: int, actor_user_id: int | None, payload: dict) -> Brand:
    patch = validate_payload(model=Brand, payload=payload, policy=BRAND_POLICY, partial=False)
    if scoped(Brand, org_id).filter(func.lower(Brand.name) == patch["name"].lower()).first():
        raise Conflict("Brand already exists", details={"name": patch["name"]})

    brand = Brand(org_id=org_id, **patch)
    db.session.add(brand)
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="CREATE",
        resource=AuditResource.BRAND,
        resource_id=brand.id,
        after=audit_service.snapshot(brand),
    )
    db.session.commit()
    return brand


def update_brand(org_id: int, brand_id: int, actor_user_id: int | None, payload: dict) -> Brand:
    brand = require_owned(Brand, brand_id, org_id, "Brand")
    patch = validate_payload(model=Brand, payload=payload, policy=BRAND_POLICY, partial=True)
    before = audit_service.snapshot(brand)
    for key, value in patch.items():
        setattr(brand, key, value)
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="UPDATE",
        resource=AuditResource.BRAND,
        resource_id=brand.id,
        before=before,
        after=audit_service.snapshot(brand),
    )
    db.session.commit()
    return brand


def deactivate_brand(org_id: int, brand_id: int, actor_user_id: int | None) -> Brand:
    brand = require_owned(Brand, brand_id, org_id, "Brand")
    before = audit_service.snapshot(brand)
    brand.is_active = False
    db.session.flush()
    audit_service.record(
        org_id=org_id,
        user_id=actor_user_id,
        action="DELETE",
        resource=AuditResource.BRAND,
        resource_id=brand.id,
        before=before,
        after=audit_service.snapshot(brand),
    )
    db.session.commit()
    return brand
