from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z


PRODUCT_CATEGORIES = (
    "LPG Cylinder",
    "Gas Pipe",
    "Regulator",
    "Gas Stove",
    "Gas Tandoor",
    "Gas Heater",
    "LPG Instant Geyser",
    "Safety Equipment",
    "Accessories",
    "Other",
)

PRODUCT_TYPES = ("CYLINDER", "ACCESSORY")

# Capacity classes for individually tracked cylinders
CYLINDER_CAPACITIES = ("11.8kg", "15kg", "45.4kg")

# Gas weight per capacity class, in grams
CAPACITY_GRAMS = {"11.8kg": 11_800, "15kg": 15_000, "45.4kg": 45_400}

UNITS = ("piece", "meter", "set", "kg")


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_brands_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    contact_phone = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "contact_phone": self.contact_phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Sellable catalog item.

    Cylinder products (product_type=CYLINDER) track the tri-state counter
    (empty_count, filled_count, sold_count) and are sold by reserving
    individual Cylinder units of the matching capacity class. Accessories
    use the scalar stock counter.

    Counters are mutated by the sale engine and by restock/exchange
    operations, always through conditional UPDATEs so they never go
    negative. Products are never hard-deleted; is_active=False hides them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        db.CheckConstraint("empty_count >= 0", name="ck_products_empty_nonneg"),
        db.CheckConstraint("filled_count >= 0", name="ck_products_filled_nonneg"),
        db.CheckConstraint("sold_count >= 0", name="ck_products_sold_nonneg"),
        db.Index("ix_products_org_category", "org_id", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)

    name = db.Column(db.String(200), nullable=False)
    brand = db.Column(db.String(100), nullable=True)  # Denormalized brand name for display/search
    category = db.Column(db.String(64), nullable=False, default="Other")
    product_type = db.Column(db.String(16), nullable=False, default="ACCESSORY")  # CYLINDER, ACCESSORY
    cylinder_type = db.Column(db.String(16), nullable=True)  # Capacity class, e.g. "15kg"
    pressure_rating = db.Column(db.String(32), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="piece")

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Counters
    stock = db.Column(db.Integer, nullable=False, default=0)
    empty_count = db.Column(db.Integer, nullable=False, default=0)
    filled_count = db.Column(db.Integer, nullable=False, default=0)
    sold_count = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)
    max_stock = db.Column(db.Integer, nullable=False, default=100)

    # Money in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    deposit_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    brand_ref = db.relationship("Brand", backref=db.backref("products", lazy=True))

    @property
    def is_cylinder(self) -> bool:
        return self.product_type == "CYLINDER"

    @property
    def available(self) -> int:
        """Sellable units: filled cylinders, or scalar stock for accessories."""
        return self.filled_count if self.is_cylinder else self.stock

    @property
    def stock_status(self) -> str:
        level = self.available
        if level <= 0:
            return "OUT_OF_STOCK"
        if level <= self.min_stock:
            return "LOW_STOCK"
        if level >= self.max_stock:
            return "OVERSTOCK"
        return "IN_STOCK"

    @property
    def profit_margin_pct(self) -> float | None:
        if not self.price_cents:
            return None
        return round((self.price_cents - self.cost_price_cents) * 100 / self.price_cents, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "brand_id": self.brand_id,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "product_type": self.product_type,
            "cylinder_type": self.cylinder_type,
            "pressure_rating": self.pressure_rating,
            "unit": self.unit,
            "sku": self.sku,
            "barcode": self.barcode,
            "description": self.description,
            "stock": self.stock,
            "cylinder_states": {
                "empty": self.empty_count,
                "filled": self.filled_count,
                "sold": self.sold_count,
            } if self.is_cylinder else None,
            "available": self.available,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "stock_status": self.stock_status,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "deposit_cents": self.deposit_cents,
            "profit_margin_pct": self.profit_margin_pct,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
