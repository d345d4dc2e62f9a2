from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z


CUSTOMER_TYPES = ("INDIVIDUAL", "BUSINESS", "INSTITUTION")

PREMISES_TYPES = ("RESIDENTIAL", "COMMERCIAL", "INDUSTRIAL", "RESTAURANT", "HOTEL", "OTHER")

DELIVERY_TIME_SLOTS = ("MORNING", "AFTERNOON", "EVENING", "ANYTIME")

# (threshold points, tier), highest first
LOYALTY_TIERS = (
    (2000, "PLATINUM"),
    (1000, "GOLD"),
    (500, "SILVER"),
    (0, "BRONZE"),
)


def loyalty_tier_for(points: int) -> str:
    for threshold, tier in LOYALTY_TIERS:
        if points >= threshold:
            return tier
    return "BRONZE"


def tier_bounds(tier: str) -> tuple[int, int | None]:
    """Inclusive lower bound and exclusive upper bound (None = unbounded) for a tier."""
    upper = None
    for threshold, name in LOYALTY_TIERS:
        if name == tier:
            return threshold, upper
        upper = threshold
    raise ValueError(f"Unknown loyalty tier: {tier}")


class Customer(db.Model):
    """
    Counterparty for sales.

    Aggregates (loyalty_points, total_spent_cents, total_refills,
    current_credit_cents) are updated by the sale engine with atomic
    `col = col + delta` statements, never read-modify-write.
    Invariant: current_credit_cents <= credit_limit_cents.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "phone", name="uq_customers_org_phone"),
        db.CheckConstraint("current_credit_cents >= 0", name="ck_customers_credit_nonneg"),
        db.CheckConstraint("current_credit_cents <= credit_limit_cents", name="ck_customers_credit_limit"),
        db.Index("ix_customers_org_name", "org_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=False)
    alternate_phone = db.Column(db.String(20), nullable=True)

    customer_type = db.Column(db.String(16), nullable=False, default="INDIVIDUAL")
    business_name = db.Column(db.String(200), nullable=True)
    gst_number = db.Column(db.String(15), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refills = db.Column(db.Integer, nullable=False, default=0)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_credit_cents = db.Column(db.Integer, nullable=False, default=0)

    preferred_delivery_time = db.Column(db.String(16), nullable=False, default="ANYTIME")
    delivery_instructions = db.Column(db.String(500), nullable=True)
    safety_training_completed = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def loyalty_tier(self) -> str:
        return loyalty_tier_for(self.loyalty_points or 0)

    @property
    def available_credit_cents(self) -> int:
        return self.credit_limit_cents - self.current_credit_cents

    def primary_premises(self):
        for p in self.premises:
            if p.is_primary and p.is_active:
                return p
        return None

    def to_dict(self, include_premises: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "alternate_phone": self.alternate_phone,
            "customer_type": self.customer_type,
            "business_name": self.business_name,
            "gst_number": self.gst_number,
            "loyalty_points": self.loyalty_points,
            "loyalty_tier": self.loyalty_tier,
            "total_spent_cents": self.total_spent_cents,
            "total_refills": self.total_refills,
            "credit_limit_cents": self.credit_limit_cents,
            "current_credit_cents": self.current_credit_cents,
            "available_credit_cents": self.available_credit_cents,
            "preferred_delivery_time": self.preferred_delivery_time,
            "delivery_instructions": self.delivery_instructions,
            "safety_training_completed": self.safety_training_completed,
            "notes": self.notes,
            "is_active": self.is_active,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_premises:
            data["premises"] = [p.to_dict() for p in self.premises if p.is_active]
        return data


class Premises(db.Model):
    """Delivery address owned by a customer. Exactly one active premises is primary."""
    __tablename__ = "customer_premises"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    premises_type = db.Column(db.String(16), nullable=False, default="RESIDENTIAL")
    street = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(80), nullable=False)
    state = db.Column(db.String(80), nullable=True)
    pincode = db.Column(db.String(6), nullable=False)
    landmark = db.Column(db.String(255), nullable=True)
    cylinder_capacity = db.Column(db.Integer, nullable=False, default=1)
    delivery_instructions = db.Column(db.String(500), nullable=True)

    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship(
        "Customer",
        backref=db.backref("premises", lazy=True, order_by="Premises.id"),
    )

    def address_line(self) -> str:
        parts = [self.street, self.landmark, self.city, self.state, self.pincode]
        return ", ".join(p for p in parts if p)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "name": self.name,
            "premises_type": self.premises_type,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "landmark": self.landmark,
            "cylinder_capacity": self.cylinder_capacity,
            "delivery_instructions": self.delivery_instructions,
            "is_primary": self.is_primary,
            "is_active": self.is_active,
        }
