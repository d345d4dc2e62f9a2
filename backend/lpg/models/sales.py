from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z, to_iso_date


PAYMENT_METHODS = ("CASH", "CARD", "UPI", "BANK_TRANSFER", "CREDIT")
# MIXED is derived once a sale has payments in more than one method
SALE_PAYMENT_METHODS = PAYMENT_METHODS + ("MIXED",)

PAYMENT_STATUSES = ("PAID", "PARTIAL", "PENDING")

DELIVERY_STATUSES = ("NOT_REQUIRED", "PENDING", "SCHEDULED", "IN_TRANSIT", "DELIVERED", "FAILED", "CANCELLED")

SALE_TYPES = ("NEW_SALE", "REFILL", "EXCHANGE", "ACCESSORY_ONLY", "NEW_CONNECTION")

DISCOUNT_TYPES = ("PERCENTAGE", "FIXED")


class Sale(db.Model):
    """
    Sale record created atomically by the sale engine.

    Line items are owned by the sale and never edited after creation.
    Totals are always computed server-side:
        total = subtotal - discount + tax + delivery_charges
    Only payment and delivery status change afterwards.
    """
    __tablename__ = "sales"
    __table_args__ = (
        # Invoice numbers are per-dealer, per-day sequential
        db.UniqueConstraint("org_id", "invoice_number", name="uq_sales_org_invoice"),
        db.Index("ix_sales_org_created", "org_id", "created_at"),
        db.Index("ix_sales_org_delivery_status", "org_id", "delivery_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(32), nullable=False)  # LPG<YYYYMMDD><NNN>
    sale_type = db.Column(db.String(16), nullable=False, default="NEW_SALE")

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)  # NULL = walk-in
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=False, default="PERCENTAGE")
    discount_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, index=True)  # PAID, PARTIAL, PENDING
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Delivery
    delivery_required = db.Column(db.Boolean, nullable=False, default=False)
    delivery_status = db.Column(db.String(16), nullable=False, default="NOT_REQUIRED")
    delivery_premises_id = db.Column(db.Integer, db.ForeignKey("customer_premises.id"), nullable=True)
    delivery_address = db.Column(db.String(500), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    delivery_time = db.Column(db.String(16), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_signature = db.Column(db.Text, nullable=True)
    delivery_notes = db.Column(db.String(500), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return max(self.total_cents - self.paid_amount_cents, 0)

    @property
    def cylinder_quantity(self) -> int:
        return sum(line.quantity for line in self.lines if line.is_cylinder)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "invoice_number": self.invoice_number,
            "sale_type": self.sale_type,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "created_by_user_id": self.created_by_user_id,
            "subtotal_cents": self.subtotal_cents,
            "discount": {
                "type": self.discount_type,
                "rate_bps": self.discount_rate_bps,
                "amount_cents": self.discount_cents,
            },
            "tax": {
                "rate_bps": self.tax_rate_bps,
                "amount_cents": self.tax_cents,
            },
            "delivery_charges_cents": self.delivery_charges_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "delivery": {
                "required": self.delivery_required,
                "status": self.delivery_status,
                "premises_id": self.delivery_premises_id,
                "address": self.delivery_address,
                "date": to_iso_date(self.delivery_date),
                "time": self.delivery_time,
                "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
                "notes": self.delivery_notes,
            },
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class SaleLine(db.Model):
    """Line item embedded in a sale. Snapshot of product identity at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)  # Client-submitted order, 1-based

    product_name = db.Column(db.String(200), nullable=False)
    product_type = db.Column(db.String(16), nullable=False)
    cylinder_type = db.Column(db.String(16), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.position", cascade="all, delete-orphan"),
    )
    product = db.relationship("Product")

    @property
    def is_cylinder(self) -> bool:
        return self.product_type == "CYLINDER"

    @property
    def serial_numbers(self) -> list[str]:
        return [c.serial_number for c in self.cylinders]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_type": self.product_type,
            "cylinder_type": self.cylinder_type,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "serial_numbers": self.serial_numbers,
        }


class SaleLineCylinder(db.Model):
    """Cylinder unit reserved for a line item (serial snapshot kept for history)."""
    __tablename__ = "sale_line_cylinders"
    __table_args__ = (
        db.UniqueConstraint("sale_line_id", "cylinder_id", name="uq_sale_line_cylinder"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    serial_number = db.Column(db.String(32), nullable=False)

    line = db.relationship(
        "SaleLine",
        backref=db.backref("cylinders", lazy=True, order_by="SaleLineCylinder.serial_number", cascade="all, delete-orphan"),
    )


class SalePayment(db.Model):
    """
    Payment recorded against a sale.

    The amount captured at sale creation is stored as the first payment;
    further payments settle PARTIAL/PENDING sales.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(100), nullable=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("payments", lazy=True, order_by="SalePayment.id", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
        }
