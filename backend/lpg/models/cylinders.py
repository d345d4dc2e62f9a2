from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z, to_iso_date


CYLINDER_STATUSES = ("IN_STOCK", "WITH_CUSTOMER", "IN_TRANSIT", "UNDER_INSPECTION", "CONDEMNED")

LOCATION_TYPES = ("WAREHOUSE", "CUSTOMER", "IN_TRANSIT", "TESTING_FACILITY", "WALK_IN")

INSPECTION_TYPES = ("VISUAL", "HYDROSTATIC", "ULTRASONIC")
INSPECTION_RESULTS = ("PASSED", "FAILED", "CONDITIONAL")


class Cylinder(db.Model):
    """
    Physical, individually serialized LPG cylinder.

    A cylinder has exactly one status and one location at any time.
    Status changes go through cylinder_service (or the sale engine) so that
    every transition lands in CylinderHistory. CONDEMNED is terminal.
    """
    __tablename__ = "cylinders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "serial_number", name="uq_cylinders_org_serial"),
        # Reservation scan: org + capacity + status, ordered by serial
        db.Index("ix_cylinders_reserve", "org_id", "capacity", "status", "serial_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    serial_number = db.Column(db.String(32), nullable=False)
    capacity = db.Column(db.String(16), nullable=False)  # 11.8kg, 15kg, 45.4kg
    manufacturer = db.Column(db.String(100), nullable=False)
    manufacturing_date = db.Column(db.Date, nullable=False)
    tare_weight = db.Column(db.Numeric(6, 2), nullable=True)  # kg
    certification_number = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(24), nullable=False, default="IN_STOCK", index=True)
    location_type = db.Column(db.String(24), nullable=False, default="WAREHOUSE")
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    location_address = db.Column(db.String(255), nullable=True)

    last_hydrostatic_test = db.Column(db.Date, nullable=True)
    next_test_due = db.Column(db.Date, nullable=True, index=True)

    deposit_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    condemned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    condemnation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("cylinders", lazy=True))

    def to_dict(self, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "serial_number": self.serial_number,
            "capacity": self.capacity,
            "manufacturer": self.manufacturer,
            "manufacturing_date": to_iso_date(self.manufacturing_date),
            "tare_weight": float(self.tare_weight) if self.tare_weight is not None else None,
            "certification_number": self.certification_number,
            "status": self.status,
            "location": {
                "type": self.location_type,
                "customer_id": self.customer_id,
                "address": self.location_address,
            },
            "last_hydrostatic_test": to_iso_date(self.last_hydrostatic_test),
            "next_test_due": to_iso_date(self.next_test_due),
            "deposit_cents": self.deposit_cents,
            "is_active": self.is_active,
            "condemned_at": to_utc_z(self.condemned_at) if self.condemned_at else None,
            "condemnation_reason": self.condemnation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_history:
            data["history"] = [h.to_dict() for h in self.history]
            data["inspections"] = [i.to_dict() for i in self.inspections]
        return data


class CylinderHistory(db.Model):
    """
    Append-only lifecycle log owned by the cylinder.

    IMMUTABLE: rows are only inserted, never updated or deleted.
    """
    __tablename__ = "cylinder_history"
    __table_args__ = (
        db.Index("ix_cylinder_history_cylinder_occurred", "cylinder_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False)

    action = db.Column(db.String(32), nullable=False)  # REGISTERED, SOLD, RETURNED, STATUS_CHANGE, INSPECTED, CONDEMNED
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    note = db.Column(db.String(500), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship(
        "Cylinder",
        backref=db.backref("history", lazy=True, order_by="CylinderHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CylinderInspection(db.Model):
    __tablename__ = "cylinder_inspections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)

    inspection_date = db.Column(db.Date, nullable=False)
    inspection_type = db.Column(db.String(16), nullable=False)  # VISUAL, HYDROSTATIC, ULTRASONIC
    result = db.Column(db.String(16), nullable=False)  # PASSED, FAILED, CONDITIONAL
    inspector = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    next_due_date = db.Column(db.Date, nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship(
        "Cylinder",
        backref=db.backref("inspections", lazy=True, order_by="CylinderInspection.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "inspection_date": to_iso_date(self.inspection_date),
            "inspection_type": self.inspection_type,
            "result": self.result,
            "inspector": self.inspector,
            "notes": self.notes,
            "next_due_date": to_iso_date(self.next_due_date),
            "recorded_by_user_id": self.recorded_by_user_id,
        }
