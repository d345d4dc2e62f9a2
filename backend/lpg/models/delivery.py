from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z, to_iso_date


VEHICLE_TYPES = ("BIKE", "VAN", "TRUCK")
AVAILABILITY_STATUSES = ("AVAILABLE", "ON_DELIVERY", "OFF_DUTY")
ROUTE_STATUSES = ("PLANNED", "IN_PROGRESS", "COMPLETED", "CANCELLED")


class DeliveryPersonnel(db.Model):
    __tablename__ = "delivery_personnel"
    __table_args__ = (
        db.UniqueConstraint("org_id", "phone", name="uq_delivery_personnel_org_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    vehicle_number = db.Column(db.String(20), nullable=True)
    vehicle_type = db.Column(db.String(16), nullable=False, default="BIKE")
    license_number = db.Column(db.String(32), nullable=True)
    license_expiry = db.Column(db.Date, nullable=True)

    availability = db.Column(db.String(16), nullable=False, default="AVAILABLE")
    completed_deliveries = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "vehicle_number": self.vehicle_number,
            "vehicle_type": self.vehicle_type,
            "license_number": self.license_number,
            "license_expiry": to_iso_date(self.license_expiry),
            "availability": self.availability,
            "completed_deliveries": self.completed_deliveries,
            "is_active": self.is_active,
        }


class DeliveryRoute(db.Model):
    """A day's run for one delivery person: ordered stops, each a sale."""
    __tablename__ = "delivery_routes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    personnel_id = db.Column(db.Integer, db.ForeignKey("delivery_personnel.id"), nullable=False, index=True)

    route_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="PLANNED")
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    personnel = db.relationship("DeliveryPersonnel", backref=db.backref("routes", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "personnel_id": self.personnel_id,
            "personnel_name": self.personnel.name if self.personnel else None,
            "route_date": to_iso_date(self.route_date),
            "status": self.status,
            "started_at": to_utc_z(self.started_at) if self.started_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "notes": self.notes,
            "stops": [s.to_dict() for s in self.stops],
        }


class DeliveryRouteStop(db.Model):
    __tablename__ = "delivery_route_stops"
    __table_args__ = (
        db.UniqueConstraint("route_id", "sale_id", name="uq_route_stop_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(db.Integer, db.ForeignKey("delivery_routes.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    route = db.relationship(
        "DeliveryRoute",
        backref=db.backref("stops", lazy=True, order_by="DeliveryRouteStop.sequence", cascade="all, delete-orphan"),
    )
    sale = db.relationship("Sale")

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "sale_id": self.sale_id,
            "invoice_number": self.sale.invoice_number if self.sale else None,
            "delivery_status": self.sale.delivery_status if self.sale else None,
            "address": self.sale.delivery_address if self.sale else None,
        }
