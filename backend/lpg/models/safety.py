from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z


CHECKLIST_TYPES = ("new-connection", "refill", "exchange", "inspection")
CHECKLIST_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")

INCIDENT_TYPES = ("LEAK", "FIRE", "EXPLOSION", "INJURY", "PROPERTY_DAMAGE", "NEAR_MISS", "OTHER")
INCIDENT_SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
INCIDENT_STATUSES = ("REPORTED", "INVESTIGATING", "ACTION_TAKEN", "RESOLVED", "CLOSED")


class SafetyChecklist(db.Model):
    """
    Safety checklist attached to a sale.

    Complete when every item is checked, the customer acknowledged, safety
    instructions were given and the emergency contact was verified.
    """
    __tablename__ = "safety_checklists"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "checklist_type", name="uq_safety_checklist_sale_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    checklist_type = db.Column(db.String(24), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    safety_instructions_given = db.Column(db.Boolean, nullable=False, default=False)
    emergency_contact_verified = db.Column(db.Boolean, nullable=False, default=False)

    acknowledged = db.Column(db.Boolean, nullable=False, default=False)
    acknowledged_by = db.Column(db.String(120), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledgment_signature = db.Column(db.Text, nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("safety_checklists", lazy=True))

    @property
    def all_items_checked(self) -> bool:
        return bool(self.items) and all(i.checked for i in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "checklist_type": self.checklist_type,
            "status": self.status,
            "items": [i.to_dict() for i in self.items],
            "safety_instructions_given": self.safety_instructions_given,
            "emergency_contact_verified": self.emergency_contact_verified,
            "acknowledgment": {
                "acknowledged": self.acknowledged,
                "by": self.acknowledged_by,
                "at": to_utc_z(self.acknowledged_at) if self.acknowledged_at else None,
            },
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class SafetyChecklistItem(db.Model):
    __tablename__ = "safety_checklist_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(db.Integer, db.ForeignKey("safety_checklists.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    item = db.Column(db.String(255), nullable=False)

    checked = db.Column(db.Boolean, nullable=False, default=False)
    checked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    checklist = db.relationship(
        "SafetyChecklist",
        backref=db.backref("items", lazy=True, order_by="SafetyChecklistItem.position", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "item": self.item,
            "checked": self.checked,
            "checked_by_user_id": self.checked_by_user_id,
            "checked_at": to_utc_z(self.checked_at) if self.checked_at else None,
            "notes": self.notes,
        }


class SafetyIncident(db.Model):
    __tablename__ = "safety_incidents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    incident_date = db.Column(db.DateTime(timezone=True), nullable=False)
    incident_type = db.Column(db.String(24), nullable=False)
    severity = db.Column(db.String(16), nullable=False)
    location = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=True)

    description = db.Column(db.Text, nullable=False)
    immediate_action = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="REPORTED", index=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reported_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "incident_date": to_utc_z(self.incident_date),
            "incident_type": self.incident_type,
            "severity": self.severity,
            "location": self.location,
            "customer_id": self.customer_id,
            "cylinder_id": self.cylinder_id,
            "description": self.description,
            "immediate_action": self.immediate_action,
            "status": self.status,
            "resolution_notes": self.resolution_notes,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "reported_by_user_id": self.reported_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
