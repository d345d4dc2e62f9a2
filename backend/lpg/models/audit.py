from __future__ import annotations

from enum import Enum

from ..extensions import db
from lpg.time_utils import to_utc_z


class AuditResource(str, Enum):
    """Closed set of resource kinds that appear in the audit trail."""
    ORGANIZATION = "organization"
    USER = "user"
    ROLE = "role"
    BRAND = "brand"
    PRODUCT = "product"
    CYLINDER = "cylinder"
    CUSTOMER = "customer"
    PREMISES = "premises"
    SALE = "sale"
    DELIVERY_PERSONNEL = "delivery_personnel"
    DELIVERY_ROUTE = "delivery_route"
    SAFETY_CHECKLIST = "safety_checklist"
    SAFETY_INCIDENT = "safety_incident"
    FEEDBACK = "feedback"


AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE", "STATUS_CHANGE", "LOGIN", "LOGOUT")


class AuditLog(db.Model):
    """
    Business audit trail.

    Written in the same transaction as the mutation it records, so a rolled
    back operation leaves no audit row. IMMUTABLE: append-only.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_audit_logs_resource", "org_id", "resource", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(16), nullable=False)
    resource = db.Column(db.String(32), nullable=False)
    resource_id = db.Column(db.Integer, nullable=True)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)
    note = db.Column(db.String(500), nullable=True)

    request_method = db.Column(db.String(8), nullable=True)
    request_path = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
            "request_method": self.request_method,
            "request_path": self.request_path,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
