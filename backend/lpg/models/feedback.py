from __future__ import annotations

from ..extensions import db
from lpg.time_utils import to_utc_z


FEEDBACK_CATEGORIES = ("BUG", "FEATURE", "GENERAL", "COMPLAINT", "SUGGESTION")
FEEDBACK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
FEEDBACK_STATUSES = ("PENDING", "IN_PROGRESS", "RESOLVED", "REJECTED")


class Feedback(db.Model):
    """
    Staff feedback about the application (bugs, feature requests, complaints).

    Submitted by any authenticated user of a dealer; triaged by users
    holding MANAGE_FEEDBACK in the same dealer.
    """
    __tablename__ = "feedback"
    __table_args__ = (
        db.Index("ix_feedback_org_status", "org_id", "status"),
        db.Index("ix_feedback_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    category = db.Column(db.String(16), nullable=False, default="GENERAL")
    title = db.Column(db.String(100), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="MEDIUM")
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    admin_response = db.Column(db.String(500), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Client that sent it, e.g. {"platform": "android", "version": "2.1.0", "model": "Pixel 7"}
    device_info = db.Column(db.JSON, nullable=True)
    is_public = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "status": self.status,
            "admin_response": self.admin_response,
            "responded_at": to_utc_z(self.responded_at) if self.responded_at else None,
            "responded_by_user_id": self.responded_by_user_id,
            "device_info": self.device_info,
            "is_public": self.is_public,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
