"""
Community Autopilot
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"workflow", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    """
    In-app notification entity.

    Workflow notifications carry the project and the stage they refer to.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(128), default="all", index=True,
                         comment="Agency account or 'all' for broadcast")
    project_id = db.Column(db.String(36), nullable=True, index=True)
    project_name = db.Column(db.String(200), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")
    workflow_stage = db.Column(db.String(30), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "workflow_stage": self.workflow_stage,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
