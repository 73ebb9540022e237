"""
Community Autopilot
Workflow activity log.

Models:
    - WorkflowEvent: append-only record of stage transitions, audit step
      outcomes and autopilot toggles, one row per event.
"""

from datetime import datetime, timezone

from app.models import db


class WorkflowEvent(db.Model):
    """Immutable activity entry for a project (or global, project_id NULL)."""

    __tablename__ = "workflow_events"
    __table_args__ = (
        db.Index("idx_workflow_events_project", "project_id"),
        db.Index("idx_workflow_events_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(36), nullable=True)
    event_type = db.Column(db.String(50), nullable=False)
    from_stage = db.Column(db.String(30), nullable=True)
    to_stage = db.Column(db.String(30), nullable=True)
    workflow_type = db.Column(db.String(50), nullable=True)
    actor = db.Column(db.String(150), default="system")
    message = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "event_type": self.event_type,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "workflow_type": self.workflow_type,
            "actor": self.actor,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowEvent {self.id}: {self.event_type}>"
