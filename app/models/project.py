"""
Community Autopilot
Project domain models.

Models:
    - Project:             a client engagement driven through the workflow stages
    - ProjectAuditResult:  one row per (project, audit workflow type)

Architecture:
    Client ──1:N──▶ Project ──1:N──▶ ProjectAuditResult

The client link is a weak reference (``ON DELETE SET NULL``): deleting a
client never deletes its projects through this relation.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


def _uuid():
    return str(uuid.uuid4())


class Project(db.Model):
    """Engagement unit moved through BRIEF_RECEIVED … PRODUCTION."""

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    client_id = db.Column(
        db.String(36),
        db.ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(50), nullable=True, comment="Société | Marque | Site Web | ...")
    activity_sector = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planned",
                       comment="active | planned | completed")
    briefing_status = db.Column(db.String(20), nullable=False, default="not_sent",
                                comment="not_sent | sent | completed")
    briefing_context = db.Column(db.String(30), nullable=True)
    platforms = db.Column(db.JSON, nullable=True)
    next_deadline = db.Column(db.String(30), nullable=True)

    # ── Autopilot settings ──
    autopilot_enabled = db.Column(db.Boolean, nullable=False, default=False)
    rotation_period = db.Column(db.String(20), nullable=True, default="1_month")
    cycle_start_date = db.Column(db.String(40), nullable=True)
    last_rotation_date = db.Column(db.String(40), nullable=True)
    current_workflow_stage = db.Column(
        db.String(30), nullable=True,
        comment="NULL = not yet briefed (BRIEF_RECEIVED)",
    )

    global_research_cache = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    client = db.relationship("Client", foreign_keys=[client_id], lazy="joined")
    audit_results = db.relationship(
        "ProjectAuditResult", backref="project", lazy="select",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class ProjectAuditResult(db.Model):
    """Outcome of one audit sub-workflow for a project."""

    __tablename__ = "project_audit_results"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_type = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | running | completed | failed")
    summary = db.Column(db.Text, default="")
    score = db.Column(db.Float, nullable=True)
    sources = db.Column(db.JSON, nullable=True)
    tables = db.Column(db.JSON, nullable=True)
    completed_at = db.Column(db.String(40), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("project_id", "workflow_type", name="uq_audit_result_project_type"),
    )

    def __repr__(self) -> str:
        return f"<ProjectAuditResult {self.project_id}:{self.workflow_type} {self.status}>"
