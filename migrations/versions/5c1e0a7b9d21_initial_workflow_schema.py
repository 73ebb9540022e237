"""initial_workflow_schema

Create clients, projects, project_audit_results, workflow_events,
platform_settings and notifications.

Revision ID: 5c1e0a7b9d21
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5c1e0a7b9d21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_id", sa.String(length=128), nullable=False),
            sa.Column("company_name", sa.String(length=200), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("language", sa.String(length=10), nullable=True),
            sa.Column("activities", sa.Text(), nullable=True),
            sa.Column("country", sa.String(length=100), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("questionnaire_status", sa.String(length=20), nullable=False,
                      server_default="not_sent"),
            sa.Column("autopilot_excluded", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_clients_owner_id", "clients", ["owner_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_id", sa.String(length=128), nullable=False),
            sa.Column("client_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("type", sa.String(length=50), nullable=True),
            sa.Column("activity_sector", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="planned"),
            sa.Column("briefing_status", sa.String(length=20), nullable=False,
                      server_default="not_sent"),
            sa.Column("briefing_context", sa.String(length=30), nullable=True),
            sa.Column("platforms", sa.JSON(), nullable=True),
            sa.Column("next_deadline", sa.String(length=30), nullable=True),
            sa.Column("autopilot_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("rotation_period", sa.String(length=20), nullable=True),
            sa.Column("cycle_start_date", sa.String(length=40), nullable=True),
            sa.Column("last_rotation_date", sa.String(length=40), nullable=True),
            sa.Column("current_workflow_stage", sa.String(length=30), nullable=True),
            sa.Column("global_research_cache", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_owner_id", "projects", ["owner_id"])
        op.create_index("ix_projects_client_id", "projects", ["client_id"])

    if "project_audit_results" not in existing_tables:
        op.create_table(
            "project_audit_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.String(length=36), nullable=False),
            sa.Column("workflow_type", sa.String(length=50), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("score", sa.Float(), nullable=True),
            sa.Column("sources", sa.JSON(), nullable=True),
            sa.Column("tables", sa.JSON(), nullable=True),
            sa.Column("completed_at", sa.String(length=40), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "workflow_type", name="uq_audit_result_project_type"),
        )
        op.create_index("ix_project_audit_results_project_id", "project_audit_results",
                        ["project_id"])

    if "workflow_events" not in existing_tables:
        op.create_table(
            "workflow_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.String(length=36), nullable=True),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("from_stage", sa.String(length=30), nullable=True),
            sa.Column("to_stage", sa.String(length=30), nullable=True),
            sa.Column("workflow_type", sa.String(length=50), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=True),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_workflow_events_project", "workflow_events", ["project_id"])
        op.create_index("idx_workflow_events_ts", "workflow_events", ["created_at"])

    if "platform_settings" not in existing_tables:
        op.create_table(
            "platform_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("value", sa.JSON(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("owner_id", sa.String(length=128), nullable=True),
            sa.Column("project_id", sa.String(length=36), nullable=True),
            sa.Column("project_name", sa.String(length=200), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("workflow_stage", sa.String(length=30), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_owner_id", "notifications", ["owner_id"])
        op.create_index("ix_notifications_project_id", "notifications", ["project_id"])


def downgrade():
    existing_tables = set(sa_inspect(op.get_bind()).get_table_names())
    for table in ("notifications", "platform_settings", "workflow_events",
                  "project_audit_results", "projects", "clients"):
        if table in existing_tables:
            op.drop_table(table)
