"""
Community Autopilot
SQLAlchemy-backed project store (live backend).

Each write commits on its own. A ``SQLAlchemyError`` rolls the session
back and surfaces as ``StoreError`` so callers can retry.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import ConflictError, NotFoundError, StoreError
from app.models import db
from app.models.activity import WorkflowEvent
from app.models.client import Client
from app.models.project import Project, ProjectAuditResult
from app.models.settings import PlatformSetting
from app.models.workflow import AUDIT_WORKFLOW_TYPES, WorkflowStage
from app.services.project_store import (
    AuditResultRecord,
    AutopilotSettings,
    ProjectRecord,
    ProjectStore,
    merge_partial,
    validate_client_data,
)

logger = logging.getLogger(__name__)

_ORDER = {wf: i for i, wf in enumerate(AUDIT_WORKFLOW_TYPES)}


def _iso(value):
    return value.isoformat() if value else None


def _row_to_record(row: Project) -> ProjectRecord:
    results = {
        r.workflow_type: AuditResultRecord(
            workflow_type=r.workflow_type,
            status=r.status,
            summary=r.summary or "",
            score=r.score,
            sources=list(r.sources or []),
            tables=list(r.tables or []),
            completed_at=r.completed_at,
        )
        for r in sorted(row.audit_results, key=lambda r: _ORDER.get(r.workflow_type, 99))
    }
    stage = row.current_workflow_stage
    return ProjectRecord(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        client_id=row.client_id,
        type=row.type,
        activity_sector=row.activity_sector,
        status=row.status,
        briefing_status=row.briefing_status,
        briefing_context=row.briefing_context,
        platforms=list(row.platforms or []),
        next_deadline=row.next_deadline,
        autopilot_enabled=bool(row.autopilot_enabled),
        autopilot_settings=AutopilotSettings(
            rotation_period=row.rotation_period or "1_month",
            cycle_start_date=row.cycle_start_date,
            last_rotation_date=row.last_rotation_date,
            current_workflow_stage=WorkflowStage(stage) if stage else None,
        ),
        audit_results=results,
        global_research_cache=row.global_research_cache or "",
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
    )


def _write_row(row: Project, record: ProjectRecord) -> None:
    """Copy every field of ``record`` onto the ORM row, syncing audit rows."""
    row.owner_id = record.owner_id
    row.name = record.name
    row.client_id = record.client_id
    row.type = record.type
    row.activity_sector = record.activity_sector
    row.status = record.status
    row.briefing_status = record.briefing_status
    row.briefing_context = record.briefing_context
    row.platforms = list(record.platforms)
    row.next_deadline = record.next_deadline
    row.autopilot_enabled = record.autopilot_enabled

    settings = record.autopilot_settings
    row.rotation_period = settings.rotation_period
    row.cycle_start_date = settings.cycle_start_date
    row.last_rotation_date = settings.last_rotation_date
    stage = settings.current_workflow_stage
    row.current_workflow_stage = stage.value if stage else None

    row.global_research_cache = record.global_research_cache or None

    existing = {r.workflow_type: r for r in row.audit_results}
    for wf_type, result in record.audit_results.items():
        target = existing.pop(wf_type, None)
        if target is None:
            target = ProjectAuditResult(workflow_type=wf_type)
            row.audit_results.append(target)
        target.status = result.status
        target.summary = result.summary
        target.score = result.score
        target.sources = list(result.sources)
        target.tables = list(result.tables)
        target.completed_at = result.completed_at
    for stale in existing.values():
        row.audit_results.remove(stale)


class SqlProjectStore(ProjectStore):
    """ProjectStore over the Flask-SQLAlchemy session."""

    def _commit(self, operation: str, resource_id: str | None = None) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Store %s failed: %s", operation, exc,
                         extra={"project_id": resource_id})
            raise StoreError(operation, resource_id, cause=exc) from exc

    def _get_row(self, project_id: str) -> Project:
        try:
            row = db.session.get(Project, project_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError("load", project_id, cause=exc) from exc
        if row is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return row

    def _require_client(self, client_id: str | None) -> None:
        if client_id and db.session.get(Client, client_id) is None:
            raise NotFoundError(resource="Client", resource_id=client_id)

    # ── Projects ─────────────────────────────────────────────────────────

    def load(self, project_id: str) -> ProjectRecord:
        return _row_to_record(self._get_row(project_id))

    def save(self, project_id: str, partial: dict) -> ProjectRecord:
        row = self._get_row(project_id)
        merged = merge_partial(_row_to_record(row), partial)
        if "client_id" in partial:
            self._require_client(merged.client_id)
        _write_row(row, merged)
        self._commit("save", project_id)
        self._emit(project_id)
        return _row_to_record(row)

    def list(self, owner_id: str | None, *, client_id: str | None = None) -> list[ProjectRecord]:
        q = Project.query
        if owner_id is not None:
            q = q.filter(Project.owner_id == owner_id)
        if client_id:
            q = q.filter(Project.client_id == client_id)
        try:
            rows = q.order_by(Project.created_at.asc(), Project.name.asc()).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError("list", owner_id, cause=exc) from exc
        return [_row_to_record(r) for r in rows]

    def create(self, data: dict) -> ProjectRecord:
        record = ProjectRecord.from_dict(data)
        if db.session.get(Project, record.id) is not None:
            raise ConflictError("Project", "id", record.id)
        self._require_client(record.client_id)
        row = Project(id=record.id)
        db.session.add(row)
        _write_row(row, record)
        self._commit("create", record.id)
        self._emit(record.id)
        logger.info("Project created: %s", record.name, extra={"project_id": record.id})
        return _row_to_record(row)

    def delete(self, project_id: str) -> None:
        row = self._get_row(project_id)
        db.session.delete(row)
        self._commit("delete", project_id)
        self._emit(project_id)

    # ── Clients ──────────────────────────────────────────────────────────

    def list_clients(self, owner_id: str) -> list[dict]:
        rows = (
            Client.query.filter(Client.owner_id == owner_id)
            .order_by(Client.company_name.asc())
            .all()
        )
        return [c.to_dict() for c in rows]

    def create_client(self, data: dict) -> dict:
        values = validate_client_data(data)
        client = Client(**values)
        db.session.add(client)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("Client", "id", values["id"]) from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError("create_client", values["id"], cause=exc) from exc
        return client.to_dict()

    def load_client(self, client_id: str) -> dict:
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFoundError(resource="Client", resource_id=client_id)
        return client.to_dict()

    # ── Settings ─────────────────────────────────────────────────────────

    def get_setting(self, key: str, default=None):
        row = PlatformSetting.query.filter_by(key=key).first()
        if row is None:
            return default
        return row.value

    def set_setting(self, key: str, value) -> None:
        row = PlatformSetting.query.filter_by(key=key).first()
        if row is None:
            row = PlatformSetting(key=key)
            db.session.add(row)
        row.value = value
        self._commit("set_setting", key)

    # ── Activity log ─────────────────────────────────────────────────────

    def append_event(self, *, project_id, event_type, from_stage=None, to_stage=None,
                     workflow_type=None, actor="system", message="") -> dict:
        event = WorkflowEvent(
            project_id=project_id,
            event_type=event_type,
            from_stage=from_stage,
            to_stage=to_stage,
            workflow_type=workflow_type,
            actor=actor,
            message=message,
        )
        db.session.add(event)
        self._commit("append_event", project_id)
        return event.to_dict()

    def list_events(self, project_id: str, limit: int = 50) -> list[dict]:
        rows = (
            WorkflowEvent.query.filter_by(project_id=project_id)
            .order_by(WorkflowEvent.id.desc())
            .limit(limit)
            .all()
        )
        return [e.to_dict() for e in rows]
