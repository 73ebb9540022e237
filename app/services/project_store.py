"""
Community Autopilot
Project store: domain records and the persistence interface.

Two backends implement the same ``ProjectStore`` interface:
    - SqlProjectStore      (app/services/store_sql.py)     live database
    - InMemoryProjectStore (app/services/store_memory.py)  demo mode

``build_project_store(app)`` picks one from configuration. Nothing above
this layer branches on which backend is in use.

Partial updates (``save``):
    - top-level project fields replace the stored value
    - ``autopilot_settings`` merges key-by-key
    - ``audit_results`` replaces the whole mapping
    - ``audit_result`` upserts a single workflow type
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Callable

from app.core.exceptions import ValidationError
from app.models.workflow import (
    AUDIT_RESULT_STATUSES,
    AUDIT_WORKFLOW_TYPES,
    BRIEFING_CONTEXTS,
    BRIEFING_STATUSES,
    PROJECT_STATUSES,
    ROTATION_PERIODS,
    WorkflowStage,
    coerce_stage,
    phase_for,
)

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════════════
# Domain records
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class AuditResultRecord:
    """Outcome of one audit sub-workflow. ``phase`` is derived, never stored."""
    workflow_type: str
    status: str = "pending"
    summary: str = ""
    score: float | None = None
    sources: list = field(default_factory=list)
    tables: list = field(default_factory=list)
    completed_at: str | None = None

    @property
    def phase(self) -> str:
        return phase_for(self.workflow_type)

    def to_dict(self) -> dict:
        return {
            "workflow_type": self.workflow_type,
            "phase": self.phase,
            "status": self.status,
            "summary": self.summary,
            "score": self.score,
            "sources": list(self.sources),
            "tables": list(self.tables),
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict, workflow_type: str | None = None) -> AuditResultRecord:
        """Build a record from API/store input, validating type and status.

        A ``phase`` key in the input is ignored.
        """
        if isinstance(data, AuditResultRecord):
            return copy.deepcopy(data)
        if not isinstance(data, dict):
            raise ValidationError("Audit result must be an object")
        wf_type = workflow_type or data.get("workflow_type")
        if wf_type not in AUDIT_WORKFLOW_TYPES:
            raise ValidationError(
                f"Unknown audit workflow type: {wf_type}",
                details={"workflow_type": wf_type},
            )
        status = data.get("status") or "pending"
        if status not in AUDIT_RESULT_STATUSES:
            raise ValidationError(
                f"Invalid audit result status: {status}",
                details={"status": status, "allowed": sorted(AUDIT_RESULT_STATUSES)},
            )
        score = data.get("score")
        if score is not None:
            try:
                score = float(score)
            except (TypeError, ValueError):
                raise ValidationError("score must be a number", details={"score": score})
        return cls(
            workflow_type=wf_type,
            status=status,
            summary=data.get("summary") or "",
            score=score,
            sources=list(data.get("sources") or []),
            tables=list(data.get("tables") or []),
            completed_at=data.get("completed_at"),
        )


@dataclass
class AutopilotSettings:
    """Per-project autopilot cadence and workflow position.

    ``current_workflow_stage`` is ``None`` while unset (not yet briefed).
    """
    rotation_period: str = "1_month"
    cycle_start_date: str | None = None
    last_rotation_date: str | None = None
    current_workflow_stage: WorkflowStage | None = None

    def to_dict(self) -> dict:
        stage = self.current_workflow_stage
        return {
            "rotation_period": self.rotation_period,
            "cycle_start_date": self.cycle_start_date,
            "last_rotation_date": self.last_rotation_date,
            "current_workflow_stage": stage.value if stage else None,
        }


_SETTINGS_KEYS = {f.name for f in fields(AutopilotSettings)}


@dataclass
class ProjectRecord:
    """A client engagement as seen by the workflow engine."""
    id: str
    owner_id: str
    name: str
    client_id: str | None = None
    type: str | None = None
    activity_sector: str | None = None
    status: str = "planned"
    briefing_status: str = "not_sent"
    briefing_context: str | None = None
    platforms: list = field(default_factory=list)
    next_deadline: str | None = None
    autopilot_enabled: bool = False
    autopilot_settings: AutopilotSettings = field(default_factory=AutopilotSettings)
    audit_results: dict[str, AuditResultRecord] = field(default_factory=dict)
    global_research_cache: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def stage(self) -> WorkflowStage:
        """Effective stage; an unset stage reads as BRIEF_RECEIVED."""
        return coerce_stage(self.autopilot_settings.current_workflow_stage)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "client_id": self.client_id,
            "name": self.name,
            "type": self.type,
            "activity_sector": self.activity_sector,
            "status": self.status,
            "briefing_status": self.briefing_status,
            "briefing_context": self.briefing_context,
            "platforms": list(self.platforms),
            "next_deadline": self.next_deadline,
            "autopilot_enabled": self.autopilot_enabled,
            "autopilot_settings": self.autopilot_settings.to_dict(),
            "stage": self.stage.value,
            "audit_results": {k: v.to_dict() for k, v in self.audit_results.items()},
            "global_research_cache": self.global_research_cache,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProjectRecord:
        """Build a new record from creation input.

        Raises:
            ValidationError: missing owner/name or a value outside its domain.
        """
        owner_id = str(data.get("owner_id", "") or "").strip()
        name = str(data.get("name", "") or "").strip()
        if not owner_id:
            raise ValidationError("owner_id is required", details={"field": "owner_id"})
        if not name:
            raise ValidationError("name is required", details={"field": "name"})
        now = utcnow_iso()
        record = cls(
            id=str(data.get("id") or new_id()),
            owner_id=owner_id,
            name=name,
            created_at=now,
            updated_at=now,
        )
        partial = {k: v for k, v in data.items() if k not in ("id", "owner_id", "name")}
        return merge_partial(record, partial)


# ═════════════════════════════════════════════════════════════════════════════
# Partial-update merge (shared by both backends)
# ═════════════════════════════════════════════════════════════════════════════

_SCALAR_FIELDS = {
    "name", "client_id", "type", "activity_sector", "status", "briefing_status",
    "briefing_context", "platforms", "next_deadline", "autopilot_enabled",
    "global_research_cache", "owner_id",
}


def _parse_stage(value) -> WorkflowStage | None:
    if value is None or value == "":
        return None
    if isinstance(value, WorkflowStage):
        return value
    try:
        return WorkflowStage(value)
    except ValueError:
        raise ValidationError(
            f"Invalid workflow stage: {value}",
            details={"current_workflow_stage": value, "allowed": [s.value for s in WorkflowStage]},
        )


def _check_choice(name: str, value, allowed: set, nullable: bool = False):
    if value is None and nullable:
        return
    if value not in allowed:
        raise ValidationError(
            f"Invalid {name}: {value}",
            details={name: value, "allowed": sorted(allowed)},
        )


def _merge_settings(current: AutopilotSettings, update) -> AutopilotSettings:
    if isinstance(update, AutopilotSettings):
        return copy.deepcopy(update)
    if not isinstance(update, dict):
        raise ValidationError("autopilot_settings must be an object")
    unknown = set(update) - _SETTINGS_KEYS
    if unknown:
        raise ValidationError(
            "Unknown autopilot settings", details={"fields": sorted(unknown)}
        )
    changes = dict(update)
    if "current_workflow_stage" in changes:
        changes["current_workflow_stage"] = _parse_stage(changes["current_workflow_stage"])
    if "rotation_period" in changes:
        _check_choice("rotation_period", changes["rotation_period"], ROTATION_PERIODS)
    return replace(current, **changes)


def _parse_results(mapping) -> dict[str, AuditResultRecord]:
    if not isinstance(mapping, dict):
        raise ValidationError("audit_results must be an object keyed by workflow type")
    return {wf: AuditResultRecord.from_dict(data, wf) for wf, data in mapping.items()}


def merge_partial(record: ProjectRecord, partial: dict[str, Any]) -> ProjectRecord:
    """Return a new record with ``partial`` applied; ``record`` is not modified."""
    unknown = set(partial) - _SCALAR_FIELDS - {"autopilot_settings", "audit_results", "audit_result"}
    if unknown:
        raise ValidationError("Unknown project fields", details={"fields": sorted(unknown)})

    changes: dict[str, Any] = {}
    for key in _SCALAR_FIELDS & set(partial):
        changes[key] = partial[key]

    if "status" in changes:
        _check_choice("status", changes["status"], PROJECT_STATUSES)
    if "briefing_status" in changes:
        _check_choice("briefing_status", changes["briefing_status"], BRIEFING_STATUSES)
    if "briefing_context" in changes:
        _check_choice("briefing_context", changes["briefing_context"], BRIEFING_CONTEXTS, nullable=True)
    if "name" in changes and not str(changes["name"] or "").strip():
        raise ValidationError("name cannot be empty", details={"field": "name"})
    if "autopilot_enabled" in changes:
        changes["autopilot_enabled"] = bool(changes["autopilot_enabled"])
    if "platforms" in changes:
        changes["platforms"] = list(changes["platforms"] or [])
    if "global_research_cache" in changes:
        changes["global_research_cache"] = changes["global_research_cache"] or ""

    if "autopilot_settings" in partial:
        changes["autopilot_settings"] = _merge_settings(
            record.autopilot_settings, partial["autopilot_settings"]
        )

    results = copy.deepcopy(record.audit_results)
    if "audit_results" in partial:
        results = _parse_results(partial["audit_results"] or {})
    if "audit_result" in partial:
        single = AuditResultRecord.from_dict(partial["audit_result"])
        results[single.workflow_type] = single
    changes["audit_results"] = results

    merged = replace(copy.deepcopy(record), **changes)
    merged.updated_at = utcnow_iso()
    return merged


# ═════════════════════════════════════════════════════════════════════════════
# Store interface
# ═════════════════════════════════════════════════════════════════════════════

ChangeCallback = Callable[[str], None]


class ProjectStore(ABC):
    """Durable storage for projects, clients, settings and the activity log.

    Every successful project write (create/save/delete) notifies the
    subscribers registered through ``subscribe`` with the project id.
    """

    def __init__(self):
        self._subscribers: list[ChangeCallback] = []
        self._sub_lock = threading.Lock()

    # ── Projects ─────────────────────────────────────────────────────────

    @abstractmethod
    def load(self, project_id: str) -> ProjectRecord:
        """Return the project or raise NotFoundError."""

    @abstractmethod
    def save(self, project_id: str, partial: dict) -> ProjectRecord:
        """Merge ``partial`` into the stored project and return the result.

        Raises:
            NotFoundError: unknown project.
            ValidationError: a value outside its domain.
            StoreError: the backend could not persist the write.
        """

    @abstractmethod
    def list(self, owner_id: str | None, *, client_id: str | None = None) -> list[ProjectRecord]:
        """Projects of ``owner_id`` (all owners when None)."""

    @abstractmethod
    def create(self, data: dict) -> ProjectRecord:
        ...

    @abstractmethod
    def delete(self, project_id: str) -> None:
        ...

    # ── Clients ──────────────────────────────────────────────────────────

    @abstractmethod
    def list_clients(self, owner_id: str) -> list[dict]:
        ...

    @abstractmethod
    def create_client(self, data: dict) -> dict:
        ...

    @abstractmethod
    def load_client(self, client_id: str) -> dict:
        ...

    # ── Settings ─────────────────────────────────────────────────────────

    @abstractmethod
    def get_setting(self, key: str, default=None):
        ...

    @abstractmethod
    def set_setting(self, key: str, value) -> None:
        ...

    # ── Activity log ─────────────────────────────────────────────────────

    @abstractmethod
    def append_event(self, *, project_id: str | None, event_type: str,
                     from_stage: str | None = None, to_stage: str | None = None,
                     workflow_type: str | None = None, actor: str = "system",
                     message: str = "") -> dict:
        ...

    @abstractmethod
    def list_events(self, project_id: str, limit: int = 50) -> list[dict]:
        """Newest first."""

    # ── Change feed ──────────────────────────────────────────────────────

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register ``callback(project_id)``; returns an unsubscribe function."""
        with self._sub_lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._sub_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, project_id: str) -> None:
        with self._sub_lock:
            callbacks = list(self._subscribers)
        for cb in callbacks:
            try:
                cb(project_id)
            except Exception:
                logger.exception(
                    "Change subscriber failed", extra={"project_id": project_id}
                )


def validate_client_data(data: dict) -> dict:
    """Normalise client creation input."""
    from app.models.client import QUESTIONNAIRE_STATUSES

    owner_id = str(data.get("owner_id", "") or "").strip()
    company = str(data.get("company_name", "") or "").strip()
    if not owner_id:
        raise ValidationError("owner_id is required", details={"field": "owner_id"})
    if not company:
        raise ValidationError("company_name is required", details={"field": "company_name"})
    questionnaire = data.get("questionnaire_status") or "not_sent"
    _check_choice("questionnaire_status", questionnaire, QUESTIONNAIRE_STATUSES)
    return {
        "id": str(data.get("id") or new_id()),
        "owner_id": owner_id,
        "company_name": company,
        "first_name": data.get("first_name"),
        "last_name": data.get("last_name"),
        "email": data.get("email"),
        "phone": data.get("phone"),
        "language": data.get("language"),
        "activities": data.get("activities"),
        "country": data.get("country"),
        "city": data.get("city"),
        "questionnaire_status": questionnaire,
        "autopilot_excluded": bool(data.get("autopilot_excluded", False)),
    }


def build_project_store(app) -> ProjectStore:
    """Instantiate the store selected by ``STORE_BACKEND`` / ``DEMO_MODE``."""
    backend = app.config.get("STORE_BACKEND", "sql")
    if app.config.get("DEMO_MODE"):
        backend = "memory"

    if backend == "memory":
        from app.services.store_memory import InMemoryProjectStore

        store = InMemoryProjectStore(seed=app.config.get("DEMO_SEED", False))
    elif backend == "sql":
        from app.services.store_sql import SqlProjectStore

        store = SqlProjectStore()
    else:
        raise RuntimeError(f"Unknown STORE_BACKEND: {backend}")

    app.logger.info("Project store: %s", type(store).__name__)
    return store
