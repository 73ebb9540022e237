"""
Community Autopilot
In-memory project store (demo mode).

Records are deep-copied on the way in and out, so callers never share
mutable state with the store. One re-entrant lock guards all maps.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading

from app.core.exceptions import ConflictError, NotFoundError
from app.models.workflow import AUDIT_WORKFLOW_TYPES, WorkflowStage
from app.services.project_store import (
    AuditResultRecord,
    ProjectRecord,
    ProjectStore,
    merge_partial,
    utcnow_iso,
    validate_client_data,
)

logger = logging.getLogger(__name__)

DEMO_OWNER_ID = "demo-agency"

# (name, type, stage, activity sector, briefing status)
DEMO_SCENARIOS = [
    ("Le Petit Bistro", "Lieu Physique", WorkflowStage.BRIEF_RECEIVED, "Restoration / Food", "not_sent"),
    ("Music Fest Open", "Événement", WorkflowStage.BRIEF_RECEIVED, "Travel / Tourism", "not_sent"),
    ("Urban Threads", "Marque", WorkflowStage.BRIEF_RECEIVED, "Fashion / Retail", "sent"),
    ("organic-market.bio", "Site E-commerce", WorkflowStage.AUDIT_SEARCH, "Restoration / Food", "completed"),
    ("CrossFit Downtown", "Lieu Physique", WorkflowStage.AUDIT_SEARCH, "Health & Wellness", "completed"),
    ("Rebranding 2024", "Entreprise / Société", WorkflowStage.AUDIT_SEARCH, "Consulting", "completed"),
    ("luxury-watches.net", "Site E-commerce", WorkflowStage.STRATEGY_GEN, "Fashion / Retail", "completed"),
    ("Summer Campaign", "Marque", WorkflowStage.STRATEGY_GEN, "Fashion / Retail", "completed"),
    ("New App Launch", "Application Mobile", WorkflowStage.STRATEGY_GEN, "Tech / SaaS", "completed"),
    ("Gala de Charité Hiver", "Événement", WorkflowStage.ACTION_PLAN, "Non-Profit", "completed"),
    ("Rapid Works", "Entreprise / Société", WorkflowStage.ACTION_PLAN, "Tech / SaaS", "completed"),
    ("TechFlow", "Entreprise / Société", WorkflowStage.PRODUCTION, "Tech / SaaS", "completed"),
]

_CITIES = ["Paris", "Lyon", "Bordeaux", "Marseille", "Lille", "Nantes"]
_ROTATIONS = ["15_days", "1_month", "3_months", "6_months"]


class InMemoryProjectStore(ProjectStore):
    """Dict-backed ProjectStore with the same semantics as the SQL backend."""

    def __init__(self, seed: bool = False):
        super().__init__()
        self._lock = threading.RLock()
        self._projects: dict[str, ProjectRecord] = {}
        self._clients: dict[str, dict] = {}
        self._settings: dict[str, object] = {}
        self._events: list[dict] = []
        self._event_ids = itertools.count(1)
        if seed:
            self.seed_demo()

    def _get(self, project_id: str) -> ProjectRecord:
        record = self._projects.get(project_id)
        if record is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return record

    def _require_client(self, client_id: str | None) -> None:
        if client_id and client_id not in self._clients:
            raise NotFoundError(resource="Client", resource_id=client_id)

    # ── Projects ─────────────────────────────────────────────────────────

    def load(self, project_id: str) -> ProjectRecord:
        with self._lock:
            return copy.deepcopy(self._get(project_id))

    def save(self, project_id: str, partial: dict) -> ProjectRecord:
        with self._lock:
            merged = merge_partial(self._get(project_id), partial)
            if "client_id" in partial:
                self._require_client(merged.client_id)
            self._projects[project_id] = merged
            result = copy.deepcopy(merged)
        self._emit(project_id)
        return result

    def list(self, owner_id: str | None, *, client_id: str | None = None) -> list[ProjectRecord]:
        with self._lock:
            return [
                copy.deepcopy(p) for p in self._projects.values()
                if (owner_id is None or p.owner_id == owner_id)
                and (client_id is None or p.client_id == client_id)
            ]

    def create(self, data: dict) -> ProjectRecord:
        record = ProjectRecord.from_dict(data)
        with self._lock:
            if record.id in self._projects:
                raise ConflictError("Project", "id", record.id)
            self._require_client(record.client_id)
            self._projects[record.id] = record
            result = copy.deepcopy(record)
        self._emit(record.id)
        return result

    def delete(self, project_id: str) -> None:
        with self._lock:
            self._get(project_id)
            del self._projects[project_id]
        self._emit(project_id)

    # ── Clients ──────────────────────────────────────────────────────────

    def list_clients(self, owner_id: str) -> list[dict]:
        with self._lock:
            rows = [copy.deepcopy(c) for c in self._clients.values() if c["owner_id"] == owner_id]
        return sorted(rows, key=lambda c: c["company_name"])

    def create_client(self, data: dict) -> dict:
        values = validate_client_data(data)
        values["created_at"] = utcnow_iso()
        with self._lock:
            if values["id"] in self._clients:
                raise ConflictError("Client", "id", values["id"])
            self._clients[values["id"]] = values
        return copy.deepcopy(values)

    def load_client(self, client_id: str) -> dict:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                raise NotFoundError(resource="Client", resource_id=client_id)
            return copy.deepcopy(client)

    # ── Settings ─────────────────────────────────────────────────────────

    def get_setting(self, key: str, default=None):
        with self._lock:
            return copy.deepcopy(self._settings.get(key, default))

    def set_setting(self, key: str, value) -> None:
        with self._lock:
            self._settings[key] = copy.deepcopy(value)

    # ── Activity log ─────────────────────────────────────────────────────

    def append_event(self, *, project_id, event_type, from_stage=None, to_stage=None,
                     workflow_type=None, actor="system", message="") -> dict:
        event = {
            "id": next(self._event_ids),
            "project_id": project_id,
            "event_type": event_type,
            "from_stage": from_stage,
            "to_stage": to_stage,
            "workflow_type": workflow_type,
            "actor": actor,
            "message": message,
            "created_at": utcnow_iso(),
        }
        with self._lock:
            self._events.append(event)
        return dict(event)

    def list_events(self, project_id: str, limit: int = 50) -> list[dict]:
        with self._lock:
            rows = [dict(e) for e in self._events if e["project_id"] == project_id]
        return list(reversed(rows))[:limit]

    # ── Demo data ────────────────────────────────────────────────────────

    def seed_demo(self, owner_id: str = DEMO_OWNER_ID) -> None:
        """Populate one client and one project per demo scenario."""
        now = utcnow_iso()
        for i, (name, ptype, stage, sector, briefing) in enumerate(DEMO_SCENARIOS, start=1):
            client_id = f"client_{i}"
            self.create_client({
                "id": client_id,
                "owner_id": owner_id,
                "company_name": name,
                "city": _CITIES[i % len(_CITIES)],
                "country": "France",
                "language": "fr",
                "activities": sector,
                "questionnaire_status": briefing,
            })
            results = {}
            if stage != WorkflowStage.BRIEF_RECEIVED and stage != WorkflowStage.AUDIT_SEARCH:
                results = {
                    wf: AuditResultRecord(
                        workflow_type=wf,
                        status="completed",
                        summary="Demo analysis.",
                        score=70.0,
                        completed_at=now,
                    )
                    for wf in AUDIT_WORKFLOW_TYPES
                }
            self.create({
                "id": f"proj_{client_id}_0",
                "owner_id": owner_id,
                "client_id": client_id,
                "name": name,
                "type": ptype,
                "activity_sector": sector,
                "status": "active",
                "briefing_status": briefing,
                "platforms": ["instagram", "linkedin"],
                "autopilot_enabled": i % 2 == 0,
                "autopilot_settings": {
                    "rotation_period": _ROTATIONS[i % len(_ROTATIONS)],
                    "cycle_start_date": now,
                    "current_workflow_stage": stage,
                },
                "audit_results": results,
            })
        logger.info("Demo store seeded: %d projects", len(DEMO_SCENARIOS))
