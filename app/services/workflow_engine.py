"""
Community Autopilot
Workflow Engine: stage progression and audit completion.

Owns a project's workflow stage. Computes the derived audit run state,
decides whether automatic progression may happen and applies stage
transitions through the ProjectStore.

Usage:
    engine = WorkflowEngine(store, notifier)
    status = engine.audit_status(project)          # running | paused | completed
    project = engine.advance_if_eligible(project, global_autopilot=True)
    project = engine.apply_event(project, "strategy_approved", actor="ops@agency")

Automatic progression requires ``project.status == "active"`` AND the
project flag AND the global flag. Explicit events are not gated by
autopilot. A transition is visible to callers only after the store
confirmed the write.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from app.core.exceptions import StoreError, TransitionError, ValidationError
from app.models.settings import GLOBAL_AUTOPILOT_KEY
from app.models.workflow import (
    AUDIT_FAILED_SUMMARY,
    AUDIT_TOTAL_STEPS,
    STAGE_EVENTS,
    WORKFLOW_LABELS,
    WorkflowStage,
    validate_stage_transition,
)
from app.services.project_store import ProjectRecord, ProjectStore, utcnow_iso

logger = logging.getLogger(__name__)

RUN_STATE_RUNNING = "running"
RUN_STATE_PAUSED = "paused"
RUN_STATE_COMPLETED = "completed"


# ═════════════════════════════════════════════════════════════════════════════
# Audit status (pure)
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AuditStatus:
    """Aggregate audit progress of one project."""
    status: str
    current: int
    total: int = AUDIT_TOTAL_STEPS

    def to_dict(self) -> dict:
        return {"status": self.status, "current": self.current, "total": self.total}


def compute_audit_status(project: ProjectRecord, *, running_override: bool = False,
                         paused_override: bool = False) -> AuditStatus:
    """Derive ``{status, current, total}`` from the project's audit results.

    Only ``completed`` entries count; ``failed`` and ``running`` never do.
    """
    results = project.audit_results.values()
    current = min(sum(1 for r in results if r.status == "completed"), AUDIT_TOTAL_STEPS)

    if current >= AUDIT_TOTAL_STEPS:
        return AuditStatus(RUN_STATE_COMPLETED, current)

    status = RUN_STATE_PAUSED
    if running_override or any(r.status == "running" for r in results):
        status = RUN_STATE_RUNNING
    if paused_override:
        status = RUN_STATE_PAUSED
    return AuditStatus(status, current)


class RunStateOverrides:
    """Process-local optimistic run state per project. Never persisted."""

    def __init__(self):
        self._states: dict[str, str] = {}
        self._lock = threading.Lock()

    def set(self, project_id: str, state: str | None) -> None:
        if state not in (None, RUN_STATE_RUNNING, RUN_STATE_PAUSED):
            raise ValidationError(
                f"Invalid run state: {state}",
                details={"state": state, "allowed": [RUN_STATE_RUNNING, RUN_STATE_PAUSED]},
            )
        with self._lock:
            if state is None:
                self._states.pop(project_id, None)
            else:
                self._states[project_id] = state

    def get(self, project_id: str) -> str | None:
        with self._lock:
            return self._states.get(project_id)

    def clear(self, project_id: str) -> None:
        self.set(project_id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._states.clear()


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowEngine:
    """Stage state machine over a ProjectStore."""

    def __init__(self, store: ProjectStore, notifier=None, *, global_default: bool = False):
        self.store = store
        self.notifier = notifier
        self.global_default = global_default
        self.overrides = RunStateOverrides()

    # ── Derived state ────────────────────────────────────────────────────

    def audit_status(self, project: ProjectRecord) -> AuditStatus:
        override = self.overrides.get(project.id)
        return compute_audit_status(
            project,
            running_override=override == RUN_STATE_RUNNING,
            paused_override=override == RUN_STATE_PAUSED,
        )

    def set_run_state(self, project_id: str, state: str | None) -> None:
        self.overrides.set(project_id, state)

    def is_global_autopilot_enabled(self) -> bool:
        return bool(self.store.get_setting(GLOBAL_AUTOPILOT_KEY, self.global_default))

    @staticmethod
    def autopilot_permitted(project: ProjectRecord, global_autopilot: bool) -> bool:
        """Effective automatic-progression permission."""
        return project.status == "active" and project.autopilot_enabled and bool(global_autopilot)

    @staticmethod
    def eligible_next_stage(project: ProjectRecord) -> WorkflowStage | None:
        """Stage the project may move to on its own, ignoring autopilot flags."""
        stage = project.stage
        if stage == WorkflowStage.BRIEF_RECEIVED and project.briefing_status == "completed":
            return WorkflowStage.AUDIT_SEARCH
        if (stage == WorkflowStage.AUDIT_SEARCH
                and compute_audit_status(project).status == RUN_STATE_COMPLETED):
            return WorkflowStage.STRATEGY_GEN
        return None

    # ── Transitions ──────────────────────────────────────────────────────

    def advance_if_eligible(self, project: ProjectRecord, global_autopilot: bool) -> ProjectRecord:
        """Move the project one stage forward when its gate is met.

        Returns the same ``project`` object, untouched and without any
        store write, when automatic progression is not permitted or no
        gate is met. Raises StoreError if the write fails; the transition
        is then not applied.
        """
        if not self.autopilot_permitted(project, global_autopilot):
            return project
        next_stage = self.eligible_next_stage(project)
        if next_stage is None:
            return project

        saved = self._transition(project, next_stage)
        self._after_transition(project, saved, "auto_advanced", actor="autopilot")
        return saved

    def apply_event(self, project: ProjectRecord, event: str, *, actor: str = "system") -> ProjectRecord:
        """Apply an externally approved transition.

        Raises:
            ValidationError: unknown event.
            TransitionError: the project is not in the event's source stage,
                or the audit gate is not met for ``audit_completed``.
        """
        if event not in STAGE_EVENTS:
            raise ValidationError(
                f"Unknown workflow event: {event}",
                details={"event": event, "allowed": sorted(STAGE_EVENTS)},
            )
        required, next_stage = STAGE_EVENTS[event]
        stage = project.stage
        if stage != required:
            raise TransitionError(event, stage.value, f"requires stage {required.value}")

        extra = {}
        if event == "brief_completed":
            extra["briefing_status"] = "completed"
        elif event == "audit_completed":
            status = compute_audit_status(project)
            if status.status != RUN_STATE_COMPLETED:
                raise TransitionError(
                    event, stage.value,
                    f"{status.current}/{status.total} audit steps completed",
                )

        saved = self._transition(project, next_stage, extra)
        self._after_transition(project, saved, event, actor=actor)
        return saved

    def _transition(self, project: ProjectRecord, next_stage: WorkflowStage,
                    extra: dict | None = None) -> ProjectRecord:
        if not validate_stage_transition(project.stage, next_stage):
            raise TransitionError("advance", project.stage.value, f"cannot move to {next_stage.value}")
        settings = {"current_workflow_stage": next_stage.value}
        if next_stage == WorkflowStage.AUDIT_SEARCH and not project.autopilot_settings.cycle_start_date:
            settings["cycle_start_date"] = utcnow_iso()
        partial = {"autopilot_settings": settings, **(extra or {})}
        return self.store.save(project.id, partial)

    def _after_transition(self, before: ProjectRecord, after: ProjectRecord,
                          event_type: str, *, actor: str) -> None:
        old, new = before.stage.value, after.stage.value
        logger.info(
            "Stage %s → %s (%s)", old, new, event_type,
            extra={"project_id": after.id, "stage": new, "event_type": event_type},
        )
        self.log_event(after.id, event_type, from_stage=old, to_stage=new, actor=actor,
                       message=f"{after.name}: {old} → {new}")
        self.notify(
            title=f"{after.name} moved to {new}",
            message=f"Workflow advanced from {old} to {new}.",
            severity="success",
            project=after,
            stage=new,
        )

    # ── Audit cycle ──────────────────────────────────────────────────────

    def reset_audit_cycle(self, project: ProjectRecord, *, actor: str = "system") -> ProjectRecord:
        """Clear audit results and the research cache; stage is unchanged.

        Raises:
            TransitionError: the project is not in AUDIT_SEARCH.
        """
        if project.stage != WorkflowStage.AUDIT_SEARCH:
            raise TransitionError(
                "audit_reset", project.stage.value,
                f"requires stage {WorkflowStage.AUDIT_SEARCH.value}",
            )
        saved = self.store.save(project.id, {"audit_results": {}, "global_research_cache": ""})
        self.overrides.clear(project.id)
        logger.info("Audit cycle reset", extra={"project_id": project.id, "event_type": "audit_reset"})
        self.log_event(project.id, "audit_reset", from_stage=saved.stage.value,
                       to_stage=saved.stage.value, actor=actor,
                       message=f"{saved.name}: audit results cleared")
        return saved

    def record_step(self, project: ProjectRecord, workflow_type: str, status: str) -> None:
        """Log the outcome of one audit step."""
        label = WORKFLOW_LABELS.get(workflow_type, workflow_type)
        completed = compute_audit_status(project).current
        if status == "completed":
            self.log_event(project.id, "audit_step_completed", workflow_type=workflow_type,
                           message=f"{label} completed ({completed}/{AUDIT_TOTAL_STEPS})")
        else:
            self.log_event(project.id, "audit_step_failed", workflow_type=workflow_type,
                           message=f"{label} failed")
            self.notify(
                title=f"{label} failed for {project.name}",
                message=AUDIT_FAILED_SUMMARY,
                severity="error",
                project=project,
            )

    # ── Autopilot flags ──────────────────────────────────────────────────

    def toggle_global_autopilot(self, enabled: bool, *, actor: str = "system") -> bool:
        enabled = bool(enabled)
        self.store.set_setting(GLOBAL_AUTOPILOT_KEY, enabled)
        event_type = "global_autopilot_enabled" if enabled else "global_autopilot_disabled"
        logger.info("Global autopilot %s", "enabled" if enabled else "disabled",
                    extra={"event_type": event_type})
        self.log_event(None, event_type, actor=actor)
        self.notify(
            title="Autopilot activated" if enabled else "Autopilot paused",
            message="Automatic progression is now " + ("on." if enabled else "off for all projects."),
            severity="info",
        )
        return enabled

    def toggle_project_autopilot(self, project: ProjectRecord, enabled: bool, *,
                                 actor: str = "system", changes: dict | None = None) -> ProjectRecord:
        """Switch the project flag; ``changes`` are written in the same save."""
        saved = self.store.save(project.id, {**(changes or {}), "autopilot_enabled": bool(enabled)})
        event_type = "autopilot_enabled" if saved.autopilot_enabled else "autopilot_disabled"
        self.log_event(project.id, event_type, actor=actor)
        return saved

    # ── Side channels ────────────────────────────────────────────────────

    def log_event(self, project_id, event_type, **fields) -> None:
        try:
            self.store.append_event(project_id=project_id, event_type=event_type, **fields)
        except StoreError as exc:
            logger.warning("Activity log write failed: %s", exc,
                           extra={"project_id": project_id, "event_type": event_type})

    def notify(self, **kwargs) -> None:
        if self.notifier is not None:
            self.notifier.notify(**kwargs)
