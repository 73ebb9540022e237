"""
Community Autopilot
Audit orchestration.

Runs audit sub-workflows for projects in AUDIT_SEARCH and re-evaluates
stage progression after each step. There is no background scheduler:
progression is evaluated whenever a step resolves, on explicit requests
and on ``tick`` (the ``flask autopilot-tick`` command).

Usage:
    svc = AuditService(store, engine, runner, notifier)
    outcome = svc.run_step(project_id)                  # manual, one step
    outcome = svc.run_autopilot(project_id)             # automatic chain
"""

from __future__ import annotations

import logging

from app.core.exceptions import NotFoundError, StoreError, ValidationError
from app.models.workflow import (
    AUDIT_FAILED_SUMMARY,
    AUDIT_WORKFLOW_TYPES,
    PHASE_1_WORKFLOWS,
    PHASE_2_WORKFLOWS,
    WORKFLOW_LABELS,
    WorkflowStage,
)
from app.services.project_store import AuditResultRecord, ProjectRecord, ProjectStore, utcnow_iso
from app.services.workflow_engine import RUN_STATE_COMPLETED, WorkflowEngine

logger = logging.getLogger(__name__)

_RUNNABLE_STATUSES = {"pending", "failed"}


class AuditService:
    """Coordinates the store, the engine and the audit runner."""

    def __init__(self, store: ProjectStore, engine: WorkflowEngine, runner, notifier=None,
                 *, max_steps: int = 10):
        self.store = store
        self.engine = engine
        self.runner = runner
        self.notifier = notifier
        self.max_steps = max_steps

    # ── Queries ──────────────────────────────────────────────────────────

    @staticmethod
    def next_pending_workflow(project: ProjectRecord) -> str | None:
        """First workflow type, in canonical order, that still has to run."""
        for wf_type in AUDIT_WORKFLOW_TYPES:
            result = project.audit_results.get(wf_type)
            if result is None or result.status in _RUNNABLE_STATUSES:
                return wf_type
        return None

    def build_context(self, project: ProjectRecord) -> dict:
        """Brief context handed to the audit prompts."""
        context = {
            "name": project.name,
            "type": project.type,
            "activity_sector": project.activity_sector,
            "briefing_context": project.briefing_context,
            "platforms": list(project.platforms),
        }
        if project.client_id:
            try:
                client = self.store.load_client(project.client_id)
            except NotFoundError:
                client = None
            if client:
                context["client"] = {
                    "company_name": client.get("company_name"),
                    "city": client.get("city"),
                    "country": client.get("country"),
                    "language": client.get("language"),
                    "activities": client.get("activities"),
                }
        return context

    def status_report(self, project_id: str) -> dict:
        project = self.store.load(project_id)
        status = self.engine.audit_status(project)

        def _items(types):
            items = []
            for wf_type in types:
                result = project.audit_results.get(wf_type)
                item = result.to_dict() if result else {
                    "workflow_type": wf_type, "status": "pending", "summary": "",
                    "score": None, "sources": [], "tables": [], "completed_at": None,
                }
                item["label"] = WORKFLOW_LABELS[wf_type]
                items.append(item)
            return items

        return {
            "project_id": project.id,
            "stage": project.stage.value,
            **status.to_dict(),
            "next_workflow": self.next_pending_workflow(project),
            "has_research_cache": bool(project.global_research_cache),
            "phases": {
                "phase_1": _items(PHASE_1_WORKFLOWS),
                "phase_2": _items(PHASE_2_WORKFLOWS),
            },
        }

    # ── Research cache ───────────────────────────────────────────────────

    def ensure_research(self, project: ProjectRecord) -> ProjectRecord:
        """Reuse the project's research cache or fill it.

        A failed research sweep is not fatal: the audit continues without
        a cache and a warning notification is emitted.
        """
        if project.global_research_cache:
            return project
        try:
            text = self.runner.research(self.build_context(project))
        except Exception as e:
            logger.warning("Consolidated research failed, continuing without cache: %s", e,
                           extra={"project_id": project.id})
            self._notify(
                title=f"Research unavailable for {project.name}",
                message="Audit steps will run without the shared research report.",
                severity="warning",
                project=project,
            )
            return project
        return self.store.save(project.id, {"global_research_cache": text})

    # ── Steps ────────────────────────────────────────────────────────────

    def run_step(self, project_id: str, workflow_type: str | None = None, *,
                 automatic: bool = False) -> dict:
        """Run one audit sub-workflow and re-evaluate the stage.

        Automatic runs are a no-op (``result`` is None) unless autopilot is
        permitted and the project is in AUDIT_SEARCH. Manual runs ignore
        autopilot flags but still require AUDIT_SEARCH. A result whose
        ``running`` placeholder was cleared by a reset is discarded. When
        the result cannot be written the step is marked failed before the
        StoreError propagates.

        Returns:
            ``{"project", "result", "advanced", "workflow_type", "skipped"}``
        """
        project = self.store.load(project_id)

        if automatic:
            global_on = self.engine.is_global_autopilot_enabled()
            if not self.engine.autopilot_permitted(project, global_on):
                return self._skipped(project, "autopilot not permitted")
            if project.stage != WorkflowStage.AUDIT_SEARCH:
                return self._skipped(project, f"stage is {project.stage.value}")
        elif project.stage != WorkflowStage.AUDIT_SEARCH:
            raise ValidationError(
                "Audit steps can only run in AUDIT_SEARCH",
                details={"stage": project.stage.value},
            )

        if workflow_type is None:
            workflow_type = self.next_pending_workflow(project)
            if workflow_type is None:
                if automatic:
                    return self._skipped(project, "no pending audit step")
                raise ValidationError("No pending audit step", details={"project_id": project_id})
        elif workflow_type not in AUDIT_WORKFLOW_TYPES:
            raise ValidationError(
                f"Unknown audit workflow type: {workflow_type}",
                details={"workflow_type": workflow_type, "allowed": list(AUDIT_WORKFLOW_TYPES)},
            )

        existing = project.audit_results.get(workflow_type)
        if existing is not None and existing.status == "running":
            raise ValidationError(
                f"{workflow_type} is already running", details={"workflow_type": workflow_type}
            )

        logger.info("Audit step started: %s", workflow_type,
                    extra={"project_id": project_id, "workflow_type": workflow_type})
        project = self.store.save(project_id, {
            "audit_result": {"workflow_type": workflow_type, "status": "running"},
        })

        try:
            project = self.ensure_research(project)
            result = self.runner.run(
                workflow_type, self.build_context(project),
                project.global_research_cache or None,
            )
            current = self.store.load(project_id)
            placeholder = current.audit_results.get(workflow_type)
            if placeholder is None or placeholder.status != "running":
                # The cycle was reset while the runner was busy
                logger.warning("Audit step result discarded: %s", workflow_type,
                               extra={"project_id": project_id, "workflow_type": workflow_type})
                return self._skipped(current, "audit cycle reset while the step was running")
            project = self.store.save(project_id, {"audit_result": result})
        except Exception:
            self._mark_failed(project_id, workflow_type)
            raise

        self.engine.record_step(project, workflow_type, result.status)

        advanced_project = self.engine.advance_if_eligible(
            project, self.engine.is_global_autopilot_enabled()
        )
        advanced = advanced_project is not project
        if not advanced and self.engine.audit_status(project).status == RUN_STATE_COMPLETED:
            self._notify(
                title=f"Audit complete for {project.name}",
                message="All 10 analyses are done. Approve to move to strategy.",
                severity="success",
                project=project,
            )

        return {
            "project": advanced_project,
            "result": result,
            "advanced": advanced,
            "workflow_type": workflow_type,
            "skipped": None,
        }

    def run_autopilot(self, project_id: str) -> dict:
        """Chain automatic steps until refused, nothing is pending, a step
        fails, the stage advances or ``max_steps`` is reached."""
        project = self.store.load(project_id)
        global_on = self.engine.is_global_autopilot_enabled()
        advanced = self.engine.advance_if_eligible(project, global_on) is not project

        steps = []
        for _ in range(self.max_steps):
            outcome = self.run_step(project_id, automatic=True)
            if outcome["result"] is None:
                break
            steps.append(outcome["result"].to_dict())
            if outcome["advanced"]:
                advanced = True
                break
            if outcome["result"].status != "completed":
                break

        project = self.store.load(project_id)
        return {"project": project, "steps": steps, "advanced": advanced}

    def restart_analysis(self, project_id: str, *, actor: str = "system") -> dict:
        """Reset the audit cycle, then run the first step manually."""
        project = self.store.load(project_id)
        if project.stage != WorkflowStage.AUDIT_SEARCH:
            raise ValidationError(
                "Analysis can only be restarted in AUDIT_SEARCH",
                details={"stage": project.stage.value},
            )
        self.engine.reset_audit_cycle(project, actor=actor)
        return self.run_step(project_id)

    def tick(self, owner_id: str | None = None) -> dict:
        """Evaluate ``advance_if_eligible`` once for every listed project."""
        global_on = self.engine.is_global_autopilot_enabled()
        evaluated, advanced, failed = 0, [], []
        for project in self.store.list(owner_id):
            evaluated += 1
            try:
                updated = self.engine.advance_if_eligible(project, global_on)
            except StoreError as exc:
                logger.warning("Tick could not advance project: %s", exc,
                               extra={"project_id": project.id})
                failed.append(project.id)
                continue
            if updated is not project:
                advanced.append(project.id)
        logger.info("Autopilot tick: evaluated=%d advanced=%d failed=%d",
                    evaluated, len(advanced), len(failed))
        return {
            "global_autopilot": global_on,
            "evaluated": evaluated,
            "advanced": advanced,
            "failed": failed,
        }

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _skipped(project: ProjectRecord, reason: str) -> dict:
        return {"project": project, "result": None, "advanced": False,
                "workflow_type": None, "skipped": reason}

    def _mark_failed(self, project_id: str, workflow_type: str) -> None:
        failed = AuditResultRecord(workflow_type=workflow_type, status="failed",
                                   summary=AUDIT_FAILED_SUMMARY, completed_at=utcnow_iso())
        try:
            self.store.save(project_id, {"audit_result": failed})
        except (StoreError, NotFoundError) as exc:
            logger.error("Could not record failed step: %s", exc,
                         extra={"project_id": project_id, "workflow_type": workflow_type})

    def _notify(self, **kwargs) -> None:
        if self.notifier is not None:
            self.notifier.notify(**kwargs)
