"""
Workflow engine unit tests.

Runs against an InMemoryProjectStore wrapped to count writes, so every
transition can be checked for "exactly one save" and "no save when
ineligible". Covers:

    - audit status derivation (count, running / paused / completed, overrides)
    - advance_if_eligible gating (status, project flag, global flag, count)
    - explicit stage events and their guards
    - audit cycle reset
    - persistence failures during a transition
    - autopilot toggles and the activity log
"""

import pytest

from app.core.exceptions import StoreError, TransitionError, ValidationError
from app.models.workflow import AUDIT_WORKFLOW_TYPES, WorkflowStage
from app.services.project_store import AuditResultRecord, ProjectRecord
from app.services.store_memory import InMemoryProjectStore
from app.services.workflow_engine import (
    RunStateOverrides,
    WorkflowEngine,
    compute_audit_status,
)


# ═════════════════════════════════════════════════════════════════════════════
# Test doubles
# ═════════════════════════════════════════════════════════════════════════════


class RecordingStore(InMemoryProjectStore):
    """In-memory store that records every save call."""

    def __init__(self):
        super().__init__()
        self.saves = []

    def save(self, project_id, partial):
        self.saves.append((project_id, partial))
        return super().save(project_id, partial)


class FailingSaveStore(RecordingStore):
    """Store whose saves fail once ``broken`` is set."""

    broken = False

    def save(self, project_id, partial):
        if self.broken:
            self.saves.append((project_id, partial))
            raise StoreError("save", project_id)
        return super().save(project_id, partial)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, **kwargs):
        self.sent.append(kwargs)


def _results(completed=0, failed=0, running=0):
    types = iter(AUDIT_WORKFLOW_TYPES)
    out = {}
    for status, n in (("completed", completed), ("failed", failed), ("running", running)):
        for _ in range(n):
            wf = next(types)
            out[wf] = {"workflow_type": wf, "status": status}
    return out


def _create(store, *, stage="AUDIT_SEARCH", status="active", autopilot=True,
            briefing="completed", results=None):
    project = store.create({
        "owner_id": "agency-1",
        "name": "Le Petit Bistro",
        "status": status,
        "briefing_status": briefing,
        "autopilot_enabled": autopilot,
        "autopilot_settings": {"current_workflow_stage": stage},
        "audit_results": results or {},
    })
    store.saves.clear()
    return project


@pytest.fixture()
def rec_store():
    return RecordingStore()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def wf_engine(rec_store, notifier):
    return WorkflowEngine(rec_store, notifier)


# ═════════════════════════════════════════════════════════════════════════════
# compute_audit_status
# ═════════════════════════════════════════════════════════════════════════════


def _record(**results):
    return ProjectRecord(
        id="p1", owner_id="o", name="n",
        audit_results={
            wf: AuditResultRecord(workflow_type=wf, status=st) for wf, st in results.items()
        },
    )


class TestComputeAuditStatus:
    def test_empty_project_is_paused_at_zero(self):
        status = compute_audit_status(_record())
        assert (status.status, status.current, status.total) == ("paused", 0, 10)

    @pytest.mark.parametrize("completed,failed,running", [
        (0, 10, 0), (3, 2, 1), (9, 1, 0), (5, 0, 5), (10, 0, 0),
    ])
    def test_current_counts_only_completed(self, completed, failed, running):
        types = list(AUDIT_WORKFLOW_TYPES)
        statuses = ["completed"] * completed + ["failed"] * failed + ["running"] * running
        project = _record(**dict(zip(types, statuses)))
        status = compute_audit_status(project)
        assert status.current == completed
        assert 0 <= status.current <= status.total

    def test_any_running_entry_means_running(self):
        status = compute_audit_status(_record(seo_audit="running", market_analysis="completed"))
        assert status.status == "running"

    def test_failed_entries_alone_leave_paused(self):
        status = compute_audit_status(_record(seo_audit="failed"))
        assert status.status == "paused"

    def test_all_completed_is_completed(self):
        project = _record(**{wf: "completed" for wf in AUDIT_WORKFLOW_TYPES})
        assert compute_audit_status(project).status == "completed"

    def test_running_override(self):
        status = compute_audit_status(_record(), running_override=True)
        assert status.status == "running"

    def test_paused_override_downgrades_running(self):
        status = compute_audit_status(
            _record(seo_audit="running"), running_override=True, paused_override=True,
        )
        assert status.status == "paused"

    def test_paused_override_never_hides_completed(self):
        project = _record(**{wf: "completed" for wf in AUDIT_WORKFLOW_TYPES})
        assert compute_audit_status(project, paused_override=True).status == "completed"

    def test_input_not_mutated(self):
        project = _record(seo_audit="running")
        before = project.to_dict()
        compute_audit_status(project, running_override=True)
        assert project.to_dict() == before


class TestRunStateOverrides:
    def test_set_get_clear(self):
        overrides = RunStateOverrides()
        overrides.set("p1", "running")
        assert overrides.get("p1") == "running"
        overrides.clear("p1")
        assert overrides.get("p1") is None

    def test_invalid_state_rejected(self):
        with pytest.raises(ValidationError):
            RunStateOverrides().set("p1", "completed")

    def test_engine_uses_override(self, wf_engine, rec_store):
        project = _create(rec_store)
        wf_engine.set_run_state(project.id, "running")
        assert wf_engine.audit_status(project).status == "running"
        wf_engine.set_run_state(project.id, None)
        assert wf_engine.audit_status(project).status == "paused"


# ═════════════════════════════════════════════════════════════════════════════
# advance_if_eligible
# ═════════════════════════════════════════════════════════════════════════════


class TestAdvanceIfEligible:
    def test_nine_completed_does_not_advance(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=9))
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result is project
        assert result.stage == WorkflowStage.AUDIT_SEARCH
        assert rec_store.saves == []

    def test_ten_completed_advances_with_one_save(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=10))
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result.stage == WorkflowStage.STRATEGY_GEN
        assert len(rec_store.saves) == 1
        assert rec_store.load(project.id).stage == WorkflowStage.STRATEGY_GEN

    def test_input_record_untouched_after_advance(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=10))
        wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert project.stage == WorkflowStage.AUDIT_SEARCH

    @pytest.mark.parametrize("status", ["planned", "completed"])
    def test_inactive_project_never_advances(self, wf_engine, rec_store, status):
        project = _create(rec_store, status=status, results=_results(completed=10))
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result is project
        assert rec_store.saves == []

    @pytest.mark.parametrize("global_flag,project_flag,expected", [
        (False, True, WorkflowStage.AUDIT_SEARCH),
        (True, False, WorkflowStage.AUDIT_SEARCH),
        (False, False, WorkflowStage.AUDIT_SEARCH),
        (True, True, WorkflowStage.STRATEGY_GEN),
    ])
    def test_permission_is_and_of_both_flags(self, wf_engine, rec_store,
                                             global_flag, project_flag, expected):
        project = _create(rec_store, autopilot=project_flag, results=_results(completed=10))
        result = wf_engine.advance_if_eligible(project, global_autopilot=global_flag)
        assert result.stage == expected
        assert len(rec_store.saves) == (1 if expected == WorkflowStage.STRATEGY_GEN else 0)

    def test_failed_step_blocks_progress_forever(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=9, failed=1))
        for _ in range(5):
            project = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert project.stage == WorkflowStage.AUDIT_SEARCH
        assert rec_store.saves == []

    def test_briefing_completed_enters_audit(self, wf_engine, rec_store):
        project = _create(rec_store, stage="BRIEF_RECEIVED", briefing="completed")
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result.stage == WorkflowStage.AUDIT_SEARCH
        assert result.autopilot_settings.cycle_start_date

    def test_briefing_pending_stays(self, wf_engine, rec_store):
        project = _create(rec_store, stage="BRIEF_RECEIVED", briefing="sent")
        assert wf_engine.advance_if_eligible(project, global_autopilot=True) is project

    def test_unset_stage_reads_as_brief_received(self, wf_engine, rec_store):
        project = _create(rec_store, stage=None, briefing="completed")
        assert project.stage == WorkflowStage.BRIEF_RECEIVED
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result.stage == WorkflowStage.AUDIT_SEARCH

    def test_one_stage_per_call(self, wf_engine, rec_store):
        project = _create(rec_store, stage="BRIEF_RECEIVED", results=_results(completed=10))
        result = wf_engine.advance_if_eligible(project, global_autopilot=True)
        assert result.stage == WorkflowStage.AUDIT_SEARCH
        assert len(rec_store.saves) == 1

    @pytest.mark.parametrize("stage", ["STRATEGY_GEN", "ACTION_PLAN", "PRODUCTION"])
    def test_later_stages_need_explicit_events(self, wf_engine, rec_store, stage):
        project = _create(rec_store, stage=stage, results=_results(completed=10))
        assert wf_engine.advance_if_eligible(project, global_autopilot=True) is project

    def test_transition_logged_and_notified(self, wf_engine, rec_store, notifier):
        project = _create(rec_store, results=_results(completed=10))
        wf_engine.advance_if_eligible(project, global_autopilot=True)
        events = rec_store.list_events(project.id)
        assert events[0]["event_type"] == "auto_advanced"
        assert events[0]["from_stage"] == "AUDIT_SEARCH"
        assert events[0]["to_stage"] == "STRATEGY_GEN"
        assert events[0]["actor"] == "autopilot"
        assert notifier.sent[-1]["stage"] == "STRATEGY_GEN"


class TestPersistenceFailure:
    def test_failed_save_propagates_and_stage_unchanged(self, notifier):
        store = FailingSaveStore()
        engine = WorkflowEngine(store, notifier)
        project = _create(store, results=_results(completed=10))
        store.broken = True

        with pytest.raises(StoreError):
            engine.advance_if_eligible(project, global_autopilot=True)

        assert project.stage == WorkflowStage.AUDIT_SEARCH
        assert store.load(project.id).stage == WorkflowStage.AUDIT_SEARCH
        assert len(store.saves) == 1
        assert notifier.sent == []
        assert store.list_events(project.id) == []

    def test_retry_after_store_recovers(self, notifier):
        store = FailingSaveStore()
        engine = WorkflowEngine(store, notifier)
        project = _create(store, results=_results(completed=10))
        store.broken = True
        with pytest.raises(StoreError):
            engine.advance_if_eligible(project, global_autopilot=True)

        store.broken = False
        result = engine.advance_if_eligible(project, global_autopilot=True)
        assert result.stage == WorkflowStage.STRATEGY_GEN


# ═════════════════════════════════════════════════════════════════════════════
# Explicit events
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyEvent:
    @pytest.mark.parametrize("event,source,target", [
        ("brief_completed", "BRIEF_RECEIVED", "AUDIT_SEARCH"),
        ("audit_completed", "AUDIT_SEARCH", "STRATEGY_GEN"),
        ("strategy_approved", "STRATEGY_GEN", "ACTION_PLAN"),
        ("action_plan_finalized", "ACTION_PLAN", "PRODUCTION"),
    ])
    def test_valid_events(self, wf_engine, rec_store, event, source, target):
        project = _create(rec_store, stage=source, briefing="sent", autopilot=False,
                          results=_results(completed=10))
        result = wf_engine.apply_event(project, event, actor="ops@agency")
        assert result.stage.value == target
        assert len(rec_store.saves) == 1
        assert rec_store.list_events(project.id)[0]["actor"] == "ops@agency"

    def test_brief_completed_marks_briefing(self, wf_engine, rec_store):
        project = _create(rec_store, stage="BRIEF_RECEIVED", briefing="sent")
        result = wf_engine.apply_event(project, "brief_completed")
        assert result.briefing_status == "completed"

    def test_wrong_stage_rejected(self, wf_engine, rec_store):
        project = _create(rec_store, stage="BRIEF_RECEIVED")
        with pytest.raises(TransitionError):
            wf_engine.apply_event(project, "strategy_approved")
        assert rec_store.saves == []

    def test_no_skipping_from_production(self, wf_engine, rec_store):
        project = _create(rec_store, stage="PRODUCTION")
        with pytest.raises(TransitionError):
            wf_engine.apply_event(project, "action_plan_finalized")

    def test_audit_completed_requires_ten(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=9, failed=1))
        with pytest.raises(TransitionError, match="9/10"):
            wf_engine.apply_event(project, "audit_completed")
        assert rec_store.saves == []

    def test_unknown_event(self, wf_engine, rec_store):
        project = _create(rec_store)
        with pytest.raises(ValidationError):
            wf_engine.apply_event(project, "launch_rockets")


# ═════════════════════════════════════════════════════════════════════════════
# Reset & toggles
# ═════════════════════════════════════════════════════════════════════════════


class TestResetAuditCycle:
    def test_reset_clears_results_and_cache(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=7, failed=1))
        rec_store.save(project.id, {"global_research_cache": "report"})
        result = wf_engine.reset_audit_cycle(rec_store.load(project.id))
        assert result.audit_results == {}
        assert result.global_research_cache == ""
        assert result.stage == WorkflowStage.AUDIT_SEARCH
        assert result.briefing_status == "completed"

    def test_reset_is_idempotent(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=4))
        first = wf_engine.reset_audit_cycle(project)
        second = wf_engine.reset_audit_cycle(first)
        assert first.audit_results == second.audit_results == {}
        assert first.global_research_cache == second.global_research_cache == ""
        assert wf_engine.audit_status(second).current == 0

    def test_reset_clears_overrides(self, wf_engine, rec_store):
        project = _create(rec_store)
        wf_engine.set_run_state(project.id, "running")
        wf_engine.reset_audit_cycle(project)
        assert wf_engine.overrides.get(project.id) is None

    @pytest.mark.parametrize("stage", ["BRIEF_RECEIVED", "STRATEGY_GEN", "ACTION_PLAN"])
    def test_reset_outside_audit_stage_rejected(self, wf_engine, rec_store, stage):
        project = _create(rec_store, stage=stage, results=_results(completed=10))
        with pytest.raises(TransitionError):
            wf_engine.reset_audit_cycle(project)
        assert rec_store.saves == []
        assert wf_engine.audit_status(rec_store.load(project.id)).current == 10


class TestAutopilotToggles:
    def test_global_flag_default_and_persisted(self, rec_store, notifier):
        engine = WorkflowEngine(rec_store, notifier, global_default=True)
        assert engine.is_global_autopilot_enabled() is True
        engine.toggle_global_autopilot(False)
        assert engine.is_global_autopilot_enabled() is False
        assert rec_store.get_setting("global_autopilot") is False

    def test_project_toggle(self, wf_engine, rec_store):
        project = _create(rec_store, autopilot=False)
        result = wf_engine.toggle_project_autopilot(project, True, actor="ops")
        assert result.autopilot_enabled is True
        assert project.autopilot_enabled is False
        assert rec_store.list_events(project.id)[0]["event_type"] == "autopilot_enabled"

    def test_global_off_suppresses_then_on_advances(self, wf_engine, rec_store):
        project = _create(rec_store, results=_results(completed=10))
        wf_engine.toggle_global_autopilot(False)
        assert wf_engine.advance_if_eligible(
            project, wf_engine.is_global_autopilot_enabled()) is project

        wf_engine.toggle_global_autopilot(True)
        result = wf_engine.advance_if_eligible(project, wf_engine.is_global_autopilot_enabled())
        assert result.stage == WorkflowStage.STRATEGY_GEN
