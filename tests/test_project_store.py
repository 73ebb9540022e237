"""
ProjectStore contract tests, run against both backends.

The SQL store uses the session-scoped app (in-memory SQLite); the memory
store is created fresh per test.
"""

import pytest

from app.core.exceptions import ConflictError, NotFoundError, StoreError, ValidationError
from app.models.workflow import AUDIT_WORKFLOW_TYPES, WorkflowStage
from app.services.project_store import (
    AuditResultRecord,
    ProjectRecord,
    build_project_store,
    merge_partial,
)
from app.services.store_memory import DEMO_SCENARIOS, InMemoryProjectStore
from app.services.store_sql import SqlProjectStore


@pytest.fixture(params=["memory", "sql"])
def any_store(request, app):
    if request.param == "memory":
        return InMemoryProjectStore()
    return app.extensions["project_store"]


def _data(**overrides):
    data = {"owner_id": "agency-1", "name": "Urban Threads", "status": "active"}
    data.update(overrides)
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Round trip
# ═════════════════════════════════════════════════════════════════════════════


class TestRoundTrip:
    @pytest.mark.parametrize("stage", list(WorkflowStage))
    def test_stage_survives_save_and_load(self, any_store, stage):
        project = any_store.create(_data())
        any_store.save(project.id, {"autopilot_settings": {"current_workflow_stage": stage.value}})
        loaded = any_store.load(project.id)
        assert loaded.autopilot_settings.current_workflow_stage is stage
        assert loaded.stage is stage

    def test_unset_stage_stays_unset(self, any_store):
        project = any_store.create(_data())
        loaded = any_store.load(project.id)
        assert loaded.autopilot_settings.current_workflow_stage is None
        assert loaded.stage == WorkflowStage.BRIEF_RECEIVED

    def test_audit_results_survive_exactly(self, any_store):
        project = any_store.create(_data())
        written = {
            "competitive_analysis": {
                "status": "completed", "summary": "Strong rivals", "score": 72.5,
                "sources": [{"title": "Benchmark", "uri": "https://example.com"}],
                "tables": [{"title": "T", "headers": ["a"], "rows": [["1"]]}],
                "completed_at": "2026-03-01T10:00:00+00:00",
            },
            "technical_audit": {"status": "failed", "summary": "Automated analysis failed."},
            "seo_audit": {"status": "running"},
        }
        any_store.save(project.id, {"audit_results": written})
        loaded = any_store.load(project.id)

        assert set(loaded.audit_results) == set(written)
        comp = loaded.audit_results["competitive_analysis"]
        assert comp.status == "completed"
        assert comp.score == 72.5
        assert comp.sources == written["competitive_analysis"]["sources"]
        assert comp.tables == written["competitive_analysis"]["tables"]
        assert comp.completed_at == "2026-03-01T10:00:00+00:00"
        assert comp.phase == "phase_1"
        assert loaded.audit_results["technical_audit"].status == "failed"
        assert loaded.audit_results["technical_audit"].phase == "phase_2"
        assert loaded.audit_results["seo_audit"].status == "running"

    def test_audit_results_replace_whole_mapping(self, any_store):
        project = any_store.create(_data())
        any_store.save(project.id, {"audit_results": {
            wf: {"status": "completed"} for wf in AUDIT_WORKFLOW_TYPES[:4]
        }})
        any_store.save(project.id, {"audit_results": {"trend_analysis": {"status": "failed"}}})
        assert list(any_store.load(project.id).audit_results) == ["trend_analysis"]

    def test_audit_result_upserts_single_entry(self, any_store):
        project = any_store.create(_data())
        any_store.save(project.id, {"audit_result": {"workflow_type": "seo_audit", "status": "running"}})
        any_store.save(project.id, {"audit_result": {"workflow_type": "market_analysis",
                                                     "status": "completed"}})
        any_store.save(project.id, {"audit_result": {"workflow_type": "seo_audit",
                                                     "status": "completed", "score": 60}})
        results = any_store.load(project.id).audit_results
        assert {k: v.status for k, v in results.items()} == {
            "seo_audit": "completed", "market_analysis": "completed",
        }

    def test_results_come_back_in_canonical_order(self, any_store):
        project = any_store.create(_data())
        reversed_types = list(reversed(AUDIT_WORKFLOW_TYPES))
        any_store.save(project.id, {"audit_results": {
            wf: {"status": "completed"} for wf in reversed_types
        }})
        loaded = any_store.load(project.id)
        if isinstance(any_store, SqlProjectStore):
            assert list(loaded.audit_results) == list(AUDIT_WORKFLOW_TYPES)
        assert set(loaded.audit_results) == set(AUDIT_WORKFLOW_TYPES)

    def test_settings_merge_key_by_key(self, any_store):
        project = any_store.create(_data(autopilot_settings={
            "rotation_period": "3_months", "current_workflow_stage": "AUDIT_SEARCH",
        }))
        any_store.save(project.id, {"autopilot_settings": {"last_rotation_date": "2026-01-01"}})
        settings = any_store.load(project.id).autopilot_settings
        assert settings.rotation_period == "3_months"
        assert settings.current_workflow_stage == WorkflowStage.AUDIT_SEARCH
        assert settings.last_rotation_date == "2026-01-01"


# ═════════════════════════════════════════════════════════════════════════════
# Validation & errors
# ═════════════════════════════════════════════════════════════════════════════


class TestValidation:
    def test_missing_project(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.load("nope")
        with pytest.raises(NotFoundError):
            any_store.save("nope", {"name": "x"})

    def test_invalid_stage_rejected(self, any_store):
        project = any_store.create(_data())
        with pytest.raises(ValidationError):
            any_store.save(project.id, {"autopilot_settings": {"current_workflow_stage": "LAUNCH"}})
        assert any_store.load(project.id).stage == WorkflowStage.BRIEF_RECEIVED

    @pytest.mark.parametrize("partial", [
        {"status": "archived"},
        {"briefing_status": "lost"},
        {"briefing_context": "WHATEVER"},
        {"autopilot_settings": {"rotation_period": "2_weeks"}},
        {"audit_result": {"workflow_type": "seo_audit", "status": "done"}},
        {"audit_results": {"horoscope": {"status": "completed"}}},
        {"unknown_field": 1},
        {"name": "  "},
    ])
    def test_values_outside_domain(self, any_store, partial):
        project = any_store.create(_data())
        with pytest.raises(ValidationError):
            any_store.save(project.id, partial)

    def test_create_requires_owner_and_name(self, any_store):
        with pytest.raises(ValidationError):
            any_store.create({"name": "x"})
        with pytest.raises(ValidationError):
            any_store.create({"owner_id": "o"})

    def test_duplicate_id(self, any_store):
        any_store.create(_data(id="fixed-id"))
        with pytest.raises(ConflictError):
            any_store.create(_data(id="fixed-id"))

    def test_unknown_client_rejected(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.create(_data(client_id="missing-client"))

    def test_delete(self, any_store):
        project = any_store.create(_data())
        any_store.delete(project.id)
        with pytest.raises(NotFoundError):
            any_store.load(project.id)


class TestMergePartial:
    def test_input_record_not_modified(self):
        record = ProjectRecord(id="p", owner_id="o", name="n")
        merged = merge_partial(record, {
            "status": "active",
            "audit_result": {"workflow_type": "seo_audit", "status": "completed"},
        })
        assert record.status == "planned"
        assert record.audit_results == {}
        assert merged.status == "active"
        assert isinstance(merged.audit_results["seo_audit"], AuditResultRecord)

    def test_phase_key_ignored(self):
        record = ProjectRecord(id="p", owner_id="o", name="n")
        merged = merge_partial(record, {"audit_result": {
            "workflow_type": "backlink_analysis", "status": "completed", "phase": "phase_1",
        }})
        assert merged.audit_results["backlink_analysis"].phase == "phase_2"


# ═════════════════════════════════════════════════════════════════════════════
# Listing, clients, settings, events, subscriptions
# ═════════════════════════════════════════════════════════════════════════════


class TestListingAndClients:
    def test_list_by_owner_and_all(self, any_store):
        any_store.create(_data(owner_id="a", name="one"))
        any_store.create(_data(owner_id="a", name="two"))
        any_store.create(_data(owner_id="b", name="three"))
        assert {p.name for p in any_store.list("a")} == {"one", "two"}
        assert len(any_store.list(None)) == 3

    def test_clients_and_client_filter(self, any_store):
        client = any_store.create_client({"owner_id": "a", "company_name": "Rapid Works"})
        any_store.create(_data(owner_id="a", name="linked", client_id=client["id"]))
        any_store.create(_data(owner_id="a", name="other"))

        assert [c["company_name"] for c in any_store.list_clients("a")] == ["Rapid Works"]
        assert any_store.load_client(client["id"])["company_name"] == "Rapid Works"
        assert [p.name for p in any_store.list("a", client_id=client["id"])] == ["linked"]

    def test_client_validation(self, any_store):
        with pytest.raises(ValidationError):
            any_store.create_client({"owner_id": "a"})
        with pytest.raises(ValidationError):
            any_store.create_client({"owner_id": "a", "company_name": "X",
                                     "questionnaire_status": "maybe"})
        with pytest.raises(NotFoundError):
            any_store.load_client("nope")


class TestSettingsAndEvents:
    def test_settings(self, any_store):
        assert any_store.get_setting("global_autopilot", "default") == "default"
        any_store.set_setting("global_autopilot", True)
        assert any_store.get_setting("global_autopilot") is True

    def test_events_newest_first_with_limit(self, any_store):
        project = any_store.create(_data())
        for i in range(3):
            any_store.append_event(project_id=project.id, event_type="audit_step_completed",
                                   message=f"step {i}")
        events = any_store.list_events(project.id, limit=2)
        assert [e["message"] for e in events] == ["step 2", "step 1"]


class TestSubscriptions:
    def test_writes_notify_subscribers(self, any_store):
        seen = []
        unsubscribe = any_store.subscribe(seen.append)
        project = any_store.create(_data())
        any_store.save(project.id, {"status": "completed"})
        unsubscribe()
        any_store.save(project.id, {"status": "active"})
        assert seen == [project.id, project.id]

    def test_failing_subscriber_does_not_break_write(self, any_store):
        def _boom(project_id):
            raise RuntimeError("listener crashed")

        unsubscribe = any_store.subscribe(_boom)
        try:
            project = any_store.create(_data())
            assert any_store.save(project.id, {"status": "completed"}).status == "completed"
        finally:
            unsubscribe()


# ═════════════════════════════════════════════════════════════════════════════
# Backend specifics
# ═════════════════════════════════════════════════════════════════════════════


def test_memory_store_returns_copies():
    store = InMemoryProjectStore()
    project = store.create(_data())
    loaded = store.load(project.id)
    loaded.platforms.append("tiktok")
    assert store.load(project.id).platforms == []


def test_demo_seed():
    store = InMemoryProjectStore(seed=True)
    projects = store.list("demo-agency")
    assert len(projects) == len(DEMO_SCENARIOS)
    by_stage = {}
    for p in projects:
        by_stage.setdefault(p.stage, []).append(p)
    for p in by_stage[WorkflowStage.STRATEGY_GEN]:
        assert len(p.audit_results) == 10


def test_sql_commit_failure_raises_store_error(app, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from app.models import db

    store = app.extensions["project_store"]
    project = store.create(_data())

    def _fail():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db.session, "commit", _fail)
    with pytest.raises(StoreError):
        store.save(project.id, {"status": "completed"})
    monkeypatch.undo()
    assert store.load(project.id).status == "active"


def test_build_project_store_selection(app):
    class _Fake:
        config = {"STORE_BACKEND": "memory", "DEMO_SEED": False}
        logger = app.logger

    assert isinstance(build_project_store(_Fake()), InMemoryProjectStore)
    _Fake.config = {"STORE_BACKEND": "sql", "DEMO_MODE": True, "DEMO_SEED": False}
    assert isinstance(build_project_store(_Fake()), InMemoryProjectStore)
    _Fake.config = {"STORE_BACKEND": "ftp"}
    with pytest.raises(RuntimeError):
        build_project_store(_Fake())
