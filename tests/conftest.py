"""
Shared pytest fixtures for the Community Autopilot test suite.

Provides:
    - app: Flask application (session-scoped, SQL store on in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - store / engine / audit_service: services wired by the app factory
    - memory_store: fresh InMemoryProjectStore
    - make_project: factory creating a project in a given store
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services.store_memory import InMemoryProjectStore

OWNER_ID = "agency-test"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Run-state overrides live in process memory, not in the database
        app.extensions["workflow_engine"].overrides.clear_all()
        yield
        app.extensions["workflow_engine"].overrides.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Service fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def store(app):
    return app.extensions["project_store"]


@pytest.fixture()
def engine(app):
    return app.extensions["workflow_engine"]


@pytest.fixture()
def audit_service(app):
    return app.extensions["audit_service"]


@pytest.fixture()
def memory_store():
    return InMemoryProjectStore()


@pytest.fixture()
def make_project(store):
    """Return a factory ``make_project(target_store=None, **fields)``.

    Defaults to an active project in AUDIT_SEARCH owned by ``OWNER_ID``.
    """
    def _make(target_store=None, **fields):
        data = {
            "owner_id": OWNER_ID,
            "name": "Acme Bakery",
            "type": "Lieu Physique",
            "activity_sector": "Restoration / Food",
            "status": "active",
            "briefing_status": "completed",
            "autopilot_settings": {"current_workflow_stage": "AUDIT_SEARCH"},
        }
        data.update(fields)
        return (target_store or store).create(data)

    return _make


def completed_results(count, *, status="completed"):
    """``audit_results`` mapping with ``count`` entries in canonical order."""
    from app.models.workflow import AUDIT_WORKFLOW_TYPES

    return {
        wf: {"workflow_type": wf, "status": status, "summary": "ok", "score": 80,
             "completed_at": "2026-01-01T00:00:00+00:00"}
        for wf in AUDIT_WORKFLOW_TYPES[:count]
    }


@pytest.fixture()
def results():
    """Expose ``completed_results`` to tests."""
    return completed_results
