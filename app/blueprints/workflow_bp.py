"""
Community Autopilot
Workflow & Audit Blueprint.

Endpoints:
    GET  /api/v1/projects/<project_id>/audit/status
    POST /api/v1/projects/<project_id>/audit/run          {"workflow_type"?}
    POST /api/v1/projects/<project_id>/audit/reset
    POST /api/v1/projects/<project_id>/audit/restart
    POST /api/v1/projects/<project_id>/audit/run-state    {"state": "running"|"paused"|null}
    POST /api/v1/projects/<project_id>/advance
    POST /api/v1/projects/<project_id>/events             {"event"}
    GET  /api/v1/projects/<project_id>/events
    GET  /api/v1/autopilot/global
    PUT  /api/v1/autopilot/global                         {"enabled"}
    PUT  /api/v1/projects/<project_id>/autopilot          {"enabled"}
    POST /api/v1/projects/<project_id>/autopilot/run
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import page_args
from app.models.workflow import STAGE_EVENTS
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import (
    current_actor,
    current_owner_id,
    get_audit_service,
    get_engine,
    get_store,
    parse_bool,
    serialize_project,
)

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _serialize_outcome(outcome: dict) -> dict:
    result = outcome.get("result")
    return {
        "project": serialize_project(outcome["project"]),
        "result": result.to_dict() if result is not None else None,
        "advanced": outcome["advanced"],
        "workflow_type": outcome.get("workflow_type"),
        "skipped": outcome.get("skipped"),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  AUDIT
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/projects/<project_id>/audit/status", methods=["GET"])
def audit_status(project_id):
    return jsonify(get_audit_service().status_report(project_id))


@workflow_bp.route("/projects/<project_id>/audit/run", methods=["POST"])
def run_audit_step(project_id):
    """Run one audit step manually (next pending one unless named)."""
    data = request.get_json(silent=True) or {}
    outcome = get_audit_service().run_step(project_id, data.get("workflow_type") or None)
    return jsonify(_serialize_outcome(outcome))


@workflow_bp.route("/projects/<project_id>/audit/reset", methods=["POST"])
def reset_audit(project_id):
    engine = get_engine()
    project = engine.reset_audit_cycle(get_store().load(project_id), actor=current_actor())
    return jsonify(serialize_project(project))


@workflow_bp.route("/projects/<project_id>/audit/restart", methods=["POST"])
def restart_audit(project_id):
    outcome = get_audit_service().restart_analysis(project_id, actor=current_actor())
    return jsonify(_serialize_outcome(outcome))


@workflow_bp.route("/projects/<project_id>/audit/run-state", methods=["POST"])
def set_run_state(project_id):
    """Set or clear the local running/paused override."""
    data = request.get_json(silent=True) or {}
    if "state" not in data:
        return api_error(E.VALIDATION_REQUIRED, "state is required")
    store, engine = get_store(), get_engine()
    project = store.load(project_id)
    engine.set_run_state(project_id, data["state"] or None)
    return jsonify(engine.audit_status(project).to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  STAGE PROGRESSION
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/projects/<project_id>/advance", methods=["POST"])
def advance(project_id):
    """Evaluate automatic progression for one project."""
    engine = get_engine()
    project = get_store().load(project_id)
    updated = engine.advance_if_eligible(project, engine.is_global_autopilot_enabled())
    return jsonify({"project": serialize_project(updated), "advanced": updated is not project})


@workflow_bp.route("/projects/<project_id>/events", methods=["POST"])
def apply_event(project_id):
    data = request.get_json(silent=True) or {}
    event = (data.get("event") or "").strip()
    if not event:
        return api_error(E.VALIDATION_REQUIRED, "event is required",
                         details={"allowed": sorted(STAGE_EVENTS)})
    project = get_engine().apply_event(get_store().load(project_id), event, actor=current_actor())
    return jsonify(serialize_project(project))


@workflow_bp.route("/projects/<project_id>/events", methods=["GET"])
def list_events(project_id):
    store = get_store()
    store.load(project_id)
    limit, _ = page_args(default_limit=50, max_limit=500)
    items = store.list_events(project_id, limit=limit)
    return jsonify({"items": items, "total": len(items)})


# ═══════════════════════════════════════════════════════════════════════════
#  AUTOPILOT
# ═══════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/autopilot/global", methods=["GET"])
def get_global_autopilot():
    return jsonify({"enabled": get_engine().is_global_autopilot_enabled()})


@workflow_bp.route("/autopilot/global", methods=["PUT"])
def put_global_autopilot():
    """Switch the global flag. Turning it on re-evaluates the owner's projects."""
    data = request.get_json(silent=True) or {}
    enabled = parse_bool(data.get("enabled"))
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")
    get_engine().toggle_global_autopilot(enabled, actor=current_actor())
    body = {"enabled": enabled}
    if enabled:
        body["tick"] = get_audit_service().tick(current_owner_id(data))
    return jsonify(body)


@workflow_bp.route("/projects/<project_id>/autopilot", methods=["PUT"])
def put_project_autopilot(project_id):
    data = request.get_json(silent=True) or {}
    enabled = parse_bool(data.get("enabled"))
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")
    engine = get_engine()
    project = engine.toggle_project_autopilot(get_store().load(project_id), enabled,
                                              actor=current_actor())
    project = engine.advance_if_eligible(project, engine.is_global_autopilot_enabled())
    return jsonify(serialize_project(project))


@workflow_bp.route("/projects/<project_id>/autopilot/run", methods=["POST"])
def run_autopilot(project_id):
    """Chain automatic audit steps while autopilot permits."""
    outcome = get_audit_service().run_autopilot(project_id)
    return jsonify({
        "project": serialize_project(outcome["project"]),
        "steps": outcome["steps"],
        "advanced": outcome["advanced"],
    })
