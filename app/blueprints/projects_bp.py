"""
Community Autopilot
Clients & Projects Blueprint.

Endpoints:
    GET    /api/v1/clients
    POST   /api/v1/clients
    GET    /api/v1/clients/<client_id>          (with its projects)
    GET    /api/v1/projects                     ?client_id=&stage=&status=
    POST   /api/v1/projects
    GET    /api/v1/projects/<project_id>
    PATCH  /api/v1/projects/<project_id>
    DELETE /api/v1/projects/<project_id>

The workflow stage and audit results are not editable here; they move
through the workflow endpoints only.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.core.exceptions import TransitionError
from app.models.workflow import INITIAL_STAGE
from app.utils.errors import E, api_error, register_error_handlers
from app.utils.helpers import (
    current_actor,
    current_owner_id,
    get_engine,
    get_store,
    parse_bool,
    serialize_project,
)

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects_bp", __name__, url_prefix="/api/v1")
register_error_handlers(projects_bp)

# Fields owned by the workflow engine and the audit runner
_READ_ONLY_FIELDS = {"id", "stage", "audit_results", "audit_result", "global_research_cache",
                     "created_at", "updated_at", "audit_status"}


# ═══════════════════════════════════════════════════════════════════════════
#  CLIENTS
# ═══════════════════════════════════════════════════════════════════════════

@projects_bp.route("/clients", methods=["GET"])
def list_clients():
    items = get_store().list_clients(current_owner_id())
    return jsonify({"items": items, "total": len(items)})


@projects_bp.route("/clients", methods=["POST"])
def create_client():
    data = request.get_json(silent=True) or {}
    data["owner_id"] = current_owner_id(data)
    client = get_store().create_client(data)
    logger.info("Client created: %s", client["company_name"],
                extra={"client_id": client["id"], "owner_id": client["owner_id"]})
    return jsonify(client), 201


@projects_bp.route("/clients/<client_id>", methods=["GET"])
def get_client(client_id):
    store = get_store()
    client = store.load_client(client_id)
    projects = store.list(client["owner_id"], client_id=client_id)
    client["projects"] = [serialize_project(p) for p in projects]
    return jsonify(client)


# ═══════════════════════════════════════════════════════════════════════════
#  PROJECTS
# ═══════════════════════════════════════════════════════════════════════════

@projects_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = get_store().list(current_owner_id(), client_id=request.args.get("client_id"))

    stage = request.args.get("stage")
    if stage:
        projects = [p for p in projects if p.stage.value == stage]
    status = request.args.get("status")
    if status:
        projects = [p for p in projects if p.status == status]

    items = [serialize_project(p) for p in projects]
    return jsonify({"items": items, "total": len(items)})


@projects_bp.route("/projects", methods=["POST"])
def create_project():
    """Create a project. It always starts at the initial stage; the engine
    may move it to AUDIT_SEARCH right away when the brief is completed."""
    data = request.get_json(silent=True) or {}
    if not str(data.get("name", "") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    blocked = sorted({"audit_results", "audit_result", "global_research_cache"} & set(data))
    settings = data.get("autopilot_settings")
    if isinstance(settings, dict) and settings.get("current_workflow_stage") not in (
        None, "", INITIAL_STAGE.value,
    ):
        blocked.append("autopilot_settings.current_workflow_stage")
    if blocked:
        return api_error(E.VALIDATION_INVALID, "Fields cannot be set on creation",
                         details={"fields": blocked})

    data["owner_id"] = current_owner_id(data)
    engine = get_engine()
    project = get_store().create(data)
    project = engine.advance_if_eligible(project, engine.is_global_autopilot_enabled())
    return jsonify(serialize_project(project)), 201


@projects_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(serialize_project(get_store().load(project_id)))


@projects_bp.route("/projects/<project_id>", methods=["PATCH"])
def update_project(project_id):
    """Partial update of editable attributes, written in a single save.

    ``autopilot_enabled`` goes through the engine so the change is logged.
    Once past BRIEF_RECEIVED the brief cannot be reopened. After the write
    the project is re-evaluated for automatic progression.
    """
    data = request.get_json(silent=True) or {}
    blocked = sorted(_READ_ONLY_FIELDS & set(data))
    settings = data.get("autopilot_settings")
    if isinstance(settings, dict) and "current_workflow_stage" in settings:
        blocked.append("autopilot_settings.current_workflow_stage")
    if blocked:
        return api_error(E.VALIDATION_INVALID, "Read-only fields cannot be updated",
                         details={"fields": blocked})

    store, engine = get_store(), get_engine()
    project = store.load(project_id)

    briefing = data.get("briefing_status", "completed")
    if briefing != "completed" and project.stage != INITIAL_STAGE:
        raise TransitionError("briefing_update", project.stage.value,
                              "the brief is completed once the project leaves BRIEF_RECEIVED")

    enabled = None
    if "autopilot_enabled" in data:
        enabled = parse_bool(data.pop("autopilot_enabled"))
        if enabled is None:
            return api_error(E.VALIDATION_INVALID, "autopilot_enabled must be a boolean")

    if enabled is not None and enabled != project.autopilot_enabled:
        project = engine.toggle_project_autopilot(project, enabled, actor=current_actor(),
                                                  changes=data)
    elif data:
        project = store.save(project_id, data)

    project = engine.advance_if_eligible(project, engine.is_global_autopilot_enabled())
    return jsonify(serialize_project(project))


@projects_bp.route("/projects/<project_id>", methods=["DELETE"])
def delete_project(project_id):
    get_store().delete(project_id)
    get_engine().overrides.clear(project_id)
    logger.info("Project deleted", extra={"project_id": project_id})
    return jsonify({"deleted": True}), 200
