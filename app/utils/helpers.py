"""Shared request helpers for blueprints.

get_store / get_engine / get_audit_service / get_notifier:
    services wired by ``create_app`` into ``app.extensions``
current_owner_id:  agency account the request acts for
current_actor:     who is recorded in the activity log
parse_bool:        strict boolean parsing for JSON and query values
serialize_project: project dict with its derived audit status
"""
import logging

from flask import current_app, request

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def get_store():
    return current_app.extensions["project_store"]


def get_engine():
    return current_app.extensions["workflow_engine"]


def get_audit_service():
    return current_app.extensions["audit_service"]


def get_notifier():
    return current_app.extensions["notification_sink"]


def current_owner_id(data=None):
    """Resolve the owner from the JSON body, the query string or the
    ``X-Owner-Id`` header, falling back to ``DEFAULT_OWNER_ID``."""
    if data and data.get("owner_id"):
        return str(data["owner_id"])
    return (
        request.args.get("owner_id")
        or request.headers.get("X-Owner-Id")
        or current_app.config.get("DEFAULT_OWNER_ID", "demo-agency")
    )


def current_actor():
    return request.headers.get("X-Actor") or "user"


def parse_bool(value):
    """Return True/False for boolean-like input, None when unrecognised.

    Accepts real booleans and the strings 1/0, true/false, yes/no, on/off.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return None


def serialize_project(project):
    """Project dict plus its derived audit status."""
    data = project.to_dict()
    data["audit_status"] = get_engine().audit_status(project).to_dict()
    return data
