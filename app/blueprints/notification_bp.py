"""
Community Autopilot
Notification Blueprint.

Provides:
    GET  /api/v1/notifications                ?project_id=&unread_only=&limit=&offset=
    POST /api/v1/notifications/<nid>/read

Notifications are written by the workflow engine and the audit service;
this blueprint only reads them and marks them read.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import page_args
from app.utils.errors import register_error_handlers
from app.utils.helpers import current_owner_id, get_notifier, parse_bool

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List the owner's notifications, newest first."""
    limit, offset = page_args(default_limit=50, max_limit=200)
    items, total, unread = get_notifier().list(
        current_owner_id(),
        project_id=request.args.get("project_id"),
        unread_only=bool(parse_bool(request.args.get("unread_only", "false"))),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": items, "total": total, "unread_count": unread})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    return jsonify(get_notifier().mark_read(nid))
