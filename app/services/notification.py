"""
Community Autopilot
Notification Service.

Central service for creating and querying in-app notifications, plus the
sinks the workflow engine reports through. Sinks are fire-and-forget:
a failing sink logs and never raises into the workflow.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from itertools import count

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.notification import Notification

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               owner_id="all", project_id=None, project_name=None, workflow_stage=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            owner_id=owner_id,
            project_id=project_id,
            project_name=project_name,
            title=title,
            message=message,
            category=category,
            severity=severity,
            workflow_stage=workflow_stage,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_owner(owner_id="all", project_id=None, unread_only=False,
                       limit=50, offset=0):
        """
        Retrieve notifications for an agency account, newest first.
        """
        q = Notification.query.filter(
            (Notification.owner_id == owner_id) | (Notification.owner_id == "all")
        )
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(owner_id="all", project_id=None):
        """Return count of unread notifications."""
        q = Notification.query.filter(
            (Notification.owner_id == owner_id) | (Notification.owner_id == "all")
        ).filter_by(is_read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif


# ═════════════════════════════════════════════════════════════════════════════
# Sinks
# ═════════════════════════════════════════════════════════════════════════════

class NotificationSink(ABC):
    """Where workflow notifications go. ``notify`` never raises."""

    @abstractmethod
    def notify(self, *, title, message="", severity="info", project=None, stage=None):
        ...

    @abstractmethod
    def list(self, owner_id, *, project_id=None, unread_only=False, limit=50, offset=0):
        """Return ``(items, total, unread)`` with items as dicts, newest first."""

    @abstractmethod
    def mark_read(self, notification_id):
        """Return the updated notification dict or raise NotFoundError."""


def _project_fields(project, stage):
    if project is None:
        return {"owner_id": "all", "project_id": None, "project_name": None,
                "workflow_stage": stage, "category": "system"}
    stage = stage or project.stage.value
    return {"owner_id": project.owner_id, "project_id": project.id,
            "project_name": project.name, "workflow_stage": stage, "category": "workflow"}


class DbNotificationSink(NotificationSink):
    """Persists to the ``notifications`` table via NotificationService."""

    def notify(self, *, title, message="", severity="info", project=None, stage=None):
        fields = _project_fields(project, stage)
        try:
            return NotificationService.create(
                title=title, message=message, severity=severity, **fields
            ).to_dict()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Notification dropped: %s", title,
                             extra={"project_id": fields["project_id"]})
            return None

    def list(self, owner_id, *, project_id=None, unread_only=False, limit=50, offset=0):
        items, total = NotificationService.list_for_owner(
            owner_id, project_id=project_id, unread_only=unread_only,
            limit=limit, offset=offset,
        )
        unread = NotificationService.unread_count(owner_id, project_id=project_id)
        return [n.to_dict() for n in items], total, unread

    def mark_read(self, notification_id):
        notif = NotificationService.mark_read(notification_id)
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        return notif.to_dict()


class LogNotificationSink(NotificationSink):
    """Logs each notification and keeps the most recent ones in memory."""

    def __init__(self, maxlen=200):
        self._items = deque(maxlen=maxlen)
        self._ids = count(1)

    def notify(self, *, title, message="", severity="info", project=None, stage=None):
        fields = _project_fields(project, stage)
        logger.log(
            _LOG_LEVELS.get(severity, logging.INFO), "Notification: %s: %s", title, message,
            extra={"project_id": fields["project_id"], "stage": fields["workflow_stage"]},
        )
        item = {
            "id": next(self._ids),
            "title": title,
            "message": message,
            "severity": severity,
            "is_read": False,
            "read_at": None,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        self._items.appendleft(item)
        return dict(item)

    def list(self, owner_id, *, project_id=None, unread_only=False, limit=50, offset=0):
        rows = [
            n for n in self._items
            if n["owner_id"] in (owner_id, "all")
            and (project_id is None or n["project_id"] == project_id)
        ]
        unread = sum(1 for n in rows if not n["is_read"])
        if unread_only:
            rows = [n for n in rows if not n["is_read"]]
        return [dict(n) for n in rows[offset:offset + limit]], len(rows), unread

    def mark_read(self, notification_id):
        for n in self._items:
            if n["id"] == notification_id:
                n["is_read"] = True
                n["read_at"] = datetime.now(timezone.utc).isoformat()
                return dict(n)
        raise NotFoundError(resource="Notification", resource_id=notification_id)


def build_notification_sink(app) -> NotificationSink:
    """Database sink for the live store, log sink in demo mode."""
    backend = app.config.get("STORE_BACKEND", "sql")
    if app.config.get("DEMO_MODE") or backend == "memory":
        return LogNotificationSink()
    return DbNotificationSink()
