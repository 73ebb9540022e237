"""
Community Autopilot
Platform settings: process-wide switches persisted as key/value rows.

The global autopilot flag lives here under ``global_autopilot``.
"""

from datetime import datetime, timezone

from app.models import db

GLOBAL_AUTOPILOT_KEY = "global_autopilot"


class PlatformSetting(db.Model):
    """One persisted setting (JSON value)."""
    __tablename__ = "platform_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
