"""
Community Autopilot
Client domain model.

Models:
    - Client: an agency's customer. Owns nothing in the workflow engine;
      projects reference it by id.
"""

import uuid
from datetime import datetime, timezone

from app.models import db

QUESTIONNAIRE_STATUSES = {"not_sent", "sent", "completed"}


def _uuid():
    return str(uuid.uuid4())


class Client(db.Model):
    """Agency customer record (``users/{owner}/clients`` in the hosted store)."""

    __tablename__ = "clients"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    owner_id = db.Column(db.String(128), nullable=False, index=True,
                         comment="Agency account that manages this client")
    company_name = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    language = db.Column(db.String(10), nullable=True)
    activities = db.Column(db.Text, nullable=True)
    country = db.Column(db.String(100), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    questionnaire_status = db.Column(db.String(20), nullable=False, default="not_sent")
    autopilot_excluded = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "company_name": self.company_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "language": self.language,
            "activities": self.activities,
            "country": self.country,
            "city": self.city,
            "questionnaire_status": self.questionnaire_status,
            "autopilot_excluded": self.autopilot_excluded,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Client {self.id}: {self.company_name}>"
