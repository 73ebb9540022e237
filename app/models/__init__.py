"""
Community Autopilot
Shared SQLAlchemy instance.

Every model module imports ``db`` from here; ``create_app`` binds it to
the Flask application.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
