"""
WSGI entry point (gunicorn wsgi:app) and Flask CLI target.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi autopilot-tick --owner demo-agency
"""

from app import create_app

app = create_app()
