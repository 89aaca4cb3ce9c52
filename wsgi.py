"""
WSGI entry point and Flask-Migrate target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-phase-templates
"""

from buildtrack import create_app

app = create_app()
