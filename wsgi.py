"""
WSGI / Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-requirements
    flask --app wsgi seed-standards
"""

from phaseflow import create_app

app = create_app()
