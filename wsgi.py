"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi process-probation-completions --date 2025-06-30
"""

from hrms import create_app

app = create_app()
