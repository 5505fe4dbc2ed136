"""
WSGI / Flask CLI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi process-recurrence
    flask --app wsgi db upgrade
"""

from keon import create_app

app = create_app()
