"""
WSGI entry point for the workflow service.

    flask --app wsgi db upgrade
    flask --app wsgi drain-side-effects
"""

from app import create_app

app = create_app()
