"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-onboarding-template
    gunicorn wsgi:app
"""

from pmi_tools import create_app

app = create_app()
