"""
WSGI / Flask-Migrate entry point for the QA tracking dashboard.

Usage:
    flask --app wsgi db upgrade        # apply migrations
    flask --app wsgi seed-systems      # create 쇼핑몰 / 공급사 / 관리자
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
