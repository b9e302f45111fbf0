"""Celery worker entry point: ``celery -A ingest.worker worker``"""
import os

from ingest import create_app, celery_app

app = create_app(os.getenv('FLASK_CONFIG', 'production'))
celery = celery_app
