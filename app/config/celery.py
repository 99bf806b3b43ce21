"""
Celery configuration for the billing service.

Runs the webhook replay jobs (billing.tasks). Uses Redis as broker and
result backend; periodic schedules come from CELERY_BEAT_SCHEDULE and
are stored by django-celery-beat's DatabaseScheduler.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()
