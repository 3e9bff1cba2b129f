"""
Celery application for background and periodic chat maintenance.

Tasks are auto-discovered from each installed app's tasks.py. The periodic
schedule is CELERY_BEAT_SCHEDULE in config/settings.py.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("chat")

# All Celery settings are read from Django settings with the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
