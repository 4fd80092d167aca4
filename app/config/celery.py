"""
Celery configuration for the Django application.

Celery runs the ledger's background work: releasing order revenue and
platform fees from their hold window once the trigger date has passed
(settlements.tasks). Settlements themselves run synchronously in the
request that executes them.

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Queue a scan for matured holds:
    from settlements.tasks import process_matured_holds

    process_matured_holds.delay()

    # Run a worker:
    celery -A config worker -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
# The name should match the Django project name
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all registered Django apps
# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
