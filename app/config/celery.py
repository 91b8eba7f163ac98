"""
Celery configuration for the bookings backend.

Celery runs the background side of the payment flow:
- Periodic sweeps (webhook retries, capture rule evaluation, lease cleanup)
  scheduled through django-celery-beat
- One-off captures queued from the admin API

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Queue an immediate capture:
    from bookings.tasks import capture_booking_payment

    capture_booking_payment.delay(str(booking.id), "admin:42")

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up bookings.tasks, which re-exports the worker tasks
app.autodiscover_tasks()
