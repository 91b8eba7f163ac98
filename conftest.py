"""
Root pytest configuration for the Django project.

Sets environment defaults so the test run needs no .env file, then
configures Django. Booking fixtures live in app/bookings/conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("USE_LOCMEM_CACHE", "True")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SWEEP_MAX_WORKERS", "1")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
