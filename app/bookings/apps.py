"""
Bookings app configuration.
"""

from django.apps import AppConfig


class BookingsConfig(AppConfig):
    """Configuration for the bookings application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "bookings"
    verbose_name = "Bookings"

    def ready(self):
        # Register transition handlers and retry handlers
        from bookings.services import capture_service, retry_manager, state_machine  # noqa: F401
        from bookings.webhooks import gateway  # noqa: F401
