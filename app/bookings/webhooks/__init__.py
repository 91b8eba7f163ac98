"""
Webhook ingestion for PayPal and DocuSeal.

Deliveries are verified, parsed, de-duplicated, resolved to a booking
and applied synchronously. Failures are stored for the retry worker.

Usage:
    # In urls.py
    from bookings.webhooks.views import paypal_webhook

    urlpatterns = [
        path("webhooks/paypal/", paypal_webhook, name="paypal_webhook"),
    ]
"""
