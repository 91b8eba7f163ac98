"""
Bookings app: payment and contract orchestration for car rental bookings.

This app reconciles three asynchronous lifecycles into one booking state:
- PayPal authorization/capture webhooks
- DocuSeal e-signature webhooks
- The scheduled capture-rule sweep

Usage:
    from bookings.webhooks.gateway import WebhookIngestionGateway

    result = WebhookIngestionGateway.receive("paypal", request.body, request.headers)
"""
