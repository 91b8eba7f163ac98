"""
Permission classes for booking endpoints.

- HasCronSecret: Scheduler triggers authenticate with a shared bearer
  token (CRON_SECRET) instead of a user
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from django.conf import settings
from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class HasCronSecret(permissions.BasePermission):
    """
    Allows access when Authorization is "Bearer <CRON_SECRET>".

    Denies everything when CRON_SECRET is unset.
    """

    message = "Invalid or missing cron secret."

    def has_permission(self, request: Request, view: APIView) -> bool:
        secret = getattr(settings, "CRON_SECRET", "")
        if not secret:
            return False

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return False
        return hmac.compare_digest(token.strip().encode(), secret.encode())
