"""Web Push adapter — delivers notifications to stored browser subscriptions.

pywebpush does the VAPID signing and payload encryption; its HTTP call is
blocking, so each send runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from pywebpush import WebPushException, webpush

from src.config import settings
from src.errors import ChannelUnavailable, ProviderError

logger = logging.getLogger(__name__)


class SubscriptionGone(ProviderError):
    """The push service no longer knows this subscription (HTTP 404/410)."""


def build_push_payload(body: str, url: str = "/dashboard/tickets") -> dict[str, Any]:
    """Notification shape understood by the service worker."""
    return {
        "title": f"{settings.branding.app_name} Security Alert",
        "body": body,
        "icon": "/icon-192.png",
        "badge": "/icon-192.png",
        "data": {"url": url, "timestamp": int(time.time() * 1000)},
    }


class WebPushSender:
    """Sends one payload to one subscription."""

    def __init__(self) -> None:
        self._private_key = settings.push.vapid_private_key
        self._subject = settings.push.vapid_subject

    @property
    def is_configured(self) -> bool:
        return bool(self._private_key)

    async def send(self, subscription_info: dict[str, Any], payload: dict[str, Any]) -> None:
        if not self.is_configured:
            raise ChannelUnavailable("Push notifications not configured")

        try:
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription_info,
                data=json.dumps(payload),
                vapid_private_key=self._private_key,
                # pywebpush adds aud/exp to this dict, so build it per call
                vapid_claims={"sub": self._subject},
            )
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in (404, 410):
                raise SubscriptionGone("Push subscription expired", code=status, upstream_message=str(exc)) from exc
            raise ProviderError("Push delivery failed", code=status, upstream_message=str(exc)) from exc


# Module-level singleton
push_sender = WebPushSender()
