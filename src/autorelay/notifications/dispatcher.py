"""Best-effort delivery of formatted notifications."""

from __future__ import annotations

import json
import logging

import httpx

from autorelay.settings import settings

from .formatters import FormattedNotification

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


class WebhookDispatcher:
    """POSTs a payload once; delivery problems are logged, never raised."""

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        timeout_seconds: float | None = None,
    ):
        self.transport = transport
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds

    def dispatch(self, notification: FormattedNotification) -> bool:
        try:
            with httpx.Client(transport=self.transport, timeout=self.timeout_seconds) as client:
                response = client.post(
                    notification.url,
                    content=json.dumps(notification.payload, ensure_ascii=False).encode("utf-8"),
                    headers=notification.headers,
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning("webhook delivery to %s failed: %s", _redact(notification.url), exc)
            return False

        if response.is_success:
            logger.info("sent notification to %s", _redact(notification.url))
            return True

        logger.warning(
            "webhook %s returned %s: %s",
            _redact(notification.url),
            response.status_code,
            response.text[:_PREVIEW_CHARS],
        )
        if response.status_code == 404 and "webex" in notification.url:
            logger.warning("Webex returned 404: the webhook URL may be expired or the room is not accessible")
        return False


def _redact(url: str) -> str:
    return url.split("?", 1)[0][:100]
