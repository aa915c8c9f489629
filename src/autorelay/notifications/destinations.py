"""Notification destinations and provider detection."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from autorelay.models import Credential

DISCORD = "discord"
WEBEX_INCOMING = "webex_incoming"
WEBEX_API = "webex_api"
GENERIC = "generic"

_DISCORD_MARKERS = ("discord.com/api/webhooks", "discordapp.com/api/webhooks")
_WEBEX_INCOMING_MARKER = "/webhooks/incoming/"
_WEBEX_HOST_MARKERS = ("webexapis.com", "webex.com")


def detect_kind(url: str, label: str = "") -> str:
    if any(marker in url for marker in _DISCORD_MARKERS):
        return DISCORD
    if _WEBEX_INCOMING_MARKER in url:
        return WEBEX_INCOMING
    if any(marker in url for marker in _WEBEX_HOST_MARKERS) or "webex" in label.lower():
        return WEBEX_API
    return GENERIC


@dataclass(frozen=True)
class WebhookDestination:
    """A decrypted webhook credential ready for formatting."""

    url: str
    label: str = ""
    username: Optional[str] = None
    notes: Optional[str] = None
    target: Optional[str] = None

    @classmethod
    def from_credential(cls, credential: Credential, url: str) -> "WebhookDestination":
        return cls(
            url=url.strip(),
            label=credential.app_name or "",
            username=credential.username,
            notes=credential.notes,
            target=credential.url,
        )

    @property
    def kind(self) -> str:
        return detect_kind(self.url, self.label)

    def notes_config(self) -> dict[str, Any]:
        if not self.notes:
            return {}
        try:
            parsed = json.loads(self.notes)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
