"""Polling-window deduplication for scripts that notify on change."""

from __future__ import annotations

import logging
from typing import Iterable

from .result_channel import ResultStore
from .settings import settings

logger = logging.getLogger(__name__)


class SeenSet:
    """Marks items as recently notified for a TTL window.

    Store failures fail open: an item is reported as unseen so a broken
    store never silences notifications.
    """

    def __init__(self, store: ResultStore, namespace: str, ttl_seconds: int | None = None):
        self.store = store
        self.namespace = namespace.strip(":")
        self.ttl_seconds = int(ttl_seconds or settings.dedup_ttl_seconds)

    def _key(self, item: str) -> str:
        return f"{self.namespace}:sent:{item}"

    def was_recently_seen(self, item: str) -> bool:
        try:
            return self.store.get(self._key(item)) is not None
        except Exception as exc:  # noqa: BLE001
            logger.warning("seen-set lookup failed for %s: %s", item, exc)
            return False

    def mark_seen(self, item: str, ttl_seconds: int | None = None) -> None:
        try:
            self.store.set(self._key(item), "1", int(ttl_seconds or self.ttl_seconds))
        except Exception as exc:  # noqa: BLE001
            logger.warning("seen-set write failed for %s: %s", item, exc)

    def filter_unseen(self, items: Iterable[str]) -> list[str]:
        return [item for item in items if not self.was_recently_seen(item)]
