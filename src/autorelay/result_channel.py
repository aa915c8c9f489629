"""Out-of-band result channel between spawned scripts and the engine."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Optional, Protocol

import redis

from .schemas import ScriptResponse
from .settings import settings

logger = logging.getLogger(__name__)

RESULT_KEY_PREFIX = "automation:result:"
EXECUTION_ID_ENV = "AUTOMATION_EXECUTION_ID"
RESULT_KEY_ENV = "AUTOMATION_REDIS_KEY"


def result_key(execution_id: str) -> str:
    return f"{RESULT_KEY_PREFIX}{execution_id}"


class ResultStore(Protocol):
    """Any TTL-backed key/value store."""

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...


class RedisResultStore:
    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisResultStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(key, value, ex=max(int(ttl_seconds), 1))

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    def delete(self, key: str) -> None:
        self.client.delete(key)


class MemoryResultStore:
    """In-process TTL store, only visible to code sharing the process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._items[key] = (value, now + max(float(ttl_seconds), 0.0))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]


_memory_store = MemoryResultStore()


def build_result_store(url: str | None = None) -> ResultStore:
    url = url or settings.result_store_url
    if url.startswith("memory://"):
        return _memory_store
    return RedisResultStore.from_url(url)


class ResultChannel:
    def __init__(
        self,
        store: ResultStore,
        *,
        attempts: int | None = None,
        delay_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.attempts = max(int(attempts if attempts is not None else settings.result_poll_attempts), 1)
        self.delay_seconds = float(
            delay_seconds if delay_seconds is not None else settings.result_poll_delay_seconds
        )
        self._sleep = sleep

    def publish(self, key: str, response: ScriptResponse | dict, ttl_seconds: int | None = None) -> None:
        if isinstance(response, ScriptResponse):
            body = response.model_dump_json(by_alias=True, exclude_none=True)
        else:
            body = json.dumps(response)
        self.store.set(key, body, ttl_seconds or settings.result_ttl_seconds)

    def collect(self, key: str) -> Optional[ScriptResponse]:
        """Poll for a script's result, parse it and remove the key.

        Store errors and unparseable values end the poll early and are
        treated as a miss, leaving stdout parsing to the caller.
        """
        for attempt in range(self.attempts):
            try:
                raw = self.store.get(key)
            except Exception as exc:  # noqa: BLE001
                logger.warning("result channel read failed for %s, falling back to stdout: %s", key, exc)
                return None

            if raw:
                try:
                    response = ScriptResponse.from_payload(json.loads(raw))
                except (ValueError, RecursionError) as exc:
                    logger.warning("result channel value for %s is not usable JSON: %s", key, exc)
                    return None
                self._discard(key)
                logger.debug("retrieved result from %s (attempt %s)", key, attempt + 1)
                return response

            if attempt < self.attempts - 1:
                self._sleep(self.delay_seconds)

        logger.debug("no result in %s after %s attempts", key, self.attempts)
        return None

    def _discard(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.debug("result channel cleanup failed for %s: %s", key, exc)
