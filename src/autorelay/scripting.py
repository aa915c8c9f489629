"""Helpers for scripts launched by the engine.

A script hands its result back in one of two ways:

* ``save_result(response)`` writes it to the result channel key the engine
  put in ``AUTOMATION_REDIS_KEY``;
* ``emit_result(response)`` prints it as the single JSON line on stdout, which
  the engine falls back to when the channel holds nothing.

Calling both is fine; the channel wins.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, TextIO

from .dedup import SeenSet
from .result_channel import RESULT_KEY_ENV, ResultChannel, build_result_store
from .schemas import ScriptResponse
from .settings import settings

logger = logging.getLogger(__name__)


def _as_response(response: ScriptResponse | dict[str, Any]) -> ScriptResponse:
    if isinstance(response, ScriptResponse):
        return response
    return ScriptResponse.from_payload(response)


def save_result(response: ScriptResponse | dict[str, Any], ttl_seconds: int | None = None) -> bool:
    """Publish ``response`` to the result channel. Returns False when it could not."""
    key = os.environ.get(RESULT_KEY_ENV)
    if not key:
        logger.warning("%s is not set, result not saved", RESULT_KEY_ENV)
        return False
    try:
        channel = ResultChannel(build_result_store())
        channel.publish(key, _as_response(response), ttl_seconds or settings.result_ttl_seconds)
    except Exception as exc:  # noqa: BLE001
        logger.warning("failed to save result to %s: %s", key, exc)
        return False
    return True


def emit_result(response: ScriptResponse | dict[str, Any], stream: TextIO | None = None) -> None:
    body = _as_response(response).model_dump(mode="json", by_alias=True, exclude_none=True)
    out = stream or sys.stdout
    out.write(json.dumps(body, ensure_ascii=False) + "\n")
    out.flush()


def seen_set(namespace: str, ttl_seconds: int | None = None) -> SeenSet:
    return SeenSet(build_result_store(), namespace, ttl_seconds)
