"""HTTP request tasks."""

from __future__ import annotations

import logging

import httpx

from autorelay.execution import ExecutionResult, TaskDefinition, TaskExecutor
from autorelay.schemas import HttpConfig
from autorelay.settings import settings

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_CHARS:
        return text[:_PREVIEW_CHARS] + "..."
    return text


class HttpRequestExecutor(TaskExecutor):
    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        timeout_seconds: float | None = None,
        show_logs: bool | None = None,
    ):
        self.transport = transport
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.show_logs = settings.show_logs if show_logs is None else show_logs

    def execute(self, task: TaskDefinition) -> ExecutionResult:
        config = task.config
        if not isinstance(config, HttpConfig):
            return ExecutionResult(success=False, error=task.config_error or "http_request requires a url")

        if self.show_logs:
            logger.info("making HTTP %s request to %s (%s)", config.method, config.url, task.name)

        try:
            with httpx.Client(
                transport=self.transport,
                timeout=config.timeout_seconds or self.timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = client.request(
                    config.method,
                    config.url,
                    headers=config.headers,
                    content=config.body,
                )
        except httpx.HTTPError as exc:
            logger.warning("HTTP request failed for %s: %s", task.name, exc)
            return ExecutionResult(success=False, error=f"HTTP request failed: {exc}")

        body = response.text
        if response.is_success:
            if self.show_logs:
                logger.info("HTTP request succeeded for %s: status %s", task.name, response.status_code)
                if body:
                    logger.info("response body for %s:\n%s", task.name, _preview(body))
            return ExecutionResult(success=True, raw_output=body)

        logger.warning("HTTP request failed for %s: status %s", task.name, response.status_code)
        if self.show_logs and body:
            logger.warning("error response for %s:\n%s", task.name, _preview(body))
        return ExecutionResult(
            success=False,
            raw_output=body,
            error=f"HTTP {response.status_code}: {body}",
        )
