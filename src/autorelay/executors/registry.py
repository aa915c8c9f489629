"""Task executor registry keyed by task type."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

from autorelay.credentials import CredentialResolver
from autorelay.db import get_session
from autorelay.execution import ExecutionResult, TaskDefinition, TaskExecutor
from autorelay.result_channel import ResultChannel, build_result_store
from autorelay.schemas import TASK_TYPE_HTTP, TASK_TYPE_SCRIPT
from autorelay.vault import get_vault

from .http import HttpRequestExecutor
from .script import ScriptExecutor

logger = logging.getLogger(__name__)


@dataclass
class ExecutorRegistry:
    executors: Dict[str, TaskExecutor]

    @classmethod
    def default(cls, show_logs: bool | None = None) -> "ExecutorRegistry":
        channel = ResultChannel(build_result_store())
        resolver = CredentialResolver(get_session, get_vault())
        return cls(
            executors={
                TASK_TYPE_HTTP: HttpRequestExecutor(show_logs=show_logs),
                TASK_TYPE_SCRIPT: ScriptExecutor(channel, resolver, show_logs=show_logs),
            }
        )

    def get(self, task_type: str) -> TaskExecutor | None:
        return self.executors.get(task_type)

    def register(self, task_type: str, executor: TaskExecutor) -> None:
        self.executors[task_type] = executor

    def run(self, task: TaskDefinition) -> ExecutionResult:
        """Execute a task; every failure is folded into the returned result."""
        executor = self.get(task.type)
        if executor is None:
            return ExecutionResult(success=False, error=f"Unknown task type: {task.type}")
        try:
            return executor.execute(task)
        except Exception as exc:  # noqa: BLE001
            logger.exception("executor for %s raised", task.name)
            return ExecutionResult(success=False, error=str(exc) or exc.__class__.__name__)
