"""Executor protocol and result objects."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .models import AutomationTask
from .schemas import InvalidTaskConfig, ScriptResponse, TaskConfig, parse_task_config


@dataclass
class ExecutionResult:
    success: bool
    raw_output: str = ""
    error: Optional[str] = None
    structured: Optional[ScriptResponse] = None

    @property
    def skip_webhook(self) -> bool:
        return self.structured is not None and bool(self.structured.skip_webhook)


@dataclass(frozen=True)
class TaskDefinition:
    """Detached snapshot of a task, with its config validated once at load time."""

    id: int
    owner_id: int
    name: str
    type: str
    schedule: str
    enabled: bool
    webhook_id: Optional[int]
    run_count: int
    next_run_at: Optional[datetime]
    config: Optional[TaskConfig]
    config_error: Optional[str] = None

    @classmethod
    def from_model(cls, task: AutomationTask) -> "TaskDefinition":
        config: Optional[TaskConfig] = None
        config_error: Optional[str] = None
        try:
            config = parse_task_config(task.type, task.config)
        except InvalidTaskConfig as exc:
            config_error = str(exc)
        except Exception as exc:  # noqa: BLE001
            config_error = f"invalid {task.type} config: {exc.__class__.__name__}: {exc}"
        return cls(
            id=int(task.id),
            owner_id=int(task.owner_id or 0),
            name=task.name or f"task-{task.id}",
            type=task.type,
            schedule=task.schedule,
            enabled=bool(task.enabled),
            webhook_id=task.webhook_id,
            run_count=int(task.run_count or 0),
            next_run_at=task.next_run_at,
            config=config,
            config_error=config_error,
        )


class TaskExecutor(ABC):
    @abstractmethod
    def execute(self, task: TaskDefinition) -> ExecutionResult:
        """Run a task to completion and return a normalized result."""
