"""Post-run state policy for automation tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from autorelay.execution import ExecutionResult
from autorelay.models import AutomationTask
from autorelay.schedule import calculate_next_run


@dataclass
class RunStateUpdate:
    """Resolved run state after one attempt. ``next_run_at=None`` leaves it unchanged."""

    last_run_at: datetime
    run_count: int
    next_run_at: Optional[datetime]
    last_error: Optional[str]


class RunStatePolicy(Protocol):
    """Policy interface for deciding a task's run state after an attempt."""

    def resolve(self, task: AutomationTask, result: ExecutionResult, finished_at: datetime) -> RunStateUpdate:
        """Return the next run state from the live task row and the run outcome."""


class DefaultRunStatePolicy:
    """Reschedule from the finish time unless the task was disabled meanwhile."""

    def resolve(self, task: AutomationTask, result: ExecutionResult, finished_at: datetime) -> RunStateUpdate:
        next_run_at = None
        if bool(task.enabled):
            next_run_at = calculate_next_run(task.schedule, finished_at)
        return RunStateUpdate(
            last_run_at=finished_at,
            run_count=int(task.run_count or 0) + 1,
            next_run_at=next_run_at,
            last_error=None if result.success else (result.error or "task failed"),
        )
