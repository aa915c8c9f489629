"""Polling scheduler: run due tasks, relay outcomes and reschedule."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from autorelay.db import session_scope
from autorelay.execution import ExecutionResult, TaskDefinition
from autorelay.executors import ExecutorRegistry
from autorelay.notifications import NotificationService
from autorelay.repositories import get_task, list_due_enabled_tasks, lock_task, update_run_state
from autorelay.settings import settings
from autorelay.time_utils import coerce_utc, now_utc

from .state_policy import DefaultRunStatePolicy, RunStatePolicy

logger = logging.getLogger(__name__)


class TaskAlreadyRunning(RuntimeError):
    """Raised when a run is requested for a task that is still executing."""


class SchedulerService:
    def __init__(
        self,
        executor_registry: ExecutorRegistry,
        notification_service: NotificationService | None = None,
        state_policy: RunStatePolicy | None = None,
        concurrency: int | None = None,
    ):
        self.executor_registry = executor_registry
        self.notification_service = notification_service
        self.state_policy = state_policy or DefaultRunStatePolicy()
        self.concurrency = max(int(concurrency or settings.tick_concurrency), 1)
        self._running: set[int] = set()
        self._running_lock = threading.Lock()

    def process_due_tasks(self) -> int:
        """Run one tick. Returns the number of due tasks found."""
        try:
            with session_scope() as session:
                due_rows = list_due_enabled_tasks(session, now_utc())
        except Exception:  # noqa: BLE001
            logger.exception("failed to query due tasks")
            return 0

        tasks: list[TaskDefinition] = []
        for row in due_rows:
            try:
                tasks.append(TaskDefinition.from_model(row))
            except Exception:  # noqa: BLE001
                logger.exception("skipping task %s: it could not be loaded", row.id)

        if not tasks:
            return 0
        logger.info("found %s task(s) to execute", len(tasks))

        if self.concurrency == 1:
            for task in tasks:
                self._run_exclusive(task)
        else:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                list(pool.map(self._run_exclusive, tasks))
        return len(tasks)

    def run_task_now(self, task_id: int) -> ExecutionResult:
        with session_scope() as session:
            row = get_task(session, task_id)
            if row is None:
                raise LookupError(f"task not found: {task_id}")
            if not bool(row.enabled):
                raise ValueError(f"task is disabled: {task_id}")
            task = TaskDefinition.from_model(row)

        if not self._claim(task.id):
            raise TaskAlreadyRunning(f"task is already running: {task_id}")
        try:
            return self.run_task(task)
        finally:
            self._release(task.id)

    def run_task(self, task: TaskDefinition) -> ExecutionResult:
        """Execute, notify and record one task; no stage failure escapes."""
        logger.info("executing task %s (id=%s)", task.name, task.id)
        result = self._execute(task)
        self._notify(task, result)
        self._record_run(task, result)
        if result.success:
            logger.info("task %s completed", task.name)
        else:
            logger.warning("task %s failed: %s", task.name, result.error)
        return result

    def _run_exclusive(self, task: TaskDefinition) -> Optional[ExecutionResult]:
        if not self._claim(task.id):
            logger.info("task %s is still running, skipping this tick", task.name)
            return None
        try:
            fresh = self._reload_if_due(task.id)
            if fresh is None:
                logger.info("task %s is no longer due, skipping this tick", task.name)
                return None
            return self.run_task(fresh)
        except Exception:  # noqa: BLE001
            logger.exception("unexpected failure running task %s", task.name)
            return None
        finally:
            self._release(task.id)

    def _reload_if_due(self, task_id: int) -> Optional[TaskDefinition]:
        """Re-read a claimed task; another run may have finished since the tick query."""
        with session_scope() as session:
            row = get_task(session, task_id)
            if row is None or not bool(row.enabled):
                return None
            next_run_at = coerce_utc(row.next_run_at)
            if next_run_at is not None and next_run_at > now_utc():
                return None
            return TaskDefinition.from_model(row)

    def _claim(self, task_id: int) -> bool:
        with self._running_lock:
            if task_id in self._running:
                return False
            self._running.add(task_id)
            return True

    def _release(self, task_id: int) -> None:
        with self._running_lock:
            self._running.discard(task_id)

    def _execute(self, task: TaskDefinition) -> ExecutionResult:
        try:
            return self.executor_registry.run(task)
        except Exception as exc:  # noqa: BLE001
            logger.exception("executor failed for task %s", task.name)
            return ExecutionResult(success=False, error=str(exc) or exc.__class__.__name__)

    def _notify(self, task: TaskDefinition, result: ExecutionResult) -> None:
        if self.notification_service is None or task.webhook_id is None:
            return
        try:
            self.notification_service.notify(task, result)
        except Exception:  # noqa: BLE001
            logger.exception("notification failed for task %s", task.name)

    def _record_run(self, task: TaskDefinition, result: ExecutionResult) -> None:
        finished_at = now_utc()
        try:
            with session_scope() as session:
                live_task = lock_task(session, task.id)
                if live_task is None:
                    logger.warning("task %s disappeared before its run state was recorded", task.id)
                    return
                update = self.state_policy.resolve(live_task, result, finished_at)
                update_run_state(
                    session,
                    task.id,
                    last_run_at=update.last_run_at,
                    run_count=update.run_count,
                    next_run_at=update.next_run_at,
                    last_error=update.last_error,
                )
                if update.next_run_at is None:
                    logger.info("task %s was disabled, not scheduling next run", task.name)
        except Exception:  # noqa: BLE001
            logger.exception("failed to record run state for task %s", task.name)
