"""Standalone autorelay FastAPI application."""

from __future__ import annotations

import logging
from collections.abc import Generator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from sqlmodel import Session

from autorelay.db import create_db_and_tables, get_session
from autorelay.execution import ExecutionResult
from autorelay.executors import ExecutorRegistry
from autorelay.models import AutomationTask
from autorelay.notifications import NotificationService, WebhookDispatcher
from autorelay.repositories import create_task, get_task, list_tasks, set_task_enabled
from autorelay.schedule import is_valid_schedule
from autorelay.schemas import InvalidTaskConfig, RunRequest, RunResponse, TaskCreateRequest, TaskSummary, parse_task_config
from autorelay.services import SchedulerService, TaskAlreadyRunning
from autorelay.settings import settings
from autorelay.vault import get_vault

app = FastAPI(title="autorelay", version="0.1.0")

notification_service = NotificationService(get_session, get_vault(), WebhookDispatcher())
scheduler_service = SchedulerService(ExecutorRegistry.default(), notification_service)


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@app.on_event("startup")
def startup() -> None:
    logging.basicConfig(level=settings.log_level)
    create_db_and_tables()


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "autorelay"}


def _serialize_task(row: AutomationTask) -> TaskSummary:
    return TaskSummary(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        type=row.type,
        config=row.config or "",
        schedule=row.schedule,
        enabled=bool(row.enabled),
        webhook_id=row.webhook_id,
        last_run_at=row.last_run_at,
        next_run_at=row.next_run_at,
        run_count=int(row.run_count or 0),
        last_error=row.last_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _run_response(result: ExecutionResult) -> RunResponse:
    return RunResponse(success=result.success, output=result.raw_output, error=result.error)


@app.get("/tasks", response_model=list[TaskSummary])
def get_tasks(
    session: Session = Depends(db_session),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[TaskSummary]:
    return [_serialize_task(row) for row in list_tasks(session, limit=limit)]


@app.post("/tasks", response_model=TaskSummary, status_code=201)
def create_automation_task(payload: TaskCreateRequest, session: Session = Depends(db_session)) -> TaskSummary:
    config = payload.config_text()
    try:
        parse_task_config(payload.type, config)
    except InvalidTaskConfig as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not is_valid_schedule(payload.schedule):
        raise HTTPException(status_code=400, detail=f"invalid schedule: {payload.schedule}")

    row = create_task(
        session,
        owner_id=payload.owner_id,
        name=payload.name,
        task_type=payload.type,
        config=config,
        schedule=payload.schedule,
        enabled=payload.enabled,
        webhook_id=payload.webhook_id,
    )
    return _serialize_task(row)


@app.get("/tasks/{task_id}", response_model=TaskSummary)
def get_automation_task(task_id: int, session: Session = Depends(db_session)) -> TaskSummary:
    row = get_task(session, task_id)
    if row is None:
        raise HTTPException(status_code=404, detail="task not found")
    return _serialize_task(row)


@app.post("/tasks/{task_id}/enable", response_model=TaskSummary)
def enable_task(task_id: int, session: Session = Depends(db_session)) -> TaskSummary:
    row = set_task_enabled(session, task_id, True)
    if row is None:
        raise HTTPException(status_code=404, detail="task not found")
    return _serialize_task(row)


@app.post("/tasks/{task_id}/disable", response_model=TaskSummary)
def disable_task(task_id: int, session: Session = Depends(db_session)) -> TaskSummary:
    row = set_task_enabled(session, task_id, False)
    if row is None:
        raise HTTPException(status_code=404, detail="task not found")
    return _serialize_task(row)


@app.post("/automation/run", response_model=RunResponse)
def run_automation(payload: RunRequest | None = None) -> RunResponse:
    if payload is None or payload.task_id is None:
        return run_due_tasks()

    try:
        result = scheduler_service.run_task_now(payload.task_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TaskAlreadyRunning as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _run_response(result)


@app.get("/automation/run", response_model=RunResponse)
def run_due_tasks() -> RunResponse:
    processed = scheduler_service.process_due_tasks()
    return RunResponse(success=True, message="Automation tasks processed", processed=processed)


def main() -> None:
    uvicorn.run(
        "autorelay.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
