"""Task store helpers for automation tasks and credentials."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from .models import AutomationTask, Credential
from .time_utils import coerce_utc, now_utc


def list_due_enabled_tasks(session: Session, now: datetime | None = None) -> list[AutomationTask]:
    now = now or now_utc()
    statement = (
        select(AutomationTask)
        .where(AutomationTask.enabled.is_(True))
        .where(or_(AutomationTask.next_run_at.is_(None), AutomationTask.next_run_at <= now))
        .order_by(AutomationTask.next_run_at.asc(), AutomationTask.id.asc())
    )
    return list(session.exec(statement).all())


def get_task(session: Session, task_id: int) -> Optional[AutomationTask]:
    statement = select(AutomationTask).where(AutomationTask.id == task_id)
    return session.exec(statement).first()


def list_tasks(session: Session, limit: int = 200) -> list[AutomationTask]:
    statement = select(AutomationTask).order_by(AutomationTask.id.asc()).limit(limit)
    return list(session.exec(statement).all())


def create_task(
    session: Session,
    *,
    owner_id: int,
    name: str,
    task_type: str,
    config: str,
    schedule: str = "1h",
    enabled: bool = True,
    webhook_id: int | None = None,
) -> AutomationTask:
    now = now_utc()
    task = AutomationTask(
        owner_id=owner_id,
        name=name,
        type=task_type,
        config=config,
        schedule=schedule,
        enabled=enabled,
        webhook_id=webhook_id,
        next_run_at=now if enabled else None,
        created_at=now,
        updated_at=now,
    )
    session.add(task)
    session.flush()
    session.refresh(task)
    return task


def lock_task(session: Session, task_id: int) -> Optional[AutomationTask]:
    statement = select(AutomationTask).where(AutomationTask.id == task_id).with_for_update()
    return session.exec(statement).first()


def update_run_state(
    session: Session,
    task_id: int,
    *,
    last_run_at: datetime,
    run_count: int,
    next_run_at: datetime | None = None,
    last_error: str | None = None,
) -> Optional[AutomationTask]:
    """Write a task's run state in one flush; ``next_run_at=None`` leaves it as is."""
    task = lock_task(session, task_id)
    if task is None:
        return None

    task.run_count = run_count
    task.last_run_at = coerce_utc(last_run_at)
    task.last_error = last_error
    if next_run_at is not None:
        task.next_run_at = coerce_utc(next_run_at)
    task.updated_at = now_utc()
    session.add(task)
    session.flush()
    return task


def set_task_enabled(session: Session, task_id: int, enabled: bool) -> Optional[AutomationTask]:
    task = get_task(session, task_id)
    if task is None:
        return None
    task.enabled = enabled
    if enabled:
        # Re-enabling schedules from now; the frozen next_run_at is discarded.
        task.next_run_at = now_utc()
    task.updated_at = now_utc()
    session.add(task)
    return task


def get_credential(session: Session, credential_id: int, owner_id: int) -> Optional[Credential]:
    statement = (
        select(Credential)
        .where(Credential.id == credential_id)
        .where(Credential.owner_id == owner_id)
    )
    return session.exec(statement).first()


def get_webhook(session: Session, webhook_id: int, owner_id: int) -> Optional[Credential]:
    statement = (
        select(Credential)
        .where(Credential.id == webhook_id)
        .where(Credential.owner_id == owner_id)
        .where(Credential.type == "webhook")
    )
    return session.exec(statement).first()
