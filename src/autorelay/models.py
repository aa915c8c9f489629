"""SQLModel entities for the automation task store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

from .time_utils import now_utc


class AutomationTask(SQLModel, table=True):
    __tablename__ = "automation_tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(default=0, index=True)
    name: str = Field(default="")
    type: str = Field(default="http_request", index=True)
    config: str = Field(default="", sa_column=Column(Text))
    schedule: str = Field(default="1h")
    enabled: bool = Field(default=True, index=True)
    webhook_id: Optional[int] = Field(default=None)
    last_run_at: Optional[datetime] = Field(default=None)
    next_run_at: Optional[datetime] = Field(default=None, index=True)
    run_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Credential(SQLModel, table=True):
    __tablename__ = "credentials"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(default=0, index=True)
    app_name: str = Field(default="")
    type: str = Field(default="password", index=True)
    url: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    secret: str = Field(default="", sa_column=Column(Text))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
