"""Database wiring for the automation task store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

from .settings import settings

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
_engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(_engine)
    _run_runtime_migrations()


def _column_exists(conn, table_name: str, column_name: str, url: str) -> bool:
    if "postgres" in url:
        row = conn.execute(
            text(
                """
                SELECT 1
                FROM information_schema.columns
                WHERE table_name = :table_name
                  AND column_name = :column_name
                LIMIT 1
                """
            ),
            {"table_name": table_name, "column_name": column_name},
        ).fetchone()
        return row is not None
    rows = conn.execute(text(f'PRAGMA table_info("{table_name}")')).fetchall()
    return any(row[1] == column_name for row in rows)


def _run_runtime_migrations() -> None:
    url = str(_engine.url)
    with _engine.begin() as conn:
        # Databases created before failures were persisted lack this column.
        task_columns: list[tuple[str, str]] = [
            ("last_error", "TEXT"),
        ]
        for column_name, column_type in task_columns:
            if not _column_exists(conn, "automation_tasks", column_name, url):
                conn.execute(
                    text(f"ALTER TABLE automation_tasks ADD COLUMN {column_name} {column_type}")
                )


@contextmanager
def session_scope() -> Iterator[Session]:
    session = Session(_engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Session:
    return Session(_engine, expire_on_commit=False)
