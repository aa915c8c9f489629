"""Standalone autorelay worker loop."""

from __future__ import annotations

import logging
import time

from autorelay.db import create_db_and_tables, get_session
from autorelay.executors import ExecutorRegistry
from autorelay.notifications import NotificationService, WebhookDispatcher
from autorelay.services import SchedulerService
from autorelay.settings import settings
from autorelay.vault import get_vault

logger = logging.getLogger(__name__)


def build_scheduler() -> SchedulerService:
    notification_service = NotificationService(get_session, get_vault(), WebhookDispatcher())
    return SchedulerService(ExecutorRegistry.default(), notification_service)


def main() -> None:
    logging.basicConfig(level=settings.log_level)
    create_db_and_tables()

    scheduler_service = build_scheduler()
    logger.info("starting autorelay worker, tick every %ss", settings.tick_interval_seconds)

    while True:
        try:
            scheduler_service.process_due_tasks()
            time.sleep(settings.tick_interval_seconds)
        except KeyboardInterrupt:
            logger.info("worker interrupted, exiting")
            break
        except Exception as exc:  # noqa: BLE001
            logger.exception("worker loop failure: %s", exc)
            time.sleep(settings.tick_interval_seconds)


if __name__ == "__main__":
    main()
