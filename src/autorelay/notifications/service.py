"""Resolve a task's webhook and relay its run outcome."""

from __future__ import annotations

import logging
from typing import Callable

from sqlmodel import Session

from autorelay.execution import ExecutionResult, TaskDefinition
from autorelay.repositories import get_webhook
from autorelay.vault import CredentialVault

from .destinations import WebhookDestination
from .dispatcher import WebhookDispatcher
from .formatters import format_notification

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        vault: CredentialVault,
        dispatcher: WebhookDispatcher,
    ):
        self._session_factory = session_factory
        self.vault = vault
        self.dispatcher = dispatcher

    def load_destination(self, task: TaskDefinition) -> WebhookDestination | None:
        session = self._session_factory()
        try:
            webhook = get_webhook(session, int(task.webhook_id), task.owner_id)
        finally:
            session.close()
        if webhook is None:
            logger.warning("webhook %s not found for task %s", task.webhook_id, task.name)
            return None
        return WebhookDestination.from_credential(webhook, self.vault.decrypt(webhook.secret))

    def notify(self, task: TaskDefinition, result: ExecutionResult) -> bool:
        """Send the run outcome to the task's webhook. Returns whether it was delivered."""
        if task.webhook_id is None:
            return False
        if result.skip_webhook:
            logger.info("skipping webhook for %s: script reported nothing new", task.name)
            return False
        try:
            destination = self.load_destination(task)
            if destination is None:
                return False
            notification = format_notification(task, result, destination)
            return self.dispatcher.dispatch(notification)
        except Exception:  # noqa: BLE001
            logger.exception("failed to send webhook for %s", task.name)
            return False
