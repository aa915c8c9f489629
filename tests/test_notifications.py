import json
import unittest
from datetime import datetime
from unittest import mock

import httpx
import pytz

from _test_support import make_task, reset_database
from autorelay.db import get_session, session_scope
from autorelay.execution import ExecutionResult
from autorelay.models import Credential
from autorelay.notifications import (
    DISCORD,
    GENERIC,
    WEBEX_API,
    WEBEX_INCOMING,
    NotificationService,
    WebhookDestination,
    WebhookDispatcher,
    detect_kind,
    format_notification,
)
from autorelay.notifications.formatters import (
    DISCORD_FIELD_VALUE_LIMIT,
    DISCORD_PAYLOAD_BYTES,
    FormattedNotification,
    code_block,
    payload_size,
    sanitize,
    webex_messages_url,
)
from autorelay.schemas import ScriptResponse
from autorelay.vault import CredentialVault

NOW = pytz.UTC.localize(datetime(2026, 5, 4, 9, 30, 0))
DISCORD_URL = "https://discord.com/api/webhooks/123/abc"


class DestinationTests(unittest.TestCase):
    def test_detect_kind(self):
        self.assertEqual(detect_kind(DISCORD_URL), DISCORD)
        self.assertEqual(detect_kind("https://discordapp.com/api/webhooks/1/x"), DISCORD)
        self.assertEqual(detect_kind("https://webexapis.com/v1/webhooks/incoming/Y2lz"), WEBEX_INCOMING)
        self.assertEqual(detect_kind("https://webexapis.com/v1/messages"), WEBEX_API)
        self.assertEqual(detect_kind("https://bot.internal/notify", "Webex bot"), WEBEX_API)
        self.assertEqual(detect_kind("https://hooks.example.test/x"), GENERIC)


class FormatterTests(unittest.TestCase):
    def setUp(self):
        self.task = make_task(name="Nightly sync", run_count=4, id=12)

    def test_discord_success_embed(self):
        result = ExecutionResult(success=True, raw_output="ok")
        notification = format_notification(self.task, result, WebhookDestination(url=DISCORD_URL), NOW)
        embed = notification.payload["embeds"][0]
        self.assertEqual(embed["title"], "Automation Task: Nightly sync")
        self.assertIn("✅ Success", embed["description"])
        self.assertIn("**Run Count:** 5", embed["description"])
        self.assertEqual(embed["color"], 0x00FF00)
        self.assertEqual(embed["footer"]["text"], "Task ID: 12")
        self.assertNotIn("fields", embed)

    def test_discord_long_error_stays_within_limits(self):
        result = ExecutionResult(success=False, error="x" * 5000)
        notification = format_notification(self.task, result, WebhookDestination(url=DISCORD_URL), NOW)
        self.assertLessEqual(payload_size(notification.payload), DISCORD_PAYLOAD_BYTES)
        embed = notification.payload["embeds"][0]
        self.assertEqual(embed["color"], 0xFF0000)
        self.assertEqual(len(embed["fields"]), 1)
        self.assertLessEqual(len(embed["fields"][0]["value"]), DISCORD_FIELD_VALUE_LIMIT)
        self.assertTrue(embed["fields"][0]["value"].startswith("```text\n"))

    def test_discord_shrinks_fields_to_fit_payload_budget(self):
        result = ExecutionResult(success=False, error="x" * 5000)
        destination = WebhookDestination(url=DISCORD_URL)
        full_size = payload_size(format_notification(self.task, result, destination, NOW).payload)
        budget = full_size - 300
        with mock.patch("autorelay.notifications.formatters.DISCORD_PAYLOAD_BYTES", budget):
            notification = format_notification(self.task, result, destination, NOW)
        value = notification.payload["embeds"][0]["fields"][0]["value"]
        self.assertGreater(len(value), 256)
        self.assertLessEqual(len(value), 512)
        self.assertLessEqual(payload_size(notification.payload), budget)

    def test_discord_falls_back_to_minimal_embed(self):
        result = ExecutionResult(success=False, error="x" * 5000)
        with mock.patch("autorelay.notifications.formatters.DISCORD_PAYLOAD_BYTES", 50):
            notification = format_notification(self.task, result, WebhookDestination(url=DISCORD_URL), NOW)
        embed = notification.payload["embeds"][0]
        self.assertNotIn("fields", embed)
        self.assertEqual(embed["description"], "**Status:** ❌ Failed\n")
        self.assertEqual(embed["title"], "Automation Task: Nightly sync")
        self.assertEqual(embed["footer"]["text"], "Task ID: 12")

    def test_discord_title_is_truncated_for_long_names(self):
        task = make_task(name="n" * 300, id=12)
        result = ExecutionResult(success=True, raw_output="ok")
        notification = format_notification(task, result, WebhookDestination(url=DISCORD_URL), NOW)
        title = notification.payload["embeds"][0]["title"]
        self.assertLessEqual(len(title), 256)
        self.assertTrue(title.startswith("Automation Task: n"))
        self.assertTrue(title.endswith("..."))

    def test_code_block_neutralizes_fences_and_control_characters(self):
        block = code_block("a```b\r\nc\x00d\u200be", 100)
        self.assertEqual(block, "```text\na'''b\ncde\n```")
        self.assertEqual(sanitize(None), "")

    def test_webex_incoming_markdown(self):
        result = ExecutionResult(
            success=True,
            raw_output="",
            structured=ScriptResponse(type="json", json_content={"open": 3}),
        )
        destination = WebhookDestination(url="https://webexapis.com/v1/webhooks/incoming/abc")
        notification = format_notification(self.task, result, destination, NOW)
        markdown = notification.payload["markdown"]
        self.assertTrue(markdown.startswith("## Automation Task: Nightly sync"))
        self.assertIn("**Task ID:** 12", markdown)
        self.assertIn('"open": 3', markdown)
        self.assertEqual(notification.url, destination.url)

    def test_webex_incoming_truncates_body(self):
        result = ExecutionResult(success=True, raw_output="y" * 5000)
        destination = WebhookDestination(url="https://webexapis.com/v1/webhooks/incoming/abc")
        markdown = format_notification(self.task, result, destination, NOW).payload["markdown"]
        self.assertNotIn("y" * 3001, markdown)
        self.assertIn("y" * 2997 + "...", markdown)

    def test_webex_api_uses_room_and_bearer_token(self):
        destination = WebhookDestination(
            url="https://webexapis.com?token=from-url",
            notes=json.dumps({"roomId": "ROOM-1"}),
        )
        result = ExecutionResult(success=False, error="boom")
        notification = format_notification(self.task, result, destination, NOW)
        self.assertEqual(notification.url, "https://webexapis.com/v1/messages?token=from-url")
        self.assertEqual(notification.payload["roomId"], "ROOM-1")
        self.assertEqual(notification.headers["Authorization"], "Bearer from-url")
        self.assertIn("Error:\nboom", notification.payload["text"])

    def test_webex_api_prefers_username_token_and_email_target(self):
        destination = WebhookDestination(
            url="https://webexapis.com/v1/messages",
            username="bot-token",
            target="ops@acme.test",
        )
        notification = format_notification(self.task, ExecutionResult(success=True), destination, NOW)
        self.assertEqual(notification.payload["toPersonEmail"], "ops@acme.test")
        self.assertEqual(notification.headers["Authorization"], "Bearer bot-token")

    def test_webex_api_without_recipient_raises(self):
        destination = WebhookDestination(url="https://webexapis.com/v1/messages")
        with self.assertRaises(ValueError):
            format_notification(self.task, ExecutionResult(success=True), destination, NOW)

    def test_webex_messages_url_rewrites(self):
        self.assertEqual(webex_messages_url("https://webexapis.com/v1"), "https://webexapis.com/v1/messages")
        self.assertEqual(
            webex_messages_url("https://webexapis.com/v1/messages"),
            "https://webexapis.com/v1/messages",
        )

    def test_generic_payload(self):
        result = ExecutionResult(
            success=True,
            raw_output="{}",
            structured=ScriptResponse(type="json", content="{}", json_content={"k": "v"}),
        )
        notification = format_notification(self.task, result, WebhookDestination(url="https://hooks.test/x"), NOW)
        payload = notification.payload
        self.assertEqual(payload["task_id"], 12)
        self.assertEqual(payload["task_name"], "Nightly sync")
        self.assertEqual(payload["run_count"], 5)
        self.assertEqual(payload["type"], "json")
        self.assertEqual(payload["jsonContent"], {"k": "v"})
        self.assertEqual(payload["timestamp"], NOW.isoformat())
        self.assertNotIn("error", payload)


class DispatcherTests(unittest.TestCase):
    def test_posts_json_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(handler))
        delivered = dispatcher.dispatch(FormattedNotification(payload={"a": 1}, url="https://hooks.test/x"))
        self.assertTrue(delivered)
        self.assertEqual(json.loads(seen[0].content), {"a": 1})
        self.assertEqual(seen[0].headers["Content-Type"], "application/json")

    def test_failures_are_swallowed(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(refuse))
        self.assertFalse(dispatcher.dispatch(FormattedNotification(payload={}, url="https://hooks.test/x")))

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        self.assertFalse(dispatcher.dispatch(FormattedNotification(payload={}, url="https://webexapis.com/v1/x")))


class _RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def dispatch(self, notification):
        self.sent.append(notification)
        return True


class NotificationServiceTests(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.vault = CredentialVault("notify-key")
        self.dispatcher = _RecordingDispatcher()
        self.service = NotificationService(get_session, self.vault, self.dispatcher)
        with session_scope() as session:
            row = Credential(owner_id=1, app_name="Discord", type="webhook", secret=self.vault.encrypt(DISCORD_URL))
            session.add(row)
            session.flush()
            self.webhook_id = row.id

    def test_notify_decrypts_and_dispatches(self):
        task = make_task(webhook_id=self.webhook_id)
        self.assertTrue(self.service.notify(task, ExecutionResult(success=True, raw_output="ok")))
        self.assertEqual(self.dispatcher.sent[0].url, DISCORD_URL)

    def test_skip_webhook_sends_nothing(self):
        task = make_task(webhook_id=self.webhook_id)
        result = ExecutionResult(success=True, structured=ScriptResponse(skip_webhook=True))
        self.assertFalse(self.service.notify(task, result))
        self.assertEqual(self.dispatcher.sent, [])

    def test_foreign_or_missing_webhook_sends_nothing(self):
        self.assertFalse(self.service.notify(make_task(webhook_id=self.webhook_id, owner_id=2), ExecutionResult(success=True)))
        self.assertFalse(self.service.notify(make_task(webhook_id=None), ExecutionResult(success=True)))
        self.assertEqual(self.dispatcher.sent, [])


if __name__ == "__main__":
    unittest.main()
