"""Provider-specific payloads for task run notifications."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

from autorelay.execution import ExecutionResult, TaskDefinition
from autorelay.settings import settings
from autorelay.time_utils import format_local, now_utc

from .destinations import DISCORD, WEBEX_API, WEBEX_INCOMING, WebhookDestination

JSON_HEADERS = {"Content-Type": "application/json"}

DISCORD_TITLE_LIMIT = 256
DISCORD_TASK_NAME_LIMIT = 200
DISCORD_DESCRIPTION_LIMIT = 4096
DISCORD_FIELD_NAME_LIMIT = 256
DISCORD_FIELD_VALUE_LIMIT = 1024
DISCORD_FIELD_COUNT_LIMIT = 25
DISCORD_FIELDS_USED = 2
DISCORD_PAYLOAD_BYTES = 20000
# Progressively smaller field limits tried when the whole payload is too big.
DISCORD_SHRINK_STEPS = (512, 256, 128)

WEBEX_BODY_LIMIT = 3000
WEBEX_ERROR_LIMIT = 2000

_FENCE_OPEN = "```text\n"
_FENCE_CLOSE = "\n```"


@dataclass
class FormattedNotification:
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=lambda: dict(JSON_HEADERS))
    url: str = ""


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def sanitize(text: Any) -> str:
    if text is None:
        return ""
    return (
        str(text)
        .replace("\x00", "")
        .replace("\r\n", "\n")
        .replace("\r", "\n")
        .replace("\u200b", "")
    )


def code_block(text: Any, limit: int = DISCORD_FIELD_VALUE_LIMIT) -> str:
    """Sanitize and fence ``text`` so the whole block fits in ``limit`` characters."""
    body_limit = max(limit - len(_FENCE_OPEN) - len(_FENCE_CLOSE), 0)
    body = truncate(sanitize(text).replace("```", "'''"), body_limit)
    return f"{_FENCE_OPEN}{body}{_FENCE_CLOSE}"


def status_parts(result: ExecutionResult) -> tuple[str, str]:
    return ("✅", "Success") if result.success else ("❌", "Failed")


def result_error(result: ExecutionResult) -> Optional[str]:
    if result.error:
        return result.error
    if result.structured is not None and result.structured.error:
        return result.structured.error
    return None


def result_body(result: ExecutionResult) -> str:
    structured = result.structured
    if structured is not None:
        if structured.type == "json" and structured.json_content is not None:
            return json.dumps(structured.json_content, indent=2, ensure_ascii=False)
        return structured.content or ""
    output = result.raw_output or ""
    try:
        return json.dumps(json.loads(output), indent=2, ensure_ascii=False)
    except ValueError:
        return output


def payload_size(payload: dict[str, Any]) -> int:
    return len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))


def format_generic(
    task: TaskDefinition,
    result: ExecutionResult,
    destination: WebhookDestination,
    now: datetime,
) -> FormattedNotification:
    payload: dict[str, Any] = {
        "task_id": task.id,
        "task_name": task.name,
        "success": result.success,
        "timestamp": now.isoformat(),
        "run_count": task.run_count + 1,
    }
    structured = result.structured
    if structured is not None:
        payload["type"] = structured.type
        payload["content"] = structured.content
        if structured.json_content is not None:
            payload["jsonContent"] = structured.json_content
    else:
        payload["type"] = "text"
        payload["content"] = result.raw_output
    error = result_error(result)
    if error:
        payload["error"] = error
    return FormattedNotification(payload=payload, url=destination.url)


def format_discord(
    task: TaskDefinition,
    result: ExecutionResult,
    destination: WebhookDestination,
    now: datetime,
) -> FormattedNotification:
    glyph, status = status_parts(result)
    title = truncate(f"Automation Task: {truncate(task.name, DISCORD_TASK_NAME_LIMIT)}", DISCORD_TITLE_LIMIT)
    status_line = f"**Status:** {glyph} {status}\n"
    description = truncate(
        status_line
        + f"**Run Count:** {task.run_count + 1}\n"
        + f"**Timestamp:** <t:{int(now.timestamp())}:F>\n",
        DISCORD_DESCRIPTION_LIMIT,
    )

    # Output fields are left out: webhook senders do not render markdown reliably.
    fields: list[dict[str, Any]] = []
    error = result_error(result)
    if error:
        fields.append({"name": "❌ Error", "value": error, "inline": False})
    fields = fields[: min(DISCORD_FIELDS_USED, DISCORD_FIELD_COUNT_LIMIT)]

    embed: dict[str, Any] = {
        "title": title,
        "description": description,
        "color": 0x00FF00 if result.success else 0xFF0000,
        "timestamp": now.isoformat(),
        "footer": {"text": f"Task ID: {task.id}"},
    }

    def render(field_limit: int, field_count: int, description_limit: int) -> dict[str, Any]:
        rendered = dict(embed)
        rendered["description"] = truncate(description, description_limit)
        if fields:
            rendered["fields"] = [
                {
                    "name": truncate(sanitize(item["name"]), DISCORD_FIELD_NAME_LIMIT),
                    "value": code_block(item["value"], field_limit),
                    "inline": item["inline"],
                }
                for item in fields[:field_count]
            ]
        return {"embeds": [rendered]}

    payload = render(DISCORD_FIELD_VALUE_LIMIT, len(fields), DISCORD_DESCRIPTION_LIMIT)
    if payload_size(payload) > DISCORD_PAYLOAD_BYTES:
        for step in DISCORD_SHRINK_STEPS:
            payload = render(step, 1, 1024)
            if payload_size(payload) <= DISCORD_PAYLOAD_BYTES:
                break
        else:
            minimal = {key: embed[key] for key in ("title", "color", "timestamp", "footer")}
            minimal["description"] = status_line
            payload = {"embeds": [minimal]}

    return FormattedNotification(payload=payload, url=destination.url)


def format_webex_incoming(
    task: TaskDefinition,
    result: ExecutionResult,
    destination: WebhookDestination,
    now: datetime,
) -> FormattedNotification:
    glyph, status = status_parts(result)
    markdown = f"## Automation Task: {task.name}\n\n"
    markdown += f"**Status:** {glyph} {status}\n"
    markdown += f"**Timestamp:** {format_local(now, settings.notification_timezone)}\n"
    markdown += f"**Task ID:** {task.id}\n\n"

    body = result_body(result)
    if body:
        markdown += truncate(body, WEBEX_BODY_LIMIT) + "\n\n"

    error = result_error(result)
    if error:
        markdown += f"**❌ Error:**\n```\n{truncate(error, WEBEX_ERROR_LIMIT)}\n```\n"

    return FormattedNotification(payload={"markdown": markdown}, url=destination.url)


def webex_messages_url(url: str) -> str:
    """Point a bare Webex API URL at the messages endpoint, keeping its query."""
    if "webexapis.com" not in url or "/v1/messages" in url:
        return url
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    path = f"{path}/messages" if path.endswith("/v1") else f"{path}/v1/messages"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def webex_recipient(destination: WebhookDestination) -> tuple[str, str]:
    notes = destination.notes_config()
    room_id = str(notes.get("room_id") or notes.get("roomId") or "")
    email = str(notes.get("email") or notes.get("toPersonEmail") or "")
    if room_id:
        return "roomId", room_id
    if email:
        return "toPersonEmail", email

    target = (destination.target or "").strip()
    if target and "http" not in target:
        return ("toPersonEmail", target) if "@" in target else ("roomId", target)
    if target and "@" in target:
        return "toPersonEmail", target
    raise ValueError("Webex API webhook requires either roomId or toPersonEmail")


def webex_token(destination: WebhookDestination) -> Optional[str]:
    if destination.username:
        return destination.username
    notes = destination.notes_config()
    token = notes.get("token") or notes.get("accessToken")
    if token:
        return str(token)
    values = parse_qs(urlsplit(destination.url).query).get("token")
    return values[0] if values else None


def format_webex_api(
    task: TaskDefinition,
    result: ExecutionResult,
    destination: WebhookDestination,
    now: datetime,
) -> FormattedNotification:
    glyph, status = status_parts(result)
    text = f"Automation Task: {task.name}\n"
    text += f"Status: {glyph} {status}\n"
    text += f"Timestamp: {format_local(now, settings.notification_timezone)}\n"
    text += f"Task ID: {task.id}\n"
    error = result_error(result)
    if error:
        text += f"\nError:\n{truncate(error, WEBEX_ERROR_LIMIT)}\n"

    recipient_field, recipient = webex_recipient(destination)
    headers = dict(JSON_HEADERS)
    token = webex_token(destination)
    if token:
        headers["Authorization"] = f"Bearer {token}"

    return FormattedNotification(
        payload={"text": text, recipient_field: recipient},
        headers=headers,
        url=webex_messages_url(destination.url),
    )


_FORMATTERS = {
    DISCORD: format_discord,
    WEBEX_INCOMING: format_webex_incoming,
    WEBEX_API: format_webex_api,
}


def format_notification(
    task: TaskDefinition,
    result: ExecutionResult,
    destination: WebhookDestination,
    now: datetime | None = None,
) -> FormattedNotification:
    formatter = _FORMATTERS.get(destination.kind, format_generic)
    return formatter(task, result, destination, now or now_utc())
