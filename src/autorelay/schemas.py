"""Task config union, script responses and API schemas."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

TASK_TYPE_HTTP = "http_request"
TASK_TYPE_SCRIPT = "script"
RESPONSE_TYPES = ("markdown", "text", "json")


class InvalidTaskConfig(ValueError):
    """Raised when a stored config blob cannot be turned into a task config."""


class HttpConfig(BaseModel):
    kind: Literal["http_request"] = TASK_TYPE_HTTP
    url: str = Field(..., min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> str:
        return str(value or "GET").strip().upper() or "GET"

    @field_validator("body", mode="before")
    @classmethod
    def _serialize_body(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> dict[str, str]:
        if not value:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("headers must be an object")
        return {str(key): str(item) for key, item in value.items()}


class ScriptConfig(BaseModel):
    kind: Literal["script"] = TASK_TYPE_SCRIPT
    path: str = Field(..., min_length=1)
    credential_id: Optional[int] = None
    args: list[str] = Field(default_factory=list)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


TaskConfig = Union[HttpConfig, ScriptConfig]


def parse_task_config(task_type: str, raw: str | None) -> TaskConfig:
    """Validate a stored config blob once, falling back to a bare URL or path."""
    text = (raw or "").strip()
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    except RecursionError as exc:
        raise InvalidTaskConfig(f"invalid {task_type} config: nested too deeply") from exc

    if task_type == TASK_TYPE_HTTP:
        model, bare_field = HttpConfig, "url"
    elif task_type == TASK_TYPE_SCRIPT:
        model, bare_field = ScriptConfig, "path"
    else:
        raise InvalidTaskConfig(f"unknown task type: {task_type}")

    if isinstance(data, dict):
        payload = {key: value for key, value in data.items() if key != "kind"}
    elif isinstance(data, str):
        payload = {bare_field: data.strip()}
    else:
        payload = {bare_field: text}

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTaskConfig(f"invalid {task_type} config: {exc.errors()[0]['msg']}") from exc
    except (TypeError, RecursionError) as exc:
        raise InvalidTaskConfig(f"invalid {task_type} config: {exc}") from exc


class ScriptResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    type: Literal["markdown", "text", "json"] = "text"
    content: Optional[str] = None
    json_content: Any = Field(default=None, alias="jsonContent")
    error: Optional[str] = None
    timestamp: Optional[str] = None
    skip_webhook: bool = Field(default=False, alias="skipWebhook")

    @staticmethod
    def looks_structured(parsed: Any) -> bool:
        if not isinstance(parsed, dict):
            return False
        return bool(parsed.get("type")) or "content" in parsed or "jsonContent" in parsed

    @classmethod
    def from_payload(cls, parsed: Any) -> "ScriptResponse":
        """Use a structured payload verbatim, otherwise wrap it as JSON content."""
        fields = parsed if isinstance(parsed, dict) else {}
        error = fields.get("error")
        common = {
            "success": bool(fields.get("success", True)),
            "error": None if error in (None, "") else _as_text(error),
            "skip_webhook": bool(fields.get("skipWebhook", False)),
        }
        if cls.looks_structured(parsed):
            response_type = fields.get("type")
            content = fields.get("content")
            return cls(
                type=response_type if response_type in RESPONSE_TYPES else "text",
                content=None if content is None else _as_text(content),
                json_content=fields.get("jsonContent"),
                timestamp=_as_text(fields["timestamp"]) if fields.get("timestamp") else None,
                **common,
            )
        return cls(
            type="json",
            content=json.dumps(parsed, indent=2, ensure_ascii=False),
            json_content=parsed,
            **common,
        )


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class TaskCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["http_request", "script"]
    config: Union[str, dict[str, Any]]
    schedule: str = "1h"
    enabled: bool = True
    webhook_id: Optional[int] = None
    owner_id: int = 0

    def config_text(self) -> str:
        if isinstance(self.config, str):
            return self.config
        return json.dumps(self.config)


class TaskSummary(BaseModel):
    id: int
    owner_id: int
    name: str
    type: str
    config: str
    schedule: str
    enabled: bool
    webhook_id: Optional[int]
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    run_count: int
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime


class RunRequest(BaseModel):
    task_id: Optional[int] = None


class RunResponse(BaseModel):
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    processed: Optional[int] = None
