"""Local script tasks run as child processes."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from autorelay.credentials import CredentialResolver
from autorelay.execution import ExecutionResult, TaskDefinition, TaskExecutor
from autorelay.result_channel import EXECUTION_ID_ENV, RESULT_KEY_ENV, ResultChannel, result_key
from autorelay.schemas import ScriptConfig, ScriptResponse
from autorelay.settings import settings

logger = logging.getLogger(__name__)

NO_OUTPUT = "Script completed with no output"

INTERPRETERS: dict[str, list[str]] = {
    ".py": [sys.executable],
    ".js": ["node"],
    ".mjs": ["node"],
    ".cjs": ["node"],
    ".sh": ["sh"],
}


def resolve_script_path(path: str, base_dir: Path) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return candidate.resolve()


def build_command(script_path: Path, args: list[str]) -> list[str]:
    interpreter = INTERPRETERS.get(script_path.suffix.lower())
    if interpreter is None:
        return [str(script_path), *args]
    return [*interpreter, str(script_path), *args]


def parse_stdout_response(stdout_lines: list[str], stdout: str) -> Optional[ScriptResponse]:
    """Recover a structured response from captured stdout.

    The last line that looks like JSON wins; if it does not parse, the whole
    output is tried as one JSON document.
    """
    candidates = [line.strip() for line in stdout_lines]
    json_lines = [line for line in candidates if line.startswith(("{", "["))]
    if json_lines:
        try:
            return ScriptResponse.from_payload(json.loads(json_lines[-1]))
        except (ValueError, RecursionError):
            pass

    blob = stdout.strip()
    if not blob:
        return None
    try:
        parsed = json.loads(blob)
        if not isinstance(parsed, (dict, list)):
            return None
        return ScriptResponse.from_payload(parsed)
    except (ValueError, RecursionError):
        return None


@dataclass
class ProcessOutcome:
    returncode: Optional[int]
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_lines)

    @property
    def stderr(self) -> str:
        return "\n".join(self.stderr_lines).strip()


class ScriptExecutor(TaskExecutor):
    def __init__(
        self,
        result_channel: ResultChannel,
        credential_resolver: CredentialResolver | None = None,
        *,
        scripts_dir: Path | None = None,
        timeout_seconds: float | None = None,
        show_logs: bool | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.result_channel = result_channel
        self.credential_resolver = credential_resolver
        self.scripts_dir = scripts_dir or settings.scripts_dir_path
        self.timeout_seconds = (
            settings.script_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self.show_logs = settings.show_logs if show_logs is None else show_logs
        self.id_factory = id_factory

    def execute(self, task: TaskDefinition) -> ExecutionResult:
        config = task.config
        if not isinstance(config, ScriptConfig):
            return ExecutionResult(success=False, error=task.config_error or "script requires a path")

        script_path = resolve_script_path(config.path, self.scripts_dir)
        if not script_path.is_file():
            return ExecutionResult(success=False, error=f"Script not found: {script_path}")

        execution_id = self.id_factory()
        redis_key = result_key(execution_id)
        env = dict(os.environ)
        if config.credential_id is not None and self.credential_resolver is not None:
            env.update(self.credential_resolver.resolve(config.credential_id, task.owner_id))
        env[EXECUTION_ID_ENV] = execution_id
        env[RESULT_KEY_ENV] = redis_key

        timeout = config.timeout_seconds or self.timeout_seconds or None
        if self.show_logs:
            logger.info("running script %s for %s (execution %s)", script_path, task.name, execution_id)

        try:
            outcome = self._run_process(build_command(script_path, config.args), env, task.name, timeout)
        except OSError as exc:
            logger.warning("could not start script %s: %s", script_path, exc)
            return ExecutionResult(success=False, error=f"Failed to start script: {exc}")

        if outcome.timed_out:
            return ExecutionResult(
                success=False,
                raw_output=outcome.stdout,
                error=f"Script timed out after {timeout}s",
            )
        if outcome.returncode != 0 and not outcome.stderr:
            return ExecutionResult(
                success=False,
                raw_output=outcome.stdout,
                error=f"Script exited with code {outcome.returncode}",
            )

        response = self.result_channel.collect(redis_key)
        if response is None:
            if self.show_logs:
                logger.info("no result in channel for %s, falling back to stdout", task.name)
            response = parse_stdout_response(outcome.stdout_lines, outcome.stdout)

        if response is not None:
            if response.content:
                raw_output = response.content
            else:
                raw_output = json.dumps(response.json_content or {}, indent=2, ensure_ascii=False)
            return ExecutionResult(
                success=response.success,
                raw_output=raw_output,
                error=response.error,
                structured=response,
            )

        return ExecutionResult(
            success=True,
            raw_output=outcome.stdout.strip() or NO_OUTPUT,
            error=outcome.stderr or None,
        )

    def _run_process(
        self,
        command: list[str],
        env: dict[str, str],
        task_name: str,
        timeout: float | None,
    ) -> ProcessOutcome:
        process = subprocess.Popen(
            command,
            cwd=str(self.scripts_dir),
            env=env,
            stdin=None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
        outcome = ProcessOutcome(returncode=None)
        readers = [
            threading.Thread(
                target=self._pump,
                args=(process.stdout, outcome.stdout_lines, logging.INFO, task_name),
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(process.stderr, outcome.stderr_lines, logging.WARNING, task_name),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        try:
            outcome.returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("script for %s exceeded %ss, killing it", task_name, timeout)
            process.kill()
            outcome.returncode = process.wait()
            outcome.timed_out = True

        for reader in readers:
            reader.join(timeout=5.0)
        return outcome

    def _pump(self, stream, sink: list[str], level: int, task_name: str) -> None:
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                text = line.rstrip("\r\n")
                sink.append(text)
                if self.show_logs and text.strip():
                    logger.log(level, "[script %s] %s", task_name, text)
        finally:
            stream.close()
