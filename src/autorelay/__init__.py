"""Standalone autorelay task engine."""

from .execution import ExecutionResult, TaskDefinition, TaskExecutor
from .schedule import calculate_next_run, parse_interval
from .schemas import HttpConfig, ScriptConfig, ScriptResponse

__all__ = [
    "__version__",
    "ExecutionResult",
    "HttpConfig",
    "ScriptConfig",
    "ScriptResponse",
    "TaskDefinition",
    "TaskExecutor",
    "calculate_next_run",
    "parse_interval",
]

__version__ = "0.1.0"
