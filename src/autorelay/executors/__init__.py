from .http import HttpRequestExecutor
from .registry import ExecutorRegistry
from .script import ScriptExecutor

__all__ = ["ExecutorRegistry", "HttpRequestExecutor", "ScriptExecutor"]
