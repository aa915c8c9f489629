from .scheduler_service import SchedulerService, TaskAlreadyRunning
from .state_policy import DefaultRunStatePolicy, RunStatePolicy, RunStateUpdate

__all__ = [
    "SchedulerService",
    "TaskAlreadyRunning",
    "RunStatePolicy",
    "RunStateUpdate",
    "DefaultRunStatePolicy",
]
