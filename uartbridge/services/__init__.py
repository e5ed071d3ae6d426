"""Bridge services: connection supervision, fan-out and task restarts."""

from .dispatcher import BroadcastDispatcher
from .supervisor import ConnectionSupervisor, RetryPolicy
from .task_supervisor import SupervisedTaskSpec, supervise_task

__all__ = [
    "BroadcastDispatcher",
    "ConnectionSupervisor",
    "RetryPolicy",
    "SupervisedTaskSpec",
    "supervise_task",
]
