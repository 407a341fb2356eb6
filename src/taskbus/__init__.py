"""
taskbus - background task orchestration: transactional outbox worker,
pausable periodic jobs and a local control channel
"""

__version__ = "0.1.0"

from taskbus.backends import InMemoryQueue, PostgresQueue
from taskbus.control import ControlChannel, OneShotTrigger, build_commands, send_command
from taskbus.orchestrator import Orchestrator
from taskbus.pausable import PausableTask, PauseState, TaskSupervisor, supervised_task
from taskbus.types import (
    Claim,
    DeadLetterRecord,
    ExecutionOutcome,
    QueueEntry,
    UnitExit,
)
from taskbus.worker import Worker, try_execute_task

__all__ = [
    "Claim",
    "ControlChannel",
    "DeadLetterRecord",
    "ExecutionOutcome",
    "InMemoryQueue",
    "OneShotTrigger",
    "Orchestrator",
    "PausableTask",
    "PauseState",
    "PostgresQueue",
    "QueueEntry",
    "TaskSupervisor",
    "UnitExit",
    "Worker",
    "build_commands",
    "send_command",
    "supervised_task",
    "try_execute_task",
    "__version__",
]
