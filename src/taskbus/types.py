"""
Types for the task bus.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

TaskId = str

# job_type recorded in the dead-letter table for confirmation emails
EMAIL_DELIVERY_JOB = "email_delivery"


class ExecutionOutcome(StrEnum):
    """
    Result of one worker iteration:
    - EMPTY: no unlocked pending entry was found.
    - COMPLETED: one entry was processed and removed (delivered or dead-lettered).
    - ERROR: storage failed during dequeue/complete; the entry stays pending.
    """

    EMPTY = "empty"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class QueueEntry:
    """One pending email delivery job, written in the same transaction as its cause."""

    task_id: TaskId
    email: str


@dataclass
class DeadLetterRecord:
    """
    A job that could not be completed, kept for offline inspection.

    Inserted with "ignore if already present" semantics; never deleted by the worker.
    """

    job_id: TaskId
    job_type: str
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_email(cls, entry: QueueEntry, error: BaseException) -> "DeadLetterRecord":
        """Build the dead-letter record for a failed email delivery."""
        return cls(
            job_id=entry.task_id,
            job_type=EMAIL_DELIVERY_JOB,
            context={"email": entry.email, "error": str(error)},
        )


@dataclass
class Claim:
    """
    A dequeued entry bound to the open transaction that locks its row.

    handle is backend specific (asyncpg connection + transaction, or the
    in-memory transaction). finished flips once complete() or abort() ran.
    """

    row_id: int
    entry: QueueEntry
    handle: Any = None
    finished: bool = False


@dataclass(frozen=True)
class EmailMessage:
    """A rendered email ready for the sender."""

    subject: str
    html_body: str
    text_body: str


@dataclass
class UnitExit:
    """Outcome of the first orchestrated unit to finish."""

    name: str
    error: Optional[BaseException] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled
