"""
Queue backend: the transactional outbox the worker consumes.

Producers call enqueue() inside their own open transaction so a queue entry
exists if and only if the business write that caused it committed. The worker
calls dequeue_one(), which opens a new transaction and locks one pending row,
skipping rows already locked by other consumers. The claim is finished with
complete() (delete + commit) or abort() (rollback, entry stays pending).
"""

from typing import Any, Optional, Protocol

from taskbus.types import Claim, DeadLetterRecord, QueueEntry


class QueueBackend(Protocol):
    """Protocol for outbox persistence (PostgreSQL, in-memory)."""

    async def enqueue(self, tx: Any, entry: QueueEntry) -> None:
        """Insert entry inside the caller's transaction; never commits."""

    async def dequeue_one(self) -> Optional[Claim]:
        """
        Lock and return one pending entry, or None right away when every pending
        entry is locked by someone else or the queue is empty.
        """

    async def record_failure(self, claim: Claim, record: DeadLetterRecord) -> None:
        """Insert a dead-letter record inside the claim's transaction (ignore duplicates)."""

    async def complete(self, claim: Claim) -> None:
        """Delete the claimed row and commit, releasing the row lock."""

    async def abort(self, claim: Claim) -> None:
        """Roll back the claim's transaction; no-op if already finished."""
