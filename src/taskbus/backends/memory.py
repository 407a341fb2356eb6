"""
In-memory queue backend.

Same contract as PostgresQueue, kept in process memory: producer transactions
buffer their inserts until commit, and dequeue_one() skips rows claimed by
another open claim instead of waiting for them. Useful for tests and for running
the worker without a database.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

from taskbus.errors import StorageError
from taskbus.types import Claim, DeadLetterRecord, QueueEntry

logger = logging.getLogger(__name__)


class MemoryTransaction:
    """Producer transaction: entries become visible only after commit()."""

    def __init__(self, queue: "InMemoryQueue") -> None:
        self._queue = queue
        self._entries: List[QueueEntry] = []
        self.closed = False

    def add(self, entry: QueueEntry) -> None:
        if self.closed:
            raise StorageError("transaction is already closed")
        self._entries.append(entry)

    def commit(self) -> None:
        if self.closed:
            raise StorageError("transaction is already closed")
        self.closed = True
        self._queue._insert(self._entries)

    def rollback(self) -> None:
        self.closed = True
        self._entries.clear()


class InMemoryQueue:
    """
    Outbox queue held in memory.

    - rows: committed pending entries by row id.
    - locked: row ids held by an open claim (skipped by other dequeues).
    - dead letters keyed by (job_id, job_type); a second insert is ignored.
    """

    def __init__(self) -> None:
        self._rows: Dict[int, QueueEntry] = {}
        self._locked: Set[int] = set()
        self._dead: Dict[Tuple[str, str], DeadLetterRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryTransaction]:
        """Open a producer transaction; commits on clean exit, rolls back on error."""
        tx = MemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        if not tx.closed:
            tx.commit()

    def _insert(self, entries: List[QueueEntry]) -> None:
        with self._lock:
            for entry in entries:
                self._rows[self._next_id] = entry
                self._next_id += 1

    async def enqueue(self, tx: MemoryTransaction, entry: QueueEntry) -> None:
        """Buffer entry in the caller's transaction."""
        if not isinstance(tx, MemoryTransaction):
            raise StorageError(f"not an in-memory transaction: {tx!r}")
        tx.add(entry)
        logger.debug("memory queue: enqueued task %s", entry.task_id)

    async def dequeue_one(self) -> Optional[Claim]:
        """Claim the first pending row not held by another claim."""
        with self._lock:
            for row_id, entry in self._rows.items():
                if row_id in self._locked:
                    continue
                self._locked.add(row_id)
                return Claim(row_id=row_id, entry=entry, handle=[])
        return None

    async def record_failure(self, claim: Claim, record: DeadLetterRecord) -> None:
        """Buffer the dead-letter record until the claim commits."""
        if claim.finished:
            raise StorageError("claim is already finished")
        claim.handle.append(record)

    async def complete(self, claim: Claim) -> None:
        """Remove the row, store buffered dead letters and release the claim."""
        if claim.finished:
            raise StorageError("claim is already finished")
        with self._lock:
            for record in claim.handle:
                self._dead.setdefault((record.job_id, record.job_type), record)
            self._rows.pop(claim.row_id, None)
            self._locked.discard(claim.row_id)
        claim.finished = True
        logger.debug("memory queue: completed task %s", claim.entry.task_id)

    async def abort(self, claim: Claim) -> None:
        """Release the claim; the row is pending and claimable again."""
        if claim.finished:
            return
        claim.finished = True
        claim.handle.clear()
        with self._lock:
            self._locked.discard(claim.row_id)

    async def pending(self) -> List[QueueEntry]:
        """Return all pending entries (claimed ones included)."""
        with self._lock:
            return list(self._rows.values())

    async def dead_letters(self) -> List[DeadLetterRecord]:
        """Return every dead-letter record in insertion order."""
        with self._lock:
            return list(self._dead.values())
