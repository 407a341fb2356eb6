"""Queue backends: PostgreSQL for production, in-memory for tests and local runs."""

from taskbus.backends.memory import InMemoryQueue, MemoryTransaction
from taskbus.backends.postgres import PostgresQueue

__all__ = ["InMemoryQueue", "MemoryTransaction", "PostgresQueue"]
