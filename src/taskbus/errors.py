"""
Exceptions raised by the task bus.

StorageError is transient: the worker backs off and tries again.
InvalidPayload and DeliveryError are recorded in the dead-letter table and the
job is dropped. ProtocolError only affects one control connection. BindError is
fatal at startup.
"""


class TaskbusError(Exception):
    """Base class for all task bus errors."""


class StorageError(TaskbusError):
    """The transactional store failed (connection, constraint, timeout)."""


class InvalidPayload(TaskbusError):
    """A queued job carries data that can never be processed (e.g. bad address)."""


class DeliveryError(TaskbusError):
    """The side-effect call itself failed (e.g. email service unavailable)."""


class ProtocolError(TaskbusError):
    """A control request could not be mapped to a known command."""


class BindError(TaskbusError):
    """The control endpoint could not be cleaned up or bound."""


class IndexingError(TaskbusError):
    """The search service rejected documents or did not finish in time."""
