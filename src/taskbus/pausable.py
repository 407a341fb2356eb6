"""
Cooperative pause/resume for long-running awaitables.

PausableTask drives the wrapped awaitable one step at a time. Every time the
event loop resumes it (a progress check), the shared PausableState is consulted
before the inner awaitable is touched:

  Running        -> the step is forwarded to the inner awaitable unchanged
  PausePending   -> becomes Paused(handle); the task parks on handle
  Paused(handle) -> re-parks on a fresh handle

TaskSupervisor is the external handle:

  pause()   Running -> PausePending        (no-op otherwise)
  resume()  Paused(handle) -> Running      (no-op otherwise), handle is resolved

Pausing is cooperative: a step already handed to the inner awaitable runs until
its next suspension point, and only the following progress check parks. A
resume() issued while the pause is still pending does nothing, so the task
still parks once at its next check. Exceptions thrown into the task (such as
cancellation at shutdown) reach the inner awaitable immediately, paused or not.

Usage:
    task, supervisor = supervised_task(indexer.run_forever(), name="indexer")
    supervisor.pause()
    ...
    supervisor.resume()
"""

import asyncio
import logging
import threading
from enum import StrEnum
from typing import Any, Awaitable, Generator, Optional, Tuple

logger = logging.getLogger(__name__)


class PauseState(StrEnum):
    RUNNING = "running"
    PAUSE_PENDING = "pause_pending"
    PAUSED = "paused"


def _resolve(handle: asyncio.Future) -> None:
    if not handle.done():
        handle.set_result(None)


def _wake(handle: asyncio.Future) -> None:
    """Resolve handle on its own loop; directly when already running there."""
    loop = handle.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        _resolve(handle)
    else:
        loop.call_soon_threadsafe(_resolve, handle)


class PausableState:
    """
    State cell shared by one PausableTask and any number of supervisors.

    Guarded by a single lock; every critical section is O(1) and never awaits.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._kind = PauseState.RUNNING
        self._resume_handle: Optional[asyncio.Future] = None

    @property
    def kind(self) -> PauseState:
        with self._lock:
            return self._kind

    def request_pause(self) -> bool:
        """Running -> PausePending. Returns True if the state changed."""
        with self._lock:
            if self._kind is not PauseState.RUNNING:
                return False
            self._kind = PauseState.PAUSE_PENDING
            return True

    def request_resume(self) -> bool:
        """Paused -> Running and wake the parked task. Returns True if the state changed."""
        with self._lock:
            if self._kind is not PauseState.PAUSED:
                return False
            handle = self._resume_handle
            self._kind = PauseState.RUNNING
            self._resume_handle = None
        if handle is not None:
            _wake(handle)
        return True

    def checkpoint(self) -> Optional[asyncio.Future]:
        """
        Progress check. None means run the inner step; otherwise the caller must
        park on the returned future and check again once it resolves.
        """
        with self._lock:
            if self._kind is PauseState.RUNNING:
                return None
            handle = asyncio.get_running_loop().create_future()
            self._kind = PauseState.PAUSED
            self._resume_handle = handle
            return handle


class TaskSupervisor:
    """
    Handle that pauses and resumes a PausableTask from the outside.

    Cheap to copy: every copy refers to the same PausableState.
    """

    def __init__(self, state: PausableState) -> None:
        self._state = state

    @property
    def state(self) -> PauseState:
        return self._state.kind

    def pause(self) -> None:
        if self._state.request_pause():
            logger.debug("supervisor: pause requested")

    def resume(self) -> None:
        if self._state.request_resume():
            logger.debug("supervisor: resumed")

    def clone(self) -> "TaskSupervisor":
        return TaskSupervisor(self._state)


class PausableTask:
    """Awaitable wrapper that honors pause requests at every progress check."""

    def __init__(
        self, awaitable: Awaitable[Any], state: Optional[PausableState] = None
    ) -> None:
        self._awaitable = awaitable
        self._state = state or PausableState()

    @classmethod
    def wrap(cls, awaitable: Awaitable[Any]) -> Tuple["PausableTask", TaskSupervisor]:
        task = cls(awaitable)
        return task, TaskSupervisor(task._state)

    @property
    def state(self) -> PauseState:
        return self._state.kind

    def __await__(self) -> Generator[Any, Any, Any]:
        inner = self._awaitable.__await__()
        value: Any = None
        error: Optional[BaseException] = None
        while True:
            # thrown-in exceptions skip the check so cancellation is never parked
            if error is None:
                try:
                    while (handle := self._state.checkpoint()) is not None:
                        yield from handle
                except GeneratorExit:
                    inner.close()
                    raise
                except BaseException as e:  # pylint: disable=broad-exception-caught
                    value, error = None, e
            try:
                if error is None:
                    step = inner.send(value)
                else:
                    step = inner.throw(error)
            except StopIteration as stop:
                return stop.value
            try:
                value, error = (yield step), None
            except GeneratorExit:
                inner.close()
                raise
            except BaseException as e:  # pylint: disable=broad-exception-caught
                value, error = None, e


async def _drive(task: PausableTask) -> Any:
    return await task


def supervised_task(
    awaitable: Awaitable[Any], *, name: Optional[str] = None
) -> Tuple[asyncio.Task, TaskSupervisor]:
    """Wrap awaitable in a PausableTask, schedule it, and return the task with its supervisor."""
    pausable, supervisor = PausableTask.wrap(awaitable)
    task = asyncio.create_task(_drive(pausable), name=name)
    return task, supervisor
