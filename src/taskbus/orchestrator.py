"""
Orchestrator: runs the worker, the supervised indexer, the control channel and
any external unit (e.g. the HTTP server) side by side on one event loop.

The first unit to finish, for whatever reason, decides the outcome: it is
reported with its name and error chain, every other unit is cancelled, and the
process is expected to exit. Nothing is restarted in-process; that is the job
of the process supervisor.
"""

import asyncio
import logging
import signal
from typing import Any, Awaitable, Dict, Optional

from taskbus.types import UnitExit

logger = logging.getLogger(__name__)


def report_exit(name: str, task: asyncio.Future) -> UnitExit:
    """Log how a finished unit ended and return it as a UnitExit."""
    if task.cancelled():
        logger.error("'%s' task was cancelled before completing", name)
        return UnitExit(name=name, cancelled=True)
    error = task.exception()
    if error is None:
        logger.info("%s has exited", name)
        return UnitExit(name=name)
    logger.error("%s failed: %s", name, error, exc_info=error)
    return UnitExit(name=name, error=error)


async def wait_for_shutdown_signal() -> None:
    """Complete on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    received = asyncio.Event()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, received.set)
    try:
        await received.wait()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
    logger.warning("signal received, starting shutdown")


class Orchestrator:
    """
    Named concurrent units with first-completion-wins semantics.

    Usage:
        orchestrator = Orchestrator()
        orchestrator.add("email worker", worker.run_forever())
        orchestrator.add("search indexer", indexer_task)
        exit = await orchestrator.run()
    """

    def __init__(self) -> None:
        self._units: Dict[str, Awaitable[Any]] = {}
        self._tasks: Dict[asyncio.Future, str] = {}

    def add(self, name: str, unit: Awaitable[Any]) -> None:
        """Register a coroutine, task or other awaitable under a unique name."""
        if name in self._units:
            raise ValueError(f"unit {name!r} is already registered")
        self._units[name] = unit

    @property
    def names(self) -> list[str]:
        return list(self._units)

    async def run(self) -> Optional[UnitExit]:
        """Start every unit, wait for the first to finish, cancel the rest."""
        if not self._units:
            return None
        for name, unit in self._units.items():
            if asyncio.iscoroutine(unit):
                task = asyncio.create_task(unit, name=name)
            else:
                task = asyncio.ensure_future(unit)
            self._tasks[task] = name
            logger.debug("started unit %s", name)
        pending = set(self._tasks)
        try:
            done, pending = await asyncio.wait(
                self._tasks, return_when=asyncio.FIRST_COMPLETED
            )
            first = next(iter(done))
            result = report_exit(self._tasks[first], first)
            for task in done:
                if task is not first:
                    report_exit(self._tasks[task], task)
        finally:
            # also runs when run() itself is cancelled
            await self.shutdown(pending)
        return result

    async def shutdown(self, pending) -> None:
        """Cancel the still-running units and wait for them to unwind."""
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        for task in pending:
            if not task.cancelled() and task.exception() is not None:
                report_exit(self._tasks[task], task)
