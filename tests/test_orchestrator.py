"""Tests for the first-completion-wins orchestrator."""

import asyncio
import logging

import pytest

from taskbus.orchestrator import Orchestrator, report_exit
from taskbus.pausable import PausableTask

# pylint: disable=missing-function-docstring


async def _forever(cancelled: list, name: str) -> None:
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        cancelled.append(name)
        raise


@pytest.mark.asyncio
async def test_first_unit_to_finish_wins():
    """The quick unit is reported; the others are cancelled."""
    cancelled = []

    async def quick():
        await asyncio.sleep(0.01)
        return "done"

    orchestrator = Orchestrator()
    orchestrator.add("worker", _forever(cancelled, "worker"))
    orchestrator.add("quick", quick())
    orchestrator.add("control", _forever(cancelled, "control"))

    exit_ = await asyncio.wait_for(orchestrator.run(), timeout=2.0)

    assert exit_.name == "quick"
    assert exit_.ok
    assert sorted(cancelled) == ["control", "worker"]


@pytest.mark.asyncio
async def test_cancelling_run_cancels_every_unit():
    """Cancelling the orchestrator itself unwinds the units it started."""
    cancelled = []
    orchestrator = Orchestrator()
    orchestrator.add("worker", _forever(cancelled, "worker"))
    orchestrator.add("control", _forever(cancelled, "control"))

    run = asyncio.create_task(orchestrator.run())
    await asyncio.sleep(0.01)
    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run

    assert sorted(cancelled) == ["control", "worker"]


@pytest.mark.asyncio
async def test_failing_unit_is_reported_with_its_error(caplog):
    cancelled = []

    async def broken():
        await asyncio.sleep(0)
        raise ConnectionError("database went away")

    orchestrator = Orchestrator()
    orchestrator.add("email worker", broken())
    orchestrator.add("indexer", _forever(cancelled, "indexer"))

    with caplog.at_level(logging.ERROR, logger="taskbus.orchestrator"):
        exit_ = await orchestrator.run()

    assert exit_.name == "email worker"
    assert isinstance(exit_.error, ConnectionError)
    assert not exit_.ok
    assert cancelled == ["indexer"]
    assert "email worker failed" in caplog.text
    assert "database went away" in caplog.text


@pytest.mark.asyncio
async def test_pausable_task_runs_as_unit():
    async def job():
        await asyncio.sleep(0)
        return 1

    pausable, _ = PausableTask.wrap(job())
    orchestrator = Orchestrator()
    orchestrator.add("search indexer", pausable)
    orchestrator.add("other", _forever([], "other"))

    exit_ = await orchestrator.run()
    assert exit_.name == "search indexer"
    assert exit_.ok


@pytest.mark.asyncio
async def test_empty_orchestrator_returns_none():
    assert await Orchestrator().run() is None


def test_duplicate_unit_name_is_rejected():
    orchestrator = Orchestrator()

    async def unit():
        return None

    first = unit()
    orchestrator.add("worker", first)
    second = unit()
    with pytest.raises(ValueError):
        orchestrator.add("worker", second)
    assert orchestrator.names == ["worker"]
    first.close()
    second.close()


@pytest.mark.asyncio
async def test_report_exit_for_cancelled_task(caplog):
    task = asyncio.create_task(asyncio.sleep(10))
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    with caplog.at_level(logging.ERROR, logger="taskbus.orchestrator"):
        exit_ = report_exit("search indexer", task)

    assert exit_.cancelled
    assert not exit_.ok
    assert "'search indexer' task was cancelled" in caplog.text
