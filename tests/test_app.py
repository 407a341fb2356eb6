"""End-to-end tests for Application: every unit on one loop, in-memory backends."""

import httpx
import pytest

from conftest import FakeDocumentSource, FakeSender, make_settings, seed, wait_until
from taskbus.app import Application
from taskbus.backends.memory import InMemoryQueue
from taskbus.config import LiveSettings
from taskbus.control import send_command
from taskbus.errors import BindError
from taskbus.indexer import SearchClient
from taskbus.pausable import PauseState
from taskbus.types import QueueEntry

# pylint: disable=missing-function-docstring


def _search_service(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        return httpx.Response(202, json={"taskUid": 1})
    return httpx.Response(200, json={"uid": 1, "status": "succeeded"})


def _application(tmp_path, source=None, sender=None):
    settings = LiveSettings(make_settings(tmp_path), path=tmp_path / "configuration.toml")
    search_client = SearchClient(
        "http://search",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_search_service)),
    )
    return Application(
        settings,
        queue=InMemoryQueue(),
        sender=sender or FakeSender(),
        search_client=search_client,
        document_source=source or FakeDocumentSource(),
        handle_signals=False,
    )


@pytest.mark.asyncio
async def test_units_share_one_loop_until_first_exit(tmp_path):
    """Worker delivers, control pauses the indexer, and the first exit ends the run."""
    source = FakeDocumentSource()
    sender = FakeSender()
    app = _application(tmp_path, source=source, sender=sender)
    socket_path = tmp_path / "ctl.sock"

    async def scenario():
        await seed(app.queue, QueueEntry("abc123", "user@example.com"))
        await wait_until(lambda: len(sender.sent) == 1)
        await wait_until(lambda: source.fetched == ["ingredients", "cuisines"])
        assert await send_command(socket_path, "pause") == "ok"
        assert app.supervisor.state is not PauseState.RUNNING
        assert await send_command(socket_path, "resume") == "ok"
        assert await send_command(socket_path, "bogus") == "error"

    exit_ = await app.run({"scenario": scenario()})
    await app.close()

    assert exit_.name == "scenario"
    assert exit_.ok, exit_.error
    assert sender.sent[0][0] == "user@example.com"
    assert await app.queue.pending() == []
    assert not socket_path.exists()


@pytest.mark.asyncio
async def test_index_command_runs_extra_pass(tmp_path):
    source = FakeDocumentSource()
    app = _application(tmp_path, source=source)
    socket_path = tmp_path / "ctl.sock"

    async def scenario():
        await wait_until(lambda: len(source.fetched) == 2)
        assert await send_command(socket_path, "index") == "ok"
        await app.index_trigger.join()
        assert source.fetched == ["ingredients", "cuisines"] * 2

    exit_ = await app.run({"scenario": scenario()})
    await app.close()

    assert exit_.ok, exit_.error


@pytest.mark.asyncio
async def test_failing_unit_ends_the_run(tmp_path):
    app = _application(tmp_path)

    async def crash():
        raise RuntimeError("http server crashed")

    exit_ = await app.run({"http server": crash()})
    await app.close()

    assert exit_.name == "http server"
    assert isinstance(exit_.error, RuntimeError)


@pytest.mark.asyncio
async def test_bind_failure_stops_before_units_start(tmp_path):
    blocked = tmp_path / "ctl.sock"
    blocked.mkdir()
    (blocked / "keep").write_text("x")
    sender = FakeSender()
    app = _application(tmp_path, sender=sender)
    await seed(app.queue, QueueEntry("t1", "user@example.com"))

    with pytest.raises(BindError):
        await app.run()
    await app.close()

    assert sender.sent == []
    assert len(await app.queue.pending()) == 1
