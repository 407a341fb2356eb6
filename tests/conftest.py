"""Shared test fixtures."""

import asyncio
from typing import Optional

import pytest

from taskbus.backends.memory import InMemoryQueue
from taskbus.config import LiveSettings, Settings
from taskbus.types import QueueEntry


class FakeSender:
    """Email sender that records deliveries, or raises the configured error."""

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.sent: list[tuple[str, str, str, str]] = []

    async def send(
        self, recipient: str, subject: str, html_body: str, text_body: str
    ) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient, subject, html_body, text_body))


class FakeDocumentSource:
    """Document source serving fixed documents per index."""

    def __init__(self, documents: Optional[dict] = None) -> None:
        self.documents = documents or {
            "ingredients": [{"id": "i-1", "name": "tomato"}],
            "cuisines": [{"id": "c-1", "name": "italian"}],
        }
        self.fetched: list[str] = []

    @property
    def indexes(self) -> list[str]:
        return list(self.documents)

    async def fetch(self, index: str) -> list[dict]:
        self.fetched.append(index)
        return self.documents.get(index, [])


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings isolated from the repository configuration file."""
    values = {
        "queue": {"idle_interval": 0.01, "error_interval": 0.01},
        "application": {
            "control_socket": tmp_path / "ctl.sock",
            "frontend_url": "http://localhost:3001",
        },
        "search": {"interval": 3600.0, "task_timeout": 1.0, "task_poll_interval": 0.01},
    }
    values.update(overrides)
    return Settings(**values)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll predicate until it is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture()
def live_settings(tmp_path) -> LiveSettings:
    return LiveSettings(make_settings(tmp_path), path=tmp_path / "configuration.toml")


@pytest.fixture()
def queue() -> InMemoryQueue:
    return InMemoryQueue()


@pytest.fixture()
def sender() -> FakeSender:
    return FakeSender()


async def seed(queue, *entries: QueueEntry) -> None:
    """Enqueue entries in one committed transaction."""
    async with queue.transaction() as tx:
        for entry in entries:
            await queue.enqueue(tx, entry)
