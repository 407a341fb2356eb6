"""
Run every taskbus unit next to a stand-in for the registration endpoint.

Usage:
    python examples/run_server.py [--config PATH] [--signups N] [--every SECONDS]

Options:
    --config PATH      Configuration TOML (default: configuration.toml)
    --signups N        Number of fake registrations to write (default: 3)
    --every SECONDS    Delay between registrations (default: 2.0)

Each registration enqueues its confirmation email in the same transaction as
the (simulated) user insert. While it runs, try:
    taskbus ctl pause
    taskbus ctl index
"""

import argparse
import asyncio
import logging
import uuid

from taskbus.app import create_application
from taskbus.config import LiveSettings
from taskbus.types import QueueEntry

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def register_users(queue, count: int, every: float) -> None:
    """Stand-in for the HTTP server: write outbox entries, then keep serving."""
    for i in range(count):
        task_id = uuid.uuid4().hex
        async with queue.transaction() as tx:
            # the business write would go here, on the same transaction
            await queue.enqueue(tx, QueueEntry(task_id, f"user{i}@example.com"))
        logger.info("registered user%d, confirmation task %s", i, task_id)
        await asyncio.sleep(every)
    await asyncio.Future()


async def main() -> None:
    parser = argparse.ArgumentParser(description="taskbus demo")
    parser.add_argument("--config", default=None)
    parser.add_argument("--signups", type=int, default=3)
    parser.add_argument("--every", type=float, default=2.0)
    args = parser.parse_args()

    settings = LiveSettings.from_file(args.config)
    app = await create_application(settings)
    try:
        result = await app.run(
            {"http server": register_users(app.queue, args.signups, args.every)}
        )
        logger.info("stopped after %s exited", result.name if result else "nothing")
    finally:
        await app.close()


if __name__ == "__main__":
    asyncio.run(main())
