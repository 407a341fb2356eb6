"""
Command line entry point.

Usage:
    taskbus serve [--config PATH] [--log-level LEVEL]
    taskbus init-db [--config PATH]
    taskbus ctl {index,pause,resume,reload_config} [--socket-path PATH]

serve runs every background unit until the first one exits and returns
non-zero when that unit failed. ctl talks to a running serve process over its
control socket and prints the response.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from taskbus.app import create_application
from taskbus.backends.postgres import PostgresQueue
from taskbus.config import LiveSettings, load_settings
from taskbus.control import send_command

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "TASKBUS_LOG"
CONTROL_COMMANDS = ("index", "pause", "resume", "reload_config")


def _setup_logging(level: Optional[str]) -> None:
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")


async def _serve(args: argparse.Namespace) -> int:
    settings = LiveSettings.from_file(args.config)
    app = await create_application(settings)
    try:
        result = await app.run()
    finally:
        await app.close()
    return 0 if result is None or result.ok else 1


async def _init_db(args: argparse.Namespace) -> int:
    config = load_settings(args.config)
    queue = PostgresQueue(config.database.connection_string())
    try:
        await queue.create_tables_if_not_exist()
    finally:
        await queue.close()
    return 0


async def _ctl(args: argparse.Namespace) -> int:
    socket_path = args.socket_path or load_settings(args.config).application.control_socket
    logger.debug("connecting to %s", socket_path)
    response = await send_command(socket_path, args.command)
    print(f"Received response: {response}")
    return 0 if response == "ok" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskbus", description="background task orchestration"
    )
    parser.add_argument("--config", default=None, help="configuration TOML file")
    parser.add_argument("--log-level", default=None, help=f"log level (or ${LOG_LEVEL_ENV})")
    sub = parser.add_subparsers(dest="action", required=True)

    serve = sub.add_parser("serve", help="run the worker, indexer and control channel")
    serve.set_defaults(handler=_serve)

    init_db = sub.add_parser("init-db", help="create the queue tables")
    init_db.set_defaults(handler=_init_db)

    ctl = sub.add_parser("ctl", help="send a command to a running process")
    ctl.add_argument("command", choices=CONTROL_COMMANDS)
    ctl.add_argument("-s", "--socket-path", default=None)
    ctl.set_defaults(handler=_ctl)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.log_level)
    try:
        return asyncio.run(args.handler(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
