"""
Control channel: a local Unix-socket listener for operator commands.

Protocol, one command per connection:

  client -> server   raw ASCII command name, at most 1024 bytes, no framing
  server -> client   b"ok" or b"error", then the server closes the connection

Connections are handled one at a time; a client that sends nothing within
READ_TIMEOUT_SECONDS is dropped so it cannot hold up the next one. Commands
are looked up in a mapping of name -> async handler, so new commands are added
without touching the loop.
The default table (build_commands) is:

  index          run the indexer once in the background and pause the periodic one
  pause          pause the periodic indexer
  resume         resume the periodic indexer
  reload_config  re-read the configuration file into the live settings
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from taskbus.config import LiveSettings
from taskbus.errors import BindError, ProtocolError
from taskbus.orchestrator import report_exit
from taskbus.pausable import TaskSupervisor

logger = logging.getLogger(__name__)

MAX_REQUEST_BYTES = 1024
READ_TIMEOUT_SECONDS = 5.0
RESPONSE_OK = b"ok"
RESPONSE_ERROR = b"error"

Command = Callable[[], Awaitable[None]]


class OneShotTrigger:
    """
    Fire-and-forget runner for a one-off job (e.g. an out-of-band index run).

    Every fired run is tracked until it finishes; its exit is reported like an
    orchestrated unit. join() waits for the runs still in flight.
    """

    def __init__(self, name: str, factory: Callable[[], Awaitable[Any]]) -> None:
        self.name = name
        self._factory = factory
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def _run(self) -> Any:
        return await self._factory()

    def fire(self) -> asyncio.Task:
        task = asyncio.create_task(self._run(), name=self.name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        report_exit(self.name, task)

    async def join(self) -> None:
        if self._tasks:
            await asyncio.wait(list(self._tasks))


def build_commands(
    supervisor: TaskSupervisor,
    *,
    index_trigger: Optional[OneShotTrigger] = None,
    settings: Optional[LiveSettings] = None,
) -> Dict[str, Command]:
    """Build the command table for the periodic indexer's supervisor."""

    async def pause() -> None:
        logger.warning("pausing search indexing from control channel")
        supervisor.pause()

    async def resume() -> None:
        logger.warning("resuming search indexing from control channel")
        supervisor.resume()

    commands: Dict[str, Command] = {"pause": pause, "resume": resume}

    if index_trigger is not None:

        async def index() -> None:
            logger.warning("requested search indexing through control channel")
            if index_trigger.running:
                logger.warning(
                    "%d earlier index run(s) still in progress", index_trigger.running
                )
            index_trigger.fire()
            supervisor.pause()

        commands["index"] = index

    if settings is not None:

        async def reload_config() -> None:
            logger.warning("reloading configuration from control channel")
            settings.reload()
            logger.info("configuration version %d in effect", settings.version)

        commands["reload_config"] = reload_config

    return commands


class ControlChannel:
    """
    Unix-socket command listener.

    - start() removes a stale socket file (a missing file is fine, any other
      cleanup error is a BindError) and binds.
    - run_forever() serves until cancelled; stop() closes and removes the socket.
    - a connection that stays silent for read_timeout seconds is closed
      without a response.
    """

    def __init__(
        self,
        socket_path: os.PathLike,
        commands: Mapping[str, Command],
        *,
        max_request_bytes: int = MAX_REQUEST_BYTES,
        read_timeout: float = READ_TIMEOUT_SECONDS,
    ) -> None:
        self.socket_path = Path(socket_path)
        self.commands = dict(commands)
        self.max_request_bytes = max_request_bytes
        self.read_timeout = read_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._serial = asyncio.Lock()

    def _remove_stale_socket(self) -> None:
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise BindError(f"cannot remove {self.socket_path}: {e}") from e
        logger.debug("removed stale control socket %s", self.socket_path)

    async def start(self) -> "ControlChannel":
        """Bind the socket and start accepting connections."""
        self._remove_stale_socket()
        try:
            self._server = await asyncio.start_unix_server(
                self._handle, path=str(self.socket_path)
            )
        except OSError as e:
            raise BindError(f"cannot bind {self.socket_path}: {e}") from e
        logger.info("listening for control commands on %s", self.socket_path)
        return self

    async def run_forever(self) -> None:
        """Serve until cancelled. Starts the listener first if needed."""
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass
        logger.info("control channel stopped")

    def resolve(self, request: str) -> Command:
        """Map a request to its handler; unknown requests raise ProtocolError."""
        try:
            return self.commands[request]
        except KeyError:
            raise ProtocolError(f"unknown command {request!r}") from None

    async def dispatch(self, request: str) -> bytes:
        """Run one command and return the response bytes."""
        try:
            handler = self.resolve(request)
        except ProtocolError:
            logger.warning(
                "received command %r, which is not valid in this context", request
            )
            return RESPONSE_ERROR
        try:
            await handler()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("control command %r failed: %s", request, e, exc_info=e)
            return RESPONSE_ERROR
        return RESPONSE_OK

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        async with self._serial:
            try:
                data = await asyncio.wait_for(
                    reader.read(self.max_request_bytes), self.read_timeout
                )
                request = data.decode("ascii", errors="replace").strip()
                logger.info("accepted control connection, command %r", request)
                writer.write(await self.dispatch(request))
                await writer.drain()
            except asyncio.TimeoutError:
                logger.warning(
                    "control connection sent nothing within %.1fs, closing",
                    self.read_timeout,
                )
            except OSError as e:
                logger.warning("control connection failed: %s", e)
            finally:
                writer.close()
                try:
                    await writer.wait_closed()
                except (ConnectionError, OSError):
                    pass


async def send_command(
    socket_path: os.PathLike, command: str, *, timeout: float = 10.0
) -> str:
    """Send one command to a running control channel and return its response."""
    reader, writer = await asyncio.open_unix_connection(str(socket_path))
    try:
        writer.write(command.encode("ascii"))
        await writer.drain()
        data = await asyncio.wait_for(reader.read(MAX_REQUEST_BYTES), timeout)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
    return data.decode("ascii", errors="replace")
