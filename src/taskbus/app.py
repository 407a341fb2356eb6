"""
Application wiring: builds every unit from the settings and runs them under
the orchestrator.

  email worker      Worker.run_forever() over the queue backend
  search indexer    SearchIndexer.run_forever() wrapped in a PausableTask
  control channel   ControlChannel with pause/resume/index/reload_config
  shutdown signal   SIGINT/SIGTERM
  extra units       e.g. the HTTP server, passed in by the caller

The control socket is bound before anything starts, so a BindError stops the
process before any unit runs.
"""

import logging
from typing import Any, Awaitable, Mapping, Optional

from taskbus.backends.postgres import PostgresQueue
from taskbus.config import LiveSettings
from taskbus.control import ControlChannel, OneShotTrigger, build_commands
from taskbus.indexer import DocumentSource, PostgresDocumentSource, SearchClient, SearchIndexer
from taskbus.mailer import EmailClient, EmailSender
from taskbus.orchestrator import Orchestrator, wait_for_shutdown_signal
from taskbus.pausable import PausableState, PausableTask, TaskSupervisor
from taskbus.queue_backend import QueueBackend
from taskbus.types import UnitExit
from taskbus.worker import Worker

logger = logging.getLogger(__name__)


class Application:
    """
    All background units of one process.

    Collaborators are injected so tests can swap the queue, sender and search
    side; create_application() builds the production ones from settings.
    """

    def __init__(
        self,
        settings: LiveSettings,
        *,
        queue: QueueBackend,
        sender: EmailSender,
        search_client: SearchClient,
        document_source: DocumentSource,
        handle_signals: bool = True,
    ) -> None:
        self.settings = settings
        self.queue = queue
        self.sender = sender
        self.search_client = search_client
        self.worker = Worker(queue, sender, settings)
        self.indexer = SearchIndexer(document_source, search_client, settings)
        self.index_trigger = OneShotTrigger("search indexing (once)", self.indexer.run_once)
        self._pause_state = PausableState()
        self.supervisor = TaskSupervisor(self._pause_state)
        self.control = ControlChannel(
            settings.get().application.control_socket,
            build_commands(
                self.supervisor, index_trigger=self.index_trigger, settings=settings
            ),
        )
        self._handle_signals = handle_signals

    async def run(
        self, extra_units: Optional[Mapping[str, Awaitable[Any]]] = None
    ) -> Optional[UnitExit]:
        """Run until the first unit exits; returns that unit's outcome."""
        await self.control.start()
        orchestrator = Orchestrator()
        orchestrator.add("email worker", self.worker.run_forever())
        orchestrator.add(
            "search indexer", PausableTask(self.indexer.run_forever(), self._pause_state)
        )
        orchestrator.add("control channel", self.control.run_forever())
        if self._handle_signals:
            orchestrator.add("shutdown signal", wait_for_shutdown_signal())
        for name, unit in (extra_units or {}).items():
            orchestrator.add(name, unit)
        try:
            return await orchestrator.run()
        finally:
            await self.index_trigger.join()
            await self.control.stop()

    async def close(self) -> None:
        """Release clients and pools owned by the production collaborators."""
        for resource in (self.sender, self.search_client, self.queue):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


async def create_application(settings: LiveSettings) -> Application:
    """Build the production application: PostgreSQL queue, HTTP email and search clients."""
    config = settings.get()
    queue = PostgresQueue(
        config.database.connection_string(),
        acquire_timeout=config.database.acquire_timeout_seconds,
        max_connections=config.database.max_connections,
    )
    await queue.create_tables_if_not_exist()
    pool = await queue.get_pool()
    return Application(
        settings,
        queue=queue,
        sender=EmailClient.from_settings(config.email_client),
        search_client=SearchClient.from_settings(config.search),
        document_source=PostgresDocumentSource(pool),
    )
