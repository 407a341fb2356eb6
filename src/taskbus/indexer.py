"""
Search index synchronization.

SearchIndexer copies rows from PostgreSQL into a Meilisearch-style search
service. run_once() pushes every configured index and waits for the service to
finish each indexing task; run_forever() repeats that every search.interval
seconds (a configuration reload cuts a long sleep short when the new interval
has already elapsed) and is the unit wrapped in a PausableTask.

Search service API used:

  POST {url}/indexes/{uid}/documents?primaryKey=id   -> {"taskUid": N, ...}
  GET  {url}/tasks/{N}                              -> {"status": "...", ...}
"""

import asyncio
import datetime
import decimal
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from taskbus.config import LiveSettings, SearchSettings
from taskbus.errors import IndexingError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

DEFAULT_INDEX_QUERIES: Mapping[str, str] = {
    "ingredients": """
        SELECT id, name, calories_per_100g, category, g_per_piece, protein, water,
               fat, sugar, carbohydrate, fiber, caffeine, contains_alcohol
        FROM ingredients
    """,
    "cuisines": "SELECT id, name FROM cuisines",
}

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


def _jsonable(value: Any) -> Any:
    """Convert asyncpg values that the JSON encoder does not know."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class DocumentSource(Protocol):
    """Where the documents of one index come from."""

    @property
    def indexes(self) -> List[str]:
        """Names of the indexes this source can fill."""

    async def fetch(self, index: str) -> List[Document]:
        """Return every document for index."""


class PostgresDocumentSource:
    """Reads documents with one SELECT per index."""

    def __init__(self, pool, queries: Mapping[str, str] = DEFAULT_INDEX_QUERIES) -> None:
        self._pool = pool
        self._queries = dict(queries)

    @property
    def indexes(self) -> List[str]:
        return list(self._queries)

    async def fetch(self, index: str) -> List[Document]:
        query = self._queries[index]
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(query)
        return [{k: _jsonable(v) for k, v in row.items()} for row in rows]


class SearchClient:
    """
    Minimal async client for the search service.
    """

    def __init__(
        self,
        url: str,
        master_key: str = "",
        *,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        headers = {"Authorization": f"Bearer {master_key}"} if master_key else {}
        self._headers = headers
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls, settings: SearchSettings, *, http_client: Optional[httpx.AsyncClient] = None
    ) -> "SearchClient":
        return cls(
            settings.url,
            settings.master_key.get_secret_value(),
            http_client=http_client,
        )

    async def add_documents(
        self, index: str, documents: List[Document], primary_key: Optional[str] = "id"
    ) -> int:
        """Queue documents for indexing; returns the service's task uid."""
        params = {"primaryKey": primary_key} if primary_key else None
        try:
            response = await self._client.post(
                f"{self.url}/indexes/{index}/documents",
                json=documents,
                params=params,
                headers=self._headers,
            )
            response.raise_for_status()
            return int(response.json()["taskUid"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise IndexingError(f"failed to add documents to {index}: {e}") from e

    async def get_task(self, task_uid: int) -> Dict[str, Any]:
        try:
            response = await self._client.get(
                f"{self.url}/tasks/{task_uid}", headers=self._headers
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise IndexingError(f"failed to read task {task_uid}: {e}") from e

    async def wait_for_task(
        self, task_uid: int, *, timeout: float = 60.0, poll_interval: float = 0.5
    ) -> Dict[str, Any]:
        """Poll the task until it reaches a terminal status or timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            task = await self.get_task(task_uid)
            if task.get("status") in TERMINAL_STATUSES:
                return task
            if loop.time() >= deadline:
                raise IndexingError(
                    f"task {task_uid} still {task.get('status')!r} after {timeout}s"
                )
            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class SearchIndexer:
    """Pushes every index from the source to the search service."""

    def __init__(
        self,
        source: DocumentSource,
        client: SearchClient,
        settings: LiveSettings,
        *,
        indexes: Optional[List[str]] = None,
    ) -> None:
        self.source = source
        self.client = client
        self.settings = settings
        self.indexes = indexes if indexes is not None else list(source.indexes)

    async def run_once(self) -> Dict[str, bool]:
        """Index everything once. Returns index -> whether the service reported success."""
        search = self.settings.get().search
        results: Dict[str, bool] = {}
        for index in self.indexes:
            documents = await self.source.fetch(index)
            logger.info("started indexing %s (%d documents)", index, len(documents))
            task_uid = await self.client.add_documents(index, documents)
            task = await self.client.wait_for_task(
                task_uid,
                timeout=search.task_timeout,
                poll_interval=search.task_poll_interval,
            )
            results[index] = task.get("status") == "succeeded"
            logger.info("indexing %s finished, success: %s", index, results[index])
        return results

    async def _sleep_interval(self) -> None:
        """Sleep search.interval seconds, measured again after every reload."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            remaining = started + self.settings.get().search.interval - loop.time()
            if remaining <= 0:
                return
            try:
                await asyncio.wait_for(self.settings.wait_for_change(), remaining)
            except asyncio.TimeoutError:
                return

    async def run_forever(self) -> None:
        """Index, sleep search.interval seconds, repeat. Errors end the loop."""
        while True:
            await self.run_once()
            await self._sleep_interval()
