"""
Similarity search over stored color embeddings.

A query is embedded with the same backend that produced the stored
column, then sent to that column's nearest-neighbour index. Failures come
back as a typed SearchResult instead of an exception, since callers are
expected to retry.
"""

import asyncio
import logging
import time

from core.config import Settings
from core.embeddings import EmbeddingBackend
from core.errors import EmbeddingError, PersistenceError, SearchTimeout
from core.models import SearchResult, SearchStatus
from db.metrics import METRICS
from db.store import ColorStore

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class SimilaritySearchService:
    def __init__(
        self,
        backend: EmbeddingBackend,
        store: ColorStore,
        probes: int = 10,
        timeout: float = 10.0,
        match_count: int = 10,
        log_requests: bool = True,
    ):
        self.backend = backend
        self.store = store
        # Search breadth: IVFFlat lists scanned per query (recall vs latency)
        self.probes = probes
        self.timeout = timeout
        self.match_count = match_count
        self.log_requests = log_requests
        self.metric = METRICS[backend.metric]

    @classmethod
    def from_settings(
        cls, settings: Settings, backend: EmbeddingBackend, store: ColorStore
    ) -> "SimilaritySearchService":
        return cls(
            backend,
            store,
            probes=settings.ivfflat_probes,
            timeout=settings.search_timeout,
            match_count=settings.match_count,
            log_requests=settings.log_requests,
        )

    async def search(self, query: str, k: int = None) -> SearchResult:
        k = self.match_count if k is None else k
        query = (query or "").strip()
        result = SearchResult(query=query, backend=self.backend.name, status=SearchStatus.OK)

        if not query:
            result.status, result.error = SearchStatus.INVALID_QUERY, "query is empty"
            return result
        if not isinstance(k, int) or k < 1:
            result.status = SearchStatus.INVALID_QUERY
            result.error = "k must be a positive integer"
            return result

        started = time.perf_counter()
        try:
            embedding = await self.backend.embed(query)
        except EmbeddingError as e:
            result.status, result.error = SearchStatus.EMBEDDING_FAILED, str(e)
        result.duration_ms_embedding = _elapsed_ms(started)
        if not result.ok:
            return await self._finish(result)

        started = time.perf_counter()
        try:
            matches = await self._nearest(embedding, k)
        except SearchTimeout as e:
            result.status, result.error = SearchStatus.TIMEOUT, str(e)
        except PersistenceError as e:
            result.status, result.error = SearchStatus.STORE_ERROR, str(e)
        result.duration_ms_db = _elapsed_ms(started)
        if not result.ok:
            return await self._finish(result)

        if not matches:
            result.status = SearchStatus.NO_DATA
            result.error = f"no colors have a {self.backend.column} embedding"
            return await self._finish(result)

        # Stable: ties keep the store's insertion order
        result.matches = sorted(matches, key=lambda m: m.distance)
        return await self._finish(result)

    async def _nearest(self, embedding, k):
        call = asyncio.to_thread(
            self.store.nearest,
            self.backend.column,
            self.metric,
            embedding,
            k,
            self.probes,
            self.timeout,
        )
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SearchTimeout(f"Search exceeded {self.timeout}s") from e

    async def _finish(self, result: SearchResult) -> SearchResult:
        if not result.ok:
            logger.warning(
                "Search %r failed (%s): %s", result.query, result.status.value, result.error
            )
        if self.log_requests:
            top = result.matches[0].name if result.matches else None
            try:
                await asyncio.to_thread(
                    self.store.log_request,
                    query_text=result.query,
                    model=self.backend.model,
                    status=result.status.value,
                    duration_ms_embedding=result.duration_ms_embedding,
                    duration_ms_db=result.duration_ms_db,
                    top_result_name=top,
                )
            except PersistenceError as e:
                logger.warning("Search request not logged: %s", e)
        return result


async def search_with_retry(
    service: SimilaritySearchService, query: str, k: int = None, attempts: int = 2
) -> SearchResult:
    """Run a search, retrying timeouts; a second try usually hits a warm cache."""
    for attempt in range(1, attempts + 1):
        result = await service.search(query, k)
        result.attempts = attempt
        if result.status != SearchStatus.TIMEOUT:
            break
        logger.info("Search %r timed out (attempt %d/%d)", query, attempt, attempts)
    return result
