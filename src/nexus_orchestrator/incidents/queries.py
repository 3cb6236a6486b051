"""Cached incident lookups by id, date, stage and open status."""

from collections.abc import Awaitable, Callable

from ..observability.logging import get_logger
from ..storage.cache import TTLCache
from ..storage.documents import DocumentStore, QueryFilter
from .logger import INCIDENTS_COLLECTION
from .models import IncidentRecord

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0


class IncidentQueries:
    """Incident queries backed by a caller-owned TTL cache."""

    def __init__(self, store: DocumentStore, cache: TTLCache | None = None):
        self.store = store
        self.cache = cache if cache is not None else TTLCache(DEFAULT_CACHE_TTL_SECONDS)

    async def _cached(
        self,
        key: str,
        query: Callable[[], Awaitable[list[IncidentRecord]]],
        bypass_cache: bool,
    ) -> list[IncidentRecord]:
        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for incident query", cache_key=key)
                return cached

        records = await query()
        self.cache.set(key, records)
        logger.debug("Cache miss, query executed", cache_key=key, result_count=len(records))
        return records

    async def _query(self, field: str, value: object) -> list[IncidentRecord]:
        documents = await self.store.query_documents(
            INCIDENTS_COLLECTION, [QueryFilter(field, "==", value)]
        )
        return [IncidentRecord.from_document(doc) for doc in documents]

    async def get_incident_by_id(self, incident_id: str) -> IncidentRecord | None:
        document = await self.store.get_document(INCIDENTS_COLLECTION, incident_id)
        if document is None:
            logger.debug("Incident not found", incident_id=incident_id)
            return None
        return IncidentRecord.from_document(document)

    async def get_incidents_by_date(
        self, date: str, bypass_cache: bool = False
    ) -> list[IncidentRecord]:
        return await self._cached(f"date:{date}", lambda: self._query("date", date), bypass_cache)

    async def get_incidents_by_stage(
        self, stage: str, bypass_cache: bool = False
    ) -> list[IncidentRecord]:
        return await self._cached(
            f"stage:{stage}", lambda: self._query("stage", stage), bypass_cache
        )

    async def get_open_incidents(self, bypass_cache: bool = False) -> list[IncidentRecord]:
        return await self._cached("open", lambda: self._query("isOpen", True), bypass_cache)

    def clear_cache(self) -> None:
        self.cache.clear()
