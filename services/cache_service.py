"""
Cache de resultados de búsqueda web (tabla tavily_cache).

Clave = SHA-256 de la query normalizada (agent/query_normalizer.py).
Las entradas vencidas siguen en la tabla pero se tratan como miss.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from agent.config import config
from agent.db_utils import DataStore
from agent.models import CachedSearchResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebSearchCache:
    def __init__(
        self,
        store: DataStore,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ttl = ttl or timedelta(days=config.CACHE_TTL_DAYS)
        self._clock = clock

    async def get(self, query_hash: str) -> Optional[CachedSearchResult]:
        entry = await self.store.get_cache_entry(query_hash)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry %s expired at %s", query_hash[:12], entry.expires_at)
            return None
        return entry

    async def set(
        self,
        query_hash: str,
        normalized_query: str,
        result: Dict[str, Any],
        ttl: Optional[timedelta] = None,
    ) -> CachedSearchResult:
        """Inserta una entrada nueva. Nunca actualiza una existente."""
        now = self._clock()
        entry = CachedSearchResult(
            query=normalized_query,
            query_hash=query_hash,
            results=result,
            created_at=now,
            expires_at=now + (ttl or self.ttl),
            hit_count=0,
        )
        await self.store.insert_cache_entry(entry)
        logger.info("Cached web search '%s' until %s", normalized_query, entry.expires_at.isoformat())
        return entry

    async def record_hit(self, query_hash: str) -> None:
        await self.store.record_cache_hit(query_hash, self._clock())
