"""
Tools del agente.

`search_web` consulta Tavily con cache normalizada; nunca lanza: cualquier
fallo vuelve como `{"error", "results": [], "query"}` para que un tool call
roto no corte el turno. Las tools de invitados / eventos están en
agent/wedding_tools.py.
"""
import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from agent.config import config
from agent.db_utils import DataStore
from agent.logging_utils import WEB_SEARCH_API, api_call_logger, classify_error
from agent.models import ToolDeclaration
from agent.query_normalizer import cache_key
from agent.tool_registry import ToolRegistry
from agent.wedding_tools import EventTools, GuestTools
from services.cache_service import WebSearchCache

logger = logging.getLogger(__name__)

MISSING_API_KEY_ERROR = "Tavily API key not configured. Please add your Tavily API key in settings."

SEARCH_WEB_DECLARATION = ToolDeclaration.build(
    name="search_web",
    description=(
        "Search the web for current information, news, facts, or any information not in "
        "your knowledge base. Use this when you need real-time or up-to-date information."
    ),
    parameters={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to look up on the web",
            },
        },
        "required": ["query"],
    },
)


class SearchWebTool:
    """
    Uso:
        tool = SearchWebTool(api_key, cache=WebSearchCache(store))
        result = await tool.execute("wedding venues in Sintra")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[WebSearchCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_url: Optional[str] = None,
        max_results: int = 5,
    ):
        self.api_key = config.TAVILY_API_KEY if api_key is None else api_key
        self.cache = cache
        self._http_client = http_client
        self.api_url = api_url or config.TAVILY_API_URL
        self.max_results = max_results

    async def execute(self, query: str) -> Dict[str, Any]:
        if not self.api_key:
            return {"error": MISSING_API_KEY_ERROR, "results": [], "query": query}

        started = time.time()
        normalized, query_hash = cache_key(query)

        cached = await self._lookup(query_hash)
        if cached is not None:
            logger.info("Web search cache HIT for '%s' (hits=%d)", normalized, cached.hit_count)
            await self._record_hit(query_hash)
            self._log_call(started, 200, from_cache=True)
            return {
                **cached.results,
                "from_cache": True,
                "cached_at": cached.created_at.isoformat(),
            }

        logger.info("Web search cache MISS for '%s', calling Tavily", normalized)
        try:
            result = _shape_results(await self._call_api(query), query)
        except Exception as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            message = _error_message(e)
            logger.error("Web search failed: %s", message)
            self._log_call(started, status, error=message)
            return {"error": message, "results": [], "query": query}

        self._log_call(started, 200)
        await self._store(query_hash, normalized, result)
        return result

    async def __call__(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Executor para el ToolRegistry."""
        return await self.execute(str(args.get("query", "")))

    # =========================================================================
    # INTERNOS
    # =========================================================================

    async def _call_api(self, query: str) -> Dict[str, Any]:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "basic",
            "include_answer": True,
            "max_results": self.max_results,
        }
        if self._http_client is not None:
            response = await self._http_client.post(
                self.api_url, json=payload, timeout=config.WEB_SEARCH_TIMEOUT_SECONDS
            )
        else:
            async with httpx.AsyncClient(timeout=config.WEB_SEARCH_TIMEOUT_SECONDS) as client:
                response = await client.post(self.api_url, json=payload)
        response.raise_for_status()
        return response.json()

    async def _lookup(self, query_hash: str):
        if self.cache is None:
            return None
        try:
            return await self.cache.get(query_hash)
        except Exception:
            logger.exception("Cache lookup error, treating as miss")
            return None

    async def _record_hit(self, query_hash: str) -> None:
        try:
            await self.cache.record_hit(query_hash)
        except Exception:
            logger.exception("Failed to record cache hit")

    async def _store(self, query_hash: str, normalized: str, result: Dict[str, Any]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(query_hash, normalized, result)
        except Exception:
            logger.exception("Failed to save web search to cache")

    def _log_call(
        self, started: float, status_code: Optional[int], error: Optional[str] = None, from_cache: bool = False
    ) -> None:
        api_call_logger.log_row({
            "call_id": uuid.uuid4().hex,
            "timestamp": started,
            "api_name": WEB_SEARCH_API,
            "endpoint": "/search",
            "status_code": status_code if status_code is not None else "",
            "success": error is None,
            "response_time_ms": int((time.time() - started) * 1000),
            "error_type": classify_error(status_code) if error else "",
            "error_message": error or "",
            "from_cache": from_cache,
        })


def _shape_results(raw: Dict[str, Any], query: str) -> Dict[str, Any]:
    return {
        "answer": raw.get("answer") or "",
        "results": [
            {
                "title": r.get("title"),
                "url": r.get("url"),
                "content": r.get("content"),
                "score": r.get("score"),
            }
            for r in raw.get("results") or []
        ],
        "query": query,
    }


def _error_message(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"Tavily API error: {error.response.status_code} {error.response.reason_phrase}"
    if isinstance(error, httpx.TimeoutException):
        return "Tavily API error: request timed out"
    if isinstance(error, httpx.RequestError):
        return f"Tavily API error: {error}"
    return f"Tavily API error: invalid response ({error})"


def build_default_registry(
    store: DataStore,
    search_tool: Optional[SearchWebTool] = None,
    registry: Optional[ToolRegistry] = None,
) -> ToolRegistry:
    """search_web + tools de invitados y eventos."""
    registry = registry if registry is not None else ToolRegistry()
    registry.register(SEARCH_WEB_DECLARATION, search_tool or SearchWebTool(cache=WebSearchCache(store)))
    GuestTools(store).register(registry)
    EventTools(store).register(registry)
    return registry
