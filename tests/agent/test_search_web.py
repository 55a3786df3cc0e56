import json
from datetime import timedelta

import httpx
import pytest

from agent.logging_utils import api_call_logger
from agent.tool_registry import ToolRegistry
from agent.tools import MISSING_API_KEY_ERROR, SearchWebTool, build_default_registry
from fakes import BASE_TIME, BrokenStore
from services.cache_service import WebSearchCache

TAVILY_PAYLOAD = {
    "answer": "Sintra has several palace venues.",
    "results": [
        {"title": "Top venues", "url": "https://example.com/a", "content": "Quinta...", "score": 0.91, "raw": "x"},
    ],
}


class Clock:
    def __init__(self):
        self.now = BASE_TIME

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def tavily():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json=TAVILY_PAYLOAD)

    handler.requests = requests
    return handler


def _tool(store, clock, handler, api_key="tvly-test"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    cache = WebSearchCache(store, clock=clock)
    return SearchWebTool(api_key=api_key, cache=cache, http_client=http_client)


@pytest.mark.asyncio
async def test_miss_then_hit_for_equivalent_query(store, clock, tavily):
    tool = _tool(store, clock, tavily)

    first = await tool.execute("Best wedding venues in Sintra?")
    assert first == {
        "answer": "Sintra has several palace venues.",
        "results": [{"title": "Top venues", "url": "https://example.com/a", "content": "Quinta...", "score": 0.91}],
        "query": "Best wedding venues in Sintra?",
    }
    assert tavily.requests == [{
        "api_key": "tvly-test",
        "query": "Best wedding venues in Sintra?",
        "search_depth": "basic",
        "include_answer": True,
        "max_results": 5,
    }]

    second = await tool.execute("sintra venues, wedding BEST")
    assert len(tavily.requests) == 1
    assert second["from_cache"] is True
    assert second["cached_at"] == BASE_TIME.isoformat()
    assert second["answer"] == first["answer"]

    [entry] = store.cache
    assert entry.query == "best sintra venues wedding"
    assert entry.hit_count == 1
    assert entry.last_accessed_at == BASE_TIME

    rows = api_call_logger.read_rows()
    assert [r["from_cache"] for r in rows] == ["False", "True"]


@pytest.mark.asyncio
async def test_expired_entry_triggers_new_call(store, clock, tavily):
    tool = _tool(store, clock, tavily)
    await tool.execute("wedding cake prices")

    clock.now = BASE_TIME + timedelta(days=7)
    result = await tool.execute("wedding cake prices")

    assert "from_cache" not in result
    assert len(tavily.requests) == 2
    assert len(store.cache) == 2


@pytest.mark.asyncio
async def test_missing_api_key(store, clock, tavily):
    tool = _tool(store, clock, tavily, api_key="")
    result = await tool.execute("florists")
    assert result == {"error": MISSING_API_KEY_ERROR, "results": [], "query": "florists"}
    assert tavily.requests == []


@pytest.mark.asyncio
async def test_http_error_returns_error_payload(store, clock):
    tool = _tool(store, clock, lambda request: httpx.Response(502))
    result = await tool.execute("florists in Porto")

    assert result["results"] == []
    assert result["query"] == "florists in Porto"
    assert "502" in result["error"]
    assert store.cache == []
    [row] = api_call_logger.read_rows()
    assert row["error_type"] == "server_error"


@pytest.mark.asyncio
async def test_cache_failures_degrade_to_plain_search(clock, tavily):
    tool = _tool(BrokenStore(), clock, tavily)
    result = await tool.execute("photographers")
    assert result["answer"] == TAVILY_PAYLOAD["answer"]
    assert len(tavily.requests) == 1


@pytest.mark.asyncio
async def test_registry_executor_and_default_registry(store, clock, tavily):
    tool = _tool(store, clock, tavily)
    registry = build_default_registry(store, search_tool=tool)

    assert registry.tool_names == ["search_web", "get_guest_statistics", "list_guests", "list_events"]
    result = await registry.execute("search_web", {"query": "dj"})
    assert result["query"] == "dj"


def test_default_registry_accepts_existing_registry(store):
    registry = ToolRegistry()
    assert build_default_registry(store, registry=registry) is registry
    assert "search_web" in registry
