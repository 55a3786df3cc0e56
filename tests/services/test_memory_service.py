import asyncio
from datetime import datetime, timezone

import pytest

from agent.llm_client import ChatCompletionsClient
from agent.models import ChatMessage, ConversationSummary
from fakes import BrokenStore, FakeOpenAI, completion
from services.memory_service import ConversationMemoryService, parse_summary_response, render_conversation

SUMMARY_JSON = (
    '{"summary": "The couple chose Quinta da Regaleira for May 22. They expect 120 guests.", '
    '"key_topics": ["venue", "date", "guest count"], "importance_score": 8}'
)


def _service(store, *completions) -> ConversationMemoryService:
    client = FakeOpenAI(list(completions))
    return ConversationMemoryService(store, ChatCompletionsClient(client), model="gpt-4o", min_messages=4)


async def _conversation(store, user_id="user-1", turns=2):
    conv = await store.create_conversation(user_id, "Venue")
    for i in range(turns):
        await store.add_message(conv.id, "user", f"question {i}")
        await store.add_message(conv.id, "assistant", f"answer {i}")
    return conv


# ---------------------------------------------------------------------------
# parse_summary_response
# ---------------------------------------------------------------------------

def test_parse_plain_json():
    data = parse_summary_response(SUMMARY_JSON)
    assert data["importance_score"] == 8
    assert data["key_topics"] == ["venue", "date", "guest count"]


def test_parse_json_surrounded_by_prose():
    data = parse_summary_response(f"Here is the summary:\n{SUMMARY_JSON}\nLet me know!")
    assert data["summary"].startswith("The couple chose")


def test_parse_fallback_uses_raw_text():
    raw = "The couple talked about flowers. " * 30
    data = parse_summary_response(raw)
    assert data == {"summary": raw.strip()[:500].strip(), "key_topics": [], "importance_score": 5}


def test_parse_clamps_importance():
    assert parse_summary_response('{"summary": "s", "importance_score": 42}')["importance_score"] == 10
    assert parse_summary_response('{"summary": "s", "importance_score": "high"}')["importance_score"] == 5


def test_render_conversation():
    messages = [ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="hello")]
    assert render_conversation(messages) == "USER: hi\n\nASSISTANT: hello"


# ---------------------------------------------------------------------------
# should_summarize / generate_summary
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_should_summarize_needs_four_messages(store):
    service = _service(store)
    short = await _conversation(store, turns=1)
    long = await _conversation(store, turns=2)

    assert await service.should_summarize(short.id) is False
    assert await service.should_summarize(long.id) is True


@pytest.mark.asyncio
async def test_generate_summary_persists(store):
    service = _service(store, completion(SUMMARY_JSON, model="gpt-4o"))
    conv = await _conversation(store)

    summary = await service.generate_summary(conv.id, "user-1")

    assert summary.id is not None
    assert summary.importance_score == 8
    assert summary.message_count == 4
    assert await service.should_summarize(conv.id) is False

    [request] = service.llm._client.completion_calls
    assert request["model"] == "gpt-4o"
    assert request["temperature"] == 0.3
    assert request["max_tokens"] == 500
    prompt = request["messages"][0]["content"]
    assert prompt.endswith("USER: question 0\n\nASSISTANT: answer 0\n\nUSER: question 1\n\nASSISTANT: answer 1")
    assert '"importance_score": 1-10' in prompt


@pytest.mark.asyncio
async def test_generate_summary_skips_short_conversations(store):
    service = _service(store)
    conv = await store.create_conversation("user-1", "Hi")
    await store.add_message(conv.id, "user", "hi")

    assert await service.generate_summary(conv.id, "user-1") is None
    assert service.llm._client.completion_calls == []


@pytest.mark.asyncio
async def test_summarize_if_needed_runs_once_under_concurrency(store):
    service = _service(store, completion(SUMMARY_JSON), completion(SUMMARY_JSON))
    conv = await _conversation(store)

    first, second = await asyncio.gather(
        service.summarize_if_needed(conv.id, "user-1"),
        service.summarize_if_needed(conv.id, "user-1"),
    )

    assert [first is None, second is None].count(True) == 1
    assert len(store.summaries) == 1
    assert len(service.llm._client.completion_calls) == 1
    assert service._locks == {}
    assert service._lock_users == {}


@pytest.mark.asyncio
async def test_summarize_if_needed_skips_short(store):
    service = _service(store)
    conv = await _conversation(store, turns=1)
    assert await service.summarize_if_needed(conv.id, "user-1") is None


@pytest.mark.asyncio
async def test_locks_do_not_accumulate_per_conversation(store):
    service = _service(store)
    for _ in range(20):
        conv = await _conversation(store, turns=1)
        await service.summarize_if_needed(conv.id, "user-1")

    assert service._locks == {}


def test_explicit_zero_min_messages_is_kept(store):
    service = ConversationMemoryService(store, ChatCompletionsClient(FakeOpenAI()), min_messages=0)
    assert service.min_messages == 0


# ---------------------------------------------------------------------------
# recent summaries / formatting / stats
# ---------------------------------------------------------------------------

async def _summary(store, conversation_id, importance, created_at, topics=None, user_id="user-1"):
    return await store.insert_summary(ConversationSummary(
        conversation_id=conversation_id,
        user_id=user_id,
        summary=f"summary {conversation_id}",
        key_topics=topics or [],
        importance_score=importance,
        message_count=4,
        created_at=created_at,
    ))


@pytest.mark.asyncio
async def test_recent_summaries_filter_and_order(store):
    service = _service(store)
    await _summary(store, "c1", 9, datetime(2026, 10, 1, tzinfo=timezone.utc))
    await _summary(store, "c2", 2, datetime(2026, 10, 2, tzinfo=timezone.utc))
    await _summary(store, "c3", 4, datetime(2026, 10, 3, tzinfo=timezone.utc))
    await _summary(store, "c4", 10, datetime(2026, 10, 4, tzinfo=timezone.utc), user_id="someone-else")

    recent = await service.get_recent_summaries("user-1", limit=5, min_importance=3)
    assert [s.conversation_id for s in recent] == ["c3", "c1"]


@pytest.mark.asyncio
async def test_recent_summaries_empty_on_store_error():
    service = _service(BrokenStore())
    assert await service.get_recent_summaries("user-1") == []


def test_format_memory_context():
    summaries = [
        ConversationSummary(
            conversation_id="c1", user_id="u", summary="Chose the venue.", key_topics=["venue", "date"],
            importance_score=8, created_at=datetime(2026, 10, 19, tzinfo=timezone.utc),
        ),
        ConversationSummary(
            conversation_id="c2", user_id="u", summary="Talked about cake.",
            importance_score=5, created_at=datetime(2026, 9, 3, tzinfo=timezone.utc),
        ),
    ]
    context = ConversationMemoryService.format_memory_context(summaries)

    assert context.startswith("PREVIOUS CONVERSATION MEMORIES:\n")
    assert "1. (Oct 19 [Topics: venue, date]): Chose the venue.\n\n2. (Sep 3): Talked about cake." in context
    assert context.endswith("\n\n---")
    assert ConversationMemoryService.format_memory_context([]) == ""


@pytest.mark.asyncio
async def test_stats_and_delete(store):
    service = _service(store)
    first = await _summary(store, "c1", 8, datetime(2026, 10, 1, tzinfo=timezone.utc))
    await _summary(store, "c2", 5, datetime(2026, 10, 2, tzinfo=timezone.utc))
    await _summary(store, "c3", 4, datetime(2026, 10, 3, tzinfo=timezone.utc))

    stats = await service.get_stats("user-1")
    assert stats.total_summaries == 3
    assert stats.total_messages == 12
    assert stats.average_importance == 5.7

    assert await service.delete_summary(first.id) is True
    assert (await service.get_stats("user-1")).total_summaries == 2
    assert (await service.get_stats("nobody")).total_summaries == 0
