import json

import pytest

from agent.agent_loop import AgentLoop, DEFAULT_SYSTEM_MESSAGE, WEDDING_SYSTEM_MESSAGE, default_agent_config
from agent.config import MODEL_PRICING, config
from agent.exceptions import LLMProviderError, ToolRoundLimitError
from agent.llm_client import ChatCompletionsClient
from agent.models import AgentConfig, ChatMessage, ToolDeclaration
from agent.tool_registry import ToolRegistry
from fakes import FakeOpenAI, api_status_error, completion, tool_call
from services.search_service import NO_RELEVANT_DOCUMENTS


def _agent_config(**overrides) -> AgentConfig:
    values = {
        "models": ["gpt-4o", "gpt-4o-mini"],
        "default_model": "gpt-4o-mini",
        "system_message": DEFAULT_SYSTEM_MESSAGE,
    }
    values.update(overrides)
    return AgentConfig(**values)


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(
        ToolDeclaration.build("get_guest_statistics", "Guest stats"),
        lambda args: {"total_guests": 42, "confirmed": 30},
    )
    return reg


def _loop(client, registry=None, **kwargs) -> AgentLoop:
    return AgentLoop(ChatCompletionsClient(client), _agent_config(), registry, **kwargs)


@pytest.mark.asyncio
async def test_plain_answer_makes_one_request(registry):
    client = FakeOpenAI([completion("Hello!")])
    turn = await _loop(client, registry).run("hi")

    assert turn.content == "Hello!"
    assert turn.tool_rounds == 0
    [request] = client.completion_calls
    assert request["model"] == "gpt-4o-mini"
    assert request["tool_choice"] == "auto"
    assert request["tools"][0]["function"]["name"] == "get_guest_statistics"
    assert request["messages"] == [
        {"role": "system", "content": DEFAULT_SYSTEM_MESSAGE},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.asyncio
async def test_two_round_tool_call(registry):
    client = FakeOpenAI([
        completion(tool_calls=[tool_call("call_1", "get_guest_statistics")]),
        completion("You have 42 guests."),
    ])
    turn = await _loop(client, registry).run("How many guests?")

    assert turn.content == "You have 42 guests."
    assert turn.tool_rounds == 1
    assert len(client.completion_calls) == 2

    second_messages = client.completion_calls[1]["messages"]
    assert [m["role"] for m in second_messages] == ["system", "user", "assistant", "tool"]
    assert second_messages[2]["tool_calls"][0]["id"] == "call_1"
    assert second_messages[3] == {
        "role": "tool",
        "tool_call_id": "call_1",
        "content": json.dumps({"total_guests": 42, "confirmed": 30}),
    }
    assert turn.tool_calls[0]["name"] == "get_guest_statistics"


@pytest.mark.asyncio
async def test_tool_errors_become_error_content(registry):
    def broken(args):
        raise RuntimeError("guests table unavailable")

    registry.register(ToolDeclaration.build("list_guests", "Guests"), broken)
    client = FakeOpenAI([
        completion(tool_calls=[
            tool_call("call_a", "list_guests", {"filter": "confirmed"}),
            tool_call("call_b", "does_not_exist"),
            tool_call("call_c", "get_guest_statistics", "{not json"),
        ]),
        completion("Sorry, I could not read the guest list."),
    ])
    turn = await _loop(client, registry).run("Who confirmed?")

    tool_messages = [m for m in client.completion_calls[1]["messages"] if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["call_a", "call_b", "call_c"]
    assert json.loads(tool_messages[0]["content"]) == {"error": "guests table unavailable"}
    assert json.loads(tool_messages[1]["content"]) == {"error": "Tool 'does_not_exist' not found"}
    assert "error" in json.loads(tool_messages[2]["content"])
    assert turn.content.startswith("Sorry")


@pytest.mark.asyncio
async def test_parallel_tool_calls_keep_order(registry):
    async def slow(args):
        return {"n": args["n"]}

    registry.register(ToolDeclaration.build("slow", "Slow"), slow)
    client = FakeOpenAI([
        completion(tool_calls=[tool_call("c1", "slow", {"n": 1}), tool_call("c2", "slow", {"n": 2})]),
        completion("done"),
    ])
    await _loop(client, registry, parallel_tool_calls=True).run("go")

    tool_messages = [m for m in client.completion_calls[1]["messages"] if m["role"] == "tool"]
    assert [json.loads(m["content"])["n"] for m in tool_messages] == [1, 2]


@pytest.mark.asyncio
async def test_round_limit_raises(registry):
    looping = [completion(tool_calls=[tool_call(f"c{i}", "get_guest_statistics")]) for i in range(3)]
    client = FakeOpenAI(looping)

    with pytest.raises(ToolRoundLimitError):
        await _loop(client, registry, max_tool_rounds=2).run("loop forever")
    assert len(client.completion_calls) == 3


@pytest.mark.asyncio
async def test_no_tools_means_no_tools_field():
    client = FakeOpenAI([completion("ok")])
    await _loop(client).run("hi")
    assert "tools" not in client.completion_calls[0]


@pytest.mark.asyncio
async def test_history_and_contexts_in_prompt(registry):
    client = FakeOpenAI([completion("ok")])
    loop = _loop(client, registry)

    await loop.run(
        "and the venue?",
        history=[ChatMessage(role="user", content="we marry in May"), {"role": "assistant", "content": "Noted!"}],
        memory_context="MEMORY",
        document_context="DOCS",
    )

    messages = client.completion_calls[0]["messages"]
    assert messages[0]["content"] == f"MEMORY\n\n{DEFAULT_SYSTEM_MESSAGE}\n\nDOCS"
    assert messages[1:] == [
        {"role": "user", "content": "we marry in May"},
        {"role": "assistant", "content": "Noted!"},
        {"role": "user", "content": "and the venue?"},
    ]


def test_sentinel_document_context_is_not_injected():
    loop = AgentLoop(ChatCompletionsClient(FakeOpenAI()), _agent_config())
    assert loop.build_system_prompt("", NO_RELEVANT_DOCUMENTS) == DEFAULT_SYSTEM_MESSAGE
    assert loop.build_system_prompt("", "") == DEFAULT_SYSTEM_MESSAGE


@pytest.mark.asyncio
async def test_provider_error_propagates(registry):
    client = FakeOpenAI([api_status_error(500, "upstream exploded")])
    with pytest.raises(LLMProviderError, match="upstream exploded"):
        await _loop(client, registry).run("hi")


@pytest.mark.asyncio
async def test_update_config_is_partial_merge(registry):
    client = FakeOpenAI([completion("ok")])
    loop = _loop(client, registry)

    updated = loop.update_config(system_message="Be brief.", tools=[])

    assert updated.default_model == "gpt-4o-mini"
    assert updated.system_message == "Be brief."
    await loop.run("hi", model="gpt-4o")
    request = client.completion_calls[0]
    assert request["model"] == "gpt-4o"
    assert "tools" not in request
    assert request["messages"][0]["content"] == "Be brief."


def test_default_agent_config_uses_wedding_prompt():
    cfg = default_agent_config()
    assert cfg.system_message == WEDDING_SYSTEM_MESSAGE
    assert cfg.default_model in cfg.models
    assert cfg.tools is None


@pytest.mark.asyncio
async def test_usage_is_priced_when_provider_returns_dated_model(registry, monkeypatch):
    monkeypatch.setattr(config, "LLM_PROVIDER", "openai")
    client = FakeOpenAI([
        completion("ok", model="gpt-4o-mini-2024-07-18", prompt_tokens=1_000_000, completion_tokens=0),
    ])

    turn = await _loop(client, registry).run("hi")

    assert turn.model == "gpt-4o-mini-2024-07-18"
    assert turn.usage["tokens_in"] == 1_000_000
    assert turn.usage["cost_usd"] == pytest.approx(MODEL_PRICING["gpt-4o-mini"].input_price)
