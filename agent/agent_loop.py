"""
agent/agent_loop.py
-------------------
Loop de tool calling contra chat completions.

Flujo de un turno:
1. System prompt = memoria + mensaje base + contexto de documentos
2. Request al LLM con las tools activas del registry
3. Sin tool calls → respuesta final
4. Con tool calls → se ejecutan en orden, cada resultado vuelve como
   mensaje `tool` y se re-pide al LLM
5. Más de MAX_TOOL_ROUNDS rondas con tools → ToolRoundLimitError

El loop no persiste nada: guardar mensajes es trabajo del caller
(services/chat_service.py).
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from agent.config import config
from agent.exceptions import ToolRoundLimitError
from agent.llm_client import ChatCompletionsClient, LLMResponse
from agent.models import AgentConfig, ChatMessage
from agent.token_tracker import OP_CHAT_TURN, tracker
from agent.tool_registry import ToolRegistry
from services.search_service import NO_RELEVANT_DOCUMENTS

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = (
    "You are a helpful AI assistant. You have access to tools to help answer questions. "
    "Use these tools when needed to provide accurate, up-to-date information."
)

WEDDING_SYSTEM_MESSAGE = (
    "You are a helpful AI assistant for wedding planning. You have access to tools to query "
    "the wedding database. Use these tools to provide accurate, up-to-date information about "
    "guests, events, and statistics. Always use the tools when asked about specific data."
)

HistoryItem = Union[ChatMessage, Dict[str, Any]]


def default_agent_config(system_message: Optional[str] = None) -> AgentConfig:
    return AgentConfig(
        models=list(config.AVAILABLE_MODELS),
        default_model=config.DEFAULT_MODEL,
        system_message=system_message or WEDDING_SYSTEM_MESSAGE,
    )


@dataclass
class AgentTurn:
    """Resultado de un turno completo."""
    content: str
    model: str
    # system, historial, user, y cada par assistant(tool_calls) / tool
    messages: List[Dict[str, Any]] = field(default_factory=list)
    tool_rounds: int = 0
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    usage: Dict[str, Any] = field(default_factory=dict)


class AgentLoop:
    """
    Uso:
        loop = AgentLoop(ChatCompletionsClient(), default_agent_config(), registry)
        turn = await loop.run("How many guests confirmed?", memory_context=memory)
        print(turn.content)
    """

    def __init__(
        self,
        llm: ChatCompletionsClient,
        agent_config: Optional[AgentConfig] = None,
        registry: Optional[ToolRegistry] = None,
        max_tool_rounds: Optional[int] = None,
        parallel_tool_calls: bool = False,
    ):
        self.llm = llm
        self.agent_config = agent_config or default_agent_config()
        self.registry = registry if registry is not None else ToolRegistry()
        self.max_tool_rounds = config.MAX_TOOL_ROUNDS if max_tool_rounds is None else max_tool_rounds
        self.parallel_tool_calls = parallel_tool_calls

    # --------------------------------------------------------------------------
    # CONFIG
    # --------------------------------------------------------------------------

    def update_config(self, **changes: Any) -> AgentConfig:
        """Merge parcial: solo cambian los campos pasados."""
        self.agent_config = self.agent_config.model_copy(update=changes)
        return self.agent_config

    def active_tools(self) -> List[Dict[str, Any]]:
        return [d.model_dump() for d in self.registry.list(self.agent_config.tools)]

    def build_system_prompt(self, memory_context: str = "", document_context: str = "") -> str:
        prompt = self.agent_config.system_message
        if memory_context:
            prompt = f"{memory_context}\n\n{prompt}"
        if document_context and document_context != NO_RELEVANT_DOCUMENTS:
            prompt = f"{prompt}\n\n{document_context}"
        return prompt

    # --------------------------------------------------------------------------
    # TURNO
    # --------------------------------------------------------------------------

    async def run(
        self,
        user_message: str,
        history: Optional[Sequence[HistoryItem]] = None,
        model: Optional[str] = None,
        memory_context: str = "",
        document_context: str = "",
        conversation_id: Optional[str] = None,
    ) -> AgentTurn:
        use_model = model or self.agent_config.default_model
        if use_model not in self.agent_config.models:
            logger.warning("Model '%s' is not in the configured model list", use_model)

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self.build_system_prompt(memory_context, document_context)}
        ]
        messages.extend(_to_llm_message(m) for m in history or [])
        messages.append({"role": "user", "content": user_message})

        tools = self.active_tools()
        executed: List[Dict[str, Any]] = []

        with tracker.operation(OP_CHAT_TURN) as op_id:
            for round_number in range(self.max_tool_rounds + 1):
                response = await self.llm.create(
                    messages,
                    model=use_model,
                    temperature=config.CHAT_TEMPERATURE,
                    max_tokens=config.CHAT_MAX_TOKENS,
                    tools=tools or None,
                    conversation_id=conversation_id,
                )
                tracker.record_usage(
                    op_id, response.prompt_tokens, response.completion_tokens,
                    use_model, detail_name=f"round_{round_number}",
                )

                if not response.has_tool_calls:
                    return AgentTurn(
                        content=response.content or "",
                        model=response.model,
                        messages=messages,
                        tool_rounds=round_number,
                        tool_calls=executed,
                        usage=self._usage(op_id),
                    )

                if round_number == self.max_tool_rounds:
                    logger.error("Tool round limit (%d) reached without a final answer", self.max_tool_rounds)
                    raise ToolRoundLimitError(self.max_tool_rounds)

                messages.append(response.to_message())
                messages.extend(await self._run_tool_calls(response, executed))

        # range() siempre termina por return o raise
        raise ToolRoundLimitError(self.max_tool_rounds)

    # --------------------------------------------------------------------------
    # TOOLS
    # --------------------------------------------------------------------------

    async def _run_tool_calls(
        self, response: LLMResponse, executed: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        calls = response.tool_calls
        logger.info("Model requested %d tool call(s): %s", len(calls), [_call_name(c) for c in calls])

        if self.parallel_tool_calls:
            results = await asyncio.gather(*(self._execute_tool_call(c) for c in calls))
        else:
            results = [await self._execute_tool_call(c) for c in calls]

        for call, message in zip(calls, results):
            executed.append({"id": call.get("id"), "name": _call_name(call), "content": message["content"]})
        return list(results)

    async def _execute_tool_call(self, call: Dict[str, Any]) -> Dict[str, Any]:
        name = _call_name(call)
        try:
            args = json.loads(call.get("function", {}).get("arguments") or "{}")
            result = await self.registry.execute(name, args)
            content = json.dumps(result, default=str)
        except Exception as e:
            logger.exception("Tool '%s' failed", name)
            content = json.dumps({"error": str(e)})
        return {"role": "tool", "tool_call_id": call.get("id"), "content": content}

    @staticmethod
    def _usage(op_id: str) -> Dict[str, Any]:
        metrics = tracker.get_current_metrics(op_id)
        if metrics is None:
            return {}
        return {
            "tokens_in": metrics.tokens_in,
            "tokens_out": metrics.tokens_out,
            "cost_usd": metrics.cost_usd,
        }


def _call_name(call: Dict[str, Any]) -> str:
    return call.get("function", {}).get("name", "")


def _to_llm_message(item: HistoryItem) -> Dict[str, Any]:
    if isinstance(item, ChatMessage):
        return item.to_llm()
    return dict(item)
