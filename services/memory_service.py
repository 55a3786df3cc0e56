"""
Memoria entre conversaciones.

Cuando una conversación termina (el usuario cambia de chat o la guarda a
mano) se resume con el LLM en 2-3 oraciones + tópicos + importancia 1-10.
Los resúmenes recientes e importantes se inyectan al system prompt de los
chats siguientes.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from agent.config import config
from agent.db_utils import DataStore
from agent.llm_client import ChatCompletionsClient, parse_json_object
from agent.models import ChatMessage, ConversationSummary, MemoryStats
from agent.token_tracker import OP_SUMMARY, tracker

logger = logging.getLogger(__name__)

MIN_MESSAGES_TO_GENERATE = 2
FALLBACK_SUMMARY_CHARS = 500
DEFAULT_IMPORTANCE = 5

SUMMARY_PROMPT = """You are analyzing a conversation to create a concise memory summary. Extract the most important information that should be remembered in future conversations.

Focus on:
- Key facts and information shared
- Important decisions or preferences mentioned
- Specific details about events, people, or dates
- Action items or follow-ups needed
- Any wedding-specific details (dates, venues, guest counts, etc.)

Provide your response in this JSON format:
{{
  "summary": "A concise 2-3 sentence summary of the key points",
  "key_topics": ["topic1", "topic2", "topic3"],
  "importance_score": 1-10 (how important is this conversation to remember)
}}

CONVERSATION TO SUMMARIZE:
{conversation}"""

MEMORY_BANNER = (
    "PREVIOUS CONVERSATION MEMORIES:\n"
    "The following are summaries of recent conversations with this user. "
    "Use this context to maintain continuity and avoid asking for information already discussed.\n\n"
)


def render_conversation(messages: List[ChatMessage]) -> str:
    return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in messages)


def parse_summary_response(text: str) -> Dict[str, Any]:
    """
    {summary, key_topics, importance_score} a partir de la respuesta del LLM.

    Tolera prosa alrededor del JSON. Si no hay objeto parseable, el texto
    crudo (truncado a 500 chars) pasa a ser el resumen con importancia 5.
    """
    raw = (text or "").strip()
    data = parse_json_object(raw)
    if not isinstance(data, dict):
        data = {}

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = raw[:FALLBACK_SUMMARY_CHARS]

    topics = data.get("key_topics")
    key_topics = [str(t) for t in topics if str(t).strip()] if isinstance(topics, list) else []

    try:
        importance = int(data.get("importance_score") or DEFAULT_IMPORTANCE)
    except (TypeError, ValueError):
        importance = DEFAULT_IMPORTANCE

    return {
        "summary": summary.strip(),
        "key_topics": key_topics,
        "importance_score": min(10, max(1, importance)),
    }


class ConversationMemoryService:
    def __init__(
        self,
        store: DataStore,
        llm: ChatCompletionsClient,
        model: Optional[str] = None,
        min_messages: Optional[int] = None,
    ):
        self.store = store
        self.llm = llm
        self.model = model or config.SUMMARY_MODEL
        self.min_messages = config.MEMORY_MIN_MESSAGES if min_messages is None else min_messages
        # un lock por conversación: check-then-insert atómico dentro del proceso.
        # _lock_users cuenta las tareas que lo usan; en 0 se descarta.
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: Dict[str, int] = defaultdict(int)

    async def should_summarize(self, conversation_id: str) -> bool:
        """False si ya hay resumen; si no, True con >= min_messages mensajes."""
        if await self.store.get_summary_by_conversation(conversation_id) is not None:
            return False
        return await self.store.count_messages(conversation_id) >= self.min_messages

    async def generate_summary(self, conversation_id: str, user_id: str) -> Optional[ConversationSummary]:
        """
        Resume la conversación y persiste el resultado. None (sin llamar al
        LLM) con menos de 2 mensajes. Si otra tarea ya guardó un resumen para
        la conversación, retorna ese.
        """
        messages = await self.store.get_messages(conversation_id)
        if len(messages) < MIN_MESSAGES_TO_GENERATE:
            logger.info("Conversation %s has %d messages, nothing to summarize", conversation_id, len(messages))
            return None

        prompt = SUMMARY_PROMPT.format(conversation=render_conversation(messages))
        with tracker.operation(OP_SUMMARY) as op_id:
            response = await self.llm.create(
                [{"role": "user", "content": prompt}],
                model=self.model,
                temperature=0.3,
                max_tokens=500,
                conversation_id=conversation_id,
            )
            tracker.record_usage(op_id, response.prompt_tokens, response.completion_tokens, self.model)
        data = parse_summary_response(response.content or "")

        summary = ConversationSummary(
            conversation_id=conversation_id,
            user_id=user_id,
            summary=data["summary"],
            key_topics=data["key_topics"],
            importance_score=data["importance_score"],
            message_count=len(messages),
        )
        saved = await self.store.insert_summary(summary)
        if saved is None:
            logger.warning("Conversation %s already had a summary, keeping the existing one", conversation_id)
            return await self.store.get_summary_by_conversation(conversation_id)

        logger.info(
            "Saved memory for conversation %s (importance=%d, topics=%s)",
            conversation_id, saved.importance_score, saved.key_topics,
        )
        return saved

    async def summarize_if_needed(self, conversation_id: str, user_id: str) -> Optional[ConversationSummary]:
        """should_summarize + generate_summary bajo el lock de la conversación."""
        self._lock_users[conversation_id] += 1
        try:
            async with self._locks[conversation_id]:
                if not await self.should_summarize(conversation_id):
                    return None
                return await self.generate_summary(conversation_id, user_id)
        finally:
            self._lock_users[conversation_id] -= 1
            if self._lock_users[conversation_id] == 0:
                del self._lock_users[conversation_id]
                self._locks.pop(conversation_id, None)

    async def get_recent_summaries(
        self, user_id: str, limit: int = 5, min_importance: int = 3
    ) -> List[ConversationSummary]:
        """Más recientes primero. Errores del store → lista vacía."""
        try:
            return await self.store.list_summaries(user_id, limit=limit, min_importance=min_importance)
        except Exception:
            logger.exception("Error fetching recent summaries for user %s", user_id)
            return []

    @staticmethod
    def format_memory_context(summaries: List[ConversationSummary]) -> str:
        """Bloque de memoria para el system prompt; "" si no hay resúmenes."""
        if not summaries:
            return ""

        items = []
        for i, summary in enumerate(summaries, start=1):
            created = summary.created_at
            date = f"{created:%b} {created.day}" if created else "Unknown date"
            topics = f" [Topics: {', '.join(summary.key_topics)}]" if summary.key_topics else ""
            items.append(f"{i}. ({date}{topics}): {summary.summary}")

        return MEMORY_BANNER + "\n\n".join(items) + "\n\n---"

    async def delete_summary(self, summary_id: str) -> bool:
        return await self.store.delete_summary(summary_id)

    async def get_stats(self, user_id: str) -> MemoryStats:
        try:
            summaries = await self.store.list_summaries(user_id, limit=None, min_importance=1)
        except Exception:
            logger.exception("Error fetching memory stats for user %s", user_id)
            return MemoryStats()

        if not summaries:
            return MemoryStats()

        return MemoryStats(
            total_summaries=len(summaries),
            total_messages=sum(s.message_count for s in summaries),
            average_importance=round(sum(s.importance_score for s in summaries) / len(summaries), 1),
        )
