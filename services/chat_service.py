"""
Orquestación de un turno de chat alrededor del AgentLoop.

ChatService persiste la conversación y los mensajes, junta el contexto de
enriquecimiento (memoria y documentos, ambos opcionales: si fallan se sigue
sin ellos) y dispara el resumen de memoria al cambiar de conversación.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agent.agent_loop import WEDDING_SYSTEM_MESSAGE, AgentLoop
from agent.config import config
from agent.db_utils import DataStore
from agent.models import Conversation, ConversationSummary, MemorySaveResult
from services.memory_service import MIN_MESSAGES_TO_GENERATE, ConversationMemoryService
from services.search_service import NO_RELEVANT_DOCUMENTS, VectorRetriever

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE_KEY = "system_message"
TITLE_MAX_CHARS = 50


def make_title(first_message: str) -> str:
    title = first_message.strip()
    if len(title) > TITLE_MAX_CHARS:
        return title[:TITLE_MAX_CHARS] + "..."
    return title or "New conversation"


@dataclass
class ChatReply:
    conversation_id: str
    content: str
    model: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    used_memory: bool = False
    used_documents: bool = False


class ChatService:
    """
    Uso:
        service = ChatService(store, loop, memory, retriever)
        reply = await service.send_message(user_id, "Who hasn't answered the RSVP yet?")
        reply = await service.send_message(user_id, "And the events?", reply.conversation_id)
    """

    def __init__(
        self,
        store: DataStore,
        loop: AgentLoop,
        memory: ConversationMemoryService,
        retriever: Optional[VectorRetriever] = None,
    ):
        self.store = store
        self.loop = loop
        self.memory = memory
        self.retriever = retriever

    # --------------------------------------------------------------------------
    # CONVERSACIONES
    # --------------------------------------------------------------------------

    async def start_conversation(
        self,
        user_id: str,
        first_message: str = "",
        previous_conversation_id: Optional[str] = None,
    ) -> Conversation:
        if previous_conversation_id:
            await self.switch_conversation(user_id, previous_conversation_id)
        conversation = await self.store.create_conversation(user_id, make_title(first_message))
        logger.info("Started conversation %s for user %s", conversation.id, user_id)
        return conversation

    async def switch_conversation(
        self, user_id: str, previous_conversation_id: str
    ) -> Optional[ConversationSummary]:
        """Resume la conversación que se deja si corresponde. Nunca lanza."""
        try:
            summary = await self.memory.summarize_if_needed(previous_conversation_id, user_id)
        except Exception:
            logger.exception("Failed to summarize conversation %s", previous_conversation_id)
            return None
        if summary is not None:
            logger.info("Conversation %s summarized on switch", previous_conversation_id)
        return summary

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        return await self.store.list_conversations(user_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await self.store.delete_conversation(conversation_id)

    # --------------------------------------------------------------------------
    # TURNO
    # --------------------------------------------------------------------------

    async def send_message(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatReply:
        if conversation_id is None:
            conversation_id = (await self.start_conversation(user_id, message)).id

        history = await self.store.get_messages(conversation_id)
        await self.store.add_message(conversation_id, "user", message)

        system_message = await self.get_system_message()
        if system_message != self.loop.agent_config.system_message:
            self.loop.update_config(system_message=system_message)

        memory_context = await self._memory_context(user_id)
        document_context = await self._document_context(message)

        turn = await self.loop.run(
            message,
            history=history,
            model=model,
            memory_context=memory_context,
            document_context=document_context,
            conversation_id=conversation_id,
        )
        await self.store.add_message(conversation_id, "assistant", turn.content)

        return ChatReply(
            conversation_id=conversation_id,
            content=turn.content,
            model=turn.model,
            tool_calls=turn.tool_calls,
            used_memory=bool(memory_context),
            used_documents=bool(document_context) and document_context != NO_RELEVANT_DOCUMENTS,
        )

    async def _memory_context(self, user_id: str) -> str:
        try:
            summaries = await self.memory.get_recent_summaries(
                user_id,
                limit=config.MEMORY_CONTEXT_LIMIT,
                min_importance=config.MEMORY_MIN_IMPORTANCE,
            )
            return self.memory.format_memory_context(summaries)
        except Exception:
            logger.exception("Error loading memory context, continuing without it")
            return ""

    async def _document_context(self, message: str) -> str:
        if self.retriever is None:
            return ""
        try:
            if not await self.retriever.has_documents():
                return ""
            context = await self.retriever.get_relevant_context(
                message,
                limit=config.CONTEXT_LIMIT,
                similarity_threshold=config.CONTEXT_SIMILARITY_THRESHOLD,
            )
        except Exception:
            logger.exception("Error retrieving document context, continuing without it")
            return ""
        return context

    # --------------------------------------------------------------------------
    # MEMORIA
    # --------------------------------------------------------------------------

    async def save_to_memory(self, user_id: str, conversation_id: Optional[str]) -> MemorySaveResult:
        """Guardado explícito con un mensaje apto para mostrar al usuario."""
        if not conversation_id:
            return MemorySaveResult(success=False, message="No active conversation to save")

        if await self.store.count_messages(conversation_id) < MIN_MESSAGES_TO_GENERATE:
            return MemorySaveResult(success=False, message="Add at least 2 messages before saving to memory")

        try:
            if await self.store.get_summary_by_conversation(conversation_id) is not None:
                return MemorySaveResult(
                    success=False,
                    message="This conversation is already saved in memory. View it in the Memories section.",
                )
            summary = await self.memory.generate_summary(conversation_id, user_id)
        except Exception as e:
            logger.exception("Error saving conversation %s to memory", conversation_id)
            return MemorySaveResult(success=False, message=f"Failed to save: {e}")

        if summary is None:
            return MemorySaveResult(success=False, message="Add at least 2 messages before saving to memory")

        return MemorySaveResult(
            success=True,
            message="Successfully saved to memory!",
            summary=summary.summary,
            importance=summary.importance_score,
            topics=summary.key_topics,
        )

    # --------------------------------------------------------------------------
    # SETTINGS
    # --------------------------------------------------------------------------

    async def get_system_message(self) -> str:
        stored = await self.store.get_setting(SYSTEM_MESSAGE_KEY)
        return stored or WEDDING_SYSTEM_MESSAGE

    async def set_system_message(self, message: str) -> None:
        await self.store.set_setting(SYSTEM_MESSAGE_KEY, message)
        self.loop.update_config(system_message=message)
