"""
Armado de dependencias para los entry points (CLI de chat, scripts).

Un solo AsyncOpenAI compartido entre chat y embeddings; un solo store.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI

from agent.agent_loop import AgentLoop, default_agent_config
from agent.db_utils import DatabasePool, DataStore, PostgresStore
from agent.llm_client import ChatCompletionsClient, create_openai_client
from agent.tools import build_default_registry
from ingestion.embedder import EmbeddingProvider
from ingestion.ingest import DocumentIngestionPipeline
from services.chat_service import ChatService
from services.memory_service import ConversationMemoryService
from services.search_service import VectorRetriever

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: DataStore
    llm: ChatCompletionsClient
    embedder: EmbeddingProvider
    retriever: VectorRetriever
    memory: ConversationMemoryService
    loop: AgentLoop
    chat: ChatService
    ingestion: DocumentIngestionPipeline

    async def close(self) -> None:
        await self.llm.close()
        if isinstance(self.store, PostgresStore):
            await DatabasePool.close()


def build_container(
    store: Optional[DataStore] = None,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> ServiceContainer:
    store = store if store is not None else PostgresStore()
    client = client or create_openai_client()

    llm = ChatCompletionsClient(client, model=model)
    embedder = EmbeddingProvider(client)
    retriever = VectorRetriever(store, embedder)
    memory = ConversationMemoryService(store, llm)

    agent_config = default_agent_config()
    if model:
        agent_config = agent_config.model_copy(update={"default_model": model})
    loop = AgentLoop(llm, agent_config, build_default_registry(store))

    logger.info(
        "Services ready: model=%s, tools=%s",
        agent_config.default_model, loop.registry.tool_names,
    )
    return ServiceContainer(
        store=store,
        llm=llm,
        embedder=embedder,
        retriever=retriever,
        memory=memory,
        loop=loop,
        chat=ChatService(store, loop, memory, retriever),
        ingestion=DocumentIngestionPipeline(store, embedder),
    )
