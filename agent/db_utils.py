import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import asyncpg

from agent.config import config
from agent.models import (
    CachedSearchResult,
    ChatMessage,
    ChunkRecord,
    Conversation,
    ConversationSummary,
    Document,
    DocumentStatus,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "sql" / "schema.sql"


# ---------------------------------------------------------------------------
# Contrato del store
# ---------------------------------------------------------------------------

class DataStore(ABC):
    """
    Store externo consumido como caja negra: CRUD por fila + la RPC de
    similaridad. Los servicios lo reciben por constructor; los tests pasan
    una implementación en memoria.
    """

    # -- documents / chunks -------------------------------------------------

    @abstractmethod
    async def create_document(
        self, filename: str, file_type: str, file_size: int, uploaded_by: Optional[str]
    ) -> Document: ...

    @abstractmethod
    async def update_document_status(
        self, document_id: str, status: DocumentStatus, error_message: Optional[str] = None
    ) -> None: ...

    @abstractmethod
    async def insert_chunks(self, chunks: List[ChunkRecord]) -> None: ...

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool: ...

    @abstractmethod
    async def list_documents(self) -> List[Document]: ...

    @abstractmethod
    async def count_documents(self, status: Optional[DocumentStatus] = None) -> int: ...

    @abstractmethod
    async def count_chunks(self) -> int: ...

    @abstractmethod
    async def search_document_chunks(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[Dict[str, Any]]:
        """Filas ordenadas por `distance` ascendente (distance = 1 - similaridad)."""

    # -- web search cache ---------------------------------------------------

    @abstractmethod
    async def get_cache_entry(self, query_hash: str) -> Optional[CachedSearchResult]:
        """Entrada más reciente para el hash, expirada o no."""

    @abstractmethod
    async def insert_cache_entry(self, entry: CachedSearchResult) -> None: ...

    @abstractmethod
    async def record_cache_hit(self, query_hash: str, accessed_at: datetime) -> None: ...

    # -- conversations / messages ------------------------------------------

    @abstractmethod
    async def create_conversation(self, user_id: str, title: str) -> Conversation: ...

    @abstractmethod
    async def list_conversations(self, user_id: str) -> List[Conversation]: ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool: ...

    @abstractmethod
    async def add_message(self, conversation_id: str, role: str, content: str) -> ChatMessage: ...

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> List[ChatMessage]:
        """Mensajes en orden de creación."""

    @abstractmethod
    async def count_messages(self, conversation_id: str) -> int: ...

    # -- summaries ----------------------------------------------------------

    @abstractmethod
    async def get_summary_by_conversation(self, conversation_id: str) -> Optional[ConversationSummary]: ...

    @abstractmethod
    async def insert_summary(self, summary: ConversationSummary) -> Optional[ConversationSummary]:
        """Retorna None si la conversación ya tenía resumen."""

    @abstractmethod
    async def list_summaries(
        self, user_id: str, limit: Optional[int] = None, min_importance: int = 1
    ) -> List[ConversationSummary]:
        """Más recientes primero."""

    @abstractmethod
    async def delete_summary(self, summary_id: str) -> bool: ...

    # -- settings / wedding data -------------------------------------------

    @abstractmethod
    async def get_setting(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def list_guests(self) -> List[Dict[str, Any]]:
        """Invitados ordenados por nombre."""

    @abstractmethod
    async def list_events(self) -> List[Dict[str, Any]]:
        """Eventos ordenados por fecha."""


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class DatabasePool:
    _pool: Optional[asyncpg.Pool] = None
    _loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        current_loop = asyncio.get_running_loop()
        if cls._pool is not None:
            if cls._loop is not current_loop or (cls._loop and cls._loop.is_closed()):
                logger.warning("Event loop changed, resetting DB pool.")
                try:
                    await cls._pool.close()
                except (OSError, asyncpg.PostgresError, RuntimeError) as exc:
                    logger.debug("Ignoring error closing stale pool: %s", exc)
                cls._pool = None
                cls._loop = None

        if cls._pool is None:
            cls._pool = await asyncpg.create_pool(
                user=config.POSTGRES_USER,
                password=config.POSTGRES_PASSWORD,
                database=config.POSTGRES_DB,
                host=config.POSTGRES_HOST,
                port=config.POSTGRES_PORT,
                min_size=2,
                max_size=10,
                command_timeout=30,
            )
            cls._loop = current_loop
            logger.info("DB pool created (min=2, max=10).")

        return cls._pool  # type: ignore[return-value]

    @classmethod
    async def close(cls) -> None:
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._loop = None

    @classmethod
    async def init_db(cls) -> None:
        """Aplica sql/schema.sql (idempotente) con la dimensión de embedding configurada."""
        pool = await cls.get_pool()
        sql = SCHEMA_PATH.read_text(encoding="utf-8")
        if config.EMBEDDING_DIMS != 1536:
            sql = sql.replace("vector(1536)", f"vector({config.EMBEDDING_DIMS})")
        async with pool.acquire() as conn:
            await conn.execute(sql)
        logger.info("Schema applied (dim=%d).", config.EMBEDDING_DIMS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@asynccontextmanager
async def get_db_connection():
    pool = await DatabasePool.get_pool()
    async with pool.acquire() as conn:
        yield conn


def _fmt_vec(embedding: List[float]) -> str:
    return "[" + ",".join(str(v) for v in embedding) + "]"


def _load_json(raw: Any) -> Any:
    # asyncpg devuelve jsonb como str si no hay codec registrado
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _row_to_dict(row: asyncpg.Record) -> Dict[str, Any]:
    d = dict(row)
    for key in ("id", "document_id", "conversation_id"):
        if d.get(key) is not None:
            d[key] = str(d[key])
    if "metadata" in d:
        d["metadata"] = _load_json(d["metadata"]) or {}
    return d


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Implementación Postgres / pgvector
# ---------------------------------------------------------------------------

class PostgresStore(DataStore):
    """DataStore sobre el pool asyncpg compartido."""

    # -- documents / chunks -------------------------------------------------

    async def create_document(
        self, filename: str, file_type: str, file_size: int, uploaded_by: Optional[str]
    ) -> Document:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                "INSERT INTO documents (filename, file_type, file_size, uploaded_by, status) "
                "VALUES ($1, $2, $3, $4, 'processing') "
                "RETURNING id, filename, file_type, file_size, uploaded_by, status, error_message, uploaded_at",
                filename, file_type, file_size, uploaded_by,
            )
            return Document(**_row_to_dict(row))

    async def update_document_status(
        self, document_id: str, status: DocumentStatus, error_message: Optional[str] = None
    ) -> None:
        async with get_db_connection() as conn:
            await conn.execute(
                "UPDATE documents SET status = $2, error_message = $3 WHERE id = $1::uuid",
                document_id, DocumentStatus(status).value, error_message,
            )

    async def insert_chunks(self, chunks: List[ChunkRecord]) -> None:
        if not chunks:
            return
        async with get_db_connection() as conn:
            data = [
                (
                    c.document_id,
                    c.chunk_index,
                    c.content,
                    _fmt_vec(c.embedding),
                    c.token_count,
                    json.dumps(c.metadata),
                )
                for c in chunks
            ]
            await conn.executemany(
                "INSERT INTO document_chunks (document_id, chunk_index, content, embedding, token_count, metadata) "
                "VALUES ($1::uuid, $2, $3, $4::vector, $5, $6::jsonb)",
                data,
            )

    async def delete_document(self, document_id: str) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute("DELETE FROM documents WHERE id = $1::uuid", document_id)
            return result.endswith(" 1")

    async def list_documents(self) -> List[Document]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, filename, file_type, file_size, uploaded_by, status, error_message, uploaded_at "
                "FROM documents ORDER BY uploaded_at DESC"
            )
            return [Document(**_row_to_dict(r)) for r in rows]

    async def count_documents(self, status: Optional[DocumentStatus] = None) -> int:
        async with get_db_connection() as conn:
            if status is None:
                return await conn.fetchval("SELECT COUNT(*) FROM documents")
            return await conn.fetchval(
                "SELECT COUNT(*) FROM documents WHERE status = $1", DocumentStatus(status).value
            )

    async def count_chunks(self) -> int:
        async with get_db_connection() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM document_chunks")

    async def search_document_chunks(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[Dict[str, Any]]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM search_document_chunks($1::vector, $2, $3)",
                _fmt_vec(query_embedding), match_threshold, max(1, match_count),
            )
            return [_row_to_dict(r) for r in rows]

    # -- web search cache ---------------------------------------------------

    async def get_cache_entry(self, query_hash: str) -> Optional[CachedSearchResult]:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                "SELECT query, query_hash, results, created_at, expires_at, hit_count, last_accessed_at "
                "FROM tavily_cache WHERE query_hash = $1 ORDER BY created_at DESC LIMIT 1",
                query_hash,
            )
            if row is None:
                return None
            d = dict(row)
            d["results"] = _load_json(d["results"])
            return CachedSearchResult(**d)

    async def insert_cache_entry(self, entry: CachedSearchResult) -> None:
        async with get_db_connection() as conn:
            await conn.execute(
                "INSERT INTO tavily_cache (query, query_hash, results, created_at, expires_at, hit_count) "
                "VALUES ($1, $2, $3::jsonb, $4, $5, $6)",
                entry.query, entry.query_hash, json.dumps(entry.results),
                entry.created_at, entry.expires_at, entry.hit_count,
            )

    async def record_cache_hit(self, query_hash: str, accessed_at: datetime) -> None:
        async with get_db_connection() as conn:
            await conn.execute(
                """
                UPDATE tavily_cache
                SET hit_count = hit_count + 1, last_accessed_at = $2
                WHERE id = (
                    SELECT id FROM tavily_cache WHERE query_hash = $1
                    ORDER BY created_at DESC LIMIT 1
                )
                """,
                query_hash, accessed_at,
            )

    # -- conversations / messages ------------------------------------------

    async def create_conversation(self, user_id: str, title: str) -> Conversation:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                "INSERT INTO conversations (user_id, title) VALUES ($1, $2) "
                "RETURNING id, user_id, title, created_at, updated_at",
                user_id, title,
            )
            return Conversation(**_row_to_dict(row))

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, user_id, title, created_at, updated_at FROM conversations "
                "WHERE user_id = $1 ORDER BY updated_at DESC",
                user_id,
            )
            return [Conversation(**_row_to_dict(r)) for r in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute("DELETE FROM conversations WHERE id = $1::uuid", conversation_id)
            return result.endswith(" 1")

    async def add_message(self, conversation_id: str, role: str, content: str) -> ChatMessage:
        async with get_db_connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "INSERT INTO chat_messages (conversation_id, role, content) VALUES ($1::uuid, $2, $3) "
                    "RETURNING id, conversation_id, role, content, created_at",
                    conversation_id, role, content,
                )
                await conn.execute(
                    "UPDATE conversations SET updated_at = NOW() WHERE id = $1::uuid", conversation_id
                )
            return ChatMessage(**_row_to_dict(row))

    async def get_messages(self, conversation_id: str) -> List[ChatMessage]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, conversation_id, role, content, created_at FROM chat_messages "
                "WHERE conversation_id = $1::uuid ORDER BY created_at ASC",
                conversation_id,
            )
            return [ChatMessage(**_row_to_dict(r)) for r in rows]

    async def count_messages(self, conversation_id: str) -> int:
        async with get_db_connection() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM chat_messages WHERE conversation_id = $1::uuid", conversation_id
            )

    # -- summaries ----------------------------------------------------------

    _SUMMARY_COLUMNS = (
        "id, conversation_id, user_id, summary, key_topics, importance_score, message_count, created_at"
    )

    async def get_summary_by_conversation(self, conversation_id: str) -> Optional[ConversationSummary]:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {self._SUMMARY_COLUMNS} FROM conversation_summaries WHERE conversation_id = $1::uuid",
                conversation_id,
            )
            return ConversationSummary(**_row_to_dict(row)) if row else None

    async def insert_summary(self, summary: ConversationSummary) -> Optional[ConversationSummary]:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO conversation_summaries
                    (conversation_id, user_id, summary, key_topics, importance_score, message_count)
                VALUES ($1::uuid, $2, $3, $4, $5, $6)
                ON CONFLICT (conversation_id) DO NOTHING
                RETURNING {self._SUMMARY_COLUMNS}
                """,
                summary.conversation_id, summary.user_id, summary.summary,
                summary.key_topics, summary.importance_score, summary.message_count,
            )
            return ConversationSummary(**_row_to_dict(row)) if row else None

    async def list_summaries(
        self, user_id: str, limit: Optional[int] = None, min_importance: int = 1
    ) -> List[ConversationSummary]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                f"SELECT {self._SUMMARY_COLUMNS} FROM conversation_summaries "
                "WHERE user_id = $1 AND importance_score >= $2 "
                "ORDER BY created_at DESC LIMIT $3",
                user_id, min_importance, limit,
            )
            return [ConversationSummary(**_row_to_dict(r)) for r in rows]

    async def delete_summary(self, summary_id: str) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute(
                "DELETE FROM conversation_summaries WHERE id = $1::uuid", summary_id
            )
            return result.endswith(" 1")

    # -- settings / wedding data -------------------------------------------

    async def get_setting(self, key: str) -> Optional[str]:
        async with get_db_connection() as conn:
            return await conn.fetchval("SELECT value FROM chat_settings WHERE key = $1", key)

    async def set_setting(self, key: str, value: str) -> None:
        async with get_db_connection() as conn:
            await conn.execute(
                "INSERT INTO chat_settings (key, value, updated_at) VALUES ($1, $2, $3) "
                "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at",
                key, value, _utcnow(),
            )

    async def list_guests(self) -> List[Dict[str, Any]]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, name, email, phone, language, total_guests, attending, save_the_date_sent "
                "FROM guests ORDER BY name"
            )
            return [_row_to_dict(r) for r in rows]

    async def list_events(self) -> List[Dict[str, Any]]:
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, name, event_date, event_time, location, description "
                "FROM events ORDER BY event_date"
            )
            return [_row_to_dict(r) for r in rows]
