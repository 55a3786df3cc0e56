from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Document(BaseModel):
    id: str
    filename: str
    file_type: str
    file_size: int = 0
    uploaded_by: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PROCESSING
    error_message: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class ChunkRecord(BaseModel):
    """Fila de document_chunks lista para insertar."""
    document_id: str
    chunk_index: int
    content: str
    embedding: List[float]
    token_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResult(BaseModel):
    id: str
    document_id: str
    filename: str = "Unknown"
    content: str
    chunk_index: int = 0
    similarity: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CollectionStats(BaseModel):
    document_count: int = 0
    chunk_count: int = 0
    total_size: int = 0


# ---------------------------------------------------------------------------
# Web search cache
# ---------------------------------------------------------------------------

class CachedSearchResult(BaseModel):
    query: str
    query_hash: str
    results: Dict[str, Any]
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0
    last_accessed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


# ---------------------------------------------------------------------------
# Conversations & memory
# ---------------------------------------------------------------------------

class Conversation(BaseModel):
    id: str
    user_id: str
    title: str = "New conversation"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatMessage(BaseModel):
    role: str
    content: str
    id: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_llm(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationSummary(BaseModel):
    id: Optional[str] = None
    conversation_id: str
    user_id: str
    summary: str
    key_topics: List[str] = Field(default_factory=list)
    importance_score: int = Field(default=5, ge=1, le=10)
    message_count: int = 0
    created_at: Optional[datetime] = None


class MemoryStats(BaseModel):
    total_summaries: int = 0
    total_messages: int = 0
    average_importance: float = 0.0


class MemorySaveResult(BaseModel):
    success: bool
    message: str
    summary: Optional[str] = None
    importance: Optional[int] = None
    topics: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class FunctionSpec(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )


class ToolDeclaration(BaseModel):
    """Formato exacto que se envía en `tools` a chat completions."""
    type: str = "function"
    function: FunctionSpec

    @property
    def name(self) -> str:
        return self.function.name

    @classmethod
    def build(cls, name: str, description: str, parameters: Optional[Dict[str, Any]] = None) -> "ToolDeclaration":
        spec = FunctionSpec(name=name, description=description)
        if parameters is not None:
            spec.parameters = parameters
        return cls(function=spec)


class AgentConfig(BaseModel):
    models: List[str]
    default_model: str
    system_message: str
    # None = todas las tools registradas
    tools: Optional[List[str]] = None
