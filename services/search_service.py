"""
Búsqueda semántica sobre la base de conocimiento.

El store resuelve nearest-neighbours con la función SQL
`search_document_chunks` (distancia coseno); acá se traduce entre
similaridad (0..1, mayor = más parecido) y distancia (= 1 - similaridad).
"""
import logging
from typing import List, Optional

from agent.db_utils import DataStore
from agent.models import CollectionStats, DocumentStatus, SearchResult
from ingestion.embedder import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.5

NO_RELEVANT_DOCUMENTS = "No relevant documents found in the knowledge base."

CONTEXT_HEADER = "RELEVANT KNOWLEDGE BASE CONTEXT:\n\n"
CONTEXT_SEPARATOR = "\n\n---\n\n"
CONTEXT_FOOTER = (
    "\n\nPlease use the above context to answer the user's question. "
    "If the context doesn't contain relevant information, acknowledge that "
    "and use your general knowledge."
)


class VectorRetriever:
    """
    Uso:
        retriever = VectorRetriever(store, embedder)
        context = await retriever.get_relevant_context("¿Qué incluye el menú?", limit=3)
        if context != NO_RELEVANT_DOCUMENTS:
            system_prompt += "\\n\\n" + context
    """

    def __init__(self, store: DataStore, embedder: EmbeddingProvider):
        self.store = store
        self.embedder = embedder

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        """Chunks ordenados por similaridad descendente."""
        limit = DEFAULT_LIMIT if limit is None else limit
        threshold = DEFAULT_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold

        embedding = await self.embedder.embed_one(query)
        rows = await self.store.search_document_chunks(
            query_embedding=embedding.vector,
            match_threshold=1 - threshold,
            match_count=limit,
        )

        results = [
            SearchResult(
                id=str(row["id"]),
                document_id=str(row["document_id"]),
                filename=row.get("filename") or "Unknown",
                content=row["content"],
                chunk_index=row.get("chunk_index", 0),
                similarity=1 - float(row["distance"]),
                metadata=row.get("metadata") or {},
            )
            for row in rows
        ]
        results.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug("Vector search '%s': %d results (threshold=%.2f)", query[:60], len(results), threshold)
        return results

    async def get_relevant_context(
        self,
        query: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> str:
        """
        Bloque listo para el system prompt, o NO_RELEVANT_DOCUMENTS si no hubo
        resultados (no es string vacío: el caller compara contra el sentinel).
        """
        results = await self.search(query, limit=limit, similarity_threshold=similarity_threshold)
        if not results:
            return NO_RELEVANT_DOCUMENTS
        return format_context(results)

    async def has_documents(self) -> bool:
        """True si hay al menos un documento `completed`. Errores del store → False."""
        try:
            return await self.store.count_documents(DocumentStatus.COMPLETED) > 0
        except Exception:
            logger.exception("Error checking for documents")
            return False

    async def get_collection_stats(self) -> CollectionStats:
        """Documentos completados, bytes totales y chunks almacenados."""
        completed = [
            d for d in await self.store.list_documents() if d.status == DocumentStatus.COMPLETED
        ]
        return CollectionStats(
            document_count=len(completed),
            chunk_count=await self.store.count_chunks(),
            total_size=sum(d.file_size for d in completed),
        )


def format_context(results: List[SearchResult]) -> str:
    entries = [
        f"[Document {i}: {r.filename} (Relevance: {r.similarity * 100:.1f}%)]\n{r.content}"
        for i, r in enumerate(results, start=1)
    ]
    return CONTEXT_HEADER + CONTEXT_SEPARATOR.join(entries) + CONTEXT_FOOTER
