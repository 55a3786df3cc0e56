import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from agent.config import config
from agent.db_utils import DatabasePool, DataStore, PostgresStore
from agent.exceptions import DocumentProcessingError
from agent.logging_utils import ingestion_logger
from agent.models import ChunkRecord, Document, DocumentStatus
from agent.token_tracker import OP_INGESTION, tracker
from ingestion.chunker import FixedWindowChunker
from ingestion.embedder import EmbeddingProvider, get_embedder
from ingestion.extractors import SUPPORTED_TYPES, extract_text, resolve_file_type
from ingestion.sources.base import DocumentSource, UploadedFile
from ingestion.sources.local_file_source import LocalFileSource

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    filename: str
    document_id: Optional[str]
    status: str
    chunks_created: int = 0
    embed_tokens: int = 0
    cost_usd: float = 0.0
    elapsed_sec: float = 0.0
    error: Optional[str] = None


class DocumentIngestionPipeline:
    """
    Orquesta la ingesta de un archivo de la base de conocimiento, de punta a
    punta y sin cola:

      ① validar tipo (.txt / .pdf)   ← antes de crear cualquier registro
      ② documents: status=processing
      ③ extraer texto → chunks de tamaño fijo con overlap
      ④ embeddings en batches secuenciales de EMBED_BATCH_SIZE
      ⑤ document_chunks: vector + token_count + offsets (append-only)
      ⑥ documents: status=completed

    Cualquier error en ②..⑥ marca el documento `failed` con el mensaje y se
    re-lanza al caller.
    """

    def __init__(
        self,
        store: DataStore,
        embedder: Optional[EmbeddingProvider] = None,
        chunker: Optional[FixedWindowChunker] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder or get_embedder()
        self.chunker = chunker or FixedWindowChunker(config.CHUNK_SIZE, config.CHUNK_OVERLAP)
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE

    async def process_document(self, upload: UploadedFile, uploader_id: Optional[str]) -> str:
        """Ingesta un archivo y retorna el id del documento."""
        return (await self.ingest(upload, uploader_id)).document_id

    async def ingest(self, upload: UploadedFile, uploader_id: Optional[str]) -> IngestionResult:
        """Como process_document, con chunks, tokens y costo de la ingesta."""
        file_type = resolve_file_type(upload.filename, upload.mime_type)

        start_time = time.time()
        document = await self.store.create_document(
            filename=upload.filename,
            file_type=SUPPORTED_TYPES[file_type],
            file_size=upload.size,
            uploaded_by=uploader_id,
        )
        op_id = f"ingest_{document.id}"
        tracker.start_operation(op_id, OP_INGESTION)
        chunks_created = 0

        try:
            text = extract_text(upload.content, file_type)
            if not text.strip():
                raise DocumentProcessingError("No text content could be extracted from the file")

            chunks = self.chunker.split(text)
            chunks_created = await self._embed_and_store(document.id, chunks, op_id)

            await self.store.update_document_status(document.id, DocumentStatus.COMPLETED)

        except Exception as exc:
            logger.exception("Failed to ingest '%s'", upload.filename)
            await self._mark_failed(document, str(exc))
            metrics = tracker.end_operation(op_id)
            self._log_row(document, upload, DocumentStatus.FAILED, chunks_created, metrics, start_time, str(exc))
            raise

        metrics = tracker.end_operation(op_id)
        self._log_row(document, upload, DocumentStatus.COMPLETED, chunks_created, metrics, start_time)
        result = IngestionResult(
            filename=upload.filename,
            document_id=document.id,
            status=DocumentStatus.COMPLETED.value,
            chunks_created=chunks_created,
            embed_tokens=metrics.tokens_in if metrics else 0,
            cost_usd=metrics.cost_usd if metrics else 0.0,
            elapsed_sec=time.time() - start_time,
        )
        logger.info(
            "Ingested '%s': chunks=%d cost=$%.6f time=%.1fs",
            upload.filename, result.chunks_created, result.cost_usd, result.elapsed_sec,
        )
        return result

    async def delete_document(self, document_id: str) -> bool:
        """Borra el documento; los chunks caen por ON DELETE CASCADE."""
        deleted = await self.store.delete_document(document_id)
        logger.info("Deleted document %s: %s", document_id, deleted)
        return deleted

    async def list_documents(self) -> List[Document]:
        return await self.store.list_documents()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _embed_and_store(self, document_id: str, chunks, op_id: str) -> int:
        stored = 0
        for batch_start in range(0, len(chunks), self.batch_size):
            # chunks de solo espacios no se embeben (el índice conserva el orden)
            batch = [c for c in chunks[batch_start:batch_start + self.batch_size] if c.content.strip()]
            if not batch:
                continue

            embeddings = await self.embedder.embed_batch([c.content for c in batch])
            records = [
                ChunkRecord(
                    document_id=document_id,
                    chunk_index=chunk.index,
                    content=chunk.content,
                    embedding=emb.vector,
                    token_count=tracker.estimate_tokens_fast(chunk.content),
                    metadata=chunk.metadata,
                )
                for chunk, emb in zip(batch, embeddings)
            ]
            await self.store.insert_chunks(records)
            stored += len(records)

            batch_tokens = round(sum(e.token_count for e in embeddings))
            tracker.record_usage(op_id, batch_tokens, 0, self.embedder.model, "embedding_api")
            logger.debug("Stored batch %d-%d for document %s", batch_start, batch_start + len(batch), document_id)

        return stored

    async def _mark_failed(self, document: Document, message: str) -> None:
        try:
            await self.store.update_document_status(document.id, DocumentStatus.FAILED, message)
        except Exception:
            logger.exception("Could not mark document %s as failed", document.id)

    def _log_row(self, document, upload, status, chunks_created, metrics, start_time, error=None) -> None:
        ingestion_logger.log_row({
            "document_id": document.id,
            "timestamp": start_time,
            "filename": upload.filename,
            "file_type": document.file_type,
            "file_size": upload.size,
            "status": status.value,
            "chunks_created": chunks_created,
            "embeddings_tokens": metrics.tokens_in if metrics else 0,
            "cost_usd": metrics.cost_usd if metrics else 0.0,
            "elapsed_sec": round(time.time() - start_time, 3),
            "error_message": error or "",
        })


# --- Entry point -----------------------------------------------------------------

async def ingest_source(
    source: DocumentSource,
    pipeline: DocumentIngestionPipeline,
    uploader_id: Optional[str] = None,
) -> List[IngestionResult]:
    """Ingesta secuencial de todos los archivos de una fuente. Un fallo no corta el resto."""
    results: List[IngestionResult] = []
    t0 = time.time()

    async for upload in source.iter_documents():
        started = time.time()
        try:
            results.append(await pipeline.ingest(upload, uploader_id))
        except Exception as exc:
            results.append(IngestionResult(
                filename=upload.filename, document_id=None,
                status=DocumentStatus.FAILED.value, elapsed_sec=time.time() - started, error=str(exc),
            ))

    successes = sum(1 for r in results if r.error is None)
    logger.info(
        "Done [%s]: %d/%d files in %.1fs - errors: %d",
        source.source_name(), successes, len(results), time.time() - t0, len(results) - successes,
    )
    return results


async def ingest_directory(directory: str, uploader_id: Optional[str] = None, recursive: bool = False) -> List[IngestionResult]:
    await DatabasePool.init_db()
    pipeline = DocumentIngestionPipeline(PostgresStore())
    try:
        return await ingest_source(LocalFileSource(directory, recursive=recursive), pipeline, uploader_id)
    finally:
        await DatabasePool.close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Ingest .txt/.pdf files into the wedding knowledge base")
    parser.add_argument("--dir", type=str, required=True)
    parser.add_argument("--uploader", type=str, default=None)
    parser.add_argument("--recursive", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(ingest_directory(args.dir, uploader_id=args.uploader, recursive=args.recursive))
