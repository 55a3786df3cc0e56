import logging
from dataclasses import dataclass
from typing import List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from agent.config import config
from agent.exceptions import EmbeddingProviderError, EmptyInputError
from agent.llm_client import create_openai_client

logger = logging.getLogger(__name__)

_embedder_instance: Optional["EmbeddingProvider"] = None


def get_embedder() -> "EmbeddingProvider":
    """Retorna el singleton del EmbeddingProvider."""
    global _embedder_instance
    if _embedder_instance is None:
        _embedder_instance = EmbeddingProvider()
    return _embedder_instance


@dataclass
class EmbeddingResult:
    vector: List[float]
    token_count: float


class EmbeddingProvider:
    """
    Embeddings via el endpoint compatible con OpenAI del proveedor configurado.

    Los textos vacíos nunca llegan a la API: `embed_one` los rechaza y
    `embed_batch` los descarta manteniendo el orden del resto.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        dims: Optional[int] = None,
    ):
        self.client = client or create_openai_client()
        self.model = model or config.EMBEDDING_MODEL
        self.dims = dims or config.EMBEDDING_DIMS

        logger.info("EmbeddingProvider: model=%s, dims=%d", self.model, self.dims)

    def get_dimension(self) -> int:
        return self.dims

    async def embed_one(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            raise EmptyInputError("Cannot generate embedding for empty text")

        vectors, total_tokens = await self._embed([text.strip()])
        return EmbeddingResult(vector=vectors[0], token_count=total_tokens)

    async def embed_batch(self, texts: List[str]) -> List[EmbeddingResult]:
        """
        Un request para todos los textos no vacíos, en el orden de entrada.
        El token_count por ítem es total_tokens / n (aproximado: la API no
        devuelve conteos por ítem).
        """
        valid = [t.strip() for t in texts if t and t.strip()]
        if not valid:
            raise EmptyInputError("No valid texts to embed")

        vectors, total_tokens = await self._embed(valid)
        per_item = total_tokens / len(valid)
        return [EmbeddingResult(vector=v, token_count=per_item) for v in vectors]

    # =========================================================================
    # API
    # =========================================================================

    async def _embed(self, texts: List[str]) -> tuple[List[List[float]], int]:
        try:
            response = await self.client.embeddings.create(
                input=texts if len(texts) > 1 else texts[0],
                model=self.model,
            )
        except APIStatusError as e:
            logger.error("Embeddings API error %s: %s", e.status_code, e.message)
            raise EmbeddingProviderError(
                f"Embedding API error: {e.status_code} - {e.message}", status_code=e.status_code
            ) from e
        except APITimeoutError as e:
            raise EmbeddingProviderError("Embedding API timed out", status_code=408) from e
        except APIConnectionError as e:
            raise EmbeddingProviderError(f"Embedding API unreachable: {e}") from e

        embeddings = [d.embedding for d in sorted(response.data, key=lambda d: d.index)]
        if len(embeddings) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding API returned {len(embeddings)} vectors for {len(texts)} inputs"
            )
        tokens = response.usage.total_tokens if response.usage else 0

        if embeddings and len(embeddings[0]) != self.dims:
            logger.warning(
                "DIMENSION MISMATCH: EMBEDDING_DIMS=%d pero el modelo retornó %d dims.",
                self.dims, len(embeddings[0])
            )

        return embeddings, tokens
