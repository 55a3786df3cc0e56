"""
Excepciones tipadas del asistente.

Los errores de enriquecimiento (memoria, contexto de documentos, búsqueda web)
se loguean y degradan; los de la operación principal (LLM, ingesta) se propagan.
"""
from typing import Optional


class AssistantError(Exception):
    """Error base de todo el paquete."""

    code: str = "ASSISTANT_ERROR"


class EmptyInputError(AssistantError):
    """Texto vacío o solo espacios enviado a embeddings."""

    code = "EMPTY_INPUT"


class UnsupportedFileTypeError(AssistantError):
    """Extensión / MIME fuera de {.txt, .pdf}."""

    code = "UNSUPPORTED_FILE_TYPE"

    def __init__(self, filename: str, file_type: Optional[str] = None) -> None:
        super().__init__(
            f"Unsupported file type for '{filename}' ({file_type or 'unknown'}). "
            "Only .txt and .pdf files are supported."
        )
        self.filename = filename
        self.file_type = file_type


class DocumentProcessingError(AssistantError):
    """La extracción de texto falló o no produjo contenido."""

    code = "PROCESSING_FAILED"


class ProviderError(AssistantError):
    """Respuesta no exitosa de un endpoint externo (status + mensaje upstream)."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EmbeddingProviderError(ProviderError):
    code = "EMBEDDING_PROVIDER_ERROR"


class LLMProviderError(ProviderError):
    code = "LLM_PROVIDER_ERROR"


class ToolNotFoundError(AssistantError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class ToolRoundLimitError(AssistantError):
    """El modelo siguió pidiendo tools más allá de MAX_TOOL_ROUNDS."""

    code = "TOOL_ROUND_LIMIT"

    def __init__(self, max_rounds: int) -> None:
        super().__init__(
            f"The model kept requesting tools after {max_rounds} rounds without a final answer."
        )
        self.max_rounds = max_rounds
