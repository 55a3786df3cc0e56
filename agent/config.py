"""
agent/config.py
---------------
Configuración central del asistente de bodas.

Todo se lee de variables de entorno / `.env` via pydantic-settings.
El proveedor LLM (github | openai | ollama) define modelos, base_url y
dimensiones de embedding por defecto; cualquier valor se puede sobrescribir.
"""
import os
from dataclasses import dataclass
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GITHUB_MODELS_URL = "https://models.inference.ai.azure.com"


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # PROVEEDOR LLM
    # Controla qué API se usa para chat completions Y embeddings.
    # Valores: github | openai | ollama (todos hablan la API de OpenAI)
    # -------------------------------------------------------------------------
    LLM_PROVIDER: str = Field(default="github", description="github | openai | ollama")
    OPENAI_API_KEY: str = Field(default="", description="Bearer token (GitHub token para GitHub Models).")
    OPENAI_BASE_URL: Optional[str] = Field(
        default=None,
        description="URL base. None = auto según proveedor."
    )
    REQUEST_TIMEOUT_SECONDS: float = Field(default=60.0, description="Timeout por llamada al LLM / embeddings")

    # -------------------------------------------------------------------------
    # MODELOS: se auto-configuran según LLM_PROVIDER si no se especifican
    # -------------------------------------------------------------------------
    AVAILABLE_MODELS: List[str] = Field(default_factory=list, description="Modelos seleccionables en el chat")
    DEFAULT_MODEL: str = Field(default="", description="Modelo de chat por defecto")
    SUMMARY_MODEL: str = Field(default="", description="Modelo usado para resumir conversaciones")
    EMBEDDING_MODEL: str = Field(default="", description="Modelo de embeddings")
    EMBEDDING_DIMS: int = Field(default=0, description="Dimensiones del vector. 0 = auto.")

    # -------------------------------------------------------------------------
    # AGENTE
    # -------------------------------------------------------------------------
    CHAT_TEMPERATURE: float = Field(default=0.7)
    CHAT_MAX_TOKENS: int = Field(default=2000)
    MAX_TOOL_ROUNDS: int = Field(default=8, description="Tope de rondas de tool calls por turno")
    MAX_CONCURRENT_GENERATIONS: int = Field(default=5)

    # -------------------------------------------------------------------------
    # INGESTA / RAG
    # -------------------------------------------------------------------------
    CHUNK_SIZE: int = Field(default=1000, description="Caracteres por chunk")
    CHUNK_OVERLAP: int = Field(default=200, description="Solapamiento entre chunks")
    EMBED_BATCH_SIZE: int = Field(default=10, description="Chunks por request de embeddings")
    CONTEXT_LIMIT: int = Field(default=3, description="Chunks inyectados por turno de chat")
    CONTEXT_SIMILARITY_THRESHOLD: float = Field(default=0.6)

    # -------------------------------------------------------------------------
    # MEMORIA
    # -------------------------------------------------------------------------
    MEMORY_MIN_MESSAGES: int = Field(default=4, description="Mensajes mínimos para resumir")
    MEMORY_CONTEXT_LIMIT: int = Field(default=3)
    MEMORY_MIN_IMPORTANCE: int = Field(default=4)

    # -------------------------------------------------------------------------
    # BÚSQUEDA WEB (Tavily)
    # -------------------------------------------------------------------------
    TAVILY_API_KEY: str = Field(default="")
    TAVILY_API_URL: str = Field(default="https://api.tavily.com/search")
    WEB_SEARCH_TIMEOUT_SECONDS: float = Field(default=15.0)
    CACHE_TTL_DAYS: int = Field(default=7)

    # -------------------------------------------------------------------------
    # POSTGRESQL (pgvector)
    # -------------------------------------------------------------------------
    POSTGRES_USER: str = Field(default="wedding")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_DB: str = Field(default="wedding")
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)

    # -------------------------------------------------------------------------
    # APP
    # -------------------------------------------------------------------------
    LOG_LEVEL: str = Field(default="INFO")
    METRICS_LOG_DIR: str = Field(default="logs", description="Directorio de los CSV de métricas")
    ENVIRONMENT: str = Field(default="development")

    # =========================================================================
    # VALIDADOR: auto-configura modelos y URLs según LLM_PROVIDER
    # =========================================================================
    @model_validator(mode="after")
    def _resolve_provider_defaults(self) -> "AppConfig":
        provider = self.LLM_PROVIDER.lower()

        if provider in ("github", "openai"):
            if not self.AVAILABLE_MODELS:
                object.__setattr__(self, "AVAILABLE_MODELS", ["gpt-4o", "gpt-4o-mini"])
            if not self.EMBEDDING_MODEL:
                object.__setattr__(self, "EMBEDDING_MODEL", "text-embedding-3-small")
            if not self.EMBEDDING_DIMS:
                object.__setattr__(self, "EMBEDDING_DIMS", 1536)
            if provider == "github" and not self.OPENAI_BASE_URL:
                object.__setattr__(self, "OPENAI_BASE_URL", GITHUB_MODELS_URL)
            # openai: OPENAI_BASE_URL None → api.openai.com

        elif provider == "ollama":
            if not self.AVAILABLE_MODELS:
                object.__setattr__(self, "AVAILABLE_MODELS", ["llama3.1:8b"])
            if not self.EMBEDDING_MODEL:
                object.__setattr__(self, "EMBEDDING_MODEL", "nomic-embed-text")
            if not self.EMBEDDING_DIMS:
                object.__setattr__(self, "EMBEDDING_DIMS", 768)
            if not self.OPENAI_BASE_URL:
                object.__setattr__(self, "OPENAI_BASE_URL", "http://localhost:11434/v1")
            if not self.OPENAI_API_KEY:
                object.__setattr__(self, "OPENAI_API_KEY", "ollama")

        else:
            raise ValueError(
                f"LLM_PROVIDER='{provider}' no reconocido. "
                "Valores válidos: github | openai | ollama"
            )

        if not self.DEFAULT_MODEL:
            object.__setattr__(self, "DEFAULT_MODEL", self.AVAILABLE_MODELS[-1])
        if not self.SUMMARY_MODEL:
            object.__setattr__(self, "SUMMARY_MODEL", self.AVAILABLE_MODELS[0])

        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            raise ValueError("CHUNK_OVERLAP debe ser menor que CHUNK_SIZE")

        return self

    # =========================================================================
    # PROPIEDADES DE CONVENIENCIA
    # =========================================================================

    @property
    def is_local(self) -> bool:
        """True cuando se usa Ollama (costo $0)."""
        return self.LLM_PROVIDER.lower() == "ollama"

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


# =============================================================================
# INSTANCIA GLOBAL
# =============================================================================
config = AppConfig()

if config.OPENAI_API_KEY:
    os.environ.setdefault("OPENAI_API_KEY", config.OPENAI_API_KEY)

DEFAULT_MODEL: str = config.DEFAULT_MODEL
EMBEDDING_MODEL: str = config.EMBEDDING_MODEL
EMBEDDING_DIMS: int = config.EMBEDDING_DIMS


# =============================================================================
# PRICING REGISTRY
# En Ollama todos los costos son 0.
# =============================================================================

@dataclass(frozen=True)
class ModelPricing:
    """Costo en USD por 1 millón de tokens."""
    input_price: float
    output_price: float


MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4o":                    ModelPricing(2.50, 10.00),
    "gpt-4o-mini":               ModelPricing(0.15,  0.60),
    "text-embedding-3-small":    ModelPricing(0.02,  0.00),
    "text-embedding-3-large":    ModelPricing(0.13,  0.00),
    # Ollama: siempre $0
    "llama3.1:8b":               ModelPricing(0.00,  0.00),
    "nomic-embed-text":          ModelPricing(0.00,  0.00),
}
