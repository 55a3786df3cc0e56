"""
Abstracción de fuente de documentos.
El pipeline de ingesta no sabe de dónde vienen los archivos
(upload del admin, directorio local, ...).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional


@dataclass
class UploadedFile:
    """
    Un archivo listo para ingestar: bytes crudos + lo que el cliente declaró.
    """
    filename: str                       # ej: 'menu_cena.pdf'
    content: bytes
    mime_type: Optional[str] = None     # 'text/plain' | 'application/pdf' | ...
    source_id: Optional[str] = None     # ruta local, id en la fuente original
    metadata: dict = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)


class DocumentSource(ABC):
    """
    Interface para fuentes de documentos.

    Implementaciones:
    - LocalFileSource: archivos .txt / .pdf de un directorio local
    """

    @abstractmethod
    async def list_documents(self) -> list[UploadedFile]:
        """Retorna todos los documentos disponibles en la fuente."""
        ...

    async def iter_documents(self) -> AsyncIterator[UploadedFile]:
        """Itera documentos uno a uno. Por defecto llama a list_documents()."""
        for doc in await self.list_documents():
            yield doc

    @abstractmethod
    def source_name(self) -> str:
        """Nombre descriptivo de la fuente para logs."""
        ...
