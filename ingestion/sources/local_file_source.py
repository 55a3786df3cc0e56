"""
Carga inicial de la base de conocimiento desde un directorio local
(menús, contratos de proveedores, itinerarios...).
"""
import logging
from pathlib import Path
from typing import List, Optional

from ingestion.extractors import SUPPORTED_TYPES
from ingestion.sources.base import DocumentSource, UploadedFile

logger = logging.getLogger(__name__)


class LocalFileSource(DocumentSource):
    """
    Uso:
        source = LocalFileSource("knowledge_base", recursive=True)
        async for upload in source.iter_documents():
            await pipeline.process_document(upload, uploader_id)

    Solo .txt / .pdf; ocultos (".foo") y el resto se saltean con un debug.
    """

    def __init__(self, directory: str, recursive: bool = False, max_files: int = 0):
        self.directory = Path(directory)
        self.recursive = recursive
        self.max_files = max_files

    def _candidates(self) -> List[Path]:
        pattern = "**/*" if self.recursive else "*"
        paths = []
        for path in sorted(self.directory.glob(pattern)):
            if not path.is_file() or path.name.startswith("."):
                continue
            if path.suffix.lower() not in SUPPORTED_TYPES:
                logger.debug("Skipping unsupported file %s", path.name)
                continue
            paths.append(path)
        if self.max_files:
            paths = paths[:self.max_files]
        return paths

    async def list_documents(self) -> list[UploadedFile]:
        if not self.directory.is_dir():
            logger.error("Directory not found: %s", self.directory)
            return []

        uploads: List[UploadedFile] = []
        for path in self._candidates():
            try:
                content = path.read_bytes()
            except OSError:
                logger.exception("Could not read %s", path)
                continue
            uploads.append(UploadedFile(
                filename=path.name,
                content=content,
                mime_type=SUPPORTED_TYPES[path.suffix.lower()],
                source_id=str(path.resolve()),
                metadata={"local_path": str(path)},
            ))

        if not uploads:
            logger.warning("No .txt/.pdf files found in '%s'", self.directory)
        else:
            logger.info("LocalFileSource: %d file(s) in '%s'", len(uploads), self.directory)
        return uploads

    def source_name(self) -> str:
        return f"local:{self.directory}"
