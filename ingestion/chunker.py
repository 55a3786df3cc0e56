from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class TextChunk:
    index: int
    content: str
    start_char: int
    end_char: int

    @property
    def metadata(self) -> Dict[str, Any]:
        return {"start_char": self.start_char, "end_char": self.end_char}


class FixedWindowChunker:
    """
    Fixed-size character windows with overlap.

    Window *i* covers ``[i * step, i * step + chunk_size)`` clipped to the text
    length, where ``step = chunk_size - chunk_overlap``. Splitting stops at the
    first window that reaches the end of the text, so a 2500-char text with the
    defaults yields ``[0,1000) [800,1800) [1600,2500)``.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @property
    def step(self) -> int:
        return self.chunk_size - self.chunk_overlap

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def split(self, text: str) -> List[TextChunk]:
        chunks: List[TextChunk] = []
        length = len(text)
        start = 0

        while start < length:
            end = min(start + self.chunk_size, length)
            chunks.append(TextChunk(len(chunks), text[start:end], start, end))
            if end == length:
                break
            start += self.step

        return chunks

    def expected_count(self, length: int) -> int:
        """Number of windows :meth:`split` produces for a text of *length* chars."""
        if length <= 0:
            return 0
        if length <= self.chunk_size:
            return 1
        return 1 + -(-(length - self.chunk_size) // self.step)
