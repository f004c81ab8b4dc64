"""
Text chunking for knowledge-base ingestion.

Splits a document into overlapping character windows, preferring to end
each window on a sentence or line boundary.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """Represents a text chunk."""
    content: str
    index: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class TextChunker:
    """
    Fixed-size chunking with overlap.

    A window of ``chunk_size`` characters is cut back to the last ``.`` or
    newline inside it, provided that boundary lies past the window's
    midpoint. The next window starts ``overlap`` characters before the
    previous one ended.
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 100):
        """
        Initialize the chunker.

        Args:
            chunk_size: Target size for each chunk in characters
            overlap: Characters shared by consecutive chunks
        """
        if chunk_size <= 0 or not 0 <= overlap < chunk_size:
            raise ValueError(f"Invalid chunking window: size={chunk_size}, overlap={overlap}")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """Split text into chunks; whitespace-only pieces are dropped."""
        text = text or ""
        pieces = []
        start = 0

        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            chunk_end = end

            # Try to break at a sentence or line boundary
            if end < len(text):
                break_point = max(text.rfind(".", 0, end + 1), text.rfind("\n", 0, end + 1))
                if break_point > start + self.chunk_size * 0.5:
                    chunk_end = break_point + 1

            pieces.append(text[start:chunk_end].strip())
            if chunk_end >= len(text):
                break
            next_start = chunk_end - self.overlap
            # An early boundary plus a wide overlap must still move forward
            start = next_start if next_start > start else chunk_end

        pieces = [p for p in pieces if p]
        return [
            Chunk(content=piece, index=i, metadata={"chunk_index": i, **(metadata or {})})
            for i, piece in enumerate(pieces)
        ]
