"""
Knowledge-base ingestion: chunk, embed and index documents per organization.
"""

from .chunking import Chunk, TextChunker
from .service import KnowledgeBaseIngestor, load_text, vector_ids

__all__ = [
    "Chunk",
    "TextChunker",
    "KnowledgeBaseIngestor",
    "load_text",
    "vector_ids",
]
