"""
Retrieval module for Groundline Support Bot.

- Query embedding (OpenAI / Bedrock Titan)
- Pinecone vector search, one namespace per organization
- Threshold filtering, document enrichment and aggregate confidence
"""

from .embedder import EmbeddingService, EmbeddingProvider, create_embedding_service
from .pinecone_client import PineconeClient, VectorHit, create_pinecone_client
from .engine import RetrievalEngine, RetrievalOutcome, compute_aggregate_confidence

__all__ = [
    "EmbeddingService",
    "EmbeddingProvider",
    "create_embedding_service",
    "PineconeClient",
    "VectorHit",
    "create_pinecone_client",
    "RetrievalEngine",
    "RetrievalOutcome",
    "compute_aggregate_confidence",
]
