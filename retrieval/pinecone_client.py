"""
Pinecone vector store client.

Each organization's chunks live in their own namespace (``org-{org_id}``).
The Pinecone SDK is synchronous; every call is run on a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pinecone import Pinecone, ServerlessSpec

logger = logging.getLogger(__name__)


@dataclass
class VectorHit:
    """One nearest-neighbour match from the vector store."""
    id: str
    score: float
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def doc_id(self) -> Optional[str]:
        return self.metadata.get("doc_id") or self.metadata.get("docId")

    @property
    def title(self) -> Optional[str]:
        return self.metadata.get("title")


@dataclass
class PineconeConfig:
    api_key: str
    index_name: str = "groundline-kb"
    dimension: int = 1536
    metric: str = "cosine"
    cloud: str = "aws"
    region: str = "us-east-1"


def org_namespace(org_id: str) -> str:
    return f"org-{org_id}"


class PineconeClient:
    """Search, upsert and delete against the shared knowledge-base index."""

    def __init__(self, config: PineconeConfig):
        self.config = config
        self._client = Pinecone(api_key=config.api_key)

        existing = [idx.name for idx in self._client.list_indexes()]
        if config.index_name not in existing:
            logger.info(f"Creating Pinecone index: {config.index_name}")
            self._client.create_index(
                name=config.index_name,
                dimension=config.dimension,
                metric=config.metric,
                spec=ServerlessSpec(cloud=config.cloud, region=config.region),
            )
        self._index = self._client.Index(config.index_name)
        logger.info(f"Using Pinecone index: {config.index_name}")

    async def search(self, org_id: str, embedding: List[float], top_k: int) -> List[VectorHit]:
        """
        k-nearest-neighbour search within one organization's namespace.

        Args:
            org_id: Organization whose namespace is searched
            embedding: Query vector
            top_k: Number of matches to return

        Returns:
            Matches ordered by descending similarity
        """
        response = await asyncio.to_thread(
            self._index.query,
            vector=embedding,
            top_k=top_k,
            namespace=org_namespace(org_id),
            include_metadata=True,
        )
        hits = []
        for match in response.matches:
            metadata = dict(match.metadata or {})
            hits.append(VectorHit(
                id=match.id,
                score=float(match.score),
                text=metadata.get("text", ""),
                metadata=metadata,
            ))
        logger.debug(f"Pinecone returned {len(hits)} matches for org {org_id}")
        return hits

    async def upsert(self, org_id: str, vectors: List[Dict[str, Any]], batch_size: int = 100) -> int:
        """Upsert ``{id, values, metadata}`` dicts into the org namespace."""
        if not vectors:
            return 0
        namespace = org_namespace(org_id)
        rows = [(v["id"], v["values"], v.get("metadata", {})) for v in vectors]
        for i in range(0, len(rows), batch_size):
            await asyncio.to_thread(self._index.upsert, vectors=rows[i:i + batch_size], namespace=namespace)
        logger.info(f"Upserted {len(rows)} vectors to namespace '{namespace}'")
        return len(rows)

    async def delete(self, org_id: str, ids: List[str]) -> None:
        """Delete the given vector ids from the org namespace."""
        namespace = org_namespace(org_id)
        if ids:
            await asyncio.to_thread(self._index.delete, ids=ids, namespace=namespace)
            logger.info(f"Deleted {len(ids)} vectors from namespace '{namespace}'")

    async def health_check(self) -> bool:
        try:
            stats = await asyncio.to_thread(self._index.describe_index_stats)
            return stats is not None
        except Exception as e:
            logger.warning(f"Pinecone health check failed: {e}")
            return False


def create_pinecone_client(settings, dimension: int) -> PineconeClient:
    return PineconeClient(PineconeConfig(
        api_key=settings.pinecone_api_key,
        index_name=settings.pinecone_index_name,
        dimension=dimension,
        cloud=settings.pinecone_cloud,
        region=settings.pinecone_region,
    ))
