"""
Retrieval engine: embed, search, filter, enrich, score.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from context.models import RetrievalResult
from database.repositories import DocumentRepository
from llm.errors import RetrievalError

logger = logging.getLogger(__name__)

MAX_SCORE_WEIGHT = 0.6
AVG_SCORE_WEIGHT = 0.4
WEAK_MATCH_PENALTY = 0.5


@dataclass
class RetrievalOutcome:
    results: List[RetrievalResult] = field(default_factory=list)
    aggregate_confidence: float = 0.0
    latency_ms: float = 0.0

    @classmethod
    def empty(cls) -> "RetrievalOutcome":
        return cls()


def compute_aggregate_confidence(scores: Sequence[float], threshold: float) -> float:
    """
    Summarize how well the top-K hits support an answer.

    ``0.6 * max + 0.4 * mean`` over the unfiltered scores, halved when even
    the best hit is below ``threshold``, clamped to [0, 1]. No scores gives 0.
    """
    if not scores:
        return 0.0
    best = max(scores)
    mean = sum(scores) / len(scores)
    confidence = MAX_SCORE_WEIGHT * best + AVG_SCORE_WEIGHT * mean
    if best < threshold:
        confidence *= WEAK_MATCH_PENALTY
    return max(0.0, min(1.0, confidence))


class RetrievalEngine:
    """
    Ground a query in one organization's documents.

    Args:
        embedder: Object with ``async embed_text(text) -> List[float]``
        vector_store: Object with ``async search(org_id, embedding, top_k)``
        session_factory: Async session factory for document enrichment
    """

    def __init__(self, embedder, vector_store, session_factory=None):
        self.embedder = embedder
        self.vector_store = vector_store
        self.session_factory = session_factory

    async def retrieve(
        self,
        org_id: str,
        query_text: str,
        top_k: int,
        similarity_threshold: float,
    ) -> RetrievalOutcome:
        start = time.time()
        try:
            embedding = await self.embedder.embed_text(query_text)
            hits = await self.vector_store.search(org_id, embedding, top_k)
        except Exception as e:
            raise RetrievalError(f"Retrieval failed for org {org_id}: {e}") from e

        if not hits:
            logger.info(f"No vector matches for org {org_id}", extra={"org_id": org_id})
            return RetrievalOutcome(latency_ms=(time.time() - start) * 1000)

        confidence = compute_aggregate_confidence([h.score for h in hits], similarity_threshold)
        kept = sorted(
            (h for h in hits if h.score >= similarity_threshold),
            key=lambda h: h.score,
            reverse=True,
        )
        results = await self._enrich(org_id, kept)

        latency_ms = (time.time() - start) * 1000
        logger.info(
            f"Retrieved {len(results)}/{len(hits)} chunks above {similarity_threshold} "
            f"(confidence={confidence:.3f}, {latency_ms:.0f}ms)",
            extra={"org_id": org_id, "latency_ms": latency_ms, "confidence": confidence},
        )
        return RetrievalOutcome(results=results, aggregate_confidence=confidence, latency_ms=latency_ms)

    async def _enrich(self, org_id: str, hits) -> List[RetrievalResult]:
        if not hits:
            return []
        documents = {}
        if self.session_factory is not None:
            try:
                async with self.session_factory() as session:
                    documents = await DocumentRepository(session).get_many(
                        org_id, [h.doc_id for h in hits]
                    )
            except Exception as e:
                logger.warning(f"Document enrichment failed, using vector metadata: {e}")

        results = []
        for hit in hits:
            doc_id = hit.doc_id or hit.id
            doc = documents.get(doc_id)
            results.append(RetrievalResult(
                doc_id=doc_id,
                title=doc.title if doc else (hit.title or "Unknown"),
                chunk_text=hit.text,
                score=hit.score,
                source_url=doc.source_url if doc else hit.metadata.get("source_url"),
            ))
        return results

    async def health_check(self) -> Optional[bool]:
        check = getattr(self.vector_store, "health_check", None)
        if check is None:
            return None
        return await check()
