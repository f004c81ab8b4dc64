"""
Retrieval debugging route for Groundline Support Bot.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from llm.errors import RetrievalError
from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/dev")


class RagTestRequest(BaseModel):
    org_id: str
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


@router.post("/rag-test")
async def rag_test(request: RagTestRequest):
    """Run retrieval for a query and return what the bot would see."""
    services = get_services()
    if services.retrieval_engine is None:
        raise HTTPException(status_code=503, detail="Retrieval engine unavailable")

    settings = services.settings
    top_k = request.top_k or settings.rag_top_k
    threshold = (
        request.similarity_threshold
        if request.similarity_threshold is not None
        else settings.rag_similarity_threshold
    )

    try:
        outcome = await services.retrieval_engine.retrieve(request.org_id, request.query, top_k, threshold)
    except RetrievalError as e:
        logger.error(f"rag-test retrieval failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "query": request.query,
        "aggregate_confidence": round(outcome.aggregate_confidence, 4),
        "latency_ms": round(outcome.latency_ms, 1),
        "results": [
            {
                "doc_id": r.doc_id,
                "title": r.title,
                "score": round(r.score, 4),
                "source_url": r.source_url,
                "chunk_text": r.chunk_text,
            }
            for r in outcome.results
        ],
    }
