"""
Query embedding for the retrieval engine.

Embeds customer queries with OpenAI or Amazon Titan on Bedrock.
"""

import asyncio
import hashlib
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Titan input limit is ~8K tokens
_MAX_BEDROCK_CHARS = 25000


class QueryEmbeddingCache:
    """Bounded LRU of query text -> vector, keyed by normalized-text digest."""

    def __init__(self, maxsize: int = 2000):
        self.maxsize = maxsize
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha1(text.strip().lower().encode("utf-8")).hexdigest()

    def get(self, text: str) -> Optional[List[float]]:
        key = self._key(text)
        vector = self._entries.get(key)
        if vector is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def put(self, text: str, vector: List[float]) -> None:
        key = self._key(text)
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}


class EmbeddingProvider(Enum):
    OPENAI = "openai"
    BEDROCK_TITAN = "bedrock_titan"


@dataclass
class EmbeddingConfig:
    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    model_id: str = "text-embedding-3-small"
    aws_region: str = "us-east-1"
    openai_api_key: Optional[str] = None
    batch_size: int = 25


class EmbeddingService:
    """
    Turns query text into a vector.

    OpenAI calls go through ``AsyncOpenAI``; the boto3 Bedrock client is
    synchronous, so its calls are pushed onto a worker thread.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None, cache_size: int = 0):
        self.config = config or EmbeddingConfig()
        self._bedrock = None
        self._openai = None
        self._cache = QueryEmbeddingCache(cache_size) if cache_size > 0 else None

        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            import boto3
            self._bedrock = boto3.client("bedrock-runtime", region_name=self.config.aws_region)
            logger.info(f"Bedrock embedding client ready in {self.config.aws_region}")
        else:
            from openai import AsyncOpenAI
            self._openai = AsyncOpenAI(api_key=self.config.openai_api_key)
            logger.info(f"OpenAI embedding client ready ({self.config.model_id})")

    @property
    def cache(self) -> Optional[QueryEmbeddingCache]:
        return self._cache

    async def embed_text(self, text: str) -> List[float]:
        if self._cache:
            cached = self._cache.get(text)
            if cached is not None:
                return cached

        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            vector = await asyncio.to_thread(self._embed_bedrock, text)
        else:
            vector = await self._embed_openai(text)

        if self._cache:
            self._cache.put(text, vector)
        return vector

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts, in batches of ``config.batch_size``.

        Bypasses the query cache; used for document ingestion.
        """
        if not texts:
            return []

        embeddings = []
        for i in range(0, len(texts), self.config.batch_size):
            batch = texts[i:i + self.config.batch_size]
            if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
                # Titan takes one input per call
                vectors = await asyncio.gather(
                    *[asyncio.to_thread(self._embed_bedrock, text) for text in batch]
                )
            else:
                response = await self._openai.embeddings.create(model=self.config.model_id, input=batch)
                vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
            embeddings.extend(vectors)
            logger.debug(f"Embedded batch {i // self.config.batch_size + 1} ({len(batch)} texts)")
        return embeddings

    def _embed_bedrock(self, text: str) -> List[float]:
        response = self._bedrock.invoke_model(
            modelId=self.config.model_id,
            body=json.dumps({"inputText": text[:_MAX_BEDROCK_CHARS]}),
            contentType="application/json",
            accept="application/json",
        )
        body = json.loads(response["body"].read())
        vector = body["embedding"]
        logger.debug(f"Bedrock embedding dim={len(vector)}")
        return vector

    async def _embed_openai(self, text: str) -> List[float]:
        response = await self._openai.embeddings.create(model=self.config.model_id, input=text)
        vector = response.data[0].embedding
        logger.debug(f"OpenAI embedding dim={len(vector)}")
        return vector

    def get_dimension(self) -> int:
        """Get the embedding dimension for the current model."""
        dimensions = {
            "amazon.titan-embed-text-v2:0": 1024,
            "amazon.titan-embed-text-v1": 1536,
            "text-embedding-3-small": 1536,
            "text-embedding-3-large": 3072,
            "text-embedding-ada-002": 1536,
        }
        return dimensions.get(self.config.model_id, 1536)

    async def health_check(self) -> bool:
        try:
            return len(await self.embed_text("health check")) > 0
        except Exception as e:
            logger.warning(f"Embedding health check failed: {e}")
            return False


def create_embedding_service(settings) -> EmbeddingService:
    """Build the embedder matching the configured LLM provider."""
    if settings.is_bedrock:
        config = EmbeddingConfig(
            provider=EmbeddingProvider.BEDROCK_TITAN,
            model_id=settings.bedrock_embed_model_id,
            aws_region=settings.aws_region,
            batch_size=settings.embed_batch_size,
        )
    else:
        config = EmbeddingConfig(
            provider=EmbeddingProvider.OPENAI,
            model_id=settings.openai_embed_model,
            openai_api_key=settings.openai_api_key,
            batch_size=settings.embed_batch_size,
        )
    return EmbeddingService(config, cache_size=settings.embedding_cache_size)
