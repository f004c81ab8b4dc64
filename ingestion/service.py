"""
Knowledge-base ingestion for Groundline Support Bot.

Turns a document into searchable knowledge for one organization:

1. Record the document (status ``processing``)
2. Chunk the text
3. Embed every chunk
4. Upsert the vectors into the org's namespace
5. Mark the document ``ready`` with its chunk count

Any failure after step 1 marks the document ``error`` and re-raises.
Vector ids are ``{doc_id}_{chunk_index}``, so a document can be removed
from the index again from its chunk count alone.
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Union

from pypdf import PdfReader

from database.models import DocumentStatus, KBDocument
from database.repositories import DocumentRepository
from database.session import session_scope

from .chunking import TextChunker

logger = logging.getLogger(__name__)

FILE_TYPES = {".pdf": "pdf", ".html": "html", ".htm": "html", ".csv": "csv"}

# Pinecone metadata values are capped, keep stored chunk text bounded
MAX_METADATA_TEXT = 4000


def vector_ids(doc_id: str, chunk_count: int) -> List[str]:
    return [f"{doc_id}_{i}" for i in range(chunk_count)]


def file_type_for(path: Union[str, Path]) -> str:
    return FILE_TYPES.get(Path(path).suffix.lower(), "text")


def load_text(path: Union[str, Path]) -> str:
    """Read a source file; PDFs are text-extracted page by page."""
    path = Path(path)
    if path.suffix.lower() == ".pdf":
        reader = PdfReader(str(path))
        pages = [page.extract_text() or "" for page in reader.pages]
        logger.info(f"Extracted {len(pages)} pages from {path.name}")
        return "\n\n".join(p.strip() for p in pages if p.strip())
    return path.read_text(encoding="utf-8")


class KnowledgeBaseIngestor:
    """Chunk, embed and index documents into an organization's namespace."""

    def __init__(self, session_factory, embedder, vector_store, chunker: Optional[TextChunker] = None):
        """
        Args:
            session_factory: Async session factory for document records
            embedder: ``EmbeddingService`` (needs ``embed_texts``)
            vector_store: ``PineconeClient`` (needs ``upsert`` and ``delete``)
            chunker: Text chunker (default 500 chars, 100 overlap)
        """
        self.session_factory = session_factory
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker()

    async def ingest_text(
        self,
        org_id: str,
        title: str,
        text: str,
        source_url: Optional[str] = None,
        file_type: str = "text",
    ) -> KBDocument:
        """Ingest raw text as one document; returns the stored record."""
        start = time.time()
        async with session_scope(self.session_factory) as session:
            doc = await DocumentRepository(session).create(
                org_id=org_id,
                title=title,
                source_url=source_url,
                file_type=file_type,
                status=DocumentStatus.PROCESSING.value,
            )
            doc_id = doc.id
        log_extra = {"org_id": org_id, "doc_id": doc_id}

        try:
            base_meta = {"doc_id": doc_id, "title": title}
            if source_url:
                base_meta["source_url"] = source_url
            chunks = self.chunker.chunk(text, base_meta)
            logger.info(f"Chunked '{title}' into {len(chunks)} chunks", extra=log_extra)

            embeddings = await self.embedder.embed_texts([c.content for c in chunks])
            ids = vector_ids(doc_id, len(chunks))
            vectors = [
                {
                    "id": ids[i],
                    "values": embeddings[i],
                    "metadata": {**chunk.metadata, "text": chunk.content[:MAX_METADATA_TEXT]},
                }
                for i, chunk in enumerate(chunks)
            ]
            await self.vector_store.upsert(org_id, vectors)

            async with session_scope(self.session_factory) as session:
                repo = DocumentRepository(session)
                await repo.set_status(doc_id, DocumentStatus.READY.value, chunk_count=len(chunks))
        except Exception:
            logger.exception(f"Ingestion failed for '{title}'", extra=log_extra)
            async with session_scope(self.session_factory) as session:
                await DocumentRepository(session).set_status(doc_id, DocumentStatus.ERROR.value)
            raise

        async with self.session_factory() as session:
            doc = await DocumentRepository(session).get_by_id(org_id, doc_id)
        logger.info(
            f"Document ingested: {len(chunks)} chunks in {(time.time() - start) * 1000:.0f}ms",
            extra=log_extra,
        )
        return doc

    async def ingest_file(
        self,
        org_id: str,
        path: Union[str, Path],
        title: Optional[str] = None,
        source_url: Optional[str] = None,
    ) -> KBDocument:
        path = Path(path)
        text = load_text(path)
        logger.info(f"Read {len(text)} characters from {path}")
        return await self.ingest_text(
            org_id,
            title or path.stem,
            text,
            source_url=source_url,
            file_type=file_type_for(path),
        )

    async def delete_document(self, org_id: str, doc_id: str) -> bool:
        """Remove a document's vectors and its record. False if unknown."""
        async with session_scope(self.session_factory) as session:
            repo = DocumentRepository(session)
            doc = await repo.get_by_id(org_id, doc_id)
            if doc is None:
                return False
            ids = vector_ids(doc_id, doc.chunk_count or 0)
            await self.vector_store.delete(org_id, ids)
            await repo.delete(doc)

        logger.info(f"Document deleted ({len(ids)} vectors)", extra={"org_id": org_id, "doc_id": doc_id})
        return True
