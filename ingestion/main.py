"""
Knowledge-base ingestion CLI.

Usage:
    python -m ingestion.main --org <org-id> --file docs/shipping.pdf
    python -m ingestion.main --org <org-id> --title "Returns" --text "Returns are free within 30 days." --url https://acme.test/returns
    python -m ingestion.main --org <org-id> --delete <doc-id>
"""

import argparse
import asyncio
import logging
import sys

from config.logging_setup import configure_logging
from config.settings import get_settings
from database.session import close_db, get_session_factory, init_db
from retrieval.embedder import create_embedding_service
from retrieval.pinecone_client import create_pinecone_client

from .chunking import TextChunker
from .service import KnowledgeBaseIngestor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Groundline knowledge-base ingestion")
    parser.add_argument("--org", required=True, help="Organization id")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Text, HTML, CSV or PDF file to ingest")
    source.add_argument("--text", help="Inline text to ingest")
    source.add_argument("--delete", metavar="DOC_ID", help="Remove a document and its vectors")
    parser.add_argument("--title", help="Document title (defaults to the file name)")
    parser.add_argument("--url", help="Source URL shown in citations")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


async def run(args) -> int:
    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL not set")
        return 1
    if not settings.pinecone_api_key:
        logger.error("PINECONE_API_KEY not set")
        return 1

    await init_db(settings.database_url)
    try:
        embedder = create_embedding_service(settings)
        ingestor = KnowledgeBaseIngestor(
            get_session_factory(),
            embedder,
            create_pinecone_client(settings, embedder.get_dimension()),
            TextChunker(settings.chunk_size, settings.chunk_overlap),
        )

        if args.delete:
            if not await ingestor.delete_document(args.org, args.delete):
                logger.error(f"Document {args.delete} not found for org {args.org}")
                return 1
            logger.info(f"Deleted document {args.delete}")
            return 0

        if args.file:
            doc = await ingestor.ingest_file(args.org, args.file, title=args.title, source_url=args.url)
        else:
            if not args.title:
                logger.error("--title is required with --text")
                return 1
            doc = await ingestor.ingest_text(args.org, args.title, args.text, source_url=args.url)

        logger.info(f"Document ingested: id={doc.id} chunks={doc.chunk_count}")
        return 0
    finally:
        await close_db()


def main():
    args = build_parser().parse_args()
    configure_logging(args.log_level)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
