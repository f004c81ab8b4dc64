"""Shared fixtures for Groundline Support Bot tests."""

import asyncio
import os

import pytest

# Ensure we use test/mock settings
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("PINECONE_API_KEY", "")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "verify-me")

from database.session import build_engine, build_session_factory, create_tables  # noqa: E402


@pytest.fixture
def run_db():
    """
    Run ``scenario(session_factory)`` against a fresh in-memory database.

    Each call gets its own engine and event loop.
    """
    def runner(scenario):
        async def main():
            engine = build_engine("sqlite+aiosqlite://")
            await create_tables(engine)
            factory = build_session_factory(engine)
            try:
                return await scenario(factory)
            finally:
                await engine.dispose()
        return asyncio.run(main())
    return runner
