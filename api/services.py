"""
Service initialization and dependency injection for Groundline Support Bot API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Optional

from config.settings import get_settings, Settings
from context.assembler import ContextAssembler
from context.token_budget import TokenBudgetTrimmer
from database.repositories import ChannelSessionRepository
from database.session import get_session_factory, session_scope
from escalation.manager import EscalationManager
from llm.orchestrator import MessagePipeline
from llm.providers import LLMProvider, create_llm_provider
from retrieval.embedder import EmbeddingService, create_embedding_service
from retrieval.engine import RetrievalEngine
from retrieval.pinecone_client import PineconeClient, create_pinecone_client

from .channels.registry import EVENT_MESSAGE, SessionRegistry
from .channels.whatsapp import WhatsAppCloudTransport

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.session_factory = None
        self.embedding_service: Optional[EmbeddingService] = None
        self.pinecone_client: Optional[PineconeClient] = None
        self.retrieval_engine: Optional[RetrievalEngine] = None
        self.context_assembler: Optional[ContextAssembler] = None
        self.trimmer: Optional[TokenBudgetTrimmer] = None
        self.llm_provider: Optional[LLMProvider] = None
        self.escalation_manager: Optional[EscalationManager] = None
        self.registry: Optional[SessionRegistry] = None
        self.pipeline: Optional[MessagePipeline] = None
        self._initialized = False

    def initialize(self, settings: Optional[Settings] = None, session_factory=None):
        """Initialize all services."""
        if self._initialized:
            return

        self.settings = settings or get_settings()
        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        try:
            self.session_factory = session_factory or get_session_factory()
            self._init_storage_services()
            self._init_embedding()
            self._init_pinecone()
            self._init_llm()
            self._init_pipeline()
            self._initialized = True
            logger.info("All services initialized successfully")
        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            # Allow API to start even if some services fail
            self._initialized = True
            logger.warning("API starting in degraded mode")

    def _init_storage_services(self):
        """Services that only need the database."""
        s = self.settings
        self.registry = SessionRegistry(self.session_factory)
        self.escalation_manager = EscalationManager(self.session_factory)
        self.context_assembler = ContextAssembler(
            self.session_factory, default_fallback_message=s.default_fallback_message
        )
        self.trimmer = TokenBudgetTrimmer(max_tokens=s.context_max_tokens)

    def _init_embedding(self):
        """Initialize embedding service."""
        self.embedding_service = create_embedding_service(self.settings)
        logger.info(f"Embedding service ready: {self.embedding_service.config.provider.value}")

    def _init_pinecone(self):
        """Initialize Pinecone client."""
        if not self.settings.pinecone_api_key:
            logger.warning("PINECONE_API_KEY not set, vector search disabled")
            return

        self.pinecone_client = create_pinecone_client(
            self.settings, dimension=self.embedding_service.get_dimension()
        )
        self.retrieval_engine = RetrievalEngine(
            self.embedding_service, self.pinecone_client, session_factory=self.session_factory
        )
        logger.info("Pinecone client ready")

    def _init_llm(self):
        self.llm_provider = create_llm_provider(self.settings)
        logger.info(f"LLM provider ready: {self.settings.llm_model_id}")

    def _init_pipeline(self):
        """Initialize the message pipeline."""
        if self.retrieval_engine is None:
            logger.warning("Retrieval engine unavailable, message pipeline disabled")
            return

        self.pipeline = MessagePipeline(
            session_factory=self.session_factory,
            retrieval_engine=self.retrieval_engine,
            context_assembler=self.context_assembler,
            trimmer=self.trimmer,
            llm_provider=self.llm_provider,
            escalation_manager=self.escalation_manager,
            session_registry=self.registry,
            settings=self.settings,
        )
        self.registry.subscribe(EVENT_MESSAGE, self.pipeline.handle_inbound)
        logger.info("Message pipeline ready")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.pipeline is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "database": self.session_factory is not None,
            "embedding": self.embedding_service is not None,
            "pinecone": self.pinecone_client is not None,
            "llm": self.llm_provider is not None,
            "pipeline": self.pipeline is not None,
            "sessions": self.registry.active_sessions() if self.registry else [],
        }

    async def org_id_for_phone_number_id(self, phone_number_id: str) -> Optional[str]:
        async with session_scope(self.session_factory) as session:
            channel = await ChannelSessionRepository(session).get_by_phone_number_id(phone_number_id)
        return channel.org_id if channel else None

    async def start_channels(self) -> int:
        """Start a WhatsApp transport for every stored channel session."""
        if self.registry is None or not self.settings.whatsapp_api_token:
            logger.warning("WhatsApp transport not configured, replies will not be delivered")
            return 0

        async with session_scope(self.session_factory) as session:
            channels = await ChannelSessionRepository(session).list_with_phone_number_id()

        started = 0
        for channel in channels:
            transport = WhatsAppCloudTransport(self.settings.whatsapp_api_token, channel.phone_number_id)
            try:
                await self.registry.create(channel.org_id, transport)
                started += 1
            except Exception as e:
                logger.error(f"Could not start channel for org {channel.org_id}: {e}")
        logger.info(f"Started {started} channel session(s)")
        return started

    async def shutdown(self):
        if self.registry is not None:
            await self.registry.close()


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services(settings: Optional[Settings] = None, session_factory=None):
    """Initialize all services (called at startup)."""
    _services.initialize(settings, session_factory)


def reset_services():
    """Drop the global instance; used by tests."""
    global _services
    _services = Services()
