"""
Message pipeline for Groundline Support Bot.

Handles every inbound customer message end to end:

1. Load the organization and its settings (unknown org: abort)
2. Resolve or create the customer
3. Resolve or create the open conversation
4. Persist the inbound message (always, before anything can fail);
   a transport message id seen before ends processing here
5. Stay silent if a human has taken over the conversation
6. Retrieve grounding documents
7. Assemble context
8. Trim context to the token budget
9. Render prompts
10. Call the LLM, even when retrieval found nothing
11. Reply, or send the fallback and escalate when confidence is low
12. Log latency and token usage

Steps 1-4 commit in one transaction. Anything that fails after that is
caught at the top level; the inbound message is never lost.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from api.channels.base import InboundMessage
from api.middleware import metrics
from config.settings import Settings, get_settings
from context.models import OrgSettings
from database.models import ConversationStatus
from database.repositories import (
    ChannelSessionRepository,
    ConversationRepository,
    CustomerRepository,
    MessageRepository,
    OrganizationRepository,
)
from database.session import session_scope
from retrieval.engine import RetrievalOutcome

from .errors import OrganizationNotFoundError, RetrievalError, TransportNotReadyError, TransportSendError
from .prompt_templates import PromptTemplates
from .response_parser import resolve_citations, strip_footer

logger = logging.getLogger(__name__)

# Stored on fallback messages regardless of what the LLM reported
FALLBACK_CONFIDENCE = 0.1

PHONE_SUFFIXES = ("@c.us", "@s.whatsapp.net")


class Outcome:
    REPLIED = "replied"
    ESCALATED = "escalated"
    MUTED = "muted"
    DUPLICATE = "duplicate"
    DROPPED = "dropped"
    ORG_MISSING = "org_missing"


def normalize_phone(raw: str) -> str:
    """Strip transport suffixes (``@c.us``, ``@s.whatsapp.net``) and whitespace."""
    phone = (raw or "").strip()
    for suffix in PHONE_SUFFIXES:
        phone = phone.replace(suffix, "")
    return phone.strip()


def _message_time(epoch_seconds: Optional[int]) -> datetime:
    if epoch_seconds:
        return datetime.fromtimestamp(int(epoch_seconds), tz=timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class PipelineResult:
    """What happened to one inbound message."""
    outcome: str
    org_id: str
    customer_id: Optional[str] = None
    conversation_id: Optional[str] = None
    inbound_message_id: Optional[str] = None
    reply_message_id: Optional[str] = None
    escalation_id: Optional[str] = None
    confidence: Optional[float] = None
    linked_doc_ids: List[str] = field(default_factory=list)
    delivered: bool = False
    latency_ms: float = 0.0
    error: Optional[str] = None


class MessagePipeline:
    """
    Orchestrates the message-response pipeline.

    All collaborators are injected so each can be replaced in tests.
    """

    def __init__(
        self,
        session_factory,
        retrieval_engine,
        context_assembler,
        trimmer,
        llm_provider,
        escalation_manager,
        session_registry,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            session_factory: Async session factory for storage
            retrieval_engine: ``RetrievalEngine``
            context_assembler: ``ContextAssembler``
            trimmer: ``TokenBudgetTrimmer``
            llm_provider: ``LLMProvider``
            escalation_manager: ``EscalationManager``
            session_registry: ``SessionRegistry`` supplying transports
            settings: App settings (defaults from the environment)
        """
        self.session_factory = session_factory
        self.retrieval_engine = retrieval_engine
        self.context_assembler = context_assembler
        self.trimmer = trimmer
        self.llm_provider = llm_provider
        self.escalation_manager = escalation_manager
        self.session_registry = session_registry
        self.settings = settings or get_settings()

    async def handle_inbound(self, org_id: str, message: InboundMessage) -> PipelineResult:
        """Process one inbound message. Never raises."""
        start = time.time()
        result = PipelineResult(outcome=Outcome.DROPPED, org_id=org_id)
        log_extra = {"org_id": org_id, "message_id": message.id}

        try:
            await self._process(org_id, message, result)
        except OrganizationNotFoundError as e:
            result.outcome = Outcome.ORG_MISSING
            result.error = str(e)
            logger.error(f"Org not found, message ignored: {org_id}", extra=log_extra)
        except Exception as e:
            result.outcome = Outcome.DROPPED
            result.error = str(e)
            logger.exception(
                "Message pipeline error",
                extra={**log_extra, "conversation_id": result.conversation_id},
            )

        result.latency_ms = (time.time() - start) * 1000
        metrics.record_outcome(result.outcome, result.latency_ms / 1000)
        return result

    async def _process(self, org_id: str, message: InboundMessage, result: PipelineResult) -> None:
        log_extra = {"org_id": org_id, "message_id": message.id}

        # Steps 1-4: one transaction, committed before any external call
        async with session_scope(self.session_factory) as session:
            org = await OrganizationRepository(session).get_by_id(org_id)
            if org is None:
                raise OrganizationNotFoundError(org_id)
            org_name = org.name
            org_settings = OrgSettings.from_dict(org.settings, self.settings)

            messages = MessageRepository(session)
            if message.id and await messages.get_by_external_id(org_id, message.id):
                logger.info("Transport message already handled, ignoring redelivery", extra=log_extra)
                result.outcome = Outcome.DUPLICATE
                return

            customer = await CustomerRepository(session).get_or_create(
                org_id, normalize_phone(message.sender), name=message.sender_name
            )

            session_id = self.session_registry.get_session_id(org_id) if self.session_registry else None
            if session_id is None:
                channel = await ChannelSessionRepository(session).get_by_org(org_id)
                session_id = channel.id if channel else None

            conversation = await ConversationRepository(session).get_or_create_open(
                org_id, customer.id, session_id=session_id
            )
            inbound = await messages.add_inbound(
                conversation.id,
                org_id,
                message.body,
                timestamp=_message_time(message.timestamp),
                media_meta=message.media_meta(),
                external_id=message.id or None,
            )
            if inbound is None:
                # Lost a race with a concurrent delivery of the same message
                result.outcome = Outcome.DUPLICATE
                return
            result.customer_id = customer.id
            result.conversation_id = conversation.id
            result.inbound_message_id = inbound.id
            conversation_status = conversation.status
            conversation_session_id = conversation.session_id

        log_extra["conversation_id"] = result.conversation_id

        # Step 5
        if conversation_status == ConversationStatus.ESCALATED.value:
            logger.info("Conversation is escalated, skipping bot response", extra=log_extra)
            result.outcome = Outcome.MUTED
            return

        # Step 6
        try:
            retrieval = await self.retrieval_engine.retrieve(
                org_id, message.body, org_settings.rag_top_k, org_settings.similarity_threshold
            )
        except RetrievalError as e:
            logger.warning(f"Retrieval failed, continuing without documents: {e}", extra=log_extra)
            retrieval = RetrievalOutcome.empty()
        metrics.record_retrieval_latency(retrieval.latency_ms / 1000)

        # Steps 7-9
        context = await self.context_assembler.assemble(
            conversation_id=result.conversation_id,
            customer_id=result.customer_id,
            org_id=org_id,
            session_id=conversation_session_id,
            retrieval_results=retrieval.results,
            org_settings=org_settings,
        )
        context = self.trimmer.trim(context, org_settings.max_context_tokens)
        request = PromptTemplates.build_llm_request(
            org_name,
            message.body,
            context,
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )

        # Step 10
        logger.info(
            f"Calling LLM (retrieval confidence={retrieval.aggregate_confidence:.3f}, "
            f"{len(retrieval.results)} sources)",
            extra=log_extra,
        )
        llm_start = time.time()
        response = await self.llm_provider.chat(request)
        metrics.record_llm_call(
            time.time() - llm_start, response.usage.prompt_tokens, response.usage.completion_tokens
        )
        confidence = max(0.0, min(1.0, response.confidence))
        result.confidence = confidence

        # Step 11
        if confidence < org_settings.confidence_threshold:
            logger.info(f"Low LLM confidence ({confidence}), escalating", extra=log_extra)
            await self._fallback_and_escalate(org_id, message, result, org_settings.fallback_message, confidence)
        else:
            await self._reply(org_id, message, result, response, retrieval)

        # Step 12
        logger.info(
            f"Message pipeline completed: {result.outcome} "
            f"(confidence={confidence:.2f}, citations={response.citations}, "
            f"tokens={response.usage.total_tokens})",
            extra={**log_extra, "outcome": result.outcome, "confidence": confidence,
                   "tokens_used": response.usage.total_tokens},
        )

    async def _reply(self, org_id, message, result, response, retrieval) -> None:
        linked_doc_ids = resolve_citations(response.citations, retrieval.results)
        text = strip_footer(response.content) or response.content

        async with session_scope(self.session_factory) as session:
            bot = await MessageRepository(session).add_bot(
                result.conversation_id,
                org_id,
                text,
                llm_confidence=result.confidence,
                linked_doc_ids=linked_doc_ids,
            )
        result.reply_message_id = bot.id
        result.linked_doc_ids = linked_doc_ids
        result.outcome = Outcome.REPLIED
        result.delivered = await self._send(org_id, message.sender, text)

    async def _fallback_and_escalate(self, org_id, message, result, fallback_text: str, confidence: float) -> None:
        async with session_scope(self.session_factory) as session:
            bot = await MessageRepository(session).add_bot(
                result.conversation_id,
                org_id,
                fallback_text,
                llm_confidence=FALLBACK_CONFIDENCE,
                linked_doc_ids=[],
            )
        result.reply_message_id = bot.id
        result.delivered = await self._send(org_id, message.sender, fallback_text)

        escalation = await self.escalation_manager.create(
            org_id,
            result.conversation_id,
            result.customer_id,
            f"LLM confidence too low: {confidence}",
        )
        metrics.record_escalation()
        result.escalation_id = escalation.id
        result.outcome = Outcome.ESCALATED

    async def _send(self, org_id: str, to: str, text: str) -> bool:
        """Deliver via the org's transport; failures are logged, not raised."""
        transport = self.session_registry.get_transport(org_id) if self.session_registry else None
        if transport is None:
            logger.warning(f"No transport registered for org {org_id}, reply not sent", extra={"org_id": org_id})
            return False
        try:
            await transport.send_message(to, text)
            return True
        except (TransportNotReadyError, TransportSendError) as e:
            logger.error(f"Reply delivery failed: {e}", extra={"org_id": org_id})
            return False
