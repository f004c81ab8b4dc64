"""
Context assembler: builds the ChatContext for one LLM call.

Five independent storage reads (history, customer profile, session
metadata, automation config, previous bot answers) run concurrently,
each on its own database session. A failed read is logged and replaced
with its default so the other four still land.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import List, Optional

from database.models import utcnow
from database.repositories import (
    AutomationRepository,
    ChannelSessionRepository,
    CustomerRepository,
    MessageRepository,
)

from .business_hours import is_within_business_hours
from .models import (
    AutomationConfig,
    BotAnswer,
    ChatContext,
    ContextMessage,
    CustomerProfile,
    OrgSettings,
    RetrievalResult,
    SessionMetadata,
)

logger = logging.getLogger(__name__)

MAX_PREVIOUS_BOT_ANSWERS = 10


class ContextAssembler:
    """Gathers everything the prompt needs besides the retrieval results."""

    def __init__(self, session_factory, default_fallback_message: Optional[str] = None):
        self.session_factory = session_factory
        self.default_fallback_message = default_fallback_message

    async def assemble(
        self,
        conversation_id: str,
        customer_id: str,
        org_id: str,
        session_id: Optional[str],
        retrieval_results: List[RetrievalResult],
        org_settings: OrgSettings,
    ) -> ChatContext:
        start = time.time()

        fetches = [
            self._history(conversation_id, org_settings.max_context_messages, org_settings.max_context_days),
            self._customer_profile(customer_id),
            self._session_metadata(session_id, org_id, org_settings),
            self._automation_config(org_id),
            self._previous_bot_answers(conversation_id),
        ]
        defaults = [
            [],
            CustomerProfile.unknown(customer_id),
            SessionMetadata(session_id=session_id, org_id=org_id),
            self._default_automation(),
            [],
        ]
        names = ["history", "customer_profile", "session_metadata", "automation_config", "bot_answers"]

        results = await asyncio.gather(*fetches, return_exceptions=True)
        resolved = []
        for name, result, default in zip(names, results, defaults):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Context fetch '{name}' failed, using default: {result}",
                    extra={"org_id": org_id, "conversation_id": conversation_id},
                )
                resolved.append(default)
            else:
                resolved.append(result)
        history, profile, session_meta, automation, bot_answers = resolved

        latency_ms = (time.time() - start) * 1000
        logger.info(
            f"Context assembled: {len(history)} history, {len(retrieval_results)} sources, "
            f"{len(bot_answers)} bot answers ({latency_ms:.0f}ms)",
            extra={"org_id": org_id, "conversation_id": conversation_id, "latency_ms": latency_ms},
        )

        return ChatContext(
            conversation_history=history,
            customer_profile=profile,
            session_metadata=session_meta,
            automation_config=automation,
            retrieval_results=list(retrieval_results),
            previous_bot_answers=bot_answers,
        )

    async def _history(self, conversation_id: str, max_messages: int, max_days: int) -> List[ContextMessage]:
        since = utcnow() - timedelta(days=max_days)
        async with self.session_factory() as session:
            rows = await MessageRepository(session).get_history(conversation_id, max_messages, since)
        return [
            ContextMessage(
                id=m.id,
                timestamp=m.timestamp,
                direction=m.direction,
                sender_role=m.sender_role,
                text=m.text or "",
                media=m.media_meta,
                linked_doc_ids=list(m.linked_doc_ids or []),
            )
            for m in rows
        ]

    async def _customer_profile(self, customer_id: str) -> CustomerProfile:
        async with self.session_factory() as session:
            customer = await CustomerRepository(session).get_by_id(customer_id)
        if customer is None:
            return CustomerProfile.unknown(customer_id)
        return CustomerProfile(
            customer_id=customer.id,
            phone_number=customer.phone_number,
            name=customer.name,
            first_seen_at=customer.first_seen_at,
            order_count=customer.order_count or 0,
            tags=list(customer.tags or []),
            last_order_summary=customer.last_order_summary,
        )

    async def _session_metadata(
        self, session_id: Optional[str], org_id: str, org_settings: OrgSettings
    ) -> SessionMetadata:
        flag = is_within_business_hours(org_settings.business_hours)
        channel = None
        if session_id:
            async with self.session_factory() as session:
                channel = await ChannelSessionRepository(session).get_by_id(session_id)
        if channel is None:
            return SessionMetadata(session_id=session_id, org_id=org_id, business_hours_flag=flag)
        return SessionMetadata(
            session_id=channel.id,
            org_id=channel.org_id,
            whatsapp_phone=channel.phone_number,
            session_status=channel.status,
            business_hours_flag=flag,
        )

    def _default_automation(self) -> AutomationConfig:
        if self.default_fallback_message:
            return AutomationConfig(fallback_message=self.default_fallback_message)
        return AutomationConfig()

    async def _automation_config(self, org_id: str) -> AutomationConfig:
        async with self.session_factory() as session:
            automation = await AutomationRepository(session).get_by_org(org_id)
        if automation is None:
            return self._default_automation()
        return AutomationConfig(
            scope=automation.scope,
            fallback_message=automation.fallback_message,
            escalation_rules=list(automation.escalation_rules or []),
        )

    async def _previous_bot_answers(self, conversation_id: str) -> List[BotAnswer]:
        async with self.session_factory() as session:
            rows = await MessageRepository(session).get_recent_bot_messages(
                conversation_id, limit=MAX_PREVIOUS_BOT_ANSWERS
            )
        return [
            BotAnswer(
                message_id=m.id,
                text=m.text or "",
                timestamp=m.timestamp,
                confidence=m.llm_confidence,
                # Confirmation tracking not implemented yet
                customer_confirmed=False,
            )
            for m in rows
        ]
