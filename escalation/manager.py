"""
Escalation manager for Groundline Support Bot.

Owns the escalation lifecycle and the matching conversation status:

    pending -> assigned -> in_progress -> resolved
    pending -> in_progress -> resolved

Creating an escalation moves the conversation to ``escalated`` (the bot
goes quiet); resolving it moves the conversation back to ``active``.
``dismissed`` is a reserved status that no operation produces.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from database.models import ConversationStatus, Escalation, EscalationStatus, utcnow
from database.repositories import ConversationRepository, EscalationRepository
from database.session import session_scope
from llm.errors import EscalationCreateError

logger = logging.getLogger(__name__)

OPEN_STATUSES = frozenset({
    EscalationStatus.PENDING.value,
    EscalationStatus.ASSIGNED.value,
    EscalationStatus.IN_PROGRESS.value,
})


class EscalationManager:
    """Creates and transitions escalation tickets."""

    def __init__(self, session_factory, on_created=None):
        """
        Args:
            session_factory: Async session factory
            on_created: Optional callback ``(escalation) -> None`` run after commit
        """
        self.session_factory = session_factory
        self.on_created = on_created

    async def create(self, org_id: str, conversation_id: str, customer_id: str, reason: str) -> Escalation:
        try:
            async with session_scope(self.session_factory) as session:
                escalation = await EscalationRepository(session).create(
                    org_id=org_id,
                    conversation_id=conversation_id,
                    customer_id=customer_id,
                    reason=reason,
                    status=EscalationStatus.PENDING.value,
                )
                await ConversationRepository(session).set_status(
                    conversation_id, ConversationStatus.ESCALATED.value
                )
        except Exception as e:
            raise EscalationCreateError(
                f"Failed to create escalation for conversation {conversation_id}: {e}"
            ) from e

        logger.info(
            f"Escalation created: {escalation.id} ({reason})",
            extra={"org_id": org_id, "conversation_id": conversation_id, "escalation_id": escalation.id},
        )
        if self.on_created:
            try:
                self.on_created(escalation)
            except Exception:
                logger.exception("Escalation created hook failed")
        return escalation

    async def _transition(
        self,
        escalation_id: str,
        status: str,
        allowed_from: frozenset,
        **fields,
    ) -> Optional[Escalation]:
        async with session_scope(self.session_factory) as session:
            repo = EscalationRepository(session)
            escalation = await repo.get_by_id(escalation_id)
            if escalation is None:
                return None
            if escalation.status not in allowed_from:
                logger.warning(
                    f"Escalation {escalation_id} cannot move {escalation.status} -> {status}",
                    extra={"escalation_id": escalation_id},
                )
                return escalation
            await repo.update_status(escalation, status, **fields)
            if status == EscalationStatus.RESOLVED.value:
                await ConversationRepository(session).set_status(
                    escalation.conversation_id, ConversationStatus.ACTIVE.value
                )
        logger.info(f"Escalation {escalation_id} -> {status}", extra={"escalation_id": escalation_id})
        return escalation

    async def assign(self, escalation_id: str, operator: str) -> Optional[Escalation]:
        return await self._transition(
            escalation_id,
            EscalationStatus.ASSIGNED.value,
            frozenset({EscalationStatus.PENDING.value}),
            assigned_to=operator,
        )

    async def takeover(self, escalation_id: str, operator: str) -> Optional[Escalation]:
        """Operator takes the chat; None if the escalation does not exist."""
        return await self._transition(
            escalation_id, EscalationStatus.IN_PROGRESS.value, OPEN_STATUSES, assigned_to=operator,
        )

    async def resolve(self, escalation_id: str) -> Optional[Escalation]:
        """Close the ticket and hand the conversation back to the bot."""
        async with session_scope(self.session_factory) as session:
            existing = await EscalationRepository(session).get_by_id(escalation_id)
            if existing is not None and existing.status == EscalationStatus.RESOLVED.value:
                return existing
        return await self._transition(
            escalation_id, EscalationStatus.RESOLVED.value, OPEN_STATUSES, resolved_at=utcnow(),
        )

    async def get(self, escalation_id: str) -> Optional[Escalation]:
        async with self.session_factory() as session:
            return await EscalationRepository(session).get_by_id(escalation_id)

    async def list_open(self, org_id: str) -> List[Escalation]:
        async with self.session_factory() as session:
            return await EscalationRepository(session).list_open(org_id)

    async def stats(self, org_id: str) -> Dict[str, int]:
        async with self.session_factory() as session:
            return await EscalationRepository(session).count_by_status(
                org_id, resolved_since=utcnow() - timedelta(days=1)
            )
