"""
Repository classes for Groundline Support Bot data access layer.

Each repository encapsulates reads and writes for a specific model.
Customer and conversation resolution use dialect-level
INSERT ... ON CONFLICT DO NOTHING so concurrent messages for the same
phone cannot create duplicate rows.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, update, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Organization, ChannelSession, Customer, Conversation, Message,
    KBDocument, Automation, Escalation,
    ConversationStatus, EscalationStatus, Direction, SenderRole,
    OPEN_CONVERSATION_STATUSES, utcnow,
)

logger = logging.getLogger(__name__)

_OPEN_WHERE = "status IN ('active', 'escalated')"
_EXTERNAL_ID_WHERE = text("external_id IS NOT NULL")


async def _insert_ignore(
    session: AsyncSession,
    model,
    values: Dict[str, Any],
    index_elements: List[str],
    index_where=None,
) -> None:
    """Insert a row unless it collides with the given unique index."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise RuntimeError(f"Atomic upsert not supported on dialect '{dialect}'")
    stmt = stmt.values(**values).on_conflict_do_nothing(
        index_elements=index_elements, index_where=index_where,
    )
    await session.execute(stmt)


class OrganizationRepository:
    """Data access for organizations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, org_id: str) -> Optional[Organization]:
        result = await self.session.execute(
            select(Organization).where(Organization.id == org_id)
        )
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> Organization:
        org = Organization(**kwargs)
        self.session.add(org)
        await self.session.flush()
        return org


class ChannelSessionRepository:
    """Data access for per-organization channel sessions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, session_id: str) -> Optional[ChannelSession]:
        result = await self.session.execute(
            select(ChannelSession).where(ChannelSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_by_org(self, org_id: str) -> Optional[ChannelSession]:
        result = await self.session.execute(
            select(ChannelSession).where(ChannelSession.org_id == org_id)
        )
        return result.scalar_one_or_none()

    async def get_by_phone_number_id(self, phone_number_id: str) -> Optional[ChannelSession]:
        result = await self.session.execute(
            select(ChannelSession).where(ChannelSession.phone_number_id == phone_number_id)
        )
        return result.scalar_one_or_none()

    async def list_with_phone_number_id(self) -> List[ChannelSession]:
        result = await self.session.execute(
            select(ChannelSession).where(ChannelSession.phone_number_id.isnot(None))
        )
        return list(result.scalars().all())

    async def upsert_for_org(self, org_id: str, **kwargs) -> ChannelSession:
        existing = await self.get_by_org(org_id)
        if existing:
            for k, v in kwargs.items():
                if hasattr(existing, k):
                    setattr(existing, k, v)
            await self.session.flush()
            return existing
        channel = ChannelSession(org_id=org_id, **kwargs)
        self.session.add(channel)
        await self.session.flush()
        return channel


class CustomerRepository:
    """Data access for customers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, customer_id: str) -> Optional[Customer]:
        result = await self.session.execute(
            select(Customer).where(Customer.id == customer_id)
        )
        return result.scalar_one_or_none()

    async def get_by_phone(self, org_id: str, phone_number: str) -> Optional[Customer]:
        result = await self.session.execute(
            select(Customer).where(
                Customer.org_id == org_id, Customer.phone_number == phone_number
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self, org_id: str, phone_number: str, name: Optional[str] = None
    ) -> Customer:
        await _insert_ignore(
            self.session,
            Customer,
            {"org_id": org_id, "phone_number": phone_number, "name": name},
            index_elements=["org_id", "phone_number"],
        )
        customer = await self.get_by_phone(org_id, phone_number)
        if customer is None:
            raise RuntimeError(f"Customer {phone_number} vanished after upsert")
        return customer


class ConversationRepository:
    """Data access for conversations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def get_open(self, org_id: str, customer_id: str) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation)
            .where(
                Conversation.org_id == org_id,
                Conversation.customer_id == customer_id,
                Conversation.status.in_(OPEN_CONVERSATION_STATUSES),
            )
            .order_by(Conversation.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_or_create_open(
        self, org_id: str, customer_id: str, session_id: Optional[str] = None
    ) -> Conversation:
        conv = await self.get_open(org_id, customer_id)
        if conv:
            return conv
        now = utcnow()
        await _insert_ignore(
            self.session,
            Conversation,
            {
                "org_id": org_id,
                "customer_id": customer_id,
                "session_id": session_id,
                "status": ConversationStatus.ACTIVE.value,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["org_id", "customer_id"],
            index_where=text(_OPEN_WHERE),
        )
        conv = await self.get_open(org_id, customer_id)
        if conv is None:
            raise RuntimeError(f"Open conversation for customer {customer_id} vanished after upsert")
        return conv

    async def set_status(self, conversation_id: str, status: str) -> None:
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(status=status, updated_at=utcnow())
        )
        await self.session.flush()

    async def touch(self, conversation_id: str) -> None:
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=utcnow())
        )


class MessageRepository:
    """Append-only access to conversation messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, **kwargs) -> Message:
        msg = Message(**kwargs)
        self.session.add(msg)
        await self.session.flush()
        await ConversationRepository(self.session).touch(msg.conversation_id)
        return msg

    async def get_by_id(self, message_id: str) -> Optional[Message]:
        result = await self.session.execute(
            select(Message).where(Message.id == message_id)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, org_id: str, external_id: str) -> Optional[Message]:
        result = await self.session.execute(
            select(Message).where(Message.org_id == org_id, Message.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def add_inbound(
        self,
        conversation_id: str,
        org_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
        media_meta: Optional[Dict] = None,
        external_id: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Record a customer message.

        With ``external_id`` the insert is atomic against the
        (org_id, external_id) index; returns None when that transport
        message was already recorded.
        """
        values = {
            "conversation_id": conversation_id,
            "org_id": org_id,
            "timestamp": timestamp or utcnow(),
            "direction": Direction.INBOUND.value,
            "sender_role": SenderRole.CUSTOMER.value,
            "text": text,
            "media_meta": media_meta,
            "linked_doc_ids": [],
        }
        if not external_id:
            return await self._add(**values)

        message_id = str(uuid.uuid4())
        await _insert_ignore(
            self.session,
            Message,
            {**values, "id": message_id, "external_id": external_id, "created_at": utcnow()},
            index_elements=["org_id", "external_id"],
            index_where=_EXTERNAL_ID_WHERE,
        )
        msg = await self.get_by_id(message_id)
        if msg is None:
            logger.info(f"Transport message {external_id} already recorded for org {org_id}")
            return None
        await ConversationRepository(self.session).touch(conversation_id)
        return msg

    async def add_bot(
        self,
        conversation_id: str,
        org_id: str,
        text: str,
        llm_confidence: Optional[float] = None,
        linked_doc_ids: Optional[List[str]] = None,
    ) -> Message:
        return await self._add(
            conversation_id=conversation_id,
            org_id=org_id,
            timestamp=utcnow(),
            direction=Direction.OUTBOUND.value,
            sender_role=SenderRole.BOT.value,
            text=text,
            linked_doc_ids=list(linked_doc_ids or []),
            llm_confidence=llm_confidence,
        )

    async def get_history(
        self, conversation_id: str, max_messages: int, since: datetime
    ) -> List[Message]:
        """Newest ``max_messages`` messages at or after ``since``, oldest first."""
        result = await self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.timestamp >= since)
            .order_by(Message.timestamp.desc(), Message.created_at.desc())
            .limit(max_messages)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return rows

    async def get_recent_bot_messages(
        self, conversation_id: str, limit: int = 10
    ) -> List[Message]:
        result = await self.session.execute(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_role == SenderRole.BOT.value,
            )
            .order_by(Message.timestamp.desc(), Message.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class AutomationRepository:
    """Data access for per-organization automation config."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_org(self, org_id: str) -> Optional[Automation]:
        result = await self.session.execute(
            select(Automation).where(Automation.org_id == org_id)
        )
        return result.scalar_one_or_none()


class DocumentRepository:
    """Data access for knowledge-base document records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> KBDocument:
        doc = KBDocument(**kwargs)
        self.session.add(doc)
        await self.session.flush()
        return doc

    async def get_by_id(self, org_id: str, doc_id: str) -> Optional[KBDocument]:
        result = await self.session.execute(
            select(KBDocument).where(KBDocument.org_id == org_id, KBDocument.id == doc_id)
        )
        return result.scalar_one_or_none()

    async def set_status(self, doc_id: str, status: str, chunk_count: Optional[int] = None) -> None:
        values = {"status": status, "updated_at": utcnow()}
        if chunk_count is not None:
            values["chunk_count"] = chunk_count
        await self.session.execute(
            update(KBDocument).where(KBDocument.id == doc_id).values(**values)
        )
        await self.session.flush()

    async def delete(self, doc: KBDocument) -> None:
        await self.session.delete(doc)
        await self.session.flush()

    async def get_many(self, org_id: str, doc_ids: Iterable[str]) -> Dict[str, KBDocument]:
        ids = list({d for d in doc_ids if d})
        if not ids:
            return {}
        result = await self.session.execute(
            select(KBDocument).where(KBDocument.org_id == org_id, KBDocument.id.in_(ids))
        )
        return {doc.id: doc for doc in result.scalars().all()}


class EscalationRepository:
    """Data access for escalation tickets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Escalation:
        esc = Escalation(**kwargs)
        self.session.add(esc)
        await self.session.flush()
        return esc

    async def get_by_id(self, escalation_id: str) -> Optional[Escalation]:
        result = await self.session.execute(
            select(Escalation).where(Escalation.id == escalation_id)
        )
        return result.scalar_one_or_none()

    async def update_status(self, escalation: Escalation, status: str, **kwargs) -> Escalation:
        escalation.status = status
        for k, v in kwargs.items():
            setattr(escalation, k, v)
        escalation.updated_at = utcnow()
        await self.session.flush()
        return escalation

    async def list_open(self, org_id: str, limit: int = 100) -> List[Escalation]:
        result = await self.session.execute(
            select(Escalation)
            .where(
                Escalation.org_id == org_id,
                Escalation.status.in_([
                    EscalationStatus.PENDING.value,
                    EscalationStatus.ASSIGNED.value,
                    EscalationStatus.IN_PROGRESS.value,
                ]),
            )
            .order_by(Escalation.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self, org_id: str, resolved_since: datetime) -> Dict[str, int]:
        result = await self.session.execute(
            select(Escalation.status, func.count(Escalation.id))
            .where(Escalation.org_id == org_id)
            .group_by(Escalation.status)
        )
        counts = {status: count for status, count in result.all()}

        resolved = await self.session.execute(
            select(func.count(Escalation.id)).where(
                Escalation.org_id == org_id,
                Escalation.status == EscalationStatus.RESOLVED.value,
                Escalation.resolved_at >= resolved_since,
            )
        )
        return {
            "pending": counts.get(EscalationStatus.PENDING.value, 0),
            "in_progress": counts.get(EscalationStatus.IN_PROGRESS.value, 0)
            + counts.get(EscalationStatus.ASSIGNED.value, 0),
            "resolved_today": resolved.scalar() or 0,
        }
