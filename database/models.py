"""
SQLAlchemy ORM models for Groundline Support Bot.

All persistent entities: organizations, channel sessions, customers,
conversations, messages, knowledge-base documents, automations, escalations.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, ForeignKey,
    JSON, Index, text as sql_text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


OPEN_CONVERSATION_STATUSES = (ConversationStatus.ACTIVE.value, ConversationStatus.ESCALATED.value)


class EscalationStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    # Reserved: no operation transitions into this state yet.
    DISMISSED = "dismissed"


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    QR_PENDING = "qr_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class AutomationScope(str, Enum):
    ALL = "all"
    REPEAT = "repeat"
    CUSTOM = "custom"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SenderRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    BOT = "bot"


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "orgs"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ChannelSession(Base):
    """One messaging-channel session per organization."""
    __tablename__ = "channel_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, unique=True)
    phone_number = Column(String(20), nullable=True)
    phone_number_id = Column(String(64), nullable=True, unique=True)  # WhatsApp Cloud API id
    status = Column(String(20), default=SessionStatus.INITIALIZING.value)
    last_active_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False)
    phone_number = Column(String(32), nullable=False)
    name = Column(String(255), nullable=True)
    first_seen_at = Column(DateTime, default=utcnow)
    order_count = Column(Integer, default=0)
    tags = Column(JSON, default=list)
    last_order_summary = Column(Text, nullable=True)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("uq_customer_org_phone", "org_id", "phone_number", unique=True),
    )


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(36), ForeignKey("channel_sessions.id"), nullable=True)
    status = Column(String(20), nullable=False, default=ConversationStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        # At most one open conversation per (org, customer)
        Index(
            "uq_conversation_open",
            "org_id",
            "customer_id",
            unique=True,
            postgresql_where=sql_text("status IN ('active', 'escalated')"),
            sqlite_where=sql_text("status IN ('active', 'escalated')"),
        ),
        Index("ix_conv_customer_updated", "customer_id", "updated_at"),
    )


class Message(Base):
    """Append-only record of every inbound and outbound turn."""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    external_id = Column(String(128), nullable=True)  # transport message id, inbound only
    direction = Column(String(10), nullable=False)
    sender_role = Column(String(10), nullable=False)
    text = Column(Text, nullable=False, default="")
    media_meta = Column(JSON, nullable=True)
    linked_doc_ids = Column(JSON, default=list)
    llm_confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_conv_ts", "conversation_id", "timestamp"),
        # Redelivered webhooks carry the same transport id
        Index(
            "uq_messages_org_external",
            "org_id",
            "external_id",
            unique=True,
            postgresql_where=sql_text("external_id IS NOT NULL"),
            sqlite_where=sql_text("external_id IS NOT NULL"),
        ),
    )


class KBDocument(Base):
    __tablename__ = "kb_documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    source_url = Column(Text, nullable=True)
    file_type = Column(String(10), default="text")  # pdf, html, csv, text
    status = Column(String(20), default=DocumentStatus.PROCESSING.value)
    chunk_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Automation(Base):
    __tablename__ = "automations"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, unique=True)
    scope = Column(String(10), nullable=False, default=AutomationScope.ALL.value)
    enabled = Column(Boolean, default=True)
    fallback_message = Column(Text, nullable=False)
    escalation_rules = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Escalation(Base):
    __tablename__ = "escalations"

    id = Column(String(36), primary_key=True, default=_uuid)
    org_id = Column(String(36), ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=EscalationStatus.PENDING.value)
    assigned_to = Column(String(255), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_escalation_org_status", "org_id", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "conversation_id": self.conversation_id,
            "customer_id": self.customer_id,
            "reason": self.reason,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
