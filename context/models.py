"""
Per-request context shapes.

A ``ChatContext`` is assembled for one inbound message and thrown away
afterwards. All of these are plain dataclasses; the trimmer builds
modified copies with ``dataclasses.replace`` instead of mutating.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config.settings import DEFAULT_FALLBACK_MESSAGE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextMessage:
    id: str
    timestamp: datetime
    direction: str  # inbound | outbound
    sender_role: str  # customer | agent | bot
    text: str
    media: Optional[Dict[str, Any]] = None
    linked_doc_ids: List[str] = field(default_factory=list)


@dataclass
class CustomerProfile:
    customer_id: str
    phone_number: str
    name: Optional[str] = None
    first_seen_at: Optional[datetime] = None
    order_count: int = 0
    tags: List[str] = field(default_factory=list)
    last_order_summary: Optional[str] = None

    @classmethod
    def unknown(cls, customer_id: str) -> "CustomerProfile":
        return cls(
            customer_id=customer_id,
            phone_number="unknown",
            first_seen_at=datetime.now(timezone.utc).replace(tzinfo=None),
        )


@dataclass
class SessionMetadata:
    session_id: Optional[str]
    org_id: str
    whatsapp_phone: Optional[str] = None
    session_status: str = "disconnected"
    business_hours_flag: bool = True


@dataclass
class AutomationConfig:
    scope: str = "all"
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    escalation_rules: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class RetrievalResult:
    doc_id: str
    title: str
    chunk_text: str
    score: float
    source_url: Optional[str] = None


@dataclass(frozen=True)
class BotAnswer:
    message_id: str
    text: str
    timestamp: datetime
    confidence: Optional[float] = None
    customer_confirmed: bool = False


@dataclass
class ChatContext:
    conversation_history: List[ContextMessage]
    customer_profile: CustomerProfile
    session_metadata: SessionMetadata
    automation_config: AutomationConfig
    retrieval_results: List[RetrievalResult] = field(default_factory=list)
    previous_bot_answers: List[BotAnswer] = field(default_factory=list)

    def replace(self, **changes) -> "ChatContext":
        return replace(self, **changes)


def _setting(data: Dict[str, Any], key: str, cast, default):
    """Read one numeric setting; null or malformed values fall back to ``default``."""
    value = data.get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed org setting {key}={value!r}")
        return default


@dataclass
class BusinessHoursConfig:
    enabled: bool = False
    timezone: str = "UTC"
    schedule: Dict[str, Optional[Dict[str, str]]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BusinessHoursConfig":
        if not isinstance(data, dict):
            data = {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            timezone=data.get("timezone") or "UTC",
            schedule=dict(data["schedule"]) if isinstance(data.get("schedule"), dict) else {},
        )


@dataclass
class OrgSettings:
    """Organization-level knobs read from ``Organization.settings``."""
    rag_top_k: int = 4
    similarity_threshold: float = 0.75
    confidence_threshold: float = 0.7
    max_context_messages: int = 50
    max_context_days: int = 7
    max_context_tokens: int = 12000
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    business_hours: BusinessHoursConfig = field(default_factory=BusinessHoursConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], defaults=None) -> "OrgSettings":
        """
        Build from an org's settings JSON.

        Args:
            data: Raw settings dict (may be None or partial)
            defaults: Optional ``Settings`` supplying app-wide fallbacks
        """
        if not isinstance(data, dict):
            data = {}
        base = cls()
        if defaults is not None:
            base = cls(
                rag_top_k=defaults.rag_top_k,
                similarity_threshold=defaults.rag_similarity_threshold,
                confidence_threshold=defaults.llm_confidence_threshold,
                max_context_messages=defaults.context_max_messages,
                max_context_days=defaults.context_max_days,
                max_context_tokens=defaults.context_max_tokens,
                fallback_message=defaults.default_fallback_message,
            )
        return cls(
            rag_top_k=_setting(data, "rag_top_k", int, base.rag_top_k),
            similarity_threshold=_setting(data, "similarity_threshold", float, base.similarity_threshold),
            confidence_threshold=_setting(data, "confidence_threshold", float, base.confidence_threshold),
            max_context_messages=_setting(data, "max_context_messages", int, base.max_context_messages),
            max_context_days=_setting(data, "max_context_days", int, base.max_context_days),
            max_context_tokens=_setting(data, "max_context_tokens", int, base.max_context_tokens),
            fallback_message=data.get("fallback_message") or base.fallback_message,
            business_hours=BusinessHoursConfig.from_dict(data.get("business_hours")),
        )
