"""
Context module for Groundline Support Bot.

- Per-request context shapes
- Concurrent context assembly from storage
- Business-hours evaluation
- Token budget trimming
"""

from .models import (
    AutomationConfig,
    BotAnswer,
    BusinessHoursConfig,
    ChatContext,
    ContextMessage,
    CustomerProfile,
    OrgSettings,
    RetrievalResult,
    SessionMetadata,
)
from .business_hours import is_within_business_hours
from .token_budget import TokenBudgetTrimmer

__all__ = [
    "AutomationConfig",
    "BotAnswer",
    "BusinessHoursConfig",
    "ChatContext",
    "ContextMessage",
    "CustomerProfile",
    "OrgSettings",
    "RetrievalResult",
    "SessionMetadata",
    "is_within_business_hours",
    "TokenBudgetTrimmer",
]
