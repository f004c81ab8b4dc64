"""
Escalation module for Groundline Support Bot.

Hands low-confidence conversations to human operators.
"""

from .manager import EscalationManager, OPEN_STATUSES

__all__ = ["EscalationManager", "OPEN_STATUSES"]
