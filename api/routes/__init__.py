"""
API Routes for Groundline Support Bot.
"""

from . import escalations, retrieval, webhooks

__all__ = ["escalations", "retrieval", "webhooks"]
