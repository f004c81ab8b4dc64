"""
LLM Orchestration Module for Groundline Support Bot.

This module handles:
- LLM provider abstraction (Bedrock, OpenAI)
- Prompt rendering
- Confidence and citation extraction
- The inbound message pipeline (``llm.orchestrator``)
"""

from .errors import (
    EscalationCreateError,
    LLMCallError,
    OrganizationNotFoundError,
    RetrievalError,
    TransportNotReadyError,
    TransportSendError,
)
from .prompt_templates import PromptTemplates

__all__ = [
    "EscalationCreateError",
    "LLMCallError",
    "OrganizationNotFoundError",
    "RetrievalError",
    "TransportNotReadyError",
    "TransportSendError",
    "PromptTemplates",
]
