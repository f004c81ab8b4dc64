"""
Provider-neutral LLM request/response types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..response_parser import parse_citations, parse_confidence


@dataclass
class LLMMessage:
    role: str  # user | assistant
    content: str


@dataclass
class LLMRequest:
    system_prompt: str
    messages: List[LLMMessage]
    temperature: float = 0.2
    max_tokens: int = 2048


@dataclass
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    content: str
    confidence: float
    citations: List[str] = field(default_factory=list)
    usage: LLMUsage = field(default_factory=LLMUsage)
    raw_response: Optional[Any] = None

    @classmethod
    def from_text(cls, text: str, usage: Optional[LLMUsage] = None, raw_response=None) -> "LLMResponse":
        return cls(
            content=text,
            confidence=parse_confidence(text),
            citations=parse_citations(text),
            usage=usage or LLMUsage(),
            raw_response=raw_response,
        )


class LLMProvider(ABC):
    """Chat-completion backend."""

    name: str = "base"

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse:
        """Run one completion; raise ``LLMCallError`` on failure."""

    @abstractmethod
    async def health_check(self) -> bool:
        ...
