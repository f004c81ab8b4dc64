"""
OpenAI LLM Provider.
"""

import logging
import time
from typing import Optional

from openai import AsyncOpenAI

from ..errors import LLMCallError
from .base import LLMProvider, LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat-completions provider.

    Confidence and citations are parsed from the reply footer.
    """

    name = "openai"
    DEFAULT_MODEL = "gpt-4o"

    def __init__(self, api_key: Optional[str] = None, model_id: str = DEFAULT_MODEL, client=None):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model_id: Model ID
            client: Pre-built ``AsyncOpenAI`` client (tests)
        """
        self._client = client or (AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI())
        self.model_id = model_id
        logger.info(f"OpenAI provider initialized: {model_id}")

    async def chat(self, request: LLMRequest) -> LLMResponse:
        start = time.time()
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)

        try:
            completion = await self._client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except Exception as e:
            logger.error(f"OpenAI LLM call failed: {e}")
            raise LLMCallError(f"OpenAI call failed: {e}") from e

        text = (completion.choices[0].message.content or "") if completion.choices else ""
        usage = completion.usage
        latency_ms = (time.time() - start) * 1000
        logger.info(f"OpenAI call completed: {self.model_id} ({latency_ms:.0f}ms)", extra={"latency_ms": latency_ms})

        return LLMResponse.from_text(
            text.strip(),
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
            raw_response=completion,
        )

    async def health_check(self) -> bool:
        try:
            result = await self._client.chat.completions.create(
                model=self.model_id,
                messages=[{"role": "user", "content": "Reply OK"}],
                max_tokens=5,
            )
            return bool(result.choices and result.choices[0].message.content)
        except Exception as e:
            logger.warning(f"OpenAI health check failed: {e}")
            return False
