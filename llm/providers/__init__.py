"""
LLM Provider implementations.
"""

from .base import LLMMessage, LLMProvider, LLMRequest, LLMResponse, LLMUsage


def create_llm_provider(settings) -> LLMProvider:
    """Build the provider named by ``settings.llm_provider``."""
    if settings.is_bedrock:
        from .bedrock import BedrockProvider
        return BedrockProvider(model_id=settings.bedrock_llm_model_id, region=settings.aws_region)
    if settings.is_openai:
        from .openai_provider import OpenAIProvider
        return OpenAIProvider(api_key=settings.openai_api_key, model_id=settings.openai_llm_model)
    raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")


__all__ = [
    "LLMMessage",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "create_llm_provider",
]
