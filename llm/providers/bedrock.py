"""
AWS Bedrock LLM Provider.
"""

import asyncio
import json
import logging
import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import LLMCallError
from .base import LLMProvider, LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class BedrockProvider(LLMProvider):
    """
    Claude on AWS Bedrock.

    boto3 is synchronous, so ``invoke_model`` runs on a worker thread.
    """

    name = "bedrock"
    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(self, model_id: str = DEFAULT_MODEL, region: str = "us-east-1", client=None):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
            client: Pre-built ``bedrock-runtime`` client (tests)
        """
        self.model_id = model_id
        self.region = region
        self._client = client or boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    def _invoke(self, body: dict) -> dict:
        response = self._client.invoke_model(
            modelId=self.model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())

    async def chat(self, request: LLMRequest) -> LLMResponse:
        start = time.time()
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": request.system_prompt,
            "messages": [
                {"role": m.role, "content": [{"type": "text", "text": m.content}]}
                for m in request.messages
            ],
        }

        try:
            payload = await asyncio.to_thread(self._invoke, body)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bedrock API error: {e}")
            raise LLMCallError(f"Bedrock call failed: {e}") from e
        except Exception as e:
            logger.error(f"Bedrock generation failed: {e}")
            raise LLMCallError(f"Bedrock call failed: {e}") from e

        blocks = payload.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text").strip()
        if not text:
            logger.warning("Empty response from Bedrock")

        raw_usage = payload.get("usage") or {}
        prompt_tokens = raw_usage.get("input_tokens", 0)
        completion_tokens = raw_usage.get("output_tokens", 0)
        latency_ms = (time.time() - start) * 1000
        logger.info(f"Bedrock call completed: {self.model_id} ({latency_ms:.0f}ms)", extra={"latency_ms": latency_ms})

        return LLMResponse.from_text(
            text,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            raw_response=payload,
        )

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._invoke, {
                "anthropic_version": "bedrock-2023-05-31",
                "max_tokens": 5,
                "messages": [{"role": "user", "content": [{"type": "text", "text": "Reply OK"}]}],
            })
            return True
        except Exception as e:
            logger.warning(f"Bedrock health check failed: {e}")
            return False
