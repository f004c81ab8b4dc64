"""
Token budget trimmer.

Keeps the assembled context under a token ceiling by shrinking the
lowest-priority parts first. Retrieval results are never dropped, only
shortened.
"""

import json
import logging
import math
from dataclasses import asdict, replace
from typing import Optional

from .models import ChatContext

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
DEFAULT_MAX_TOKENS = 12000

HISTORY_MESSAGE_OVERHEAD = 50
RETRIEVAL_RESULT_OVERHEAD = 80
BOT_ANSWER_OVERHEAD = 50

KEEP_BOT_ANSWERS = 3
KEEP_HISTORY_FIRST = 10
KEEP_HISTORY_SECOND = 5
MAX_CHUNK_CHARS = 500


def _json_len(obj) -> int:
    return len(json.dumps(asdict(obj), default=str))


class TokenBudgetTrimmer:
    """
    Estimates context size in tokens and trims it to fit.

    Estimate is ``ceil(chars / 4)`` where chars sums every textual field
    plus a fixed per-item overhead.
    """

    def __init__(self, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.max_tokens = max_tokens

    def estimate_tokens(self, context: ChatContext) -> int:
        chars = 0
        for msg in context.conversation_history:
            chars += len(msg.text) + HISTORY_MESSAGE_OVERHEAD
        for result in context.retrieval_results:
            chars += len(result.chunk_text) + len(result.title) + RETRIEVAL_RESULT_OVERHEAD
        chars += _json_len(context.customer_profile)
        chars += _json_len(context.session_metadata)
        chars += _json_len(context.automation_config)
        for answer in context.previous_bot_answers:
            chars += len(answer.text) + BOT_ANSWER_OVERHEAD
        return math.ceil(chars / CHARS_PER_TOKEN)

    def trim(self, context: ChatContext, max_tokens: Optional[int] = None) -> ChatContext:
        """
        Return a context that fits ``max_tokens`` if the cascade can get there.

        Steps, stopping as soon as the estimate fits:
        1. previous bot answers -> 3 most recent
        2. history -> 10 most recent
        3. history -> 5 most recent
        4. every retrieval chunk -> first 500 chars

        If step 4 still does not fit, its result is returned as is.
        The input context is never modified.
        """
        budget = self.max_tokens if max_tokens is None else max_tokens
        total = self.estimate_tokens(context)
        if total <= budget:
            return context

        logger.info(f"Token budget exceeded ({total} > {budget}), trimming context")

        steps = (
            lambda c: c.replace(previous_bot_answers=c.previous_bot_answers[:KEEP_BOT_ANSWERS]),
            lambda c: c.replace(conversation_history=c.conversation_history[-KEEP_HISTORY_FIRST:]),
            lambda c: c.replace(conversation_history=c.conversation_history[-KEEP_HISTORY_SECOND:]),
            lambda c: c.replace(retrieval_results=[
                replace(r, chunk_text=r.chunk_text[:MAX_CHUNK_CHARS]) for r in c.retrieval_results
            ]),
        )
        trimmed = context
        for step in steps:
            trimmed = step(trimmed)
            total = self.estimate_tokens(trimmed)
            if total <= budget:
                break

        logger.info(f"Context trimmed to {total} tokens")
        return trimmed
