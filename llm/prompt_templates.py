"""
Prompt templates for Groundline Support Bot.

Renders the grounding system prompt and the context-laden user prompt.
Rendering is deterministic: the same query and context always produce
byte-identical prompts (fixed timestamp format, no locale lookups).
"""

from datetime import datetime
from typing import List, Optional

from context.models import BotAnswer, ChatContext, ContextMessage, CustomerProfile, RetrievalResult

from .providers.base import LLMMessage, LLMRequest

SECTION_DIVIDER = "\n\n---\n\n"
BOT_ANSWER_PREVIEW_CHARS = 200

INSUFFICIENT_SOURCES_REPLY = (
    "I don't have enough information in our documents to answer that accurately. "
    "Would you like me to connect you with a human agent?"
)
OUT_OF_SCOPE_REPLY = (
    "I can only answer questions based on our company's documentation. "
    "Would you like to know something else?"
)

ROLE_LABELS = {
    "customer": "🧑 Customer",
    "agent": "👤 Agent",
    "bot": "🤖 Bot",
}


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.strftime("%Y-%m-%d %H:%M UTC")


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    return value.strftime("%Y-%m-%d")


class PromptTemplates:
    """
    Builds the prompts sent to the LLM.

    The system prompt is a fixed rule set enforcing grounding, citation
    and the machine-readable footer; the user prompt carries sources,
    history, profile, session, automation and prior bot answers.
    """

    SYSTEM_PROMPT = """You are a customer support assistant for {org_name}. You help customers by answering their questions accurately and helpfully.

## CRITICAL RULES (FOLLOW THESE WITHOUT EXCEPTION):

1. **For factual questions about company policies, products, orders, procedures, etc.:** ONLY use information from the PROVIDED SOURCES below. Do NOT generate, fabricate, guess, or infer any facts, figures, URLs, phone numbers, prices, dates, policies, or procedures that are not explicitly stated in the provided sources.

2. **For greetings, pleasantries, and general conversation** (e.g., "Hi", "Hello", "Thanks", "How are you?"): Respond naturally and warmly. You do NOT need source documents for these. Be friendly and offer to help.

3. **If the customer asks a factual question but the provided sources do not contain enough information to answer it**, you MUST respond: "{insufficient}"

4. **NEVER make up factual information.** If you are uncertain about ANY company-specific detail, say so explicitly. Do not fill gaps with plausible-sounding information.

5. **Always cite your sources** using numbered references like [1], [2], etc. when you use information from the provided source documents. If no sources were used (e.g., for greetings), omit the Sources line.

6. **Format**: End every response with:
   - "Sources: [1], [2], ..." listing which source documents you used (omit if no sources were used)
   - "Confidence: X.XX" where X.XX is your honest confidence level (0.00 to 1.00) in the accuracy and completeness of your answer
   - For greetings and pleasantries, your confidence should be HIGH (0.90+)
   - For factual answers backed by sources, rate based on source quality
   - For factual questions WITHOUT sufficient sources, your confidence should be LOW (below 0.50)

7. **If asked about topics not covered by the sources** (e.g., competitor information, general knowledge, personal opinions), respond: "{out_of_scope}"

8. **Be conversational but precise.** Match the customer's tone. Be friendly but never sacrifice accuracy for friendliness.

9. **For follow-up questions**, refer back to the conversation history provided. Do not contradict your previous answers unless correcting an error.

## RESPONSE FORMAT:
- Answer the customer's question using ONLY the provided sources for factual claims
- Include inline citations [1], [2], etc. when referencing source documents
- End with: Sources: [list] | Confidence: X.XX (omit Sources if no documents were referenced)"""

    @classmethod
    def build_system_prompt(cls, org_name: str) -> str:
        return cls.SYSTEM_PROMPT.format(
            org_name=org_name,
            insufficient=INSUFFICIENT_SOURCES_REPLY,
            out_of_scope=OUT_OF_SCOPE_REPLY,
        )

    @classmethod
    def build_user_prompt(cls, query: str, context: ChatContext) -> str:
        """
        Render every context section followed by the customer's message.

        Args:
            query: Current customer message, quoted verbatim
            context: Assembled (and usually trimmed) chat context

        Returns:
            Sections joined by a horizontal-rule divider
        """
        sections = [cls._sources(context.retrieval_results)]
        if context.conversation_history:
            sections.append(cls._history(context.conversation_history))
        sections.append(cls._profile(context.customer_profile))

        session = context.session_metadata
        sections.append(
            "## Session Info\n"
            f"- **Session ID**: {session.session_id or 'N/A'}\n"
            f"- **Org ID**: {session.org_id}\n"
            f"- **WhatsApp Phone**: {session.whatsapp_phone or 'N/A'}\n"
            f"- **Status**: {session.session_status}\n"
            f"- **Business hours**: {'Yes' if session.business_hours_flag else 'No (outside business hours)'}"
        )

        automation = context.automation_config
        sections.append(
            "## Automation Config\n"
            f"- **Scope**: {automation.scope}\n"
            f"- **Fallback**: {automation.fallback_message}"
        )

        if context.previous_bot_answers:
            sections.append(cls._bot_answers(context.previous_bot_answers))

        sections.append(f'## Current Customer Message\n"{query}"')
        return SECTION_DIVIDER.join(sections)

    @classmethod
    def build_llm_request(
        cls,
        org_name: str,
        query: str,
        context: ChatContext,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> LLMRequest:
        return LLMRequest(
            system_prompt=cls.build_system_prompt(org_name),
            messages=[LLMMessage(role="user", content=cls.build_user_prompt(query, context))],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    @staticmethod
    def _sources(results: List[RetrievalResult]) -> str:
        if not results:
            return "## Source Documents\nNo relevant documents found in the knowledge base."
        entries = []
        for i, r in enumerate(results, start=1):
            source = f" (Source: {r.source_url})" if r.source_url else ""
            entries.append(
                f"[{i}] **{r.title}**{source} (Relevance: {r.score * 100:.1f}%)\n{r.chunk_text}"
            )
        return "## Source Documents (Use ONLY these to answer)\n\n" + "\n\n".join(entries)

    @staticmethod
    def _history(messages: List[ContextMessage]) -> str:
        lines = [
            f"{ROLE_LABELS.get(m.sender_role, ROLE_LABELS['bot'])} [{_format_timestamp(m.timestamp)}]: {m.text}"
            for m in messages
        ]
        return f"## Conversation History (last {len(messages)} messages)\n\n" + "\n".join(lines)

    @staticmethod
    def _profile(profile: CustomerProfile) -> str:
        tags = ", ".join(profile.tags) if profile.tags else "none"
        return (
            "## Customer Profile\n"
            f"- **Name**: {profile.name or 'Unknown'}\n"
            f"- **Phone**: {profile.phone_number}\n"
            f"- **Customer since**: {_format_date(profile.first_seen_at)}\n"
            f"- **Order count**: {profile.order_count}\n"
            f"- **Tags**: {tags}\n"
            f"- **Last order**: {profile.last_order_summary or 'N/A'}"
        )

    @staticmethod
    def _bot_answers(answers: List[BotAnswer]) -> str:
        lines = []
        for a in answers:
            status = "✅ Confirmed" if a.customer_confirmed else "❓ Unconfirmed"
            confidence = f"{a.confidence:.2f}" if a.confidence is not None else "N/A"
            preview = a.text[:BOT_ANSWER_PREVIEW_CHARS]
            if len(a.text) > BOT_ANSWER_PREVIEW_CHARS:
                preview += "..."
            lines.append(f"- [{status}] (Confidence: {confidence}): {preview}")
        return "## Previous Bot Answers\n" + "\n".join(lines)
