"""Tests for prompt rendering and LLM response interpretation."""

from datetime import datetime

import pytest

from context.models import (
    AutomationConfig,
    BotAnswer,
    ChatContext,
    ContextMessage,
    CustomerProfile,
    RetrievalResult,
    SessionMetadata,
)
from llm.prompt_templates import INSUFFICIENT_SOURCES_REPLY, SECTION_DIVIDER, PromptTemplates
from llm.providers.base import LLMResponse
from llm.response_parser import (
    DEFAULT_CONFIDENCE,
    UNCERTAIN_CONFIDENCE,
    parse_citations,
    parse_confidence,
    resolve_citations,
    strip_footer,
)


def _context(**overrides) -> ChatContext:
    ctx = ChatContext(
        conversation_history=[],
        customer_profile=CustomerProfile(
            customer_id="c1", phone_number="15551234567", name="Dana",
            first_seen_at=datetime(2023, 3, 4, 10, 0), tags=["vip"],
        ),
        session_metadata=SessionMetadata(session_id="s1", org_id="o1", whatsapp_phone="15550001111"),
        automation_config=AutomationConfig(scope="all", fallback_message="Hold on"),
    )
    return ctx.replace(**overrides)


# ── Prompt templates ──────────────────────────────────

class TestPromptTemplates:
    def test_system_prompt_names_org_and_rules(self):
        prompt = PromptTemplates.build_system_prompt("Acme Support")
        assert "customer support assistant for Acme Support" in prompt
        assert INSUFFICIENT_SOURCES_REPLY in prompt
        assert "Confidence: X.XX" in prompt

    def test_no_sources_placeholder(self):
        prompt = PromptTemplates.build_user_prompt("Hi", _context())
        assert "No relevant documents found in the knowledge base." in prompt

    def test_sources_are_numbered_with_relevance(self):
        results = [
            RetrievalResult("d1", "Shipping", "We ship worldwide.", 0.912, "https://acme.test/ship"),
            RetrievalResult("d2", "Returns", "30 day returns.", 0.8),
        ]
        prompt = PromptTemplates.build_user_prompt("Do you ship?", _context(retrieval_results=results))
        assert "[1] **Shipping** (Source: https://acme.test/ship) (Relevance: 91.2%)\nWe ship worldwide." in prompt
        assert "[2] **Returns** (Relevance: 80.0%)\n30 day returns." in prompt

    def test_history_section_only_when_present(self):
        assert "Conversation History" not in PromptTemplates.build_user_prompt("Hi", _context())

        history = [
            ContextMessage("m1", datetime(2024, 5, 1, 9, 30), "inbound", "customer", "Hello"),
            ContextMessage("m2", datetime(2024, 5, 1, 9, 31), "outbound", "bot", "Hi! How can I help?"),
        ]
        prompt = PromptTemplates.build_user_prompt("Hi", _context(conversation_history=history))
        assert "## Conversation History (last 2 messages)" in prompt
        assert "🧑 Customer [2024-05-01 09:30 UTC]: Hello" in prompt
        assert "🤖 Bot [2024-05-01 09:31 UTC]: Hi! How can I help?" in prompt

    def test_bot_answer_preview_truncated(self):
        answers = [
            BotAnswer("b1", "a" * 250, datetime(2024, 5, 1), confidence=0.9),
            BotAnswer("b2", "short answer", datetime(2024, 5, 1), confidence=None),
        ]
        prompt = PromptTemplates.build_user_prompt("Hi", _context(previous_bot_answers=answers))
        assert "(Confidence: 0.90): " + "a" * 200 + "..." in prompt
        assert "❓ Unconfirmed] (Confidence: N/A): short answer\n\n---" in prompt
        assert "short answer..." not in prompt

    def test_query_is_last_section(self):
        prompt = PromptTemplates.build_user_prompt("Where is my order?", _context())
        assert prompt.split(SECTION_DIVIDER)[-1] == '## Current Customer Message\n"Where is my order?"'

    def test_profile_and_session_sections(self):
        prompt = PromptTemplates.build_user_prompt("Hi", _context())
        assert "- **Name**: Dana" in prompt
        assert "- **Customer since**: 2023-03-04" in prompt
        assert "- **Tags**: vip" in prompt
        assert "- **WhatsApp Phone**: 15550001111" in prompt
        assert "- **Fallback**: Hold on" in prompt

    def test_rendering_is_deterministic(self):
        ctx = _context(retrieval_results=[RetrievalResult("d1", "Shipping", "We ship.", 0.9)])
        assert PromptTemplates.build_user_prompt("Hi", ctx) == PromptTemplates.build_user_prompt("Hi", ctx)

    def test_llm_request_shape(self):
        request = PromptTemplates.build_llm_request("Acme", "Hi", _context(), temperature=0.1, max_tokens=512)
        assert len(request.messages) == 1
        assert request.messages[0].role == "user"
        assert request.temperature == 0.1
        assert request.max_tokens == 512


# ── Response parser ───────────────────────────────────

class TestParseConfidence:
    def test_footer_value(self):
        assert parse_confidence("We ship worldwide [1].\nSources: [1] | Confidence: 0.92") == pytest.approx(0.92)

    def test_percent_value(self):
        assert parse_confidence("Answer.\nConfidence: 85") == pytest.approx(0.85)

    def test_sentence_final_period_ignored(self):
        assert parse_confidence("I think so.\nConfidence: 0.40.") == pytest.approx(0.4)
        assert parse_confidence("Confidence: 1.") == pytest.approx(1.0)

    def test_clamped(self):
        assert parse_confidence("Confidence: 250") == 1.0

    def test_uncertainty_heuristic(self):
        assert parse_confidence("I'm not sure about that.") == UNCERTAIN_CONFIDENCE

    def test_default_without_footer(self):
        assert parse_confidence("Hello! How can I help?") == DEFAULT_CONFIDENCE


class TestCitations:
    def test_unique_in_order(self):
        assert parse_citations("See [2] and [1], also [2].") == ["[2]", "[1]"]

    def test_resolve_drops_out_of_range(self):
        results = [RetrievalResult("d1", "A", "x", 0.9), RetrievalResult("d2", "B", "y", 0.8)]
        assert resolve_citations(["[2]", "[5]", "[1]"], results) == ["d2", "d1"]

    def test_resolve_with_no_results(self):
        assert resolve_citations(["[1]"], []) == []


class TestStripFooter:
    def test_removes_footer_keeps_inline_markers(self):
        text = "We ship worldwide [1].\n\nSources: [1] | Confidence: 0.92\n"
        assert strip_footer(text) == "We ship worldwide [1]."

    def test_separate_footer_lines(self):
        text = "Returns take 30 days [2].\nSources: [2]\nConfidence: 0.88"
        assert strip_footer(text) == "Returns take 30 days [2]."

    def test_no_footer_unchanged(self):
        assert strip_footer("Hello!") == "Hello!"


def test_llm_response_from_text():
    response = LLMResponse.from_text("Yes [1].\nSources: [1] | Confidence: 0.8")
    assert response.confidence == pytest.approx(0.8)
    assert response.citations == ["[1]"]
