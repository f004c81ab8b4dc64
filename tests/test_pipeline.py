"""End-to-end tests for the inbound message pipeline on an in-memory database."""

import asyncio
from datetime import timedelta

from sqlalchemy import func, select

from api.channels.registry import SessionRegistry
from config.settings import Settings
from context.assembler import ContextAssembler
from context.token_budget import TokenBudgetTrimmer
from database.models import Conversation, Customer, Escalation, Message, utcnow
from database.repositories import ConversationRepository, MessageRepository
from escalation.manager import EscalationManager
from llm.errors import LLMCallError
from llm.orchestrator import FALLBACK_CONFIDENCE, MessagePipeline, Outcome, normalize_phone
from retrieval.engine import RetrievalEngine

from fakes import FakeEmbedder, FakeLLM, FakeTransport, FakeVectorStore, make_hit, make_message, seed_org

GROUNDED_REPLY = "Yes, we ship to over 40 countries [1].\n\nSources: [1] | Confidence: 0.92"
UNSURE_REPLY = "I'm not sure we cover that.\nConfidence: 0.3"
SHIPPING_HITS = [make_hit("chunk-1", 0.9, "We ship to over 40 countries.", doc_id="doc-ship", title="Shipping")]


def _pipeline(factory, llm, hits=None, embed_fail=False):
    registry = SessionRegistry(factory)
    pipeline = MessagePipeline(
        session_factory=factory,
        retrieval_engine=RetrievalEngine(
            FakeEmbedder(fail=embed_fail), FakeVectorStore(hits or []), session_factory=factory
        ),
        context_assembler=ContextAssembler(factory),
        trimmer=TokenBudgetTrimmer(),
        llm_provider=llm,
        escalation_manager=EscalationManager(factory),
        session_registry=registry,
        settings=Settings(),
    )
    return pipeline, registry


async def _history(factory, conversation_id):
    async with factory() as session:
        return await MessageRepository(session).get_history(conversation_id, 50, utcnow() - timedelta(days=1))


async def _count(factory, model):
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


def test_normalize_phone():
    assert normalize_phone(" 15551234567@c.us ") == "15551234567"
    assert normalize_phone("15551234567@s.whatsapp.net") == "15551234567"
    assert normalize_phone("15551234567") == "15551234567"


class TestMessagePipeline:
    def test_grounded_reply(self, run_db):
        transport = FakeTransport()

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, transport)
            result = await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))
            async with factory() as session:
                customer = (await session.execute(select(Customer))).scalar_one()
            return result, customer, await _history(factory, result.conversation_id)

        result, customer, history = run_db(scenario)
        assert result.outcome == Outcome.REPLIED
        assert result.delivered
        assert customer.phone_number == "15551234567"
        assert customer.name == "Dana"

        inbound, bot = history
        assert inbound.text == "Do you ship abroad?"
        assert inbound.sender_role == "customer"
        assert bot.text == "Yes, we ship to over 40 countries [1]."
        assert bot.llm_confidence == 0.92
        assert bot.linked_doc_ids == ["doc-ship"]
        assert transport.sent == [("15551234567@c.us", "Yes, we ship to over 40 countries [1].")]

    def test_low_confidence_sends_fallback_and_escalates(self, run_db):
        transport = FakeTransport()

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(UNSURE_REPLY))
            await registry.create(org_id, transport)
            result = await pipeline.handle_inbound(org_id, make_message("Do you sell gift cards?"))
            async with factory() as session:
                escalation = (await session.execute(select(Escalation))).scalar_one()
                conversation = await ConversationRepository(session).get_by_id(result.conversation_id)
            return result, escalation, conversation, await _history(factory, result.conversation_id)

        result, escalation, conversation, history = run_db(scenario)
        fallback = Settings().default_fallback_message

        assert result.outcome == Outcome.ESCALATED
        assert result.confidence == 0.3
        assert result.linked_doc_ids == []
        assert result.escalation_id == escalation.id
        assert escalation.reason == "LLM confidence too low: 0.3"
        assert escalation.status == "pending"
        assert conversation.status == "escalated"

        bot = history[-1]
        assert bot.text == fallback
        assert bot.llm_confidence == FALLBACK_CONFIDENCE
        assert bot.linked_doc_ids == []
        assert transport.sent == [("15551234567@c.us", fallback)]

    def test_escalated_conversation_is_muted(self, run_db):
        llm = FakeLLM(UNSURE_REPLY)

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, llm)
            await registry.create(org_id, FakeTransport())
            first = await pipeline.handle_inbound(org_id, make_message("Gift cards?", msg_id="wamid.1"))
            second = await pipeline.handle_inbound(org_id, make_message("Hello? Anyone?", msg_id="wamid.2"))
            return first, second, await _history(factory, first.conversation_id)

        first, second, history = run_db(scenario)
        assert second.outcome == Outcome.MUTED
        assert second.conversation_id == first.conversation_id
        assert len(llm.requests) == 1
        assert len(history) == 3
        assert [m.text for m in history if m.sender_role == "customer"] == ["Gift cards?", "Hello? Anyone?"]

    def test_resolved_escalation_unmutes(self, run_db):
        llm = FakeLLM(UNSURE_REPLY)

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, llm)
            await registry.create(org_id, FakeTransport())
            first = await pipeline.handle_inbound(org_id, make_message("Gift cards?", msg_id="wamid.1"))
            await pipeline.escalation_manager.resolve(first.escalation_id)
            llm.reply = "Hi again! How can I help?\nConfidence: 0.95"
            return await pipeline.handle_inbound(org_id, make_message("Hi", msg_id="wamid.2"))

        result = run_db(scenario)
        assert result.outcome == Outcome.REPLIED

    def test_unknown_org(self, run_db):
        llm = FakeLLM(GROUNDED_REPLY)

        async def scenario(factory):
            pipeline, _ = _pipeline(factory, llm)
            result = await pipeline.handle_inbound("no-such-org", make_message())
            return result, await _count(factory, Customer)

        result, customers = run_db(scenario)
        assert result.outcome == Outcome.ORG_MISSING
        assert customers == 0
        assert llm.requests == []

    def test_llm_failure_keeps_inbound_message(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(error=LLMCallError("provider timeout")))
            await registry.create(org_id, FakeTransport())
            result = await pipeline.handle_inbound(org_id, make_message("Where is my order?"))
            return result, await _history(factory, result.conversation_id)

        result, history = run_db(scenario)
        assert result.outcome == Outcome.DROPPED
        assert "provider timeout" in result.error
        assert [m.text for m in history] == ["Where is my order?"]

    def test_retrieval_failure_still_calls_llm(self, run_db):
        llm = FakeLLM("Hello! How can I help you today?\nConfidence: 0.95")

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, llm, SHIPPING_HITS, embed_fail=True)
            await registry.create(org_id, FakeTransport())
            return await pipeline.handle_inbound(org_id, make_message("Hi"))

        result = run_db(scenario)
        assert result.outcome == Outcome.REPLIED
        assert "No relevant documents found" in llm.requests[0].messages[0].content

    def test_send_failure_is_not_fatal(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, FakeTransport(fail_send=True))
            result = await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))
            return result, await _history(factory, result.conversation_id)

        result, history = run_db(scenario)
        assert result.outcome == Outcome.REPLIED
        assert not result.delivered
        assert history[-1].sender_role == "bot"

    def test_no_transport_registered(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, _ = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            return await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))

        result = run_db(scenario)
        assert result.outcome == Outcome.REPLIED
        assert not result.delivered

    def test_org_threshold_overrides_default(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory, settings={
                "confidence_threshold": 0.95,
                "fallback_message": "A specialist will get back to you shortly.",
            })
            transport = FakeTransport()
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, transport)
            result = await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))
            return result, transport.sent

        result, sent = run_db(scenario)
        assert result.outcome == Outcome.ESCALATED
        assert sent[0][1] == "A specialist will get back to you shortly."

    def test_same_customer_reuses_conversation(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, FakeTransport())
            first = await pipeline.handle_inbound(
                org_id, make_message("Do you ship?", sender="15551234567@c.us", msg_id="wamid.1")
            )
            second = await pipeline.handle_inbound(
                org_id, make_message("To Canada?", sender="15551234567", msg_id="wamid.2")
            )
            return first, second, await _count(factory, Conversation), await _count(factory, Customer)

        first, second, conversations, customers = run_db(scenario)
        assert first.conversation_id == second.conversation_id
        assert conversations == 1
        assert customers == 1

    def test_null_org_settings_fall_back_to_defaults(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory, settings={"rag_top_k": None, "confidence_threshold": None})
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, FakeTransport())
            result = await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))
            return result, await _history(factory, result.conversation_id)

        result, history = run_db(scenario)
        assert result.outcome == Outcome.REPLIED
        assert history[0].text == "Do you ship abroad?"

    def test_redelivered_message_answered_once(self, run_db):
        transport = FakeTransport()
        llm = FakeLLM(GROUNDED_REPLY)

        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, llm, SHIPPING_HITS)
            await registry.create(org_id, transport)
            first = await pipeline.handle_inbound(org_id, make_message("Do you ship?", msg_id="wamid.SAME"))
            again = await pipeline.handle_inbound(org_id, make_message("Do you ship?", msg_id="wamid.SAME"))
            return first, again, await _count(factory, Message)

        first, again, messages = run_db(scenario)
        assert first.outcome == Outcome.REPLIED
        assert again.outcome == Outcome.DUPLICATE
        assert again.inbound_message_id is None
        assert len(transport.sent) == 1
        assert len(llm.requests) == 1
        assert messages == 2

    def test_concurrent_first_messages_share_customer_and_conversation(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY), SHIPPING_HITS)
            await registry.create(org_id, FakeTransport())
            results = await asyncio.gather(
                pipeline.handle_inbound(org_id, make_message("Hi", sender="15550001111@c.us", msg_id="wamid.a")),
                pipeline.handle_inbound(org_id, make_message("Hello?", sender="15550001111@c.us", msg_id="wamid.b")),
            )
            return results, await _count(factory, Customer), await _count(factory, Conversation)

        results, customers, conversations = run_db(scenario)
        assert [r.outcome for r in results] == [Outcome.REPLIED, Outcome.REPLIED]
        assert results[0].conversation_id == results[1].conversation_id
        assert customers == 1
        assert conversations == 1

    def test_stored_confidence_is_clamped(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            pipeline, registry = _pipeline(factory, FakeLLM(GROUNDED_REPLY, confidence=1.4), SHIPPING_HITS)
            await registry.create(org_id, FakeTransport())
            result = await pipeline.handle_inbound(org_id, make_message("Do you ship abroad?"))
            return result, await _history(factory, result.conversation_id)

        result, history = run_db(scenario)
        assert result.confidence == 1.0
        assert history[-1].llm_confidence == 1.0
