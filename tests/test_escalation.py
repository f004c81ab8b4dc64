"""Tests for storage repositories and the escalation manager."""

from datetime import timedelta

from sqlalchemy import func, select

from database.models import ConversationStatus, EscalationStatus, Message, utcnow
from database.repositories import (
    ConversationRepository,
    CustomerRepository,
    EscalationRepository,
    MessageRepository,
)
from database.session import session_scope
from escalation.manager import EscalationManager

from fakes import seed_org


async def _open_conversation(factory, phone="15551234567"):
    org_id = await seed_org(factory)
    async with session_scope(factory) as session:
        customer = await CustomerRepository(session).get_or_create(org_id, phone)
        conv = await ConversationRepository(session).get_or_create_open(org_id, customer.id)
    return org_id, customer.id, conv.id


async def _conversation_status(factory, conversation_id):
    async with factory() as session:
        conv = await ConversationRepository(session).get_by_id(conversation_id)
        return conv.status


# ── Repositories ──────────────────────────────────────

class TestRepositories:
    def test_customer_get_or_create_is_idempotent(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            async with session_scope(factory) as session:
                first = await CustomerRepository(session).get_or_create(org_id, "15551234567", name="Dana")
            async with session_scope(factory) as session:
                second = await CustomerRepository(session).get_or_create(org_id, "15551234567", name="Other")
            return first, second

        first, second = run_db(scenario)
        assert first.id == second.id
        assert second.name == "Dana"

    def test_one_open_conversation_per_customer(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            async with session_scope(factory) as session:
                again = await ConversationRepository(session).get_or_create_open(org_id, customer_id)
            return conv_id, again.id

        conv_id, again_id = run_db(scenario)
        assert conv_id == again_id

    def test_resolved_conversation_allows_a_new_one(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            async with session_scope(factory) as session:
                await ConversationRepository(session).set_status(conv_id, ConversationStatus.RESOLVED.value)
            async with session_scope(factory) as session:
                fresh = await ConversationRepository(session).get_or_create_open(org_id, customer_id)
            return conv_id, fresh

        conv_id, fresh = run_db(scenario)
        assert fresh.id != conv_id
        assert fresh.status == ConversationStatus.ACTIVE.value

    def test_history_is_oldest_first_and_capped(self, run_db):
        async def scenario(factory):
            org_id, _, conv_id = await _open_conversation(factory)
            base = utcnow() - timedelta(hours=1)
            async with session_scope(factory) as session:
                messages = MessageRepository(session)
                for i in range(5):
                    await messages.add_inbound(conv_id, org_id, f"msg {i}", timestamp=base + timedelta(minutes=i))
            async with factory() as session:
                history = await MessageRepository(session).get_history(conv_id, 3, base - timedelta(days=1))
                count = (await session.execute(
                    select(func.count(Message.id)).where(Message.conversation_id == conv_id)
                )).scalar()
            return [m.text for m in history], count

        texts, count = run_db(scenario)
        assert texts == ["msg 2", "msg 3", "msg 4"]
        assert count == 5

    def test_inbound_transport_id_recorded_once(self, run_db):
        async def scenario(factory):
            org_id, _, conv_id = await _open_conversation(factory)
            async with session_scope(factory) as session:
                messages = MessageRepository(session)
                first = await messages.add_inbound(conv_id, org_id, "Hi", external_id="wamid.1")
                again = await messages.add_inbound(conv_id, org_id, "Hi", external_id="wamid.1")
                untracked = [
                    await messages.add_inbound(conv_id, org_id, "Hello") for _ in range(2)
                ]
            async with factory() as session:
                found = await MessageRepository(session).get_by_external_id(org_id, "wamid.1")
            return first, again, untracked, found

        first, again, untracked, found = run_db(scenario)
        assert again is None
        assert found.id == first.id
        assert all(m is not None for m in untracked)


# ── Escalation manager ────────────────────────────────

class TestEscalationManager:
    def test_create_marks_conversation_escalated(self, run_db):
        created = []

        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            manager = EscalationManager(factory, on_created=created.append)
            esc = await manager.create(org_id, conv_id, customer_id, "LLM confidence too low: 0.3")
            return esc, await _conversation_status(factory, conv_id)

        esc, status = run_db(scenario)
        assert esc.status == EscalationStatus.PENDING.value
        assert esc.reason == "LLM confidence too low: 0.3"
        assert status == ConversationStatus.ESCALATED.value
        assert created == [esc]

    def test_takeover_then_resolve(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            manager = EscalationManager(factory)
            esc = await manager.create(org_id, conv_id, customer_id, "low confidence")
            taken = await manager.takeover(esc.id, "agent@acme.test")
            taken_status = taken.status
            resolved = await manager.resolve(esc.id)
            return taken_status, taken.assigned_to, resolved, await _conversation_status(factory, conv_id)

        taken_status, assigned_to, resolved, conv_status = run_db(scenario)
        assert taken_status == EscalationStatus.IN_PROGRESS.value
        assert assigned_to == "agent@acme.test"
        assert resolved.status == EscalationStatus.RESOLVED.value
        assert resolved.resolved_at is not None
        assert conv_status == ConversationStatus.ACTIVE.value

    def test_resolve_is_idempotent(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            manager = EscalationManager(factory)
            esc = await manager.create(org_id, conv_id, customer_id, "low confidence")
            first = await manager.resolve(esc.id)
            first_resolved_at = first.resolved_at
            second = await manager.resolve(esc.id)
            return first_resolved_at, second

        first_resolved_at, second = run_db(scenario)
        assert second.status == EscalationStatus.RESOLVED.value
        assert second.resolved_at == first_resolved_at

    def test_assign_only_from_pending(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            manager = EscalationManager(factory)
            esc = await manager.create(org_id, conv_id, customer_id, "low confidence")
            assigned = await manager.assign(esc.id, "agent-1")
            assigned_status = assigned.status
            await manager.takeover(esc.id, "agent-1")
            again = await manager.assign(esc.id, "agent-2")
            return assigned_status, again

        assigned_status, again = run_db(scenario)
        assert assigned_status == EscalationStatus.ASSIGNED.value
        assert again.status == EscalationStatus.IN_PROGRESS.value
        assert again.assigned_to == "agent-1"

    def test_unknown_escalation(self, run_db):
        async def scenario(factory):
            manager = EscalationManager(factory)
            return await manager.takeover("missing", "agent"), await manager.resolve("missing")

        assert run_db(scenario) == (None, None)

    def test_list_open_and_stats(self, run_db):
        async def scenario(factory):
            org_id = await seed_org(factory)
            manager = EscalationManager(factory)
            ids = []
            for phone in ("1555000001", "1555000002", "1555000003"):
                async with session_scope(factory) as session:
                    customer = await CustomerRepository(session).get_or_create(org_id, phone)
                    conv = await ConversationRepository(session).get_or_create_open(org_id, customer.id)
                esc = await manager.create(org_id, conv.id, customer.id, "low confidence")
                ids.append(esc.id)
            await manager.takeover(ids[1], "agent")
            await manager.resolve(ids[2])
            open_items = await manager.list_open(org_id)
            return ids, [e.id for e in open_items], await manager.stats(org_id)

        ids, open_ids, stats = run_db(scenario)
        assert open_ids == ids[:2]
        assert stats == {"pending": 1, "in_progress": 1, "resolved_today": 1}

    def test_stats_ignore_old_resolutions(self, run_db):
        async def scenario(factory):
            org_id, customer_id, conv_id = await _open_conversation(factory)
            async with session_scope(factory) as session:
                await EscalationRepository(session).create(
                    org_id=org_id,
                    conversation_id=conv_id,
                    customer_id=customer_id,
                    reason="old",
                    status=EscalationStatus.RESOLVED.value,
                    resolved_at=utcnow() - timedelta(days=3),
                )
            return await EscalationManager(factory).stats(org_id)

        assert run_db(scenario)["resolved_today"] == 0
