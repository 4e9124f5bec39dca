"""
Tests for the conversation orchestrator (both chat modes).

Async methods are driven with asyncio.run.
"""

import asyncio
import json

import pytest

from app.application.orchestrator import Orchestrator
from app.core.exceptions import (
    EmptyOrderError,
    MalformedUpstreamResponse,
    NotFoundError,
    OrderPersistenceError,
    SessionStoreError,
    UpstreamError,
    ValidationError,
)
from app.domain.models import ChatMessage
from app.domain.prompts import EMPTY_REPLY_FALLBACK, GREETING
from app.infrastructure.state_manager import InMemorySessionStore


def structured_reply(items, response="Noted!", intent="order"):
    return json.dumps({
        "userIntent": intent,
        "response": response,
        "currentOrder": {"items": items, "totalCost": 0, "status": "draft"},
        "item": {},
        "requiresConfirmation": False,
        "suggestions": [],
        "context": {
            "previouslyMentionedItems": [i["id"] for i in items],
            "pendingConfirmations": [],
            "userPreferences": {"allergies": [], "frequentOrders": []},
        },
    })


class TestDirectiveChat:

    def test_directives_update_cart_and_are_hidden_from_user(self, orchestrator, ai_service, session_store):
        ai_service.queue("Sure! ORDER_ADD:Jollof Rice|QUANTITY:2 Anything else? ORDER_ADD:Chapman|QUANTITY:1")

        result = asyncio.run(orchestrator.process_message("2 jollof and a chapman", session_id="s1"))

        assert result.response == "Sure!  Anything else?"
        assert result.user_intent is None
        assert result.session_id == "s1"
        assert [(l.item_id, l.quantity) for l in result.current_order.items] == [
            ("jollof_rice", 2),
            ("chapman", 1),
        ]
        assert result.current_order.total_cost == 2 * 2500 + 1200

        stored = session_store.get("session:s1")
        assert stored.order == result.current_order
        assert stored.chat_history == [
            ChatMessage(role="user", content="2 jollof and a chapman"),
            ChatMessage(role="assistant", content="Sure!  Anything else?"),
        ]

    def test_prompt_carries_menu_cart_and_history(self, orchestrator, ai_service):
        ai_service.queue("ORDER_ADD:Suya Platter|QUANTITY:1 Added.", "Anything else?")

        asyncio.run(orchestrator.process_message("one suya", user_id="u1"))
        asyncio.run(orchestrator.process_message("what's in my cart?", user_id="u1"))

        first, second = ai_service.calls
        assert "Your cart is currently empty." in first["system_prompt"]
        assert "Jollof Rice (₦2,500)" in first["system_prompt"]
        assert "Suya Platter x1 - ₦2,000" in second["system_prompt"]
        assert [m.content for m in second["history"]] == ["one suya", "Added.", "what's in my cart?"]
        assert second["json_mode"] is False

    def test_unknown_items_are_skipped(self, orchestrator, ai_service):
        ai_service.queue("ORDER_ADD:Pizza|QUANTITY:1 ORDER_ADD:Zobo Drink|QUANTITY:1 Here you go")

        result = asyncio.run(orchestrator.process_message("pizza and zobo", user_id="u1"))

        assert [l.item_id for l in result.current_order.items] == ["zobo"]
        assert result.response == "Here you go"

    def test_remove_and_update_apply_after_adds(self, orchestrator, ai_service):
        ai_service.queue(
            "ORDER_ADD:Moi Moi|QUANTITY:1 ORDER_ADD:Fried Plantain|QUANTITY:2 Done.",
            "ORDER_UPDATE:Moi Moi|QUANTITY:4 ORDER_REMOVE:Fried Plantain ORDER_ADD:Garden Salad|QUANTITY:1 Updated.",
        )

        asyncio.run(orchestrator.process_message("moi moi and plantain", user_id="u1"))
        result = asyncio.run(orchestrator.process_message("change it", user_id="u1"))

        assert [(l.item_id, l.quantity) for l in result.current_order.items] == [("moi_moi", 4), ("salad", 1)]
        assert result.current_order.total_cost == 4 * 1000 + 1200

    def test_reply_with_only_directives_gets_fallback_text(self, orchestrator, ai_service):
        ai_service.queue("ORDER_ADD:Chapman|QUANTITY:1")

        result = asyncio.run(orchestrator.process_message("chapman", user_id="u1"))

        assert result.response == EMPTY_REPLY_FALLBACK

    def test_caller_id_is_required(self, orchestrator):
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.process_message("hello"))

    def test_blank_message_is_rejected(self, orchestrator):
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.process_message("   ", user_id="u1"))

    def test_upstream_failure_leaves_session_untouched(self, orchestrator, ai_service, session_store):
        ai_service.queue(UpstreamError("rate limited", status_code=429))

        with pytest.raises(UpstreamError):
            asyncio.run(orchestrator.process_message("hello", user_id="u1"))

        assert session_store.get("user:u1").chat_history == []

    def test_turns_for_one_session_are_serialized(self, session_store, order_repo):
        class SlowAi:
            async def chat(self, system_prompt, history, json_mode=False):
                await asyncio.sleep(0.01)
                return "ORDER_ADD:Jollof Rice|QUANTITY:1 ok"

        orchestrator = Orchestrator(ai_service=SlowAi(), session_store=session_store, order_repo=order_repo)

        async def two_turns():
            await asyncio.gather(
                orchestrator.process_message("one jollof", user_id="u1"),
                orchestrator.process_message("another jollof", user_id="u1"),
            )

        asyncio.run(two_turns())

        stored = session_store.get("user:u1")
        assert stored.order.items[0].quantity == 2
        assert len(stored.chat_history) == 4


class TestStructuredChat:

    def test_model_payload_replaces_order_wholesale(self, structured_orchestrator, ai_service, session_store):
        ai_service.queue(
            structured_reply([{"id": "jollof_rice", "quantity": 2}, {"id": "zobo", "quantity": 1}]),
            structured_reply([{"id": "suya", "quantity": 3}], intent="update"),
        )

        asyncio.run(structured_orchestrator.process_message("jollof x2 and zobo", user_id="u1"))
        result = asyncio.run(structured_orchestrator.process_message("actually just 3 suya", user_id="u1"))

        stored = session_store.get("user:u1").order
        assert [(l.item_id, l.quantity) for l in stored.items] == [("suya", 3)]
        assert stored.total_cost == 6000
        assert result.user_intent == "update"
        assert session_store.get("user:u1").context.previously_mentioned_items == {"suya"}
        assert all(call["json_mode"] for call in ai_service.calls)

    def test_client_history_is_used_for_the_prompt(self, structured_orchestrator, ai_service):
        ai_service.queue(structured_reply([]))
        history = [ChatMessage(role="assistant", content="Welcome to NoshBites!")]

        asyncio.run(structured_orchestrator.process_message("hi", user_id="u1", history=history))

        assert "ASSISTANT: Welcome to NoshBites!" in ai_service.calls[0]["system_prompt"]
        assert "Here is the current message: hi" in ai_service.calls[0]["system_prompt"]

    def test_complete_intent_is_passed_through(self, structured_orchestrator, ai_service):
        ai_service.queue(structured_reply([{"id": "chapman", "quantity": 1}], intent="complete"))

        result = asyncio.run(structured_orchestrator.process_message("that's all", user_id="u1"))

        assert result.user_intent == "complete"
        assert result.to_wire()["userIntent"] == "complete"

    def test_malformed_reply_is_a_hard_error(self, structured_orchestrator, ai_service, session_store):
        ai_service.queue(
            structured_reply([{"id": "chapman", "quantity": 1}]),
            "Sorry, here is your order: chapman",
        )
        asyncio.run(structured_orchestrator.process_message("chapman", user_id="u1"))

        with pytest.raises(MalformedUpstreamResponse):
            asyncio.run(structured_orchestrator.process_message("and zobo", user_id="u1"))

        stored = session_store.get("user:u1")
        assert [l.item_id for l in stored.order.items] == ["chapman"]
        assert len(stored.chat_history) == 2


class TestSessionsAndOrders:

    def test_start_session_stores_greeting(self, orchestrator, session_store):
        started = orchestrator.start_session()

        assert started.message == GREETING
        assert started.current_order.items == []
        stored = session_store.get(f"session:{started.session_id}")
        assert stored.chat_history == [ChatMessage(role="assistant", content=GREETING)]

    def test_get_session_creates_on_miss(self, orchestrator, session_store):
        session = orchestrator.get_session("new-user")

        assert session.order.items == []
        assert session_store.exists("user:new-user")

    def test_get_session_requires_user_id(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.get_session("")

    def test_update_item_directly(self, orchestrator, ai_service):
        ai_service.queue("ORDER_ADD:Jollof Rice|QUANTITY:1 ok")
        asyncio.run(orchestrator.process_message("jollof", session_id="s1"))

        order = asyncio.run(orchestrator.update_item("s1", "jollof_rice", 3))
        assert order.items[0].quantity == 3
        assert order.total_cost == 7500

        order = asyncio.run(orchestrator.update_item("s1", "jollof_rice", 0))
        assert order.items == []
        assert orchestrator.get_order("s1").items == []

    def test_update_item_not_found_cases(self, orchestrator):
        with pytest.raises(NotFoundError):
            asyncio.run(orchestrator.update_item("missing", "jollof_rice", 1))

        started = orchestrator.start_session()
        with pytest.raises(NotFoundError):
            asyncio.run(orchestrator.update_item(started.session_id, "jollof_rice", 1))

    def test_complete_order_stores_snapshot_and_closes_session(self, orchestrator, ai_service, session_store):
        ai_service.queue("ORDER_ADD:Jollof Rice|QUANTITY:2 ORDER_ADD:Chapman|QUANTITY:1 ok")
        asyncio.run(orchestrator.process_message("order", session_id="s1"))

        completed = asyncio.run(orchestrator.complete_order("s1", {"name": "Ada", "address": "12 Allen Ave"}))

        assert completed.status == "confirmed"
        assert completed.total_cost == 6200
        assert completed.customer_info["name"] == "Ada"
        assert not session_store.exists("session:s1")

        fetched = orchestrator.get_completed_order(completed.id)
        assert fetched.id == completed.id
        assert fetched.items == completed.items
        assert fetched.total_cost == 6200

        with pytest.raises(NotFoundError):
            orchestrator.get_order("s1")

    def test_complete_empty_order_fails(self, orchestrator, session_store):
        started = orchestrator.start_session()

        with pytest.raises(EmptyOrderError):
            asyncio.run(orchestrator.complete_order(started.session_id))

        assert session_store.exists(f"session:{started.session_id}")

    def test_complete_works_for_user_sessions(self, orchestrator, ai_service):
        ai_service.queue("ORDER_ADD:Suya Platter|QUANTITY:1 ok")
        asyncio.run(orchestrator.process_message("suya", user_id="12345"))

        completed = asyncio.run(orchestrator.complete_order("12345"))

        assert completed.total_cost == 2000

    def test_failed_persistence_keeps_the_session(self, orchestrator, ai_service, session_store, monkeypatch):
        ai_service.queue("ORDER_ADD:Suya Platter|QUANTITY:1 ok")
        asyncio.run(orchestrator.process_message("suya", session_id="s1"))
        monkeypatch.setattr(orchestrator.order_repo, "save_order", lambda order: False)

        with pytest.raises(OrderPersistenceError):
            asyncio.run(orchestrator.complete_order("s1"))

        assert session_store.get("session:s1").order.items[0].item_id == "suya"

    def test_unknown_completed_order(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_completed_order("nope")

    def test_reset_session(self, orchestrator, session_store):
        started = orchestrator.start_session()

        orchestrator.reset_session(started.session_id)

        assert not session_store.exists(f"session:{started.session_id}")
        with pytest.raises(NotFoundError):
            orchestrator.reset_session(started.session_id)


class FlakyDeleteStore(InMemorySessionStore):
    """Delete fails the first `failures` times."""

    def __init__(self, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def delete(self, key):
        if self.failures:
            self.failures -= 1
            raise SessionStoreError("Redis delete failed", {"key": key})
        super().delete(key)


class TestHousekeeping:

    def test_session_locks_are_released_after_turns(self, orchestrator, ai_service):
        ai_service.queue(*["ok"] * 20)

        for i in range(20):
            asyncio.run(orchestrator.process_message("hi", user_id=f"visitor-{i}"))

        assert orchestrator._locks == {}

    def test_session_locks_are_released_after_concurrent_turns(self, session_store, order_repo):
        class SlowAi:
            async def chat(self, system_prompt, history, json_mode=False):
                await asyncio.sleep(0.01)
                return "ok"

        orchestrator = Orchestrator(ai_service=SlowAi(), session_store=session_store, order_repo=order_repo)

        async def turns():
            await asyncio.gather(*[
                orchestrator.process_message("hi", user_id=f"u{i % 3}") for i in range(9)
            ])

        asyncio.run(turns())

        assert orchestrator._locks == {}

    def test_stored_history_is_bounded(self, session_store, order_repo, ai_service):
        orchestrator = Orchestrator(
            ai_service=ai_service, session_store=session_store, order_repo=order_repo, history_limit=3,
        )
        ai_service.queue(*[f"reply {i}" for i in range(10)])

        for i in range(10):
            asyncio.run(orchestrator.process_message(f"message {i}", user_id="u1"))

        history = session_store.get("user:u1").chat_history
        assert len(history) == 6
        assert history[-1].content == "reply 9"
        assert [m.content for m in ai_service.calls[-1]["history"]] == [
            "reply 7", "message 8", "reply 8", "message 9",
        ]

    def test_completion_survives_a_failed_session_cleanup(self, clock, order_repo, ai_service):
        store = FlakyDeleteStore(ttl=86400, clock=clock)
        orchestrator = Orchestrator(ai_service=ai_service, session_store=store, order_repo=order_repo)
        ai_service.queue("ORDER_ADD:Jollof Rice|QUANTITY:2 ok")
        asyncio.run(orchestrator.process_message("jollof", session_id="s1"))

        completed = asyncio.run(orchestrator.complete_order("s1"))

        assert completed.total_cost == 5000
        assert [o.id for o in orchestrator.list_completed_orders()] == [completed.id]
        # the session could not be deleted, but its cart was emptied
        assert store.get("session:s1").order.items == []
        with pytest.raises(EmptyOrderError):
            asyncio.run(orchestrator.complete_order("s1"))
        assert len(orchestrator.list_completed_orders()) == 1
