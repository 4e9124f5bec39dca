import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from app.core.config import CHAT_MODE_DIRECTIVE, CHAT_MODE_STRUCTURED
from app.core.exceptions import (
    NotFoundError,
    OrderPersistenceError,
    SessionStoreError,
    ValidationError,
)
from app.domain.cart import add_item, finalize_order, remove_item, update_quantity
from app.domain.directives import DirectiveAction, parse_directives
from app.domain.menu import MENU, find_menu_item_by_id, menu_item_names, resolve_menu_item
from app.domain.models import (
    ChatMessage,
    CompletedOrder,
    ConversationContext,
    MenuCategory,
    Order,
    Session,
)
from app.domain.prompts import (
    EMPTY_REPLY_FALLBACK,
    GREETING,
    build_directive_prompt,
    build_structured_prompt,
)
from app.domain.replies import parse_structured_reply
from app.infrastructure.state_manager import session_key, user_key
from app.interfaces.IAiService import IAiService
from app.interfaces.IOrderRepository import IOrderRepository
from app.interfaces.ISessionStore import ISessionStore

logger = logging.getLogger(__name__)


class ChatResult(BaseModel):
    response: str
    user_intent: Optional[str] = None
    current_order: Order
    context: ConversationContext
    session_id: str

    def to_wire(self) -> Dict[str, Any]:
        payload = {
            "response": self.response,
            "currentOrder": self.current_order.to_wire(),
            "context": self.context.to_wire(),
            "sessionId": self.session_id,
        }
        if self.user_intent is not None:
            payload["userIntent"] = self.user_intent
        return payload


class SessionStart(BaseModel):
    session_id: str
    message: str
    current_order: Order = Field(default_factory=Order)


class Orchestrator:
    def __init__(
        self,
        ai_service: IAiService,
        session_store: ISessionStore,
        order_repo: IOrderRepository,
        catalog: Dict[str, MenuCategory] = MENU,
        chat_mode: str = CHAT_MODE_DIRECTIVE,
        history_limit: int = 20,
    ):
        if chat_mode not in (CHAT_MODE_DIRECTIVE, CHAT_MODE_STRUCTURED):
            raise ValueError(f"Unknown chat mode: {chat_mode}")
        self.ai_service = ai_service
        self.session_store = session_store
        self.order_repo = order_repo
        self.catalog = catalog
        self.chat_mode = chat_mode
        self.history_limit = history_limit
        self._item_names = menu_item_names(catalog)
        # One lock per session key: turns for the same session run one at a time
        # within this process. Separate workers can still race on the store.
        # Entries are (lock, holders + waiters) and are dropped when the count hits 0.
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _session_lock(self, key: str):
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    # --- SESSIONS ---

    def start_session(self) -> SessionStart:
        sid = str(uuid.uuid4())
        key = session_key(sid)
        session = self.session_store.get(key)
        session.chat_history.append(ChatMessage(role="assistant", content=GREETING))
        self.session_store.put(key, session)
        logger.info(f"[ORCHESTRATOR] Started session {sid}")
        return SessionStart(session_id=sid, message=GREETING, current_order=session.order)

    def get_session(self, user_id: str) -> Session:
        if not user_id:
            raise ValidationError("User ID is required")
        return self.session_store.get(user_key(user_id))

    def _existing_key(self, identifier: str) -> str:
        """Key of a live session for a session id or user id; never creates one."""
        if identifier:
            for key in (session_key(identifier), user_key(identifier)):
                if self.session_store.exists(key):
                    return key
        raise NotFoundError("Session not found", {"session_id": identifier})

    def reset_session(self, identifier: str) -> None:
        key = self._existing_key(identifier)
        self.session_store.delete(key)
        logger.info(f"[ORCHESTRATOR] Session {key} reset")

    # --- CHAT ---

    async def process_message(
        self,
        message: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        history: Optional[List[ChatMessage]] = None,
    ) -> ChatResult:
        if not message or not message.strip():
            raise ValidationError("Message is required")
        if user_id:
            key = user_key(user_id)
        elif session_id:
            key = session_key(session_id)
        else:
            raise ValidationError("User ID or session ID is required")

        async with self._session_lock(key):
            session = self.session_store.get(key)
            logger.info(f"[ORCHESTRATOR] Processing message for {key} ({self.chat_mode})")

            if self.chat_mode == CHAT_MODE_STRUCTURED:
                result = await self._handle_structured(session, message, history)
            else:
                result = await self._handle_directives(session, message)

            session.chat_history.append(ChatMessage(role="user", content=message))
            session.chat_history.append(ChatMessage(role="assistant", content=result.response))
            # Only the last history_limit messages reach a prompt; keep some slack.
            session.chat_history = session.chat_history[-2 * self.history_limit:]
            self.session_store.put(key, session)
            return result

    async def _handle_directives(self, session: Session, message: str) -> ChatResult:
        prompt = build_directive_prompt(self.catalog, session.order)
        conversation = session.chat_history[-self.history_limit:] + [ChatMessage(role="user", content=message)]

        raw_reply = await self.ai_service.chat(prompt, conversation)
        parsed = parse_directives(raw_reply, self._item_names)

        for directive in parsed.directives:
            item = resolve_menu_item(directive.item_name, self.catalog)
            if item is None:
                logger.warning(f"[ORCHESTRATOR] No menu item for {directive.action.value}: '{directive.item_name}'")
                continue

            if directive.action is DirectiveAction.ADD:
                add_item(session.order, item, directive.quantity)
            elif directive.action is DirectiveAction.REMOVE:
                remove_item(session.order, item.id)
            else:
                update_quantity(session.order, item.id, directive.quantity)
            qty = "" if directive.quantity is None else f" x{directive.quantity}"
            logger.info(f"[ORCHESTRATOR] Applied {directive.action.value}: {item.name}{qty}")

        response = parsed.text.strip() or EMPTY_REPLY_FALLBACK
        return ChatResult(
            response=response,
            current_order=session.order,
            context=session.context,
            session_id=session.session_id,
        )

    async def _handle_structured(
        self,
        session: Session,
        message: str,
        history: Optional[List[ChatMessage]],
    ) -> ChatResult:
        transcript = history if history is not None else session.chat_history
        prompt = build_structured_prompt(self.catalog, session.order, transcript, message, self.history_limit)

        raw_reply = await self.ai_service.chat(prompt, [ChatMessage(role="user", content=message)], json_mode=True)
        reply = parse_structured_reply(raw_reply, self.catalog)

        # The model owns the cart in this mode: replace, never merge.
        session.order = reply.order
        session.context = reply.context
        logger.info(f"[ORCHESTRATOR] Intent: {reply.user_intent} | Items: {len(reply.order.items)}")

        return ChatResult(
            response=reply.response,
            user_intent=reply.user_intent,
            current_order=session.order,
            context=session.context,
            session_id=session.session_id,
        )

    # --- DIRECT ORDER OPERATIONS ---

    def get_order(self, session_id: str) -> Order:
        key = self._existing_key(session_id)
        return self.session_store.get(key).order

    async def update_item(self, session_id: str, item_id: str, quantity: int) -> Order:
        key = self._existing_key(session_id)
        async with self._session_lock(key):
            session = self.session_store.get(key)
            if find_menu_item_by_id(item_id, self.catalog) is None or not any(
                line.item_id == item_id for line in session.order.items
            ):
                raise NotFoundError("Item not found in order", {"item_id": item_id})

            update_quantity(session.order, item_id, quantity)
            self.session_store.put(key, session)
            return session.order

    async def complete_order(self, session_id: str, customer_info: Optional[Dict[str, Any]] = None) -> CompletedOrder:
        key = self._existing_key(session_id)
        async with self._session_lock(key):
            session = self.session_store.get(key)
            completed = finalize_order(session.order, customer_info)

            if not self.order_repo.save_order(completed):
                raise OrderPersistenceError("Could not store completed order", {"order_id": completed.id})

            # The order is already stored; store failures past this point are logged, not raised.
            try:
                self.session_store.delete(key)
            except SessionStoreError as e:
                logger.error(f"❌ [ORCHESTRATOR] Order {completed.id} stored but session {key} not closed: {e}")
                self._clear_cart(key, session)
            else:
                logger.info(f"[ORCHESTRATOR] Order {completed.id} confirmed, session {key} closed")
            return completed

    def _clear_cart(self, key: str, session: Session) -> None:
        """Best effort: overwrite the stale session with its emptied cart."""
        try:
            self.session_store.put(key, session)
        except SessionStoreError as e:
            logger.error(f"❌ [ORCHESTRATOR] Could not clear cart for {key}: {e}")

    def get_completed_order(self, order_id: str) -> CompletedOrder:
        order = self.order_repo.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": order_id})
        return order

    def list_completed_orders(self, limit: int = 20) -> List[CompletedOrder]:
        return self.order_repo.get_all_orders(limit=limit)
