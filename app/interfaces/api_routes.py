import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Body, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.application.orchestrator import Orchestrator
from app.domain.menu import menu_as_dict
from app.domain.models import ChatMessage

router = APIRouter()
logger = logging.getLogger(__name__)


class ChatIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    # Browser clients may send a numeric id
    user_id: Optional[Union[str, int]] = Field(default=None, alias="userId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    history: Optional[List[ChatMessage]] = None


class QuantityIn(BaseModel):
    quantity: int


class CompleteIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_info: Dict[str, Any] = Field(default_factory=dict, alias="customerInfo")


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@router.get("/menu")
def get_menu(request: Request):
    return menu_as_dict(get_orchestrator(request).catalog)


@router.post("/session/start")
def start_session(request: Request):
    started = get_orchestrator(request).start_session()
    return {
        "sessionId": started.session_id,
        "message": started.message,
        "currentOrder": started.current_order.to_wire(),
    }


@router.get("/get-session")
def get_session(request: Request, user_id: Optional[str] = Query(default=None, alias="userId")):
    session = get_orchestrator(request).get_session(user_id)
    return {"order": session.order.to_wire(), "context": session.context.to_wire()}


@router.delete("/session/{session_id}")
def reset_session(session_id: str, request: Request):
    get_orchestrator(request).reset_session(session_id)
    return {"ok": True}


@router.post("/chat")
async def chat(payload: ChatIn, request: Request):
    logger.info(f"📨 Chat: user={payload.user_id} session={payload.session_id}")
    result = await get_orchestrator(request).process_message(
        payload.message,
        user_id=str(payload.user_id) if payload.user_id is not None else None,
        session_id=payload.session_id,
        history=payload.history,
    )
    return result.to_wire()


@router.get("/order/completed/{order_id}")
def get_completed_order(order_id: str, request: Request):
    return get_orchestrator(request).get_completed_order(order_id).to_wire()


@router.get("/orders/completed")
def list_completed_orders(request: Request, limit: int = Query(default=20, ge=1, le=100)):
    return [order.to_wire() for order in get_orchestrator(request).list_completed_orders(limit)]


@router.get("/order/{session_id}")
def get_order(session_id: str, request: Request):
    return get_orchestrator(request).get_order(session_id).to_wire()


@router.put("/order/{session_id}/item/{item_id}")
async def update_item(session_id: str, item_id: str, payload: QuantityIn, request: Request):
    order = await get_orchestrator(request).update_item(session_id, item_id, payload.quantity)
    return order.to_wire()


@router.post("/order/{session_id}/complete")
async def complete_order(session_id: str, request: Request, payload: Optional[CompleteIn] = Body(default=None)):
    customer_info = payload.customer_info if payload else {}
    completed = await get_orchestrator(request).complete_order(session_id, customer_info)
    return {
        "message": f"Order #{completed.id} has been successfully placed!",
        "order": completed.to_wire(),
    }


@router.get("/health")
def health_check(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    store_ok = orchestrator is not None and orchestrator.session_store.ping()
    return {
        "status": "OK" if store_ok else "degraded",
        "store": "ok" if store_ok else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
