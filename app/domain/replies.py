"""
Validation of the JSON reply the model returns in structured chat mode.

The model is untrusted: the payload is parsed strictly, every cart line
must point at a real menu item, names and prices come from the catalog,
and the total is recomputed locally.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import MalformedUpstreamResponse
from app.domain.cart import recalculate_total
from app.domain.menu import MENU, find_menu_item_by_id
from app.domain.models import (
    ORDER_STATUS_DRAFT,
    ConversationContext,
    MenuCategory,
    Order,
    OrderLine,
)

logger = logging.getLogger(__name__)

USER_INTENTS = ("order", "cancel", "update", "complete")
INTENT_COMPLETE = "complete"


class ReplyLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # The prompt shows menu items, which use "id"; we also accept "itemId".
    item_id: str = Field(validation_alias="itemId")
    quantity: int = Field(ge=1, strict=True)

    @classmethod
    def from_raw(cls, raw: Any) -> "ReplyLine":
        if isinstance(raw, dict) and "itemId" not in raw and "id" in raw:
            raw = {**raw, "itemId": raw["id"]}
        return cls.model_validate(raw)


class ReplyOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: List[Any] = Field(default_factory=list)


class ModelReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_intent: Optional[str] = Field(default=None, alias="userIntent")
    response: str
    current_order: ReplyOrder = Field(alias="currentOrder")
    item: Optional[Any] = None
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")
    suggestions: List[Any] = Field(default_factory=list)
    context: ConversationContext = Field(default_factory=ConversationContext)


class StructuredReply(BaseModel):
    user_intent: Optional[str] = None
    response: str
    order: Order
    context: ConversationContext
    requires_confirmation: bool = False
    suggestions: List[Any] = Field(default_factory=list)


def clean_json_response(text: str) -> str:
    """Removes markdown code fences if the model adds them."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(json)?", "", text)
        text = re.sub(r"```$", "", text)
    return text.strip()


def _sanitize_order(raw_items: List[Any], catalog: Dict[str, MenuCategory]) -> Order:
    order = Order(status=ORDER_STATUS_DRAFT)
    by_id: Dict[str, OrderLine] = {}

    for raw in raw_items:
        line = ReplyLine.from_raw(raw)
        item = find_menu_item_by_id(line.item_id, catalog)
        if item is None:
            raise MalformedUpstreamResponse(
                "Model reply references an unknown menu item",
                {"item_id": line.item_id},
            )
        if item.id in by_id:
            by_id[item.id].quantity += line.quantity
            continue
        by_id[item.id] = OrderLine(item_id=item.id, name=item.name, price=item.price, quantity=line.quantity)
        order.items.append(by_id[item.id])

    recalculate_total(order)
    return order


def parse_structured_reply(text: str, catalog: Dict[str, MenuCategory] = MENU) -> StructuredReply:
    """Parse and validate one model reply. Any defect raises MalformedUpstreamResponse."""
    cleaned = clean_json_response(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedUpstreamResponse("Model reply is not valid JSON", {"error": str(e)}) from e

    if not isinstance(payload, dict):
        raise MalformedUpstreamResponse("Model reply is not a JSON object", {"type": type(payload).__name__})

    try:
        reply = ModelReply.model_validate(payload)
        order = _sanitize_order(reply.current_order.items, catalog)
    except PydanticValidationError as e:
        raise MalformedUpstreamResponse("Model reply failed schema validation", {"errors": e.errors()}) from e

    intent = reply.user_intent.strip().lower() if reply.user_intent else None
    if intent is not None and intent not in USER_INTENTS:
        logger.warning(f"Ignoring unknown userIntent '{intent}'")
        intent = None

    return StructuredReply(
        user_intent=intent,
        response=reply.response,
        order=order,
        context=reply.context,
        requires_confirmation=reply.requires_confirmation,
        suggestions=reply.suggestions,
    )
