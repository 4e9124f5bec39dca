from datetime import datetime
from typing import Any, Dict, List, Literal, Set

from pydantic import BaseModel, ConfigDict, Field

ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_CONFIRMED = "confirmed"


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MenuItem(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: int = Field(ge=0)  # minor currency units
    description: str = ""


class MenuCategory(CamelModel):
    model_config = ConfigDict(frozen=True)

    name: str
    items: List[MenuItem]


class OrderLine(CamelModel):
    item_id: str = Field(alias="itemId")
    name: str
    price: int = Field(ge=0)
    quantity: int = Field(ge=1)


class Order(CamelModel):
    items: List[OrderLine] = Field(default_factory=list)
    total_cost: int = Field(default=0, alias="totalCost")
    status: Literal["draft", "confirmed"] = ORDER_STATUS_DRAFT


class UserPreferences(CamelModel):
    allergies: Set[str] = Field(default_factory=set)
    frequent_orders: Set[str] = Field(default_factory=set, alias="frequentOrders")


class ConversationContext(CamelModel):
    # The model may attach its own keys; we carry them along untouched.
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    previously_mentioned_items: Set[str] = Field(default_factory=set, alias="previouslyMentionedItems")
    pending_confirmations: List[Any] = Field(default_factory=list, alias="pendingConfirmations")
    user_preferences: UserPreferences = Field(default_factory=UserPreferences, alias="userPreferences")


class ChatMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str


class Session(CamelModel):
    session_id: str = Field(alias="sessionId")
    order: Order = Field(default_factory=Order)
    context: ConversationContext = Field(default_factory=ConversationContext)
    chat_history: List[ChatMessage] = Field(default_factory=list, alias="chatHistory")


class CompletedOrder(CamelModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    items: List[OrderLine]
    total_cost: int = Field(alias="totalCost")
    status: Literal["confirmed"] = ORDER_STATUS_CONFIRMED
    timestamp: datetime
    customer_info: Dict[str, Any] = Field(default_factory=dict, alias="customerInfo")
