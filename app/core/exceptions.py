"""
Error taxonomy for the ordering service.

    OrderingError (base)
    ├── ValidationError            400  bad or missing request field
    ├── NotFoundError              404  unknown session / order / item
    ├── EmptyOrderError            400  finalize with no lines
    ├── UpstreamError              429 / 401 / 500  LLM API failure
    ├── MalformedUpstreamResponse  500  LLM reply failed JSON/schema parse
    ├── OrderPersistenceError      500  completed order could not be stored
    └── SessionStoreError          503  store failed during a request
        └── SessionStoreUnavailable     store unreachable at startup (fatal)

Every error carries a static `user_message`; the `message` and `details`
are for logs only and are never sent to the client.
"""

from typing import Any, Dict, Optional


class OrderingError(Exception):
    status_code = 500
    user_message = "Something went wrong on our side. Please try again."

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(OrderingError):
    status_code = 400
    user_message = "Your request is missing some information. Please try again."


class NotFoundError(OrderingError):
    status_code = 404
    user_message = "We couldn't find what you were looking for."


class EmptyOrderError(OrderingError):
    status_code = 400
    user_message = "Cannot complete an empty order."

    def __init__(self, message: str = "Order has no items"):
        super().__init__(message)


class UpstreamError(OrderingError):
    """The model API call failed. status_code follows the upstream failure."""

    _USER_MESSAGES = {
        429: "We are experiencing high traffic. Please try again in a moment.",
        401: "Our assistant is unavailable right now. Please try again later.",
    }

    def __init__(self, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code
        self.user_message = self._USER_MESSAGES.get(
            status_code, "An unexpected error occurred. Please try again."
        )


class MalformedUpstreamResponse(OrderingError):
    status_code = 500
    user_message = "I'm sorry, I couldn't process that. Please try again or rephrase."


class OrderPersistenceError(OrderingError):
    status_code = 500
    user_message = "We couldn't save your order. Please try again."


class SessionStoreError(OrderingError):
    status_code = 503
    user_message = "Our ordering system is temporarily unavailable. Please try again shortly."


class SessionStoreUnavailable(SessionStoreError):
    """Raised at startup when the session store cannot be reached."""
