import logging
from typing import List, Optional

import openai
# ChatOpenAI works against any OpenAI-compatible endpoint (DeepSeek, OpenAI, ...)
from langchain_openai import ChatOpenAI
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.core.config import settings
from app.core.exceptions import UpstreamError
from app.domain.models import ChatMessage
from app.interfaces.IAiService import IAiService

logger = logging.getLogger(__name__)


def to_langchain_messages(system_prompt: str, history: List[ChatMessage]) -> List[BaseMessage]:
    messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
    for msg in history:
        if msg.role == "user":
            messages.append(HumanMessage(content=msg.content))
        else:
            messages.append(AIMessage(content=msg.content))
    return messages


def _upstream_status(e: Exception) -> int:
    if isinstance(e, openai.RateLimitError):
        return 429
    if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return 401
    return 500


class OpenAIService(IAiService):
    def __init__(self, llm: Optional[BaseChatModel] = None):
        self.llm = llm or ChatOpenAI(
            model=settings.LLM_MODEL,
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.LLM_MAX_TOKENS
        )
        # Same model, constrained to emit a single JSON object
        self.json_llm = self.llm.bind(response_format={"type": "json_object"})
        logger.info(f"✅ LLM client ready: {settings.LLM_MODEL}")

    async def chat(self, system_prompt: str, history: List[ChatMessage], json_mode: bool = False) -> str:
        messages = to_langchain_messages(system_prompt, history)
        llm = self.json_llm if json_mode else self.llm
        try:
            response = await llm.ainvoke(messages)
        except openai.OpenAIError as e:
            status = _upstream_status(e)
            logger.error(f"❌ LLM call failed ({status}): {e}")
            raise UpstreamError("LLM call failed", status_code=status, details={"error": str(e)}) from e

        content = response.content if isinstance(response.content, str) else ""
        if not content.strip():
            logger.warning("LLM returned an empty reply")
            raise UpstreamError("LLM returned an empty reply")
        return content
