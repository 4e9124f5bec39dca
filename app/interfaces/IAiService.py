from abc import ABC, abstractmethod
from typing import List

from app.domain.models import ChatMessage


class IAiService(ABC):
    @abstractmethod
    async def chat(self, system_prompt: str, history: List[ChatMessage], json_mode: bool = False) -> str:
        """Send the system prompt plus conversation and return the raw reply text."""
        pass
