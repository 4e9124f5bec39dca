from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

CHAT_MODE_DIRECTIVE = "directive"
CHAT_MODE_STRUCTURED = "structured"


class Settings(BaseSettings):
    PROJECT_NAME: str = "Chat_Ordering"

    # --- LLM (any OpenAI-compatible endpoint) ---
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.deepseek.com"
    LLM_MODEL: str = "deepseek-chat"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 512

    # "directive" parses ORDER_* commands out of prose,
    # "structured" asks the model for a full JSON reply.
    CHAT_MODE: str = CHAT_MODE_DIRECTIVE

    # --- Storage ---
    # No REDIS_URL means sessions live in process memory.
    REDIS_URL: Optional[str] = None
    SESSION_TTL_SECONDS: int = 86400
    HISTORY_LIMIT: int = 20
    DATABASE_URL: str = "sqlite:///./orders.db"

    # --- Misc ---
    TIMEZONE: str = "Africa/Lagos"
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )


settings = Settings()
