# creditwise/core/config.py
import logging
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_PROHIBITED_PHRASES = [
    "guarantee approval",
    "guaranteed approval",
    "forge",
    "forged",
    "fake income",
    "fake documents",
    "fake payslip",
    "launder",
    "hide assets",
    "evade taxes",
    "подделать",
    "подделка",
    "поддельн",
    "фальшив",
    "гарантированно одобр",
    "отмыть",
    "скрыть имущество",
    "уклониться от налогов",
]


class Settings(BaseSettings):
    """Application settings"""
    APP_NAME: str = "CreditWise"
    DEBUG: bool = False

    # LLM
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    GPT_MODEL: str = "gpt-4o-mini"
    GPT_TEMPERATURE: float = 0.7

    # Storage
    REDIS_URL: Optional[str] = Field(default=None)
    GUEST_SESSION_TTL: int = 60 * 60 * 24 * 7

    # Remote orchestrator (chat API side)
    CHAT_PROXY_URL: Optional[str] = Field(default=None)
    HEALTH_PROBE_TIMEOUT: float = 3.0
    ORCHESTRATOR_TIMEOUT: float = 30.0

    # Edge proxy
    N8N_WEBHOOK_URL: Optional[str] = Field(default=None)
    N8N_WEBHOOK_SECRET: str = ""
    N8N_TIMEOUT: float = 30.0
    GUEST_USER_ID: str = "guest_user"
    PROXY_ALLOW_GUESTS: bool = True

    # Auth
    AUTH_JWT_SECRET: Optional[str] = Field(default=None)
    AUTH_JWT_ALGORITHM: str = "HS256"
    CREDITWISE_API_KEY: Optional[str] = Field(default=None)

    # Conversation
    STARTING_CREDITS: int = 100
    DEFAULT_LANGUAGE: str = "ru"
    FALLBACK_JURISDICTION: str = "Russia"
    MAX_TRACKED_SESSIONS: int = 10000
    PROHIBITED_PHRASES: List[str] = Field(default_factory=lambda: list(DEFAULT_PROHIBITED_PHRASES))

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


# Settings singleton
settings = Settings()


def validate_required_settings() -> bool:
    """Warn about settings the app can start without but not fully work without"""
    missing = []

    if not settings.OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY")

    if not settings.REDIS_URL:
        missing.append("REDIS_URL")

    if not settings.AUTH_JWT_SECRET:
        missing.append("AUTH_JWT_SECRET")

    if not settings.CHAT_PROXY_URL:
        missing.append("CHAT_PROXY_URL")

    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("Some features will run in degraded mode.")
        return False

    return True
