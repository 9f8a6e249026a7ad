"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    DATABASE_URL: str = "postgresql+asyncpg://lab_user@localhost:5432/parameter_lab"
    STORAGE_ANON_KEY: str = ""  # verifies bearer tokens only
    STORAGE_SERVICE_KEY: str = ""  # elevated credential for data access
    AUTO_CREATE_DB_SCHEMA: bool = True

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Upstream text generation
    OPENAI_API_KEY: str = ""
    LLM_API_KEY: str = ""
    LLM_API_URL: str = "https://api.openai.com/v1/chat/completions"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_RETRIES: int = 2
    LLM_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Audit logging
    AUDIT_DEDUP_WINDOW_SECONDS: float = 2.0
    AUDIT_DEDUP_MAX_ENTRIES: int = 1024
    AUDIT_IDENTITY_RETRY_DELAY_SECONDS: float = 0.25

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @property
    def llm_api_key(self) -> str:
        return (self.OPENAI_API_KEY or self.LLM_API_KEY or "").strip()


settings = Settings()


def missing_generation_settings(config: Settings = settings) -> List[str]:
    """Return the names of required generation settings that are not configured."""
    missing = []
    if not config.llm_api_key:
        missing.append("OPENAI_API_KEY")
    if not (config.LLM_API_URL or "").strip():
        missing.append("LLM_API_URL")
    if not (config.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if not (config.STORAGE_ANON_KEY or "").strip():
        missing.append("STORAGE_ANON_KEY")
    if not (config.STORAGE_SERVICE_KEY or "").strip():
        missing.append("STORAGE_SERVICE_KEY")
    return missing
