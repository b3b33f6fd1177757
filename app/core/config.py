from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """CRM assistant settings loaded from the environment"""

    api_prefix: str = "/api"
    app_name: str = "Dibs CRM Assistant"
    log_level: str = "INFO"

    # CRM query resolver
    crm_debug: bool = False  # verbose extractor/resolver/augmenter logs
    crm_max_listed_records: int = 5
    crm_default_follow_up_days: int = 7

    # Supabase (CRM records + conversations)
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    crm_client_table: str = "client"
    conversation_table: str = "conversation"
    message_table: str = "message"
    user_table: str = "user"

    # LLM (OpenAI-compatible)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    llm_primary_model: str = Field(default="gpt-3.5-turbo")
    llm_fallback_model: Optional[str] = None
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000

    # Conversation persistence (auth disabled → demo user)
    persist_conversations: bool = True
    demo_user_id: str = "demo-user"
    conversation_title_max_chars: int = 50

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    @field_validator("llm_fallback_model", "openai_base_url", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
