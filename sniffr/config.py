from __future__ import annotations

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    openai_api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("openai_api_key", "openai_key")
    )
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    openai_timeout: float = 20.0
    openai_max_retries: int = 1
    remote_max_tokens: int = 200

    rate_limit_max: int = 120
    rate_window_seconds: float = 60.0
    cache_ttl_seconds: float = 30.0
    cache_key_candidates: int = 60
    remote_max_candidates: int = 80

    max_candidates: int = 800
    max_results: int = 5
    min_accept_score: int = 8
    highlight_ms: int = 2500

    gateway_url: str = "http://localhost:8000/api/sniffr-proxy"
    relay_timeout: float = 30.0
    headless: bool = True
    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
