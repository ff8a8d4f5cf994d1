"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/app.db"
    AUTO_CREATE_DB_SCHEMA: bool = True

    # Redis (rate limits + run lock, both fall back to in-process state)
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    APP_URL: str = "http://localhost:3000"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Content search vendors
    SEARCH_API_KEY: str = ""
    WECHAT_SEARCH_API_URL: str = "https://www.dajiala.com/fbmain/monitor/v3/kw_search"
    XIAOHONGSHU_SEARCH_API_URL: str = "https://www.dajiala.com/fbmain/monitor/v3/xhs"
    # Note bodies; detail lookups are skipped when the key is empty
    XIAOHONGSHU_DETAIL_API_URL: str = "https://api.meowload.net/openapi/extract/post"
    XIAOHONGSHU_DETAIL_API_KEY: str = ""
    XIAOHONGSHU_DETAIL_CONCURRENCY: int = 5
    SEARCH_PERIOD_DAYS: int = 7

    # OpenAI-compatible LLM
    OPENAI_API_KEY: str = ""
    OPENAI_API_BASE: str = "https://openrouter.ai/api/v1"
    OPENAI_MODEL: str = "openai/gpt-4o"
    OPENAI_MAX_TOKENS: int = 2500

    # Notification
    FEISHU_WEBHOOK_URL: str = ""

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Shanghai"
    DEFAULT_CRON_TIME: str = "0 8 * * *"
    RUN_IMMEDIATELY: bool = False
    RUN_LOCK_TTL_SECONDS: int = 3600

    # Per-call timeouts
    FETCH_TIMEOUT_SECONDS: float = 30.0
    INSIGHT_TIMEOUT_SECONDS: float = 180.0
    WEBHOOK_TIMEOUT_SECONDS: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def require_search_api_key() -> str:
    """Return configured content search API key or raise a configuration error."""
    api_key = (settings.SEARCH_API_KEY or "").strip()
    if not api_key:
        raise ValueError("SEARCH_API_KEY is not configured")
    return api_key
