from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # OpenAI-compatible completion / embedding backend
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    # Tried in order after llm_model; JSON list in the environment
    llm_fallback_models: list[str] = ["gpt-4.1-mini", "gpt-4o"]
    llm_timeout: float = 20.0
    llm_temperature: float = 0.2
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 256

    telegram_bot_token: str = ""
    admin_user_ids: list[str] = []

    db_path: str = "talkledger.json"
    default_currency: str = "TWD"

    dedup_ttl_seconds: float = 120.0
    # None disables idle expiry of dialogs
    dialog_idle_timeout_seconds: float | None = None
    retrieval_top_k: int = 5

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
