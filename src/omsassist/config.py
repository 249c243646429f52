"""Runtime configuration for the OMS Assist services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from omsassist.errors import ConfigurationError


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="omsassist_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    data_dir: Path = Path("./data")

    # Order data
    orders_snapshot_path: Path = Path("./data/orders.json")
    change_tracker_path: Path | None = Path("./data/vector-change-tracker.json")
    oms_api_base_url: str | None = None
    oms_api_token: str | None = None
    oms_api_page_size: int = 500
    oms_api_timeout_seconds: float = 15.0

    # Due-date filters are evaluated in this zone
    business_timezone: str = "America/Los_Angeles"

    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "oms-orders"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    vector_top_k: int = 10
    vector_min_score: float = 0.7
    vector_timeout_seconds: float = 10.0
    vector_rerank_lexical: bool = False
    vector_lexical_blend_weight: float = 0.35

    embedding_provider: Literal["hash", "huggingface", "openai"] = "hash"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    embedding_batch_size: int = 50
    embedding_max_tokens: int = 8000
    embedding_timeout_seconds: float = 30.0

    use_llm: bool = False
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str | None = None
    llm_base_url: str | None = None
    llm_temperature: float = 0.2
    llm_max_tokens: int = 800
    llm_timeout_seconds: float = 30.0

    cache_max_bytes: int = 150 * 1024 * 1024
    cache_max_entries: int = 5000
    cache_default_ttl_seconds: float = 20 * 60
    cache_orders_ttl_seconds: float = 5 * 60
    cache_vector_ttl_seconds: float = 30 * 60

    session_ttl_seconds: float = 60 * 60
    session_max_messages: int = 20
    session_max_sessions: int = 10_000

    hybrid_min_results: int = 1
    rag_max_orders: int = 10
    rag_context_char_budget: int = 12_000

    # CORS
    cors_allow_origins: tuple[str, ...] = ()  # e.g., ("*") to allow all
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header on admin routes
    rate_limit_requests: int = 120  # per window per client
    rate_limit_window_seconds: int = 60

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    def require_llm_credentials(self) -> str:
        """Return the LLM key, failing fast when the LLM is enabled without one."""

        if not self.llm_api_key:
            raise ConfigurationError(
                "OMSASSIST_LLM_API_KEY must be set when OMSASSIST_USE_LLM is enabled"
            )
        return self.llm_api_key


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
