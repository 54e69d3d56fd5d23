"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from memoria.errors import ConfigError

EMBEDDING_BACKENDS = ("ollama", "sentence_transformers", "hash")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/memoria.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    memory_token_budget: int = Field(alias="MEMORY_TOKEN_BUDGET", default=50000)
    memory_fill_ratio: float = Field(alias="MEMORY_FILL_RATIO", default=0.7)
    memory_eviction_batch_ratio: float = Field(alias="MEMORY_EVICTION_BATCH_RATIO", default=0.3)
    memory_min_retained_turns: int = Field(alias="MEMORY_MIN_RETAINED_TURNS", default=2)
    memory_dedup_threshold: float = Field(alias="MEMORY_DEDUP_THRESHOLD", default=0.92)

    summary_relevance_threshold: float = Field(alias="SUMMARY_RELEVANCE_THRESHOLD", default=0.6)
    summary_recent_count: int = Field(alias="SUMMARY_RECENT_COUNT", default=3)
    summarization_max_attempts: int = Field(alias="SUMMARIZATION_MAX_ATTEMPTS", default=3)
    summarization_timeout_seconds: float = Field(
        alias="SUMMARIZATION_TIMEOUT_SECONDS", default=60.0
    )
    summarization_retry_backoff_seconds: float = Field(
        alias="SUMMARIZATION_RETRY_BACKOFF_SECONDS", default=1.0
    )
    key_fact_importance: float = Field(alias="KEY_FACT_IMPORTANCE", default=0.6)

    fact_extraction_enabled: int = Field(alias="FACT_EXTRACTION_ENABLED", default=1)
    fact_extraction_timeout_seconds: float = Field(
        alias="FACT_EXTRACTION_TIMEOUT_SECONDS", default=30.0
    )

    context_window_tokens: int = Field(alias="CONTEXT_WINDOW_TOKENS", default=128000)
    context_memory_top_k: int = Field(alias="CONTEXT_MEMORY_TOP_K", default=5)
    context_memory_min_similarity: float = Field(
        alias="CONTEXT_MEMORY_MIN_SIMILARITY", default=0.3
    )

    embedding_backend: str = Field(alias="EMBEDDING_BACKEND", default="ollama")
    embedding_dims: int = Field(alias="EMBEDDING_DIMS", default=768)
    ollama_base_url: str = Field(alias="OLLAMA_BASE_URL", default="http://127.0.0.1:11434")
    ollama_embed_model: str = Field(alias="OLLAMA_EMBED_MODEL", default="nomic-embed-text")
    ollama_timeout_seconds: float = Field(alias="OLLAMA_TIMEOUT_SECONDS", default=15.0)
    sentence_transformer_model: str = Field(
        alias="SENTENCE_TRANSFORMER_MODEL", default="all-MiniLM-L6-v2"
    )

    llm_base_url: str = Field(alias="LLM_BASE_URL", default="http://127.0.0.1:30000/v1")
    llm_model: str = Field(alias="LLM_MODEL", default="openai/gpt-oss-20b")
    llm_api_key: str = Field(alias="LLM_API_KEY", default="")
    llm_timeout_seconds: int = Field(alias="LLM_TIMEOUT_SECONDS", default=120)

    task_runner_max_concurrent: int = Field(alias="TASK_RUNNER_MAX_CONCURRENT", default=4)
    task_runner_shutdown_timeout_seconds: int = Field(
        alias="TASK_RUNNER_SHUTDOWN_TIMEOUT_SECONDS", default=5
    )


def validate_settings(settings: Settings) -> None:
    problems: list[str] = []

    for key, value in {
        "MEMORY_FILL_RATIO": settings.memory_fill_ratio,
        "MEMORY_EVICTION_BATCH_RATIO": settings.memory_eviction_batch_ratio,
    }.items():
        if not 0.0 < value <= 1.0:
            problems.append(f"{key}(must be in (0, 1])")

    for key, value in {
        "MEMORY_DEDUP_THRESHOLD": settings.memory_dedup_threshold,
        "SUMMARY_RELEVANCE_THRESHOLD": settings.summary_relevance_threshold,
        "CONTEXT_MEMORY_MIN_SIMILARITY": settings.context_memory_min_similarity,
    }.items():
        if not -1.0 <= value <= 1.0:
            problems.append(f"{key}(must be in [-1, 1])")

    if not 0.0 <= settings.key_fact_importance <= 1.0:
        problems.append("KEY_FACT_IMPORTANCE(must be in [0, 1])")

    for key, value in {
        "MEMORY_TOKEN_BUDGET": settings.memory_token_budget,
        "CONTEXT_WINDOW_TOKENS": settings.context_window_tokens,
        "SUMMARIZATION_MAX_ATTEMPTS": settings.summarization_max_attempts,
        "EMBEDDING_DIMS": settings.embedding_dims,
    }.items():
        if value <= 0:
            problems.append(f"{key}(must be positive)")
    if settings.memory_min_retained_turns < 0:
        problems.append("MEMORY_MIN_RETAINED_TURNS(must not be negative)")

    if settings.embedding_backend not in EMBEDDING_BACKENDS:
        problems.append(f"EMBEDDING_BACKEND(one of {', '.join(EMBEDDING_BACKENDS)})")

    if settings.app_env == "prod":
        if not settings.app_db.startswith("/"):
            problems.append("APP_DB(absolute path required)")
        if settings.embedding_backend == "hash":
            problems.append("EMBEDDING_BACKEND(hash backend is for dev and tests only)")

    if problems:
        keys = ", ".join(sorted(set(problems)))
        raise ConfigError(f"invalid configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
