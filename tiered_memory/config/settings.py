from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal, Optional


class MemorySettings(BaseSettings):
    """
    Configuration for the tiered memory engine.
    Loads values from environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Durable Store (tier 2) ---
    # Async SQLAlchemy URL for the long-term memory table
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/memory.db",
        validation_alias="DATABASE_URL",
    )

    # --- Recent Buffer (tier 1) ---
    # Maximum events kept per user before oldest-first eviction
    short_term_max_items: int = Field(default=150, ge=1, validation_alias="SHORT_MEMORY_LIMIT")

    # --- Consolidation ---
    # Buffer size per user above which consolidation runs
    consolidation_threshold: int = Field(default=100, ge=1, validation_alias="LONG_MEMORY_THRESHOLD")
    # Number of oldest events inspected per consolidation
    consolidation_batch_size: int = Field(default=20, ge=1, validation_alias="CONSOLIDATION_BATCH_SIZE")
    # Buffer is trimmed to threshold * ratio after consolidation
    consolidation_trim_ratio: float = Field(default=0.8, gt=0.0, le=1.0, validation_alias="CONSOLIDATION_TRIM_RATIO")
    # Events strictly above this importance are kept in the Durable Store
    consolidation_min_importance: float = Field(default=0.7, ge=0.0, le=1.0, validation_alias="CONSOLIDATION_MIN_IMPORTANCE")

    # --- Context assembly windows ---
    context_short_term_limit: int = Field(default=10, ge=0, validation_alias="CONTEXT_SHORT_TERM_LIMIT")
    context_long_term_limit: int = Field(default=5, ge=0, validation_alias="CONTEXT_LONG_TERM_LIMIT")
    context_rag_limit: int = Field(default=5, ge=0, validation_alias="CONTEXT_RAG_LIMIT")

    # --- Cleanup policy ---
    cleanup_max_age_days: int = Field(default=365, ge=0, validation_alias="CLEANUP_MAX_AGE_DAYS")
    cleanup_min_importance: float = Field(default=0.1, ge=0.0, le=1.0, validation_alias="CLEANUP_MIN_IMPORTANCE")
    cleanup_max_records: int = Field(default=10000, ge=0, validation_alias="CLEANUP_MAX_RECORDS")
    # Interval of the background cleanup tick (hours)
    cleanup_interval_hours: float = Field(default=24.0, gt=0.0, validation_alias="CLEANUP_INTERVAL_HOURS")
    enable_cleanup_scheduler: bool = Field(default=False, validation_alias="ENABLE_CLEANUP_SCHEDULER")

    # --- Semantic Index (tier 3) ---
    # Minimum similarity for embedding-mode hits
    rag_min_similarity: float = Field(default=0.7, ge=0.0, le=1.0, validation_alias="RAG_MIN_SIMILARITY")
    # Optional JSON file used to persist the document set
    rag_storage_path: Optional[str] = Field(default=None, validation_alias="VECTOR_DB_PATH")

    # --- Embeddings ---
    # Master switch; when False the index always runs in substring mode
    enable_embeddings: bool = Field(default=True, validation_alias="ENABLE_EMBEDDINGS")
    embedding_provider: Literal["openai", "ollama", "sentence-transformers"] = Field(
        default="openai",
        validation_alias="EMBEDDING_PROVIDER",
    )
    embedding_model: str = Field(default="text-embedding-3-small", validation_alias="EMBEDDING_MODEL")
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
    ollama_url: Optional[str] = Field(default=None, validation_alias="OLLAMA_URL")

    # --- Logging ---
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")

    @property
    def consolidation_keep_count(self) -> int:
        """Number of events left in the buffer after consolidation."""
        return int(self.consolidation_threshold * self.consolidation_trim_ratio)


# Singleton instance
settings = MemorySettings()
