"""Configuration management using pydantic-settings."""

import warnings
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)

    url: str = Field(
        default="sqlite+aiosqlite:///./data/kb_assistant.db",
        description="Database URL (sqlite+aiosqlite or postgresql)",
    )
    echo: bool = Field(default=False, description="Log SQL statements")
    pool_size: int = Field(default=5, description="Connection pool size (postgres only)")
    max_overflow: int = Field(default=10, description="Pool overflow (postgres only)")

    @property
    def async_url(self) -> str:
        """Return the URL with an async driver."""
        url = self.url
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            return "postgresql+asyncpg://" + url[len("postgresql://"):]
        if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
            return "sqlite+aiosqlite://" + url[len("sqlite://"):]
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.async_url.startswith("sqlite")


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, populate_by_name=True)

    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key", alias="OPENAI_API_KEY"
    )
    openai_base_url: Optional[str] = Field(
        default=None, description="Optional OpenAI-compatible base URL", alias="OPENAI_BASE_URL"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
        alias="EMBEDDING_MODEL",
    )
    embedding_dimension: Optional[int] = Field(
        default=1536,
        description="Expected vector dimension (validated when set)",
        alias="EMBEDDING_DIMENSION",
    )
    batch_size: int = Field(
        default=100, ge=1, description="Texts per provider call", alias="EMBEDDING_BATCH_SIZE"
    )
    timeout: int = Field(
        default=30, description="Request timeout in seconds", alias="EMBEDDING_TIMEOUT"
    )
    max_retries: int = Field(
        default=3, ge=1, description="Attempts per batch on transient failure", alias="EMBEDDING_MAX_RETRIES"
    )

    @property
    def is_configured(self) -> bool:
        """Check if an embedding provider key is configured."""
        return bool(self.openai_api_key)


class LLMSettings(BaseSettings):
    """Chat-completion provider configuration (LiteLLM)."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, populate_by_name=True)

    openai_api_key: Optional[str] = Field(
        default=None, description="OpenAI API key", alias="OPENAI_API_KEY"
    )
    api_base: Optional[str] = Field(
        default=None, description="Optional provider base URL", alias="LLM_API_BASE"
    )
    timeout: int = Field(default=60, description="Request timeout in seconds", alias="LLM_TIMEOUT")

    @property
    def has_openai(self) -> bool:
        return bool(self.openai_api_key)


class ChunkingSettings(BaseSettings):
    """Chunker configuration. Sizes are in approximate tokens."""

    model_config = SettingsConfigDict(env_prefix="CHUNK_", case_sensitive=False)

    size_tokens: int = Field(default=500, ge=1, description="Target chunk size in tokens")
    overlap_tokens: int = Field(default=50, ge=0, description="Overlap between chunks in tokens")
    chars_per_token: int = Field(default=4, ge=1, description="Characters per approximate token")
    min_chunk_chars: int = Field(default=50, ge=0, description="Chunks shorter than this are dropped")
    min_break_ratio: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="A separator must fall past this fraction of the chunk to be used",
    )

    @property
    def chunk_size_chars(self) -> int:
        return self.size_tokens * self.chars_per_token

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * self.chars_per_token


class CacheSettings(BaseSettings):
    """Embedding cache configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_CACHE_", case_sensitive=False)

    max_entries: int = Field(default=50000, ge=1, description="LRU capacity")
    load_on_startup: bool = Field(default=True, description="Bulk load persisted vectors at startup")


class JobQueueSettings(BaseSettings):
    """Background job queue configuration."""

    model_config = SettingsConfigDict(env_prefix="JOB_", case_sensitive=False)

    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Worker poll interval")
    max_attempts: int = Field(default=3, ge=1, description="Attempts before a job is failed")
    worker_enabled: bool = Field(default=True, description="Run the worker loop in this process")
    requeue_interrupted: bool = Field(
        default=True, description="Return jobs left running by a crash to pending at startup"
    )


class RetrievalSettings(BaseSettings):
    """Similarity search configuration."""

    model_config = SettingsConfigDict(env_prefix="RETRIEVAL_", case_sensitive=False)

    top_k: int = Field(default=5, ge=1, description="Chunks returned per chat turn")
    context_token_budget: int = Field(default=3000, ge=0, description="Token budget for retrieved context")
    overfetch_factor: int = Field(default=3, ge=1, description="Candidates materialized per requested result")
    score_batch_size: int = Field(default=1000, ge=1, description="Vectors read per store round-trip on cache miss")


class ChatSettings(BaseSettings):
    """Chat session configuration."""

    model_config = SettingsConfigDict(env_prefix="CHAT_", case_sensitive=False)

    max_message_length: int = Field(default=2000, ge=1, description="User message truncation length")
    max_history_messages: int = Field(default=20, ge=0, description="Messages considered for history")
    history_token_budget: int = Field(default=4000, ge=0, description="Token budget for history window")
    max_concurrent_streams: int = Field(default=5, ge=1, description="Open streams per API key")


class RateLimitSettings(BaseSettings):
    """Per-caller request rate limits (sliding window)."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", case_sensitive=False)

    enabled: bool = Field(default=True, description="Enforce request rate limits")
    window_seconds: int = Field(default=60, ge=1, description="Window length in seconds")
    chat_requests: int = Field(default=60, ge=1, description="Chat messages per API key per window")
    upload_requests: int = Field(default=10, ge=1, description="Uploads per admin caller per window")


class UploadSettings(BaseSettings):
    """Document upload configuration."""

    model_config = SettingsConfigDict(env_prefix="UPLOAD_", case_sensitive=False, populate_by_name=True)

    directory: str = Field(default="./uploads", description="Where uploads wait for ingestion")
    max_file_size: int = Field(default=10 * 1024 * 1024, ge=1, description="Maximum upload size in bytes")
    allowed_extensions_str: str = Field(
        default="pdf,txt,md",
        alias="UPLOAD_ALLOWED_EXTENSIONS",
        description="Allowed file extensions (comma-separated string)",
    )

    @property
    def allowed_extensions(self) -> List[str]:
        return [
            ext.strip().lower().lstrip(".")
            for ext in self.allowed_extensions_str.split(",")
            if ext.strip()
        ]


class BotConfig(BaseModel):
    """Read-only bot configuration consumed by the chat engine."""

    bot_name: str
    system_prompt: str
    welcome_message: str
    model: str
    temperature: float
    max_tokens: int
    similarity_threshold: float


class BotSettings(BaseSettings):
    """Bot persona and generation parameters."""

    model_config = SettingsConfigDict(env_prefix="BOT_", case_sensitive=False)

    name: str = Field(default="Assistant", description="Display name of the bot")
    system_prompt: str = Field(
        default="You are a helpful assistant. Answer questions using the provided context.",
        description="Base system prompt",
    )
    welcome_message: str = Field(
        default="Hi! How can I help you today?", description="Greeting shown by chat widgets"
    )
    model: str = Field(default="gpt-4o-mini", description="Chat model (LiteLLM format)")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=500, ge=1, description="Maximum tokens per answer")
    similarity_threshold: float = Field(
        default=0.7, ge=-1.0, le=1.0, description="Minimum cosine similarity for context chunks"
    )

    def to_config(self) -> BotConfig:
        return BotConfig(
            bot_name=self.name,
            system_prompt=self.system_prompt,
            welcome_message=self.welcome_message,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            similarity_threshold=self.similarity_threshold,
        )


class AuthSettings(BaseSettings):
    """API key configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, populate_by_name=True)

    chat_api_keys_str: str = Field(
        default="",
        alias="CHAT_API_KEYS",
        description="Accepted chat API keys (comma-separated; empty accepts any key)",
    )
    admin_api_key_enabled: bool = Field(
        default=False,
        description="Require X-Admin-API-Key on knowledge-base endpoints",
        alias="ADMIN_API_KEY_ENABLED",
    )
    admin_api_key: Optional[str] = Field(
        default=None, description="Admin API key", alias="ADMIN_API_KEY"
    )

    @property
    def chat_api_keys(self) -> List[str]:
        return [key.strip() for key in self.chat_api_keys_str.split(",") if key.strip()]


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, populate_by_name=True)

    host: str = Field(default="0.0.0.0", description="Server host", alias="HOST")
    port: int = Field(default=8000, description="HTTP server port", alias="PORT")
    reload: bool = Field(default=False, description="Enable auto-reload (development only)")


class CorsSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_", case_sensitive=False, populate_by_name=True)

    # Store as strings to avoid JSON parsing issues
    origins_str: str = Field(
        default="*",
        alias="CORS_ORIGINS",
        description="Allowed CORS origins (comma-separated string)",
    )
    allow_credentials: bool = Field(default=False, description="Allow credentials in CORS")
    max_age: int = Field(default=3600, description="CORS preflight cache max age in seconds")

    @property
    def origins(self) -> List[str]:
        return [origin.strip() for origin in self.origins_str.split(",") if origin.strip()]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="kb-assistant", description="Application name", alias="APP_NAME")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
        alias="ENVIRONMENT",
    )
    debug: bool = Field(default=False, description="Enable debug mode", alias="DEBUG")
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    jobs: JobQueueSettings = Field(default_factory=JobQueueSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    bot: BotSettings = Field(default_factory=BotSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Parse environment from string."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def validate_configuration(self) -> None:
        """Warn about missing provider configuration."""
        if not self.embedding.is_configured:
            warnings.warn(
                "OPENAI_API_KEY is not set. Document ingestion and retrieval will fail "
                "until an embedding provider is configured.",
                UserWarning,
            )
        if self.chunking.overlap_tokens >= self.chunking.size_tokens:
            warnings.warn(
                "CHUNK_OVERLAP_TOKENS should be smaller than CHUNK_SIZE_TOKENS.",
                UserWarning,
            )

    def validate_production_settings(self) -> None:
        """Validate that production settings are secure."""
        if not self.is_production:
            return
        if self.debug:
            raise ValueError("DEBUG must be False in production")
        if not self.auth.admin_api_key_enabled or not self.auth.admin_api_key:
            raise ValueError(
                "ADMIN_API_KEY_ENABLED and ADMIN_API_KEY must be set in production "
                "to protect the knowledge-base endpoints."
            )
        if not self.embedding.is_configured:
            raise ValueError("OPENAI_API_KEY must be configured in production.")
        if not (self.llm.has_openai or self.llm.api_base):
            raise ValueError(
                "A chat-completion provider must be configured in production. "
                "Set OPENAI_API_KEY or LLM_API_BASE."
            )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
        try:
            _settings.validate_production_settings()
        except ValueError as e:
            import logging

            logging.error(f"Configuration validation failed: {e}")
            raise  # Fail fast in production
    return _settings
