from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Bind address for `deepsearch-server`
    host: str = "0.0.0.0"
    port: int = 8000

    # Persistence (chats and daily request log)
    database_url: str = "sqlite+aiosqlite:///./deepsearch.db"
    db_pool_size: int = 20
    db_max_overflow: int = 10

    # Redis settings (the shared window/cache store)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Global rate limiting (shared by every chat turn)
    rate_limit_max_requests: int = 1
    rate_limit_window_ms: int = 5_000
    rate_limit_key_prefix: str = "global"

    # Daily admission precheck for non-admin users
    daily_request_limit: int = 1

    # Result cache
    cache_key_prefix: str = "deepsearch:"
    scrape_cache_ttl_seconds: int = 6 * 60 * 60

    # Serper web search
    serper_api_key: str = ""
    serper_base_url: str = "https://google.serper.dev"
    search_num_results: int = 10

    # Model invocation (any OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    model_name: str = "gpt-4o-mini"
    model_timeout: float = 60.0
    max_steps: int = 10

    # Use the scripted mock model instead of a real provider
    mock_provider: bool = False

    # Page scraping
    scrape_concurrency: int = 8
    scrape_timeout: float = 15.0
    scrape_max_retries: int = 3
    scrape_max_content_chars: int = 20_000
    scrape_user_agent: str = "DeepSearchBot/1.0 (+https://github.com/deepsearch)"

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 30.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator(
        "rate_limit_max_requests",
        "rate_limit_window_ms",
        "daily_request_limit",
        "max_steps",
        "scrape_concurrency",
        "search_num_results",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counters and limits are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("scrape_cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, v: int) -> int:
        """Validate the cache TTL is positive."""
        if v <= 0:
            raise ValueError("scrape_cache_ttl_seconds must be positive")
        return v

    @field_validator(
        "model_timeout",
        "scrape_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("scrape_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("scrape_max_retries cannot be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
