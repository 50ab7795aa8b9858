"""
Configuration management for makergrade.

Uses pydantic-settings to load configuration from environment variables
with sensible defaults for local development.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "makergrade"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    DB_ECHO: bool = False  # Log all SQL queries (noisy, use sparingly)

    # Database Configuration
    # SQLite by default; set a postgresql+asyncpg:// URL for a shared server
    DATABASE_URL: str = "sqlite+aiosqlite:///./makergrade.db"

    # ==========================================================================
    # Job Orchestration
    # ==========================================================================

    CONTROL_POLL_INTERVAL: float = 1.0  # Seconds between job status reads
    JOB_START_DELAY: float = 0.05  # Delay before a newly created job starts
    RECOVERY_DELAY: float = 0.2  # Delay before a recovered job is re-invoked

    # ==========================================================================
    # Crawl Defaults
    # Used when a crawl job is created without explicit values
    # ==========================================================================

    CRAWL_DEFAULT_START_URL: str = "https://makerworld.com/zh/3d-models"
    CRAWL_DEFAULT_LIMIT: int = 200
    CRAWL_DEFAULT_MAX_SCROLLS: int = 60
    CRAWL_DEFAULT_CONCURRENCY: int = 1
    CRAWL_DEFAULT_DELAY_MS: int = 1200

    # Discovery tuning
    DISCOVERY_SCROLL_PIXELS: int = 2600
    DISCOVERY_SCROLL_SETTLE_MS: int = 900
    DISCOVERY_INITIAL_SETTLE_MS: int = 1500
    DISCOVERY_MAX_BODY_BYTES: int = 2_000_000
    # Below this many direct hits, also run the id/image heuristic
    DISCOVERY_SECONDARY_THRESHOLD: int = 20
    DISCOVERY_SECONDARY_CAP: int = 200  # Max heuristic hits per response body

    # ==========================================================================
    # Browser Automation (Playwright)
    # ==========================================================================

    BROWSER_EXECUTABLE_PATH: str | None = None  # Use bundled Chromium when unset
    BROWSER_USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/123.0.0.0 Safari/537.36"
    )
    BROWSER_NAVIGATION_TIMEOUT_MS: int = 60000
    PAGE_SETTLE_MS: int = 2000

    # ==========================================================================
    # Labeling Configuration
    # ARK (OpenAI-compatible endpoint) takes precedence over OpenAI when both are set
    # ==========================================================================

    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    ARK_API_KEY: str = ""
    ARK_BASE_URL: str = "https://ark.cn-beijing.volces.com/api/v3"
    ARK_MODEL: str = "doubao-seed-1-8-251228"
    LABEL_TIMEOUT: int = 120  # Request timeout in seconds
    LABEL_MAX_IMAGES: int = 10
    LABEL_REFERENCE_DIR: str | None = None  # Directory holding S/A/B/C calibration images

    # ==========================================================================
    # Observability
    # ==========================================================================

    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    OTEL_SERVICE_NAME: str = "makergrade"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None  # Spans stay local when unset
    METRICS_PORT: int | None = None  # Prometheus endpoint for `serve`

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def use_async_driver(cls, v: str) -> str:
        """Rewrite a bare postgresql:// URL to the asyncpg driver."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator("ARK_BASE_URL", mode="before")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        """Drop stray backticks and trailing slashes from a pasted base URL."""
        if isinstance(v, str):
            return v.strip().replace("`", "").rstrip("/")
        return v


# Global settings instance
settings = Settings()
