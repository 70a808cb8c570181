"""Application configuration loaded from environment variables."""

from datetime import date

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "DISCOM Dashboard API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = True

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # Upstream analytics API (the read-only REST surface the dashboard consumes)
    DASHBOARD_API_BASE_URL: str = "http://127.0.0.1:8000"

    # Per-call timeouts. KPI fetches over large date ranges routinely take
    # 20-40 seconds upstream, so the KPI budget is the most generous one.
    KPI_TIMEOUT_SEC: float = 60.0
    FILTER_OPTIONS_TIMEOUT_SEC: float = 10.0
    CHART_TIMEOUT_SEC: float = 60.0
    DETAIL_VIEW_TIMEOUT_SEC: float = 60.0

    # Filter defaults
    DEFAULT_START_DATE: date = date(2025, 1, 1)

    # KPI cards
    KPI_INCLUDE_OPTIONAL_METRICS: bool = False  # average current and voltage

    # Chart-specific request parameters
    TOP_EVENTS_LIMIT: int = 100
    TOP_EVENTS_DEFAULT_TYPE: str = "Critical"
    ANOMALY_THRESHOLD: float = 2.0
    SOLAR_FORECAST_DAYS: int = 7

    # Redis session store (optional - sessions fall back to process memory)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    REDIS_ENABLED: bool = True  # Set to False to keep sessions in memory only
    SESSION_TTL_SEC: int = 8 * 60 * 60
    SESSION_KEY_PREFIX: str = "dashboard_session"

    # Reject oversized request bodies on the HTTP surface.
    MAX_REQUEST_BYTES: int = 256 * 1024

    @property
    def api_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.DASHBOARD_API_BASE_URL.rstrip("/")


settings = Settings()
