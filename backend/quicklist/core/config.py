from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central settings object.
    Render will provide env vars; locally you can use backend/.env.

    A PipelineContext snapshots one of these per request, so nothing in the
    pipeline reads process-wide state once a request has started.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API keys
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    SERPAPI_API_KEY: str = ""

    # Marketplace defaults
    EBAY_DOMAIN: str = "ebay.co.uk"
    CURRENCY_SYMBOL: str = "£"
    DEFAULT_MARKETPLACE: str = "ebay"

    # Timeouts (seconds) for a single external call
    MODEL_TIMEOUT_SECONDS: float = 60.0
    SEARCH_TIMEOUT_SECONDS: float = 30.0

    # Retry behavior for 429/503 and transport errors
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_BACKOFF_SECONDS: float = 20.0

    # Confidence tiers. Numeric model confidences are bucketed with these
    # boundaries; the top candidate must reach AUTO_ACCEPT_TIER to skip
    # manual disambiguation.
    CONFIDENCE_HIGH_MIN: float = 0.85
    CONFIDENCE_MEDIUM_MIN: float = 0.60
    AUTO_ACCEPT_TIER: str = "HIGH"

    # Blur detection (Laplacian variance below threshold = blurry)
    BLUR_VARIANCE_THRESHOLD: float = 100.0
    BLUR_MAX_DIMENSION: int = 1024

    # Quality gate
    QUALITY_DEFAULT_SCORE: int = 70
    QUALITY_WARNING_SCORE: int = 60

    # Pricing
    PRICING_PAGE_SIZE: int = 50

    LOG_LEVEL: str = "INFO"

    # Versioning
    APP_VERSION: str = "0.1.0"
    BUILD_ID: str = "dev"


# ✅ MUST EXIST: routes and main.py import this
@lru_cache
def get_settings() -> Settings:
    return Settings()
