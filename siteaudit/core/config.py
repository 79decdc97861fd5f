"""
Configuration system with environment-based settings.
Uses pydantic-settings for validation and type safety.
"""

from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

Profile = Literal["smart", "full"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_VERSION: str = "1.0.0"
    ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "console"

    # Crawler (smart profile defaults)
    CRAWLER_USER_AGENT: str = "SiteAuditBot/1.0 (+https://example.com/bot)"
    CRAWLER_SAMPLE_TOTAL_PAGES: int = 50
    CRAWLER_REQUEST_DELAY_MS: int = 1100
    CRAWLER_REQUEST_JITTER_MS: int = 900
    CRAWLER_PER_HOST_CONCURRENCY: int = 1
    CRAWLER_GLOBAL_CONCURRENCY: int = 4
    CRAWLER_PER_PAGE_TIMEOUT_MS: int = 25_000
    CRAWLER_MAX_HTML_BYTES: int = 1_800_000
    CRAWLER_MAX_LINKS_PER_PAGE: int = 250

    # Sitemap safety
    SITEMAP_MAX_BYTES: int = 8_000_000
    SITEMAP_FILES_MAX: int = 3
    SITEMAP_MAX_URLS_PER_FILE: int = 20_000
    SITEMAP_SAMPLE_SIZE: int = 200

    # Reliability (seconds)
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_RESET_TIMEOUT: float = 60.0
    THROTTLE_BASE_DELAY: float = 1.0
    THROTTLE_MAX_DELAY: float = 60.0
    THROTTLE_RESET_WINDOW: float = 300.0


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - created once per process."""
    return Settings()


class CrawlLimits(BaseModel):
    """Budget and politeness limits for one crawl."""
    sample_total_pages: int = Field(default=50, ge=1)
    request_delay_ms: int = Field(default=1100, ge=0)
    request_jitter_ms: int = Field(default=900, ge=0)
    per_host_concurrency: int = Field(default=1, ge=1)
    global_concurrency: int = Field(default=4, ge=1)
    per_page_timeout_ms: int = Field(default=25_000, gt=0)
    max_html_bytes: int = Field(default=1_800_000, gt=0)
    # Hard cap so mega-menus and link farms cannot explode the crawl
    max_links_per_page: int = Field(default=250, ge=0)

    sitemap_max_bytes: int = Field(default=8_000_000, gt=0)
    sitemap_files_max: int = Field(default=3, ge=0)
    sitemap_max_urls_per_file: int = Field(default=20_000, ge=1)
    sitemap_sample_size: int = Field(default=200, ge=0)

    @property
    def concurrency(self) -> int:
        return max(1, min(self.global_concurrency, self.per_host_concurrency))


def build_limits(profile: Profile = "smart", overrides: dict[str, Any] | None = None) -> CrawlLimits:
    """Profile defaults from settings, with caller overrides applied last."""
    settings = get_settings()
    base: dict[str, Any] = {
        "sample_total_pages": settings.CRAWLER_SAMPLE_TOTAL_PAGES,
        "request_delay_ms": settings.CRAWLER_REQUEST_DELAY_MS,
        "request_jitter_ms": settings.CRAWLER_REQUEST_JITTER_MS,
        "per_host_concurrency": settings.CRAWLER_PER_HOST_CONCURRENCY,
        "global_concurrency": settings.CRAWLER_GLOBAL_CONCURRENCY,
        "per_page_timeout_ms": settings.CRAWLER_PER_PAGE_TIMEOUT_MS,
        "max_html_bytes": settings.CRAWLER_MAX_HTML_BYTES,
        "max_links_per_page": settings.CRAWLER_MAX_LINKS_PER_PAGE,
        "sitemap_max_bytes": settings.SITEMAP_MAX_BYTES,
        "sitemap_files_max": settings.SITEMAP_FILES_MAX,
        "sitemap_max_urls_per_file": settings.SITEMAP_MAX_URLS_PER_FILE,
        "sitemap_sample_size": settings.SITEMAP_SAMPLE_SIZE,
    }
    if profile == "full":
        base.update(
            sample_total_pages=120,
            request_delay_ms=500,
            request_jitter_ms=500,
            global_concurrency=8,
            per_host_concurrency=2,
            max_links_per_page=400,
        )
    base.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return CrawlLimits.model_validate(base)
