import logging

from pydantic_settings import BaseSettings
from typing import List

_logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/141.0.7390.78 Mobile Safari/537.36"
)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "ProfileHarvest"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Admission gate: max browser contexts open at once
    MAX_CONCURRENT_PAGES: int = 5

    # Browser engine
    BROWSER_HEADLESS: bool = True
    BROWSER_EXECUTABLE_PATH: str = ""  # empty = probe platform defaults, then bundled
    BROWSER_USER_AGENT: str = DEFAULT_USER_AGENT
    VIEWPORT_WIDTH: int = 1200
    VIEWPORT_HEIGHT: int = 800
    ENGINE_SHUTDOWN_GRACE_SECONDS: float = 10.0

    # Scraping
    TARGET_BASE_URL: str = "https://www.tiktok.com"
    SCRAPE_TIMEOUT_SECONDS: float = 60.0  # end-to-end, including queueing
    NAVIGATION_TIMEOUT_MS: int = 30000
    SEARCH_PROBE_BUDGET_MS: int = 6000
    PROFILE_PROBE_BUDGET_MS: int = 10000
    DEFAULT_SEARCH_RESULTS: int = 5

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    def model_post_init(self, __context) -> None:
        if self.MAX_CONCURRENT_PAGES < 1:
            _logger.warning(
                "MAX_CONCURRENT_PAGES=%d is not positive, using 1",
                self.MAX_CONCURRENT_PAGES,
            )
            object.__setattr__(self, "MAX_CONCURRENT_PAGES", 1)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
