"""Configuration settings for the manga scraping service."""

import os
from typing import Optional


class Settings:
    """Application settings."""

    # API settings
    API_TITLE = "Mangascope API"
    API_VERSION = "0.1.0"
    DEBUG = False

    # HTTP Client settings
    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    ACCEPT_LANGUAGE = "en-US,en;q=0.9"
    HTTP_TIMEOUT = 30.0

    # Playwright settings
    PLAYWRIGHT_TIMEOUT = 60000  # milliseconds
    PLAYWRIGHT_HEADLESS = True
    PLAYWRIGHT_LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-blink-features=AutomationControlled",
        "--lang=en-US,en",
    ]
    VIEWPORT = {"width": 1366, "height": 768}
    BLOCK_RESOURCES = True
    PAGE_CLOSE_TIMEOUT = 2.0  # seconds

    # Cache settings (milliseconds, matching the on-disk entry format)
    CACHE_DIR: Optional[str] = None
    CACHE_APP_DIR = "mangascope"
    SEARCH_CACHE_TTL = 60 * 60 * 1000
    DETAILS_CACHE_TTL = 60 * 60 * 1000
    CHAPTER_CACHE_TTL = 12 * 60 * 60 * 1000

    # Security settings
    MAX_URL_LENGTH = 2048
    ALLOWED_SCHEMES = {"http", "https"}

    def __init__(self):
        """Initialize settings from environment variables."""
        self.DEBUG = os.getenv("MANGASCOPE_DEBUG", "false").lower() == "true"
        self.CACHE_DIR = os.getenv("MANGASCOPE_CACHE_DIR") or None
        self.PLAYWRIGHT_HEADLESS = os.getenv("MANGASCOPE_HEADLESS", "true").lower() != "false"
        self.BLOCK_RESOURCES = (
            os.getenv("MANGASCOPE_BLOCK_RESOURCES", "true").lower() == "true"
        )


settings = Settings()
