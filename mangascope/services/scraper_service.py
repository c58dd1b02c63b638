"""Scraper service owning the browser and one scraper per provider."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

import httpx
from playwright.async_api import Browser, Error as PlaywrightError, Page, Route, async_playwright
from playwright_stealth import Stealth

from mangascope.config import settings
from mangascope.models.schemas import (
    ChapterPage,
    ProviderInfo,
    SearchResult,
    SeriesDetail,
)
from mangascope.scrapers.base import BaseScraper
from mangascope.scrapers.factory import Provider, ScraperFactory, resolve_provider

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEAVY_RESOURCE_TYPES = {"image", "media", "font"}


async def block_heavy_resources(route: Route) -> None:
    """Skip image, media and font downloads; markup and scripts still load."""
    if route.request.resource_type in HEAVY_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class ScraperService:
    """
    Runs scraper operations against fresh browser pages.

    The browser is launched on first use and shared by every call; each call
    gets its own page, closed when the call returns.
    """

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """Initialize scraper service.

        Args:
            overrides: Per-provider configuration overrides, keyed by provider id
        """
        self.overrides = dict(overrides or {})
        self.playwright = None
        self.browser: Browser | None = None
        self.client: httpx.AsyncClient | None = None
        self._scrapers: dict[Provider, BaseScraper] = {}
        self._browser_lock = asyncio.Lock()
        self._stealth = Stealth()

    def get_scraper(self, provider: Union[Provider, str]) -> BaseScraper:
        """
        Return the cached scraper for provider, creating it on first use.

        Raises:
            UnsupportedProviderError: If the provider is unknown
            ConfigurationError: If the configured overrides are invalid
        """
        resolved = resolve_provider(provider)
        if resolved not in self._scrapers:
            if self.client is None:
                self.client = httpx.AsyncClient(
                    timeout=settings.HTTP_TIMEOUT, follow_redirects=True
                )
            self._scrapers[resolved] = ScraperFactory.create_scraper(
                resolved, self.overrides.get(resolved.value), client=self.client
            )
        return self._scrapers[resolved]

    async def _ensure_browser(self) -> Browser:
        """Ensure browser instance is initialized."""
        async with self._browser_lock:
            if not self.browser:
                self.playwright = await async_playwright().start()
                self.browser = await self.playwright.chromium.launch(
                    headless=settings.PLAYWRIGHT_HEADLESS,
                    args=settings.PLAYWRIGHT_LAUNCH_ARGS,
                )
                logger.info("Chromium browser launched")
        return self.browser

    async def _open_page(self, provider: Provider, scraper: BaseScraper) -> Page:
        browser = await self._ensure_browser()
        config = scraper.config
        page = await browser.new_page(
            user_agent=config.headers.user_agent,
            viewport=settings.VIEWPORT,
            extra_http_headers={
                "Accept-Language": settings.ACCEPT_LANGUAGE,
                "Referer": config.referer,
            },
        )
        page.set_default_timeout(config.timeout)
        page.set_default_navigation_timeout(config.timeout)
        await self._stealth.apply_stealth_async(page)
        # MangaFire intercepts requests itself while capturing.
        if settings.BLOCK_RESOURCES and provider != Provider.MANGAFIRE:
            await page.route("**/*", block_heavy_resources)
        return page

    async def _close_page(self, page: Page) -> None:
        try:
            await asyncio.wait_for(page.close(), timeout=settings.PAGE_CLOSE_TIMEOUT)
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to close page: {e}")

    async def _run(
        self,
        provider: Union[Provider, str],
        operation: Callable[[BaseScraper, Page], Awaitable[T]],
    ) -> T:
        resolved = resolve_provider(provider)
        scraper = self.get_scraper(resolved)
        page = await self._open_page(resolved, scraper)
        try:
            return await operation(scraper, page)
        finally:
            await self._close_page(page)

    async def search(
        self, provider: Union[Provider, str], term: str, page_number: int = 1
    ) -> SearchResult:
        return await self._run(
            provider, lambda scraper, page: scraper.search(page, term, page_number)
        )

    async def series(self, provider: Union[Provider, str], url: str) -> SeriesDetail:
        return await self._run(
            provider, lambda scraper, page: scraper.get_series_details(page, url)
        )

    async def chapter(self, provider: Union[Provider, str], url: str) -> list[ChapterPage]:
        return await self._run(
            provider, lambda scraper, page: scraper.get_chapter_pages(page, url)
        )

    def providers(self) -> list[ProviderInfo]:
        return ScraperFactory.provider_metadata()

    def provider_status(self) -> dict[str, str]:
        return {
            info.id: "experimental" if info.experimental else "available"
            for info in self.providers()
        }

    async def cleanup(self) -> None:
        """Cleanup all resources."""
        await asyncio.gather(
            *(scraper.cleanup() for scraper in self._scrapers.values()),
            return_exceptions=True,
        )
        self._scrapers.clear()
        if self.client is not None:
            await self.client.aclose()
            self.client = None
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
