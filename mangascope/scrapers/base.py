"""Base scraper interface."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from mangascope.config import settings
from mangascope.models.provider_config import ProviderConfiguration
from mangascope.models.schemas import (
    ChapterPage,
    SearchResult,
    SeriesDetail,
)
from mangascope.scrapers.cache import ResultCache
from mangascope.scrapers.errors import (
    BlockDetected,
    NavigationFailure,
    UnsupportedOperationError,
)
from mangascope.scrapers.page import (
    FETCH_TEXT_JS,
    BrowserPage,
    PageLease,
)
from mangascope.scrapers.parsing import (
    DEFAULT_BLOCK_DETECTOR,
    BlockDetector,
    normalize_text,
    page_text,
)

logger = logging.getLogger(__name__)

MIN_CHAPTER_IMAGES = 3

# Failures a single extraction step may hit; absorbed by the public operations.
RECOVERABLE_ERRORS = (PlaywrightError, httpx.HTTPError, NavigationFailure)


class BaseScraper(ABC):
    """
    Abstract base class for provider scrapers.

    The public operations validate arguments, consult the result cache,
    borrow the page through a ``PageLease`` and absorb navigation failures.
    Subclasses implement the underscore-prefixed extraction steps.
    """

    cache_namespace = "default"

    def __init__(
        self,
        config: ProviderConfiguration,
        cache: Optional[ResultCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        block_detector: Optional[BlockDetector] = None,
    ):
        """Initialize scraper.

        Args:
            config: Validated, frozen provider configuration
            cache: Result cache; defaults to the provider namespace on disk
            client: HTTP client for direct requests; created lazily if omitted
            block_detector: Challenge page detector
        """
        self.config = config
        self.cache = cache or ResultCache(self.cache_namespace)
        self.block_detector = block_detector or DEFAULT_BLOCK_DETECTOR
        self._client = client
        self._owns_client = client is None

    @property
    def tag(self) -> str:
        return f"[{self.config.name}]"

    @property
    def image_headers(self) -> dict[str, str]:
        return {"Referer": self.config.base_url}

    # Contract

    async def search(
        self,
        page: BrowserPage,
        term: str,
        page_number: int = 1,
        consumet: bool = False,
    ) -> SearchResult:
        """
        Search the provider catalogue.

        Args:
            page: Borrowed browser page, restored before returning
            term: Search term; empty lists everything
            page_number: 1-based result page
            consumet: Third-party metadata mode, not supported by site scrapers

        Returns:
            SearchResult; empty with has_next_page False when the site could
            not be read

        Raises:
            UnsupportedOperationError: If consumet mode is requested
            ValueError: If page_number is below 1
        """
        if consumet:
            raise UnsupportedOperationError(
                f"Consumet should not be activated for {self.config.base_url}"
            )
        if page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {page_number}")

        term = normalize_text(term)
        cache_key = f"search:{term}:{page_number}"
        cached = self.cache.get(cache_key)
        if cached:
            logger.info(f"{self.tag} Returning cached search results for {term!r}")
            return SearchResult.model_validate(cached)

        async with PageLease(page) as lease:
            try:
                result = await self._search(lease, term, page_number)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"{self.tag} Search for {term!r} failed: {e}")
                result = SearchResult.empty(page_number)

        if result.results:
            self.cache.set(
                cache_key, result.model_dump(by_alias=True), settings.SEARCH_CACHE_TTL
            )
        else:
            logger.warning(f"{self.tag} No search results for {term!r} (page {page_number})")
        return result

    async def get_series_details(self, page: BrowserPage, url: str) -> SeriesDetail:
        """
        Read series metadata and its chapter list.

        Args:
            page: Borrowed browser page, restored before returning
            url: Series detail page URL

        Returns:
            SeriesDetail; status defaults to "Unknown" and chapters may be empty
        """
        cache_key = f"details:{url}"
        cached = self.cache.get(cache_key)
        if cached and cached.get("chapters"):
            logger.info(f"{self.tag} Returning cached details for {url}")
            return SeriesDetail.model_validate(cached)

        async with PageLease(page) as lease:
            try:
                detail = await self._series_details(lease, url)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"{self.tag} Details for {url} failed: {e}")
                detail = SeriesDetail(id=url, header_for_image=self.image_headers)

        if detail.title:
            self.cache.set(
                cache_key, detail.model_dump(by_alias=True), settings.DETAILS_CACHE_TTL
            )
        if not detail.chapters:
            logger.warning(f"{self.tag} No chapters found for {url}")
        return detail

    async def get_chapter_pages(self, page: BrowserPage, url: str) -> list[ChapterPage]:
        """
        Extract the page images of one chapter, in reading order.

        Args:
            page: Borrowed browser page, restored before returning
            url: Chapter reader URL

        Returns:
            Ordered ChapterPage list; empty when every strategy failed
        """
        cache_key = f"chapter:{url}"
        cached = self.cache.get(cache_key)
        if cached:
            logger.info(f"{self.tag} Returning cached pages for {url}")
            return [ChapterPage.model_validate(item) for item in cached]

        async with PageLease(page) as lease:
            try:
                pages = await self._chapter_pages(lease, url)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"{self.tag} Chapter {url} failed: {e}")
                pages = []

        if len(pages) >= MIN_CHAPTER_IMAGES:
            self.cache.set(
                cache_key,
                [item.model_dump(by_alias=True) for item in pages],
                settings.CHAPTER_CACHE_TTL,
            )
        elif not pages:
            logger.warning(
                f"{self.tag} No chapter images found for {url}. The page may have failed to load."
            )
        return pages

    @abstractmethod
    async def _search(self, lease: PageLease, term: str, page_number: int) -> SearchResult:
        pass

    @abstractmethod
    async def _series_details(self, lease: PageLease, url: str) -> SeriesDetail:
        pass

    @abstractmethod
    async def _chapter_pages(self, lease: PageLease, url: str) -> list[ChapterPage]:
        pass

    # Shared steps

    async def _sleep_ms(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000)

    async def _goto(
        self,
        lease: PageLease,
        url: str,
        timeout: Optional[int] = None,
        wait_until: str = "domcontentloaded",
    ) -> Any:
        """
        Navigate the leased page.

        Raises:
            NavigationFailure: On timeout or network error
        """
        try:
            return await lease.page.goto(
                url, wait_until=wait_until, timeout=timeout or self.config.timeout
            )
        except PlaywrightError as e:
            raise NavigationFailure(f"Navigation to {url} failed: {e}") from e

    async def _wait_for(self, lease: PageLease, selector: str, timeout: int) -> bool:
        """Wait for selector; a miss is not an error, parsing proceeds anyway."""
        try:
            await lease.page.wait_for_selector(selector, timeout=timeout)
            return True
        except PlaywrightError:
            return False

    async def _soup(self, lease: PageLease) -> BeautifulSoup:
        return BeautifulSoup(await lease.page.content(), "lxml")

    async def _open(
        self,
        lease: PageLease,
        url: str,
        ready_selector: Optional[str] = None,
        wait_cap: int = 12000,
    ) -> BeautifulSoup:
        """
        Navigate, wait for content and check for challenge pages.

        Each attempt that fails to navigate or lands on a challenge page backs
        off briefly and retries, within the configured retry budget.

        Args:
            lease: Leased page
            url: Target URL
            ready_selector: Container to wait for before parsing
            wait_cap: Upper bound in milliseconds for the container wait

        Returns:
            Parsed page

        Raises:
            NavigationFailure: When every attempt failed or was blocked
        """
        last_error: Optional[NavigationFailure] = None
        for attempt in range(self.config.retries + 1):
            if attempt:
                await self._sleep_ms(self.config.wait_ms(3500, 0.05) * attempt)
            try:
                await self._goto(lease, url)
            except NavigationFailure as e:
                logger.info(f"{self.tag} Attempt {attempt + 1} failed: {e}")
                last_error = e
                continue

            if ready_selector:
                await self._wait_for(lease, ready_selector, self.config.wait_ms(wait_cap, 0.2))
            soup = await self._soup(lease)
            if self.block_detector.is_blocked(page_text(soup, limit=4000)):
                logger.info(f"{self.tag} Challenge page on attempt {attempt + 1} for {url}")
                last_error = BlockDetected(f"Challenge page at {url}")
                continue
            return soup

        raise last_error or NavigationFailure(f"Could not open {url}")

    async def _in_page_fetch(
        self,
        lease: PageLease,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> str:
        """Fetch from inside the page so cookies and origin match the site."""
        try:
            result = await lease.page.evaluate(
                FETCH_TEXT_JS,
                {"url": url, "method": method, "headers": headers or {}, "body": body},
            )
        except PlaywrightError as e:
            logger.debug(f"{self.tag} In-page fetch of {url} failed: {e}")
            return ""
        if not result or not result.get("ok"):
            return ""
        return result.get("text") or ""

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.HTTP_TIMEOUT,
                follow_redirects=True,
                headers={"User-Agent": self.config.headers.user_agent},
            )
        return self._client

    def _request_headers(
        self, referer: Optional[str] = None, extra: Optional[dict[str, str]] = None
    ) -> dict[str, str]:
        headers = {
            "User-Agent": self.config.headers.user_agent,
            "Accept-Language": settings.ACCEPT_LANGUAGE,
        }
        if referer:
            headers["Referer"] = referer
        headers.update(extra or {})
        return headers

    async def _fetch_text(
        self,
        url: str,
        referer: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        timeout_ms: int = 8000,
    ) -> Optional[str]:
        """
        Plain HTTP GET outside the browser.

        Returns:
            Response body, or None on network errors and non-2xx statuses
        """
        try:
            response = await self._http_client().get(
                url,
                headers=self._request_headers(referer, headers),
                timeout=min(timeout_ms, self.config.timeout) / 1000,
            )
        except httpx.HTTPError as e:
            logger.debug(f"{self.tag} GET {url} failed: {e}")
            return None
        if not response.is_success:
            logger.debug(f"{self.tag} GET {url} returned {response.status_code}")
            return None
        return response.text

    async def cleanup(self) -> None:
        """Close the HTTP client if this scraper created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
