"""Toonily scraper."""

import logging

from bs4 import BeautifulSoup

from mangascope.models.provider_config import ToonilyConfig
from mangascope.scrapers.dom import DomScraper
from mangascope.scrapers.page import PageLease
from mangascope.scrapers.parsing import page_text

logger = logging.getLogger(__name__)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class ToonilyScraper(DomScraper):
    """Madara-theme scraper for toonily.com.

    Search pages are fetched over plain HTTP first; the browser is only
    used when that request fails or returns a challenge page.
    """

    cache_namespace = "toonily"
    config: ToonilyConfig

    async def _load_listing(self, lease: PageLease, url: str) -> BeautifulSoup:
        html = await self._fetch_text(
            url,
            referer=self.config.referer,
            headers={"Accept": HTML_ACCEPT},
            timeout_ms=self.config.wait_ms(15000, 0.25),
        )
        if html:
            soup = BeautifulSoup(html, "lxml")
            if not self.block_detector.is_blocked(page_text(soup, limit=4000)):
                logger.info(f"{self.tag} Parsed search page fetched over HTTP")
                return soup
            logger.info(f"{self.tag} HTTP search page was a challenge, using the browser")

        return await super()._load_listing(lease, url)
