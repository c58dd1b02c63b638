"""MangaGG scraper."""

from mangascope.models.provider_config import MangaGGConfig
from mangascope.scrapers.dom import DomScraper


class MangaGGScraper(DomScraper):
    """Madara-theme scraper for mangagg.com.

    Series live under ``/comic/``; chapter lists are often only served by the
    AJAX endpoints, which the shared fallback handles.
    """

    cache_namespace = "mangagg"
    config: MangaGGConfig
