"""Asura Scans scraper."""

import logging
import re
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag

from mangascope.models.provider_config import AsuraScansConfig, AsuraSelectors
from mangascope.models.schemas import ChapterSummary, SearchedSeries
from mangascope.scrapers.dom import DomScraper
from mangascope.scrapers.parsing import (
    detect_next_page,
    extract_chapter_number,
    meta_content,
    normalize_text,
    normalize_url,
    resolve_image_src,
    sanitize_title,
    select_text,
)

logger = logging.getLogger(__name__)

FOLLOWERS_RE = re.compile(r"(\d[\d,.]*)\s+people", re.IGNORECASE)
PAGE_ALT_RE = re.compile(r"page\s+(\d+)", re.IGNORECASE)

GRID_LABELS = {
    "author": "author",
    "artist": "artist",
    "serialization": "serialization",
    "updated on": "updated_on",
}


class AsuraScansScraper(DomScraper):
    """Scraper for asuracomic.net.

    The site is a client-rendered app with utility-class markup, so search
    cards are walked through a fixed nesting of divs and detail metadata is
    read from label/value pairs in a grid.
    """

    cache_namespace = "asura"
    ajax_chapter_fallback = False
    config: AsuraScansConfig

    @property
    def selectors(self) -> AsuraSelectors:
        return self.config.selectors

    def search_url(self, term: str, page_number: int) -> str:
        return f"{self.config.base_url}series?page={page_number}&name={quote(term)}"

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        search = self.selectors.search
        return detect_next_page(
            soup, search.next_button, next_text=search.pagination.next_button_text
        )

    def parse_search_results(self, soup: BeautifulSoup) -> list[SearchedSeries]:
        """Walk each result anchor: div > div > (cover div, text div)."""
        structure = self.selectors.search.structure
        seen: set[str] = set()
        results = []

        for anchor in soup.select(self.selectors.search.result_container):
            first_div = anchor.select_one(structure.first_div)
            inner_div = first_div.select_one(structure.inner_div) if first_div else None
            if inner_div is None:
                continue
            columns = inner_div.select(structure.scope_div)
            if len(columns) < 2:
                continue

            cover, text = columns[0], columns[1]
            spans = text.select(structure.spans)
            img = cover.select_one(structure.image)
            link = normalize_url(anchor.get("href"), self.config.base_root)
            if not link or link in seen:
                continue

            candidates = (
                normalize_text(spans[0].get_text(" ")) if spans else "",
                normalize_text(anchor.get("title")),
                normalize_text(img.get("alt")) if img is not None else "",
            )
            title = sanitize_title(next((value for value in candidates if value), ""))
            if not title:
                continue

            seen.add(link)
            results.append(
                SearchedSeries(
                    id=link,
                    title=title,
                    image=normalize_url(
                        resolve_image_src(img, self.selectors.chapter.lazy_attributes),
                        self.config.base_root,
                    ),
                    header_for_image=self.image_headers,
                    status=select_text(cover, structure.status_span),
                    chapters=normalize_text(spans[1].get_text(" ")) if len(spans) > 1 else "",
                    rating=select_text(text, structure.rating_text),
                )
            )
        return results

    def _labelled_sibling(self, soup: BeautifulSoup, selector: str, label: str) -> str:
        for element in soup.select(selector):
            if label.lower() in element.get_text(" ").lower():
                sibling = element.find_next_sibling()
                if sibling is not None:
                    return normalize_text(sibling.get_text(" "))
        return ""

    def parse_series_details(self, soup: BeautifulSoup, url: str) -> dict:
        selectors = self.selectors.detail
        base_root = self.config.base_root

        title = select_text(soup, selectors.title) or meta_content(soup, "og:title")
        image = normalize_url(
            resolve_image_src(soup.select_one(selectors.image), self.selectors.chapter.lazy_attributes)
            or meta_content(soup, "og:image"),
            base_root,
        )
        followers_match = FOLLOWERS_RE.search(select_text(soup, selectors.followers))
        description = self._labelled_sibling(
            soup, selectors.synopsis_heading, "Synopsis"
        ) or meta_content(soup, "og:description")

        grid: dict[str, str] = {}
        elements = soup.select(selectors.grid_elements)
        for label_el, value_el in zip(elements[::2], elements[1::2]):
            field = GRID_LABELS.get(normalize_text(label_el.get_text(" ")).lower())
            if field:
                grid[field] = normalize_text(value_el.get_text(" "))

        return {
            "id": url,
            "title": title,
            "image": image,
            "description": description,
            "header_for_image": self.image_headers,
            "status": self._labelled_sibling(soup, selectors.status, "Status"),
            "rating": select_text(soup, selectors.rating) or None,
            "genres": [
                text
                for text in (normalize_text(el.get_text(" ")) for el in soup.select(selectors.genres))
                if text
            ],
            "chapters": self.parse_asura_chapters(soup.select(selectors.chapters)),
            "followers": followers_match.group(1) if followers_match else "",
            "author": grid.get("author", ""),
            "artist": grid.get("artist", ""),
            "serialization": grid.get("serialization", ""),
            "updated_on": grid.get("updated_on", ""),
        }

    def chapter_url(self, href: str) -> str:
        """Chapter links are relative to /series/ and may omit that prefix."""
        href = href.strip()
        if href.startswith(("http://", "https://")):
            return href
        path = href.lstrip("/")
        if not path.startswith("series/"):
            path = f"series/{path}"
        return f"{self.config.base_url}{path}"

    def parse_asura_chapters(self, rows: list[Tag]) -> list[ChapterSummary]:
        selectors = self.selectors.detail
        chapters = []
        for row in rows:
            link = row.select_one(selectors.chapter_link)
            if link is None or not link.get("href"):
                continue
            url = self.chapter_url(link["href"])
            label = select_text(link, selectors.chapter_title)
            chapters.append(
                ChapterSummary(
                    chapter_number=extract_chapter_number(label, url),
                    chapter_title=label,
                    chapter_url=url,
                    release_date=select_text(link, selectors.chapter_date),
                )
            )
        return chapters

    def discover_pages(self, soup: BeautifulSoup) -> list[tuple[int, str]]:
        """Page numbers come from "page N" alt text when present."""
        discovered = []
        seen: set[str] = set()
        for position, img in enumerate(soup.select(self.selectors.chapter.images), start=1):
            url = normalize_url(
                resolve_image_src(img, self.selectors.chapter.lazy_attributes),
                self.config.base_root,
            )
            if not url or url in seen:
                continue
            seen.add(url)
            discovered.append((self._page_from_alt(img.get("alt"), position), url))
        return discovered

    @staticmethod
    def _page_from_alt(alt: Optional[str], fallback: int) -> int:
        match = PAGE_ALT_RE.search(alt or "")
        return int(match.group(1)) if match else fallback
