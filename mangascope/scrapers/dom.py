"""DOM-pattern scraper for Madara-style WordPress manga sites."""

import logging
from typing import Optional
from urllib.parse import quote_plus, urljoin

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError

from mangascope.models.provider_config import MadaraSelectors
from mangascope.models.schemas import (
    ChapterPage,
    ChapterSummary,
    SearchedSeries,
    SearchResult,
    SeriesDetail,
    build_chapter_pages,
)
from mangascope.scrapers.base import MIN_CHAPTER_IMAGES, BaseScraper
from mangascope.scrapers.page import SCROLL_TO_BOTTOM_JS, PageLease
from mangascope.scrapers.parsing import (
    detect_next_page,
    extract_chapter_number,
    extract_images_from_html,
    meta_content,
    normalize_text,
    normalize_url,
    resolve_image_src,
    sanitize_title,
    select_text,
    split_selector_groups,
)


logger = logging.getLogger(__name__)

SEARCH_IMAGE_ATTRIBUTES = ("data-src", "data-lazy-src", "data-original")
AJAX_CHAPTER_ROW = "li.wp-manga-chapter"
AJAX_CHAPTER_DATE = (
    "span.chapter-release-date, span.chapter-release, span.chapter-time, span.post-on"
)
AJAX_PAGE_MARKERS = ".pagination a[data-page], .pagination span[data-page], a[data-page]"
MAX_AJAX_CHAPTER_PAGES = 50
AJAX_HEADERS = {"X-Requested-With": "XMLHttpRequest"}
FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "X-Requested-With": "XMLHttpRequest",
}

# Label keyword -> SeriesDetail field, matched case-insensitively.
INFO_LABELS = (
    (("status",), "status"),
    (("rating",), "rating"),
    (("follow", "view"), "followers"),
    (("author",), "author"),
    (("artist",), "artist"),
    (("serialization", "serial"), "serialization"),
    (("updated",), "updated_on"),
)


def match_info_label(label: str) -> Optional[str]:
    """Map a detail-page label ("Author(s)", "Updated On") to a field name."""
    lowered = label.lower()
    for keywords, field in INFO_LABELS:
        if any(keyword in lowered for keyword in keywords):
            return field
    return None


class DomScraper(BaseScraper):
    """
    Navigate -> wait for container -> extract -> detect pagination.

    Works on Madara-theme sites where search, detail and reader pages are
    server rendered, with AJAX endpoints as the chapter-list fallback.
    """

    ajax_chapter_fallback = True

    @property
    def selectors(self) -> MadaraSelectors:
        return self.config.selectors

    # Search

    def search_url(self, term: str, page_number: int) -> str:
        encoded = quote_plus(term)
        if page_number > 1:
            return f"{self.config.base_url}page/{page_number}/?s={encoded}&post_type=wp-manga"
        return f"{self.config.base_url}?s={encoded}&post_type=wp-manga"

    async def _load_listing(self, lease: PageLease, url: str) -> BeautifulSoup:
        return await self._open(
            lease, url, ready_selector=self.selectors.search.result_container, wait_cap=10000
        )

    async def _search(self, lease: PageLease, term: str, page_number: int) -> SearchResult:
        url = self.search_url(term, page_number)
        logger.info(f"{self.tag} Searching {url}")
        soup = await self._load_listing(lease, url)
        results = self.parse_search_results(soup)
        return SearchResult(
            current_page=page_number,
            has_next_page=self.has_next_page(soup),
            results=results,
        )

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        return detect_next_page(soup, self.selectors.search.next_button)

    def parse_search_results(self, soup: BeautifulSoup) -> list[SearchedSeries]:
        """
        Extract series cards from a search listing.

        Walks the configured result containers; when none match, falls back to
        every anchor matching the link selector.
        """
        selectors = self.selectors.search
        seen: set[str] = set()
        results: list[SearchedSeries] = []

        containers = soup.select(selectors.result_container)
        if containers:
            pairs = [(container, self._resolve_anchor(container)) for container in containers]
        else:
            pairs = [(anchor, anchor) for anchor in soup.select(selectors.link)]

        for root, anchor in pairs:
            if anchor is None:
                continue
            link = normalize_url(anchor.get("href"), self.config.base_root)
            if not link or selectors.link_pattern not in link or "/chapter" in link:
                continue
            if link in seen:
                continue
            image = normalize_url(
                resolve_image_src(root.select_one(selectors.image), SEARCH_IMAGE_ATTRIBUTES),
                self.config.base_root,
            )
            title = self._resolve_title(root, anchor)
            if not image or not title:
                continue
            seen.add(link)
            results.append(
                SearchedSeries(
                    id=link,
                    title=title,
                    image=image,
                    header_for_image=self.image_headers,
                    rating=select_text(root, selectors.rating),
                    chapters=select_text(root, selectors.chapters),
                )
            )
        return results

    def _resolve_anchor(self, root: Tag) -> Optional[Tag]:
        anchor = root.select_one(self.selectors.search.link)
        if anchor is not None and anchor.get("href"):
            return anchor
        pattern = self.selectors.search.link_pattern
        for candidate in root.find_all("a", href=True):
            if pattern in candidate["href"]:
                return candidate
        return None

    def _resolve_title(self, root: Tag, anchor: Tag) -> str:
        """Heading text, then anchor title, anchor text, image alt."""
        selectors = self.selectors.search
        image = root.select_one(selectors.image)
        candidates = (
            select_text(root, selectors.title),
            normalize_text(anchor.get("title")),
            normalize_text(anchor.get_text(" ")),
            normalize_text(image.get("alt")) if image is not None else "",
        )
        raw = next((value for value in candidates if value), "")
        return sanitize_title(raw)

    # Series details

    async def _series_details(self, lease: PageLease, url: str) -> SeriesDetail:
        soup = await self._open(lease, url, ready_selector=self.selectors.detail.title)
        detail = self.parse_series_details(soup, url)
        if not detail["chapters"] and self.ajax_chapter_fallback:
            logger.info(f"{self.tag} No chapter rows in markup, trying AJAX chapter list")
            detail["chapters"] = await self._fetch_ajax_chapters(lease, url, soup)
        return SeriesDetail(**detail)

    def parse_series_details(self, soup: BeautifulSoup, url: str) -> dict:
        selectors = self.selectors.detail
        lazy = self.selectors.chapter.lazy_attributes
        base_root = self.config.base_root

        title = select_text(soup, selectors.title) or meta_content(soup, "og:title")
        image = normalize_url(
            resolve_image_src(soup.select_one(selectors.image), lazy)
            or meta_content(soup, "og:image"),
            base_root,
        )
        description = select_text(soup, selectors.description) or meta_content(
            soup, "og:description"
        )
        genres = [
            text
            for text in (normalize_text(el.get_text(" ")) for el in soup.select(selectors.genres))
            if text
        ]

        info: dict[str, str] = {}
        for item in soup.select(selectors.info_item):
            label = select_text(item, selectors.info_label)
            value = select_text(item, selectors.info_value) or normalize_text(item.get_text(" "))
            field = match_info_label(label) if label else None
            if field and value:
                info[field] = value

        chapters = self.parse_chapter_rows(soup.select(selectors.chapters), url)
        return {
            "id": url,
            "title": sanitize_title(title) if title else "",
            "image": image,
            "description": description,
            "header_for_image": self.image_headers,
            "status": info.get("status", ""),
            "rating": info.get("rating") or None,
            "genres": genres,
            "chapters": chapters,
            "followers": info.get("followers", ""),
            "author": info.get("author", ""),
            "artist": info.get("artist", ""),
            "serialization": info.get("serialization", ""),
            "updated_on": info.get("updated_on", ""),
        }

    def parse_chapter_rows(
        self, rows: list[Tag], series_url: str, date_selector: Optional[str] = None
    ) -> list[ChapterSummary]:
        """Parse chapter rows one by one; rows without a date are kept."""
        selectors = self.selectors.detail
        chapters = []
        for row in rows:
            link = row.select_one(selectors.chapter_link)
            if link is None or not link.get("href"):
                continue
            href = urljoin(series_url, link["href"].strip())
            if "/chapter" not in href:
                continue
            label = normalize_text(link.get_text(" ")) or normalize_text(row.get_text(" "))
            chapters.append(
                ChapterSummary(
                    chapter_number=extract_chapter_number(label, href) or label,
                    chapter_title=label,
                    chapter_url=href,
                    release_date=select_text(row, date_selector or selectors.chapter_date),
                )
            )
        return chapters

    async def _fetch_ajax_chapters(
        self, lease: PageLease, url: str, soup: BeautifulSoup
    ) -> list[ChapterSummary]:
        series_base = url.rstrip("/")
        chapters = await self._fetch_paged_ajax_chapters(lease, series_base)
        if chapters:
            return chapters
        return await self._fetch_legacy_ajax_chapters(lease, series_base, soup)

    def _parse_ajax_chapter_html(
        self, html: str, series_url: str
    ) -> tuple[list[ChapterSummary], Optional[int]]:
        fragment = BeautifulSoup(html, "lxml")
        chapters = self.parse_chapter_rows(
            fragment.select(AJAX_CHAPTER_ROW), series_url, AJAX_CHAPTER_DATE
        )
        pages = []
        for marker in fragment.select(AJAX_PAGE_MARKERS):
            value = (marker.get("data-page") or "").strip()
            if value.isdigit():
                pages.append(int(value))
        return chapters, max(pages) if pages else None

    async def _fetch_paged_ajax_chapters(
        self, lease: PageLease, series_base: str
    ) -> list[ChapterSummary]:
        """Walk ``{series}/ajax/chapters`` pages, POST first then GET."""
        series_url = f"{series_base}/"
        seen: set[str] = set()
        chapters: list[ChapterSummary] = []
        max_page: Optional[int] = None

        for current in range(1, MAX_AJAX_CHAPTER_PAGES + 1):
            target = f"{series_base}/ajax/chapters"
            if current > 1:
                target = f"{target}?t={current}"

            html = await self._in_page_fetch(lease, target, "POST", AJAX_HEADERS)
            if not html:
                html = await self._in_page_fetch(lease, target, "GET", AJAX_HEADERS)
            items, page_count = self._parse_ajax_chapter_html(html, series_url)
            fresh = [item for item in items if item.chapter_url not in seen]
            if not fresh:
                break
            for item in fresh:
                seen.add(item.chapter_url)
                chapters.append(item)

            if max_page is None and page_count:
                max_page = page_count
            if max_page is not None and current >= max_page:
                break

        if chapters:
            logger.info(f"{self.tag} AJAX chapter list returned {len(chapters)} chapters")
        return chapters

    async def _fetch_legacy_ajax_chapters(
        self, lease: PageLease, series_base: str, soup: BeautifulSoup
    ) -> list[ChapterSummary]:
        """POST ``action=manga_get_chapters`` to wp-admin/admin-ajax.php."""
        holder = soup.select_one('div[id^="manga-chapters-holder"]') or soup.select_one(
            "#manga-chapters-holder"
        )
        manga_id = (holder.get("data-id") or "").strip() if holder is not None else ""
        if not manga_id:
            return []

        endpoint = f"{self.config.base_root}/wp-admin/admin-ajax.php"
        html = await self._in_page_fetch(
            lease,
            endpoint,
            "POST",
            FORM_HEADERS,
            f"action=manga_get_chapters&manga={quote_plus(manga_id)}",
        )
        if not html:
            return []
        chapters, _ = self._parse_ajax_chapter_html(html, f"{series_base}/")
        if chapters:
            logger.info(f"{self.tag} Legacy chapter endpoint returned {len(chapters)} chapters")
        return chapters

    # Chapter pages

    async def _scroll_to_bottom(self, lease: PageLease) -> None:
        try:
            await lease.page.evaluate(SCROLL_TO_BOTTOM_JS)
        except PlaywrightError as e:
            logger.debug(f"{self.tag} Scroll failed: {e}")

    def collect_chapter_images(self, soup: BeautifulSoup) -> list[str]:
        """
        Read image URLs from the reader markup.

        Selector groups are tried in priority order so a broad trailing
        ``img`` group only applies when the reader containers are missing.
        """
        selectors = self.selectors.chapter
        for group in split_selector_groups(selectors.images):
            urls: list[str] = []
            for img in soup.select(group):
                url = normalize_url(
                    resolve_image_src(img, selectors.lazy_attributes), self.config.base_root
                )
                if url and url not in urls:
                    urls.append(url)
            if urls:
                return urls
        return []

    def discover_pages(self, soup: BeautifulSoup) -> list[tuple[int, str]]:
        """(page index, image URL) pairs found in the reader markup."""
        return list(enumerate(self.collect_chapter_images(soup), start=1))

    async def _chapter_pages(self, lease: PageLease, url: str) -> list[ChapterPage]:
        await self._open(lease, url, ready_selector=self.selectors.chapter.images)
        await self._scroll_to_bottom(lease)
        await self._sleep_ms(self.config.wait_ms(500, 0.01))

        raw_html = await lease.page.content()
        pages = self.discover_pages(BeautifulSoup(raw_html, "lxml"))
        if len(pages) < MIN_CHAPTER_IMAGES:
            logger.info(f"{self.tag} Only {len(pages)} reader images in DOM, scanning raw HTML")
            images = extract_images_from_html(
                raw_html,
                self.config.base_root,
                self.selectors.chapter.lazy_attributes,
                self.selectors.chapter.cdn_pattern,
                min_images=MIN_CHAPTER_IMAGES,
            )
            if len(images) > len(pages):
                pages = list(enumerate(images, start=1))
        return build_chapter_pages(pages, self.config.referer)
