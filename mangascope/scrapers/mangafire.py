"""MangaFire scraper.

MangaFire renders everything client side and serves chapter images only
through AJAX endpoints signed with a short-lived ``vrf`` token. Tokens cannot
be computed, so the scraper watches the page's own traffic for signed
requests and replays them over HTTP.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError

from mangascope.models.provider_config import MangaFireConfig, MangaFireSelectors
from mangascope.models.schemas import (
    ChapterPage,
    ChapterSummary,
    SearchedSeries,
    SearchResult,
    SeriesDetail,
    build_chapter_pages,
)
from mangascope.scrapers.base import MIN_CHAPTER_IMAGES, BaseScraper
from mangascope.scrapers.capture import (
    CaptureSession,
    TokenCache,
    is_signed_chapter_request,
    normalize_path,
    parse_json_payload,
    signed_path_matcher,
    token_from_url,
    unwrap_html_result,
    unwrap_list_html,
)
from mangascope.scrapers.errors import BlockDetected, NavigationFailure
from mangascope.scrapers.page import STOP_LOADING_JS, PageLease
from mangascope.scrapers.parsing import (
    LIST_BLOCK_PHRASES,
    OFFLINE_PHRASES,
    PhraseBlockDetector,
    extract_chapter_number,
    extract_images_from_html,
    meta_content,
    normalize_text,
    normalize_url,
    page_text,
    resolve_image_src,
    sanitize_title,
    select_text,
)

logger = logging.getLogger(__name__)

MAX_CAPTURE_ATTEMPTS = 2
RETRY_BACKOFF_MS = 80
LANDING_BACKOFF_MS = 120
TOKEN_RETRY_MS = 200
OFFLINE_POLL_MS = 200
FILTER_URL_TTL = 5 * 60 * 1000
CHAPTER_ENDPOINT_TTL = 2 * 60 * 1000

LANDING_PATHS = {"", "/", "/home"}
BLOCKED_STATUSES = {403, 429}
ERROR_PAGE_PREFIXES = ("chrome-error://", "about:blank")
SEARCH_IMAGE_ATTRIBUTES = ("data-src", "data-original", "data-lazy-src")
AJAX_HEADERS = {"X-Requested-With": "XMLHttpRequest"}

IMAGE_EXTENSION_RE = re.compile(r"\.(jpe?g|png|webp|gif)(\?|$)", re.IGNORECASE)
REJECTED_IMAGE_MARKERS = ("/assets/", "logo", "favicon", "icon")
CHAPTER_PREFIX_RE = re.compile(r"(?:chapter|chap|ch\.?)[\s-]*[\d.]+", re.IGNORECASE)
TITLE_PUNCTUATION_RE = re.compile(r"[:\-–]+")
LANGUAGE_CODE_RE = re.compile(r"\b(en|pt-br|pt|es|fr|jp|kr|ru|de|it|tr|ar|id)\b", re.IGNORECASE)
SEARCH_VALUE_RE = re.compile(r"[^a-z0-9]+")
DATA_ID_ATTRIBUTES = ("data-id", "data-chapter-id", "data-hid")
DATA_NUMBER_ATTRIBUTES = ("data-number", "data-num")

# Fills the site search form and submits it so the page signs the filter URL.
SUBMIT_SEARCH_JS = """
({form, input, value}) => {
  const formEl = document.querySelector(form);
  const inputEl = document.querySelector(input);
  if (!formEl || !inputEl) return false;
  inputEl.value = value;
  inputEl.dispatchEvent(new Event('input', {bubbles: true}));
  inputEl.dispatchEvent(new Event('change', {bubbles: true}));
  if (typeof formEl.requestSubmit === 'function') {
    formEl.requestSubmit();
  } else {
    formEl.submit();
  }
  return true;
}
"""


def extract_hid(url: str) -> str:
    """Short series id after the last dot of the first dotted path segment."""
    for segment in urlsplit(url).path.split("/"):
        if "." in segment:
            return segment.rsplit(".", 1)[-1]
    return ""


@dataclass(frozen=True)
class ReaderLocation:
    """Parts of a reader URL: /read/{slug}.{hid}/{lang}/chapter-{n}."""

    url: str
    origin: str
    path: str
    hid: str
    lang: str
    chapter_number: str

    @classmethod
    def parse(cls, url: str) -> "ReaderLocation":
        parts = urlsplit(url)
        segments = [segment for segment in parts.path.split("/") if segment]
        lang, chapter_segment = "en", ""
        if "read" in segments:
            index = segments.index("read")
            if len(segments) > index + 2:
                lang = segments[index + 2] or "en"
            if len(segments) > index + 3:
                chapter_segment = segments[index + 3]
        match = re.search(r"chapter-([\d.]+)", chapter_segment, re.IGNORECASE)
        return cls(
            url=url,
            origin=f"{parts.scheme}://{parts.netloc}",
            path=parts.path,
            hid=extract_hid(url),
            lang=lang,
            chapter_number=match.group(1) if match else "",
        )

    @property
    def list_path(self) -> str:
        return f"/ajax/read/{self.hid}/chapter/{self.lang}" if self.hid else ""


def clean_chapter_title(text: str) -> str:
    """Drop "Chapter N" and language codes; very short leftovers become ''."""
    cleaned = CHAPTER_PREFIX_RE.sub("", text, count=1)
    cleaned = TITLE_PUNCTUATION_RE.sub(" ", cleaned)
    cleaned = LANGUAGE_CODE_RE.sub("", cleaned)
    cleaned = normalize_text(cleaned)
    return cleaned if len(cleaned) > 2 else ""


def _row_attribute(item: Tag, attributes: tuple[str, ...]) -> str:
    """First non-empty value of attributes on the row itself, then on its descendants."""
    for attribute in attributes:
        value = item.get(attribute)
        if value:
            return value.strip()
    for attribute in attributes:
        holder = item.find(attrs={attribute: True})
        if holder is not None and holder.get(attribute):
            return holder[attribute].strip()
    return ""


def find_chapter_id(list_html: str, target_path: str, chapter_number: str) -> str:
    """
    Locate the internal id of a chapter in the reader's chapter list.

    A row matches when its link is a suffix of target_path, its data-number
    equals chapter_number, or its link contains ``chapter-{chapter_number}``.

    Returns:
        The row id, or '' when no row matches
    """
    soup = BeautifulSoup(list_html, "lxml")
    target = normalize_path(target_path)
    for item in soup.find_all("li"):
        chapter_id = _row_attribute(item, DATA_ID_ATTRIBUTES)
        if not chapter_id:
            continue
        number = _row_attribute(item, DATA_NUMBER_ATTRIBUTES)
        link = item.find("a", href=True)
        href = link["href"].strip() if link is not None else ""
        href_path = normalize_path(urlsplit(href).path) if href else ""
        if href_path and target.endswith(href_path):
            return chapter_id
        if chapter_number and number == chapter_number:
            return chapter_id
        if chapter_number and f"chapter-{chapter_number}" in href:
            return chapter_id
    return ""


def normalize_search_value(value: str) -> str:
    return SEARCH_VALUE_RE.sub(" ", value.lower()).strip()


def bigram_score(value: str, query: str) -> float:
    """Dice coefficient over character bigrams, ignoring spaces."""
    clean_value = value.replace(" ", "")
    clean_query = query.replace(" ", "")
    if len(clean_value) < 2 or len(clean_query) < 2:
        return 0.0
    value_grams = [clean_value[i : i + 2] for i in range(len(clean_value) - 1)]
    query_grams = [clean_query[i : i + 2] for i in range(len(clean_query) - 1)]
    counts: dict[str, int] = {}
    for gram in value_grams:
        counts[gram] = counts.get(gram, 0) + 1
    overlap = 0
    for gram in query_grams:
        if counts.get(gram, 0) > 0:
            overlap += 1
            counts[gram] -= 1
    return 2 * overlap / (len(value_grams) + len(query_grams))


def score_title_match(title: str, query: str) -> float:
    """Similarity of a result title to an already normalized query."""
    if not query:
        return 0.0
    candidate = normalize_search_value(title)
    if not candidate:
        return 0.0
    if candidate == query:
        return 10.0
    score = 0.0
    if candidate.startswith(query):
        score += 6
    if query in candidate:
        score += 4
    candidate_tokens = candidate.split()
    query_tokens = query.split()
    if candidate_tokens and query_tokens:
        overlap = sum(1 for token in candidate_tokens if token in query_tokens)
        score += overlap / max(len(candidate_tokens), len(query_tokens)) * 3
    score += max(0.0, 2 - abs(len(candidate) - len(query)) * 0.08)
    score += bigram_score(candidate, query) * 3
    return score


def rank_results(results: list[SearchedSeries], term: str) -> list[SearchedSeries]:
    """Order results by title similarity; ties keep site order."""
    query = normalize_search_value(term)
    if len(query) < 3:
        return results
    return sorted(results, key=lambda item: -score_title_match(item.title, query))


def with_query_param(url: str, key: str, value: str) -> str:
    parts = urlsplit(url)
    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    params.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(params)))


def _page_number(value: Any, fallback: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return fallback


class MangaFireScraper(BaseScraper):
    """
    AJAX-capture scraper for mangafire.to.

    Chapter pages go through an ordered chain of strategies and stop at the
    first one yielding at least ``MIN_CHAPTER_IMAGES`` plausible images:

    1. direct-replay: a token for the chapter endpoint cached this session
    2. passive-capture: navigate with traffic observation and race a signed
       request, a parsed response and a timeout; landing-page redirects and
       challenge pages reset the page and retry
    3. dom-fallback: reader markup, then raw HTML and script arrays
    4. list-lookup: chapter list endpoint, chapter id, signed chapter endpoint
    """

    cache_namespace = "mangafire"
    config: MangaFireConfig

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tokens = TokenCache()
        self.list_block_detector = PhraseBlockDetector(LIST_BLOCK_PHRASES)
        self.offline_detector = PhraseBlockDetector(OFFLINE_PHRASES)
        self.last_strategy = ""

    @property
    def selectors(self) -> MangaFireSelectors:
        return self.config.selectors

    @property
    def image_headers(self) -> dict[str, str]:
        return {"Referer": self.config.base_root}

    # Search

    async def _search(self, lease: PageLease, term: str, page_number: int) -> SearchResult:
        base_root = self.config.base_root
        html: Optional[str] = None

        if term:
            filter_url = await self._capture_filter_url(lease, term)
            if filter_url:
                if page_number > 1:
                    filter_url = with_query_param(filter_url, "page", str(page_number))
                html = await self._fetch_html(filter_url)
            if not html:
                logger.info(f"{self.tag} Falling back to the A-Z list search")
                params = {"keyword": term}
                if page_number > 1:
                    params["page"] = str(page_number)
                html = await self._fetch_html(f"{base_root}/az-list?{urlencode(params)}")
        else:
            listing = f"{base_root}/az-list"
            if page_number > 1:
                listing = f"{listing}?page={page_number}"
            html = await self._fetch_html(listing)

        if not html:
            return SearchResult.empty(page_number)

        soup = BeautifulSoup(html, "lxml")
        if self.block_detector.is_blocked(page_text(soup, limit=4000)):
            raise BlockDetected(f"Challenge page returned for search {term!r}")

        results = self.parse_search_results(soup)
        return SearchResult(
            current_page=page_number,
            has_next_page=self.has_next_page(soup),
            results=rank_results(results, term),
        )

    def _filter_matcher(self, term: str):
        expected = term.lower()
        origin = urlsplit(self.config.base_root)

        def matches(url: str) -> bool:
            parts = urlsplit(url)
            if (parts.scheme, parts.netloc) != (origin.scheme, origin.netloc):
                return False
            if normalize_path(parts.path) != "/filter":
                return False
            params = dict(parse_qsl(parts.query))
            keyword = normalize_text(params.get("keyword")).lower()
            return bool(keyword) and bool(params.get("vrf")) and keyword == expected

        return matches

    async def _capture_filter_url(self, lease: PageLease, term: str) -> Optional[str]:
        """
        Capture the signed filter URL the site builds for term.

        Submits the search form on the home page (then on the base URL) and
        waits for the outgoing ``/filter?keyword=...&vrf=...`` request.
        """
        cache_key = f"filter-url:{term.lower()}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        selectors = self.selectors.search
        session = CaptureSession(self._filter_matcher(term))
        lease.on("request", session.on_request)
        captured = ""
        try:
            for target in (f"{self.config.base_root}/home", self.config.base_root):
                session.arm()
                try:
                    await self._goto(lease, target, timeout=self.config.wait_ms(12000))
                except NavigationFailure as e:
                    logger.info(f"{self.tag} {e}; submitting the search form anyway")
                await self._wait_for(lease, selectors.form, self.config.wait_ms(4000))
                try:
                    await lease.page.evaluate(
                        SUBMIT_SEARCH_JS,
                        {"form": selectors.form, "input": selectors.keyword_input, "value": term},
                    )
                except PlaywrightError as e:
                    logger.debug(f"{self.tag} Search form submission failed: {e}")
                outcome = await session.race(self.config.wait_ms(6000))
                captured = outcome.url or session.captured_url
                if captured:
                    break
        finally:
            session.close()
            lease.off("request", session.on_request)

        if captured:
            logger.info(f"{self.tag} Captured signed filter URL for {term!r}")
            self.cache.set(cache_key, captured, FILTER_URL_TTL)
        else:
            logger.info(f"{self.tag} No signed filter URL captured for {term!r}")
        return captured or None

    async def _fetch_html(self, url: str) -> Optional[str]:
        text = await self._fetch_text(
            url, referer=f"{self.config.base_root}/", timeout_ms=self.config.wait_ms(8000)
        )
        if text and text.strip().startswith("{"):
            return unwrap_html_result(parse_json_payload(text)) or text
        return text

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        return bool(
            soup.select_one('link[rel="next"]') or soup.select_one(self.selectors.search.next_button)
        )

    def parse_search_results(self, soup: BeautifulSoup) -> list[SearchedSeries]:
        selectors = self.selectors.search
        base_root = self.config.base_root
        seen: set[str] = set()
        results = []

        for container in soup.select(selectors.result_container):
            anchor = container.select_one(selectors.link)
            if anchor is None or not anchor.get("href"):
                anchor = container.select_one("a.poster")
            link = normalize_url(anchor.get("href") if anchor is not None else "", base_root)
            if not link or "/manga/" not in link or link in seen:
                continue

            img = container.select_one(selectors.image)
            candidates = (
                select_text(container, selectors.title),
                normalize_text(anchor.get("title")),
                normalize_text(anchor.get_text(" ")),
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
                    image=normalize_url(resolve_image_src(img, SEARCH_IMAGE_ATTRIBUTES), base_root),
                    header_for_image=self.image_headers,
                    rating=select_text(container, selectors.rating),
                    chapters=select_text(container, selectors.chapters),
                )
            )
        return results

    # Series details

    async def _series_details(self, lease: PageLease, url: str) -> SeriesDetail:
        soup = await self._open(lease, url, ready_selector=self.selectors.detail.title)
        detail = self.parse_series_details(soup, url)

        hid = extract_hid(url)
        if hid:
            chapters = await self._fetch_series_chapters(hid)
            if chapters:
                logger.info(f"{self.tag} Chapter list endpoint returned {len(chapters)} chapters")
                detail["chapters"] = chapters
        return SeriesDetail(**detail)

    async def _fetch_series_chapters(self, hid: str) -> list[ChapterSummary]:
        text = await self._fetch_text(
            f"{self.config.base_root}/ajax/manga/{hid}/chapter/en",
            referer=f"{self.config.base_root}/",
            headers=AJAX_HEADERS,
            timeout_ms=self.config.wait_ms(8000),
        )
        payload = parse_json_payload(text) if text else None
        if not isinstance(payload, dict) or payload.get("status") != 200:
            return []
        html = unwrap_html_result(payload)
        if not html:
            return []
        return self.parse_chapter_items(BeautifulSoup(html, "lxml").select("li.item"))

    def parse_series_details(self, soup: BeautifulSoup, url: str) -> dict:
        selectors = self.selectors.detail
        base_root = self.config.base_root

        meta: dict[str, str] = {}
        for item in soup.select(selectors.meta_item):
            label = select_text(item, selectors.meta_label)
            value = select_text(item, selectors.meta_value)
            if not label or not value or label == value:
                continue
            for field in ("author", "artist", "serialization", "updated"):
                if field in label.lower():
                    meta[field] = value

        title = select_text(soup, selectors.title) or meta_content(soup, "og:title")
        image = resolve_image_src(soup.select_one(selectors.image), SEARCH_IMAGE_ATTRIBUTES)
        return {
            "id": url,
            "title": title,
            "image": normalize_url(image or meta_content(soup, "og:image"), base_root),
            "description": select_text(soup, selectors.description)
            or meta_content(soup, "og:description"),
            "header_for_image": self.image_headers,
            "status": select_text(soup, selectors.status),
            "rating": select_text(soup, selectors.rating) or None,
            "genres": [
                text
                for text in (normalize_text(el.get_text(" ")) for el in soup.select(selectors.genres))
                if text
            ],
            "chapters": self.parse_chapter_items(soup.select(selectors.chapters)),
            "author": meta.get("author", ""),
            "artist": meta.get("artist", ""),
            "serialization": meta.get("serialization", ""),
            "updated_on": meta.get("updated", ""),
        }

    def parse_chapter_items(self, items: list[Tag]) -> list[ChapterSummary]:
        """Parse ``li.item`` chapter rows from the detail page or the list endpoint."""
        selectors = self.selectors.detail
        chapters = []
        for item in items:
            link = item.select_one(selectors.chapter_link)
            href = (link.get("href") or "").strip() if link is not None else ""
            url = normalize_url(href, self.config.base_root)
            if not url:
                continue
            spans = link.select(selectors.chapter_title)
            label = normalize_text(
                (spans[0].get_text(" ") if spans else "")
                or link.get("title")
                or link.get_text(" ")
            )
            number = item.get("data-number") or item.get("data-num") or ""
            chapters.append(
                ChapterSummary(
                    chapter_number=number or extract_chapter_number(label, url),
                    chapter_title=clean_chapter_title(label),
                    chapter_url=url,
                    release_date=normalize_text(spans[1].get_text(" ")) if len(spans) > 1 else "",
                )
            )
        return chapters

    # Chapter pages

    def is_plausible_image(self, url: str) -> bool:
        """Reader CDN images only; rejects logos, icons and site assets."""
        lowered = url.lower()
        if any(marker in lowered for marker in REJECTED_IMAGE_MARKERS):
            return False
        if not lowered.startswith(("http://", "https://")):
            return False
        if not IMAGE_EXTENSION_RE.search(url):
            return False
        chapter = self.selectors.chapter
        parts = urlsplit(lowered)
        return chapter.image_host_marker in (parts.hostname or "") and any(
            marker in parts.path for marker in chapter.image_path_markers
        )

    def payload_pages(self, payload: Any) -> list[tuple[int, str]]:
        """
        (page, image URL) pairs from a chapter endpoint payload.

        Images live under ``result.images`` or ``pages`` as ``[url, page, ...]``
        lists, plain strings or ``{url|src, page|number|index}`` objects; an
        HTML payload is scanned like a reader page.
        """
        inner = payload
        if isinstance(payload, dict):
            inner = next(
                (payload[key] for key in ("result", "data", "html") if payload.get(key) is not None),
                payload,
            )

        raw = None
        for source in (inner, payload):
            if isinstance(source, dict):
                raw = source.get("images") or source.get("pages")
                if raw:
                    break

        pages: list[tuple[int, str]] = []
        seen: set[str] = set()

        def push(src: Any, number: int) -> None:
            url = normalize_url(src if isinstance(src, str) else "", self.config.base_root)
            if url and url not in seen and self.is_plausible_image(url):
                seen.add(url)
                pages.append((number, url))

        if isinstance(raw, list) and raw:
            for position, entry in enumerate(raw, start=1):
                if isinstance(entry, (list, tuple)) and entry:
                    number = _page_number(entry[1], position) if len(entry) > 1 and entry[1] else position
                    push(entry[0], number)
                elif isinstance(entry, str):
                    push(entry, position)
                elif isinstance(entry, dict):
                    number_value = next(
                        (entry[key] for key in ("page", "number", "index") if entry.get(key) is not None),
                        None,
                    )
                    push(entry.get("url") or entry.get("src"), _page_number(number_value, position))
        elif isinstance(inner, str):
            for position, url in enumerate(self._scan_html(inner), start=1):
                push(url, position)
        return pages

    def _scan_html(self, html: str) -> list[str]:
        return extract_images_from_html(
            html,
            self.config.base_root,
            self.selectors.chapter.lazy_attributes,
            accept=self.is_plausible_image,
            min_images=MIN_CHAPTER_IMAGES,
        )

    async def _chapter_pages(self, lease: PageLease, url: str) -> list[ChapterPage]:
        location = ReaderLocation.parse(url)
        session = CaptureSession(
            is_signed_chapter_request,
            payload_parser=self.payload_pages,
            min_pages=MIN_CHAPTER_IMAGES,
            list_block_detector=self.list_block_detector,
        )
        lease.on("request", session.on_request)
        lease.on("response", session.on_response)

        strategies = (
            ("direct-replay", self._direct_replay),
            ("passive-capture", self._passive_capture),
            ("dom-fallback", self._dom_fallback),
            ("list-lookup", self._list_lookup),
        )
        self.last_strategy = ""
        best: list[tuple[int, str]] = []
        best_strategy = ""
        try:
            for name, strategy in strategies:
                logger.info(f"{self.tag} Chapter strategy {name}: started")
                try:
                    pages = await strategy(lease, location, session)
                except (PlaywrightError, NavigationFailure) as e:
                    logger.info(f"{self.tag} Chapter strategy {name}: failed ({e})")
                    continue
                logger.info(f"{self.tag} Chapter strategy {name}: {len(pages)} images")
                if len(pages) > len(best):
                    best, best_strategy = pages, name
                if len(pages) >= MIN_CHAPTER_IMAGES:
                    break
        finally:
            session.close()
            await lease.unroute_all()

        if best:
            self.last_strategy = best_strategy
            logger.info(f"{self.tag} Chapter resolved by {best_strategy} ({len(best)} images)")
            if session.captured_url:
                self.cache.set(f"chapter-ajax:{url}", session.captured_url, CHAPTER_ENDPOINT_TTL)
        return build_chapter_pages(best, self.config.referer)

    async def _direct_replay(
        self, lease: PageLease, location: ReaderLocation, session: CaptureSession
    ) -> list[tuple[int, str]]:
        """Replay the chapter endpoint with a token cached this session."""
        endpoint = self.cache.get(f"chapter-ajax:{location.url}")
        if not endpoint:
            return []
        path = urlsplit(endpoint).path
        token = self.tokens.get(path)
        if not token:
            logger.info(f"{self.tag} No fresh token for {path}")
            return []
        signed = f"{self.config.base_root}{path}?vrf={quote(token, safe='')}"
        pages = await self._fetch_chapter_endpoint(lease, signed, location.url)
        if pages:
            session.captured_url = signed
        return pages

    async def _intercept(self, route: Any) -> None:
        """Abort ad/analytics hosts and heavy resources while capturing."""
        request = route.request
        chapter = self.selectors.chapter
        host = urlsplit(request.url).hostname or ""
        try:
            if host in chapter.blocked_hosts or request.resource_type in chapter.blocked_resource_types:
                await route.abort()
            else:
                await route.continue_()
        except PlaywrightError as e:
            logger.debug(f"{self.tag} Route handling failed for {request.url}: {e}")

    async def _passive_capture(
        self, lease: PageLease, location: ReaderLocation, session: CaptureSession
    ) -> list[tuple[int, str]]:
        best: list[tuple[int, str]] = []
        for attempt in range(MAX_CAPTURE_ATTEMPTS):
            if attempt:
                await self._sleep_ms(RETRY_BACKOFF_MS)
            nav_timeout = self.config.wait_ms(3500 if attempt == 0 else 7000)
            race_timeout = self.config.wait_ms(6200 if attempt == 0 else 8500)

            session.arm()
            await lease.route("**/*", self._intercept)
            try:
                if not await self._navigate_reader(lease, location, nav_timeout):
                    await lease.reset(timeout=1000)
                    continue
                outcome = await session.race(race_timeout)
            finally:
                await lease.unroute_all()

            if len(outcome.pages) >= MIN_CHAPTER_IMAGES:
                self.tokens.remember(outcome.url)
                return outcome.pages
            if len(outcome.pages) > len(best):
                best = outcome.pages

            endpoint = outcome.url or session.captured_url
            if endpoint:
                self.tokens.remember(endpoint)
                pages = await self._fetch_chapter_endpoint(lease, endpoint, location.url)
                if len(pages) >= MIN_CHAPTER_IMAGES:
                    return pages
                if len(pages) > len(best):
                    best = pages
            else:
                logger.info(f"{self.tag} No signed chapter request on attempt {attempt + 1}")
        return best

    def _is_landing_redirect(self, current_url: str) -> bool:
        parts = urlsplit(current_url)
        base = urlsplit(self.config.base_root)
        if (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return False
        return normalize_path(parts.path) in LANDING_PATHS

    async def _offline(self, lease: PageLease) -> bool:
        try:
            html = await lease.page.content()
        except PlaywrightError:
            return False
        return self.offline_detector.is_blocked(page_text(BeautifulSoup(html, "lxml"), limit=2000))

    async def _wait_until_online(self, lease: PageLease) -> bool:
        """Poll briefly for an error page to be replaced by the reader."""
        waited = 0
        limit = self.config.wait_ms(1200)
        while await self._offline(lease):
            if waited >= limit:
                return False
            await self._sleep_ms(OFFLINE_POLL_MS)
            waited += OFFLINE_POLL_MS
        return True

    async def _navigate_reader(
        self, lease: PageLease, location: ReaderLocation, timeout: int
    ) -> bool:
        """
        Navigate to the reader and check the landing.

        Returns:
            False when the navigation failed, was rate limited, redirected to
            the landing page, showed a challenge or an error page, or ended on
            another path
        """
        try:
            response = await lease.page.goto(
                location.url, wait_until="domcontentloaded", timeout=timeout
            )
        except PlaywrightError as e:
            logger.info(f"{self.tag} Reader navigation failed: {e}")
            response = None

        if response is not None and response.status in BLOCKED_STATUSES:
            logger.info(f"{self.tag} Reader returned {response.status}")
            return False

        current = lease.page.url
        if self._is_landing_redirect(current):
            logger.info(f"{self.tag} Chapter strategy landing-redirect: {location.url} -> {current}")
            try:
                await lease.page.evaluate(STOP_LOADING_JS)
            except PlaywrightError as e:
                logger.debug(f"{self.tag} Stop loading failed: {e}")
            await self._sleep_ms(LANDING_BACKOFF_MS)
            return False

        if response is None or current.startswith(ERROR_PAGE_PREFIXES):
            return False
        parts = urlsplit(current)
        if f"{parts.scheme}://{parts.netloc}" != location.origin:
            return False
        if normalize_path(parts.path) != normalize_path(location.path):
            return False

        if not await self._wait_until_online(lease):
            logger.info(f"{self.tag} Reader shows an error page")
            return False
        soup = await self._soup(lease)
        if self.block_detector.is_blocked(page_text(soup, limit=4000)):
            logger.info(f"{self.tag} Challenge page on reader {location.url}")
            return False
        return True

    async def _dom_fallback(
        self, lease: PageLease, location: ReaderLocation, session: CaptureSession
    ) -> list[tuple[int, str]]:
        """Reader markup without interception, then a raw HTML scan."""
        await lease.unroute_all()
        if normalize_path(urlsplit(lease.page.url).path) != normalize_path(location.path):
            try:
                await lease.page.goto(
                    location.url,
                    wait_until="domcontentloaded",
                    timeout=self.config.wait_ms(12000),
                )
            except PlaywrightError as e:
                logger.info(f"{self.tag} Full reader load failed: {e}")

        chapter = self.selectors.chapter
        await self._wait_for(lease, chapter.images, self.config.wait_ms(600))
        html = await lease.page.content()

        urls: list[str] = []
        for img in BeautifulSoup(html, "lxml").select(chapter.images):
            url = normalize_url(
                resolve_image_src(img, chapter.lazy_attributes), self.config.base_root
            )
            if url and url not in urls and self.is_plausible_image(url):
                urls.append(url)
        if not urls:
            urls = self._scan_html(html)
        return list(enumerate(urls, start=1))

    def _observed_list(self, session: CaptureSession, location: ReaderLocation) -> str:
        if session.last_list_html and location.list_path in session.last_list_url:
            return unwrap_list_html(session.last_list_html)
        return ""

    async def _list_lookup(
        self, lease: PageLease, location: ReaderLocation, session: CaptureSession
    ) -> list[tuple[int, str]]:
        """Find the chapter id in the list endpoint and fetch its signed endpoint."""
        if not location.hid:
            logger.info(f"{self.tag} No series id in {location.url}")
            return []

        list_html = self._observed_list(session, location)
        if not list_html:
            list_html = await self._fetch_chapter_list(lease, location, session, force=False)
        if list_html and self.list_block_detector.is_blocked(list_html):
            logger.warning(f"{self.tag} Chapter list returned an access block, refreshing token")
            list_html = await self._fetch_chapter_list(lease, location, session, force=True)
            if self.list_block_detector.is_blocked(list_html):
                logger.warning(f"{self.tag} Chapter list returned an access block")
                return []
        if not list_html:
            logger.warning(f"{self.tag} Chapter list not available for {location.url}")
            return []

        chapter_id = find_chapter_id(list_html, location.path, location.chapter_number)
        if not chapter_id:
            logger.warning(f"{self.tag} Failed to resolve chapter id from list HTML")
            return []

        chapter_path = f"/ajax/read/chapter/{chapter_id}"
        token = await self._capture_token(lease, chapter_path, location.url)
        if not token:
            logger.warning(f"{self.tag} Missing token for chapter {chapter_id}")
            return []
        endpoint = f"{self.config.base_root}{chapter_path}?vrf={quote(token, safe='')}"
        pages = await self._fetch_chapter_endpoint(lease, endpoint, location.url)
        if pages:
            session.captured_url = endpoint
        return pages

    async def _fetch_chapter_list(
        self, lease: PageLease, location: ReaderLocation, session: CaptureSession, force: bool
    ) -> str:
        token = await self._capture_token(lease, location.list_path, location.url, force=force)
        if not force:
            # The token capture navigation may have loaded the list itself.
            observed = self._observed_list(session, location)
            if observed:
                return observed
        if not token:
            logger.warning(f"{self.tag} Missing token for chapter list {location.list_path}")
            return ""

        headers = dict(AJAX_HEADERS, Origin=self.config.base_root)
        cookies = await self._cookie_header(lease)
        if cookies:
            headers["Cookie"] = cookies
        headers = self._request_headers(location.url, headers)
        known = {key.lower() for key in headers}
        headers.update(
            {key: value for key, value in session.forwarded_headers().items() if key not in known}
        )

        text = await self._fetch_text(
            f"{self.config.base_root}{location.list_path}?vrf={quote(token, safe='')}",
            headers=headers,
            timeout_ms=self.config.wait_ms(8000),
        )
        if text is None:
            logger.warning(f"{self.tag} Chapter list request failed")
            return ""
        return unwrap_list_html(text)

    async def _capture_token(
        self, lease: PageLease, path: str, page_url: str, force: bool = False
    ) -> str:
        """
        Token for a signed endpoint path, from the cache or by reloading the
        reader and watching for a request to that path.
        """
        if not force:
            cached = self.tokens.get(path)
            if cached:
                return cached

        capture = CaptureSession(signed_path_matcher(path))
        for attempt in range(MAX_CAPTURE_ATTEMPTS):
            if attempt:
                await self._sleep_ms(TOKEN_RETRY_MS)
            capture.arm()
            lease.on("request", capture.on_request)
            try:
                try:
                    await lease.page.goto(
                        page_url, wait_until="domcontentloaded", timeout=self.config.wait_ms(15000)
                    )
                except PlaywrightError as e:
                    logger.debug(f"{self.tag} Token capture navigation failed: {e}")
                outcome = await capture.race(self.config.wait_ms(12000))
            finally:
                capture.close()
                lease.off("request", capture.on_request)

            token = token_from_url(outcome.url or capture.captured_url)
            if token:
                self.tokens.put(path, token)
                return token
        return ""

    async def _cookie_header(self, lease: PageLease) -> str:
        try:
            cookies = await lease.page.context.cookies(self.config.base_root)
        except PlaywrightError as e:
            logger.debug(f"{self.tag} Could not read cookies: {e}")
            return ""
        return "; ".join(f"{cookie['name']}={cookie['value']}" for cookie in cookies)

    async def _fetch_chapter_endpoint(
        self, lease: PageLease, endpoint: str, referer: str
    ) -> list[tuple[int, str]]:
        headers = dict(AJAX_HEADERS)
        cookies = await self._cookie_header(lease)
        if cookies:
            headers["Cookie"] = cookies
        text = await self._fetch_text(
            endpoint, referer=referer, headers=headers, timeout_ms=self.config.wait_ms(3500)
        )
        if not text:
            return []
        return self.payload_pages(parse_json_payload(text))

    async def cleanup(self) -> None:
        self.tokens.clear()
        await super().cleanup()
