"""Shared parsing helpers for provider scrapers."""

import html as html_lib
import re
from typing import Callable, Iterable, Optional, Protocol

from bs4 import BeautifulSoup, Comment, Tag

WHITESPACE_RE = re.compile(r"\s+")
READ_PREFIX_RE = re.compile(r"^read\b[:\s-]*", re.IGNORECASE)
FORMAT_WORDS_RE = re.compile(r"\b(manhwa|manga|webtoon|comic)\b", re.IGNORECASE)
FOR_FREE_RE = re.compile(r"\bfor free\b", re.IGNORECASE)
CHAPTER_KEYWORD_RE = re.compile(
    r"\b(?:chapter|chap|ch)\.?[\s\-_]*(\d+(?:\.\d+)?)", re.IGNORECASE
)
CHAPTER_SLUG_RE = re.compile(r"chapter[-_](\d+(?:\.\d+)?)", re.IGNORECASE)
BARE_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")
NEXT_TEXT_RE = re.compile(r"\bnext\b|»", re.IGNORECASE)
NEXT_LABEL_RE = re.compile(r"^(?:next(?: page)?\s*[»›>]*|[»›]+)$", re.IGNORECASE)
PAGINATION_CONTAINERS = ".pagination, .wp-pagenavi, .nav-links, .navigation, nav[aria-label]"
IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
SCRIPT_ARRAY_RE = re.compile(
    r"(?:chapter_preloaded_images|images|pages|source)[\"']?\s*[:=]\s*(?=\[)",
    re.IGNORECASE,
)
QUOTED_URL_RE = re.compile(r"[\"']((?:https?:)?//[^\"'\s]+|/[^\"'\s]+)[\"']")
ABSOLUTE_URL_RE = re.compile(r"https?://[^\"'\s)<>]+")
IMAGE_EXTENSION_RE = re.compile(r"\.(jpe?g|png|webp|gif|avif)(\?|$)", re.IGNORECASE)

DEFAULT_SRCSET_ATTRIBUTES = ("data-srcset", "data-lazy-srcset", "srcset")
HIDDEN_TEXT_TAGS = {"script", "style", "noscript", "template", "title"}


def normalize_text(value: Optional[str]) -> str:
    """Collapse whitespace runs and trim."""
    if not value:
        return ""
    return WHITESPACE_RE.sub(" ", value).strip()


def normalize_url(src: Optional[str], base_root: str) -> str:
    """
    Resolve a scraped URL against the provider base.

    Absolute URLs are returned unchanged, protocol-relative URLs are upgraded
    to https and relative paths are joined onto the base root. Inline data
    and blob URLs are rejected.

    Args:
        src: Raw attribute value
        base_root: Provider base URL without trailing slash

    Returns:
        Absolute URL, or an empty string when nothing usable was given
    """
    cleaned = (src or "").strip()
    if not cleaned or cleaned.startswith(("data:", "blob:")):
        return ""
    if cleaned.startswith(("http://", "https://")):
        return cleaned
    if cleaned.startswith("//"):
        return f"https:{cleaned}"
    path = cleaned if cleaned.startswith("/") else f"/{cleaned}"
    return f"{base_root.rstrip('/')}{path}"


def _sanitize_once(value: str) -> str:
    result = READ_PREFIX_RE.sub("", value.strip())
    result = FORMAT_WORDS_RE.sub("", result)
    result = FOR_FREE_RE.sub("", result)
    result = normalize_text(result)
    return result.strip(" -:|")


def sanitize_title(value: Optional[str]) -> str:
    """
    Strip marketing boilerplate ("Read ...", "manhwa", "for free") from a title.

    Stripping repeats until the title stops changing, so sanitizing an already
    sanitized title is a no-op. A title made only of boilerplate is kept as is.
    """
    original = normalize_text(value)
    current = original
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            break
        current = cleaned
    return current or original


def extract_chapter_number(text: Optional[str], url: str = "") -> str:
    """
    Pull a chapter number out of noisy label text or a chapter URL slug.

    Tries "Chapter 12" / "Ch. 12.5" style keywords first, then a
    ".../chapter-7/" slug, then the first bare number in the text.
    """
    label = normalize_text(text)
    match = CHAPTER_KEYWORD_RE.search(label)
    if match:
        return match.group(1)
    match = CHAPTER_SLUG_RE.search(url or "")
    if match:
        return match.group(1)
    match = BARE_NUMBER_RE.search(label)
    return match.group(1) if match else ""


def pick_from_srcset(value: Optional[str], last: bool = True) -> str:
    """Return the URL of the last (largest) or first srcset candidate."""
    if not value:
        return ""
    entries = [entry.strip() for entry in value.split(",") if entry.strip()]
    if not entries:
        return ""
    entry = entries[-1] if last else entries[0]
    return entry.split(" ")[0]


def resolve_image_src(img: Optional[Tag], lazy_attributes: Iterable[str]) -> str:
    """
    Read the real source of a possibly lazy-loaded image element.

    Lazy-load attributes are checked in order before srcset and plain src,
    since src usually holds a placeholder until the image scrolls into view.
    """
    if img is None:
        return ""
    for attribute in lazy_attributes:
        value = img.get(attribute)
        if value and not value.strip().startswith("data:"):
            return value.strip()
    for attribute in DEFAULT_SRCSET_ATTRIBUTES:
        from_set = pick_from_srcset(img.get(attribute))
        if from_set:
            return from_set
    return (img.get("src") or "").strip()


def select_text(root, selector: str) -> str:
    """Normalized text of the first element matching selector, or ''."""
    if root is None or not selector:
        return ""
    element = root.select_one(selector)
    return normalize_text(element.get_text(" ")) if element else ""


def meta_content(soup: BeautifulSoup, prop: str) -> str:
    """Content of a <meta property=...> tag, used as a last resort for details."""
    meta = soup.find("meta", attrs={"property": prop})
    return (meta.get("content") or "").strip() if meta else ""


def page_text(soup: BeautifulSoup, limit: Optional[int] = None) -> str:
    """Title plus visible body text, for block and error page detection."""
    title = soup.title.get_text(" ") if soup.title else ""
    root = soup.body or soup
    visible = (
        str(node)
        for node in root.find_all(string=True)
        if not isinstance(node, Comment)
        and node.parent is not None
        and node.parent.name not in HIDDEN_TEXT_TAGS
    )
    text = normalize_text(f"{title} {' '.join(visible)}")
    return text[:limit] if limit else text


def split_selector_groups(selector: str) -> list[str]:
    """Split a comma-separated selector list into its groups, in priority order."""
    return [group.strip() for group in selector.split(",") if group.strip()]


def detect_next_page(
    soup: BeautifulSoup, next_selector: str, next_text: Optional[str] = None
) -> bool:
    """
    Detect whether a listing has a following page.

    Checks, in order: a canonical <link rel="next">, the configured next
    button (optionally the one whose text contains next_text) whose inline
    style does not disable pointer events, and finally a free-text scan: any
    anchor reading like "next" or "»" inside a pagination block, or, when the
    page has none, an anchor labelled only "Next" or "»".

    Args:
        soup: Parsed listing page
        next_selector: CSS selector for the next button
        next_text: Required button text when the selector is generic

    Returns:
        True when a next page is advertised
    """
    if soup.select_one('link[rel="next"]'):
        return True

    candidates = soup.select(next_selector) if next_selector else []
    if next_text:
        candidates = [el for el in candidates if next_text in el.get_text()]
    if candidates:
        style = WHITESPACE_RE.sub("", candidates[0].get("style") or "").lower()
        return "pointer-events:none" not in style

    containers = soup.select(PAGINATION_CONTAINERS)
    if containers:
        return any(
            NEXT_TEXT_RE.search(anchor.get_text())
            for container in containers
            for anchor in container.find_all("a")
        )
    # without a pagination block only anchors labelled as a bare "next" count
    return any(
        NEXT_LABEL_RE.match(normalize_text(anchor.get_text())) for anchor in soup.find_all("a")
    )


def _balanced_brackets(text: str, start: int) -> str:
    """Return the [...] literal starting at start, honouring nesting and quotes."""
    depth = 0
    quote = ""
    escaped = False
    for position in range(start, len(text)):
        char = text[position]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = ""
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return text[start : position + 1]
    return ""


def extract_images_from_html(
    raw_html: str,
    base_root: str,
    lazy_attributes: Iterable[str] = (),
    cdn_pattern: Optional[str] = None,
    accept: Optional[Callable[[str], bool]] = None,
    min_images: int = 1,
) -> list[str]:
    """
    Scan raw page HTML for chapter image URLs when the DOM yields too few.

    Stages run in order and the first one producing at least min_images
    images wins: <img> tags (including ones inside <noscript>), inline script
    arrays (chapter_preloaded_images, ts_reader sources, images/pages
    literals), then a plain URL scan restricted to cdn_pattern hosts. When no
    stage reaches min_images, the longest stage result is returned.

    Args:
        raw_html: Page markup or an AJAX HTML fragment
        base_root: Provider base URL without trailing slash
        lazy_attributes: Attribute names to try before src
        cdn_pattern: Regex for hosts accepted by the plain URL scan
        accept: Extra plausibility filter applied to every candidate
        min_images: Result size that stops the scan early

    Returns:
        Deduplicated absolute image URLs in document order
    """
    best: list[str] = []
    found: list[str] = []
    seen: set[str] = set()

    def push(candidate: str) -> None:
        url = normalize_url(html_lib.unescape(candidate).replace("\\/", "/"), base_root)
        if not url or url in seen:
            return
        if accept is not None and not accept(url):
            return
        seen.add(url)
        found.append(url)

    def img_tags() -> None:
        attributes = [*lazy_attributes, "src"]
        for tag in IMG_TAG_RE.findall(raw_html):
            for attribute in attributes:
                match = re.search(
                    rf"\s{re.escape(attribute)}\s*=\s*[\"']([^\"']+)[\"']", tag, re.IGNORECASE
                )
                if match and not match.group(1).startswith("data:"):
                    push(match.group(1))
                    break

    def script_arrays() -> None:
        for match in SCRIPT_ARRAY_RE.finditer(raw_html):
            literal = _balanced_brackets(raw_html, match.end())
            for url in QUOTED_URL_RE.findall(literal.replace("\\/", "/")):
                if IMAGE_EXTENSION_RE.search(url):
                    push(url)

    def cdn_scan() -> None:
        if not cdn_pattern:
            return
        cdn_re = re.compile(cdn_pattern, re.IGNORECASE)
        for url in ABSOLUTE_URL_RE.findall(raw_html.replace("\\/", "/")):
            if cdn_re.search(url) and IMAGE_EXTENSION_RE.search(url):
                push(url)

    for stage in (img_tags, script_arrays, cdn_scan):
        found, seen = [], set()
        stage()
        if len(found) >= max(1, min_images):
            return found
        if len(found) > len(best):
            best = found
    return best


class BlockDetector(Protocol):
    """Decides whether page text is an anti-automation challenge."""

    def is_blocked(self, text: str) -> bool: ...


class PhraseBlockDetector:
    """Case-insensitive phrase matching over page text.

    The phrase lists are best-effort heuristics; pass a different detector to
    the factory to replace them.
    """

    def __init__(self, phrases: Iterable[str]):
        self.phrases = tuple(phrase.lower() for phrase in phrases)

    def is_blocked(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(phrase in lowered for phrase in self.phrases)


CHALLENGE_PHRASES = (
    "just a moment",
    "checking your browser",
    "verify you are human",
    "attention required",
    "cloudflare",
)

LIST_BLOCK_PHRASES = (
    "request is invalid",
    "attention required",
    "cloudflare",
    "forbidden",
)

OFFLINE_PHRASES = (
    "this site can’t be reached",
    "this site can't be reached",
    "page not found",
    "err_connection",
    "err_failed",
    "err_name_not_resolved",
    "err_internet_disconnected",
    "dns_probe",
    "server ip address could not be found",
)

DEFAULT_BLOCK_DETECTOR = PhraseBlockDetector(CHALLENGE_PHRASES)
