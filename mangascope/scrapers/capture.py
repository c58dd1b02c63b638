"""Network capture for sites that sign their AJAX endpoints.

A ``CaptureSession`` observes the page's request and response events while a
navigation runs and races three outcomes: a matching outbound request, a
matching inbound response that already parsed into images, or a timeout.
Events are fed through ``on_request`` / ``on_response`` so the session can be
driven by recorded event streams as well as by a live page.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlsplit

from playwright.async_api import Error as PlaywrightError

from mangascope.scrapers.parsing import LIST_BLOCK_PHRASES, BlockDetector, PhraseBlockDetector

logger = logging.getLogger(__name__)

TOKEN_PARAM = "vrf"
AJAX_READ_MARKER = "/ajax/read/"
CHAPTER_ENDPOINT_MARKER = "/ajax/read/chapter/"
TOKEN_TTL_MS = 30 * 1000

# Headers that must not be replayed from a captured browser request.
UNFORWARDED_HEADERS = {"cookie", "host", "content-length", "accept-encoding"}

PayloadParser = Callable[[Any], list[tuple[int, str]]]


class CaptureState(str, Enum):
    IDLE = "idle"
    AWAITING_CAPTURE = "awaiting_capture"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


@dataclass
class CaptureOutcome:
    """Which signal won the race, with whatever it carried."""

    kind: str
    url: str = ""
    pages: list[tuple[int, str]] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.kind == "timeout"


def normalize_path(value: str) -> str:
    return value.rstrip("/")


def token_from_url(url: str) -> str:
    """The signed token query parameter of url, or ''."""
    values = parse_qs(urlsplit(url).query).get(TOKEN_PARAM)
    return values[0] if values else ""


def is_signed_chapter_request(url: str) -> bool:
    parts = urlsplit(url)
    return CHAPTER_ENDPOINT_MARKER in parts.path and bool(token_from_url(url))


def is_chapter_list_url(url: str) -> bool:
    return AJAX_READ_MARKER in url and "/chapter/" in url and CHAPTER_ENDPOINT_MARKER not in url


def signed_path_matcher(expected_path: str) -> Callable[[str], bool]:
    """Match requests to exactly expected_path that carry a token."""
    expected = normalize_path(expected_path)

    def matches(url: str) -> bool:
        return normalize_path(urlsplit(url).path) == expected and bool(token_from_url(url))

    return matches


def parse_json_payload(text: str) -> Any:
    """Decode a JSON body, falling back to the raw text."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return text


def unwrap_html_result(payload: Any) -> Optional[str]:
    """
    Pull the HTML fragment out of an AJAX envelope.

    Accepts ``{result: "<html>"}``, ``{result: {html|result|data: "<html>"}}``
    and ``{html: "<html>"}``.
    """
    if not isinstance(payload, dict):
        return None
    result = payload.get("result")
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        for key in ("html", "result", "data"):
            if isinstance(result.get(key), str):
                return result[key]
    if isinstance(payload.get("html"), str):
        return payload["html"]
    return None


def unwrap_list_html(raw: str) -> str:
    """Chapter list HTML from a raw list response body."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    if trimmed.startswith(("{", "[")):
        payload = parse_json_payload(trimmed)
        return unwrap_html_result(payload) or raw
    return raw


class TokenCache:
    """Short-lived signed tokens keyed by endpoint path, per scraper instance."""

    def __init__(self, ttl_ms: int = TOKEN_TTL_MS, clock: Callable[[], float] = time.monotonic):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._tokens: dict[str, tuple[str, float]] = {}

    def get(self, path: str) -> str:
        entry = self._tokens.get(normalize_path(path))
        if entry is None:
            return ""
        token, stored_at = entry
        if (self._clock() - stored_at) * 1000 >= self.ttl_ms:
            del self._tokens[normalize_path(path)]
            return ""
        return token

    def put(self, path: str, token: str) -> None:
        if token:
            self._tokens[normalize_path(path)] = (token, self._clock())

    def remember(self, url: str) -> None:
        """Store the token carried by a signed URL under its path."""
        self.put(urlsplit(url).path, token_from_url(url))

    def clear(self) -> None:
        self._tokens.clear()


class CaptureSession:
    """
    Short-lived observer of one call's network traffic.

    States: IDLE until armed, AWAITING_CAPTURE while a race is pending,
    RESOLVED once a request or response signal won, EXHAUSTED when the race
    timed out. ``arm()`` starts a new race on the same session so list
    responses and headers seen on earlier attempts stay readable.
    """

    def __init__(
        self,
        request_matcher: Callable[[str], bool],
        payload_parser: Optional[PayloadParser] = None,
        min_pages: int = 1,
        list_block_detector: Optional[BlockDetector] = None,
    ):
        """Initialize session.

        Args:
            request_matcher: Predicate on request URLs to capture
            payload_parser: Turns a matching response payload into
                (page, image URL) pairs; responses are ignored when omitted
            min_pages: Pages a response must yield to win the race
            list_block_detector: Detector applied to observed chapter lists
        """
        self.request_matcher = request_matcher
        self.payload_parser = payload_parser
        self.min_pages = min_pages
        self.list_block_detector = list_block_detector or PhraseBlockDetector(LIST_BLOCK_PHRASES)

        self.state = CaptureState.IDLE
        self.captured_url = ""
        self.last_list_html = ""
        self.last_list_url = ""
        self.last_list_blocked = False
        self.last_ajax_headers: dict[str, str] = {}

        self._request_future: Optional[asyncio.Future] = None
        self._response_future: Optional[asyncio.Future] = None

    def arm(self) -> None:
        """Start a new race; pending futures from a previous one are dropped."""
        self.close()
        loop = asyncio.get_running_loop()
        self._request_future = loop.create_future()
        self._response_future = loop.create_future()
        self.captured_url = ""
        self.state = CaptureState.AWAITING_CAPTURE

    def on_request(self, request: Any) -> None:
        url = request.url
        if self.request_matcher(url):
            self.captured_url = url
            if self._request_future is not None and not self._request_future.done():
                self._request_future.set_result(url)
        if AJAX_READ_MARKER in url and "/chapter/" in url:
            self.last_ajax_headers = dict(request.headers or {})

    async def on_response(self, response: Any) -> None:
        url = response.url
        is_list = is_chapter_list_url(url)
        wants_payload = self.payload_parser is not None and self.request_matcher(url)
        if not is_list and not wants_payload:
            return

        try:
            text = await response.text()
        except PlaywrightError as e:
            # Bodies of redirects and aborted requests are unavailable.
            logger.debug(f"Could not read response body of {url}: {e}")
            return

        if is_list:
            html = unwrap_list_html(text)
            self.last_list_url = url
            self.last_list_html = html or text
            self.last_list_blocked = self.list_block_detector.is_blocked(self.last_list_html)
            return

        if not response.ok or not text:
            return
        if not self.captured_url:
            self.captured_url = url
        pages = self.payload_parser(parse_json_payload(text))
        if len(pages) >= self.min_pages and self._response_future is not None:
            if not self._response_future.done():
                self._response_future.set_result(pages)

    async def race(self, timeout_ms: int) -> CaptureOutcome:
        """
        Wait for the first of: matching request, parsed response, timeout.

        Args:
            timeout_ms: Upper bound for the wait

        Returns:
            CaptureOutcome naming the winning signal
        """
        if self._request_future is None or self._response_future is None:
            raise RuntimeError("CaptureSession.race() called before arm()")

        done, _ = await asyncio.wait(
            {self._request_future, self._response_future},
            timeout=timeout_ms / 1000,
            return_when=asyncio.FIRST_COMPLETED,
        )
        # A parsed response beats a bare request when both landed.
        if self._response_future in done:
            self.state = CaptureState.RESOLVED
            return CaptureOutcome("response", url=self.captured_url, pages=self._response_future.result())
        if self._request_future in done:
            self.state = CaptureState.RESOLVED
            return CaptureOutcome("request", url=self._request_future.result())
        self.state = CaptureState.EXHAUSTED
        return CaptureOutcome("timeout", url=self.captured_url)

    def forwarded_headers(self) -> dict[str, str]:
        """Headers of the last observed AJAX request that are safe to replay."""
        return {
            key.lower(): value
            for key, value in self.last_ajax_headers.items()
            if value and key.lower() not in UNFORWARDED_HEADERS
        }

    def close(self) -> None:
        """Cancel whichever futures have not resolved."""
        for future in (self._request_future, self._response_future):
            if future is not None and not future.done():
                future.cancel()
        self._request_future = None
        self._response_future = None
