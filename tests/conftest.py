"""Pytest configuration and shared fixtures for mangascope tests."""

import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
import pytest
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mangascope.config import settings
from mangascope.scrapers.base import BaseScraper
from mangascope.scrapers.cache import ResultCache

BLANK_HTML = "<html><head></head><body></body></html>"


class FakeRequest:
    """Stand-in for ``playwright.async_api.Request``."""

    def __init__(self, url: str, resource_type: str = "xhr", headers: Optional[dict] = None):
        self.url = url
        self.resource_type = resource_type
        self.headers = headers or {}


class FakeResponse:
    """Stand-in for ``playwright.async_api.Response``."""

    def __init__(self, url: str, status: int = 200, body: str = ""):
        self.url = url
        self.status = status
        self.body = body

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def text(self) -> str:
        return self.body


@dataclass
class Visit:
    """What one navigation to a URL produces.

    ``landing`` is the final URL after redirects; ``events`` are requests and
    responses replayed to the page listeners while the navigation runs.
    """

    html: str = BLANK_HTML
    status: int = 200
    landing: Optional[str] = None
    events: list = field(default_factory=list)
    error: Optional[str] = None


class FakeContext:
    def __init__(self, cookies: Optional[list[dict]] = None):
        self._cookies = cookies or []

    async def cookies(self, urls: Any = None) -> list[dict]:
        return list(self._cookies)


class FakeRoute:
    def __init__(self, request: FakeRequest):
        self.request = request
        self.outcome = ""

    async def abort(self) -> None:
        self.outcome = "aborted"

    async def continue_(self) -> None:
        self.outcome = "continued"


class FakePage:
    """
    Deterministic implementation of the ``BrowserPage`` protocol.

    Each URL maps to a list of visits consumed in order; the last visit
    repeats once the list is exhausted. Navigating to an unknown URL raises
    a Playwright error like an unreachable host would.
    """

    def __init__(
        self,
        visits: Optional[dict[str, Union[Visit, list[Visit]]]] = None,
        evaluate_handlers: Optional[dict[str, Callable]] = None,
        cookies: Optional[list[dict]] = None,
    ):
        self.visits = {
            url: list(value) if isinstance(value, list) else [value]
            for url, value in (visits or {}).items()
        }
        self.evaluate_handlers = evaluate_handlers or {}
        self.context = FakeContext(cookies)
        self.url = "about:blank"
        self.html = BLANK_HTML
        self.history: list[str] = []
        self.evaluated: list[tuple[str, Any]] = []
        self.listeners: dict[str, list[Callable]] = defaultdict(list)
        self.routes: list[tuple[Any, Callable]] = []
        self.routed: list[FakeRoute] = []
        self.extra_headers: dict[str, str] = {}

    @property
    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values())

    @property
    def intercepting(self) -> bool:
        return bool(self.routes)

    async def emit(self, event: Union[FakeRequest, FakeResponse]) -> None:
        if isinstance(event, FakeRequest):
            for _, handler in list(self.routes):
                route = FakeRoute(event)
                await handler(route)
                self.routed.append(route)
            name = "request"
        else:
            name = "response"
        for handler in list(self.listeners[name]):
            result = handler(event)
            if inspect.isawaitable(result):
                await result

    async def goto(self, url: str, **kwargs) -> Optional[FakeResponse]:
        self.history.append(url)
        if url == "about:blank":
            self.url, self.html = url, BLANK_HTML
            return None
        queue = self.visits.get(url)
        if not queue:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        visit = queue.pop(0) if len(queue) > 1 else queue[0]
        if visit.error:
            raise PlaywrightError(visit.error)
        self.url = visit.landing or url
        self.html = visit.html
        for event in visit.events:
            await self.emit(event)
        return FakeResponse(self.url, visit.status, visit.html)

    async def content(self) -> str:
        return self.html

    async def set_content(self, html: str, **kwargs) -> None:
        self.html = html

    async def wait_for_selector(self, selector: str, **kwargs) -> Any:
        element = BeautifulSoup(self.html, "lxml").select_one(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")
        return element

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluated.append((expression, arg))
        handler = self.evaluate_handlers.get(expression)
        if handler is None:
            return None
        result = handler(arg)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        self.extra_headers.update(headers)

    def on(self, event: str, handler: Callable) -> None:
        self.listeners[event].append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners[event].remove(handler)

    async def route(self, url: Any, handler: Callable) -> None:
        self.routes.append((url, handler))

    async def unroute(self, url: Any, handler: Optional[Callable] = None) -> None:
        self.routes = [
            (pattern, existing)
            for pattern, existing in self.routes
            if not (pattern == url and (handler is None or existing == handler))
        ]


def assert_page_restored(page: FakePage) -> None:
    """Listeners detached, interception off, parked on about:blank."""
    assert page.listener_count == 0
    assert not page.intercepting
    assert page.url == "about:blank"
    assert page.history[-1] == "about:blank"


def mock_client(routes: dict[str, Union[str, httpx.Response]]) -> httpx.AsyncClient:
    """HTTP client answering exact URLs from routes and 404 for anything else."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        answer = routes.get(str(request.url))
        if answer is None:
            return httpx.Response(404, text="not found")
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, text=answer)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client.requests = requests
    return client


@pytest.fixture(autouse=True)
def isolated_cache_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every default cache namespace under the test's tmp directory."""
    cache_root = tmp_path / "cache-root"
    monkeypatch.setattr(settings, "CACHE_DIR", str(cache_root))
    return cache_root


@pytest.fixture
def cache(tmp_path: Path) -> ResultCache:
    return ResultCache("test", base_dir=tmp_path)


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip fixed backoff delays."""

    async def instant(self, ms: int) -> None:
        return None

    monkeypatch.setattr(BaseScraper, "_sleep_ms", instant)
