"""Browser page capability used by the scrapers.

Scrapers never own a browser. Each contract call borrows one page and must
hand it back in a neutral state: no listeners, no request interception, and
navigated to ``about:blank``. ``PageLease`` enforces that on every exit path.
"""

import logging
from typing import Any, Callable, Optional, Protocol

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

BLANK_URL = "about:blank"

# Runs inside the page so the request carries the page's own cookies and origin.
FETCH_TEXT_JS = """
async ({url, method, headers, body}) => {
  try {
    const response = await fetch(url, {
      method: method || 'GET',
      credentials: 'include',
      headers: headers || {},
      body: body || undefined,
    });
    const text = await response.text();
    return {ok: response.ok, status: response.status, text};
  } catch (error) {
    return {ok: false, status: 0, text: ''};
  }
}
"""

SCROLL_TO_BOTTOM_JS = """
async () => {
  await new Promise((resolve) => {
    let total = 0;
    const distance = 600;
    const timer = setInterval(() => {
      window.scrollBy(0, distance);
      total += distance;
      if (total >= document.body.scrollHeight - window.innerHeight) {
        clearInterval(timer);
        resolve();
      }
    }, 200);
  });
}
"""

STOP_LOADING_JS = "() => window.stop()"


class BrowserPage(Protocol):
    """Subset of ``playwright.async_api.Page`` the scrapers rely on."""

    @property
    def url(self) -> str: ...

    @property
    def context(self) -> Any: ...

    async def goto(self, url: str, **kwargs) -> Any: ...

    async def content(self) -> str: ...

    async def set_content(self, html: str, **kwargs) -> None: ...

    async def wait_for_selector(self, selector: str, **kwargs) -> Any: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None: ...

    def on(self, event: str, handler: Callable) -> None: ...

    def remove_listener(self, event: str, handler: Callable) -> None: ...

    async def route(self, url: Any, handler: Callable) -> None: ...

    async def unroute(self, url: Any, handler: Optional[Callable] = None) -> None: ...


class PageLease:
    """
    Scoped use of a borrowed page.

    Listeners and routes must be attached through the lease so they can be
    detached when the block exits, whether it returns or raises.

    Usage:
        async with PageLease(page) as lease:
            lease.on("request", handler)
            await lease.route("**/*", interceptor)
            ...
    """

    def __init__(self, page: BrowserPage, reset_timeout: int = 3000):
        self.page = page
        self.reset_timeout = reset_timeout
        self._listeners: list[tuple[str, Callable]] = []
        self._routes: list[tuple[Any, Callable]] = []

    async def __aenter__(self) -> "PageLease":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    @property
    def intercepting(self) -> bool:
        return bool(self._routes)

    def on(self, event: str, handler: Callable) -> None:
        self.page.on(event, handler)
        self._listeners.append((event, handler))

    def off(self, event: str, handler: Callable) -> None:
        if (event, handler) in self._listeners:
            self._listeners.remove((event, handler))
            self.page.remove_listener(event, handler)

    async def route(self, pattern: Any, handler: Callable) -> None:
        await self.page.route(pattern, handler)
        self._routes.append((pattern, handler))

    async def unroute_all(self) -> None:
        """Disable request interception set up through this lease."""
        while self._routes:
            pattern, handler = self._routes.pop()
            try:
                await self.page.unroute(pattern, handler)
            except PlaywrightError as e:
                logger.debug(f"Failed to remove route {pattern}: {e}")

    async def reset(self, timeout: Optional[int] = None) -> None:
        """Navigate to a blank page, ignoring failures."""
        try:
            await self.page.goto(
                BLANK_URL,
                wait_until="domcontentloaded",
                timeout=timeout or self.reset_timeout,
            )
        except PlaywrightError as e:
            logger.debug(f"Failed to reset page: {e}")

    async def release(self) -> None:
        """Detach everything and return the page to a neutral state."""
        while self._listeners:
            event, handler = self._listeners.pop()
            try:
                self.page.remove_listener(event, handler)
            except (PlaywrightError, ValueError, KeyError) as e:
                logger.debug(f"Failed to remove {event} listener: {e}")
        await self.unroute_all()
        await self.reset()
