"""
Page fetchers — `fetch(url) -> html | None`.

HttpPageFetcher: plain httpx GET, used when browser automation is disabled.
BrowserPageFetcher: one headless Chromium per pipeline run, shared by all
workers. Each fetch gets its own browser context (cookies/storage isolated)
that is closed afterwards; the browser itself is closed by `async with` on
every exit path.
MockPageFetcher: canned JSON-LD listings and article pages for mock runs.

None of them raises to the pipeline: failures are logged and return None.
"""

import asyncio
import json
import logging
from typing import Optional

import httpx
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import get_settings

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Consent banners seen on Nordic and international news sites
CONSENT_SELECTORS = [
    "button#onetrust-accept-btn-handler",
    "button[aria-label*='Accept']",
    "button:has-text('Accept all')",
    "button:has-text('Accepter alle')",
    "button:has-text('Godta alle')",
    "button:has-text('Godkänn alla')",
    "button:has-text('Tillad alle')",
]


class HttpPageFetcher:
    """Fetch raw HTML over HTTP."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or get_settings().fetch_timeout_seconds

    async def fetch(self, url: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # InvalidURL is not an HTTPError
            logger.warning(f"Fetch failed for {url}: {e}")
            return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class BrowserPageFetcher:
    """Shared headless Chromium for one run. Use as `async with BrowserPageFetcher() as f`."""

    def __init__(self, headless: bool = True, timeout: Optional[float] = None):
        self.headless = headless
        self.timeout_ms = int((timeout or get_settings().fetch_timeout_seconds) * 1000)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        # Set when Chromium cannot be launched; fetches then go over plain HTTP
        self._fallback: Optional[HttpPageFetcher] = None

    async def __aenter__(self):
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    '--no-sandbox',
                    '--disable-dev-shm-usage',
                    '--disable-blink-features=AutomationControlled',
                ],
            )
            logger.info("🌐 Browser session started")
        except Exception as e:
            logger.warning(f"Browser launch failed, falling back to HTTP fetches: {e}")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            self._fallback = HttpPageFetcher(timeout=self.timeout_ms / 1000)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Browser close failed: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("🌐 Browser session closed")

    async def fetch(self, url: str) -> Optional[str]:
        if self._fallback is not None:
            return await self._fallback.fetch(url)
        if self._browser is None:
            raise RuntimeError("BrowserPageFetcher used outside its async context")

        context = None
        try:
            context = await self._browser.new_context(user_agent=USER_AGENT)
            page = await context.new_page()
            await page.goto(url, timeout=self.timeout_ms, wait_until='domcontentloaded')
            await self._dismiss_consent(page)
            try:
                await page.wait_for_load_state('networkidle', timeout=5000)
            except PlaywrightTimeoutError:
                pass  # content is usually there already
            return await page.content()
        except PlaywrightTimeoutError:
            logger.warning(f"Page load timed out after {self.timeout_ms}ms: {url}")
            return None
        except PlaywrightError as e:
            logger.warning(f"Navigation error for {url}: {e}")
            return None
        finally:
            if context is not None:
                try:
                    await context.close()
                except PlaywrightError as e:
                    logger.warning(f"Browser context close failed: {e}")

    async def _dismiss_consent(self, page) -> None:
        """Best-effort click on the first visible consent button."""
        for selector in CONSENT_SELECTORS:
            try:
                button = page.locator(selector).first
                if await button.is_visible(timeout=500):
                    await button.click(timeout=2000)
                    await asyncio.sleep(0.5)
                    return
            except PlaywrightError:
                continue


_MOCK_HEADLINES = [
    "Founders sell family-owned software group to US private equity",
    "Central bank leaves interest rates unchanged",
    "Shipping heir takes property company to IPO",
    "Retail chain reports weaker quarterly earnings",
]


class MockPageFetcher:
    """Canned listing and article pages so a mock run never touches the network."""

    async def fetch(self, url: str) -> Optional[str]:
        if "/mock/" not in url:
            return self._listing(url)
        return self._article(url)

    @staticmethod
    def _listing(url: str) -> str:
        base = url.rstrip("/")
        items = [
            {"@type": "ListItem", "position": i + 1, "name": headline,
             "url": f"{base}/mock/{i + 1}"}
            for i, headline in enumerate(_MOCK_HEADLINES)
        ]
        payload = json.dumps({"@context": "https://schema.org", "@type": "ItemList", "itemListElement": items})
        links = "".join(
            f'<h2><a href="{item["url"]}" title="{item["name"]}">{item["name"]}</a></h2>' for item in items
        )
        return (
            f'<html><head><script type="application/ld+json">{payload}</script></head>'
            f'<body>{links}</body></html>'
        )

    @staticmethod
    def _article(url: str) -> str:
        tail = url.rsplit("/", 1)[-1]
        index = int(tail) - 1 if tail.isdigit() else 0
        headline = _MOCK_HEADLINES[index % len(_MOCK_HEADLINES)]
        paragraphs = [
            f"{headline}. The transaction was announced on Monday and is expected to close within the quarter.",
            "According to people familiar with the matter, the owners will receive the proceeds in cash, "
            "and the family holding company will reinvest part of the amount.",
        ]
        body = "".join(f"<p>{p}</p>" for p in paragraphs)
        return f"<html><body><article><h1>{headline}</h1>{body}</article></body></html>"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


def create_page_fetcher(browser_enabled: Optional[bool] = None, mock_mode: bool = False):
    """Fetcher for a run: canned pages in mock mode, the shared browser when enabled, else httpx."""
    if mock_mode:
        return MockPageFetcher()
    enabled = get_settings().browser_enabled if browser_enabled is None else browser_enabled
    return BrowserPageFetcher() if enabled else HttpPageFetcher()
