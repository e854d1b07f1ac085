import base64
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import Settings, get_settings
from .models import CaptureResult

logger = logging.getLogger(__name__)

MAX_CAPTURE_HTML_CHARS = 50000

# Executable code and large vector markup are useless as prompt material
STRIPPED_TAGS = ("script", "style", "svg", "noscript", "iframe")


class CaptureError(Exception):
    """Raised when a page cannot be captured (launch failure, timeout, unreachable host)."""


def is_valid_url(url: str) -> bool:
    """Validate URL format: http(s) scheme and a host"""
    try:
        result = urlparse(url)
        return result.scheme in ("http", "https") and bool(result.netloc)
    except Exception:
        return False


def sanitize_html(html: str) -> str:
    """Remove script, style, svg, noscript and iframe subtrees and re-serialize."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup.find_all(STRIPPED_TAGS):
        element.decompose()
    return str(soup)


def truncate_html(html: str, limit: int = MAX_CAPTURE_HTML_CHARS) -> str:
    # Hard character cap; may cut mid-tag
    return html[:limit]


class WebsiteScraper:
    def __init__(self, settings: Optional[Settings] = None, playwright_factory: Callable = async_playwright):
        self.settings = settings or get_settings()
        self.playwright_factory = playwright_factory

    async def capture(self, url: str) -> CaptureResult:
        """
        Load ``url`` in a fresh headless Chromium and return a screenshot plus
        sanitized HTML sample. The browser is owned by this call and always closed.
        """
        if not is_valid_url(url):
            raise CaptureError(f"Invalid URL: {url}")

        start = time.monotonic()
        logger.info(f"[capture] Launching browser for {url}")

        try:
            async with self.playwright_factory() as p:
                browser = await p.chromium.launch(
                    headless=True,
                    args=[
                        '--no-sandbox',
                        '--disable-setuid-sandbox',
                        '--disable-dev-shm-usage',
                        '--disable-gpu',
                    ]
                )
                logger.info(f"[capture] Browser launched in {self._elapsed_ms(start)}ms")

                try:
                    context = await browser.new_context(
                        viewport={
                            "width": self.settings.viewport_width,
                            "height": self.settings.viewport_height,
                        },
                        ignore_https_errors=True,
                    )
                    page = await context.new_page()

                    await page.goto(url, wait_until="load", timeout=self.settings.page_load_timeout)
                    await self._wait_for_network_idle(page)
                    logger.info(f"[capture] Page loaded in {self._elapsed_ms(start)}ms")

                    screenshot = await page.screenshot(type="png", full_page=False)
                    screenshot_base64 = base64.b64encode(screenshot).decode("utf-8")
                    logger.info(f"[capture] Screenshot taken: {len(screenshot_base64)} chars base64")

                    title = await page.title()
                    raw_html = await page.evaluate("() => document.documentElement.outerHTML")
                finally:
                    await browser.close()

        except CaptureError:
            raise
        except PlaywrightTimeoutError as e:
            logger.error(f"[capture] Navigation timed out for {url} after {self._elapsed_ms(start)}ms: {e}")
            raise CaptureError(f"Timed out loading {url}") from e
        except PlaywrightError as e:
            logger.error(f"[capture] Browser error for {url} after {self._elapsed_ms(start)}ms: {e}")
            raise CaptureError(f"Failed to load {url}") from e
        except Exception as e:
            logger.error(f"[capture] Unexpected failure for {url} after {self._elapsed_ms(start)}ms: {e}")
            raise CaptureError(f"Failed to capture {url}") from e

        html = truncate_html(sanitize_html(raw_html or ""))
        logger.info(
            f"[capture] Done in {self._elapsed_ms(start)}ms, title: \"{title}\", html: {len(html)} chars"
        )
        return CaptureResult(screenshot=screenshot_base64, html=html, title=title or "", url=url)

    async def _wait_for_network_idle(self, page):
        # Sites with long-polling or analytics beacons never go fully idle
        try:
            await page.wait_for_load_state("networkidle", timeout=self.settings.network_idle_timeout)
        except PlaywrightTimeoutError:
            logger.info("[capture] Network did not settle, continuing with loaded page")

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
