"""
Browser lifecycle for one inspection run.

browser_session() owns exactly one Chromium process, one incognito context
and one page. The process is closed on every exit path, including errors,
timeouts (the outer wait_for cancels us) and caller aborts.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from app.config import Settings
from app.errors import BrowserLaunchFailure

try:
    from playwright_stealth import Stealth
    _stealth = Stealth()
except ImportError:
    _stealth = None

logger = logging.getLogger(__name__)

WELL_KNOWN_BROWSER_PATHS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/google-chrome",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-cache",
    "--disk-cache-size=0",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
]

INSTALL_HINT = (
    "Install Google Chrome, set CHROME_PATH to a Chrome/Chromium executable, "
    "or run `playwright install chromium`."
)


@dataclass
class BrowserSession:
    browser: Browser
    context: BrowserContext
    page: Page
    executable_path: Optional[str] = None


def find_browser_executable(settings: Settings) -> Optional[str]:
    """
    Resolve the Chrome executable to launch.

    An explicitly configured path must exist. Without one, the first
    well-known install location that exists wins; None means "use the
    Chromium bundled with Playwright".
    """
    if settings.chrome_path:
        if not os.path.exists(settings.chrome_path):
            raise BrowserLaunchFailure(
                f"Configured browser not found at {settings.chrome_path}. {INSTALL_HINT}"
            )
        return settings.chrome_path

    for path in WELL_KNOWN_BROWSER_PATHS:
        if os.path.exists(path):
            return path
    return None


async def _disable_cache(context: BrowserContext, page: Page) -> None:
    """Start every run cold: no HTTP cache, no cookies."""
    await context.clear_cookies()
    try:
        client = await context.new_cdp_session(page)
        await client.send("Network.enable")
        await client.send("Network.setCacheDisabled", {"cacheDisabled": True})
        await client.send("Network.clearBrowserCache")
    except Exception as e:
        logger.info("[browser] CDP cache control unavailable (continuing): %s", e)


async def _close_quietly(label: str, closer) -> None:
    try:
        await closer()
    except Exception as e:
        logger.warning("[browser] Failed to close %s: %s", label, e)


@asynccontextmanager
async def browser_session(settings: Settings,
                          cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[BrowserSession]:
    """Launch Chromium, yield a fresh page, and always tear everything down."""
    executable = find_browser_executable(settings)

    playwright: Optional[Playwright] = None
    browser: Optional[Browser] = None
    context: Optional[BrowserContext] = None
    try:
        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=True,
                executable_path=executable,
                args=LAUNCH_ARGS,
                timeout=settings.browser_launch_timeout,
            )
        except Exception as e:
            where = executable or "Playwright bundled Chromium"
            raise BrowserLaunchFailure(
                f"Failed to launch browser ({where}): {e}. {INSTALL_HINT}",
                details=str(e),
            ) from e

        logger.info("[browser] Launched %s", executable or "bundled Chromium")

        context = await browser.new_context(
            viewport={"width": settings.viewport_width, "height": settings.viewport_height},
            user_agent=settings.user_agent,
            service_workers="block",
        )
        page = await context.new_page()
        await _disable_cache(context, page)

        # Apply stealth to avoid bot detection
        if _stealth:
            await _stealth.apply_stealth_async(page)

        yield BrowserSession(browser=browser, context=context, page=page, executable_path=executable)
    finally:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("[browser] Run aborted by caller, releasing browser")
        if context is not None:
            await _close_quietly("context", context.close)
        if browser is not None:
            await _close_quietly("browser", browser.close)
        if playwright is not None:
            await _close_quietly("playwright driver", playwright.stop)
        logger.info("[browser] Browser closed")
