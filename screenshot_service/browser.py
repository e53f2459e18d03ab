# screenshot_service/browser.py
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from playwright.async_api import Browser, Error as PlaywrightError, async_playwright

from screenshot_service.config import CONSTRAINED, Settings
from screenshot_service.errors import RendererUnavailable

logger = logging.getLogger(__name__)

# Flags for small serverless containers: one process, no /dev/shm, no GPU.
CONSTRAINED_ARGS = [
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--single-process",
    "--hide-scrollbars",
    "--mute-audio",
]

UNCONSTRAINED_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-gpu",
    "--window-position=0,0",
    "--ignore-certificate-errors",
    "--ignore-certificate-errors-spki-list",
]


@dataclass(frozen=True)
class LaunchOptions:
    headless: bool = True
    args: List[str] = field(default_factory=list)
    executable_path: Optional[str] = None

    @classmethod
    def for_settings(cls, settings: Settings) -> "LaunchOptions":
        args = CONSTRAINED_ARGS if settings.browser_mode == CONSTRAINED else UNCONSTRAINED_ARGS
        return cls(
            headless=settings.browser_headless,
            args=list(args),
            executable_path=settings.chromium_executable_path,
        )

    def as_kwargs(self) -> dict:
        kwargs = {"headless": self.headless, "args": list(self.args)}
        if self.executable_path:
            kwargs["executable_path"] = self.executable_path
        return kwargs


class PlaywrightLauncher:
    """Starts Chromium through a single long-lived Playwright driver."""

    def __init__(self):
        self._playwright = None

    async def launch(self, options: LaunchOptions) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(**options.as_kwargs())

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"
    DISCONNECTED = "disconnected"


class BrowserSession:
    """The one browser process shared by every request in this process.

    Launches lazily, at most once per disconnect cycle: concurrent callers of
    ``ensure_ready`` queue on a lock and the later ones pick up the browser the
    first one launched. A disconnect only drops the shared handle; callers
    holding the old browser keep using it until their capture ends.
    """

    def __init__(self, launcher, options: LaunchOptions, persistent: bool = True):
        self._launcher = launcher
        self._options = options
        self.persistent = persistent
        self._state = SessionState.UNINITIALIZED
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self._leases: Dict[int, int] = {}
        self._retired: Set[int] = set()
        self.launch_count = 0

    @property
    def state(self) -> SessionState:
        return self._state

    async def ensure_ready(self) -> Browser:
        browser = self._live_browser()
        if browser is not None:
            return browser
        async with self._launch_lock:
            browser = self._live_browser()
            if browser is not None:
                return browser
            return await self._launch()

    def _live_browser(self) -> Optional[Browser]:
        browser = self._browser
        if self._state is not SessionState.READY or browser is None:
            return None
        if not browser.is_connected():
            logger.warning("Browser handle found disconnected without an event")
            self.invalidate(browser)
            return None
        return browser

    async def _launch(self) -> Browser:
        previous = self._state
        self._state = SessionState.LAUNCHING
        logger.info("Launching browser (headless=%s)", self._options.headless)
        try:
            browser = await self._launcher.launch(self._options)
        except Exception as exc:
            self._state = previous
            logger.error("Browser launch failed: %s", exc)
            raise RendererUnavailable(f"browser launch failed: {exc}") from exc

        browser.on("disconnected", self._on_disconnected)
        self._browser = browser
        self._state = SessionState.READY
        self.launch_count += 1
        logger.info("Browser ready")
        return browser

    def _on_disconnected(self, browser: Browser) -> None:
        logger.info("Browser disconnected")
        self.invalidate(browser)

    def invalidate(self, browser: Optional[Browser] = None) -> None:
        """Forget the shared handle so the next caller relaunches.

        Notifications about a browser other than the current one are stale and
        ignored.
        """
        if self._browser is None:
            return
        if browser is not None and browser is not self._browser:
            return
        self._browser = None
        self._state = SessionState.DISCONNECTED

    @asynccontextmanager
    async def lease(self):
        """Borrow the shared browser for one capture.

        In non-persistent mode, or once retired, the browser is closed when its
        last borrower is done.
        """
        browser = await self.ensure_ready()
        key = id(browser)
        self._leases[key] = self._leases.get(key, 0) + 1
        try:
            yield browser
        finally:
            remaining = self._leases[key] - 1
            if remaining:
                self._leases[key] = remaining
            else:
                del self._leases[key]
                if not self.persistent or key in self._retired:
                    self._retired.discard(key)
                    await self._close_browser(browser)

    def retire(self, browser: Browser) -> None:
        """Stop handing out a broken browser and close it once nobody borrows it.

        Only valid while the caller holds a lease on ``browser``.
        """
        self.invalidate(browser)
        self._retired.add(id(browser))

    async def _close_browser(self, browser: Browser) -> None:
        self.invalidate(browser)
        try:
            await browser.close()
        except PlaywrightError as exc:
            logger.warning("Error closing browser: %s", exc)
        else:
            logger.info("Browser closed")

    async def close(self) -> None:
        async with self._launch_lock:
            browser = self._browser
            if browser is not None:
                await self._close_browser(browser)
            await self._launcher.stop()
