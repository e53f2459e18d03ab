"""Fakes for the Playwright browser and the artifact store."""

import asyncio
from typing import Dict, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from screenshot_service.browser import BrowserSession, LaunchOptions
from screenshot_service.cache import MemoryResultCache
from screenshot_service.capture import CaptureCoordinator
from screenshot_service.storage import ArtifactStore

PAGE_PNG = b"\x89PNG page"
ELEMENT_PNG = b"\x89PNG element"


class FakeElement:
    def __init__(self, box: Optional[dict] = None, hidden: bool = False):
        self.box = box if box is not None else {"x": 100, "y": 200, "width": 300, "height": 150}
        self.hidden = hidden
        self.screenshot_calls: List[dict] = []

    async def scroll_into_view_if_needed(self):
        pass

    async def bounding_box(self):
        return None if self.hidden else self.box

    async def screenshot(self, **kwargs):
        self.screenshot_calls.append(kwargs)
        if self.hidden:
            raise PlaywrightTimeoutError("Timeout 30000ms exceeded. element is not visible")
        return ELEMENT_PNG


class FakeSite:
    """What every page opened by the fake browser sees."""

    def __init__(self):
        self.elements: Dict[str, FakeElement] = {}
        self.goto_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.navigating: Optional[asyncio.Event] = None


class FakePage:
    def __init__(self, site: FakeSite, viewport: dict):
        self.site = site
        self.viewport = viewport
        self.closed = False
        self.goto_calls: List[dict] = []
        self.screenshot_calls: List[dict] = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if self.site.navigating is not None:
            self.site.navigating.set()
        if self.site.gate is not None:
            await self.site.gate.wait()
        if self.site.goto_error is not None:
            raise self.site.goto_error

    async def query_selector(self, selector):
        return self.site.elements.get(selector)

    async def screenshot(self, **kwargs):
        self.screenshot_calls.append(kwargs)
        if self.site.screenshot_error is not None:
            raise self.site.screenshot_error
        return PAGE_PNG

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, site: FakeSite):
        self.site = site
        self.connected = True
        self.closed = False
        self.pages: List[FakePage] = []
        self.new_page_error: Optional[Exception] = None
        self._handlers: Dict[str, list] = {}

    def on(self, event, handler):
        self._handlers.setdefault(event, []).append(handler)

    def is_connected(self):
        return self.connected

    async def new_page(self, viewport=None):
        if self.new_page_error is not None:
            raise self.new_page_error
        page = FakePage(self.site, viewport)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True
        self.disconnect()

    def disconnect(self):
        if not self.connected:
            return
        self.connected = False
        for handler in self._handlers.get("disconnected", []):
            handler(self)


class FakeLauncher:
    def __init__(self, site: FakeSite):
        self.site = site
        self.fail = False
        self.delay = 0.0
        self.browsers: List[FakeBrowser] = []
        self.options: List[LaunchOptions] = []
        self.stopped = False

    @property
    def launches(self) -> int:
        return len(self.browsers)

    async def launch(self, options):
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("chromium executable not found")
        browser = FakeBrowser(self.site)
        self.browsers.append(browser)
        return browser

    async def stop(self):
        self.stopped = True

    def all_pages(self) -> List[FakePage]:
        return [page for browser in self.browsers for page in browser.pages]


class FakeArtifactStore(ArtifactStore):
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    async def put(self, path, data, content_type="image/png"):
        self.objects[path] = data
        return f"https://cdn.example.test/{path}"


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def launcher(site):
    return FakeLauncher(site)


@pytest.fixture
def session(launcher):
    return BrowserSession(launcher, LaunchOptions(headless=True), persistent=True)


@pytest.fixture
def store():
    return FakeArtifactStore()


@pytest.fixture
def result_cache():
    return MemoryResultCache()


@pytest.fixture
def raw_coordinator(session):
    return CaptureCoordinator(session)


@pytest.fixture
def stored_coordinator(session, store, result_cache):
    return CaptureCoordinator(session, store=store, cache=result_cache)
