# screenshot_service/capture.py
import asyncio
import logging
from typing import Dict, Optional

from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from screenshot_service.browser import BrowserSession
from screenshot_service.cache import MemoryResultCache, ResultCache, build_cache_key
from screenshot_service.errors import (
    NavigationError,
    NavigationTimeout,
    RendererUnavailable,
    SelectorNotFound,
    ValidationError,
)
from screenshot_service.models import CaptureOutcome, CaptureRequest, Clip
from screenshot_service.storage import ArtifactStore, artifact_path

logger = logging.getLogger(__name__)

# Playwright's closest match to "no more than 2 connections for 500ms"
WAIT_UNTIL = "networkidle"


class CaptureCoordinator:
    """Turns a CaptureRequest into image bytes or a cached artifact URL.

    Without an artifact store every request renders and the bytes are returned
    as-is. With one, results are uploaded and their URLs cached write-once, and
    identical uncached requests in flight at the same time share one render.
    """

    def __init__(
        self,
        session: BrowserSession,
        store: Optional[ArtifactStore] = None,
        cache: Optional[ResultCache] = None,
        cache_ttl_seconds: int = 2 * 60 * 60,
        navigation_timeout_ms: int = 45_000,
        dedupe_inflight: bool = True,
    ):
        self.session = session
        self.store = store
        if store is not None and cache is None:
            cache = MemoryResultCache()
        self.cache = cache if store is not None else None
        self.cache_ttl_seconds = cache_ttl_seconds
        self.navigation_timeout_ms = navigation_timeout_ms
        self.dedupe_inflight = dedupe_inflight
        self._inflight: Dict[str, asyncio.Future] = {}

    async def capture(self, request: CaptureRequest) -> CaptureOutcome:
        if self.store is None:
            return CaptureOutcome(image=await self.render(request))

        key = build_cache_key(request)
        cached_url = await self.cache.get(key)
        if cached_url is not None:
            logger.info("Cache hit for %s", request.url)
            return CaptureOutcome(artifact_url=cached_url, cached=True)
        logger.info("Cache miss for %s", request.url)

        if not self.dedupe_inflight:
            return await self._render_and_store(key, request)

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._render_and_store(key, request))
            self._inflight[key] = pending
            pending.add_done_callback(lambda done: self._forget_inflight(key, done))
        else:
            logger.debug("Joining in-flight capture for %s", request.url)
        # shielded so one caller going away does not cancel the shared render
        return await asyncio.shield(pending)

    def _forget_inflight(self, key: str, done: asyncio.Future) -> None:
        self._inflight.pop(key, None)
        # every waiter may have gone away; the error is theirs to re-raise
        if not done.cancelled():
            done.exception()

    async def _render_and_store(self, key: str, request: CaptureRequest) -> CaptureOutcome:
        image = await self.render(request)
        url = await self.store.put(artifact_path(), image)
        if await self.cache.set_if_absent(key, url, self.cache_ttl_seconds):
            return CaptureOutcome(artifact_url=url)

        winner = await self.cache.get(key)
        logger.info("Cache entry for %s already written, returning the existing URL", request.url)
        return CaptureOutcome(artifact_url=winner or url)

    async def render(self, request: CaptureRequest) -> bytes:
        async with self.session.lease() as browser:
            page = await self._open_page(browser, request)
            try:
                await self._navigate(page, request.url)
                image = await self._screenshot(page, request)
            finally:
                await self._close_page(page)
        logger.info("Captured %s (%d bytes)", request.url, len(image))
        return image

    async def _open_page(self, browser, request: CaptureRequest) -> Page:
        try:
            page = await browser.new_page(
                viewport={"width": request.viewport_width, "height": request.viewport_height}
            )
        except PlaywrightError as exc:
            self.session.retire(browser)
            raise RendererUnavailable(f"could not open page: {exc}") from exc
        logger.debug("Opened page for %s", request.url)
        return page

    async def _navigate(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until=WAIT_UNTIL, timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"{url} did not settle within {self.navigation_timeout_ms}ms") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"navigation to {url} failed: {exc}") from exc

    async def _screenshot(self, page: Page, request: CaptureRequest) -> bytes:
        try:
            return await self._take_screenshot(page, request)
        except PlaywrightError as exc:
            raise RendererUnavailable(f"capture of {request.url} failed: {exc}") from exc

    async def _take_screenshot(self, page: Page, request: CaptureRequest) -> bytes:
        if request.selector is None:
            if request.clip is None:
                return await page.screenshot(type="png")
            return await page.screenshot(type="png", clip=request.clip.as_dict())

        element = await page.query_selector(request.selector)
        if element is None:
            raise SelectorNotFound(f"no element matches {request.selector!r} on {request.url}")
        if request.clip is None:
            try:
                return await element.screenshot(type="png")
            except PlaywrightTimeoutError as exc:
                # never became visible
                raise SelectorNotFound(f"{request.selector!r} matched an element that is not rendered") from exc
        return await self._screenshot_element_region(page, element, request)

    async def _screenshot_element_region(self, page: Page, element, request: CaptureRequest) -> bytes:
        """Clip relative to the element's box, clamped to the box."""
        try:
            await element.scroll_into_view_if_needed()
        except PlaywrightTimeoutError as exc:
            raise SelectorNotFound(f"{request.selector!r} matched an element that is not rendered") from exc
        box = await element.bounding_box()
        if box is None:
            raise SelectorNotFound(f"{request.selector!r} matched an element that is not rendered")
        clip: Clip = request.clip
        width = min(clip.width, box["width"] - clip.x)
        height = min(clip.height, box["height"] - clip.y)
        if width <= 0 or height <= 0:
            raise ValidationError("clip lies outside the selected element")
        region = {"x": box["x"] + clip.x, "y": box["y"] + clip.y, "width": width, "height": height}
        return await page.screenshot(type="png", clip=region)

    async def _close_page(self, page: Page) -> None:
        try:
            await page.close()
        except PlaywrightError as exc:
            # the browser may already be gone
            logger.warning("Error closing page: %s", exc)
        else:
            logger.debug("Page closed")

    async def close(self) -> None:
        await self.session.close()
        if self.cache is not None:
            await self.cache.close()
        if self.store is not None:
            await self.store.close()
