# screenshot_service/main.py
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from screenshot_service.browser import BrowserSession, LaunchOptions, PlaywrightLauncher
from screenshot_service.cache import create_result_cache
from screenshot_service.capture import CaptureCoordinator
from screenshot_service.config import Settings
from screenshot_service.errors import ScreenshotError, ValidationError
from screenshot_service.logs import configure_logging
from screenshot_service.models import CaptureRequest
from screenshot_service.storage import SupabaseArtifactStore

logger = logging.getLogger(__name__)


def build_coordinator(settings: Settings) -> CaptureCoordinator:
    session = BrowserSession(
        PlaywrightLauncher(),
        LaunchOptions.for_settings(settings),
        persistent=settings.browser_persistent,
    )
    store = cache = None
    if settings.storage_configured:
        store = SupabaseArtifactStore(
            settings.supabase_url, settings.supabase_service_key, settings.supabase_bucket
        )
        cache = create_result_cache(settings.redis_url)
    else:
        logger.info("Supabase not configured - returning raw image bytes without caching")
    return CaptureCoordinator(
        session,
        store=store,
        cache=cache,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        navigation_timeout_ms=settings.navigation_timeout_ms,
        dedupe_inflight=settings.dedupe_inflight,
    )


def create_app(settings: Optional[Settings] = None, coordinator: Optional[CaptureCoordinator] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.coordinator is None
        if owned:
            app.state.coordinator = build_coordinator(settings)
        logger.info(
            "Screenshot service started (env=%s, browser=%s, persistent=%s)",
            settings.env,
            settings.browser_mode,
            settings.browser_persistent,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.coordinator.close()
                app.state.coordinator = None
            logger.info("Screenshot service stopped")

    app = FastAPI(title="Screenshot Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %d (%.0fms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    @app.exception_handler(ScreenshotError)
    async def screenshot_error_handler(request: Request, exc: ScreenshotError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.detail)
        else:
            logger.info("%s: %s", type(exc).__name__, exc.detail)
        return PlainTextResponse(exc.body, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.info("Rejected query parameters: %s", exc.errors())
        return PlainTextResponse(ValidationError.message, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return PlainTextResponse("Internal Server Error", status_code=500)

    @app.get("/screenshot")
    async def screenshot(
        request: Request,
        url: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        selector: Optional[str] = None,
        clip_x: Optional[int] = None,
        clip_y: Optional[int] = None,
        clip_width: Optional[int] = None,
        clip_height: Optional[int] = None,
    ):
        capture_request = CaptureRequest.from_params(
            url,
            width=width,
            height=height,
            selector=selector,
            clip_x=clip_x,
            clip_y=clip_y,
            clip_width=clip_width,
            clip_height=clip_height,
        )
        outcome = await request.app.state.coordinator.capture(capture_request)
        if outcome.is_artifact:
            return JSONResponse({"url": outcome.artifact_url})
        return Response(content=outcome.image, media_type="image/png")

    @app.get("/health")
    async def health(request: Request):
        coordinator = request.app.state.coordinator
        if coordinator.cache is None:
            cache_backend = "disabled"
        else:
            cache_backend = coordinator.cache.backend
        return {
            "status": "ok",
            "browser": coordinator.session.state.value,
            "storage": coordinator.store is not None,
            "cache": cache_backend,
        }

    return app


app = create_app()


def serve() -> None:
    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
