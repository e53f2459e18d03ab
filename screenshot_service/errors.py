# screenshot_service/errors.py
"""Failures surfaced by the screenshot service.

Each request-level error carries the HTTP status and plain-text body the
API answers with, so the route never has to know which layer raised it.
``detail`` is for logs; ``body`` is what the client sees.
"""

from typing import Optional


class ConfigurationError(Exception):
    """Invalid environment configuration, raised at startup."""


class ScreenshotError(Exception):
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.message
        super().__init__(self.detail)

    @property
    def body(self) -> str:
        return self.message


class ValidationError(ScreenshotError):
    status_code = 400
    message = "Invalid query parameters"

    @property
    def body(self) -> str:
        return self.detail


class MissingUrl(ValidationError):
    message = "URL is required"


class SelectorNotFound(ScreenshotError):
    status_code = 404
    message = "Selector not found"


class RendererUnavailable(ScreenshotError):
    status_code = 503
    message = "Renderer unavailable"


class NavigationTimeout(ScreenshotError):
    status_code = 504
    message = "Navigation timed out"


class NavigationError(ScreenshotError):
    status_code = 502
    message = "Navigation failed"


class ArtifactStoreError(ScreenshotError):
    status_code = 502
    message = "Upstream storage error"


class CacheStoreError(ScreenshotError):
    status_code = 502
    message = "Upstream storage error"
