# screenshot_service/models.py
from dataclasses import dataclass
from typing import Optional

from screenshot_service.errors import MissingUrl, ValidationError

DEFAULT_VIEWPORT_WIDTH = 1920
DEFAULT_VIEWPORT_HEIGHT = 1080


@dataclass(frozen=True)
class Clip:
    x: int
    y: int
    width: int
    height: int

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class CaptureRequest:
    """One screenshot job: what to load, at which size, and which part to keep."""

    url: str
    viewport_width: int = DEFAULT_VIEWPORT_WIDTH
    viewport_height: int = DEFAULT_VIEWPORT_HEIGHT
    selector: Optional[str] = None
    clip: Optional[Clip] = None

    def __post_init__(self):
        if not isinstance(self.url, str) or not self.url.strip():
            raise MissingUrl()
        if self.viewport_width <= 0 or self.viewport_height <= 0:
            raise ValidationError("width and height must be positive")
        if self.selector is not None and not self.selector.strip():
            raise ValidationError("selector must not be empty")
        if self.clip is not None:
            if self.clip.x < 0 or self.clip.y < 0:
                raise ValidationError("clip_x and clip_y must not be negative")
            if self.clip.width <= 0 or self.clip.height <= 0:
                raise ValidationError("clip_width and clip_height must be positive")

    @classmethod
    def from_params(
        cls,
        url: Optional[str],
        width: Optional[int] = None,
        height: Optional[int] = None,
        selector: Optional[str] = None,
        clip_x: Optional[int] = None,
        clip_y: Optional[int] = None,
        clip_width: Optional[int] = None,
        clip_height: Optional[int] = None,
    ) -> "CaptureRequest":
        """Build a request from loose query values, applying defaults."""
        if not url or not url.strip():
            raise MissingUrl()
        viewport_width = DEFAULT_VIEWPORT_WIDTH if width is None else width
        viewport_height = DEFAULT_VIEWPORT_HEIGHT if height is None else height

        clip = None
        if any(v is not None for v in (clip_x, clip_y, clip_width, clip_height)):
            clip = Clip(
                x=clip_x or 0,
                y=clip_y or 0,
                width=viewport_width if clip_width is None else clip_width,
                height=viewport_height if clip_height is None else clip_height,
            )

        if selector is not None and not selector.strip():
            selector = None

        return cls(
            url=url.strip(),
            viewport_width=viewport_width,
            viewport_height=viewport_height,
            selector=selector,
            clip=clip,
        )


@dataclass(frozen=True)
class CaptureOutcome:
    image: Optional[bytes] = None
    artifact_url: Optional[str] = None
    cached: bool = False

    @property
    def is_artifact(self) -> bool:
        return self.artifact_url is not None
