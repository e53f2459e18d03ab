# screenshot_service/config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from screenshot_service.errors import ConfigurationError

CONSTRAINED = "constrained"
UNCONSTRAINED = "unconstrained"

# npm-style names (warn, http, verbose, silly) map onto the nearest level
_LOG_LEVELS = {
    "CRITICAL": "CRITICAL",
    "ERROR": "ERROR",
    "WARNING": "WARNING",
    "WARN": "WARNING",
    "INFO": "INFO",
    "HTTP": "INFO",
    "VERBOSE": "DEBUG",
    "DEBUG": "DEBUG",
    "SILLY": "DEBUG",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_log_level(default: str) -> str:
    raw = os.getenv("LOG_LEVEL")
    if raw is None or raw.strip() == "":
        return default
    level = _LOG_LEVELS.get(raw.strip().upper())
    if level is None:
        raise ConfigurationError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {raw!r}")
    return level


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    env: str = "development"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "DEBUG"
    log_files: bool = False
    log_dir: str = "logs"
    browser_mode: str = UNCONSTRAINED
    browser_persistent: bool = False
    browser_headless: bool = False
    chromium_executable_path: Optional[str] = None
    navigation_timeout_ms: int = 45_000
    cache_ttl_seconds: int = 2 * 60 * 60
    redis_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_bucket: str = "screenshots"
    dedupe_inflight: bool = True

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls, load_files: bool = True) -> "Settings":
        if load_files:
            # .env.local wins over .env; real environment wins over both
            load_dotenv(".env.local")
            load_dotenv(".env")

        env = (os.getenv("APP_ENV") or "development").strip().lower()
        if env not in ("production", "development"):
            raise ConfigurationError(f"APP_ENV must be production or development, got {env!r}")
        production = env == "production"

        mode = (os.getenv("BROWSER_MODE") or (CONSTRAINED if production else UNCONSTRAINED)).strip().lower()
        if mode not in (CONSTRAINED, UNCONSTRAINED):
            raise ConfigurationError(f"BROWSER_MODE must be {CONSTRAINED} or {UNCONSTRAINED}, got {mode!r}")

        return cls(
            env=env,
            host=os.getenv("HOST") or "0.0.0.0",
            port=_env_int("PORT", 3000),
            log_level=_env_log_level("INFO" if production else "DEBUG"),
            log_files=_env_bool("LOGFILES", False),
            log_dir=os.getenv("LOG_DIR") or "logs",
            browser_mode=mode,
            browser_persistent=_env_bool("BROWSER_PERSISTENT", production),
            browser_headless=_env_bool("BROWSER_HEADLESS", mode == CONSTRAINED),
            chromium_executable_path=os.getenv("CHROMIUM_EXECUTABLE_PATH") or None,
            navigation_timeout_ms=_env_int("NAVIGATION_TIMEOUT_MS", 45_000),
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 2 * 60 * 60),
            redis_url=os.getenv("REDIS_URL") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
            supabase_bucket=os.getenv("SUPABASE_BUCKET") or "screenshots",
            dedupe_inflight=_env_bool("DEDUPE_INFLIGHT", True),
        )
