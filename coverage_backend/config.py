"""Runtime settings for the portal automation service.

Everything that describes the remote portal (URLs, credentials) or the
browser fingerprint lives in the environment, loaded via python-dotenv.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

log = logging.getLogger("config")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

PORTAL_LOGIN_URL = "https://cellanalytics.ookla.com/login"
PORTAL_URL_PATTERN = "**/cellanalytics.ookla.com/**"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Chromium flags that hide the automation banner / webdriver hints
LAUNCH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-dev-shm-usage",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _env_float(name: str, default: float, minimum: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _parse_clip(raw: str | None) -> dict[str, int]:
    """Parse "x,y,width,height" into a Playwright clip dict."""
    if not raw:
        return {"x": 0, "y": 50, "width": 1280, "height": 670}
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise ValueError(f"FALLBACK_CLIP must be 'x,y,width,height', got: {raw!r}")
    try:
        x, y, w, h = (int(p) for p in parts)
    except ValueError:
        raise ValueError(f"FALLBACK_CLIP values must be integers, got: {raw!r}") from None
    if w <= 0 or h <= 0:
        raise ValueError(f"FALLBACK_CLIP width/height must be positive, got: {raw!r}")
    return {"x": x, "y": y, "width": w, "height": h}


@dataclass(frozen=True)
class Settings:
    login_url: str = PORTAL_LOGIN_URL
    portal_url_pattern: str = PORTAL_URL_PATTERN
    username: str = ""
    password: str = ""

    headless: bool = True
    slow_mo_ms: int = 50
    viewport: dict[str, int] = field(default_factory=lambda: {"width": 1280, "height": 720})
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    geolocation: dict[str, float] = field(
        default_factory=lambda: {"latitude": 40.730610, "longitude": -73.935242},
    )

    timeout_multiplier: float = 1.0
    job_timeout_s: int = 300
    max_concurrent_jobs: int = 2
    status_ttl_s: int = 3600
    fallback_clip: dict[str, int] = field(
        default_factory=lambda: {"x": 0, "y": 50, "width": 1280, "height": 670},
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def scaled(self, timeout_ms: int) -> int:
        """Apply the timeout multiplier, rounded up to the nearest 100ms."""
        scaled = int(timeout_ms * self.timeout_multiplier)
        return ((scaled + 99) // 100) * 100


def load_settings(env_file: str | None = None) -> Settings:
    """Read settings from the environment (and an optional .env file)."""
    load_dotenv(env_file)

    settings = Settings(
        login_url=os.getenv("PORTAL_LOGIN_URL", PORTAL_LOGIN_URL),
        portal_url_pattern=os.getenv("PORTAL_URL_PATTERN", PORTAL_URL_PATTERN),
        username=os.getenv("PORTAL_USERNAME", ""),
        password=os.getenv("PORTAL_PASSWORD", ""),
        headless=_env_bool("HEADLESS", True),
        slow_mo_ms=_env_int("SLOW_MO_MS", 50, 0),
        viewport={
            "width": _env_int("VIEWPORT_WIDTH", 1280, 320),
            "height": _env_int("VIEWPORT_HEIGHT", 720, 240),
        },
        user_agent=os.getenv("USER_AGENT", DEFAULT_USER_AGENT),
        locale=os.getenv("LOCALE", "en-US"),
        timezone_id=os.getenv("TIMEZONE_ID", "America/New_York"),
        geolocation={
            "latitude": _env_float("GEO_LAT", 40.730610, -90.0),
            "longitude": _env_float("GEO_LNG", -73.935242, -180.0),
        },
        timeout_multiplier=_env_float("TIMEOUT_MULTIPLIER", 1.0, 0.1),
        job_timeout_s=_env_int("JOB_TIMEOUT_S", 300, 10),
        max_concurrent_jobs=_env_int("MAX_CONCURRENT_JOBS", 2, 1),
        status_ttl_s=_env_int("STATUS_TTL_S", 3600, 60),
        fallback_clip=_parse_clip(os.getenv("FALLBACK_CLIP")),
    )

    if not settings.has_credentials:
        log.warning("PORTAL_USERNAME / PORTAL_PASSWORD not set, portal login will fail")
    return settings
