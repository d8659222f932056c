"""Screenshot capture: scoped map region first, clipped viewport as fallback."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from coverage_backend.errors import CaptureFailed
from coverage_backend.models import Screenshot, ViewMode
from coverage_backend.resolver import SelectorResolver, StrategyExhausted, first_success

log = logging.getLogger("capture")

FILENAME_PREFIX = "ookla"
ADDRESS_MAX_LEN = 50
JOB_ID_MAX_LEN = 12


def sanitize(text: str, limit: int = ADDRESS_MAX_LEN) -> str:
    """Replace anything outside [A-Za-z0-9] with '_' and cap the length."""
    return re.sub(r"[^a-zA-Z0-9]", "_", text)[:limit]


def job_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return re.sub(r"[:.+]", "-", now.isoformat(timespec="milliseconds"))


def make_filename(
    view_mode: ViewMode,
    address: str,
    job_id: str,
    timestamp: str,
    fallback: bool = False,
) -> str:
    parts = [FILENAME_PREFIX, view_mode.tag]
    if fallback:
        parts.append("fallback")
    parts.append(sanitize(address))
    if job_id:
        parts.append(sanitize(job_id, JOB_ID_MAX_LEN))
    parts.append(timestamp)
    return "_".join(parts) + ".png"


class CapturePipeline:
    def __init__(
        self,
        page,
        resolver: SelectorResolver,
        address: str,
        job_id: str,
        clip: dict[str, int],
        timestamp: str | None = None,
    ) -> None:
        self.page = page
        self.resolver = resolver
        self.address = address
        self.job_id = job_id
        self.clip = clip
        self.timestamp = timestamp or job_timestamp()

    async def _element_shot(self, view_mode: ViewMode) -> Screenshot:
        area = await self.resolver.resolve("content_area")
        data = await area.screenshot(type="png")
        return Screenshot(
            filename=make_filename(view_mode, self.address, self.job_id, self.timestamp),
            data=data,
            view_mode=view_mode,
        )

    async def _clipped_shot(self, view_mode: ViewMode) -> Screenshot:
        data = await self.page.screenshot(type="png", clip=self.clip)
        return Screenshot(
            filename=make_filename(view_mode, self.address, self.job_id, self.timestamp, fallback=True),
            data=data,
            view_mode=view_mode,
            fallback=True,
        )

    async def capture(self, view_mode: ViewMode) -> Screenshot:
        """Capture one view mode.

        Raises:
            CaptureFailed: when both the element and the clipped capture fail.
        """
        try:
            _, shot = await first_success([
                ("element", lambda: self._element_shot(view_mode)),
                ("clipped viewport", lambda: self._clipped_shot(view_mode)),
            ])
        except StrategyExhausted as exc:
            raise CaptureFailed(f"{view_mode.value} screenshot failed ({exc})") from None

        if shot.fallback:
            log.warning("%s: content area not found, used clipped viewport capture", view_mode.value)
        log.info("Captured %s (%d bytes)", shot.filename, len(shot.data))
        return shot
