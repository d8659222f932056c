"""Job orchestrator: one browser per job, stages in order, teardown always.

``browser_session`` is the only place a browser is launched. It is an async
context manager, so the browser is closed on every exit path: normal
completion, fatal stage errors, the job timeout and task cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Callable

from playwright.async_api import async_playwright

from coverage_backend.capture import CapturePipeline
from coverage_backend.config import LAUNCH_ARGS, Settings
from coverage_backend.errors import AutomationError, CaptureFailed, JobTimeout, ResourceError
from coverage_backend.humanize import Humanizer
from coverage_backend.models import (
    AutomationRequest,
    JobOutcome,
    JobResult,
    Screenshot,
    classify_outcome,
)
from coverage_backend.portal import STEALTH_JS, build_stages
from coverage_backend.progress import ProgressEmitter
from coverage_backend.resolver import SelectorResolver
from coverage_backend.stages import Stage, StageContext, StageEngine

log = logging.getLogger("orchestrator")


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Browser session
# ---------------------------------------------------------------------------

@dataclass
class BrowserSession:
    browser: Any
    context: Any
    page: Any


SessionFactory = Callable[[Settings], AsyncContextManager[BrowserSession]]


async def _release(pw, browser) -> None:
    if browser is not None:
        try:
            await browser.close()
        except Exception as exc:
            log.warning("Browser close failed: %s", exc)
    try:
        await pw.stop()
    except Exception as exc:
        log.warning("Playwright stop failed: %s", exc)
    log.info("Browser released")


@asynccontextmanager
async def browser_session(settings: Settings) -> AsyncIterator[BrowserSession]:
    """Launch Chromium with the configured fingerprint and yield its page.

    Raises:
        ResourceError: if Playwright or the browser cannot be started.
    """
    try:
        pw = await async_playwright().start()
    except Exception as exc:
        raise ResourceError(f"Could not start Playwright: {exc}") from exc

    browser = None
    try:
        try:
            browser = await pw.chromium.launch(
                headless=settings.headless,
                slow_mo=settings.slow_mo_ms,
                args=list(LAUNCH_ARGS),
            )
            context = await browser.new_context(
                viewport=settings.viewport,
                user_agent=settings.user_agent,
                locale=settings.locale,
                timezone_id=settings.timezone_id,
                geolocation=settings.geolocation,
                permissions=["geolocation"],
                ignore_https_errors=True,
            )
            await context.add_init_script(STEALTH_JS)
            page = await context.new_page()
        except Exception as exc:
            raise ResourceError(f"Browser launch failed: {exc}") from exc

        log.info("Browser launched (headless=%s)", settings.headless)
        yield BrowserSession(browser, context, page)
    finally:
        await _release(pw, browser)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class JobOrchestrator:
    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory = browser_session,
        stage_builder: Callable[[AutomationRequest], list[Stage]] = build_stages,
        humanizer: Humanizer | None = None,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.stage_builder = stage_builder
        self.humanizer = humanizer
        self._slots = asyncio.Semaphore(settings.max_concurrent_jobs)
        self._active: list[str] = []
        self._waiting: list[tuple[str, ProgressEmitter]] = []

    @property
    def active_jobs(self) -> int:
        return len(self._active)

    def queue_snapshot(self) -> dict[str, list[str]]:
        """Job ids holding a browser slot and, in order, those waiting for one."""
        return {
            "active": list(self._active),
            "waiting": [job_id for job_id, _ in self._waiting],
        }

    def _announce_positions(self, start: int = 0) -> None:
        for position, (_, emitter) in enumerate(self._waiting[start:], start + 1):
            emitter.update(0, f"Waiting for a free browser slot (position {position})")

    @asynccontextmanager
    async def _slot(self, emitter: ProgressEmitter, job_id: str) -> AsyncIterator[None]:
        entry = (job_id, emitter)
        queued = self._slots.locked()
        if queued:
            self._waiting.append(entry)
            self._announce_positions(len(self._waiting) - 1)
        try:
            await self._slots.acquire()
        finally:
            if queued:
                index = self._waiting.index(entry)
                del self._waiting[index]
                self._announce_positions(index)

        self._active.append(job_id)
        try:
            yield
        finally:
            self._active.remove(job_id)
            self._slots.release()

    async def _execute(
        self,
        request: AutomationRequest,
        emitter: ProgressEmitter,
        job_id: str,
        screenshots: list[Screenshot],
        warnings: list[str],
    ) -> None:
        async with self.session_factory(self.settings) as session:
            emitter.update(2, "Browser launched")
            page = session.page
            resolver = SelectorResolver(page, scale_timeout=self.settings.scaled)
            ctx = StageContext(
                page=page,
                request=request,
                job_id=job_id,
                settings=self.settings,
                emitter=emitter,
                resolver=resolver,
                humanizer=self.humanizer or Humanizer(),
                capture=CapturePipeline(
                    page, resolver, request.address, job_id, self.settings.fallback_clip,
                ),
                screenshots=screenshots,
                warnings=warnings,
            )
            await StageEngine(self.stage_builder(request)).run(ctx)

    def _abort(
        self,
        emitter: ProgressEmitter,
        job_id: str,
        request: AutomationRequest,
        warnings: list[str],
        exc: AutomationError,
    ) -> JobResult:
        result = JobResult(
            job_id=job_id,
            outcome=JobOutcome.FAILED,
            requested=len(request.view_modes),
            warnings=warnings,
            error=str(exc) or exc.__class__.__name__,
            error_kind=exc.kind,
        )
        emitter.fail(result)
        return result

    async def run(
        self,
        request: AutomationRequest,
        emitter: ProgressEmitter | None = None,
        job_id: str | None = None,
    ) -> JobResult:
        """Run one job to its terminal event and return the result.

        Fatal errors are reported through the emitter and returned as a failed
        result; only cancellation propagates.
        """
        job_id = job_id or (emitter.job_id if emitter else "") or new_job_id()
        emitter = emitter or ProgressEmitter(job_id)
        emitter.job_id = emitter.job_id or job_id

        screenshots: list[Screenshot] = []
        warnings: list[str] = []
        emitter.start("Starting...")
        log.info("[%s] Job started: %r carriers=%s views=%s", job_id, request.address,
                 [c.value for c in request.carriers], [m.value for m in request.view_modes])

        try:
            async with self._slot(emitter, job_id):
                await asyncio.wait_for(
                    self._execute(request, emitter, job_id, screenshots, warnings),
                    timeout=self.settings.job_timeout_s,
                )
        except asyncio.CancelledError:
            log.warning("[%s] Job cancelled", job_id)
            if not emitter.closed:
                self._abort(emitter, job_id, request, warnings, AutomationError("Job cancelled"))
            raise
        except asyncio.TimeoutError:
            log.error("[%s] Job exceeded %ss", job_id, self.settings.job_timeout_s)
            return self._abort(emitter, job_id, request, warnings,
                               JobTimeout(f"Job exceeded {self.settings.job_timeout_s}s"))
        except AutomationError as exc:
            log.error("[%s] Job failed: %s", job_id, exc)
            return self._abort(emitter, job_id, request, warnings, exc)
        except Exception as exc:
            log.error("[%s] Unexpected job failure", job_id, exc_info=True)
            return self._abort(emitter, job_id, request, warnings, AutomationError(str(exc)))

        requested = len(request.view_modes)
        outcome = classify_outcome(requested, len(screenshots))
        if outcome is JobOutcome.FAILED:
            log.error("[%s] None of %d screenshots captured", job_id, requested)
            return self._abort(emitter, job_id, request, warnings,
                               CaptureFailed("No screenshots could be captured"))

        result = JobResult(
            job_id=job_id,
            outcome=outcome,
            screenshots=screenshots,
            requested=requested,
            warnings=warnings,
        )
        if outcome is JobOutcome.PARTIAL:
            emitter.update(100, f"Completed with {len(screenshots)} of {requested} screenshots")
        else:
            emitter.update(100, "Complete")
        emitter.finish(result)
        log.info("[%s] Job %s (%d screenshots, %d warnings)", job_id, outcome.value,
                 len(screenshots), len(warnings))
        return result
