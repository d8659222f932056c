"""Sequential stage engine.

A job is a fixed, ordered list of ``Stage`` objects run one after another
against a single page. Each stage reports progress at its start and end
from its slot in the weight table. Fatal stages abort the job; recoverable
stages are logged, recorded as job warnings and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from coverage_backend.capture import CapturePipeline
from coverage_backend.config import Settings
from coverage_backend.errors import AutomationError, ResourceError, StageFailed
from coverage_backend.humanize import Humanizer
from coverage_backend.models import AutomationRequest, Screenshot
from coverage_backend.progress import ProgressEmitter
from coverage_backend.resolver import SelectorResolver

log = logging.getLogger("stages")

# Playwright error text once the page/context/browser is unusable
_GONE_MARKERS = (
    "has been closed",
    "target closed",
    "browser closed",
    "page crashed",
    "connection closed",
)


def browser_gone(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _GONE_MARKERS)


@dataclass
class StageContext:
    page: Any
    request: AutomationRequest
    job_id: str
    settings: Settings
    emitter: ProgressEmitter
    resolver: SelectorResolver
    humanizer: Humanizer
    capture: CapturePipeline
    screenshots: list[Screenshot] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stage: Stage | None = None

    def report(self, progress: float, step: str) -> None:
        self.emitter.update(progress, step)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        log.warning("[%s] %s", self.job_id, message)


StageFn = Callable[[StageContext], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    name: str
    label: str
    progress_range: tuple[int, int]
    execute: StageFn
    fatal: bool = False
    done_label: str | None = None


def check_order(stages: list[Stage]) -> None:
    """Progress ranges must be within [0, 100] and never go backwards."""
    last = 0
    for stage in stages:
        start, end = stage.progress_range
        if not (0 <= start <= end <= 100) or start < last:
            raise ValueError(f"Stage '{stage.name}' has an invalid progress range {stage.progress_range}")
        last = end


class StageEngine:
    def __init__(self, stages: list[Stage]) -> None:
        check_order(stages)
        self.stages = stages

    async def run(self, ctx: StageContext) -> None:
        for stage in self.stages:
            start, end = stage.progress_range
            ctx.stage = stage
            ctx.report(start, stage.label)
            try:
                await stage.execute(ctx)
            except ResourceError:
                raise
            except AutomationError as exc:
                if stage.fatal:
                    log.error("[%s] Fatal stage %s failed: %s", ctx.job_id, stage.name, exc)
                    raise
                if browser_gone(exc):
                    raise ResourceError(f"Browser went away during '{stage.name}': {exc}") from exc
                ctx.warn(f"{stage.label} skipped: {exc}")
                ctx.report(end, f"{stage.label} skipped")
                continue
            except Exception as exc:
                if browser_gone(exc):
                    raise ResourceError(f"Browser went away during '{stage.name}': {exc}") from exc
                if stage.fatal:
                    log.error("[%s] Fatal stage %s crashed", ctx.job_id, stage.name, exc_info=True)
                    raise StageFailed(stage.name, exc) from exc
                ctx.warn(f"{stage.label} skipped: {exc}")
                ctx.report(end, f"{stage.label} skipped")
                continue
            ctx.report(end, stage.done_label or stage.label)
