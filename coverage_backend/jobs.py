"""In-memory job status registry backed by a cachetools TTLCache."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from cachetools import TTLCache

from coverage_backend.models import ProgressEvent, TerminalEvent
from coverage_backend.progress import Event, ProgressEmitter


@dataclass
class JobStatus:
    job_id: str
    status: str = "queued"          # queued | running | error | completed | failed
    progress: int = 0
    step: str = "Queued"
    outcome: str | None = None
    screenshots: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class JobRegistry:
    def __init__(self, ttl_s: int = 3600, maxsize: int = 1000) -> None:
        self._jobs: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_s)

    def track(self, job_id: str, emitter: ProgressEmitter) -> JobStatus:
        status = JobStatus(job_id)
        self._jobs[job_id] = status
        emitter.subscribe(lambda event: self._apply(job_id, event))
        return status

    def get(self, job_id: str) -> JobStatus | None:
        return self._jobs.get(job_id)

    def __len__(self) -> int:
        return len(self._jobs)

    def _apply(self, job_id: str, event: Event) -> None:
        status = self._jobs.get(job_id)
        if status is None:
            status = self._jobs[job_id] = JobStatus(job_id)
        status.updated_at = time.time()

        if isinstance(event, TerminalEvent):
            result = event.result
            status.status = "completed" if result.success else "failed"
            status.outcome = result.outcome.value
            status.screenshots = len(result.screenshots)
            status.warnings = list(result.warnings)
            status.error = result.error
            if result.success:
                status.progress = 100
        elif isinstance(event, ProgressEvent):
            status.status = event.status
            status.progress = event.progress
            status.step = event.step
        # re-insert to refresh the TTL
        self._jobs[job_id] = status
