"""FastAPI service for coverage plot automation.

Run: uvicorn coverage_backend.main:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from coverage_backend.config import Settings, load_settings
from coverage_backend.errors import AuthenticationFailed, JobTimeout, ValidationError
from coverage_backend.jobs import JobRegistry
from coverage_backend.models import AutomationPayload, AutomationRequest
from coverage_backend.orchestrator import JobOrchestrator, new_job_id
from coverage_backend.progress import ProgressEmitter
from coverage_backend.streaming import SSE_HEADERS, sse_events

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(message)s")
log = logging.getLogger("api")

# ---------------------------------------------------------------------------
# Lifespan: settings, job registry and orchestrator
# ---------------------------------------------------------------------------

_settings: Settings | None = None
_registry: JobRegistry | None = None
_orchestrator: JobOrchestrator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _settings, _registry, _orchestrator
    _settings = load_settings()
    _registry = JobRegistry(ttl_s=_settings.status_ttl_s)
    _orchestrator = JobOrchestrator(_settings)
    log.info("Server started (headless=%s, max_concurrent_jobs=%d, job_timeout=%ss)",
             _settings.headless, _settings.max_concurrent_jobs, _settings.job_timeout_s)
    yield
    log.info("Server stopped")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Coverage Plot API",
    description="Cell-analytics portal automation: coverage map screenshots per address",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Job-Id"],
)

# status code per fatal error kind on the blocking endpoint
_STATUS_BY_KIND = {
    AuthenticationFailed.kind: 401,
    JobTimeout.kind: 504,
}


def _validate(payload: AutomationPayload) -> AutomationRequest:
    if not _orchestrator or not _registry:
        raise HTTPException(500, "Server not ready")
    try:
        return payload.to_request()
    except ValidationError as exc:
        raise HTTPException(400, str(exc))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/automate/stream")
async def automate_stream(payload: AutomationPayload, request: Request) -> StreamingResponse:
    """Run a job and stream its progress as ``data:`` frames."""
    job = _validate(payload)
    job_id = new_job_id()
    emitter = ProgressEmitter(job_id)
    _registry.track(job_id, emitter)
    log.info("[%s] Stream job accepted: %r", job_id, job.address)

    orchestrator = _orchestrator
    frames = sse_events(
        emitter,
        lambda: orchestrator.run(job, emitter, job_id),
        request.is_disconnected,
    )
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Job-Id": job_id},
    )


@app.post("/api/automate")
async def automate(payload: AutomationPayload) -> JSONResponse:
    """Run a job to completion and return the result in one response."""
    job = _validate(payload)
    job_id = new_job_id()
    emitter = ProgressEmitter(job_id)
    _registry.track(job_id, emitter)

    try:
        result = await _orchestrator.run(job, emitter, job_id)
    except HTTPException:
        raise
    except Exception as exc:
        log.error("Automation error: %s", exc, exc_info=True)
        raise HTTPException(500, str(exc))

    body = {"jobId": job_id, **result.to_wire()}
    if result.success:
        return JSONResponse(body)
    return JSONResponse(body, status_code=_STATUS_BY_KIND.get(result.error_kind, 500))


@app.get("/api/automate/status/{job_id}")
async def job_status(job_id: str) -> dict:
    if not _registry:
        raise HTTPException(500, "Server not ready")
    status = _registry.get(job_id)
    if status is None:
        raise HTTPException(404, f"Unknown job: {job_id}")
    return status.to_dict()


@app.get("/api/queue")
async def job_queue() -> dict:
    """Jobs holding a browser slot and the ones waiting for it, in order."""
    if not _orchestrator or not _registry:
        raise HTTPException(500, "Server not ready")

    def describe(job_id: str) -> dict:
        status = _registry.get(job_id)
        return status.to_dict() if status else {"job_id": job_id}

    snapshot = _orchestrator.queue_snapshot()
    return {
        "active": [describe(job_id) for job_id in snapshot["active"]],
        "waiting": [
            {**describe(job_id), "position": position}
            for position, job_id in enumerate(snapshot["waiting"], 1)
        ],
        "max_concurrent_jobs": _orchestrator.settings.max_concurrent_jobs,
    }


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "active_jobs": _orchestrator.active_jobs if _orchestrator else 0,
        "headless": _settings.headless if _settings else None,
    }
