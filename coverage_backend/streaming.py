"""Server side of the progress stream: ``data: <json>`` frames.

The job runs as a task owned by the response generator. When the client goes
away the generator is closed (or notices the disconnect itself) and cancels
the task, which unwinds the stages and releases the browser.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from coverage_backend.models import JobOutcome, JobResult, TerminalEvent
from coverage_backend.progress import ProgressEmitter

log = logging.getLogger("streaming")

KEEPALIVE = ": keep-alive\n\n"
KEEPALIVE_S = 15.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _orphaned_result(emitter: ProgressEmitter, task: asyncio.Task) -> JobResult:
    """Terminal result for a job task that ended without emitting one."""
    if task.cancelled():
        error = "Job cancelled"
    else:
        exc = task.exception()
        error = f"Job ended unexpectedly: {exc}" if exc else "Job ended without a result"
    return JobResult(job_id=emitter.job_id, outcome=JobOutcome.FAILED, error=error)


async def sse_events(
    emitter: ProgressEmitter,
    run_job: Callable[[], Awaitable[Any]],
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    keepalive_s: float = KEEPALIVE_S,
) -> AsyncIterator[str]:
    """Start the job and yield its events as frames up to the terminal one."""
    task = asyncio.create_task(run_job())
    try:
        while True:
            try:
                event = await emitter.next_event(timeout=keepalive_s)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    log.info("[%s] Client disconnected", emitter.job_id)
                    return
                if task.done() and not emitter.closed:
                    emitter.fail(_orphaned_result(emitter, task))
                    continue
                yield KEEPALIVE
                continue

            terminal = isinstance(event, TerminalEvent)
            # checked per frame so a busy stream still notices a closed client
            if not terminal and is_disconnected is not None and await is_disconnected():
                log.info("[%s] Client disconnected", emitter.job_id)
                return
            yield encode_frame(event.to_wire())
            if terminal:
                return
    finally:
        if not task.done() and not emitter.closed:
            log.info("[%s] Stream closed before the job finished, cancelling", emitter.job_id)
            task.cancel()
