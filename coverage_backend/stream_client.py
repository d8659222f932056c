"""Client side of the progress stream.

Reads ``data: <json>`` lines from a streaming HTTP response, forwards progress
frames to a callback and turns the terminal frame into a ``JobResult``.
Failed jobs raise as soon as the error frame arrives; partial results are
returned and logged as a warning.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterable, Callable

import httpx

from coverage_backend.errors import (
    AuthenticationFailed,
    AutomationError,
    CaptureFailed,
    JobTimeout,
    ResourceError,
    StageFailed,
    TargetNotFound,
    TransportError,
    ValidationError,
)
from coverage_backend.models import JobOutcome, JobResult, ProgressEvent, Screenshot, ViewMode

log = logging.getLogger("stream")

ProgressCallback = Callable[[ProgressEvent], None]

_ERRORS_BY_KIND: dict[str, type[AutomationError]] = {
    cls.kind: cls
    for cls in (AuthenticationFailed, CaptureFailed, JobTimeout, ResourceError, ValidationError)
}
# these need constructor arguments the wire does not carry
_PLAIN_KINDS = {StageFailed.kind, TargetNotFound.kind}

# longest tag first: OUTDOOR_INDOOR must win over OUTDOOR
_TAGS = sorted(ViewMode, key=lambda m: len(m.tag), reverse=True)


def parse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data:`` line; blank lines and comments return None."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    body = line[len("data:"):].strip()
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise TransportError(f"Malformed frame: {body[:80]!r}") from exc


def view_mode_from_filename(filename: str) -> ViewMode | None:
    for mode in _TAGS:
        if filename.startswith(f"ookla_{mode.tag}_"):
            return mode
    return None


def decode_screenshot(item: dict[str, str]) -> Screenshot:
    filename = item["filename"]
    return Screenshot(
        filename=filename,
        data=base64.b64decode(item["buffer"]),
        view_mode=view_mode_from_filename(filename),
        fallback="_fallback_" in filename,
    )


def result_from_frame(frame: dict[str, Any], job_id: str = "") -> JobResult:
    screenshots = [decode_screenshot(s) for s in frame.get("screenshots") or []]
    if not frame.get("success"):
        outcome = JobOutcome.FAILED
    elif frame.get("partial"):
        outcome = JobOutcome.PARTIAL
    else:
        outcome = JobOutcome.SUCCESS
    return JobResult(
        job_id=job_id,
        outcome=outcome,
        screenshots=screenshots,
        requested=frame.get("requested", len(screenshots)),
        warnings=list(frame.get("warnings") or []),
        error=frame.get("error"),
        error_kind=frame.get("errorKind"),
    )


def error_for(result: JobResult) -> AutomationError:
    message = result.error or "Automation failed"
    cls = _ERRORS_BY_KIND.get(result.error_kind or "")
    if cls is not None:
        return cls(message)
    err = AutomationError(message)
    if result.error_kind in _PLAIN_KINDS:
        err.kind = result.error_kind
    return err


class StreamConsumer:
    """Incremental frame consumer; feed it lines until it returns a result."""

    def __init__(self, on_progress: ProgressCallback | None = None, job_id: str = "") -> None:
        self.on_progress = on_progress
        self.job_id = job_id

    def feed(self, line: str) -> JobResult | None:
        frame = parse_line(line)
        if frame is None:
            return None

        if frame.get("final"):
            result = result_from_frame(frame, self.job_id)
            if not result.success:
                raise error_for(result)
            if result.partial:
                log.warning("[%s] Partial result: %d of %d screenshots (%s)", self.job_id,
                            len(result.screenshots), result.requested, "; ".join(result.warnings))
            return result

        event = ProgressEvent(
            progress=int(frame.get("progress", 0)),
            step=str(frame.get("step", "")),
            status=str(frame.get("status", "running")),
            error_kind=frame.get("errorKind"),
        )
        if self.on_progress is not None:
            self.on_progress(event)
        if event.status == "error":
            # an error frame is a fatal abort; stop reading here
            raise error_for(JobResult(
                job_id=self.job_id,
                outcome=JobOutcome.FAILED,
                error=event.step or None,
                error_kind=event.error_kind,
            ))
        return None


async def consume_lines(
    lines: AsyncIterable[str],
    on_progress: ProgressCallback | None = None,
    job_id: str = "",
) -> JobResult:
    """Consume a line stream up to its terminal frame or first error frame.

    Raises:
        AutomationError: the job failed (subclass chosen from the error kind).
        TransportError: the stream ended without a terminal frame.
    """
    consumer = StreamConsumer(on_progress, job_id)
    async for line in lines:
        result = consumer.feed(line)
        if result is not None:
            return result
    raise TransportError("Stream ended before the final frame")


async def stream_job(
    client: httpx.AsyncClient,
    base_url: str,
    payload: dict[str, Any],
    on_progress: ProgressCallback | None = None,
) -> JobResult:
    """POST a job to a running service and follow its progress stream."""
    url = base_url.rstrip("/") + "/api/automate/stream"
    try:
        async with client.stream("POST", url, json=payload,
                                 timeout=httpx.Timeout(30.0, read=None)) as resp:
            if resp.status_code >= 400:
                body = (await resp.aread()).decode("utf-8", "replace")
                try:
                    detail = json.loads(body).get("detail", body)
                except (json.JSONDecodeError, AttributeError):
                    detail = body
                if resp.status_code in (400, 422):
                    raise ValidationError(str(detail))
                raise TransportError(f"HTTP {resp.status_code}: {detail}")
            job_id = resp.headers.get("X-Job-Id", "")
            log.info("Job %s accepted by %s", job_id or "?", base_url)
            return await consume_lines(resp.aiter_lines(), on_progress, job_id)
    except httpx.HTTPError as exc:
        raise TransportError(f"Stream request failed: {exc}") from exc
