"""Capture coverage maps for one address from the command line.

Runs the job in-process (launching a local browser) or, with --server,
against a running API and follows its progress stream.

Usage:
    python run_plot.py "123 Main St, Springfield" --carrier AT&T --view Indoor
    python run_plot.py "123 Main St" -c Verizon -v Indoor -v Outdoor --server http://localhost:8000
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx
import pydantic

from coverage_backend.config import load_settings
from coverage_backend.errors import AutomationError
from coverage_backend.models import AutomationPayload, JobResult, ProgressEvent
from coverage_backend.orchestrator import JobOrchestrator
from coverage_backend.progress import Event, ProgressEmitter
from coverage_backend.stream_client import stream_job

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)
log = logging.getLogger("plot")


def _print_progress(event: Event) -> None:
    if isinstance(event, ProgressEvent):
        print(f"  [{event.progress:3d}%] {event.step}", flush=True)


def save_screenshots(result: JobResult, out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for shot in result.screenshots:
        path = out_dir / shot.filename
        path.write_bytes(shot.data)
        paths.append(path)
        log.info("Saved: %s (%d bytes)", path, len(shot.data))
    return paths


async def run_local(payload: AutomationPayload) -> JobResult:
    settings = load_settings()
    emitter = ProgressEmitter()
    emitter.subscribe(_print_progress)
    result = await JobOrchestrator(settings).run(payload.to_request(), emitter)
    if not result.success:
        raise AutomationError(result.error or "Automation failed")
    return result


async def run_remote(payload: AutomationPayload, server: str) -> JobResult:
    async with httpx.AsyncClient() as client:
        return await stream_job(
            client,
            server,
            payload.model_dump(by_alias=True, mode="json"),
            on_progress=_print_progress,
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capture coverage maps for an address")
    parser.add_argument("address", help="street address to search in the portal")
    parser.add_argument("-c", "--carrier", action="append", default=[],
                        help="AT&T, Verizon or T-Mobile (repeatable)")
    parser.add_argument("-v", "--view", action="append", default=[],
                        help="Indoor, Outdoor or 'Indoor & Outdoor' (repeatable)")
    parser.add_argument("-o", "--out", default="screenshots", help="output directory")
    parser.add_argument("--server", help="API base URL; runs in-process when omitted")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        payload = AutomationPayload(address=args.address, carriers=args.carrier, coverageTypes=args.view)
    except pydantic.ValidationError as exc:
        log.error("Invalid arguments: %s", exc)
        return 2

    try:
        if args.server:
            result = await run_remote(payload, args.server)
        else:
            result = await run_local(payload)
    except AutomationError as exc:
        log.error("Failed (%s): %s", exc.kind, exc)
        return 1

    save_screenshots(result, Path(args.out))
    for warning in result.warnings:
        log.warning("  %s", warning)
    log.info("Done: %s, %d of %d screenshots", result.outcome.value,
             len(result.screenshots), result.requested)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
