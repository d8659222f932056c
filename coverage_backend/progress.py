"""Progress event emitter: Idle -> Running -> Terminal.

Progress values are clamped so they never decrease and stay in [0, 100].
Exactly one terminal event is produced; anything emitted after it raises
``EmitterClosed``. Events are queued for the stream transport and fanned out
to synchronous listeners (status registry, CLI printer).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Union

from coverage_backend.errors import EmitterClosed
from coverage_backend.models import JobResult, ProgressEvent, TerminalEvent

log = logging.getLogger("progress")

Event = Union[ProgressEvent, TerminalEvent]
Listener = Callable[[Event], None]


class EmitterState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    TERMINAL = "terminal"


class ProgressEmitter:
    def __init__(self, job_id: str = "") -> None:
        self.job_id = job_id
        self.state = EmitterState.IDLE
        self.history: list[Event] = []
        self._last = 0
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._listeners: list[Listener] = []

    @property
    def last_progress(self) -> int:
        return self._last

    @property
    def closed(self) -> bool:
        return self.state is EmitterState.TERMINAL

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _push(self, event: Event) -> None:
        self.history.append(event)
        self._queue.put_nowait(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as exc:
                log.warning("[%s] progress listener failed: %s", self.job_id, exc)

    def _guard(self) -> None:
        if self.state is EmitterState.TERMINAL:
            raise EmitterClosed(f"job {self.job_id or '?'} already emitted its terminal event")

    def start(self, step: str = "Starting...") -> None:
        self._guard()
        if self.state is EmitterState.RUNNING:
            return
        self.state = EmitterState.RUNNING
        self._push(ProgressEvent(0, step))

    def update(self, progress: int | float, step: str) -> ProgressEvent:
        self._guard()
        if self.state is EmitterState.IDLE:
            self.start()
        value = min(max(int(progress), self._last, 0), 100)
        self._last = value
        event = ProgressEvent(value, step)
        self._push(event)
        log.info("[%s] %3d%%  %s", self.job_id, value, step)
        return event

    def finish(self, result: JobResult) -> None:
        """Emit the terminal event for a job that reached the end of its stages."""
        self._guard()
        self.state = EmitterState.TERMINAL
        self._push(TerminalEvent(result))

    def fail(self, result: JobResult) -> None:
        """Emit an error frame followed by the terminal event for a fatal abort."""
        self._guard()
        self._push(ProgressEvent(self._last, result.error or "Automation failed",
                                 status="error", error_kind=result.error_kind))
        self.state = EmitterState.TERMINAL
        self._push(TerminalEvent(result))

    async def next_event(self, timeout: float | None = None) -> Event:
        return await asyncio.wait_for(self._queue.get(), timeout)
