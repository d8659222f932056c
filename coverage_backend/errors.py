"""Error taxonomy for portal automation jobs.

Every error carries a short ``kind`` string that is used on the wire and in
the job status registry.
"""

from __future__ import annotations


class AutomationError(Exception):
    kind = "automation_error"


class ValidationError(AutomationError):
    """Malformed job input. Raised before any browser is launched."""

    kind = "validation_error"


class AuthenticationFailed(AutomationError):
    kind = "authentication_failed"


class TargetNotFound(AutomationError):
    """Every locator configured for a logical UI target failed."""

    kind = "target_not_found"

    def __init__(self, target: str, attempts: list[str] | None = None) -> None:
        self.target = target
        self.attempts = attempts or []
        detail = "; ".join(self.attempts) if self.attempts else "no locators configured"
        super().__init__(f"Could not find '{target}' ({detail})")


class CaptureFailed(AutomationError):
    kind = "capture_failed"


class TransportError(AutomationError):
    kind = "transport_error"


class ResourceError(AutomationError):
    """Browser launch failure or crash."""

    kind = "resource_error"


class JobTimeout(AutomationError):
    kind = "job_timeout"


class StageFailed(AutomationError):
    """Unexpected exception inside a fatal stage."""

    kind = "stage_failed"

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")


class EmitterClosed(RuntimeError):
    """An event was emitted after the terminal event."""
