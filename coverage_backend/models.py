"""Job input, progress events and results."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coverage_backend.errors import ValidationError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Carrier(str, Enum):
    ATT = "AT&T"
    VERIZON = "Verizon"
    TMOBILE = "T-Mobile"

    @property
    def portal_label(self) -> str:
        """Label text of the carrier checkbox in the portal's provider list."""
        return _CARRIER_LABELS[self]


_CARRIER_LABELS = {
    Carrier.ATT: "AT&T US",
    Carrier.VERIZON: "Verizon",
    Carrier.TMOBILE: "T-Mobile US",
}

_CARRIER_ALIASES = {
    "at&t": Carrier.ATT, "at&t us": Carrier.ATT, "att": Carrier.ATT,
    "verizon": Carrier.VERIZON,
    "t-mobile": Carrier.TMOBILE, "t-mobile us": Carrier.TMOBILE, "tmobile": Carrier.TMOBILE,
}


class ViewMode(str, Enum):
    INDOOR = "Indoor"
    OUTDOOR = "Outdoor"
    INDOOR_OUTDOOR = "Indoor & Outdoor"

    @property
    def tag(self) -> str:
        """Filename tag identifying the mode of a screenshot."""
        return _VIEW_TAGS[self]

    @property
    def target(self) -> str:
        """Locator-table key of this mode's dropdown option."""
        return _VIEW_TARGETS[self]


_VIEW_TAGS = {
    ViewMode.INDOOR: "INDOOR",
    ViewMode.OUTDOOR: "OUTDOOR",
    ViewMode.INDOOR_OUTDOOR: "OUTDOOR_INDOOR",
}

_VIEW_TARGETS = {
    ViewMode.INDOOR: "view_option_indoor",
    ViewMode.OUTDOOR: "view_option_outdoor",
    ViewMode.INDOOR_OUTDOOR: "view_option_indoor_outdoor",
}

_VIEW_ALIASES = {
    "indoor": ViewMode.INDOOR,
    "outdoor": ViewMode.OUTDOOR,
    "indoor & outdoor": ViewMode.INDOOR_OUTDOOR,
    "outdoor & indoor": ViewMode.INDOOR_OUTDOOR,
    "indoor_outdoor": ViewMode.INDOOR_OUTDOOR,
}

# Capture order is fixed regardless of the order the client sent
VIEW_ORDER = (ViewMode.INDOOR, ViewMode.OUTDOOR, ViewMode.INDOOR_OUTDOOR)


def _dedupe(items: list) -> tuple:
    seen: list = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class AutomationPayload(BaseModel):
    """JSON body accepted by the automation endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = ""
    carriers: list[Carrier] = Field(default_factory=list)
    coverage_types: list[ViewMode] = Field(default_factory=list, alias="coverageTypes")

    @field_validator("address", mode="before")
    @classmethod
    def _address_to_str(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("carriers", mode="before")
    @classmethod
    def _carrier_aliases(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [_CARRIER_ALIASES.get(v.strip().lower(), v) if isinstance(v, str) else v for v in value]
        return value

    @field_validator("coverage_types", mode="before")
    @classmethod
    def _view_aliases(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [_VIEW_ALIASES.get(v.strip().lower(), v) if isinstance(v, str) else v for v in value]
        return value

    def to_request(self) -> AutomationRequest:
        return AutomationRequest.create(self.address, self.carriers, self.coverage_types)


@dataclass(frozen=True)
class AutomationRequest:
    address: str
    carriers: tuple[Carrier, ...] = ()
    view_modes: tuple[ViewMode, ...] = ()

    @classmethod
    def create(
        cls,
        address: str | None,
        carriers: list[Carrier] | tuple[Carrier, ...] = (),
        view_modes: list[ViewMode] | tuple[ViewMode, ...] = (),
    ) -> AutomationRequest:
        """Validate and normalise a job request.

        Raises:
            ValidationError: if the address is missing or whitespace-only.
        """
        address = (address or "").strip()
        if not address:
            raise ValidationError("Address is required")
        modes = _dedupe(list(view_modes))
        return cls(
            address=address,
            carriers=_dedupe(list(carriers)),
            view_modes=tuple(m for m in VIEW_ORDER if m in modes),
        )


# ---------------------------------------------------------------------------
# Artifacts and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Screenshot:
    filename: str
    data: bytes
    view_mode: ViewMode
    fallback: bool = False

    def to_wire(self) -> dict[str, str]:
        return {
            "filename": self.filename,
            "buffer": base64.b64encode(self.data).decode("ascii"),
        }


class JobOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class JobResult:
    job_id: str
    outcome: JobOutcome
    screenshots: list[Screenshot] = field(default_factory=list)
    requested: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is not JobOutcome.FAILED

    @property
    def partial(self) -> bool:
        return self.outcome is JobOutcome.PARTIAL

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "partial": self.partial,
            "requested": self.requested,
            "screenshots": [s.to_wire() for s in self.screenshots],
            "warnings": list(self.warnings),
        }
        if self.error:
            payload["error"] = self.error
        if self.error_kind:
            payload["errorKind"] = self.error_kind
        return payload


def classify_outcome(requested: int, captured: int) -> JobOutcome:
    """Map capture counts to an outcome once the fatal stages have passed."""
    if requested == 0 or captured >= requested:
        return JobOutcome.SUCCESS
    if captured > 0:
        return JobOutcome.PARTIAL
    return JobOutcome.FAILED


# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgressEvent:
    progress: int
    step: str
    status: str = "running"
    error_kind: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload = {"progress": self.progress, "step": self.step, "status": self.status}
        if self.error_kind:
            payload["errorKind"] = self.error_kind
        return payload


@dataclass(frozen=True)
class TerminalEvent:
    result: JobResult

    def to_wire(self) -> dict[str, Any]:
        return {"final": True, **self.result.to_wire()}
