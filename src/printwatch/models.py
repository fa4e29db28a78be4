"""Fleet data model: printer records, nozzles and active print jobs.

Every record type is a plain dataclass with a ``to_dict()`` that returns a
JSON-serialisable dictionary (enums converted to their string values) so
the REST layer, the CLI and event payloads can pass records straight to
``json.dumps``.
"""

from __future__ import annotations

import enum
import time
from dataclasses import asdict, dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PrinterStatus(enum.Enum):
    """High-level operational state of a printer."""

    IDLE = "idle"
    PRINTING = "printing"
    PAUSED = "paused"
    ERROR = "error"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"


class JobState(enum.Enum):
    """Fine-grained state of the printer's active job."""

    PREPARING = "preparing"
    PRINTING = "printing"
    PAUSING = "pausing"
    PAUSED = "paused"
    RESUMING = "resuming"
    POST_PRINT = "post_print"
    WAIT_CLEANUP = "wait_cleanup"
    NO_JOB = "no_job"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class NozzleInfo:
    """One hotend's temperatures, indexed by extruder position."""

    index: int
    temperature: float | None = None
    target_temperature: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PrintJob:
    """The job a printer is currently running.

    Times are in seconds.  ``progress_percent`` runs 0 -- 100.
    """

    name: str
    progress_percent: int = 0
    time_elapsed: float | None = None
    time_remaining: float | None = None
    state: JobState = JobState.NO_JOB

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class PrinterRecord:
    """One fleet member as currently known to the registry."""

    id: str
    name: str
    ip_address: str
    model: str = "Unknown"
    status: PrinterStatus = PrinterStatus.IDLE
    bed_temperature: float | None = None
    nozzles: list[NozzleInfo] = field(default_factory=list)
    current_job: PrintJob | None = None
    last_seen: float = field(default_factory=time.time)
    firmware: str | None = None
    is_synthetic: bool = False
    expires_at: float | None = None

    @property
    def is_printing(self) -> bool:
        return self.status == PrinterStatus.PRINTING

    def seconds_since_seen(self, now: float | None = None) -> float:
        """How long ago the printer last answered a poll."""
        return (time.time() if now is None else now) - self.last_seen

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary.

        :attr:`status` and the job state are converted to their string
        values; an absent job is ``None``.
        """
        return {
            "id": self.id,
            "name": self.name,
            "ip_address": self.ip_address,
            "model": self.model,
            "status": self.status.value,
            "bed_temperature": self.bed_temperature,
            "nozzles": [n.to_dict() for n in self.nozzles],
            "current_job": self.current_job.to_dict() if self.current_job else None,
            "last_seen": self.last_seen,
            "firmware": self.firmware,
            "is_synthetic": self.is_synthetic,
            "expires_at": self.expires_at,
        }
