"""Shared test data for the printwatch test suite.

Canned Ultimaker API payloads, record builders, a controllable clock and
an in-memory mDNS querier.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Callable, Iterable

from printwatch.models import JobState, NozzleInfo, PrinterRecord, PrinterStatus, PrintJob

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PRINTER_IP = "192.168.1.50"
PRINTER_GUID = "2a7f3c9e-5b1d-4e8a-9f06-0c3d8e1b4a72"

SYSTEM_RESPONSE: dict[str, Any] = {
    "guid": PRINTER_GUID,
    "name": "UM3-Lab",
    "variant": "Ultimaker 3",
    "firmware": "5.2.11",
}

PRINTER_IDLE_RESPONSE: dict[str, Any] = {
    "status": "idle",
    "bed": {"temperature": {"current": 24.5, "target": 0.0}},
    "heads": [
        {
            "extruders": [
                {"hotend": {"temperature": {"current": 25.1, "target": 0.0}}},
                {"hotend": {"temperature": {"current": 24.9, "target": 0.0}}},
            ]
        }
    ],
}

PRINTER_PRINTING_RESPONSE: dict[str, Any] = {
    "status": "printing",
    "bed": {"temperature": {"current": 60.0, "target": 60.0}},
    "heads": [
        {
            "extruders": [
                {"hotend": {"temperature": {"current": 210.2, "target": 210.0}}},
                {"hotend": {"temperature": {"current": 0.0, "target": 0.0}}},
            ]
        }
    ],
}

PRINT_JOB_RESPONSE: dict[str, Any] = {
    "name": "bracket_v2",
    "state": "printing",
    "progress": 0.42,
    "time_elapsed": 1260,
    "time_total": 3000,
}


def payload(data: dict[str, Any]) -> dict[str, Any]:
    """Return a private copy of a canned payload."""
    return copy.deepcopy(data)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def make_record(
    printer_id: str = "p1",
    *,
    name: str | None = None,
    ip_address: str = PRINTER_IP,
    status: PrinterStatus = PrinterStatus.IDLE,
    bed_temperature: float | None = 24.5,
    nozzle_temps: Iterable[float] = (25.0, 25.0),
    job: PrintJob | None = None,
    last_seen: float = 1000.0,
    is_synthetic: bool = False,
    expires_at: float | None = None,
) -> PrinterRecord:
    return PrinterRecord(
        id=printer_id,
        name=name or f"Printer {printer_id}",
        ip_address=ip_address,
        model="Ultimaker S5",
        status=status,
        bed_temperature=bed_temperature,
        nozzles=[
            NozzleInfo(index=i, temperature=t, target_temperature=0.0) for i, t in enumerate(nozzle_temps)
        ],
        current_job=job,
        last_seen=last_seen,
        is_synthetic=is_synthetic,
        expires_at=expires_at,
    )


def make_job(progress: int = 10, state: JobState = JobState.PRINTING) -> PrintJob:
    return PrintJob(
        name="bracket_v2",
        progress_percent=progress,
        time_elapsed=100.0,
        time_remaining=900.0,
        state=state,
    )


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# mDNS
# ---------------------------------------------------------------------------


class FakeQuerier:
    """In-memory stand-in for the mDNS transport.

    ``responses`` are record batches delivered to the engine's callback
    each time queries are sent, as if printers had answered.
    """

    def __init__(self, on_records: Callable[[list[Any]], None], responses: list[list[Any]] | None = None) -> None:
        self.on_records = on_records
        self.responses = responses or []
        self.sent: list[tuple[tuple[str, int], ...]] = []
        self.closed = False
        self.fail_with: Exception | None = None
        self.sent_event = threading.Event()

    def send_queries(self, queries: Iterable[tuple[str, int]]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(tuple(queries))
        self.sent_event.set()
        for batch in self.responses:
            self.on_records(list(batch))

    def close(self) -> None:
        self.closed = True


class FakeQuerierFactory:
    """Records every querier it builds so tests can inspect them."""

    def __init__(self, responses: list[list[Any]] | None = None) -> None:
        self.responses = responses or []
        self.instances: list[FakeQuerier] = []

    def __call__(self, on_records: Callable[[list[Any]], None]) -> FakeQuerier:
        querier = FakeQuerier(on_records, self.responses)
        self.instances.append(querier)
        return querier

    @property
    def last(self) -> FakeQuerier:
        return self.instances[-1]
