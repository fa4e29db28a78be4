"""Change notifier -- turns consecutive registry snapshots into events.

After every poll tick :meth:`ChangeNotifier.refresh` compares the
registry with the snapshot it last published and emits:

- ``printer.added``   -- full record, for ids new since last time
- ``printer.changed`` -- full record, for ids whose live fields differ
- ``printer.removed`` -- ``{"id": ...}``, for ids that disappeared

The very first refresh only seeds the baseline; subscribers that join
late call :meth:`ChangeNotifier.snapshot` (or have a ``fleet.snapshot``
event published for them) and then apply the diffs that follow.

Only live fields count as a change: status, bed temperature, nozzle
count and per-nozzle temperatures, job progress and job state.  Name or
address edits from discovery ride along with the next live change.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from printwatch.events import EventBus, EventType
from printwatch.models import PrinterRecord
from printwatch.registry import FleetRegistry

logger = logging.getLogger(__name__)

_SOURCE = "notifier"


def has_changed(previous: PrinterRecord, current: PrinterRecord) -> bool:
    """Return ``True`` if any live field differs between two records."""
    if previous.status != current.status:
        return True
    if previous.bed_temperature != current.bed_temperature:
        return True

    if len(previous.nozzles) != len(current.nozzles):
        return True
    for a, b in zip(previous.nozzles, current.nozzles):
        if a.temperature != b.temperature or a.target_temperature != b.target_temperature:
            return True

    prev_job, cur_job = previous.current_job, current.current_job
    prev_progress = prev_job.progress_percent if prev_job else -1
    cur_progress = cur_job.progress_percent if cur_job else -1
    if prev_progress != cur_progress:
        return True
    prev_state = prev_job.state if prev_job else None
    cur_state = cur_job.state if cur_job else None
    return prev_state != cur_state


@dataclass
class FleetDiff:
    """Result of one refresh."""

    added: list[PrinterRecord] = field(default_factory=list)
    changed: list[PrinterRecord] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    seeded: bool = False

    @property
    def empty(self) -> bool:
        return not (self.added or self.changed or self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": [r.to_dict() for r in self.added],
            "changed": [r.to_dict() for r in self.changed],
            "removed": list(self.removed),
            "seeded": self.seeded,
        }


class ChangeNotifier:
    """Diffs registry snapshots and publishes one event per change.

    Args:
        registry: Fleet registry to read.
        bus: Event bus that receives the change events.
    """

    def __init__(self, registry: FleetRegistry, bus: EventBus) -> None:
        self._registry = registry
        self._bus = bus
        self._last: dict[str, PrinterRecord] = {}
        self._primed = False
        self._lock = threading.Lock()

    @property
    def primed(self) -> bool:
        return self._primed

    def reset(self) -> None:
        """Forget the published baseline; the next refresh only seeds."""
        with self._lock:
            self._last = {}
            self._primed = False

    def refresh(self) -> FleetDiff:
        """Compare the registry to the last published state and emit diffs."""
        current_list = self._registry.snapshot()
        current = {r.id.casefold(): r for r in current_list}

        with self._lock:
            if not self._primed:
                self._last = current
                self._primed = True
                logger.debug("Notifier seeded with %d printers", len(current))
                return FleetDiff(seeded=True)

            diff = FleetDiff()
            for key, record in current.items():
                previous = self._last.get(key)
                if previous is None:
                    diff.added.append(record)
                elif has_changed(previous, record):
                    diff.changed.append(record)
            diff.removed = [prev.id for key, prev in self._last.items() if key not in current]
            self._last = current

        # Publish outside the lock; handlers may call snapshot().
        for record in diff.added:
            self._bus.publish(EventType.PRINTER_ADDED, record.to_dict(), source=_SOURCE)
            logger.info("Printer added %s - %s", record.id, record.name)
        for record in diff.changed:
            self._bus.publish(EventType.PRINTER_CHANGED, record.to_dict(), source=_SOURCE)
            logger.info("Printer changed %s - %s", record.id, record.name)
        for printer_id in diff.removed:
            self._bus.publish(EventType.PRINTER_REMOVED, {"id": printer_id}, source=_SOURCE)
            logger.info("Printer removed %s", printer_id)
        return diff

    def snapshot(self) -> list[PrinterRecord]:
        """Return the last published fleet state.

        Before the first refresh this is the registry's current content.
        """
        with self._lock:
            if self._primed:
                return copy.deepcopy(list(self._last.values()))
        return self._registry.snapshot()

    def publish_snapshot(self) -> list[PrinterRecord]:
        """Publish a ``fleet.snapshot`` event for late-joining subscribers."""
        printers = self.snapshot()
        self._bus.publish(
            EventType.FLEET_SNAPSHOT,
            {"printers": [r.to_dict() for r in printers]},
            source=_SOURCE,
        )
        return printers
