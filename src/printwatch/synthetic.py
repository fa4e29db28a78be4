"""Synthetic printers for exercising the monitor without hardware.

When enabled, a fabricated printer is added every ``spawn_interval``
seconds and removed once ``lifetime`` seconds have passed.  On every poll
tick each synthetic printer advances its dummy job by a fixed step,
wiggles its temperatures a little and walks printing -> post_print ->
idle.  Expiry is independent of job completion.

Real printers are never read for anything but cosmetic cloning, and never
written.
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from collections.abc import Callable

from printwatch.models import JobState, NozzleInfo, PrinterRecord, PrinterStatus, PrintJob
from printwatch.registry import FleetRegistry

logger = logging.getLogger(__name__)

SYNTHETIC_IP = "192.168.180.134"
SYNTHETIC_ID_PREFIX = "sim-"

# Percent added per poll tick.
PROGRESS_STEP = 3
# Nominal length of the dummy job.
DUMMY_JOB_SECONDS = 25 * 60.0


class SyntheticDeviceGenerator:
    """Spawns, advances and expires synthetic printer records.

    Args:
        registry: Fleet registry to inject records into.
        spawn_interval: Seconds between spawns (used by :meth:`run_forever`).
        lifetime: Seconds a synthetic record lives.
        tick_seconds: Elapsed job time credited per :meth:`advance` call;
            normally the poll interval.
        stop_event: Shared shutdown signal.
        clock: Wall clock, injectable for tests.
        rng: Random source, injectable for tests.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        *,
        spawn_interval: float = 90.0,
        lifetime: float = 180.0,
        tick_seconds: float = 10.0,
        stop_event: threading.Event | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self._spawn_interval = spawn_interval
        self._lifetime = lifetime
        self._tick_seconds = tick_seconds
        self._stop = stop_event or threading.Event()
        self._clock = clock
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    def spawn(self) -> PrinterRecord:
        """Create one synthetic printer and add it to the registry.

        Cosmetic attributes are cloned from the first real printer, if
        there is one.
        """
        real = next((r for r in self._registry.snapshot() if not r.is_synthetic), None)
        suffix = self._rng.randint(100, 999)
        now = self._clock()
        base_bed = real.bed_temperature if real and real.bed_temperature is not None else 60.0

        record = PrinterRecord(
            id=f"{SYNTHETIC_ID_PREFIX}{uuid.uuid4().hex}",
            name=f"{real.name} (SIM {suffix})" if real else f"Ultimaker SIM {suffix}",
            ip_address=SYNTHETIC_IP,
            model=real.model if real else "Ultimaker-SIM",
            status=PrinterStatus.PRINTING,
            bed_temperature=base_bed + self._rng.randint(-2, 2),
            nozzles=[
                NozzleInfo(index=0, temperature=205.0 + self._rng.randint(-3, 3), target_temperature=210.0),
                NozzleInfo(index=1, temperature=0.0, target_temperature=0.0),
            ],
            current_job=PrintJob(
                name=f"Dummy Job {suffix}",
                progress_percent=0,
                time_elapsed=0.0,
                time_remaining=DUMMY_JOB_SECONDS,
                state=JobState.PRINTING,
            ),
            last_seen=now,
            is_synthetic=True,
            expires_at=now + self._lifetime,
        )
        self._registry.upsert(record)
        logger.info("Added synthetic printer %s (%s) until %.0f", record.name, record.id, record.expires_at)
        return record

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def prune_expired(self) -> list[str]:
        """Remove every synthetic record whose expiry has passed."""
        now = self._clock()
        removed: list[str] = []
        for record in self._registry.snapshot():
            if not record.is_synthetic or record.expires_at is None:
                continue
            if record.expires_at <= now and self._registry.remove(record.id):
                removed.append(record.id)
                logger.info("Removed synthetic printer %s (%s)", record.name, record.id)
        return removed

    def advance(self) -> list[str]:
        """Prune expired records, then step every remaining one.

        Returns the ids that were pruned.
        """
        removed = self.prune_expired()
        now = self._clock()
        for record in self._registry.snapshot():
            if record.is_synthetic:
                self._registry.update(record.id, lambda r: self._step(r, now))
        return removed

    def _wiggle(self, value: float | None, default: float) -> float:
        return (value if value is not None else default) + self._rng.randint(-1, 1)

    def _step(self, record: PrinterRecord, now: float) -> None:
        if not record.is_synthetic:
            return
        record.last_seen = now
        job = record.current_job

        if job is None:
            record.status = PrinterStatus.IDLE
            return
        if job.state == JobState.POST_PRINT:
            # One tick of post-print, then the bed is free.
            record.status = PrinterStatus.IDLE
            record.current_job = None
            return

        progress = min(job.progress_percent + PROGRESS_STEP, 100)
        job.progress_percent = progress
        job.time_elapsed = (job.time_elapsed or 0.0) + self._tick_seconds
        job.time_remaining = DUMMY_JOB_SECONDS * (100 - progress) / 100.0

        if record.nozzles:
            record.nozzles[0].temperature = self._wiggle(record.nozzles[0].temperature, 205.0)
        record.bed_temperature = self._wiggle(record.bed_temperature, 60.0)

        record.status = PrinterStatus.PRINTING
        job.state = JobState.POST_PRINT if progress >= 100 else JobState.PRINTING

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Spawn one printer every ``spawn_interval`` until stopped."""
        logger.info(
            "Synthetic generator started (spawn every %.0fs, lifetime %.0fs)",
            self._spawn_interval,
            self._lifetime,
        )
        while not self._stop.wait(self._spawn_interval):
            try:
                self.spawn()
            except Exception:
                logger.exception("Synthetic generator failed to add a printer")
        logger.info("Synthetic generator stopped")
