"""Status poller -- refreshes live status for every known printer.

Every tick the poller snapshots the registry's member list and runs one
independent pipeline per real (non-synthetic) printer on a thread pool:

1. ``GET /api/v1/printer``
2. ``GET /api/v1/print_job`` -- only when the printer reports printing

A pipeline that completes writes status, bed temperature, the full nozzle
list, ``last_seen`` and the job back in one atomic registry update.  A
pipeline that fails anywhere marks the printer offline and clears its job
but leaves the last known temperatures in place.  One printer's failure
never affects another's.

Deletion policy: the poller counts consecutive failures per printer.
With ``prune_after_failures > 0`` a printer that fails that many ticks in
a row is removed from the registry.  ``0`` keeps silent printers forever
(marked offline).
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from printwatch.client import PrinterStatusReport, PrintJobReport, UltimakerClient
from printwatch.errors import StatusClientError
from printwatch.models import PrinterRecord, PrinterStatus
from printwatch.registry import FleetRegistry

logger = logging.getLogger(__name__)

# Fleets are tens of devices; every member gets its own worker up to this.
_MAX_POLL_WORKERS = 64


class _Stopped(Exception):
    """Shutdown observed between fetches; not a failure."""


@dataclass
class PollResult:
    """Outcome of one :meth:`StatusPoller.poll_once` call."""

    polled: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    duration: float = 0.0


class StatusPoller:
    """Concurrent per-printer status refresher.

    Args:
        registry: Fleet registry (read for members, written with results).
        client: Status client.
        stop_event: Shared shutdown signal.
        prune_after_failures: Consecutive failed ticks before a printer is
            removed; ``0`` disables pruning.
        clock: Wall clock used for ``last_seen``.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        client: UltimakerClient,
        *,
        stop_event: threading.Event | None = None,
        prune_after_failures: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._client = client
        self._stop = stop_event or threading.Event()
        self._prune_after = prune_after_failures
        self._clock = clock
        self._failures: dict[str, int] = {}
        self._failures_lock = threading.Lock()

    def failure_count(self, printer_id: str) -> int:
        with self._failures_lock:
            return self._failures.get(printer_id.casefold(), 0)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def poll_once(self) -> PollResult:
        """Poll every real printer once, concurrently.  Blocks until done.

        An empty registry is a no-op.  Printers added during the tick are
        picked up on the next one; printers removed during the tick are
        skipped when their result is written back.
        """
        started = time.monotonic()
        result = PollResult()
        members = [r for r in self._registry.snapshot() if not r.is_synthetic]
        self._forget_departed({r.id.casefold() for r in members})
        if not members or self._stop.is_set():
            return result

        workers = min(len(members), _MAX_POLL_WORKERS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="printwatch-poll") as pool:
            outcomes = list(pool.map(self._poll_member, members))

        for member, outcome in zip(members, outcomes):
            if outcome is None:
                continue
            result.polled.append(member.id)
            if outcome:
                result.succeeded.append(member.id)
            else:
                result.failed.append(member.id)
                if self._should_prune(member.id):
                    if self._registry.remove(member.id):
                        result.pruned.append(member.id)
                        logger.warning(
                            "Pruned printer %s (%s) after %d consecutive failed polls",
                            member.name,
                            member.id,
                            self._prune_after,
                        )
                    self._reset_failures(member.id)

        result.duration = time.monotonic() - started
        logger.debug(
            "Poll tick: %d ok, %d failed in %.2fs",
            len(result.succeeded),
            len(result.failed),
            result.duration,
        )
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _check_stop(self) -> None:
        if self._stop.is_set():
            raise _Stopped

    def _fetch(self, member: PrinterRecord) -> tuple[PrinterStatusReport, PrintJobReport | None]:
        self._check_stop()
        report = self._client.fetch_status(member.ip_address)
        job = None
        if report.status == PrinterStatus.PRINTING:
            self._check_stop()
            job = self._client.fetch_job(member.ip_address)
        return report, job

    def _poll_member(self, member: PrinterRecord) -> bool | None:
        """Run one printer's pipeline.

        Returns ``True`` on success, ``False`` on failure and ``None``
        when shutdown interrupted it before any result was known.
        """
        try:
            report, job = self._fetch(member)
        except _Stopped:
            return None
        except StatusClientError as exc:
            logger.warning("Error updating status for printer %s (%s): %s", member.name, member.id, exc)
            self._mark_offline(member.id)
            return False
        except Exception:
            logger.exception("Unexpected error updating status for printer %s", member.id)
            self._mark_offline(member.id)
            return False

        now = self._clock()

        def _apply(record: PrinterRecord) -> None:
            record.status = report.status
            record.bed_temperature = report.bed_temperature
            record.nozzles = copy.deepcopy(report.nozzles)
            record.last_seen = now
            record.current_job = job.to_job() if job is not None else None

        self._registry.update(member.id, _apply)
        self._reset_failures(member.id)
        return True

    def _mark_offline(self, printer_id: str) -> None:
        def _apply(record: PrinterRecord) -> None:
            record.status = PrinterStatus.OFFLINE
            record.current_job = None

        self._registry.update(printer_id, _apply)
        with self._failures_lock:
            key = printer_id.casefold()
            self._failures[key] = self._failures.get(key, 0) + 1

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def _should_prune(self, printer_id: str) -> bool:
        return self._prune_after > 0 and self.failure_count(printer_id) >= self._prune_after

    def _reset_failures(self, printer_id: str) -> None:
        with self._failures_lock:
            self._failures.pop(printer_id.casefold(), None)

    def _forget_departed(self, present: set[str]) -> None:
        with self._failures_lock:
            for key in [k for k in self._failures if k not in present]:
                del self._failures[key]

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self, interval: float, after_tick: Callable[[], None] | None = None) -> None:
        """Tick every *interval* seconds until the stop event is set.

        *after_tick* runs right after each completed poll; the fleet
        monitor uses it to advance synthetic printers and refresh the
        change notifier on the same cadence.
        """
        logger.info("Status poller started (every %.1fs)", interval)
        while not self._stop.wait(interval):
            try:
                self.poll_once()
                if after_tick is not None and not self._stop.is_set():
                    after_tick()
            except Exception:
                logger.exception("Status poll tick failed")
        logger.info("Status poller stopped")
