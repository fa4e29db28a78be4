"""Printer discovery -- find Ultimaker printers on the local network.

Each cycle walks a small state machine::

    idle -> querying -> listening -> confirming -> idle

1. *querying*: multicast PTR queries for the service types Ultimaker
   printers advertise, plus an A query for the default hostname.
2. *listening*: for a fixed window, collect ``(name, ip)`` candidates
   from every mDNS response the zeroconf listener sees.
3. *confirming*: call ``/api/v1/system`` on each candidate.  Only a
   well-formed answer puts the device into the registry.  Everything
   else is logged at debug and dropped.

Re-confirming a known printer refreshes its name, address, model and
firmware only; status, temperatures and job belong to the poller.

The zeroconf instance is kept open between cycles so unsolicited
announcements seen in between are confirmed on the next cycle.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from zeroconf import (
    DNSAddress,
    DNSOutgoing,
    DNSPointer,
    DNSQuestion,
    DNSService,
    RecordUpdate,
    RecordUpdateListener,
    Zeroconf,
)

from printwatch.client import UltimakerClient
from printwatch.errors import StatusClientError
from printwatch.models import PrinterRecord, PrinterStatus
from printwatch.registry import FleetRegistry

logger = logging.getLogger(__name__)

# DNS wire constants (RFC 1035).
_TYPE_A = 1
_TYPE_PTR = 12
_CLASS_IN = 1
_FLAGS_QR_QUERY = 0x0000

# (name, record type) pairs queried on every cycle.
DISCOVERY_QUERIES: tuple[tuple[str, int], ...] = (
    ("_printer._tcp.local.", _TYPE_PTR),
    ("_ultimaker._tcp.local.", _TYPE_PTR),
    ("_http._tcp.local.", _TYPE_PTR),
    ("ultimaker.local.", _TYPE_A),
)

# A response name must contain one of these to be worth confirming.
_CANDIDATE_MARKERS: tuple[str, ...] = ("ultimaker", "_printer._tcp")

_MAX_CONFIRM_WORKERS = 16

# Longest the between-cycles wait goes without looking at the stop event.
_STOP_CHECK_SECONDS = 0.25


class DiscoveryState(enum.Enum):
    IDLE = "idle"
    QUERYING = "querying"
    LISTENING = "listening"
    CONFIRMING = "confirming"


@dataclass(frozen=True)
class Candidate:
    """A name/address pair that looks like an Ultimaker printer."""

    name: str
    ip_address: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_candidate_name(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _CANDIDATE_MARKERS)


def _ipv4(record: DNSAddress) -> str | None:
    try:
        addr = ipaddress.ip_address(record.address)
    except ValueError:
        return None
    return str(addr) if addr.version == 4 else None


def extract_candidates(records: Iterable[Any]) -> list[Candidate]:
    """Turn one mDNS response's records into discovery candidates.

    A response carrying a PTR record and an address yields the PTR's
    instance name paired with the address (preferring the host named by a
    matching SRV record).  An address record with no PTR in the same
    response is judged by its own host name, which covers the direct
    ``ultimaker.local`` query.
    """
    addresses: dict[str, str] = {}
    pointers: list[DNSPointer] = []
    servers: dict[str, str] = {}

    for record in records:
        if isinstance(record, DNSAddress):
            ip = _ipv4(record)
            if ip is not None:
                addresses.setdefault(record.name.lower(), ip)
        elif isinstance(record, DNSPointer):
            pointers.append(record)
        elif isinstance(record, DNSService):
            servers[record.name.lower()] = record.server.lower()

    if not addresses:
        return []

    first_ip = next(iter(addresses.values()))
    found: list[Candidate] = []
    for ptr in pointers:
        if not (is_candidate_name(ptr.alias) or is_candidate_name(ptr.name)):
            continue
        server = servers.get(ptr.alias.lower())
        ip = addresses.get(server, first_ip) if server else first_ip
        found.append(Candidate(name=ptr.alias.rstrip("."), ip_address=ip))

    if not pointers:
        for host, ip in addresses.items():
            if is_candidate_name(host):
                found.append(Candidate(name=host.rstrip("."), ip_address=ip))
    return found


# ---------------------------------------------------------------------------
# mDNS transport
# ---------------------------------------------------------------------------


class Querier(Protocol):
    """What the engine needs from the mDNS layer."""

    def send_queries(self, queries: Iterable[tuple[str, int]]) -> None: ...

    def close(self) -> None: ...


RecordsCallback = Callable[[list[Any]], None]
QuerierFactory = Callable[[RecordsCallback], Querier]


class _RecordCollector(RecordUpdateListener):
    """Forwards each incoming response's records to a callback.

    Runs on zeroconf's event loop thread, so the callback must only
    buffer -- never block.
    """

    def __init__(self, callback: RecordsCallback) -> None:
        super().__init__()
        self._callback = callback

    def async_update_records(self, zc: Zeroconf, now: float, records: list[RecordUpdate]) -> None:
        batch = [update.new for update in records]
        if batch:
            self._callback(batch)


class MdnsQuerier:
    """Owns a :class:`Zeroconf` instance used for raw queries."""

    def __init__(self, on_records: RecordsCallback) -> None:
        self._zc = Zeroconf()
        self._listener = _RecordCollector(on_records)
        self._zc.add_listener(self._listener, None)

    def send_queries(self, queries: Iterable[tuple[str, int]]) -> None:
        out = DNSOutgoing(_FLAGS_QR_QUERY)
        for name, type_ in queries:
            out.add_question(DNSQuestion(name, type_, _CLASS_IN))
        self._zc.send(out)

    def close(self) -> None:
        self._zc.remove_listener(self._listener)
        self._zc.close()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class DiscoveryEngine:
    """Finds printers via mDNS and upserts confirmed ones into the registry.

    Args:
        registry: Fleet registry to write confirmed printers into.
        client: Status client used for the confirmation round-trip.
        interval: Seconds between discovery cycles.
        window: Seconds to listen for responses after querying.
        stop_event: Shared shutdown signal.  Every wait observes it.
        querier_factory: Builds the mDNS transport; defaults to
            :class:`MdnsQuerier`.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        client: UltimakerClient,
        *,
        interval: float = 300.0,
        window: float = 5.0,
        stop_event: threading.Event | None = None,
        querier_factory: QuerierFactory | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._client = client
        self._interval = interval
        self._window = window
        self._stop = stop_event or threading.Event()
        self._querier_factory: QuerierFactory = querier_factory or MdnsQuerier
        self._clock = clock
        self._querier: Querier | None = None
        self._wake = threading.Event()
        self._pending: dict[str, Candidate] = {}
        self._pending_lock = threading.Lock()
        self._state = DiscoveryState.IDLE
        self._cycles = 0

    @property
    def state(self) -> DiscoveryState:
        return self._state

    @property
    def cycles(self) -> int:
        """Number of completed discovery cycles."""
        return self._cycles

    def trigger(self) -> None:
        """Ask for a discovery cycle as soon as possible.  Never blocks."""
        self._wake.set()

    def wake(self) -> None:
        """Interrupt the between-cycles wait (used on shutdown)."""
        self._wake.set()

    # ------------------------------------------------------------------
    # Candidate intake
    # ------------------------------------------------------------------

    def _on_records(self, records: list[Any]) -> None:
        candidates = extract_candidates(records)
        if not candidates:
            return
        with self._pending_lock:
            for candidate in candidates:
                if candidate.ip_address not in self._pending:
                    logger.info(
                        "Discovered potential Ultimaker printer via mDNS: %s at %s",
                        candidate.name,
                        candidate.ip_address,
                    )
                self._pending[candidate.ip_address] = candidate

    def _drain_pending(self) -> list[Candidate]:
        with self._pending_lock:
            drained = list(self._pending.values())
            self._pending.clear()
        return drained

    def _ensure_querier(self) -> Querier:
        if self._querier is None:
            self._querier = self._querier_factory(self._on_records)
        return self._querier

    def close(self) -> None:
        """Release the mDNS socket."""
        querier, self._querier = self._querier, None
        if querier is not None:
            try:
                querier.close()
            except Exception:
                logger.debug("Error closing mDNS querier", exc_info=True)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> list[PrinterRecord]:
        """Run one query/listen/confirm cycle.

        Returns the records that were confirmed and upserted.  Returns
        early, without confirming, if shutdown is signalled during the
        listening window.
        """
        logger.info("Starting mDNS printer discovery...")
        try:
            self._state = DiscoveryState.QUERYING
            try:
                self._ensure_querier().send_queries(DISCOVERY_QUERIES)
            except OSError:
                logger.exception("Error during mDNS discovery")
                self.close()
                return []

            self._state = DiscoveryState.LISTENING
            if self._stop.wait(self._window):
                return []

            self._state = DiscoveryState.CONFIRMING
            confirmed = self.confirm_candidates(self._drain_pending())
        finally:
            self._state = DiscoveryState.IDLE

        self._cycles += 1
        logger.info(
            "mDNS discovery completed. Confirmed %d, registry holds %d printers",
            len(confirmed),
            len(self._registry),
        )
        return confirmed

    def confirm_candidates(self, candidates: list[Candidate]) -> list[PrinterRecord]:
        """Confirm *candidates* concurrently; return the upserted records."""
        if not candidates:
            return []
        workers = min(len(candidates), _MAX_CONFIRM_WORKERS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="printwatch-confirm") as pool:
            results = list(pool.map(self.confirm, candidates))
        return [r for r in results if r is not None]

    def confirm(self, candidate: Candidate) -> PrinterRecord | None:
        """Confirm one candidate via ``/api/v1/system`` and upsert it."""
        if self._stop.is_set():
            return None
        ip = candidate.ip_address
        try:
            info = self._client.fetch_system_info(ip)
        except StatusClientError as exc:
            logger.debug("Failed to get info from %s, might not be an Ultimaker printer: %s", ip, exc)
            return None

        def _refresh(record: PrinterRecord) -> None:
            if record.is_synthetic:
                return
            record.name = info.name
            record.ip_address = ip
            record.model = info.model
            record.firmware = info.firmware

        updated = self._registry.update(info.id, _refresh)
        if updated is not None:
            logger.debug("Re-confirmed printer %s at %s", updated.name, ip)
            return updated

        record = PrinterRecord(
            id=info.id,
            name=info.name,
            ip_address=ip,
            model=info.model,
            firmware=info.firmware,
            status=PrinterStatus.IDLE,
            last_seen=self._clock(),
        )
        self._registry.upsert(record)
        logger.info("Added printer: %s at %s", record.name, ip)
        return record

    def _wait_for_next_cycle(self) -> None:
        """Sleep up to ``interval``; a trigger or the stop event ends it early."""
        deadline = time.monotonic() + self._interval
        while not self._stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._wake.wait(min(remaining, _STOP_CHECK_SECONDS)):
                break
        self._wake.clear()

    def run_forever(self) -> None:
        """Loop until the stop event is set.  Runs one cycle immediately."""
        logger.info("Printer discovery started (every %.0fs, window %.1fs)", self._interval, self._window)
        try:
            while not self._stop.is_set():
                try:
                    self.run_cycle()
                except Exception:
                    logger.exception("Discovery cycle failed")
                self._wait_for_next_cycle()
        finally:
            self.close()
            logger.info("Printer discovery stopped")
