"""Fleet registry -- the single source of truth for known printers.

The registry maps a printer id to its :class:`PrinterRecord`.  Writers
(discovery, the status poller, the synthetic generator) and readers (the
change notifier, the REST API) run on different threads, so every
operation goes through one short-held lock that guards dictionary access
only.  Nobody performs I/O while holding it.

Records are copied on the way in and on the way out.  A caller can never
observe, or mutate, the stored instance.  :meth:`FleetRegistry.update`
applies a mutation to a private copy and swaps it in, so a snapshot never
sees a record half-way through a poll.

Example::

    registry = FleetRegistry()
    registry.upsert(PrinterRecord(id="abc", name="UM3", ip_address="10.0.0.5"))
    registry.update("abc", lambda r: setattr(r, "status", PrinterStatus.PRINTING))
    for record in registry.snapshot():
        print(record.name, record.status.value)
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable

from printwatch.errors import PrinterNotFoundError
from printwatch.models import PrinterRecord

logger = logging.getLogger(__name__)


def _key(printer_id: str) -> str:
    return printer_id.casefold()


class FleetRegistry:
    """Thread-safe, insertion-ordered id -> :class:`PrinterRecord` store.

    Ids are compared case-insensitively; the stored record keeps the
    casing it was upserted with.
    """

    def __init__(self) -> None:
        self._records: dict[str, PrinterRecord] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: PrinterRecord) -> None:
        """Insert *record*, or replace the record with the same id.

        Replacing keeps the original insertion position.
        """
        stored = copy.deepcopy(record)
        with self._lock:
            self._records[_key(record.id)] = stored

    def update(
        self,
        printer_id: str,
        mutate: Callable[[PrinterRecord], None],
    ) -> PrinterRecord | None:
        """Atomically apply *mutate* to the record for *printer_id*.

        *mutate* receives a private copy and must not block or perform
        I/O; it runs under the registry lock.  Returns a copy of the new
        record, or ``None`` if the id is no longer registered.
        """
        key = _key(printer_id)
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return None
            working = copy.deepcopy(current)
            mutate(working)
            self._records[key] = working
            return copy.deepcopy(working)

    def remove(self, printer_id: str) -> bool:
        """Delete the record for *printer_id*.  Returns whether it existed."""
        with self._lock:
            removed = self._records.pop(_key(printer_id), None)
        if removed is not None:
            logger.debug("Removed %s (%s) from registry", removed.id, removed.name)
        return removed is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, printer_id: str) -> PrinterRecord | None:
        """Return a copy of the record for *printer_id*, or ``None``."""
        with self._lock:
            record = self._records.get(_key(printer_id))
            return copy.deepcopy(record) if record is not None else None

    def require(self, printer_id: str) -> PrinterRecord:
        """Like :meth:`get` but raises when the id is unknown.

        Raises:
            PrinterNotFoundError: If *printer_id* is not registered.
        """
        record = self.get(printer_id)
        if record is None:
            raise PrinterNotFoundError(printer_id)
        return record

    def snapshot(self) -> list[PrinterRecord]:
        """Return copies of every record in insertion order."""
        with self._lock:
            return copy.deepcopy(list(self._records.values()))

    def ids(self) -> list[str]:
        """Return every registered id in insertion order."""
        with self._lock:
            return [r.id for r in self._records.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, printer_id: object) -> bool:
        if not isinstance(printer_id, str):
            return False
        with self._lock:
            return _key(printer_id) in self._records
