"""Ultimaker local HTTP API client.

Talks to the read-only endpoints of the printer's built-in HTTP API via
:mod:`requests`:

- ``GET /api/v1/system``     -- identity (name, guid, variant, firmware)
- ``GET /api/v1/printer``    -- status, bed and hotend temperatures
- ``GET /api/v1/print_job``  -- active job progress

The client is stateless apart from its HTTP session.  Every call makes a
single attempt bounded by a short timeout; any transport error, non-2xx
response or malformed body raises :class:`StatusClientError`.  Callers
treat that as "unknown, try later" -- there are no retries here.

Vendor field names are matched case-insensitively.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import requests
from requests.exceptions import ConnectionError as ReqConnectionError
from requests.exceptions import RequestException, Timeout

from printwatch.errors import StatusClientError
from printwatch.models import JobState, NozzleInfo, PrinterStatus, PrintJob

logger = logging.getLogger(__name__)

# Same-subnet devices answer in well under a second.
DEFAULT_TIMEOUT: float = 5.0

_SYSTEM_PATH = "/api/v1/system"
_PRINTER_PATH = "/api/v1/printer"
_PRINT_JOB_PATH = "/api/v1/print_job"

# Ultimaker printer status -> PrinterStatus.  Anything else is OFFLINE.
_STATUS_MAP: dict[str, PrinterStatus] = {
    "idle": PrinterStatus.IDLE,
    "printing": PrinterStatus.PRINTING,
    "paused": PrinterStatus.PAUSED,
    "error": PrinterStatus.ERROR,
    "maintenance": PrinterStatus.MAINTENANCE,
}

# Ultimaker print_job state -> JobState.  Anything else is NO_JOB.
_JOB_STATE_MAP: dict[str, JobState] = {
    "pre_print": JobState.PREPARING,
    "printing": JobState.PRINTING,
    "pausing": JobState.PAUSING,
    "paused": JobState.PAUSED,
    "resuming": JobState.RESUMING,
    "post_print": JobState.POST_PRINT,
    "wait_cleanup": JobState.WAIT_CLEANUP,
}


def map_printer_status(raw: Any) -> PrinterStatus:
    """Map a vendor status string to :class:`PrinterStatus`.

    Case-insensitive.  Unknown or non-string values map to ``OFFLINE``.
    """
    if not isinstance(raw, str):
        return PrinterStatus.OFFLINE
    return _STATUS_MAP.get(raw.strip().lower(), PrinterStatus.OFFLINE)


def map_job_state(raw: Any) -> JobState:
    """Map a vendor job state string to :class:`JobState`.

    Case-insensitive.  Unknown or non-string values map to ``NO_JOB``.
    """
    if not isinstance(raw, str):
        return JobState.NO_JOB
    return _JOB_STATE_MAP.get(raw.strip().lower(), JobState.NO_JOB)


# ---------------------------------------------------------------------------
# Response DTOs
# ---------------------------------------------------------------------------


@dataclass
class SystemInfo:
    """Identity reported by ``/api/v1/system``."""

    id: str
    name: str
    model: str
    firmware: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PrinterStatusReport:
    """Live state reported by ``/api/v1/printer``."""

    status: PrinterStatus
    raw_status: str
    bed_temperature: float | None = None
    nozzles: list[NozzleInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "raw_status": self.raw_status,
            "bed_temperature": self.bed_temperature,
            "nozzles": [n.to_dict() for n in self.nozzles],
        }


@dataclass
class PrintJobReport:
    """Job progress reported by ``/api/v1/print_job``.

    ``progress`` is the vendor's 0.0 -- 1.0 fraction; times are seconds.
    """

    state: JobState
    name: str | None = None
    progress: float = 0.0
    time_elapsed: int = 0
    time_total: int = 0

    def to_job(self) -> PrintJob:
        """Convert to the internal :class:`PrintJob` shape."""
        percent = int(self.progress * 100)
        return PrintJob(
            name=self.name or "Unknown",
            progress_percent=max(0, min(100, percent)),
            time_elapsed=float(self.time_elapsed),
            time_remaining=float(max(0, self.time_total - self.time_elapsed)),
            state=self.state,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _lower_keys(data: Any) -> Any:
    """Recursively lower-case every dict key so lookups ignore case."""
    if isinstance(data, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_lower_keys(v) for v in data]
    return data


def _safe_get(data: Any, *keys: str, default: Any = None) -> Any:
    """Walk nested dicts safely, returning *default* on any miss."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key, default)
    return current


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int:
    number = _as_float(value)
    return int(number) if number is not None else 0


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_system_info(data: Any, ip_address: str) -> SystemInfo:
    """Build a :class:`SystemInfo` from a decoded ``/system`` body.

    Raises:
        StatusClientError: If the body is not an object or has no ``guid``.
    """
    data = _lower_keys(data)
    if not isinstance(data, dict):
        raise StatusClientError(f"System info from {ip_address} is not a JSON object")
    guid = _optional_str(data.get("guid"))
    if guid is None:
        raise StatusClientError(f"System info from {ip_address} has no guid")
    return SystemInfo(
        id=guid,
        name=_optional_str(data.get("name")) or f"Ultimaker at {ip_address}",
        model=_optional_str(data.get("variant")) or "Unknown",
        firmware=_optional_str(data.get("firmware")),
    )


def parse_printer_status(data: Any, ip_address: str) -> PrinterStatusReport:
    """Build a :class:`PrinterStatusReport` from a decoded ``/printer`` body.

    Nozzles are numbered by their extruder position within each head.

    Raises:
        StatusClientError: If the body is not an object or has no ``status``.
    """
    data = _lower_keys(data)
    if not isinstance(data, dict) or not isinstance(data.get("status"), str):
        raise StatusClientError(f"Printer status from {ip_address} has no status field")

    nozzles: list[NozzleInfo] = []
    heads = data.get("heads")
    for head in heads if isinstance(heads, list) else []:
        extruders = _safe_get(head, "extruders")
        if not isinstance(extruders, list):
            continue
        for index, extruder in enumerate(extruders):
            hotend = _safe_get(extruder, "hotend")
            if not isinstance(hotend, dict):
                continue
            nozzles.append(
                NozzleInfo(
                    index=index,
                    temperature=_as_float(_safe_get(hotend, "temperature", "current")),
                    target_temperature=_as_float(_safe_get(hotend, "temperature", "target")),
                )
            )

    return PrinterStatusReport(
        status=map_printer_status(data["status"]),
        raw_status=data["status"],
        bed_temperature=_as_float(_safe_get(data, "bed", "temperature", "current")),
        nozzles=nozzles,
    )


def parse_print_job(data: Any, ip_address: str) -> PrintJobReport:
    """Build a :class:`PrintJobReport` from a decoded ``/print_job`` body.

    Raises:
        StatusClientError: If the body is not a JSON object.
    """
    data = _lower_keys(data)
    if not isinstance(data, dict):
        raise StatusClientError(f"Print job from {ip_address} is not a JSON object")
    return PrintJobReport(
        state=map_job_state(data.get("state")),
        name=_optional_str(data.get("name")),
        progress=_as_float(data.get("progress")) or 0.0,
        time_elapsed=_as_int(data.get("time_elapsed")),
        time_total=_as_int(data.get("time_total")),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class UltimakerClient:
    """Read-only client for the Ultimaker local HTTP API.

    Args:
        timeout: Per-request timeout in seconds.
        session: Optional pre-built :class:`requests.Session`.

    Raises:
        ValueError: If *timeout* is not positive.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Internal HTTP helpers
    # ------------------------------------------------------------------

    def _get_json(self, ip_address: str, path: str) -> Any:
        """GET *path* on the device and return the decoded JSON body."""
        url = f"http://{ip_address}{path}"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except Timeout as exc:
            raise StatusClientError(
                f"Request to {url} timed out after {self._timeout}s",
                cause=exc,
            ) from exc
        except ReqConnectionError as exc:
            raise StatusClientError(f"Could not connect to {url}", cause=exc) from exc
        except RequestException as exc:
            raise StatusClientError(f"Request error for {url}: {exc}", cause=exc) from exc

        if not response.ok:
            raise StatusClientError(f"{url} returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise StatusClientError(f"Invalid JSON in response from {url}", cause=exc) from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def fetch_system_info(self, ip_address: str) -> SystemInfo:
        """Return the device identity.  Used to confirm discovery candidates."""
        return parse_system_info(self._get_json(ip_address, _SYSTEM_PATH), ip_address)

    def fetch_status(self, ip_address: str) -> PrinterStatusReport:
        """Return status, bed temperature and nozzle temperatures."""
        return parse_printer_status(self._get_json(ip_address, _PRINTER_PATH), ip_address)

    def fetch_job(self, ip_address: str) -> PrintJobReport:
        """Return the active print job's progress."""
        return parse_print_job(self._get_json(ip_address, _PRINT_JOB_PATH), ip_address)
