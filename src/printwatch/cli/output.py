"""Output formatting for the printwatch CLI.

Every public function accepts a ``json_mode`` flag:
    - ``True``  -> indented JSON, ready for scripts
    - ``False`` -> Rich tables and panels for humans
"""

from __future__ import annotations

import json
from io import StringIO
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

_STATUS_STYLES: dict[str, str] = {
    "idle": "green",
    "printing": "cyan",
    "paused": "yellow",
    "maintenance": "yellow",
    "error": "red",
    "offline": "dim",
}


def _render(renderable: Any) -> str:
    """Render a Rich object to a string."""
    buf = StringIO()
    console = Console(file=buf, force_terminal=True, width=100)
    console.print(renderable)
    return buf.getvalue().rstrip("\n")


def _dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=False)


def format_time(seconds: Optional[float]) -> str:
    """Convert seconds to ``Xh Ym Zs``."""
    if seconds is None or seconds < 0:
        return "N/A"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    parts: list[str] = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def format_temp(actual: Optional[float], target: Optional[float] = None) -> str:
    actual_str = f"{actual:.1f}°C" if actual is not None else "N/A"
    if target is None:
        return actual_str
    target_str = f"{target:.1f}°C" if target else "off"
    return f"{actual_str} → {target_str}"


def _status_text(status: str) -> Text:
    return Text(status, style=_STATUS_STYLES.get(status, ""))


def _job_summary(job: Optional[Dict[str, Any]]) -> str:
    if not job:
        return "-"
    return f"{job.get('name', 'Unknown')} {job.get('progress_percent', 0)}% ({job.get('state', '')})"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def format_error(message: str, code: str = "ERROR", *, json_mode: bool = False) -> str:
    if json_mode:
        return _dumps({"status": "error", "error": {"code": code, "message": message}})
    t = Text()
    t.append("Error", style="bold red")
    t.append(f" [{code}]: ", style="red")
    t.append(message)
    return _render(Panel(t, title="Error", border_style="red"))


# ---------------------------------------------------------------------------
# Fleet
# ---------------------------------------------------------------------------


def format_printers(printers: List[Dict[str, Any]], *, json_mode: bool = False) -> str:
    """Format a list of ``PrinterRecord.to_dict()`` payloads."""
    if json_mode:
        return _dumps({"status": "success", "data": {"printers": printers, "count": len(printers)}})

    if not printers:
        return _render(Panel("No Ultimaker printers found on the network.", border_style="yellow"))

    table = Table(title="Printers", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Address")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Job")
    for p in printers:
        name = p.get("name", "")
        if p.get("is_synthetic"):
            name += " [sim]"
        table.add_row(
            name,
            p.get("ip_address", ""),
            p.get("model", ""),
            _status_text(p.get("status", "")),
            _job_summary(p.get("current_job")),
        )
    return _render(table)


def format_status(
    address: str,
    status: Dict[str, Any],
    job: Optional[Dict[str, Any]] = None,
    *,
    json_mode: bool = False,
) -> str:
    """Format one printer's live state.

    Expects dicts from ``PrinterStatusReport.to_dict()`` and, when the
    printer is printing, ``PrintJob.to_dict()``.
    """
    if json_mode:
        return _dumps({"status": "success", "data": {"ip_address": address, "printer": status, "job": job}})

    lines = [
        f"[bold]Status:[/bold] {status.get('status')} ({status.get('raw_status')})",
        f"[bold]Bed:[/bold] {format_temp(status.get('bed_temperature'))}",
    ]
    for nozzle in status.get("nozzles", []):
        temp = format_temp(nozzle.get("temperature"), nozzle.get("target_temperature"))
        lines.append(f"[bold]Nozzle {nozzle.get('index')}:[/bold] {temp}")
    if job:
        lines.append(f"[bold]Job:[/bold] {job.get('name')} ({job.get('state')})")
        lines.append(f"[bold]Progress:[/bold] {job.get('progress_percent', 0)}%")
        lines.append(
            f"[bold]Elapsed:[/bold] {format_time(job.get('time_elapsed'))}"
            f"  [bold]Remaining:[/bold] {format_time(job.get('time_remaining'))}"
        )
    return _render(Panel("\n".join(lines), title=address, border_style="green"))


def format_config(config: Dict[str, Any], *, json_mode: bool = False) -> str:
    """Format ``MonitorConfig.to_dict()``."""
    if json_mode:
        return _dumps({"status": "success", "data": config})

    table = Table(title="Effective configuration", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")

    def _rows(prefix: str, data: Dict[str, Any]) -> None:
        for key, value in data.items():
            if isinstance(value, dict):
                _rows(f"{prefix}{key}.", value)
            else:
                table.add_row(f"{prefix}{key}", str(value))

    _rows("", config)
    return _render(table)
