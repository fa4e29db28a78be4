"""REST API for the fleet monitor.

Wraps a running :class:`~printwatch.service.FleetMonitor` in a small
FastAPI application::

    GET  /health              -- liveness and fleet size
    GET  /printers            -- every known printer
    GET  /printers/{id}       -- one printer, 404 when unknown
    POST /printers/discover   -- ask for an early discovery cycle
    GET  /events              -- recent change events, newest first

Discovery requests are advisory: the endpoint returns at once and the
cycle runs on the discovery thread.

Usage::

    printwatch serve
    # or
    python -m printwatch.cli.main serve --port 8421
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from printwatch import __version__
from printwatch.errors import PrinterNotFoundError
from printwatch.events import EventType
from printwatch.service import FleetMonitor

logger = logging.getLogger(__name__)


def create_app(monitor: FleetMonitor) -> FastAPI:
    """Create the FastAPI application bound to *monitor*.

    The monitor is not started here; the caller owns its lifecycle.
    """
    app = FastAPI(
        title="Printwatch REST API",
        description="Live status of the Ultimaker printers on the local network",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Server health check."""
        return {
            "status": "ok" if monitor.is_running else "stopped",
            "version": __version__,
            "printers": len(monitor.registry),
        }

    @app.get("/printers")
    async def list_printers() -> list[dict[str, Any]]:
        return [record.to_dict() for record in monitor.list_printers()]

    @app.get("/printers/{printer_id}")
    async def get_printer(printer_id: str) -> dict[str, Any]:
        try:
            return monitor.get_printer(printer_id).to_dict()
        except PrinterNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from None

    @app.post("/printers/discover", status_code=202)
    async def discover() -> dict[str, str]:
        if not monitor.trigger_discovery():
            logger.debug("Discovery requested while the monitor is not running")
        return {"message": "Discovery initiated"}

    @app.get("/events")
    async def recent_events(
        type: Optional[str] = Query(default=None, description="Event type, e.g. printer.changed"),
        limit: int = Query(default=50, ge=1, le=1000),
    ) -> dict[str, Any]:
        event_type = None
        if type is not None:
            try:
                event_type = EventType(type)
            except ValueError:
                valid = ", ".join(t.value for t in EventType)
                raise HTTPException(status_code=400, detail=f"Unknown event type {type!r}. Valid: {valid}") from None
        events = monitor.bus.recent_events(event_type, limit=limit)
        return {"events": [e.to_dict() for e in events], "count": len(events)}

    return app


def run_rest_server(monitor: FleetMonitor, host: str | None = None, port: int | None = None) -> None:
    """Serve the REST API with uvicorn (blocking).

    Host and port default to the monitor's ``rest`` configuration.
    """
    rest = monitor.config.rest
    host = host or rest.host
    port = port or rest.port
    app = create_app(monitor)
    logger.info("Starting Printwatch REST API on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_config=None)
