"""Fleet monitor -- wires the components together and owns their threads.

Lifecycle::

    monitor = FleetMonitor(load_config())
    monitor.start()       # validates config, then launches background threads
    ...
    monitor.list_printers()
    monitor.trigger_discovery()
    ...
    monitor.stop()        # signals every loop and joins the threads

Threads:

- ``printwatch-discovery`` -- one discovery cycle immediately, then every
  ``discovery_interval`` (or sooner when triggered).
- ``printwatch-poller`` -- every ``poll_interval``: poll real printers,
  advance synthetic ones, refresh the change notifier.
- ``printwatch-synthetic`` -- only with simulation enabled: spawn one
  synthetic printer every ``spawn_interval``.

All of them observe the same :class:`threading.Event`, so :meth:`stop`
interrupts every wait point at once.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from printwatch.client import UltimakerClient
from printwatch.config import MonitorConfig
from printwatch.discovery import DiscoveryEngine, QuerierFactory
from printwatch.events import EventBus
from printwatch.models import PrinterRecord
from printwatch.notifier import ChangeNotifier
from printwatch.poller import StatusPoller
from printwatch.registry import FleetRegistry
from printwatch.synthetic import SyntheticDeviceGenerator

logger = logging.getLogger(__name__)

# Extra time granted to a thread on shutdown beyond one HTTP timeout.
_JOIN_GRACE = 2.0


class FleetMonitor:
    """The running fleet-monitoring subsystem.

    Args:
        config: Monitor configuration.  Validated in :meth:`start`.
        client: Status client; built from ``config.request_timeout`` if
            omitted.
        bus: Event bus for change notifications; a new one if omitted.
        querier_factory: mDNS transport factory passed to discovery.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        client: UltimakerClient | None = None,
        bus: EventBus | None = None,
        querier_factory: QuerierFactory | None = None,
    ) -> None:
        self._config = config or MonitorConfig()
        self._stop_event = threading.Event()
        self._client = client
        self._querier_factory = querier_factory
        self.bus = bus or EventBus()
        self.registry = FleetRegistry()
        self.notifier = ChangeNotifier(self.registry, self.bus)
        self.discovery: DiscoveryEngine | None = None
        self.poller: StatusPoller | None = None
        self.synthetic: SyntheticDeviceGenerator | None = None
        self._threads: list[threading.Thread] = []

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build(self) -> tuple[DiscoveryEngine, StatusPoller]:
        cfg = self._config
        if self._client is None:
            self._client = UltimakerClient(timeout=cfg.request_timeout)
        discovery = DiscoveryEngine(
            self.registry,
            self._client,
            interval=cfg.discovery_interval,
            window=cfg.discovery_window,
            stop_event=self._stop_event,
            querier_factory=self._querier_factory,
        )
        poller = StatusPoller(
            self.registry,
            self._client,
            stop_event=self._stop_event,
            prune_after_failures=cfg.prune_after_failures,
        )
        self.synthetic = None
        if cfg.synthetic.enabled:
            self.synthetic = SyntheticDeviceGenerator(
                self.registry,
                spawn_interval=cfg.synthetic.spawn_interval,
                lifetime=cfg.synthetic.lifetime,
                tick_seconds=cfg.poll_interval,
                stop_event=self._stop_event,
            )
        self.discovery, self.poller = discovery, poller
        return discovery, poller

    def _spawn(self, name: str, target: Callable[[], None]) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def start(self) -> None:
        """Validate configuration and start every background loop.

        A restart after :meth:`stop` re-seeds the change notifier, so the
        first tick publishes nothing.

        Raises:
            ConfigError: If the configuration is invalid.  Nothing is
                started in that case.
        """
        if self.is_running:
            return
        self._config.validate()
        self._stop_event.clear()
        self._threads = []
        self.notifier.reset()
        discovery, poller = self._build()

        self._spawn("printwatch-discovery", discovery.run_forever)
        self._spawn(
            "printwatch-poller",
            lambda: poller.run_forever(self._config.poll_interval, after_tick=self._after_poll),
        )
        if self.synthetic is not None:
            self._spawn("printwatch-synthetic", self.synthetic.run_forever)
        logger.info(
            "Fleet monitor started (discovery %.0fs, poll %.1fs, simulation %s)",
            self._config.discovery_interval,
            self._config.poll_interval,
            "on" if self.synthetic is not None else "off",
        )

    def _after_poll(self) -> None:
        if self.synthetic is not None:
            self.synthetic.advance()
        self.notifier.refresh()

    def stop(self) -> None:
        """Signal every loop to finish and wait for the threads."""
        self._stop_event.set()
        if self.discovery is not None:
            self.discovery.wake()
        timeout = self._config.request_timeout + _JOIN_GRACE
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Thread %s did not stop within %.1fs", thread.name, timeout)
        self._threads = []
        if self._client is not None:
            self._client.close()
        logger.info("Fleet monitor stopped")

    def __enter__(self) -> FleetMonitor:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Queries used by the REST API
    # ------------------------------------------------------------------

    def list_printers(self) -> list[PrinterRecord]:
        return self.registry.snapshot()

    def get_printer(self, printer_id: str) -> PrinterRecord:
        """Return one printer.

        Raises:
            PrinterNotFoundError: If no printer has that id.
        """
        return self.registry.require(printer_id)

    def trigger_discovery(self) -> bool:
        """Ask discovery to run early.  Returns ``False`` if not running."""
        if self.discovery is None or not self.is_running:
            return False
        self.discovery.trigger()
        return True
