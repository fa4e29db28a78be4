"""Configuration for the fleet monitor.

Settings are read from ``~/.printwatch/config.yaml`` (or an explicit
path), then overridden by environment variables, then by CLI flags.

Precedence (highest first):
    1. CLI flags (``--poll-interval``, ``--simulate``, etc.)
    2. Environment variables (``PRINTWATCH_POLL_INTERVAL``, etc.)
    3. Config file
    4. Defaults below

Example config file::

    discovery:
      interval: 300
      window: 5
    polling:
      interval: 10
      request_timeout: 5
      prune_after_failures: 0
    simulation:
      enabled: true
      spawn_interval: 90
      lifetime: 180
    rest:
      host: 0.0.0.0
      port: 8421

Invalid numbers in the environment fall back to the default with a
warning.  :meth:`MonitorConfig.validate` raises :class:`ConfigError` for
values that would make a loop misbehave, and is called before any
background thread starts.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from printwatch import parse_bool_env, parse_float_env, parse_int_env
from printwatch.errors import ConfigError

logger = logging.getLogger(__name__)

# Valid top-level keys in the config file.  Used for schema validation.
_KNOWN_KEYS: set[str] = {"discovery", "polling", "simulation", "rest"}

_SECTION_KEYS: dict[str, set[str]] = {
    "discovery": {"interval", "window"},
    "polling": {"interval", "request_timeout", "prune_after_failures"},
    "simulation": {"enabled", "spawn_interval", "lifetime"},
    "rest": {"host", "port"},
}


def get_config_path() -> Path:
    """Return the default config file path (``~/.printwatch/config.yaml``)."""
    return Path.home() / ".printwatch" / "config.yaml"


@dataclass
class SyntheticConfig:
    """Synthetic device generator settings (seconds)."""

    enabled: bool = False
    spawn_interval: float = 90.0
    lifetime: float = 180.0


@dataclass
class RestApiConfig:
    """Where the inbound HTTP API listens."""

    host: str = "0.0.0.0"
    port: int = 8421


@dataclass
class MonitorConfig:
    """All knobs of the fleet monitor.  Intervals are in seconds."""

    discovery_interval: float = 300.0
    discovery_window: float = 5.0
    poll_interval: float = 10.0
    request_timeout: float = 5.0
    prune_after_failures: int = 0
    synthetic: SyntheticConfig = field(default_factory=SyntheticConfig)
    rest: RestApiConfig = field(default_factory=RestApiConfig)

    def validate(self) -> None:
        """Fail fast on settings no loop can run with.

        Raises:
            ConfigError: Describing every problem found.
        """
        problems: list[str] = []
        for name in ("discovery_interval", "discovery_window", "poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive (got {getattr(self, name)!r})")
        if 0 < self.discovery_interval <= self.discovery_window:
            problems.append("discovery_window must be shorter than discovery_interval")
        if self.prune_after_failures < 0:
            problems.append("prune_after_failures must be >= 0")
        if self.synthetic.enabled:
            if self.synthetic.spawn_interval <= 0:
                problems.append("synthetic.spawn_interval must be positive")
            if self.synthetic.lifetime <= 0:
                problems.append("synthetic.lifetime must be positive")
        if not 0 < self.rest.port < 65536:
            problems.append(f"rest.port out of range: {self.rest.port}")
        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read and schema-check the YAML file.  A missing file is empty."""
    if not path.is_file():
        return {}
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}", cause=exc) from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")

    unknown = set(raw) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
    for section, allowed in _SECTION_KEYS.items():
        body = raw.get(section) or {}
        if not isinstance(body, dict):
            raise ConfigError(f"Config section {section!r} must be a mapping")
        extra = set(body) - allowed
        if extra:
            raise ConfigError(f"Unknown keys in {section!r}: {', '.join(sorted(extra))}")
    return raw


def _number(section: dict[str, Any], key: str, default: float, where: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}.{key} must be a number (got {value!r})")
    return float(value)


def _flag(section: dict[str, Any], key: str, default: bool, where: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be true or false (got {value!r})")
    return value


def load_config(path: str | Path | None = None) -> MonitorConfig:
    """Build a :class:`MonitorConfig` from file and environment.

    Does not validate; call :meth:`MonitorConfig.validate` once CLI
    overrides have been applied.

    :param path: Config file to read.  Defaults to ``PRINTWATCH_CONFIG``
        or :func:`get_config_path`.
    """
    if path is None:
        path = os.environ.get("PRINTWATCH_CONFIG") or get_config_path()
    raw = _read_config_file(Path(path))

    discovery = raw.get("discovery") or {}
    polling = raw.get("polling") or {}
    simulation = raw.get("simulation") or {}
    rest = raw.get("rest") or {}

    defaults = MonitorConfig()
    cfg = MonitorConfig(
        discovery_interval=_number(discovery, "interval", defaults.discovery_interval, "discovery"),
        discovery_window=_number(discovery, "window", defaults.discovery_window, "discovery"),
        poll_interval=_number(polling, "interval", defaults.poll_interval, "polling"),
        request_timeout=_number(polling, "request_timeout", defaults.request_timeout, "polling"),
        prune_after_failures=int(
            _number(polling, "prune_after_failures", defaults.prune_after_failures, "polling")
        ),
        synthetic=SyntheticConfig(
            enabled=_flag(simulation, "enabled", defaults.synthetic.enabled, "simulation"),
            spawn_interval=_number(
                simulation, "spawn_interval", defaults.synthetic.spawn_interval, "simulation"
            ),
            lifetime=_number(simulation, "lifetime", defaults.synthetic.lifetime, "simulation"),
        ),
        rest=RestApiConfig(
            host=str(rest.get("host", defaults.rest.host)),
            port=int(_number(rest, "port", defaults.rest.port, "rest")),
        ),
    )
    _apply_env_overrides(cfg)
    logger.debug("Loaded config from %s: %s", path, cfg.to_dict())
    return cfg


def _apply_env_overrides(cfg: MonitorConfig) -> None:
    cfg.discovery_interval = parse_float_env("PRINTWATCH_DISCOVERY_INTERVAL", cfg.discovery_interval)
    cfg.discovery_window = parse_float_env("PRINTWATCH_DISCOVERY_WINDOW", cfg.discovery_window)
    cfg.poll_interval = parse_float_env("PRINTWATCH_POLL_INTERVAL", cfg.poll_interval)
    cfg.request_timeout = parse_float_env("PRINTWATCH_REQUEST_TIMEOUT", cfg.request_timeout)
    cfg.prune_after_failures = parse_int_env("PRINTWATCH_PRUNE_AFTER_FAILURES", cfg.prune_after_failures)
    cfg.synthetic.enabled = parse_bool_env("PRINTWATCH_SIMULATION", cfg.synthetic.enabled)
    cfg.synthetic.spawn_interval = parse_float_env("PRINTWATCH_SIM_SPAWN_INTERVAL", cfg.synthetic.spawn_interval)
    cfg.synthetic.lifetime = parse_float_env("PRINTWATCH_SIM_LIFETIME", cfg.synthetic.lifetime)
    cfg.rest.host = os.environ.get("PRINTWATCH_REST_HOST", "").strip() or cfg.rest.host
    cfg.rest.port = parse_int_env("PRINTWATCH_REST_PORT", cfg.rest.port)
