"""Load, validate, and hot-reload the sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk — no restart required.

Usage::

    from src.intervals.config_loader import get_sync_config

    config = get_sync_config()
    config.period_seconds            # 300
    config.resume_threshold_seconds  # 240
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.intervals.metrics import METRIC_REGISTRY, MetricDefinition

logger = logging.getLogger("intervalsync.intervals.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"

_SUPPORTED_WIDTH_MINUTES = 5


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:                  Config schema version string.
        width_minutes:            Bucket width (always 5).
        period_seconds:           Periodic trigger cadence.
        resume_threshold_seconds: Staleness that forces a sync on resume.
        source_timeout_seconds:   Timeout for each data source call.
        submit_timeout_seconds:   Timeout for each batch submission.
        health_timeout_seconds:   Timeout for each endpoint health check.
        metrics:                  Metric names synced each cycle.
        device_source:            Recorded as deviceSource on every write.
    """

    version: str = "1.0"
    width_minutes: int = _SUPPORTED_WIDTH_MINUTES
    period_seconds: float = 300
    resume_threshold_seconds: float = 240
    source_timeout_seconds: float = 10
    submit_timeout_seconds: float = 10
    health_timeout_seconds: float = 5
    metrics: list[str] = field(default_factory=lambda: list(METRIC_REGISTRY))
    device_source: str = "health_connect"

    def metric_definitions(self) -> list[MetricDefinition]:
        """Resolve configured metric names to their definitions."""
        return [METRIC_REGISTRY[name] for name in self.metrics]


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every problem is collected before raising so one edit can fix them all.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
    """
    errors: list[str] = []

    def _positive(section: dict, key: str, default: float, path: str) -> float:
        value: Any = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{path} must be a number, got {value!r}")
            return default
        if number <= 0:
            errors.append(f"{path} must be positive, got {number}")
        return number

    version = str(raw.get("version", "1.0"))

    # ── Intervals ──
    iv_raw = raw.get("intervals") or {}
    width = iv_raw.get("width_minutes", _SUPPORTED_WIDTH_MINUTES)
    if width != _SUPPORTED_WIDTH_MINUTES:
        errors.append(
            f"intervals.width_minutes must be {_SUPPORTED_WIDTH_MINUTES}, got {width!r}"
        )

    # ── Scheduler ──
    sc_raw = raw.get("scheduler") or {}
    period = _positive(sc_raw, "period_seconds", 300, "scheduler.period_seconds")
    resume = _positive(
        sc_raw, "resume_threshold_seconds", 240, "scheduler.resume_threshold_seconds"
    )

    # ── Timeouts ──
    to_raw = raw.get("timeouts") or {}
    source_timeout = _positive(to_raw, "source_seconds", 10, "timeouts.source_seconds")
    submit_timeout = _positive(to_raw, "submit_seconds", 10, "timeouts.submit_seconds")
    health_timeout = _positive(to_raw, "health_seconds", 5, "timeouts.health_seconds")

    # ── Metrics ──
    metrics_raw = raw.get("metrics", list(METRIC_REGISTRY))
    metrics: list[str] = []
    if not isinstance(metrics_raw, list) or not metrics_raw:
        errors.append("'metrics' must be a non-empty list")
    else:
        for name in metrics_raw:
            if name not in METRIC_REGISTRY:
                errors.append(
                    f"metrics: unknown metric {name!r} (known: {list(METRIC_REGISTRY)})"
                )
            elif name not in metrics:
                metrics.append(name)

    device_source = raw.get("device_source", "health_connect")
    if not isinstance(device_source, str) or not device_source:
        errors.append("'device_source' must be a non-empty string")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        width_minutes=_SUPPORTED_WIDTH_MINUTES,
        period_seconds=period,
        resume_threshold_seconds=resume,
        source_timeout_seconds=source_timeout,
        submit_timeout_seconds=submit_timeout,
        health_timeout_seconds=health_timeout,
        metrics=metrics,
        device_source=device_source,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
