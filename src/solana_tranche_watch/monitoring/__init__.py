"""Monitoring package exports and helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .logger import configure_logging, get_logger, log_context
from .metrics import METRICS, performance_monitor


def bootstrap_observability(config: Optional[AppConfig] = None) -> None:
    """Configure logging for the process and announce where metrics go."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    textfile = app_config.monitoring.metrics_textfile
    if textfile is not None:
        get_logger(__name__).info("Prometheus metrics will be written to %s after each cycle", textfile)


def flush_metrics(textfile: Optional[Path]) -> None:
    """Write the Prometheus textfile if a path is given; failures are logged only."""

    if textfile is None:
        return
    try:
        METRICS.write_textfile(textfile)
    except OSError as exc:
        get_logger(__name__).warning("Failed to write metrics textfile %s: %s", textfile, exc)


__all__ = [
    "METRICS",
    "bootstrap_observability",
    "flush_metrics",
    "get_logger",
    "log_context",
    "performance_monitor",
]
