"""
Observability Package

Two pillars, both shipped over OTLP/gRPC to one collector endpoint:
1. TRACES: one FetchSPDKMetrics span per poll cycle, plus the HTTP client span
2. METRICS: monotonic bytes-read / read-ops counters per bdev

Logs stay local: structured JSON on stderr, correlated by trace_id.
"""

from spdk_telemetry.observability.logging_config import setup_logging
from spdk_telemetry.observability.telemetry import (
    ConfigurationError,
    ShutdownError,
    Telemetry,
    create_resource,
    init_telemetry,
)

__all__ = [
    "ConfigurationError",
    "ShutdownError",
    "Telemetry",
    "create_resource",
    "init_telemetry",
    "setup_logging",
]
