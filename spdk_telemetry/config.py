"""
Configuration management for the SPDK telemetry collector.
Handles environment variables for the RPC source, the OTLP destination and the poll cycle.
"""

import os
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_RPC_URL = "http://spdk:9009"
DEFAULT_OTLP_ENDPOINT = "otel-gw-collector:4317"
DEFAULT_SERVICE_NAME = "spdk-client"

FAILURE_POLICIES = ("exit", "skip")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

T = TypeVar("T")


class ConfigurationError(Exception):
    """Raised when the configuration or the export pipelines cannot be built."""

    pass


def _env_number(name: str, default: str, parse: Callable[[str], T]) -> T:
    raw = os.getenv(name, default)
    try:
        return parse(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _env_number(name, raw, float)


@dataclass
class RpcConfig:
    """SPDK JSON-RPC endpoint"""
    url: str = DEFAULT_RPC_URL
    username: str = "spdkuser"
    password: str = "spdkpass"
    # None means no deadline: a hung server blocks the poll loop
    timeout: Optional[float] = None


@dataclass
class ExportConfig:
    """OTLP export pipeline"""
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    service_name: str = DEFAULT_SERVICE_NAME
    metric_export_interval_ms: int = 60000
    shutdown_timeout_seconds: float = 1.0


@dataclass
class CollectorConfig:
    """Master collector configuration"""
    rpc: RpcConfig = field(default_factory=RpcConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    poll_interval_seconds: float = 5.0
    on_fetch_error: str = "exit"

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "CollectorConfig":
        """
        Build a config from the current environment.

        Raises:
            ConfigurationError: If a numeric variable does not parse
        """
        rpc = RpcConfig(
            url=os.getenv("SPDK_RPC_URL", DEFAULT_RPC_URL),
            username=os.getenv("SPDK_RPC_USER", "spdkuser"),
            password=os.getenv("SPDK_RPC_PASSWORD", "spdkpass"),
            timeout=_optional_float("SPDK_RPC_TIMEOUT"),
        )
        export = ExportConfig(
            # The exporter treats an empty endpoint the same as an unset one
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_OTLP_ENDPOINT,
            service_name=os.getenv("OTEL_SERVICE_NAME") or DEFAULT_SERVICE_NAME,
            metric_export_interval_ms=_env_number("METRIC_EXPORT_INTERVAL_MS", "60000", int),
            shutdown_timeout_seconds=_env_number("SHUTDOWN_TIMEOUT_SECONDS", "1.0", float),
        )
        return cls(
            rpc=rpc,
            export=export,
            poll_interval_seconds=_env_number("POLL_INTERVAL_SECONDS", "5", float),
            on_fetch_error=os.getenv("ON_FETCH_ERROR", "exit").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of warnings/errors"""
        issues = []

        if not self.rpc.url.startswith(("http://", "https://")):
            issues.append(f"ERROR: SPDK RPC URL must be http(s): {self.rpc.url}")

        if self.rpc.timeout is not None and self.rpc.timeout <= 0:
            issues.append("ERROR: RPC timeout must be positive")

        if self.poll_interval_seconds <= 0:
            issues.append("ERROR: poll_interval_seconds must be positive")

        if self.export.metric_export_interval_ms <= 0:
            issues.append("ERROR: metric_export_interval_ms must be positive")

        if self.export.shutdown_timeout_seconds <= 0:
            issues.append("ERROR: shutdown_timeout_seconds must be positive")

        if self.on_fetch_error not in FAILURE_POLICIES:
            issues.append(
                f"ERROR: on_fetch_error must be one of {', '.join(FAILURE_POLICIES)}"
            )

        if self.log_level not in LOG_LEVELS:
            issues.append(
                f"ERROR: log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )

        if self.rpc.timeout is None:
            issues.append("WARNING: No RPC timeout set; a hung SPDK server blocks the poll loop")

        if self.export.metric_export_interval_ms > self.poll_interval_seconds * 1000 * 12:
            issues.append("WARNING: Metric export interval is much longer than the poll interval")

        return issues


def load_config() -> CollectorConfig:
    """Get the configuration from the environment."""
    return CollectorConfig.from_env()
