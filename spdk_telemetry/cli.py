"""CLI for the SPDK telemetry collector.

Provides commands to run the poll loop, poll once, and inspect configuration.
"""

import logging
import signal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from spdk_telemetry.collector import Collector, FailFast, SkipCycle, StopTimer
from spdk_telemetry.config import LOG_LEVELS, CollectorConfig, load_config
from spdk_telemetry.fetcher import MetricsFetcher
from spdk_telemetry.models import FetchError
from spdk_telemetry.observability import ConfigurationError, Telemetry, init_telemetry, setup_logging
from spdk_telemetry.registry import CounterRegistry

logger = logging.getLogger(__name__)

# Initialize Typer app
app = typer.Typer(
    name="spdk-telemetry",
    help="SPDK Telemetry Collector - republish bdev I/O stats over OTLP",
    add_completion=False,
)

console = Console(stderr=True)


def _apply_overrides(
    config: CollectorConfig,
    rpc_url: Optional[str],
    otlp_endpoint: Optional[str],
    interval: Optional[float],
    on_error: Optional[str],
    verbose: bool,
) -> CollectorConfig:
    if rpc_url:
        config.rpc.url = rpc_url
    if otlp_endpoint:
        config.export.otlp_endpoint = otlp_endpoint
    if interval is not None:
        config.poll_interval_seconds = interval
    if on_error:
        config.on_fetch_error = on_error.lower()
    if verbose:
        config.log_level = "DEBUG"
    return config


def _load_config() -> CollectorConfig:
    try:
        return load_config()
    except ConfigurationError as e:
        console.print(f"[red]ERROR: {e}[/red]")
        raise typer.Exit(1)


def _check_config(config: CollectorConfig) -> None:
    errors = [issue for issue in config.validate() if issue.startswith("ERROR")]
    for issue in errors:
        console.print(f"[red]{issue}[/red]")
    if errors:
        raise typer.Exit(1)


def _start_telemetry(config: CollectorConfig) -> Telemetry:
    try:
        return init_telemetry(
            service_name=config.export.service_name,
            otlp_endpoint=config.export.otlp_endpoint,
            export_interval_ms=config.export.metric_export_interval_ms,
        )
    except ConfigurationError as e:
        logger.critical(str(e))
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def build_collector(config: CollectorConfig, telemetry: Telemetry) -> Collector:
    """Wire fetcher, counters and loop onto one telemetry handle."""
    fetcher = MetricsFetcher(
        telemetry,
        rpc_url=config.rpc.url,
        username=config.rpc.username,
        password=config.rpc.password,
        timeout=config.rpc.timeout,
    )
    registry = CounterRegistry(telemetry.meter())
    failure_policy = SkipCycle() if config.on_fetch_error == "skip" else FailFast()

    return Collector(
        fetcher,
        registry,
        telemetry,
        interval=config.poll_interval_seconds,
        failure_policy=failure_policy,
    )


def _install_signal_handlers(timer: StopTimer, collector: Collector) -> dict:
    """
    Stop polling on SIGINT/SIGTERM; return the handlers being replaced.

    Between cycles the signal only stops the timer. During a cycle the RPC
    call can block with no deadline, so the handler raises KeyboardInterrupt
    out of it instead.
    """
    def handle_signal(signum, frame):
        name = signal.Signals(signum).name
        timer.stop()
        if collector.busy:
            logger.warning(f"Received signal {name} during a poll, abandoning it")
            raise KeyboardInterrupt(name)
        logger.info(f"Received signal {name}, stopping")

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle_signal)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@app.command()
def run(
    rpc_url: Optional[str] = typer.Option(
        None,
        "--rpc-url",
        help="SPDK JSON-RPC HTTP endpoint",
    ),
    otlp_endpoint: Optional[str] = typer.Option(
        None,
        "--otlp-endpoint",
        help="OTel Collector gRPC endpoint",
    ),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds to sleep between polls",
    ),
    on_error: Optional[str] = typer.Option(
        None,
        "--on-error",
        help="What to do when a poll fails: exit or skip",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """Poll SPDK until interrupted."""
    cfg = _apply_overrides(_load_config(), rpc_url, otlp_endpoint, interval, on_error, verbose)
    _check_config(cfg)
    setup_logging(cfg.log_level, cfg.export.service_name)

    telemetry = _start_telemetry(cfg)
    timer = StopTimer()
    previous_handlers = {}

    try:
        collector = build_collector(cfg, telemetry)
        previous_handlers = _install_signal_handlers(timer, collector)
        collector.run(timer)
    except FetchError as e:
        logger.critical(f"Poll failed, exiting: {e}", extra={"error_type": type(e).__name__})
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Poll interrupted, shutting down")
    finally:
        _restore_signal_handlers(previous_handlers)
        telemetry.shutdown(timeout_seconds=cfg.export.shutdown_timeout_seconds)


@app.command()
def once(
    rpc_url: Optional[str] = typer.Option(
        None,
        "--rpc-url",
        help="SPDK JSON-RPC HTTP endpoint",
    ),
    otlp_endpoint: Optional[str] = typer.Option(
        None,
        "--otlp-endpoint",
        help="OTel Collector gRPC endpoint",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """Run a single poll cycle, flush telemetry and exit."""
    cfg = _apply_overrides(_load_config(), rpc_url, otlp_endpoint, None, None, verbose)
    _check_config(cfg)
    setup_logging(cfg.log_level, cfg.export.service_name)

    telemetry = _start_telemetry(cfg)

    try:
        collector = build_collector(cfg, telemetry)
        count = collector.run_once()
        logger.info(f"Recorded {count} bdevs")
    except FetchError as e:
        logger.critical(f"Poll failed: {e}", extra={"error_type": type(e).__name__})
        raise typer.Exit(1)
    finally:
        telemetry.shutdown(timeout_seconds=cfg.export.shutdown_timeout_seconds)


@app.command()
def config(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
) -> None:
    """Show current configuration."""
    cfg = _load_config()
    # Unknown levels are reported with the other issues below
    level = cfg.log_level if cfg.log_level in LOG_LEVELS else "INFO"
    setup_logging("DEBUG" if verbose else level, cfg.export.service_name)

    table = Table(title="SPDK Telemetry Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    config_items = [
        ("SPDK RPC URL", cfg.rpc.url),
        ("SPDK RPC User", cfg.rpc.username),
        ("SPDK RPC Password", "***" if cfg.rpc.password else "(empty)"),
        ("SPDK RPC Timeout", "none" if cfg.rpc.timeout is None else f"{cfg.rpc.timeout}s"),
        ("OTLP Endpoint", cfg.export.otlp_endpoint),
        ("Service Name", cfg.export.service_name),
        ("Metric Export Interval", f"{cfg.export.metric_export_interval_ms}ms"),
        ("Poll Interval", f"{cfg.poll_interval_seconds}s"),
        ("On Fetch Error", cfg.on_fetch_error),
        ("Shutdown Timeout", f"{cfg.export.shutdown_timeout_seconds}s"),
        ("Log Level", cfg.log_level),
    ]

    for name, value in config_items:
        table.add_row(name, value)

    console.print(table)

    for issue in cfg.validate():
        color = "red" if issue.startswith("ERROR") else "yellow"
        console.print(f"[{color}]{issue}[/{color}]")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
) -> None:
    """SPDK Telemetry Collector - republish bdev I/O stats over OTLP."""
    if version:
        from spdk_telemetry import __version__
        console.print(f"SPDK Telemetry Collector v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
