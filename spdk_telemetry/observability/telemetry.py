"""
OpenTelemetry Provider Setup

Builds the two export pipelines the collector needs:

    MeterProvider  -> PeriodicExportingMetricReader -> OTLPMetricExporter ─┐
                                                                           ├─> OTel Collector (gRPC, insecure)
    TracerProvider -> BatchSpanProcessor            -> OTLPSpanExporter  ─┘

Both pipelines share one Resource (service.name=spdk-client) and one endpoint.

The providers are returned as an explicit ``Telemetry`` handle that the CLI
passes into the fetcher and the poll loop. Global registration still happens
by default so third-party instrumentation (and anything calling
``trace.get_tracer``) lands in the same pipelines.

FAILURE MODE:
If the collector endpoint is down, the exporters do NOT fail at construction:
gRPC channels connect lazily. Exports will fail in the background and the SDK
logs warnings; the poll loop keeps running. A ConfigurationError here means
the pipeline itself could not be built, and nothing downstream can work.
"""

import logging
import threading
import time
from typing import List, Optional

from opentelemetry import metrics, propagate, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from spdk_telemetry import __version__
from spdk_telemetry.config import DEFAULT_OTLP_ENDPOINT, DEFAULT_SERVICE_NAME, ConfigurationError

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "spdk-client"
METER_NAME = "spdk-client-meter"


class ShutdownError(Exception):
    """A pipeline failed to flush or stop. Logged, never raised to callers."""

    pass


def create_resource(service_name: str = DEFAULT_SERVICE_NAME, service_version: str = __version__) -> Resource:
    """
    Creates the Resource attached to every metric and span.

    Args:
        service_name: Value of the ``service.name`` attribute
        service_version: Value of the ``service.version`` attribute

    Returns:
        OpenTelemetry Resource object
    """
    return Resource(attributes={
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    })


class Telemetry:
    """
    Explicit handle on the metric and trace pipelines.

    Built once at startup and passed by reference to whatever needs a tracer
    or meter. ``shutdown`` is safe to call more than once.
    """

    def __init__(
        self,
        tracer_provider: TracerProvider,
        meter_provider: MeterProvider,
        propagator: Optional[TextMapPropagator] = None,
    ):
        self.tracer_provider = tracer_provider
        self.meter_provider = meter_provider
        self.propagator = propagator or TraceContextTextMapPropagator()
        self._shut_down = False

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def tracer(self, name: str = INSTRUMENTATION_NAME) -> trace.Tracer:
        return self.tracer_provider.get_tracer(name, __version__)

    def meter(self, name: str = METER_NAME) -> metrics.Meter:
        return self.meter_provider.get_meter(name, __version__)

    def register_global(self) -> None:
        """Install the providers and the W3C trace-context propagator process-wide."""
        trace.set_tracer_provider(self.tracer_provider)
        metrics.set_meter_provider(self.meter_provider)
        propagate.set_global_textmap(self.propagator)

    def shutdown(self, timeout_seconds: float = 1.0) -> bool:
        """
        Flush and stop both pipelines within one deadline.

        The flush and both provider shutdowns run on a worker thread that is
        joined against the deadline. The OTLP exporters retry with backoff
        while the collector is unreachable and do not honour the flush
        timeout themselves; a worker still running at the deadline is
        abandoned (it is a daemon) and reported as a ShutdownError.

        Failures are logged and reported through the return value only;
        shutdown runs at process exit, where raising would hide the real
        exit reason.

        Args:
            timeout_seconds: Total budget for flushing and stopping

        Returns:
            True if everything flushed and stopped cleanly
        """
        if self._shut_down:
            return True
        self._shut_down = True

        deadline = time.monotonic() + timeout_seconds
        errors: List[ShutdownError] = []

        worker = threading.Thread(
            target=self._stop_pipelines,
            args=(deadline, errors),
            name="telemetry-shutdown",
            daemon=True,
        )
        worker.start()
        worker.join(max(0.0, deadline - time.monotonic()))

        if worker.is_alive():
            error = ShutdownError(f"pipelines did not stop within {timeout_seconds}s")
            logger.error("Failed to shutdown telemetry: %s", error)
            return False

        if not errors:
            logger.info("Telemetry pipelines shut down")
        return not errors

    def _stop_pipelines(self, deadline: float, errors: List[ShutdownError]) -> None:
        def remaining_millis() -> float:
            return max(0.0, (deadline - time.monotonic()) * 1000)

        try:
            # Drain the batch queue first so TracerProvider.shutdown has nothing left to export
            if not self.tracer_provider.force_flush(timeout_millis=int(remaining_millis())):
                raise ShutdownError("timed out flushing spans")
            self.tracer_provider.shutdown()
        except Exception as e:
            errors.append(ShutdownError(str(e)))
            logger.error("Failed to shutdown trace exporter: %s", e)

        try:
            self.meter_provider.shutdown(timeout_millis=remaining_millis())
        except Exception as e:
            errors.append(ShutdownError(str(e)))
            logger.error("Failed to shutdown metric exporter: %s", e)


def init_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    otlp_endpoint: Optional[str] = None,
    export_interval_ms: int = 60000,
    register_global: bool = True,
) -> Telemetry:
    """
    Build the OTLP metric and trace pipelines.

    Usage:
        telemetry = init_telemetry("spdk-client", "otel-gw-collector:4317")
        try:
            ...
        finally:
            telemetry.shutdown(timeout_seconds=1.0)

    Args:
        service_name: ``service.name`` resource attribute
        otlp_endpoint: OTel Collector gRPC endpoint (host:port or URL)
        export_interval_ms: How often the periodic reader pushes metrics
        register_global: Also register providers and propagator process-wide

    Returns:
        Telemetry handle owning both providers

    Raises:
        ConfigurationError: If any part of either pipeline cannot be built
    """
    endpoint = otlp_endpoint or DEFAULT_OTLP_ENDPOINT
    meter_provider: Optional[MeterProvider] = None

    try:
        resource = create_resource(service_name)

        metric_exporter = OTLPMetricExporter(endpoint=endpoint, insecure=True)
        reader = PeriodicExportingMetricReader(metric_exporter, export_interval_millis=export_interval_ms)
        meter_provider = MeterProvider(
            resource=resource,
            metric_readers=[reader],
            shutdown_on_exit=False,
        )

        span_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        tracer_provider = TracerProvider(resource=resource, shutdown_on_exit=False)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    except Exception as e:
        if meter_provider is not None:
            # The reader thread is already running; stop it before giving up
            try:
                meter_provider.shutdown(timeout_millis=1000)
            except Exception as shutdown_error:
                logger.warning("Failed to stop partial metric pipeline: %s", shutdown_error)
        raise ConfigurationError(f"Failed to create telemetry pipelines: {e}") from e

    telemetry = Telemetry(tracer_provider, meter_provider, TraceContextTextMapPropagator())
    if register_global:
        telemetry.register_global()

    logger.info(f"Telemetry initialized: {service_name} -> {endpoint}")
    return telemetry
