"""
Pytest configuration and fixtures for collector tests.

OTLP is replaced by the SDK's in-memory reader/exporter, and the SPDK server
by a stub ``requests`` transport adapter mounted on the fetcher's session.
"""

import json
from typing import Dict, List, Optional

import pytest
import requests
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from spdk_telemetry.observability.telemetry import Telemetry, create_resource
from spdk_telemetry.registry import BDEV_NAME_ATTRIBUTE


class StubSPDKAdapter(requests.adapters.BaseAdapter):
    """Answers every request with a canned reply, or raises ``error``."""

    def __init__(self, body=b"", status_code: int = 200, error: Optional[Exception] = None):
        super().__init__()
        self.replies = [body]
        self.status_code = status_code
        self.error = error
        self.requests: List[requests.PreparedRequest] = []

    def queue(self, *bodies) -> None:
        """Serve ``bodies`` in order, repeating the last one."""
        self.replies = list(bodies)

    def send(self, request, **kwargs):
        self.requests.append(request)
        if self.error is not None:
            raise self.error

        body = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if not isinstance(body, bytes):
            body = json.dumps(body).encode()

        response = requests.Response()
        response.status_code = self.status_code
        response.reason = "OK" if self.status_code < 400 else "Error"
        response._content = body
        response.headers["Content-Type"] = "application/json"
        response.url = request.url
        response.request = request
        response.encoding = "utf-8"
        return response

    def close(self):
        pass


def iostat_reply(*bdevs: Dict) -> Dict:
    """Build a bdev_get_iostat reply body."""
    return {"jsonrpc": "2.0", "id": 1, "result": {"tick_rate": 2300000000, "bdevs": list(bdevs)}}


def stub_session(adapter: StubSPDKAdapter) -> requests.Session:
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def counter_values(reader: InMemoryMetricReader, metric_name: str) -> Dict[str, int]:
    """Current cumulative value per bdev.name for one counter."""
    values: Dict[str, int] = {}
    data = reader.get_metrics_data()
    if data is None:
        return values

    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name != metric_name:
                    continue
                for point in metric.data.data_points:
                    values[point.attributes[BDEV_NAME_ATTRIBUTE]] = point.value
    return values


@pytest.fixture
def metric_reader():
    return InMemoryMetricReader()


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def telemetry(metric_reader, span_exporter):
    """Telemetry wired to in-memory pipelines, never registered globally."""
    resource = create_resource("spdk-client-test")
    tracer_provider = TracerProvider(resource=resource, shutdown_on_exit=False)
    tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[metric_reader],
        shutdown_on_exit=False,
    )

    telemetry = Telemetry(tracer_provider, meter_provider)
    yield telemetry

    instrumentor = RequestsInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.uninstrument()
    telemetry.shutdown(timeout_seconds=1.0)


@pytest.fixture
def malloc0():
    return {
        "name": "Malloc0",
        "bytes_read": 1024,
        "num_read_ops": 4,
        "bytes_written": 2048,
        "num_write_ops": 8,
        "read_latency_ticks": 1500,
        "write_latency_ticks": 3100,
    }
