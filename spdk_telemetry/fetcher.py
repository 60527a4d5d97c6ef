"""SPDK JSON-RPC client.

Fetches ``bdev_get_iostat`` over HTTP. The transport is instrumented so each
request shows up as a child span of whatever span is current when
``fetch()`` is called, and carries a ``traceparent`` header to the server.
"""

import logging
import time
from typing import Optional

import requests
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.trace import TracerProvider

from spdk_telemetry.config import DEFAULT_RPC_URL
from spdk_telemetry.models import DecodeError, FetchError, StatResponse
from spdk_telemetry.observability.telemetry import Telemetry

logger = logging.getLogger(__name__)

RPC_METHOD = "bdev_get_iostat"
RPC_REQUEST = {"id": 1, "method": RPC_METHOD}


class TransportError(FetchError):
    """The request could not be sent, or the server answered with a non-2xx status."""

    pass


class RpcError(FetchError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: Optional[int], message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


def instrument_transport(tracer_provider: TracerProvider) -> None:
    """Bind ``requests`` instrumentation to ``tracer_provider``.

    The instrumentor patches ``requests.Session`` process-wide, so it is
    re-bound to the most recently built provider.
    """
    instrumentor = RequestsInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        instrumentor.uninstrument()
    instrumentor.instrument(tracer_provider=tracer_provider)


class MetricsFetcher:
    """Polls one SPDK RPC endpoint for per-bdev I/O statistics."""

    def __init__(
        self,
        telemetry: Telemetry,
        rpc_url: str = DEFAULT_RPC_URL,
        username: str = "spdkuser",
        password: str = "spdkpass",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the fetcher.

        Args:
            telemetry: Pipelines the HTTP client spans are exported through.
            rpc_url: SPDK JSON-RPC HTTP endpoint.
            username: Basic-auth user.
            password: Basic-auth password.
            timeout: Request timeout in seconds. None blocks until the server answers.
            session: HTTP session to send through (tests mount stub adapters on it).
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._auth = (username, password)

        instrument_transport(telemetry.tracer_provider)

        logger.info(f"Initialized SPDK fetcher: url={self.rpc_url}, timeout={self.timeout}")

    def fetch(self) -> StatResponse:
        """Issue one ``bdev_get_iostat`` call.

        Must be called with the cycle span current so the HTTP span nests under it.

        Returns:
            Device statistics in server order.

        Raises:
            TransportError: If sending fails or the status is not 2xx.
            DecodeError: If the body cannot be read or parsed.
            RpcError: If the server returned a JSON-RPC error.
        """
        start_time = time.time()

        try:
            response = self.session.post(
                self.rpc_url,
                json=RPC_REQUEST,
                auth=self._auth,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ContentDecodingError) as e:
            raise DecodeError(f"Failed to read response body: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Failed to send request to {self.rpc_url}: {e}") from e

        # Anything outside 2xx, including redirects requests did not follow
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"SPDK RPC returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DecodeError(f"Failed to parse SPDK response: {e}") from e

        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            if isinstance(error, dict):
                raise RpcError(error.get("code"), str(error.get("message", "")))
            raise RpcError(None, str(error))

        stats = StatResponse.from_payload(payload)

        elapsed = time.time() - start_time
        logger.debug(f"Fetched {len(stats)} bdevs in {elapsed * 1000:.1f}ms")

        return stats
