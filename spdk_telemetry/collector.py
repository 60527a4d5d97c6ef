"""
Poll loop: fetch SPDK stats, record counters, sleep, repeat.

One cycle:
    1. start span "FetchSPDKMetrics" in a fresh root context
    2. fetch bdev_get_iostat (HTTP span nests under the cycle span)
    3. per bdev: add to both counters, print a report line
    4. end span
then wait ``interval`` seconds on a stoppable timer.

The loop is strictly sequential, so cycles never overlap and the counters
are touched from this thread only. There is no jitter correction: a cycle
takes fetch + record time plus the full interval.
"""

import logging
import threading
from typing import Callable, Optional, Protocol

from opentelemetry import context as otel_context

from spdk_telemetry.fetcher import MetricsFetcher
from spdk_telemetry.models import FetchError
from spdk_telemetry.observability.telemetry import Telemetry
from spdk_telemetry.registry import CounterRegistry

logger = logging.getLogger(__name__)

CYCLE_SPAN_NAME = "FetchSPDKMetrics"
DEFAULT_INTERVAL_SECONDS = 5.0


class Timer(Protocol):
    """Time source the loop sleeps on."""

    @property
    def stopped(self) -> bool:
        ...

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if stopped meanwhile."""
        ...

    def stop(self) -> None:
        ...


class StopTimer:
    """
    Real-time timer that can be interrupted.

    ``stop()`` only sets an event, so it is safe to call from a signal
    handler or another thread; a sleeping ``wait`` returns immediately.
    """

    def __init__(self):
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def wait(self, seconds: float) -> bool:
        return self._stop_event.wait(seconds)

    def stop(self) -> None:
        self._stop_event.set()


class FailFast:
    """Default failure policy: any fetch error ends the loop."""

    def __call__(self, error: FetchError) -> None:
        raise error


class SkipCycle:
    """Log the failed cycle and carry on at the next scheduled poll. Not a retry."""

    def __init__(self):
        self.failures = 0

    def __call__(self, error: FetchError) -> None:
        self.failures += 1
        logger.error(
            f"Poll cycle failed, skipping: {error}",
            extra={"error_type": type(error).__name__, "failures": self.failures},
        )


FailurePolicy = Callable[[FetchError], None]


class Collector:
    """Drives the fetch → record → sleep cycle."""

    def __init__(
        self,
        fetcher: MetricsFetcher,
        registry: CounterRegistry,
        telemetry: Telemetry,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        failure_policy: Optional[FailurePolicy] = None,
        printer: Callable[[str], None] = print,
    ):
        self.fetcher = fetcher
        self.registry = registry
        self.tracer = telemetry.tracer()
        self.interval = interval
        self.failure_policy = failure_policy or FailFast()
        self.printer = printer
        self._busy = False

    @property
    def busy(self) -> bool:
        """True while a cycle is fetching or recording."""
        return self._busy

    def run_once(self) -> int:
        """
        Run a single poll cycle.

        Returns:
            Number of bdevs recorded

        Raises:
            FetchError: If the fetch fails. Nothing is recorded for the cycle
                and the span ends with ERROR status.
        """
        self._busy = True
        try:
            # Empty context: each cycle is its own trace
            with self.tracer.start_as_current_span(CYCLE_SPAN_NAME, context=otel_context.Context()) as span:
                stats = self.fetcher.fetch()

                for stat in stats:
                    self.registry.record(stat)
                    self.printer(
                        f"Bdev: {stat.name}, BytesRead: {stat.bytes_read}, NumReadOps: {stat.num_read_ops}"
                    )

                span.set_attribute("spdk.bdev.count", len(stats))
        finally:
            self._busy = False

        return len(stats)

    def run(self, timer: Optional[Timer] = None) -> int:
        """
        Poll until the timer is stopped.

        A fetch error is handed to the failure policy; if the policy
        re-raises, the loop ends with that error.

        Args:
            timer: Sleep source; a fresh StopTimer if omitted

        Returns:
            Number of cycles run
        """
        timer = timer or StopTimer()
        cycles = 0

        logger.info(f"Collector started: interval={self.interval}s, rpc_url={self.fetcher.rpc_url}")

        while not timer.stopped:
            cycles += 1
            try:
                self.run_once()
            except FetchError as e:
                self.failure_policy(e)

            if timer.wait(self.interval):
                break

        logger.info(f"Collector stopped after {cycles} cycles")
        return cycles
