"""Monotonic per-bdev counters."""

import logging

from opentelemetry.metrics import Meter

from spdk_telemetry.models import DeviceStat

logger = logging.getLogger(__name__)

BYTES_READ_METRIC = "spdk/bdev/bytes_read"
READ_OPS_METRIC = "spdk/bdev/read_ops"
BDEV_NAME_ATTRIBUTE = "bdev.name"


class CounterRegistry:
    """
    Holds the collector's counters, created once per meter.

    Each ``record`` adds the device's reported value as-is. SPDK reports
    lifetime totals, so the downstream sum grows by the full total every
    cycle; no delta is computed against the previous poll.
    """

    def __init__(self, meter: Meter):
        self.bytes_read = meter.create_counter(
            BYTES_READ_METRIC,
            unit="By",
            description="Bytes read per bdev, as reported by bdev_get_iostat",
        )
        self.read_ops = meter.create_counter(
            READ_OPS_METRIC,
            unit="{operation}",
            description="Read operations per bdev, as reported by bdev_get_iostat",
        )

    def record(self, stat: DeviceStat) -> None:
        attributes = {BDEV_NAME_ATTRIBUTE: stat.name}
        self.bytes_read.add(stat.bytes_read, attributes)
        self.read_ops.add(stat.num_read_ops, attributes)
        logger.debug(
            "Recorded bdev counters",
            extra={"bdev": stat.name, "bytes_read": stat.bytes_read, "num_read_ops": stat.num_read_ops},
        )
