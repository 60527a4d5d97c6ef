"""
Data model for SPDK I/O statistics.

One ``bdev_get_iostat`` reply becomes a ``StatResponse`` holding a
``DeviceStat`` per block device. Both live for a single poll cycle.
"""

from dataclasses import dataclass, fields
from typing import Any, Iterator, List


class FetchError(Exception):
    """Base class for everything that can go wrong while polling SPDK."""

    pass


class DecodeError(FetchError):
    """Raised when an RPC reply cannot be decoded into device statistics."""

    pass


@dataclass(frozen=True)
class DeviceStat:
    """
    Per-bdev counter snapshot.

    All counters are cumulative since the device started, so they only grow
    unless the device is reset.
    """

    name: str
    bytes_read: int = 0
    num_read_ops: int = 0
    bytes_written: int = 0
    num_write_ops: int = 0
    read_latency_ticks: int = 0
    write_latency_ticks: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "DeviceStat":
        """
        Build a DeviceStat from one entry of ``result.bdevs``.

        Absent fields decode as zero values; unknown keys are ignored.

        Raises:
            DecodeError: If the entry is not an object or a counter is not a
                non-negative integer.
        """
        if not isinstance(data, dict):
            raise DecodeError(f"bdev entry must be an object, got {type(data).__name__}")

        name = data.get("name", "")
        if not isinstance(name, str):
            raise DecodeError(f"bdev name must be a string, got {name!r}")

        counters = {}
        for f in fields(cls):
            if f.name == "name":
                continue
            value = data.get(f.name, 0)
            # bool is an int subclass; JSON true/false is not a counter
            if isinstance(value, bool) or not isinstance(value, int):
                raise DecodeError(f"bdev {name!r}: {f.name} must be an integer, got {value!r}")
            if value < 0:
                raise DecodeError(f"bdev {name!r}: {f.name} must be non-negative, got {value}")
            counters[f.name] = value

        return cls(name=name, **counters)


@dataclass(frozen=True)
class StatResponse:
    """Ordered device list from one RPC reply, in server order."""

    bdevs: List[DeviceStat]

    def __iter__(self) -> Iterator[DeviceStat]:
        return iter(self.bdevs)

    def __len__(self) -> int:
        return len(self.bdevs)

    @classmethod
    def from_payload(cls, payload: Any) -> "StatResponse":
        """
        Parse ``{"result": {"bdevs": [...]}}``.

        A null ``result`` or ``bdevs`` decodes as no devices.
        """
        if not isinstance(payload, dict):
            raise DecodeError(f"RPC reply must be an object, got {type(payload).__name__}")
        if "result" not in payload:
            raise DecodeError("RPC reply has no 'result' object")

        result = payload["result"]
        if result is None:
            return cls(bdevs=[])
        if not isinstance(result, dict):
            raise DecodeError(f"'result' must be an object, got {type(result).__name__}")

        bdevs = result.get("bdevs")
        if bdevs is None:
            bdevs = []
        if not isinstance(bdevs, list):
            raise DecodeError(f"'result.bdevs' must be a list, got {type(bdevs).__name__}")

        return cls(bdevs=[DeviceStat.from_dict(entry) for entry in bdevs])
