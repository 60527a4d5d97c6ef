"""
SPDK Telemetry Collector
Polls SPDK's JSON-RPC I/O statistics and republishes them as OpenTelemetry metrics and traces.
"""

__version__ = "0.1.0"
__author__ = "Storage Observability Team"
