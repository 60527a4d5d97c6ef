"""
Structured Logging Configuration

The collector writes two streams:
- stdout: the per-device report lines (``Bdev: ..., BytesRead: ..., NumReadOps: ...``)
- stderr: JSON log records, one per line

Keeping logs off stdout means the report lines can be piped or grepped
without filtering out log noise.

Every record logged inside a poll cycle carries the trace_id/span_id of the
``FetchSPDKMetrics`` span, so a log line can be joined to its trace in the backend.
"""

import logging
import sys
from typing import Any, Dict

from opentelemetry import trace
from pythonjsonlogger import jsonlogger

SENSITIVE_KEYS = ("password", "auth", "authorization", "api_key", "secret")

_HANDLER_NAME = "spdk-telemetry-json"


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that injects trace_id and span_id into every log.

    Example output:
        {"timestamp": "...", "level": "ERROR", "logger": "spdk_telemetry.collector",
         "msg": "Poll cycle failed", "trace_id": "4bf92f...", "span_id": "00f067..."}
    """

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        ctx = span.get_span_context()
        if ctx.is_valid:
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')

        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)

        self.scrub_sensitive_data(log_record)

    def scrub_sensitive_data(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        """Mask RPC credentials passed as ``extra`` fields."""
        for key in SENSITIVE_KEYS:
            if key in log_record:
                log_record[key] = "***REDACTED***"

        return log_record


def setup_logging(level: str = "INFO", service_name: str = "spdk-client") -> None:
    """
    Configure structured JSON logging on stderr.

    Safe to call more than once: the handler is installed only the first time,
    later calls just update the level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name to include in logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)

    formatter = CorrelationJsonFormatter(
        fmt='%(timestamp)s %(level)s %(logger)s %(message)s',
        rename_fields={'message': 'msg'},
        static_fields={'service': service_name},
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Silence noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)

    root_logger.debug(f"Structured logging initialized for {service_name}")
