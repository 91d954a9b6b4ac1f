"""
Observability and streaming metrics.
"""

from metrics.streaming_metrics import (
    get_snapshot,
    record_connection_open,
    record_connection_close,
    record_dispatch,
    record_latency_ms,
    record_transcription_failure,
    record_partial_sent,
    record_dropped_response,
)

__all__ = [
    "get_snapshot",
    "record_connection_open",
    "record_connection_close",
    "record_dispatch",
    "record_latency_ms",
    "record_transcription_failure",
    "record_partial_sent",
    "record_dropped_response",
]
