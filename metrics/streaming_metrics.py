"""
Streaming observability metrics.

Thread-safe counters and latency samples for /ws-audio.
Exposed via GET /metrics/streaming (JSON snapshot).
Used by the dispatcher, relay and websocket handler.
"""

import threading
from collections import deque
from typing import Any, Dict

# ----- Shared state (module-level for singleton behavior) -----
_lock = threading.Lock()
_active_connections = 0
_latency_samples: deque = deque(maxlen=1000)  # last N round-trip ms values for avg/p95
_dispatch_count = 0
_transcription_failure_count = 0
_partials_sent = 0
_dropped_responses: Dict[str, int] = {"closed": 0, "stale": 0, "empty": 0, "malformed": 0}


def record_connection_open() -> None:
    """Call when a WebSocket connection is accepted."""
    with _lock:
        global _active_connections
        _active_connections += 1


def record_connection_close() -> None:
    """Call when a WebSocket connection closes."""
    with _lock:
        global _active_connections
        _active_connections = max(0, _active_connections - 1)


def record_dispatch() -> None:
    """Call once per window sent to the transcription service."""
    with _lock:
        global _dispatch_count
        _dispatch_count += 1


def record_latency_ms(total_ms: float) -> None:
    """Record one transcription round-trip latency sample."""
    with _lock:
        _latency_samples.append(total_ms)


def record_transcription_failure() -> None:
    """Call when the transcription request fails (network, status, body)."""
    with _lock:
        global _transcription_failure_count
        _transcription_failure_count += 1


def record_partial_sent() -> None:
    with _lock:
        global _partials_sent
        _partials_sent += 1


def record_dropped_response(reason: str) -> None:
    """Call when a response is not relayed: closed, stale, empty or malformed."""
    with _lock:
        _dropped_responses[reason] = _dropped_responses.get(reason, 0) + 1


def reset() -> None:
    """Zero all counters (tests)."""
    global _active_connections, _dispatch_count, _transcription_failure_count, _partials_sent
    with _lock:
        _active_connections = 0
        _dispatch_count = 0
        _transcription_failure_count = 0
        _partials_sent = 0
        _latency_samples.clear()
        for reason in _dropped_responses:
            _dropped_responses[reason] = 0


def get_snapshot() -> Dict[str, Any]:
    """
    Return a JSON-serializable snapshot of streaming metrics.
    Used by GET /metrics/streaming.
    """
    with _lock:
        samples = list(_latency_samples)
        snapshot = {
            "active_connections": _active_connections,
            "dispatch_count": _dispatch_count,
            "transcription_failure_count": _transcription_failure_count,
            "partials_sent": _partials_sent,
            "dropped_responses": dict(_dropped_responses),
        }
    n = len(samples)
    if n == 0:
        avg_latency_ms = None
        p95_latency_ms = None
    else:
        avg_latency_ms = round(sum(samples) / n, 2)
        sorted_s = sorted(samples)
        idx = max(0, int(0.95 * n) - 1)
        p95_latency_ms = round(sorted_s[idx], 2)
    snapshot.update({
        "avg_latency_ms": avg_latency_ms,
        "p95_latency_ms": p95_latency_ms,
        "latency_sample_count": n,
    })
    return snapshot
