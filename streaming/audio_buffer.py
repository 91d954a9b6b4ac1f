"""
Per-connection sliding window of raw audio for streaming transcription.

Keeps only the most recent `max_bytes` of 16 kHz 16-bit mono PCM. Every append
grows the buffer, then trims the oldest bytes if it went over the cap, and hands
back a copy of the whole window so the caller can dispatch it.
"""

import threading
import time
from typing import Optional

from streaming.wav_container import PCM16_MONO_16K, AudioFormat

SAMPLE_RATE = PCM16_MONO_16K.sample_rate
BYTES_PER_SAMPLE = PCM16_MONO_16K.bytes_per_sample
BYTES_PER_SECOND = PCM16_MONO_16K.byte_rate
DEFAULT_WINDOW_SECONDS = 4.0


def bytes_to_duration_ms(num_bytes: int) -> float:
    """Convert raw audio byte count to duration in milliseconds."""
    if num_bytes <= 0:
        return 0.0
    return (num_bytes / BYTES_PER_SECOND) * 1000.0


def duration_ms_to_bytes(ms: float) -> int:
    """Convert duration in ms to byte count for 16 kHz 16-bit mono."""
    return int((ms / 1000.0) * BYTES_PER_SECOND)


def window_bytes(window_seconds: float, fmt: AudioFormat = PCM16_MONO_16K) -> int:
    """
    Byte cap for a window: sample_rate * bytes_per_sample * seconds (mono),
    rounded down to whole sample frames so trimming never splits a sample.
    """
    raw = int(fmt.sample_rate * fmt.bytes_per_sample * window_seconds)
    return raw - raw % fmt.block_align


MAX_BUFFER_SIZE = window_bytes(DEFAULT_WINDOW_SECONDS)


class SlidingWindowBuffer:
    """
    Bounded append-only byte store with front-trimming.

    - append() / reset() / snapshot() are atomic with respect to each other
      (one lock per buffer).
    - After any append, len(buffer) <= max_bytes and the contents are the tail
      of everything appended since the last reset.
    """

    def __init__(self, max_bytes: int = MAX_BUFFER_SIZE):
        """
        Args:
            max_bytes: Window cap in bytes (e.g. 128000 for 4 s of 16 kHz 16-bit mono).
        """
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._total_appended = 0
        self._trimmed = 0
        self._created_at = time.monotonic()

    def append(self, chunk: bytes) -> Optional[bytes]:
        """
        Append a raw audio chunk and trim the front back down to max_bytes.

        Returns a copy of the post-trim window, or None if the chunk was empty.
        """
        if not chunk:
            return None
        with self._lock:
            self._buffer.extend(chunk)
            self._total_appended += len(chunk)
            overflow = len(self._buffer) - self.max_bytes
            if overflow > 0:
                del self._buffer[:overflow]
                self._trimmed += overflow
            return bytes(self._buffer)

    def reset(self) -> None:
        """Empty the window (new utterance boundary or session end)."""
        with self._lock:
            self._buffer.clear()

    def snapshot(self) -> bytes:
        """Return a copy of the current window; later appends do not affect it."""
        with self._lock:
            return bytes(self._buffer)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def __len__(self) -> int:
        return self.size

    def duration_ms(self) -> float:
        """Current buffered duration in milliseconds."""
        return bytes_to_duration_ms(self.size)

    def total_appended_bytes(self) -> int:
        """Total bytes ever appended (for stats)."""
        return self._total_appended

    def trimmed_bytes(self) -> int:
        """Total bytes discarded from the front by the window cap."""
        return self._trimmed

    def age_seconds(self) -> float:
        """Seconds since buffer was created."""
        return time.monotonic() - self._created_at
