"""
Real-time streaming layer.

- audio_buffer: Per-connection sliding window of raw PCM.
- wav_container: WAV framing of a window for the transcription service.
- session_registry: connection id -> Session lifecycle.
- transcription_dispatcher / response_relay: async Gemini round trip and partial events.
- websocket_server: WebSocket handler for /ws-audio (import separately to avoid pulling FastAPI).
"""

from streaming.audio_buffer import (
    MAX_BUFFER_SIZE,
    SlidingWindowBuffer,
    bytes_to_duration_ms,
    duration_ms_to_bytes,
    window_bytes,
)
from streaming.session_registry import Session, SessionRegistry
from streaming.wav_container import PCM16_MONO_16K, AudioFormat, parse_wav, raw_to_wav

__all__ = [
    "MAX_BUFFER_SIZE",
    "SlidingWindowBuffer",
    "bytes_to_duration_ms",
    "duration_ms_to_bytes",
    "window_bytes",
    "Session",
    "SessionRegistry",
    "PCM16_MONO_16K",
    "AudioFormat",
    "parse_wav",
    "raw_to_wav",
]
