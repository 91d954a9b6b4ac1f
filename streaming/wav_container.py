"""
RIFF/WAVE container framing for raw PCM windows.

The transcription service sniffs the audio format from these bytes, so the
44-byte header must be byte-exact: little-endian integers, format tag 1
(linear PCM), one "fmt " chunk of size 16, followed by a single "data" chunk.
"""

import struct
from dataclasses import dataclass
from typing import Tuple

WAV_MIME_TYPE = "audio/wav"
WAV_HEADER_SIZE = 44
WAVE_FORMAT_PCM = 1

# RIFF, size, WAVE, "fmt ", fmt size, tag, channels, rate, byte rate, align, bits, "data", size
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


@dataclass(frozen=True)
class AudioFormat:
    """Immutable description of the incoming PCM stream."""

    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def block_align(self) -> int:
        return self.channels * self.bytes_per_sample

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align


# 16 kHz mono, 16-bit = 32000 bytes/sec
PCM16_MONO_16K = AudioFormat()


def raw_to_wav(raw: bytes, fmt: AudioFormat = PCM16_MONO_16K) -> bytes:
    """Wrap raw PCM in a canonical 44-byte WAV header."""
    n = len(raw)
    header = _HEADER.pack(
        b"RIFF",
        36 + n,
        b"WAVE",
        b"fmt ",
        16,
        WAVE_FORMAT_PCM,
        fmt.channels,
        fmt.sample_rate,
        fmt.byte_rate,
        fmt.block_align,
        fmt.bits_per_sample,
        b"data",
        n,
    )
    return header + bytes(raw)


def parse_wav(data: bytes) -> Tuple[AudioFormat, bytes]:
    """
    Split a WAV produced by raw_to_wav back into (format, payload).

    Only the canonical single-chunk layout is accepted; anything else raises
    ValueError.
    """
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")
    (
        riff, riff_size, wave, fmt_id, fmt_size, tag, channels,
        sample_rate, byte_rate, block_align, bits, data_id, data_size,
    ) = _HEADER.unpack_from(data)
    if riff != b"RIFF" or wave != b"WAVE" or fmt_id != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE header")
    if fmt_size != 16 or tag != WAVE_FORMAT_PCM:
        raise ValueError(f"Unsupported WAV format chunk (size={fmt_size}, tag={tag})")
    payload = data[WAV_HEADER_SIZE:]
    if data_size != len(payload) or riff_size != 36 + data_size:
        raise ValueError("WAV size fields do not match payload length")
    fmt = AudioFormat(sample_rate=sample_rate, channels=channels, bits_per_sample=bits)
    if fmt.byte_rate != byte_rate or fmt.block_align != block_align:
        raise ValueError("WAV byte rate / block align inconsistent with format")
    return fmt, bytes(payload)
