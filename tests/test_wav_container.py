"""
Tests for WAV framing of PCM windows: byte-exact header, header parsing.
"""

import struct
import unittest

from streaming.wav_container import (
    PCM16_MONO_16K,
    WAV_HEADER_SIZE,
    AudioFormat,
    parse_wav,
    raw_to_wav,
)


class TestAudioFormat(unittest.TestCase):
    def test_default_format(self):
        self.assertEqual(PCM16_MONO_16K.sample_rate, 16000)
        self.assertEqual(PCM16_MONO_16K.channels, 1)
        self.assertEqual(PCM16_MONO_16K.bits_per_sample, 16)
        self.assertEqual(PCM16_MONO_16K.block_align, 2)
        self.assertEqual(PCM16_MONO_16K.byte_rate, 32000)

    def test_immutable(self):
        with self.assertRaises(AttributeError):
            PCM16_MONO_16K.sample_rate = 8000


class TestRawToWav(unittest.TestCase):
    def test_header_bytes_exact(self):
        pcm = b"\x01\x02\x03\x04"
        wav = raw_to_wav(pcm)
        expected = (
            b"RIFF" + struct.pack("<I", 40) + b"WAVE"
            + b"fmt " + struct.pack("<I", 16)
            + struct.pack("<H", 1)        # linear PCM
            + struct.pack("<H", 1)        # mono
            + struct.pack("<I", 16000)
            + struct.pack("<I", 32000)
            + struct.pack("<H", 2)
            + struct.pack("<H", 16)
            + b"data" + struct.pack("<I", 4)
        )
        self.assertEqual(len(expected), WAV_HEADER_SIZE)
        self.assertEqual(wav, expected + pcm)

    def test_empty_payload(self):
        wav = raw_to_wav(b"")
        self.assertEqual(len(wav), WAV_HEADER_SIZE)
        self.assertEqual(wav[4:8], struct.pack("<I", 36))
        self.assertEqual(wav[40:44], b"\x00\x00\x00\x00")

    def test_little_endian_sizes(self):
        pcm = b"\x00" * 128000
        wav = raw_to_wav(pcm)
        self.assertEqual(wav[4:8], (128036).to_bytes(4, "little"))
        self.assertEqual(wav[40:44], (128000).to_bytes(4, "little"))

    def test_parse_recovers_format_and_payload(self):
        for pcm in (b"", b"\x7f", b"\x00\xff" * 1000, bytes(range(256))):
            fmt, payload = parse_wav(raw_to_wav(pcm))
            self.assertEqual(fmt, PCM16_MONO_16K)
            self.assertEqual(payload, pcm)

    def test_other_format(self):
        stereo = AudioFormat(sample_rate=44100, channels=2, bits_per_sample=16)
        fmt, payload = parse_wav(raw_to_wav(b"\x00" * 8, stereo))
        self.assertEqual(fmt.byte_rate, 44100 * 4)
        self.assertEqual(fmt.block_align, 4)
        self.assertEqual(payload, b"\x00" * 8)


class TestParseWavRejects(unittest.TestCase):
    def test_too_short(self):
        with self.assertRaises(ValueError):
            parse_wav(b"RIFF")

    def test_bad_magic(self):
        wav = bytearray(raw_to_wav(b"\x00\x00"))
        wav[0:4] = b"RIFX"
        with self.assertRaises(ValueError):
            parse_wav(bytes(wav))

    def test_truncated_payload(self):
        wav = raw_to_wav(b"\x00" * 10)
        with self.assertRaises(ValueError):
            parse_wav(wav[:-2])


if __name__ == "__main__":
    unittest.main()
