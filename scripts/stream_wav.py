"""
Smoke test for /ws-audio: stream a 16 kHz mono 16-bit WAV (or silence) in
real-time sized chunks and print every partial transcript received.

Usage:
    python scripts/stream_wav.py [path/to/audio.wav] [--url ws://localhost:8080/ws-audio]
"""
import argparse
import asyncio
import json
import wave

import websockets

CHUNK_MS = 250
BYTES_PER_SECOND = 32000


def load_pcm(path: str) -> bytes:
    with wave.open(path, "rb") as w:
        if w.getframerate() != 16000 or w.getnchannels() != 1 or w.getsampwidth() != 2:
            raise SystemExit(
                f"{path}: expected 16 kHz mono 16-bit, got "
                f"{w.getframerate()} Hz, {w.getnchannels()} ch, {w.getsampwidth() * 8}-bit"
            )
        return w.readframes(w.getnframes())


async def stream(url: str, pcm: bytes, linger: float) -> None:
    chunk_bytes = BYTES_PER_SECOND * CHUNK_MS // 1000
    async with websockets.connect(url) as ws:
        print(f"Connected to {url}")

        async def printer():
            async for message in ws:
                event = json.loads(message)
                print(f"[{event.get('type')}] {event.get('text')}")

        reader = asyncio.create_task(printer())
        await ws.send(json.dumps({"type": "start", "sampleRate": 16000}))
        for i in range(0, len(pcm), chunk_bytes):
            await ws.send(pcm[i:i + chunk_bytes])
            await asyncio.sleep(CHUNK_MS / 1000)
        await asyncio.sleep(linger)
        reader.cancel()
    print("Connection closed")


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("wav", nargs="?", help="16 kHz mono 16-bit WAV; 3 s of silence if omitted")
    parser.add_argument("--url", default="ws://localhost:8080/ws-audio")
    parser.add_argument("--linger", type=float, default=3.0, help="Seconds to wait for late partials")
    args = parser.parse_args()

    pcm = load_pcm(args.wav) if args.wav else b"\x00\x00" * 16000 * 3
    asyncio.run(stream(args.url, pcm, args.linger))


if __name__ == "__main__":
    main()
