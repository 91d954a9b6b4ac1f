"""
Fire-and-forget dispatch of sliding windows to the transcription service.

Every successful append produces exactly one dispatch with the post-trim
window. dispatch() frames and encodes the window synchronously, then spawns an
asyncio task for the network round trip so the receive loop never waits on it.
Requests for the same session may overlap and finish in any order; there is no
queue, de-duplication or cancellation of superseded windows.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Set

from streaming.errors import TranscriptionServiceError
from streaming.gemini_client import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TRANSCRIBE_PROMPT,
    GeminiClient,
    build_generate_content_request,
)
from streaming.response_relay import ResponseRelay
from streaming.session_registry import Session
from streaming.wav_container import PCM16_MONO_16K, AudioFormat, raw_to_wav

logger = logging.getLogger(__name__)


class TranscriptionDispatcher:
    """Frames windows, sends them to Gemini, and hands responses to the relay."""

    def __init__(
        self,
        client: GeminiClient,
        relay: ResponseRelay,
        prompt: str = DEFAULT_TRANSCRIBE_PROMPT,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        audio_format: AudioFormat = PCM16_MONO_16K,
        metrics: Optional[Any] = None,
    ):
        self.client = client
        self.relay = relay
        self.prompt = prompt or DEFAULT_TRANSCRIBE_PROMPT
        self.max_output_tokens = max_output_tokens
        self.audio_format = audio_format
        self.metrics = metrics
        self._pending: Set[asyncio.Task] = set()

    def build_request(self, window: bytes) -> Dict[str, Any]:
        """Frame a raw PCM window as WAV and wrap it in a generateContent body."""
        wav_bytes = raw_to_wav(window, self.audio_format)
        return build_generate_content_request(wav_bytes, self.prompt, self.max_output_tokens)

    def dispatch(self, session: Session, window: bytes) -> asyncio.Task:
        """
        Start transcribing `window` for `session` without waiting for the result.

        Must be called from the event loop thread. Returns the spawned task.
        """
        sequence = session.next_sequence()
        payload = self.build_request(window)
        task = asyncio.create_task(
            self._transcribe_and_relay(session, sequence, payload, len(window)),
            name=f"transcribe-{session.session_id}-{sequence}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        if self.metrics is not None:
            self.metrics.record_dispatch()
        return task

    async def _transcribe_and_relay(
        self,
        session: Session,
        sequence: int,
        payload: Dict[str, Any],
        window_len: int,
    ) -> bool:
        t0 = time.perf_counter()
        try:
            response = await self.client.generate_content(payload)
        except TranscriptionServiceError as e:
            logger.warning(
                "Transcription failed for %s (window #%d, %d bytes): %s",
                session.session_id, sequence, window_len, e,
            )
            if self.metrics is not None:
                self.metrics.record_transcription_failure()
            return False
        except Exception:
            logger.exception(
                "Unexpected error transcribing %s (window #%d)", session.session_id, sequence,
            )
            if self.metrics is not None:
                self.metrics.record_transcription_failure()
            return False
        if self.metrics is not None:
            self.metrics.record_latency_ms(round((time.perf_counter() - t0) * 1000))
        try:
            return await self.relay.deliver(session, sequence, response)
        except Exception:
            logger.exception("Unexpected error relaying to %s (window #%d)", session.session_id, sequence)
            return False

    @property
    def pending_count(self) -> int:
        """Number of in-flight transcription requests."""
        return len(self._pending)

    async def wait_idle(self) -> None:
        """Wait until every in-flight request has finished (tests, graceful shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding requests."""
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
