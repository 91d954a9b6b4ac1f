"""
Relay transcription responses back to the connection that produced the audio.

A response is sent as {"type": "partial", "text": ...} only when it carries
non-empty text, the session is still open, and (with drop_stale) no newer
window of the same session has already been delivered. Every other outcome is
a silent drop from the client's point of view.
"""

import json
import logging
from typing import Any, Optional

from fastapi import WebSocketDisconnect

from streaming.errors import MalformedResponseError
from streaming.gemini_client import extract_transcript_text
from streaming.session_registry import Session

logger = logging.getLogger(__name__)

PARTIAL_EVENT = "partial"


def partial_event(text: str) -> str:
    """Serialize the outbound partial transcript event."""
    return json.dumps({"type": PARTIAL_EVENT, "text": text})


class ResponseRelay:
    """Turns transcription responses into outbound partial events."""

    def __init__(self, drop_stale: bool = True, metrics: Optional[Any] = None):
        """
        Args:
            drop_stale: Discard a response whose window is older than the last
                one delivered to the same session (prevents the transcript from
                rewinding when requests complete out of order).
            metrics: Optional module with record_partial_sent / record_dropped_response.
        """
        self.drop_stale = drop_stale
        self.metrics = metrics

    def _drop(self, session: Session, sequence: int, reason: str) -> bool:
        logger.debug("Dropping response #%d for %s: %s", sequence, session.session_id, reason)
        if self.metrics is not None:
            self.metrics.record_dropped_response(reason)
        return False

    async def deliver(self, session: Session, sequence: int, response: Any) -> bool:
        """
        Relay one response. Returns True if a partial event was sent.

        Never raises for malformed responses, closed sessions or send failures.
        """
        try:
            text = extract_transcript_text(response)
        except MalformedResponseError as e:
            logger.warning("Response parsing error for %s: %s", session.session_id, e)
            return self._drop(session, sequence, "malformed")
        if not text:
            return self._drop(session, sequence, "empty")
        if not session.is_open:
            return self._drop(session, sequence, "closed")

        async with session.send_lock:
            # Liveness and ordering are re-checked under the send lock
            if not session.is_open:
                return self._drop(session, sequence, "closed")
            if self.drop_stale and session.is_stale(sequence):
                return self._drop(session, sequence, "stale")
            try:
                await session.send(partial_event(text))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.info("Send to %s failed, dropping partial: %s", session.session_id, e)
                return self._drop(session, sequence, "closed")
            session.mark_delivered(sequence)

        if self.metrics is not None:
            self.metrics.record_partial_sent()
        return True
