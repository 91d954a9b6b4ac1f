"""
Session registry: connection id -> Session (sliding window + outbound channel).

The registry is the only structure touched by several connections at once, so
its map is guarded by a single lock. Each Session owns two independent locks:
the buffer's lock (inbound audio) and `send_lock` (outbound messages), so a
slow send never holds up appends.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, List, Optional

from streaming.audio_buffer import MAX_BUFFER_SIZE, SlidingWindowBuffer

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]


class Session:
    """State for one open connection, from accept to close."""

    def __init__(self, session_id: str, send: SendText, max_bytes: int = MAX_BUFFER_SIZE):
        self.session_id = session_id
        self.buffer = SlidingWindowBuffer(max_bytes=max_bytes)
        self.send = send
        self.send_lock = asyncio.Lock()
        self._open = True
        self._seq_lock = threading.Lock()
        self._last_dispatched = 0
        self._last_delivered = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        self._open = False

    def next_sequence(self) -> int:
        """Monotonic id for the next dispatched window of this session."""
        with self._seq_lock:
            self._last_dispatched += 1
            return self._last_dispatched

    @property
    def last_dispatched(self) -> int:
        return self._last_dispatched

    @property
    def last_delivered(self) -> int:
        return self._last_delivered

    def is_stale(self, sequence: int) -> bool:
        """True if a newer window's transcript was delivered, or the stream was reset after this window."""
        return sequence <= self._last_delivered

    def mark_delivered(self, sequence: int) -> None:
        with self._seq_lock:
            if sequence > self._last_delivered:
                self._last_delivered = sequence

    def mark_reset(self) -> None:
        """Treat every window dispatched so far as stale (new utterance boundary)."""
        with self._seq_lock:
            self._last_delivered = max(self._last_delivered, self._last_dispatched)

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"Session({self.session_id!r}, {state}, {self.buffer.size} bytes)"


class SessionRegistry:
    """Thread-safe id -> Session map with create / reset / destroy lifecycle."""

    def __init__(self, max_bytes: int = MAX_BUFFER_SIZE):
        self.max_bytes = max_bytes
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def on_connect(self, session_id: str, send: SendText) -> Optional[Session]:
        """
        Create a session with an empty window.

        Returns None (and keeps the existing session) if the id is already registered.
        """
        with self._lock:
            if session_id in self._sessions:
                logger.warning("Session %s already registered; ignoring duplicate connect", session_id)
                return None
            session = Session(session_id, send, max_bytes=self.max_bytes)
            self._sessions[session_id] = session
            count = len(self._sessions)
        logger.info("Client connected: %s (%d active)", session_id, count)
        return session

    def on_disconnect(self, session_id: str) -> Optional[Session]:
        """Remove the session and mark it closed so pending relays are dropped."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            count = len(self._sessions)
        if session is None:
            return None
        session.close()
        session.buffer.reset()
        logger.info("Client disconnected: %s (%d active)", session_id, count)
        return session

    def on_reset(self, session_id: str) -> bool:
        """Empty the session's window; no-op for unknown ids."""
        session = self.lookup(session_id)
        if session is None:
            return False
        session.buffer.reset()
        session.mark_reset()
        logger.debug("Session %s started new stream", session_id)
        return True

    def lookup(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
