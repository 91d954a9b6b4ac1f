"""
Tests for /ws-audio: control messages, audio frames, handler lifecycle, and an
end-to-end run through the FastAPI app with a mocked Gemini endpoint.
"""

import asyncio
import base64
import json
import time
import unittest
from unittest.mock import MagicMock, patch

import httpx
from fastapi.testclient import TestClient

import config
from streaming.session_registry import SessionRegistry
from streaming.websocket_server import (
    build_ws_audio_handler,
    handle_audio_frame,
    handle_control_message,
)
from streaming.wav_container import parse_wav

ONE_SECOND = 32000


def echo_len_handler(request: httpx.Request) -> httpx.Response:
    """Mock Gemini: answer with the PCM length of the window it was sent."""
    body = json.loads(request.content)
    data = base64.b64decode(body["contents"][0]["parts"][0]["inline_data"]["data"])
    text = f"{len(parse_wav(data)[1])} bytes"
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


class FakeWebSocket:
    """Minimal stand-in for fastapi.WebSocket driven by a list of ASGI messages."""

    def __init__(self, messages, block_when_empty=False):
        self.messages = list(messages)
        self.block_when_empty = block_when_empty
        self.accepted = False
        self.closed_code = None
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def receive(self):
        if self.messages:
            return self.messages.pop(0)
        if self.block_when_empty:
            await asyncio.Event().wait()
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_text(self, text):
        self.sent.append(text)

    async def close(self, code=1000, reason=None):
        self.closed_code = code


def text_msg(obj):
    payload = obj if isinstance(obj, str) else json.dumps(obj)
    return {"type": "websocket.receive", "text": payload}


def bytes_msg(data):
    return {"type": "websocket.receive", "bytes": data}


class TestControlMessages(unittest.TestCase):
    def setUp(self):
        self.registry = SessionRegistry(max_bytes=100)
        self.session = self.registry.on_connect("s1", MagicMock())
        self.session.buffer.append(b"previous utterance")

    def test_start_resets_buffer(self):
        self.assertEqual(handle_control_message(self.registry, "s1", '{"type": "start", "sampleRate": 16000}'), "start")
        self.assertEqual(self.session.buffer.snapshot(), b"")

    def test_unknown_type_ignored(self):
        self.assertIsNone(handle_control_message(self.registry, "s1", '{"type": "stop"}'))
        self.assertEqual(self.session.buffer.snapshot(), b"previous utterance")

    def test_malformed_json_ignored(self):
        with self.assertLogs("streaming.websocket_server", level="WARNING"):
            self.assertIsNone(handle_control_message(self.registry, "s1", "{not json"))
        self.assertEqual(self.session.buffer.snapshot(), b"previous utterance")

    def test_non_object_ignored(self):
        self.assertIsNone(handle_control_message(self.registry, "s1", '["start"]'))
        self.assertIsNone(handle_control_message(self.registry, "s1", '"start"'))
        self.assertEqual(self.session.buffer.snapshot(), b"previous utterance")

    def test_start_for_unknown_session_is_noop(self):
        self.assertEqual(handle_control_message(self.registry, "ghost", '{"type": "start"}'), "start")


class TestAudioFrames(unittest.TestCase):
    def setUp(self):
        self.registry = SessionRegistry(max_bytes=8)
        self.dispatcher = MagicMock()
        self.session = self.registry.on_connect("s1", MagicMock())

    def test_one_dispatch_per_append_with_post_trim_window(self):
        handle_audio_frame(self.registry, self.dispatcher, "s1", b"abcd")
        handle_audio_frame(self.registry, self.dispatcher, "s1", b"efgh")
        handle_audio_frame(self.registry, self.dispatcher, "s1", b"ij")
        windows = [c.args[1] for c in self.dispatcher.dispatch.call_args_list]
        self.assertEqual(windows, [b"abcd", b"abcdefgh", b"cdefghij"])
        for c in self.dispatcher.dispatch.call_args_list:
            self.assertIs(c.args[0], self.session)

    def test_unknown_session_dropped_silently(self):
        self.assertIsNone(handle_audio_frame(self.registry, self.dispatcher, "ghost", b"abcd"))
        self.dispatcher.dispatch.assert_not_called()

    def test_frame_after_disconnect_dropped(self):
        self.registry.on_disconnect("s1")
        self.assertIsNone(handle_audio_frame(self.registry, self.dispatcher, "s1", b"abcd"))
        self.dispatcher.dispatch.assert_not_called()

    def test_empty_frame_not_dispatched(self):
        self.assertIsNone(handle_audio_frame(self.registry, self.dispatcher, "s1", b""))
        self.dispatcher.dispatch.assert_not_called()


class TestWsAudioHandler(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = SessionRegistry(max_bytes=6)
        self.dispatcher = MagicMock()
        self.metrics = MagicMock()

    def build(self, **kwargs):
        return build_ws_audio_handler(
            self.registry, self.dispatcher, get_metrics=self.metrics,
            new_session_id=lambda: "fixed-id", **kwargs,
        )

    async def test_builder_returns_async_handler(self):
        self.assertTrue(asyncio.iscoroutinefunction(self.build()))

    async def test_messages_processed_in_order(self):
        ws = FakeWebSocket([
            bytes_msg(b"zzzz"),
            text_msg({"type": "start"}),
            bytes_msg(b"abc"),
            text_msg("garbage"),
            bytes_msg(b"defg"),
        ])
        seen = []
        self.dispatcher.dispatch.side_effect = lambda session, window: seen.append(window)
        await self.build()(ws)

        self.assertTrue(ws.accepted)
        self.assertEqual(seen, [b"zzzz", b"abc", b"bcdefg"])
        self.assertEqual(len(self.registry), 0)
        self.metrics.record_connection_open.assert_called_once()
        self.metrics.record_connection_close.assert_called_once()

    async def test_session_registered_while_open(self):
        observed = []

        def dispatch(session, window):
            observed.append(self.registry.lookup("fixed-id") is session)

        self.dispatcher.dispatch.side_effect = dispatch
        await self.build()(FakeWebSocket([bytes_msg(b"ab")]))
        self.assertEqual(observed, [True])
        self.assertNotIn("fixed-id", self.registry)

    async def test_idle_timeout_closes_connection(self):
        ws = FakeWebSocket([], block_when_empty=True)
        await self.build(idle_timeout=0.01)(ws)
        self.assertEqual(ws.closed_code, 1000)
        self.assertEqual(len(self.registry), 0)

    async def test_duplicate_session_id_rejected(self):
        self.registry.on_connect("fixed-id", MagicMock())
        ws = FakeWebSocket([bytes_msg(b"ab")])
        await self.build()(ws)
        self.assertEqual(ws.closed_code, 1011)
        self.dispatcher.dispatch.assert_not_called()
        self.assertIn("fixed-id", self.registry)

    async def test_unexpected_error_still_cleans_up(self):
        self.dispatcher.dispatch.side_effect = ValueError("boom")
        with self.assertLogs("streaming.websocket_server", level="ERROR"):
            await self.build()(FakeWebSocket([bytes_msg(b"ab")]))
        self.assertEqual(len(self.registry), 0)
        self.metrics.record_connection_close.assert_called_once()


class TestEndToEnd(unittest.TestCase):
    """connect -> start -> 5 one-second chunks (cap is 4 s) -> disconnect."""

    def make_client(self, handler, drop_stale=False):
        import main

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with patch.object(config, "WS_DROP_STALE_RESPONSES", drop_stale), \
                patch.object(config, "WS_WINDOW_SECONDS", 4.0), \
                patch.object(config, "GEMINI_API_KEY", "test-key"):
            app = main.create_app(http_client=http)
        return app, TestClient(app)

    def wait_for_no_sessions(self, registry):
        for _ in range(200):
            if len(registry) == 0:
                return
            time.sleep(0.01)
        self.fail("session was not removed after disconnect")

    def test_sliding_window_stream(self):
        app, client = self.make_client(echo_len_handler)
        chunks = [bytes([i]) * ONE_SECOND for i in range(1, 6)]
        with client:
            registry = app.state.registry
            with client.websocket_connect("/ws-audio") as ws:
                ws.send_text(json.dumps({"type": "start"}))
                for chunk in chunks[:3]:
                    ws.send_bytes(chunk)
                texts = {ws.receive_json()["text"] for _ in range(3)}
                self.assertEqual(texts, {"32000 bytes", "64000 bytes", "96000 bytes"})

                (session_id,) = registry.session_ids()
                session = registry.lookup(session_id)
                self.assertEqual(session.buffer.snapshot(), b"".join(chunks[:3]))

                ws.send_bytes(chunks[3])
                ws.send_bytes(chunks[4])
                events = [ws.receive_json() for _ in range(2)]
                self.assertEqual(events, [{"type": "partial", "text": "128000 bytes"}] * 2)
                window = session.buffer.snapshot()
                self.assertEqual(len(window), 128000)
                self.assertEqual(window, b"".join(chunks[1:]))
                self.assertEqual(session.last_dispatched, 5)

            self.wait_for_no_sessions(registry)
            self.assertFalse(session.is_open)

    def test_no_speech_sends_nothing(self):
        def handler(request):
            # First window (200 bytes) is silence, second (400 bytes) has speech
            body = json.loads(request.content)
            data = base64.b64decode(body["contents"][0]["parts"][0]["inline_data"]["data"])
            text = "done" if len(parse_wav(data)[1]) == 400 else " "
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

        app, client = self.make_client(handler, drop_stale=True)
        with client:
            with client.websocket_connect("/ws-audio") as ws:
                ws.send_bytes(b"\x00\x00" * 100)
                ws.send_bytes(b"\x00\x00" * 100)
                self.assertEqual(ws.receive_json(), {"type": "partial", "text": "done"})

    def test_health_and_metrics(self):
        app, client = self.make_client(echo_len_handler)
        with client:
            self.assertEqual(client.get("/").json(), {"status": "ok", "active_sessions": 0})
            snapshot = client.get("/metrics/streaming").json()
            for key in ("active_connections", "dispatch_count", "transcription_failure_count",
                        "dropped_responses", "avg_latency_ms", "p95_latency_ms"):
                self.assertIn(key, snapshot)

    def test_gemini_proxy_forwards_body(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params.get("key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": []})

        app, client = self.make_client(handler)
        with client:
            resp = client.post("/api/gemini/proxy", json={"contents": [{"parts": [{"text": "hi"}]}]})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"candidates": []})
        self.assertEqual(seen["key"], "test-key")
        self.assertEqual(seen["body"], {"contents": [{"parts": [{"text": "hi"}]}]})

    def test_gemini_proxy_non_json_failure(self):
        app, client = self.make_client(lambda request: httpx.Response(502, text="bad gateway"))
        with client:
            resp = client.post("/api/gemini/proxy", json={"contents": []})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Failed to process transcription"})

    def test_gemini_proxy_passes_upstream_error_through(self):
        error = {"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}}
        app, client = self.make_client(lambda request: httpx.Response(400, json=error))
        with client:
            resp = client.post("/api/gemini/proxy", json={"contents": []})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), error)


if __name__ == "__main__":
    unittest.main()
