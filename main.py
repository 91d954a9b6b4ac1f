"""
Live audio transcription API.
WebSocket /ws-audio: raw PCM in, sliding 4 s window, Gemini transcription,
partial transcripts out.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import metrics.streaming_metrics as streaming_metrics
from streaming.audio_buffer import window_bytes
from streaming.errors import TranscriptionServiceError
from streaming.gemini_client import GeminiClient
from streaming.response_relay import ResponseRelay
from streaming.session_registry import SessionRegistry
from streaming.transcription_dispatcher import TranscriptionDispatcher
from streaming.websocket_server import build_ws_audio_handler

logger = logging.getLogger(__name__)


def create_app(http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Wire registry, Gemini client, relay and dispatcher into a FastAPI app.

    Args:
        http_client: Shared client for the transcription API. If omitted, one is
            created here and closed on shutdown.
    """
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=config.GEMINI_TIMEOUT_SECONDS)

    registry = SessionRegistry(max_bytes=window_bytes(config.WS_WINDOW_SECONDS))
    gemini = GeminiClient(
        http_client,
        api_key=config.GEMINI_API_KEY,
        model=config.GEMINI_MODEL,
        api_base=config.GEMINI_API_BASE,
    )
    relay = ResponseRelay(drop_stale=config.WS_DROP_STALE_RESPONSES, metrics=streaming_metrics)
    dispatcher = TranscriptionDispatcher(
        gemini,
        relay,
        prompt=config.TRANSCRIBE_PROMPT,
        max_output_tokens=config.GEMINI_MAX_OUTPUT_TOKENS,
        metrics=streaming_metrics,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not config.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY is not set; transcription requests will fail")
        logger.info(
            "Streaming ready: model=%s window=%.1fs (%d bytes)",
            config.GEMINI_MODEL, config.WS_WINDOW_SECONDS, registry.max_bytes,
        )
        yield
        await dispatcher.aclose()
        if owns_client:
            await http_client.aclose()

    app = FastAPI(title="Live Audio Transcription API", lifespan=lifespan)
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def health_check():
        return {"status": "ok", "active_sessions": len(registry)}

    app.websocket("/ws-audio")(
        build_ws_audio_handler(
            registry,
            dispatcher,
            get_metrics=streaming_metrics,
            idle_timeout=config.WS_IDLE_TIMEOUT_SECONDS,
        )
    )

    @app.get("/metrics/streaming", include_in_schema=False)
    def metrics_streaming():
        """Return JSON snapshot of streaming metrics: connections, dispatches, failures, drops, latency."""
        return streaming_metrics.get_snapshot()

    @app.post("/api/gemini/proxy")
    async def gemini_proxy(body: dict = Body(...)):
        """
        Forward a generateContent body to Gemini with the server-side API key.
        Gemini's status and JSON body are passed through unchanged, error responses included.
        """
        try:
            upstream = await gemini.post(body)
            content = upstream.json()
        except (TranscriptionServiceError, ValueError) as e:
            logger.error("Gemini proxy error: %s", e)
            return JSONResponse(status_code=500, content={"error": "Failed to process transcription"})
        return JSONResponse(status_code=upstream.status_code, content=content)

    return app


logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=config.HOST, port=config.PORT)
