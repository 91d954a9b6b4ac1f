"""
Gemini generateContent contract for window transcription.

- build_generate_content_request: framed WAV window -> JSON request body.
- extract_transcript_text: response body -> transcript ("" when no speech).
- GeminiClient: thin async wrapper over httpx for the POST itself.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from streaming.errors import MalformedResponseError, TranscriptionServiceError
from streaming.wav_container import WAV_MIME_TYPE

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MAX_OUTPUT_TOKENS = 64
DEFAULT_TRANSCRIBE_PROMPT = (
    "Transcribe the spoken English in this audio. Return only the text. "
    "If no speech is detected, return an empty string."
)


def build_generate_content_request(
    wav_bytes: bytes,
    prompt: str = DEFAULT_TRANSCRIBE_PROMPT,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> Dict[str, Any]:
    """
    Build the generateContent body for one audio window.

    Args:
        wav_bytes: Complete WAV file (header + PCM payload).
        prompt: Instruction sent alongside the audio.
        max_output_tokens: Output token ceiling; a window transcript is short.

    Returns:
        JSON-serializable dict with inline base64 audio, the prompt and a
        single-candidate generationConfig.
    """
    audio_b64 = base64.b64encode(wav_bytes).decode("ascii")
    return {
        "contents": [
            {
                "parts": [
                    {"inline_data": {"mime_type": WAV_MIME_TYPE, "data": audio_b64}},
                    {"text": prompt},
                ]
            }
        ],
        "generationConfig": {
            "candidateCount": 1,
            "maxOutputTokens": max_output_tokens,
        },
    }


def extract_transcript_text(response: Any) -> str:
    """
    Return candidates[0].content.parts[0].text, stripped.

    Missing candidates, content, parts or text mean "no speech" and give "".
    Raises MalformedResponseError if the body is not shaped like a
    generateContent response at all.
    """
    if not isinstance(response, dict):
        raise MalformedResponseError(f"Expected JSON object, got {type(response).__name__}")
    candidates = response.get("candidates")
    if candidates is None:
        return ""
    if not isinstance(candidates, list):
        raise MalformedResponseError("'candidates' is not a list")
    if not candidates:
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        raise MalformedResponseError("candidate is not an object")
    content = first.get("content") or {}
    if not isinstance(content, dict):
        raise MalformedResponseError("candidate 'content' is not an object")
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise MalformedResponseError("'parts' is not a list")
    if not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    if text is None:
        return ""
    if not isinstance(text, str):
        raise MalformedResponseError("part 'text' is not a string")
    return text.strip()


class GeminiClient:
    """
    Async client for models/{model}:generateContent.

    The httpx.AsyncClient is owned by the caller (one shared pool per process);
    timeouts are whatever that client was configured with.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_base: str = DEFAULT_API_BASE,
    ):
        self.http_client = http_client
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def post(self, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST a generateContent body and return the raw response, whatever its status.

        Raises:
            TranscriptionServiceError: the request could not be sent (transport
                failure, invalid URL from api_base/model, closed client).
        """
        params: Optional[Dict[str, str]] = {"key": self.api_key} if self.api_key else None
        try:
            return await self.http_client.post(self.url, params=params, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TranscriptionServiceError(f"Gemini API request failed: {e!r}") from e
        except RuntimeError as e:
            # httpx raises RuntimeError once the shared client has been closed
            raise TranscriptionServiceError(f"Gemini API client unavailable: {e}") from e

    async def generate_content(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a generateContent body and return the parsed JSON response.

        Raises:
            TranscriptionServiceError: request failure, non-2xx status, or a
                body that is not valid JSON.
        """
        response = await self.post(payload)
        if not response.is_success:
            raise TranscriptionServiceError(
                f"Gemini API returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise TranscriptionServiceError("Gemini API returned a non-JSON body") from e
