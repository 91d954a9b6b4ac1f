"""
Production configuration via environment variables.
Load with python-dotenv; no hardcoded API keys or secrets.
"""
import os

from dotenv import load_dotenv

# Load .env if present (no-op in production where env is set by orchestrator)
load_dotenv()


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean env var ("1", "true", "yes" are truthy)."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


# ----- Server -----
PORT = int(os.environ.get("PORT", "8080"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ----- Transcription service (Gemini generateContent) -----
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_API_BASE = os.environ.get(
    "GEMINI_API_BASE",
    "https://generativelanguage.googleapis.com/v1beta",
)
GEMINI_TIMEOUT_SECONDS = float(os.environ.get("GEMINI_TIMEOUT_SECONDS", "30"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.environ.get("GEMINI_MAX_OUTPUT_TOKENS", "64"))
# Empty means streaming.gemini_client.DEFAULT_TRANSCRIBE_PROMPT
TRANSCRIBE_PROMPT = os.environ.get("TRANSCRIBE_PROMPT", "")

# ----- Streaming (4 s sliding window of 16 kHz mono 16-bit PCM = 128000 bytes) -----
WS_WINDOW_SECONDS = float(os.environ.get("WS_WINDOW_SECONDS", "4"))
WS_IDLE_TIMEOUT_SECONDS = float(os.environ.get("WS_IDLE_TIMEOUT_SECONDS", "300"))
# Drop responses for windows older than the last one relayed to the client
WS_DROP_STALE_RESPONSES = env_flag("WS_DROP_STALE_RESPONSES", True)

if WS_WINDOW_SECONDS <= 0:
    raise ValueError("WS_WINDOW_SECONDS must be positive")
if GEMINI_MAX_OUTPUT_TOKENS <= 0:
    raise ValueError("GEMINI_MAX_OUTPUT_TOKENS must be positive")

# ----- CORS (production: set to specific origins) -----
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
def get_cors_origins() -> list:
    """Return list of allowed CORS origins from env."""
    if CORS_ORIGINS == "*":
        return ["*"]
    return [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
