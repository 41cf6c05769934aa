import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env next to this file
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _optional_float(name: str, default: Optional[str] = None) -> Optional[float]:
    raw = os.getenv(name, default)
    if raw is None or not raw.strip():
        return None
    return float(raw)


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Settings:
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://127.0.0.1:8000/api")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

    # Pull fallback: 5s, 10s, 15s ... capped at 60s
    POLL_INITIAL_DELAY: float = float(os.getenv("POLL_INITIAL_DELAY", "5"))
    POLL_STEP: float = float(os.getenv("POLL_STEP", "5"))
    POLL_MAX_DELAY: float = float(os.getenv("POLL_MAX_DELAY", "60"))
    # None = poll until a terminal status arrives
    POLL_MAX_ATTEMPTS: Optional[int] = _optional_int("POLL_MAX_ATTEMPTS")
    POLL_MAX_ELAPSED: Optional[float] = _optional_float("POLL_MAX_ELAPSED")

    # EventSource default reconnect delay (seconds), empty = never reconnect
    SSE_RECONNECT_DELAY: Optional[float] = _optional_float("SSE_RECONNECT_DELAY", "3")
    SSE_KEEPALIVE: float = float(os.getenv("SSE_KEEPALIVE", "15"))

    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))

    VIDEO_COST_POINTS: int = int(os.getenv("VIDEO_COST_POINTS", "10"))
    VIDEO_URL_TEMPLATE: str = os.getenv(
        "VIDEO_URL_TEMPLATE", "https://rrss.navegatel.es/vids/{video_id}.mp4"
    )


settings = Settings()
