import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def gen_job_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clean_video_id(video_id: str) -> str:
    """N8N sometimes reports the file name instead of the id."""
    video_id = video_id.strip()
    if video_id.endswith(".mp4"):
        return video_id[: -len(".mp4")]
    return video_id


def format_sse(data: Dict[str, Any], event: Optional[str] = None, retry: Optional[int] = None) -> str:
    """
    Encode one Server-Sent Events frame.
    `data` is JSON on a single line, so no multi-line splitting is needed.
    """
    lines = []
    if retry is not None:
        lines.append(f"retry: {retry}")
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, ensure_ascii=False)}")
    return "\n".join(lines) + "\n\n"
