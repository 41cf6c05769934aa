import logging
from typing import Dict, Any

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)


async def send_generation_to_n8n(webhook_url: str, payload: Dict[str, Any]) -> None:
    """
    Hand a generation request to the user's N8N workflow.
    The workflow answers later through POST /video-callback/confirm.
    """
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT) as client:
        r = await client.post(webhook_url, json=payload)

        if r.status_code >= 400:
            logger.error("[N8N] Webhook returned %s: %s", r.status_code, r.text[:500])

        r.raise_for_status()
        logger.info("[N8N] Sent video %s to workflow", payload.get("video_id"))


def build_video_url(video_id: str) -> str:
    """Public URL the workflow uploads the rendered video to."""
    return settings.VIDEO_URL_TEMPLATE.format(video_id=video_id)
