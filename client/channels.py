# client/channels.py
import json
import logging
from typing import AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from config.settings import settings

from .model import PushMessage, VideoStatus
from .sse import SSEDecoder

logger = logging.getLogger(__name__)


class ChannelError(RuntimeError):
    """The server answered, but not with something the channel can use."""


class SSEPushChannel:
    """
    Push side: GET /video-callback/stream as text/event-stream.
    One stream per owner; messages for other jobs come through as well.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.transport = transport
        # seconds, from the server's last `retry:` field
        self.retry_delay: Optional[float] = None
        # sent back as Last-Event-ID when reconnecting
        self.last_event_id: Optional[str] = None

    async def messages(self, owner_user_id: int) -> AsyncIterator[PushMessage]:
        url = f"{self.base_url}/video-callback/stream"
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "X-User-Id": str(owner_user_id),
        }
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        # no read timeout: the stream stays idle while the video renders
        timeout = httpx.Timeout(self.timeout, read=None)
        decoder = SSEDecoder()

        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            async with client.stream("GET", url, headers=headers) as r:
                if r.status_code != 200:
                    body = (await r.aread()).decode("utf-8", errors="replace")
                    raise ChannelError(f"stream returned {r.status_code}: {body[:300]}")

                logger.info("[PushChannel] Connected to %s for user %s", url, owner_user_id)
                async for line in r.aiter_lines():
                    sse = decoder.decode(line)
                    if decoder.retry is not None:
                        self.retry_delay = decoder.retry / 1000
                    if sse is not None and sse.id is not None:
                        self.last_event_id = sse.id
                    if sse is None or sse.event != "message":
                        continue

                    try:
                        message = PushMessage.model_validate(json.loads(sse.data))
                    except (ValueError, ValidationError) as e:
                        logger.debug("[PushChannel] Skipping malformed message %r: %s", sse.data[:200], e)
                        continue
                    yield message


class StatusPullChannel:
    """Pull side: GET /video-callback/status/{job_id}?user_id=..."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.transport = transport

    async def fetch(self, job_id: str, owner_user_id: int) -> VideoStatus:
        url = f"{self.base_url}/video-callback/status/{job_id}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(url, params={"user_id": owner_user_id})
            r.raise_for_status()
            try:
                data = r.json()
            except ValueError as e:
                raise ChannelError(f"status response is not JSON: {r.text[:200]}") from e

        logger.debug("[PullChannel] Status for %s: %s", job_id, data)
        try:
            return VideoStatus.model_validate(data)
        except ValidationError as e:
            raise ChannelError(f"unexpected status payload: {data!r}") from e
