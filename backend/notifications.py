# backend/notifications.py

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from config.settings import settings

from .model import Notification
from .utils import format_sse

logger = logging.getLogger(__name__)


class NotificationHub:
    """
    Open SSE streams per user. A user may have several tabs open; every
    notification goes to all of them and each client filters by job id.
    """

    def __init__(self, keepalive: Optional[float] = None, retry_ms: Optional[int] = None):
        self.keepalive = keepalive if keepalive is not None else settings.SSE_KEEPALIVE
        self.retry_ms = retry_ms
        self._connections: Dict[int, List[asyncio.Queue]] = {}

    def connect(self, user_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._connections.setdefault(user_id, []).append(queue)
        logger.info("[Hub] User %s connected. Total connections: %d", user_id, len(self._connections[user_id]))
        return queue

    def disconnect(self, user_id: int, queue: asyncio.Queue) -> None:
        queues = self._connections.get(user_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._connections[user_id]
        logger.info("[Hub] User %s disconnected", user_id)

    def connection_count(self, user_id: int) -> int:
        return len(self._connections.get(user_id, []))

    def notify(self, user_id: int, payload: Notification) -> int:
        queues = self._connections.get(user_id, [])
        if not queues:
            logger.warning("[Hub] No open streams for user %s, %s not pushed", user_id, payload.type)
            return 0
        for queue in queues:
            queue.put_nowait(payload)
        logger.info("[Hub] Sent %s to %d stream(s) of user %s", payload.type, len(queues), user_id)
        return len(queues)

    async def stream(self, user_id: int, queue: asyncio.Queue) -> AsyncIterator[str]:
        """SSE frames for one connection; unregisters it when the client goes away."""
        try:
            hello = Notification(type="connected", message="Connected to the video stream")
            yield format_sse(hello.model_dump(exclude_none=True), retry=self.retry_ms)
            while True:
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=self.keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(payload.model_dump(exclude_none=True))
        finally:
            self.disconnect(user_id, queue)
