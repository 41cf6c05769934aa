# client/api.py
import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .model import GenerationJob, GenerationRequest, PointsBalance, Preferences

logger = logging.getLogger(__name__)


class SubmissionError(RuntimeError):
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class VideoApiClient:
    """Calls made by the browser side of WooVideo, as one user."""

    def __init__(
        self,
        user_id: int,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_id = user_id
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"X-User-Id": str(self.user_id)},
        )

    async def submit_generation(
        self,
        product: Dict[str, Any],
        prompt_config: Dict[str, Any],
        callback_url: Optional[str] = None,
    ) -> GenerationJob:
        """
        POST /video-callback/generate.
        Returns the job to hand to the notifier, raises SubmissionError otherwise.
        """
        payload = GenerationRequest(product=product, prompt_config=prompt_config, callback_url=callback_url)

        async with self._client() as client:
            r = await client.post("/video-callback/generate", json=payload.model_dump())

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code >= 400:
            reason = data.get("detail") or data.get("error") or f"Error {r.status_code}: {r.reason_phrase}"
            logger.warning("[ApiClient] Generation rejected (%s): %s", r.status_code, reason)
            raise SubmissionError(str(reason), status_code=r.status_code)

        job_id = data.get("video_id")
        if not data.get("success", True) or not job_id:
            reason = data.get("message") or f"Server did not return a video_id: {data}"
            raise SubmissionError(reason, status_code=r.status_code)

        logger.info("[ApiClient] Got job_id: %s", job_id)
        return GenerationJob(job_id=job_id, owner_user_id=self.user_id)

    async def check_points(self) -> PointsBalance:
        async with self._client() as client:
            r = await client.get("/video-callback/check-points")
            r.raise_for_status()
            return PointsBalance.model_validate(r.json())

    async def get_preferences(self) -> Preferences:
        async with self._client() as client:
            r = await client.get("/preferences")
            r.raise_for_status()
            return Preferences.model_validate(r.json())
