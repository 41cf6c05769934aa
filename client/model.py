# client/model.py
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

DEFAULT_FAILURE_MESSAGE = "Video generation failed. No points were deducted."

TERMINAL_STATUSES = ("completed", "failed")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationJob(BaseModel):
    job_id: str
    owner_user_id: int
    submitted_at: datetime = Field(default_factory=_utcnow)


class Completed(BaseModel):
    kind: Literal["completed"] = "completed"
    job_id: str
    video_url: str
    new_point_balance: int
    points_deducted: int


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    job_id: str
    message: str = DEFAULT_FAILURE_MESSAGE
    new_point_balance: Optional[int] = None  # set when the server reported a refund / no charge


class Expired(BaseModel):
    """Only emitted when a give-up limit is configured on the backoff policy."""

    kind: Literal["expired"] = "expired"
    job_id: str
    attempts: int
    waited: float


JobEvent = Annotated[Union[Completed, Failed, Expired], Field(discriminator="kind")]


class PushMessage(BaseModel):
    """One `data:` payload on the video notification stream."""

    type: str
    job_id: Optional[str] = None
    video_id: Optional[str] = None
    status: Optional[str] = None
    video_url: Optional[str] = None
    new_balance: Optional[int] = None
    points_deducted: Optional[int] = None
    message: Optional[str] = None

    @property
    def correlation_id(self) -> Optional[str]:
        return self.job_id or self.video_id

    def to_event(self, job_id: str) -> Optional[Union[Completed, Failed]]:
        """
        Map the message to a terminal event for `job_id`.
        Returns None for other jobs and non-terminal types ("connected", ...).
        """
        if self.correlation_id != job_id:
            return None
        if self.type == "video_completed":
            return Completed(
                job_id=job_id,
                video_url=self.video_url or "",
                new_point_balance=self.new_balance or 0,
                points_deducted=self.points_deducted or 0,
            )
        if self.type == "video_failed":
            return Failed(
                job_id=job_id,
                message=self.message or DEFAULT_FAILURE_MESSAGE,
                new_point_balance=self.new_balance,
            )
        return None


class VideoStatus(BaseModel):
    """Response of GET /video-callback/status/{job_id}."""

    status: str
    video_id: Optional[str] = None
    video_url: Optional[str] = None
    new_balance: Optional[int] = None
    points_deducted: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_event(self, job_id: str) -> Optional[Union[Completed, Failed]]:
        # "pending" and the legacy "processing" both mean: keep waiting
        if self.status == "completed":
            return Completed(
                job_id=job_id,
                video_url=self.video_url or "",
                new_point_balance=self.new_balance or 0,
                points_deducted=self.points_deducted or 0,
            )
        if self.status == "failed":
            return Failed(
                job_id=job_id,
                message=self.message or DEFAULT_FAILURE_MESSAGE,
                new_point_balance=self.new_balance,
            )
        return None


class PointsBalance(BaseModel):
    points: int
    can_generate: bool = Field(alias="canGenerate")


class Preferences(BaseModel):
    store_url: Optional[str] = None
    n8n_webhook: Optional[str] = None
    n8n_social_webhook: Optional[str] = None
    has_store_credentials: bool = False

    @property
    def generation_enabled(self) -> bool:
        return bool(self.n8n_webhook)

    @property
    def publishing_enabled(self) -> bool:
        return bool(self.n8n_social_webhook)


class GenerationRequest(BaseModel):
    product: Dict[str, Any]
    prompt_config: Dict[str, Any]
    callback_url: Optional[str] = None
