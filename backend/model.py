# backend/model.py
from pydantic import BaseModel
from typing import Optional, Literal, Dict, Any

Status = Literal["pending", "completed", "failed"]


class GenerateRequest(BaseModel):
    product: Dict[str, Any]
    prompt_config: Dict[str, Any]
    callback_url: Optional[str] = None


class GenerateResponse(BaseModel):
    success: bool
    message: str
    video_id: str


class ConfirmRequest(BaseModel):
    """Callback sent by the N8N workflow once the render finished."""
    user_id: int
    video_id: str
    status: str
    points_to_deduct: int = 10


class ConfirmResponse(BaseModel):
    success: bool
    message: str
    video_id: str
    status: Status
    video_url: Optional[str] = None
    points_deducted: int = 0
    new_balance: Optional[int] = None


class JobRecord(BaseModel):
    """What is stored under job:{video_id}."""
    status: Status
    user_id: int
    video_url: Optional[str] = None
    points_deducted: int = 0
    new_balance: Optional[int] = None
    message: Optional[str] = None
    completed_at: Optional[str] = None


class Transaction(BaseModel):
    """One entry of a user's points ledger; negative amounts are charges."""
    type: str
    description: str
    amount: int
    video_id: Optional[str] = None
    created_at: Optional[str] = None


class VideoStatusResponse(BaseModel):
    video_id: str
    user_id: int
    status: Status
    video_url: Optional[str] = None
    points_deducted: Optional[int] = None
    new_balance: Optional[int] = None
    completed_at: Optional[str] = None
    message: str


class PointsResponse(BaseModel):
    points: int
    canGenerate: bool


class PreferencesIn(BaseModel):
    store_url: Optional[str] = None
    client_key: Optional[str] = None
    client_secret: Optional[str] = None
    n8n_webhook: Optional[str] = None
    n8n_social_webhook: Optional[str] = None


class PreferencesOut(BaseModel):
    store_url: Optional[str] = None
    n8n_webhook: Optional[str] = None
    n8n_social_webhook: Optional[str] = None
    has_store_credentials: bool = False


class Notification(BaseModel):
    """Payload pushed on the SSE stream."""
    type: Literal["connected", "video_completed", "video_failed"]
    job_id: Optional[str] = None
    video_id: Optional[str] = None
    status: Optional[str] = None
    video_url: Optional[str] = None
    points_deducted: Optional[int] = None
    new_balance: Optional[int] = None
    message: Optional[str] = None
