# backend/app.py

import logging
from typing import List

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from config.settings import settings
from .model import (
    ConfirmRequest,
    ConfirmResponse,
    GenerateRequest,
    GenerateResponse,
    JobRecord,
    Notification,
    PointsResponse,
    PreferencesIn,
    PreferencesOut,
    Transaction,
    VideoStatusResponse,
)
from .n8n_client import build_video_url, send_generation_to_n8n
from .notifications import NotificationHub
from .store import JobStore, get_redis_client
from .utils import clean_video_id, gen_job_id, utc_now_iso

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
logger = logging.getLogger(__name__)

FAILED_MESSAGE = "Video generation failed. No points were deducted."

app = FastAPI(title="WooVideo Notification Service")

# SSE connections live in this process
notification_hub = NotificationHub()


async def get_store() -> JobStore:
    return JobStore(await get_redis_client())


def get_hub() -> NotificationHub:
    return notification_hub


def current_user_id(x_user_id: int = Header(...)) -> int:
    return x_user_id


def _status_message(record: JobRecord) -> str:
    if record.message:
        return record.message
    if record.status == "completed":
        return "Video completed successfully"
    if record.status == "failed":
        return "Video failed during generation"
    return "Video is being processed"


@app.get("/api/health")
async def health(store: JobStore = Depends(get_store)):
    try:
        await store.ping()
        return {"ok": True}
    except Exception as e:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})


# ---------- Notifications ----------
@app.get("/api/video-callback/stream")
async def stream(user_id: int = Depends(current_user_id), hub: NotificationHub = Depends(get_hub)):
    # register before returning so nothing sent in between is lost
    queue = hub.connect(user_id)
    return StreamingResponse(
        hub.stream(user_id, queue),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@app.get("/api/video-callback/status/{video_id}", response_model=VideoStatusResponse)
async def video_status(video_id: str, user_id: int = Query(...), store: JobStore = Depends(get_store)):
    record = await store.get_job(video_id)
    if record is None:
        return VideoStatusResponse(
            video_id=video_id,
            user_id=user_id,
            status="pending",
            message="Video is being processed",
        )

    if record.user_id != user_id:
        raise HTTPException(status_code=404, detail="Video not found")

    return VideoStatusResponse(
        video_id=video_id,
        user_id=user_id,
        status=record.status,
        video_url=record.video_url,
        points_deducted=record.points_deducted,
        new_balance=record.new_balance,
        completed_at=record.completed_at,
        message=_status_message(record),
    )


# ---------- Generation ----------
@app.get("/api/video-callback/check-points", response_model=PointsResponse)
async def check_points(user_id: int = Depends(current_user_id), store: JobStore = Depends(get_store)):
    points = await store.get_points(user_id)
    return PointsResponse(points=points, canGenerate=points >= settings.VIDEO_COST_POINTS)


@app.post("/api/video-callback/generate", response_model=GenerateResponse)
async def generate(
    req: GenerateRequest,
    user_id: int = Depends(current_user_id),
    store: JobStore = Depends(get_store),
):
    if not req.product or not req.prompt_config:
        raise HTTPException(status_code=400, detail="product and prompt_config are required")

    points = await store.get_points(user_id)
    if points < settings.VIDEO_COST_POINTS:
        raise HTTPException(
            status_code=400,
            detail=f"Not enough points to generate a video: need {settings.VIDEO_COST_POINTS}, have {points}",
        )

    video_id = gen_job_id()
    await store.save_job(video_id, JobRecord(status="pending", user_id=user_id))

    prefs = await store.get_preferences(user_id)
    webhook_url = prefs.get("n8n_webhook")
    if webhook_url:
        payload = {
            "user_id": user_id,
            "video_id": video_id,
            "product": req.product,
            "prompt_config": req.prompt_config,
            "callback_url": req.callback_url,
            "timestamp": utc_now_iso(),
        }
        try:
            await send_generation_to_n8n(webhook_url, payload)
        except httpx.HTTPError as e:
            logger.error("Could not hand video %s to N8N: %s", video_id, e)
            await store.save_job(
                video_id,
                JobRecord(
                    status="failed",
                    user_id=user_id,
                    new_balance=points,
                    message=FAILED_MESSAGE,
                    completed_at=utc_now_iso(),
                ),
            )
            raise HTTPException(status_code=502, detail="Could not reach the N8N webhook")

    logger.info("Video %s submitted for user %s", video_id, user_id)
    return GenerateResponse(success=True, message="Video generation started", video_id=video_id)


def _already_processed(video_id: str, user_id: int, record: JobRecord) -> ConfirmResponse:
    if record.user_id != user_id:
        raise HTTPException(status_code=404, detail="Video not found")
    # N8N retried the callback; do not charge twice
    return ConfirmResponse(
        success=True,
        message="Callback already processed",
        video_id=video_id,
        status=record.status,
        video_url=record.video_url,
        points_deducted=record.points_deducted,
        new_balance=record.new_balance,
    )


@app.post("/api/video-callback/confirm", response_model=ConfirmResponse)
async def confirm(
    req: ConfirmRequest,
    store: JobStore = Depends(get_store),
    hub: NotificationHub = Depends(get_hub),
):
    """
    Called by N8N when the render finished. Charges the user on success,
    stores the outcome for the status endpoint and pushes it on the stream.
    """
    video_id = clean_video_id(req.video_id)
    if not video_id:
        raise HTTPException(status_code=400, detail="video_id is required")

    logger.info("Callback received: user=%s video=%s status=%s", req.user_id, video_id, req.status)

    existing = await store.get_job(video_id)
    if existing is not None and existing.status != "pending":
        return _already_processed(video_id, req.user_id, existing)

    if not await store.claim_job(video_id):
        # N8N delivered the same callback twice and the other copy is settling it
        existing = await store.get_job(video_id)
        if existing is not None and existing.status != "pending":
            return _already_processed(video_id, req.user_id, existing)
        raise HTTPException(status_code=409, detail="Callback already being processed")

    if req.status in ("success", "completed"):
        new_balance = await store.deduct_points(req.user_id, req.points_to_deduct)
        if new_balance is None:
            await store.release_job(video_id)
            points = await store.get_points(req.user_id)
            raise HTTPException(
                status_code=400,
                detail=f"User does not have enough points: need {req.points_to_deduct}, have {points}",
            )

        await store.add_transaction(
            req.user_id,
            Transaction(
                type="penalizacion",
                description=f"Generación de video {video_id} - {req.points_to_deduct} puntos",
                amount=-req.points_to_deduct,
                video_id=video_id,
                created_at=utc_now_iso(),
            ),
        )
        video_url = build_video_url(video_id)
        await store.save_job(
            video_id,
            JobRecord(
                status="completed",
                user_id=req.user_id,
                video_url=video_url,
                points_deducted=req.points_to_deduct,
                new_balance=new_balance,
                completed_at=utc_now_iso(),
            ),
        )
        hub.notify(
            req.user_id,
            Notification(
                type="video_completed",
                job_id=video_id,
                video_id=video_id,
                status="success",
                video_url=video_url,
                points_deducted=req.points_to_deduct,
                new_balance=new_balance,
                message="Your video has been generated!",
            ),
        )
        logger.info("Video %s done, user %s charged %d, balance %d", video_id, req.user_id, req.points_to_deduct, new_balance)
        return ConfirmResponse(
            success=True,
            message="Points deducted",
            video_id=video_id,
            status="completed",
            video_url=video_url,
            points_deducted=req.points_to_deduct,
            new_balance=new_balance,
        )

    balance = await store.get_points(req.user_id)
    await store.save_job(
        video_id,
        JobRecord(
            status="failed",
            user_id=req.user_id,
            new_balance=balance,
            message=FAILED_MESSAGE,
            completed_at=utc_now_iso(),
        ),
    )
    hub.notify(
        req.user_id,
        Notification(
            type="video_failed",
            job_id=video_id,
            video_id=video_id,
            status="failed",
            points_deducted=0,
            new_balance=balance,
            message=FAILED_MESSAGE,
        ),
    )
    logger.info("Video %s failed for user %s, nothing charged", video_id, req.user_id)
    return ConfirmResponse(
        success=True,
        message="Video failed, no points were deducted",
        video_id=video_id,
        status="failed",
        new_balance=balance,
    )


@app.get("/api/transactions", response_model=List[Transaction])
async def list_transactions(user_id: int = Depends(current_user_id), store: JobStore = Depends(get_store)):
    return await store.get_transactions(user_id)


# ---------- Preferences ----------
def _public_preferences(prefs: dict) -> PreferencesOut:
    return PreferencesOut(
        store_url=prefs.get("store_url"),
        n8n_webhook=prefs.get("n8n_webhook"),
        n8n_social_webhook=prefs.get("n8n_social_webhook"),
        has_store_credentials=bool(prefs.get("client_key") and prefs.get("client_secret")),
    )


@app.get("/api/preferences", response_model=PreferencesOut)
async def get_preferences(user_id: int = Depends(current_user_id), store: JobStore = Depends(get_store)):
    return _public_preferences(await store.get_preferences(user_id))


@app.put("/api/preferences", response_model=PreferencesOut)
async def update_preferences(
    req: PreferencesIn,
    user_id: int = Depends(current_user_id),
    store: JobStore = Depends(get_store),
):
    prefs = await store.get_preferences(user_id)
    prefs.update(req.model_dump(exclude_unset=True))
    await store.save_preferences(user_id, prefs)
    return _public_preferences(prefs)
