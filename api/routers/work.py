# File: api/routers/work.py
import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from api.dependencies.analysis import get_job_queue, get_rate_limit_config
from api.dependencies.auth import AuthenticatedUser, get_current_user, get_db
from api.models.work_models import (
    AnalyzeRequest,
    AnalyzeResponse,
    RateLimitStatus,
    UploadResponse,
    VideoCreateRequest,
    VideoResponse,
)
from clients.supabase_storage_client import StorageError
from database.models.workflow_model import UploadStatus, Video
from services.analysis_service import AnalysisRequestError, start_analysis
from services.audit_service import log_action
from services.job_queue import AnalysisJobQueue
from services.rate_limit_service import RateLimitConfig, RateLimitExceededError, get_rate_limit_status
from services.storage_service import upload_video
from utils.sanitization import clean_text, strip_extension

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_UPLOAD_SIZE = 50 * 1024 * 1024


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("/upload", response_model=UploadResponse)
async def upload(
    file: UploadFile = File(...),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Stores a video under the caller's prefix in object storage."""
    content_type = file.content_type or ""
    if not content_type.startswith("video/"):
        raise HTTPException(status_code=400, detail="Only video files are supported")

    try:
        chunk_size = 1024 * 1024
        content = bytearray()
        total_size = 0

        while True:
            chunk = await file.read(chunk_size)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > MAX_UPLOAD_SIZE:
                raise HTTPException(status_code=413, detail="File too large (limit 50MB)")
            content.extend(chunk)

        if total_size == 0:
            raise HTTPException(status_code=400, detail="Empty file")

        storage_path = await asyncio.to_thread(
            upload_video, current_user.id, file.filename or "video.mp4", bytes(content), content_type
        )
        return UploadResponse(success=True, storage_path=storage_path, filename=file.filename or "", size=total_size)

    except HTTPException:
        raise
    except StorageError as e:
        logger.error(f"Video upload failed for {current_user.id}: {e}")
        raise HTTPException(status_code=502, detail="Storage upload failed")
    except Exception as e:
        logger.error(f"Upload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error during upload")


@router.post("/videos", response_model=VideoResponse)
async def register_video(
    payload: VideoCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not payload.storage_path.startswith(f"{current_user.id}/"):
        raise HTTPException(status_code=403, detail="Storage path does not belong to the current user")

    video = Video(
        owner_id=current_user.id,
        title=clean_text(payload.title) or strip_extension(payload.original_filename),
        original_filename=payload.original_filename,
        mime_type=payload.mime_type,
        file_size=payload.file_size,
        storage_path=payload.storage_path,
        thumbnail_url=payload.thumbnail_url,
        preview_url=payload.preview_url,
        duration_seconds=payload.duration_seconds,
        status=UploadStatus.IDLE,
        requested_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    try:
        db.add(video)
        db.commit()
        db.refresh(video)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to register video for {current_user.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An internal error occurred")

    return video


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    payload: AnalyzeRequest,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: RateLimitConfig = Depends(get_rate_limit_config),
    queue: AnalysisJobQueue = Depends(get_job_queue),
):
    """
    Accepts an analysis request and queues it.
    Returns immediately; clients poll the workflow status endpoint.
    """
    try:
        workflow, job = start_analysis(
            db,
            current_user.id,
            payload.video_id,
            team_id=payload.team_id,
            rate_limit_config=config,
            max_attempts=queue.config.max_attempts,
        )
    except AnalysisRequestError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except RateLimitExceededError:
        raise
    except Exception as e:
        logger.error(f"Failed to start analysis for video {payload.video_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to start analysis")

    queue.enqueue(job.job_id)

    try:
        log_action(
            db,
            current_user.id,
            "START_ANALYSIS",
            target_id=workflow.workflow_id,
            payload={"video_id": payload.video_id, "team_id": workflow.team_id, "job_id": job.job_id},
            ip_address=_client_ip(request),
        )
    except Exception as e:
        logger.error(f"Audit log failed for workflow {workflow.workflow_id}: {e}", exc_info=True)

    return AnalyzeResponse(
        success=True,
        workflow_id=workflow.workflow_id,
        job_id=job.job_id,
        status=workflow.status.value,
    )


@router.get("/rate-limit", response_model=RateLimitStatus)
async def rate_limit_status(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    config: RateLimitConfig = Depends(get_rate_limit_config),
):
    return get_rate_limit_status(db, current_user.id, config)
