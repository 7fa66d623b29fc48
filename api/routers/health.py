# File: api/routers/health.py
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies.auth import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database ping failed: {e}")
        database = "unavailable"

    queue = getattr(request.app.state, "job_queue", None)
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "analysis_queue": "running" if queue is not None and queue.is_running else "stopped",
    }
