from functools import lru_cache

from fastapi import HTTPException, Request

from services.job_queue import AnalysisJobQueue
from services.rate_limit_service import RateLimitConfig


@lru_cache()
def get_rate_limit_config() -> RateLimitConfig:
    """Read once from the environment; tests override this dependency."""
    return RateLimitConfig.from_env()


def get_job_queue(request: Request) -> AnalysisJobQueue:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None or not queue.is_running:
        raise HTTPException(status_code=503, detail="Analysis queue is not running")
    return queue
