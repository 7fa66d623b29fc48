# File: services/rate_limit_service.py
"""
Per-user daily cap on video analysis requests.

Counts live in one row per (user, UTC day). The day starts at a fixed UTC
hour (midnight by default), never at the user's local midnight.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from database.models.rate_limit_model import RateLimitRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAILY_REQUESTS = 3
DEFAULT_RESET_HOUR_UTC = 0
DEFAULT_ERROR_MESSAGE = "Daily video analysis limit exceeded. Please try again tomorrow."


class RateLimitExceededError(Exception):
    """Raised when a user has used up the day's analysis requests."""

    def __init__(self, message: str, reset_time: datetime):
        super().__init__(message)
        self.message = message
        self.reset_time = reset_time


@dataclass(frozen=True)
class RateLimitConfig:
    max_daily_requests: int = DEFAULT_MAX_DAILY_REQUESTS
    error_message: str = DEFAULT_ERROR_MESSAGE
    reset_hour_utc: int = DEFAULT_RESET_HOUR_UTC

    def __post_init__(self):
        if self.max_daily_requests < 0:
            raise ValueError("max_daily_requests must be >= 0")
        if not 0 <= self.reset_hour_utc <= 23:
            raise ValueError("reset_hour_utc must be between 0 and 23")

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        return cls(
            max_daily_requests=int(os.getenv("VIDEO_ANALYSIS_DAILY_LIMIT", str(DEFAULT_MAX_DAILY_REQUESTS))),
            error_message=os.getenv("VIDEO_ANALYSIS_LIMIT_ERROR_MESSAGE") or DEFAULT_ERROR_MESSAGE,
            reset_hour_utc=int(os.getenv("VIDEO_ANALYSIS_RESET_TIME_UTC", str(DEFAULT_RESET_HOUR_UTC))),
        )


def _utc_naive(now: Optional[datetime] = None) -> datetime:
    # Rows store naive UTC datetimes
    if now is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def get_start_of_day_utc(now: Optional[datetime] = None, reset_hour_utc: int = DEFAULT_RESET_HOUR_UTC) -> datetime:
    """Most recent reset boundary at or before ``now``."""
    current = _utc_naive(now)
    start = current.replace(hour=reset_hour_utc, minute=0, second=0, microsecond=0)
    if start > current:
        start -= timedelta(days=1)
    return start


def get_next_reset_time_utc(now: Optional[datetime] = None, reset_hour_utc: int = DEFAULT_RESET_HOUR_UTC) -> datetime:
    return get_start_of_day_utc(now, reset_hour_utc) + timedelta(days=1)


def get_user_daily_request_count(
    db: Session,
    user_id: str,
    config: RateLimitConfig = RateLimitConfig(),
    now: Optional[datetime] = None,
) -> int:
    day = get_start_of_day_utc(now, config.reset_hour_utc)
    record = (
        db.query(RateLimitRecord)
        .filter(RateLimitRecord.user_id == user_id)
        .filter(RateLimitRecord.request_date == day)
        .first()
    )
    return record.request_count if record else 0


def check_limit(
    db: Session,
    user_id: str,
    config: RateLimitConfig = RateLimitConfig(),
    now: Optional[datetime] = None,
) -> None:
    """
    Raises:
        RateLimitExceededError: If the user already reached today's cap.
    """
    current = get_user_daily_request_count(db, user_id, config, now)
    logger.info(f"[Rate Limit] User {user_id}: {current}/{config.max_daily_requests} requests")

    if current >= config.max_daily_requests:
        raise RateLimitExceededError(
            config.error_message,
            get_next_reset_time_utc(now, config.reset_hour_utc).replace(tzinfo=timezone.utc),
        )


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Rate limit upsert is not supported on dialect '{dialect}'")


def record_request(
    db: Session,
    user_id: str,
    config: RateLimitConfig = RateLimitConfig(),
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> Optional[int]:
    """
    Insert-or-increment today's row in a single statement.

    With ``limit`` set, an existing row is only incremented while its count
    is below the limit. Returns the new count, or None when the limit held
    the row back.
    """
    current = _utc_naive(now)
    day = get_start_of_day_utc(current, config.reset_hour_utc)
    insert = _insert_for(db)
    count_col = RateLimitRecord.__table__.c.request_count

    stmt = (
        insert(RateLimitRecord)
        .values(
            user_id=user_id,
            request_date=day,
            request_count=1,
            last_request_at=current,
            created_at=current,
            updated_at=current,
        )
        .on_conflict_do_update(
            index_elements=["user_id", "request_date"],
            set_={
                "request_count": count_col + 1,
                "last_request_at": current,
                "updated_at": current,
            },
            where=(count_col < limit) if limit is not None else None,
        )
        .returning(count_col)
    )

    try:
        row = db.execute(stmt).first()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Failed to record analysis request for user {user_id}")
        raise

    if row is None:
        logger.info(f"[Rate Limit] Request for user {user_id} not recorded, limit of {limit} reached")
        return None

    logger.info(f"[Rate Limit] Request recorded for user {user_id} ({row[0]})")
    return row[0]


def enforce(
    db: Session,
    user_id: str,
    config: RateLimitConfig = RateLimitConfig(),
    now: Optional[datetime] = None,
) -> int:
    """
    Check then record. Call once per analysis start, before any pipeline work.

    The read is only a shortcut; the conditional upsert is what holds the cap
    when requests race.
    """
    check_limit(db, user_id, config, now)
    count = record_request(db, user_id, config, now, limit=config.max_daily_requests)
    if count is None:
        raise RateLimitExceededError(
            config.error_message,
            get_next_reset_time_utc(now, config.reset_hour_utc).replace(tzinfo=timezone.utc),
        )
    return count


def get_rate_limit_status(
    db: Session,
    user_id: str,
    config: RateLimitConfig = RateLimitConfig(),
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    current = get_user_daily_request_count(db, user_id, config, now)
    return {
        "currentCount": current,
        "maxDailyRequests": config.max_daily_requests,
        "remainingRequests": max(0, config.max_daily_requests - current),
        "resetTime": get_next_reset_time_utc(now, config.reset_hour_utc).replace(tzinfo=timezone.utc),
        "isLimitExceeded": current >= config.max_daily_requests,
    }
