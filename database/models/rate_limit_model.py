# File: database/models/rate_limit_model.py
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from database.db import Base


class RateLimitRecord(Base):
    __tablename__ = "work_video_analysis_rate_limits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)

    # Start of the rate limit day in UTC (midnight unless a reset hour is configured)
    request_date = Column(DateTime, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    last_request_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Concurrent upserts for the same user and day serialize on this constraint
    __table_args__ = (
        UniqueConstraint("user_id", "request_date", name="uq_rate_limit_user_day"),
    )
