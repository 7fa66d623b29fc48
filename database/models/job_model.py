# File: database/models/job_model.py
import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text

from database.db import Base


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalysisJob(Base):
    __tablename__ = "work_analysis_jobs"

    job_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    workflow_id = Column(
        Integer,
        ForeignKey("work_workflows.workflow_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    video_id = Column(Integer, ForeignKey("work_videos.video_id", ondelete="CASCADE"), nullable=False)

    status = Column(
        Enum(JobStatus, values_callable=lambda x: [e.value for e in x]),
        default=JobStatus.QUEUED,
        nullable=False,
        index=True,
    )
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    last_error = Column(Text, nullable=True)

    # "real" or "fallback"; set once the job succeeds
    outcome = Column(String(16), nullable=True)
    fallback_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
