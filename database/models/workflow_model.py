# File: database/models/workflow_model.py
import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database.db import Base


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class UploadStatus(str, enum.Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class WorkflowStatus(str, enum.Enum):
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    PENDING = "pending"


class StepType(str, enum.Enum):
    CLICK = "click"
    INPUT = "input"
    NAVIGATE = "navigate"
    WAIT = "wait"
    DECISION = "decision"


class Video(Base):
    __tablename__ = "work_videos"

    video_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String(255), nullable=False, index=True)  # identity provider user id

    title = Column(String(512), nullable=True)
    original_filename = Column(String(512), nullable=True)
    mime_type = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=True)
    storage_path = Column(String(1024), nullable=True)
    preview_url = Column(String(1024), nullable=True)
    thumbnail_url = Column(String(1024), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    status = Column(
        Enum(UploadStatus, values_callable=_enum_values),
        default=UploadStatus.IDLE,
        nullable=False,
    )
    progress = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    requested_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Workflow(Base):
    __tablename__ = "work_workflows"

    workflow_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(String(255), nullable=False, index=True)
    # NULL means a personal workflow; set means team-visible subject to shares
    team_id = Column(String(36), ForeignKey("work_teams.team_id", ondelete="CASCADE"), nullable=True, index=True)

    title = Column(String(512), nullable=False)
    description = Column(Text, nullable=True)
    source_video_id = Column(Integer, ForeignKey("work_videos.video_id", ondelete="SET NULL"), nullable=True)
    duration_seconds = Column(Float, nullable=True)
    thumbnail_url = Column(String(1024), nullable=True)

    status = Column(
        Enum(WorkflowStatus, values_callable=_enum_values),
        default=WorkflowStatus.ANALYZING,
        nullable=False,
    )
    is_demo = Column(Boolean, default=False, nullable=False)

    requested_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    steps = relationship(
        "AnalysisStep",
        back_populates="workflow",
        order_by="AnalysisStep.sequence_no",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    source_video = relationship("Video")
    shares = relationship("WorkflowShare", cascade="all, delete-orphan", passive_deletes=True)
    legacy_members = relationship("WorkflowMember", cascade="all, delete-orphan", passive_deletes=True)


class AnalysisStep(Base):
    __tablename__ = "work_analysis_steps"

    step_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    workflow_id = Column(
        Integer,
        ForeignKey("work_workflows.workflow_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence_no = Column(Integer, nullable=False)  # 1-based, dense within a workflow

    type = Column(Enum(StepType, values_callable=_enum_values), nullable=False)
    action = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    timestamp_label = Column(String(16), nullable=True)
    timestamp_seconds = Column(Float, nullable=True)
    confidence = Column(Integer, nullable=True)  # 0-100
    screenshot_url = Column(String(1024), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    workflow = relationship("Workflow", back_populates="steps")
