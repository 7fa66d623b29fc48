# File: api/models/work_models.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.models.workflow_model import StepType, UploadStatus, WorkflowStatus

StepTypeLiteral = Literal["click", "input", "navigate", "wait", "decision"]


class AnalyzeRequest(BaseModel):
    video_id: int
    team_id: Optional[str] = None


class AnalyzeResponse(BaseModel):
    success: bool
    workflow_id: int
    job_id: int
    status: str


class RateLimitStatus(BaseModel):
    currentCount: int
    maxDailyRequests: int
    remainingRequests: int
    resetTime: datetime
    isLimitExceeded: bool


class VideoCreateRequest(BaseModel):
    storage_path: str
    original_filename: str
    mime_type: str
    file_size: int = Field(..., ge=0)
    title: Optional[str] = None
    thumbnail_url: Optional[str] = None
    preview_url: Optional[str] = None
    duration_seconds: Optional[float] = Field(None, ge=0)

    @field_validator("mime_type")
    @classmethod
    def must_be_video(cls, v: str) -> str:
        if not v.startswith("video/"):
            raise ValueError("Only video files are supported")
        return v


class VideoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    video_id: int
    title: Optional[str] = None
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    storage_path: Optional[str] = None
    status: UploadStatus
    progress: int
    error_message: Optional[str] = None
    created_at: datetime


class UploadResponse(BaseModel):
    success: bool
    storage_path: str
    filename: str
    size: int


class StepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_id: int
    sequence_no: int
    type: StepType
    action: str
    description: str
    timestamp_label: Optional[str] = None
    timestamp_seconds: Optional[float] = None
    confidence: Optional[int] = None
    screenshot_url: Optional[str] = None
    notes: Optional[str] = None


class WorkflowSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: int
    owner_id: str
    team_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: WorkflowStatus
    duration_seconds: Optional[float] = None
    thumbnail_url: Optional[str] = None
    source_video_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class WorkflowDetail(WorkflowSummary):
    steps: List[StepResponse] = []


class WorkflowStatusResponse(BaseModel):
    workflow_id: int
    status: WorkflowStatus
    progress: int
    steps_count: int
    title: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class StepUpdateRequest(BaseModel):
    notes: Optional[str] = None
    action: Optional[str] = None
    description: Optional[str] = None
    type: Optional[StepTypeLiteral] = None
    screenshot_url: Optional[str] = None


class StepCreateRequest(BaseModel):
    type: StepTypeLiteral
    action: str
    description: str
    position: Optional[int] = None
    notes: Optional[str] = None
    screenshot_url: Optional[str] = None


class StepReorderRequest(BaseModel):
    step_ids: List[int]


class ShareUpdateRequest(BaseModel):
    member_ids: List[str] = []


class ShareCreateRequest(BaseModel):
    workflow_id: int
    expires_in_seconds: Optional[int] = Field(None, ge=1)


class ShareCreateResponse(BaseModel):
    success: bool
    token: str
    share_url: str
    expires_at: Optional[datetime] = None


class ShareClaimRequest(BaseModel):
    token: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)


class SharedWorkflowResponse(BaseModel):
    workflow: WorkflowDetail
