# File: api/routers/share.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from api.dependencies.auth import AuthenticatedUser, get_current_user, get_db
from api.models.work_models import (
    ShareClaimRequest,
    ShareCreateRequest,
    ShareCreateResponse,
    SharedWorkflowResponse,
    StepResponse,
    WorkflowDetail,
)
from services.audit_service import log_action
from services.share_service import claim_share_token, create_share_token, get_shared_workflow
from services.workflow_service import WorkflowServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/share/create", response_model=ShareCreateResponse)
async def create_share(
    payload: ShareCreateRequest,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        share = create_share_token(db, payload.workflow_id, current_user.id, payload.expires_in_seconds)
    except WorkflowServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    log_action(
        db,
        current_user.id,
        "CREATE_SHARE_LINK",
        target_id=payload.workflow_id,
        payload={"expires_at": share.expires_at},
        ip_address=request.client.host if request.client else None,
    )
    return ShareCreateResponse(
        success=True,
        token=share.token,
        share_url=f"{str(request.base_url).rstrip('/')}/share/{share.token}",
        expires_at=share.expires_at,
    )


@router.post("/share/claim")
async def claim_share(payload: ShareClaimRequest, db: Session = Depends(get_db)):
    """Public: binds the link to the caller's browser session."""
    try:
        claim_share_token(db, payload.token, payload.session_id)
    except WorkflowServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True}


@router.get("/share/workflows/{token}", response_model=SharedWorkflowResponse)
async def read_shared_workflow(
    token: str,
    session_id: Optional[str] = Header(None, alias="x-share-session"),
    db: Session = Depends(get_db),
):
    if not session_id:
        raise HTTPException(status_code=400, detail="x-share-session header required")

    try:
        workflow, steps = get_shared_workflow(db, token, session_id)
    except WorkflowServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    detail = WorkflowDetail.model_validate(workflow)
    detail.steps = [StepResponse.model_validate(step) for step in steps]
    return SharedWorkflowResponse(workflow=detail)
