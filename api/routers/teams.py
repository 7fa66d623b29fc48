# File: api/routers/teams.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from api.dependencies.auth import AuthenticatedUser, get_current_user, get_db
from api.models.work_models import ShareUpdateRequest
from services.audit_service import log_action
from services.workflow_service import WorkflowServiceError, get_workflow_shares, set_workflow_shares

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{team_id}/workflows/{workflow_id}/shares")
async def read_shares(
    team_id: str,
    workflow_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return get_workflow_shares(db, team_id, workflow_id, current_user.id)
    except WorkflowServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{team_id}/workflows/{workflow_id}/shares")
async def update_shares(
    team_id: str,
    workflow_id: int,
    payload: ShareUpdateRequest,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Empty ``member_ids`` shares the workflow with the whole team."""
    try:
        result = set_workflow_shares(db, team_id, workflow_id, current_user.id, payload.member_ids)
    except WorkflowServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    log_action(
        db,
        current_user.id,
        "UPDATE_WORKFLOW_SHARES",
        target_id=workflow_id,
        payload={"team_id": team_id, "member_ids": payload.member_ids},
        ip_address=request.client.host if request.client else None,
    )
    return result
