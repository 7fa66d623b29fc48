# File: api/routers/workflows.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from api.dependencies.analysis import get_job_queue
from api.dependencies.auth import AuthenticatedUser, get_current_user, get_db
from api.models.work_models import (
    StepCreateRequest,
    StepReorderRequest,
    StepResponse,
    StepUpdateRequest,
    WorkflowDetail,
    WorkflowStatusResponse,
    WorkflowSummary,
)
from services import workflow_service
from services.analysis_service import get_workflow_status
from services.audit_service import log_action
from services.job_queue import AnalysisJobQueue
from services.workflow_service import WorkflowServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_http(e: WorkflowServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/workflows", response_model=List[WorkflowSummary])
async def list_workflows(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return workflow_service.list_accessible_workflows(db, current_user.id)


@router.get("/workflows/{workflow_id}", response_model=WorkflowDetail)
async def get_workflow(
    workflow_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        workflow = workflow_service.get_readable_workflow(db, workflow_id, current_user.id)
    except WorkflowServiceError as e:
        raise _to_http(e)

    detail = WorkflowDetail.model_validate(workflow)
    detail.steps = [
        StepResponse.model_validate(step)
        for step in workflow_service.get_ordered_steps(db, workflow_id)
    ]
    return detail


@router.get("/workflows/{workflow_id}/status", response_model=WorkflowStatusResponse)
async def workflow_status(
    workflow_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        workflow = workflow_service.get_readable_workflow(db, workflow_id, current_user.id)
    except WorkflowServiceError as e:
        raise _to_http(e)
    return get_workflow_status(db, workflow)


@router.post("/workflows/{workflow_id}/cancel")
async def cancel_analysis(
    workflow_id: int,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    queue: AnalysisJobQueue = Depends(get_job_queue),
):
    try:
        workflow = workflow_service.get_readable_workflow(db, workflow_id, current_user.id)
    except WorkflowServiceError as e:
        raise _to_http(e)
    if workflow.owner_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the owner can cancel this analysis")

    if not queue.cancel(workflow_id):
        raise HTTPException(status_code=409, detail="No analysis in progress for this workflow")

    log_action(
        db,
        current_user.id,
        "CANCEL_ANALYSIS",
        target_id=workflow_id,
        ip_address=request.client.host if request.client else None,
    )
    return {"success": True, "workflow_id": workflow_id}


@router.delete("/workflows/{workflow_id}", status_code=204)
async def delete_workflow(
    workflow_id: int,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    queue: AnalysisJobQueue = Depends(get_job_queue),
):
    try:
        workflow = workflow_service.get_readable_workflow(db, workflow_id, current_user.id)
        if workflow.owner_id == current_user.id:
            queue.cancel(workflow_id)
        workflow_service.delete_workflow(db, workflow_id, current_user.id)
    except WorkflowServiceError as e:
        raise _to_http(e)

    log_action(
        db,
        current_user.id,
        "DELETE_WORKFLOW",
        target_id=workflow_id,
        ip_address=request.client.host if request.client else None,
    )
    return Response(status_code=204)


# ------------------------------------------------------------
# STEP EDITING
# ------------------------------------------------------------
@router.post("/workflows/{workflow_id}/steps", response_model=StepResponse)
async def add_step(
    workflow_id: int,
    payload: StepCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return workflow_service.add_step(
            db,
            workflow_id,
            current_user.id,
            type=payload.type,
            action=payload.action,
            description=payload.description,
            position=payload.position,
            notes=payload.notes,
            screenshot_url=payload.screenshot_url,
        )
    except WorkflowServiceError as e:
        raise _to_http(e)


@router.patch("/workflows/{workflow_id}/steps/{step_id}", response_model=StepResponse)
async def update_step(
    workflow_id: int,
    step_id: int,
    payload: StepUpdateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        return workflow_service.update_step(db, workflow_id, step_id, current_user.id, updates)
    except WorkflowServiceError as e:
        raise _to_http(e)


@router.delete("/workflows/{workflow_id}/steps/{step_id}", status_code=204)
async def delete_step(
    workflow_id: int,
    step_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        workflow_service.delete_step(db, workflow_id, step_id, current_user.id)
    except WorkflowServiceError as e:
        raise _to_http(e)
    return Response(status_code=204)


@router.post("/workflows/{workflow_id}/steps/reorder", response_model=List[StepResponse])
async def reorder_steps(
    workflow_id: int,
    payload: StepReorderRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return workflow_service.reorder_steps(db, workflow_id, current_user.id, payload.step_ids)
    except WorkflowServiceError as e:
        raise _to_http(e)
