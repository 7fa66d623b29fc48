# File: services/workflow_service.py
"""
Workflow reads, step editing and team share settings.
Every read goes through the access resolver; edits require editor access.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from database.models.job_model import AnalysisJob
from database.models.share_model import ShareToken
from database.models.team_model import MemberStatus, TeamMember, WorkflowMember, WorkflowShare
from database.models.workflow_model import AnalysisStep, StepType, Workflow
from services.access_service import can_edit, can_read, is_team_admin

logger = logging.getLogger(__name__)

EDITABLE_STEP_FIELDS = {"notes", "action", "description", "type", "screenshot_url"}


class WorkflowServiceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WorkflowNotFoundError(WorkflowServiceError):
    status_code = 404


class WorkflowAccessDenied(WorkflowServiceError):
    status_code = 403


class StepNotFoundError(WorkflowServiceError):
    status_code = 404


class InvalidStepOperation(WorkflowServiceError):
    status_code = 400


class InvalidShareRequest(WorkflowServiceError):
    status_code = 400


# ------------------------------------------------------------
# READS
# ------------------------------------------------------------
def list_accessible_workflows(db: Session, user_id: str) -> List[Workflow]:
    """Owned, team and legacy-shared workflows the user can read, newest first."""
    found: Dict[int, Workflow] = {}

    for wf in db.query(Workflow).filter(Workflow.owner_id == user_id).all():
        found[wf.workflow_id] = wf

    team_ids = [
        row.team_id
        for row in db.query(TeamMember.team_id)
        .filter(TeamMember.user_id == user_id)
        .filter(TeamMember.status == MemberStatus.ACTIVE)
        .all()
    ]
    if team_ids:
        for wf in db.query(Workflow).filter(Workflow.team_id.in_(team_ids)).all():
            if wf.workflow_id not in found and can_read(db, wf, user_id):
                found[wf.workflow_id] = wf

    legacy_ids = [
        row.workflow_id
        for row in db.query(WorkflowMember.workflow_id)
        .filter(WorkflowMember.user_id == user_id)
        .filter(WorkflowMember.status == MemberStatus.ACTIVE)
        .all()
    ]
    if legacy_ids:
        for wf in db.query(Workflow).filter(Workflow.workflow_id.in_(legacy_ids)).all():
            if wf.workflow_id not in found and can_read(db, wf, user_id):
                found[wf.workflow_id] = wf

    return sorted(found.values(), key=lambda wf: (wf.created_at, wf.workflow_id), reverse=True)


def get_readable_workflow(db: Session, workflow_id: int, user_id: str) -> Workflow:
    workflow = db.query(Workflow).filter(Workflow.workflow_id == workflow_id).first()
    if workflow is None:
        raise WorkflowNotFoundError("Workflow not found")
    if not can_read(db, workflow, user_id):
        raise WorkflowAccessDenied("You do not have access to this workflow")
    return workflow


def get_editable_workflow(db: Session, workflow_id: int, user_id: str) -> Workflow:
    workflow = get_readable_workflow(db, workflow_id, user_id)
    if not can_edit(db, workflow, user_id):
        raise WorkflowAccessDenied("You do not have permission to edit this workflow")
    return workflow


def get_ordered_steps(db: Session, workflow_id: int) -> List[AnalysisStep]:
    return (
        db.query(AnalysisStep)
        .filter(AnalysisStep.workflow_id == workflow_id)
        .order_by(AnalysisStep.sequence_no)
        .all()
    )


def _get_step(db: Session, workflow_id: int, step_id: int) -> AnalysisStep:
    step = (
        db.query(AnalysisStep)
        .filter(AnalysisStep.step_id == step_id)
        .filter(AnalysisStep.workflow_id == workflow_id)
        .first()
    )
    if step is None:
        raise StepNotFoundError("Step not found")
    return step


def _step_type(value: Any) -> StepType:
    try:
        return StepType(str(value).lower())
    except ValueError:
        raise InvalidStepOperation(f"Unknown step type: {value}")


def _renumber(steps: Iterable[AnalysisStep]) -> None:
    for index, step in enumerate(steps, start=1):
        step.sequence_no = index


# ------------------------------------------------------------
# STEP EDITING
# ------------------------------------------------------------
def update_step(db: Session, workflow_id: int, step_id: int, user_id: str, updates: Dict[str, Any]) -> AnalysisStep:
    get_editable_workflow(db, workflow_id, user_id)
    step = _get_step(db, workflow_id, step_id)

    unknown = set(updates) - EDITABLE_STEP_FIELDS
    if unknown:
        raise InvalidStepOperation(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    for key, value in updates.items():
        if key == "type":
            value = _step_type(value)
        elif key in ("action", "description") and not (value or "").strip():
            raise InvalidStepOperation(f"{key} must not be empty")
        setattr(step, key, value)

    try:
        db.commit()
        db.refresh(step)
    except Exception:
        db.rollback()
        raise
    return step


def add_step(
    db: Session,
    workflow_id: int,
    user_id: str,
    type: str,
    action: str,
    description: str,
    position: Optional[int] = None,
    notes: Optional[str] = None,
    screenshot_url: Optional[str] = None,
) -> AnalysisStep:
    """Inserts a step at ``position`` (1-based, appended when omitted), shifting later steps down."""
    get_editable_workflow(db, workflow_id, user_id)
    steps = get_ordered_steps(db, workflow_id)

    if position is None:
        position = len(steps) + 1
    if position < 1 or position > len(steps) + 1:
        raise InvalidStepOperation(f"Position must be between 1 and {len(steps) + 1}")
    if not action.strip() or not description.strip():
        raise InvalidStepOperation("action and description must not be empty")

    try:
        for step in steps:
            if step.sequence_no >= position:
                step.sequence_no += 1

        new_step = AnalysisStep(
            workflow_id=workflow_id,
            sequence_no=position,
            type=_step_type(type),
            action=action,
            description=description,
            notes=notes,
            screenshot_url=screenshot_url,
        )
        db.add(new_step)
        db.commit()
        db.refresh(new_step)
    except Exception:
        db.rollback()
        raise
    return new_step


def delete_step(db: Session, workflow_id: int, step_id: int, user_id: str) -> None:
    get_editable_workflow(db, workflow_id, user_id)
    step = _get_step(db, workflow_id, step_id)

    try:
        db.delete(step)
        db.flush()
        _renumber(get_ordered_steps(db, workflow_id))
        db.commit()
    except Exception:
        db.rollback()
        raise


def reorder_steps(db: Session, workflow_id: int, user_id: str, step_ids: List[int]) -> List[AnalysisStep]:
    """``step_ids`` must be a permutation of the workflow's step ids."""
    get_editable_workflow(db, workflow_id, user_id)
    steps = get_ordered_steps(db, workflow_id)

    by_id = {step.step_id: step for step in steps}
    if len(step_ids) != len(by_id) or set(step_ids) != set(by_id):
        raise InvalidStepOperation("step_ids must list every step of the workflow exactly once")

    try:
        _renumber(by_id[step_id] for step_id in step_ids)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return get_ordered_steps(db, workflow_id)


def delete_workflow(db: Session, workflow_id: int, user_id: str) -> None:
    workflow = get_readable_workflow(db, workflow_id, user_id)
    if workflow.owner_id != user_id:
        raise WorkflowAccessDenied("Only the owner can delete this workflow")

    try:
        # Dependent rows are removed explicitly; SQLite does not enforce ON DELETE CASCADE by default
        for model in (AnalysisStep, WorkflowShare, WorkflowMember, AnalysisJob, ShareToken):
            db.query(model).filter(model.workflow_id == workflow_id).delete(synchronize_session=False)
        db.delete(workflow)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Workflow {workflow_id} deleted by {user_id}")


# ------------------------------------------------------------
# SHARES
# ------------------------------------------------------------
def _get_team_workflow_as_admin(db: Session, team_id: str, workflow_id: int, user_id: str) -> Workflow:
    if not is_team_admin(db, team_id, user_id):
        raise WorkflowAccessDenied("Admin permission required")

    workflow = (
        db.query(Workflow)
        .filter(Workflow.workflow_id == workflow_id)
        .filter(Workflow.team_id == team_id)
        .first()
    )
    if workflow is None:
        raise WorkflowNotFoundError("Workflow not found in this team")
    return workflow


def get_workflow_shares(db: Session, team_id: str, workflow_id: int, user_id: str) -> Dict[str, Any]:
    workflow = _get_team_workflow_as_admin(db, team_id, workflow_id, user_id)

    shares = (
        db.query(WorkflowShare)
        .filter(WorkflowShare.workflow_id == workflow.workflow_id)
        .order_by(WorkflowShare.created_at)
        .all()
    )
    return {
        "workflow_id": workflow.workflow_id,
        "is_shared_with_all": len(shares) == 0,
        "shared_members": [
            {
                "share_id": s.share_id,
                "team_member_id": s.team_member_id,
                "shared_by": s.shared_by,
                "created_at": s.created_at,
            }
            for s in shares
        ],
    }


def set_workflow_shares(
    db: Session,
    team_id: str,
    workflow_id: int,
    user_id: str,
    member_ids: Optional[List[str]],
) -> Dict[str, Any]:
    """Replaces the share set. An empty list makes the workflow visible to the whole team."""
    workflow = _get_team_workflow_as_admin(db, team_id, workflow_id, user_id)
    member_ids = list(dict.fromkeys(member_ids or []))

    if member_ids:
        known = {
            row.member_id
            for row in db.query(TeamMember.member_id)
            .filter(TeamMember.team_id == team_id)
            .filter(TeamMember.member_id.in_(member_ids))
            .all()
        }
        missing = [m for m in member_ids if m not in known]
        if missing:
            raise InvalidShareRequest(f"Not members of this team: {', '.join(missing)}")

    try:
        db.query(WorkflowShare).filter(WorkflowShare.workflow_id == workflow.workflow_id).delete(
            synchronize_session=False
        )
        db.add_all([
            WorkflowShare(workflow_id=workflow.workflow_id, team_member_id=member_id, shared_by=user_id)
            for member_id in member_ids
        ])
        db.commit()
    except Exception:
        db.rollback()
        raise

    if not member_ids:
        return {"message": "Workflow is now shared with all team members", "is_shared_with_all": True}
    return {
        "message": f"Workflow shared with {len(member_ids)} member(s)",
        "is_shared_with_all": False,
        "shared_member_count": len(member_ids),
    }
