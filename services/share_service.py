# File: services/share_service.py
"""
Share links: the owner issues a token, the first browser session to claim
it is bound to it, and only that session can read the workflow through it.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from database.models.share_model import ShareStatus, ShareToken
from database.models.workflow_model import AnalysisStep, Workflow
from services.workflow_service import (
    WorkflowAccessDenied,
    WorkflowNotFoundError,
    WorkflowServiceError,
    get_ordered_steps,
)

logger = logging.getLogger(__name__)


class ShareTokenNotFound(WorkflowServiceError):
    status_code = 404


class ShareTokenExpired(WorkflowServiceError):
    status_code = 410


class ShareTokenClaimed(WorkflowServiceError):
    status_code = 409


class ShareTokenForbidden(WorkflowServiceError):
    status_code = 403


def _utcnow(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def _get_token(db: Session, token: str) -> ShareToken:
    share = db.query(ShareToken).filter(ShareToken.token == token).first()
    if share is None:
        raise ShareTokenNotFound("Share link not found")
    return share


def _is_expired(share: ShareToken, now: datetime) -> bool:
    return share.expires_at is not None and share.expires_at < now


def create_share_token(
    db: Session,
    workflow_id: int,
    user_id: str,
    expires_in_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ShareToken:
    """Issues a new share link for a workflow the caller owns."""
    workflow = db.query(Workflow).filter(Workflow.workflow_id == workflow_id).first()
    if workflow is None:
        raise WorkflowNotFoundError("Workflow not found")
    if workflow.owner_id != user_id:
        raise WorkflowAccessDenied("Only the owner can share this workflow")

    current = _utcnow(now)
    share = ShareToken(
        token=str(uuid.uuid4()),
        workflow_id=workflow_id,
        created_by=user_id,
        status=ShareStatus.ACTIVE,
        expires_at=current + timedelta(seconds=expires_in_seconds) if expires_in_seconds else None,
        created_at=current,
        updated_at=current,
    )
    try:
        db.add(share)
        db.commit()
        db.refresh(share)
    except Exception:
        db.rollback()
        raise

    logger.info(f"Share link issued for workflow {workflow_id} by {user_id}")
    return share


def claim_share_token(db: Session, token: str, session_id: str, now: Optional[datetime] = None) -> ShareToken:
    """
    Binds the token to ``session_id``. Claiming again from the same session
    is a no-op.

    Raises:
        ShareTokenNotFound: Unknown token.
        ShareTokenForbidden: Token was revoked or already marked expired.
        ShareTokenExpired: Token is past its expiry.
        ShareTokenClaimed: Token is bound to another session.
    """
    current = _utcnow(now)
    share = _get_token(db, token)

    if share.status in (ShareStatus.REVOKED, ShareStatus.EXPIRED):
        raise ShareTokenForbidden("Share link is no longer valid")

    if _is_expired(share, current):
        try:
            share.status = ShareStatus.EXPIRED
            db.commit()
        except Exception:
            db.rollback()
            raise
        raise ShareTokenExpired("Share link has expired")

    if share.session_id is not None:
        if share.session_id != session_id:
            raise ShareTokenClaimed("Share link was already opened in another session")
        return share

    try:
        # Only an unbound token is updated, so two racing sessions cannot both win
        updated = (
            db.query(ShareToken)
            .filter(ShareToken.token == token)
            .filter(ShareToken.session_id.is_(None))
            .update(
                {
                    ShareToken.session_id: session_id,
                    ShareToken.claimed_at: current,
                    ShareToken.status: ShareStatus.CLAIMED,
                    ShareToken.updated_at: current,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(share)
    if updated == 0 and share.session_id != session_id:
        raise ShareTokenClaimed("Share link was already opened in another session")

    logger.info(f"Share link for workflow {share.workflow_id} claimed")
    return share


def get_shared_workflow(
    db: Session,
    token: str,
    session_id: str,
    now: Optional[datetime] = None,
) -> Tuple[Workflow, List[AnalysisStep]]:
    """Returns the workflow and its steps in sequence order for the bound session."""
    share = _get_token(db, token)

    if _is_expired(share, _utcnow(now)):
        raise ShareTokenExpired("Share link has expired")
    if share.status == ShareStatus.REVOKED or share.session_id != session_id:
        raise ShareTokenForbidden("This session cannot use the share link")

    workflow = db.query(Workflow).filter(Workflow.workflow_id == share.workflow_id).first()
    if workflow is None:
        raise WorkflowNotFoundError("Workflow not found")
    return workflow, get_ordered_steps(db, workflow.workflow_id)
