# tests/test_share_service.py
from datetime import datetime, timedelta

import pytest

from database.models.share_model import ShareStatus, ShareToken
from database.models.workflow_model import AnalysisStep, StepType
from services import workflow_service
from services.share_service import (
    ShareTokenClaimed,
    ShareTokenExpired,
    ShareTokenForbidden,
    ShareTokenNotFound,
    claim_share_token,
    create_share_token,
    get_shared_workflow,
)
from services.workflow_service import WorkflowAccessDenied, WorkflowNotFoundError

NOW = datetime(2026, 3, 10, 12, 0)


@pytest.fixture
def workflow(db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    # Inserted out of order on purpose
    for n, action in [(2, "Save"), (1, "Open")]:
        db.add(AnalysisStep(
            workflow_id=workflow.workflow_id,
            sequence_no=n,
            type=StepType.CLICK,
            action=action,
            description=f"{action} step",
        ))
    db.commit()
    return workflow


def test_only_owner_can_create(db, workflow):
    with pytest.raises(WorkflowAccessDenied):
        create_share_token(db, workflow.workflow_id, "user-2")
    with pytest.raises(WorkflowNotFoundError):
        create_share_token(db, 9999, "user-1")


def test_create_sets_optional_expiry(db, workflow):
    forever = create_share_token(db, workflow.workflow_id, "user-1", now=NOW)
    hour = create_share_token(db, workflow.workflow_id, "user-1", expires_in_seconds=3600, now=NOW)

    assert forever.expires_at is None
    assert forever.status == ShareStatus.ACTIVE
    assert hour.expires_at == NOW + timedelta(hours=1)
    assert forever.token != hour.token


def test_claim_binds_to_first_session(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1")

    claimed = claim_share_token(db, share.token, "tab-a")
    assert claimed.session_id == "tab-a"
    assert claimed.status == ShareStatus.CLAIMED
    assert claimed.claimed_at is not None

    # Same session again is fine
    assert claim_share_token(db, share.token, "tab-a").session_id == "tab-a"

    with pytest.raises(ShareTokenClaimed):
        claim_share_token(db, share.token, "tab-b")


def test_claim_unknown_token(db):
    with pytest.raises(ShareTokenNotFound):
        claim_share_token(db, "missing", "tab-a")


def test_claim_after_expiry(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1", expires_in_seconds=60, now=NOW)

    with pytest.raises(ShareTokenExpired):
        claim_share_token(db, share.token, "tab-a", now=NOW + timedelta(minutes=2))

    db.expire_all()
    assert db.get(ShareToken, share.token).status == ShareStatus.EXPIRED
    with pytest.raises(ShareTokenForbidden):
        claim_share_token(db, share.token, "tab-a", now=NOW)


def test_revoked_token_cannot_be_claimed(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1")
    share.status = ShareStatus.REVOKED
    db.commit()

    with pytest.raises(ShareTokenForbidden):
        claim_share_token(db, share.token, "tab-a")


def test_shared_workflow_returns_steps_in_order(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1")
    claim_share_token(db, share.token, "tab-a")

    shared, steps = get_shared_workflow(db, share.token, "tab-a")
    assert shared.workflow_id == workflow.workflow_id
    assert [(s.sequence_no, s.action) for s in steps] == [(1, "Open"), (2, "Save")]


def test_shared_workflow_rejects_other_or_unclaimed_session(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1")

    with pytest.raises(ShareTokenForbidden):
        get_shared_workflow(db, share.token, "tab-a")

    claim_share_token(db, share.token, "tab-a")
    with pytest.raises(ShareTokenForbidden):
        get_shared_workflow(db, share.token, "tab-b")


def test_shared_workflow_expires(db, workflow):
    share = create_share_token(db, workflow.workflow_id, "user-1", expires_in_seconds=60, now=NOW)
    claim_share_token(db, share.token, "tab-a", now=NOW)

    with pytest.raises(ShareTokenExpired):
        get_shared_workflow(db, share.token, "tab-a", now=NOW + timedelta(minutes=5))


def test_deleting_workflow_removes_its_tokens(db, workflow):
    create_share_token(db, workflow.workflow_id, "user-1")

    workflow_service.delete_workflow(db, workflow.workflow_id, "user-1")

    assert db.query(ShareToken).count() == 0
