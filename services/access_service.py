# File: services/access_service.py
"""
Read/edit authorization for workflows.

Read access is decided by an ordered list of independent rules. Each rule
answers ALLOW, DENY or NOT_APPLICABLE and the first decisive answer wins;
if no rule decides, access is denied. The legacy per-workflow membership
rule predates teams and is kept so older shared workflows stay readable.
"""
import enum
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from database.models.team_model import (
    MemberStatus,
    Team,
    TeamMember,
    TeamMemberRole,
    WorkflowMember,
    WorkflowShare,
)
from database.models.workflow_model import Workflow

logger = logging.getLogger(__name__)


class AccessDecision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"


def get_active_team_member(db: Session, team_id: str, user_id: str) -> Optional[TeamMember]:
    return (
        db.query(TeamMember)
        .filter(TeamMember.team_id == team_id)
        .filter(TeamMember.user_id == user_id)
        .filter(TeamMember.status == MemberStatus.ACTIVE)
        .first()
    )


class AccessRule:
    name = "rule"

    def evaluate(self, db: Session, workflow: Workflow, user_id: str) -> AccessDecision:
        raise NotImplementedError


class OwnerRule(AccessRule):
    name = "owner"

    def evaluate(self, db, workflow, user_id):
        if workflow.owner_id == user_id:
            return AccessDecision.ALLOW
        return AccessDecision.NOT_APPLICABLE


class TeamShareRule(AccessRule):
    """Team workflows: active members see it unless share rows narrow it down."""
    name = "team_share"

    def evaluate(self, db, workflow, user_id):
        if not workflow.team_id:
            return AccessDecision.NOT_APPLICABLE

        member = get_active_team_member(db, workflow.team_id, user_id)
        if member is None:
            return AccessDecision.DENY

        share_member_ids = {
            row.team_member_id
            for row in db.query(WorkflowShare.team_member_id)
            .filter(WorkflowShare.workflow_id == workflow.workflow_id)
            .all()
        }
        if not share_member_ids or member.member_id in share_member_ids:
            return AccessDecision.ALLOW
        return AccessDecision.DENY


class LegacyMemberRule(AccessRule):
    name = "legacy_member"

    def evaluate(self, db, workflow, user_id):
        if workflow.team_id:
            return AccessDecision.NOT_APPLICABLE

        legacy = (
            db.query(WorkflowMember)
            .filter(WorkflowMember.workflow_id == workflow.workflow_id)
            .filter(WorkflowMember.user_id == user_id)
            .filter(WorkflowMember.status == MemberStatus.ACTIVE)
            .first()
        )
        return AccessDecision.ALLOW if legacy else AccessDecision.NOT_APPLICABLE


DEFAULT_RULES: Sequence[AccessRule] = (OwnerRule(), TeamShareRule(), LegacyMemberRule())


class AccessResolver:
    def __init__(self, rules: Sequence[AccessRule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def can_read(self, db: Session, workflow: Workflow, user_id: str) -> bool:
        for rule in self.rules:
            decision = rule.evaluate(db, workflow, user_id)
            if decision is AccessDecision.ALLOW:
                return True
            if decision is AccessDecision.DENY:
                logger.debug(f"Workflow {workflow.workflow_id} denied to {user_id} by {rule.name}")
                return False
        return False


_default_resolver = AccessResolver()


def can_read(db: Session, workflow: Workflow, user_id: str) -> bool:
    return _default_resolver.can_read(db, workflow, user_id)


def is_team_admin(db: Session, team_id: str, user_id: str) -> bool:
    team = db.query(Team).filter(Team.team_id == team_id).first()
    if team is None:
        return False
    if team.owner_id == user_id:
        return True

    member = get_active_team_member(db, team_id, user_id)
    return member is not None and member.role in (TeamMemberRole.OWNER, TeamMemberRole.ADMIN)


def can_edit(db: Session, workflow: Workflow, user_id: str) -> bool:
    if workflow.owner_id == user_id:
        return True
    if workflow.team_id:
        return is_team_admin(db, workflow.team_id, user_id)
    return False
