# tests/test_access_service.py
from database.models.team_model import MemberStatus, TeamMemberRole, WorkflowMember
from services import access_service
from services.access_service import AccessDecision, AccessResolver, AccessRule, can_edit, can_read


def test_owner_can_always_read(db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    assert can_read(db, workflow, "user-1") is True


def test_personal_workflow_denies_strangers(db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    assert can_read(db, workflow, "user-2") is False


def test_team_workflow_without_shares_is_visible_to_active_members(db, make_team, add_member, make_workflow):
    team = make_team()
    add_member(team, "user-2")
    workflow = make_workflow(owner_id="user-1", team_id=team.team_id)

    assert can_read(db, workflow, "user-2") is True


def test_team_workflow_denies_non_members(db, make_team, make_workflow):
    team = make_team()
    workflow = make_workflow(owner_id="user-1", team_id=team.team_id)

    assert can_read(db, workflow, "outsider") is False


def test_inactive_member_is_denied(db, make_team, add_member, make_workflow):
    team = make_team()
    add_member(team, "user-2", status=MemberStatus.PENDING)
    workflow = make_workflow(owner_id="user-1", team_id=team.team_id)

    assert can_read(db, workflow, "user-2") is False


def test_share_rows_restrict_team_visibility(db, make_team, add_member, make_workflow, share_with):
    team = make_team()
    m1 = add_member(team, "user-m1")
    add_member(team, "user-m2")
    m3 = add_member(team, "user-m3")
    workflow = make_workflow(owner_id="user-m1", team_id=team.team_id)

    share_with(workflow, m1)
    share_with(workflow, m3)

    assert can_read(db, workflow, "user-m1") is True
    assert can_read(db, workflow, "user-m2") is False
    # Any share row naming the member grants access, not only the first one
    assert can_read(db, workflow, "user-m3") is True


def test_legacy_membership_grants_personal_workflow(db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    db.add(WorkflowMember(workflow_id=workflow.workflow_id, user_id="user-2", status=MemberStatus.ACTIVE))
    db.commit()

    assert can_read(db, workflow, "user-2") is True


def test_legacy_membership_does_not_bypass_team_shares(db, make_team, add_member, make_workflow, share_with):
    team = make_team()
    m1 = add_member(team, "user-1")
    add_member(team, "user-2")
    workflow = make_workflow(owner_id="user-1", team_id=team.team_id)
    share_with(workflow, m1)
    db.add(WorkflowMember(workflow_id=workflow.workflow_id, user_id="user-2", status=MemberStatus.ACTIVE))
    db.commit()

    assert can_read(db, workflow, "user-2") is False


def test_pending_legacy_membership_is_ignored(db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    db.add(WorkflowMember(workflow_id=workflow.workflow_id, user_id="user-2", status=MemberStatus.PENDING))
    db.commit()

    assert can_read(db, workflow, "user-2") is False


def test_resolver_defaults_to_deny_when_no_rule_decides(db, make_workflow):
    class Abstain(AccessRule):
        name = "abstain"

        def evaluate(self, db, workflow, user_id):
            return AccessDecision.NOT_APPLICABLE

    workflow = make_workflow(owner_id="user-1")
    assert AccessResolver([Abstain()]).can_read(db, workflow, "user-1") is False


def test_first_decisive_rule_wins(db, make_workflow):
    class AlwaysDeny(AccessRule):
        name = "deny"

        def evaluate(self, db, workflow, user_id):
            return AccessDecision.DENY

    workflow = make_workflow(owner_id="user-1")
    resolver = AccessResolver([AlwaysDeny(), access_service.OwnerRule()])
    assert resolver.can_read(db, workflow, "user-1") is False


def test_team_admin_can_edit_team_workflow(db, make_team, add_member, make_workflow):
    team = make_team(owner_id="team-owner")
    add_member(team, "admin-1", role=TeamMemberRole.ADMIN)
    add_member(team, "member-1")
    workflow = make_workflow(owner_id="member-1", team_id=team.team_id)

    assert can_edit(db, workflow, "admin-1") is True
    assert can_edit(db, workflow, "team-owner") is True
    assert can_edit(db, workflow, "member-1") is True
    assert access_service.is_team_admin(db, team.team_id, "member-1") is False


def test_plain_member_cannot_edit_others_workflow(db, make_team, add_member, make_workflow):
    team = make_team()
    add_member(team, "member-1")
    add_member(team, "member-2")
    workflow = make_workflow(owner_id="member-1", team_id=team.team_id)

    assert can_edit(db, workflow, "member-2") is False
