# File: database/models/team_model.py
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class TeamMemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class MemberStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class LegacyMemberRole(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"


# Lower value wins when picking a default team for new workflows
ROLE_PRIORITY = {
    TeamMemberRole.OWNER: 0,
    TeamMemberRole.ADMIN: 1,
    TeamMemberRole.MEMBER: 2,
}


class Team(Base):
    __tablename__ = "work_teams"

    team_id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(String(1024), nullable=True)
    owner_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "work_team_members"

    member_id = Column(String(36), primary_key=True, default=_uuid)
    team_id = Column(String(36), ForeignKey("work_teams.team_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=True, index=True)  # NULL until an invite is accepted
    email = Column(String(255), nullable=True)
    role = Column(
        Enum(TeamMemberRole, values_callable=lambda x: [e.value for e in x]),
        default=TeamMemberRole.MEMBER,
        nullable=False,
    )
    status = Column(
        Enum(MemberStatus, values_callable=lambda x: [e.value for e in x]),
        default=MemberStatus.PENDING,
        nullable=False,
    )
    invited_by = Column(String(255), nullable=True)
    invited_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    joined_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    team = relationship("Team", back_populates="members")


class WorkflowShare(Base):
    """
    Restricts a team workflow to specific team members.
    No rows for a workflow means it is visible to every active team member.
    """
    __tablename__ = "work_workflow_shares"

    share_id = Column(String(36), primary_key=True, default=_uuid)
    workflow_id = Column(
        Integer,
        ForeignKey("work_workflows.workflow_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_member_id = Column(
        String(36),
        ForeignKey("work_team_members.member_id", ondelete="CASCADE"),
        nullable=False,
    )
    shared_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class WorkflowMember(Base):
    """Per-workflow membership that predates teams. Still honoured for personal workflows."""
    __tablename__ = "work_workflow_members"

    workflow_member_id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(
        Integer,
        ForeignKey("work_workflows.workflow_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(255), nullable=False)
    role = Column(
        Enum(LegacyMemberRole, values_callable=lambda x: [e.value for e in x]),
        default=LegacyMemberRole.MEMBER,
        nullable=False,
    )
    status = Column(
        Enum(MemberStatus, values_callable=lambda x: [e.value for e in x], name="legacy_member_status"),
        default=MemberStatus.PENDING,
        nullable=False,
    )
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("workflow_id", "user_id", name="ux_workflow_user"),
    )
