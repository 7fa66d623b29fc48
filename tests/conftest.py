# tests/conftest.py
import os
import tempfile
from datetime import datetime

# Must be set before any application module is imported.
# A file database gives each worker thread its own connection.
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='synchro-tests-'), 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SUPABASE_URL", "https://project.supabase.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

import pytest

from database.db import Base, SessionLocal, engine, init_db
from database.models.team_model import MemberStatus, Team, TeamMember, TeamMemberRole, WorkflowShare
from database.models.workflow_model import UploadStatus, Video, Workflow, WorkflowStatus

init_db()


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_video(db):
    def _make(owner_id="user-1", **kwargs):
        fields = {
            "title": "Monthly invoice run",
            "original_filename": "invoice-run.mp4",
            "mime_type": "video/mp4",
            "file_size": 1024,
            "storage_path": f"{owner_id}/1700000000000_invoice-run.mp4",
            "status": UploadStatus.IDLE,
        }
        fields.update(kwargs)
        video = Video(owner_id=owner_id, **fields)
        db.add(video)
        db.commit()
        db.refresh(video)
        return video
    return _make


@pytest.fixture
def make_workflow(db):
    def _make(owner_id="user-1", team_id=None, **kwargs):
        fields = {"title": "Invoice run", "status": WorkflowStatus.ANALYZED}
        fields.update(kwargs)
        workflow = Workflow(owner_id=owner_id, team_id=team_id, **fields)
        db.add(workflow)
        db.commit()
        db.refresh(workflow)
        return workflow
    return _make


@pytest.fixture
def make_team(db):
    def _make(owner_id="owner-1", name="Finance"):
        team = Team(name=name, owner_id=owner_id)
        db.add(team)
        db.commit()
        db.refresh(team)
        return team
    return _make


@pytest.fixture
def add_member(db):
    def _add(team, user_id, role=TeamMemberRole.MEMBER, status=MemberStatus.ACTIVE, invited_at=None):
        member = TeamMember(
            team_id=team.team_id,
            user_id=user_id,
            email=f"{user_id}@example.com",
            role=role,
            status=status,
            invited_at=invited_at or datetime.utcnow(),
        )
        db.add(member)
        db.commit()
        db.refresh(member)
        return member
    return _add


@pytest.fixture
def share_with(db):
    def _share(workflow, member, shared_by="owner-1"):
        share = WorkflowShare(
            workflow_id=workflow.workflow_id,
            team_member_id=member.member_id,
            shared_by=shared_by,
        )
        db.add(share)
        db.commit()
        return share
    return _share
