# tests/test_api.py
import asyncio
import time
from datetime import datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from api.dependencies import auth
from api.dependencies.analysis import get_job_queue, get_rate_limit_config
from api.dependencies.auth import AuthenticatedUser, get_current_user
from api.main import app
from clients.supabase_storage_client import StorageError
from database.models.audit_model import AuditLog
from database.models.share_model import ShareToken
from database.models.workflow_model import AnalysisStep, StepType
from services.analysis_service import analyze_video
from services.job_queue import JobQueueConfig
from services.rate_limit_service import RateLimitConfig


class RecordingQueue:
    """Stands in for the worker pool; jobs are run explicitly by the test."""

    is_running = True

    def __init__(self):
        self.config = JobQueueConfig()
        self.enqueued = []
        self.cancelled = []

    def enqueue(self, job_id):
        self.enqueued.append(job_id)

    def cancel(self, workflow_id):
        self.cancelled.append(workflow_id)
        return True


@pytest.fixture
def current_user():
    return {"id": "user-1"}


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def client(current_user, queue):
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedUser(id=current_user["id"])
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_rate_limit_config] = lambda: RateLimitConfig(max_daily_requests=1)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _register_video(client, owner_id="user-1"):
    r = client.post("/api/work/videos", json={
        "storage_path": f"{owner_id}/1700000000000_invoice.mp4",
        "original_filename": "invoice.mp4",
        "mime_type": "video/mp4",
        "file_size": 2048,
    })
    assert r.status_code == 200, r.text
    return r.json()


def _storage_down(storage_path):
    raise StorageError("Download failed (500)", status_code=500)


def test_health():
    r = TestClient(app).get("/health")
    assert r.status_code == 200
    assert r.json()["database"] == "ok"


def test_requests_without_token_are_rejected():
    r = TestClient(app).get("/api/work/rate-limit")
    assert r.status_code == 401


def test_supabase_token_is_accepted():
    token = jwt.encode(
        {"sub": "user-9", "aud": "authenticated", "exp": int(time.time()) + 300},
        auth.SECRET_KEY,
        algorithm="HS256",
    )
    r = TestClient(app).get("/api/work/rate-limit", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["currentCount"] == 0


def test_token_with_wrong_signature_is_rejected():
    token = jwt.encode({"sub": "user-9", "aud": "authenticated"}, "not-the-secret", algorithm="HS256")
    r = TestClient(app).get("/api/work/rate-limit", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_analyze_then_poll_until_analyzed_and_hit_daily_limit(client, queue):
    video = _register_video(client)
    assert video["title"] == "invoice"

    r = client.post("/api/work/analyze", json={"video_id": video["video_id"]})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["status"] == "analyzing"
    workflow_id = body["workflow_id"]
    assert queue.enqueued == [body["job_id"]]

    status = client.get(f"/api/work/workflows/{workflow_id}/status").json()
    assert status["status"] == "analyzing"

    with patch("services.storage_service.download_video", _storage_down):
        asyncio.run(analyze_video(video["video_id"], workflow_id))

    status = client.get(f"/api/work/workflows/{workflow_id}/status").json()
    assert status["status"] == "analyzed"
    assert status["progress"] == 100
    assert status["steps_count"] == 5

    detail = client.get(f"/api/work/workflows/{workflow_id}").json()
    assert [s["sequence_no"] for s in detail["steps"]] == [1, 2, 3, 4, 5]

    r = client.post("/api/work/analyze", json={"video_id": video["video_id"]})
    assert r.status_code == 429
    body = r.json()
    assert body["remainingRequests"] == 0
    assert body["error"]
    assert body["resetTime"].endswith("+00:00")

    limit = client.get("/api/work/rate-limit").json()
    assert limit["isLimitExceeded"] is True
    assert limit["remainingRequests"] == 0


def test_analyze_rejects_missing_and_foreign_videos(client, current_user):
    r = client.post("/api/work/analyze", json={"video_id": 424242})
    assert r.status_code == 404

    video = _register_video(client)
    current_user["id"] = "user-2"
    r = client.post("/api/work/analyze", json={"video_id": video["video_id"]})
    assert r.status_code == 403


def test_register_video_rejects_foreign_storage_path(client):
    r = client.post("/api/work/videos", json={
        "storage_path": "someone-else/clip.mp4",
        "original_filename": "clip.mp4",
        "mime_type": "video/mp4",
        "file_size": 10,
    })
    assert r.status_code == 403


def test_upload_accepts_only_video(client):
    r = client.post("/api/work/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert r.status_code == 400

    with patch("api.routers.work.upload_video", return_value="user-1/1700000000000_clip.mp4") as upload:
        r = client.post("/api/work/upload", files={"file": ("clip.mp4", b"\x00\x00\x00\x18ftyp", "video/mp4")})

    assert r.status_code == 200, r.text
    assert r.json()["storage_path"] == "user-1/1700000000000_clip.mp4"
    assert upload.call_args.args[0] == "user-1"


def test_team_share_restricts_workflow_visibility(client, current_user, make_team, add_member, make_workflow):
    team = make_team(owner_id="team-owner")
    m1 = add_member(team, "user-m1")
    add_member(team, "user-m2")
    m3 = add_member(team, "user-m3")
    workflow = make_workflow(owner_id="user-m1", team_id=team.team_id)
    url = f"/api/work/workflows/{workflow.workflow_id}"

    current_user["id"] = "user-m2"
    assert client.get(url).status_code == 200

    current_user["id"] = "team-owner"
    r = client.post(
        f"/api/teams/{team.team_id}/workflows/{workflow.workflow_id}/shares",
        json={"member_ids": [m1.member_id, m3.member_id]},
    )
    assert r.status_code == 200, r.text
    assert r.json()["is_shared_with_all"] is False

    current_user["id"] = "user-m2"
    assert client.get(url).status_code == 403
    current_user["id"] = "user-m3"
    assert client.get(url).status_code == 200
    current_user["id"] = "outsider"
    assert client.get(url).status_code == 403


def test_only_admins_manage_shares(client, current_user, make_team, add_member, make_workflow):
    team = make_team(owner_id="team-owner")
    add_member(team, "user-m1")
    workflow = make_workflow(owner_id="user-m1", team_id=team.team_id)

    current_user["id"] = "user-m1"
    r = client.get(f"/api/teams/{team.team_id}/workflows/{workflow.workflow_id}/shares")
    assert r.status_code == 403


def test_cancel_and_delete_are_owner_only(client, current_user, queue, db, make_workflow):
    workflow = make_workflow(owner_id="user-1")

    current_user["id"] = "user-2"
    assert client.post(f"/api/work/workflows/{workflow.workflow_id}/cancel").status_code == 403

    current_user["id"] = "user-1"
    r = client.post(f"/api/work/workflows/{workflow.workflow_id}/cancel")
    assert r.status_code == 200
    assert queue.cancelled == [workflow.workflow_id]

    assert client.delete(f"/api/work/workflows/{workflow.workflow_id}").status_code == 204
    assert client.get(f"/api/work/workflows/{workflow.workflow_id}").status_code == 404

    actions = sorted(row.action for row in db.query(AuditLog).all())
    assert actions == ["CANCEL_ANALYSIS", "DELETE_WORKFLOW"]


def test_step_editing_endpoints(client, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    base = f"/api/work/workflows/{workflow.workflow_id}/steps"

    first = client.post(base, json={"type": "navigate", "action": "Open app", "description": "Open it"}).json()
    second = client.post(base, json={"type": "click", "action": "Save", "description": "Save it"}).json()
    assert (first["sequence_no"], second["sequence_no"]) == (1, 2)

    r = client.patch(f"{base}/{first['step_id']}", json={"notes": "use SSO"})
    assert r.json()["notes"] == "use SSO"

    r = client.post(f"{base}/reorder", json={"step_ids": [second["step_id"], first["step_id"]]})
    assert [s["step_id"] for s in r.json()] == [second["step_id"], first["step_id"]]

    assert client.delete(f"{base}/{second['step_id']}").status_code == 204
    steps = client.get(f"/api/work/workflows/{workflow.workflow_id}").json()["steps"]
    assert [(s["step_id"], s["sequence_no"]) for s in steps] == [(first["step_id"], 1)]


def test_list_workflows(client, make_workflow):
    mine = make_workflow(owner_id="user-1")
    make_workflow(owner_id="user-2")

    r = client.get("/api/work/workflows")
    assert [wf["workflow_id"] for wf in r.json()] == [mine.workflow_id]


def test_share_link_flow(client, current_user, db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    db.add(AnalysisStep(workflow_id=workflow.workflow_id, sequence_no=1, type=StepType.NAVIGATE, action="Open", description="Open app"))
    db.commit()

    current_user["id"] = "user-2"
    assert client.post("/api/work/share/create", json={"workflow_id": workflow.workflow_id}).status_code == 403

    current_user["id"] = "user-1"
    r = client.post("/api/work/share/create", json={"workflow_id": workflow.workflow_id, "expires_in_seconds": 600})
    assert r.status_code == 200, r.text
    body = r.json()
    token = body["token"]
    assert body["share_url"].endswith(f"/share/{token}")
    assert body["expires_at"] is not None

    public = TestClient(app)
    assert public.post("/api/work/share/claim", json={"token": token, "session_id": "tab-a"}).json() == {"success": True}
    assert public.post("/api/work/share/claim", json={"token": token, "session_id": "tab-b"}).status_code == 409
    assert public.post("/api/work/share/claim", json={"token": "nope", "session_id": "tab-a"}).status_code == 404

    r = public.get(f"/api/work/share/workflows/{token}", headers={"x-share-session": "tab-a"})
    assert r.status_code == 200
    assert [s["action"] for s in r.json()["workflow"]["steps"]] == ["Open"]

    assert public.get(f"/api/work/share/workflows/{token}", headers={"x-share-session": "tab-b"}).status_code == 403
    assert public.get(f"/api/work/share/workflows/{token}").status_code == 400


def test_expired_share_link_is_gone(client, db, make_workflow):
    workflow = make_workflow(owner_id="user-1")
    token = client.post(
        "/api/work/share/create", json={"workflow_id": workflow.workflow_id, "expires_in_seconds": 60}
    ).json()["token"]

    share = db.get(ShareToken, token)
    share.expires_at = datetime(2000, 1, 1)
    db.commit()

    r = TestClient(app).post("/api/work/share/claim", json={"token": token, "session_id": "tab-a"})
    assert r.status_code == 410
