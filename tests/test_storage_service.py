# tests/test_storage_service.py
import os
from unittest.mock import MagicMock, patch

import pytest

from clients import supabase_storage_client
from clients.supabase_storage_client import StorageError
from services import storage_service


def _ok(content=b"", status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.text = ""
    return resp


@pytest.fixture
def frame_files(tmp_path):
    paths = []
    for i in range(3):
        path = tmp_path / f"frame-{i + 1:03d}.jpg"
        path.write_bytes(b"jpeg-%d" % i)
        paths.append(str(path))
    return paths


def test_archive_frames_uses_one_based_keys_with_upsert(monkeypatch, frame_files):
    monkeypatch.delenv("SCREENSHOT_BUCKET", raising=False)
    with patch.object(supabase_storage_client.requests, "post", return_value=_ok()) as post:
        urls = storage_service.archive_frames(frame_files, workflow_id=42)

    assert urls == [
        f"https://project.supabase.test/storage/v1/object/public/work-videos/screenshots/42/workflow_42_step_{n}.jpg"
        for n in (1, 2, 3)
    ]
    first_call = post.call_args_list[0]
    assert first_call.args[0].endswith("/storage/v1/object/work-videos/screenshots/42/workflow_42_step_1.jpg")
    assert first_call.kwargs["headers"]["x-upsert"] == "true"
    assert first_call.kwargs["headers"]["Content-Type"] == "image/jpeg"


def test_archive_frames_keeps_alignment_when_one_upload_fails(frame_files):
    responses = [_ok(), _ok(status_code=500), _ok()]
    with patch.object(supabase_storage_client.requests, "post", side_effect=responses):
        urls = storage_service.archive_frames(frame_files, workflow_id=7)

    assert len(urls) == 3
    assert urls[0].endswith("workflow_7_step_1.jpg")
    assert urls[1] == ""
    assert urls[2].endswith("workflow_7_step_3.jpg")


def test_archive_frames_respects_screenshot_bucket(monkeypatch, frame_files):
    monkeypatch.setenv("SCREENSHOT_BUCKET", "screens")
    with patch.object(supabase_storage_client.requests, "post", return_value=_ok()):
        urls = storage_service.archive_frames(frame_files[:1], workflow_id=1)

    assert "/object/public/screens/" in urls[0]


def test_download_video_writes_sanitized_file_and_cleans_up():
    with patch.object(supabase_storage_client.requests, "get", return_value=_ok(b"video-bytes")):
        video = storage_service.download_video("user-1/1700000000000_my video (1).mp4")

    try:
        assert os.path.basename(video.file_path) == "1700000000000_my_video__1_.mp4"
        with open(video.file_path, "rb") as f:
            assert f.read() == b"video-bytes"
    finally:
        video.cleanup()
    assert not os.path.exists(video.directory)


def test_download_video_raises_on_missing_object():
    with patch.object(supabase_storage_client.requests, "get", return_value=_ok(status_code=404)):
        with pytest.raises(StorageError) as exc_info:
            storage_service.download_video("user-1/missing.mp4")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_downloaded_video_context_removes_file():
    with patch.object(supabase_storage_client.requests, "get", return_value=_ok(b"v")):
        async with storage_service.downloaded_video("user-1/a.mp4") as path:
            assert os.path.exists(path)
    assert not os.path.exists(path)


def test_upload_video_stores_under_user_prefix():
    with patch.object(supabase_storage_client.requests, "post", return_value=_ok()) as post:
        path = storage_service.upload_video("user-1", "../My Clip.mp4", b"data", "video/mp4")

    assert path.startswith("user-1/")
    assert path.endswith("_My_Clip.mp4")
    assert post.call_args.kwargs["headers"]["x-upsert"] == "false"


def test_storage_client_requires_configuration(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    with pytest.raises(StorageError):
        supabase_storage_client.get_public_url("bucket", "key")
