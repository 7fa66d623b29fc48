# File: services/storage_service.py
import asyncio
import logging
import os
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Sequence

from clients import supabase_storage_client as storage
from utils.sanitization import safe_filename

logger = logging.getLogger(__name__)


def video_bucket() -> str:
    return os.getenv("VIDEO_BUCKET", "work-videos")


def screenshot_bucket() -> str:
    return os.getenv("SCREENSHOT_BUCKET") or video_bucket()


def screenshot_key(workflow_id: int, position: int) -> str:
    return f"screenshots/{workflow_id}/workflow_{workflow_id}_step_{position}.jpg"


@dataclass
class DownloadedVideo:
    file_path: str
    directory: str

    def cleanup(self) -> None:
        shutil.rmtree(self.directory, ignore_errors=True)


def download_video(storage_path: str) -> DownloadedVideo:
    """
    Copies a stored video into a fresh temp directory.
    The caller must call ``cleanup()`` once done with the file.

    Raises:
        StorageError: If the object cannot be fetched.
    """
    data = storage.download_object(video_bucket(), storage_path)

    tmp_dir = tempfile.mkdtemp(prefix="video-")
    file_path = os.path.join(tmp_dir, safe_filename(storage_path, fallback=f"video_{int(time.time() * 1000)}.mp4"))
    try:
        with open(file_path, "wb") as f:
            f.write(data)
    except OSError:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise

    logger.info(f"Downloaded {storage_path} ({len(data)} bytes)")
    return DownloadedVideo(file_path=file_path, directory=tmp_dir)


@asynccontextmanager
async def downloaded_video(storage_path: str) -> AsyncIterator[str]:
    video = await asyncio.to_thread(download_video, storage_path)
    try:
        yield video.file_path
    finally:
        video.cleanup()


def upload_video(user_id: str, filename: str, data: bytes, content_type: str) -> str:
    path = f"{user_id}/{int(time.time() * 1000)}_{safe_filename(filename)}"
    return storage.upload_object(video_bucket(), path, data, content_type=content_type, upsert=False)


def archive_frames(frame_paths: Sequence[str], workflow_id: int) -> List[str]:
    """
    Uploads frames as step screenshots.
    Returns public URLs aligned with ``frame_paths``; a frame that fails to
    upload yields an empty string instead of failing the batch.
    """
    bucket = screenshot_bucket()
    urls: List[str] = []

    for position, frame_path in enumerate(frame_paths, start=1):
        key = screenshot_key(workflow_id, position)
        try:
            with open(frame_path, "rb") as f:
                data = f.read()
            storage.upload_object(bucket, key, data, content_type="image/jpeg", upsert=True)
            urls.append(storage.get_public_url(bucket, key))
        except Exception as e:
            logger.warning(f"Screenshot upload failed for {key}: {e}")
            urls.append("")

    logger.info(f"Archived {sum(1 for u in urls if u)}/{len(urls)} screenshot(s) for workflow {workflow_id}")
    return urls
