# clients/supabase_storage_client.py
import logging
import os
from typing import Dict, Optional
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60


class StorageError(Exception):
    """Raised when the object store rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _settings() -> Dict[str, str]:
    url = os.getenv("SUPABASE_URL", "").rstrip("/")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    if not url or not key:
        raise StorageError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return {"url": url, "key": key}


def _headers(key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {key}", "apikey": key}


def _object_url(base: str, bucket: str, path: str, public: bool = False) -> str:
    scope = "object/public" if public else "object"
    return f"{base}/storage/v1/{scope}/{quote(bucket)}/{quote(path.lstrip('/'))}"


def download_object(bucket: str, path: str) -> bytes:
    if not path:
        raise StorageError("Invalid storage path")

    cfg = _settings()
    try:
        resp = requests.get(
            _object_url(cfg["url"], bucket, path),
            headers=_headers(cfg["key"]),
            timeout=REQUEST_TIMEOUT,
        )
    except RequestException as e:
        raise StorageError(f"Download request failed for {bucket}/{path}: {e}") from e

    if resp.status_code != 200:
        raise StorageError(
            f"Download failed ({resp.status_code}) for {bucket}/{path}: {resp.text[:200]}",
            status_code=resp.status_code,
        )
    return resp.content


def upload_object(
    bucket: str,
    path: str,
    data: bytes,
    content_type: str = "application/octet-stream",
    upsert: bool = False,
    cache_control: str = "3600",
) -> str:
    """Uploads bytes and returns the object key."""
    cfg = _settings()
    headers = _headers(cfg["key"])
    headers.update({
        "Content-Type": content_type,
        "x-upsert": "true" if upsert else "false",
        "cache-control": f"max-age={cache_control}",
    })

    try:
        resp = requests.post(
            _object_url(cfg["url"], bucket, path),
            data=data,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
        )
    except RequestException as e:
        raise StorageError(f"Upload request failed for {bucket}/{path}: {e}") from e

    if resp.status_code not in (200, 201):
        raise StorageError(
            f"Upload failed ({resp.status_code}) for {bucket}/{path}: {resp.text[:200]}",
            status_code=resp.status_code,
        )
    return path


def get_public_url(bucket: str, path: str) -> str:
    cfg = _settings()
    return _object_url(cfg["url"], bucket, path, public=True)
