# utils/sanitization.py
from typing import Optional
import re

CONTROL_CHARS = r"[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f-\x9f]"
UNSAFE_FILENAME_CHARS = r"[^a-zA-Z0-9._-]"


def clean_text(value: Optional[str]) -> str:
    if value is None:
        return ""

    text = re.sub(CONTROL_CHARS, "", value)
    text = text.strip()
    text = re.sub(r"\s+", " ", text)

    return text


def safe_filename(name: Optional[str], fallback: str = "video.mp4") -> str:
    """Reduces a storage path or upload name to a filesystem-safe basename."""
    base = (name or "").replace("\\", "/").rsplit("/", 1)[-1]
    base = re.sub(UNSAFE_FILENAME_CHARS, "_", base)
    if not base.strip("._"):
        return fallback
    return base


def strip_extension(filename: Optional[str]) -> str:
    if not filename:
        return ""
    return re.sub(r"\.[^/.]+$", "", filename)
