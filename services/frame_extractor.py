# File: services/frame_extractor.py
import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List

logger = logging.getLogger(__name__)

FFMPEG_BIN = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_PATH", "ffprobe")

SCENE_CHANGE_THRESHOLD = 0.3
FALLBACK_SAMPLE_FPS = 1
DEFAULT_MAX_FRAMES = 8


class FrameExtractionError(Exception):
    """Raised when ffmpeg/ffprobe exits non-zero. Carries the tool's stderr."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


@dataclass
class ExtractedFrames:
    paths: List[str]
    directory: str
    _cleaned: bool = field(default=False, repr=False)

    def cleanup(self) -> None:
        """Removes the temporary frame directory. Safe to call more than once."""
        if self._cleaned:
            return
        self._cleaned = True
        shutil.rmtree(self.directory, ignore_errors=True)


async def _run_tool(binary: str, args: List[str]) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FrameExtractionError(f"{binary} not found", str(e)) from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        diagnostics = stderr.decode("utf-8", errors="replace")
        raise FrameExtractionError(f"{os.path.basename(binary)} failed ({proc.returncode})", diagnostics)
    return stdout.decode("utf-8", errors="replace")


async def _run_ffmpeg(args: List[str]) -> None:
    await _run_tool(FFMPEG_BIN, ["-y", *args])


def _list_frames(directory: str, prefix: str) -> List[str]:
    return sorted(
        f for f in os.listdir(directory)
        if f.startswith(prefix) and f.endswith(".jpg")
    )


async def extract_frames(video_path: str, max_frames: int = DEFAULT_MAX_FRAMES) -> ExtractedFrames:
    """
    Pulls still frames at scene transitions, falling back to one frame per
    second when no transition clears the threshold.

    The caller owns the returned directory and must call ``cleanup()`` on
    every exit path (or use ``extracted_frames``).

    Raises:
        FrameExtractionError: If ffmpeg cannot decode the video.
    """
    if max_frames < 1:
        raise ValueError("max_frames must be at least 1")

    out_dir = tempfile.mkdtemp(prefix="frames-")
    frames = ExtractedFrames(paths=[], directory=out_dir)

    try:
        await _run_ffmpeg([
            "-i", video_path,
            "-vf", f"select='gt(scene,{SCENE_CHANGE_THRESHOLD})',metadata=print",
            "-vsync", "vfr",
            os.path.join(out_dir, "frame-%03d.jpg"),
        ])
        files = _list_frames(out_dir, "frame-")

        if not files:
            logger.info(f"No scene changes detected in {video_path}; sampling at {FALLBACK_SAMPLE_FPS} fps")
            await _run_ffmpeg([
                "-i", video_path,
                "-vf", f"fps={FALLBACK_SAMPLE_FPS}",
                os.path.join(out_dir, "sample-%03d.jpg"),
            ])
            files = _list_frames(out_dir, "sample-")
    except Exception:
        frames.cleanup()
        raise

    frames.paths = [os.path.join(out_dir, f) for f in files[:max_frames]]
    logger.info(f"Extracted {len(frames.paths)} frame(s) from {video_path}")
    return frames


@asynccontextmanager
async def extracted_frames(video_path: str, max_frames: int = DEFAULT_MAX_FRAMES) -> AsyncIterator[List[str]]:
    frames = await extract_frames(video_path, max_frames=max_frames)
    try:
        yield frames.paths
    finally:
        frames.cleanup()


async def get_video_duration(video_path: str) -> float:
    output = await _run_tool(FFPROBE_BIN, [
        "-v", "quiet",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        video_path,
    ])
    try:
        return float(output.strip())
    except ValueError as e:
        raise FrameExtractionError(f"Invalid duration value: {output.strip()!r}") from e
