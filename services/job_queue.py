# File: services/job_queue.py
"""
Supervised in-process queue for analysis jobs.

Jobs are persisted as AnalysisJob rows; the in-memory asyncio.Queue only
carries job ids. A fixed pool of workers caps how many analyses run at
once. Each attempt runs under a timeout; failed attempts are retried with
exponential backoff until max_attempts, after which the workflow is marked
failed. On startup, recover() re-enqueues whatever was queued or running
when the process last stopped.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set

from database.db import SessionLocal
from database.models.job_model import AnalysisJob, JobStatus
from services.analysis_service import AnalysisOutcome, analyze_video, mark_analysis_failed

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)
CANCELLED_MESSAGE = "Analysis cancelled"

Runner = Callable[[int, int], Awaitable[AnalysisOutcome]]
FailureHandler = Callable[[int, int, str], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class JobQueueConfig:
    max_concurrency: int = 2
    max_attempts: int = 3
    job_timeout_seconds: float = 600
    retry_backoff_seconds: float = 5

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.job_timeout_seconds <= 0:
            raise ValueError("job_timeout_seconds must be positive")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must not be negative")

    @classmethod
    def from_env(cls) -> "JobQueueConfig":
        return cls(
            max_concurrency=int(os.getenv("ANALYSIS_MAX_CONCURRENCY", "2")),
            max_attempts=int(os.getenv("ANALYSIS_MAX_ATTEMPTS", "3")),
            job_timeout_seconds=float(os.getenv("ANALYSIS_JOB_TIMEOUT_SECONDS", "600")),
            retry_backoff_seconds=float(os.getenv("ANALYSIS_RETRY_BACKOFF_SECONDS", "5")),
        )

    def backoff_for(self, attempt: int) -> float:
        return self.retry_backoff_seconds * (2 ** max(attempt - 1, 0))


class AnalysisJobQueue:
    def __init__(
        self,
        config: JobQueueConfig = JobQueueConfig(),
        runner: Optional[Runner] = None,
        on_failure: Optional[FailureHandler] = None,
        session_factory=SessionLocal,
    ):
        self.config = config
        self._runner = runner or analyze_video
        self._on_failure = on_failure or mark_analysis_failed
        self._session_factory = session_factory

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._running: Dict[int, asyncio.Task] = {}
        self._retry_timers: Dict[int, asyncio.Task] = {}
        self._cancelled: Set[int] = set()

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    # ------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------
    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"analysis-worker-{i}")
            for i in range(self.config.max_concurrency)
        ]
        logger.info(f"Analysis queue started with {self.config.max_concurrency} worker(s)")

    async def stop(self) -> None:
        """
        Stops workers and pending retries. Jobs interrupted here keep their
        persisted state and are picked up again by recover() on next start.
        """
        tasks = self._workers + list(self._retry_timers.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._workers = []
        self._retry_timers.clear()
        self._running.clear()
        self._queue = None
        logger.info("Analysis queue stopped")

    async def join(self) -> None:
        """Waits until every enqueued job (including scheduled retries) is done."""
        while self._queue is not None:
            await self._queue.join()
            if not self._retry_timers:
                return
            await asyncio.gather(*list(self._retry_timers.values()), return_exceptions=True)

    # ------------------------------------------------------------
    # SUBMISSION
    # ------------------------------------------------------------
    def enqueue(self, job_id: int) -> None:
        if self._queue is None:
            raise RuntimeError("Analysis queue is not started")
        self._queue.put_nowait(job_id)
        logger.debug(f"Enqueued analysis job {job_id}")

    def recover(self) -> int:
        """Re-enqueues jobs left queued or running by a previous process."""
        db = self._session_factory()
        try:
            jobs = (
                db.query(AnalysisJob)
                .filter(AnalysisJob.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]))
                .order_by(AnalysisJob.created_at)
                .all()
            )

            to_enqueue: List[int] = []
            exhausted = []
            for job in jobs:
                if job.status == JobStatus.RUNNING and job.attempts >= job.max_attempts:
                    job.status = JobStatus.FAILED
                    job.last_error = "Interrupted on final attempt"
                    job.finished_at = _utcnow()
                    exhausted.append((job.video_id, job.workflow_id))
                else:
                    job.status = JobStatus.QUEUED
                    to_enqueue.append(job.job_id)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        for video_id, workflow_id in exhausted:
            self._on_failure(video_id, workflow_id, "Analysis interrupted")
        for job_id in to_enqueue:
            self.enqueue(job_id)

        if jobs:
            logger.info(f"Recovered {len(to_enqueue)} analysis job(s), failed {len(exhausted)}")
        return len(to_enqueue)

    def cancel(self, workflow_id: int) -> bool:
        """
        Cancels the job for a workflow.
        Returns False when there is no job or it already finished.
        """
        db = self._session_factory()
        try:
            job = db.query(AnalysisJob).filter(AnalysisJob.workflow_id == workflow_id).first()
            if job is None or job.status in TERMINAL_STATUSES:
                return False

            task = self._running.get(workflow_id)
            if task is not None and task.done():
                # The attempt already returned; its worker records the result
                return False

            job.status = JobStatus.CANCELLED
            job.last_error = CANCELLED_MESSAGE
            job.finished_at = _utcnow()
            job_id, video_id = job.job_id, job.video_id
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        timer = self._retry_timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()

        if task is not None and task.cancel():
            # The worker finalizes the workflow once the attempt unwinds
            self._cancelled.add(workflow_id)
        else:
            self._on_failure(video_id, workflow_id, CANCELLED_MESSAGE)

        logger.info(f"Cancelled analysis job {job_id} for workflow {workflow_id}")
        return True

    # ------------------------------------------------------------
    # EXECUTION
    # ------------------------------------------------------------
    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._process(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Worker {index} failed handling job {job_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _claim(self, job_id: int) -> Optional[AnalysisJob]:
        db = self._session_factory()
        try:
            job = db.query(AnalysisJob).filter(AnalysisJob.job_id == job_id).first()
            if job is None or job.status != JobStatus.QUEUED:
                return None

            job.status = JobStatus.RUNNING
            job.attempts = (job.attempts or 0) + 1
            job.started_at = _utcnow()
            db.commit()
            db.refresh(job)
            db.expunge(job)
            return job
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _update(self, job_id: int, **fields) -> None:
        db = self._session_factory()
        try:
            job = db.query(AnalysisJob).filter(AnalysisJob.job_id == job_id).first()
            if job is None:
                return
            for key, value in fields.items():
                setattr(job, key, value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _process(self, job_id: int) -> None:
        job = await asyncio.to_thread(self._claim, job_id)
        if job is None:
            logger.debug(f"Skipping analysis job {job_id}: not queued")
            return

        workflow_id, video_id = job.workflow_id, job.video_id
        logger.info(f"Running analysis job {job_id} (attempt {job.attempts}/{job.max_attempts})")

        task = asyncio.create_task(self._runner(video_id, workflow_id))
        self._running[workflow_id] = task
        try:
            outcome = await asyncio.wait_for(task, timeout=self.config.job_timeout_seconds)
        except asyncio.CancelledError:
            if workflow_id not in self._cancelled:
                raise
            await self._finish_cancelled(video_id, workflow_id)
            return
        except asyncio.TimeoutError:
            await self._handle_failure(job, f"Timed out after {self.config.job_timeout_seconds:g}s")
            return
        except Exception as e:
            logger.error(f"Analysis job {job_id} attempt {job.attempts} failed: {e}", exc_info=True)
            await self._handle_failure(job, str(e) or e.__class__.__name__)
            return
        finally:
            self._running.pop(workflow_id, None)

        if workflow_id in self._cancelled:
            await self._finish_cancelled(video_id, workflow_id)
            return

        fallback_reason = None
        if outcome.kind == "fallback":
            fallback_reason = f"{outcome.cause.__class__.__name__}: {outcome.cause}"
            logger.warning(f"Analysis job {job_id} completed with mock steps ({fallback_reason})")

        await asyncio.to_thread(
            self._update,
            job_id,
            status=JobStatus.SUCCEEDED,
            outcome=outcome.kind,
            fallback_reason=fallback_reason,
            last_error=None,
            finished_at=_utcnow(),
        )

    async def _finish_cancelled(self, video_id: int, workflow_id: int) -> None:
        self._cancelled.discard(workflow_id)
        await asyncio.to_thread(self._on_failure, video_id, workflow_id, CANCELLED_MESSAGE)

    async def _handle_failure(self, job: AnalysisJob, message: str) -> None:
        if job.attempts < job.max_attempts:
            delay = self.config.backoff_for(job.attempts)
            await asyncio.to_thread(self._update, job.job_id, status=JobStatus.QUEUED, last_error=message)
            self._retry_timers[job.job_id] = asyncio.create_task(self._requeue_later(job.job_id, delay))
            logger.warning(f"Analysis job {job.job_id} will retry in {delay:g}s: {message}")
            return

        await asyncio.to_thread(
            self._update, job.job_id, status=JobStatus.FAILED, last_error=message, finished_at=_utcnow()
        )
        logger.error(f"Analysis job {job.job_id} failed after {job.attempts} attempt(s): {message}")
        await asyncio.to_thread(self._on_failure, job.video_id, job.workflow_id, message)

    async def _requeue_later(self, job_id: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            if self._queue is not None:
                self._queue.put_nowait(job_id)
        finally:
            self._retry_timers.pop(job_id, None)
