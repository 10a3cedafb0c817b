"""Background upload job runner using asyncio."""
import asyncio
import json
import logging
import traceback
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ytfield.models.upload_job import JobStatus, UploadJob
from ytfield.services.errors import YouTubeServiceError

logger = logging.getLogger(__name__)


class JobRunner:
    """Async background job runner.

    Each job runs in its own task. Handler arguments, including any upload
    session URL a handler negotiates, live only in that task and are never
    written to the job row.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker
        self._running_jobs: Dict[int, asyncio.Task] = {}
        self._job_handlers: Dict[str, Callable] = {}

    def register_handler(self, job_type: str, handler: Callable):
        """Register a handler for a job type."""
        self._job_handlers[job_type] = handler

    async def create_job(self, file_path: str, title: str) -> UploadJob:
        """Insert a pending job row."""
        async with self.session_maker() as session:
            job = UploadJob(file_path=file_path, title=title, status=JobStatus.PENDING)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def get_job(self, job_id: int) -> Optional[UploadJob]:
        async with self.session_maker() as session:
            return await session.get(UploadJob, job_id)

    async def start_job(self, job_id: int, job_type: str, **kwargs) -> bool:
        """
        Start a background job.

        Args:
            job_id: Database ID of the job
            job_type: Type of job to run
            **kwargs: Arguments to pass to the job handler

        Returns:
            True if job started successfully
        """
        if job_id in self._running_jobs:
            logger.warning("Job %s is already running", job_id)
            return False

        handler = self._job_handlers.get(job_type)
        if not handler:
            logger.error("No handler registered for job type: %s", job_type)
            return False

        task = asyncio.create_task(self._run_job(job_id, handler, **kwargs))
        self._running_jobs[job_id] = task
        return True

    async def _update_job(self, job_id: int, **fields: Any) -> None:
        async with self.session_maker() as session:
            job = await session.get(UploadJob, job_id)
            if job:
                for name, value in fields.items():
                    setattr(job, name, value)
                await session.commit()

    async def _run_job(self, job_id: int, handler: Callable, **kwargs):
        """Run a job with error handling and status updates."""
        try:
            async with self.session_maker() as session:
                job = await session.get(UploadJob, job_id)
                if not job:
                    logger.error("Job %s not found", job_id)
                    return

                job.status = JobStatus.RUNNING
                job.started_at = datetime.utcnow()
                job.message = "Starting..."
                await session.commit()

            async def update_progress(progress: float, message: str = None):
                fields: Dict[str, Any] = {"progress": min(100.0, max(0.0, progress))}
                if message:
                    fields["message"] = message
                await self._update_job(job_id, **fields)

            result = await handler(job_id=job_id, progress_callback=update_progress, **kwargs)

            fields = {
                "status": JobStatus.COMPLETED,
                "progress": 100.0,
                "message": "Completed successfully",
                "completed_at": datetime.utcnow(),
            }
            if result:
                fields["result"] = json.dumps(result) if isinstance(result, (dict, list)) else str(result)
                if isinstance(result, dict) and result.get("video_id"):
                    fields["video_id"] = result["video_id"]
            await self._update_job(job_id, **fields)

            logger.info("Job %s completed successfully", job_id)

        except asyncio.CancelledError:
            await self._update_job(
                job_id,
                status=JobStatus.CANCELLED,
                message="Job cancelled",
                completed_at=datetime.utcnow(),
            )
            logger.info("Job %s was cancelled", job_id)

        except Exception as e:
            error_msg = str(e)
            error_trace = traceback.format_exc()
            logger.error("Job %s failed: %s\n%s", job_id, error_msg, error_trace)

            await self._update_job(
                job_id,
                status=JobStatus.FAILED,
                message=f"Failed: {error_msg}",
                error=error_trace,
                error_kind=e.kind if isinstance(e, YouTubeServiceError) else type(e).__name__,
                completed_at=datetime.utcnow(),
            )

        finally:
            self._running_jobs.pop(job_id, None)

    async def cancel_job(self, job_id: int) -> bool:
        """Cancel a running job."""
        task = self._running_jobs.get(job_id)
        if task:
            task.cancel()
            return True
        return False

    def is_job_running(self, job_id: int) -> bool:
        """Check if a job is currently running."""
        return job_id in self._running_jobs

    async def wait_for(self, job_id: int) -> None:
        """Wait until a running job has finished."""
        task = self._running_jobs.get(job_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self):
        """Cancel all running jobs."""
        for task in self._running_jobs.values():
            task.cancel()

        if self._running_jobs:
            await asyncio.gather(*self._running_jobs.values(), return_exceptions=True)

        self._running_jobs.clear()
