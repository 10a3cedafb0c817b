"""Job handlers for background work."""
import logging
from typing import Callable

from ytfield.services.upload_service import ResumableUploadService, VideoMetadataDraft

logger = logging.getLogger(__name__)

UPLOAD_JOB_TYPE = "upload"


async def handle_upload(
    job_id: int,
    progress_callback: Callable,
    upload_service: ResumableUploadService,
    file_path: str,
    draft: VideoMetadataDraft,
    **kwargs
) -> dict:
    """
    Handle a server-side upload job.

    Args:
        job_id: Job ID
        progress_callback: Async callback for progress updates
        upload_service: Service performing the upload
        file_path: Local path of the video
        draft: Video metadata

    Returns:
        Result dictionary
    """
    await progress_callback(0, "Negotiating upload session...")

    async def on_chunk(bytes_uploaded: int, total_bytes: int):
        percent = bytes_uploaded / total_bytes * 100 if total_bytes else 0.0
        await progress_callback(percent, f"Uploaded {bytes_uploaded} of {total_bytes} bytes")

    result = await upload_service.upload_video(
        file_path,
        draft,
        upload_context_id=f"job-{job_id}",
        progress_callback=on_chunk,
    )

    if result.video_id:
        logger.info("Upload job %s produced video %s (%s)", job_id, result.video_id, result.status)
    else:
        logger.warning("Upload job %s finished but the video could not be identified", job_id)

    return result.to_dict()
