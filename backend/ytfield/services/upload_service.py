"""Resumable chunked uploads to YouTube."""
import enum
import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx

from ytfield.config import Settings
from ytfield.services.discovery_service import VideoDiscoveryPoller
from ytfield.services.errors import (
    AmbiguousCompletion,
    ChunkLimitExceeded,
    MissingUploadUrl,
    ProviderRejected,
    TransportFailure,
    ValidationError,
    YouTubeServiceError,
)
from ytfield.services.oauth_service import OAuthSessionManager
from ytfield.utils.quota import log_quota_usage

logger = logging.getLogger(__name__)

RESUMABLE_UPLOAD_URL = (
    "https://www.googleapis.com/upload/youtube/v3/videos"
    "?uploadType=resumable&part=snippet,status"
)
PRIVACY_STATUSES = ("private", "public", "unlisted")
SESSION_SUCCESS_CODES = (200, 201, 202)
RESUME_INCOMPLETE = 308
DEFAULT_CHUNK_CONTENT_TYPE = "application/octet-stream"

# Errors raised while waiting for the response, i.e. after the body was sent
RESPONSE_READ_ERRORS = (httpx.ReadTimeout, httpx.ReadError, httpx.RemoteProtocolError)

_RANGE_HEADER_RE = re.compile(r"^bytes=(\d+)-(\d+)$")

ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class VideoMetadataDraft:
    """Metadata for a video about to be uploaded."""
    title: str
    description: Optional[str] = None
    category_id: str = "22"
    tags: List[str] = field(default_factory=list)
    privacy_status: str = "unlisted"
    made_for_kids: bool = False

    def validate(self) -> None:
        if not self.title or not self.title.strip():
            raise ValidationError("Post title is required")
        if self.privacy_status not in PRIVACY_STATUSES:
            raise ValidationError(f'Invalid privacy status "{self.privacy_status}"')

    def to_resource(self) -> Dict[str, Any]:
        """Video resource body for videos.insert."""
        snippet: Dict[str, Any] = {
            "title": self.title,
            "categoryId": str(self.category_id),
        }
        if self.tags:
            snippet["tags"] = list(self.tags)
        if self.description:
            snippet["description"] = self.description

        return {
            "snippet": snippet,
            "status": {
                "privacyStatus": self.privacy_status,
                "selfDeclaredMadeForKids": bool(self.made_for_kids),
            },
        }


class UploadState(str, enum.Enum):
    """Upload session state."""
    NEGOTIATING = "negotiating"
    STREAMING = "streaming"
    RESUME_INCOMPLETE = "resume_incomplete"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadSession:
    """One upload attempt. Never reused across files."""
    upload_url: str
    total_bytes: int
    chunk_size: int
    bytes_uploaded: int = 0
    chunk_count: int = 0
    state: UploadState = UploadState.NEGOTIATING
    logged_decile: int = 0

    @property
    def progress(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.bytes_uploaded / self.total_bytes


@dataclass
class UploadResult:
    """Outcome of a full upload."""
    status: str  # completed, discovered, not_found
    video_id: Optional[str]
    total_bytes: int
    chunk_count: int
    duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "video_id": self.video_id,
            "total_bytes": self.total_bytes,
            "chunk_count": self.chunk_count,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def _provider_error_message(response: httpx.Response) -> str:
    try:
        return str(response.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return f"YouTube API returned error code: {response.status_code}"


def _parse_tags(raw: Union[str, List[str], None]) -> List[str]:
    if not raw:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    return [str(tag).strip() for tag in parts if str(tag).strip()]


class ResumableUploadService:
    """
    Uploads files with the YouTube resumable upload protocol.

    A session URL is negotiated with a POST carrying the metadata, then the
    file is PUT in fixed-size chunks. 308 answers mean "keep going", a 2xx
    answer ends the upload. When that final answer cannot be read the video
    is looked up in the channel's recent uploads instead.
    """

    def __init__(
        self,
        oauth: OAuthSessionManager,
        settings: Settings,
        poller: Optional[VideoDiscoveryPoller] = None,
    ):
        self.oauth = oauth
        self.settings = settings
        self.poller = poller

    def build_draft(
        self,
        field_config: Optional[Dict[str, Any]],
        title: str,
        excerpt: Optional[str] = None,
    ) -> VideoMetadataDraft:
        """Draft from field configuration, falling back to configured defaults."""
        field_config = field_config or {}
        if not title or not title.strip():
            raise ValidationError("Post title is required")

        made_for_kids = field_config.get("made_for_kids")
        return VideoMetadataDraft(
            title=title,
            description=excerpt or None,
            category_id=str(field_config.get("category_id") or self.settings.default_category_id),
            tags=_parse_tags(field_config.get("tags", self.settings.default_tags)),
            privacy_status=field_config.get("privacy_status") or self.settings.default_privacy_status,
            made_for_kids=bool(self.settings.default_made_for_kids if made_for_kids is None else made_for_kids),
        )

    def resolve_mime_type(self, file_path: Path) -> str:
        extension = file_path.suffix.lower().lstrip(".")
        mime_type = self.settings.allowed_video_mime_types.get(extension)
        if not mime_type:
            raise ValidationError(f"Unsupported video format: .{extension or '?'}")
        return mime_type

    def validate_file(
        self,
        file_path: Union[str, Path],
        mime_type: Optional[str] = None,
    ) -> Tuple[Path, int, str]:
        """Check the source file; returns path, size and MIME type.

        A declared MIME type is trusted as-is, otherwise the extension must
        map to an allowed video type.
        """
        path = Path(file_path)
        if not path.is_file():
            raise ValidationError("Invalid file data provided")

        size = path.stat().st_size
        if size <= 0:
            raise ValidationError("Invalid file size")

        if mime_type:
            return path, size, mime_type
        return path, size, self.resolve_mime_type(path)

    def _check_stream_source(
        self,
        file_path: Union[str, Path],
        mime_type: Optional[str],
    ) -> Tuple[Path, int, str]:
        # Session already negotiated: unknown extensions get the default type
        try:
            return self.validate_file(file_path, mime_type)
        except ValidationError:
            path = Path(file_path)
            if not path.is_file() or path.stat().st_size <= 0:
                raise
            logger.warning(
                "No MIME type known for %s, sending chunks as %s",
                path.name,
                DEFAULT_CHUNK_CONTENT_TYPE,
            )
            return path, path.stat().st_size, DEFAULT_CHUNK_CONTENT_TYPE

    async def create_upload_session(self, draft: VideoMetadataDraft) -> str:
        """Negotiate a resumable upload session and return its URL."""
        draft.validate()

        headers = await self.oauth.authorization_header()
        headers.update(
            {
                "Content-Type": "application/json; charset=UTF-8",
                "X-Upload-Content-Type": "video/*",
            }
        )
        body = draft.to_resource()

        logger.debug(
            "Resumable upload request prepared: %s",
            {
                "url": RESUMABLE_UPLOAD_URL,
                "headers": {**headers, "Authorization": "Bearer [REDACTED]"},
                "body": body,
            },
        )

        try:
            async with httpx.AsyncClient(timeout=self.settings.upload_session_timeout) as client:
                response = await client.post(
                    RESUMABLE_UPLOAD_URL,
                    headers=headers,
                    content=json.dumps(body).encode("utf-8"),
                )
        except httpx.TimeoutException as exc:
            logger.warning("Upload session negotiation timed out")
            raise TransportFailure("Upload session negotiation timed out. Please try again.") from exc
        except httpx.RequestError as exc:
            logger.warning("Upload session negotiation network error: %s", type(exc).__name__)
            raise TransportFailure("Unable to reach YouTube upload service.") from exc

        log_quota_usage("videos", "insert_resumable")

        if response.status_code not in SESSION_SUCCESS_CODES:
            logger.error(
                "YouTube API error status=%s body=%s",
                response.status_code,
                response.text[:1000],
            )
            raise ProviderRejected(
                _provider_error_message(response),
                status_code=response.status_code,
                body=response.text,
            )

        upload_url = response.headers.get("location")
        if not upload_url:
            message = 'Unable to retrieve "upload URL" from Google API response'
            logger.error("%s (status=%s)", message, response.status_code)
            raise MissingUploadUrl(message, status_code=response.status_code, body=response.text)

        logger.debug("Video upload URL retrieved: %s...", upload_url[:50])
        return upload_url

    @staticmethod
    def _next_offset(response: httpx.Response, start: int, end: int) -> int:
        """Offset to resume from after a 308 for bytes start..end."""
        range_header = response.headers.get("range")
        if not range_header:
            return end + 1

        match = _RANGE_HEADER_RE.match(range_header.strip())
        if not match:
            logger.warning("Ignoring malformed Range header: %s", range_header)
            return end + 1

        received = int(match.group(2)) + 1
        return max(start, min(received, end + 1))

    async def _report_progress(
        self,
        session: UploadSession,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        decile = int(session.progress * 10)
        if decile > session.logged_decile:
            session.logged_decile = decile
            logger.info(
                "Upload progress: %d%% (%d/%d bytes, %d chunks)",
                int(session.progress * 100),
                session.bytes_uploaded,
                session.total_bytes,
                session.chunk_count,
            )

        if progress_callback is not None:
            try:
                await progress_callback(session.bytes_uploaded, session.total_bytes)
            except Exception as exc:
                logger.warning("Progress callback failed: %s", exc)

    @staticmethod
    def _extract_video_id(response: httpx.Response) -> Optional[str]:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        video_id = payload.get("id")
        return str(video_id) if video_id else None

    async def _stream_session(
        self,
        session: UploadSession,
        file_path: Path,
        mime_type: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        total = session.total_bytes
        max_chunks = self.settings.resumable_upload_max_chunks
        session.state = UploadState.STREAMING

        logger.debug(
            "Starting chunked upload of %s: %d bytes, chunk size %d, chunk max %d",
            file_path.name,
            total,
            session.chunk_size,
            max_chunks,
        )

        with open(file_path, "rb") as source:
            async with httpx.AsyncClient(timeout=self.settings.upload_chunk_timeout) as client:
                while session.bytes_uploaded < total:
                    if session.chunk_count >= max_chunks:
                        session.state = UploadState.FAILED
                        raise ChunkLimitExceeded("Upload exceeded maximum chunk limit")

                    start = session.bytes_uploaded
                    source.seek(start)
                    chunk = source.read(session.chunk_size)
                    if not chunk:
                        session.state = UploadState.FAILED
                        raise YouTubeServiceError("Error reading file chunk")

                    end = start + len(chunk) - 1
                    is_final_chunk = end + 1 >= total
                    session.chunk_count += 1

                    logger.debug(
                        "Uploading chunk %d: bytes %d-%d/%d",
                        session.chunk_count,
                        start,
                        end,
                        total,
                    )

                    try:
                        response = await client.put(
                            session.upload_url,
                            headers={
                                "Content-Range": f"bytes {start}-{end}/{total}",
                                "Content-Length": str(len(chunk)),
                                "Content-Type": mime_type or DEFAULT_CHUNK_CONTENT_TYPE,
                            },
                            content=chunk,
                        )
                    except RESPONSE_READ_ERRORS as exc:
                        if not is_final_chunk:
                            session.state = UploadState.FAILED
                            raise TransportFailure(
                                f"Chunk {session.chunk_count} upload failed: {type(exc).__name__}"
                            ) from exc
                        # Every byte was sent; only the answer got lost
                        session.bytes_uploaded = total
                        session.state = UploadState.COMPLETED
                        await self._report_progress(session, progress_callback)
                        logger.warning(
                            "Final chunk sent but response unreadable (%s)",
                            type(exc).__name__,
                        )
                        raise AmbiguousCompletion(
                            "Upload completed but the response could not be read",
                            bytes_uploaded=total,
                            total_bytes=total,
                        ) from exc
                    except httpx.RequestError as exc:
                        session.state = UploadState.FAILED
                        logger.warning(
                            "Chunk %d upload network error: %s",
                            session.chunk_count,
                            type(exc).__name__,
                        )
                        raise TransportFailure(
                            f"Chunk {session.chunk_count} upload failed: {type(exc).__name__}"
                        ) from exc

                    status = response.status_code
                    logger.debug(
                        "Chunk %d response: status=%d body_length=%d",
                        session.chunk_count,
                        status,
                        len(response.content),
                    )

                    if status == RESUME_INCOMPLETE:
                        session.state = UploadState.RESUME_INCOMPLETE
                        session.bytes_uploaded = self._next_offset(response, start, end)
                        await self._report_progress(session, progress_callback)
                        continue

                    if 200 <= status < 300:
                        session.bytes_uploaded = total
                        session.state = UploadState.COMPLETED
                        await self._report_progress(session, progress_callback)

                        video_id = self._extract_video_id(response)
                        if not video_id:
                            logger.warning(
                                "Upload completed but no video ID returned (status=%d)",
                                status,
                            )
                            raise AmbiguousCompletion(
                                "Upload completed but no video ID returned",
                                bytes_uploaded=total,
                                total_bytes=total,
                                status_code=status,
                            )

                        logger.info(
                            "Video uploaded successfully: video_id=%s chunks=%d bytes=%d",
                            video_id,
                            session.chunk_count,
                            total,
                        )
                        return video_id

                    session.state = UploadState.FAILED
                    logger.error(
                        "Chunk %d rejected status=%d body=%s",
                        session.chunk_count,
                        status,
                        response.text[:1000],
                    )
                    raise ProviderRejected(
                        f"Upload failed with HTTP {status}: {_provider_error_message(response)}",
                        status_code=status,
                        body=response.text,
                    )

        session.state = UploadState.FAILED
        raise ProviderRejected("Upload loop completed but video ID not found", status_code=RESUME_INCOMPLETE)

    async def stream_upload(
        self,
        file_path: Union[str, Path],
        upload_url: str,
        mime_type: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Stream a file to a negotiated session URL.

        Returns:
            The new video id

        Raises:
            AmbiguousCompletion: all bytes accepted but no readable id
        """
        if not upload_url:
            raise ValidationError("Upload URL is required")
        path, size, content_type = self._check_stream_source(file_path, mime_type)

        session = UploadSession(
            upload_url=upload_url,
            total_bytes=size,
            chunk_size=self.settings.upload_chunk_size,
        )
        return await self._stream_session(session, path, content_type, progress_callback)

    async def upload_video(
        self,
        file_path: Union[str, Path],
        draft: VideoMetadataDraft,
        upload_context_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """Negotiate, stream and, if needed, discover the resulting video id."""
        started = time.monotonic()
        draft.validate()
        path, size, mime_type = self.validate_file(file_path)

        upload_url = await self.create_upload_session(draft)
        session = UploadSession(
            upload_url=upload_url,
            total_bytes=size,
            chunk_size=self.settings.upload_chunk_size,
        )

        try:
            video_id = await self._stream_session(session, path, mime_type, progress_callback)
            status = "completed"
        except AmbiguousCompletion:
            if self.poller is None:
                raise
            logger.warning("Upload of %s ended ambiguously, searching recent uploads", path.name)
            video_id = await self.poller.poll_for_recent_upload(upload_context_id or path.name)
            status = "discovered" if video_id else "not_found"

        return UploadResult(
            status=status,
            video_id=video_id,
            total_bytes=size,
            chunk_count=session.chunk_count,
            duration_seconds=time.monotonic() - started,
        )
