"""Error kinds raised by the YouTube services."""
from typing import List, Optional

import httpx


class YouTubeServiceError(RuntimeError):
    """Base class for every error raised by the YouTube services."""

    kind = "error"


class ValidationError(YouTubeServiceError, ValueError):
    """Bad or missing input. Never retried."""

    kind = "validation"


class AuthRequired(YouTubeServiceError):
    """No usable token: the authorization flow must be (re)started."""

    kind = "auth_required"


class AuthExpiredUnrecoverable(AuthRequired):
    """Token expired and could not be refreshed; it has been discarded."""

    kind = "auth_expired"


class TokenPersistenceError(YouTubeServiceError):
    """A token was obtained but could not be stored."""

    kind = "token_persistence"


class TransportFailure(YouTubeServiceError):
    """Network-level failure or timeout talking to Google."""

    kind = "transport"


class ProviderRejected(YouTubeServiceError):
    """Google answered with an error status."""

    kind = "provider_rejected"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MissingUploadUrl(ProviderRejected):
    """Session negotiation succeeded without a Location header."""

    kind = "missing_upload_url"


class ChunkLimitExceeded(ProviderRejected):
    """The chunk loop hit its safety bound."""

    kind = "chunk_limit"


class VideoNotFound(ProviderRejected):
    """The requested video is not visible to the authorized account."""

    kind = "video_not_found"


class AmbiguousCompletion(YouTubeServiceError):
    """Upload finished but the response did not carry a readable video id.

    Not a failure: callers should fall back to discovering the video.
    """

    kind = "ambiguous_completion"

    def __init__(
        self,
        message: str,
        bytes_uploaded: int = 0,
        total_bytes: int = 0,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.bytes_uploaded = bytes_uploaded
        self.total_bytes = total_bytes
        self.status_code = status_code


def extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from a Google API or OAuth response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        # Data API: {"error": {"code": 403, "message": "..."}}
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

        # OAuth endpoints: {"error": "invalid_grant", "error_description": "..."}
        description = payload.get("error_description")
        parts: List[str] = []
        if error and not isinstance(error, dict):
            parts.append(str(error))
        if description:
            parts.append(str(description))
        if parts:
            return ": ".join(parts)

    return f"HTTP {response.status_code}"
