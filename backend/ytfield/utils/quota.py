"""YouTube Data API quota audit trail."""
import logging
from typing import Optional

quota_logger = logging.getLogger("youtube_api_quota")

# Documented unit cost per call site
QUOTA_COSTS = {
    ("playlists", "listPlaylists"): 1,
    ("playlistItems", "listPlaylistItems"): 1,
    ("channels", "listChannels"): 1,
    ("videos", "listVideos"): 1,
    ("videos", "insert_resumable"): 1600,
    ("videos", "update"): 50,
    ("videos", "delete"): 50,
}


def log_quota_usage(resource: str, method: str, quota: Optional[int] = None) -> None:
    """Record one provider call against the daily quota."""
    if quota is None:
        quota = QUOTA_COSTS[(resource, method)]

    quota_logger.info(
        "YouTube API call: %s.%s (quota cost: %d)",
        resource,
        method,
        quota,
        extra={"resource": resource, "method": method, "quota": quota},
    )
