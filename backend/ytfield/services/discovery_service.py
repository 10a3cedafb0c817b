"""Find a just-uploaded video when the upload response carried no id."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ytfield.services.catalog_service import YouTubeCatalogService

logger = logging.getLogger(__name__)

RECENT_ITEMS_TO_CHECK = 10


def parse_published_at(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Data API."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class VideoDiscoveryPoller:
    """
    Bounded polling of the channel's uploads playlist.

    The first item published within the recency window is taken to be the
    upload. Google offers no way to correlate an upload session with the
    resulting video, so two uploads from the same account inside the window
    cannot be told apart.
    """

    def __init__(
        self,
        catalog: YouTubeCatalogService,
        max_attempts: int = 5,
        initial_delay: float = 2.0,
        interval: float = 3.0,
        recency_window: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.catalog = catalog
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.interval = interval
        self.recency_window = recency_window
        self._sleep = sleep
        self._clock = clock

    async def poll_for_recent_upload(self, upload_context_id: str = "") -> Optional[str]:
        """Return the id of a video uploaded within the window, or None."""
        logger.debug("Attempting to retrieve video ID from upload %s", upload_context_id)

        uploads_playlist_id = await self.catalog.get_uploads_playlist_id()
        if not uploads_playlist_id:
            return None

        logger.debug(
            "Starting video ID retrieval loop: upload=%s playlist=%s max_attempts=%d",
            upload_context_id,
            uploads_playlist_id,
            self.max_attempts,
        )
        await self._sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            try:
                video_id = await self._check_recent_uploads(uploads_playlist_id, attempt)
                if video_id:
                    logger.info(
                        "Found recent video ID %s for upload %s on attempt %d",
                        video_id,
                        upload_context_id,
                        attempt,
                    )
                    return video_id
            except Exception as exc:
                logger.error(
                    "Error during video ID retrieval attempt %d for upload %s: %s",
                    attempt,
                    upload_context_id,
                    exc,
                )

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.warning(
            "No recent video found after %d attempts (upload=%s, window=%ss, elapsed~%ss)",
            self.max_attempts,
            upload_context_id,
            self.recency_window,
            self.initial_delay + (self.max_attempts - 1) * self.interval,
        )
        return None

    async def _check_recent_uploads(self, playlist_id: str, attempt: int) -> Optional[str]:
        items = await self.catalog.list_recent_uploads(playlist_id, max_results=RECENT_ITEMS_TO_CHECK)
        now = self._clock()

        for item in items:
            if not item.published_at:
                continue
            age = (now - parse_published_at(item.published_at)).total_seconds()
            logger.debug(
                "Checking video %s (attempt %d): published %s, %.0fs ago",
                item.id,
                attempt,
                item.published_at,
                age,
            )
            if age < self.recency_window:
                return item.id

        return None
