"""Read and metadata operations against the YouTube Data API."""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ytfield.config import Settings
from ytfield.services.errors import (
    ProviderRejected,
    TransportFailure,
    ValidationError,
    VideoNotFound,
    extract_error_detail,
)
from ytfield.services.oauth_service import OAuthSessionManager
from ytfield.utils.quota import log_quota_usage

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
PRIVACY_STATUSES = ("private", "public", "unlisted")
MAX_RESULTS = 50


@dataclass
class CatalogItem:
    """Read-only projection of a playlist, video or playlist item."""
    id: str
    title: str
    privacy_status: Optional[str] = None
    published_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "privacy_status": self.privacy_status,
            "published_at": self.published_at,
        }


@dataclass
class CatalogPage:
    """One page of filtered catalog items."""
    items: List[CatalogItem] = field(default_factory=list)
    next_page_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"items": [item.to_dict() for item in self.items]}
        if self.next_page_token:
            result["nextPageToken"] = self.next_page_token
        return result


def _validate_privacy_status(privacy_status: str) -> None:
    if privacy_status not in PRIVACY_STATUSES:
        raise ValidationError(f'Invalid privacy status "{privacy_status}"')


class YouTubeCatalogService:
    """Playlist listings, video lookups and metadata updates."""

    def __init__(self, oauth: OAuthSessionManager, settings: Settings):
        self.oauth = oauth
        self.settings = settings

    async def _request(
        self,
        http_method: str,
        resource: str,
        api_method: str,
        params: Dict[str, Any],
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Authenticated call to one Data API resource, audited for quota."""
        headers = await self.oauth.authorization_header()
        url = f"{YOUTUBE_API_BASE_URL}/{resource}"

        try:
            async with httpx.AsyncClient(timeout=self.settings.api_http_timeout) as client:
                response = await client.request(
                    http_method,
                    url,
                    params=params,
                    headers=headers,
                    json=json_body,
                )
        except httpx.TimeoutException as exc:
            logger.warning("YouTube API %s.%s timed out", resource, api_method)
            raise TransportFailure(f"YouTube API {resource}.{api_method} timed out.") from exc
        except httpx.RequestError as exc:
            logger.warning(
                "YouTube API %s.%s network error: %s",
                resource,
                api_method,
                type(exc).__name__,
            )
            raise TransportFailure(f"Unable to reach YouTube API for {resource}.{api_method}.") from exc

        log_quota_usage(resource, api_method)

        if response.status_code >= 400:
            detail = extract_error_detail(response)
            logger.error(
                "YouTube API %s.%s failed status=%s detail=%s params=%s",
                resource,
                api_method,
                response.status_code,
                detail,
                params,
            )
            raise ProviderRejected(detail, status_code=response.status_code, body=response.text)

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRejected(
                "Invalid YouTube API response",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderRejected("Invalid YouTube API response", status_code=response.status_code)
        return payload

    async def list_playlists_by_privacy(
        self,
        privacy_status: str,
        page_token: Optional[str] = None,
    ) -> CatalogPage:
        """Playlists of the authorized channel with the given privacy status."""
        _validate_privacy_status(privacy_status)

        params: Dict[str, Any] = {"part": "snippet,status", "mine": "true", "maxResults": MAX_RESULTS}
        if page_token:
            params["pageToken"] = page_token

        payload = self._json(await self._request("GET", "playlists", "listPlaylists", params))

        items: Dict[str, CatalogItem] = {}
        for raw in payload.get("items") or []:
            playlist_id = raw.get("id")
            status = (raw.get("status") or {}).get("privacyStatus")
            if not playlist_id or playlist_id in items or status != privacy_status:
                continue
            snippet = raw.get("snippet") or {}
            items[playlist_id] = CatalogItem(
                id=playlist_id,
                title=snippet.get("title", ""),
                privacy_status=status,
                published_at=snippet.get("publishedAt"),
            )

        logger.debug(
            "Playlists retrieved: privacy_status=%s total=%d matching=%d",
            privacy_status,
            len(payload.get("items") or []),
            len(items),
        )
        return CatalogPage(items=list(items.values()), next_page_token=payload.get("nextPageToken"))

    async def list_playlist_items(
        self,
        playlist_id: str,
        privacy_status: str,
        page_token: Optional[str] = None,
    ) -> CatalogPage:
        """Videos in a playlist with the given privacy status."""
        if not playlist_id:
            raise ValidationError("Playlist ID is required")
        _validate_privacy_status(privacy_status)

        params: Dict[str, Any] = {"part": "snippet,status", "playlistId": playlist_id, "maxResults": MAX_RESULTS}
        if page_token:
            params["pageToken"] = page_token

        payload = self._json(await self._request("GET", "playlistItems", "listPlaylistItems", params))

        items: Dict[str, CatalogItem] = {}
        for raw in payload.get("items") or []:
            snippet = raw.get("snippet") or {}
            video_id = (snippet.get("resourceId") or {}).get("videoId")
            status = (raw.get("status") or {}).get("privacyStatus")
            if not video_id or video_id in items or status != privacy_status:
                continue
            items[video_id] = CatalogItem(
                id=video_id,
                title=snippet.get("title", ""),
                privacy_status=status,
                published_at=snippet.get("publishedAt"),
            )

        logger.debug(
            "Playlist videos retrieved: playlist_id=%s privacy_status=%s matching=%d",
            playlist_id,
            privacy_status,
            len(items),
        )
        return CatalogPage(items=list(items.values()), next_page_token=payload.get("nextPageToken"))

    async def _list_video_snippets(self, video_id: str) -> List[Dict[str, Any]]:
        payload = self._json(
            await self._request("GET", "videos", "listVideos", {"part": "snippet", "id": video_id})
        )
        return payload.get("items") or []

    async def video_exists(self, video_id: str) -> bool:
        """True iff the video is visible to the authorized account."""
        if not video_id:
            raise ValidationError("Video ID is required")

        exists = bool(await self._list_video_snippets(video_id))
        logger.debug("Video validation result: video_id=%s exists=%s", video_id, exists)
        return exists

    async def update_metadata(
        self,
        video_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Overlay title, description and category on the current snippet.

        Every snippet field the caller did not supply is sent back unchanged,
        since videos.update replaces the whole snippet part.
        """
        if not video_id:
            raise ValidationError("Video ID is required")
        if title is not None and not title.strip():
            raise ValidationError("Title cannot be empty")

        items = await self._list_video_snippets(video_id)
        if not items:
            raise VideoNotFound(f"Video {video_id} not found", status_code=404)

        snippet = copy.deepcopy(items[0].get("snippet") or {})
        if title is not None:
            snippet["title"] = title
        if description:
            snippet["description"] = description
        if category_id:
            snippet["categoryId"] = str(category_id)

        response = await self._request(
            "PUT",
            "videos",
            "update",
            {"part": "snippet"},
            json_body={"id": video_id, "snippet": snippet},
        )
        logger.info("Video updated successfully: video_id=%s", video_id)
        return self._json(response)

    async def delete_video(self, video_id: str) -> bool:
        if not video_id:
            raise ValidationError("Video ID is required")

        try:
            await self._request("DELETE", "videos", "delete", {"id": video_id})
        except ProviderRejected as exc:
            if exc.status_code == 404:
                raise VideoNotFound(f"Video {video_id} not found", status_code=404, body=exc.body) from exc
            raise

        logger.info("Video deleted successfully: video_id=%s", video_id)
        return True

    async def get_uploads_playlist_id(self) -> Optional[str]:
        """The authorized channel's "uploads" playlist, if there is a channel."""
        payload = self._json(
            await self._request("GET", "channels", "listChannels", {"part": "contentDetails", "mine": "true"})
        )
        channels = payload.get("items") or []
        if not channels:
            logger.warning("No channel found for authenticated user")
            return None

        related = (channels[0].get("contentDetails") or {}).get("relatedPlaylists") or {}
        return related.get("uploads")

    async def list_recent_uploads(self, playlist_id: str, max_results: int = 10) -> List[CatalogItem]:
        """Most recent items of the uploads playlist, newest first, unfiltered."""
        payload = self._json(
            await self._request(
                "GET",
                "playlistItems",
                "listPlaylistItems",
                {"part": "snippet", "playlistId": playlist_id, "maxResults": max_results},
            )
        )

        uploads: List[CatalogItem] = []
        for raw in payload.get("items") or []:
            snippet = raw.get("snippet") or {}
            video_id = (snippet.get("resourceId") or {}).get("videoId")
            if not video_id:
                continue
            uploads.append(
                CatalogItem(
                    id=video_id,
                    title=snippet.get("title", ""),
                    published_at=snippet.get("publishedAt"),
                )
            )
        return uploads
