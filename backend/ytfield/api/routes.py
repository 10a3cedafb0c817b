"""API routes."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ytfield.api.schemas import (
    CatalogItemResponse,
    CatalogPageResponse,
    DiscoverRequest,
    DiscoverResponse,
    HealthResponse,
    OAuthCallbackRequest,
    OAuthCallbackResponse,
    OAuthStatusResponse,
    UploadJobRequest,
    UploadJobResponse,
    UploadSessionRequest,
    UploadSessionResponse,
    VideoDeleteResponse,
    VideoExistsResponse,
    VideoUpdateRequest,
    VideoUpdateResponse,
)
from ytfield.services.catalog_service import CatalogPage
from ytfield.services.container import Services
from ytfield.services.errors import (
    AuthRequired,
    ProviderRejected,
    TransportFailure,
    ValidationError,
    VideoNotFound,
    YouTubeServiceError,
)
from ytfield.workers.handlers import UPLOAD_JOB_TYPE

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _http_error(exc: YouTubeServiceError) -> HTTPException:
    """Translate a service error, keeping its kind for the client."""
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, AuthRequired):
        status_code = 401
    elif isinstance(exc, VideoNotFound):
        status_code = 404
    elif isinstance(exc, TransportFailure):
        status_code = 504
    elif isinstance(exc, ProviderRejected):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail={"kind": exc.kind, "message": str(exc)})


def _page_response(page: CatalogPage) -> CatalogPageResponse:
    return CatalogPageResponse(
        items=[CatalogItemResponse(**item.to_dict()) for item in page.items],
        next_page_token=page.next_page_token,
    )


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """Check authorization and token maintenance."""
    authorized = await services.oauth.is_authorized()
    return HealthResponse(
        status="healthy" if authorized else "unauthorized",
        authorized=authorized,
        token_state=services.oauth.state.value,
        scheduler=services.scheduler.status(),
    )


# =============================================================================
# OAuth
# =============================================================================

@router.get("/oauth/status", response_model=OAuthStatusResponse)
async def oauth_status(
    state: Optional[str] = Query(None, description="Opaque value echoed back by Google"),
    services: Services = Depends(get_services),
):
    """Authorization status, with the consent URL when authorization is needed."""
    result = await services.oauth.authorization_status()
    if result["status"] == "authorize" and state:
        result["auth_url"] = services.oauth.build_authorization_url(state)
    return OAuthStatusResponse(**result)


async def _complete_authorization(services: Services, code: Optional[str]) -> OAuthCallbackResponse:
    try:
        await services.oauth.authorize(code or "")
    except YouTubeServiceError as e:
        logger.warning("OAuth callback failed: %s", e)
        raise _http_error(e)

    return OAuthCallbackResponse(
        status="success",
        message="App authorized! You can now upload videos to YouTube.",
    )


@router.get("/oauth/callback", response_model=OAuthCallbackResponse)
async def oauth_redirect_callback(
    code: Optional[str] = Query(None, description="One-time authorization code"),
    error: Optional[str] = Query(None, description="Set by Google when consent was denied"),
    services: Services = Depends(get_services),
):
    """Google's browser redirect after the consent screen."""
    if error:
        logger.warning("OAuth consent returned error: %s", error)
        raise _http_error(ValidationError(f"Authorization failed: {error}"))
    return await _complete_authorization(services, code)


@router.post("/oauth/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(
    data: OAuthCallbackRequest,
    services: Services = Depends(get_services),
):
    """
    Complete OAuth flow with authorization code.

    For clients that capture the redirect themselves and post the code.
    """
    return await _complete_authorization(services, data.code)


@router.delete("/oauth")
async def oauth_logout(
    revoke: bool = Query(True, description="Also revoke the token at Google"),
    services: Services = Depends(get_services),
):
    """Forget the stored token."""
    await services.oauth.logout(revoke=revoke)
    return {"status": "logged_out"}


# =============================================================================
# Uploads
# =============================================================================

@router.post("/uploads/session", response_model=UploadSessionResponse)
async def create_upload_session(
    data: UploadSessionRequest,
    services: Services = Depends(get_services),
):
    """Negotiate a resumable session for a browser-side upload."""
    try:
        draft = services.uploads.build_draft(
            data.field.model_dump(exclude_none=True),
            data.title,
            data.excerpt,
        )
        upload_url = await services.uploads.create_upload_session(draft)
    except YouTubeServiceError as e:
        raise _http_error(e)

    return UploadSessionResponse(upload_url=upload_url)


@router.post("/uploads", response_model=UploadJobResponse, status_code=202)
async def start_upload(
    data: UploadJobRequest,
    services: Services = Depends(get_services),
):
    """Upload a local file in the background."""
    try:
        draft = services.uploads.build_draft(
            data.field.model_dump(exclude_none=True),
            data.title,
            data.excerpt,
        )
        draft.validate()
        services.uploads.validate_file(data.file_path)
    except YouTubeServiceError as e:
        raise _http_error(e)

    job = await services.job_runner.create_job(data.file_path, data.title)
    await services.job_runner.start_job(
        job.id,
        UPLOAD_JOB_TYPE,
        upload_service=services.uploads,
        file_path=data.file_path,
        draft=draft,
    )
    return UploadJobResponse.model_validate(job)


@router.get("/jobs/{job_id}", response_model=UploadJobResponse)
async def get_job(job_id: int, services: Services = Depends(get_services)):
    """Get upload job status."""
    job = await services.job_runner.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return UploadJobResponse.model_validate(job)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: int, services: Services = Depends(get_services)):
    """Cancel a running upload job."""
    cancelled = await services.job_runner.cancel_job(job_id)
    if not cancelled:
        raise HTTPException(status_code=404, detail="Job not running")
    return {"job_id": job_id, "cancelled": True}


@router.post("/uploads/discover", response_model=DiscoverResponse)
async def discover_upload(
    data: DiscoverRequest,
    services: Services = Depends(get_services),
):
    """
    Find the video for an upload whose final response was unreadable.

    A null video_id means nothing recent was found; the client should
    let the user pick the video manually.
    """
    try:
        video_id = await services.poller.poll_for_recent_upload(data.upload_id)
    except YouTubeServiceError as e:
        raise _http_error(e)
    return DiscoverResponse(video_id=video_id)


# =============================================================================
# Catalog
# =============================================================================

@router.get("/playlists", response_model=CatalogPageResponse)
async def list_playlists(
    privacy_status: str = Query(..., description="private, public or unlisted"),
    page_token: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Playlists of the authorized channel with the given privacy status."""
    try:
        page = await services.catalog.list_playlists_by_privacy(privacy_status, page_token)
    except YouTubeServiceError as e:
        raise _http_error(e)
    return _page_response(page)


@router.get("/playlists/{playlist_id}/videos", response_model=CatalogPageResponse)
async def list_playlist_videos(
    playlist_id: str,
    privacy_status: str = Query(..., description="private, public or unlisted"),
    page_token: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Videos of a playlist with the given privacy status."""
    try:
        page = await services.catalog.list_playlist_items(playlist_id, privacy_status, page_token)
    except YouTubeServiceError as e:
        raise _http_error(e)
    return _page_response(page)


@router.get("/videos/{video_id}/exists", response_model=VideoExistsResponse)
async def video_exists(video_id: str, services: Services = Depends(get_services)):
    try:
        exists = await services.catalog.video_exists(video_id)
    except YouTubeServiceError as e:
        raise _http_error(e)
    return VideoExistsResponse(video_id=video_id, exists=exists)


@router.patch("/videos/{video_id}", response_model=VideoUpdateResponse)
async def update_video(
    video_id: str,
    data: VideoUpdateRequest,
    services: Services = Depends(get_services),
):
    """Update title, description or category of a video."""
    try:
        video = await services.catalog.update_metadata(
            video_id,
            title=data.title,
            description=data.description,
            category_id=data.category_id,
        )
    except YouTubeServiceError as e:
        raise _http_error(e)

    snippet = video.get("snippet") or {}
    return VideoUpdateResponse(
        video_id=video_id,
        title=snippet.get("title"),
        description=snippet.get("description"),
        category_id=snippet.get("categoryId"),
    )


@router.delete("/videos/{video_id}", response_model=VideoDeleteResponse)
async def delete_video(video_id: str, services: Services = Depends(get_services)):
    try:
        deleted = await services.catalog.delete_video(video_id)
    except YouTubeServiceError as e:
        logger.error("Failed to delete video %s: %s", video_id, e)
        raise _http_error(e)
    return VideoDeleteResponse(video_id=video_id, deleted=deleted)
